"""IBKR activity statement parser.

An activity statement is a multi-section CSV: column 1 names the section,
column 2 is a Header/Data/Total marker, the remaining columns follow the
most recent Header row of that section. Columns are looked up by header
name, so reordered or extra columns do not break parsing.
"""

import logging
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

import pandas as pd

from broker_ledger.lib.broker_mappings import (
    IBKR_CASH_MOVEMENT_KEYWORDS,
    IBKR_CASH_REPORT_BALANCE_LINES,
    IBKR_CASH_REPORT_KEYWORDS,
    IBKR_FOREX_CATEGORIES,
    IBKR_OPTION_CATEGORIES,
    IBKR_SECTION_MAPPING,
    IBKR_SENSITIVE_SECTIONS,
    IBKR_STOCK_CATEGORIES,
    IBKR_UNSUPPORTED_SECTIONS,
    IBKRSectionKind,
)
from broker_ledger.lib.config import IBKR_DATE_FORMATS
from broker_ledger.lib.errors import ParseErrorType, RowError
from broker_ledger.lib.ibkr_models import (
    IBKRCashFlow,
    IBKRCashFlowType,
    IBKRCashMovement,
    IBKRExchangeRate,
    IBKRForexTrade,
    IBKRInstrument,
    IBKROpenPosition,
    IBKRStatementData,
    IBKRTrade,
)
from broker_ledger.services.csv_parser import (
    ParseResult,
    RowValidationError,
    parse_decimal,
    parse_optional_decimal,
    read_raw_rows,
)

logger = logging.getLogger(__name__)

# Alternative header spellings seen across statement and Flex exports
COLUMN_ALIASES: dict[str, list[str]] = {
    "Date/Time": ["Date/Time", "DateTime", "Date"],
    "T. Price": ["T. Price", "TradePrice", "Price"],
    "C. Price": ["C. Price", "ClosePrice"],
    "Comm/Fee": ["Comm/Fee", "Comm in USD", "Commission", "IBCommission"],
    "Realized P/L": ["Realized P/L", "FifoPnlRealized"],
    "Settle Date": ["Settle Date", "SettleDate", "Date"],
    "Mult": ["Mult", "Multiplier"],
    "Security ID": ["Security ID", "SecurityID"],
    "Listing Exch": ["Listing Exch", "ListingExchange"],
}


def parse_ibkr_date(value: str, field_name: str = "Date/Time") -> datetime:
    """Parse an IBKR date, trying each known format in order."""
    cleaned = value.strip()
    if not cleaned:
        raise RowValidationError(
            f"{field_name} cannot be empty", ParseErrorType.MISSING_REQUIRED_FIELD, field_name
        )
    for fmt in IBKR_DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt)
        except ValueError:
            continue
    raise RowValidationError(
        f"Invalid date format for {field_name}: '{value}'",
        ParseErrorType.INVALID_DATE_FORMAT,
        field_name,
    )


def classify_section(name: str) -> tuple[IBKRSectionKind | None, str | None]:
    """
    Decide how a statement section is handled.

    Returns:
        (kind, None) for parsed sections, (None, reason) for skipped ones.
        Reasons are "Privacy: <name>", "Unsupported: <name>" or "Unknown: <name>".

    Examples:
        >>> classify_section("Trades")
        (<IBKRSectionKind.TRADES: 'Trades'>, None)
        >>> classify_section("Account Information")
        (None, 'Privacy: Account Information')
    """
    name = name.strip()
    if name in IBKR_SENSITIVE_SECTIONS:
        return None, f"Privacy: {name}"
    kind = IBKR_SECTION_MAPPING.get(name)
    if kind is not None:
        return kind, None
    if name in IBKR_UNSUPPORTED_SECTIONS:
        return None, f"Unsupported: {name}"
    return None, f"Unknown: {name}"


class _SectionRow:
    """Data row values addressed by the section's header names."""

    def __init__(self, columns: dict[str, int], values: list[str]):
        self.columns = columns
        self.values = values

    def get(self, name: str, default: str = "") -> str:
        for candidate in COLUMN_ALIASES.get(name, [name]):
            idx = self.columns.get(candidate)
            if idx is not None:
                return self.values[idx] if idx < len(self.values) else default
        return default

    def require(self, name: str) -> str:
        value = self.get(name)
        if not value:
            raise RowValidationError(
                f"Missing required field: {name}", ParseErrorType.MISSING_REQUIRED_FIELD, name
            )
        return value


class IBKRParseResult(ParseResult):
    """ParseResult that also carries the typed statement data."""

    def __init__(self, data: IBKRStatementData, **kwargs: Any):
        self.data = data
        super().__init__(**kwargs)


class IBKRStatementParser:
    """Parser for IBKR activity statement CSV exports.

    Sensitive and unsupported sections are skipped with a recorded reason.
    A malformed data row becomes a RowError and the rest of the file is
    still parsed.
    """

    broker_name: str = "ibkr"

    def parse_file(self, filepath: Path) -> ParseResult:
        """Parse an IBKR statement file."""
        try:
            content = Path(filepath).read_text(encoding="utf-8-sig")
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Failed to read IBKR statement {filepath}: {e}")
            return ParseResult.file_failure(
                f"Failed to read file '{filepath}': {e}", detail="File access"
            )
        return self.parse_content(content)

    def parse_content(self, content: str) -> ParseResult:
        """Parse complete statement text."""
        data = IBKRStatementData()
        if not content.strip():
            return IBKRParseResult(data=data, transactions=[], errors=[], total_rows=0)

        lines = content.splitlines()
        try:
            raw = read_raw_rows(content)
        except (pd.errors.ParserError, ValueError) as e:
            return ParseResult.file_failure(
                f"Failed to parse IBKR statement: {e}", detail="File access"
            )

        records: list[Any] = []
        errors: list[RowError] = []
        skipped_sections: list[str] = []
        skipped = 0
        data_rows = 0

        section_name = ""
        kind: IBKRSectionKind | None = None
        columns: dict[str, int] = {}

        for idx, fields in enumerate(raw.rows):
            line_number = idx + 1
            raw_line = lines[idx] if idx < len(lines) else ",".join(fields)

            if line_number in raw.malformed:
                data_rows += 1
                errors.append(
                    RowError(
                        line_number=line_number,
                        message=raw.malformed[line_number],
                        raw_line=raw_line,
                        error_type=ParseErrorType.INVALID_DATA_FORMAT,
                        detail="Row",
                    )
                )
                continue

            if len(fields) < 2:
                continue

            name, marker = fields[0], fields[1]
            if marker == "Header":
                if name != section_name:
                    section_name = name
                    kind, reason = classify_section(name)
                    if reason is not None and reason not in skipped_sections:
                        skipped_sections.append(reason)
                        logger.info(f"Skipping IBKR section - {reason}")
                columns = {header: i for i, header in enumerate(fields[2:])}
                continue

            if marker != "Data":
                continue

            data_rows += 1
            if name != section_name:
                # Data without a header of its own
                section_name = name
                kind, reason = classify_section(name)
                columns = {}
                if reason is not None and reason not in skipped_sections:
                    skipped_sections.append(reason)
            if kind is None:
                skipped += 1
                continue

            row = _SectionRow(columns, fields[2:])
            try:
                record = self._parse_row(kind, row, line_number, raw_line)
            except RowValidationError as e:
                logger.debug(f"IBKR row {line_number} rejected: {e}")
                errors.append(
                    RowError(
                        line_number=line_number,
                        message=f"{section_name}: {e}",
                        raw_line=raw_line,
                        error_type=e.error_type,
                        detail=e.field_name,
                    )
                )
                continue

            if record is None:
                skipped += 1
                continue

            self._store(data, record)
            records.append(record)

        logger.info(
            f"Parsed IBKR statement: {data.ledger_count} ledger rows, {data.reference_count} reference rows, "
            f"{len(errors)} errors, {skipped} skipped rows, {len(skipped_sections)} skipped sections"
        )
        return IBKRParseResult(
            data=data,
            transactions=records,
            errors=errors,
            total_rows=data_rows,
            processed_count=data.ledger_count,
            skipped_count=skipped,
            skipped_sections=skipped_sections,
            reference_count=data.reference_count,
        )

    def _parse_row(
        self, kind: IBKRSectionKind, row: _SectionRow, line_number: int, raw_line: str
    ) -> Any:
        """Dispatch one Data row by section kind; None means skipped."""
        if kind == IBKRSectionKind.TRADES:
            return self._parse_trade(row, line_number, raw_line)
        if kind == IBKRSectionKind.DEPOSITS_WITHDRAWALS:
            return self._parse_cash_movement(row, line_number, raw_line)
        if kind == IBKRSectionKind.CASH_REPORT:
            return self._parse_cash_flow(row, line_number, raw_line)
        if kind == IBKRSectionKind.OPEN_POSITIONS:
            return self._parse_open_position(row, line_number, raw_line)
        if kind == IBKRSectionKind.FINANCIAL_INSTRUMENTS:
            return self._parse_instrument(row, line_number, raw_line)
        if kind == IBKRSectionKind.EXCHANGE_RATES:
            return self._parse_exchange_rate(row, line_number, raw_line)
        return None

    @staticmethod
    def _store(data: IBKRStatementData, record: Any) -> None:
        if isinstance(record, IBKRForexTrade):
            data.forex_trades.append(record)
        elif isinstance(record, IBKRTrade):
            data.trades.append(record)
        elif isinstance(record, IBKRCashMovement):
            data.cash_movements.append(record)
        elif isinstance(record, IBKRCashFlow):
            data.cash_flows.append(record)
        elif isinstance(record, IBKROpenPosition):
            data.open_positions.append(record)
        elif isinstance(record, IBKRInstrument):
            data.instruments.append(record)
        elif isinstance(record, IBKRExchangeRate):
            data.exchange_rates.append(record)

    def _parse_trade(
        self, row: _SectionRow, line_number: int, raw_line: str
    ) -> IBKRTrade | IBKRForexTrade | None:
        # Closed lot detail rows repeat the order they belong to
        discriminator = row.get("DataDiscriminator")
        if discriminator and discriminator != "Order":
            return None

        category = row.require("Asset Category")
        if category in IBKR_FOREX_CATEGORIES:
            return self._parse_forex_trade(row, line_number, raw_line)
        if category not in IBKR_STOCK_CATEGORIES and category not in IBKR_OPTION_CATEGORIES:
            logger.debug(f"Skipping IBKR trade with asset category '{category}'")
            return None

        return IBKRTrade(
            asset_category=category,
            currency=row.require("Currency"),
            symbol=row.require("Symbol"),
            date_time=parse_ibkr_date(row.get("Date/Time"), "Date/Time"),
            quantity=parse_decimal(row.require("Quantity"), "Quantity"),
            trade_price=parse_optional_decimal(row.get("T. Price"), "T. Price"),
            close_price=parse_optional_decimal(row.get("C. Price"), "C. Price"),
            proceeds=parse_decimal(row.get("Proceeds"), "Proceeds"),
            commission=parse_decimal(row.get("Comm/Fee"), "Comm/Fee"),
            basis=parse_optional_decimal(row.get("Basis"), "Basis"),
            realized_pnl=parse_optional_decimal(row.get("Realized P/L"), "Realized P/L"),
            mtm_pnl=parse_optional_decimal(row.get("MTM P/L"), "MTM P/L"),
            code=row.get("Code") or None,
            line_number=line_number,
            raw_line=raw_line,
        )

    def _parse_forex_trade(self, row: _SectionRow, line_number: int, raw_line: str) -> IBKRForexTrade:
        pair = row.require("Symbol")
        base, sep, quote = pair.partition(".")
        if not sep or len(base) != 3 or len(quote) != 3:
            raise RowValidationError(
                f"Invalid currency pair: '{pair}'. Expected format like 'GBP.USD'",
                ParseErrorType.INVALID_DATA_FORMAT,
                "Symbol",
            )

        return IBKRForexTrade(
            currency_pair=pair,
            base_currency=base.upper(),
            quote_currency=quote.upper(),
            date_time=parse_ibkr_date(row.get("Date/Time"), "Date/Time"),
            quantity=parse_decimal(row.require("Quantity"), "Quantity"),
            trade_price=parse_decimal(row.require("T. Price"), "T. Price"),
            proceeds=parse_decimal(row.get("Proceeds"), "Proceeds"),
            commission=parse_decimal(row.get("Comm/Fee"), "Comm/Fee"),
            code=row.get("Code") or None,
            line_number=line_number,
            raw_line=raw_line,
        )

    def _parse_cash_movement(
        self, row: _SectionRow, line_number: int, raw_line: str
    ) -> IBKRCashMovement | None:
        currency = row.require("Currency")
        if currency.startswith("Total"):
            return None

        description = row.get("Description")
        amount = parse_decimal(row.require("Amount"), "Amount")

        movement_type = IBKRCashFlowType.TRADE_SETTLEMENT
        for keyword, flow_type in IBKR_CASH_MOVEMENT_KEYWORDS:
            if keyword in description:
                movement_type = flow_type
                break
        if movement_type == IBKRCashFlowType.DEPOSIT and amount < 0:
            movement_type = IBKRCashFlowType.WITHDRAWAL

        return IBKRCashMovement(
            currency=currency,
            settle_date=parse_ibkr_date(row.get("Settle Date"), "Settle Date"),
            description=description,
            amount=amount,
            movement_type=movement_type,
            line_number=line_number,
            raw_line=raw_line,
        )

    def _parse_cash_flow(self, row: _SectionRow, line_number: int, raw_line: str) -> IBKRCashFlow | None:
        summary = row.get("Currency Summary")
        currency = row.get("Currency")
        # "Base Currency Summary" rows duplicate the per-currency rows
        if len(currency) != 3 or not currency.isalpha():
            return None
        if not summary or summary in IBKR_CASH_REPORT_BALANCE_LINES:
            return None

        amount = parse_decimal(row.get("Total"), "Total")
        flow_type = None
        for keyword, candidate in IBKR_CASH_REPORT_KEYWORDS:
            if keyword in summary:
                flow_type = candidate
                break
        if flow_type is None:
            return None
        if flow_type == IBKRCashFlowType.FX_TRANSLATION_GAIN and amount < 0:
            flow_type = IBKRCashFlowType.FX_TRANSLATION_LOSS

        return IBKRCashFlow(
            flow_type=flow_type,
            currency=currency,
            amount=amount,
            description=summary,
            line_number=line_number,
            raw_line=raw_line,
        )

    def _parse_open_position(
        self, row: _SectionRow, line_number: int, raw_line: str
    ) -> IBKROpenPosition | None:
        discriminator = row.get("DataDiscriminator")
        if discriminator and discriminator != "Summary":
            return None

        return IBKROpenPosition(
            asset_category=row.require("Asset Category"),
            currency=row.require("Currency"),
            symbol=row.require("Symbol"),
            quantity=parse_decimal(row.require("Quantity"), "Quantity"),
            multiplier=parse_optional_decimal(row.get("Mult"), "Mult") or Decimal("1"),
            cost_basis_price=parse_decimal(row.get("Cost Price"), "Cost Price"),
            cost_basis_money=parse_decimal(row.get("Cost Basis"), "Cost Basis"),
            close_price=parse_decimal(row.get("Close Price"), "Close Price"),
            value=parse_decimal(row.get("Value"), "Value"),
            unrealized_pnl=parse_decimal(row.get("Unrealized P/L"), "Unrealized P/L"),
            line_number=line_number,
            raw_line=raw_line,
        )

    def _parse_instrument(self, row: _SectionRow, line_number: int, raw_line: str) -> IBKRInstrument:
        return IBKRInstrument(
            asset_category=row.require("Asset Category"),
            symbol=row.require("Symbol"),
            description=row.get("Description"),
            con_id=row.get("Conid") or None,
            security_id=row.get("Security ID") or None,
            listing_exchange=row.get("Listing Exch") or None,
            multiplier=parse_optional_decimal(row.get("Mult"), "Multiplier"),
            instrument_type=row.get("Type") or None,
            line_number=line_number,
            raw_line=raw_line,
        )

    def _parse_exchange_rate(self, row: _SectionRow, line_number: int, raw_line: str) -> IBKRExchangeRate:
        return IBKRExchangeRate(
            currency=row.require("Currency"),
            rate=parse_decimal(row.require("Rate"), "Rate"),
            line_number=line_number,
            raw_line=raw_line,
        )
