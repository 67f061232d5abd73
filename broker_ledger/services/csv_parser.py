"""CSV parsers for broker transaction history imports.

Implements the Tastytrade transaction history parser and the shared
ParseResult. The IBKR activity statement parser lives in ibkr_parser.
"""

import io
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import pandas as pd
from pydantic import ValidationError as PydanticValidationError

from broker_ledger.lib.config import (
    MAX_CSV_COLUMNS,
    TASTYTRADE_DATE_FORMAT,
    TASTYTRADE_EMPTY_NUMERIC,
    TASTYTRADE_EXPIRATION_FORMATS,
    TASTYTRADE_HEADERS,
)
from broker_ledger.lib.csv_models import (
    ClassifiedTransaction,
    TastytradeCSVRow,
    TastytradeTransaction,
)
from broker_ledger.lib.errors import ParseErrorType, RowError
from broker_ledger.services.transaction_classifier import attach_tag, classify_transaction

logger = logging.getLogger(__name__)

MALFORMED_ROW_MARKER = "\x00malformed"


class RowValidationError(Exception):
    """Raised when a CSV row fails field-level validation."""

    def __init__(
        self,
        message: str,
        error_type: ParseErrorType,
        field_name: str | None = None,
    ):
        self.error_type = error_type
        self.field_name = field_name
        super().__init__(message)


class ParseResult:
    """Result of parsing a broker CSV file.

    Errors are collected in file order; a file with row errors still carries
    every row that parsed successfully.
    """

    def __init__(
        self,
        transactions: list[Any],
        errors: list[RowError],
        total_rows: int,
        processed_count: int | None = None,
        skipped_count: int = 0,
        skipped_sections: list[str] | None = None,
        warnings: list[str] | None = None,
        reference_count: int = 0,
    ):
        self.transactions = transactions
        self.errors = errors
        self.total_rows = total_rows
        self.processed_count = len(transactions) if processed_count is None else processed_count
        self.skipped_count = skipped_count
        # Rows read for lookups (prices, instruments) that produce no ledger record
        self.reference_count = reference_count
        self.skipped_sections = skipped_sections or []
        self.warnings = warnings or []

    @property
    def success(self) -> bool:
        return not self.errors

    @classmethod
    def file_failure(
        cls,
        message: str,
        detail: str,
        line_number: int = 0,
        raw_line: str = "",
        skipped_count: int = 0,
    ) -> "ParseResult":
        """Result for a file that could not be read or whose header is invalid."""
        error = RowError(
            line_number=line_number,
            message=message,
            raw_line=raw_line,
            error_type=ParseErrorType.MISSING_REQUIRED_FIELD,
            detail=detail,
        )
        return cls(transactions=[], errors=[error], total_rows=0, skipped_count=skipped_count)

    def __repr__(self) -> str:
        return (
            f"<ParseResult(processed={self.processed_count}, skipped={self.skipped_count}, "
            f"errors={len(self.errors)})>"
        )


@dataclass
class RawRows:
    """Fields of every physical line of a CSV text.

    rows[i] holds line i + 1. Lines that could not be split are left as
    empty rows and listed in malformed with the reason.
    """

    rows: list[list[str]]
    malformed: dict[int, str] = field(default_factory=dict)


def read_raw_rows(content: str) -> RawRows:
    """Split CSV text into rows of stripped fields, honoring quotes.

    Blank lines are kept as empty rows so indexes line up with file lines.
    Trailing empty cells from ragged rows are dropped. Quoted fields never
    span lines in broker exports, so a line with an odd number of quotes is
    reported as malformed instead of swallowing the rest of the file.
    """
    lines = content.splitlines()
    malformed: dict[int, str] = {}
    readable: list[str] = []
    for line_number, line in enumerate(lines, start=1):
        if line.count('"') % 2:
            malformed[line_number] = "Unterminated quoted field"
            readable.append("")
        else:
            readable.append(line)

    if not any(line.strip() for line in readable):
        return RawRows(rows=[[] for _ in lines], malformed=malformed)

    oversized: list[int] = []

    def on_bad_line(fields: list[str]) -> list[str]:
        # Keep a placeholder so row indexes still match line numbers
        oversized.append(len(fields))
        return [MALFORMED_ROW_MARKER]

    # The one-field leading line keeps pandas from reading the first columns
    # of an oversized first row as an implicit index
    df = pd.read_csv(
        io.StringIO("\n".join(["_", *readable])),
        header=None,
        names=range(MAX_CSV_COLUMNS),
        dtype=str,
        na_filter=False,
        skip_blank_lines=False,
        engine="python",
        on_bad_lines=on_bad_line,
    )

    rows: list[list[str]] = []
    field_counts = iter(oversized)
    for values in df.iloc[1:].itertuples(index=False, name=None):
        fields = ["" if pd.isna(v) else str(v).strip() for v in values]
        if fields and fields[0] == MALFORMED_ROW_MARKER:
            malformed[len(rows) + 1] = f"Row has {next(field_counts)} fields, more than {MAX_CSV_COLUMNS}"
            fields = []
        while fields and fields[-1] == "":
            fields.pop()
        rows.append(fields)
    return RawRows(rows=rows, malformed=malformed)


def parse_decimal(value: str, field_name: str) -> Decimal:
    """Parse a broker number: blanks and "--" are zero, thousands separators stripped."""
    cleaned = value.strip().replace(",", "")
    if cleaned in ("", TASTYTRADE_EMPTY_NUMERIC):
        return Decimal("0")
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        raise RowValidationError(
            f"Invalid decimal value for {field_name}: '{value}'",
            ParseErrorType.INVALID_NUMERIC_VALUE,
            field_name,
        )


def parse_optional_decimal(value: str, field_name: str) -> Decimal | None:
    """Parse a number that may be absent (blank returns None)."""
    if not value.strip():
        return None
    return parse_decimal(value, field_name)


def parse_tastytrade_date(value: str) -> datetime:
    """Parse ISO-with-offset timestamps such as 2024-05-31T14:42:13+0100."""
    if not value.strip():
        raise RowValidationError(
            "Date cannot be empty", ParseErrorType.MISSING_REQUIRED_FIELD, "Date"
        )
    try:
        return datetime.strptime(value.strip(), TASTYTRADE_DATE_FORMAT)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value.strip())
    except ValueError:
        raise RowValidationError(
            f"Invalid date format: '{value}'. Expected ISO format like '2024-05-31T14:42:13+0100'",
            ParseErrorType.INVALID_DATE_FORMAT,
            "Date",
        )


def parse_expiration_date(value: str) -> date | None:
    """Parse short expiration dates (M/d/yy family); blank returns None."""
    if not value.strip():
        return None
    for fmt in TASTYTRADE_EXPIRATION_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt).date()
        except ValueError:
            continue
    raise RowValidationError(
        f"Invalid expiration date format: '{value}'. Expected format like '5/31/24'",
        ParseErrorType.INVALID_DATE_FORMAT,
        "Expiration Date",
    )


def _none_if_blank(value: str) -> str | None:
    return value if value else None


def validate_headers(headers: list[str]) -> str | None:
    """Return an error message if headers differ from the expected 20 columns."""
    normalized = [h.strip().lower() for h in headers]
    expected = [h.lower() for h in TASTYTRADE_HEADERS]

    if len(normalized) != len(expected):
        return f"Expected {len(expected)} columns, found {len(normalized)}"

    mismatches = [
        f"column {i + 1}: expected '{TASTYTRADE_HEADERS[i]}', found '{headers[i]}'"
        for i, (found, wanted) in enumerate(zip(normalized, expected))
        if found != wanted
    ]
    if mismatches:
        return "Header mismatch: " + "; ".join(mismatches)
    return None


def detect_broker_format(filepath: Path) -> str | None:
    """Guess the broker from the first line: 'ibkr', 'tastytrade' or None."""
    try:
        with open(filepath, encoding="utf-8-sig") as handle:
            first_line = handle.readline()
    except OSError:
        return None

    if first_line.startswith("Statement,Header") or ",Header," in first_line:
        return "ibkr"
    if first_line.lower().startswith("date,type,sub type"):
        return "tastytrade"
    return None


class TastytradeCSVParser:
    """Parser for Tastytrade transaction history CSV format.

    Single flat table with a fixed, order-sensitive 20-column header. A header
    mismatch fails the whole file; any other problem fails only its row.
    """

    broker_name: str = "tastytrade"

    def parse_file(self, filepath: Path) -> ParseResult:
        """Parse a Tastytrade CSV file and return results."""
        try:
            content = Path(filepath).read_text(encoding="utf-8-sig")
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Failed to read Tastytrade file {filepath}: {e}")
            return ParseResult.file_failure(
                f"Failed to read file '{filepath}': {e}", detail="File access"
            )
        return self.parse_content(content)

    def parse_content(self, content: str) -> ParseResult:
        """Parse complete CSV text."""
        if not content.strip():
            return ParseResult(transactions=[], errors=[], total_rows=0)

        lines = content.splitlines()
        try:
            raw = read_raw_rows(content)
        except (pd.errors.ParserError, ValueError) as e:
            return ParseResult.file_failure(
                f"Failed to parse Tastytrade CSV: {e}", detail="File access"
            )
        rows = raw.rows

        header_error = validate_headers(rows[0])
        if header_error:
            logger.warning(f"Tastytrade header validation failed: {header_error}")
            return ParseResult.file_failure(
                header_error,
                detail="Headers",
                line_number=1,
                raw_line=lines[0] if lines else "",
                skipped_count=len(lines),
            )

        transactions: list[ClassifiedTransaction] = []
        errors: list[RowError] = []
        skipped = 0
        data_rows = rows[1:]

        for idx, fields in enumerate(data_rows):
            line_number = idx + 2  # +2 for header and 1-indexing
            raw_line = lines[idx + 1] if idx + 1 < len(lines) else ",".join(fields)

            if line_number in raw.malformed:
                errors.append(
                    RowError(
                        line_number=line_number,
                        message=raw.malformed[line_number],
                        raw_line=raw_line,
                        error_type=ParseErrorType.INVALID_DATA_FORMAT,
                        detail="Row",
                    )
                )
                skipped += 1
                continue

            if not fields:
                skipped += 1
                continue

            try:
                txn = self._parse_row(fields, line_number, raw_line)
            except RowValidationError as e:
                errors.append(
                    RowError(
                        line_number=line_number,
                        message=str(e),
                        raw_line=raw_line,
                        error_type=e.error_type,
                        detail=e.field_name,
                    )
                )
                skipped += 1
                continue

            classification = classify_transaction(txn)
            if classification.error is not None:
                errors.append(classification.error)
                skipped += 1
                continue

            transactions.append(attach_tag(txn, classification.tag))  # type: ignore[arg-type]

        logger.info(
            f"Parsed Tastytrade CSV: {len(transactions)} transactions, "
            f"{len(errors)} errors, {skipped} skipped"
        )
        return ParseResult(
            transactions=transactions,
            errors=errors,
            total_rows=len(data_rows),
            processed_count=len(transactions),
            skipped_count=skipped,
        )

    def _parse_row(self, fields: list[str], line_number: int, raw_line: str) -> TastytradeTransaction:
        """Parse a single Tastytrade CSV row into TastytradeTransaction."""
        if len(fields) < 2:
            raise RowValidationError(
                f"Expected {len(TASTYTRADE_HEADERS)} fields, found {len(fields)}",
                ParseErrorType.MISSING_REQUIRED_FIELD,
                "All fields",
            )
        if len(fields) > len(TASTYTRADE_HEADERS):
            raise RowValidationError(
                f"Expected {len(TASTYTRADE_HEADERS)} fields, found {len(fields)}",
                ParseErrorType.INVALID_DATA_FORMAT,
                "All fields",
            )

        padded = fields + [""] * (len(TASTYTRADE_HEADERS) - len(fields))
        try:
            csv_row = TastytradeCSVRow(**dict(zip(TASTYTRADE_HEADERS, padded)))
        except PydanticValidationError as e:
            raise RowValidationError(
                f"Invalid row data: {e}", ParseErrorType.VALIDATION_ERROR
            )

        return TastytradeTransaction(
            date=parse_tastytrade_date(csv_row.date),
            type=csv_row.type,
            sub_type=csv_row.sub_type,
            action=csv_row.action,
            symbol=_none_if_blank(csv_row.symbol),
            instrument_type=_none_if_blank(csv_row.instrument_type),
            description=csv_row.description,
            value=parse_decimal(csv_row.value, "Value"),
            quantity=parse_decimal(csv_row.quantity, "Quantity"),
            average_price=parse_optional_decimal(csv_row.average_price, "Average Price"),
            commissions=parse_decimal(csv_row.commissions, "Commissions"),
            fees=parse_decimal(csv_row.fees, "Fees"),
            multiplier=parse_optional_decimal(csv_row.multiplier, "Multiplier"),
            root_symbol=_none_if_blank(csv_row.root_symbol),
            underlying_symbol=_none_if_blank(csv_row.underlying_symbol),
            expiration_date=parse_expiration_date(csv_row.expiration_date),
            strike_price=parse_optional_decimal(csv_row.strike_price, "Strike Price"),
            call_or_put=_none_if_blank(csv_row.call_or_put),
            order_number=_none_if_blank(csv_row.order_number),
            currency=csv_row.currency or "USD",
            line_number=line_number,
            raw_line=raw_line,
        )
