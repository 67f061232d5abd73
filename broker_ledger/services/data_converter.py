"""Tastytrade transaction converter.

Turns classified Tastytrade rows into canonical ledger records. Conversion is
pure: tickers, currencies and the account are plain strings here and get
resolved against the database by the import orchestrator.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from broker_ledger.lib.broker_mappings import (
    EQUITY_CODE_MAPPING,
    MOVEMENT_TYPE_MAPPING,
    OPTION_CODE_MAPPING,
    RECEIVE_DELIVER_OPTION_CODES,
)
from broker_ledger.lib.config import DEFAULT_OPTION_MULTIPLIER
from broker_ledger.lib.csv_models import (
    ClassifiedTransaction,
    MoneyMovementSubType,
    TradeSubType,
)
from broker_ledger.lib.errors import InvalidOptionSymbolError, ParseErrorType, RowError
from broker_ledger.lib.option_symbols import is_option_symbol, parse_option_symbol
from broker_ledger.lib.records import (
    CanonicalDividend,
    CanonicalDividendTax,
    CanonicalEquityTrade,
    CanonicalMovement,
    CanonicalOptionTrade,
    ConvertedRecords,
    MovementType,
    OptionCode,
    OptionType,
    normalize_timestamp,
)
from broker_ledger.services.adjustment_detector import (
    DetectedAdjustment,
    apply_adjustments,
    detect_adjustments,
)
from broker_ledger.services.option_lot_service import expand_option_trade
from broker_ledger.services.strategy_detector import (
    DetectedStrategy,
    detect_strategies,
    validate_strategy,
)

logger = logging.getLogger(__name__)


class ConversionError(Exception):
    """Row-scoped conversion failure."""

    def __init__(self, message: str, error_type: ParseErrorType, field_name: str | None = None):
        self.error_type = error_type
        self.field_name = field_name
        super().__init__(message)


@dataclass
class ConversionResult:
    """Records produced from one batch of classified rows."""

    records: ConvertedRecords = field(default_factory=ConvertedRecords)
    errors: list[RowError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    adjustments: list[DetectedAdjustment] = field(default_factory=list)
    strategies: list[DetectedStrategy] = field(default_factory=list)
    converted_rows: int = 0


def _missing(field_name: str, txn: ClassifiedTransaction) -> ConversionError:
    return ConversionError(
        f"Missing required field '{field_name}' for {txn.tag} on line {txn.line_number}",
        ParseErrorType.MISSING_REQUIRED_FIELD,
        field_name,
    )


def _sub_type_from_action(action: str) -> TradeSubType | None:
    """BUY_TO_OPEN -> TradeSubType.BUY_TO_OPEN, used for Receive Deliver rows."""
    normalized = action.strip().replace("_", " ").lower()
    for sub_type in TradeSubType:
        if sub_type.value.lower() == normalized:
            return sub_type
    return None


class TastytradeConverter:
    """Convert classified Tastytrade rows for one broker account.

    Rows are processed in chronological order (file order breaks ties).
    Special dividend legs are consumed by adjustment detection and never
    become trades; an unpaired leg is reported as a warning.
    """

    def __init__(self, account_id: str):
        self.account_id = account_id

    def convert(self, transactions: list[ClassifiedTransaction]) -> ConversionResult:
        """
        Convert a file's classified transactions.

        Args:
            transactions: Output of TastytradeCSVParser, any order

        Returns:
            ConversionResult with expanded option units, equity trades,
            movements, dividends, detected adjustments and strategies
        """
        result = ConversionResult()
        ordered = sorted(transactions, key=lambda t: (normalize_timestamp(t.date), t.line_number))

        detection = detect_adjustments(ordered)
        result.adjustments = detection.adjustments
        consumed = detection.consumed_lines
        for txn in detection.unmatched:
            result.warnings.append(
                f"Line {txn.line_number}: special dividend on {txn.ticker_symbol} has no matching "
                f"adjustment leg; recorded as an anomaly, not converted"
            )

        result.strategies = detect_strategies(ordered)
        for strategy in result.strategies:
            result.warnings.extend(validate_strategy(strategy))

        converted = 0
        for txn in ordered:
            if txn.line_number in consumed or txn.tag.is_special_dividend:
                continue
            try:
                self._convert_one(txn, result.records)
                converted += 1
            except ConversionError as e:
                logger.debug(f"Conversion failed on line {txn.line_number}: {e}")
                result.errors.append(
                    RowError(
                        line_number=txn.line_number,
                        message=str(e),
                        raw_line=txn.raw_line,
                        error_type=e.error_type,
                        detail=e.field_name,
                    )
                )

        if result.adjustments:
            apply_adjustments(result.records.option_trades, result.adjustments)

        result.converted_rows = converted
        logger.info(
            f"Converted {converted} Tastytrade row(s): {len(result.records.option_trades)} option units, "
            f"{len(result.records.equity_trades)} equity trades, {len(result.records.movements)} movements, "
            f"{len(result.records.dividends) + len(result.records.dividend_taxes)} dividend records"
        )
        return result

    def _convert_one(self, txn: ClassifiedTransaction, records: ConvertedRecords) -> None:
        tag = txn.tag
        if tag.is_trade:
            if txn.is_option:
                records.option_trades.extend(expand_option_trade(self.to_option_trade(txn)))
            elif txn.is_equity:
                records.equity_trades.append(self.to_equity_trade(txn, tag.trade_sub_type))
            else:
                raise ConversionError(
                    f"Unsupported instrument type '{txn.instrument_type}' for trade on line {txn.line_number}",
                    ParseErrorType.INVALID_DATA_FORMAT,
                    "Instrument Type",
                )
            return

        if tag.is_money_movement:
            self._convert_money_movement(txn, records)
            return

        self._convert_receive_deliver(txn, records)

    def to_option_trade(
        self, txn: ClassifiedTransaction, code: OptionCode | None = None
    ) -> CanonicalOptionTrade:
        """
        Build an unexpanded option trade (quantity = contracts).

        Strike, expiration and right come from their own columns, falling
        back to the OCC symbol when a column is blank.
        """
        if code is None:
            sub_type = txn.tag.trade_sub_type
            code = OPTION_CODE_MAPPING.get(sub_type) if sub_type else None  # type: ignore[arg-type]
            if code is None:
                raise ConversionError(
                    f"No option code for {txn.tag} on line {txn.line_number}",
                    ParseErrorType.INVALID_TRANSACTION_TYPE,
                    "Sub Type",
                )

        ticker = txn.ticker_symbol
        strike = txn.strike_price
        expiration = txn.expiration_date
        right = txn.call_or_put

        if (strike is None or expiration is None or not right) and is_option_symbol(txn.symbol):
            try:
                parsed = parse_option_symbol(txn.symbol)  # type: ignore[arg-type]
            except InvalidOptionSymbolError as e:
                raise ConversionError(e.message, ParseErrorType.INVALID_DATA_FORMAT, "Symbol")
            ticker = ticker or parsed.ticker
            strike = strike if strike is not None else parsed.strike
            expiration = expiration or parsed.expiration
            right = right or parsed.option_type

        if not ticker:
            raise _missing("Root Symbol", txn)
        if strike is None:
            raise _missing("Strike Price", txn)
        if expiration is None:
            raise _missing("Expiration Date", txn)
        if not right:
            raise _missing("Call or Put", txn)

        try:
            option_type = OptionType.from_broker(right)
        except ValueError as e:
            raise ConversionError(str(e), ParseErrorType.INVALID_DATA_FORMAT, "Call or Put")

        contracts = abs(txn.quantity)
        if contracts != contracts.to_integral_value() or contracts < 1:
            raise ConversionError(
                f"Option quantity must be a whole number of contracts, got {txn.quantity}",
                ParseErrorType.INVALID_NUMERIC_VALUE,
                "Quantity",
            )

        commissions = abs(txn.commissions)
        fees = abs(txn.fees)
        return CanonicalOptionTrade(
            timestamp=normalize_timestamp(txn.date),
            ticker=ticker,
            currency=txn.currency,
            account_id=self.account_id,
            option_type=option_type,
            code=code,
            strike=strike,
            expiration=expiration,
            premium=abs(txn.value),
            net_premium=txn.value - commissions - fees,
            multiplier=txn.multiplier or DEFAULT_OPTION_MULTIPLIER,
            quantity=int(contracts),
            commissions=commissions,
            fees=fees,
            notes=txn.description or None,
            source_line=txn.line_number,
        )

    def to_equity_trade(self, txn: ClassifiedTransaction, sub_type: TradeSubType | None) -> CanonicalEquityTrade:
        """Build an equity trade; price is the average price or |value| / quantity."""
        mapping = EQUITY_CODE_MAPPING.get(sub_type) if sub_type else None  # type: ignore[arg-type]
        if mapping is None:
            raise ConversionError(
                f"No trade code for {txn.tag} on line {txn.line_number}",
                ParseErrorType.INVALID_TRANSACTION_TYPE,
                "Sub Type",
            )
        ticker = txn.symbol or txn.underlying_symbol
        if not ticker:
            raise _missing("Symbol", txn)

        quantity = abs(txn.quantity)
        if quantity == 0:
            raise ConversionError(
                f"Equity trade on line {txn.line_number} has zero quantity",
                ParseErrorType.INVALID_NUMERIC_VALUE,
                "Quantity",
            )
        if txn.average_price is not None:
            price = abs(txn.average_price)
        else:
            price = abs(txn.value) / quantity

        code, trade_type = mapping
        return CanonicalEquityTrade(
            timestamp=normalize_timestamp(txn.date),
            ticker=ticker,
            currency=txn.currency,
            account_id=self.account_id,
            quantity=quantity,
            price=price,
            code=code,
            trade_type=trade_type,
            commissions=abs(txn.commissions),
            fees=abs(txn.fees),
            notes=txn.description or None,
            source_line=txn.line_number,
        )

    def _convert_money_movement(self, txn: ClassifiedTransaction, records: ConvertedRecords) -> None:
        sub_type = txn.tag.movement_sub_type
        timestamp = normalize_timestamp(txn.date)

        if sub_type == MoneyMovementSubType.DIVIDEND:
            ticker = txn.symbol or txn.underlying_symbol
            if not ticker:
                raise _missing("Symbol", txn)
            if txn.value >= 0:
                records.dividends.append(
                    CanonicalDividend(
                        timestamp=timestamp,
                        ticker=ticker,
                        currency=txn.currency,
                        account_id=self.account_id,
                        amount=txn.value,
                        source_line=txn.line_number,
                    )
                )
            else:
                records.dividend_taxes.append(
                    CanonicalDividendTax(
                        timestamp=timestamp,
                        ticker=ticker,
                        currency=txn.currency,
                        account_id=self.account_id,
                        amount=abs(txn.value),
                        source_line=txn.line_number,
                    )
                )
            return

        if sub_type == MoneyMovementSubType.TRANSFER:
            movement_type = MovementType.DEPOSIT if txn.value >= 0 else MovementType.WITHDRAWAL
        else:
            movement_type = MOVEMENT_TYPE_MAPPING.get(sub_type)  # type: ignore[arg-type]
            if movement_type is None:
                raise ConversionError(
                    f"No movement type for {txn.tag} on line {txn.line_number}",
                    ParseErrorType.INVALID_TRANSACTION_TYPE,
                    "Sub Type",
                )

        if sub_type == MoneyMovementSubType.BALANCE_ADJUSTMENT:
            # Regulatory fee: a negative value is a fee paid, a positive one a refund
            amount = Decimal("0")
            fees = -txn.value
        else:
            amount = abs(txn.value)
            fees = abs(txn.fees)

        records.movements.append(
            CanonicalMovement(
                timestamp=timestamp,
                currency=txn.currency,
                account_id=self.account_id,
                amount=amount,
                movement_type=movement_type,
                commissions=abs(txn.commissions),
                fees=fees,
                notes=txn.description or None,
                source_line=txn.line_number,
            )
        )

    def _convert_receive_deliver(self, txn: ClassifiedTransaction, records: ConvertedRecords) -> None:
        sub_type = txn.tag.receive_deliver_sub_type or ""

        if txn.tag.is_acat:
            records.movements.append(self.to_acat_movement(txn))
            return

        if txn.is_option:
            code = RECEIVE_DELIVER_OPTION_CODES.get(sub_type)
            if code is None:
                raise ConversionError(
                    f"Unsupported option Receive Deliver sub type '{sub_type}' on line {txn.line_number}",
                    ParseErrorType.INVALID_TRANSACTION_TYPE,
                    "Sub Type",
                )
            records.option_trades.extend(expand_option_trade(self.to_option_trade(txn, code)))
            return

        if txn.is_equity:
            # Shares delivered by an assignment or exercise carry a trade action
            trade_sub_type = _sub_type_from_action(txn.action)
            if trade_sub_type is None:
                raise ConversionError(
                    f"Cannot map Receive Deliver '{sub_type}' action '{txn.action}' on line {txn.line_number}",
                    ParseErrorType.INVALID_TRANSACTION_TYPE,
                    "Action",
                )
            records.equity_trades.append(self.to_equity_trade(txn, trade_sub_type))
            return

        raise ConversionError(
            f"Unsupported Receive Deliver sub type '{sub_type}' on line {txn.line_number}",
            ParseErrorType.INVALID_TRANSACTION_TYPE,
            "Sub Type",
        )

    def to_acat_movement(self, txn: ClassifiedTransaction) -> CanonicalMovement:
        """
        ACAT transfer: securities when a symbol is present, cash otherwise.

        Direction comes from the sign of quantity (securities) or value (cash);
        a negative sign means the transfer was sent out of the account.
        """
        timestamp = normalize_timestamp(txn.date)
        if txn.symbol:
            sent = txn.quantity < 0 or "SELL" in txn.action.upper()
            movement_type = (
                MovementType.ACAT_SECURITIES_TRANSFER_SENT
                if sent
                else MovementType.ACAT_SECURITIES_TRANSFER_RECEIVED
            )
            return CanonicalMovement(
                timestamp=timestamp,
                currency=txn.currency,
                account_id=self.account_id,
                amount=abs(txn.value),
                movement_type=movement_type,
                ticker=txn.symbol,
                quantity=abs(txn.quantity),
                notes=txn.description or None,
                source_line=txn.line_number,
            )

        movement_type = (
            MovementType.ACAT_MONEY_TRANSFER_SENT
            if txn.value < 0
            else MovementType.ACAT_MONEY_TRANSFER_RECEIVED
        )
        return CanonicalMovement(
            timestamp=timestamp,
            currency=txn.currency,
            account_id=self.account_id,
            amount=abs(txn.value),
            movement_type=movement_type,
            notes=txn.description or None,
            source_line=txn.line_number,
        )
