"""IBKR statement converter.

Maps parsed activity statement data onto canonical ledger records:
stock trades become equity trades, option trades are expanded into
single-contract units, forex trades become Conversion movements and
Deposits & Withdrawals rows become cash movements. The Cash Report is
used only to cross-check converted deposits and withdrawals.
"""

import logging
from collections import defaultdict
from decimal import Decimal

from broker_ledger.lib.broker_mappings import IBKR_OPTION_CATEGORIES, IBKR_STOCK_CATEGORIES
from broker_ledger.lib.config import DEFAULT_OPTION_MULTIPLIER
from broker_ledger.lib.errors import InvalidOptionSymbolError, ParseErrorType, RowError
from broker_ledger.lib.ibkr_models import (
    IBKRCashFlowType,
    IBKRCashMovement,
    IBKRForexTrade,
    IBKRStatementData,
    IBKRTrade,
)
from broker_ledger.lib.option_symbols import parse_ibkr_option_symbol
from broker_ledger.lib.records import (
    CanonicalEquityTrade,
    CanonicalMovement,
    CanonicalOptionTrade,
    MovementType,
    OptionCode,
    OptionType,
    TradeCode,
    TradeType,
)
from broker_ledger.services.data_converter import ConversionError, ConversionResult
from broker_ledger.services.option_lot_service import expand_option_trade

logger = logging.getLogger(__name__)


def _codes(trade: IBKRTrade | IBKRForexTrade) -> set[str]:
    """IBKR trade codes are ';'-separated, e.g. "O;P" or "C;Ep"."""
    return {c.strip() for c in (trade.code or "").split(";") if c.strip()}


def equity_trade_code(trade: IBKRTrade) -> tuple[TradeCode, TradeType]:
    """
    Trade code from quantity sign plus the O (open) / C (close) flag.

    Without a flag, buys open and sells close. Buys are Long, sells Short.
    """
    codes = _codes(trade)
    if trade.quantity > 0:
        if "C" in codes:
            return TradeCode.BUY_TO_CLOSE, TradeType.LONG
        return TradeCode.BUY_TO_OPEN, TradeType.LONG
    if "O" in codes:
        return TradeCode.SELL_TO_OPEN, TradeType.SHORT
    return TradeCode.SELL_TO_CLOSE, TradeType.SHORT


def option_trade_code(trade: IBKRTrade) -> OptionCode:
    """Option code from quantity sign, O/C flags and A (assigned) / Ep (expired)."""
    codes = _codes(trade)
    if "A" in codes or "Ex" in codes:
        return OptionCode.ASSIGNED
    if "Ep" in codes:
        return OptionCode.EXPIRED
    if trade.quantity > 0:
        return OptionCode.BUY_TO_CLOSE if "C" in codes else OptionCode.BUY_TO_OPEN
    return OptionCode.SELL_TO_OPEN if "O" in codes else OptionCode.SELL_TO_CLOSE


class IBKRConverter:
    """Convert one parsed IBKR statement for one broker account."""

    def __init__(self, account_id: str):
        self.account_id = account_id

    def convert(self, data: IBKRStatementData) -> ConversionResult:
        """
        Convert trades, forex trades and cash movements in chronological order.

        Args:
            data: Parsed statement sections

        Returns:
            ConversionResult; row failures are RowErrors, unsupported
            cash movements and reconciliation differences are warnings
        """
        result = ConversionResult()
        multipliers = {
            i.symbol: i.multiplier for i in data.instruments if i.multiplier is not None
        }

        rows: list[IBKRTrade | IBKRForexTrade | IBKRCashMovement] = [
            *data.trades,
            *data.forex_trades,
            *data.cash_movements,
        ]
        rows.sort(key=lambda r: (_row_time(r), r.line_number))

        converted = 0
        for row in rows:
            try:
                if isinstance(row, IBKRForexTrade):
                    result.records.movements.append(self.to_conversion(row))
                elif isinstance(row, IBKRTrade):
                    self._convert_trade(row, multipliers, result)
                else:
                    movement = self.to_cash_movement(row)
                    if movement is None:
                        result.warnings.append(
                            f"Line {row.line_number}: {row.movement_type.value} '{row.description}' "
                            f"is not a cash movement; skipped"
                        )
                        continue
                    result.records.movements.append(movement)
                converted += 1
            except ConversionError as e:
                result.errors.append(
                    RowError(
                        line_number=row.line_number,
                        message=str(e),
                        raw_line=row.raw_line,
                        error_type=e.error_type,
                        detail=e.field_name,
                    )
                )

        result.warnings.extend(self.reconcile_cash_report(data, result))
        result.converted_rows = converted
        logger.info(
            f"Converted {converted} IBKR row(s): {len(result.records.equity_trades)} equity trades, "
            f"{len(result.records.option_trades)} option units, {len(result.records.movements)} movements"
        )
        return result

    def _convert_trade(
        self, trade: IBKRTrade, multipliers: dict[str, Decimal], result: ConversionResult
    ) -> None:
        if trade.asset_category in IBKR_STOCK_CATEGORIES:
            result.records.equity_trades.append(self.to_equity_trade(trade))
        elif trade.asset_category in IBKR_OPTION_CATEGORIES:
            multiplier = multipliers.get(trade.symbol, DEFAULT_OPTION_MULTIPLIER)
            result.records.option_trades.extend(
                expand_option_trade(self.to_option_trade(trade, multiplier))
            )
        else:
            raise ConversionError(
                f"Unsupported asset category '{trade.asset_category}'",
                ParseErrorType.INVALID_DATA_FORMAT,
                "Asset Category",
            )

    def to_equity_trade(self, trade: IBKRTrade) -> CanonicalEquityTrade:
        """Stock trade; price is the trade price or |proceeds| / quantity."""
        quantity = abs(trade.quantity)
        if quantity == 0:
            raise ConversionError(
                f"Trade for {trade.symbol} has zero quantity",
                ParseErrorType.INVALID_NUMERIC_VALUE,
                "Quantity",
            )
        price = abs(trade.trade_price) if trade.trade_price is not None else abs(trade.proceeds) / quantity
        code, trade_type = equity_trade_code(trade)
        return CanonicalEquityTrade(
            timestamp=trade.date_time,
            ticker=trade.symbol,
            currency=trade.currency,
            account_id=self.account_id,
            quantity=quantity,
            price=price,
            code=code,
            trade_type=trade_type,
            commissions=abs(trade.commission),
            notes=trade.code,
            source_line=trade.line_number,
        )

    def to_option_trade(self, trade: IBKRTrade, multiplier: Decimal) -> CanonicalOptionTrade:
        """Option trade for all contracts of the row; expand before matching."""
        try:
            parsed = parse_ibkr_option_symbol(trade.symbol)
        except InvalidOptionSymbolError as e:
            raise ConversionError(e.message, ParseErrorType.INVALID_DATA_FORMAT, "Symbol")

        contracts = abs(trade.quantity)
        if contracts != contracts.to_integral_value() or contracts < 1:
            raise ConversionError(
                f"Option quantity must be a whole number of contracts, got {trade.quantity}",
                ParseErrorType.INVALID_NUMERIC_VALUE,
                "Quantity",
            )

        commissions = abs(trade.commission)
        return CanonicalOptionTrade(
            timestamp=trade.date_time,
            ticker=parsed.ticker,
            currency=trade.currency,
            account_id=self.account_id,
            option_type=OptionType.from_broker(parsed.option_type),
            code=option_trade_code(trade),
            strike=parsed.strike,
            expiration=parsed.expiration,
            premium=abs(trade.proceeds),
            net_premium=trade.proceeds - commissions,
            multiplier=multiplier,
            quantity=int(contracts),
            commissions=commissions,
            notes=trade.code,
            source_line=trade.line_number,
        )

    def to_conversion(self, trade: IBKRForexTrade) -> CanonicalMovement:
        """
        Currency conversion movement.

        Buying the base currency (positive quantity) credits the base and
        debits the quote; selling does the reverse.
        """
        if trade.quantity > 0:
            currency, amount = trade.base_currency, abs(trade.quantity)
            from_currency, amount_changed = trade.quote_currency, abs(trade.proceeds)
        else:
            currency, amount = trade.quote_currency, abs(trade.proceeds)
            from_currency, amount_changed = trade.base_currency, abs(trade.quantity)

        return CanonicalMovement(
            timestamp=trade.date_time,
            currency=currency,
            account_id=self.account_id,
            amount=amount,
            movement_type=MovementType.CONVERSION,
            commissions=abs(trade.commission),
            from_currency=from_currency,
            amount_changed=amount_changed,
            notes=f"{trade.currency_pair} @ {trade.trade_price}",
            source_line=trade.line_number,
        )

    def to_cash_movement(self, movement: IBKRCashMovement) -> CanonicalMovement | None:
        """Deposits & Withdrawals row; trade settlements return None."""
        flow = movement.movement_type
        amount = abs(movement.amount)
        fees = Decimal("0")

        if flow == IBKRCashFlowType.DEPOSIT:
            movement_type = MovementType.DEPOSIT
        elif flow == IBKRCashFlowType.WITHDRAWAL:
            movement_type = MovementType.WITHDRAWAL
        elif flow == IBKRCashFlowType.COMMISSION:
            # Commission adjustment: negative is a charge, positive a refund
            movement_type = MovementType.FEE
            amount = Decimal("0")
            fees = -movement.amount
        else:
            return None

        return CanonicalMovement(
            timestamp=movement.settle_date,
            currency=movement.currency,
            account_id=self.account_id,
            amount=amount,
            movement_type=movement_type,
            fees=fees,
            notes=movement.description or None,
            source_line=movement.line_number,
        )

    @staticmethod
    def reconcile_cash_report(data: IBKRStatementData, result: ConversionResult) -> list[str]:
        """Compare Cash Report deposit/withdrawal totals with converted movements."""
        reported: dict[tuple[str, IBKRCashFlowType], Decimal] = defaultdict(Decimal)
        for flow in data.cash_flows:
            if flow.flow_type in (IBKRCashFlowType.DEPOSIT, IBKRCashFlowType.WITHDRAWAL):
                reported[(flow.currency, flow.flow_type)] += abs(flow.amount)

        converted: dict[tuple[str, IBKRCashFlowType], Decimal] = defaultdict(Decimal)
        for m in result.records.movements:
            if m.movement_type == MovementType.DEPOSIT:
                converted[(m.currency, IBKRCashFlowType.DEPOSIT)] += m.amount
            elif m.movement_type == MovementType.WITHDRAWAL:
                converted[(m.currency, IBKRCashFlowType.WITHDRAWAL)] += m.amount

        warnings = []
        for (currency, flow_type), total in sorted(reported.items()):
            found = converted.get((currency, flow_type), Decimal("0"))
            if found != total:
                warnings.append(
                    f"Cash Report {flow_type.value} total {total} {currency} differs from "
                    f"imported {found} {currency}"
                )
        return warnings


def _row_time(row: IBKRTrade | IBKRForexTrade | IBKRCashMovement):
    if isinstance(row, IBKRCashMovement):
        return row.settle_date
    return row.date_time
