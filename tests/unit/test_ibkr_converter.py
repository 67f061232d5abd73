"""Unit tests for the IBKR statement converter."""

from datetime import date, datetime
from decimal import Decimal

import pytest

from broker_ledger.lib.errors import ParseErrorType
from broker_ledger.lib.ibkr_models import (
    IBKRCashFlow,
    IBKRCashFlowType,
    IBKRCashMovement,
    IBKRInstrument,
    IBKRStatementData,
    IBKRTrade,
)
from broker_ledger.lib.records import MovementType, OptionCode, OptionType, TradeCode, TradeType
from broker_ledger.services.ibkr_converter import (
    IBKRConverter,
    equity_trade_code,
    option_trade_code,
)
from broker_ledger.services.ibkr_parser import IBKRStatementParser


def trade(quantity: str, code: str | None = None, **overrides) -> IBKRTrade:
    fields = {
        "asset_category": "Stocks",
        "currency": "USD",
        "symbol": "AAPL",
        "date_time": datetime(2025, 10, 1, 9, 30),
        "quantity": Decimal(quantity),
        "trade_price": Decimal("170"),
        "proceeds": Decimal("-1700"),
        "commission": Decimal("-1"),
        "code": code,
        "line_number": 7,
    }
    fields.update(overrides)
    return IBKRTrade(**fields)


def cash(amount: str, flow: IBKRCashFlowType, description: str = "", line: int = 12) -> IBKRCashMovement:
    return IBKRCashMovement(
        currency="USD",
        settle_date=datetime(2025, 9, 30),
        description=description,
        amount=Decimal(amount),
        movement_type=flow,
        line_number=line,
    )


@pytest.fixture
def converter():
    """Provide a converter bound to a test account."""
    return IBKRConverter("acct-1")


@pytest.mark.unit
class TestTradeCodes:
    """Test suite for IBKR trade code mapping."""

    @pytest.mark.parametrize(
        "quantity,code,expected",
        [
            ("10", "O", (TradeCode.BUY_TO_OPEN, TradeType.LONG)),
            ("10", None, (TradeCode.BUY_TO_OPEN, TradeType.LONG)),
            ("10", "C", (TradeCode.BUY_TO_CLOSE, TradeType.LONG)),
            ("-10", "C", (TradeCode.SELL_TO_CLOSE, TradeType.SHORT)),
            ("-10", None, (TradeCode.SELL_TO_CLOSE, TradeType.SHORT)),
            ("-10", "O", (TradeCode.SELL_TO_OPEN, TradeType.SHORT)),
        ],
    )
    def test_equity_trade_code(self, quantity, code, expected):
        """Quantity sign plus the O/C flag decides the code."""
        assert equity_trade_code(trade(quantity, code)) == expected

    @pytest.mark.parametrize(
        "quantity,code,expected",
        [
            ("-2", "O", OptionCode.SELL_TO_OPEN),
            ("2", "C", OptionCode.BUY_TO_CLOSE),
            ("2", "O", OptionCode.BUY_TO_OPEN),
            ("-2", "C", OptionCode.SELL_TO_CLOSE),
            ("2", "C;Ep", OptionCode.EXPIRED),
            ("2", "A;C", OptionCode.ASSIGNED),
            ("-1", "C;Ex", OptionCode.ASSIGNED),
        ],
    )
    def test_option_trade_code(self, quantity, code, expected):
        """Assignment and expiry flags win over the open/close flags."""
        assert option_trade_code(trade(quantity, code)) == expected


@pytest.mark.unit
class TestIBKRConverter:
    """Test suite for IBKRConverter."""

    def test_sample_statement(self, converter, csv_dir):
        """tests/fixtures/csv/ibkr_sample.csv converts without errors or reconciliation warnings."""
        parse_result = IBKRStatementParser().parse_file(csv_dir / "ibkr_sample.csv")

        result = converter.convert(parse_result.data)

        assert result.errors == []
        assert result.warnings == []
        assert len(result.records.equity_trades) == 1
        assert len(result.records.option_trades) == 4
        assert len(result.records.movements) == 3
        assert result.converted_rows == 6

    def test_sample_option_units(self, converter, csv_dir):
        """Option rows expand per contract with the instrument multiplier."""
        parse_result = IBKRStatementParser().parse_file(csv_dir / "ibkr_sample.csv")

        units = converter.convert(parse_result.data).records.option_trades

        assert [u.code for u in units] == [OptionCode.SELL_TO_OPEN] * 2 + [OptionCode.BUY_TO_CLOSE] * 2
        opening = units[0]
        assert opening.ticker == "AAPL"
        assert opening.option_type == OptionType.CALL
        assert opening.strike == Decimal("150")
        assert opening.expiration == date(2025, 10, 17)
        assert opening.multiplier == Decimal("100")
        assert opening.net_premium == Decimal("348.95")
        assert units[2].net_premium == Decimal("-121.05")

    def test_equity_trade(self, converter):
        """Stock rows keep the trade price and absolute commission."""
        data = IBKRStatementData(trades=[trade("10", "O")])

        equity = converter.convert(data).records.equity_trades[0]

        assert equity.ticker == "AAPL"
        assert equity.quantity == Decimal("10")
        assert equity.price == Decimal("170")
        assert equity.commissions == Decimal("1")
        assert equity.code == TradeCode.BUY_TO_OPEN
        assert equity.source_line == 7

    def test_price_falls_back_to_proceeds(self, converter):
        """Without a trade price, price is |proceeds| / quantity."""
        data = IBKRStatementData(trades=[trade("-4", "C", trade_price=None, proceeds=Decimal("700"))])

        equity = converter.convert(data).records.equity_trades[0]

        assert equity.price == Decimal("175")

    def test_default_option_multiplier(self, converter):
        """Options without instrument information use a multiplier of 100."""
        data = IBKRStatementData(
            trades=[
                trade(
                    "-1",
                    "O",
                    asset_category="Equity and Index Options",
                    symbol="MSFT 21NOV25 400 P",
                    proceeds=Decimal("250"),
                )
            ]
        )

        unit = converter.convert(data).records.option_trades[0]

        assert unit.multiplier == Decimal("100")
        assert unit.option_type == OptionType.PUT

    def test_instrument_multiplier(self, converter):
        """A mini option keeps its multiplier of 10."""
        symbol = "MSFT 21NOV25 400 P"
        data = IBKRStatementData(
            trades=[trade("-1", "O", asset_category="OPT", symbol=symbol, proceeds=Decimal("25"))],
            instruments=[
                IBKRInstrument(
                    asset_category="OPT", symbol=symbol, multiplier=Decimal("10"), line_number=20
                )
            ],
        )

        assert converter.convert(data).records.option_trades[0].multiplier == Decimal("10")

    def test_bad_option_symbol_is_row_error(self, converter):
        """An unparseable option symbol fails only its row."""
        data = IBKRStatementData(
            trades=[
                trade("-1", "O", asset_category="OPT", symbol="NOT AN OPTION", line_number=9),
                trade("10", "O"),
            ]
        )

        result = converter.convert(data)

        assert len(result.errors) == 1
        assert result.errors[0].line_number == 9
        assert result.errors[0].error_type == ParseErrorType.INVALID_DATA_FORMAT
        assert len(result.records.equity_trades) == 1

    def test_forex_conversion(self, converter, csv_dir):
        """Buying EUR.USD credits EUR and records the USD spent."""
        parse_result = IBKRStatementParser().parse_file(csv_dir / "ibkr_sample.csv")

        movements = converter.convert(parse_result.data).records.movements
        conversion = next(m for m in movements if m.movement_type == MovementType.CONVERSION)

        assert conversion.currency == "EUR"
        assert conversion.amount == Decimal("1000")
        assert conversion.from_currency == "USD"
        assert conversion.amount_changed == Decimal("1085.00")
        assert conversion.commissions == Decimal("2.00")

    def test_cash_movements(self, converter):
        """Deposits and withdrawals keep their absolute amount; commissions become fees."""
        data = IBKRStatementData(
            cash_movements=[
                cash("5000", IBKRCashFlowType.DEPOSIT, "Electronic Fund Transfer", line=12),
                cash("-500", IBKRCashFlowType.WITHDRAWAL, "Disbursement Initiated by Withdrawal", line=13),
                cash("-1.50", IBKRCashFlowType.COMMISSION, "Commission Adjustment", line=14),
            ]
        )

        movements = converter.convert(data).records.movements

        assert [m.movement_type for m in movements] == [
            MovementType.DEPOSIT,
            MovementType.WITHDRAWAL,
            MovementType.FEE,
        ]
        assert movements[1].amount == Decimal("500")
        assert movements[2].amount == Decimal("0")
        assert movements[2].fees == Decimal("1.50")

    def test_trade_settlement_is_skipped_with_warning(self, converter):
        """Settlement rows are not cash movements."""
        data = IBKRStatementData(cash_movements=[cash("-1700", IBKRCashFlowType.TRADE_SETTLEMENT, "Settle")])

        result = converter.convert(data)

        assert result.records.movements == []
        assert result.converted_rows == 0
        assert "is not a cash movement" in result.warnings[0]

    def test_cash_report_mismatch_warns(self, converter):
        """Cash Report totals that disagree with imported movements are reported."""
        data = IBKRStatementData(
            cash_movements=[cash("5000", IBKRCashFlowType.DEPOSIT, "Electronic Fund Transfer")],
            cash_flows=[
                IBKRCashFlow(
                    flow_type=IBKRCashFlowType.DEPOSIT,
                    currency="USD",
                    amount=Decimal("6000"),
                    description="Deposits",
                    line_number=30,
                )
            ],
        )

        warnings = converter.convert(data).warnings

        assert len(warnings) == 1
        assert "Cash Report Deposit total 6000 USD differs from imported 5000 USD" in warnings[0]
