"""Unit tests for financial snapshot aggregation."""

from datetime import date, datetime
from decimal import Decimal

import pytest

from broker_ledger.lib.records import (
    CanonicalDividend,
    CanonicalDividendTax,
    CanonicalEquityTrade,
    CanonicalMovement,
    ConvertedRecords,
    MovementType,
    OptionCode,
    OptionType,
    TradeCode,
    TradeType,
)
from broker_ledger.services.option_lot_service import match_fifo
from broker_ledger.services.snapshot_service import (
    SnapshotAggregator,
    SnapshotState,
    latest_snapshots,
)

ACCOUNT = "acct-1"


def movement(day: int, kind: MovementType, amount: str, currency: str = "USD", **extra) -> CanonicalMovement:
    return CanonicalMovement(
        timestamp=datetime(2024, 7, day, 9, 0),
        currency=currency,
        account_id=ACCOUNT,
        amount=Decimal(amount),
        movement_type=kind,
        **extra,
    )


def equity(day: int, code: TradeCode, quantity: str, price: str, ticker: str = "AAPL") -> CanonicalEquityTrade:
    return CanonicalEquityTrade(
        timestamp=datetime(2024, 7, day, 15, 0),
        ticker=ticker,
        currency="USD",
        account_id=ACCOUNT,
        quantity=Decimal(quantity),
        price=Decimal(price),
        code=code,
        trade_type=TradeType.LONG if code == TradeCode.BUY_TO_OPEN else TradeType.SHORT,
        commissions=Decimal("1.00"),
    )


@pytest.mark.unit
class TestSnapshotState:
    """Test suite for SnapshotState."""

    def test_net_cash_flow_is_derived(self):
        """Net cash flow is deposited minus withdrawn."""
        state = SnapshotState(
            account_id=ACCOUNT,
            currency="USD",
            date=date(2024, 7, 1),
            deposited=Decimal("5000"),
            withdrawn=Decimal("1250.50"),
        )

        assert state.net_cash_flow == Decimal("3749.50")

    def test_latest_snapshots_picks_highest_counter(self):
        """The movement counter decides, not the snapshot date."""
        day = date(2024, 7, 1)
        low = SnapshotState(ACCOUNT, "USD", day, movement_counter=3)
        high = SnapshotState(ACCOUNT, "USD", date(2024, 6, 30), movement_counter=9)
        eur = SnapshotState(ACCOUNT, "EUR", day, movement_counter=1)

        latest = latest_snapshots([low, high, eur])

        assert latest[(ACCOUNT, "USD")] is high
        assert latest[(ACCOUNT, "EUR")] is eur


@pytest.mark.unit
class TestSnapshotAggregator:
    """Test suite for SnapshotAggregator."""

    def test_cash_movements(self):
        """Deposits, withdrawals, interest and fees accumulate per date."""
        records = ConvertedRecords(
            movements=[
                movement(1, MovementType.DEPOSIT, "5000"),
                movement(1, MovementType.WITHDRAWAL, "500"),
                movement(2, MovementType.INTERESTS_GAINED, "0.15"),
                movement(2, MovementType.FEE, "0", fees=Decimal("0.02")),
            ]
        )

        snapshots = SnapshotAggregator().aggregate(records)

        assert [s.date for s in snapshots] == [date(2024, 7, 1), date(2024, 7, 2)]
        first, second = snapshots
        assert first.movement_counter == 2
        assert first.net_cash_flow == Decimal("4500")
        assert second.movement_counter == 4
        assert second.deposited == Decimal("5000")
        assert second.other_income == Decimal("0.15")
        assert second.fees == Decimal("0.02")

    def test_one_snapshot_per_currency(self):
        """Each currency keeps its own running totals."""
        records = ConvertedRecords(
            movements=[
                movement(1, MovementType.DEPOSIT, "100"),
                movement(1, MovementType.DEPOSIT, "200", currency="EUR"),
            ]
        )

        snapshots = SnapshotAggregator().aggregate(records)

        by_currency = {s.currency: s for s in snapshots}
        assert by_currency["USD"].deposited == Decimal("100")
        assert by_currency["EUR"].deposited == Decimal("200")
        assert by_currency["EUR"].movement_counter == 1

    def test_continues_from_previous_snapshot(self):
        """A new batch starts from the latest stored totals."""
        previous = SnapshotState(
            ACCOUNT, "USD", date(2024, 6, 30), movement_counter=10, deposited=Decimal("1000")
        )
        records = ConvertedRecords(movements=[movement(1, MovementType.DEPOSIT, "50")])

        snapshots = SnapshotAggregator(previous=[previous]).aggregate(records)

        assert snapshots[0].movement_counter == 11
        assert snapshots[0].deposited == Decimal("1050")
        assert previous.deposited == Decimal("1000")

    def test_backdated_records_fold_into_last_snapshot(self):
        """Records older than the resumed snapshot never emit an earlier-dated one."""
        previous = SnapshotState(
            ACCOUNT, "USD", date(2024, 7, 20), movement_counter=1, deposited=Decimal("100")
        )
        records = ConvertedRecords(
            movements=[
                movement(10, MovementType.DEPOSIT, "50"),
                movement(25, MovementType.DEPOSIT, "7"),
            ]
        )
        aggregator = SnapshotAggregator(previous=[previous])

        snapshots = aggregator.aggregate(records)

        assert [(s.date, s.movement_counter, s.deposited) for s in snapshots] == [
            (date(2024, 7, 20), 2, Decimal("150")),
            (date(2024, 7, 25), 3, Decimal("157")),
        ]
        assert aggregator.warnings == [
            "1 USD record(s) dated before the last snapshot (2024-07-20) were folded into it"
        ]

    def test_batches_imported_out_of_order(self):
        """Each batch resumes from the highest counter, so totals keep growing."""
        stored: list[SnapshotState] = []
        for day, amount in [(20, "100"), (10, "50"), (25, "7")]:
            batch = ConvertedRecords(movements=[movement(day, MovementType.DEPOSIT, amount)])
            stored.extend(SnapshotAggregator(previous=stored).aggregate(batch))

        latest = latest_snapshots(stored)[(ACCOUNT, "USD")]

        assert [s.movement_counter for s in stored] == [1, 2, 3]
        assert [s.date for s in stored] == [date(2024, 7, 20), date(2024, 7, 20), date(2024, 7, 25)]
        assert latest.deposited == Decimal("157")
        assert latest.date == date(2024, 7, 25)

    def test_option_round_trip_realizes_gain(self, make_unit):
        """A matched pair realizes opening plus closing net premium."""
        opening = make_unit(OptionCode.SELL_TO_OPEN, 1, net_premium=Decimal("48.86"), commissions=Decimal("1"))
        closing = make_unit(OptionCode.BUY_TO_CLOSE, 2, net_premium=Decimal("-20.13"), fees=Decimal("0.13"))
        match_fifo([opening, closing])

        snapshots = SnapshotAggregator().aggregate(ConvertedRecords(option_trades=[opening, closing]))

        after_open, after_close = snapshots
        assert after_open.open_trades is True
        assert after_open.realized_gains == Decimal("0")
        assert after_close.realized_gains == Decimal("28.73")
        assert after_close.options_income == Decimal("28.73")
        assert after_close.commissions == Decimal("1")
        assert after_close.fees == Decimal("0.13")
        assert after_close.open_trades is False

    def test_closing_against_seeded_unit(self, make_unit):
        """Units from an earlier import are restored by seed and can be closed."""
        opening = make_unit(OptionCode.SELL_TO_OPEN, 1, net_premium=Decimal("100"))
        closing = make_unit(OptionCode.BUY_TO_CLOSE, 5, net_premium=Decimal("-40"))
        match_fifo([opening, closing])

        aggregator = SnapshotAggregator()
        aggregator.seed([opening])
        snapshots = aggregator.aggregate(ConvertedRecords(option_trades=[closing]))

        assert snapshots[0].realized_gains == Decimal("60")
        assert snapshots[0].options_income == Decimal("-40")
        assert snapshots[0].open_trades is False

    def test_equity_fifo_realized_and_invested(self):
        """Share sales realize against the oldest lot; invested tracks open long cost."""
        records = ConvertedRecords(
            equity_trades=[
                equity(1, TradeCode.BUY_TO_OPEN, "10", "100"),
                equity(2, TradeCode.BUY_TO_OPEN, "5", "120"),
                equity(3, TradeCode.SELL_TO_CLOSE, "12", "130"),
            ]
        )

        snapshots = SnapshotAggregator().aggregate(records)

        last = snapshots[-1]
        assert last.realized_gains == Decimal("320")  # 10 * 30 + 2 * 10
        assert last.invested == Decimal("360")  # 3 left at 120
        assert last.commissions == Decimal("3.00")
        assert last.open_trades is True

    def test_unrealized_gains_from_stock_prices(self):
        """Open lots are marked against the supplied prices."""
        records = ConvertedRecords(equity_trades=[equity(1, TradeCode.BUY_TO_OPEN, "10", "170")])

        snapshots = SnapshotAggregator(stock_prices={"AAPL": Decimal("175")}).aggregate(records)

        assert snapshots[0].unrealized_gains == Decimal("50")
        assert snapshots[0].invested == Decimal("1700")

    def test_unrealized_gains_from_option_marks(self, make_unit):
        """A short option is marked at premium received minus current value."""
        opening = make_unit(OptionCode.SELL_TO_OPEN, 1, net_premium=Decimal("97.72"))
        marks = {("SPY", OptionType.PUT, Decimal("500"), date(2024, 8, 16)): Decimal("0.30")}

        snapshots = SnapshotAggregator(option_marks=marks).aggregate(
            ConvertedRecords(option_trades=[opening])
        )

        assert snapshots[0].unrealized_gains == Decimal("67.72")

    def test_dividends_net_of_tax(self):
        """Withholding tax reduces dividends received."""
        stamp = datetime(2024, 7, 10, 16, 0)
        records = ConvertedRecords(
            dividends=[CanonicalDividend(stamp, "AAPL", "USD", ACCOUNT, Decimal("2.40"))],
            dividend_taxes=[CanonicalDividendTax(stamp, "AAPL", "USD", ACCOUNT, Decimal("0.36"))],
        )

        snapshots = SnapshotAggregator().aggregate(records)

        assert len(snapshots) == 1
        assert snapshots[0].dividends_received == Decimal("2.04")
        assert snapshots[0].movement_counter == 2

    def test_acat_securities_received_become_position(self):
        """Shares transferred in are held at zero cost."""
        records = ConvertedRecords(
            movements=[
                movement(
                    1,
                    MovementType.ACAT_SECURITIES_TRANSFER_RECEIVED,
                    "0",
                    ticker="MSFT",
                    quantity=Decimal("3"),
                )
            ]
        )

        snapshots = SnapshotAggregator(stock_prices={"MSFT": Decimal("400")}).aggregate(records)

        assert snapshots[0].open_trades is True
        assert snapshots[0].unrealized_gains == Decimal("1200")

    def test_empty_records(self):
        """No records, no snapshots."""
        assert SnapshotAggregator().aggregate(ConvertedRecords()) == []
