"""Financial snapshot aggregation.

Folds canonical records, in timestamp order, into rolling per account and
currency totals and emits one snapshot per (account, currency, date). Each
value is cumulative: a batch continues from the stored snapshot of its key
with the highest movement counter. Snapshot dates never move backwards;
records dated before that snapshot are folded into it and reported.
Realized gains come from FIFO-matched option pairs and from FIFO share
lots; unrealized gains mark open positions against a price map.
"""

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

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
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# (ticker, option type, strike, expiration) -> mark price per share
OptionMarkKey = tuple[str, OptionType, Decimal, date]

DEPOSIT_TYPES = {MovementType.DEPOSIT, MovementType.ACAT_MONEY_TRANSFER_RECEIVED}
WITHDRAWAL_TYPES = {MovementType.WITHDRAWAL, MovementType.ACAT_MONEY_TRANSFER_SENT}
INCOME_TYPES = {MovementType.INTERESTS_GAINED, MovementType.LENDING}


@dataclass
class SnapshotState:
    """Cumulative financial state of one account and currency on one date."""

    account_id: str
    currency: str
    date: date
    movement_counter: int = 0
    realized_gains: Decimal = ZERO
    unrealized_gains: Decimal = ZERO
    invested: Decimal = ZERO
    commissions: Decimal = ZERO
    fees: Decimal = ZERO
    deposited: Decimal = ZERO
    withdrawn: Decimal = ZERO
    dividends_received: Decimal = ZERO
    options_income: Decimal = ZERO
    other_income: Decimal = ZERO
    open_trades: bool = False

    @property
    def net_cash_flow(self) -> Decimal:
        """Always derived, never stored."""
        return self.deposited - self.withdrawn

    @property
    def key(self) -> tuple[str, str]:
        return (self.account_id, self.currency)

    def copy_for(self, day: date) -> "SnapshotState":
        return SnapshotState(
            account_id=self.account_id,
            currency=self.currency,
            date=day,
            movement_counter=self.movement_counter,
            realized_gains=self.realized_gains,
            unrealized_gains=self.unrealized_gains,
            invested=self.invested,
            commissions=self.commissions,
            fees=self.fees,
            deposited=self.deposited,
            withdrawn=self.withdrawn,
            dividends_received=self.dividends_received,
            options_income=self.options_income,
            other_income=self.other_income,
            open_trades=self.open_trades,
        )


@dataclass
class _ShareLot:
    quantity: Decimal  # positive long, negative short
    price: Decimal


@dataclass
class _Positions:
    """Open share lots and option units of one account and currency."""

    shares: dict[str, deque[_ShareLot]] = field(default_factory=lambda: defaultdict(deque))
    options: dict[str, CanonicalOptionTrade] = field(default_factory=dict)

    def has_open(self) -> bool:
        return bool(self.options) or any(lots for lots in self.shares.values())


def latest_snapshots(snapshots: list[SnapshotState]) -> dict[tuple[str, str], SnapshotState]:
    """Snapshot with the highest movement counter per (account, currency)."""
    latest: dict[tuple[str, str], SnapshotState] = {}
    for snapshot in snapshots:
        current = latest.get(snapshot.key)
        if current is None or (snapshot.movement_counter, snapshot.date) > (
            current.movement_counter,
            current.date,
        ):
            latest[snapshot.key] = snapshot
    return latest


class SnapshotAggregator:
    """Fold canonical records into dated snapshots.

    Usage:
        aggregator = SnapshotAggregator(previous=stored, stock_prices=prices)
        aggregator.seed(open_option_units, prior_equity_trades)
        snapshots = aggregator.aggregate(records)
    """

    def __init__(
        self,
        previous: list[SnapshotState] | None = None,
        stock_prices: dict[str, Decimal] | None = None,
        option_marks: dict[OptionMarkKey, Decimal] | None = None,
    ):
        self.states = {key: s.copy_for(s.date) for key, s in latest_snapshots(previous or []).items()}
        self.stock_prices = stock_prices or {}
        self.option_marks = option_marks or {}
        self.positions: dict[tuple[str, str], _Positions] = defaultdict(_Positions)
        self.option_units: dict[str, CanonicalOptionTrade] = {}
        # (account, currency) -> (date of the resumed snapshot, records dated before it)
        self.backdated: dict[tuple[str, str], tuple[date, int]] = {}

    @property
    def warnings(self) -> list[str]:
        """One message per key that received records older than its last snapshot."""
        return [
            f"{count} {currency} record(s) dated before the last snapshot ({day.isoformat()}) were folded into it"
            for (_, currency), (day, count) in self.backdated.items()
        ]

    def seed(
        self,
        open_option_units: list[CanonicalOptionTrade] | None = None,
        equity_trades: list[CanonicalEquityTrade] | None = None,
    ) -> None:
        """
        Restore positions from earlier imports without touching totals.

        Args:
            open_option_units: Opening units that were open before this batch
            equity_trades: All previously imported equity trades, any order
        """
        for unit in open_option_units or []:
            self.option_units[unit.id] = unit
            self.positions[(unit.account_id, unit.currency)].options[unit.id] = unit
        for trade in sorted(equity_trades or [], key=lambda t: t.timestamp):
            self._apply_shares(trade, self.positions[(trade.account_id, trade.currency)])

    def aggregate(self, records: ConvertedRecords) -> list[SnapshotState]:
        """
        Process records in timestamp order and return the new snapshots.

        One snapshot is emitted per (account, currency, date) touched, holding
        the state after the last record of that date.
        """
        for unit in records.option_trades:
            self.option_units[unit.id] = unit

        stream: list[tuple[datetime, int, object]] = []
        order = 0
        for group in (
            records.movements,
            records.equity_trades,
            records.option_trades,
            records.dividends,
            records.dividend_taxes,
        ):
            for record in group:
                stream.append((record.timestamp, order, record))
                order += 1
        stream.sort(key=lambda item: (item[0], item[1]))

        emitted: dict[tuple[str, str, date], SnapshotState] = {}
        for timestamp, _, record in stream:
            key = (record.account_id, record.currency)  # type: ignore[attr-defined]
            state = self._state_for(key, timestamp.date())

            state.movement_counter += 1
            self._apply(record, state, self.positions[key])
            self._mark(state, self.positions[key])
            emitted[(key[0], key[1], state.date)] = state.copy_for(state.date)

        for message in self.warnings:
            logger.warning(message)

        snapshots = sorted(emitted.values(), key=lambda s: (s.account_id, s.currency, s.date))
        logger.info(f"Aggregated {len(stream)} record(s) into {len(snapshots)} snapshot(s)")
        return snapshots

    def _state_for(self, key: tuple[str, str], day: date) -> SnapshotState:
        """Running state of a key, moved forward to day but never back."""
        state = self.states.get(key)
        if state is None:
            state = SnapshotState(account_id=key[0], currency=key[1], date=day)
            self.states[key] = state
        elif day > state.date:
            state.date = day
        elif day < state.date:
            _, count = self.backdated.get(key, (state.date, 0))
            self.backdated[key] = (state.date, count + 1)
        return state

    def _apply(self, record: object, state: SnapshotState, positions: _Positions) -> None:
        if isinstance(record, CanonicalMovement):
            self._apply_movement(record, state, positions)
        elif isinstance(record, CanonicalEquityTrade):
            state.commissions += record.commissions
            state.fees += record.fees
            state.realized_gains += self._apply_shares(record, positions)
        elif isinstance(record, CanonicalOptionTrade):
            self._apply_option(record, state, positions)
        elif isinstance(record, CanonicalDividend):
            state.dividends_received += record.amount
        elif isinstance(record, CanonicalDividendTax):
            state.dividends_received -= record.amount

    def _apply_movement(self, movement: CanonicalMovement, state: SnapshotState, positions: _Positions) -> None:
        state.commissions += movement.commissions
        state.fees += movement.fees

        kind = movement.movement_type
        if kind in DEPOSIT_TYPES:
            state.deposited += movement.amount
        elif kind in WITHDRAWAL_TYPES:
            state.withdrawn += movement.amount
        elif kind in INCOME_TYPES:
            state.other_income += movement.amount
        elif kind == MovementType.INTERESTS_PAID:
            state.other_income -= movement.amount
        elif kind == MovementType.FEE:
            state.fees += movement.amount
        elif kind == MovementType.ACAT_SECURITIES_TRANSFER_RECEIVED and movement.ticker:
            lots = positions.shares[movement.ticker]
            lots.append(_ShareLot(quantity=movement.quantity or ZERO, price=ZERO))
        elif kind == MovementType.ACAT_SECURITIES_TRANSFER_SENT and movement.ticker:
            self._remove_shares(positions.shares[movement.ticker], movement.quantity or ZERO)

    def _apply_option(self, unit: CanonicalOptionTrade, state: SnapshotState, positions: _Positions) -> None:
        state.commissions += unit.commissions
        state.fees += unit.fees
        state.options_income += unit.net_premium

        if unit.code.is_opening:
            positions.options[unit.id] = unit
            return

        opening = self.option_units.get(unit.closed_with) if unit.closed_with else None
        if opening is None:
            return
        positions.options.pop(opening.id, None)
        state.realized_gains += opening.net_premium + unit.net_premium

    def _apply_shares(self, trade: CanonicalEquityTrade, positions: _Positions) -> Decimal:
        """FIFO share lots; returns the gain realized by this trade."""
        lots = positions.shares[trade.ticker]
        remaining = trade.quantity if trade.is_buy else -trade.quantity
        realized = ZERO

        while lots and remaining != 0 and (lots[0].quantity > 0) != (remaining > 0):
            lot = lots[0]
            closed = min(abs(lot.quantity), abs(remaining))
            direction = Decimal(1) if lot.quantity > 0 else Decimal(-1)
            realized += (trade.price - lot.price) * closed * direction
            lot.quantity -= closed * direction
            remaining += closed * direction
            if lot.quantity == 0:
                lots.popleft()

        if remaining != 0:
            lots.append(_ShareLot(quantity=remaining, price=trade.price))
        return realized

    @staticmethod
    def _remove_shares(lots: deque[_ShareLot], quantity: Decimal) -> None:
        while lots and quantity > 0:
            lot = lots[0]
            taken = min(abs(lot.quantity), quantity)
            lot.quantity -= taken if lot.quantity > 0 else -taken
            quantity -= taken
            if lot.quantity == 0:
                lots.popleft()

    def _mark(self, state: SnapshotState, positions: _Positions) -> None:
        """Recompute invested, unrealized gains and the open-trades flag."""
        invested = ZERO
        unrealized = ZERO

        for ticker, lots in positions.shares.items():
            price = self.stock_prices.get(ticker)
            for lot in lots:
                if lot.quantity > 0:
                    invested += lot.quantity * lot.price
                if price is not None:
                    unrealized += (price - lot.price) * lot.quantity

        for unit in positions.options.values():
            if unit.code == OptionCode.BUY_TO_OPEN:
                invested += -unit.net_premium
            mark = self.option_marks.get((unit.ticker, unit.option_type, unit.strike, unit.expiration))
            if mark is None:
                continue
            market_value = mark * unit.multiplier
            if unit.code == OptionCode.BUY_TO_OPEN:
                unrealized += market_value + unit.net_premium
            else:
                unrealized += unit.net_premium - market_value

        state.invested = invested
        state.unrealized_gains = unrealized
        state.open_trades = positions.has_open()
