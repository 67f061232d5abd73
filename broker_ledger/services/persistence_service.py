"""Persistence for imported ledger records.

The import orchestrator only talks to the PersistenceService protocol, so
parsing, matching and aggregation stay free of I/O. Two implementations:

- SqlAlchemyPersistenceService stores everything through db_session(),
  running the blocking session work in a worker thread.
- InMemoryPersistenceService keeps records in dictionaries; used for dry
  runs and tests.
"""

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from broker_ledger.lib.db import db_session
from broker_ledger.lib.errors import AccountNotFoundError, ImportErrorType, RowError
from broker_ledger.lib.records import (
    CanonicalDividend,
    CanonicalDividendTax,
    CanonicalEquityTrade,
    CanonicalMovement,
    CanonicalOptionTrade,
    ConvertedRecords,
    OptionCode,
)
from broker_ledger.lib.validators import validate_currency
from broker_ledger.models import (
    Broker,
    BrokerAccount,
    BrokerMovement,
    Currency,
    Dividend,
    DividendTax,
    EquityTrade,
    FinancialSnapshot,
    ImportBatch,
    ImportBatchStatus,
    ImportError,
    OptionTrade,
    Ticker,
)
from broker_ledger.services.snapshot_service import SnapshotState, latest_snapshots

logger = logging.getLogger(__name__)

BROKER_NAMES = {
    "tastytrade": "Tastytrade",
    "ibkr": "Interactive Brokers",
}

CURRENCY_NAMES = {
    "USD": "US Dollar",
    "EUR": "Euro",
    "GBP": "British Pound",
    "CHF": "Swiss Franc",
    "CAD": "Canadian Dollar",
    "JPY": "Japanese Yen",
    "HKD": "Hong Kong Dollar",
}

OPENING_CODES = [OptionCode.BUY_TO_OPEN, OptionCode.SELL_TO_OPEN]


@dataclass
class Resolved:
    """Id of a reference row and whether this call created it."""

    id: str
    created: bool = False


@dataclass
class ImportRecord:
    """Outcome of one imported file, as stored in import history."""

    account_id: str | None
    broker: str
    filename: str
    status: ImportBatchStatus
    started_at: datetime
    content_hash: str | None = None
    total_rows: int = 0
    successful_count: int = 0
    skipped_count: int = 0
    warning_count: int = 0
    duration_seconds: float = 0.0
    error_message: str | None = None
    errors: list[RowError] = field(default_factory=list)


@dataclass
class ImportBatchInfo:
    """Summary information about an import batch."""

    batch_id: int
    filename: str
    broker: str
    account_name: str | None
    started_at: datetime
    total_rows: int
    successful_count: int
    skipped_count: int
    error_count: int
    warning_count: int
    status: str
    processing_duration: float


@dataclass
class ImportErrorDetail:
    """One stored row error."""

    row_number: int
    error_type: str
    error_message: str
    original_data: dict


class PersistenceService(Protocol):
    """Storage boundary awaited by the import orchestrator."""

    async def resolve_or_create_ticker(self, symbol: str) -> Resolved: ...

    async def resolve_or_create_currency(self, code: str) -> Resolved: ...

    async def resolve_or_create_account(self, broker: str, name: str) -> Resolved: ...

    async def save_import(
        self,
        record: ImportRecord,
        records: ConvertedRecords,
        changed_units: list[CanonicalOptionTrade],
        snapshots: list[SnapshotState],
    ) -> int: ...

    async def record_import(self, record: ImportRecord) -> int: ...

    async def find_import_by_hash(self, account_id: str, content_hash: str) -> int | None: ...

    async def load_open_option_units(self, account_id: str) -> list[CanonicalOptionTrade]: ...

    async def load_equity_trades(self, account_id: str) -> list[CanonicalEquityTrade]: ...

    async def latest_snapshots(self, account_id: str) -> list[SnapshotState]: ...


def _row_error_type(error: RowError) -> ImportErrorType:
    return ImportErrorType.from_parse_error(error.error_type)


class InMemoryPersistenceService:
    """PersistenceService without I/O.

    Records are copied on the way in and out so callers cannot mutate
    stored state behind the service's back, the same as with a database.
    """

    def __init__(self) -> None:
        self.tickers: dict[str, str] = {}
        self.currencies: dict[str, str] = {}
        self.accounts: dict[tuple[str, str], str] = {}
        self.records: dict[str, ConvertedRecords] = {}
        self.snapshots: list[SnapshotState] = []
        self.imports: list[ImportRecord] = []
        self._ids = 0

    def _next_id(self) -> str:
        self._ids += 1
        return f"mem-{self._ids}"

    async def resolve_or_create_ticker(self, symbol: str) -> Resolved:
        if symbol in self.tickers:
            return Resolved(self.tickers[symbol])
        self.tickers[symbol] = self._next_id()
        return Resolved(self.tickers[symbol], created=True)

    async def resolve_or_create_currency(self, code: str) -> Resolved:
        if code in self.currencies:
            return Resolved(self.currencies[code])
        self.currencies[code] = self._next_id()
        return Resolved(self.currencies[code], created=True)

    async def resolve_or_create_account(self, broker: str, name: str) -> Resolved:
        key = (broker, name)
        if key in self.accounts:
            return Resolved(self.accounts[key])
        self.accounts[key] = self._next_id()
        return Resolved(self.accounts[key], created=True)

    async def save_import(
        self,
        record: ImportRecord,
        records: ConvertedRecords,
        changed_units: list[CanonicalOptionTrade],
        snapshots: list[SnapshotState],
    ) -> int:
        # Build every new collection first so a failure leaves state untouched
        stored = copy.deepcopy(self.records.get(record.account_id) or ConvertedRecords())
        stored.extend(copy.deepcopy(records))
        updated = {unit.id: copy.deepcopy(unit) for unit in changed_units}
        stored.option_trades = [updated.get(t.id, t) for t in stored.option_trades]

        added = copy.deepcopy(snapshots)

        self.records[record.account_id] = stored  # type: ignore[index]
        self.snapshots.extend(added)
        return await self.record_import(record)

    async def record_import(self, record: ImportRecord) -> int:
        self.imports.append(record)
        return len(self.imports)

    async def find_import_by_hash(self, account_id: str, content_hash: str) -> int | None:
        for batch_id, record in enumerate(self.imports, start=1):
            if (
                record.account_id == account_id
                and record.content_hash == content_hash
                and record.status != ImportBatchStatus.FAILED
            ):
                return batch_id
        return None

    async def load_open_option_units(self, account_id: str) -> list[CanonicalOptionTrade]:
        stored = self.records.get(account_id)
        if stored is None:
            return []
        return [
            copy.deepcopy(t)
            for t in stored.option_trades
            if t.code.is_opening and t.is_open
        ]

    async def load_equity_trades(self, account_id: str) -> list[CanonicalEquityTrade]:
        stored = self.records.get(account_id)
        return copy.deepcopy(stored.equity_trades) if stored else []

    async def latest_snapshots(self, account_id: str) -> list[SnapshotState]:
        own = [s for s in self.snapshots if s.account_id == account_id]
        return copy.deepcopy(list(latest_snapshots(own).values()))


class SqlAlchemyPersistenceService:
    """PersistenceService backed by the SQLite database in lib.db.

    Each call opens its own session; blocking work runs in a thread via
    asyncio.to_thread so the orchestrator's event loop is never blocked.
    """

    # Reference lookups

    def _get_or_create_ticker(self, session: Session, symbol: str) -> Resolved:
        ticker = session.execute(select(Ticker).where(Ticker.symbol == symbol)).scalar_one_or_none()
        if ticker:
            return Resolved(ticker.id)
        ticker = Ticker(symbol=symbol)
        session.add(ticker)
        session.flush()
        logger.info(f"Created ticker {symbol}")
        return Resolved(ticker.id, created=True)

    def _get_or_create_currency(self, session: Session, code: str) -> Resolved:
        code = validate_currency(code)
        currency = session.execute(select(Currency).where(Currency.code == code)).scalar_one_or_none()
        if currency:
            return Resolved(currency.id)
        currency = Currency(code=code, name=CURRENCY_NAMES.get(code, code))
        session.add(currency)
        session.flush()
        return Resolved(currency.id, created=True)

    def _get_or_create_account(self, session: Session, broker_code: str, name: str) -> Resolved:
        broker = session.execute(select(Broker).where(Broker.code == broker_code)).scalar_one_or_none()
        if not broker:
            broker = Broker(code=broker_code, name=BROKER_NAMES.get(broker_code, broker_code))
            session.add(broker)
            session.flush()

        account = session.execute(
            select(BrokerAccount).where(
                BrokerAccount.broker_id == broker.id,
                BrokerAccount.name == name,
            )
        ).scalar_one_or_none()
        if account:
            return Resolved(account.id)

        account = BrokerAccount(broker_id=broker.id, name=name)
        session.add(account)
        session.flush()
        logger.info(f"Created {broker.name} account '{name}'")
        return Resolved(account.id, created=True)

    async def resolve_or_create_ticker(self, symbol: str) -> Resolved:
        def work() -> Resolved:
            with db_session() as session:
                return self._get_or_create_ticker(session, symbol)

        return await asyncio.to_thread(work)

    async def resolve_or_create_currency(self, code: str) -> Resolved:
        def work() -> Resolved:
            with db_session() as session:
                return self._get_or_create_currency(session, code)

        return await asyncio.to_thread(work)

    async def resolve_or_create_account(self, broker: str, name: str) -> Resolved:
        def work() -> Resolved:
            with db_session() as session:
                return self._get_or_create_account(session, broker, name)

        return await asyncio.to_thread(work)

    # Writes

    async def save_import(
        self,
        record: ImportRecord,
        records: ConvertedRecords,
        changed_units: list[CanonicalOptionTrade],
        snapshots: list[SnapshotState],
    ) -> int:
        """
        Store one imported file in a single transaction.

        The batch row, its row errors, new records, updated stored units and
        snapshots commit together; any failure rolls all of them back.

        Returns:
            Id of the new import batch
        """

        def work() -> int:
            with db_session() as session:
                batch_id = self._add_batch(session, record)
                self._add_records(session, record.account_id, records, batch_id)
                self._update_units(session, changed_units)
                self._add_snapshots(session, snapshots)
                return batch_id

        batch_id = await asyncio.to_thread(work)
        logger.info(
            f"Saved batch {batch_id}: {records.total} record(s), {len(changed_units)} updated unit(s), "
            f"{len(snapshots)} snapshot(s)"
        )
        return batch_id

    def _add_records(
        self, session: Session, account_id: str | None, records: ConvertedRecords, batch_id: int
    ) -> None:
        tickers: dict[str, str] = {}
        currencies: dict[str, str] = {}

        def ticker_id(symbol: str) -> str:
            if symbol not in tickers:
                tickers[symbol] = self._get_or_create_ticker(session, symbol).id
            return tickers[symbol]

        def currency_id(code: str) -> str:
            if code not in currencies:
                currencies[code] = self._get_or_create_currency(session, code).id
            return currencies[code]

        for trade in records.equity_trades:
            session.add(
                EquityTrade(
                    id=trade.id,
                    account_id=account_id,
                    ticker_id=ticker_id(trade.ticker),
                    currency_id=currency_id(trade.currency),
                    timestamp=trade.timestamp,
                    quantity=trade.quantity,
                    price=trade.price,
                    commissions=trade.commissions,
                    fees=trade.fees,
                    code=trade.code,
                    trade_type=trade.trade_type,
                    notes=trade.notes,
                    import_batch_id=batch_id,
                )
            )

        # Links are written after every unit exists; SQLite checks the
        # self-referencing foreign key immediately.
        for unit in records.option_trades:
            session.add(
                OptionTrade(
                    id=unit.id,
                    account_id=account_id,
                    ticker_id=ticker_id(unit.ticker),
                    currency_id=currency_id(unit.currency),
                    timestamp=unit.timestamp,
                    expiration=unit.expiration,
                    strike=unit.strike,
                    multiplier=unit.multiplier,
                    premium=unit.premium,
                    net_premium=unit.net_premium,
                    commissions=unit.commissions,
                    fees=unit.fees,
                    option_type=unit.option_type,
                    code=unit.code,
                    quantity=unit.quantity,
                    is_open=unit.is_open,
                    closed_with_id=None,
                    notes=unit.notes,
                    import_batch_id=batch_id,
                )
            )
        session.flush()
        self._write_option_links(session, records.option_trades)

        for movement in records.movements:
            session.add(self._movement_row(movement, account_id, ticker_id, currency_id, batch_id))

        for dividend in records.dividends:
            session.add(
                Dividend(
                    id=dividend.id,
                    account_id=account_id,
                    ticker_id=ticker_id(dividend.ticker),
                    currency_id=currency_id(dividend.currency),
                    timestamp=dividend.timestamp,
                    amount=dividend.amount,
                    import_batch_id=batch_id,
                )
            )

        for tax in records.dividend_taxes:
            session.add(
                DividendTax(
                    id=tax.id,
                    account_id=account_id,
                    ticker_id=ticker_id(tax.ticker),
                    currency_id=currency_id(tax.currency),
                    timestamp=tax.timestamp,
                    amount=tax.amount,
                    import_batch_id=batch_id,
                )
            )

    @staticmethod
    def _movement_row(movement: CanonicalMovement, account_id, ticker_id, currency_id, batch_id) -> BrokerMovement:
        return BrokerMovement(
            id=movement.id,
            account_id=account_id,
            currency_id=currency_id(movement.currency),
            timestamp=movement.timestamp,
            amount=movement.amount,
            movement_type=movement.movement_type,
            commissions=movement.commissions,
            fees=movement.fees,
            ticker_id=ticker_id(movement.ticker) if movement.ticker else None,
            quantity=movement.quantity,
            from_currency_id=currency_id(movement.from_currency) if movement.from_currency else None,
            amount_changed=movement.amount_changed,
            notes=movement.notes,
            import_batch_id=batch_id,
        )

    @staticmethod
    def _write_option_links(session: Session, units: list[CanonicalOptionTrade]) -> None:
        for unit in units:
            if unit.closed_with is None:
                continue
            row = session.get(OptionTrade, unit.id)
            if row is not None:
                row.closed_with_id = unit.closed_with

    def _update_units(self, session: Session, units: list[CanonicalOptionTrade]) -> None:
        """Write back matching state and adjusted strikes of stored units."""
        for unit in units:
            row = session.get(OptionTrade, unit.id)
            if row is None:
                logger.warning(f"Option trade {unit.id} not found; update skipped")
                continue
            row.is_open = unit.is_open
            row.strike = unit.strike
            row.notes = unit.notes
        session.flush()
        self._write_option_links(session, units)

    # Snapshots

    @staticmethod
    def _add_snapshots(session: Session, snapshots: list[SnapshotState]) -> None:
        """Append snapshots; counters only grow, so rows never collide."""
        for s in snapshots:
            session.add(
                FinancialSnapshot(
                    account_id=s.account_id,
                    currency_code=s.currency,
                    snapshot_date=s.date,
                    movement_counter=s.movement_counter,
                    realized_gains=s.realized_gains,
                    unrealized_gains=s.unrealized_gains,
                    invested=s.invested,
                    commissions=s.commissions,
                    fees=s.fees,
                    deposited=s.deposited,
                    withdrawn=s.withdrawn,
                    dividends_received=s.dividends_received,
                    options_income=s.options_income,
                    other_income=s.other_income,
                    open_trades=s.open_trades,
                )
            )

    @staticmethod
    def _snapshot_state(row: FinancialSnapshot) -> SnapshotState:
        return SnapshotState(
            account_id=row.account_id,
            currency=row.currency_code,
            date=row.snapshot_date,
            movement_counter=row.movement_counter,
            realized_gains=Decimal(row.realized_gains),
            unrealized_gains=Decimal(row.unrealized_gains),
            invested=Decimal(row.invested),
            commissions=Decimal(row.commissions),
            fees=Decimal(row.fees),
            deposited=Decimal(row.deposited),
            withdrawn=Decimal(row.withdrawn),
            dividends_received=Decimal(row.dividends_received),
            options_income=Decimal(row.options_income),
            other_income=Decimal(row.other_income),
            open_trades=row.open_trades,
        )

    async def latest_snapshots(self, account_id: str) -> list[SnapshotState]:
        def work() -> list[SnapshotState]:
            with db_session() as session:
                rows = session.execute(
                    select(FinancialSnapshot).where(FinancialSnapshot.account_id == account_id)
                ).scalars().all()
                states = [self._snapshot_state(r) for r in rows]
            return list(latest_snapshots(states).values())

        return await asyncio.to_thread(work)

    # Positions carried between imports

    async def load_open_option_units(self, account_id: str) -> list[CanonicalOptionTrade]:
        def work() -> list[CanonicalOptionTrade]:
            with db_session() as session:
                rows = session.execute(
                    select(OptionTrade)
                    .where(
                        OptionTrade.account_id == account_id,
                        OptionTrade.is_open.is_(True),
                        OptionTrade.code.in_(OPENING_CODES),
                    )
                    .order_by(OptionTrade.timestamp)
                ).scalars().all()
                return [
                    CanonicalOptionTrade(
                        id=r.id,
                        timestamp=r.timestamp,
                        ticker=r.ticker.symbol,
                        currency=r.currency.code,
                        account_id=r.account_id,
                        option_type=r.option_type,
                        code=r.code,
                        strike=Decimal(r.strike),
                        expiration=r.expiration,
                        premium=Decimal(r.premium),
                        net_premium=Decimal(r.net_premium),
                        multiplier=Decimal(r.multiplier),
                        quantity=r.quantity,
                        commissions=Decimal(r.commissions),
                        fees=Decimal(r.fees),
                        is_open=r.is_open,
                        closed_with=r.closed_with_id,
                        notes=r.notes,
                    )
                    for r in rows
                ]

        return await asyncio.to_thread(work)

    async def load_equity_trades(self, account_id: str) -> list[CanonicalEquityTrade]:
        def work() -> list[CanonicalEquityTrade]:
            with db_session() as session:
                rows = session.execute(
                    select(EquityTrade)
                    .where(EquityTrade.account_id == account_id)
                    .order_by(EquityTrade.timestamp)
                ).scalars().all()
                return [
                    CanonicalEquityTrade(
                        id=r.id,
                        timestamp=r.timestamp,
                        ticker=r.ticker.symbol,
                        currency=r.currency.code,
                        account_id=r.account_id,
                        quantity=Decimal(r.quantity),
                        price=Decimal(r.price),
                        code=r.code,
                        trade_type=r.trade_type,
                        commissions=Decimal(r.commissions),
                        fees=Decimal(r.fees),
                        notes=r.notes,
                    )
                    for r in rows
                ]

        return await asyncio.to_thread(work)

    # Import history

    @staticmethod
    def _add_batch(session: Session, record: ImportRecord) -> int:
        batch = ImportBatch(
            account_id=record.account_id,
            broker_source=record.broker,
            filename=record.filename,
            content_hash=record.content_hash,
            status=record.status,
            total_rows=record.total_rows,
            successful_count=record.successful_count,
            skipped_count=record.skipped_count,
            error_count=len(record.errors),
            warning_count=record.warning_count,
            duration_seconds=record.duration_seconds,
            started_at=record.started_at,
            completed_at=datetime.now(timezone.utc),
            error_message=record.error_message,
        )
        session.add(batch)
        session.flush()  # Get batch ID

        for error in record.errors:
            session.add(
                ImportError(
                    batch_id=batch.id,
                    row_number=error.line_number,
                    error_type=_row_error_type(error),
                    error_message=error.message,
                    original_data={"raw_line": error.raw_line, "detail": error.detail},
                )
            )
        return batch.id

    async def record_import(self, record: ImportRecord) -> int:
        """Store a batch that wrote no records, such as a failed file."""

        def work() -> int:
            with db_session() as session:
                return self._add_batch(session, record)

        return await asyncio.to_thread(work)

    async def find_import_by_hash(self, account_id: str, content_hash: str) -> int | None:
        def work() -> int | None:
            with db_session() as session:
                return session.execute(
                    select(ImportBatch.id)
                    .where(
                        ImportBatch.account_id == account_id,
                        ImportBatch.content_hash == content_hash,
                        ImportBatch.status != ImportBatchStatus.FAILED,
                    )
                    .limit(1)
                ).scalar_one_or_none()

        return await asyncio.to_thread(work)

    # Queries used by the CLI

    def get_account_id(self, broker: str, name: str) -> str:
        """
        Look up an existing broker account.

        Raises:
            AccountNotFoundError: If no such account exists
        """
        with db_session() as session:
            account_id = session.execute(
                select(BrokerAccount.id)
                .join(Broker)
                .where(Broker.code == broker, BrokerAccount.name == name)
            ).scalar_one_or_none()
        if account_id is None:
            raise AccountNotFoundError(name)
        return account_id

    def get_import_history(self, limit: int = 10) -> list[ImportBatchInfo]:
        """
        Get recent import history.

        Args:
            limit: Maximum number of batches to return

        Returns:
            List of ImportBatchInfo ordered by start time, newest first
        """
        with db_session() as session:
            stmt = select(ImportBatch).order_by(ImportBatch.started_at.desc(), ImportBatch.id.desc()).limit(limit)
            batches = session.execute(stmt).scalars().all()

            return [
                ImportBatchInfo(
                    batch_id=b.id,
                    filename=b.filename,
                    broker=b.broker_source,
                    account_name=b.account.name if b.account else None,
                    started_at=b.started_at,
                    total_rows=b.total_rows,
                    successful_count=b.successful_count,
                    skipped_count=b.skipped_count,
                    error_count=b.error_count,
                    warning_count=b.warning_count,
                    status=b.status.value,
                    processing_duration=float(b.duration_seconds) if b.duration_seconds else 0.0,
                )
                for b in batches
            ]

    def get_import_errors(self, batch_id: int) -> list[ImportErrorDetail]:
        """
        Get stored row errors for an import batch.

        Raises:
            ValueError: batch_id doesn't exist
        """
        with db_session() as session:
            batch = session.get(ImportBatch, batch_id)
            if not batch:
                raise ValueError(f"Batch {batch_id} not found")

            stmt = (
                select(ImportError)
                .where(ImportError.batch_id == batch_id)
                .order_by(ImportError.row_number)
            )
            errors = session.execute(stmt).scalars().all()

            return [
                ImportErrorDetail(
                    row_number=e.row_number,
                    error_type=e.error_type.value,
                    error_message=e.error_message,
                    original_data=e.original_data,
                )
                for e in errors
            ]

    def get_latest_snapshots(self, account_id: str) -> list[SnapshotState]:
        """Latest snapshot per currency for an account, sorted by currency."""
        with db_session() as session:
            rows = session.execute(
                select(FinancialSnapshot).where(FinancialSnapshot.account_id == account_id)
            ).scalars().all()
            states = [self._snapshot_state(r) for r in rows]
        return sorted(latest_snapshots(states).values(), key=lambda s: s.currency)
