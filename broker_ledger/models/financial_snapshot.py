"""
Financial snapshot model.

One row per (account, currency, date, movement_counter). Rows are never
updated: a later import appends a row with a higher movement_counter, and
the highest counter for a date is the current one.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import TIMESTAMP, Boolean, Date, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from broker_ledger.lib.db import Base


class FinancialSnapshot(Base):  # type: ignore[misc,valid-type]
    """
    Cumulative financial state of one account and currency at the end of a day.

    net_cash_flow is derived from deposited and withdrawn and has no column.
    """

    __tablename__ = "financial_snapshots"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    account_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("broker_accounts.id", ondelete="CASCADE"),
        nullable=False,
    )

    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)

    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)

    movement_counter: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    realized_gains: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=0)
    unrealized_gains: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=0)
    invested: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=0)
    commissions: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=0)
    fees: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=0)
    deposited: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=0)
    withdrawn: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=0)
    dividends_received: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=0)
    options_income: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=0)
    other_income: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=0)

    open_trades: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint(
            "account_id",
            "currency_code",
            "snapshot_date",
            "movement_counter",
            name="unique_snapshot_counter",
        ),
        Index("ix_snapshots_account_currency_date", "account_id", "currency_code", "snapshot_date"),
    )

    @property
    def net_cash_flow(self) -> Decimal:
        """Deposited minus withdrawn."""
        return (self.deposited or Decimal("0")) - (self.withdrawn or Decimal("0"))

    def __repr__(self) -> str:
        """Return string representation of snapshot."""
        return (
            f"<FinancialSnapshot(account_id={self.account_id!r}, currency={self.currency_code!r}, "
            f"date={self.snapshot_date}, counter={self.movement_counter})>"
        )
