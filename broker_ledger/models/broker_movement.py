"""
Broker movement model: cash movements, conversions and ACAT transfers.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import TIMESTAMP, Enum, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from broker_ledger.lib.db import Base
from broker_ledger.lib.records import MovementType

if TYPE_CHECKING:
    from broker_ledger.models.reference import Currency, Ticker


class BrokerMovement(Base):  # type: ignore[misc,valid-type]
    """
    Money or securities moving in or out of an account.

    Attributes:
        id: Identifier carried over from the canonical record
        account_id: Broker account
        currency_id: Currency of amount
        timestamp: When the movement happened (naive UTC)
        amount: Positive amount; movement_type carries the direction
        movement_type: Deposit, Withdrawal, Fee, Conversion, ACAT..., etc.
        commissions: Commission charged
        fees: Fees charged (negative for refunds)
        ticker_id: Security for ACAT securities transfers
        quantity: Shares for ACAT securities transfers
        from_currency_id: Source currency for conversions
        amount_changed: Source amount for conversions
        notes: Broker description
    """

    __tablename__ = "broker_movements"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    account_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("broker_accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    currency_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("currencies.id"),
        nullable=False,
    )

    timestamp: Mapped[datetime] = mapped_column(TIMESTAMP, nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)

    movement_type: Mapped[MovementType] = mapped_column(Enum(MovementType), nullable=False, index=True)

    commissions: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=0)

    fees: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=0)

    ticker_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("tickers.id"),
        nullable=True,
    )

    quantity: Mapped[Decimal | None] = mapped_column(Numeric(precision=20, scale=8), nullable=True)

    from_currency_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("currencies.id"),
        nullable=True,
    )

    amount_changed: Mapped[Decimal | None] = mapped_column(Numeric(20, 2), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    import_batch_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("import_batches.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    currency: Mapped["Currency"] = relationship("Currency", foreign_keys=[currency_id])
    ticker: Mapped["Ticker | None"] = relationship("Ticker")

    def __repr__(self) -> str:
        """Return string representation of movement."""
        return (
            f"<BrokerMovement(id={self.id!r}, type={self.movement_type.value}, "
            f"amount={self.amount})>"
        )
