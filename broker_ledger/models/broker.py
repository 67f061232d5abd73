"""
Broker and broker account models.

A broker is one of the supported export formats (tastytrade, ibkr); every
imported record belongs to a broker account.
"""

from datetime import datetime, timezone
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import TIMESTAMP, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from broker_ledger.lib.db import Base

if TYPE_CHECKING:
    from broker_ledger.models.import_batch import ImportBatch


class Broker(Base):  # type: ignore[misc,valid-type]
    """
    Represents a broker whose CSV exports can be imported.

    Attributes:
        id: Unique identifier
        code: System identifier ("tastytrade", "ibkr")
        name: Display name
        created_at: When the broker was created
    """

    __tablename__ = "brokers"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    accounts: Mapped[list["BrokerAccount"]] = relationship(
        "BrokerAccount",
        back_populates="broker",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        """Return string representation of broker."""
        return f"<Broker(code={self.code!r}, name={self.name!r})>"


class BrokerAccount(Base):  # type: ignore[misc,valid-type]
    """
    Represents an account at a broker.

    Attributes:
        id: Unique identifier (records refer to it as account_id)
        broker_id: Reference to the broker
        name: User-friendly account name, unique per broker
        account_number: Optional broker account number
        base_currency: Base currency of the account
        created_at: When the account was created
    """

    __tablename__ = "broker_accounts"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    broker_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("brokers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    account_number: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    base_currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        default="USD",
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    broker: Mapped["Broker"] = relationship(
        "Broker",
        back_populates="accounts",
    )

    import_batches: Mapped[list["ImportBatch"]] = relationship(
        "ImportBatch",
        back_populates="account",
    )

    __table_args__ = (
        UniqueConstraint(
            "broker_id",
            "name",
            name="unique_broker_account_name",
        ),
    )

    def __repr__(self) -> str:
        """Return string representation of account."""
        return f"<BrokerAccount(id={self.id!r}, name={self.name!r})>"
