"""
Reference data models: currencies and tickers.

Both are created on first use while importing (get-or-create by code or
symbol).
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import TIMESTAMP, String
from sqlalchemy.orm import Mapped, mapped_column

from broker_ledger.lib.db import Base


class Currency(Base):  # type: ignore[misc,valid-type]
    """ISO 4217 currency (e.g. USD, EUR, GBP)."""

    __tablename__ = "currencies"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    code: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
        unique=True,
    )

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    def __repr__(self) -> str:
        """Return string representation of currency."""
        return f"<Currency(code={self.code!r})>"


class Ticker(Base):  # type: ignore[misc,valid-type]
    """
    Underlying instrument symbol.

    Option trades refer to their underlying ticker; the contract terms live
    on the option trade itself.
    """

    __tablename__ = "tickers"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    symbol: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
        index=True,
    )

    name: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        """Return string representation of ticker."""
        return f"<Ticker(symbol={self.symbol!r})>"
