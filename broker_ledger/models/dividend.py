"""
Dividend models.

Dividends received and tax withheld on them are kept per ticker rather than
as broker movements.
"""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import TIMESTAMP, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from broker_ledger.lib.db import Base

if TYPE_CHECKING:
    from broker_ledger.models.reference import Ticker


class Dividend(Base):  # type: ignore[misc,valid-type]
    """Dividend paid on a ticker."""

    __tablename__ = "dividends"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    account_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("broker_accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    ticker_id: Mapped[str] = mapped_column(String(36), ForeignKey("tickers.id"), nullable=False)

    currency_id: Mapped[str] = mapped_column(String(36), ForeignKey("currencies.id"), nullable=False)

    timestamp: Mapped[datetime] = mapped_column(TIMESTAMP, nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)

    import_batch_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("import_batches.id", ondelete="SET NULL"),
        nullable=True,
    )

    ticker: Mapped["Ticker"] = relationship("Ticker")

    def __repr__(self) -> str:
        """Return string representation of dividend."""
        return f"<Dividend(id={self.id!r}, amount={self.amount})>"


class DividendTax(Base):  # type: ignore[misc,valid-type]
    """Tax withheld on a dividend, stored as a positive amount."""

    __tablename__ = "dividend_taxes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    account_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("broker_accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    ticker_id: Mapped[str] = mapped_column(String(36), ForeignKey("tickers.id"), nullable=False)

    currency_id: Mapped[str] = mapped_column(String(36), ForeignKey("currencies.id"), nullable=False)

    timestamp: Mapped[datetime] = mapped_column(TIMESTAMP, nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False)

    import_batch_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("import_batches.id", ondelete="SET NULL"),
        nullable=True,
    )

    ticker: Mapped["Ticker"] = relationship("Ticker")

    def __repr__(self) -> str:
        """Return string representation of dividend tax."""
        return f"<DividendTax(id={self.id!r}, amount={self.amount})>"
