"""
Trade models: equity trades and single-contract option trades.

OptionTrade rows always hold one contract. is_open and closed_with are set
together by FIFO matching: an open unit has no link, a closed unit points to
the unit on the other side of its pair.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    TIMESTAMP,
    Boolean,
    CheckConstraint,
    Date,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from broker_ledger.lib.db import Base
from broker_ledger.lib.records import OptionCode, OptionType, TradeCode, TradeType

if TYPE_CHECKING:
    from broker_ledger.models.reference import Currency, Ticker


class EquityTrade(Base):  # type: ignore[misc,valid-type]
    """
    Share trade, one row per broker row.

    Attributes:
        id: Identifier carried over from the canonical record
        account_id: Broker account
        ticker_id: Traded ticker
        currency_id: Trade currency
        timestamp: Execution time (naive UTC)
        quantity: Shares, always positive
        price: Price per share, always positive
        commissions: Commission paid
        fees: Regulatory and exchange fees
        code: BuyToOpen, SellToClose, ...
        trade_type: Long or Short
        notes: Broker description
        import_batch_id: Batch that created the row
    """

    __tablename__ = "equity_trades"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    account_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("broker_accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    ticker_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("tickers.id"),
        nullable=False,
    )

    currency_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("currencies.id"),
        nullable=False,
    )

    timestamp: Mapped[datetime] = mapped_column(TIMESTAMP, nullable=False)

    quantity: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=8), nullable=False)

    price: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=8), nullable=False)

    commissions: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=0)

    fees: Mapped[Decimal] = mapped_column(Numeric(20, 2), nullable=False, default=0)

    code: Mapped[TradeCode] = mapped_column(Enum(TradeCode), nullable=False)

    trade_type: Mapped[TradeType] = mapped_column(Enum(TradeType), nullable=False)

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

    ticker: Mapped["Ticker"] = relationship("Ticker")
    currency: Mapped["Currency"] = relationship("Currency")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="equity_trade_quantity_positive"),
        Index("ix_equity_trades_account_timestamp", "account_id", "timestamp"),
    )

    def __repr__(self) -> str:
        """Return string representation of equity trade."""
        return (
            f"<EquityTrade(id={self.id!r}, code={self.code.value}, "
            f"quantity={self.quantity}, price={self.price})>"
        )


class OptionTrade(Base):  # type: ignore[misc,valid-type]
    """
    One option contract.

    Attributes:
        id: Identifier carried over from the canonical record
        account_id: Broker account
        ticker_id: Underlying ticker
        currency_id: Premium currency
        timestamp: Execution time (naive UTC)
        expiration: Expiration date
        strike: Strike price (after any special dividend adjustment)
        multiplier: Shares per contract
        premium: |value| for this contract
        net_premium: Signed value less commissions and fees
        option_type: Call or Put
        code: BuyToOpen, SellToOpen, BuyToClose, SellToClose, Assigned, Expired
        quantity: Always 1
        is_open: False once matched (or closed without a partner)
        closed_with_id: The unit on the other side of the FIFO pair
        notes: Broker description or adjustment note
    """

    __tablename__ = "option_trades"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    account_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("broker_accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    ticker_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("tickers.id"),
        nullable=False,
    )

    currency_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("currencies.id"),
        nullable=False,
    )

    timestamp: Mapped[datetime] = mapped_column(TIMESTAMP, nullable=False)

    expiration: Mapped[date] = mapped_column(Date, nullable=False)

    strike: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=4), nullable=False)

    multiplier: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=100)

    premium: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=8), nullable=False)

    net_premium: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=8), nullable=False)

    commissions: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=8), nullable=False, default=0)

    fees: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=8), nullable=False, default=0)

    option_type: Mapped[OptionType] = mapped_column(Enum(OptionType), nullable=False)

    code: Mapped[OptionCode] = mapped_column(Enum(OptionCode), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    is_open: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    closed_with_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("option_trades.id", ondelete="SET NULL"),
        nullable=True,
    )

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

    ticker: Mapped["Ticker"] = relationship("Ticker")
    currency: Mapped["Currency"] = relationship("Currency")

    __table_args__ = (
        CheckConstraint("quantity = 1", name="option_trade_single_contract"),
        Index("ix_option_trades_matching", "account_id", "ticker_id", "strike", "expiration"),
    )

    def __repr__(self) -> str:
        """Return string representation of option trade."""
        return (
            f"<OptionTrade(id={self.id!r}, code={self.code.value}, "
            f"strike={self.strike}, is_open={self.is_open})>"
        )
