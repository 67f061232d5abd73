"""Pydantic models for Tastytrade CSV row validation and classification.

The raw row model validates the 20-column export before typed parsing into
TastytradeTransaction. Classification attaches a TransactionTag, producing a
ClassifiedTransaction that downstream conversion consumes.
"""

import enum
from datetime import date as date_type
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class TastytradeCSVRow(BaseModel):
    """Tastytrade transaction history CSV row model.

    Fields match the English CSV headers of the Tastytrade export.
    """

    date: str = Field(alias="Date")
    type: str = Field(alias="Type")
    sub_type: str = Field(default="", alias="Sub Type")
    action: str = Field(default="", alias="Action")
    symbol: str = Field(default="", alias="Symbol")
    instrument_type: str = Field(default="", alias="Instrument Type")
    description: str = Field(default="", alias="Description")
    value: str = Field(default="", alias="Value")
    quantity: str = Field(default="", alias="Quantity")
    average_price: str = Field(default="", alias="Average Price")
    commissions: str = Field(default="", alias="Commissions")
    fees: str = Field(default="", alias="Fees")
    multiplier: str = Field(default="", alias="Multiplier")
    root_symbol: str = Field(default="", alias="Root Symbol")
    underlying_symbol: str = Field(default="", alias="Underlying Symbol")
    expiration_date: str = Field(default="", alias="Expiration Date")
    strike_price: str = Field(default="", alias="Strike Price")
    call_or_put: str = Field(default="", alias="Call or Put")
    order_number: str = Field(default="", alias="Order #")
    currency: str = Field(default="", alias="Currency")

    class Config:
        """Pydantic configuration."""

        populate_by_name = True
        str_strip_whitespace = True


class TransactionCategory(str, enum.Enum):
    """Top-level Tastytrade transaction categories (the Type column)."""

    TRADE = "Trade"
    MONEY_MOVEMENT = "Money Movement"
    RECEIVE_DELIVER = "Receive Deliver"


class TradeSubType(str, enum.Enum):
    """Trade sub types (the Sub Type column for Type=Trade)."""

    BUY_TO_OPEN = "Buy to Open"
    SELL_TO_OPEN = "Sell to Open"
    BUY_TO_CLOSE = "Buy to Close"
    SELL_TO_CLOSE = "Sell to Close"

    @property
    def is_opening(self) -> bool:
        return self in (TradeSubType.BUY_TO_OPEN, TradeSubType.SELL_TO_OPEN)

    @property
    def is_buy(self) -> bool:
        return self in (TradeSubType.BUY_TO_OPEN, TradeSubType.BUY_TO_CLOSE)


class MoneyMovementSubType(str, enum.Enum):
    """Money movement sub types (the Sub Type column for Type=Money Movement)."""

    DEPOSIT = "Deposit"
    WITHDRAWAL = "Withdrawal"
    BALANCE_ADJUSTMENT = "Balance Adjustment"
    CREDIT_INTEREST = "Credit Interest"
    DEBIT_INTEREST = "Debit Interest"
    TRANSFER = "Transfer"
    DIVIDEND = "Dividend"
    LENDING = "Lending Income"


class TransactionTag(BaseModel):
    """Canonical transaction-type tag.

    Exactly one of trade_sub_type, movement_sub_type or receive_deliver_sub_type
    is set, matching the category.
    """

    category: TransactionCategory
    trade_sub_type: TradeSubType | None = None
    movement_sub_type: MoneyMovementSubType | None = None
    receive_deliver_sub_type: str | None = None
    action: str | None = None

    class Config:
        """Pydantic configuration."""

        frozen = True

    @classmethod
    def trade(cls, sub_type: TradeSubType, action: str | None = None) -> "TransactionTag":
        return cls(category=TransactionCategory.TRADE, trade_sub_type=sub_type, action=action)

    @classmethod
    def money_movement(cls, sub_type: MoneyMovementSubType) -> "TransactionTag":
        return cls(category=TransactionCategory.MONEY_MOVEMENT, movement_sub_type=sub_type)

    @classmethod
    def receive_deliver(cls, sub_type: str) -> "TransactionTag":
        return cls(category=TransactionCategory.RECEIVE_DELIVER, receive_deliver_sub_type=sub_type)

    @property
    def is_trade(self) -> bool:
        return self.category == TransactionCategory.TRADE

    @property
    def is_money_movement(self) -> bool:
        return self.category == TransactionCategory.MONEY_MOVEMENT

    @property
    def is_receive_deliver(self) -> bool:
        return self.category == TransactionCategory.RECEIVE_DELIVER

    @property
    def is_special_dividend(self) -> bool:
        return self.is_receive_deliver and self.receive_deliver_sub_type == "Special Dividend"

    @property
    def is_acat(self) -> bool:
        return self.is_receive_deliver and self.receive_deliver_sub_type == "ACAT"

    def __str__(self) -> str:
        if self.trade_sub_type is not None:
            return f"Trade/{self.trade_sub_type.value}"
        if self.movement_sub_type is not None:
            return f"Money Movement/{self.movement_sub_type.value}"
        return f"Receive Deliver/{self.receive_deliver_sub_type}"


class TastytradeTransaction(BaseModel):
    """Typed Tastytrade row, immutable once parsed.

    Keeps the raw Type/Sub Type/Action strings plus the source line for
    diagnostics. Numeric columns use Decimal; "--" and blanks are zero.
    """

    date: datetime
    type: str
    sub_type: str
    action: str
    symbol: str | None = None
    instrument_type: str | None = None
    description: str = ""
    value: Decimal = Decimal("0")
    quantity: Decimal = Decimal("0")
    average_price: Decimal | None = None
    commissions: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    multiplier: Decimal | None = None
    root_symbol: str | None = None
    underlying_symbol: str | None = None
    expiration_date: date_type | None = None
    strike_price: Decimal | None = None
    call_or_put: str | None = None
    order_number: str | None = None
    currency: str = "USD"

    # Diagnostics
    line_number: int
    raw_line: str = ""

    class Config:
        """Pydantic configuration."""

        frozen = True

    @property
    def is_option(self) -> bool:
        return self.instrument_type in ("Equity Option", "Future Option")

    @property
    def is_equity(self) -> bool:
        return self.instrument_type == "Equity"

    @property
    def ticker_symbol(self) -> str | None:
        """Underlying ticker: root symbol first, then underlying, then symbol."""
        if self.root_symbol:
            return self.root_symbol
        if self.is_option:
            return self.underlying_symbol
        return self.symbol or self.underlying_symbol


class ClassifiedTransaction(TastytradeTransaction):
    """TastytradeTransaction with its canonical tag attached."""

    tag: TransactionTag
