"""Canonical ledger records produced by the broker converters.

These are plain dataclasses, independent of any database session, so the
FIFO matcher and snapshot aggregator can work on them without I/O. The
persistence layer maps them onto the ORM tables in broker_ledger.models.
"""

import enum
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4


class OptionCode(str, enum.Enum):
    """Option trade codes."""

    BUY_TO_OPEN = "BuyToOpen"
    SELL_TO_OPEN = "SellToOpen"
    BUY_TO_CLOSE = "BuyToClose"
    SELL_TO_CLOSE = "SellToClose"
    ASSIGNED = "Assigned"
    EXPIRED = "Expired"

    @property
    def is_opening(self) -> bool:
        return self in (OptionCode.BUY_TO_OPEN, OptionCode.SELL_TO_OPEN)

    @property
    def is_closing(self) -> bool:
        return not self.is_opening


class OptionType(str, enum.Enum):
    """Option right."""

    CALL = "Call"
    PUT = "Put"

    @classmethod
    def from_broker(cls, value: str) -> "OptionType":
        """Map broker spellings (CALL, Call, C, PUT, Put, P)."""
        normalized = value.strip().upper()
        if normalized in ("CALL", "C"):
            return cls.CALL
        if normalized in ("PUT", "P"):
            return cls.PUT
        raise ValueError(f"Invalid option type: {value!r}")


class TradeCode(str, enum.Enum):
    """Equity trade codes."""

    BUY_TO_OPEN = "BuyToOpen"
    SELL_TO_OPEN = "SellToOpen"
    BUY_TO_CLOSE = "BuyToClose"
    SELL_TO_CLOSE = "SellToClose"


class TradeType(str, enum.Enum):
    """Equity trade direction."""

    LONG = "Long"
    SHORT = "Short"


class MovementType(str, enum.Enum):
    """Broker cash and transfer movement types."""

    DEPOSIT = "Deposit"
    WITHDRAWAL = "Withdrawal"
    FEE = "Fee"
    INTERESTS_GAINED = "InterestsGained"
    INTERESTS_PAID = "InterestsPaid"
    LENDING = "Lending"
    CONVERSION = "Conversion"
    ACAT_MONEY_TRANSFER_SENT = "ACATMoneyTransferSent"
    ACAT_MONEY_TRANSFER_RECEIVED = "ACATMoneyTransferReceived"
    ACAT_SECURITIES_TRANSFER_SENT = "ACATSecuritiesTransferSent"
    ACAT_SECURITIES_TRANSFER_RECEIVED = "ACATSecuritiesTransferReceived"


def new_id() -> str:
    return str(uuid4())


def normalize_timestamp(value: datetime) -> datetime:
    """Convert an offset-aware timestamp to naive UTC; naive values pass through.

    SQLite drops offsets, so every record timestamp is kept naive UTC.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass
class CanonicalOptionTrade:
    """One option contract-unit. Quantity is always 1 after expansion.

    IsOpen/ClosedWith follow a single mutation: the FIFO matcher flips an
    opening unit to is_open=False and sets closed_with exactly once.
    """

    timestamp: datetime
    ticker: str
    currency: str
    account_id: str
    option_type: OptionType
    code: OptionCode
    strike: Decimal
    expiration: date
    premium: Decimal
    net_premium: Decimal
    multiplier: Decimal = Decimal("100")
    quantity: int = 1
    commissions: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    is_open: bool = True
    closed_with: str | None = None
    notes: str | None = None
    source_line: int = 0
    id: str = field(default_factory=new_id)

    @property
    def matching_key(self) -> tuple[str, str, str, OptionType, Decimal, date]:
        """Instrument identity used by FIFO matching."""
        return (
            self.ticker,
            self.currency,
            self.account_id,
            self.option_type,
            self.strike,
            self.expiration,
        )

    @property
    def state_is_valid(self) -> bool:
        """IsOpen and ClosedWith agree (open units unlinked, closed units linked)."""
        return self.is_open == (self.closed_with is None)


@dataclass
class CanonicalEquityTrade:
    """One equity trade, one per source row (never expanded)."""

    timestamp: datetime
    ticker: str
    currency: str
    account_id: str
    quantity: Decimal
    price: Decimal
    code: TradeCode
    trade_type: TradeType
    commissions: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    notes: str | None = None
    source_line: int = 0
    id: str = field(default_factory=new_id)

    @property
    def is_buy(self) -> bool:
        return self.code in (TradeCode.BUY_TO_OPEN, TradeCode.BUY_TO_CLOSE)


@dataclass
class CanonicalMovement:
    """Cash movement, currency conversion or ACAT transfer.

    amount is always positive; the movement type carries the direction.
    """

    timestamp: datetime
    currency: str
    account_id: str
    amount: Decimal
    movement_type: MovementType
    commissions: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    ticker: str | None = None
    quantity: Decimal | None = None
    from_currency: str | None = None
    amount_changed: Decimal | None = None
    notes: str | None = None
    source_line: int = 0
    id: str = field(default_factory=new_id)


@dataclass
class CanonicalDividend:
    """Dividend received on a ticker."""

    timestamp: datetime
    ticker: str
    currency: str
    account_id: str
    amount: Decimal
    source_line: int = 0
    id: str = field(default_factory=new_id)


@dataclass
class CanonicalDividendTax:
    """Tax withheld on a dividend (amount stored positive)."""

    timestamp: datetime
    ticker: str
    currency: str
    account_id: str
    amount: Decimal
    source_line: int = 0
    id: str = field(default_factory=new_id)


@dataclass
class ConvertedRecords:
    """Records produced from one file, in source order."""

    option_trades: list[CanonicalOptionTrade] = field(default_factory=list)
    equity_trades: list[CanonicalEquityTrade] = field(default_factory=list)
    movements: list[CanonicalMovement] = field(default_factory=list)
    dividends: list[CanonicalDividend] = field(default_factory=list)
    dividend_taxes: list[CanonicalDividendTax] = field(default_factory=list)

    @property
    def total(self) -> int:
        return (
            len(self.option_trades)
            + len(self.equity_trades)
            + len(self.movements)
            + len(self.dividends)
            + len(self.dividend_taxes)
        )

    @property
    def tickers(self) -> set[str]:
        symbols = {t.ticker for t in self.option_trades}
        symbols |= {t.ticker for t in self.equity_trades}
        symbols |= {d.ticker for d in self.dividends}
        symbols |= {d.ticker for d in self.dividend_taxes}
        symbols |= {m.ticker for m in self.movements if m.ticker}
        return symbols

    @property
    def currencies(self) -> set[str]:
        codes = {t.currency for t in self.option_trades}
        codes |= {t.currency for t in self.equity_trades}
        codes |= {m.currency for m in self.movements}
        codes |= {m.from_currency for m in self.movements if m.from_currency}
        codes |= {d.currency for d in self.dividends}
        codes |= {d.currency for d in self.dividend_taxes}
        return codes

    def extend(self, other: "ConvertedRecords") -> None:
        """Append another batch of records, keeping order."""
        self.option_trades.extend(other.option_trades)
        self.equity_trades.extend(other.equity_trades)
        self.movements.extend(other.movements)
        self.dividends.extend(other.dividends)
        self.dividend_taxes.extend(other.dividend_taxes)
