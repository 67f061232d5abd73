"""Pydantic models for IBKR activity statement sections.

Each model is one "Data" row of a statement section, typed after parsing.
"""

import enum
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class IBKRCashFlowType(str, enum.Enum):
    """Cash flow kinds found in Deposits & Withdrawals and Cash Report."""

    DEPOSIT = "Deposit"
    WITHDRAWAL = "Withdrawal"
    COMMISSION = "Commission"
    TRADE_SETTLEMENT = "TradeSettlement"
    FX_TRANSLATION_GAIN = "FXTranslationGain"
    FX_TRANSLATION_LOSS = "FXTranslationLoss"
    INTEREST_PAYMENT = "InterestPayment"
    FEE = "Fee"
    DIVIDEND = "Dividend"
    WITHHOLDING_TAX = "WithholdingTax"


class IBKRRow(BaseModel):
    """Common diagnostics for every parsed statement row."""

    line_number: int
    raw_line: str = ""

    class Config:
        """Pydantic configuration."""

        frozen = True


class IBKRTrade(IBKRRow):
    """Stock or option trade from the Trades section."""

    asset_category: str
    currency: str
    symbol: str
    date_time: datetime
    quantity: Decimal
    trade_price: Decimal | None = None
    close_price: Decimal | None = None
    proceeds: Decimal = Decimal("0")
    commission: Decimal = Decimal("0")
    basis: Decimal | None = None
    realized_pnl: Decimal | None = None
    mtm_pnl: Decimal | None = None
    code: str | None = None


class IBKRForexTrade(IBKRRow):
    """Currency conversion from the Trades section (asset category Forex)."""

    currency_pair: str
    base_currency: str
    quote_currency: str
    date_time: datetime
    quantity: Decimal
    trade_price: Decimal
    proceeds: Decimal
    commission: Decimal = Decimal("0")
    code: str | None = None


class IBKRCashMovement(IBKRRow):
    """Deposits & Withdrawals row."""

    currency: str
    settle_date: datetime
    description: str
    amount: Decimal
    movement_type: IBKRCashFlowType


class IBKRCashFlow(IBKRRow):
    """Cash Report line item."""

    flow_type: IBKRCashFlowType
    currency: str
    amount: Decimal
    description: str


class IBKROpenPosition(IBKRRow):
    """Open Positions row (mark prices feed unrealized gains)."""

    asset_category: str
    currency: str
    symbol: str
    quantity: Decimal
    multiplier: Decimal = Decimal("1")
    cost_basis_price: Decimal = Decimal("0")
    cost_basis_money: Decimal = Decimal("0")
    close_price: Decimal = Decimal("0")
    value: Decimal = Decimal("0")
    unrealized_pnl: Decimal = Decimal("0")


class IBKRInstrument(IBKRRow):
    """Financial Instrument Information row."""

    asset_category: str
    symbol: str
    description: str = ""
    con_id: str | None = None
    security_id: str | None = None
    listing_exchange: str | None = None
    multiplier: Decimal | None = None
    instrument_type: str | None = None


class IBKRExchangeRate(IBKRRow):
    """Base Currency Exchange Rate row."""

    currency: str
    rate: Decimal


class IBKRStatementData(BaseModel):
    """All parsed rows of one statement, in file order per section."""

    trades: list[IBKRTrade] = Field(default_factory=list)
    forex_trades: list[IBKRForexTrade] = Field(default_factory=list)
    cash_movements: list[IBKRCashMovement] = Field(default_factory=list)
    cash_flows: list[IBKRCashFlow] = Field(default_factory=list)
    open_positions: list[IBKROpenPosition] = Field(default_factory=list)
    instruments: list[IBKRInstrument] = Field(default_factory=list)
    exchange_rates: list[IBKRExchangeRate] = Field(default_factory=list)

    @property
    def ledger_count(self) -> int:
        """Rows that become ledger records."""
        return len(self.trades) + len(self.forex_trades) + len(self.cash_movements)

    @property
    def reference_count(self) -> int:
        """Rows only used for reconciliation, marks and instrument lookups."""
        return (
            len(self.cash_flows)
            + len(self.open_positions)
            + len(self.instruments)
            + len(self.exchange_rates)
        )

    @property
    def record_count(self) -> int:
        return self.ledger_count + self.reference_count
