"""
Broker-specific transaction type mappings.

Maps broker transaction codes to the canonical classification taxonomy and
IBKR statement section names to section kinds.
"""

import enum

from broker_ledger.lib.csv_models import MoneyMovementSubType, TradeSubType
from broker_ledger.lib.ibkr_models import IBKRCashFlowType
from broker_ledger.lib.records import MovementType, OptionCode, TradeCode, TradeType

# Tastytrade (Type, Sub Type) -> TradeSubType
# Action column (BUY_TO_OPEN etc.) is kept on the tag but not used for lookup
TASTYTRADE_TRADE_MAPPING: dict[tuple[str, str], TradeSubType] = {
    ("Trade", "Buy to Open"): TradeSubType.BUY_TO_OPEN,
    ("Trade", "Sell to Open"): TradeSubType.SELL_TO_OPEN,
    ("Trade", "Buy to Close"): TradeSubType.BUY_TO_CLOSE,
    ("Trade", "Sell to Close"): TradeSubType.SELL_TO_CLOSE,
}

# Tastytrade (Type, Sub Type) -> MoneyMovementSubType
TASTYTRADE_MONEY_MOVEMENT_MAPPING: dict[tuple[str, str], MoneyMovementSubType] = {
    ("Money Movement", sub_type.value): sub_type for sub_type in MoneyMovementSubType
}

# Any Sub Type is accepted under this Type (ACAT, Special Dividend, Expiration, ...)
TASTYTRADE_RECEIVE_DELIVER_TYPE = "Receive Deliver"

# Option trade sub type -> canonical option code
OPTION_CODE_MAPPING: dict[TradeSubType, OptionCode] = {
    TradeSubType.BUY_TO_OPEN: OptionCode.BUY_TO_OPEN,
    TradeSubType.SELL_TO_OPEN: OptionCode.SELL_TO_OPEN,
    TradeSubType.BUY_TO_CLOSE: OptionCode.BUY_TO_CLOSE,
    TradeSubType.SELL_TO_CLOSE: OptionCode.SELL_TO_CLOSE,
}

# Equity trade sub type -> (trade code, trade type)
EQUITY_CODE_MAPPING: dict[TradeSubType, tuple[TradeCode, TradeType]] = {
    TradeSubType.BUY_TO_OPEN: (TradeCode.BUY_TO_OPEN, TradeType.LONG),
    TradeSubType.SELL_TO_OPEN: (TradeCode.SELL_TO_OPEN, TradeType.SHORT),
    TradeSubType.BUY_TO_CLOSE: (TradeCode.BUY_TO_CLOSE, TradeType.LONG),
    TradeSubType.SELL_TO_CLOSE: (TradeCode.SELL_TO_CLOSE, TradeType.SHORT),
}

# Money movement sub type -> broker movement type
# Transfer is resolved by sign, Dividend becomes a dividend record instead
MOVEMENT_TYPE_MAPPING: dict[MoneyMovementSubType, MovementType | None] = {
    MoneyMovementSubType.DEPOSIT: MovementType.DEPOSIT,
    MoneyMovementSubType.WITHDRAWAL: MovementType.WITHDRAWAL,
    MoneyMovementSubType.BALANCE_ADJUSTMENT: MovementType.FEE,
    MoneyMovementSubType.CREDIT_INTEREST: MovementType.INTERESTS_GAINED,
    MoneyMovementSubType.DEBIT_INTEREST: MovementType.INTERESTS_PAID,
    MoneyMovementSubType.LENDING: MovementType.LENDING,
    MoneyMovementSubType.TRANSFER: None,
    MoneyMovementSubType.DIVIDEND: None,
}

# Receive Deliver sub types on option rows that close a position
RECEIVE_DELIVER_OPTION_CODES: dict[str, OptionCode] = {
    "Assignment": OptionCode.ASSIGNED,
    "Exercise": OptionCode.ASSIGNED,
    "Expiration": OptionCode.EXPIRED,
}

TASTYTRADE_OPTION_INSTRUMENTS = {"Equity Option", "Future Option"}
TASTYTRADE_EQUITY_INSTRUMENTS = {"Equity"}


class IBKRSectionKind(str, enum.Enum):
    """IBKR activity statement sections."""

    TRADES = "Trades"
    DEPOSITS_WITHDRAWALS = "Deposits & Withdrawals"
    OPEN_POSITIONS = "Open Positions"
    FINANCIAL_INSTRUMENTS = "Financial Instrument Information"
    CASH_REPORT = "Cash Report"
    EXCHANGE_RATES = "Base Currency Exchange Rate"


# Sections with personal data; never parsed
IBKR_SENSITIVE_SECTIONS = {
    "Account Information",
    "Account Info",
    "Statement Header",
    "Statement",
    "Notes",
    "Legal Notes",
    "Notes/Legal Notes",
    "Location of Customer Assets",
    "Custody Information",
    "Net Asset Value",
    "Account Summary",
    "Change in NAV",
    "Codes",
}

IBKR_SECTION_MAPPING: dict[str, IBKRSectionKind] = {
    "Trades": IBKRSectionKind.TRADES,
    "Deposits & Withdrawals": IBKRSectionKind.DEPOSITS_WITHDRAWALS,
    "Open Positions": IBKRSectionKind.OPEN_POSITIONS,
    "Financial Instrument Information": IBKRSectionKind.FINANCIAL_INSTRUMENTS,
    "Cash Report": IBKRSectionKind.CASH_REPORT,
    "Base Currency Exchange Rate": IBKRSectionKind.EXCHANGE_RATES,
    "Exchange Rates": IBKRSectionKind.EXCHANGE_RATES,
}

# Recognised but not needed for reconstruction
IBKR_UNSUPPORTED_SECTIONS = {
    "Forex Balances",
    "Collateral for Customer Borrowing",
    "Mark-to-Market Performance Summary",
    "Realized & Unrealized Performance Summary",
    "Interest Accruals",
    "Change in Dividend Accruals",
}

# IBKR Trades asset categories
IBKR_STOCK_CATEGORIES = {"Stocks", "STK"}
IBKR_OPTION_CATEGORIES = {"Equity and Index Options", "OPT"}
IBKR_FOREX_CATEGORIES = {"Forex", "CASH"}

# IBKR Deposits & Withdrawals description keywords, checked in order
# Anything unmatched is a trade settlement; a negative transfer is a withdrawal
IBKR_CASH_MOVEMENT_KEYWORDS: list[tuple[str, IBKRCashFlowType]] = [
    ("Electronic Fund Transfer", IBKRCashFlowType.DEPOSIT),
    ("Withdrawal", IBKRCashFlowType.WITHDRAWAL),
    ("Deposit", IBKRCashFlowType.DEPOSIT),
    ("Commission", IBKRCashFlowType.COMMISSION),
]

# IBKR Cash Report "Currency Summary" keywords, checked in order
IBKR_CASH_REPORT_KEYWORDS: list[tuple[str, IBKRCashFlowType]] = [
    ("FX Translation", IBKRCashFlowType.FX_TRANSLATION_GAIN),  # sign decides gain or loss
    ("Withholding Tax", IBKRCashFlowType.WITHHOLDING_TAX),
    ("Dividend", IBKRCashFlowType.DIVIDEND),
    ("Deposit", IBKRCashFlowType.DEPOSIT),
    ("Withdrawal", IBKRCashFlowType.WITHDRAWAL),
    ("Commission", IBKRCashFlowType.COMMISSION),
    ("Interest", IBKRCashFlowType.INTEREST_PAYMENT),
    ("Fee", IBKRCashFlowType.FEE),
]

# Cash Report balance lines, not flows
IBKR_CASH_REPORT_BALANCE_LINES = {"Starting Cash", "Ending Cash", "Ending Settled Cash"}
