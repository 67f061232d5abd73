"""Application configuration constants."""

from decimal import Decimal

# Tastytrade transaction history export
TASTYTRADE_HEADERS = [
    "Date",
    "Type",
    "Sub Type",
    "Action",
    "Symbol",
    "Instrument Type",
    "Description",
    "Value",
    "Quantity",
    "Average Price",
    "Commissions",
    "Fees",
    "Multiplier",
    "Root Symbol",
    "Underlying Symbol",
    "Expiration Date",
    "Strike Price",
    "Call or Put",
    "Order #",
    "Currency",
]
TASTYTRADE_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"  # 2024-05-31T14:42:13+0100
# strptime accepts unpadded month/day for %m/%d, so one pattern covers M/d/yy and MM/dd/yy
TASTYTRADE_EXPIRATION_FORMATS = ["%m/%d/%y", "%m/%d/%Y"]
TASTYTRADE_EMPTY_NUMERIC = "--"  # Parses to zero, same as blank

# IBKR activity statement
IBKR_DATE_FORMATS = [
    "%Y-%m-%d, %H:%M:%S",  # Trades: "2025-10-15, 09:30:00"
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%d-%m-%Y",
    "%Y-%m-%d;%H:%M:%S",  # Flex query variant
]
IBKR_OPTION_EXPIRY_FORMAT = "%d%b%y"  # 17OCT25 inside "AAPL 17OCT25 150 C"

# Raw CSV reading
MAX_CSV_COLUMNS = 64  # Ragged rows are padded up to this many columns

# Special dividend adjustment detection
ADJUSTMENT_PREMIUM_TOLERANCE = Decimal("0.01")  # |closing + opening| must be within this
ADJUSTMENT_TIME_TOLERANCE_SECONDS = 2  # Legs must be at most this far apart
ADJUSTMENT_DELTA_TOLERANCE = Decimal("0.001")  # Reported delta vs new - original
ADJUSTMENT_LARGE_CHANGE_RATIO = Decimal("0.05")  # Warn above 5% strike change

# Option bookkeeping
DEFAULT_OPTION_MULTIPLIER = Decimal("100")
MONEY_QUANTUM = Decimal("0.01")  # Premium split precision for unit expansion

# Multi-file imports
DATE_GAP_WARNING_DAYS = 1  # Gaps longer than this between files produce a warning

# Database
DB_PATH_ENV_VAR = "BROKER_LEDGER_DB_PATH"
DEFAULT_ACCOUNT_CURRENCY = "USD"
