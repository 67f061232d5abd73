"""Custom exception classes and row-level diagnostics for broker-ledger."""

import enum
from dataclasses import dataclass


class BrokerLedgerError(Exception):
    """Base exception for all broker-ledger errors."""

    def __init__(self, message: str):
        """Initialize with error message."""
        self.message = message
        super().__init__(message)


class DataError(BrokerLedgerError):
    """Data validation or processing errors."""

    pass


class ValidationError(DataError):
    """Input validation errors."""

    pass


class ClassificationError(DataError):
    """Unrecognized broker transaction type combination."""

    def __init__(self, type_: str, sub_type: str, action: str = ""):
        """
        Initialize with the unrecognized fields.

        Args:
            type_: Broker transaction type column
            sub_type: Broker transaction sub type column
            action: Broker action column (may be empty)
        """
        self.type_ = type_
        self.sub_type = sub_type
        self.action = action
        message = f"Unsupported transaction type: Type='{type_}', SubType='{sub_type}'"
        if action:
            message += f", Action='{action}'"
        super().__init__(message)


class InvalidOptionSymbolError(DataError):
    """Option symbol does not match the broker's OCC-style format."""

    def __init__(self, symbol: str):
        """
        Initialize with symbol.

        Args:
            symbol: The invalid option symbol
        """
        message = f"Invalid option symbol format: '{symbol}'"
        super().__init__(message)


class DatabaseError(BrokerLedgerError):
    """Database operation errors."""

    pass


class AccountNotFoundError(DatabaseError):
    """Broker account not found in database."""

    def __init__(self, account: str):
        """
        Initialize with account name or ID.

        Args:
            account: The account that wasn't found
        """
        message = (
            f"Broker account not found: {account}. Import a statement first with: "
            f"broker-ledger import files <csv> --account {account}"
        )
        super().__init__(message)


class ImportCancelledError(BrokerLedgerError):
    """Import batch was cancelled through its cancellation token."""

    def __init__(self, processed_files: int, total_files: int):
        """
        Initialize with progress at the time of cancellation.

        Args:
            processed_files: Files completed before cancellation
            total_files: Files in the batch
        """
        self.processed_files = processed_files
        self.total_files = total_files
        message = f"Import cancelled after {processed_files} of {total_files} file(s)"
        super().__init__(message)


class ConfigurationError(BrokerLedgerError):
    """Configuration errors."""

    pass


class ParseErrorType(str, enum.Enum):
    """Row-level parse failure categories."""

    INVALID_DATE_FORMAT = "InvalidDateFormat"
    INVALID_DATA_FORMAT = "InvalidDataFormat"
    MISSING_REQUIRED_FIELD = "MissingRequiredField"
    INVALID_TRANSACTION_TYPE = "InvalidTransactionType"
    INVALID_NUMERIC_VALUE = "InvalidNumericValue"
    VALIDATION_ERROR = "ValidationError"


class ImportErrorType(str, enum.Enum):
    """Import-level error categories stored with each ImportError row."""

    INVALID_DATA_FORMAT = "InvalidDataFormat"
    MISSING_REQUIRED_FIELD = "MissingRequiredField"
    INVALID_DATE = "InvalidDate"
    INVALID_AMOUNT = "InvalidAmount"
    DUPLICATE_RECORD = "DuplicateRecord"
    UNKNOWN_TICKER = "UnknownTicker"
    VALIDATION_ERROR = "ValidationError"

    @classmethod
    def from_parse_error(cls, error_type: "ParseErrorType") -> "ImportErrorType":
        """Map a row-level category onto the import-level one."""
        return _PARSE_TO_IMPORT_ERROR.get(error_type, cls.VALIDATION_ERROR)


class ImportWarningType(str, enum.Enum):
    """Import-level warning categories."""

    DATA_FORMAT_WARNING = "DataFormatWarning"
    MISSING_OPTIONAL_FIELD = "MissingOptionalField"
    TICKER_NOT_FOUND = "TickerNotFound"
    DATE_ADJUSTMENT = "DateAdjustment"


_PARSE_TO_IMPORT_ERROR = {
    ParseErrorType.INVALID_DATE_FORMAT: ImportErrorType.INVALID_DATE,
    ParseErrorType.INVALID_DATA_FORMAT: ImportErrorType.INVALID_DATA_FORMAT,
    ParseErrorType.MISSING_REQUIRED_FIELD: ImportErrorType.MISSING_REQUIRED_FIELD,
    ParseErrorType.INVALID_TRANSACTION_TYPE: ImportErrorType.INVALID_DATA_FORMAT,
    ParseErrorType.INVALID_NUMERIC_VALUE: ImportErrorType.INVALID_AMOUNT,
    ParseErrorType.VALIDATION_ERROR: ImportErrorType.VALIDATION_ERROR,
}


@dataclass(frozen=True)
class RowError:
    """A single row that failed to parse, classify or convert.

    Attributes:
        line_number: 1-based line in the source file (0 for file access failures)
        message: Human-readable description
        raw_line: Original CSV text of the row
        error_type: Failure category
        detail: Optional detail such as the missing field name
    """

    line_number: int
    message: str
    raw_line: str
    error_type: ParseErrorType
    detail: str | None = None


# Error message helpers


def format_error_message(error: Exception) -> str:
    """
    Format exception into user-friendly error message.

    Args:
        error: The exception to format

    Returns:
        Formatted error message
    """
    if isinstance(error, BrokerLedgerError):
        return error.message

    # Generic errors
    error_type = type(error).__name__
    return f"{error_type}: {str(error)}"


def get_error_color(error: Exception) -> str:
    """
    Get Rich color for error type.

    Args:
        error: The exception

    Returns:
        Rich color name
    """
    if isinstance(error, ImportCancelledError):
        return "yellow"
    elif isinstance(error, (ValidationError, DataError)):
        return "red"
    elif isinstance(error, ConfigurationError):
        return "orange"
    elif isinstance(error, DatabaseError):
        return "magenta"
    else:
        return "red"
