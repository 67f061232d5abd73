"""
Input validation utilities.

Normalizes the identifiers the persistence layer resolves or creates:
currency codes, broker identifiers and broker account names.
"""

import re

from broker_ledger.lib.errors import ValidationError

SUPPORTED_BROKERS = ("tastytrade", "ibkr")


def validate_currency(currency: str) -> str:
    """
    Validate ISO 4217 currency code shape.

    Args:
        currency: Currency code to validate

    Returns:
        Normalized currency code (uppercase, trimmed)

    Raises:
        ValidationError: If currency code is not three letters

    Examples:
        >>> validate_currency("usd")
        'USD'
    """
    currency = currency.upper().strip()

    if not re.match(r"^[A-Z]{3}$", currency):
        raise ValidationError(f"Invalid currency code: {currency!r}. Must be exactly 3 letters")

    return currency


def validate_broker(broker: str) -> str:
    """
    Validate broker identifier.

    Raises:
        ValidationError: If the broker is not one of the supported export formats
    """
    broker = broker.lower().strip()
    if broker not in SUPPORTED_BROKERS:
        raise ValidationError(
            f"Unsupported broker: {broker!r}. Supported: {', '.join(SUPPORTED_BROKERS)}"
        )
    return broker


def validate_account_name(name: str) -> str:
    """Validate a broker account display name (1-100 characters after trimming)."""
    name = name.strip()
    if not name:
        raise ValidationError("Account name cannot be empty")
    if len(name) > 100:
        raise ValidationError(f"Account name too long ({len(name)} > 100 characters)")
    return name
