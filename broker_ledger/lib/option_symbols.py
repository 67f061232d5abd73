"""
Option symbol parsing.

Tastytrade exports OCC-style symbols such as ``PLTR  240531C00022000``:
root, padding spaces, YYMMDD expiration, C/P, strike times 1000 in 8 digits.
IBKR statements use ``AAPL 17OCT25 150 C``.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from broker_ledger.lib.config import IBKR_OPTION_EXPIRY_FORMAT
from broker_ledger.lib.errors import InvalidOptionSymbolError

OCC_SYMBOL_PATTERN = re.compile(r"^([A-Z]+)\s+(\d{6})([CP])(\d{8})$")
IBKR_SYMBOL_PATTERN = re.compile(r"^([A-Z.]+)\s+(\d{1,2}[A-Z]{3}\d{2})\s+([\d.]+)\s+([CP])$")


@dataclass(frozen=True)
class ParsedOptionSymbol:
    """Components of an option symbol."""

    ticker: str
    expiration: date
    strike: Decimal
    option_type: str  # "CALL" or "PUT"


def _option_type(code: str) -> str:
    return "CALL" if code == "C" else "PUT"


def is_option_symbol(symbol: str | None) -> bool:
    """Return True if the symbol looks like an OCC-style option symbol."""
    if not symbol:
        return False
    return OCC_SYMBOL_PATTERN.match(symbol.strip()) is not None


def parse_option_symbol(symbol: str) -> ParsedOptionSymbol:
    """
    Parse a Tastytrade option symbol.

    Args:
        symbol: Symbol such as "PLTR  240531C00022000"

    Returns:
        ParsedOptionSymbol with ticker, expiration, strike and type

    Raises:
        InvalidOptionSymbolError: If the symbol is empty or malformed

    Examples:
        >>> parse_option_symbol("PLTR  240531C00022000").strike
        Decimal('22')
    """
    if not symbol or not symbol.strip():
        raise InvalidOptionSymbolError(symbol or "")

    match = OCC_SYMBOL_PATTERN.match(symbol.strip())
    if not match:
        raise InvalidOptionSymbolError(symbol)

    ticker, yymmdd, type_code, strike_digits = match.groups()
    try:
        expiration = datetime.strptime(yymmdd, "%y%m%d").date()
    except ValueError:
        raise InvalidOptionSymbolError(symbol)

    strike = (Decimal(int(strike_digits)) / Decimal(1000)).normalize()
    return ParsedOptionSymbol(
        ticker=ticker, expiration=expiration, strike=strike, option_type=_option_type(type_code)
    )


def format_option_symbol(ticker: str, expiration: date, option_type: str, strike: Decimal) -> str:
    """
    Build an OCC-style symbol; the root is left-justified to six characters.

    Examples:
        >>> format_option_symbol("PLTR", date(2024, 5, 31), "CALL", Decimal("22"))
        'PLTR  240531C00022000'
    """
    type_code = "C" if option_type.upper().startswith("C") else "P"
    strike_digits = int((strike * 1000).to_integral_value())
    return f"{ticker.upper():<6}{expiration:%y%m%d}{type_code}{strike_digits:08d}"


def parse_ibkr_option_symbol(symbol: str) -> ParsedOptionSymbol:
    """
    Parse an IBKR option description such as "AAPL 17OCT25 150 C".

    Raises:
        InvalidOptionSymbolError: If the symbol is malformed
    """
    match = IBKR_SYMBOL_PATTERN.match(symbol.strip().upper())
    if not match:
        raise InvalidOptionSymbolError(symbol)

    ticker, expiry, strike_text, type_code = match.groups()
    try:
        expiration = datetime.strptime(expiry.title(), IBKR_OPTION_EXPIRY_FORMAT).date()
        strike = Decimal(strike_text)
    except (ValueError, InvalidOperation):
        raise InvalidOptionSymbolError(symbol)

    return ParsedOptionSymbol(
        ticker=ticker, expiration=expiration, strike=strike, option_type=_option_type(type_code)
    )
