"""Unit tests for input validators."""

import pytest

from broker_ledger.lib.errors import ValidationError
from broker_ledger.lib.validators import (
    validate_account_name,
    validate_broker,
    validate_currency,
)


@pytest.mark.unit
class TestValidateCurrency:
    """Test suite for validate_currency."""

    def test_normalizes_case(self):
        assert validate_currency(" eur ") == "EUR"

    @pytest.mark.parametrize("raw", ["", "US", "USDT", "U5D"])
    def test_invalid(self, raw):
        with pytest.raises(ValidationError, match="Invalid currency code"):
            validate_currency(raw)


@pytest.mark.unit
class TestValidateBroker:
    """Test suite for validate_broker."""

    @pytest.mark.parametrize("raw,expected", [("ibkr", "ibkr"), ("Tastytrade", "tastytrade")])
    def test_supported(self, raw, expected):
        assert validate_broker(raw) == expected

    def test_unsupported(self):
        with pytest.raises(ValidationError, match="Unsupported broker: 'schwab'"):
            validate_broker("schwab")


@pytest.mark.unit
class TestValidateAccountName:
    """Test suite for validate_account_name."""

    def test_trims(self):
        assert validate_account_name("  Main  ") == "Main"

    def test_empty(self):
        with pytest.raises(ValidationError, match="cannot be empty"):
            validate_account_name("   ")

    def test_too_long(self):
        with pytest.raises(ValidationError, match="too long"):
            validate_account_name("x" * 101)
