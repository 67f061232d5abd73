"""Shared fixtures for unit tests."""

import itertools
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from broker_ledger.lib.csv_models import ClassifiedTransaction, TastytradeTransaction
from broker_ledger.lib.records import CanonicalOptionTrade, OptionCode, OptionType
from broker_ledger.services.transaction_classifier import attach_tag, classify_transaction


@pytest.fixture
def make_transaction():
    """Factory for classified Tastytrade rows; defaults describe one XYZ call contract."""
    lines = itertools.count(2)

    def factory(**overrides) -> ClassifiedTransaction:
        fields = {
            "date": datetime(2024, 6, 3, 15, 0, tzinfo=timezone.utc),
            "type": "Trade",
            "sub_type": "Sell to Open",
            "action": "SELL_TO_OPEN",
            "symbol": "XYZ   240719C00030000",
            "instrument_type": "Equity Option",
            "description": "",
            "value": Decimal("150.00"),
            "quantity": Decimal("1"),
            "commissions": Decimal("0"),
            "fees": Decimal("0"),
            "multiplier": Decimal("100"),
            "root_symbol": "XYZ",
            "underlying_symbol": "XYZ",
            "expiration_date": date(2024, 7, 19),
            "strike_price": Decimal("30"),
            "call_or_put": "CALL",
            "currency": "USD",
            "line_number": next(lines),
        }
        fields.update(overrides)
        txn = TastytradeTransaction(**fields)
        classification = classify_transaction(txn)
        assert classification.success, classification.error
        return attach_tag(txn, classification.tag)

    return factory


@pytest.fixture
def make_special_dividend(make_transaction):
    """Factory for one Receive Deliver / Special Dividend leg."""

    def factory(value: str, strike: str, seconds: int = 0, **overrides) -> ClassifiedTransaction:
        fields = {
            "date": datetime(2024, 6, 14, 12, 0, seconds, tzinfo=timezone.utc),
            "type": "Receive Deliver",
            "sub_type": "Special Dividend",
            "action": "BUY_TO_CLOSE" if Decimal(value) < 0 else "SELL_TO_OPEN",
            "value": Decimal(value),
            "strike_price": Decimal(strike),
        }
        fields.update(overrides)
        return make_transaction(**fields)

    return factory


@pytest.fixture
def make_unit():
    """Factory for single-contract option units on one SPY put."""

    def factory(code: OptionCode, day: int, **overrides) -> CanonicalOptionTrade:
        fields = {
            "timestamp": datetime(2024, 7, day, 14, 0),
            "ticker": "SPY",
            "currency": "USD",
            "account_id": "acct-1",
            "option_type": OptionType.PUT,
            "code": code,
            "strike": Decimal("500"),
            "expiration": date(2024, 8, 16),
            "premium": Decimal("200"),
            "net_premium": Decimal("198.86") if code.is_opening else Decimal("-100.14"),
        }
        fields.update(overrides)
        return CanonicalOptionTrade(**fields)

    return factory
