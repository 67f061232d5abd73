"""Unit tests for the Tastytrade transaction classifier."""

import pytest

from broker_ledger.lib.csv_models import (
    MoneyMovementSubType,
    TradeSubType,
    TransactionCategory,
    TransactionTag,
)
from broker_ledger.lib.errors import ParseErrorType
from broker_ledger.services.transaction_classifier import classify


@pytest.mark.unit
class TestClassify:
    """Test suite for classify."""

    @pytest.mark.parametrize(
        "sub_type,expected",
        [
            ("Buy to Open", TradeSubType.BUY_TO_OPEN),
            ("Sell to Open", TradeSubType.SELL_TO_OPEN),
            ("Buy to Close", TradeSubType.BUY_TO_CLOSE),
            ("Sell to Close", TradeSubType.SELL_TO_CLOSE),
        ],
    )
    def test_trade_sub_types(self, sub_type, expected):
        """Every Trade sub type maps to its TradeSubType."""
        result = classify("Trade", sub_type, "SOME_ACTION")

        assert result.success
        assert result.error is None
        assert result.tag.category == TransactionCategory.TRADE
        assert result.tag.trade_sub_type == expected
        assert result.tag.action == "SOME_ACTION"

    @pytest.mark.parametrize("sub_type", [s.value for s in MoneyMovementSubType])
    def test_money_movement_sub_types(self, sub_type):
        """Every Money Movement sub type is recognised."""
        result = classify("Money Movement", sub_type)

        assert result.success
        assert result.tag.is_money_movement
        assert result.tag.movement_sub_type.value == sub_type

    def test_receive_deliver_accepts_any_sub_type(self):
        """Receive Deliver keeps its sub type verbatim."""
        result = classify("Receive Deliver", "Expiration")

        assert result.tag.is_receive_deliver
        assert result.tag.receive_deliver_sub_type == "Expiration"

    def test_special_dividend_and_acat_flags(self):
        """Special Dividend and ACAT are flagged on the tag."""
        special = classify("Receive Deliver", "Special Dividend").tag
        acat = classify("Receive Deliver", "ACAT").tag

        assert special.is_special_dividend and not special.is_acat
        assert acat.is_acat and not acat.is_special_dividend

    def test_whitespace_is_ignored(self):
        """Surrounding whitespace does not affect the lookup."""
        result = classify("  Trade ", " Sell to Open  ", " SELL_TO_OPEN ")

        assert result.tag.trade_sub_type == TradeSubType.SELL_TO_OPEN
        assert result.tag.action == "SELL_TO_OPEN"

    def test_unknown_combination_returns_error(self):
        """Unknown Type/Sub Type pairs produce an InvalidTransactionType error, not an exception."""
        result = classify("Journal", "Other", "", line_number=7, raw_line="raw,text")

        assert not result.success
        assert result.tag is None
        assert result.error.error_type == ParseErrorType.INVALID_TRANSACTION_TYPE
        assert result.error.line_number == 7
        assert result.error.raw_line == "raw,text"
        assert "Type='Journal'" in result.error.message

    def test_trade_with_unknown_sub_type_is_rejected(self):
        """A known Type with an unknown Sub Type is still an error."""
        assert not classify("Trade", "Exercise").success

    def test_empty_receive_deliver_sub_type_is_rejected(self):
        """Receive Deliver without a sub type cannot be classified."""
        assert not classify("Receive Deliver", "").success


@pytest.mark.unit
class TestTransactionTag:
    """Test suite for TransactionTag helpers."""

    def test_str(self):
        """Tags render as Category/SubType."""
        assert str(TransactionTag.trade(TradeSubType.BUY_TO_CLOSE)) == "Trade/Buy to Close"
        assert str(TransactionTag.money_movement(MoneyMovementSubType.DEPOSIT)) == "Money Movement/Deposit"
        assert str(TransactionTag.receive_deliver("ACAT")) == "Receive Deliver/ACAT"

    def test_opening_and_buy_flags(self):
        """TradeSubType exposes opening and buy direction."""
        assert TradeSubType.SELL_TO_OPEN.is_opening
        assert not TradeSubType.SELL_TO_OPEN.is_buy
        assert TradeSubType.BUY_TO_CLOSE.is_buy
        assert not TradeSubType.BUY_TO_CLOSE.is_opening
