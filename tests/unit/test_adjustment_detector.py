"""Unit tests for special dividend strike adjustment detection."""

from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal

import pytest

from broker_ledger.lib.records import CanonicalOptionTrade, OptionCode, OptionType
from broker_ledger.services.adjustment_detector import (
    apply_adjustments,
    detect_adjustments,
    format_adjustment_note,
    get_adjustment_summary,
    validate_adjustment,
)


@pytest.mark.unit
class TestDetectAdjustments:
    """Test suite for detect_adjustments."""

    def test_detects_offsetting_pair(self, make_special_dividend):
        """A -X/+X pair one second apart with different strikes is an adjustment."""
        closing = make_special_dividend("-12.34", "30")
        opening = make_special_dividend("12.34", "29.70", seconds=1)

        result = detect_adjustments([closing, opening])

        assert len(result.adjustments) == 1
        adjustment = result.adjustments[0]
        assert adjustment.original_strike == Decimal("30")
        assert adjustment.new_strike == Decimal("29.70")
        assert adjustment.strike_delta == Decimal("-0.30")
        assert adjustment.dividend_amount == Decimal("12.34")
        assert adjustment.ticker == "XYZ"
        assert adjustment.expiration == date(2024, 7, 19)
        assert adjustment.option_type == "CALL"
        assert adjustment.timestamp == datetime(2024, 6, 14, 12, 0, 0)
        assert result.unmatched == []
        assert result.consumed_lines == {closing.line_number, opening.line_number}

    def test_pair_order_in_input_does_not_matter(self, make_special_dividend):
        """The opening leg may come first in the file."""
        opening = make_special_dividend("12.34", "29.70")
        closing = make_special_dividend("-12.34", "30", seconds=1)

        result = detect_adjustments([opening, closing])

        assert len(result.adjustments) == 1
        assert result.adjustments[0].original_strike == Decimal("30")

    def test_legs_too_far_apart_are_unmatched(self, make_special_dividend):
        """Legs more than two seconds apart never pair."""
        closing = make_special_dividend("-12.34", "30")
        opening = make_special_dividend("12.34", "29.70", seconds=3)

        result = detect_adjustments([closing, opening])

        assert result.adjustments == []
        assert len(result.unmatched) == 2

    def test_premiums_must_offset(self, make_special_dividend):
        """Values that do not cancel within a cent are rejected."""
        closing = make_special_dividend("-12.34", "30")
        opening = make_special_dividend("12.00", "29.70", seconds=1)

        assert detect_adjustments([closing, opening]).adjustments == []

    def test_strikes_must_differ(self, make_special_dividend):
        """Same-strike legs are not an adjustment."""
        closing = make_special_dividend("-12.34", "30")
        opening = make_special_dividend("12.34", "30", seconds=1)

        assert detect_adjustments([closing, opening]).adjustments == []

    def test_tickers_must_match(self, make_special_dividend):
        """Legs on different underlyings never pair."""
        closing = make_special_dividend("-12.34", "30")
        opening = make_special_dividend(
            "12.34", "29.70", seconds=1, root_symbol="ABC", underlying_symbol="ABC"
        )

        result = detect_adjustments([closing, opening])

        assert result.adjustments == []
        assert len(result.unmatched) == 2

    def test_single_leg_is_unmatched(self, make_special_dividend):
        """A lone special dividend leg is reported, not paired."""
        closing = make_special_dividend("-12.34", "30")

        result = detect_adjustments([closing])

        assert result.adjustments == []
        assert result.unmatched == [closing]

    def test_each_leg_used_at_most_once(self, make_special_dividend):
        """Two closing legs compete for one opening leg; the first in time wins."""
        first = make_special_dividend("-12.34", "30")
        second = make_special_dividend("-12.34", "30")
        opening = make_special_dividend("12.34", "29.70", seconds=1)

        result = detect_adjustments([first, second, opening])

        assert len(result.adjustments) == 1
        assert result.adjustments[0].closing is first
        assert result.unmatched == [second]

    def test_ignores_other_transactions(self, make_transaction):
        """Rows that are not special dividends are never candidates."""
        result = detect_adjustments([make_transaction(), make_transaction(value=Decimal("-150"))])

        assert result.adjustments == []
        assert result.unmatched == []


@pytest.mark.unit
class TestValidateAdjustment:
    """Test suite for validate_adjustment."""

    @pytest.fixture
    def adjustment(self, make_special_dividend):
        closing = make_special_dividend("-12.34", "30")
        opening = make_special_dividend("12.34", "29.70", seconds=1)
        return detect_adjustments([closing, opening]).adjustments[0]

    def test_valid_adjustment(self, adjustment):
        """A small positive-strike adjustment passes without warnings."""
        result = validate_adjustment(adjustment)

        assert result.is_valid
        assert result.errors == []
        assert result.warnings == []

    def test_non_positive_strike_is_error(self, adjustment):
        """Zero or negative strikes are errors."""
        broken = replace(adjustment, new_strike=Decimal("0"), strike_delta=Decimal("-30"))

        result = validate_adjustment(broken)

        assert not result.is_valid
        assert any("New strike must be positive" in e for e in result.errors)

    def test_negative_dividend_is_error(self, adjustment):
        """The dividend impact cannot be negative."""
        result = validate_adjustment(replace(adjustment, dividend_amount=Decimal("-1")))

        assert not result.is_valid

    def test_delta_mismatch_is_error(self, adjustment):
        """A delta that is not new minus original is an error."""
        result = validate_adjustment(replace(adjustment, strike_delta=Decimal("-0.50")))

        assert not result.is_valid
        assert any("Strike delta calculation error" in e for e in result.errors)

    def test_large_change_is_warning(self, adjustment):
        """Changes above five percent warn but stay valid."""
        large = replace(adjustment, new_strike=Decimal("27"), strike_delta=Decimal("-3"))

        result = validate_adjustment(large)

        assert result.is_valid
        assert len(result.warnings) == 1
        assert "Unusually large strike adjustment" in result.warnings[0]


@pytest.mark.unit
class TestApplyAdjustments:
    """Test suite for apply_adjustments."""

    @pytest.fixture
    def adjustment(self, make_special_dividend):
        closing = make_special_dividend("-12.34", "30")
        opening = make_special_dividend("12.34", "29.70", seconds=1)
        return detect_adjustments([closing, opening]).adjustments[0]

    def _trade(self, timestamp: datetime, strike: str = "30", notes: str | None = None) -> CanonicalOptionTrade:
        return CanonicalOptionTrade(
            timestamp=timestamp,
            ticker="XYZ",
            currency="USD",
            account_id="acct-1",
            option_type=OptionType.CALL,
            code=OptionCode.SELL_TO_OPEN,
            strike=Decimal(strike),
            expiration=date(2024, 7, 19),
            premium=Decimal("150"),
            net_premium=Decimal("148.86"),
            notes=notes,
        )

    def test_updates_trades_opened_before_adjustment(self, adjustment):
        """Earlier trades at the original strike move to the new strike with a note."""
        earlier = self._trade(datetime(2024, 6, 3, 15, 0), notes="Sold 1 XYZ")
        later = self._trade(datetime(2024, 6, 20, 15, 0))
        other_strike = self._trade(datetime(2024, 6, 3, 15, 0), strike="35")

        updated = apply_adjustments([earlier, later, other_strike], [adjustment])

        assert updated == 1
        assert earlier.strike == Decimal("29.70")
        assert earlier.notes.startswith("Sold 1 XYZ; Strike adjusted from 30.00 to 29.70")
        assert later.strike == Decimal("30")
        assert other_strike.strike == Decimal("35")

    def test_no_adjustments_is_noop(self):
        """Nothing changes without adjustments."""
        trade = self._trade(datetime(2024, 6, 3, 15, 0))

        assert apply_adjustments([trade], []) == 0
        assert trade.strike == Decimal("30")


@pytest.mark.unit
class TestAdjustmentHelpers:
    """Test suite for note formatting and summaries."""

    def test_format_adjustment_note(self):
        """The note records both strikes, the delta and the impact."""
        note = format_adjustment_note(Decimal("30"), Decimal("29.70"), Decimal("12.34"))

        assert note == (
            "Strike adjusted from 30.00 to 29.70 due to special dividend (Δ -0.30, impact: $12.34)"
        )

    def test_summary(self, make_special_dividend):
        """The summary counts adjustments, totals the impact and lists tickers."""
        legs = [
            make_special_dividend("-12.34", "30"),
            make_special_dividend("12.34", "29.70", seconds=1),
            make_special_dividend("-5.00", "50", root_symbol="ABC", underlying_symbol="ABC"),
            make_special_dividend(
                "5.00", "49.50", seconds=1, root_symbol="ABC", underlying_symbol="ABC"
            ),
        ]

        summary = get_adjustment_summary(detect_adjustments(legs).adjustments)

        assert summary["count"] == 2
        assert summary["total_dividend_impact"] == Decimal("17.34")
        assert summary["tickers"] == ["ABC", "XYZ"]

    def test_empty_summary(self):
        """No adjustments summarise to zeros."""
        assert get_adjustment_summary([]) == {
            "count": 0,
            "total_dividend_impact": Decimal("0"),
            "tickers": [],
        }
