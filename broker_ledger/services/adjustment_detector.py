"""
Special dividend strike adjustment detection.

When a special dividend is paid, Tastytrade closes the affected option
position and reopens it at an adjusted strike. Both legs arrive as
"Receive Deliver / Special Dividend" rows within a second or two of each
other. This module pairs those legs, validates the pair and rewrites the
strike of previously imported option trades.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from broker_ledger.lib.config import (
    ADJUSTMENT_DELTA_TOLERANCE,
    ADJUSTMENT_LARGE_CHANGE_RATIO,
    ADJUSTMENT_PREMIUM_TOLERANCE,
    ADJUSTMENT_TIME_TOLERANCE_SECONDS,
)
from broker_ledger.lib.csv_models import ClassifiedTransaction
from broker_ledger.lib.records import CanonicalOptionTrade, OptionType, normalize_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectedAdjustment:
    """A validated closing/opening pair caused by a special dividend."""

    original_strike: Decimal
    new_strike: Decimal
    strike_delta: Decimal
    dividend_amount: Decimal
    timestamp: datetime
    ticker: str
    expiration: date
    option_type: str
    closing: ClassifiedTransaction
    opening: ClassifiedTransaction

    @property
    def line_numbers(self) -> tuple[int, int]:
        return (self.closing.line_number, self.opening.line_number)


@dataclass
class AdjustmentValidation:
    """Outcome of validate_adjustment."""

    is_valid: bool = True
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class DetectionResult:
    """Detected adjustments plus the special dividend rows left without a partner."""

    adjustments: list[DetectedAdjustment] = field(default_factory=list)
    unmatched: list[ClassifiedTransaction] = field(default_factory=list)

    @property
    def consumed_lines(self) -> set[int]:
        lines: set[int] = set()
        for adjustment in self.adjustments:
            lines.update(adjustment.line_numbers)
        return lines


def is_special_dividend(txn: ClassifiedTransaction) -> bool:
    return txn.tag.is_special_dividend


def _is_valid_pair(closing: ClassifiedTransaction, opening: ClassifiedTransaction) -> bool:
    """All pairing conditions for a closing-like and an opening-like leg."""
    if closing.strike_price is None or opening.strike_price is None:
        return False

    seconds_apart = abs((opening.date - closing.date).total_seconds())
    return (
        closing.ticker_symbol == opening.ticker_symbol
        and closing.expiration_date == opening.expiration_date
        and (closing.call_or_put or "").upper() == (opening.call_or_put or "").upper()
        and seconds_apart <= ADJUSTMENT_TIME_TOLERANCE_SECONDS
        and closing.value < 0 < opening.value
        and closing.strike_price != opening.strike_price
        and abs(closing.value + opening.value) <= ADJUSTMENT_PREMIUM_TOLERANCE
        and closing.quantity == opening.quantity
    )


def _build_adjustment(closing: ClassifiedTransaction, opening: ClassifiedTransaction) -> DetectedAdjustment:
    strikes = (closing.strike_price, opening.strike_price)
    original_strike = max(strikes)  # type: ignore[type-var]
    new_strike = min(strikes)  # type: ignore[type-var]
    return DetectedAdjustment(
        original_strike=original_strike,
        new_strike=new_strike,
        strike_delta=new_strike - original_strike,
        dividend_amount=abs(closing.value),
        timestamp=normalize_timestamp(closing.date),
        ticker=closing.ticker_symbol or "",
        expiration=closing.expiration_date,  # type: ignore[arg-type]
        option_type=(closing.call_or_put or "").upper(),
        closing=closing,
        opening=opening,
    )


def _pair_bucket(bucket: list[ClassifiedTransaction]) -> list[DetectedAdjustment]:
    """Greedy first-fit pairing inside one bucket."""
    closing_like = [t for t in bucket if t.value < 0]
    opening_like = [t for t in bucket if t.value > 0]
    used_openings: set[int] = set()

    pairs = []
    for closing in closing_like:
        for i, opening in enumerate(opening_like):
            if i in used_openings:
                continue
            if _is_valid_pair(closing, opening):
                used_openings.add(i)
                pairs.append(_build_adjustment(closing, opening))
                break
    return pairs


def _bucket_candidates(candidates: list[ClassifiedTransaction]) -> list[list[ClassifiedTransaction]]:
    """Group legs by ticker, then into runs that start within the time tolerance."""
    by_ticker: dict[str, list[ClassifiedTransaction]] = defaultdict(list)
    for txn in candidates:
        by_ticker[txn.ticker_symbol or ""].append(txn)

    buckets: list[list[ClassifiedTransaction]] = []
    for legs in by_ticker.values():
        legs.sort(key=lambda t: (t.date, t.line_number))
        current: list[ClassifiedTransaction] = []
        for txn in legs:
            if current and (txn.date - current[0].date).total_seconds() > ADJUSTMENT_TIME_TOLERANCE_SECONDS:
                buckets.append(current)
                current = []
            current.append(txn)
        if current:
            buckets.append(current)
    return buckets


def detect_adjustments(transactions: list[ClassifiedTransaction]) -> DetectionResult:
    """
    Find special dividend adjustment pairs.

    Special dividend rows are bucketed by underlying ticker and a two second
    time window; pairs never cross buckets. Each row takes part in at
    most one pair. Pairs failing validate_adjustment are dropped and their
    rows reported as unmatched.

    Args:
        transactions: Classified transactions of a file or batch

    Returns:
        DetectionResult with accepted adjustments and unmatched legs, in file order
    """
    candidates = [t for t in transactions if is_special_dividend(t)]
    if not candidates:
        return DetectionResult()

    result = DetectionResult()
    for bucket in _bucket_candidates(candidates):
        for adjustment in _pair_bucket(bucket):
            validation = validate_adjustment(adjustment)
            if not validation.is_valid:
                logger.warning(
                    f"Adjustment validation failed for {adjustment.ticker} {adjustment.option_type}: "
                    f"{'; '.join(validation.errors)}"
                )
                continue
            if validation.warnings:
                logger.warning(
                    f"Adjustment validation warning for {adjustment.ticker} {adjustment.option_type}: "
                    f"{'; '.join(validation.warnings)}"
                )
            result.adjustments.append(adjustment)

    result.adjustments.sort(key=lambda a: a.closing.line_number)
    consumed = result.consumed_lines
    result.unmatched = [t for t in candidates if t.line_number not in consumed]

    logger.info(
        f"Detected {len(result.adjustments)} special dividend adjustment(s), "
        f"{len(result.unmatched)} unmatched special dividend row(s)"
    )
    return result


def validate_adjustment(adjustment: DetectedAdjustment) -> AdjustmentValidation:
    """
    Sanity-check a detected adjustment.

    Errors: non-positive strikes, negative dividend amount, delta that does
    not equal new - original. Warning: strike change above 5%.
    """
    result = AdjustmentValidation()

    if adjustment.original_strike <= 0:
        result.errors.append(f"Original strike must be positive, got {adjustment.original_strike}")
    if adjustment.new_strike <= 0:
        result.errors.append(f"New strike must be positive, got {adjustment.new_strike}")
    if adjustment.dividend_amount < 0:
        result.errors.append(
            f"Dividend amount must be non-negative, got {adjustment.dividend_amount}"
        )

    expected_delta = adjustment.new_strike - adjustment.original_strike
    if abs(expected_delta - adjustment.strike_delta) >= ADJUSTMENT_DELTA_TOLERANCE:
        result.errors.append(
            f"Strike delta calculation error: expected {expected_delta}, got {adjustment.strike_delta}"
        )

    if adjustment.original_strike > 0:
        ratio = abs(adjustment.strike_delta) / adjustment.original_strike
        if ratio > ADJUSTMENT_LARGE_CHANGE_RATIO:
            result.warnings.append(
                f"Unusually large strike adjustment: {ratio * 100:.2f}% "
                f"(delta: {adjustment.strike_delta:.2f})"
            )

    result.is_valid = not result.errors
    return result


def format_adjustment_note(original_strike: Decimal, new_strike: Decimal, dividend_amount: Decimal) -> str:
    """
    Note stored on adjusted option trades.

    Examples:
        >>> format_adjustment_note(Decimal("30"), Decimal("29.70"), Decimal("12.34"))
        'Strike adjusted from 30.00 to 29.70 due to special dividend (Δ -0.30, impact: $12.34)'
    """
    delta = new_strike - original_strike
    return (
        f"Strike adjusted from {original_strike:.2f} to {new_strike:.2f} due to special dividend "
        f"(Δ {delta:.2f}, impact: ${dividend_amount:.2f})"
    )


def apply_adjustments(
    option_trades: list[CanonicalOptionTrade], adjustments: list[DetectedAdjustment]
) -> int:
    """
    Move option trades opened before an adjustment to the adjusted strike.

    A trade is affected when its ticker, expiration, option type and strike
    equal the adjustment's original terms and it is dated no later than the
    adjustment. Trades are updated in place.

    Returns:
        Number of trades updated
    """
    updated = 0
    for adjustment in adjustments:
        option_type = OptionType.from_broker(adjustment.option_type)
        note = format_adjustment_note(
            adjustment.original_strike, adjustment.new_strike, adjustment.dividend_amount
        )
        for trade in option_trades:
            if (
                trade.ticker == adjustment.ticker
                and trade.expiration == adjustment.expiration
                and trade.option_type == option_type
                and trade.strike == adjustment.original_strike
                and trade.timestamp <= adjustment.timestamp
            ):
                trade.strike = adjustment.new_strike
                trade.notes = f"{trade.notes}; {note}" if trade.notes else note
                updated += 1

    if updated:
        logger.info(f"Applied {len(adjustments)} strike adjustment(s) to {updated} option trade(s)")
    return updated


def get_adjustment_summary(adjustments: list[DetectedAdjustment]) -> dict:
    """Count, total dividend impact and affected tickers."""
    return {
        "count": len(adjustments),
        "total_dividend_impact": sum((a.dividend_amount for a in adjustments), Decimal("0")),
        "tickers": sorted({a.ticker for a in adjustments}),
    }
