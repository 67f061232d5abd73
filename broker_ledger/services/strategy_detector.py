"""Multi-leg option strategy detection for Tastytrade orders.

Legs executed under the same Order # are grouped and classified by the
number of legs, their rights, strikes and expirations.
"""

import enum
import logging
from collections import defaultdict
from dataclasses import dataclass, field

from broker_ledger.lib.csv_models import ClassifiedTransaction

logger = logging.getLogger(__name__)


class StrategyType(str, enum.Enum):
    """Recognised option strategies."""

    SINGLE_LEG = "SingleLeg"
    VERTICAL_SPREAD = "VerticalSpread"
    CALENDAR_SPREAD = "CalendarSpread"
    STRADDLE = "Straddle"
    STRANGLE = "Strangle"
    IRON_CONDOR = "IronCondor"
    UNKNOWN = "Unknown"


@dataclass
class DetectedStrategy:
    """Option legs of one order and their strategy."""

    order_number: str
    strategy: StrategyType
    legs: list[ClassifiedTransaction] = field(default_factory=list)

    @property
    def underlying(self) -> str | None:
        return self.legs[0].ticker_symbol if self.legs else None


def _right(txn: ClassifiedTransaction) -> str:
    return (txn.call_or_put or "").upper()


def classify_legs(legs: list[ClassifiedTransaction]) -> StrategyType:
    """
    Classify a group of option legs.

    Examples:
        One leg is SingleLeg; a call and a put at one strike is a Straddle;
        two calls with two strikes and one expiry is a VerticalSpread.
    """
    if len(legs) == 1:
        return StrategyType.SINGLE_LEG

    rights = [_right(t) for t in legs]
    strikes = {t.strike_price for t in legs}
    expirations = {t.expiration_date for t in legs}

    if len(legs) == 2:
        calls = rights.count("CALL")
        puts = rights.count("PUT")
        if calls == 1 and puts == 1:
            return StrategyType.STRADDLE if len(strikes) == 1 else StrategyType.STRANGLE
        if len(set(rights)) == 1:
            if len(strikes) == 2 and len(expirations) == 1:
                return StrategyType.VERTICAL_SPREAD
            if len(strikes) == 1 and len(expirations) == 2:
                return StrategyType.CALENDAR_SPREAD
        return StrategyType.UNKNOWN

    if len(legs) == 4 and rights.count("CALL") == 2 and rights.count("PUT") == 2 and len(strikes) == 4:
        return StrategyType.IRON_CONDOR

    return StrategyType.UNKNOWN


def detect_strategies(transactions: list[ClassifiedTransaction]) -> list[DetectedStrategy]:
    """
    Group option trades by order number and classify each group.

    Rows without an order number or that are not option trades are ignored.
    Legs inside a group keep chronological order.
    """
    groups: dict[str, list[ClassifiedTransaction]] = defaultdict(list)
    for txn in transactions:
        if txn.is_option and txn.tag.is_trade and txn.order_number:
            groups[txn.order_number].append(txn)

    strategies = []
    for order_number, legs in groups.items():
        legs = sorted(legs, key=lambda t: (t.date, t.line_number))
        strategies.append(DetectedStrategy(order_number, classify_legs(legs), legs))

    logger.debug(f"Detected {len(strategies)} option order group(s)")
    return strategies


def validate_strategy(strategy: DetectedStrategy) -> list[str]:
    """Warnings for legs that disagree on underlying or currency."""
    warnings = []
    underlyings = {t.ticker_symbol for t in strategy.legs}
    if len(underlyings) > 1:
        warnings.append(
            f"Order {strategy.order_number} mixes underlyings: {', '.join(sorted(u or '?' for u in underlyings))}"
        )
    currencies = {t.currency for t in strategy.legs}
    if len(currencies) > 1:
        warnings.append(
            f"Order {strategy.order_number} mixes currencies: {', '.join(sorted(currencies))}"
        )
    return warnings
