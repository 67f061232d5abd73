"""Option lot expansion and FIFO matching.

Every option trade is stored one contract per record. expand_option_trade is
the only place a multi-contract trade is split, whether it comes from an
import or is entered by hand, so matching always works on single units.

match_fifo links each closing unit to the oldest open unit with the same
instrument key (ticker, currency, account, option type, strike, expiration).
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field, replace
from decimal import ROUND_DOWN, Decimal

from broker_ledger.lib.config import MONEY_QUANTUM
from broker_ledger.lib.records import CanonicalOptionTrade, new_id

logger = logging.getLogger(__name__)


def split_amount(total: Decimal, parts: int) -> list[Decimal]:
    """
    Split an amount into equal cent-rounded parts.

    Each part is total / parts rounded toward zero to the cent; whatever is
    left over (including sub-cent digits) goes to the first part, so the
    parts always sum to total exactly.

    Examples:
        >>> split_amount(Decimal("10.00"), 3)
        [Decimal('3.34'), Decimal('3.33'), Decimal('3.33')]
    """
    if parts < 1:
        raise ValueError(f"Cannot split into {parts} parts")
    share = (total / parts).quantize(MONEY_QUANTUM, rounding=ROUND_DOWN)
    shares = [share] * parts
    shares[0] = total - share * (parts - 1)
    return shares


def expand_option_trade(trade: CanonicalOptionTrade) -> list[CanonicalOptionTrade]:
    """
    Expand a trade for N contracts into N single-contract records.

    Premium, net premium, commissions and fees are divided with split_amount.
    Each unit gets its own id and starts open and unlinked.

    Args:
        trade: Trade whose quantity is the number of contracts

    Returns:
        List of N records with quantity 1, in unit order

    Raises:
        ValueError: If quantity is below 1
    """
    if trade.quantity < 1:
        raise ValueError(f"Option trade quantity must be at least 1, got {trade.quantity}")
    if trade.quantity == 1:
        return [trade]

    count = trade.quantity
    premiums = split_amount(trade.premium, count)
    net_premiums = split_amount(trade.net_premium, count)
    commissions = split_amount(trade.commissions, count)
    fees = split_amount(trade.fees, count)

    units = []
    for i in range(count):
        unit = replace(
            trade,
            quantity=1,
            premium=premiums[i],
            net_premium=net_premiums[i],
            commissions=commissions[i],
            fees=fees[i],
            is_open=True,
            closed_with=None,
            id=new_id(),
        )
        units.append(unit)
    return units


def expand_option_trades(trades: list[CanonicalOptionTrade]) -> list[CanonicalOptionTrade]:
    """Expand every trade, keeping source order."""
    expanded: list[CanonicalOptionTrade] = []
    for trade in trades:
        expanded.extend(expand_option_trade(trade))
    return expanded


@dataclass
class MatchResult:
    """Pairs linked by one match_fifo run."""

    matches: list[tuple[str, str]] = field(default_factory=list)  # (opening id, closing id)
    unmatched_closings: list[CanonicalOptionTrade] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def match_fifo(trades: list[CanonicalOptionTrade]) -> MatchResult:
    """
    Link closing units to the oldest open unit sharing their instrument key.

    Trades are ordered by timestamp, ties broken by list position. Matched
    opening units become is_open=False with closed_with set to the closing
    unit; the closing unit is marked closed and linked back. A closing unit
    with no candidate is marked closed without a link and reported as a
    warning. Units already closed are left untouched, so running the matcher
    again over the same list changes nothing.

    Args:
        trades: Opening and closing units, mutated in place

    Returns:
        MatchResult with the pairs made and any unmatched closings
    """
    ordered = sorted(enumerate(trades), key=lambda pair: (pair[1].timestamp, pair[0]))
    open_units: dict[tuple, list[CanonicalOptionTrade]] = defaultdict(list)
    result = MatchResult()

    for _, trade in ordered:
        if trade.quantity != 1:
            raise ValueError(f"Option trade {trade.id} must be expanded before matching")

        if trade.code.is_opening:
            if trade.is_open and trade.closed_with is None:
                open_units[trade.matching_key].append(trade)
            continue

        if not trade.is_open:
            continue

        candidates = open_units.get(trade.matching_key)
        if not candidates:
            trade.is_open = False
            result.unmatched_closings.append(trade)
            message = (
                f"No open position found for {trade.code.value} {trade.ticker} "
                f"{trade.option_type.value} {trade.strike} exp {trade.expiration} "
                f"(line {trade.source_line})"
            )
            result.warnings.append(message)
            logger.warning(message)
            continue

        opening = candidates.pop(0)
        opening.is_open = False
        opening.closed_with = trade.id
        trade.is_open = False
        trade.closed_with = opening.id
        result.matches.append((opening.id, trade.id))

    logger.info(
        f"FIFO matched {len(result.matches)} option unit(s), "
        f"{len(result.unmatched_closings)} closing unit(s) without an open position"
    )
    return result


def check_option_states(trades: list[CanonicalOptionTrade]) -> list[str]:
    """
    Report units whose is_open/closed_with combination is inconsistent.

    An open unit must be unlinked and a closed unit must be linked. The one
    exception is a closing unit the matcher could not pair, which is closed
    and unlinked.
    """
    problems = []
    for trade in trades:
        if trade.state_is_valid:
            continue
        if not trade.is_open and trade.closed_with is None and trade.code.is_closing:
            continue
        problems.append(
            f"Option trade {trade.id} has is_open={trade.is_open} with closed_with={trade.closed_with}"
        )
    return problems
