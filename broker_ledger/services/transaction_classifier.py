"""Transaction classifier for Tastytrade rows.

Maps the (Type, Sub Type, Action) columns to a canonical TransactionTag.
Unknown combinations come back as a failed ClassificationResult carrying an
InvalidTransactionType row error; nothing is raised.
"""

from dataclasses import dataclass

from broker_ledger.lib.broker_mappings import (
    TASTYTRADE_MONEY_MOVEMENT_MAPPING,
    TASTYTRADE_RECEIVE_DELIVER_TYPE,
    TASTYTRADE_TRADE_MAPPING,
)
from broker_ledger.lib.csv_models import (
    ClassifiedTransaction,
    TastytradeTransaction,
    TransactionTag,
)
from broker_ledger.lib.errors import ClassificationError, ParseErrorType, RowError


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of classifying one row: a tag or a row error, never both."""

    tag: TransactionTag | None = None
    error: RowError | None = None

    @property
    def success(self) -> bool:
        return self.tag is not None


def classify(
    type_: str,
    sub_type: str,
    action: str = "",
    line_number: int = 0,
    raw_line: str = "",
) -> ClassificationResult:
    """
    Classify raw Tastytrade type columns.

    Args:
        type_: Type column ("Trade", "Money Movement", "Receive Deliver")
        sub_type: Sub Type column
        action: Action column (BUY_TO_OPEN etc.), kept on trade tags
        line_number: Source line, used only for the error record
        raw_line: Source text, used only for the error record

    Returns:
        ClassificationResult with either a tag or an InvalidTransactionType error

    Examples:
        >>> classify("Trade", "Sell to Open", "SELL_TO_OPEN").tag.trade_sub_type.value
        'Sell to Open'
        >>> classify("Journal", "Other").success
        False
    """
    key = (type_.strip(), sub_type.strip())

    trade_sub_type = TASTYTRADE_TRADE_MAPPING.get(key)
    if trade_sub_type is not None:
        return ClassificationResult(tag=TransactionTag.trade(trade_sub_type, action.strip() or None))

    movement_sub_type = TASTYTRADE_MONEY_MOVEMENT_MAPPING.get(key)
    if movement_sub_type is not None:
        return ClassificationResult(tag=TransactionTag.money_movement(movement_sub_type))

    if key[0] == TASTYTRADE_RECEIVE_DELIVER_TYPE and key[1]:
        return ClassificationResult(tag=TransactionTag.receive_deliver(key[1]))

    error = ClassificationError(type_, sub_type, action)
    return ClassificationResult(
        error=RowError(
            line_number=line_number,
            message=error.message,
            raw_line=raw_line,
            error_type=ParseErrorType.INVALID_TRANSACTION_TYPE,
        )
    )


def classify_transaction(txn: TastytradeTransaction) -> ClassificationResult:
    """Classify a parsed row using its own line number and raw text for diagnostics."""
    return classify(txn.type, txn.sub_type, txn.action, txn.line_number, txn.raw_line)


def attach_tag(txn: TastytradeTransaction, tag: TransactionTag) -> ClassifiedTransaction:
    """Build the classified form of a parsed row."""
    return ClassifiedTransaction(**txn.model_dump(), tag=tag)
