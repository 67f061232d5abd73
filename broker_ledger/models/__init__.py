"""
SQLAlchemy models for broker-ledger.

All models inherit from the Base declarative class defined in broker_ledger.lib.db.
"""

from broker_ledger.models.broker import Broker, BrokerAccount
from broker_ledger.models.broker_movement import BrokerMovement
from broker_ledger.models.dividend import Dividend, DividendTax
from broker_ledger.models.financial_snapshot import FinancialSnapshot
from broker_ledger.models.import_batch import ImportBatch, ImportBatchStatus
from broker_ledger.models.import_error import ImportError
from broker_ledger.models.reference import Currency, Ticker
from broker_ledger.models.trades import EquityTrade, OptionTrade

__all__ = [
    # Accounts
    "Broker",
    "BrokerAccount",
    # Reference data
    "Currency",
    "Ticker",
    # Ledger records
    "EquityTrade",
    "OptionTrade",
    "BrokerMovement",
    "Dividend",
    "DividendTax",
    "FinancialSnapshot",
    # Import models
    "ImportBatch",
    "ImportError",
    # Enums
    "ImportBatchStatus",
]
