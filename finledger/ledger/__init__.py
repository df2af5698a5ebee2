"""
Ledger Package

Local state of the engine: the transaction ledger, pending obligations,
goal envelopes, the account catalog, and the projector that derives every
balance from them.
"""

from finledger.ledger.accounts import AccountCatalog
from finledger.ledger.errors import (
    DuplicateKeyError,
    InsufficientFundsError,
    LedgerError,
    LedgerValidationError,
    NotFoundError,
)
from finledger.ledger.goals import GoalEnvelopeManager
from finledger.ledger.obligations import (
    InstallmentSimulation,
    PendingObligationTracker,
    simulate_installments,
)
from finledger.ledger.projector import AccountBalanceProjector
from finledger.ledger.store import LedgerStore
from finledger.ledger.transactions import (
    TimestampFactory,
    TransactionLedger,
    replay_goal_balances,
)

__all__ = [
    "AccountBalanceProjector",
    "AccountCatalog",
    "DuplicateKeyError",
    "GoalEnvelopeManager",
    "InstallmentSimulation",
    "InsufficientFundsError",
    "LedgerError",
    "LedgerStore",
    "LedgerValidationError",
    "NotFoundError",
    "PendingObligationTracker",
    "TimestampFactory",
    "TransactionLedger",
    "replay_goal_balances",
    "simulate_installments",
]
