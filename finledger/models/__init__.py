"""
Data Models Package

This package contains all Pydantic models used in FinLedger.
All data flowing through the engine must conform to these schemas.
"""

from finledger.models.ledger import (
    AMOUNT_TOLERANCE,
    Account,
    AccountType,
    Goal,
    GoalState,
    LedgerSnapshot,
    ObligationState,
    ObligationType,
    PaymentKind,
    PaymentRecord,
    PendingObligation,
    Transaction,
    TransactionKind,
    UserProfile,
    ValidationIssue,
    add_one_month,
    format_timestamp,
    parse_amount,
    parse_day,
    parse_timestamp,
)
from finledger.models.sync import (
    CommandRecord,
    CommandState,
    EntityExpectation,
    ReconcilePolicy,
    RemoteAction,
    RemoteOperation,
)
from finledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "AMOUNT_TOLERANCE",
    "Account",
    "AccountType",
    "Goal",
    "GoalState",
    "LedgerSnapshot",
    "ObligationState",
    "ObligationType",
    "PaymentKind",
    "PaymentRecord",
    "PendingObligation",
    "Transaction",
    "TransactionKind",
    "UserProfile",
    "ValidationIssue",
    "add_one_month",
    "format_timestamp",
    "parse_amount",
    "parse_day",
    "parse_timestamp",
    # Sync models
    "CommandRecord",
    "CommandState",
    "EntityExpectation",
    "ReconcilePolicy",
    "RemoteAction",
    "RemoteOperation",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
