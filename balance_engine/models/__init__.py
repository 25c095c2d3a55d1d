"""
Data Models Package

This package contains all Pydantic models used by the ledger balance engine.
All data flowing through the engine must conform to these schemas.
"""

from balance_engine.models.ledger import (
    CENT,
    MONEY_EPSILON,
    ZERO,
    Expense,
    ExpenseSplit,
    ExpenseUpdate,
    Group,
    GroupRole,
    Membership,
    MutationAck,
    Settlement,
    SplitInput,
    SplitType,
    is_settled,
    to_cents,
)
from balance_engine.models.balance import (
    LeaveCheck,
    MemberBalance,
    SimplifiedTransfer,
)
from balance_engine.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Money helpers
    "CENT",
    "MONEY_EPSILON",
    "ZERO",
    "is_settled",
    "to_cents",
    # Ledger models
    "Expense",
    "ExpenseSplit",
    "ExpenseUpdate",
    "Group",
    "GroupRole",
    "Membership",
    "MutationAck",
    "Settlement",
    "SplitInput",
    "SplitType",
    # Balance models
    "LeaveCheck",
    "MemberBalance",
    "SimplifiedTransfer",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
