"""
Audit Models for the Ledger Balance Engine

Every committed ledger mutation is recorded as an audit event, together
with cache problems that were swallowed by the fail-open policy.

DESIGN DECISION: Audit events are append-only. We never modify them.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Expenses
    EXPENSE_CREATED = "expense_created"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"
    
    # Settlements
    SETTLEMENT_CREATED = "settlement_created"
    SETTLEMENT_DELETED = "settlement_deleted"
    
    # Membership
    MEMBER_LEFT = "member_left"
    
    # Cache
    CACHE_INVALIDATION_FAILED = "cache_invalidation_failed"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """
    A single audit event.
    
    This is the core unit of our audit trail.
    """
    
    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )
    
    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO
    
    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'expense', 'settlement', 'membership')"
    )
    entity_id: Optional[UUID] = None
    group_id: Optional[UUID] = None
    actor_id: Optional[UUID] = Field(
        default=None,
        description="User who triggered the mutation, when known"
    )
    
    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    
    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "group_id": str(self.group_id) if self.group_id else None,
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


def _ids(user_ids: Iterable[UUID]) -> list[str]:
    return [str(user_id) for user_id in sorted(user_ids)]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.
    
    Usage:
        event = AuditEventBuilder.expense_created(expense_id, group_id, ...)
        event = AuditEventBuilder.settlement_deleted(settlement_id, group_id, ...)
    """
    
    @staticmethod
    def expense_created(
        expense_id: UUID,
        group_id: UUID,
        paid_by: UUID,
        amount: Decimal,
        split_type: str,
        participant_ids: Iterable[UUID],
        actor_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_CREATED,
            entity_type="expense",
            entity_id=expense_id,
            group_id=group_id,
            actor_id=actor_id,
            description=f"Expense of ₹{amount} recorded ({split_type} split)",
            details={
                "paid_by": str(paid_by),
                "amount": str(amount),
                "split_type": split_type,
                "participants": _ids(participant_ids),
            },
        )
    
    @staticmethod
    def expense_updated(
        expense_id: UUID,
        group_id: UUID,
        changed_fields: list[str],
        splits_replaced: bool,
        actor_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_UPDATED,
            entity_type="expense",
            entity_id=expense_id,
            group_id=group_id,
            actor_id=actor_id,
            description=f"Expense updated: {', '.join(changed_fields) or 'no fields'}",
            details={
                "changed_fields": changed_fields,
                "splits_replaced": splits_replaced,
            },
        )
    
    @staticmethod
    def expense_deleted(
        expense_id: UUID,
        group_id: UUID,
        amount: Decimal,
        actor_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_DELETED,
            entity_type="expense",
            entity_id=expense_id,
            group_id=group_id,
            actor_id=actor_id,
            description=f"Expense of ₹{amount} deleted",
            details={"amount": str(amount)},
        )
    
    @staticmethod
    def settlement_created(
        settlement_id: UUID,
        group_id: UUID,
        paid_by: UUID,
        paid_to: UUID,
        amount: Decimal,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_CREATED,
            entity_type="settlement",
            entity_id=settlement_id,
            group_id=group_id,
            actor_id=paid_by,
            description=f"Settlement of ₹{amount} recorded",
            details={
                "paid_by": str(paid_by),
                "paid_to": str(paid_to),
                "amount": str(amount),
            },
        )
    
    @staticmethod
    def settlement_deleted(
        settlement_id: UUID,
        group_id: UUID,
        amount: Decimal,
        actor_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTLEMENT_DELETED,
            entity_type="settlement",
            entity_id=settlement_id,
            group_id=group_id,
            actor_id=actor_id,
            description=f"Settlement of ₹{amount} deleted",
            details={"amount": str(amount)},
        )
    
    @staticmethod
    def member_left(
        user_id: UUID,
        group_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MEMBER_LEFT,
            entity_type="membership",
            entity_id=user_id,
            group_id=group_id,
            actor_id=user_id,
            description="Member left the group with a settled balance",
        )
    
    @staticmethod
    def cache_invalidation_failed(
        group_id: UUID,
        failed_keys: list[str],
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CACHE_INVALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="cache",
            group_id=group_id,
            description=f"{len(failed_keys)} balance cache evictions failed",
            details={"failed_keys": failed_keys},
            error_message=error_message,
        )
