"""
Audit Logger

Every committed ledger mutation is logged with enough context to
reconstruct who changed what in which group.

The audit logger:
- Is async so it can sit on the same call path as the ledger coroutines
- Never raises into the caller (a failed log line must not fail a commit)
- Emits structured JSON via structlog
"""

from typing import Optional
from uuid import UUID

import structlog

from balance_engine.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from balance_engine.models.ledger import Expense, Settlement


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service for ledger mutations.
    """
    
    def __init__(self):
        self._logger = structlog.get_logger("balance_engine.audit")
    
    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.
        
        Returns False if the event could not be written.
        """
        log_dict = event.to_log_dict()
        
        try:
            if event.severity == AuditSeverity.ERROR:
                self._logger.error("audit_event", **log_dict)
            elif event.severity == AuditSeverity.WARNING:
                self._logger.warning("audit_event", **log_dict)
            else:
                self._logger.info("audit_event", **log_dict)
        except Exception as e:
            # Log failure but don't raise
            structlog.get_logger(__name__).error(
                "audit_log_failed",
                error=str(e),
                event_id=str(event.event_id),
            )
            return False
        
        return True
    
    async def log_expense_created(
        self,
        expense: Expense,
    ) -> None:
        """Log a newly recorded expense."""
        event = AuditEventBuilder.expense_created(
            expense_id=expense.id,
            group_id=expense.group_id,
            paid_by=expense.paid_by,
            amount=expense.amount,
            split_type=expense.split_type.value,
            participant_ids=expense.participant_ids,
            actor_id=expense.created_by,
        )
        await self.log(event)
    
    async def log_expense_updated(
        self,
        expense: Expense,
        changed_fields: list[str],
        splits_replaced: bool,
        actor_id: UUID,
    ) -> None:
        """Log an expense update."""
        event = AuditEventBuilder.expense_updated(
            expense_id=expense.id,
            group_id=expense.group_id,
            changed_fields=changed_fields,
            splits_replaced=splits_replaced,
            actor_id=actor_id,
        )
        await self.log(event)
    
    async def log_expense_deleted(
        self,
        expense: Expense,
        actor_id: UUID,
    ) -> None:
        """Log an expense deletion."""
        event = AuditEventBuilder.expense_deleted(
            expense_id=expense.id,
            group_id=expense.group_id,
            amount=expense.amount,
            actor_id=actor_id,
        )
        await self.log(event)
    
    async def log_settlement_created(
        self,
        settlement: Settlement,
    ) -> None:
        """Log a recorded settlement."""
        event = AuditEventBuilder.settlement_created(
            settlement_id=settlement.id,
            group_id=settlement.group_id,
            paid_by=settlement.paid_by,
            paid_to=settlement.paid_to,
            amount=settlement.amount,
        )
        await self.log(event)
    
    async def log_settlement_deleted(
        self,
        settlement: Settlement,
        actor_id: UUID,
    ) -> None:
        """Log a settlement deletion."""
        event = AuditEventBuilder.settlement_deleted(
            settlement_id=settlement.id,
            group_id=settlement.group_id,
            amount=settlement.amount,
            actor_id=actor_id,
        )
        await self.log(event)
    
    async def log_member_left(
        self,
        user_id: UUID,
        group_id: UUID,
    ) -> None:
        """Log a member leaving a group."""
        await self.log(AuditEventBuilder.member_left(user_id=user_id, group_id=group_id))
    
    async def log_cache_invalidation_failed(
        self,
        group_id: UUID,
        failed_keys: list[str],
        error_message: Optional[str] = None,
    ) -> None:
        """Log cache evictions that could not be performed."""
        event = AuditEventBuilder.cache_invalidation_failed(
            group_id=group_id,
            failed_keys=failed_keys,
            error_message=error_message or "cache unavailable",
        )
        await self.log(event)
