"""
Main Orchestrator for the Ledger Balance Engine

This module ties together all the components and defines the
operations the surrounding application calls:
1. Mutations (validate → write in one transaction → evict → audit)
2. Balance reads (cache → recompute on miss → cache)
3. Settlement plans (balances → greedy simplification)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Balances are only ever derived from the ledger, never stored
- Cache invalidation happens after commit and never fails a mutation
- Every committed mutation is audited

Authentication is the caller's job: requester ids passed in here are
trusted.
"""

from datetime import date
from decimal import Decimal
from typing import Optional, Sequence, Union
from uuid import UUID

import structlog
from sqlalchemy.engine import Engine

from balance_engine.audit import AuditLogger
from balance_engine.balances import BalanceCalculator, BalanceReader, simplify_debts
from balance_engine.config import Settings, get_settings
from balance_engine.errors import ValidationError
from balance_engine.ledger import AffectedUsers, InvalidationCoordinator, LedgerStore
from balance_engine.models.balance import LeaveCheck, MemberBalance, SimplifiedTransfer
from balance_engine.models.ledger import (
    Expense,
    ExpenseUpdate,
    MutationAck,
    Settlement,
    SplitInput,
    SplitType,
)
from balance_engine.services.cache import (
    BalanceCache,
    CacheStoreInterface,
    InMemoryCacheStore,
)
from balance_engine.services.storage import (
    Database,
    MembershipDirectory,
    SqlLedgerStorage,
    SqlMembershipDirectory,
)


logger = structlog.get_logger(__name__)


class LedgerService:
    """
    Public face of the engine.

    Mutations go through the LedgerStore; reads go through the
    BalanceReader. Nothing here touches storage directly.
    """

    def __init__(
        self,
        store: LedgerStore,
        reader: BalanceReader,
        calculator: BalanceCalculator,
        directory: MembershipDirectory,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._reader = reader
        self._calculator = calculator
        self._directory = directory
        self._audit_logger = audit_logger if audit_logger is not None else AuditLogger()

    # =========================================================================
    # Expenses
    # =========================================================================

    async def create_expense(
        self,
        group_id: UUID,
        paid_by: UUID,
        amount,
        split_type: Union[SplitType, str],
        splits: Sequence[SplitInput],
        created_by: UUID,
        description: Optional[str] = None,
        expense_date: Optional[date] = None,
    ) -> Expense:
        return await self._store.create_expense(
            group_id=group_id,
            paid_by=paid_by,
            amount=amount,
            split_type=split_type,
            splits=splits,
            created_by=created_by,
            description=description,
            expense_date=expense_date,
        )

    async def update_expense(
        self,
        expense_id: UUID,
        updates: Union[ExpenseUpdate, dict],
        requester_id: UUID,
    ) -> Expense:
        return await self._store.update_expense(expense_id, updates, requester_id)

    async def delete_expense(self, expense_id: UUID, requester_id: UUID) -> MutationAck:
        return await self._store.delete_expense(expense_id, requester_id)

    async def get_expense(self, expense_id: UUID) -> Expense:
        return await self._store.get_expense(expense_id)

    async def list_group_expenses(
        self,
        group_id: UUID,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Expense]:
        """Most recent first (expense date, then creation time)."""
        return await self._store.list_group_expenses(group_id, limit, offset)

    # =========================================================================
    # Settlements
    # =========================================================================

    async def create_settlement(
        self,
        group_id: UUID,
        paid_by: UUID,
        paid_to: UUID,
        amount,
        settlement_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> Settlement:
        return await self._store.create_settlement(
            group_id=group_id,
            paid_by=paid_by,
            paid_to=paid_to,
            amount=amount,
            settlement_date=settlement_date,
            notes=notes,
        )

    async def delete_settlement(self, settlement_id: UUID, requester_id: UUID) -> MutationAck:
        return await self._store.delete_settlement(settlement_id, requester_id)

    async def get_settlement(self, settlement_id: UUID) -> Settlement:
        return await self._store.get_settlement(settlement_id)

    async def list_group_settlements(
        self,
        group_id: UUID,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Settlement]:
        return await self._store.list_group_settlements(group_id, limit, offset)

    # =========================================================================
    # Balances
    # =========================================================================

    async def get_user_group_balance(self, user_id: UUID, group_id: UUID) -> Decimal:
        """
        Net balance of a user in a group.

        Positive: the group owes the user. Negative: the user owes the group.
        A user with no ledger entries has a balance of 0.00.
        """
        return await self._reader.user_balance(user_id, group_id)

    async def get_group_balances(self, group_id: UUID) -> list[MemberBalance]:
        return await self._reader.group_balances(group_id)

    async def get_simplified_balances(self, group_id: UUID) -> list[SimplifiedTransfer]:
        """
        Payments that would settle the whole group.

        Computed from a fresh snapshot of the group's balances so every
        transfer comes from the same consistent state.
        """
        balances = await self._calculator.group_balances(group_id)
        transfers = simplify_debts(balances)
        logger.debug(
            "balances_simplified",
            group_id=str(group_id),
            members=len(balances),
            transfers=len(transfers),
        )
        return transfers

    # =========================================================================
    # Membership
    # =========================================================================

    async def check_can_leave(self, user_id: UUID, group_id: UUID) -> LeaveCheck:
        balance = await self.get_user_group_balance(user_id, group_id)
        return BalanceCalculator.leave_check(balance)

    async def leave_group(self, user_id: UUID, group_id: UUID) -> MutationAck:
        """
        Remove a member whose balance is settled.

        Raises:
            NotMemberError: User is not in the group
            ValidationError: User still owes or is owed money
        """
        # Balance read from the ledger under the membership lock, not the cache
        removed, balance = await self._directory.remove_settled_member(group_id, user_id)
        if not removed:
            raise ValidationError(BalanceCalculator.leave_check(balance).message)

        await self._store.after_commit(AffectedUsers.of(group_id, [user_id]))
        await self._audit_logger.log_member_left(user_id=user_id, group_id=group_id)
        return MutationAck(message="Left group successfully")


def create_app_components(
    settings: Optional[Settings] = None,
    cache_store: Optional[CacheStoreInterface] = None,
    engine: Optional[Engine] = None,
    audit_logger: Optional[AuditLogger] = None,
) -> tuple[LedgerService, MembershipDirectory, Database]:
    """
    Factory function to create all application components.

    Args:
        settings: Configuration; read from the environment if omitted
        cache_store: Backing store for the balance cache. Defaults to
                     an in-process store.
        engine: Pre-built SQLAlchemy engine (tests, shared pools)
        audit_logger: Audit sink; a local structlog logger if omitted

    Returns:
        (ledger_service, membership_directory, database)
    """
    settings = settings or get_settings()

    database = Database(settings.database, engine=engine)
    database.connect()

    storage = SqlLedgerStorage(database)
    directory = SqlMembershipDirectory(database)

    cache = BalanceCache(
        cache_store if cache_store is not None else InMemoryCacheStore(),
        settings.cache,
    )
    coordinator = InvalidationCoordinator(cache)
    audit_logger = audit_logger if audit_logger is not None else AuditLogger()

    store = LedgerStore(
        storage=storage,
        membership=directory,
        coordinator=coordinator,
        audit_logger=audit_logger,
        settings=settings.app,
    )
    calculator = BalanceCalculator(storage, directory)
    reader = BalanceReader(calculator, cache, directory)

    service = LedgerService(
        store=store,
        reader=reader,
        calculator=calculator,
        directory=directory,
        audit_logger=audit_logger,
    )

    logger.info(
        "ledger_service_ready",
        environment=settings.app.app_environment,
        cache_ttl_seconds=cache.ttl_seconds,
    )
    return service, directory, database
