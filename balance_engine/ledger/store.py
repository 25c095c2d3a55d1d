"""
Ledger Store

The only way expenses and settlements enter, change, or leave the ledger.

Every mutation follows the same path:
1. Validate amounts, splits and membership
2. Check the requester may touch the record (updates and deletes)
3. Write inside one transaction (all rows or none)
4. After commit, evict the affected balances from the cache
5. Record an audit event

A mutation that fails at any step before commit leaves both the ledger
and the cache exactly as they were.
"""

from datetime import date
from typing import Optional, Sequence, Union
from uuid import UUID, uuid4

import structlog
from pydantic import ValidationError as PydanticValidationError

from balance_engine.audit import AuditLogger
from balance_engine.config import AppSettings, get_settings
from balance_engine.errors import (
    AuthorizationError,
    NotFoundError,
    NotMemberError,
    ValidationError,
)
from balance_engine.ledger.invalidation import AffectedUsers, InvalidationCoordinator
from balance_engine.models.ledger import (
    ZERO,
    Expense,
    ExpenseSplit,
    ExpenseUpdate,
    MutationAck,
    Settlement,
    SplitInput,
    SplitType,
)
from balance_engine.services.storage import LedgerStorageInterface, MembershipOracle
from balance_engine.validation import SplitCalculator, positive_amount


logger = structlog.get_logger(__name__)

MAX_TEXT_LENGTH = 500


def _split_type(value: Union[SplitType, str]) -> SplitType:
    try:
        return SplitType(value)
    except ValueError:
        raise ValidationError(f"Invalid split type: {value}")


def _text(value: Optional[str], field: str) -> Optional[str]:
    if value is None:
        return None
    if len(value) > MAX_TEXT_LENGTH:
        raise ValidationError(f"{field} cannot be longer than {MAX_TEXT_LENGTH} characters")
    return value


class LedgerStore:
    """
    Validating, transactional front of the ledger storage.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        membership: MembershipOracle,
        coordinator: InvalidationCoordinator,
        audit_logger: Optional[AuditLogger] = None,
        split_calculator: Optional[SplitCalculator] = None,
        settings: Optional[AppSettings] = None,
    ):
        self._storage = storage
        self._membership = membership
        self._coordinator = coordinator
        self._audit_logger = audit_logger if audit_logger is not None else AuditLogger()
        self._splits = split_calculator if split_calculator is not None else SplitCalculator()
        self._settings = settings or get_settings().app

    # =========================================================================
    # Guards
    # =========================================================================

    async def _require_group(self, group_id: UUID) -> None:
        if not await self._membership.group_exists(group_id):
            raise NotFoundError(f"Group not found: {group_id}")

    async def _require_members(
        self,
        user_ids: Sequence[UUID],
        group_id: UUID,
        message: Optional[str] = None,
    ) -> None:
        for user_id in user_ids:
            if not await self._membership.is_member(user_id, group_id):
                raise NotMemberError(user_id, group_id, message)

    async def _require_editor(self, expense: Expense, requester_id: UUID, action: str) -> None:
        if expense.created_by == requester_id:
            return
        if await self._membership.is_admin(requester_id, expense.group_id):
            return
        raise AuthorizationError(f"Only expense creator or group admin can {action} expense")

    async def after_commit(self, affected: AffectedUsers) -> None:
        """
        Evict the balances a committed change touched; audit any eviction
        that failed. Never raises.
        """
        report = await self._coordinator.invalidate(affected)
        if not report.complete:
            # Fail-open: the committed write stands, unevicted entries expire on their own
            await self._audit_logger.log_cache_invalidation_failed(
                group_id=report.group_id,
                failed_keys=report.failed_keys,
                error_message=report.error,
            )

    def _page(self, limit: Optional[int], offset: int) -> tuple[int, int]:
        limit = self._settings.default_list_limit if limit is None else limit
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be positive and offset cannot be negative")
        return min(limit, self._settings.max_list_limit), offset

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
        """
        Record an expense and its splits.

        Raises:
            ValidationError: Bad amount, split type, or split set
            NotMemberError: Payer or a participant is not in the group
            NotFoundError: Group doesn't exist
            StorageError: The transaction failed
        """
        amount = positive_amount(amount)
        split_type = _split_type(split_type)
        description = _text(description, "description")

        await self._require_group(group_id)
        await self._require_members(
            [paid_by], group_id, "User who paid must be a member of the group"
        )

        expense_id = uuid4()
        computed = self._splits.build(expense_id, amount, split_type, splits)
        await self._require_members([split.user_id for split in computed], group_id)

        expense = Expense(
            id=expense_id,
            group_id=group_id,
            paid_by=paid_by,
            amount=amount,
            description=description,
            expense_date=expense_date or date.today(),
            split_type=split_type,
            created_by=created_by,
            splits=computed,
        )
        saved = await self._storage.insert_expense(expense)

        await self.after_commit(AffectedUsers.for_expense(saved))
        await self._audit_logger.log_expense_created(saved)
        return saved

    async def get_expense(self, expense_id: UUID) -> Expense:
        expense = await self._storage.get_expense(expense_id)
        if expense is None:
            raise NotFoundError(f"Expense not found: {expense_id}")
        return expense

    async def list_group_expenses(
        self,
        group_id: UUID,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Expense]:
        limit, offset = self._page(limit, offset)
        await self._require_group(group_id)
        return await self._storage.list_group_expenses(group_id, limit, offset)

    async def update_expense(
        self,
        expense_id: UUID,
        updates: Union[ExpenseUpdate, dict],
        requester_id: UUID,
    ) -> Expense:
        """
        Apply a partial update.

        When amount, split type or splits change, the split set is
        recomputed and replaced in the same transaction as the scalar
        fields. Without new splits, the stored participants (and their
        amounts or percentages) are carried over.

        Raises:
            NotFoundError: Expense doesn't exist
            AuthorizationError: Requester is neither creator nor group admin
            ValidationError / NotMemberError: The new state is invalid
        """
        if isinstance(updates, dict):
            try:
                updates = ExpenseUpdate.model_validate(updates)
            except PydanticValidationError as e:
                raise ValidationError(f"Invalid expense update: {e}")

        existing = await self.get_expense(expense_id)
        # group_id and created_by never change, so this snapshot is enough
        # for the permission check
        await self._require_editor(existing, requester_id, "update")

        if updates.is_empty:
            return existing

        description = _text(updates.description, "description")
        new_amount = positive_amount(updates.amount) if updates.amount is not None else None
        new_split_type = (
            _split_type(updates.split_type) if updates.split_type is not None else None
        )
        if updates.splits is not None:
            await self._require_members(
                [split.user_id for split in updates.splits], existing.group_id
            )

        changed_fields = [
            name for name in ("description", "expense_date")
            if getattr(updates, name) is not None
        ]
        if updates.replaces_splits:
            changed_fields += ["amount", "split_type"]

        def change(current: Expense) -> tuple[dict, Optional[list[ExpenseSplit]]]:
            # Runs inside the storage transaction against the locked row
            fields: dict = {}
            if description is not None:
                fields["description"] = description
            if updates.expense_date is not None:
                fields["expense_date"] = updates.expense_date
            if not updates.replaces_splits:
                return fields, None

            amount = new_amount if new_amount is not None else current.amount
            split_type = new_split_type if new_split_type is not None else current.split_type
            inputs = updates.splits
            if inputs is None:
                inputs = [
                    SplitInput(
                        user_id=split.user_id,
                        amount=split.amount if split_type == SplitType.EXACT else None,
                        percentage=split.percentage,
                    )
                    for split in current.splits
                ]
            fields["amount"] = amount
            fields["split_type"] = split_type
            return fields, self._splits.build(current.id, amount, split_type, inputs)

        before, updated = await self._storage.update_expense(expense_id, change)

        # Everyone in the state actually replaced, plus the new state
        affected = AffectedUsers.for_expense(before).union(AffectedUsers.for_expense(updated))
        await self.after_commit(affected)
        await self._audit_logger.log_expense_updated(
            updated,
            changed_fields=changed_fields,
            splits_replaced=updates.replaces_splits,
            actor_id=requester_id,
        )
        return updated

    async def delete_expense(self, expense_id: UUID, requester_id: UUID) -> MutationAck:
        """
        Hard-delete an expense and its splits.

        Raises:
            NotFoundError: Expense doesn't exist
            AuthorizationError: Requester is neither creator nor group admin
        """
        existing = await self.get_expense(expense_id)
        await self._require_editor(existing, requester_id, "delete")

        deleted = await self._storage.delete_expense(expense_id)
        if deleted is None:
            raise NotFoundError(f"Expense not found: {expense_id}")

        await self.after_commit(AffectedUsers.for_expense(deleted))
        await self._audit_logger.log_expense_deleted(deleted, actor_id=requester_id)
        return MutationAck(message="Expense deleted successfully")

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
        """
        Record a payment from one member to another.

        Raises:
            ValidationError: Non-positive amount or self-settlement
            NotMemberError: Either party is not in the group
            NotFoundError: Group doesn't exist
        """
        amount = positive_amount(amount)
        notes = _text(notes, "notes")
        if paid_by == paid_to:
            raise ValidationError("Cannot settle with yourself")

        await self._require_group(group_id)
        await self._require_members(
            [paid_by, paid_to], group_id, "Both users must be members of the group"
        )

        payer_balance = await self._storage.net_balance(paid_by, group_id)
        if payer_balance > ZERO:
            logger.warning(
                "settlement_payer_is_owed",
                group_id=str(group_id),
                user_id=str(paid_by),
                balance=str(payer_balance),
            )

        settlement = Settlement(
            group_id=group_id,
            paid_by=paid_by,
            paid_to=paid_to,
            amount=amount,
            settlement_date=settlement_date or date.today(),
            notes=notes,
        )
        saved = await self._storage.insert_settlement(settlement)

        await self.after_commit(AffectedUsers.for_settlement(saved))
        await self._audit_logger.log_settlement_created(saved)
        return saved

    async def get_settlement(self, settlement_id: UUID) -> Settlement:
        settlement = await self._storage.get_settlement(settlement_id)
        if settlement is None:
            raise NotFoundError(f"Settlement not found: {settlement_id}")
        return settlement

    async def list_group_settlements(
        self,
        group_id: UUID,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Settlement]:
        limit, offset = self._page(limit, offset)
        await self._require_group(group_id)
        return await self._storage.list_group_settlements(group_id, limit, offset)

    async def delete_settlement(self, settlement_id: UUID, requester_id: UUID) -> MutationAck:
        """
        Hard-delete a settlement.

        Raises:
            NotFoundError: Settlement doesn't exist
            AuthorizationError: Requester is neither a party nor a group admin
        """
        existing = await self.get_settlement(settlement_id)

        is_party = requester_id in existing.party_ids
        if not is_party and not await self._membership.is_admin(requester_id, existing.group_id):
            raise AuthorizationError(
                "Only settlement parties or group admin can delete settlement"
            )

        if not await self._storage.delete_settlement(settlement_id):
            raise NotFoundError(f"Settlement not found: {settlement_id}")

        await self.after_commit(AffectedUsers.for_settlement(existing))
        await self._audit_logger.log_settlement_deleted(existing, actor_id=requester_id)
        return MutationAck(message="Settlement deleted successfully")
