"""
End-to-end tests for the ledger service.

Run against a real (in-memory SQLite) ledger and an in-process cache.
"""

import random
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from balance_engine.audit import AuditLogger
from balance_engine.errors import (
    AuthorizationError,
    NotFoundError,
    NotMemberError,
    ValidationError,
)
from balance_engine.balances import transfer_totals
from balance_engine.models.audit import AuditEventType
from balance_engine.models.ledger import ExpenseUpdate, SplitInput, SplitType
from balance_engine.orchestrator import create_app_components
from balance_engine.services.cache import InMemoryCacheStore
from tests.helpers import (
    OUTSIDER,
    USER_A,
    USER_B,
    USER_C,
    BrokenCacheStore,
    InMemorySettings,
    run,
)


class RecordingAuditLogger(AuditLogger):
    """Keeps every audit event in memory."""

    def __init__(self):
        super().__init__()
        self.events = []

    async def log(self, event):
        self.events.append(event)
        return True

    def types(self):
        return [event.event_type for event in self.events]


def equal_split(*users):
    return [SplitInput(user_id=u) for u in users]


def dinner(service, group_id, amount="90", paid_by=USER_A, created_by=None, **kwargs):
    """A 3-way EQUAL expense paid by A unless told otherwise."""
    return run(service.create_expense(
        group_id=group_id,
        paid_by=paid_by,
        amount=Decimal(amount),
        split_type=SplitType.EQUAL,
        splits=equal_split(USER_A, USER_B, USER_C),
        created_by=created_by or paid_by,
        **kwargs,
    ))


def balance_map(service, group_id):
    return {b.user_id: b.balance for b in run(service.get_group_balances(group_id))}


@pytest.fixture
def audit_logger():
    return RecordingAuditLogger()


@pytest.fixture
def audited(audit_logger, cache_store):
    """Service wired to a recording audit logger, with the test group."""
    service, directory, database = create_app_components(
        settings=InMemorySettings(),
        cache_store=cache_store,
        audit_logger=audit_logger,
    )

    async def setup():
        group = await directory.create_group("Flat", created_by=USER_A)
        await directory.add_member(group.id, USER_B)
        await directory.add_member(group.id, USER_C)
        return group.id

    yield service, run(setup())
    database.dispose()


class TestScenarios:
    """The reference three-person group walkthrough."""

    def test_equal_expense_balances_and_plan(self, service, group_id):
        """Test A pays 90 split equally: A +60, B -30, C -30."""
        dinner(service, group_id)

        assert balance_map(service, group_id) == {
            USER_A: Decimal("60.00"),
            USER_B: Decimal("-30.00"),
            USER_C: Decimal("-30.00"),
        }

        plan = run(service.get_simplified_balances(group_id))
        assert [(t.from_user_id, t.to_user_id, t.amount) for t in plan] == [
            (USER_B, USER_A, Decimal("30.00")),
            (USER_C, USER_A, Decimal("30.00")),
        ]

    def test_settlement_reduces_debt(self, service, group_id):
        """Test B paying A 30 leaves only C owing."""
        dinner(service, group_id)
        run(service.create_settlement(group_id, USER_B, USER_A, Decimal("30")))

        assert balance_map(service, group_id) == {
            USER_A: Decimal("30.00"),
            USER_B: Decimal("0.00"),
            USER_C: Decimal("-30.00"),
        }
        plan = run(service.get_simplified_balances(group_id))
        assert [(t.from_user_id, t.to_user_id, t.amount) for t in plan] == [
            (USER_C, USER_A, Decimal("30.00")),
        ]

    def test_delete_expense_restores_zero_and_evicts(self, service, group_id, cache_store):
        """Test deleting the only expense zeroes every balance and drops cached entries."""
        expense = dinner(service, group_id)

        # Warm the cache
        for user in (USER_A, USER_B, USER_C):
            run(service.get_user_group_balance(user, group_id))
        keys = [f"balance:user:{user}:group:{group_id}" for user in (USER_A, USER_B, USER_C)]
        assert all(key in cache_store for key in keys)

        ack = run(service.delete_expense(expense.id, USER_A))
        assert ack.success
        assert ack.message == "Expense deleted successfully"
        assert not any(key in cache_store for key in keys)

        for user in (USER_A, USER_B, USER_C):
            assert run(service.get_user_group_balance(user, group_id)) == Decimal("0.00")

    def test_exact_split_one_cent_short_is_rejected(self, service, group_id):
        """Test 40 + 59.99 against 100 fails and writes nothing."""
        with pytest.raises(ValidationError):
            run(service.create_expense(
                group_id=group_id,
                paid_by=USER_A,
                amount=Decimal("100"),
                split_type=SplitType.EXACT,
                splits=[
                    SplitInput(user_id=USER_A, amount=Decimal("40")),
                    SplitInput(user_id=USER_B, amount=Decimal("59.99")),
                ],
                created_by=USER_A,
            ))
        assert run(service.list_group_expenses(group_id)) == []


class TestBalances:
    """Tests for balance reads."""

    def test_group_balances_sum_to_zero(self, service, group_id):
        """Test conservation across a mix of expenses and settlements."""
        dinner(service, group_id, amount="100")
        dinner(service, group_id, amount="47.35", paid_by=USER_B)
        run(service.create_expense(
            group_id=group_id,
            paid_by=USER_C,
            amount=Decimal("80"),
            split_type=SplitType.PERCENTAGE,
            splits=[
                SplitInput(user_id=USER_A, percentage=Decimal("12.5")),
                SplitInput(user_id=USER_C, percentage=Decimal("87.5")),
            ],
            created_by=USER_C,
        ))
        run(service.create_settlement(group_id, USER_C, USER_A, Decimal("12.34")))

        balances = balance_map(service, group_id)
        assert sum(balances.values()) == Decimal("0.00")

    def test_user_without_entries_has_zero_balance(self, service, group_id):
        """Test a member who never took part owes nothing."""
        assert run(service.get_user_group_balance(USER_C, group_id)) == Decimal("0.00")

    def test_reads_are_idempotent(self, service, group_id):
        """Test repeated reads with no mutation in between agree."""
        dinner(service, group_id)
        first = run(service.get_user_group_balance(USER_B, group_id))
        second = run(service.get_user_group_balance(USER_B, group_id))
        assert first == second == Decimal("-30.00")
        assert balance_map(service, group_id) == balance_map(service, group_id)

    def test_read_after_mutation_is_fresh(self, service, group_id):
        """Test a cached balance is never served after a committed change."""
        dinner(service, group_id)
        assert run(service.get_user_group_balance(USER_C, group_id)) == Decimal("-30.00")

        run(service.create_settlement(group_id, USER_C, USER_A, Decimal("10")))
        assert run(service.get_user_group_balance(USER_C, group_id)) == Decimal("-20.00")

    def test_group_read_is_fresh_after_partial_warmup(self, service, group_id):
        """Test group balances with some members cached and some not."""
        dinner(service, group_id)
        run(service.get_user_group_balance(USER_A, group_id))

        assert balance_map(service, group_id)[USER_B] == Decimal("-30.00")

    def test_unknown_group(self, service):
        """Test balance reads for a missing group raise NotFoundError."""
        with pytest.raises(NotFoundError):
            run(service.get_user_group_balance(USER_A, uuid4()))
        with pytest.raises(NotFoundError):
            run(service.get_group_balances(uuid4()))
        with pytest.raises(NotFoundError):
            run(service.get_simplified_balances(uuid4()))


class TestExpenses:
    """Tests for expense mutations."""

    def test_string_split_type_accepted(self, service, group_id):
        """Test split type given as its string value."""
        expense = run(service.create_expense(
            group_id=group_id,
            paid_by=USER_A,
            amount="30",
            split_type="EQUAL",
            splits=equal_split(USER_A, USER_B),
            created_by=USER_A,
        ))
        assert expense.split_type == SplitType.EQUAL
        assert expense.split_total == Decimal("30.00")

    def test_invalid_split_type_rejected(self, service, group_id):
        """Test an unknown split type."""
        with pytest.raises(ValidationError):
            run(service.create_expense(
                group_id=group_id,
                paid_by=USER_A,
                amount="30",
                split_type="SHARES",
                splits=equal_split(USER_A),
                created_by=USER_A,
            ))

    def test_payer_must_be_member(self, service, group_id):
        """Test an outsider can't pay an expense."""
        with pytest.raises(NotMemberError):
            dinner(service, group_id, paid_by=OUTSIDER)

    def test_participant_must_be_member(self, service, group_id):
        """Test an outsider can't be split into an expense, and nothing is written."""
        with pytest.raises(NotMemberError):
            run(service.create_expense(
                group_id=group_id,
                paid_by=USER_A,
                amount=Decimal("20"),
                split_type=SplitType.EQUAL,
                splits=equal_split(USER_A, OUTSIDER),
                created_by=USER_A,
            ))
        assert run(service.list_group_expenses(group_id)) == []

    def test_get_expense_round_trips_splits(self, service, group_id):
        """Test the stored expense comes back with its splits in order."""
        created = dinner(service, group_id, amount="100", description="Groceries")

        fetched = run(service.get_expense(created.id))
        assert fetched.description == "Groceries"
        assert fetched.participant_ids == [USER_A, USER_B, USER_C]
        assert [s.amount for s in fetched.splits] == [
            Decimal("33.34"), Decimal("33.33"), Decimal("33.33"),
        ]

    def test_missing_expense(self, service):
        """Test reads and deletes of an unknown expense."""
        with pytest.raises(NotFoundError):
            run(service.get_expense(uuid4()))
        with pytest.raises(NotFoundError):
            run(service.delete_expense(uuid4(), USER_A))

    def test_list_newest_first_with_limit(self, service, group_id):
        """Test listing order and page size."""
        old = dinner(service, group_id, expense_date=date(2024, 1, 1))
        new = dinner(service, group_id, expense_date=date(2024, 3, 1))
        mid = dinner(service, group_id, expense_date=date(2024, 2, 1))

        listed = run(service.list_group_expenses(group_id))
        assert [e.id for e in listed] == [new.id, mid.id, old.id]

        page = run(service.list_group_expenses(group_id, limit=1, offset=1))
        assert [e.id for e in page] == [mid.id]

    def test_bad_page_rejected(self, service, group_id):
        """Test a zero limit is refused."""
        with pytest.raises(ValidationError):
            run(service.list_group_expenses(group_id, limit=0))


class TestUpdateExpense:
    """Tests for partial expense updates."""

    def test_replacing_splits_moves_balances(self, service, group_id, cache_store):
        """Test switching to an EXACT split that drops C frees C and evicts C's entry."""
        expense = dinner(service, group_id)
        run(service.get_user_group_balance(USER_C, group_id))

        updated = run(service.update_expense(
            expense.id,
            {
                "split_type": "EXACT",
                "splits": [
                    {"user_id": str(USER_A), "amount": "50"},
                    {"user_id": str(USER_B), "amount": "40"},
                ],
            },
            USER_A,
        ))

        assert updated.split_type == SplitType.EXACT
        assert updated.participant_ids == [USER_A, USER_B]
        assert f"balance:user:{USER_C}:group:{group_id}" not in cache_store
        assert balance_map(service, group_id) == {
            USER_A: Decimal("40.00"),
            USER_B: Decimal("-40.00"),
            USER_C: Decimal("0.00"),
        }

    def test_amount_change_recomputes_equal_splits(self, service, group_id):
        """Test changing only the amount keeps the participants."""
        expense = dinner(service, group_id)
        updated = run(service.update_expense(expense.id, {"amount": "120"}, USER_A))

        assert updated.amount == Decimal("120.00")
        assert [s.amount for s in updated.splits] == [Decimal("40.00")] * 3
        assert run(service.get_user_group_balance(USER_A, group_id)) == Decimal("80.00")

    def test_description_only_keeps_splits(self, service, group_id):
        """Test a metadata-only update leaves the split set alone."""
        expense = dinner(service, group_id)
        updated = run(service.update_expense(expense.id, {"description": "Pizza"}, USER_A))

        assert updated.description == "Pizza"
        assert [s.id for s in updated.splits] == [s.id for s in expense.splits]

    def test_invalid_update_leaves_expense_unchanged(self, service, group_id):
        """Test a rejected update rolls back entirely."""
        expense = dinner(service, group_id)
        with pytest.raises(ValidationError):
            run(service.update_expense(
                expense.id,
                {"split_type": "EXACT", "splits": [{"user_id": str(USER_A), "amount": "10"}]},
                USER_A,
            ))

        assert run(service.get_expense(expense.id)).amount == Decimal("90.00")
        assert balance_map(service, group_id)[USER_B] == Decimal("-30.00")

    def test_unknown_field_rejected(self, service, group_id):
        """Test that unexpected update fields are refused."""
        expense = dinner(service, group_id)
        with pytest.raises(ValidationError):
            run(service.update_expense(expense.id, {"paid_by": str(USER_B)}, USER_A))


class TestAuthorization:
    """Tests for who may change what."""

    def test_plain_member_cannot_touch_others_expense(self, service, group_id):
        """Test C can't update or delete B's expense."""
        expense = dinner(service, group_id, paid_by=USER_B)
        with pytest.raises(AuthorizationError):
            run(service.update_expense(expense.id, {"description": "x"}, USER_C))
        with pytest.raises(AuthorizationError):
            run(service.delete_expense(expense.id, USER_C))

    def test_admin_can_delete_any_expense(self, service, group_id):
        """Test the group admin may delete B's expense."""
        expense = dinner(service, group_id, paid_by=USER_B)
        assert run(service.delete_expense(expense.id, USER_A)).success

    def test_settlement_delete_rights(self, service, group_id):
        """Test only a party or an admin may delete a settlement."""
        settlement = run(service.create_settlement(group_id, USER_B, USER_C, Decimal("5")))

        with pytest.raises(AuthorizationError):
            run(service.delete_settlement(settlement.id, OUTSIDER))

        ack = run(service.delete_settlement(settlement.id, USER_C))
        assert ack.message == "Settlement deleted successfully"
        with pytest.raises(NotFoundError):
            run(service.get_settlement(settlement.id))


class TestSettlements:
    """Tests for settlement mutations."""

    def test_cannot_settle_with_yourself(self, service, group_id):
        """Test self-settlement is rejected."""
        with pytest.raises(ValidationError):
            run(service.create_settlement(group_id, USER_A, USER_A, Decimal("5")))

    def test_parties_must_be_members(self, service, group_id):
        """Test an outsider can't be a settlement party."""
        with pytest.raises(NotMemberError):
            run(service.create_settlement(group_id, USER_A, OUTSIDER, Decimal("5")))

    def test_non_positive_amount_rejected(self, service, group_id):
        """Test zero settlements are rejected."""
        with pytest.raises(ValidationError):
            run(service.create_settlement(group_id, USER_B, USER_A, Decimal("0")))

    def test_overpayment_is_allowed(self, service, group_id):
        """Test a payer who is owed money may still record a payment."""
        dinner(service, group_id)
        run(service.create_settlement(group_id, USER_A, USER_B, Decimal("10")))
        assert run(service.get_user_group_balance(USER_A, group_id)) == Decimal("70.00")

    def test_delete_settlement_restores_balances(self, service, group_id):
        """Test removing a settlement undoes its effect."""
        dinner(service, group_id)
        settlement = run(service.create_settlement(group_id, USER_B, USER_A, Decimal("30")))
        assert run(service.get_user_group_balance(USER_B, group_id)) == Decimal("0.00")

        run(service.delete_settlement(settlement.id, USER_B))
        assert run(service.get_user_group_balance(USER_B, group_id)) == Decimal("-30.00")

    def test_list_settlements(self, service, group_id):
        """Test settlements are listed for the group."""
        first = run(service.create_settlement(
            group_id, USER_B, USER_A, Decimal("1"), settlement_date=date(2024, 1, 1)
        ))
        second = run(service.create_settlement(
            group_id, USER_C, USER_A, Decimal("2"), settlement_date=date(2024, 2, 1), notes="cash"
        ))
        listed = run(service.list_group_settlements(group_id))
        assert [s.id for s in listed] == [second.id, first.id]
        assert listed[0].notes == "cash"


class TestLeaveGroup:
    """Tests for leaving a group."""

    def test_debtor_cannot_leave(self, service, group_id):
        """Test the refusal message for a member who owes money."""
        dinner(service, group_id)
        check = run(service.check_can_leave(USER_C, group_id))

        assert not check.can_leave
        assert check.balance == Decimal("-30.00")
        assert check.message == "Cannot leave group. You owe ₹30.00. Please settle all dues first."
        with pytest.raises(ValidationError, match="You owe"):
            run(service.leave_group(USER_C, group_id))

    def test_creditor_cannot_leave(self, service, group_id):
        """Test a member who is owed money is refused too."""
        dinner(service, group_id)
        check = run(service.check_can_leave(USER_A, group_id))
        assert not check.can_leave
        assert "You are owed ₹60.00" in check.message

    def test_settled_member_leaves(self, service, directory, group_id):
        """Test leaving once all dues are settled."""
        dinner(service, group_id)
        run(service.create_settlement(group_id, USER_C, USER_A, Decimal("30")))

        assert run(service.check_can_leave(USER_C, group_id)).can_leave
        assert run(service.leave_group(USER_C, group_id)).success
        assert not run(directory.is_member(USER_C, group_id))

    def test_non_member_cannot_leave(self, service, group_id):
        """Test leaving a group one isn't in."""
        with pytest.raises(NotMemberError):
            run(service.leave_group(OUTSIDER, group_id))

    def test_admin_removes_member(self, directory, group_id):
        """Test plain membership removal reports whether a row went away."""
        assert run(directory.remove_member(group_id, USER_B))
        assert not run(directory.is_member(USER_B, group_id))
        assert not run(directory.remove_member(group_id, USER_B))


class TestCacheFailure:
    """Tests that a broken cache never breaks the ledger."""

    @pytest.fixture
    def broken(self):
        store = BrokenCacheStore()
        audit_logger = RecordingAuditLogger()
        service, directory, database = create_app_components(
            settings=InMemorySettings(),
            cache_store=store,
            audit_logger=audit_logger,
        )

        async def setup():
            group = await directory.create_group("Offline", created_by=USER_A)
            await directory.add_member(group.id, USER_B)
            await directory.add_member(group.id, USER_C)
            return group.id

        yield service, run(setup()), store, audit_logger
        database.dispose()

    def test_operations_succeed_without_cache(self, broken):
        """Test mutations and reads work with every cache call failing."""
        service, group_id, store, _ = broken

        expense = dinner(service, group_id)
        assert run(service.get_user_group_balance(USER_B, group_id)) == Decimal("-30.00")
        assert balance_map(service, group_id)[USER_A] == Decimal("60.00")
        assert run(service.delete_expense(expense.id, USER_A)).success
        assert run(service.get_user_group_balance(USER_B, group_id)) == Decimal("0.00")
        assert store.calls > 0

    def test_failed_invalidation_is_audited(self, broken):
        """Test that unevicted keys are recorded as an audit event."""
        service, group_id, _, audit_logger = broken
        dinner(service, group_id)

        assert audit_logger.types() == [
            AuditEventType.CACHE_INVALIDATION_FAILED,
            AuditEventType.EXPENSE_CREATED,
        ]
        failure = audit_logger.events[0]
        assert failure.group_id == group_id
        assert len(failure.details["failed_keys"]) == 4

    def test_failed_leave_eviction_is_audited(self, broken):
        """Test leaving goes through the same eviction audit as ledger writes."""
        service, group_id, _, audit_logger = broken

        assert run(service.leave_group(USER_C, group_id)).success

        assert audit_logger.types() == [
            AuditEventType.CACHE_INVALIDATION_FAILED,
            AuditEventType.MEMBER_LEFT,
        ]
        assert len(audit_logger.events[0].details["failed_keys"]) == 2


class TestAuditTrail:
    """Tests that committed mutations are audited."""

    def test_each_mutation_is_audited(self, audited, audit_logger):
        """Test the audit events of a full expense and settlement lifecycle."""
        service, group_id = audited

        expense = dinner(service, group_id)
        run(service.update_expense(expense.id, {"description": "Dinner"}, USER_A))
        settlement = run(service.create_settlement(group_id, USER_B, USER_A, Decimal("30")))
        run(service.delete_settlement(settlement.id, USER_B))
        run(service.delete_expense(expense.id, USER_A))
        run(service.leave_group(USER_C, group_id))

        assert audit_logger.types() == [
            AuditEventType.EXPENSE_CREATED,
            AuditEventType.EXPENSE_UPDATED,
            AuditEventType.SETTLEMENT_CREATED,
            AuditEventType.SETTLEMENT_DELETED,
            AuditEventType.EXPENSE_DELETED,
            AuditEventType.MEMBER_LEFT,
        ]
        deleted = audit_logger.events[4]
        assert deleted.entity_id == expense.id
        assert deleted.actor_id == USER_A

    def test_rejected_mutation_is_not_audited(self, audited, audit_logger):
        """Test that a failed write leaves no audit trail."""
        service, group_id = audited
        with pytest.raises(ValidationError):
            run(service.create_settlement(group_id, USER_A, USER_A, Decimal("1")))
        assert audit_logger.events == []


class TestFactory:
    """Tests for component wiring."""

    def test_caller_cache_store_is_used_even_when_empty(self, service, group_id, cache_store):
        """Test an empty store passed to the factory is the one that gets filled."""
        # An empty store is falsy, so it must not be swapped for a default
        assert not cache_store

        run(service.get_user_group_balance(USER_B, group_id))

        assert f"balance:user:{USER_B}:group:{group_id}" in cache_store


USER_D = UUID(int=4)
MEMBERS = [USER_A, USER_B, USER_C, USER_D]


def random_split(rng):
    """A random valid (amount, split type, splits) over the four members."""
    cents = rng.randint(1, 500_000)
    amount = Decimal(cents) / 100
    split_type = rng.choice(list(SplitType))
    users = rng.sample(MEMBERS, rng.randint(1, len(MEMBERS)))

    if split_type == SplitType.EQUAL:
        splits = [SplitInput(user_id=u) for u in users]
    elif split_type == SplitType.EXACT:
        cuts = sorted(rng.randint(0, cents) for _ in users[1:])
        parts = [b - a for a, b in zip([0] + cuts, cuts + [cents])]
        splits = [SplitInput(user_id=u, amount=Decimal(p) / 100) for u, p in zip(users, parts)]
    else:
        cuts = sorted(rng.sample(range(1, 10000), len(users) - 1))
        points = [b - a for a, b in zip([0] + cuts, cuts + [10000])]
        splits = [SplitInput(user_id=u, percentage=Decimal(p) / 100) for u, p in zip(users, points)]
    return amount, split_type, splits


def expense_effect(expense):
    effect = {expense.paid_by: expense.amount}
    for split in expense.splits:
        effect[split.user_id] = effect.get(split.user_id, Decimal("0")) - split.amount
    return effect


def apply_effect(totals, effect, sign=1):
    for user_id, amount in effect.items():
        totals[user_id] += sign * amount


class TestConservation:
    """Randomized mixed ledgers: money is neither created nor lost."""

    @pytest.fixture
    def four_members(self):
        service, directory, database = create_app_components(
            settings=InMemorySettings(),
            cache_store=InMemoryCacheStore(),
        )

        async def setup():
            group = await directory.create_group("Random", created_by=USER_A)
            for user_id in MEMBERS[1:]:
                await directory.add_member(group.id, user_id)
            return group.id

        yield service, run(setup())
        database.dispose()

    def run_sequence(self, service, group_id, rng, start, steps=25):
        expected = dict(start)
        expenses = {}

        for _ in range(steps):
            action = rng.choice(["expense", "expense", "settlement", "update", "delete"])
            if action in ("update", "delete") and not expenses:
                action = "expense"

            if action == "expense":
                amount, split_type, splits = random_split(rng)
                expense = run(service.create_expense(
                    group_id=group_id,
                    paid_by=rng.choice(MEMBERS),
                    amount=amount,
                    split_type=split_type,
                    splits=splits,
                    created_by=USER_A,
                ))
                expenses[expense.id] = expense
                apply_effect(expected, expense_effect(expense))
            elif action == "settlement":
                payer, payee = rng.sample(MEMBERS, 2)
                amount = Decimal(rng.randint(1, 100_000)) / 100
                run(service.create_settlement(group_id, payer, payee, amount))
                apply_effect(expected, {payer: amount, payee: -amount})
            elif action == "update":
                old = expenses[rng.choice(sorted(expenses))]
                amount, split_type, splits = random_split(rng)
                new = run(service.update_expense(
                    old.id,
                    ExpenseUpdate(amount=amount, split_type=split_type, splits=splits),
                    USER_A,
                ))
                expenses[new.id] = new
                apply_effect(expected, expense_effect(old), sign=-1)
                apply_effect(expected, expense_effect(new))
            else:
                old = expenses.pop(rng.choice(sorted(expenses)))
                run(service.delete_expense(old.id, USER_A))
                apply_effect(expected, expense_effect(old), sign=-1)

            # Cached reads after every step must match the ledger
            for user_id in MEMBERS:
                assert run(service.get_user_group_balance(user_id, group_id)) == expected[user_id]

        return expected

    def test_random_ledgers_conserve_money(self, four_members):
        """Test balances, cached reads and settlement plans over random mixed ledgers."""
        service, group_id = four_members

        for seed in range(6):
            rng = random.Random(seed)
            before = balance_map(service, group_id)
            expected = self.run_sequence(service, group_id, rng, before)

            balances = balance_map(service, group_id)
            assert sum(balances.values()) == Decimal("0.00"), seed
            for user_id in MEMBERS:
                assert balances[user_id] == expected[user_id], seed

            plan = run(service.get_simplified_balances(group_id))
            totals = transfer_totals(plan)
            for user_id, balance in balances.items():
                assert abs(totals.get(user_id, Decimal("0")) - balance) < Decimal("0.01"), seed
