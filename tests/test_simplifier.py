"""
Tests for debt simplification.
"""

from decimal import Decimal
from uuid import UUID

from balance_engine.balances import simplify_debts, transfer_totals
from balance_engine.models.balance import MemberBalance
from tests.helpers import USER_A, USER_B, USER_C


def balances(**by_user):
    """balances(a="60", b="-30") -> MemberBalance list keyed by helper users."""
    users = {"a": USER_A, "b": USER_B, "c": USER_C, "d": UUID(int=4), "e": UUID(int=5)}
    return [
        MemberBalance(user_id=users[name], balance=Decimal(value))
        for name, value in by_user.items()
    ]


def as_tuples(transfers):
    return [(t.from_user_id, t.to_user_id, t.amount) for t in transfers]


class TestSimplifyDebts:
    """Tests for the greedy settlement plan."""
    
    def test_one_creditor_two_debtors(self):
        """Test the three-way dinner case: B and C each pay A 30."""
        plan = simplify_debts(balances(a="60.00", b="-30.00", c="-30.00"))
        assert as_tuples(plan) == [
            (USER_B, USER_A, Decimal("30.00")),
            (USER_C, USER_A, Decimal("30.00")),
        ]
    
    def test_settled_members_are_ignored(self):
        """Test that zero and sub-cent balances produce no transfers."""
        plan = simplify_debts(balances(a="30.00", b="0.00", c="-30.00", d="0.01", e="-0.01"))
        assert as_tuples(plan) == [(USER_C, USER_A, Decimal("30.00"))]
    
    def test_all_settled_gives_empty_plan(self):
        """Test that a settled group needs no payments."""
        assert simplify_debts(balances(a="0.00", b="0.00")) == []
        assert simplify_debts([]) == []
    
    def test_largest_debtor_pays_largest_creditor_first(self):
        """Test greedy ordering by magnitude."""
        plan = simplify_debts(balances(a="10.00", b="50.00", c="-45.00", d="-15.00"))
        assert as_tuples(plan) == [
            (USER_C, USER_B, Decimal("45.00")),
            (UUID(int=4), USER_B, Decimal("5.00")),
            (UUID(int=4), USER_A, Decimal("10.00")),
        ]
    
    def test_ties_broken_by_user_id(self):
        """Test that equal magnitudes are matched in user id order, whatever the input order."""
        forward = simplify_debts(balances(a="20.00", b="20.00", c="-20.00", d="-20.00"))
        shuffled = list(reversed(balances(a="20.00", b="20.00", c="-20.00", d="-20.00")))
        assert as_tuples(simplify_debts(shuffled)) == as_tuples(forward)
        assert as_tuples(forward) == [
            (USER_C, USER_A, Decimal("20.00")),
            (UUID(int=4), USER_B, Decimal("20.00")),
        ]
    
    def test_plan_moves_exactly_each_balance(self):
        """Test mass balance: each user's net transfers equal their balance."""
        snapshot = balances(a="123.45", b="-50.10", c="-0.35", d="7.00", e="-80.00")
        plan = simplify_debts(snapshot)
        
        totals = transfer_totals(plan)
        for entry in snapshot:
            assert abs(totals.get(entry.user_id, Decimal("0")) - entry.balance) < Decimal("0.01")
    
    def test_transfers_are_positive(self):
        """Test that every transfer is at least one cent."""
        plan = simplify_debts(balances(a="0.05", b="-0.03", c="-0.02"))
        assert all(t.amount >= Decimal("0.01") for t in plan)
        assert sum(t.amount for t in plan) == Decimal("0.05")
