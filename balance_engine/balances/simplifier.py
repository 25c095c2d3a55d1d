"""
Debt Simplifier

Reduces a group's net balances to a short list of payments that would
zero them all out.

Greedy minimum-transaction heuristic:
1. Creditors (balance > 0.01) sorted largest first
2. Debtors (balance < -0.01) sorted most negative first
3. Ties broken by user id, so identical input gives identical output
4. Match the current creditor and debtor for min(debt, credit), then
   move past whichever side has less than a cent left (both on a tie)

Not guaranteed globally minimal, only deterministic and O(n log n).
"""

from decimal import Decimal
from typing import Iterable
from uuid import UUID

from balance_engine.models.balance import MemberBalance, SimplifiedTransfer
from balance_engine.models.ledger import MONEY_EPSILON, to_cents


def simplify_debts(balances: Iterable[MemberBalance]) -> list[SimplifiedTransfer]:
    """
    Build the settlement plan for a balance snapshot.
    
    Args:
        balances: Every member's net balance; should sum to zero
        
    Returns:
        Transfers from debtors to creditors, in matching order
    """
    balances = list(balances)
    
    # Remaining magnitudes are mutated while matching
    creditors: list[list] = sorted(
        ([b.user_id, b.balance] for b in balances if b.balance > MONEY_EPSILON),
        key=lambda entry: (-entry[1], entry[0]),
    )
    debtors: list[list] = sorted(
        ([b.user_id, -b.balance] for b in balances if b.balance < -MONEY_EPSILON),
        key=lambda entry: (-entry[1], entry[0]),
    )
    
    transfers: list[SimplifiedTransfer] = []
    i = j = 0
    
    while i < len(creditors) and j < len(debtors):
        creditor_id, credit = creditors[i]
        debtor_id, debt = debtors[j]
        
        amount = to_cents(min(credit, debt))
        if amount >= MONEY_EPSILON:
            transfers.append(SimplifiedTransfer(
                from_user_id=debtor_id,
                to_user_id=creditor_id,
                amount=amount,
            ))
        
        creditors[i][1] = credit - amount
        debtors[j][1] = debt - amount
        
        if creditors[i][1] < MONEY_EPSILON:
            i += 1
        if debtors[j][1] < MONEY_EPSILON:
            j += 1
    
    return transfers


def transfer_totals(transfers: Iterable[SimplifiedTransfer]) -> dict[UUID, Decimal]:
    """
    Net effect of a plan per user: what each receives minus what each pays.
    
    Applying a complete plan to a group's balances leaves every member
    within a cent of zero, i.e. totals[user] ~= balance[user].
    """
    totals: dict[UUID, Decimal] = {}
    for transfer in transfers:
        totals[transfer.to_user_id] = totals.get(transfer.to_user_id, Decimal("0")) + transfer.amount
        totals[transfer.from_user_id] = totals.get(transfer.from_user_id, Decimal("0")) - transfer.amount
    return totals
