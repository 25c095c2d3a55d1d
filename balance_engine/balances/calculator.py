"""
Balance Calculator

Net balance of a user in a group, derived from the ledger:

    balance = paid expenses + paid settlements
              - owed splits - received settlements

Positive means the user is owed money, negative means they owe.
The arithmetic itself runs in the store as a single statement.
"""

from decimal import Decimal
from uuid import UUID

from balance_engine.errors import NotFoundError
from balance_engine.models.balance import LeaveCheck, MemberBalance
from balance_engine.models.ledger import ZERO, is_settled
from balance_engine.services.storage import LedgerStorageInterface, MembershipOracle


class BalanceCalculator:
    """
    Computes balances straight from the ledger, with no caching.
    """
    
    def __init__(
        self,
        storage: LedgerStorageInterface,
        membership: MembershipOracle,
    ):
        self._storage = storage
        self._membership = membership
    
    async def _require_group(self, group_id: UUID) -> None:
        if not await self._membership.group_exists(group_id):
            raise NotFoundError(f"Group not found: {group_id}")
    
    async def balance(self, user_id: UUID, group_id: UUID) -> Decimal:
        """Net balance of one user in one group."""
        await self._require_group(group_id)
        return await self._storage.net_balance(user_id, group_id)
    
    async def group_balances(self, group_id: UUID) -> list[MemberBalance]:
        """Net balance of every current member, ordered by user id."""
        await self._require_group(group_id)
        balances = await self._storage.group_net_balances(group_id)
        return [
            MemberBalance(user_id=user_id, balance=balances[user_id])
            for user_id in sorted(balances)
        ]
    
    async def can_leave(self, user_id: UUID, group_id: UUID) -> bool:
        return is_settled(await self.balance(user_id, group_id))
    
    @staticmethod
    def leave_check(balance: Decimal) -> LeaveCheck:
        """
        Explain whether a member with this balance may leave.
        """
        if is_settled(balance):
            return LeaveCheck(can_leave=True, balance=ZERO)
        
        if balance > ZERO:
            balance_text = f"You are owed ₹{abs(balance):.2f}"
        else:
            balance_text = f"You owe ₹{abs(balance):.2f}"
        return LeaveCheck(
            can_leave=False,
            balance=balance,
            message=f"Cannot leave group. {balance_text}. Please settle all dues first.",
        )
