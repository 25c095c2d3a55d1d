"""
Cached Balance Reads

Read path for balances: try the cache, fall back to the calculator on a
miss, and cache what was computed. A failed cache call is treated as a
miss; the ledger is always the source of truth.
"""

from decimal import Decimal
from uuid import UUID

from balance_engine.balances.calculator import BalanceCalculator
from balance_engine.models.balance import MemberBalance
from balance_engine.services.cache import BalanceCache
from balance_engine.services.storage import MembershipOracle


class BalanceReader:
    """
    Read-through balance access over the balance cache.
    """
    
    def __init__(
        self,
        calculator: BalanceCalculator,
        cache: BalanceCache,
        membership: MembershipOracle,
    ):
        self._calculator = calculator
        self._cache = cache
        self._membership = membership
    
    async def user_balance(self, user_id: UUID, group_id: UUID) -> Decimal:
        cached = await self._cache.get_balance(user_id, group_id)
        if cached.hit:
            return cached.value
        
        # Miss or cache failure: recompute from the ledger
        generation = self._cache.generation(group_id)
        balance = await self._calculator.balance(user_id, group_id)
        
        # Result discarded: if the store fails, the next read recomputes
        await self._cache.set_balance(user_id, group_id, balance, generation)
        return balance
    
    async def group_balances(self, group_id: UUID) -> list[MemberBalance]:
        """
        Every member's balance, ordered by user id.
        
        Served from the cache only when every member's entry is present;
        otherwise the whole group is recomputed in one snapshot read.
        """
        member_ids = await self._membership.list_member_ids(group_id)
        lookups = {
            user_id: await self._cache.get_balance(user_id, group_id)
            for user_id in member_ids
        }
        
        if member_ids and all(result.hit for result in lookups.values()):
            return [
                MemberBalance(user_id=user_id, balance=lookups[user_id].value)
                for user_id in sorted(member_ids)
            ]
        
        generation = self._cache.generation(group_id)
        balances = await self._calculator.group_balances(group_id)
        for entry in balances:
            lookup = lookups.get(entry.user_id)
            if lookup is None or not lookup.hit:
                await self._cache.set_balance(entry.user_id, group_id, entry.balance, generation)
        return balances
