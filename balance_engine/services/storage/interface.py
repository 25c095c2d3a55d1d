"""
Abstract Storage Interfaces

DESIGN DECISION: The ledger core talks to persistence only through
these interfaces:
1. LedgerStorageInterface - transactional store of expenses, splits, settlements
2. MembershipOracle - answers who belongs to a group and who administers it

Each write method is one transaction: every constituent row commits or
none does. Each balance read is one statement, so it observes either the
state before a concurrent commit or the state after it, never a mix.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Callable, Optional
from uuid import UUID

from balance_engine.errors import NotFoundError, StorageError
from balance_engine.models.ledger import (
    Expense,
    ExpenseSplit,
    Group,
    GroupRole,
    Membership,
    Settlement,
)


# Given the expense as read under its row lock, returns the scalar field
# changes and, if the split set is replaced, the new splits.
ExpenseChange = Callable[[Expense], tuple[dict[str, Any], Optional[list[ExpenseSplit]]]]


class LedgerStorageInterface(ABC):
    """
    Abstract interface for the ledger source of truth.
    
    Any storage implementation (PostgreSQL, SQLite, etc.)
    must implement these methods.
    """
    
    @abstractmethod
    async def insert_expense(self, expense: Expense) -> Expense:
        """
        Persist an expense together with all of its splits.
        
        Raises:
            NotMemberError: If the payer or a participant is not a member
                            when the transaction runs
            StorageError: If the transaction fails (nothing is written)
        """
        pass
    
    @abstractmethod
    async def get_expense(self, expense_id: UUID) -> Optional[Expense]:
        """Retrieve an expense with its ordered splits, or None."""
        pass
    
    @abstractmethod
    async def update_expense(
        self,
        expense_id: UUID,
        change: ExpenseChange,
    ) -> tuple[Expense, Expense]:
        """
        Lock the expense, compute the change from its current state, apply
        the scalar fields and, when splits are returned, replace the split
        set wholesale - all inside one transaction.
        
        Returns:
            (before, after): the locked pre-image and the committed state
            
        Raises:
            NotFoundError: If the expense doesn't exist
            NotMemberError: If a new participant is not a member
            ValidationError: Whatever change raises (nothing is written)
            StorageError: If the transaction fails (nothing is written)
        """
        pass
    
    @abstractmethod
    async def delete_expense(self, expense_id: UUID) -> Optional[Expense]:
        """
        Delete an expense and its splits atomically.
        
        Returns:
            The expense as it was when deleted (read under the row lock),
            or None if it didn't exist
        """
        pass
    
    @abstractmethod
    async def list_group_expenses(
        self,
        group_id: UUID,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Expense]:
        """List a group's expenses, newest expense date first."""
        pass
    
    @abstractmethod
    async def insert_settlement(self, settlement: Settlement) -> Settlement:
        """
        Persist a settlement.
        
        Raises:
            NotMemberError: If either party is not a member when the
                            transaction runs
        """
        pass
    
    @abstractmethod
    async def get_settlement(self, settlement_id: UUID) -> Optional[Settlement]:
        """Retrieve a settlement, or None."""
        pass
    
    @abstractmethod
    async def delete_settlement(self, settlement_id: UUID) -> bool:
        """Delete a settlement. Returns True if a row was deleted."""
        pass
    
    @abstractmethod
    async def list_group_settlements(
        self,
        group_id: UUID,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Settlement]:
        """List a group's settlements, newest settlement date first."""
        pass
    
    @abstractmethod
    async def net_balance(self, user_id: UUID, group_id: UUID) -> Decimal:
        """
        Net balance of one user in one group, from a single consistent read.
        
        paid expenses + paid settlements - owed splits - received settlements
        """
        pass
    
    @abstractmethod
    async def group_net_balances(self, group_id: UUID) -> dict[UUID, Decimal]:
        """
        Net balance of every current member, from a single consistent read.
        
        Returns:
            {user_id: balance}, one entry per member (zero balances included)
        """
        pass


class MembershipOracle(ABC):
    """
    Abstract interface for group membership lookups.
    
    Membership workflow (invites, joins) lives outside the ledger core;
    the core only asks questions.
    """
    
    @abstractmethod
    async def group_exists(self, group_id: UUID) -> bool:
        pass
    
    @abstractmethod
    async def is_member(self, user_id: UUID, group_id: UUID) -> bool:
        pass
    
    @abstractmethod
    async def is_admin(self, user_id: UUID, group_id: UUID) -> bool:
        pass
    
    @abstractmethod
    async def list_member_ids(self, group_id: UUID) -> list[UUID]:
        """Current members of a group, ordered by user id."""
        pass


class MembershipDirectory(MembershipOracle):
    """
    A membership oracle that can also change memberships.
    
    Used by the leave-group flow and by whatever application owns
    group creation and invitations.
    """
    
    @abstractmethod
    async def create_group(self, name: str, created_by: UUID) -> Group:
        """Create a group; the creator joins it as admin."""
        pass
    
    @abstractmethod
    async def add_member(
        self,
        group_id: UUID,
        user_id: UUID,
        role: GroupRole = GroupRole.MEMBER,
    ) -> Membership:
        pass
    
    @abstractmethod
    async def remove_member(self, group_id: UUID, user_id: UUID) -> bool:
        pass
    
    @abstractmethod
    async def remove_settled_member(
        self,
        group_id: UUID,
        user_id: UUID,
    ) -> tuple[bool, Decimal]:
        """
        Remove a member only if their net balance is settled.
        
        The balance is read and the membership deleted in one transaction
        holding the membership row lock, so no expense or settlement
        involving the member can commit in between.
        
        Returns:
            (removed, balance read under the lock)
            
        Raises:
            NotMemberError: If the user is not in the group
        """
        pass


__all__ = [
    "ExpenseChange",
    "LedgerStorageInterface",
    "MembershipDirectory",
    "MembershipOracle",
    "NotFoundError",
    "StorageError",
]
