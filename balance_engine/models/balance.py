"""
Balance Models

Balances are derived from the ledger and never stored.
These are the shapes the balance read operations return.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class MemberBalance(BaseModel):
    """
    A member's signed net position in a group.
    
    Positive means the member is owed money, negative means they owe.
    """
    user_id: UUID
    balance: Decimal = Field(..., decimal_places=2)


class SimplifiedTransfer(BaseModel):
    """One suggested payment in a settlement plan."""
    from_user_id: UUID
    to_user_id: UUID
    amount: Decimal = Field(..., gt=0, decimal_places=2)


class LeaveCheck(BaseModel):
    """Whether a member may leave a group, and why not."""
    can_leave: bool
    balance: Decimal
    message: Optional[str] = None
