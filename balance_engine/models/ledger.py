"""
Core Ledger Models

These models define the shapes of everything the ledger persists:
groups, memberships, expenses with their splits, and settlements.

DESIGN DECISION: Money is always a Decimal quantized to the cent.
Floats never enter the ledger; values are rounded once, at the point of
storage, with ROUND_HALF_UP.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# MONEY HELPERS
# =============================================================================

CENT = Decimal("0.01")

# Two amounts closer than this are the same amount of money.
MONEY_EPSILON = Decimal("0.01")

ZERO = Decimal("0.00")


def to_cents(value) -> Decimal:
    """
    Convert a number-like value to a Decimal rounded to the cent.
    
    Raises:
        ValueError: If the value is not a finite number
    """
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValueError(f"Not a valid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Not a valid amount: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def is_settled(balance: Decimal) -> bool:
    """A balance within a cent of zero counts as settled."""
    return abs(balance) < MONEY_EPSILON


# =============================================================================
# ENUMS
# =============================================================================

class SplitType(str, Enum):
    """How an expense amount is divided among its participants."""
    EQUAL = "EQUAL"
    EXACT = "EXACT"
    PERCENTAGE = "PERCENTAGE"


class GroupRole(str, Enum):
    """Role of a user inside a group."""
    ADMIN = "admin"
    MEMBER = "member"


# =============================================================================
# GROUPS
# =============================================================================

class Group(BaseModel):
    """A group of users sharing expenses."""
    model_config = ConfigDict(from_attributes=True)
    
    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=200)
    created_by: UUID
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Membership(BaseModel):
    """One user's membership of one group."""
    model_config = ConfigDict(from_attributes=True)
    
    group_id: UUID
    user_id: UUID
    role: GroupRole = GroupRole.MEMBER
    joined_at: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# EXPENSES
# =============================================================================

class SplitInput(BaseModel):
    """
    A participant's requested share, as supplied by the caller.
    
    - EQUAL splits only need user_id
    - EXACT splits need amount
    - PERCENTAGE splits need percentage (amount is optional and cross-checked)
    """
    user_id: UUID
    amount: Optional[Decimal] = None
    percentage: Optional[Decimal] = None


class ExpenseSplit(BaseModel):
    """A participant's assigned share of one expense."""
    model_config = ConfigDict(from_attributes=True)
    
    id: UUID = Field(default_factory=uuid4)
    expense_id: UUID
    user_id: UUID
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    percentage: Optional[Decimal] = None


class Expense(BaseModel):
    """
    An expense paid by one member and shared by several.
    
    Splits keep the order the caller supplied them in.
    """
    model_config = ConfigDict(from_attributes=True)
    
    id: UUID = Field(default_factory=uuid4)
    group_id: UUID
    paid_by: UUID
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    description: Optional[str] = Field(default=None, max_length=500)
    expense_date: date = Field(default_factory=date.today)
    split_type: SplitType
    created_by: UUID
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    splits: list[ExpenseSplit] = Field(default_factory=list)
    
    @property
    def participant_ids(self) -> list[UUID]:
        return [split.user_id for split in self.splits]
    
    @property
    def split_total(self) -> Decimal:
        return sum((split.amount for split in self.splits), ZERO)


class ExpenseUpdate(BaseModel):
    """
    Partial update of an expense.
    
    Fields left as None are unchanged. Changing amount, split_type or
    splits causes the whole split set to be recomputed and replaced.
    """
    model_config = ConfigDict(extra="forbid")
    
    description: Optional[str] = Field(default=None, max_length=500)
    amount: Optional[Decimal] = None
    expense_date: Optional[date] = None
    split_type: Optional[SplitType] = None
    splits: Optional[list[SplitInput]] = None
    
    @property
    def replaces_splits(self) -> bool:
        return (
            self.amount is not None
            or self.split_type is not None
            or self.splits is not None
        )
    
    @property
    def is_empty(self) -> bool:
        return self.model_dump(exclude_none=True) == {}


# =============================================================================
# SETTLEMENTS
# =============================================================================

class Settlement(BaseModel):
    """A self-reported payment from one member to another."""
    model_config = ConfigDict(from_attributes=True)
    
    id: UUID = Field(default_factory=uuid4)
    group_id: UUID
    paid_by: UUID
    paid_to: UUID
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    settlement_date: date = Field(default_factory=date.today)
    notes: Optional[str] = Field(default=None, max_length=500)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    
    @property
    def party_ids(self) -> tuple[UUID, UUID]:
        return (self.paid_by, self.paid_to)


class MutationAck(BaseModel):
    """Acknowledgement returned by delete operations."""
    success: bool = True
    message: str
