"""
Split Computation and Validation

Turns the caller's requested splits into the exact per-participant
amounts that get stored, or rejects them.

Rules:
- EQUAL: amount / n rounded down to the cent; the leftover cents go to
  the participant with the lowest user id (not the first one listed)
- EXACT: the supplied amounts must add up to the expense amount
- PERCENTAGE: percentages must add up to 100; derived amounts are
  floored to the cent and the leftover cents go to the largest dropped
  fractions (largest remainder); every final amount must be within a
  cent of its percentage of the total

Every split set produced here sums to the expense amount to the cent.

IMPORTANT: Caller-supplied amounts are rounded to the cent (ROUND_HALF_UP)
and otherwise never adjusted: a set that does not add up is rejected,
not corrected.
"""

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Optional, Sequence
from uuid import UUID

from balance_engine.errors import ValidationError
from balance_engine.models.ledger import (
    CENT,
    MONEY_EPSILON,
    ZERO,
    ExpenseSplit,
    SplitInput,
    SplitType,
    to_cents,
)


HUNDRED = Decimal("100")

# Percentages may carry more precision than money, but must still add up
PERCENT_EPSILON = Decimal("0.01")


def positive_amount(value, field: str = "amount") -> Decimal:
    """
    Parse a money amount that must be strictly positive.
    
    Raises:
        ValidationError: If the value is missing, not a number, or <= 0
    """
    if value is None:
        raise ValidationError(f"{field} is required")
    try:
        amount = to_cents(value)
    except ValueError:
        raise ValidationError(f"{field} must be a number, got {value!r}")
    if amount <= ZERO:
        raise ValidationError(f"{field} must be greater than zero")
    return amount


def _share_amount(value, user_id: UUID) -> Decimal:
    if value is None:
        raise ValidationError(f"Amount is required for user {user_id}")
    try:
        amount = to_cents(value)
    except ValueError:
        raise ValidationError(f"Amount for user {user_id} must be a number")
    if amount < ZERO:
        raise ValidationError(f"Amount for user {user_id} cannot be negative")
    return amount


def _percentage(value, user_id: UUID) -> Decimal:
    if value is None:
        raise ValidationError(f"Percentage is required for user {user_id}")
    try:
        percentage = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Percentage for user {user_id} must be a number")
    if not percentage.is_finite() or percentage < ZERO or percentage > HUNDRED:
        raise ValidationError(f"Percentage for user {user_id} must be between 0 and 100")
    return percentage


class SplitCalculator:
    """
    Computes stored splits for an expense.
    
    Stateless; one instance can serve every request.
    """
    
    def build(
        self,
        expense_id: UUID,
        amount: Decimal,
        split_type: SplitType,
        splits: Sequence[SplitInput],
    ) -> list[ExpenseSplit]:
        """
        Compute and validate the splits of one expense.
        
        Args:
            expense_id: Expense the splits will belong to
            amount: Expense total, already validated as positive cents
            split_type: How to divide the amount
            splits: Caller-supplied participants (and amounts/percentages)
            
        Returns:
            Splits in caller order, summing exactly to amount
            
        Raises:
            ValidationError: On any rule violation
        """
        participant_ids = self._participant_ids(splits)
        
        try:
            split_type = SplitType(split_type)
        except ValueError:
            raise ValidationError(f"Invalid split type: {split_type}")
        
        if split_type == SplitType.EQUAL:
            shares = self._equal(amount, participant_ids)
            percentages: dict[UUID, Optional[Decimal]] = {}
        elif split_type == SplitType.EXACT:
            shares = self._exact(amount, splits)
            percentages = {}
        else:
            shares, percentages = self._percentage(amount, splits)
        
        return [
            ExpenseSplit(
                expense_id=expense_id,
                user_id=user_id,
                amount=shares[user_id],
                percentage=percentages.get(user_id),
            )
            for user_id in participant_ids
        ]
    
    def _participant_ids(self, splits: Sequence[SplitInput]) -> list[UUID]:
        if not splits:
            raise ValidationError("At least one participant is required")
        seen: set[UUID] = set()
        ordered: list[UUID] = []
        for split in splits:
            if split.user_id in seen:
                raise ValidationError(f"User {split.user_id} appears more than once in splits")
            seen.add(split.user_id)
            ordered.append(split.user_id)
        return ordered
    
    def _equal(self, amount: Decimal, participant_ids: list[UUID]) -> dict[UUID, Decimal]:
        count = len(participant_ids)
        share = (amount / count).quantize(CENT, rounding=ROUND_DOWN)
        remainder = amount - share * count
        
        shares = {user_id: share for user_id in participant_ids}
        shares[min(participant_ids)] += remainder
        return shares
    
    def _exact(self, amount: Decimal, splits: Sequence[SplitInput]) -> dict[UUID, Decimal]:
        shares = {split.user_id: _share_amount(split.amount, split.user_id) for split in splits}
        total = sum(shares.values(), ZERO)
        
        if abs(total - amount) >= MONEY_EPSILON:
            raise ValidationError(
                f"Sum of exact amounts ({total}) must equal expense amount ({amount})"
            )
        return shares
    
    def _percentage(
        self,
        amount: Decimal,
        splits: Sequence[SplitInput],
    ) -> tuple[dict[UUID, Decimal], dict[UUID, Optional[Decimal]]]:
        percentages = {split.user_id: _percentage(split.percentage, split.user_id) for split in splits}
        total_percentage = sum(percentages.values(), ZERO)
        
        if abs(total_percentage - HUNDRED) >= PERCENT_EPSILON:
            raise ValidationError(
                f"Sum of percentages ({total_percentage}%) must equal 100%"
            )
        
        shares: dict[UUID, Decimal] = {}
        fractions: dict[UUID, Decimal] = {}
        for split in splits:
            expected = amount * percentages[split.user_id] / HUNDRED
            if split.amount is None:
                shares[split.user_id] = expected.quantize(CENT, rounding=ROUND_DOWN)
                fractions[split.user_id] = expected - shares[split.user_id]
                continue
            supplied = _share_amount(split.amount, split.user_id)
            if abs(supplied - expected) >= MONEY_EPSILON:
                raise ValidationError(
                    f"Amount for user {split.user_id} doesn't match percentage"
                )
            shares[split.user_id] = supplied
        
        residual = amount - sum(shares.values(), ZERO)
        if residual != ZERO:
            extra_cents = int(residual / CENT)
            # Each derived share may take at most one extra cent and stay
            # within a cent of its exact value
            if extra_cents < 0 or extra_cents > len(fractions):
                raise ValidationError(
                    f"Sum of split amounts ({amount - residual}) must equal expense amount ({amount})"
                )
            # Largest remainder: the cents go to the largest dropped fractions
            by_fraction = sorted(fractions, key=lambda user_id: (-fractions[user_id], user_id))
            for user_id in by_fraction[:extra_cents]:
                shares[user_id] += CENT
        
        for user_id, share in shares.items():
            expected = amount * percentages[user_id] / HUNDRED
            if share < ZERO or abs(share - expected) >= MONEY_EPSILON:
                raise ValidationError(
                    f"Amount for user {user_id} ({share}) doesn't match its "
                    f"{percentages[user_id]}% of {amount}"
                )
        return shares, percentages
