"""Split validation package."""

from balance_engine.validation.splits import SplitCalculator, positive_amount

__all__ = ["SplitCalculator", "positive_amount"]
