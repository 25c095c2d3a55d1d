"""Balance derivation package: calculation, cached reads, debt simplification."""

from balance_engine.balances.calculator import BalanceCalculator
from balance_engine.balances.reader import BalanceReader
from balance_engine.balances.simplifier import simplify_debts, transfer_totals

__all__ = [
    "BalanceCalculator",
    "BalanceReader",
    "simplify_debts",
    "transfer_totals",
]
