"""
Ledger Balance Engine

Records shared expenses and settlements inside groups and derives each
member's net balance from them, with a read-through cache and a greedy
settlement planner.
"""

__version__ = "0.1.0"
