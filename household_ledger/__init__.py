"""
Household Ledger - Local Persistent Ledger Engine

Owns dated income/expense records, their categories and the summaries
derived from them. Rendering, file parsing and charts live outside
this package and talk to it through the Ledger API and its events.

DESIGN PRINCIPLES:
1. Validate before mutating - invalid input never touches state
2. Memory is authoritative - storage failures degrade durability, not data
3. Storage layer is swappable (structured store, flat fallback)
4. Derived data is disposable - caches are dropped on every mutation
5. Every change is announced on the event bus
"""

__version__ = "2.0.0"
__author__ = "Household Ledger Team"

from household_ledger.ledger import Ledger, LedgerState

__all__ = ["Ledger", "LedgerState", "__version__"]
