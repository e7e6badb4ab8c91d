"""Read-only selectors for the trip kernel."""

from trip_kernel.selectors.base import BaseSelector
from trip_kernel.selectors.ledger_selector import LedgerSelector, LedgerTotals
from trip_kernel.selectors.visibility_selector import VisibilitySelector

__all__ = [
    "BaseSelector",
    "LedgerSelector",
    "LedgerTotals",
    "VisibilitySelector",
]
