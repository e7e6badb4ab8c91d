"""
trip_services -- services layer for the trip approval core.

Coordinates the pure engines (``trip_engines``) with the kernel's
persistence and infrastructure (``trip_kernel``).  ``TransactionCoordinator``
is the public entrypoint; ``WorkflowEngine`` and ``BudgetLedgerService``
run inside the transactions it owns.
"""

from trip_services.budget_ledger import BudgetLedgerService
from trip_services.transaction_coordinator import TransactionCoordinator
from trip_services.workflow_engine import WorkflowEngine

__all__ = [
    "BudgetLedgerService",
    "TransactionCoordinator",
    "WorkflowEngine",
]
