"""
Project budget ledger domain types (``trip_kernel.domain.ledger``).

Pure value objects for the append-only project budget ledger: transaction
and reference types, the immutable entry record, budget snapshots and
affordability results.

Sign convention: ``initial``, ``allocation`` and ``deallocation`` entries
store a positive amount and the type implies the sign.  ``adjustment``
entries store the signed adjustment.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class LedgerTransactionType(str, Enum):
    """Kind of budget-affecting event."""

    INITIAL = "initial"
    ALLOCATION = "allocation"
    DEALLOCATION = "deallocation"
    ADJUSTMENT = "adjustment"


class LedgerReferenceType(str, Enum):
    """What a ledger entry's ``reference_id`` points at."""

    TRIP_REQUEST = "trip_request"
    ADMIN_REQUEST = "admin_request"
    MANUAL = "manual"


@dataclass(frozen=True)
class LedgerEntryRecord:
    """Immutable ledger entry as read back from persistence."""

    entry_id: UUID
    project_id: UUID
    seq: int
    transaction_type: LedgerTransactionType
    amount: Decimal
    running_balance: Decimal
    description: str
    created_by: UUID
    created_at: datetime
    reference_id: UUID | None = None
    reference_type: LedgerReferenceType | None = None

    @property
    def signed_amount(self) -> Decimal:
        """Effect of this entry on available budget."""
        if self.transaction_type == LedgerTransactionType.ALLOCATION:
            return -self.amount
        return self.amount


@dataclass(frozen=True)
class BudgetSnapshot:
    """Point-in-time budget position of one project."""

    project_id: UUID
    original_budget: Decimal
    effective_budget: Decimal
    allocated: Decimal
    spent: Decimal
    available: Decimal
    utilization_pct: Decimal


@dataclass(frozen=True)
class AffordabilityCheck:
    """Result of checking whether a project can fund a cost."""

    project_id: UUID
    cost: Decimal
    can_approve: bool
    excess: Decimal
    snapshot: BudgetSnapshot
