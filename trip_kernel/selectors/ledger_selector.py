"""
Module: trip_kernel.selectors.ledger_selector
Responsibility: Read-only queries over the project budget ledger and the
    paid requests that feed utilization reporting.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - No stored balances are trusted: totals are aggregated from ledger
      entries on every call.
    - Entries are returned in seq order.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from trip_kernel.domain.ledger import LedgerEntryRecord, LedgerTransactionType
from trip_kernel.domain.workflow import RequestStatus
from trip_kernel.models.ledger import BudgetLedgerEntryModel
from trip_kernel.models.trip_request import TripRequestModel
from trip_kernel.selectors.base import BaseSelector

ZERO = Decimal("0")


@dataclass(frozen=True)
class LedgerTotals:
    """Per-type sums for one project."""

    initial: Decimal = ZERO
    allocated: Decimal = ZERO
    deallocated: Decimal = ZERO
    adjusted: Decimal = ZERO

    @property
    def net_allocated(self) -> Decimal:
        return self.allocated - self.deallocated


class LedgerSelector(BaseSelector[BudgetLedgerEntryModel]):
    """Read-only access to ledger entries and their aggregates."""

    def entries(self, project_id: UUID) -> list[LedgerEntryRecord]:
        rows = self.session.execute(
            select(BudgetLedgerEntryModel)
            .where(BudgetLedgerEntryModel.project_id == project_id)
            .order_by(BudgetLedgerEntryModel.seq)
        ).scalars().all()
        return [r.to_dto() for r in rows]

    def latest_entry(self, project_id: UUID) -> LedgerEntryRecord | None:
        row = self.session.execute(
            select(BudgetLedgerEntryModel)
            .where(BudgetLedgerEntryModel.project_id == project_id)
            .order_by(BudgetLedgerEntryModel.seq.desc())
            .limit(1)
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def totals(self, project_id: UUID) -> LedgerTotals:
        rows = self.session.execute(
            select(
                BudgetLedgerEntryModel.transaction_type,
                func.coalesce(func.sum(BudgetLedgerEntryModel.amount), 0),
            )
            .where(BudgetLedgerEntryModel.project_id == project_id)
            .group_by(BudgetLedgerEntryModel.transaction_type)
        ).all()
        sums = {t: Decimal(str(total)) for t, total in rows}
        return LedgerTotals(
            initial=sums.get(LedgerTransactionType.INITIAL.value, ZERO),
            allocated=sums.get(LedgerTransactionType.ALLOCATION.value, ZERO),
            deallocated=sums.get(LedgerTransactionType.DEALLOCATION.value, ZERO),
            adjusted=sums.get(LedgerTransactionType.ADJUSTMENT.value, ZERO),
        )

    def entries_for_reference(self, reference_id: UUID) -> list[LedgerEntryRecord]:
        rows = self.session.execute(
            select(BudgetLedgerEntryModel)
            .where(BudgetLedgerEntryModel.reference_id == reference_id)
            .order_by(BudgetLedgerEntryModel.seq)
        ).scalars().all()
        return [r.to_dto() for r in rows]

    def active_allocation(self, reference_id: UUID) -> LedgerEntryRecord | None:
        """The reference's allocation entry, if it has not been deallocated."""
        entries = self.entries_for_reference(reference_id)
        allocation = next(
            (e for e in entries if e.transaction_type == LedgerTransactionType.ALLOCATION),
            None,
        )
        if allocation is None:
            return None
        if any(e.transaction_type == LedgerTransactionType.DEALLOCATION for e in entries):
            return None
        return allocation

    def spent_total(self, project_id: UUID) -> Decimal:
        """Sum of cost over the project's Paid requests."""
        total = self.session.execute(
            select(func.coalesce(func.sum(TripRequestModel.cost), 0))
            .where(
                TripRequestModel.project_id == project_id,
                TripRequestModel.status == RequestStatus.PAID.value,
            )
        ).scalar_one()
        return Decimal(str(total))
