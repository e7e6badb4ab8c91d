"""
BudgetLedgerService -- append-only project budget ledger.

Responsibility:
    Writes ``initial``, ``allocation``, ``deallocation`` and ``adjustment``
    entries, each stamped with the available budget immediately after it,
    and answers budget questions (available, spent, snapshot,
    affordability, replay verification) from those entries.

Architecture position:
    Services -- imperative shell.  Reads and locks through the kernel
    (models, selectors, SequenceService) and delegates every calculation
    to ``trip_engines.budget``.  Knows nothing about workflows.

Invariants enforced:
    - The project row is locked (``SELECT ... FOR UPDATE``) before the
      ledger tail is read for any write, so running balances never go
      stale under concurrent writers.
    - available = effective budget - sum(allocation) + sum(deallocation),
      recomputed from entries on every call; never a stored counter.
    - At most one allocation and one deallocation per reference id
      (service check plus partial UNIQUE index).
    - ``allocate`` never refuses for lack of funds; callers run
      ``check_affordability`` first.

Failure modes:
    - ProjectNotFoundError for an unknown project id.
    - DuplicateAllocationError on a second allocation or deallocation for
      one reference.
    - LedgerReplayMismatchError from ``verify``.
    - Persistence errors propagate; the caller's transaction rolls back.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from trip_engines.budget import (
    ZERO,
    assess_affordability,
    available_budget,
    replay_balance,
    utilization_pct,
)
from trip_kernel.domain.clock import Clock, SystemClock
from trip_kernel.domain.ledger import (
    AffordabilityCheck,
    BudgetSnapshot,
    LedgerEntryRecord,
    LedgerReferenceType,
    LedgerTransactionType,
)
from trip_kernel.exceptions import (
    DuplicateAllocationError,
    LedgerReplayMismatchError,
    ProjectNotFoundError,
)
from trip_kernel.logging_config import get_logger
from trip_kernel.models.ledger import BudgetLedgerEntryModel
from trip_kernel.models.organization import ProjectModel
from trip_kernel.selectors.ledger_selector import LedgerSelector
from trip_kernel.services.sequence_service import SequenceService

logger = get_logger("services.budget_ledger")


def allocation_description(request_id: UUID, purpose: str) -> str:
    return f"Budget allocation for trip request #{request_id} - {purpose}"


def deallocation_description(request_id: UUID, purpose: str) -> str:
    return f"Budget deallocation for rejected trip request #{request_id} - {purpose}"


class BudgetLedgerService:
    """
    Writes and reads the project budget ledger.

    Contract:
        Every write method locks the project row, computes the running
        balance from the current ledger, appends exactly one entry and
        returns it as a frozen ``LedgerEntryRecord``.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT enforce affordability on allocation.
    """

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._selector = LedgerSelector(session)
        self._sequence = SequenceService(session)

    # =========================================================================
    # Project access
    # =========================================================================

    def _lock_project(self, project_id: UUID) -> ProjectModel:
        project = self._session.execute(
            select(ProjectModel)
            .where(ProjectModel.id == project_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if project is None:
            raise ProjectNotFoundError(str(project_id))
        return project

    def _get_project(self, project_id: UUID) -> ProjectModel:
        project = self._session.get(ProjectModel, project_id)
        if project is None:
            raise ProjectNotFoundError(str(project_id))
        return project

    def _available_for(self, project: ProjectModel) -> Decimal:
        totals = self._selector.totals(project.id)
        return available_budget(
            project.effective_budget, totals.allocated, totals.deallocated,
        )

    # =========================================================================
    # Writes
    # =========================================================================

    def _append(
        self,
        project: ProjectModel,
        transaction_type: LedgerTransactionType,
        amount: Decimal,
        running_balance: Decimal,
        description: str,
        actor_id: UUID,
        reference_id: UUID | None = None,
        reference_type: LedgerReferenceType | None = None,
    ) -> LedgerEntryRecord:
        entry = BudgetLedgerEntryModel(
            project_id=project.id,
            seq=self._sequence.next_value(SequenceService.BUDGET_LEDGER),
            transaction_type=transaction_type.value,
            amount=amount,
            running_balance=running_balance,
            reference_id=reference_id,
            reference_type=reference_type.value if reference_type else None,
            description=description,
            created_by=actor_id,
            created_at=self._clock.now(),
        )
        try:
            with self._session.begin_nested():
                self._session.add(entry)
                self._session.flush()
        except IntegrityError as exc:
            if reference_id is not None and transaction_type in (
                LedgerTransactionType.ALLOCATION,
                LedgerTransactionType.DEALLOCATION,
            ):
                raise DuplicateAllocationError(
                    str(reference_id), transaction_type.value,
                ) from exc
            raise
        return entry.to_dto()

    def _reject_duplicate(
        self, reference_id: UUID, transaction_type: LedgerTransactionType,
    ) -> None:
        existing = self._selector.entries_for_reference(reference_id)
        if any(e.transaction_type == transaction_type for e in existing):
            raise DuplicateAllocationError(str(reference_id), transaction_type.value)

    def record_initial(self, project_id: UUID, actor_id: UUID) -> LedgerEntryRecord:
        """Seed a new project's ledger with its original budget."""
        project = self._lock_project(project_id)
        record = self._append(
            project,
            LedgerTransactionType.INITIAL,
            amount=project.original_budget,
            running_balance=self._available_for(project),
            description=f"Initial budget for project {project.name}",
            actor_id=actor_id,
            reference_id=project.id,
            reference_type=LedgerReferenceType.MANUAL,
        )
        logger.info(
            "budget_initialized",
            extra={
                "project_id": str(project_id),
                "amount": str(record.amount),
                "seq": record.seq,
            },
        )
        return record

    def allocate(
        self,
        project_id: UUID,
        amount: Decimal,
        reference_id: UUID,
        reference_type: LedgerReferenceType,
        description: str,
        actor_id: UUID,
    ) -> LedgerEntryRecord:
        """Reserve *amount* against the project.

        Postconditions:
            - running_balance = available before the entry - amount.
        """
        if amount < 0:
            raise ValueError(f"Allocation amount cannot be negative: {amount}")
        project = self._lock_project(project_id)
        self._reject_duplicate(reference_id, LedgerTransactionType.ALLOCATION)

        available = self._available_for(project)
        record = self._append(
            project,
            LedgerTransactionType.ALLOCATION,
            amount=amount,
            running_balance=available - amount,
            description=description,
            actor_id=actor_id,
            reference_id=reference_id,
            reference_type=reference_type,
        )
        logger.info(
            "budget_allocated",
            extra={
                "project_id": str(project_id),
                "reference_id": str(reference_id),
                "amount": str(amount),
                "running_balance": str(record.running_balance),
                "seq": record.seq,
            },
        )
        return record

    def deallocate(
        self,
        project_id: UUID,
        amount: Decimal,
        reference_id: UUID,
        reference_type: LedgerReferenceType,
        description: str,
        actor_id: UUID,
    ) -> LedgerEntryRecord:
        """Release *amount* back to the project (reversal of an allocation)."""
        if amount < 0:
            raise ValueError(f"Deallocation amount cannot be negative: {amount}")
        project = self._lock_project(project_id)
        self._reject_duplicate(reference_id, LedgerTransactionType.DEALLOCATION)

        available = self._available_for(project)
        record = self._append(
            project,
            LedgerTransactionType.DEALLOCATION,
            amount=amount,
            running_balance=available + amount,
            description=description,
            actor_id=actor_id,
            reference_id=reference_id,
            reference_type=reference_type,
        )
        logger.info(
            "budget_deallocated",
            extra={
                "project_id": str(project_id),
                "reference_id": str(reference_id),
                "amount": str(amount),
                "running_balance": str(record.running_balance),
                "seq": record.seq,
            },
        )
        return record

    def adjust(
        self,
        project_id: UUID,
        amount: Decimal,
        description: str,
        actor_id: UUID,
        reference_id: UUID | None = None,
        reference_type: LedgerReferenceType = LedgerReferenceType.MANUAL,
    ) -> LedgerEntryRecord:
        """Apply a signed budget adjustment and record it.

        ``Project.budget_adjustments`` is the one budget figure mutated in
        place; the entry written alongside it keeps the ledger replayable.
        """
        project = self._lock_project(project_id)
        project.budget_adjustments = project.budget_adjustments + amount
        project.updated_by_id = actor_id
        self._session.flush()

        record = self._append(
            project,
            LedgerTransactionType.ADJUSTMENT,
            amount=amount,
            running_balance=self._available_for(project),
            description=description,
            actor_id=actor_id,
            reference_id=reference_id,
            reference_type=reference_type,
        )
        logger.info(
            "budget_adjusted",
            extra={
                "project_id": str(project_id),
                "amount": str(amount),
                "budget_adjustments": str(project.budget_adjustments),
                "running_balance": str(record.running_balance),
                "seq": record.seq,
            },
        )
        return record

    # =========================================================================
    # Reads
    # =========================================================================

    def available(self, project_id: UUID) -> Decimal:
        return self._available_for(self._get_project(project_id))

    def spent_total(self, project_id: UUID) -> Decimal:
        """Cost of the project's Paid requests; independent of the ledger."""
        self._get_project(project_id)
        return self._selector.spent_total(project_id)

    def entries(self, project_id: UUID) -> list[LedgerEntryRecord]:
        self._get_project(project_id)
        return self._selector.entries(project_id)

    def active_allocation(self, reference_id: UUID) -> LedgerEntryRecord | None:
        return self._selector.active_allocation(reference_id)

    def snapshot(self, project_id: UUID) -> BudgetSnapshot:
        project = self._get_project(project_id)
        totals = self._selector.totals(project_id)
        spent = self._selector.spent_total(project_id)
        effective = project.effective_budget
        return BudgetSnapshot(
            project_id=project_id,
            original_budget=project.original_budget,
            effective_budget=effective,
            allocated=totals.net_allocated,
            spent=spent,
            available=available_budget(effective, totals.allocated, totals.deallocated),
            utilization_pct=utilization_pct(spent, effective),
        )

    def check_affordability(
        self,
        project_id: UUID,
        cost: Decimal,
        exclude_reference_id: UUID | None = None,
    ) -> AffordabilityCheck:
        """Whether the project can fund *cost*.

        When *exclude_reference_id* holds an active allocation on this
        project, its amount is added back before comparing, so a request
        can be re-validated without counting its own reservation.
        """
        snapshot = self.snapshot(project_id)
        add_back = ZERO
        if exclude_reference_id is not None:
            allocation = self._selector.active_allocation(exclude_reference_id)
            if allocation is not None and allocation.project_id == project_id:
                add_back = allocation.amount

        assessment = assess_affordability(snapshot.available, cost, add_back)
        logger.debug(
            "affordability_checked",
            extra={
                "project_id": str(project_id),
                "cost": str(cost),
                "can_approve": assessment.can_approve,
                "excess": str(assessment.excess),
            },
        )
        return AffordabilityCheck(
            project_id=project_id,
            cost=cost,
            can_approve=assessment.can_approve,
            excess=assessment.excess,
            snapshot=snapshot,
        )

    def verify(self, project_id: UUID) -> Decimal:
        """Replay the ledger and confirm it agrees with the balance formula.

        Returns:
            The verified available budget.

        Raises:
            LedgerReplayMismatchError: if replay, latest running balance
                and formula disagree.
        """
        project = self._get_project(project_id)
        entries = self._selector.entries(project_id)
        replayed = replay_balance(entries)
        running = entries[-1].running_balance if entries else ZERO
        formula = self._available_for(project)
        if not (replayed == running == formula):
            logger.error(
                "ledger_replay_mismatch",
                extra={
                    "project_id": str(project_id),
                    "replayed": str(replayed),
                    "running_balance": str(running),
                    "formula": str(formula),
                },
            )
            raise LedgerReplayMismatchError(str(project_id), replayed, running, formula)
        return formula
