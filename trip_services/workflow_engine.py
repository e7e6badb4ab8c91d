"""
WorkflowEngine -- the trip request state machine.

Responsibility:
    Submits requests (planner output persisted as steps, status and
    history), applies approvals, rejections and payments to persisted
    requests, and triggers the ledger at the transition points: an
    allocation on the first project-manager approval, a deallocation on
    any rejection of an allocated request.

Architecture position:
    Services -- imperative shell.  Pure rules come from
    ``trip_engines.workflow`` and ``trip_engines.authorization``; rows are
    loaded and locked through the kernel models.  One engine instance
    works inside one transaction owned by the TransactionCoordinator.

Invariants enforced:
    - At most one step leaves Pending per action.
    - The acted-on step is the lowest-order Pending step; acting out of
      turn is refused.
    - Status is always written from ``derive_status``.
    - History is append-only: a new list is assigned on every change.
    - Approve/reject on a resolved request is refused.

Failure modes:
    - RequestNotFoundError for an unknown request id.
    - NoPendingStepForActorError when the actor may not act now.
    - RequestAlreadyTerminalError on a resolved request.
    - InvalidCustomStatusError for an unknown reject status (strict mode).
    - RequestNotApprovedError when paying a request that is not Approved.
    - InsufficientBudgetError from the project-manager budget pre-check.
    - Ledger errors propagate and roll back the whole action.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from trip_engines.planner import WorkflowPlanner
from trip_engines.workflow import (
    apply_approval,
    closes_current_step,
    derive_status,
    first_pending_step,
    requires_allocation,
    resolve_rejection_status,
    select_step_for_actor,
)
from trip_kernel.domain.clock import Clock, SystemClock
from trip_kernel.domain.ledger import LedgerEntryRecord, LedgerReferenceType
from trip_kernel.domain.workflow import (
    FINANCE_ROLES,
    TERMINAL_STATUSES,
    ActorRole,
    RequestAttributes,
    RequestStatus,
    StatusHistoryEntry,
    StepStatus,
    WorkflowStep,
    WorkflowTransition,
)
from trip_kernel.exceptions import (
    InsufficientBudgetError,
    InvalidCustomStatusError,
    NoPendingStepForActorError,
    RequestAlreadyTerminalError,
    RequestNotApprovedError,
    RequestNotFoundError,
)
from trip_kernel.logging_config import get_logger
from trip_kernel.models.trip_request import TripRequestModel, WorkflowStepModel
from trip_services.budget_ledger import (
    BudgetLedgerService,
    allocation_description,
    deallocation_description,
)

logger = get_logger("services.workflow_engine")

ACTION_SUBMIT = "submit"
ACTION_APPROVE = "approve"
ACTION_REJECT = "reject"
ACTION_MARK_PAID = "mark_paid"


class StepAuthorizer(Protocol):
    def can_act(self, step: WorkflowStep, actor_id: UUID, actor_role: ActorRole) -> bool: ...


class WorkflowEngine:
    """
    Applies workflow actions to persisted trip requests.

    Contract:
        Every public method mutates exactly one request and returns a
        ``WorkflowTransition`` describing the change.

    Non-goals:
        - Does NOT call ``session.commit()``.
        - Does NOT take in-process locks; the coordinator does.
        - Does NOT write audit records.
    """

    def __init__(
        self,
        session: Session,
        planner: WorkflowPlanner,
        ledger: BudgetLedgerService,
        resolver: StepAuthorizer,
        clock: Clock | None = None,
        *,
        strict_custom_status: bool = False,
        enforce_budget_on_project_approval: bool = True,
    ) -> None:
        self._session = session
        self._planner = planner
        self._ledger = ledger
        self._resolver = resolver
        self._clock = clock or SystemClock()
        self._strict_custom_status = strict_custom_status
        self._enforce_budget = enforce_budget_on_project_approval

    # =========================================================================
    # Loading
    # =========================================================================

    def _load_for_update(self, request_id: UUID) -> TripRequestModel:
        model = self._session.execute(
            select(TripRequestModel)
            .where(TripRequestModel.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise RequestNotFoundError(str(request_id))
        return model

    def _append_history(
        self,
        model: TripRequestModel,
        status: str,
        timestamp: datetime,
        actor_id: UUID,
        actor_role: ActorRole,
        reason: str | None = None,
    ) -> None:
        entry = StatusHistoryEntry(
            status=status,
            timestamp=timestamp,
            actor_id=actor_id,
            actor_role=actor_role.value,
            reason=reason,
        )
        model.status_history = [*model.status_history, entry.to_dict()]

    @staticmethod
    def _step_models_by_order(model: TripRequestModel) -> dict[int, WorkflowStepModel]:
        return {s.step_order: s for s in model.steps}

    # =========================================================================
    # Submit
    # =========================================================================

    def submit(
        self,
        attributes: RequestAttributes,
        submitted_by_role: ActorRole = ActorRole.EMPLOYEE,
    ) -> WorkflowTransition:
        """Plan and persist a new request."""
        submitted_at = self._clock.now()
        plan = self._planner.plan(attributes, submitted_at, submitted_by_role.value)

        model = TripRequestModel(
            requester_id=attributes.requester_id,
            department_id=attributes.department_id or plan.department_id,
            project_id=attributes.project_id,
            cost=attributes.cost,
            kilometers=attributes.kilometers,
            trip_category=attributes.trip_category.value,
            urgent=attributes.is_urgent,
            purpose=attributes.purpose,
            status=plan.initial_status.value,
            resolution=None,
            status_history=[h.to_dict() for h in plan.history],
            submitted_at=submitted_at,
            created_by_id=attributes.requester_id,
        )
        self._session.add(model)
        self._session.flush()

        for step in plan.steps:
            model.steps.append(WorkflowStepModel.from_dto(step, model.id))
        self._session.flush()

        request = model.to_dto()
        logger.info(
            "trip_request_submitted",
            extra={
                "request_id": str(model.id),
                "requester_id": str(attributes.requester_id),
                "status": plan.initial_status.value,
                "step_count": len(plan.steps),
                "urgent": attributes.is_urgent,
            },
        )
        return WorkflowTransition(
            request=request,
            previous_status=plan.initial_status,
            action=ACTION_SUBMIT,
        )

    # =========================================================================
    # Approve
    # =========================================================================

    def _select_step(
        self,
        request_id: UUID,
        steps: Sequence[WorkflowStep],
        actor_id: UUID,
        actor_role: ActorRole,
    ) -> WorkflowStep:
        step = select_step_for_actor(steps, actor_id, actor_role)
        if step is None:
            raise NoPendingStepForActorError(
                str(request_id), str(actor_id), actor_role.value,
            )
        return step

    def approve(
        self, request_id: UUID, actor_id: UUID, actor_role: ActorRole,
    ) -> WorkflowTransition:
        """Approve the actor's step.

        Preconditions:
            - The actor's step is the request's lowest-order Pending step.
            - The request is not resolved.

        Postconditions:
            - That step is Approved with approved_by/approved_at set.
            - Status is re-derived and appended to history.
            - On the first project-manager approval with a project and a
              nonzero cost, one allocation entry is written.
        """
        model = self._load_for_update(request_id)
        request = model.to_dto()
        previous_status = request.status

        step = self._select_step(request_id, request.steps, actor_id, actor_role)

        if previous_status in TERMINAL_STATUSES:
            raise RequestAlreadyTerminalError(str(request_id), previous_status.value)

        current = first_pending_step(request.steps)
        if (
            current is None
            or step.step_order != current.step_order
            or not self._resolver.can_act(step, actor_id, actor_role)
        ):
            logger.warning(
                "workflow_step_out_of_turn",
                extra={
                    "request_id": str(request_id),
                    "step_order": step.step_order,
                    "current_step_order": current.step_order if current else None,
                },
            )
            raise NoPendingStepForActorError(
                str(request_id), str(actor_id), actor_role.value,
            )

        allocate = requires_allocation(step, request.project_id, request.cost)
        if allocate and self._enforce_budget:
            check = self._ledger.check_affordability(
                request.project_id, request.cost, exclude_reference_id=request_id,
            )
            if not check.can_approve:
                logger.warning(
                    "project_approval_over_budget",
                    extra={
                        "request_id": str(request_id),
                        "project_id": str(request.project_id),
                        "cost": str(request.cost),
                        "excess": str(check.excess),
                    },
                )
                raise InsufficientBudgetError(
                    str(request.project_id),
                    str(request_id),
                    request.cost,
                    check.snapshot.available,
                    check.excess,
                )

        now = self._clock.now()
        updated_steps = apply_approval(request.steps, step.step_order, actor_id, now)
        step_model = self._step_models_by_order(model)[step.step_order]
        step_model.status = StepStatus.APPROVED.value
        step_model.approved_by = actor_id
        step_model.approved_at = now

        # A pending resolution left by a reopening reject no longer applies.
        model.resolution = None
        next_status = derive_status(updated_steps)
        model.status = next_status.value
        model.updated_by_id = actor_id
        self._append_history(model, next_status.value, now, actor_id, actor_role)
        self._session.flush()

        ledger_entries: tuple[LedgerEntryRecord, ...] = ()
        if allocate:
            entry = self._ledger.allocate(
                request.project_id,
                request.cost,
                reference_id=request_id,
                reference_type=LedgerReferenceType.TRIP_REQUEST,
                description=allocation_description(request_id, request.purpose),
                actor_id=actor_id,
            )
            ledger_entries = (entry,)
        elif (
            next_status == RequestStatus.APPROVED
            and request.project_id is not None
            and request.cost != 0
            and self._ledger.active_allocation(request_id) is None
        ):
            # Reopened after its reservation was reversed; a request is
            # allocated at most once, so it stays unreserved.
            logger.warning(
                "trip_request_approved_unreserved",
                extra={
                    "request_id": str(request_id),
                    "project_id": str(request.project_id),
                    "cost": str(request.cost),
                },
            )

        logger.info(
            "workflow_step_approved",
            extra={
                "request_id": str(request_id),
                "step_order": step.step_order,
                "step_type": step.step_type.value,
                "previous_status": previous_status.value,
                "status": next_status.value,
                "allocated": bool(ledger_entries),
            },
        )
        return WorkflowTransition(
            request=model.to_dto(),
            previous_status=previous_status,
            action=ACTION_APPROVE,
            step=next(s for s in updated_steps if s.step_order == step.step_order),
            ledger_entries=ledger_entries,
        )

    # =========================================================================
    # Reject
    # =========================================================================

    def _may_reject(
        self,
        requester_id: UUID,
        current: WorkflowStep | None,
        actor_id: UUID,
        actor_role: ActorRole,
        custom_status: str | None,
    ) -> bool:
        if current is not None and self._resolver.can_act(current, actor_id, actor_role):
            return True
        return actor_id == requester_id and custom_status == RequestStatus.CANCELLED.value

    def reject(
        self,
        request_id: UUID,
        actor_id: UUID,
        actor_role: ActorRole,
        custom_status: str | None = None,
        reason: str | None = None,
    ) -> WorkflowTransition:
        """Reject (or cancel) a request.

        The resulting status is *custom_status* when it names a request
        status, otherwise Rejected.  An active allocation is reversed in
        full whichever step the rejection happens at.
        """
        model = self._load_for_update(request_id)
        request = model.to_dto()
        previous_status = request.status

        if previous_status in TERMINAL_STATUSES:
            raise RequestAlreadyTerminalError(str(request_id), previous_status.value)

        current = first_pending_step(request.steps)
        if not self._may_reject(request.requester_id, current, actor_id, actor_role, custom_status):
            raise NoPendingStepForActorError(
                str(request_id), str(actor_id), actor_role.value,
            )

        new_status, valid = resolve_rejection_status(custom_status)
        if not valid:
            if self._strict_custom_status:
                raise InvalidCustomStatusError(str(request_id), str(custom_status))
            logger.warning(
                "invalid_custom_status_fallback",
                extra={
                    "request_id": str(request_id),
                    "custom_status": custom_status,
                    "status": new_status.value,
                },
            )

        now = self._clock.now()
        closed_step: WorkflowStep | None = None
        if current is not None and closes_current_step(new_status):
            step_model = self._step_models_by_order(model)[current.step_order]
            step_model.status = StepStatus.REJECTED.value
            step_model.approved_by = actor_id
            step_model.approved_at = now
            step_model.rejection_reason = reason
            closed_step = step_model.to_dto()

        model.resolution = new_status.value
        status = derive_status(request.steps, new_status)
        model.status = status.value
        model.rejection_reason = reason
        model.updated_by_id = actor_id
        self._append_history(model, status.value, now, actor_id, actor_role, reason)
        self._session.flush()

        ledger_entries: tuple[LedgerEntryRecord, ...] = ()
        allocation = self._ledger.active_allocation(request_id)
        if allocation is not None:
            entry = self._ledger.deallocate(
                allocation.project_id,
                allocation.amount,
                reference_id=request_id,
                reference_type=LedgerReferenceType.TRIP_REQUEST,
                description=deallocation_description(request_id, request.purpose),
                actor_id=actor_id,
            )
            ledger_entries = (entry,)

        logger.info(
            "trip_request_rejected",
            extra={
                "request_id": str(request_id),
                "previous_status": previous_status.value,
                "status": status.value,
                "deallocated": bool(ledger_entries),
            },
        )
        return WorkflowTransition(
            request=model.to_dto(),
            previous_status=previous_status,
            action=ACTION_REJECT,
            step=closed_step,
            ledger_entries=ledger_entries,
        )

    # =========================================================================
    # Mark paid
    # =========================================================================

    def mark_paid(
        self, request_id: UUID, actor_id: UUID, actor_role: ActorRole,
    ) -> WorkflowTransition:
        """Record payment of an Approved request (Finance or Admin only)."""
        model = self._load_for_update(request_id)
        previous_status = RequestStatus(model.status)

        if actor_role not in FINANCE_ROLES:
            raise NoPendingStepForActorError(
                str(request_id), str(actor_id), actor_role.value,
            )
        if previous_status != RequestStatus.APPROVED:
            raise RequestNotApprovedError(str(request_id), previous_status.value)

        now = self._clock.now()
        model.resolution = RequestStatus.PAID.value
        model.status = RequestStatus.PAID.value
        model.paid_at = now
        model.paid_by = actor_id
        model.updated_by_id = actor_id
        self._append_history(model, RequestStatus.PAID.value, now, actor_id, actor_role)
        self._session.flush()

        logger.info(
            "trip_request_paid",
            extra={
                "request_id": str(request_id),
                "project_id": str(model.project_id) if model.project_id else None,
                "cost": str(model.cost),
            },
        )
        return WorkflowTransition(
            request=model.to_dto(),
            previous_status=previous_status,
            action=ACTION_MARK_PAID,
        )
