"""
trip_engines.workflow -- Pure workflow state rules.

Responsibility:
    Select the step an actor's approval applies to, derive a request's
    aggregate status from its step list, resolve the status a rejection
    produces, and decide when an approval triggers a budget allocation.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import trip_kernel/domain/ types and sibling engines.

Invariants enforced:
    - The current step is always the Pending step with the minimum
      step_order.  ``is_required`` never influences advancement.
    - Status is derived through ``derive_status`` only.
    - An allocation is triggered by the first project-manager approval
      only, never by the second project manager.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from trip_engines.authorization import matches_approver
from trip_kernel.domain.workflow import (
    ActorRole,
    RequestStatus,
    StepStatus,
    StepType,
    WorkflowStep,
)


def pending_steps(steps: Iterable[WorkflowStep]) -> list[WorkflowStep]:
    """Pending steps in step_order."""
    return sorted((s for s in steps if s.is_pending), key=lambda s: s.step_order)


def first_pending_step(steps: Iterable[WorkflowStep]) -> WorkflowStep | None:
    """The current step: lowest step_order among Pending steps."""
    pending = pending_steps(steps)
    return pending[0] if pending else None


def status_for_step(step_type: StepType) -> RequestStatus:
    """Pending status shown while *step_type* is the current step."""
    if step_type == StepType.FINANCE_APPROVAL:
        return RequestStatus.PENDING_FINANCE_APPROVAL
    if step_type.is_project_step:
        return RequestStatus.PENDING_PROJECT_APPROVAL
    return RequestStatus.PENDING_DEPARTMENT_APPROVAL


def derive_status(
    steps: Sequence[WorkflowStep],
    resolution: RequestStatus | None = None,
) -> RequestStatus:
    """Aggregate request status.

    A recorded resolution (from a rejection or a payment) wins.  Otherwise
    the status follows the lowest-order Pending step, and a request with
    no Pending steps is Approved.
    """
    if resolution is not None:
        return resolution
    current = first_pending_step(steps)
    if current is None:
        return RequestStatus.APPROVED
    return status_for_step(current.step_type)


def select_step_for_actor(
    steps: Sequence[WorkflowStep],
    actor_id: UUID,
    actor_role: ActorRole,
) -> WorkflowStep | None:
    """The Pending step this actor's approval applies to.

    Admin always acts on the current step.  Everyone else gets the
    lowest-order Pending step assigned to them.
    """
    if actor_role == ActorRole.ADMIN:
        return first_pending_step(steps)
    for step in pending_steps(steps):
        if matches_approver(step, actor_id, actor_role):
            return step
    return None


def apply_approval(
    steps: Sequence[WorkflowStep],
    step_order: int,
    actor_id: UUID,
    approved_at: datetime,
) -> tuple[WorkflowStep, ...]:
    """Return *steps* with the step at *step_order* marked Approved."""
    updated = []
    for step in steps:
        if step.step_order == step_order:
            if not step.is_pending:
                raise ValueError(
                    f"Step {step_order} is {step.status.value}, not Pending"
                )
            step = replace(
                step,
                status=StepStatus.APPROVED,
                approved_by=actor_id,
                approved_at=approved_at,
            )
        updated.append(step)
    return tuple(updated)


def resolve_rejection_status(custom_status: str | None) -> tuple[RequestStatus, bool]:
    """Status a rejection produces, and whether *custom_status* was valid.

    An unknown custom status falls back to Rejected.
    """
    if custom_status is None:
        return RequestStatus.REJECTED, True
    parsed = RequestStatus.parse(custom_status)
    if parsed is None:
        return RequestStatus.REJECTED, False
    return parsed, True


def closes_current_step(status: RequestStatus) -> bool:
    """Whether a rejection to *status* marks the current step Rejected."""
    return status in (RequestStatus.REJECTED, RequestStatus.CANCELLED)


def requires_allocation(
    step: WorkflowStep,
    project_id: UUID | None,
    cost: Decimal,
) -> bool:
    """True when approving *step* must reserve the request's cost."""
    return (
        step.step_type == StepType.PROJECT_MANAGER
        and project_id is not None
        and cost != 0
    )
