"""
Module: trip_kernel.selectors.visibility_selector
Responsibility: Derive, for one actor, which requests they can see and
    which are awaiting their action (the approval inbox).
Architecture position: Kernel > Selectors.  Read-only.  The authorization
    policy is injected, so the selector carries no approval rules itself.

Invariants enforced:
    - Visibility is not actionability.  Being the approver on any step
      makes a request visible; it is approvable only when its
      lowest-order Pending step passes the injected ``can_act`` check.
    - Resolved requests are never approvable.

Visibility rules:
    Admin and Finance see every request.  Everyone else sees the union of
    (a) requests they submitted, (b) requests where they are the approver
    on any step, regardless of step status, and (c) requests under
    departments or projects they manage.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from sqlalchemy import or_, select

from trip_kernel.domain.workflow import (
    PENDING_STATUSES,
    ActorRole,
    TripRequest,
    WorkflowStep,
)
from trip_kernel.models.organization import DepartmentModel, ProjectModel
from trip_kernel.models.trip_request import TripRequestModel, WorkflowStepModel
from trip_kernel.selectors.base import BaseSelector

ROLES_SEEING_ALL: frozenset[ActorRole] = frozenset({ActorRole.ADMIN, ActorRole.FINANCE})


class StepAuthorizer(Protocol):
    def can_act(self, step: WorkflowStep, actor_id: UUID, actor_role: ActorRole) -> bool: ...


class VisibilitySelector(BaseSelector[TripRequestModel]):
    """Visible and approvable request sets for an actor."""

    def __init__(self, session, authorizer: StepAuthorizer):
        super().__init__(session)
        self._authorizer = authorizer

    def _visibility_filter(self, actor_id: UUID):
        managed_departments = select(DepartmentModel.id).where(
            or_(
                DepartmentModel.manager_id == actor_id,
                DepartmentModel.second_manager_id == actor_id,
                DepartmentModel.third_manager_id == actor_id,
            )
        )
        managed_projects = select(ProjectModel.id).where(
            or_(
                ProjectModel.manager_id == actor_id,
                ProjectModel.second_manager_id == actor_id,
            )
        )
        approver_on = select(WorkflowStepModel.request_id).where(
            WorkflowStepModel.approver_id == actor_id,
        )
        return or_(
            TripRequestModel.requester_id == actor_id,
            TripRequestModel.id.in_(approver_on),
            TripRequestModel.department_id.in_(managed_departments),
            TripRequestModel.project_id.in_(managed_projects),
        )

    def visible_requests(self, actor_id: UUID, actor_role: ActorRole) -> list[TripRequest]:
        stmt = select(TripRequestModel).order_by(
            TripRequestModel.submitted_at, TripRequestModel.id,
        )
        if actor_role not in ROLES_SEEING_ALL:
            stmt = stmt.where(self._visibility_filter(actor_id))
        return [m.to_dto() for m in self.session.execute(stmt).scalars().all()]

    def visible_request_ids(self, actor_id: UUID, actor_role: ActorRole) -> set[UUID]:
        return {r.request_id for r in self.visible_requests(actor_id, actor_role)}

    def approvable_requests(
        self, actor_id: UUID, actor_role: ActorRole,
    ) -> list[TripRequest]:
        """Requests whose current step this actor may act on now."""
        stmt = (
            select(TripRequestModel)
            .where(TripRequestModel.status.in_([s.value for s in PENDING_STATUSES]))
            .order_by(TripRequestModel.submitted_at, TripRequestModel.id)
        )
        if actor_role not in ROLES_SEEING_ALL:
            stmt = stmt.where(self._visibility_filter(actor_id))

        approvable: list[TripRequest] = []
        for model in self.session.execute(stmt).scalars().all():
            request = model.to_dto()
            current = request.current_step
            if current is not None and self._authorizer.can_act(current, actor_id, actor_role):
                approvable.append(request)
        return approvable
