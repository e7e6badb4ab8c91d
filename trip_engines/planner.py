"""
trip_engines.planner -- Workflow step planning.

Responsibility:
    Given a request's attributes and a snapshot of the organizational
    hierarchy, produce the ordered approval steps, the initial aggregate
    status, and the initial status history.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    ``plan_workflow`` is a pure function of its arguments.
    ``WorkflowPlanner`` resolves project and department records through an
    injected, read-only ``HierarchySnapshot`` and then calls it.

Invariants enforced:
    - step_order values are exactly 1..N with no gaps.
    - Project-backed requests get project-manager steps and never
      department steps.
    - Urgent requests without a project skip department approval; every
      urgent request records a bypass marker timestamped strictly after
      submission.
    - Finance Approval is always the last step and is role-bound.

Failure modes:
    - ProjectNotFoundError if the request names an unknown project.
    - DepartmentNotFoundError if the request names an unknown department.
      (A requester with no home department simply gets no department steps.)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from trip_engines.tracer import traced_engine
from trip_kernel.domain.hierarchy import DepartmentInfo, HierarchySnapshot, ProjectInfo
from trip_kernel.domain.workflow import (
    DEPARTMENT_BYPASS_MARKER,
    SYSTEM_ACTOR_ROLE,
    ActorRole,
    Approver,
    IdentityApprover,
    RequestAttributes,
    RequestStatus,
    RoleApprover,
    StatusHistoryEntry,
    StepType,
    TripCategory,
    WorkflowStep,
)
from trip_kernel.exceptions import DepartmentNotFoundError, ProjectNotFoundError
from trip_kernel.logging_config import get_logger

logger = get_logger("engines.planner")

# Offset of the synthetic bypass entry after the submission entry.
BYPASS_ENTRY_OFFSET = timedelta(seconds=1)


@dataclass(frozen=True)
class WorkflowPlan:
    """Steps, initial status and initial history for a new request."""

    steps: tuple[WorkflowStep, ...]
    initial_status: RequestStatus
    history: tuple[StatusHistoryEntry, ...]
    department_id: UUID | None = None

    @property
    def step_orders(self) -> tuple[int, ...]:
        return tuple(s.step_order for s in self.steps)


def initial_status(request: RequestAttributes) -> RequestStatus:
    """Status a request starts in."""
    if request.project_id is not None:
        return RequestStatus.PENDING_PROJECT_APPROVAL
    if request.is_urgent:
        return RequestStatus.PENDING_FINANCE_APPROVAL
    return RequestStatus.PENDING_DEPARTMENT_APPROVAL


def needs_tertiary_approval(
    request: RequestAttributes,
    kilometer_threshold: Decimal,
    distance_billed_category: TripCategory,
) -> bool:
    """Long distance-billed trips need the department's third manager."""
    return (
        request.kilometers is not None
        and request.kilometers > kilometer_threshold
        and request.trip_category == distance_billed_category
    )


@traced_engine("planner", "1.0", fingerprint_fields=("request", "kilometer_threshold"))
def plan_workflow(
    *,
    request: RequestAttributes,
    project: ProjectInfo | None,
    department: DepartmentInfo | None,
    kilometer_threshold: Decimal,
    distance_billed_category: TripCategory,
    submitted_at: datetime,
    submitted_by_role: str = ActorRole.EMPLOYEE.value,
) -> WorkflowPlan:
    """Plan the approval steps for *request*.

    Args:
        request: Attributes of the submitted request.
        project: The request's project, resolved by the caller (None if the
            request has no project).
        department: The department whose managers approve a project-less,
            non-urgent request (None if it could not be resolved).
        kilometer_threshold: Distance above which the tertiary department
            manager must approve.
        distance_billed_category: Category the distance rule applies to.
        submitted_at: Submission timestamp for the first history entry.
        submitted_by_role: Role recorded on the first history entry.

    Returns:
        WorkflowPlan with steps numbered 1..N.
    """
    planned: list[tuple[StepType, Approver, bool]] = []

    if request.project_id is not None:
        if project is not None:
            if project.manager_id is not None:
                planned.append((
                    StepType.PROJECT_MANAGER, IdentityApprover(project.manager_id), True,
                ))
            if project.second_manager_id is not None:
                planned.append((
                    StepType.SECOND_PROJECT_MANAGER,
                    IdentityApprover(project.second_manager_id),
                    True,
                ))
    elif not request.is_urgent and department is not None:
        if department.manager_id is not None:
            planned.append((
                StepType.DEPARTMENT_MANAGER, IdentityApprover(department.manager_id), True,
            ))
        if department.second_manager_id is not None:
            planned.append((
                StepType.SECOND_DEPARTMENT_MANAGER,
                IdentityApprover(department.second_manager_id),
                False,
            ))
        if (
            department.third_manager_id is not None
            and needs_tertiary_approval(request, kilometer_threshold, distance_billed_category)
        ):
            planned.append((
                StepType.TERTIARY_DEPARTMENT_MANAGER,
                IdentityApprover(department.third_manager_id),
                True,
            ))

    planned.append((StepType.FINANCE_APPROVAL, RoleApprover(ActorRole.FINANCE), True))

    steps = tuple(
        WorkflowStep(
            step_order=order,
            step_type=step_type,
            approver=approver,
            is_required=required,
        )
        for order, (step_type, approver, required) in enumerate(planned, start=1)
    )

    status = initial_status(request)
    history = [
        StatusHistoryEntry(
            status=status.value,
            timestamp=submitted_at,
            actor_id=request.requester_id,
            actor_role=submitted_by_role,
        ),
    ]
    if request.is_urgent:
        history.append(
            StatusHistoryEntry(
                status=DEPARTMENT_BYPASS_MARKER,
                timestamp=submitted_at + BYPASS_ENTRY_OFFSET,
                actor_id=request.requester_id,
                actor_role=SYSTEM_ACTOR_ROLE,
            )
        )

    return WorkflowPlan(
        steps=steps,
        initial_status=status,
        history=tuple(history),
        department_id=department.department_id if department is not None else None,
    )


class WorkflowPlanner:
    """Resolves hierarchy records for a request and plans its workflow.

    Contract:
        Reads only from the injected ``HierarchySnapshot``.  Holds no
        mutable state; one instance may serve many requests.
    """

    def __init__(
        self,
        hierarchy: HierarchySnapshot,
        distance_billed_category: TripCategory = TripCategory.TICKET,
    ) -> None:
        self._hierarchy = hierarchy
        self._distance_billed_category = distance_billed_category

    def resolve_project(self, request: RequestAttributes) -> ProjectInfo | None:
        if request.project_id is None:
            return None
        project = self._hierarchy.get_project(request.project_id)
        if project is None:
            raise ProjectNotFoundError(str(request.project_id))
        return project

    def resolve_department(self, request: RequestAttributes) -> DepartmentInfo | None:
        """Explicit department, else the requester's home department."""
        if request.department_id is not None:
            department = self._hierarchy.get_department(request.department_id)
            if department is None:
                raise DepartmentNotFoundError(str(request.department_id))
            return department

        home_id = self._hierarchy.get_user_home_department(request.requester_id)
        if home_id is None:
            logger.info(
                "home_department_unresolved",
                extra={"requester_id": str(request.requester_id)},
            )
            return None
        return self._hierarchy.get_department(home_id)

    def plan(
        self,
        request: RequestAttributes,
        submitted_at: datetime,
        submitted_by_role: str = ActorRole.EMPLOYEE.value,
    ) -> WorkflowPlan:
        project = self.resolve_project(request)
        department = None
        if request.project_id is None:
            department = self.resolve_department(request)
        elif request.department_id is not None:
            department = self._hierarchy.get_department(request.department_id)

        return plan_workflow(
            request=request,
            project=project,
            department=department,
            kilometer_threshold=self._hierarchy.get_kilometer_threshold(),
            distance_billed_category=self._distance_billed_category,
            submitted_at=submitted_at,
            submitted_by_role=submitted_by_role,
        )
