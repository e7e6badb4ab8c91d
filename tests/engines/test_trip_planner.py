"""
Tests for the workflow planner.

Covers:
- Project-backed requests (project-manager steps only)
- Department requests, including the tertiary distance rule
- Urgent requests and the bypass history marker
- Home-department fallback and unresolvable hierarchy records
"""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from trip_engines.planner import (
    BYPASS_ENTRY_OFFSET,
    WorkflowPlanner,
    initial_status,
    needs_tertiary_approval,
    plan_workflow,
)
from trip_kernel.domain.hierarchy import DepartmentInfo, ProjectInfo
from trip_kernel.domain.workflow import (
    DEPARTMENT_BYPASS_MARKER,
    SYSTEM_ACTOR_ROLE,
    ActorRole,
    IdentityApprover,
    RequestAttributes,
    RequestStatus,
    RoleApprover,
    StepType,
    TripCategory,
)
from trip_kernel.exceptions import DepartmentNotFoundError, ProjectNotFoundError

SUBMITTED_AT = datetime(2024, 3, 1, 9, 0, tzinfo=UTC)
THRESHOLD = Decimal("50")


class StubHierarchy:
    """In-memory HierarchySnapshot."""

    def __init__(self, departments=(), projects=(), homes=None, threshold=THRESHOLD):
        self.departments = {d.department_id: d for d in departments}
        self.projects = {p.project_id: p for p in projects}
        self.homes = homes or {}
        self.threshold = threshold

    def get_department(self, department_id: UUID):
        return self.departments.get(department_id)

    def get_project(self, project_id: UUID):
        return self.projects.get(project_id)

    def get_user_home_department(self, user_id: UUID):
        return self.homes.get(user_id)

    def get_kilometer_threshold(self) -> Decimal:
        return self.threshold


def _department(managers=3) -> DepartmentInfo:
    ids = [uuid4() for _ in range(managers)] + [None] * (3 - managers)
    return DepartmentInfo(
        department_id=uuid4(),
        name="Engineering",
        manager_id=ids[0],
        second_manager_id=ids[1],
        third_manager_id=ids[2],
    )


def _project(second_manager=True) -> ProjectInfo:
    return ProjectInfo(
        project_id=uuid4(),
        name="Apollo",
        original_budget=Decimal("500"),
        manager_id=uuid4(),
        second_manager_id=uuid4() if second_manager else None,
    )


def _plan(request, project=None, department=None, threshold=THRESHOLD):
    return plan_workflow(
        request=request,
        project=project,
        department=department,
        kilometer_threshold=threshold,
        distance_billed_category=TripCategory.TICKET,
        submitted_at=SUBMITTED_AT,
    )


class TestProjectRequests:
    """Requests carrying a project id."""

    def test_two_project_managers_then_finance(self):
        project = _project()
        request = RequestAttributes(
            requester_id=uuid4(), cost=Decimal("100"), project_id=project.project_id,
        )

        plan = _plan(request, project=project)

        assert [s.step_type for s in plan.steps] == [
            StepType.PROJECT_MANAGER,
            StepType.SECOND_PROJECT_MANAGER,
            StepType.FINANCE_APPROVAL,
        ]
        assert plan.steps[0].approver == IdentityApprover(project.manager_id)
        assert plan.steps[1].approver == IdentityApprover(project.second_manager_id)
        assert all(s.is_required for s in plan.steps)
        assert plan.initial_status == RequestStatus.PENDING_PROJECT_APPROVAL

    def test_missing_second_manager_is_skipped(self):
        project = _project(second_manager=False)
        request = RequestAttributes(
            requester_id=uuid4(), cost=Decimal("100"), project_id=project.project_id,
        )

        plan = _plan(request, project=project)

        assert plan.step_orders == (1, 2)
        assert plan.steps[0].step_type == StepType.PROJECT_MANAGER

    def test_project_request_never_gets_department_steps(self):
        project = _project()
        department = _department()
        request = RequestAttributes(
            requester_id=uuid4(),
            cost=Decimal("100"),
            project_id=project.project_id,
            department_id=department.department_id,
            kilometers=Decimal("500"),
            trip_category=TripCategory.TICKET,
        )

        plan = _plan(request, project=project, department=department)

        assert not any(
            s.step_type
            in (
                StepType.DEPARTMENT_MANAGER,
                StepType.SECOND_DEPARTMENT_MANAGER,
                StepType.TERTIARY_DEPARTMENT_MANAGER,
            )
            for s in plan.steps
        )

    def test_urgent_project_request_stays_pending_project_with_bypass_entry(self):
        project = _project()
        request = RequestAttributes(
            requester_id=uuid4(),
            cost=Decimal("100"),
            project_id=project.project_id,
            urgent=True,
        )

        plan = _plan(request, project=project)

        assert plan.initial_status == RequestStatus.PENDING_PROJECT_APPROVAL
        assert plan.steps[0].step_type == StepType.PROJECT_MANAGER
        assert plan.history[-1].status == DEPARTMENT_BYPASS_MARKER


class TestDepartmentRequests:
    """Requests without a project."""

    def test_long_ticket_trip_gets_all_three_managers(self):
        """An 80 km ticket trip over a 50 km threshold."""
        department = _department()
        request = RequestAttributes(
            requester_id=uuid4(),
            cost=Decimal("100"),
            department_id=department.department_id,
            kilometers=Decimal("80"),
            trip_category=TripCategory.TICKET,
        )

        plan = _plan(request, department=department)

        assert [(s.step_order, s.step_type, s.is_required) for s in plan.steps] == [
            (1, StepType.DEPARTMENT_MANAGER, True),
            (2, StepType.SECOND_DEPARTMENT_MANAGER, False),
            (3, StepType.TERTIARY_DEPARTMENT_MANAGER, True),
            (4, StepType.FINANCE_APPROVAL, True),
        ]
        assert plan.steps[2].approver == IdentityApprover(department.third_manager_id)
        assert plan.initial_status == RequestStatus.PENDING_DEPARTMENT_APPROVAL

    def test_short_trip_has_no_tertiary_step(self):
        department = _department()
        request = RequestAttributes(
            requester_id=uuid4(),
            cost=Decimal("100"),
            department_id=department.department_id,
            kilometers=Decimal("50"),
            trip_category=TripCategory.TICKET,
        )

        plan = _plan(request, department=department)

        assert StepType.TERTIARY_DEPARTMENT_MANAGER not in [s.step_type for s in plan.steps]
        assert plan.step_orders == (1, 2, 3)

    def test_long_trip_outside_distance_billed_category_has_no_tertiary_step(self):
        department = _department()
        request = RequestAttributes(
            requester_id=uuid4(),
            cost=Decimal("100"),
            department_id=department.department_id,
            kilometers=Decimal("800"),
            trip_category=TripCategory.PLANNED,
        )

        plan = _plan(request, department=department)

        assert StepType.TERTIARY_DEPARTMENT_MANAGER not in [s.step_type for s in plan.steps]

    def test_department_without_managers_goes_straight_to_finance(self):
        department = _department(managers=0)
        request = RequestAttributes(
            requester_id=uuid4(), cost=Decimal("10"), department_id=department.department_id,
        )

        plan = _plan(request, department=department)

        assert [s.step_type for s in plan.steps] == [StepType.FINANCE_APPROVAL]
        # The initial status still reflects a department request.
        assert plan.initial_status == RequestStatus.PENDING_DEPARTMENT_APPROVAL

    def test_threshold_is_injected(self):
        request = RequestAttributes(
            requester_id=uuid4(),
            cost=Decimal("1"),
            kilometers=Decimal("80"),
            trip_category=TripCategory.TICKET,
        )

        assert needs_tertiary_approval(request, Decimal("50"), TripCategory.TICKET)
        assert not needs_tertiary_approval(request, Decimal("100"), TripCategory.TICKET)
        assert not needs_tertiary_approval(request, Decimal("50"), TripCategory.URGENT)


class TestUrgentRequests:
    """Urgent requests without a project skip department approval."""

    def test_urgent_without_project_is_finance_only(self):
        department = _department()
        requester = uuid4()
        request = RequestAttributes(
            requester_id=requester,
            cost=Decimal("100"),
            department_id=department.department_id,
            urgent=True,
        )

        plan = _plan(request, department=department)

        assert len(plan.steps) == 1
        assert plan.steps[0].step_type == StepType.FINANCE_APPROVAL
        assert plan.steps[0].approver == RoleApprover(ActorRole.FINANCE)
        assert plan.initial_status == RequestStatus.PENDING_FINANCE_APPROVAL

        first, bypass = plan.history
        assert first.status == RequestStatus.PENDING_FINANCE_APPROVAL.value
        assert first.timestamp == SUBMITTED_AT
        assert bypass.status == DEPARTMENT_BYPASS_MARKER
        assert bypass.actor_role == SYSTEM_ACTOR_ROLE
        assert bypass.timestamp == SUBMITTED_AT + BYPASS_ENTRY_OFFSET
        assert bypass.timestamp > first.timestamp

    def test_urgent_category_counts_as_urgent(self):
        request = RequestAttributes(
            requester_id=uuid4(), cost=Decimal("100"), trip_category=TripCategory.URGENT,
        )

        assert initial_status(request) == RequestStatus.PENDING_FINANCE_APPROVAL

    def test_non_urgent_history_has_single_entry(self):
        department = _department()
        request = RequestAttributes(
            requester_id=uuid4(), cost=Decimal("100"), department_id=department.department_id,
        )

        plan = _plan(request, department=department)

        assert len(plan.history) == 1


class TestWorkflowPlanner:
    """Hierarchy resolution through the snapshot."""

    def test_falls_back_to_home_department(self):
        department = _department()
        requester = uuid4()
        planner = WorkflowPlanner(
            StubHierarchy(departments=[department], homes={requester: department.department_id}),
        )

        plan = planner.plan(
            RequestAttributes(requester_id=requester, cost=Decimal("10")), SUBMITTED_AT,
        )

        assert plan.department_id == department.department_id
        assert plan.steps[0].approver == IdentityApprover(department.manager_id)

    def test_no_home_department_means_finance_only(self):
        planner = WorkflowPlanner(StubHierarchy())

        plan = planner.plan(
            RequestAttributes(requester_id=uuid4(), cost=Decimal("10")), SUBMITTED_AT,
        )

        assert [s.step_type for s in plan.steps] == [StepType.FINANCE_APPROVAL]
        assert plan.department_id is None

    def test_unknown_project_raises(self):
        planner = WorkflowPlanner(StubHierarchy())

        with pytest.raises(ProjectNotFoundError):
            planner.plan(
                RequestAttributes(requester_id=uuid4(), cost=Decimal("10"), project_id=uuid4()),
                SUBMITTED_AT,
            )

    def test_unknown_explicit_department_raises(self):
        planner = WorkflowPlanner(StubHierarchy())

        with pytest.raises(DepartmentNotFoundError):
            planner.plan(
                RequestAttributes(requester_id=uuid4(), cost=Decimal("10"), department_id=uuid4()),
                SUBMITTED_AT,
            )

    def test_threshold_comes_from_snapshot(self):
        department = _department()
        request = RequestAttributes(
            requester_id=uuid4(),
            cost=Decimal("10"),
            department_id=department.department_id,
            kilometers=Decimal("80"),
            trip_category=TripCategory.TICKET,
        )

        strict = WorkflowPlanner(StubHierarchy(departments=[department], threshold=Decimal("50")))
        lenient = WorkflowPlanner(StubHierarchy(departments=[department], threshold=Decimal("100")))

        assert len(strict.plan(request, SUBMITTED_AT).steps) == 4
        assert len(lenient.plan(request, SUBMITTED_AT).steps) == 3


class TestRequestAttributes:

    def test_negative_cost_rejected(self):
        with pytest.raises(ValueError):
            RequestAttributes(requester_id=uuid4(), cost=Decimal("-1"))

    def test_negative_kilometers_rejected(self):
        with pytest.raises(ValueError):
            RequestAttributes(requester_id=uuid4(), cost=Decimal("1"), kilometers=Decimal("-5"))


class TestPlannerTrace:

    def test_each_plan_emits_engine_trace(self, captured_logs):
        request = RequestAttributes(requester_id=uuid4(), cost=Decimal("100"))

        _plan(request)
        _plan(request)

        traces = [r for r in captured_logs() if r["message"] == "TRIP_ENGINE_TRACE"]
        assert len(traces) == 2
        assert traces[0]["engine_name"] == "planner"
        assert traces[0]["input_fingerprint"] == traces[1]["input_fingerprint"]
        assert len(traces[0]["input_fingerprint"]) == 16

    def test_fingerprint_tracks_inputs(self, captured_logs):
        _plan(RequestAttributes(requester_id=uuid4(), cost=Decimal("100")))
        _plan(RequestAttributes(requester_id=uuid4(), cost=Decimal("100")))

        traces = [r for r in captured_logs() if r["message"] == "TRIP_ENGINE_TRACE"]
        assert traces[0]["input_fingerprint"] != traces[1]["input_fingerprint"]
