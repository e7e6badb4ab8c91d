"""Department, project and member registration through the coordinator."""

from decimal import Decimal
from uuid import uuid4

import pytest

from trip_kernel.domain.ledger import LedgerTransactionType
from trip_kernel.domain.workflow import ActorRole, RequestStatus, StepType
from trip_kernel.exceptions import DepartmentCycleError, DepartmentNotFoundError
from trip_kernel.services.hierarchy_service import SqlHierarchySnapshot


class TestDepartments:

    def test_parent_must_exist(self, org):
        with pytest.raises(DepartmentNotFoundError):
            org.department(parent_department_id=uuid4())

    def test_reparenting_into_own_subtree_is_refused(self, coordinator, org):
        top = org.department()
        middle = org.department(parent_department_id=top.department_id)
        bottom = org.department(parent_department_id=middle.department_id)

        with pytest.raises(DepartmentCycleError) as exc_info:
            coordinator.set_department_parent(
                top.department_id, bottom.department_id, uuid4(),
            )

        assert exc_info.value.department_id == str(top.department_id)

    def test_self_parent_is_a_cycle(self, coordinator, org):
        dept = org.department()

        with pytest.raises(DepartmentCycleError):
            coordinator.set_department_parent(dept.department_id, dept.department_id, uuid4())

    def test_reparent_and_detach(self, coordinator, org):
        first, second = org.department(), org.department()

        moved = coordinator.set_department_parent(
            second.department_id, first.department_id, uuid4(),
        )
        assert moved.parent_department_id == first.department_id

        detached = coordinator.set_department_parent(second.department_id, None, uuid4())
        assert detached.parent_department_id is None


class TestProjects:

    def test_registration_writes_initial_entry(self, coordinator, org):
        project = org.project(Decimal("1200"))

        entries = coordinator.get_project_ledger(project.project_id)

        assert len(entries) == 1
        assert entries[0].transaction_type == LedgerTransactionType.INITIAL
        assert entries[0].running_balance == Decimal("1200")
        assert entries[0].reference_id == project.project_id
        assert coordinator.verify_project_ledger(project.project_id) == Decimal("1200")


class TestMembers:

    def test_reregistering_moves_home_department(self, coordinator, org, session_factory):
        first, second = org.department(), org.department()
        user = org.member(home_department_id=first.department_id)

        coordinator.register_member(
            user, uuid4(), role=ActorRole.MANAGER, home_department_id=second.department_id,
        )

        with session_factory() as session:
            snapshot = SqlHierarchySnapshot(session, Decimal("50"))
            assert snapshot.get_user_home_department(user) == second.department_id

    def test_request_routes_to_home_department(self, coordinator, org, make_attributes):
        manager = uuid4()
        dept = org.department(manager_id=manager)
        requester = org.member(home_department_id=dept.department_id)

        request = coordinator.submit(make_attributes(requester))

        assert request.department_id == dept.department_id
        assert request.status == RequestStatus.PENDING_DEPARTMENT_APPROVAL
        assert request.steps[0].step_type == StepType.DEPARTMENT_MANAGER
        assert request.steps[0].approver_id == manager
