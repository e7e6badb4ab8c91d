"""
Hierarchy services -- organizational data the workflow consults.

Responsibility:
    ``SqlHierarchySnapshot`` implements the read-only ``HierarchySnapshot``
    protocol over the departments / projects / org_members tables.
    ``HierarchyRegistry`` is the minimal write side needed to stand the
    hierarchy up: departments (with cycle-free parent links), projects and
    member home departments.  Full user/department/project administration
    lives outside the kernel.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - Department parent links never form a cycle.
    - The kilometer threshold is injected configuration, never a constant.

Failure modes:
    - DepartmentNotFoundError for an unknown parent or re-parented
      department.
    - DepartmentCycleError when a parent link would create a cycle.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from trip_kernel.domain.hierarchy import DepartmentInfo, ProjectInfo
from trip_kernel.domain.workflow import ActorRole
from trip_kernel.exceptions import DepartmentCycleError, DepartmentNotFoundError
from trip_kernel.logging_config import get_logger
from trip_kernel.models.organization import DepartmentModel, OrgMemberModel, ProjectModel

logger = get_logger("services.hierarchy")


class SqlHierarchySnapshot:
    """HierarchySnapshot backed by the current session.

    Lookups are cached for the lifetime of the instance, which the
    coordinator scopes to one transaction.
    """

    def __init__(self, session: Session, kilometer_threshold: Decimal) -> None:
        self._session = session
        self._kilometer_threshold = kilometer_threshold
        self._departments: dict[UUID, DepartmentInfo | None] = {}
        self._projects: dict[UUID, ProjectInfo | None] = {}

    def get_department(self, department_id: UUID) -> DepartmentInfo | None:
        if department_id not in self._departments:
            model = self._session.get(DepartmentModel, department_id)
            self._departments[department_id] = model.to_dto() if model else None
        return self._departments[department_id]

    def get_project(self, project_id: UUID) -> ProjectInfo | None:
        if project_id not in self._projects:
            model = self._session.get(ProjectModel, project_id)
            self._projects[project_id] = model.to_dto() if model else None
        return self._projects[project_id]

    def get_user_home_department(self, user_id: UUID) -> UUID | None:
        return self._session.execute(
            select(OrgMemberModel.home_department_id)
            .where(OrgMemberModel.user_id == user_id)
        ).scalar_one_or_none()

    def get_kilometer_threshold(self) -> Decimal:
        return self._kilometer_threshold


class HierarchyRegistry:
    """Registers departments, projects and members.  Never commits."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def create_department(
        self,
        name: str,
        actor_id: UUID,
        *,
        budget: Decimal = Decimal("0"),
        manager_id: UUID | None = None,
        second_manager_id: UUID | None = None,
        third_manager_id: UUID | None = None,
        parent_department_id: UUID | None = None,
    ) -> DepartmentInfo:
        if parent_department_id is not None and self._session.get(
            DepartmentModel, parent_department_id,
        ) is None:
            raise DepartmentNotFoundError(str(parent_department_id))

        model = DepartmentModel(
            name=name,
            budget=budget,
            manager_id=manager_id,
            second_manager_id=second_manager_id,
            third_manager_id=third_manager_id,
            parent_department_id=parent_department_id,
            created_by_id=actor_id,
        )
        self._session.add(model)
        self._session.flush()
        logger.info(
            "department_created",
            extra={"department_id": str(model.id), "department_name": name},
        )
        return model.to_dto()

    def set_department_parent(
        self,
        department_id: UUID,
        parent_department_id: UUID | None,
        actor_id: UUID,
    ) -> DepartmentInfo:
        model = self._session.get(DepartmentModel, department_id)
        if model is None:
            raise DepartmentNotFoundError(str(department_id))
        if parent_department_id is not None:
            self._check_no_cycle(department_id, parent_department_id)
        model.parent_department_id = parent_department_id
        model.updated_by_id = actor_id
        self._session.flush()
        return model.to_dto()

    def _check_no_cycle(self, department_id: UUID, parent_department_id: UUID) -> None:
        """Walk up from the proposed parent; reaching *department_id* is a cycle."""
        seen: set[UUID] = set()
        current: UUID | None = parent_department_id
        while current is not None:
            if current == department_id or current in seen:
                raise DepartmentCycleError(str(department_id), str(parent_department_id))
            seen.add(current)
            parent = self._session.get(DepartmentModel, current)
            if parent is None:
                raise DepartmentNotFoundError(str(current))
            current = parent.parent_department_id

    def create_project(
        self,
        name: str,
        original_budget: Decimal,
        actor_id: UUID,
        *,
        manager_id: UUID | None = None,
        second_manager_id: UUID | None = None,
        department_id: UUID | None = None,
    ) -> ProjectInfo:
        """Create a project row.  The caller records its initial ledger entry."""
        model = ProjectModel(
            name=name,
            original_budget=original_budget,
            budget_adjustments=Decimal("0"),
            manager_id=manager_id,
            second_manager_id=second_manager_id,
            department_id=department_id,
            created_by_id=actor_id,
        )
        self._session.add(model)
        self._session.flush()
        logger.info(
            "project_created",
            extra={
                "project_id": str(model.id),
                "project_name": name,
                "original_budget": str(original_budget),
            },
        )
        return model.to_dto()

    def register_member(
        self,
        user_id: UUID,
        actor_id: UUID,
        *,
        role: ActorRole = ActorRole.EMPLOYEE,
        home_department_id: UUID | None = None,
        full_name: str = "",
    ) -> None:
        """Create or update a member's role and home department."""
        model = self._session.execute(
            select(OrgMemberModel).where(OrgMemberModel.user_id == user_id)
        ).scalar_one_or_none()
        if model is None:
            model = OrgMemberModel(user_id=user_id, created_by_id=actor_id)
            self._session.add(model)
        else:
            model.updated_by_id = actor_id
        model.role = role.value
        model.home_department_id = home_department_id
        model.full_name = full_name
        self._session.flush()
