"""
Module: trip_kernel.models.organization
Responsibility: ORM persistence for the organizational hierarchy the
    workflow consults: departments (up to three managers, optional parent),
    projects (budget figures, up to two managers) and organization members
    (home department, role).
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Department and project names are unique.
    - Project budget figures are Decimal; the available budget is NOT
      stored here -- it is derived from the project budget ledger.
    - Department parent links must not cycle (enforced by
      HierarchyRegistry before flush).

Failure modes:
    - IntegrityError on duplicate names or unknown foreign keys.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from trip_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from trip_kernel.domain.hierarchy import DepartmentInfo, ProjectInfo


class DepartmentModel(TrackedBase):
    """Department with primary, second and third managers."""

    __tablename__ = "departments"

    __table_args__ = (
        CheckConstraint(
            "parent_department_id IS NULL OR parent_department_id <> id",
            name="ck_departments_not_own_parent",
        ),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    budget: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    manager_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    second_manager_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    third_manager_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    parent_department_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("departments.id"), nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Department {self.name} {self.id}>"

    def to_dto(self) -> DepartmentInfo:
        from trip_kernel.domain.hierarchy import DepartmentInfo

        return DepartmentInfo(
            department_id=self.id,
            name=self.name,
            budget=self.budget,
            manager_id=self.manager_id,
            second_manager_id=self.second_manager_id,
            third_manager_id=self.third_manager_id,
            parent_department_id=self.parent_department_id,
        )


class ProjectModel(TrackedBase):
    """Project with an original budget and accumulated signed adjustments."""

    __tablename__ = "projects"

    name: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    original_budget: Mapped[Decimal] = mapped_column(nullable=False)
    budget_adjustments: Mapped[Decimal] = mapped_column(
        nullable=False, default=Decimal("0"),
    )
    manager_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    second_manager_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    department_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("departments.id"), nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def effective_budget(self) -> Decimal:
        return self.original_budget + self.budget_adjustments

    def __repr__(self) -> str:
        return f"<Project {self.name} {self.id}>"

    def to_dto(self) -> ProjectInfo:
        from trip_kernel.domain.hierarchy import ProjectInfo

        return ProjectInfo(
            project_id=self.id,
            name=self.name,
            original_budget=self.original_budget,
            budget_adjustments=self.budget_adjustments,
            manager_id=self.manager_id,
            second_manager_id=self.second_manager_id,
            department_id=self.department_id,
        )


class OrgMemberModel(TrackedBase):
    """A user's role and home department as the workflow sees them."""

    __tablename__ = "org_members"

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="Employee")
    home_department_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("departments.id"), nullable=True,
    )

    def __repr__(self) -> str:
        return f"<OrgMember {self.user_id} role={self.role}>"
