"""
Organizational hierarchy snapshot (``trip_kernel.domain.hierarchy``).

Read-only view of departments, projects and users that the workflow
planner consults.  The storage behind it is an external collaborator; the
kernel depends only on the ``HierarchySnapshot`` protocol.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol
from uuid import UUID


@dataclass(frozen=True)
class DepartmentInfo:
    """Department with up to three managers."""

    department_id: UUID
    name: str
    budget: Decimal = Decimal("0")
    manager_id: UUID | None = None
    second_manager_id: UUID | None = None
    third_manager_id: UUID | None = None
    parent_department_id: UUID | None = None

    @property
    def manager_ids(self) -> tuple[UUID, ...]:
        return tuple(
            m for m in (self.manager_id, self.second_manager_id, self.third_manager_id)
            if m is not None
        )


@dataclass(frozen=True)
class ProjectInfo:
    """Project with its budget figures and up to two managers."""

    project_id: UUID
    name: str
    original_budget: Decimal
    budget_adjustments: Decimal = Decimal("0")
    manager_id: UUID | None = None
    second_manager_id: UUID | None = None
    department_id: UUID | None = None

    @property
    def effective_budget(self) -> Decimal:
        return self.original_budget + self.budget_adjustments

    @property
    def manager_ids(self) -> tuple[UUID, ...]:
        return tuple(m for m in (self.manager_id, self.second_manager_id) if m is not None)


class HierarchySnapshot(Protocol):
    """Read-only hierarchy provider.  Implementations may cache."""

    def get_department(self, department_id: UUID) -> DepartmentInfo | None: ...

    def get_project(self, project_id: UUID) -> ProjectInfo | None: ...

    def get_user_home_department(self, user_id: UUID) -> UUID | None: ...

    def get_kilometer_threshold(self) -> Decimal: ...
