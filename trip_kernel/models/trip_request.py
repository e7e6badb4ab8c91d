"""
Module: trip_kernel.models.trip_request
Responsibility: ORM persistence for trip requests and their workflow steps.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Exactly one step per (request, step_order): UNIQUE constraint.
    - step_order >= 1.
    - A step is bound to exactly one of an approver identity or an
      approver role (CHECK constraint), mirroring the Approver union.
    - Status and step-status values are limited to their enumerations.
    - status_history is append-only; the workflow engine always assigns a
      new list (old list + new entries), never edits an entry.

Failure modes:
    - IntegrityError on duplicate (request_id, step_order).
    - IntegrityError on an invalid status / step type value.

Audit relevance:
    The status history is the request-local audit trail; every status
    change, including the synthetic urgent-trip bypass, is recorded there.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from trip_kernel.db.base import Base, TrackedBase, UUIDString
from trip_kernel.domain.workflow import RequestStatus, StepStatus, StepType

if TYPE_CHECKING:
    from trip_kernel.domain.workflow import TripRequest, WorkflowStep


def _in_clause(column: str, values: list[str]) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


class TripRequestModel(TrackedBase):
    """Persistent trip request.

    Contract:
        Mutated only by the workflow engine once created.  ``status`` is
        always written from ``derive_status(steps, resolution)``.
    """

    __tablename__ = "trip_requests"

    __table_args__ = (
        CheckConstraint(
            _in_clause("status", [s.value for s in RequestStatus]),
            name="ck_trip_requests_valid_status",
        ),
        CheckConstraint("cost >= 0", name="ck_trip_requests_cost_non_negative"),
        Index("ix_trip_requests_requester", "requester_id"),
        Index("ix_trip_requests_project_status", "project_id", "status"),
        Index("ix_trip_requests_department", "department_id"),
    )

    requester_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    department_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("departments.id"), nullable=True,
    )
    project_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("projects.id"), nullable=True,
    )
    cost: Mapped[Decimal] = mapped_column(nullable=False)
    kilometers: Mapped[Decimal | None] = mapped_column(nullable=True)
    trip_category: Mapped[str] = mapped_column(String(20), nullable=False)
    urgent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    purpose: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    # Outcome recorded by a rejection or a payment; None while the steps decide.
    resolution: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status_history: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list,
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    steps: Mapped[list[WorkflowStepModel]] = relationship(
        "WorkflowStepModel",
        back_populates="request",
        order_by="WorkflowStepModel.step_order",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<TripRequest {self.id} status={self.status}>"

    def to_dto(self) -> TripRequest:
        """Convert ORM model to frozen domain DTO."""
        from trip_kernel.domain.workflow import (
            StatusHistoryEntry,
            TripCategory,
            TripRequest as TripRequestDTO,
        )

        return TripRequestDTO(
            request_id=self.id,
            requester_id=self.requester_id,
            cost=self.cost,
            status=RequestStatus(self.status),
            department_id=self.department_id,
            project_id=self.project_id,
            kilometers=self.kilometers,
            trip_category=TripCategory(self.trip_category),
            urgent=self.urgent,
            purpose=self.purpose,
            steps=tuple(s.to_dto() for s in self.steps),
            history=tuple(StatusHistoryEntry.from_dict(h) for h in self.status_history),
            rejection_reason=self.rejection_reason,
            submitted_at=self.submitted_at,
            paid_at=self.paid_at,
            paid_by=self.paid_by,
        )


class WorkflowStepModel(Base):
    """Persistent workflow step.  Created in full at submission, never reordered."""

    __tablename__ = "workflow_steps"

    __table_args__ = (
        UniqueConstraint("request_id", "step_order", name="uq_workflow_steps_order"),
        CheckConstraint("step_order >= 1", name="ck_workflow_steps_order_positive"),
        CheckConstraint(
            _in_clause("step_type", [t.value for t in StepType]),
            name="ck_workflow_steps_valid_type",
        ),
        CheckConstraint(
            _in_clause("status", [s.value for s in StepStatus]),
            name="ck_workflow_steps_valid_status",
        ),
        CheckConstraint(
            "(approver_id IS NOT NULL AND approver_role IS NULL) "
            "OR (approver_id IS NULL AND approver_role IS NOT NULL)",
            name="ck_workflow_steps_one_approver_kind",
        ),
        Index("ix_workflow_steps_approver", "approver_id"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("trip_requests.id"), nullable=False,
    )
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    step_type: Mapped[str] = mapped_column(String(50), nullable=False)
    approver_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approver_role: Mapped[str | None] = mapped_column(String(20), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="Pending")
    is_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    approved_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    request: Mapped[TripRequestModel] = relationship(
        "TripRequestModel", back_populates="steps",
    )

    def __repr__(self) -> str:
        return (
            f"<WorkflowStep {self.request_id}#{self.step_order} "
            f"{self.step_type} status={self.status}>"
        )

    def to_dto(self) -> WorkflowStep:
        """Convert ORM model to frozen domain DTO."""
        from trip_kernel.domain.workflow import (
            ActorRole,
            IdentityApprover,
            RoleApprover,
            WorkflowStep as WorkflowStepDTO,
        )

        if self.approver_id is not None:
            approver = IdentityApprover(self.approver_id)
        else:
            approver = RoleApprover(ActorRole(self.approver_role))

        return WorkflowStepDTO(
            step_id=self.id,
            request_id=self.request_id,
            step_order=self.step_order,
            step_type=StepType(self.step_type),
            approver=approver,
            status=StepStatus(self.status),
            is_required=self.is_required,
            approved_by=self.approved_by,
            approved_at=self.approved_at,
            rejection_reason=self.rejection_reason,
        )

    @classmethod
    def from_dto(cls, dto: WorkflowStep, request_id: UUID) -> WorkflowStepModel:
        """Create ORM model from a planned step."""
        from trip_kernel.domain.workflow import IdentityApprover

        if isinstance(dto.approver, IdentityApprover):
            approver_id, approver_role = dto.approver.user_id, None
        else:
            approver_id, approver_role = None, dto.approver.role.value

        return cls(
            request_id=request_id,
            step_order=dto.step_order,
            step_type=dto.step_type.value,
            approver_id=approver_id,
            approver_role=approver_role,
            status=dto.status.value,
            is_required=dto.is_required,
            approved_by=dto.approved_by,
            approved_at=dto.approved_at,
            rejection_reason=dto.rejection_reason,
        )
