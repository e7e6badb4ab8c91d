"""
Workflow domain types (``trip_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the trip approval workflow: request statuses, step
types and statuses, actor roles, trip categories, the approver tagged
union, workflow steps, status history entries and the request DTO.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Approved, Rejected, Paid and Cancelled are terminal for the workflow
  engine (``TERMINAL_STATUSES``).
* An approver is either an identity (one user) or a role; never a
  nullable id with implied meaning.
* Status history is append-only: ``TripRequest.history`` is a tuple.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from trip_kernel.domain.ledger import LedgerEntryRecord


# =========================================================================
# Enumerations
# =========================================================================


class RequestStatus(str, Enum):
    """Externally visible aggregate status of a trip request."""

    PENDING_DEPARTMENT_APPROVAL = "Pending Department Approval"
    PENDING_PROJECT_APPROVAL = "Pending Project Approval"
    PENDING_FINANCE_APPROVAL = "Pending Finance Approval"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    PAID = "Paid"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @classmethod
    def parse(cls, value: str | None) -> RequestStatus | None:
        """Return the member for *value*, or None if it is not a known status."""
        if value is None:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


TERMINAL_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.APPROVED,
    RequestStatus.REJECTED,
    RequestStatus.PAID,
    RequestStatus.CANCELLED,
})

PENDING_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.PENDING_DEPARTMENT_APPROVAL,
    RequestStatus.PENDING_PROJECT_APPROVAL,
    RequestStatus.PENDING_FINANCE_APPROVAL,
})


class StepType(str, Enum):
    """Kind of approval a workflow step represents."""

    DEPARTMENT_MANAGER = "Department Manager"
    SECOND_DEPARTMENT_MANAGER = "Second Department Manager"
    TERTIARY_DEPARTMENT_MANAGER = "Tertiary Department Manager"
    PROJECT_MANAGER = "Project Manager"
    SECOND_PROJECT_MANAGER = "Second Project Manager"
    FINANCE_APPROVAL = "Finance Approval"

    @property
    def is_project_step(self) -> bool:
        return "Project" in self.value


class StepStatus(str, Enum):
    """Lifecycle of a single workflow step."""

    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    SKIPPED = "Skipped"


class ActorRole(str, Enum):
    """Organizational role of the acting user."""

    EMPLOYEE = "Employee"
    MANAGER = "Manager"
    FINANCE = "Finance"
    ADMIN = "Admin"


# Roles that may act on the role-based finance step.
FINANCE_ROLES: frozenset[ActorRole] = frozenset({ActorRole.FINANCE, ActorRole.ADMIN})

# Actor role recorded on history entries the workflow synthesizes itself.
SYSTEM_ACTOR_ROLE = "System"

DEPARTMENT_BYPASS_MARKER = "Department Approval Bypassed - Urgent Trip"


class TripCategory(str, Enum):
    """Trip category.  Ticket trips are billed by distance."""

    TICKET = "Ticket"
    PLANNED = "Planned"
    URGENT = "Urgent"


# =========================================================================
# Approver tagged union
# =========================================================================


@dataclass(frozen=True)
class IdentityApprover:
    """Step bound to exactly one user."""

    user_id: UUID

    kind = "identity"


@dataclass(frozen=True)
class RoleApprover:
    """Step any member of ``role`` may act on."""

    role: ActorRole

    kind = "role"


Approver = IdentityApprover | RoleApprover


# =========================================================================
# Steps, history, requests
# =========================================================================


@dataclass(frozen=True)
class WorkflowStep:
    """One unit of required approval, ordered by ``step_order``.

    ``is_required`` is informational only; the next step is always the
    lowest-order Pending step.
    """

    step_order: int
    step_type: StepType
    approver: Approver
    status: StepStatus = StepStatus.PENDING
    is_required: bool = True
    step_id: UUID | None = None
    request_id: UUID | None = None
    approved_by: UUID | None = None
    approved_at: datetime | None = None
    rejection_reason: str | None = None

    @property
    def approver_id(self) -> UUID | None:
        if isinstance(self.approver, IdentityApprover):
            return self.approver.user_id
        return None

    @property
    def is_pending(self) -> bool:
        return self.status == StepStatus.PENDING


@dataclass(frozen=True)
class StatusHistoryEntry:
    """One append-only entry in a request's status history."""

    status: str
    timestamp: datetime
    actor_id: UUID
    actor_role: str
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "status": self.status,
            "timestamp": self.timestamp.isoformat(),
            "actorId": str(self.actor_id),
            "actorRole": self.actor_role,
        }
        if self.reason is not None:
            data["reason"] = self.reason
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StatusHistoryEntry:
        return cls(
            status=data["status"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            actor_id=UUID(data["actorId"]),
            actor_role=data["actorRole"],
            reason=data.get("reason"),
        )


@dataclass(frozen=True)
class RequestAttributes:
    """Everything the planner needs to know about a newly submitted request."""

    requester_id: UUID
    cost: Decimal
    department_id: UUID | None = None
    project_id: UUID | None = None
    kilometers: Decimal | None = None
    trip_category: TripCategory = TripCategory.PLANNED
    urgent: bool = False
    purpose: str = ""

    def __post_init__(self) -> None:
        if self.cost < 0:
            raise ValueError(f"Trip cost cannot be negative: {self.cost}")
        if self.kilometers is not None and self.kilometers < 0:
            raise ValueError(f"Kilometers cannot be negative: {self.kilometers}")

    @property
    def is_urgent(self) -> bool:
        return self.urgent or self.trip_category == TripCategory.URGENT


@dataclass(frozen=True)
class TripRequest:
    """Read model of a trip request with its steps and history."""

    request_id: UUID
    requester_id: UUID
    cost: Decimal
    status: RequestStatus
    department_id: UUID | None = None
    project_id: UUID | None = None
    kilometers: Decimal | None = None
    trip_category: TripCategory = TripCategory.PLANNED
    urgent: bool = False
    purpose: str = ""
    steps: tuple[WorkflowStep, ...] = ()
    history: tuple[StatusHistoryEntry, ...] = ()
    rejection_reason: str | None = None
    submitted_at: datetime | None = None
    paid_at: datetime | None = None
    paid_by: UUID | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def current_step(self) -> WorkflowStep | None:
        pending = [s for s in self.steps if s.is_pending]
        return min(pending, key=lambda s: s.step_order) if pending else None


@dataclass(frozen=True)
class WorkflowTransition:
    """Result of one workflow action, used for audit and logging."""

    request: TripRequest
    previous_status: RequestStatus
    action: str
    step: WorkflowStep | None = None
    ledger_entries: tuple[LedgerEntryRecord, ...] = ()
