"""
Pure domain layer.

Immutable value objects and protocols with NO dependencies on the ORM,
the database, the clock (beyond the Clock interface) or I/O.
"""

from trip_kernel.domain.audit import AuditAction, AuditSink
from trip_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from trip_kernel.domain.hierarchy import DepartmentInfo, HierarchySnapshot, ProjectInfo
from trip_kernel.domain.ledger import (
    AffordabilityCheck,
    BudgetSnapshot,
    LedgerEntryRecord,
    LedgerReferenceType,
    LedgerTransactionType,
)
from trip_kernel.domain.workflow import (
    FINANCE_ROLES,
    PENDING_STATUSES,
    TERMINAL_STATUSES,
    ActorRole,
    Approver,
    IdentityApprover,
    RequestAttributes,
    RequestStatus,
    RoleApprover,
    StatusHistoryEntry,
    StepStatus,
    StepType,
    TripCategory,
    TripRequest,
    WorkflowStep,
    WorkflowTransition,
)

__all__ = [
    "ActorRole",
    "AffordabilityCheck",
    "Approver",
    "AuditAction",
    "AuditSink",
    "BudgetSnapshot",
    "Clock",
    "DepartmentInfo",
    "DeterministicClock",
    "FINANCE_ROLES",
    "HierarchySnapshot",
    "IdentityApprover",
    "LedgerEntryRecord",
    "LedgerReferenceType",
    "LedgerTransactionType",
    "PENDING_STATUSES",
    "ProjectInfo",
    "RequestAttributes",
    "RequestStatus",
    "RoleApprover",
    "StatusHistoryEntry",
    "StepStatus",
    "StepType",
    "SystemClock",
    "TERMINAL_STATUSES",
    "TripCategory",
    "TripRequest",
    "WorkflowStep",
    "WorkflowTransition",
]
