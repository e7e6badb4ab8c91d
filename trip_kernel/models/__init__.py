"""ORM models for the trip kernel."""

from trip_kernel.models.audit_record import AuditRecordModel
from trip_kernel.models.ledger import BudgetLedgerEntryModel
from trip_kernel.models.organization import DepartmentModel, OrgMemberModel, ProjectModel
from trip_kernel.models.sequence import SequenceCounter
from trip_kernel.models.trip_request import TripRequestModel, WorkflowStepModel

__all__ = [
    "AuditRecordModel",
    "BudgetLedgerEntryModel",
    "DepartmentModel",
    "OrgMemberModel",
    "ProjectModel",
    "SequenceCounter",
    "TripRequestModel",
    "WorkflowStepModel",
]
