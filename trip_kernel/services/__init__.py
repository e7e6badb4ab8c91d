"""Services for the trip kernel (write side)."""

from trip_kernel.services.audit_sink import DatabaseAuditSink
from trip_kernel.services.hierarchy_service import HierarchyRegistry, SqlHierarchySnapshot
from trip_kernel.services.sequence_service import SequenceService
from trip_kernel.services.serialization import (
    KeyedLockRegistry,
    project_key,
    request_key,
)

__all__ = [
    "DatabaseAuditSink",
    "HierarchyRegistry",
    "KeyedLockRegistry",
    "SequenceService",
    "SqlHierarchySnapshot",
    "project_key",
    "request_key",
]
