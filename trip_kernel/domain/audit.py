"""
Audit sink contract (``trip_kernel.domain.audit``).

The workflow writes one audit record per action through an ``AuditSink``.
Recording is best-effort: the caller logs and continues if the sink fails.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Protocol
from uuid import UUID


class AuditAction(str, Enum):
    """Actions recorded in the audit trail."""

    TRIP_REQUEST_SUBMITTED = "TRIP_REQUEST_SUBMITTED"
    TRIP_REQUEST_APPROVED = "TRIP_REQUEST_APPROVED"
    TRIP_REQUEST_REJECTED = "TRIP_REQUEST_REJECTED"
    TRIP_REQUEST_PAID = "TRIP_REQUEST_PAID"
    BUDGET_ADJUSTED = "BUDGET_ADJUSTED"


class AuditSink(Protocol):
    """Write-only audit destination."""

    def record(self, actor_id: UUID, action: AuditAction, details: dict[str, Any]) -> None: ...
