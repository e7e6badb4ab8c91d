"""
DatabaseAuditSink -- persists workflow audit records.

Responsibility:
    Implements the write-only ``AuditSink`` contract by appending an
    ``AuditRecordModel`` row inside the caller's transaction.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - Each record is written inside its own SAVEPOINT.  A failed insert
      rolls back only the savepoint, so the surrounding workflow
      transaction stays usable; the error is re-raised for the caller to
      log and continue.

Failure modes:
    - Any SQLAlchemy error from the insert propagates after the savepoint
      is rolled back.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from trip_kernel.domain.audit import AuditAction
from trip_kernel.domain.clock import Clock, SystemClock
from trip_kernel.logging_config import get_logger
from trip_kernel.models.audit_record import AuditRecordModel

logger = get_logger("services.audit_sink")


def _entity_of(details: dict[str, Any]) -> tuple[str, UUID | None]:
    if details.get("request_id"):
        return "TripRequest", UUID(str(details["request_id"]))
    if details.get("project_id"):
        return "Project", UUID(str(details["project_id"]))
    return "Unknown", None


class DatabaseAuditSink:
    """Audit sink writing to the ``audit_records`` table."""

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()

    def record(self, actor_id: UUID, action: AuditAction, details: dict[str, Any]) -> None:
        entity_type, entity_id = _entity_of(details)
        with self._session.begin_nested():
            self._session.add(
                AuditRecordModel(
                    actor_id=actor_id,
                    action=action.value,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    details=details,
                    occurred_at=self._clock.now(),
                )
            )
            self._session.flush()
        logger.debug(
            "audit_record_written",
            extra={"action": action.value, "entity_type": entity_type},
        )
