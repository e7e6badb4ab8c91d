"""
Module: trip_kernel.models.audit_record
Responsibility: ORM persistence for the workflow audit trail written by
    DatabaseAuditSink.

Architecture position: Kernel > Models.  May import from db/base.py and
    exceptions only.

Invariants enforced:
    - Audit records are append-only (ORM listeners raise
      ImmutabilityViolationError on UPDATE/DELETE).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Index, String, event
from sqlalchemy.orm import Mapped, mapped_column

from trip_kernel.db.base import Base, UUIDString
from trip_kernel.exceptions import ImmutabilityViolationError


class AuditRecordModel(Base):
    """One recorded workflow action."""

    __tablename__ = "audit_records"

    __table_args__ = (
        Index("ix_audit_records_entity", "entity_type", "entity_id"),
    )

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<AuditRecord {self.action} {self.entity_type}:{self.entity_id}>"


@event.listens_for(AuditRecordModel, "before_update")
def prevent_audit_record_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="AuditRecord",
        entity_id=str(target.id),
        reason="Audit records are immutable",
    )


@event.listens_for(AuditRecordModel, "before_delete")
def prevent_audit_record_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="AuditRecord",
        entity_id=str(target.id),
        reason="Audit records cannot be deleted",
    )
