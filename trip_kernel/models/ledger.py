"""
Module: trip_kernel.models.ledger
Responsibility: ORM persistence for the append-only project budget ledger.

Architecture position: Kernel > Models.  May import from db/base.py,
    domain/ and exceptions only.

Invariants enforced:
    - Entries are immutable once written: ORM before_update/before_delete
      listeners raise ImmutabilityViolationError.
    - At most one allocation and at most one deallocation per reference:
      partial UNIQUE index on (reference_id, transaction_type).
    - seq is globally unique and allocated from a locked counter row,
      giving a total order of entries within each project.
    - Only adjustment entries may carry a negative amount.

Failure modes:
    - IntegrityError on a second allocation/deallocation for one reference.
    - ImmutabilityViolationError on UPDATE or DELETE.

Audit relevance:
    The ledger is the source of truth for available budget; replaying a
    project's entries reproduces the running balance of its latest entry.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text, event, text
from sqlalchemy.orm import Mapped, mapped_column

from trip_kernel.db.base import Base, UUIDString
from trip_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from trip_kernel.domain.ledger import LedgerEntryRecord

_REFERENCE_UNIQUE_WHERE = "transaction_type IN ('allocation', 'deallocation') AND reference_id IS NOT NULL"


class BudgetLedgerEntryModel(Base):
    """Persistent ledger entry. Append-only."""

    __tablename__ = "project_budget_ledger"

    __table_args__ = (
        CheckConstraint(
            "transaction_type IN ('initial', 'allocation', 'deallocation', 'adjustment')",
            name="ck_budget_ledger_valid_type",
        ),
        CheckConstraint(
            "transaction_type = 'adjustment' OR amount >= 0",
            name="ck_budget_ledger_amount_sign",
        ),
        Index(
            "ix_budget_ledger_reference_once",
            "reference_id", "transaction_type",
            unique=True,
            postgresql_where=text(_REFERENCE_UNIQUE_WHERE),
            sqlite_where=text(_REFERENCE_UNIQUE_WHERE),
        ),
        Index("ix_budget_ledger_project_seq", "project_id", "seq"),
    )

    project_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("projects.id"), nullable=False,
    )
    seq: Mapped[int] = mapped_column(nullable=False, unique=True)
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    running_balance: Mapped[Decimal] = mapped_column(nullable=False)
    reference_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reference_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<BudgetLedgerEntry #{self.seq} {self.transaction_type} "
            f"{self.amount} balance={self.running_balance}>"
        )

    def to_dto(self) -> LedgerEntryRecord:
        """Convert ORM model to frozen domain DTO."""
        from trip_kernel.domain.ledger import (
            LedgerEntryRecord,
            LedgerReferenceType,
            LedgerTransactionType,
        )

        return LedgerEntryRecord(
            entry_id=self.id,
            project_id=self.project_id,
            seq=self.seq,
            transaction_type=LedgerTransactionType(self.transaction_type),
            amount=self.amount,
            running_balance=self.running_balance,
            description=self.description,
            created_by=self.created_by,
            created_at=self.created_at,
            reference_id=self.reference_id,
            reference_type=(
                LedgerReferenceType(self.reference_type)
                if self.reference_type is not None else None
            ),
        )


# =============================================================================
# ORM-Level Immutability (Append-Only)
# =============================================================================


@event.listens_for(BudgetLedgerEntryModel, "before_update")
def prevent_ledger_entry_update(mapper, connection, target):
    """Prevent updates to ledger entries."""
    raise ImmutabilityViolationError(
        entity_type="BudgetLedgerEntry",
        entity_id=str(target.id),
        reason="Ledger entries are immutable -- record a new entry instead",
    )


@event.listens_for(BudgetLedgerEntryModel, "before_delete")
def prevent_ledger_entry_delete(mapper, connection, target):
    """Prevent deletion of ledger entries."""
    raise ImmutabilityViolationError(
        entity_type="BudgetLedgerEntry",
        entity_id=str(target.id),
        reason="Ledger entries cannot be deleted",
    )
