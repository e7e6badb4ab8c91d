"""
trip_engines.budget -- Pure project budget arithmetic.

Responsibility:
    Compute available budget from ledger totals, replay a ledger's entries
    into a balance, compute utilization, and assess affordability.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Decimal-only arithmetic.

Invariants enforced:
    - available = effective budget - sum(allocation) + sum(deallocation).
    - Replaying every entry of a project ledger reproduces the running
      balance of its most recent entry.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from trip_kernel.domain.ledger import LedgerEntryRecord, LedgerTransactionType

ZERO = Decimal("0")
_PCT_QUANTUM = Decimal("0.01")


def available_budget(
    effective_budget: Decimal,
    allocated_total: Decimal,
    deallocated_total: Decimal,
) -> Decimal:
    """Effective budget less net allocations."""
    return effective_budget - allocated_total + deallocated_total


def replay_balance(entries: Iterable[LedgerEntryRecord]) -> Decimal:
    """Sum every entry's effect on available budget.

    ``initial`` seeds the original budget, ``adjustment`` carries its signed
    amount, ``allocation`` subtracts and ``deallocation`` adds back.
    """
    return sum((e.signed_amount for e in entries), ZERO)


def utilization_pct(spent: Decimal, effective_budget: Decimal) -> Decimal:
    """Spent as a percentage of effective budget; zero for a non-positive budget."""
    if effective_budget <= 0:
        return ZERO
    return (spent / effective_budget * 100).quantize(_PCT_QUANTUM, rounding=ROUND_HALF_UP)


def net_allocation_for_reference(
    entries: Iterable[LedgerEntryRecord],
) -> Decimal:
    """Allocated minus deallocated over entries sharing one reference."""
    net = ZERO
    for entry in entries:
        if entry.transaction_type == LedgerTransactionType.ALLOCATION:
            net += entry.amount
        elif entry.transaction_type == LedgerTransactionType.DEALLOCATION:
            net -= entry.amount
    return net


@dataclass(frozen=True)
class AffordabilityAssessment:
    can_approve: bool
    excess: Decimal
    available: Decimal


def assess_affordability(
    available: Decimal,
    cost: Decimal,
    add_back: Decimal = ZERO,
) -> AffordabilityAssessment:
    """Compare *cost* against *available* (+ *add_back*, a reservation being re-validated)."""
    effective_available = available + add_back
    if effective_available >= cost:
        return AffordabilityAssessment(True, ZERO, effective_available)
    return AffordabilityAssessment(False, cost - effective_available, effective_available)
