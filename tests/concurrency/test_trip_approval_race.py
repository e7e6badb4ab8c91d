"""
Concurrent workflow actions.

Threads share one TransactionCoordinator and one file-backed database.
Each test releases its workers from a Barrier so the calls overlap, then
checks that the serialized outcome is one a sequential run could produce.

Expected Behavior:
- Two finance users racing on the same step: exactly one approval lands,
  the other is refused, and the request carries one Approved step.
- Approvals on different requests charging one project never interleave
  their ledger writes: sequence numbers stay contiguous and replay holds.
- Over-budget races admit only the approvals the budget can fund.
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier
from uuid import uuid4

import pytest

from trip_kernel.domain.workflow import ActorRole, RequestStatus, StepStatus
from trip_kernel.exceptions import (
    InsufficientBudgetError,
    NoPendingStepForActorError,
    TripKernelError,
)

pytestmark = pytest.mark.slow_locks


def _race(calls):
    """Run *calls* concurrently; return a list of (result, error) pairs."""
    barrier = Barrier(len(calls))

    def _run(call):
        barrier.wait(timeout=10)
        try:
            return call(), None
        except TripKernelError as exc:
            return None, exc

    with ThreadPoolExecutor(max_workers=len(calls)) as pool:
        futures = [pool.submit(_run, call) for call in calls]
        return [f.result(timeout=60) for f in futures]


class TestFinanceRace:

    def test_only_one_finance_approval_lands(self, coordinator, org, make_attributes):
        dept = org.department(manager_id=uuid4())
        request = coordinator.submit(
            make_attributes(department_id=dept.department_id, urgent=True)
        )
        finance_a = org.member(role=ActorRole.FINANCE)
        finance_b = org.member(role=ActorRole.FINANCE)

        outcomes = _race([
            lambda: coordinator.approve(request.request_id, finance_a, ActorRole.FINANCE),
            lambda: coordinator.approve(request.request_id, finance_b, ActorRole.FINANCE),
        ])

        successes = [r for r, e in outcomes if e is None]
        failures = [e for r, e in outcomes if e is not None]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], NoPendingStepForActorError)

        final = coordinator.get_request(request.request_id)
        assert final.status == RequestStatus.APPROVED
        approved = [s for s in final.steps if s.status == StepStatus.APPROVED]
        assert len(approved) == 1
        assert approved[0].approved_by == successes[0].steps[-1].approved_by
        assert [h.status for h in final.history].count(RequestStatus.APPROVED.value) == 1


class TestProjectLedgerRace:

    def test_parallel_allocations_keep_the_ledger_consistent(
        self, coordinator, org, make_attributes,
    ):
        pm = uuid4()
        project = org.project(Decimal("1000"), manager_id=pm)
        requests = [
            coordinator.submit(make_attributes(project_id=project.project_id))
            for _ in range(5)
        ]

        outcomes = _race([
            (lambda rid=r.request_id: coordinator.approve(rid, pm, ActorRole.MANAGER))
            for r in requests
        ])

        assert all(e is None for _, e in outcomes)
        entries = coordinator.get_project_ledger(project.project_id)
        assert [e.seq for e in entries] == sorted(e.seq for e in entries)
        assert len({e.seq for e in entries}) == 6
        assert entries[-1].running_balance == Decimal("500")
        assert coordinator.verify_project_ledger(project.project_id) == Decimal("500")

    def test_budget_admits_only_what_it_can_fund(self, coordinator, org, make_attributes):
        pm = uuid4()
        project = org.project(Decimal("250"), manager_id=pm)
        requests = [
            coordinator.submit(make_attributes(project_id=project.project_id))
            for _ in range(3)
        ]

        outcomes = _race([
            (lambda rid=r.request_id: coordinator.approve(rid, pm, ActorRole.MANAGER))
            for r in requests
        ])

        errors = [e for _, e in outcomes if e is not None]
        assert len(errors) == 1
        assert isinstance(errors[0], InsufficientBudgetError)
        snapshot = coordinator.get_project_budget_snapshot(project.project_id)
        assert snapshot.allocated == Decimal("200")
        assert snapshot.available == Decimal("50")
        assert coordinator.verify_project_ledger(project.project_id) == Decimal("50")
