"""
trip_services.transaction_coordinator -- Atomic, serialized workflow actions.

Responsibility:
    The public entrypoint for the trip approval core.  Wraps each action
    (submit, approve, reject, bulk decide, mark paid, budget adjustment,
    project registration) in one serialized transaction covering step
    mutation, status derivation, ledger mutation, persistence and one
    audit record.  Also serves the read side: approval inbox, visible
    requests, budget snapshot, ledger history and verification.

Architecture position:
    Services layer.  May import from trip_engines/ (pure engines),
    trip_kernel/ (domain, db, models, services, selectors) and
    trip_config/.  Owns every transaction boundary; nothing below it
    commits.

Invariants enforced:
    - Per-request serialization: the request's unit (in-process lock plus
      row lock) is held for the whole action.
    - Per-project serialization: actions that may touch a project's ledger
      also hold that project's unit, acquired together with the request
      unit in one sorted call so overlapping callers cannot deadlock.
    - Units are acquired before the transaction opens; no transaction ever
      waits on an in-process lock.
    - A ledger or persistence failure rolls back the whole action.
    - An audit failure is logged and never rolls back the action.
    - Bulk decisions are all-or-nothing.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from trip_config.schema import WorkflowConfig
from trip_engines.authorization import AuthorizationResolver
from trip_engines.planner import WorkflowPlanner
from trip_kernel.domain.audit import AuditAction, AuditSink
from trip_kernel.domain.clock import Clock, SystemClock
from trip_kernel.domain.hierarchy import DepartmentInfo, ProjectInfo
from trip_kernel.domain.ledger import (
    AffordabilityCheck,
    BudgetSnapshot,
    LedgerEntryRecord,
)
from trip_kernel.domain.workflow import (
    ActorRole,
    RequestAttributes,
    TripRequest,
    WorkflowTransition,
)
from trip_kernel.exceptions import RequestNotFoundError, TripKernelError
from trip_kernel.logging_config import LogContext, get_logger
from trip_kernel.models.trip_request import TripRequestModel
from trip_kernel.selectors.visibility_selector import VisibilitySelector
from trip_kernel.services.audit_sink import DatabaseAuditSink
from trip_kernel.services.hierarchy_service import HierarchyRegistry, SqlHierarchySnapshot
from trip_kernel.services.serialization import (
    KeyedLockRegistry,
    LockKey,
    project_key,
    request_key,
)
from trip_services.budget_ledger import BudgetLedgerService
from trip_services.workflow_engine import WorkflowEngine

logger = get_logger("services.transaction_coordinator")

TRACE_TYPE_WORKFLOW_TRANSITION = "WORKFLOW_TRANSITION"
OUTCOME_SUCCESS = "success"
OUTCOME_REFUSED = "refused"

_AUDIT_ACTIONS: dict[str, AuditAction] = {
    "submit": AuditAction.TRIP_REQUEST_SUBMITTED,
    "approve": AuditAction.TRIP_REQUEST_APPROVED,
    "reject": AuditAction.TRIP_REQUEST_REJECTED,
    "mark_paid": AuditAction.TRIP_REQUEST_PAID,
}


def _emit_workflow_trace(
    action: str,
    request_id: UUID | None,
    from_state: str | None,
    outcome: str,
    duration_ms: float,
    to_state: str | None = None,
    error_code: str | None = None,
    ledger_entries: int = 0,
) -> None:
    """Emit a structured workflow transition record for traceability."""
    record: dict[str, Any] = {
        "trace_type": TRACE_TYPE_WORKFLOW_TRANSITION,
        "action": action,
        "entity_id": str(request_id) if request_id is not None else None,
        "from_state": from_state,
        "outcome": outcome,
        "duration_ms": round(duration_ms, 3),
        "ledger_entries": ledger_entries,
    }
    if to_state is not None:
        record["to_state"] = to_state
    if error_code is not None:
        record["error_code"] = error_code
    logger.info("workflow_transition", extra=record)


def _audit_details(transition: WorkflowTransition) -> dict[str, Any]:
    request = transition.request
    details: dict[str, Any] = {
        "request_id": str(request.request_id),
        "previous_status": transition.previous_status.value,
        "status": request.status.value,
        "cost": str(request.cost),
    }
    if request.project_id is not None:
        details["project_id"] = str(request.project_id)
    if transition.step is not None:
        details["step_order"] = transition.step.step_order
        details["step_type"] = transition.step.step_type.value
    if transition.ledger_entries:
        details["ledger_entries"] = [
            {
                "seq": e.seq,
                "transaction_type": e.transaction_type.value,
                "amount": str(e.amount),
                "running_balance": str(e.running_balance),
            }
            for e in transition.ledger_entries
        ]
    if request.rejection_reason is not None and transition.action == "reject":
        details["reason"] = request.rejection_reason
    return details


class TransactionCoordinator:
    """
    Serialized, atomic front door to the workflow and the budget ledger.

    Contract:
        Each mutating call either fully applies (steps, status, history,
        ledger, audit) and commits, or raises and leaves no trace except
        a log line.  Sessions come from *session_factory*; one per call,
        so one coordinator may be shared across threads.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        config: WorkflowConfig | None = None,
        clock: Clock | None = None,
        locks: KeyedLockRegistry | None = None,
        resolver: AuthorizationResolver | None = None,
        audit_sink_factory: Callable[[Session], AuditSink] | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config or WorkflowConfig()
        self._clock = clock or SystemClock()
        self._locks = locks or KeyedLockRegistry()
        self._resolver = resolver or AuthorizationResolver()
        self._audit_sink_factory = audit_sink_factory or (
            lambda session: DatabaseAuditSink(session, self._clock)
        )

    # =========================================================================
    # Infrastructure
    # =========================================================================

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            logger.debug("transaction_rolled_back")
            raise
        finally:
            session.close()

    def _ledger(self, session: Session) -> BudgetLedgerService:
        return BudgetLedgerService(session, self._clock)

    def _engine(self, session: Session) -> WorkflowEngine:
        snapshot = SqlHierarchySnapshot(session, self._config.kilometer_threshold)
        planner = WorkflowPlanner(snapshot, self._config.distance_billed_category)
        return WorkflowEngine(
            session,
            planner,
            self._ledger(session),
            self._resolver,
            self._clock,
            strict_custom_status=self._config.strict_custom_status,
            enforce_budget_on_project_approval=self._config.enforce_budget_on_project_approval,
        )

    def _serialization_keys(self, request_ids: Iterable[UUID]) -> tuple[LockKey, ...]:
        """Request units plus the units of the projects those requests charge.

        A request's project never changes after submission, so reading it
        before the units are held is safe.
        """
        ids = list(request_ids)
        keys: list[LockKey] = [request_key(rid) for rid in ids]
        if ids:
            with self._transaction() as session:
                project_ids = session.execute(
                    select(TripRequestModel.project_id)
                    .where(TripRequestModel.id.in_(ids))
                ).scalars().all()
            keys.extend(project_key(pid) for pid in project_ids if pid is not None)
        return tuple(keys)

    def _audit(
        self,
        session: Session,
        actor_id: UUID,
        action: AuditAction,
        details: dict[str, Any],
    ) -> None:
        """Best-effort audit record; failures are logged, never raised."""
        try:
            self._audit_sink_factory(session).record(actor_id, action, details)
        except Exception:
            logger.warning(
                "audit_record_failed",
                extra={"audit_action": action.value},
                exc_info=True,
            )

    def _run_request_action(
        self,
        action: str,
        request_id: UUID,
        actor_id: UUID,
        apply: Callable[[WorkflowEngine], WorkflowTransition],
    ) -> TripRequest:
        start = time.monotonic()
        with LogContext.bind(request_id=request_id, actor_id=actor_id):
            try:
                with self._locks.hold(*self._serialization_keys([request_id])):
                    with self._transaction() as session:
                        transition = apply(self._engine(session))
                        self._audit(
                            session, actor_id, _AUDIT_ACTIONS[action],
                            _audit_details(transition),
                        )
            except TripKernelError as exc:
                _emit_workflow_trace(
                    action, request_id, None, OUTCOME_REFUSED,
                    (time.monotonic() - start) * 1000, error_code=exc.code,
                )
                raise

            _emit_workflow_trace(
                action,
                request_id,
                transition.previous_status.value,
                OUTCOME_SUCCESS,
                (time.monotonic() - start) * 1000,
                to_state=transition.request.status.value,
                ledger_entries=len(transition.ledger_entries),
            )
            return transition.request

    # =========================================================================
    # Workflow actions
    # =========================================================================

    def submit(
        self,
        attributes: RequestAttributes,
        submitted_by_role: ActorRole = ActorRole.EMPLOYEE,
    ) -> TripRequest:
        """Plan, persist and audit a new request."""
        start = time.monotonic()
        with LogContext.bind(actor_id=attributes.requester_id, project_id=attributes.project_id):
            with self._transaction() as session:
                transition = self._engine(session).submit(attributes, submitted_by_role)
                self._audit(
                    session, attributes.requester_id,
                    AuditAction.TRIP_REQUEST_SUBMITTED, _audit_details(transition),
                )
            _emit_workflow_trace(
                "submit",
                transition.request.request_id,
                None,
                OUTCOME_SUCCESS,
                (time.monotonic() - start) * 1000,
                to_state=transition.request.status.value,
            )
            return transition.request

    def approve(self, request_id: UUID, actor_id: UUID, actor_role: ActorRole) -> TripRequest:
        return self._run_request_action(
            "approve", request_id, actor_id,
            lambda engine: engine.approve(request_id, actor_id, actor_role),
        )

    def reject(
        self,
        request_id: UUID,
        actor_id: UUID,
        actor_role: ActorRole,
        custom_status: str | None = None,
        reason: str | None = None,
    ) -> TripRequest:
        return self._run_request_action(
            "reject", request_id, actor_id,
            lambda engine: engine.reject(
                request_id, actor_id, actor_role, custom_status, reason,
            ),
        )

    def mark_paid(self, request_id: UUID, actor_id: UUID, actor_role: ActorRole) -> TripRequest:
        return self._run_request_action(
            "mark_paid", request_id, actor_id,
            lambda engine: engine.mark_paid(request_id, actor_id, actor_role),
        )

    def bulk_decide(
        self,
        request_ids: Iterable[UUID],
        approve: bool,
        actor_id: UUID,
        actor_role: ActorRole,
        reason: str | None = None,
    ) -> list[TripRequest]:
        """Approve or reject many requests in one transaction.

        All units are acquired up front in one sorted call.  Any failure
        rolls back every decision in the batch.
        """
        ids = list(dict.fromkeys(request_ids))
        action = "approve" if approve else "reject"
        with LogContext.bind(actor_id=actor_id):
            with self._locks.hold(*self._serialization_keys(ids)):
                with self._transaction() as session:
                    engine = self._engine(session)
                    transitions = []
                    for request_id in ids:
                        if approve:
                            transition = engine.approve(request_id, actor_id, actor_role)
                        else:
                            transition = engine.reject(
                                request_id, actor_id, actor_role, reason=reason,
                            )
                        self._audit(
                            session, actor_id, _AUDIT_ACTIONS[action],
                            _audit_details(transition),
                        )
                        transitions.append(transition)
            logger.info(
                "bulk_decision_applied",
                extra={"action": action, "request_count": len(transitions)},
            )
            return [t.request for t in transitions]

    # =========================================================================
    # Read side
    # =========================================================================

    def get_request(self, request_id: UUID) -> TripRequest:
        with self._transaction() as session:
            model = session.get(TripRequestModel, request_id)
            if model is None:
                raise RequestNotFoundError(str(request_id))
            return model.to_dto()

    def get_approvable_requests(self, actor_id: UUID, actor_role: ActorRole) -> list[TripRequest]:
        """The actor's approval inbox: requests whose current step they may act on."""
        with self._transaction() as session:
            return VisibilitySelector(session, self._resolver).approvable_requests(
                actor_id, actor_role,
            )

    def get_visible_requests(self, actor_id: UUID, actor_role: ActorRole) -> list[TripRequest]:
        with self._transaction() as session:
            return VisibilitySelector(session, self._resolver).visible_requests(
                actor_id, actor_role,
            )

    def get_project_budget_snapshot(self, project_id: UUID) -> BudgetSnapshot:
        with self._transaction() as session:
            return self._ledger(session).snapshot(project_id)

    def check_affordability(
        self,
        project_id: UUID,
        cost: Decimal,
        exclude_reference_id: UUID | None = None,
    ) -> AffordabilityCheck:
        """Unlocked read; the result may be stale under concurrent writers."""
        with self._transaction() as session:
            return self._ledger(session).check_affordability(
                project_id, cost, exclude_reference_id,
            )

    def get_project_ledger(self, project_id: UUID) -> list[LedgerEntryRecord]:
        with self._transaction() as session:
            return self._ledger(session).entries(project_id)

    def verify_project_ledger(self, project_id: UUID) -> Decimal:
        with self._transaction() as session:
            return self._ledger(session).verify(project_id)

    # =========================================================================
    # Budget and hierarchy administration
    # =========================================================================

    def record_adjustment(
        self,
        project_id: UUID,
        amount: Decimal,
        description: str,
        actor_id: UUID,
    ) -> LedgerEntryRecord:
        """Adjust a project's budget by a signed *amount*."""
        with LogContext.bind(project_id=project_id, actor_id=actor_id):
            with self._locks.hold(project_key(project_id)):
                with self._transaction() as session:
                    entry = self._ledger(session).adjust(
                        project_id, amount, description, actor_id,
                    )
                    self._audit(
                        session,
                        actor_id,
                        AuditAction.BUDGET_ADJUSTED,
                        {
                            "project_id": str(project_id),
                            "amount": str(amount),
                            "description": description,
                            "seq": entry.seq,
                            "running_balance": str(entry.running_balance),
                        },
                    )
            return entry

    def register_project(
        self,
        name: str,
        original_budget: Decimal,
        actor_id: UUID,
        *,
        manager_id: UUID | None = None,
        second_manager_id: UUID | None = None,
        department_id: UUID | None = None,
    ) -> ProjectInfo:
        """Create a project and seed its ledger with an initial entry."""
        with self._transaction() as session:
            project = HierarchyRegistry(session).create_project(
                name,
                original_budget,
                actor_id,
                manager_id=manager_id,
                second_manager_id=second_manager_id,
                department_id=department_id,
            )
            self._ledger(session).record_initial(project.project_id, actor_id)
            return project

    def register_department(
        self,
        name: str,
        actor_id: UUID,
        *,
        budget: Decimal = Decimal("0"),
        manager_id: UUID | None = None,
        second_manager_id: UUID | None = None,
        third_manager_id: UUID | None = None,
        parent_department_id: UUID | None = None,
    ) -> DepartmentInfo:
        with self._transaction() as session:
            return HierarchyRegistry(session).create_department(
                name,
                actor_id,
                budget=budget,
                manager_id=manager_id,
                second_manager_id=second_manager_id,
                third_manager_id=third_manager_id,
                parent_department_id=parent_department_id,
            )

    def set_department_parent(
        self,
        department_id: UUID,
        parent_department_id: UUID | None,
        actor_id: UUID,
    ) -> DepartmentInfo:
        with self._transaction() as session:
            return HierarchyRegistry(session).set_department_parent(
                department_id, parent_department_id, actor_id,
            )

    def register_member(
        self,
        user_id: UUID,
        actor_id: UUID,
        *,
        role: ActorRole = ActorRole.EMPLOYEE,
        home_department_id: UUID | None = None,
        full_name: str = "",
    ) -> None:
        with self._transaction() as session:
            HierarchyRegistry(session).register_member(
                user_id,
                actor_id,
                role=role,
                home_department_id=home_department_id,
                full_name=full_name,
            )
