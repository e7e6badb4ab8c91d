"""
Pytest fixtures for the trip approval test suite.

Provides:
- A fresh database per test (SQLite file under tmp_path by default)
- A deterministic clock and a TransactionCoordinator wired to both
- Hierarchy factories (departments, projects, members)
- Captured structured logs

Environment Variables:
- DATABASE_URL: run against another database (e.g. PostgreSQL) instead of
  the per-test SQLite file.  Tables are dropped and recreated per test.
"""

import json
import logging
import os
from datetime import UTC, datetime
from decimal import Decimal
from io import StringIO
from uuid import UUID, uuid4

import pytest

from trip_config.schema import WorkflowConfig
from trip_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from trip_kernel.domain.clock import DeterministicClock
from trip_kernel.domain.workflow import ActorRole, RequestAttributes, TripCategory
from trip_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from trip_kernel.services.serialization import KeyedLockRegistry
from trip_services.transaction_coordinator import TransactionCoordinator

# Test actor ID for administrative setup operations
TEST_ACTOR_ID = uuid4()

FIXED_NOW = datetime(2024, 3, 1, 9, 0, tzinfo=UTC)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture trip_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, coordinator):
            coordinator.approve(...)
            logs = captured_logs()
            assert any(r["message"] == "workflow_step_approved" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("trip_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


def get_database_url(tmp_path) -> str:
    return os.environ.get("DATABASE_URL", f"sqlite:///{tmp_path / 'trips.db'}")


@pytest.fixture
def engine(tmp_path):
    """Initialize the engine and a clean schema for one test."""
    eng = init_engine_from_url(get_database_url(tmp_path))
    drop_tables()
    create_tables()
    yield eng
    drop_tables()
    reset_engine()


@pytest.fixture
def session_factory(engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    """A session for direct kernel/service tests.  Rolled back at teardown."""
    s = session_factory()
    yield s
    s.rollback()
    s.close()


# =============================================================================
# Clock, config, coordinator
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock(FIXED_NOW)


@pytest.fixture
def workflow_config():
    return WorkflowConfig()


@pytest.fixture
def lock_registry():
    return KeyedLockRegistry()


@pytest.fixture
def coordinator(session_factory, workflow_config, clock, lock_registry):
    return TransactionCoordinator(
        session_factory,
        workflow_config,
        clock=clock,
        locks=lock_registry,
    )


# =============================================================================
# Hierarchy factories
# =============================================================================


class OrgFactory:
    """Builds departments, projects and members through the coordinator."""

    def __init__(self, coordinator: TransactionCoordinator):
        self._coordinator = coordinator
        self._counter = 0

    def _name(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix} {self._counter}"

    def department(
        self,
        *,
        manager_id: UUID | None = None,
        second_manager_id: UUID | None = None,
        third_manager_id: UUID | None = None,
        parent_department_id: UUID | None = None,
        name: str | None = None,
    ):
        return self._coordinator.register_department(
            name or self._name("Department"),
            TEST_ACTOR_ID,
            manager_id=manager_id,
            second_manager_id=second_manager_id,
            third_manager_id=third_manager_id,
            parent_department_id=parent_department_id,
        )

    def project(
        self,
        budget: Decimal = Decimal("500"),
        *,
        manager_id: UUID | None = None,
        second_manager_id: UUID | None = None,
        department_id: UUID | None = None,
        name: str | None = None,
    ):
        return self._coordinator.register_project(
            name or self._name("Project"),
            budget,
            TEST_ACTOR_ID,
            manager_id=manager_id,
            second_manager_id=second_manager_id,
            department_id=department_id,
        )

    def member(
        self,
        *,
        role: ActorRole = ActorRole.EMPLOYEE,
        home_department_id: UUID | None = None,
    ) -> UUID:
        user_id = uuid4()
        self._coordinator.register_member(
            user_id,
            TEST_ACTOR_ID,
            role=role,
            home_department_id=home_department_id,
        )
        return user_id


@pytest.fixture
def org(coordinator):
    return OrgFactory(coordinator)


@pytest.fixture
def make_attributes():
    """Factory for RequestAttributes with sensible defaults."""

    def _make(
        requester_id: UUID | None = None,
        cost: Decimal = Decimal("100"),
        *,
        project_id: UUID | None = None,
        department_id: UUID | None = None,
        kilometers: Decimal | None = None,
        trip_category: TripCategory = TripCategory.PLANNED,
        urgent: bool = False,
        purpose: str = "Client visit",
    ) -> RequestAttributes:
        return RequestAttributes(
            requester_id=requester_id or uuid4(),
            cost=cost,
            department_id=department_id,
            project_id=project_id,
            kilometers=kilometers,
            trip_category=trip_category,
            urgent=urgent,
            purpose=purpose,
        )

    return _make


@pytest.fixture
def project_team(org):
    """A project (budget 500) with two managers, plus a finance user.

    Returns a dict with project, pm, spm and finance ids.
    """
    pm, spm = uuid4(), uuid4()
    project = org.project(Decimal("500"), manager_id=pm, second_manager_id=spm)
    finance = org.member(role=ActorRole.FINANCE)
    return {"project": project, "pm": pm, "spm": spm, "finance": finance}
