"""Tests for the structured logging system (trip_kernel/logging_config.py)."""

import json
import logging
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from trip_kernel.domain.workflow import ActorRole, RequestStatus
from trip_kernel.exceptions import NoPendingStepForActorError, RequestAlreadyTerminalError
from trip_kernel.logging_config import (
    CONTEXT_FIELDS,
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Start each test unconfigured; restore the suite's configuration after."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


@pytest.fixture
def log_stream():
    """Configure trip_kernel logging at DEBUG into a fresh stream."""
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    configure_logging(handler=handler, level=logging.DEBUG)
    return stream


def _records(stream: StringIO) -> list[dict]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line]


def _by_message(stream: StringIO, message: str) -> list[dict]:
    return [r for r in _records(stream) if r["message"] == message]


# ---------------------------------------------------------------------------
# Context carried through workflow actions
# ---------------------------------------------------------------------------


class TestActionContext:
    """Records logged inside a coordinator action carry its ids."""

    def test_approval_records_carry_request_and_actor(
        self, log_stream, coordinator, project_team, make_attributes,
    ):
        request = coordinator.submit(
            make_attributes(project_id=project_team["project"].project_id),
        )

        coordinator.approve(request.request_id, project_team["pm"], ActorRole.MANAGER)

        traces = [
            r for r in _by_message(log_stream, "workflow_transition")
            if r["action"] == "approve"
        ]
        records = [
            *_by_message(log_stream, "workflow_step_approved"),
            *_by_message(log_stream, "budget_allocated"),
            *traces,
        ]
        assert len(records) == 3
        for record in records:
            assert record["request_id"] == str(request.request_id)
            assert record["actor_id"] == str(project_team["pm"])

    def test_submit_binds_requester_and_project(
        self, log_stream, coordinator, project_team, make_attributes,
    ):
        requester = uuid4()
        project_id = project_team["project"].project_id

        coordinator.submit(make_attributes(requester, project_id=project_id))

        [record] = _by_message(log_stream, "trip_request_submitted")
        assert record["actor_id"] == str(requester)
        assert record["project_id"] == str(project_id)

    def test_refused_action_logs_code_and_restores_context(
        self, log_stream, coordinator, project_team, make_attributes,
    ):
        request = coordinator.submit(
            make_attributes(project_id=project_team["project"].project_id),
        )
        stranger = uuid4()

        with pytest.raises(NoPendingStepForActorError):
            coordinator.approve(request.request_id, stranger, ActorRole.MANAGER)

        refused = [
            r for r in _by_message(log_stream, "workflow_transition")
            if r["outcome"] != "success"
        ]
        assert len(refused) == 1
        assert refused[0]["error_code"] == "NO_PENDING_STEP_FOR_ACTOR"
        assert refused[0]["actor_id"] == str(stranger)
        assert LogContext.get_all() == {}


# ---------------------------------------------------------------------------
# LogContext
# ---------------------------------------------------------------------------


class TestLogContext:

    def test_set_stringifies_ids(self):
        request_id, project_id = uuid4(), uuid4()
        LogContext.set(request_id=request_id, project_id=project_id)

        assert LogContext.get_all() == {
            "request_id": str(request_id),
            "project_id": str(project_id),
        }

    def test_nested_bind_restores_outer_request(self):
        outer, inner = uuid4(), uuid4()
        actor = uuid4()

        with LogContext.bind(request_id=outer, actor_id=actor):
            with LogContext.bind(request_id=inner):
                assert LogContext.get_all() == {
                    "request_id": str(inner),
                    "actor_id": str(actor),
                }
            assert LogContext.get_all()["request_id"] == str(outer)
        assert LogContext.get_all() == {}

    def test_bind_restores_after_exception(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(request_id=uuid4()):
                raise RuntimeError("boom")

        assert LogContext.get_all() == {}

    def test_none_and_unknown_fields_ignored(self):
        with LogContext.bind(project_id=None, department_id=uuid4()):
            assert LogContext.get_all() == {}
        LogContext.set(cost=Decimal("10"))
        assert LogContext.get_all() == {}

    def test_clear_drops_every_field(self):
        LogContext.set(**{name: uuid4() for name in CONTEXT_FIELDS})
        assert set(LogContext.get_all()) == set(CONTEXT_FIELDS)

        LogContext.clear()

        assert LogContext.get_all() == {}


# ---------------------------------------------------------------------------
# StructuredFormatter
# ---------------------------------------------------------------------------


class TestStructuredFormatter:

    def test_envelope_and_trip_values(self, log_stream):
        entry_id = uuid4()
        get_logger("services.budget_ledger").info(
            "budget_allocated",
            extra={
                "entry_id": entry_id,
                "amount": Decimal("120.50"),
                "status": RequestStatus.PENDING_FINANCE_APPROVAL,
            },
        )

        [record] = _records(log_stream)
        assert record["level"] == "INFO"
        assert record["logger"] == "trip_kernel.services.budget_ledger"
        assert "ts" in record
        assert record["entry_id"] == str(entry_id)
        assert record["amount"] == "120.50"
        assert record["status"] == "Pending Finance Approval"

    def test_context_fields_merge_with_extra(self, log_stream):
        LogContext.set(actor_id="context-actor")
        get_logger("test").info("explicit", extra={"step_order": 1})

        [record] = _records(log_stream)
        assert record["actor_id"] == "context-actor"
        assert record["step_order"] == 1

    def test_kernel_exception_attributes_extracted(self, log_stream):
        request_id = str(uuid4())
        try:
            raise RequestAlreadyTerminalError(request_id, "Approved")
        except RequestAlreadyTerminalError:
            get_logger("test").error("workflow_refused", exc_info=True)

        [record] = _records(log_stream)
        assert record["exc_type"] == "RequestAlreadyTerminalError"
        assert record["exc_code"] == "REQUEST_ALREADY_TERMINAL"
        assert record["exc_request_id"] == request_id
        assert record["exc_status"] == "Approved"
        assert "traceback" in record


# ---------------------------------------------------------------------------
# configure_logging
# ---------------------------------------------------------------------------


class TestConfigureLogging:

    def test_second_call_is_ignored(self):
        first = logging.StreamHandler(StringIO())
        configure_logging(handler=first)
        configure_logging(handler=logging.StreamHandler(StringIO()))

        assert logging.getLogger("trip_kernel").handlers == [first]

    def test_default_level_drops_debug(self):
        stream = StringIO()
        configure_logging(handler=logging.StreamHandler(stream))
        logger = get_logger("services.workflow_engine")
        logger.debug("hidden")
        logger.info("shown")

        assert [r["message"] for r in _records(stream)] == ["shown"]

    def test_records_do_not_reach_root_logger(self):
        configure_logging(handler=logging.StreamHandler(StringIO()))

        assert logging.getLogger("trip_kernel").propagate is False
        assert get_logger("a.b").name == "trip_kernel.a.b"

    def test_formatter_is_installed_on_handler(self):
        handler = logging.StreamHandler(StringIO())
        configure_logging(handler=handler)

        assert isinstance(handler.formatter, StructuredFormatter)
