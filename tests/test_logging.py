"""Tests for structured logging: JSON records, workflow context, setup."""

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from io import StringIO
from uuid import uuid4

import pytest

from approval_kernel.domain.approval import RequestActivity, RequestStatus
from approval_kernel.exceptions import InvalidTransitionError
from approval_kernel.logging_config import (
    CONTEXT_FIELDS,
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)
from approval_services.workflow_engine import WorkflowEngine

REQUESTER = 1


@pytest.fixture(autouse=True)
def _fresh_logging():
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


@pytest.fixture
def json_lines():
    """Configure logging into a buffer; returns a reader of parsed records."""
    stream = StringIO()
    configure_logging(stream=stream, level=logging.DEBUG)

    def _read() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    return _read


class _Priority(Enum):
    URGENT = "urgent"


class TestRecordFormat:
    def test_envelope(self, json_lines):
        get_logger("services.workflow_engine").info("workflow_transition")

        (record,) = json_lines()
        assert record["level"] == "INFO"
        assert record["message"] == "workflow_transition"
        assert record["logger"] == "approval_kernel.services.workflow_engine"
        assert datetime.fromisoformat(record["ts"]).tzinfo is not None

    def test_extra_values_serialized(self, json_lines):
        notification_id = uuid4()
        due = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)
        get_logger("test").info(
            "notification_rescheduled",
            extra={
                "notification_id": notification_id,
                "priority": _Priority.URGENT,
                "to_status": RequestStatus.FINAL_APPROVE,
                "next_attempt_at": due,
                "fee": Decimal("12.50"),
            },
        )

        (record,) = json_lines()
        assert record["notification_id"] == str(notification_id)
        assert record["priority"] == "urgent"
        assert record["to_status"] == "FinalApprove"
        assert record["next_attempt_at"] == "2024-03-01T09:30:00+00:00"
        assert record["fee"] == "12.50"

    def test_kernel_error_details(self, json_lines):
        try:
            raise InvalidTransitionError("Complete", "Approve", "status is terminal")
        except InvalidTransitionError:
            get_logger("test").warning("workflow_transition_rejected", exc_info=True)

        (record,) = json_lines()
        error = record["error"]
        assert error["type"] == "InvalidTransitionError"
        assert error["code"] == "INVALID_TRANSITION"
        assert error["fields"]["current_status"] == "Complete"
        assert error["fields"]["activity"] == "Approve"
        assert "Traceback" in error["traceback"]

    def test_plain_error_has_no_code(self, json_lines):
        try:
            raise ConnectionRefusedError("smtp relay down")
        except ConnectionRefusedError:
            get_logger("test").error("notification_failed", exc_info=True)

        (record,) = json_lines()
        assert record["error"]["type"] == "ConnectionRefusedError"
        assert record["error"]["message"] == "smtp relay down"
        assert "code" not in record["error"]

    def test_below_level_dropped(self):
        stream = StringIO()
        configure_logging(stream=stream)
        logger = get_logger("test")
        logger.debug("transaction_started")
        logger.info("request_created")

        lines = stream.getvalue().splitlines()
        assert [json.loads(line)["message"] for line in lines] == ["request_created"]


class TestLogContext:
    def test_values_stored_as_strings(self):
        LogContext.set(request_no="REQ-00AB12CD", actor_id=7)
        assert LogContext.get_all() == {"request_no": "REQ-00AB12CD", "actor_id": "7"}

    def test_unknown_field_rejected(self):
        with pytest.raises(TypeError):
            LogContext.set(ward="B")
        with pytest.raises(TypeError):
            with LogContext.bind(ward="B"):
                pass

    def test_bind_restores_fields_set_inside(self):
        LogContext.set(correlation_id="batch-1")
        with LogContext.bind(request_id="r-1", activity="Approve"):
            LogContext.set(workflow_type="menu_change")
            assert LogContext.get_all()["workflow_type"] == "menu_change"
        assert LogContext.get_all() == {"correlation_id": "batch-1"}

    def test_bind_restores_after_error(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(request_id="r-2"):
                raise RuntimeError("boom")
        assert LogContext.get_all() == {}

    def test_context_on_records(self, json_lines):
        with LogContext.bind(request_no="REQ-1", workflow_type="menu_change"):
            get_logger("test").info("inside")
        get_logger("test").info("outside")

        inside, outside = json_lines()
        assert inside["request_no"] == "REQ-1"
        assert inside["workflow_type"] == "menu_change"
        assert not set(CONTEXT_FIELDS) & set(outside)


class TestWorkflowRecords:
    def test_submit_records_carry_request(self, workflow_engine, json_lines):
        request = workflow_engine.create_request("plain", "menu", "MENU-4", REQUESTER)
        workflow_engine.submit(request.request_id, RequestActivity.COMPLETE, REQUESTER)

        (trace,) = [r for r in json_lines() if r["message"] == "workflow_transition"]
        assert trace["request_no"] == request.request_no
        assert trace["workflow_type"] == "plain"
        assert trace["actor_id"] == str(REQUESTER)
        assert trace["activity"] == "Complete"
        assert LogContext.get_all() == {}

    def test_rejected_submit_records_carry_request(self, workflow_engine, json_lines):
        request = workflow_engine.create_request("plain", "menu", "MENU-5", REQUESTER)
        with pytest.raises(InvalidTransitionError):
            workflow_engine.submit(request.request_id, RequestActivity.APPROVE, 7, "approver")

        (trace,) = [
            r for r in json_lines() if r["message"] == "workflow_transition_rejected"
        ]
        assert trace["request_no"] == request.request_no
        assert trace["error_code"] == "INVALID_TRANSITION"

    def test_delivery_records_carry_submit_context(
        self,
        session_factory,
        policy_store,
        deterministic_clock,
        make_dispatcher,
        recording_mailer,
        json_lines,
    ):
        dispatcher = make_dispatcher(recording_mailer)
        engine = WorkflowEngine(
            session_factory, policy_store, dispatcher=dispatcher, clock=deterministic_clock
        )
        request = engine.create_request("notify_all", "doctor", "DR-8", REQUESTER)
        engine.submit(request.request_id, RequestActivity.COMPLETE, REQUESTER)
        assert dispatcher.wait_idle(timeout=10)

        (sent,) = [r for r in json_lines() if r["message"] == "notification_sent"]
        assert sent["request_no"] == request.request_no
        assert sent["workflow_type"] == "notify_all"
        assert sent["email_format"] == "NewRequest"


class TestConfigureLogging:
    def test_only_first_call_installs(self):
        first, second = logging.NullHandler(), logging.NullHandler()
        assert configure_logging(handler=first) is True
        assert configure_logging(handler=second) is False

        root = logging.getLogger("approval_kernel")
        assert first in root.handlers
        assert second not in root.handlers
        assert root.propagate is False

    def test_level_name(self):
        configure_logging(handler=logging.NullHandler(), level="debug")
        assert logging.getLogger("approval_kernel").level == logging.DEBUG

    def test_reset_allows_reconfigure(self):
        first = logging.NullHandler()
        configure_logging(handler=first)
        reset_logging()
        second = logging.NullHandler()
        assert configure_logging(handler=second) is True
        assert logging.getLogger("approval_kernel").handlers == [second]
