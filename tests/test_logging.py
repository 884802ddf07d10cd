"""Tests for JSON log lines and transition-scoped log context."""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest

from approval_kernel.domain.workflow import DocumentStatus
from approval_kernel.exceptions import WorkflowInUseError
from approval_kernel.logging_config import (
    LogContext,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture
def log_lines():
    """Reconfigure the kernel logger onto a buffer; returns a parser for its lines."""
    stream = StringIO()
    reset_logging()
    configure_logging(handler=logging.StreamHandler(stream))
    yield lambda: [json.loads(line) for line in stream.getvalue().splitlines() if line]
    reset_logging()
    configure_logging(level=logging.DEBUG)


class TestJsonLines:
    def test_base_fields(self, log_lines):
        get_logger("services.instances").info("instance_opened")

        [record] = log_lines()
        assert record["message"] == "instance_opened"
        assert record["level"] == "INFO"
        assert record["logger"] == "approval_kernel.services.instances"
        assert "ts" in record

    def test_extra_values_encoded(self, log_lines):
        stage_id = uuid4()
        get_logger("test").info(
            "stage_advanced",
            extra={
                "stage_id": stage_id,
                "to_status": DocumentStatus.PENDING,
                "roles": frozenset({"manager", "director"}),
                "seq": 3,
            },
        )

        [record] = log_lines()
        assert record["stage_id"] == str(stage_id)
        assert record["to_status"] == "pending"
        assert record["roles"] == ["director", "manager"]
        assert record["seq"] == 3

    def test_kernel_error_fields(self, log_lines):
        try:
            raise WorkflowInUseError("wf-1", "delete_stage", 2)
        except WorkflowInUseError:
            get_logger("test").error("definition_error", exc_info=True)

        [record] = log_lines()
        assert record["exc_type"] == "WorkflowInUseError"
        assert record["exc_code"] == "WORKFLOW_IN_USE"
        assert record["exc_workflow_id"] == "wf-1"
        assert record["exc_instance_count"] == 2
        assert "traceback" in record

    def test_info_level_drops_debug(self, log_lines):
        logger = get_logger("test")
        logger.debug("hidden")
        logger.warning("shown")

        assert [r["message"] for r in log_lines()] == ["shown"]

    def test_configure_is_idempotent(self, log_lines):
        configure_logging(handler=logging.StreamHandler(StringIO()))

        assert len(logging.getLogger("approval_kernel").handlers) == 1


class TestLogContext:
    def test_bound_fields_on_every_record(self, log_lines):
        with LogContext.bind(entity_id="invoice:42", actor_id=uuid4()):
            get_logger("test").info("inside")
        get_logger("test").info("outside")

        inside, outside = log_lines()
        assert inside["entity_id"] == "invoice:42"
        assert "actor_id" in inside
        assert "entity_id" not in outside

    def test_nested_bind_restores_outer(self):
        with LogContext.bind(workflow_id="outer"):
            with LogContext.bind(workflow_id="inner", instance_id="i-1"):
                assert LogContext.get_all() == {"workflow_id": "inner", "instance_id": "i-1"}
            assert LogContext.get_all() == {"workflow_id": "outer"}
        assert LogContext.get_all() == {}

    def test_restored_after_exception(self):
        with pytest.raises(RuntimeError):
            with LogContext.bind(instance_id="i-1"):
                raise RuntimeError("boom")
        assert LogContext.get_all() == {}

    def test_none_and_unknown_fields_ignored(self):
        with LogContext.bind(workflow_id="w", instance_id=None, correlation_id="x"):
            assert LogContext.get_all() == {"workflow_id": "w"}

    def test_clear(self):
        with LogContext.bind(actor_id="a"):
            LogContext.clear()
            assert LogContext.get_all() == {}
