"""Unit tests for task queue logging and observability.

This module tests the logging infrastructure, store timing metrics,
and lifecycle observability hooks.
"""

import json
import logging

import pytest

from taskqueue.errors import ErrorCode, PreconditionError
from taskqueue.taskqueue_logging import (
    LOGGER_NAME,
    JsonFormatter,
    ObservabilityHooks,
    PerformanceMonitor,
    log_error_with_context,
    log_operation,
    log_performance,
    observability_hooks,
    performance_monitor,
    setup_logging,
)


@pytest.fixture
def restore_logger():
    logger = logging.getLogger(LOGGER_NAME)
    level = logger.level
    yield logger
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.setLevel(level)


class TestJsonFormatter:
    """Test cases for JsonFormatter."""

    def _record(self, level=logging.INFO, exc_info=None):
        return logging.getLogger("test").makeRecord("test", level, __file__, 1, "Test message", (), exc_info)

    def test_json_formatter_basic(self):
        """Test basic JSON formatting."""
        data = json.loads(JsonFormatter().format(self._record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert {"timestamp", "module", "function", "line"} <= set(data)

    def test_json_formatter_with_exception(self):
        try:
            raise ValueError("Test exception")
        except ValueError as e:
            record = self._record(logging.ERROR, (type(e), e, e.__traceback__))

        data = json.loads(JsonFormatter().format(record))

        assert data["level"] == "ERROR"
        assert "ValueError" in data["exception"]

    def test_json_formatter_with_extra_fields(self):
        record = self._record()
        record.extra_fields = {"project_id": "proj-1", "path": object()}

        data = json.loads(JsonFormatter().format(record))

        assert data["project_id"] == "proj-1"
        assert isinstance(data["path"], str)


class TestPerformanceMonitor:
    """Test cases for PerformanceMonitor."""

    def test_record_metric(self):
        monitor = PerformanceMonitor()
        monitor.record_metric("store_save_duration", 0.5, {"status": "success"})

        sample = monitor.metrics["store_save_duration"][0]
        assert sample["value"] == 0.5
        assert sample["tags"] == {"status": "success"}
        assert "timestamp" in sample

    def test_samples_are_capped(self):
        """Test that only the most recent samples are kept."""
        monitor = PerformanceMonitor(max_samples=3)
        for value in range(5):
            monitor.record_metric("m", value)

        assert [s["value"] for s in monitor.metrics["m"]] == [2, 3, 4]

    def test_reset(self):
        monitor = PerformanceMonitor()
        monitor.record_metric("m", 1)
        monitor.reset()

        assert monitor.metrics == {}


class TestLogPerformance:
    """Test cases for log_performance decorator."""

    def test_success(self):
        @log_performance("sample")
        def work():
            return "result"

        assert work() == "result"
        sample = performance_monitor.metrics["sample_duration"][0]
        assert sample["value"] >= 0
        assert sample["tags"]["status"] == "success"

    def test_failure_is_recorded_and_reraised(self):
        @log_performance("sample")
        def work():
            raise OSError("disk full")

        with pytest.raises(OSError):
            work()

        tags = performance_monitor.metrics["sample_duration"][0]["tags"]
        assert tags == {"status": "error", "error_type": "OSError"}


class TestLogOperation:
    """Test cases for log_operation context manager."""

    def test_success(self, caplog):
        with caplog.at_level(logging.DEBUG, logger=LOGGER_NAME):
            with log_operation("read_project", project_id="proj-1"):
                pass

        assert any("Completed operation: read_project" in r.getMessage() for r in caplog.records)

    def test_rule_violation_is_info(self, caplog):
        with caplog.at_level(logging.DEBUG, logger=LOGGER_NAME):
            with pytest.raises(PreconditionError):
                with log_operation("approve_task"):
                    raise PreconditionError(ErrorCode.TASK_NOT_DONE, "Task task-1 is not done yet")

        rejected = [r for r in caplog.records if "Rejected operation" in r.getMessage()]
        assert rejected[0].levelno == logging.INFO
        assert rejected[0].extra_fields["error_code"] == "ERR_3002"
        assert not any(r.levelno >= logging.ERROR for r in caplog.records)

    def test_unexpected_failure_is_error(self, caplog):
        with caplog.at_level(logging.DEBUG, logger=LOGGER_NAME):
            with pytest.raises(OSError):
                with log_operation("update_task"):
                    raise OSError("disk full")

        failed = [r for r in caplog.records if "Failed operation" in r.getMessage()]
        assert failed[0].levelno == logging.ERROR
        assert failed[0].exc_info is not None


class TestObservabilityHooks:
    """Test cases for ObservabilityHooks."""

    def test_register_and_trigger(self):
        hooks = ObservabilityHooks()
        received = []
        hooks.register_hook("task_approved", lambda **data: received.append(data))

        hooks.trigger_hooks("task_approved", task_id="task-1")

        assert received == [{"task_id": "task-1"}]

    def test_unregister(self):
        hooks = ObservabilityHooks()
        received = []

        def callback(**data):
            received.append(data)

        hooks.register_hook("task_deleted", callback)
        hooks.unregister_hook("task_deleted", callback)
        hooks.trigger_hooks("task_deleted", task_id="task-1")

        assert received == []

    def test_log_event_passes_project_and_timestamp(self):
        hooks = ObservabilityHooks()
        received = []
        hooks.register_hook("project_created", lambda **data: received.append(data))

        hooks.log_event("project_created", project_id="proj-1", task_ids=["task-1"])

        assert received[0]["project_id"] == "proj-1"
        assert received[0]["task_ids"] == ["task-1"]
        assert "timestamp" in received[0]
        assert "event_type" not in received[0]

    def test_hook_failure_is_logged(self, caplog):
        hooks = ObservabilityHooks()

        def failing_callback(**data):
            raise ValueError("Hook failed")

        hooks.register_hook("project_deleted", failing_callback)

        with caplog.at_level(logging.ERROR, logger=LOGGER_NAME):
            hooks.trigger_hooks("project_deleted", project_id="proj-1")

        assert "Hook failed" in caplog.text


class TestLoggingIntegration:
    """Integration tests for logging functionality."""

    def test_log_error_with_context(self, caplog):
        with caplog.at_level(logging.ERROR, logger=LOGGER_NAME):
            log_error_with_context(OSError("read-only"), {"operation": "update_task"}, project_id="proj-1")

        record = caplog.records[-1]
        assert "Error in update_task" in record.getMessage()
        assert record.extra_fields["error_type"] == "OSError"
        assert record.extra_fields["project_id"] == "proj-1"

    def test_setup_logging_writes_json_file(self, tmp_path, restore_logger):
        log_file = tmp_path / "logs" / "taskqueue.log"

        setup_logging("debug", log_file)
        observability_hooks.log_event("project_created", project_id="proj-1")
        performance_monitor.record_metric("store_load_duration", 0.01)
        for handler in restore_logger.handlers:
            handler.flush()

        lines = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
        assert any(line.get("event_type") == "project_created" for line in lines)
        assert any("store_load_duration" in line["message"] for line in lines)

    def test_setup_logging_replaces_handlers(self, restore_logger):
        setup_logging(logging.INFO)
        setup_logging(logging.WARNING)

        assert len(restore_logger.handlers) == 1
        assert restore_logger.level == logging.WARNING
