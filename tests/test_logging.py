import asyncio
import logging

import pytest

from safeguard.config import configure_logging
from safeguard.utils.logging import (
    get_correlation_id,
    log_event,
    operation_context,
    set_correlation_id,
    track,
)
from safeguard.utils.logging.structured import create_development_formatter


def _events(caplog, name=None):
    return [
        record.structured_data
        for record in caplog.records
        if hasattr(record, "structured_data")
        and (name is None or record.structured_data.get("event") == name)
    ]


@pytest.fixture
def debug_logs(caplog):
    caplog.set_level(logging.DEBUG, logger="safeguard")
    return caplog


class TestLogEvent:
    def test_structured_data_rides_on_record(self, debug_logs):
        set_correlation_id("req-1")
        log_event("credential_created", {"credential_id": "abc", "backend": "local"})

        event = _events(debug_logs, "credential_created")[0]
        assert event["credential_id"] == "abc"
        assert event["correlation_id"] == "req-1"

    def test_operation_context_is_merged(self, debug_logs):
        with operation_context(backend="remote"):
            log_event("inside")
        log_event("outside")

        assert _events(debug_logs, "inside")[0]["backend"] == "remote"
        assert "backend" not in _events(debug_logs, "outside")[0]

    def test_disabled_level_is_skipped(self, caplog):
        caplog.set_level(logging.INFO, logger="safeguard")
        log_event("query_executed", {"statement": "x"}, level=logging.DEBUG)
        assert _events(caplog, "query_executed") == []


class TestCorrelationId:
    @pytest.mark.asyncio
    async def test_ids_set_in_a_task_stay_in_that_task(self):
        parent = get_correlation_id()

        async def worker(correlation_id):
            set_correlation_id(correlation_id)
            await asyncio.sleep(0)
            return get_correlation_id()

        results = await asyncio.gather(worker("req-a"), worker("req-b"))

        assert results == ["req-a", "req-b"]
        assert get_correlation_id() == parent


class TestTrack:
    @pytest.mark.asyncio
    async def test_secret_arguments_are_redacted(self, debug_logs):
        @track(operation="credential_create", include_args=True)
        async def create(data, secret, service):
            return {"id": "1"}

        await create(
            data={"service": "Gmail", "secret": "hunter2"}, secret="hunter2", service="Gmail"
        )

        started = _events(debug_logs, "operation_started")[0]
        assert started["arg_secret"] == "[REDACTED]"
        assert started["arg_data"] == ["secret", "service"]
        assert started["arg_service"] == "Gmail"
        assert "hunter2" not in debug_logs.text

    @pytest.mark.asyncio
    async def test_completion_carries_duration_and_result_shape(self, debug_logs):
        @track(operation="credential_delete", include_args=["credential_id"])
        async def delete(credential_id):
            return [1, 2]

        await delete(credential_id="abc")

        completed = _events(debug_logs, "operation_completed")[0]
        assert completed["success"] is True
        assert completed["duration_ms"] >= 0
        assert completed["result_length"] == 2

    @pytest.mark.asyncio
    async def test_failure_is_logged_and_reraised(self, debug_logs):
        @track(operation="credential_update")
        async def update():
            raise ValueError("nope")

        with pytest.raises(ValueError):
            await update()

        failed = _events(debug_logs, "operation_failed")[0]
        assert failed["error_type"] == "ValueError"
        assert failed["success"] is False

    def test_sync_functions_are_tracked(self, debug_logs):
        @track(operation="credential_create_sync")
        def build():
            return True

        assert build() is True
        assert _events(debug_logs, "operation_completed")[0]["result_value"] is True

    def test_long_notes_are_summarized(self, debug_logs):
        @track(operation="credential_update_notes")
        def update(notes):
            return None

        update(notes="n" * 500)
        assert _events(debug_logs, "operation_started")[0]["arg_notes"] == "<500 chars>"


class TestDevelopmentFormatter:
    def _format(self, data, level=logging.INFO):
        record = logging.LogRecord("safeguard", level, "(structured)", 0, data["event"], (), None)
        record.structured_data = data
        return create_development_formatter().format(record)

    def test_retry_line(self):
        line = self._format(
            {"event": "retry_attempt_failed", "operation": "credential_list", "attempt": 1, "delay_ms": 200, "error_kind": "network"}
        )
        assert "credential_list attempt 1 failed (network), retrying in 200ms" in line

    def test_generic_event_shows_id_and_backend(self):
        line = self._format({"event": "credential_deleted", "credential_id": "abc", "backend": "local"})
        assert "credential_deleted (abc, local)" in line


def test_configure_logging_installs_single_handler():
    app_logger = logging.getLogger("safeguard")
    saved = (app_logger.handlers[:], app_logger.level, app_logger.propagate)
    try:
        configure_logging("DEBUG")
        configure_logging("WARNING")

        assert len(app_logger.handlers) == 1
        assert app_logger.level == logging.WARNING
        assert app_logger.propagate is False
    finally:
        app_logger.handlers[:] = saved[0]
        app_logger.setLevel(saved[1])
        app_logger.propagate = saved[2]
