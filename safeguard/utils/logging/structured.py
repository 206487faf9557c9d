"""
Structured logging utilities for event-based logging.

Every log entry is an event name plus a dictionary of structured data. The
data rides on the LogRecord as ``record.structured_data`` so handlers and
tests can inspect it without parsing strings.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class StructuredLogger:
    """
    Creates consistent, searchable log events.

    Provides methods for logging structured events with consistent field names
    and automatic correlation/operation context injection.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def event(
        self,
        event_name: str,
        data: Optional[Dict[str, Any]] = None,
        level: int = logging.INFO,
    ):
        """
        Log a structured event with optional data.

        Args:
            event_name: Name of the event (e.g., 'credential_created')
            data: Dictionary of structured data to include
            level: Log level (defaults to INFO)
        """
        from .context import get_correlation_id, get_operation_context

        if not self.logger.isEnabledFor(level):
            return

        structured_data = {
            "event": event_name,
            "correlation_id": get_correlation_id(),
        }

        operation_context = get_operation_context()
        if operation_context:
            structured_data.update(operation_context)

        if data:
            structured_data.update(data)

        record = self.logger.makeRecord(
            self.logger.name, level, "(structured)", 0, event_name, (), None
        )
        record.structured_data = structured_data

        self.logger.handle(record)


_global_logger: Optional[StructuredLogger] = None


def get_structured_logger(name: str = "safeguard") -> StructuredLogger:
    """Get or create the structured logger instance."""
    global _global_logger
    if _global_logger is None:
        _global_logger = StructuredLogger(name)
    return _global_logger


def log_event(
    event_name: str, data: Optional[Dict[str, Any]] = None, level: int = logging.INFO
):
    """
    Convenience function for logging structured events.

    Example::

        log_event("credential_created", {
            "credential_id": "1f0c...",
            "backend": "local",
        })
    """
    structured_logger = get_structured_logger()
    structured_logger.event(event_name, data, level)


def create_development_formatter() -> logging.Formatter:
    """
    Create a human-readable formatter for development environments.

    Structured events get a compact one-line rendering keyed on the event
    name; plain log records fall back to the message text.
    """

    class DevelopmentFormatter(logging.Formatter):
        def format(self, record: logging.LogRecord) -> str:
            timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[
                :-3
            ]

            data: Optional[dict] = getattr(record, "structured_data", None)

            if not data:
                return f"{timestamp} | {record.levelname:5} | {record.getMessage()}"

            event = data.get("event", "")
            operation = data.get("operation", "")

            if event == "operation_started":
                message_content = f"🚀 {operation or 'operation'} started"
            elif event == "operation_completed":
                message_content = self._format_operation_success(data, operation)
            elif event == "operation_failed":
                message_content = self._format_operation_error(data, operation)
            elif event in ("query_executed", "slow_query_detected"):
                message_content = self._format_query(data, event)
            elif event in (
                "retry_attempt_failed",
                "operation_recovered",
                "operation_failed_terminal",
            ):
                message_content = self._format_retry(data, event)
            else:
                message_content = self._format_generic_event(data, event)

            return f"{timestamp} | {record.levelname:5} | {message_content}"

        def _format_duration(self, duration_ms: float) -> str:
            if duration_ms >= 1000:
                return f"{duration_ms / 1000:.1f}s"
            return f"{int(duration_ms)}ms"

        def _format_operation_success(self, data: dict, operation: str) -> str:
            duration_ms = data.get("duration_ms", 0)
            if duration_ms < 50:
                duration_emoji = "⚡"
            elif duration_ms > 2000:
                duration_emoji = "🐌"
            else:
                duration_emoji = "⏱️"
            return f"{duration_emoji} {self._format_duration(duration_ms)} {operation}"

        def _format_operation_error(self, data: dict, operation: str) -> str:
            error_type = data.get("error_type", "Error")
            error_message = data.get("error_message", "")
            if len(error_message) > 60:
                error_message = error_message[:57] + "..."
            return f"❌ {operation} failed ({error_type}: {error_message})"

        def _format_query(self, data: dict, event: str) -> str:
            emoji = "🐌" if event == "slow_query_detected" else "🗄️"
            duration = self._format_duration(data.get("duration_ms", 0))
            statement = data.get("statement", "")
            return f"{emoji} {duration} {statement}"

        def _format_retry(self, data: dict, event: str) -> str:
            operation = data.get("operation", "operation")
            attempt = data.get("attempt", "?")
            kind = data.get("error_kind", "")
            if event == "retry_attempt_failed":
                delay = data.get("delay_ms", 0)
                return f"🔁 {operation} attempt {attempt} failed ({kind}), retrying in {delay}ms"
            if event == "operation_recovered":
                failed = data.get("failed_attempts", 0)
                return f"✅ {operation} recovered after {failed} failed attempts"
            return f"❌ {operation} gave up after {attempt} attempts ({kind})"

        def _format_generic_event(self, data: dict, event: str) -> str:
            if not event:
                return "📝 log_event"
            credential_id = data.get("credential_id")
            backend = data.get("backend")
            details = [p for p in (credential_id, backend) if p]
            if details:
                return f"📝 {event} ({', '.join(str(d) for d in details)})"
            return f"📝 {event}"

    return DevelopmentFormatter()
