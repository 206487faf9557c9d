"""
Operation tracking decorator.

One decorator handles start/completion/failure events, timing, argument
redaction and result summaries for every repository and backend operation.
"""

import asyncio
import functools
import logging
import random
import time
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union, cast

from .context import get_correlation_id
from .structured import log_event

F = TypeVar("F", bound=Callable[..., Any])

logger = logging.getLogger(__name__)


class LogConfig:
    """Global configuration for operation tracking."""

    SAMPLE_RATES = {
        "high_frequency": 0.1,
        "medium_frequency": 0.5,
        "low_frequency": 1.0,
    }

    # Never logged verbatim
    SENSITIVE_KEYS = {"password", "token", "secret", "key", "api_key", "auth", "dsn"}
    LARGE_CONTENT_KEYS = {"notes", "data", "partial"}
    MAX_ARG_LENGTH = 100

    CRITICAL_OPS = {"delete", "update", "create", "initialize", "migrate"}


def track(
    operation: Optional[str] = None,
    level: int = logging.INFO,
    frequency: str = "low_frequency",
    include_args: Union[bool, List[str]] = True,
    include_result: bool = True,
    track_performance: bool = True,
    emit_events: bool = True,
):
    """
    Decorator that logs an operation's lifecycle.

    Args:
        operation: Operation name (derived from the function if None)
        level: Log level for start/completion events
        frequency: Sampling category; critical operations are always logged
        include_args: True for all kwargs, a list for specific ones, False for none
        include_result: Whether to log return value shape info
        track_performance: Whether to record duration_ms
        emit_events: False to stay silent

    Examples:
        @track(operation="credential_create", include_args=["service"])
        @track(frequency="high_frequency")
    """

    def decorator(func: F) -> F:
        op_name = operation or _get_operation_name(func)

        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs):
            if not _should_log(op_name, frequency):
                return await func(*args, **kwargs)

            tracker = OperationTracker(
                operation=op_name,
                level=level,
                include_args=include_args,
                include_result=include_result,
                track_performance=track_performance,
                emit_events=emit_events,
                args=args,
                kwargs=kwargs,
            )

            tracker.on_enter()
            try:
                result = await func(*args, **kwargs)
                tracker.set_result(result)
                tracker.on_exit(None, None)
                return result
            except Exception as e:
                tracker.on_exit(type(e), e)
                raise

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs):
            if not _should_log(op_name, frequency):
                return func(*args, **kwargs)

            tracker = OperationTracker(
                operation=op_name,
                level=level,
                include_args=include_args,
                include_result=include_result,
                track_performance=track_performance,
                emit_events=emit_events,
                args=args,
                kwargs=kwargs,
            )

            tracker.on_enter()
            try:
                result = func(*args, **kwargs)
                tracker.set_result(result)
                tracker.on_exit(None, None)
                return result
            except Exception as e:
                tracker.on_exit(type(e), e)
                raise

        if asyncio.iscoroutinefunction(func):
            return cast(F, async_wrapper)
        return cast(F, sync_wrapper)

    return decorator


class OperationTracker:
    """Handles all logging for one tracked operation."""

    def __init__(
        self,
        operation: str,
        level: int,
        include_args: Union[bool, List[str]],
        include_result: bool,
        track_performance: bool,
        emit_events: bool,
        args: tuple,
        kwargs: dict,
    ):
        self.operation = operation
        self.level = level
        self.include_args = include_args
        self.include_result = include_result
        self.track_performance = track_performance
        self.emit_events = emit_events
        self.args = args
        self.kwargs = kwargs

        self.start_time: Optional[float] = None
        self.correlation_id: Optional[str] = None
        self.result: Any = None
        self.metrics: Dict[str, Any] = {}

    def on_enter(self) -> None:
        if self.track_performance:
            self.start_time = time.perf_counter()

        self.correlation_id = get_correlation_id()

        if self.emit_events and self.level <= logging.INFO:
            log_event("operation_started", self._build_start_context(), self.level)

    def on_exit(self, exc_type: Optional[type], exc_val: Optional[BaseException]) -> None:
        if self.track_performance and self.start_time:
            self.metrics["duration_ms"] = int(
                (time.perf_counter() - self.start_time) * 1000
            )

        if not self.emit_events:
            return

        context = self._build_exit_context(exc_type, exc_val)
        if exc_type is None:
            log_event("operation_completed", context, self.level)
        else:
            log_event("operation_failed", context, logging.ERROR)

    def set_result(self, result: Any) -> None:
        self.result = result

    def _build_start_context(self) -> Dict[str, Any]:
        context = {
            "operation": self.operation,
            "correlation_id": self.correlation_id,
        }
        if self.include_args:
            context.update(
                _extract_safe_args(self.args, self.kwargs, self.include_args)
            )
        return context

    def _build_exit_context(
        self, exc_type: Optional[type], exc_val: Optional[BaseException]
    ) -> Dict[str, Any]:
        context = {
            "operation": self.operation,
            "correlation_id": self.correlation_id,
            "success": exc_type is None,
            **self.metrics,
        }

        if self.include_result and exc_type is None and self.result is not None:
            context.update(_extract_result_info(self.result))

        if exc_type is not None:
            context.update(
                {
                    "error_type": exc_type.__name__,
                    "error_message": str(exc_val) if exc_val else "",
                }
            )

        return context


def _get_operation_name(func: Callable) -> str:
    if hasattr(func, "__qualname__"):
        return func.__qualname__.replace(".", "_").lower()
    return func.__name__.lower()


def _should_log(operation: str, frequency: str) -> bool:
    """Sample by frequency; critical operations are always logged."""
    if any(critical in operation.lower() for critical in LogConfig.CRITICAL_OPS):
        return True
    sample_rate = LogConfig.SAMPLE_RATES.get(frequency, 1.0)
    return random.random() < sample_rate


def _extract_safe_args(
    args: tuple, kwargs: dict, include_spec: Union[bool, List[str]]
) -> Dict[str, Any]:
    safe_args: Dict[str, Any] = {}

    if include_spec is True:
        include_keys = set(kwargs.keys())
    elif isinstance(include_spec, list):
        include_keys = set(include_spec)
    else:
        return safe_args

    for key, value in kwargs.items():
        if key in include_keys:
            safe_args[f"arg_{key}"] = _sanitize_value(key, value)

    return safe_args


def _sanitize_value(key: str, value: Any) -> Any:
    """Redact secrets, summarise large content, stringify unknown types."""
    if any(sensitive in key.lower() for sensitive in LogConfig.SENSITIVE_KEYS):
        return "[REDACTED]"

    if key.lower() in LogConfig.LARGE_CONTENT_KEYS:
        if isinstance(value, dict):
            return sorted(value.keys())
        if isinstance(value, str) and len(value) > LogConfig.MAX_ARG_LENGTH:
            return f"<{len(value)} chars>"

    if isinstance(value, (str, int, float, bool, type(None))):
        if isinstance(value, str) and len(value) > LogConfig.MAX_ARG_LENGTH:
            return f"{value[:LogConfig.MAX_ARG_LENGTH]}..."
        return value
    return f"<{type(value).__name__}>"


def _extract_result_info(result: Any) -> Dict[str, Any]:
    result_info: Dict[str, Any] = {"result_type": type(result).__name__}

    if isinstance(result, (list, tuple)):
        result_info["result_length"] = len(result)
    elif isinstance(result, dict):
        result_info["result_keys_count"] = len(result.keys())
    elif isinstance(result, bool):
        result_info["result_value"] = result
    elif hasattr(result, "is_success"):
        result_info["operation_success"] = result.is_success()

    return result_info
