"""
Logging infrastructure for Safeguard.

Structured events through ``log_event`` and a single ``track`` decorator for
operation lifecycle logging.
"""

from .context import get_correlation_id, operation_context, set_correlation_id
from .smart_logger import track
from .structured import StructuredLogger, log_event

__all__ = [
    "track",
    "log_event",
    "get_correlation_id",
    "set_correlation_id",
    "operation_context",
    "StructuredLogger",
]
