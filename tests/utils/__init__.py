"""
Test utilities and helpers for Safeguard testing.
"""

from .assertions import (
    assert_failure_response,
    assert_pagination_response,
    assert_successful_response,
)
from .helpers import REMOTE_URL, credential_payload, make_settings, structured_events

__all__ = [
    # Assertions
    "assert_failure_response",
    "assert_pagination_response",
    "assert_successful_response",
    # Helpers
    "REMOTE_URL",
    "credential_payload",
    "make_settings",
    "structured_events",
]
