"""
Retry with exponential backoff for storage operations.

Each attempt moves from pending to success or failed. A failed attempt is
classified; retryable kinds wait ``base_delay * 2**(attempt - 1)`` seconds
(capped at ``max_delay``) and try again until ``max_attempts`` is reached.
Non-retryable kinds propagate immediately.
"""

import asyncio
import functools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, FrozenSet, Optional, TypeVar

from ..utils.logging import log_event
from .errors import CredentialStoreError, ErrorKind, normalize_error

T = TypeVar("T")

DEFAULT_RETRYABLE_KINDS = frozenset(
    {ErrorKind.NETWORK, ErrorKind.DATABASE, ErrorKind.UNKNOWN}
)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: Delay before the second attempt, in seconds
        max_delay: Ceiling for any single delay, in seconds
        retryable_kinds: Kinds eligible for retry; database errors must also
            be transient
    """

    max_attempts: int = 3
    base_delay: float = 0.2
    max_delay: float = 5.0
    retryable_kinds: FrozenSet[ErrorKind] = field(
        default_factory=lambda: DEFAULT_RETRYABLE_KINDS
    )

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=max(1, settings.retry_max_attempts),
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff delay after the given failed attempt (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    def should_retry(self, error: CredentialStoreError) -> bool:
        if error.kind not in self.retryable_kinds:
            return False
        if error.kind is ErrorKind.DATABASE:
            return bool(getattr(error, "transient", False))
        return True


NO_RETRY = RetryPolicy(max_attempts=1)


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    operation_name: str,
    context: Optional[dict] = None,
) -> T:
    """
    Run ``operation`` under ``policy``.

    Returns:
        The operation's result

    Raises:
        CredentialStoreError: The classified error of the last attempt
    """
    context = context or {}
    started = time.perf_counter()
    attempt = 0

    while True:
        attempt += 1
        try:
            result = await operation()
        except Exception as e:
            error = normalize_error(e)
            retry = attempt < policy.max_attempts and policy.should_retry(error)

            if not retry:
                log_event(
                    "operation_failed_terminal",
                    {
                        "operation": operation_name,
                        "attempt": attempt,
                        "attempts": attempt,
                        "elapsed_ms": int((time.perf_counter() - started) * 1000),
                        **context,
                        **error.to_log_dict(),
                    },
                    level=logging.ERROR,
                )
                if error is e:
                    raise
                raise error from e

            delay = policy.delay_for(attempt)
            log_event(
                "retry_attempt_failed",
                {
                    "operation": operation_name,
                    "attempt": attempt,
                    "max_attempts": policy.max_attempts,
                    "delay_ms": round(delay * 1000),
                    **context,
                    **error.to_log_dict(),
                },
                level=logging.WARNING,
            )
            await asyncio.sleep(delay)
            continue

        if attempt > 1:
            log_event(
                "operation_recovered",
                {
                    "operation": operation_name,
                    "attempt": attempt,
                    "failed_attempts": attempt - 1,
                    "elapsed_ms": int((time.perf_counter() - started) * 1000),
                    **context,
                },
                level=logging.INFO,
            )
        else:
            log_event(
                "operation_attempt_succeeded",
                {"operation": operation_name, "attempt": attempt, **context},
                level=logging.DEBUG,
            )
        return result


def with_retry(
    policy: Optional[RetryPolicy] = None,
    operation: Optional[str] = None,
    policy_attr: str = "retry_policy",
):
    """
    Decorator form of ``run_with_retry`` for async methods.

    The policy is either given explicitly or read from ``self.<policy_attr>``
    at call time so instances can be configured from settings.

    Example::

        class Client:
            retry_policy = RetryPolicy(max_attempts=5)

            @with_retry(operation="client_fetch")
            async def fetch(self, key): ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        op_name = operation or func.__qualname__.replace(".", "_").lower()

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            active = policy
            if active is None and args:
                active = getattr(args[0], policy_attr, None)
            return await run_with_retry(
                lambda: func(*args, **kwargs), active or RetryPolicy(), op_name
            )

        return wrapper

    return decorator
