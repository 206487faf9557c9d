"""
Result type for explicit error handling at the repository boundary.

Storage backends raise classified exceptions; the repository facade turns
them into a Success or a Failure so API handlers and UI hooks can branch on
the outcome without try/except.

Example:
    >>> result = Success({"id": "1f0c..."})
    >>> result.unwrap()["id"]
    '1f0c...'

    >>> result = error_result(ErrorType.NOT_FOUND_ERROR, "Credential not found")
    >>> result.to_dict()
    {'success': False, 'error': 'Credential not found', 'error_type': 'NotFoundError'}
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")


@dataclass
class Success(Generic[T]):
    """
    A successful operation.

    Attributes:
        value: The successful result value
        metadata: Optional metadata about the operation (attempt counts etc.)
    """

    value: T
    metadata: Optional[Dict[str, Any]] = None

    def is_success(self) -> bool:
        return True

    def is_failure(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value

    def map(self, func: Callable[[T], Any]) -> "Result":
        """Transform the success value, capturing exceptions as a Failure."""
        try:
            return Success(func(self.value), metadata=self.metadata)
        except Exception as e:
            return Failure(error=str(e), error_type=type(e).__name__)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {"success": True, "data": self.value}
        if self.metadata:
            result["metadata"] = self.metadata
        return result

    def __bool__(self) -> bool:
        return True

    def __repr__(self) -> str:
        return f"Success({self.value})"


@dataclass
class Failure(Generic[E]):
    """
    A failed operation.

    Attributes:
        error: The generic, user-facing error message
        error_type: Category of error (e.g., "ConflictError")
        context: Additional context (field errors, native detail in development)
        recoverable: Whether retrying the operation later may succeed
        status_code: HTTP status code hint for API responses
    """

    error: E
    error_type: str = "UnknownError"
    context: Optional[Dict[str, Any]] = None
    recoverable: bool = False
    status_code: int = 500

    def is_success(self) -> bool:
        return False

    def is_failure(self) -> bool:
        return True

    def unwrap(self) -> Any:
        """
        Raises:
            RuntimeError: Always, since this is a Failure
        """
        raise RuntimeError(f"Called unwrap on Failure: {self.error}")

    def unwrap_or(self, default: Any) -> Any:
        return default

    def map(self, func: Callable) -> "Result":
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            "success": False,
            "error": str(self.error),
            "error_type": self.error_type,
        }
        if self.context:
            result["context"] = self.context
        if self.recoverable:
            result["recoverable"] = True
        return result

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return f"Failure({self.error_type}: {self.error})"


Result = Union[Success[T], Failure[E]]


class ErrorType:
    """Error categories as (error_type, status_code, recoverable)."""

    VALIDATION_ERROR = ("ValidationError", 400, False)
    CONFLICT_ERROR = ("ConflictError", 409, False)
    NOT_FOUND_ERROR = ("NotFoundError", 404, False)
    PERMISSION_ERROR = ("PermissionError", 403, False)
    NETWORK_ERROR = ("NetworkError", 503, True)
    DATABASE_ERROR = ("DatabaseError", 500, False)
    TRANSIENT_DATABASE_ERROR = ("DatabaseError", 503, True)
    UNKNOWN_ERROR = ("UnknownError", 500, True)


def error_result(
    kind: tuple, message: str, context: Optional[Dict[str, Any]] = None
) -> Failure:
    """Build a Failure from an ``ErrorType`` entry."""
    error_type, status_code, recoverable = kind
    return Failure(
        error=message,
        error_type=error_type,
        context=context,
        recoverable=recoverable,
        status_code=status_code,
    )
