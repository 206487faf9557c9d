"""
Error taxonomy for the storage layer.

Every failure that leaves a backend is one of the classes below. Backends
translate their native errors (SQLSTATE codes, sqlite3 exceptions) at their
own boundary; ``normalize_error`` covers everything else so no raw driver
error reaches a caller.

    Kind         Retried            Status
    validation   never              400
    conflict     never              409
    not_found    never              404
    permission   never              403
    network      yes                503
    database     transient only     503 / 500
    unknown      yes                500
"""

import asyncio
import traceback
from enum import Enum
from typing import Any, Dict, List, Optional

from ..utils.result import ErrorType, Failure, error_result


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    NETWORK = "network"
    DATABASE = "database"
    PERMISSION = "permission"
    UNKNOWN = "unknown"


class CredentialStoreError(Exception):
    """
    Base class for classified storage errors.

    Attributes:
        detail: Internal description (never shown in production responses)
        code: Native error code that was classified, if any
        context: Extra structured context for logs and development responses
    """

    kind = ErrorKind.UNKNOWN
    generic_message = "Something went wrong. Please try again later."
    result_kind = ErrorType.UNKNOWN_ERROR

    def __init__(
        self,
        detail: Optional[str] = None,
        *,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.detail = detail or self.generic_message
        self.code = code
        self.context = context or {}
        super().__init__(self.detail)

    @property
    def retryable(self) -> bool:
        return self.result_kind[2]

    @property
    def status_code(self) -> int:
        return self.result_kind[1]

    def to_log_dict(self) -> Dict[str, Any]:
        data = {
            "error_kind": self.kind.value,
            "error_class": type(self).__name__,
            "error_detail": self.detail,
            "retryable": self.retryable,
        }
        if self.code:
            data["error_code"] = self.code
        cause = self.__cause__
        if cause is not None:
            data["cause_type"] = type(cause).__name__
            data["cause_message"] = str(cause)
        return data

    def to_failure(self, include_detail: bool = False) -> Failure:
        """
        Convert to a Failure result carrying the generic message.

        Args:
            include_detail: Attach native detail and traceback (non-production)
        """
        context: Dict[str, Any] = {"kind": self.kind.value}
        context.update(self._public_context())
        if include_detail:
            context["detail"] = self.to_log_dict()
            if self.__traceback__ is not None:
                context["stack_trace"] = "".join(
                    traceback.format_exception(type(self), self, self.__traceback__)
                )
        return error_result(self.result_kind, self.generic_message, context)

    def _public_context(self) -> Dict[str, Any]:
        return {}


class CredentialValidationError(CredentialStoreError):
    """Input failed schema or bounds checks; lists every violated field."""

    kind = ErrorKind.VALIDATION
    generic_message = "The submitted data is invalid. Please check the highlighted fields."
    result_kind = ErrorType.VALIDATION_ERROR

    def __init__(
        self,
        field_errors: List[Dict[str, str]],
        *,
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.field_errors = field_errors
        summary = ", ".join(f"{e['field']}: {e['message']}" for e in field_errors)
        super().__init__(f"Validation failed: {summary}", code=code, context=context)

    @property
    def fields(self) -> List[str]:
        return [e["field"] for e in self.field_errors]

    def _public_context(self) -> Dict[str, Any]:
        return {"fields": self.field_errors}


class CredentialConflictError(CredentialStoreError):
    kind = ErrorKind.CONFLICT
    generic_message = "A credential for this service and username already exists."
    result_kind = ErrorType.CONFLICT_ERROR


class CredentialNotFoundError(CredentialStoreError):
    kind = ErrorKind.NOT_FOUND
    generic_message = "Credential not found."
    result_kind = ErrorType.NOT_FOUND_ERROR

    def __init__(self, credential_id: str, **kwargs):
        self.credential_id = credential_id
        super().__init__(f"No credential with id {credential_id}", **kwargs)

    def _public_context(self) -> Dict[str, Any]:
        return {"credential_id": self.credential_id}


class StorageNetworkError(CredentialStoreError):
    kind = ErrorKind.NETWORK
    generic_message = "Could not reach the credential database. Check your connection and try again."
    result_kind = ErrorType.NETWORK_ERROR


class StorageDatabaseError(CredentialStoreError):
    """
    Backend-internal failure.

    ``transient`` marks sub-kinds worth retrying (lock contention,
    serialization failures, connection limits). Schema, authentication and
    corruption failures are fatal.
    """

    kind = ErrorKind.DATABASE
    generic_message = "The credential store failed to complete the operation."

    def __init__(self, detail: Optional[str] = None, *, transient: bool = False, **kwargs):
        self.transient = transient
        super().__init__(detail, **kwargs)

    @property
    def result_kind(self):  # type: ignore[override]
        if self.transient:
            return ErrorType.TRANSIENT_DATABASE_ERROR
        return ErrorType.DATABASE_ERROR

    def to_log_dict(self) -> Dict[str, Any]:
        data = super().to_log_dict()
        data["transient"] = self.transient
        return data


class StoragePermissionError(CredentialStoreError):
    kind = ErrorKind.PERMISSION
    generic_message = "You do not have permission to perform this operation."
    result_kind = ErrorType.PERMISSION_ERROR


class UnknownStorageError(CredentialStoreError):
    kind = ErrorKind.UNKNOWN


def normalize_error(error: BaseException) -> CredentialStoreError:
    """
    Classify any exception into the taxonomy.

    Already-classified errors pass through untouched; timeouts and socket
    failures become network errors; everything else is unknown. The original
    exception is kept as ``__cause__``.
    """
    if isinstance(error, CredentialStoreError):
        return error

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        classified: CredentialStoreError = StorageNetworkError(
            f"Timed out: {error or type(error).__name__}"
        )
    elif isinstance(error, (ConnectionError, OSError)):
        classified = StorageNetworkError(f"Connection failed: {error}")
    else:
        classified = UnknownStorageError(f"{type(error).__name__}: {error}")

    classified.__cause__ = error
    return classified
