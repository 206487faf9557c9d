"""
Credential repository facade.

Every call runs: validation, then the retry wrapper, then the selected
backend. Classified errors come back as ``Failure`` results; nothing raises
out of this class.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from ..config import Settings
from ..models import CredentialPage, CredentialRecord, CredentialStats
from ..utils.logging import log_event, track
from ..utils.result import Failure, Result, Success
from .base import CredentialBackend
from .errors import CredentialStoreError, CredentialValidationError
from .retry import NO_RETRY, RetryPolicy, run_with_retry
from .selector import BackendSelector
from .validation import (
    validate_create,
    validate_pagination,
    validate_record_id,
    validate_search_term,
    validate_update,
    validate_window_days,
)

T = TypeVar("T")


class CredentialRepository:
    """
    The single entry point for credential storage.

    Args:
        selector: Backend selector providing the active backend
        retry_policy: Overrides the policy built from settings
    """

    def __init__(
        self,
        selector: BackendSelector,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.selector = selector
        self.settings: Settings = selector.settings
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings)

    @property
    def backend(self) -> CredentialBackend:
        return self.selector.get_default()

    @track(
        operation="credential_list",
        include_args=["search_term", "page", "page_size"],
        frequency="medium_frequency",
    )
    async def list(
        self,
        search_term: Optional[str] = None,
        page: Any = None,
        page_size: Any = None,
    ) -> Result[CredentialPage, str]:
        """
        List credentials, newest-updated first.

        Args:
            search_term: Case-insensitive substring of service or username
            page: 1-based page number (clamped to >= 1)
            page_size: Records per page (clamped to 1..100)

        Returns:
            Success with a CredentialPage, or Failure
        """
        try:
            term = validate_search_term(search_term)
            page_number, size = validate_pagination(page, page_size)
        except CredentialValidationError as e:
            return self._rejected("credential_list", e)

        return await self._execute(
            "credential_list",
            lambda backend: backend.list(
                search_term=term, page=page_number, page_size=size
            ),
            {"page": page_number, "page_size": size},
        )

    @track(
        operation="credential_get",
        include_args=["credential_id"],
        frequency="medium_frequency",
    )
    async def get_by_id(self, credential_id: Any) -> Result[CredentialRecord, str]:
        try:
            record_id = validate_record_id(credential_id)
        except CredentialValidationError as e:
            return self._rejected("credential_get", e)

        return await self._execute(
            "credential_get",
            lambda backend: backend.get_by_id(credential_id=record_id),
            {"credential_id": record_id},
        )

    @track(operation="credential_create", include_args=["data"])
    async def create(self, data: Any) -> Result[CredentialRecord, str]:
        """
        Create a credential.

        Returns:
            Success with the stored record, or Failure (ValidationError,
            ConflictError on a duplicate service/username, ...)
        """
        try:
            payload = validate_create(data)
        except CredentialValidationError as e:
            return self._rejected("credential_create", e)

        return await self._execute(
            "credential_create",
            lambda backend: backend.create(data=payload),
            {"service": payload.service},
        )

    @track(operation="credential_update", include_args=["credential_id", "partial"])
    async def update(
        self, credential_id: Any, partial: Any
    ) -> Result[CredentialRecord, str]:
        """
        Apply a partial update. ``updated_at`` always moves forward, even for
        an empty update.
        """
        errors = []
        record_id = None
        changes: Dict[str, Any] = {}
        try:
            record_id = validate_record_id(credential_id)
        except CredentialValidationError as e:
            errors.extend(e.field_errors)
        try:
            changes = validate_update(partial)
        except CredentialValidationError as e:
            errors.extend(e.field_errors)
        if errors:
            return self._rejected("credential_update", CredentialValidationError(errors))

        return await self._execute(
            "credential_update",
            lambda backend: backend.update(credential_id=record_id, changes=changes),
            {"credential_id": record_id},
        )

    @track(operation="credential_delete", include_args=["credential_id"])
    async def delete(self, credential_id: Any) -> Result[None, str]:
        try:
            record_id = validate_record_id(credential_id)
        except CredentialValidationError as e:
            return self._rejected("credential_delete", e)

        return await self._execute(
            "credential_delete",
            lambda backend: backend.delete(credential_id=record_id),
            {"credential_id": record_id},
        )

    @track(operation="credential_stats", include_args=["window_days"])
    async def stats(self, window_days: Any = None) -> Result[CredentialStats, str]:
        try:
            days = validate_window_days(window_days, self.settings.recent_window_days)
        except CredentialValidationError as e:
            return self._rejected("credential_stats", e)

        return await self._execute(
            "credential_stats",
            lambda backend: backend.stats(window_days=days),
            {"window_days": days},
        )

    async def health_check(self) -> Result[Dict[str, Any], str]:
        """
        Probe the active backend once, without retries.

        An unreachable backend is reported as ``status: unhealthy`` inside a
        Success so that callers always get a health document.
        """
        try:
            health = await run_with_retry(
                lambda: self.backend.health_check(),
                NO_RETRY,
                "credential_health_check",
                {"backend": self.selector.detect().value},
            )
        except CredentialStoreError as e:
            health = {
                "status": "unhealthy",
                "backend": self.selector.detect().value,
                "error": e.generic_message,
                "error_kind": e.kind.value,
            }
            if not self.settings.is_production:
                health["detail"] = e.detail
        return Success(health)

    async def close(self) -> None:
        await self.selector.close()

    async def _execute(
        self,
        operation_name: str,
        call: Callable[[CredentialBackend], Awaitable[T]],
        context: Optional[Dict[str, Any]] = None,
    ) -> Result[T, str]:
        try:
            value = await run_with_retry(
                lambda: call(self.backend),
                self.retry_policy,
                operation_name,
                {"backend": self.selector.detect().value, **(context or {})},
            )
        except CredentialStoreError as e:
            return e.to_failure(include_detail=not self.settings.is_production)
        return Success(value)

    def _rejected(self, operation_name: str, error: CredentialValidationError) -> Failure:
        log_event(
            "credential_validation_failed",
            {"operation": operation_name, "fields": error.fields},
            level=logging.INFO,
        )
        return error.to_failure(include_detail=not self.settings.is_production)
