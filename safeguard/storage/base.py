"""
The contract every credential backend implements.

Backends raise classified ``CredentialStoreError`` subclasses; turning those
into ``Result`` values is the repository's job, not the backend's.
"""

from typing import Any, Dict, Optional, Protocol, runtime_checkable

from ..models import BackendKind, CredentialPage, CredentialRecord, CredentialStats
from .validation import CredentialCreate


@runtime_checkable
class CredentialBackend(Protocol):
    kind: BackendKind

    async def list(
        self, search_term: Optional[str] = None, page: int = 1, page_size: int = 50
    ) -> CredentialPage:
        """Newest-updated first; ``search_term`` matches service or username."""
        ...

    async def get_by_id(self, credential_id: str) -> CredentialRecord:
        """Raises CredentialNotFoundError if absent."""
        ...

    async def create(self, data: CredentialCreate) -> CredentialRecord:
        """Raises CredentialConflictError on a duplicate (service, username)."""
        ...

    async def update(
        self, credential_id: str, changes: Dict[str, Any]
    ) -> CredentialRecord:
        """Apply sanitized changes and refresh updated_at."""
        ...

    async def delete(self, credential_id: str) -> None:
        """Hard delete; raises CredentialNotFoundError if absent."""
        ...

    async def stats(self, window_days: int = 30) -> CredentialStats:
        ...

    async def health_check(self) -> Dict[str, Any]:
        ...

    async def close(self) -> None:
        ...
