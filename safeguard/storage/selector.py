"""
Backend selection.

Which backend serves requests is a pure function of the settings snapshot:

    1. ``force_backend`` ("local" or "remote")
    2. ``use_remote = True``
    3. ``database_url`` that is a postgres:// or postgresql:// URL with a host
    4. otherwise the local store

Nothing here touches the network or disk; backends connect lazily on their
first operation.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..config import Settings
from ..models import BackendKind
from ..utils.logging import log_event
from .base import CredentialBackend
from .errors import StorageDatabaseError
from .local_backend import LocalCredentialBackend
from .remote_backend import PoolFactory, RemoteCredentialBackend
from .sql import is_remote_url, mask_dsn


@dataclass(frozen=True)
class ServiceDescriptor:
    """The selected backend kind and its live instance."""

    kind: BackendKind
    backend: CredentialBackend


BackendBuilder = Callable[[Settings], CredentialBackend]


class BackendSelector:
    """
    Detects and caches credential backends, one instance per kind.

    Args:
        settings: Settings snapshot read for detection and construction
        builders: Optional per-kind constructors (tests inject fakes here)
        remote_pool_factory: Pool factory handed to the remote backend
    """

    def __init__(
        self,
        settings: Settings,
        builders: Optional[Dict[BackendKind, BackendBuilder]] = None,
        remote_pool_factory: Optional[PoolFactory] = None,
    ):
        self.settings = settings
        self._remote_pool_factory = remote_pool_factory
        self._builders: Dict[BackendKind, BackendBuilder] = {
            BackendKind.LOCAL: LocalCredentialBackend.from_settings,
            BackendKind.REMOTE: self._build_remote,
        }
        if builders:
            self._builders.update(builders)
        self._cache: Dict[BackendKind, CredentialBackend] = {}
        # Instances dropped from the cache that still need closing
        self._retired: List[CredentialBackend] = []

    def detect(self) -> BackendKind:
        if self.settings.force_backend:
            return BackendKind(self.settings.force_backend)
        if self.settings.use_remote:
            return BackendKind.REMOTE
        if is_remote_url(self.settings.database_url):
            return BackendKind.REMOTE
        return BackendKind.LOCAL

    def get_default(self) -> CredentialBackend:
        kind = self.detect()
        backend = self._cache.get(kind)
        if backend is None:
            backend = self._build(kind)
            self._cache[kind] = backend
        return backend

    def get_forced(self, kind: Any) -> CredentialBackend:
        """
        Build a fresh backend of ``kind``, replacing any cached one.

        Detection is skipped for this call only. ``get_default()`` keeps
        returning the detected kind, so forcing the other kind does not
        change what the repository uses.
        """
        kind = BackendKind(kind)
        backend = self._build(kind, forced=True)
        previous = self._cache.get(kind)
        if previous is not None:
            self._retired.append(previous)
        self._cache[kind] = backend
        return backend

    def clear_cache(self) -> None:
        self._retired.extend(self._cache.values())
        self._cache.clear()
        log_event("backend_cache_cleared", {"retired": len(self._retired)})

    def describe(self) -> ServiceDescriptor:
        kind = self.detect()
        return ServiceDescriptor(kind=kind, backend=self.get_default())

    def service_info(self) -> Dict[str, Any]:
        return {
            "detected_backend": self.detect().value,
            "force_backend": self.settings.force_backend,
            "use_remote": self.settings.use_remote,
            "remote_configured": bool(self.settings.database_url),
            "remote_url_valid": is_remote_url(self.settings.database_url),
            "database_url": mask_dsn(self.settings.database_url),
            "sqlite_path": self.settings.sqlite_path,
            "cached_backends": sorted(kind.value for kind in self._cache),
        }

    async def close(self) -> None:
        """Close every cached and retired backend."""
        backends = [*self._retired, *self._cache.values()]
        self._retired = []
        self._cache.clear()
        for backend in backends:
            await backend.close()

    def _build(self, kind: BackendKind, forced: bool = False) -> CredentialBackend:
        backend = self._builders[kind](self.settings)
        log_event(
            "backend_selected",
            {
                "backend": kind.value,
                "forced": forced or bool(self.settings.force_backend),
                "database_url": mask_dsn(self.settings.database_url),
            },
        )
        return backend

    def _build_remote(self, settings: Settings) -> CredentialBackend:
        if not is_remote_url(settings.database_url):
            raise StorageDatabaseError(
                "Remote backend selected but no valid postgres:// database_url is configured"
            )
        return RemoteCredentialBackend.from_settings(
            settings, pool_factory=self._remote_pool_factory
        )
