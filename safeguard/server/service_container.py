"""
Service container for dependency injection and lifecycle management.

Builds the backend selector and the credential repository once at startup
and closes every backend they opened on shutdown.
"""

import logging
from typing import Optional

from ..config.settings import Settings
from ..storage import BackendSelector, CredentialRepository
from ..storage.sql import mask_dsn
from ..utils.logging import log_event


class ServiceInitializationError(Exception):
    """Raised when service initialization fails."""

    pass


class ServiceContainer:
    """
    Container for the storage services.

    Selection happens here, once, from the settings snapshot. Backends still
    connect lazily, so a remote database that is down at startup surfaces as
    a network failure on the first request rather than a crash.

    Usage:
        container = ServiceContainer(settings)
        await container.initialize()
        result = await container.repository.list(search_term="mail")
        await container.cleanup()

    Or use as async context manager:
        async with ServiceContainer(settings) as container:
            await container.repository.create(data={...})
    """

    def __init__(self, settings: Settings, selector: Optional[BackendSelector] = None):
        self.settings = settings
        self._initialized = False

        self.selector: Optional[BackendSelector] = selector
        self.repository: Optional[CredentialRepository] = None

    async def initialize(self) -> None:
        if self._initialized:
            log_event("service_container_already_initialized", level=logging.WARNING)
            return

        log_event(
            "service_container_init_start",
            {
                "database_url": mask_dsn(self.settings.database_url),
                "sqlite_path": self.settings.sqlite_path,
                "environment": self.settings.environment,
            },
        )

        try:
            if self.selector is None:
                self.selector = BackendSelector(self.settings)
            descriptor = self.selector.describe()
            self.repository = CredentialRepository(self.selector)
        except Exception as e:
            raise ServiceInitializationError(
                f"Failed to initialize credential storage: {str(e)}"
            ) from e

        self._initialized = True
        log_event(
            "service_container_initialized",
            {"backend": descriptor.kind.value, "services": ["selector", "repository"]},
        )

    async def cleanup(self) -> None:
        """Close every backend the selector opened."""
        log_event("service_container_cleanup_start")

        if self.repository:
            try:
                await self.repository.close()
                log_event("credential_repository_closed")
            except Exception as e:
                log_event(
                    "credential_repository_cleanup_error",
                    {"error": str(e), "error_type": type(e).__name__},
                    level=logging.WARNING,
                )

        self.repository = None
        self._initialized = False
        log_event("service_container_cleanup_complete")

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def __aenter__(self) -> "ServiceContainer":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.cleanup()
