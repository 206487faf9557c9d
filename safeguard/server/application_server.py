"""
Application server owning the service container.
"""

import logging
from typing import Optional

from ..config import get_settings
from ..utils.logging import log_event
from .service_container import ServiceContainer


class ApplicationServer:
    """
    Top-level server object handed to the API routes.

    Routes reach the repository through ``service_container`` and answer 503
    when it is missing.
    """

    def __init__(self):
        self.settings = get_settings()
        self.service_container: Optional[ServiceContainer] = None
        self._initialized = False

    async def initialize(self):
        if self._initialized:
            log_event("application_server_already_initialized", level=logging.WARNING)
            return

        log_event("application_server_init_start")
        container = ServiceContainer(self.settings)
        await container.initialize()
        self.service_container = container
        self._initialized = True
        log_event("application_server_initialized")

    async def cleanup(self):
        log_event("application_server_cleanup_start")
        if self.service_container:
            await self.service_container.cleanup()
        self.service_container = None
        self._initialized = False
        log_event("application_server_cleanup_complete")
