"""
Dependency injection for API routes.
"""

from typing import TYPE_CHECKING, Optional

from fastapi import HTTPException

if TYPE_CHECKING:
    from ...storage import CredentialRepository
    from ..application_server import ApplicationServer


# Global server instance - will be set during app initialization
_server_instance: Optional["ApplicationServer"] = None


def set_server_instance(server: "ApplicationServer"):
    """
    Set the global server instance.

    Args:
        server: The ApplicationServer instance to use globally
    """
    global _server_instance
    _server_instance = server


def get_server() -> "ApplicationServer":
    """
    Get the current server instance.

    Raises:
        RuntimeError: If server instance not initialized
    """
    if _server_instance is None:
        raise RuntimeError("Server instance not initialized")
    return _server_instance


def get_repository() -> "CredentialRepository":
    """
    The live credential repository.

    Raises:
        HTTPException: 503 when storage has not been initialized
    """
    server = get_server()
    container = server.service_container
    if not container or not container.repository:
        raise HTTPException(status_code=503, detail="Credential service not available")
    return container.repository
