"""
Main FastAPI application creation and configuration.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import get_settings
from ..config.settings import configure_logging
from .api.dependencies import get_server, set_server_instance
from .api.router import get_api_router
from .application_server import ApplicationServer

# Global server instance
server = ApplicationServer()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    configure_logging(level=get_settings().log_level)
    await server.initialize()
    set_server_instance(server)
    yield
    await server.cleanup()


def create_app() -> FastAPI:
    """Create the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Safeguard API",
        description="Credential storage over local or remote backends",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        container = get_server().service_container
        storage = None
        if container and container.repository:
            storage = (await container.repository.health_check()).unwrap()

        healthy = storage is not None and storage.get("status") == "healthy"
        return {
            "status": "healthy" if healthy else "degraded",
            "version": __version__,
            "environment": settings.environment,
            "storage": storage,
        }

    app.include_router(get_api_router())

    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "safeguard.server.main:create_app",
        host=settings.host,
        port=settings.port,
        reload=True,
        factory=True,
    )
