import os
from contextlib import asynccontextmanager
from pathlib import Path
from unittest.mock import patch

import pytest
import pytest_asyncio
from fastapi import FastAPI
from fastapi.testclient import TestClient

from safeguard.config import Settings, reset_settings
from safeguard.models import BackendKind
from safeguard.storage import (
    BackendSelector,
    CredentialRepository,
    LocalCredentialBackend,
    RemoteCredentialBackend,
    StorageNetworkError,
)
from tests.mocks import (
    FakePoolFactory,
    FakePostgresDatabase,
    MockApplicationServer,
    ScriptedBackend,
)
from tests.utils import REMOTE_URL, make_settings


def _create_test_client(mock_server: MockApplicationServer) -> TestClient:
    from safeguard.server.api import dependencies
    from safeguard.server.main import create_app

    dependencies.set_server_instance(mock_server)

    @asynccontextmanager
    async def mock_lifespan(app: FastAPI):
        yield

    with patch("safeguard.server.main.server", mock_server):
        with patch("safeguard.server.main.lifespan", mock_lifespan):
            app = create_app()
            return TestClient(app)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in list(os.environ):
        if name.startswith("SAFEGUARD_"):
            monkeypatch.delenv(name)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def fake_db() -> FakePostgresDatabase:
    return FakePostgresDatabase()


@pytest.fixture
def pool_factory(fake_db: FakePostgresDatabase) -> FakePoolFactory:
    return FakePoolFactory(fake_db)


@pytest_asyncio.fixture
async def local_backend(settings: Settings):
    backend = LocalCredentialBackend(settings.sqlite_path)
    yield backend
    await backend.close()


@pytest_asyncio.fixture
async def remote_backend(pool_factory: FakePoolFactory):
    backend = RemoteCredentialBackend(
        REMOTE_URL, acquire_timeout=0.2, pool_factory=pool_factory
    )
    yield backend
    await backend.close()


@pytest_asyncio.fixture(params=["local", "remote"])
async def backend(request, settings: Settings, pool_factory: FakePoolFactory):
    if request.param == "local":
        instance = LocalCredentialBackend(settings.sqlite_path)
    else:
        instance = RemoteCredentialBackend(
            REMOTE_URL, acquire_timeout=0.2, pool_factory=pool_factory
        )
    yield instance
    await instance.close()


@pytest_asyncio.fixture
async def repository(settings: Settings):
    repo = CredentialRepository(BackendSelector(settings))
    yield repo
    await repo.close()


@pytest.fixture
def route_settings(tmp_path: Path) -> Settings:
    return make_settings(
        tmp_path,
        force_backend="remote",
        database_url=REMOTE_URL,
        retry_base_delay=0.0,
    )


@pytest.fixture
def mock_server(
    route_settings: Settings, pool_factory: FakePoolFactory
) -> MockApplicationServer:
    selector = BackendSelector(route_settings, remote_pool_factory=pool_factory)
    return MockApplicationServer(route_settings, selector)


@pytest.fixture
def mock_server_no_repository(route_settings: Settings) -> MockApplicationServer:
    server = MockApplicationServer(route_settings)
    server.service_container.repository = None
    return server


@pytest.fixture
def mock_server_network_down(route_settings: Settings) -> MockApplicationServer:
    def unreachable(settings: Settings) -> ScriptedBackend:
        return ScriptedBackend(
            kind=BackendKind.REMOTE,
            errors=[StorageNetworkError("connection refused") for _ in range(10)],
        )

    selector = BackendSelector(route_settings, builders={BackendKind.REMOTE: unreachable})
    return MockApplicationServer(route_settings, selector)


@pytest.fixture
def client(mock_server: MockApplicationServer):
    with _create_test_client(mock_server) as test_client:
        yield test_client


@pytest.fixture
def client_no_repository(mock_server_no_repository: MockApplicationServer):
    with _create_test_client(mock_server_no_repository) as test_client:
        yield test_client


@pytest.fixture
def client_network_down(mock_server_network_down: MockApplicationServer):
    with _create_test_client(mock_server_network_down) as test_client:
        yield test_client
