from tests.mocks.backends import ScriptedBackend
from tests.mocks.postgres import (
    FakeConnection,
    FakePool,
    FakePoolFactory,
    FakePostgresDatabase,
    FakeSQLStateError,
)
from tests.mocks.server import MockApplicationServer, MockServiceContainer

__all__ = [
    "FakeConnection",
    "FakePool",
    "FakePoolFactory",
    "FakePostgresDatabase",
    "FakeSQLStateError",
    "MockApplicationServer",
    "MockServiceContainer",
    "ScriptedBackend",
]
