"""
Remote credential backend over a pooled PostgreSQL connection.

Provides the repository contract with:
- asyncpg connection pool created lazily on first use
- Bounded pool acquisition (waiting too long is a network error)
- Per-statement timing with slow query warnings
- Transactions for multi-step sequences, rolled back on any failure
- SQLSTATE classification before errors leave this module
"""

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

import asyncpg

from ..models import (
    BackendKind,
    CredentialPage,
    CredentialRecord,
    CredentialStats,
    ServiceBreakdown,
)
from ..utils.logging import log_event, track
from .errors import (
    CredentialConflictError,
    CredentialNotFoundError,
    CredentialStoreError,
    CredentialValidationError,
    StorageDatabaseError,
    StorageNetworkError,
    StoragePermissionError,
    normalize_error,
)
from .sql import (
    NUMERIC,
    SELECT_COLUMNS,
    TABLE,
    TOP_SERVICES_LIMIT,
    build_insert_query,
    build_update_query,
    escape_like,
    mask_dsn,
    next_updated_at,
    page_offset,
    row_to_record,
    utc_now,
)
from .validation import CredentialCreate

SCHEMA_STATEMENTS = [
    f"""
    CREATE TABLE IF NOT EXISTS {TABLE} (
        id UUID PRIMARY KEY,
        service VARCHAR(100) NOT NULL,
        username VARCHAR(100) NOT NULL,
        secret TEXT NOT NULL,
        url TEXT,
        notes TEXT,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL,
        CONSTRAINT uq_credential_service_username UNIQUE (service, username)
    )
    """,
    f"CREATE INDEX IF NOT EXISTS idx_credential_records_service ON {TABLE} (service)",
    f"CREATE INDEX IF NOT EXISTS idx_credential_records_username ON {TABLE} (username)",
    f"CREATE INDEX IF NOT EXISTS idx_credential_records_updated_at ON {TABLE} (updated_at DESC)",
]

_CONFLICT_CODES = {"23505"}
_VALIDATION_CODES = {"23503", "23502", "22P02", "22001"}
_FATAL_CODES = {"42P01", "42703", "3D000", "28P01", "28000"}
_PERMISSION_CODES = {"42501"}
_TRANSIENT_CODES = {"40001", "40P01", "53300", "57P03", "55P03"}
_NETWORK_CODES = {"57014", "57P01", "57P02"}


def classify_postgres_error(error: BaseException) -> CredentialStoreError:
    """
    Map an asyncpg exception onto the storage taxonomy by SQLSTATE.

    Exceptions without a SQLSTATE fall back to ``normalize_error`` (timeouts
    and socket failures become network errors).
    """
    if isinstance(error, CredentialStoreError):
        return error

    sqlstate = getattr(error, "sqlstate", None)
    message = str(error) or type(error).__name__
    classified: Optional[CredentialStoreError] = None

    if sqlstate in _CONFLICT_CODES:
        classified = CredentialConflictError(
            message,
            code=sqlstate,
            context={"constraint": getattr(error, "constraint_name", None)},
        )
    elif sqlstate in _VALIDATION_CODES:
        field = getattr(error, "column_name", None) or "data"
        classified = CredentialValidationError(
            [{"field": field, "message": message}], code=sqlstate
        )
    elif sqlstate in _FATAL_CODES:
        classified = StorageDatabaseError(message, code=sqlstate)
    elif sqlstate in _PERMISSION_CODES:
        classified = StoragePermissionError(message, code=sqlstate)
    elif sqlstate in _TRANSIENT_CODES:
        classified = StorageDatabaseError(message, transient=True, code=sqlstate)
    elif sqlstate in _NETWORK_CODES or (sqlstate or "").startswith("08"):
        classified = StorageNetworkError(message, code=sqlstate)
    elif sqlstate:
        classified = StorageDatabaseError(message, code=sqlstate)
    elif isinstance(error, asyncpg.exceptions.DataError):
        classified = CredentialValidationError([{"field": "data", "message": message}])
    elif isinstance(error, asyncpg.exceptions.InterfaceError):
        classified = StorageNetworkError(message)

    if classified is None:
        return normalize_error(error)
    classified.__cause__ = error
    return classified


PoolFactory = Callable[..., Awaitable[Any]]


class RemoteCredentialBackend:
    """
    Credential storage in PostgreSQL.

    The pool and schema are created on the first operation, never at
    construction, so building the backend performs no I/O.
    """

    kind = BackendKind.REMOTE

    def __init__(
        self,
        dsn: str,
        *,
        min_size: int = 1,
        max_size: int = 20,
        idle_timeout: float = 30.0,
        acquire_timeout: float = 10.0,
        connect_timeout: float = 5.0,
        command_timeout: float = 30.0,
        slow_query_ms: int = 1000,
        pool_factory: Optional[PoolFactory] = None,
    ):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.idle_timeout = idle_timeout
        self.acquire_timeout = acquire_timeout
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.slow_query_ms = slow_query_ms
        self._pool_factory = pool_factory or asyncpg.create_pool
        self._pool: Optional[Any] = None
        self._pool_lock = asyncio.Lock()

    @classmethod
    def from_settings(
        cls, settings, pool_factory: Optional[PoolFactory] = None
    ) -> "RemoteCredentialBackend":
        return cls(
            settings.database_url,
            min_size=settings.pool_min_size,
            max_size=settings.pool_max_size,
            idle_timeout=settings.pool_idle_timeout,
            acquire_timeout=settings.pool_acquire_timeout,
            connect_timeout=settings.connect_timeout,
            command_timeout=settings.command_timeout,
            slow_query_ms=settings.slow_query_ms,
            pool_factory=pool_factory,
        )

    async def _get_pool(self):
        if self._pool is not None:
            return self._pool

        async with self._pool_lock:
            if self._pool is None:
                try:
                    pool = await self._pool_factory(
                        self.dsn,
                        min_size=self.min_size,
                        max_size=self.max_size,
                        max_inactive_connection_lifetime=self.idle_timeout,
                        command_timeout=self.command_timeout,
                        timeout=self.connect_timeout,
                        server_settings={
                            "application_name": "safeguard",
                            "timezone": "UTC",
                        },
                    )
                except Exception as e:
                    raise classify_postgres_error(e) from e

                try:
                    await self._bootstrap_schema(pool)
                except BaseException:
                    await pool.close()
                    raise

                self._pool = pool
                log_event(
                    "database_initialized",
                    {
                        "backend": self.kind.value,
                        "url": mask_dsn(self.dsn),
                        "pool_min_size": self.min_size,
                        "pool_max_size": self.max_size,
                    },
                )
        return self._pool

    async def _bootstrap_schema(self, pool) -> None:
        try:
            conn = await pool.acquire(timeout=self.acquire_timeout)
        except Exception as e:
            raise self._acquire_error(e) from e
        try:
            async with conn.transaction():
                for statement in SCHEMA_STATEMENTS:
                    await self._timed(conn, "execute", "bootstrap_schema", statement)
        except CredentialStoreError:
            raise
        except Exception as e:
            raise classify_postgres_error(e) from e
        finally:
            await pool.release(conn)

    def _acquire_error(self, error: Exception) -> CredentialStoreError:
        if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
            return StorageNetworkError(
                f"Timed out after {self.acquire_timeout}s waiting for a pooled connection",
                context={"pool": self.pool_stats()},
            )
        return classify_postgres_error(error)

    @asynccontextmanager
    async def _connection(self, transaction: bool = False) -> AsyncIterator[Any]:
        """
        Hold one pooled connection for one logical operation.

        With ``transaction`` the body runs inside ``conn.transaction()``, so
        any exception rolls back before it is classified. The connection is
        released on every exit path.
        """
        pool = await self._get_pool()
        try:
            conn = await pool.acquire(timeout=self.acquire_timeout)
        except Exception as e:
            raise self._acquire_error(e) from e

        try:
            if transaction:
                async with conn.transaction():
                    yield conn
            else:
                yield conn
        except CredentialStoreError:
            raise
        except Exception as e:
            raise classify_postgres_error(e) from e
        finally:
            await pool.release(conn)

    async def _timed(self, conn, method: str, statement: str, query: str, *args):
        """Run one statement, logging its duration and flagging slow ones."""
        started = time.perf_counter()
        success = False
        try:
            result = await getattr(conn, method)(query, *args)
            success = True
            return result
        finally:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            data = {
                "backend": self.kind.value,
                "statement": statement,
                "duration_ms": duration_ms,
                "success": success,
            }
            log_event("query_executed", data, level=logging.DEBUG)
            if duration_ms > self.slow_query_ms:
                log_event(
                    "slow_query_detected",
                    {**data, "threshold_ms": self.slow_query_ms},
                    level=logging.WARNING,
                )

    @track(
        operation="remote_credential_list",
        include_args=["search_term", "page", "page_size"],
        frequency="high_frequency",
    )
    async def list(
        self, search_term: Optional[str] = None, page: int = 1, page_size: int = 50
    ) -> CredentialPage:
        where = ""
        params: List[Any] = []
        if search_term:
            where = "WHERE service ILIKE $1 ESCAPE '\\' OR username ILIKE $1 ESCAPE '\\'"
            params = [f"%{escape_like(search_term)}%"]

        count_query = f"SELECT COUNT(*) FROM {TABLE} {where}"
        page_query = f"""
            SELECT {SELECT_COLUMNS} FROM {TABLE} {where}
            ORDER BY updated_at DESC, id ASC
            LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
        """

        async with self._connection() as conn:
            async with conn.transaction(isolation="repeatable_read", readonly=True):
                total = await self._timed(conn, "fetchval", "count_credentials", count_query, *params)
                rows = await self._timed(
                    conn,
                    "fetch",
                    "list_credentials",
                    page_query,
                    *params,
                    page_size,
                    page_offset(page, page_size),
                )

        return CredentialPage(
            records=[row_to_record(row) for row in rows],
            total=total,
            page=page,
            page_size=page_size,
        )

    @track(
        operation="remote_credential_get",
        include_args=["credential_id"],
        frequency="high_frequency",
    )
    async def get_by_id(self, credential_id: str) -> CredentialRecord:
        async with self._connection() as conn:
            row = await self._timed(
                conn,
                "fetchrow",
                "get_credential",
                f"SELECT {SELECT_COLUMNS} FROM {TABLE} WHERE id = $1",
                uuid.UUID(credential_id),
            )
        if row is None:
            raise CredentialNotFoundError(credential_id)
        return row_to_record(row)

    @track(operation="remote_credential_create", include_args=False)
    async def create(self, data: CredentialCreate) -> CredentialRecord:
        now = utc_now()
        values = {
            "id": uuid.uuid4(),
            **data.model_dump(),
            "created_at": now,
            "updated_at": now,
        }
        query, params = build_insert_query(TABLE, values, paramstyle=NUMERIC, returning=SELECT_COLUMNS)

        async with self._connection() as conn:
            row = await self._timed(conn, "fetchrow", "insert_credential", query, *params)

        record = row_to_record(row)
        log_event(
            "credential_created",
            {"credential_id": record.id, "backend": self.kind.value},
        )
        return record

    @track(operation="remote_credential_update", include_args=["credential_id", "changes"])
    async def update(self, credential_id: str, changes: Dict[str, Any]) -> CredentialRecord:
        key = uuid.UUID(credential_id)

        async with self._connection(transaction=True) as conn:
            current = await self._timed(
                conn,
                "fetchrow",
                "lock_credential",
                f"SELECT updated_at FROM {TABLE} WHERE id = $1 FOR UPDATE",
                key,
            )
            if current is None:
                raise CredentialNotFoundError(credential_id)

            updates = {**changes, "updated_at": next_updated_at(current["updated_at"])}
            query, params = build_update_query(
                TABLE, updates, "id", key, paramstyle=NUMERIC, returning=SELECT_COLUMNS
            )
            row = await self._timed(conn, "fetchrow", "update_credential", query, *params)

        log_event(
            "credential_updated",
            {
                "credential_id": credential_id,
                "backend": self.kind.value,
                "fields": sorted(changes.keys()),
            },
        )
        return row_to_record(row)

    @track(operation="remote_credential_delete", include_args=["credential_id"])
    async def delete(self, credential_id: str) -> None:
        async with self._connection() as conn:
            deleted = await self._timed(
                conn,
                "fetchval",
                "delete_credential",
                f"DELETE FROM {TABLE} WHERE id = $1 RETURNING id",
                uuid.UUID(credential_id),
            )
        if deleted is None:
            raise CredentialNotFoundError(credential_id)

        log_event(
            "credential_deleted",
            {"credential_id": credential_id, "backend": self.kind.value},
        )

    @track(operation="remote_credential_stats", include_args=["window_days"])
    async def stats(self, window_days: int = 30) -> CredentialStats:
        cutoff = utc_now() - timedelta(days=window_days)

        async with self._connection() as conn:
            async with conn.transaction(isolation="repeatable_read", readonly=True):
                total = await self._timed(
                    conn, "fetchval", "count_credentials", f"SELECT COUNT(*) FROM {TABLE}"
                )
                recent = await self._timed(
                    conn,
                    "fetchval",
                    "count_recent_credentials",
                    f"SELECT COUNT(*) FROM {TABLE} WHERE created_at >= $1",
                    cutoff,
                )
                rows = await self._timed(
                    conn,
                    "fetch",
                    "service_breakdown",
                    f"""
                    SELECT service, COUNT(*) AS count, MAX(updated_at) AS last_updated
                    FROM {TABLE}
                    GROUP BY service
                    ORDER BY count DESC, service ASC
                    LIMIT $1
                    """,
                    TOP_SERVICES_LIMIT,
                )

        return CredentialStats(
            total=total,
            recent_count=recent,
            window_days=window_days,
            per_service=[
                ServiceBreakdown(
                    service=row["service"],
                    count=row["count"],
                    last_updated=row["last_updated"],
                )
                for row in rows
            ],
        )

    def pool_stats(self) -> Dict[str, Any]:
        """Current pool occupancy; ``initialized`` is False before first use."""
        if self._pool is None:
            return {
                "initialized": False,
                "min_size": self.min_size,
                "max_size": self.max_size,
            }
        size = self._pool.get_size()
        idle = self._pool.get_idle_size()
        return {
            "initialized": True,
            "size": size,
            "idle": idle,
            "in_use": size - idle,
            "min_size": self._pool.get_min_size(),
            "max_size": self._pool.get_max_size(),
        }

    async def health_check(self) -> Dict[str, Any]:
        started = time.perf_counter()
        async with self._connection() as conn:
            await self._timed(conn, "fetchval", "health_check", "SELECT 1")

        return {
            "status": "healthy",
            "backend": self.kind.value,
            "database": mask_dsn(self.dsn),
            "response_time_ms": round((time.perf_counter() - started) * 1000, 2),
            "pool": self.pool_stats(),
        }

    async def close(self) -> None:
        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        await pool.close()
        log_event("database_pool_closed", {"backend": self.kind.value})
