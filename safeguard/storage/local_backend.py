"""
Local credential backend over an embedded SQLite file.

Provides the repository contract with:
- Lazy connection through aiosqlite
- Versioned schema (PRAGMA user_version) with ordered migrations
- Unique (service, username) index and lookup indexes
- Case-insensitive search through a registered casefold function
- One transaction per operation, serialized on the shared connection
"""

import asyncio
import logging
import sqlite3
import time
import uuid
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

import aiosqlite

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
    UnknownStorageError,
)
from .sql import (
    QMARK,
    SELECT_COLUMNS,
    TABLE,
    TOP_SERVICES_LIMIT,
    build_insert_query,
    build_update_query,
    format_timestamp,
    next_updated_at,
    page_offset,
    parse_timestamp,
    row_to_record,
    utc_now,
)
from .validation import CredentialCreate

# Each version's statements run in one transaction, in ascending order
MIGRATIONS: Dict[int, List[str]] = {
    1: [
        f"""
        CREATE TABLE IF NOT EXISTS {TABLE} (
            id TEXT PRIMARY KEY,
            service TEXT NOT NULL,
            username TEXT NOT NULL,
            secret TEXT NOT NULL,
            url TEXT,
            notes TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """,
        f"CREATE UNIQUE INDEX IF NOT EXISTS uq_credential_service_username ON {TABLE} (service, username)",
        f"CREATE INDEX IF NOT EXISTS idx_credential_records_service ON {TABLE} (service)",
        f"CREATE INDEX IF NOT EXISTS idx_credential_records_username ON {TABLE} (username)",
        f"CREATE INDEX IF NOT EXISTS idx_credential_records_updated_at ON {TABLE} (updated_at DESC)",
    ],
}

SCHEMA_VERSION = max(MIGRATIONS)

_TRANSIENT_MARKERS = ("locked", "busy")


def _casefold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if isinstance(value, str) else value


def classify_sqlite_error(error: sqlite3.Error) -> CredentialStoreError:
    """
    Map a sqlite3 exception onto the storage taxonomy.

    Unique violations are conflicts, NOT NULL violations are validation
    errors, lock contention is a transient database error and everything
    else from the engine (missing tables, corruption, full disk) is fatal.
    """
    message = str(error)
    lowered = message.lower()
    code = getattr(error, "sqlite_errorname", None)

    if isinstance(error, sqlite3.IntegrityError):
        if "unique" in lowered:
            classified: CredentialStoreError = CredentialConflictError(message, code=code)
        elif "not null" in lowered:
            field = message.rsplit(".", 1)[-1].strip() or "data"
            classified = CredentialValidationError(
                [{"field": field, "message": "Field is required"}], code=code
            )
        else:
            classified = StorageDatabaseError(message, code=code)
    elif any(marker in lowered for marker in _TRANSIENT_MARKERS):
        classified = StorageDatabaseError(message, transient=True, code=code)
    elif isinstance(error, sqlite3.DatabaseError):
        classified = StorageDatabaseError(message, code=code)
    else:
        classified = UnknownStorageError(message, code=code)

    classified.__cause__ = error
    return classified


class LocalCredentialBackend:
    """
    Credential storage in a single SQLite file.

    The connection is opened and migrated on first use. ``:memory:`` gives a
    private throwaway store.
    """

    kind = BackendKind.LOCAL

    def __init__(self, path: str, busy_timeout: float = 5.0):
        self.path = path
        self.busy_timeout = busy_timeout
        self._db: Optional[aiosqlite.Connection] = None
        self._open_lock = asyncio.Lock()
        self._tx_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings) -> "LocalCredentialBackend":
        return cls(settings.sqlite_path, busy_timeout=settings.connect_timeout)

    async def _connection(self) -> aiosqlite.Connection:
        if self._db is not None:
            return self._db

        async with self._open_lock:
            if self._db is None:
                try:
                    if self.path != ":memory:":
                        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
                    db = await aiosqlite.connect(
                        self.path, timeout=self.busy_timeout, isolation_level=None
                    )
                except sqlite3.Error as e:
                    raise classify_sqlite_error(e) from e
                except OSError as e:
                    raise StorageDatabaseError(
                        f"Cannot open local store at {self.path}: {e}"
                    ) from e

                try:
                    db.row_factory = aiosqlite.Row
                    await db.create_function("casefold", 1, _casefold, deterministic=True)
                    await db.execute("PRAGMA foreign_keys = ON")
                    await self._migrate(db)
                except sqlite3.Error as e:
                    await db.close()
                    raise classify_sqlite_error(e) from e
                except CredentialStoreError:
                    await db.close()
                    raise

                self._db = db
                log_event(
                    "local_store_opened",
                    {"backend": self.kind.value, "path": self.path},
                )
        return self._db

    async def _migrate(self, db: aiosqlite.Connection) -> None:
        async with db.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
        current = row[0] if row else 0

        if current > SCHEMA_VERSION:
            raise StorageDatabaseError(
                f"Local store schema version {current} is newer than supported "
                f"version {SCHEMA_VERSION}"
            )

        for version in sorted(v for v in MIGRATIONS if v > current):
            await db.execute("BEGIN IMMEDIATE")
            try:
                for statement in MIGRATIONS[version]:
                    await db.execute(statement)
                # PRAGMA does not accept bound parameters
                await db.execute(f"PRAGMA user_version = {int(version)}")
            except BaseException:
                if db.in_transaction:
                    await db.execute("ROLLBACK")
                raise
            await db.execute("COMMIT")

            log_event(
                "local_schema_migrated",
                {"backend": self.kind.value, "from_version": current, "to_version": version},
            )
            current = version

    @asynccontextmanager
    async def _transaction(self, write: bool = False) -> AsyncIterator[aiosqlite.Connection]:
        """
        One transaction on the shared connection.

        Writes take the reserved lock up front (BEGIN IMMEDIATE) so that a
        read-then-write sequence cannot be interleaved by another writer.
        """
        db = await self._connection()
        async with self._tx_lock:
            try:
                await db.execute("BEGIN IMMEDIATE" if write else "BEGIN")
                try:
                    yield db
                except BaseException:
                    if db.in_transaction:
                        await db.execute("ROLLBACK")
                    raise
                await db.execute("COMMIT")
            except sqlite3.Error as e:
                raise classify_sqlite_error(e) from e

    @track(
        operation="local_credential_list",
        include_args=["search_term", "page", "page_size"],
        frequency="high_frequency",
    )
    async def list(
        self, search_term: Optional[str] = None, page: int = 1, page_size: int = 50
    ) -> CredentialPage:
        where = ""
        params: List[Any] = []
        if search_term:
            needle = search_term.casefold()
            where = "WHERE instr(casefold(service), ?) > 0 OR instr(casefold(username), ?) > 0"
            params = [needle, needle]

        async with self._transaction() as db:
            async with db.execute(f"SELECT COUNT(*) FROM {TABLE} {where}", params) as cursor:
                total = (await cursor.fetchone())[0]

            async with db.execute(
                f"""
                SELECT {SELECT_COLUMNS} FROM {TABLE} {where}
                ORDER BY updated_at DESC, id ASC
                LIMIT ? OFFSET ?
                """,
                [*params, page_size, page_offset(page, page_size)],
            ) as cursor:
                rows = await cursor.fetchall()

        return CredentialPage(
            records=[row_to_record(row) for row in rows],
            total=total,
            page=page,
            page_size=page_size,
        )

    @track(
        operation="local_credential_get",
        include_args=["credential_id"],
        frequency="high_frequency",
    )
    async def get_by_id(self, credential_id: str) -> CredentialRecord:
        async with self._transaction() as db:
            row = await self._fetch_row(db, credential_id)
        if row is None:
            raise CredentialNotFoundError(credential_id)
        return row_to_record(row)

    @track(operation="local_credential_create", include_args=False)
    async def create(self, data: CredentialCreate) -> CredentialRecord:
        now = utc_now()
        record = CredentialRecord(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            **data.model_dump(),
        )
        row = record.model_dump()
        row["created_at"] = format_timestamp(now)
        row["updated_at"] = row["created_at"]

        query, values = build_insert_query(TABLE, row, paramstyle=QMARK)
        async with self._transaction(write=True) as db:
            await db.execute(query, values)

        log_event(
            "credential_created",
            {"credential_id": record.id, "backend": self.kind.value},
        )
        return record

    @track(operation="local_credential_update", include_args=["credential_id", "changes"])
    async def update(self, credential_id: str, changes: Dict[str, Any]) -> CredentialRecord:
        async with self._transaction(write=True) as db:
            row = await self._fetch_row(db, credential_id)
            if row is None:
                raise CredentialNotFoundError(credential_id)

            current = row_to_record(row)
            updated_at = next_updated_at(current.updated_at)
            query, values = build_update_query(
                TABLE,
                {**changes, "updated_at": format_timestamp(updated_at)},
                "id",
                credential_id,
                paramstyle=QMARK,
            )
            await db.execute(query, values)

        log_event(
            "credential_updated",
            {
                "credential_id": credential_id,
                "backend": self.kind.value,
                "fields": sorted(changes.keys()),
            },
        )
        return current.model_copy(update={**changes, "updated_at": updated_at})

    @track(operation="local_credential_delete", include_args=["credential_id"])
    async def delete(self, credential_id: str) -> None:
        async with self._transaction(write=True) as db:
            cursor = await db.execute(f"DELETE FROM {TABLE} WHERE id = ?", [credential_id])
            deleted = cursor.rowcount
            await cursor.close()

        if deleted == 0:
            raise CredentialNotFoundError(credential_id)

        log_event(
            "credential_deleted",
            {"credential_id": credential_id, "backend": self.kind.value},
        )

    @track(operation="local_credential_stats", include_args=["window_days"])
    async def stats(self, window_days: int = 30) -> CredentialStats:
        cutoff = format_timestamp(utc_now() - timedelta(days=window_days))

        async with self._transaction() as db:
            async with db.execute(f"SELECT COUNT(*) FROM {TABLE}") as cursor:
                total = (await cursor.fetchone())[0]
            async with db.execute(
                f"SELECT COUNT(*) FROM {TABLE} WHERE created_at >= ?", [cutoff]
            ) as cursor:
                recent = (await cursor.fetchone())[0]
            async with db.execute(
                f"""
                SELECT service, COUNT(*) AS count, MAX(updated_at) AS last_updated
                FROM {TABLE}
                GROUP BY service
                ORDER BY count DESC, service ASC
                LIMIT ?
                """,
                [TOP_SERVICES_LIMIT],
            ) as cursor:
                rows = await cursor.fetchall()

        return CredentialStats(
            total=total,
            recent_count=recent,
            window_days=window_days,
            per_service=[
                ServiceBreakdown(
                    service=row["service"],
                    count=row["count"],
                    last_updated=parse_timestamp(row["last_updated"]),
                )
                for row in rows
            ],
        )

    async def health_check(self) -> Dict[str, Any]:
        started = time.perf_counter()
        async with self._transaction() as db:
            async with db.execute("PRAGMA user_version") as cursor:
                version = (await cursor.fetchone())[0]
            async with db.execute(f"SELECT COUNT(*) FROM {TABLE}") as cursor:
                total = (await cursor.fetchone())[0]

        return {
            "status": "healthy",
            "backend": self.kind.value,
            "path": self.path,
            "schema_version": version,
            "total_records": total,
            "response_time_ms": round((time.perf_counter() - started) * 1000, 2),
        }

    async def close(self) -> None:
        if self._db is None:
            return
        db, self._db = self._db, None
        await db.close()
        log_event("local_store_closed", {"backend": self.kind.value}, level=logging.DEBUG)

    async def _fetch_row(self, db: aiosqlite.Connection, credential_id: str):
        async with db.execute(
            f"SELECT {SELECT_COLUMNS} FROM {TABLE} WHERE id = ?", [credential_id]
        ) as cursor:
            return await cursor.fetchone()
