"""
SQLite implementation of the mapping database.

Lightweight, embedded persistence using SQLite with async support via
aiosqlite. Suitable for development, testing, and single-process
deployments.

SQLite-specific adaptations:
- UUIDs stored as TEXT (36-character hyphenated format)
- Datetimes stored as TEXT (ISO 8601 format)
- Positional parameters (?) instead of named parameters
- One connection per database, shared by every store and transaction.
  Transactions and auto-committing operations, reads included, are
  serialised with one asyncio.Lock, so a read never sees rows of a
  transaction that has not committed yet.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import AbstractAsyncContextManager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Generic

import aiosqlite

from idmapping.exceptions import MappingStoreError, UniqueConstraintViolation
from idmapping.observability import (
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_DB_TABLE,
    ATTR_MAPPING_KIND,
    ATTR_RUN_LABEL,
    ATTR_SOURCE_ID,
    ATTR_SUBJECT_ID,
    ATTR_TARGET_ID,
    Tracer,
    create_tracer,
)
from idmapping.paging import PageRequest
from idmapping.records import MappingRecord, MigrationMarker
from idmapping.schema import MARKER_TABLE, generate_statements
from idmapping.stores.interface import PagingMixin, TRecord

if TYPE_CHECKING:
    from idmapping.config import MappingServiceConfig

logger = logging.getLogger(__name__)


class SQLiteMappingStore(PagingMixin, Generic[TRecord]):
    """
    SQLite store for one entity kind.

    Stores obtained from ``SQLiteMappingDatabase.store()`` commit after
    every write. Stores obtained from a transaction session leave commit
    and rollback to the session.

    Example:
        >>> async with SQLiteMappingDatabase(":memory:") as database:
        ...     await database.initialize([CorporateMapping])
        ...     store = database.store(CorporateMapping)
        ...     await store.insert(CorporateMapping(source_id=1, target_id="a"))
    """

    def __init__(
        self,
        database: SQLiteMappingDatabase,
        record_class: type[TRecord],
        autocommit: bool,
        tracer: Tracer,
    ) -> None:
        self._tracer = tracer
        self._enable_tracing = tracer.enabled
        self._database = database
        self._record_class = record_class
        self._autocommit = autocommit
        self._table_name = record_class.table_name()
        self._field_names = record_class.field_names()
        self._columns = ", ".join(self._field_names)

    @property
    def record_class(self) -> type[TRecord]:
        return self._record_class

    def _attrs(self, operation: str, **extra: Any) -> dict[str, Any] | None:
        if not self._enable_tracing:
            return None
        attrs = {
            ATTR_MAPPING_KIND: self._record_class.kind(),
            ATTR_DB_SYSTEM: "sqlite",
            ATTR_DB_OPERATION: operation,
            ATTR_DB_TABLE: self._table_name,
        }
        attrs.update({key: str(value) for key, value in extra.items()})
        return attrs

    def _source_clause(self, source_id: Any) -> tuple[str, tuple[Any, ...]]:
        key = self._record_class.normalize_source_key(source_id)
        clause = " AND ".join(f"{name} = ?" for name in self._record_class.source_fields())
        return clause, key

    def _row_to_record(self, row: Sequence[Any]) -> TRecord:
        return self._record_class.model_validate(dict(zip(self._field_names, row)))

    async def insert(self, record: TRecord) -> TRecord:
        with self._tracer.span(
            "idmapping.store.insert",
            self._attrs("INSERT", **{ATTR_TARGET_ID: record.target_key}),
        ):
            stored = record.with_created_at(datetime.now(UTC))
            values = stored.to_columns(json_safe=True)
            placeholders = ", ".join("?" * len(self._field_names))
            query = f"""
                INSERT INTO {self._table_name} ({self._columns})
                VALUES ({placeholders})
            """  # nosec B608 - table_name from trusted class

            try:
                await self._write(query, tuple(values[name] for name in self._field_names))
            except aiosqlite.IntegrityError as e:
                if "unique" in str(e).lower():
                    raise UniqueConstraintViolation(self._table_name, record, str(e)) from e
                raise

            logger.debug("Inserted %s", stored.describe())
            return stored  # type: ignore[return-value]

    async def update(self, record: TRecord) -> TRecord | None:
        if not self._record_class.is_updatable():
            raise MappingStoreError(f"{self._record_class.kind()} mappings cannot be updated")
        with self._tracer.span(
            "idmapping.store.update",
            self._attrs("UPDATE", **{ATTR_TARGET_ID: record.target_key}),
        ):
            target_field = self._record_class.target_field()
            values = record.to_columns(json_safe=True)
            update_fields = [
                name for name in self._field_names if name not in (target_field, "created_at")
            ]
            set_clause = ", ".join(f"{name} = ?" for name in update_fields)
            query = f"""
                UPDATE {self._table_name}
                SET {set_clause}
                WHERE {target_field} = ?
            """  # nosec B608 - table_name from trusted class
            params = (*(values[name] for name in update_fields), values[target_field])

            try:
                rowcount = await self._write(query, params)
            except aiosqlite.IntegrityError as e:
                if "unique" in str(e).lower():
                    raise UniqueConstraintViolation(self._table_name, record, str(e)) from e
                raise

            if rowcount == 0:
                return None
            return await self.find_by_target_id(record.target_key)

    async def find_by_source_id(self, source_id: Any) -> TRecord | None:
        clause, params = self._source_clause(source_id)
        with self._tracer.span(
            "idmapping.store.find_by_source_id",
            self._attrs("SELECT", **{ATTR_SOURCE_ID: "/".join(map(str, params))}),
        ):
            query = f"""
                SELECT {self._columns}
                FROM {self._table_name}
                WHERE {clause}
            """  # nosec B608 - table_name from trusted class
            return await self._fetch_one(query, params)

    async def find_by_target_id(self, target_id: Any) -> TRecord | None:
        with self._tracer.span(
            "idmapping.store.find_by_target_id",
            self._attrs("SELECT", **{ATTR_TARGET_ID: target_id}),
        ):
            query = f"""
                SELECT {self._columns}
                FROM {self._table_name}
                WHERE {self._record_class.target_field()} = ?
            """  # nosec B608 - table_name from trusted class
            return await self._fetch_one(query, (self._target_param(target_id),))

    async def find_by_subject(self, subject_id: Any) -> list[TRecord]:
        subject_field = self._require_subject()
        with self._tracer.span(
            "idmapping.store.find_by_subject",
            self._attrs("SELECT", **{ATTR_SUBJECT_ID: subject_id}),
        ):
            query = f"""
                SELECT {self._columns}
                FROM {self._table_name}
                WHERE {subject_field} = ?
                ORDER BY {self._key_order()}
            """  # nosec B608 - table_name from trusted class
            return await self._fetch_all(query, (subject_id,))

    async def delete_by_source_id(self, source_id: Any) -> int:
        clause, params = self._source_clause(source_id)
        with self._tracer.span(
            "idmapping.store.delete_by_source_id",
            self._attrs("DELETE", **{ATTR_SOURCE_ID: "/".join(map(str, params))}),
        ):
            query = f"DELETE FROM {self._table_name} WHERE {clause}"  # nosec B608
            return await self._write(query, params)

    async def delete_by_target_id(self, target_id: Any) -> int:
        with self._tracer.span(
            "idmapping.store.delete_by_target_id",
            self._attrs("DELETE", **{ATTR_TARGET_ID: target_id}),
        ):
            query = (
                f"DELETE FROM {self._table_name} "  # nosec B608
                f"WHERE {self._record_class.target_field()} = ?"
            )
            return await self._write(query, (self._target_param(target_id),))

    async def delete_by_subject(self, subject_id: Any) -> int:
        subject_field = self._require_subject()
        with self._tracer.span(
            "idmapping.store.delete_by_subject",
            self._attrs("DELETE", **{ATTR_SUBJECT_ID: subject_id}),
        ):
            query = f"DELETE FROM {self._table_name} WHERE {subject_field} = ?"  # nosec B608
            return await self._write(query, (subject_id,))

    async def delete_all(self) -> int:
        with self._tracer.span("idmapping.store.delete_all", self._attrs("DELETE")):
            return await self._write(f"DELETE FROM {self._table_name}", ())  # nosec B608

    async def count_by_label(self, label: str) -> int:
        with self._tracer.span(
            "idmapping.store.count_by_label",
            self._attrs("SELECT", **{ATTR_RUN_LABEL: label}),
        ):
            query = f"SELECT COUNT(*) FROM {self._table_name} WHERE label = ?"  # nosec B608
            return await self._fetch_count(query, (label,))

    async def find_by_label(self, label: str, page_request: PageRequest) -> list[TRecord]:
        with self._tracer.span(
            "idmapping.store.find_by_label",
            self._attrs("SELECT", **{ATTR_RUN_LABEL: label}),
        ):
            query = f"""
                SELECT {self._columns}
                FROM {self._table_name}
                WHERE label = ?
                ORDER BY label DESC, {self._key_order()}
                LIMIT ? OFFSET ?
            """  # nosec B608 - table_name from trusted class
            return await self._fetch_all(query, (label, page_request.size, page_request.offset))

    async def count_all(self) -> int:
        with self._tracer.span("idmapping.store.count_all", self._attrs("SELECT")):
            query = f"SELECT COUNT(*) FROM {self._table_name}"  # nosec B608
            return await self._fetch_count(query, ())

    async def find_all(self, page_request: PageRequest) -> list[TRecord]:
        with self._tracer.span("idmapping.store.find_all", self._attrs("SELECT")):
            query = f"""
                SELECT {self._columns}
                FROM {self._table_name}
                ORDER BY {self._key_order()}
                LIMIT ? OFFSET ?
            """  # nosec B608 - table_name from trusted class
            return await self._fetch_all(query, (page_request.size, page_request.offset))

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _target_param(self, target_id: Any) -> str:
        return str(self._record_class.coerce_target_id(target_id))

    def _key_order(self) -> str:
        keys = (self._record_class.target_field(), *self._record_class.source_fields())
        return ", ".join(f"{name} ASC" for name in keys)

    def _require_subject(self) -> str:
        subject_field = self._record_class.subject_field()
        if subject_field is None:
            raise MappingStoreError(f"{self._record_class.kind()} mappings have no subject field")
        return subject_field

    async def _fetch_one(self, query: str, params: Sequence[Any]) -> TRecord | None:
        conn = self._database._ensure_connected()
        async with self._database._guard(self._autocommit):
            cursor = await conn.execute(query, tuple(params))
            row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_record(row)

    async def _fetch_all(self, query: str, params: Sequence[Any]) -> list[TRecord]:
        conn = self._database._ensure_connected()
        async with self._database._guard(self._autocommit):
            cursor = await conn.execute(query, tuple(params))
            rows = await cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    async def _fetch_count(self, query: str, params: Sequence[Any]) -> int:
        conn = self._database._ensure_connected()
        async with self._database._guard(self._autocommit):
            cursor = await conn.execute(query, tuple(params))
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def _write(self, query: str, params: Sequence[Any]) -> int:
        """Execute a write, committing it unless running inside a session."""
        conn = self._database._ensure_connected()
        if not self._autocommit:
            cursor = await conn.execute(query, tuple(params))
            return cursor.rowcount

        async with self._database._lock:
            try:
                cursor = await conn.execute(query, tuple(params))
                await conn.commit()
            except aiosqlite.Error:
                await conn.rollback()
                raise
            return cursor.rowcount

    def __repr__(self) -> str:
        return (
            f"SQLiteMappingStore({self._record_class.__name__}, "
            f"table={self._table_name!r}, autocommit={self._autocommit})"
        )


class SQLiteMigrationMarkerStore:
    """Migration markers in the ``migration_markers`` table."""

    def __init__(self, database: SQLiteMappingDatabase, autocommit: bool) -> None:
        self._database = database
        self._autocommit = autocommit
        self._field_names = MigrationMarker.field_names()

    async def record(self, marker: MigrationMarker) -> MigrationMarker:
        stored = marker.model_copy(update={"created_at": datetime.now(UTC)})
        values = stored.model_dump(mode="json")
        query = f"""
            INSERT INTO {MARKER_TABLE} (family, subject_id, label, created_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(family, subject_id) DO UPDATE SET
                label = excluded.label,
                created_at = excluded.created_at
        """  # nosec B608 - constant table name
        conn = self._database._ensure_connected()
        params = tuple(values[name] for name in self._field_names)
        if self._autocommit:
            async with self._database._lock:
                try:
                    await conn.execute(query, params)
                    await conn.commit()
                except aiosqlite.Error:
                    await conn.rollback()
                    raise
        else:
            await conn.execute(query, params)
        return stored

    async def find(self, family: str, subject_id: str) -> MigrationMarker | None:
        conn = self._database._ensure_connected()
        async with self._database._guard(self._autocommit):
            cursor = await conn.execute(
                f"SELECT family, subject_id, label, created_at FROM {MARKER_TABLE} "  # nosec B608
                "WHERE family = ? AND subject_id = ?",
                (family, subject_id),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return MigrationMarker.model_validate(dict(zip(self._field_names, row)))

    def _label_clause(self, label: str, family: str | None) -> tuple[str, list[Any]]:
        if family is None:
            return "label = ?", [label]
        return "label = ? AND family = ?", [label, family]

    async def count_by_label(self, label: str, family: str | None = None) -> int:
        clause, params = self._label_clause(label, family)
        conn = self._database._ensure_connected()
        async with self._database._guard(self._autocommit):
            cursor = await conn.execute(
                f"SELECT COUNT(*) FROM {MARKER_TABLE} WHERE {clause}",  # nosec B608
                tuple(params),
            )
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def find_by_label(
        self,
        label: str,
        page_request: PageRequest,
        family: str | None = None,
    ) -> list[MigrationMarker]:
        clause, params = self._label_clause(label, family)
        conn = self._database._ensure_connected()
        async with self._database._guard(self._autocommit):
            cursor = await conn.execute(
                f"""
                SELECT family, subject_id, label, created_at
                FROM {MARKER_TABLE}
                WHERE {clause}
                ORDER BY family ASC, subject_id ASC
                LIMIT ? OFFSET ?
                """,  # nosec B608 - constant table name
                (*params, page_request.size, page_request.offset),
            )
            rows = await cursor.fetchall()
        return [MigrationMarker.model_validate(dict(zip(self._field_names, row))) for row in rows]

    async def delete_all(self, family: str | None = None) -> int:
        conn = self._database._ensure_connected()
        if family is None:
            query, params = f"DELETE FROM {MARKER_TABLE}", ()  # nosec B608
        else:
            query, params = f"DELETE FROM {MARKER_TABLE} WHERE family = ?", (family,)  # nosec B608
        if not self._autocommit:
            cursor = await conn.execute(query, params)
            return cursor.rowcount
        async with self._database._lock:
            try:
                cursor = await conn.execute(query, params)
                await conn.commit()
            except aiosqlite.Error:
                await conn.rollback()
                raise
            return cursor.rowcount


class _SQLiteSession:
    """Stores bound to an open SQLite transaction."""

    def __init__(self, database: SQLiteMappingDatabase) -> None:
        self._database = database

    def store(self, record_class: type[TRecord]) -> SQLiteMappingStore[TRecord]:
        return SQLiteMappingStore(self._database, record_class, False, self._database._tracer)

    @property
    def markers(self) -> SQLiteMigrationMarkerStore:
        return SQLiteMigrationMarkerStore(self._database, autocommit=False)


class SQLiteMappingDatabase:
    """
    SQLite-backed mapping database.

    Args:
        database: Path to SQLite database file or ':memory:' for in-memory
        wal_mode: If True, enable WAL mode for better concurrency
        busy_timeout: Timeout in milliseconds when database is locked
        tracer: Optional tracer (created from ``enable_tracing`` otherwise)
        enable_tracing: If True and OpenTelemetry is available, emit traces

    Example:
        >>> async with SQLiteMappingDatabase("mappings.db") as database:
        ...     await database.initialize(CORPORATE.kinds())
        ...     async with database.transaction() as session:
        ...         await session.store(CorporateMapping).insert(parent)
    """

    def __init__(
        self,
        database: str = ":memory:",
        *,
        wal_mode: bool = True,
        busy_timeout: int = 5000,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._database = database
        self._wal_mode = wal_mode
        self._busy_timeout = busy_timeout
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    @classmethod
    def from_config(
        cls,
        database: str,
        config: MappingServiceConfig,
        tracer: Tracer | None = None,
    ) -> SQLiteMappingDatabase:
        """
        Build a database using the SQLite and tracing settings of a service config.

        Example:
            >>> config = MappingServiceConfig(sqlite_wal_mode=False, sqlite_busy_timeout=100)
            >>> SQLiteMappingDatabase.from_config("mappings.db", config)
        """
        return cls(
            database,
            wal_mode=config.sqlite_wal_mode,
            busy_timeout=config.sqlite_busy_timeout,
            tracer=tracer,
            enable_tracing=config.enable_tracing,
        )

    async def __aenter__(self) -> SQLiteMappingDatabase:
        await self._connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    async def _connect(self) -> None:
        """Open the database connection and configure settings."""
        if self._connection is not None:
            return

        self._connection = await aiosqlite.connect(self._database)
        await self._connection.execute(f"PRAGMA busy_timeout = {self._busy_timeout}")
        if self._wal_mode:
            await self._connection.execute("PRAGMA journal_mode = WAL")

        logger.debug(
            "Connected to SQLite database: %s (wal_mode=%s, busy_timeout=%d)",
            self._database,
            self._wal_mode,
            self._busy_timeout,
        )

    async def close(self) -> None:
        """Close the database connection. Safe to call multiple times."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.debug("Closed SQLite database connection: %s", self._database)

    async def initialize(self, record_classes: Iterable[type[MappingRecord]]) -> None:
        """
        Create tables and indexes for the given kinds plus the marker table.

        Idempotent - safe to call multiple times.
        """
        if self._connection is None:
            await self._connect()
        conn = self._ensure_connected()

        statements = generate_statements(record_classes, dialect="sqlite")
        await conn.executescript("\n".join(statements))
        await conn.commit()

        logger.info("Initialized SQLite mapping schema: %s", self._database)

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise MappingStoreError(
                "Not connected to database. Use 'async with database:' or call initialize() first."
            )
        return self._connection

    def _guard(self, autocommit: bool) -> AbstractAsyncContextManager[Any]:
        if autocommit:
            return self._lock
        return contextlib.nullcontext()

    def store(self, record_class: type[TRecord]) -> SQLiteMappingStore[TRecord]:
        return SQLiteMappingStore(self, record_class, True, self._tracer)

    @property
    def markers(self) -> SQLiteMigrationMarkerStore:
        return SQLiteMigrationMarkerStore(self, autocommit=True)

    @contextlib.asynccontextmanager
    async def transaction(self) -> AsyncIterator[_SQLiteSession]:
        """
        Open a write transaction.

        Commits when the block exits normally, rolls back when it raises.
        Other stores of this database wait until it ends, so inside the block
        only the session's stores may be used.
        """
        conn = self._ensure_connected()
        async with self._lock:
            try:
                yield _SQLiteSession(self)
            except BaseException:
                await conn.rollback()
                raise
            else:
                await conn.commit()

    def __repr__(self) -> str:
        return (
            f"SQLiteMappingDatabase({self._database!r}, "
            f"connected={self._connection is not None}, "
            f"tracing={'enabled' if self._enable_tracing else 'disabled'})"
        )


__all__ = [
    "SQLiteMappingDatabase",
    "SQLiteMappingStore",
    "SQLiteMigrationMarkerStore",
]
