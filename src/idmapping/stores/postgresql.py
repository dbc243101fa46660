"""
PostgreSQL implementation of the mapping database.

Uses SQLAlchemy's async engine with raw ``text()`` statements. Stores built
on the engine run each operation in its own transaction; stores handed out
by ``transaction()`` share the session's ``AsyncConnection`` so every write
commits or rolls back together.

Usage:
    >>> from sqlalchemy.ext.asyncio import create_async_engine
    >>> engine = create_async_engine("postgresql+asyncpg://localhost/mappings")
    >>> database = PostgreSQLMappingDatabase(engine)
    >>> await database.initialize(CORPORATE.kinds())
    >>> async with database.transaction() as session:
    ...     await session.store(CorporateMapping).insert(parent)

See Also:
    - :mod:`idmapping.stores.sqlite` for the embedded backend
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator, Iterable, Sequence
from datetime import UTC, datetime
from typing import Any, Generic

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

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
from idmapping.stores._connection import execute_with_connection
from idmapping.stores.interface import PagingMixin, TRecord

logger = logging.getLogger(__name__)


def _is_unique_violation(error: IntegrityError) -> bool:
    sqlstate = getattr(error.orig, "sqlstate", None) or getattr(error.orig, "pgcode", None)
    if sqlstate is not None:
        return sqlstate == "23505"
    return "unique" in str(error).lower()


class PostgreSQLMappingStore(PagingMixin, Generic[TRecord]):
    """
    PostgreSQL store for one entity kind.

    Args:
        conn: Database engine (auto-commit per operation) or connection
            (caller manages the transaction)
        record_class: The MappingRecord subclass this store persists
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing
    """

    def __init__(
        self,
        conn: AsyncConnection | AsyncEngine,
        record_class: type[TRecord],
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._conn = conn
        self._record_class = record_class
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
            ATTR_DB_SYSTEM: "postgresql",
            ATTR_DB_OPERATION: operation,
            ATTR_DB_TABLE: self._table_name,
        }
        attrs.update({key: str(value) for key, value in extra.items()})
        return attrs

    def _source_clause(self, source_id: Any) -> tuple[str, dict[str, Any]]:
        key = self._record_class.normalize_source_key(source_id)
        fields = self._record_class.source_fields()
        clause = " AND ".join(f"{name} = :{name}" for name in fields)
        return clause, dict(zip(fields, key))

    def _row_to_record(self, row: Sequence[Any]) -> TRecord:
        return self._record_class.model_validate(dict(zip(self._field_names, row)))

    async def insert(self, record: TRecord) -> TRecord:
        with self._tracer.span(
            "idmapping.store.insert",
            self._attrs("INSERT", **{ATTR_TARGET_ID: record.target_key}),
        ):
            stored = record.with_created_at(datetime.now(UTC))
            placeholders = ", ".join(f":{name}" for name in self._field_names)
            query = text(f"""
                INSERT INTO {self._table_name} ({self._columns})
                VALUES ({placeholders})
            """)  # nosec B608 - table_name from trusted class

            try:
                async with execute_with_connection(self._conn, transactional=True) as conn:
                    await conn.execute(query, stored.to_columns())
            except IntegrityError as e:
                if _is_unique_violation(e):
                    raise UniqueConstraintViolation(self._table_name, record, str(e.orig)) from e
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
            update_fields = [
                name for name in self._field_names if name not in (target_field, "created_at")
            ]
            set_clause = ", ".join(f"{name} = :{name}" for name in update_fields)
            query = text(f"""
                UPDATE {self._table_name}
                SET {set_clause}
                WHERE {target_field} = :{target_field}
                RETURNING {self._columns}
            """)  # nosec B608 - table_name from trusted class

            try:
                async with execute_with_connection(self._conn, transactional=True) as conn:
                    result = await conn.execute(query, record.to_columns())
                    row = result.fetchone()
            except IntegrityError as e:
                if _is_unique_violation(e):
                    raise UniqueConstraintViolation(self._table_name, record, str(e.orig)) from e
                raise

            if row is None:
                return None
            return self._row_to_record(row)

    async def find_by_source_id(self, source_id: Any) -> TRecord | None:
        clause, params = self._source_clause(source_id)
        with self._tracer.span(
            "idmapping.store.find_by_source_id",
            self._attrs("SELECT", **{ATTR_SOURCE_ID: "/".join(map(str, params.values()))}),
        ):
            query = text(f"""
                SELECT {self._columns}
                FROM {self._table_name}
                WHERE {clause}
            """)  # nosec B608 - table_name from trusted class
            return await self._fetch_one(query, params)

    async def find_by_target_id(self, target_id: Any) -> TRecord | None:
        target_field = self._record_class.target_field()
        with self._tracer.span(
            "idmapping.store.find_by_target_id",
            self._attrs("SELECT", **{ATTR_TARGET_ID: target_id}),
        ):
            query = text(f"""
                SELECT {self._columns}
                FROM {self._table_name}
                WHERE {target_field} = :target_id
            """)  # nosec B608 - table_name from trusted class
            return await self._fetch_one(
                query, {"target_id": self._record_class.coerce_target_id(target_id)}
            )

    async def find_by_subject(self, subject_id: Any) -> list[TRecord]:
        subject_field = self._require_subject()
        with self._tracer.span(
            "idmapping.store.find_by_subject",
            self._attrs("SELECT", **{ATTR_SUBJECT_ID: subject_id}),
        ):
            query = text(f"""
                SELECT {self._columns}
                FROM {self._table_name}
                WHERE {subject_field} = :subject_id
                ORDER BY {self._key_order()}
            """)  # nosec B608 - table_name from trusted class
            return await self._fetch_all(query, {"subject_id": subject_id})

    async def delete_by_source_id(self, source_id: Any) -> int:
        clause, params = self._source_clause(source_id)
        with self._tracer.span(
            "idmapping.store.delete_by_source_id",
            self._attrs("DELETE", **{ATTR_SOURCE_ID: "/".join(map(str, params.values()))}),
        ):
            query = text(f"DELETE FROM {self._table_name} WHERE {clause}")  # nosec B608
            return await self._write(query, params)

    async def delete_by_target_id(self, target_id: Any) -> int:
        target_field = self._record_class.target_field()
        with self._tracer.span(
            "idmapping.store.delete_by_target_id",
            self._attrs("DELETE", **{ATTR_TARGET_ID: target_id}),
        ):
            query = text(
                f"DELETE FROM {self._table_name} WHERE {target_field} = :target_id"  # nosec B608
            )
            return await self._write(
                query, {"target_id": self._record_class.coerce_target_id(target_id)}
            )

    async def delete_by_subject(self, subject_id: Any) -> int:
        subject_field = self._require_subject()
        with self._tracer.span(
            "idmapping.store.delete_by_subject",
            self._attrs("DELETE", **{ATTR_SUBJECT_ID: subject_id}),
        ):
            query = text(
                f"DELETE FROM {self._table_name} WHERE {subject_field} = :subject_id"  # nosec B608
            )
            return await self._write(query, {"subject_id": subject_id})

    async def delete_all(self) -> int:
        with self._tracer.span("idmapping.store.delete_all", self._attrs("DELETE")):
            return await self._write(text(f"DELETE FROM {self._table_name}"), {})  # nosec B608

    async def count_by_label(self, label: str) -> int:
        with self._tracer.span(
            "idmapping.store.count_by_label",
            self._attrs("SELECT", **{ATTR_RUN_LABEL: label}),
        ):
            query = text(
                f"SELECT COUNT(*) FROM {self._table_name} WHERE label = :label"  # nosec B608
            )
            return await self._fetch_count(query, {"label": label})

    async def find_by_label(self, label: str, page_request: PageRequest) -> list[TRecord]:
        with self._tracer.span(
            "idmapping.store.find_by_label",
            self._attrs("SELECT", **{ATTR_RUN_LABEL: label}),
        ):
            query = text(f"""
                SELECT {self._columns}
                FROM {self._table_name}
                WHERE label = :label
                ORDER BY label DESC, {self._key_order()}
                LIMIT :limit OFFSET :offset
            """)  # nosec B608 - table_name from trusted class
            return await self._fetch_all(
                query,
                {"label": label, "limit": page_request.size, "offset": page_request.offset},
            )

    async def count_all(self) -> int:
        with self._tracer.span("idmapping.store.count_all", self._attrs("SELECT")):
            query = text(f"SELECT COUNT(*) FROM {self._table_name}")  # nosec B608
            return await self._fetch_count(query, {})

    async def find_all(self, page_request: PageRequest) -> list[TRecord]:
        with self._tracer.span("idmapping.store.find_all", self._attrs("SELECT")):
            query = text(f"""
                SELECT {self._columns}
                FROM {self._table_name}
                ORDER BY {self._key_order()}
                LIMIT :limit OFFSET :offset
            """)  # nosec B608 - table_name from trusted class
            return await self._fetch_all(
                query, {"limit": page_request.size, "offset": page_request.offset}
            )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _key_order(self) -> str:
        keys = (self._record_class.target_field(), *self._record_class.source_fields())
        return ", ".join(f"{name} ASC" for name in keys)

    def _require_subject(self) -> str:
        subject_field = self._record_class.subject_field()
        if subject_field is None:
            raise MappingStoreError(f"{self._record_class.kind()} mappings have no subject field")
        return subject_field

    async def _fetch_one(self, query: Any, params: dict[str, Any]) -> TRecord | None:
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(query, params)
            row = result.fetchone()
        if row is None:
            return None
        return self._row_to_record(row)

    async def _fetch_all(self, query: Any, params: dict[str, Any]) -> list[TRecord]:
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(query, params)
            rows = result.fetchall()
        return [self._row_to_record(row) for row in rows]

    async def _fetch_count(self, query: Any, params: dict[str, Any]) -> int:
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(query, params)
            row = result.fetchone()
        return int(row[0]) if row else 0

    async def _write(self, query: Any, params: dict[str, Any]) -> int:
        async with execute_with_connection(self._conn, transactional=True) as conn:
            result = await conn.execute(query, params)
        return int(result.rowcount)

    def __repr__(self) -> str:
        return f"PostgreSQLMappingStore({self._record_class.__name__}, table={self._table_name!r})"


class PostgreSQLMigrationMarkerStore:
    """Migration markers in the ``migration_markers`` table."""

    _COLUMNS = "family, subject_id, label, created_at"

    def __init__(self, conn: AsyncConnection | AsyncEngine) -> None:
        self._conn = conn
        self._field_names = MigrationMarker.field_names()

    def _row_to_marker(self, row: Sequence[Any]) -> MigrationMarker:
        return MigrationMarker.model_validate(dict(zip(self._field_names, row)))

    async def record(self, marker: MigrationMarker) -> MigrationMarker:
        stored = marker.model_copy(update={"created_at": datetime.now(UTC)})
        query = text(f"""
            INSERT INTO {MARKER_TABLE} ({self._COLUMNS})
            VALUES (:family, :subject_id, :label, :created_at)
            ON CONFLICT (family, subject_id) DO UPDATE SET
                label = EXCLUDED.label,
                created_at = EXCLUDED.created_at
        """)  # nosec B608 - constant table name
        async with execute_with_connection(self._conn, transactional=True) as conn:
            await conn.execute(query, stored.model_dump())
        return stored

    async def find(self, family: str, subject_id: str) -> MigrationMarker | None:
        query = text(f"""
            SELECT {self._COLUMNS}
            FROM {MARKER_TABLE}
            WHERE family = :family AND subject_id = :subject_id
        """)  # nosec B608 - constant table name
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(query, {"family": family, "subject_id": subject_id})
            row = result.fetchone()
        if row is None:
            return None
        return self._row_to_marker(row)

    def _label_clause(self, label: str, family: str | None) -> tuple[str, dict[str, Any]]:
        if family is None:
            return "label = :label", {"label": label}
        return "label = :label AND family = :family", {"label": label, "family": family}

    async def count_by_label(self, label: str, family: str | None = None) -> int:
        clause, params = self._label_clause(label, family)
        query = text(f"SELECT COUNT(*) FROM {MARKER_TABLE} WHERE {clause}")  # nosec B608
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(query, params)
            row = result.fetchone()
        return int(row[0]) if row else 0

    async def find_by_label(
        self,
        label: str,
        page_request: PageRequest,
        family: str | None = None,
    ) -> list[MigrationMarker]:
        clause, params = self._label_clause(label, family)
        query = text(f"""
            SELECT {self._COLUMNS}
            FROM {MARKER_TABLE}
            WHERE {clause}
            ORDER BY family ASC, subject_id ASC
            LIMIT :limit OFFSET :offset
        """)  # nosec B608 - constant table name
        params.update(limit=page_request.size, offset=page_request.offset)
        async with execute_with_connection(self._conn, transactional=False) as conn:
            result = await conn.execute(query, params)
            rows = result.fetchall()
        return [self._row_to_marker(row) for row in rows]

    async def delete_all(self, family: str | None = None) -> int:
        if family is None:
            query, params = text(f"DELETE FROM {MARKER_TABLE}"), {}  # nosec B608
        else:
            query = text(f"DELETE FROM {MARKER_TABLE} WHERE family = :family")  # nosec B608
            params = {"family": family}
        async with execute_with_connection(self._conn, transactional=True) as conn:
            result = await conn.execute(query, params)
        return int(result.rowcount)


class _PostgreSQLSession:
    """Stores sharing one open ``AsyncConnection`` transaction."""

    def __init__(self, conn: AsyncConnection, tracer: Tracer) -> None:
        self._conn = conn
        self._tracer = tracer

    def store(self, record_class: type[TRecord]) -> PostgreSQLMappingStore[TRecord]:
        return PostgreSQLMappingStore(self._conn, record_class, tracer=self._tracer)

    @property
    def markers(self) -> PostgreSQLMigrationMarkerStore:
        return PostgreSQLMigrationMarkerStore(self._conn)


class PostgreSQLMappingDatabase:
    """
    PostgreSQL-backed mapping database.

    Args:
        engine: SQLAlchemy async engine (asyncpg driver)
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing
    """

    def __init__(
        self,
        engine: AsyncEngine,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._engine = engine

    def store(self, record_class: type[TRecord]) -> PostgreSQLMappingStore[TRecord]:
        return PostgreSQLMappingStore(self._engine, record_class, tracer=self._tracer)

    @property
    def markers(self) -> PostgreSQLMigrationMarkerStore:
        return PostgreSQLMigrationMarkerStore(self._engine)

    @contextlib.asynccontextmanager
    async def transaction(self) -> AsyncIterator[_PostgreSQLSession]:
        """Open a transaction; commits on normal exit, rolls back on error."""
        async with self._engine.begin() as conn:
            yield _PostgreSQLSession(conn, self._tracer)

    async def initialize(self, record_classes: Iterable[type[MappingRecord]]) -> None:
        """Create tables and indexes for the given kinds plus the marker table."""
        statements = generate_statements(record_classes, dialect="postgresql")
        async with self._engine.begin() as conn:
            for statement in statements:
                await conn.execute(text(statement))
        logger.info("Initialized PostgreSQL mapping schema (%d statements)", len(statements))

    async def close(self) -> None:
        await self._engine.dispose()

    def __repr__(self) -> str:
        return (
            f"PostgreSQLMappingDatabase({self._engine.url!r}, "
            f"tracing={'enabled' if self._enable_tracing else 'disabled'})"
        )


__all__ = [
    "PostgreSQLMappingDatabase",
    "PostgreSQLMappingStore",
    "PostgreSQLMigrationMarkerStore",
]
