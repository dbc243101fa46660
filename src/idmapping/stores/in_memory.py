"""
In-memory implementation of the mapping database.

Provides a fast backend for testing and development. All data is stored in
memory and lost when the process terminates.

Transactions snapshot every table on entry and restore the snapshot if
the block raises, which gives the same all-or-nothing outcome as a real
database transaction. Writers are serialised with one ``asyncio.Lock``.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Iterable
from contextlib import AbstractAsyncContextManager
from datetime import UTC, datetime
from typing import Any, Generic

from idmapping.exceptions import MappingStoreError, UniqueConstraintViolation
from idmapping.observability import (
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
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
from idmapping.stores.interface import PagingMixin, TRecord, label_order

_Rows = dict[type[MappingRecord], dict[tuple[Any, ...], MappingRecord]]
_MarkerRows = dict[tuple[str, str], MigrationMarker]


class InMemoryMappingStore(PagingMixin, Generic[TRecord]):
    """
    In-memory store for one entity kind.

    Rows are held in a dict keyed by the kind's primary key. Uniqueness of
    the other side is checked by scanning, which is O(n) and fine for tests.

    Args:
        tables: Shared table dict owned by the database
        record_class: The MappingRecord subclass this store manages
        lock: Lock taken per operation, or None when running inside a
            transaction that already holds it
        tracer: Optional tracer
    """

    def __init__(
        self,
        tables: _Rows,
        record_class: type[TRecord],
        lock: asyncio.Lock | None,
        tracer: Tracer,
    ) -> None:
        self._tracer = tracer
        self._enable_tracing = tracer.enabled
        self._tables = tables
        self._record_class = record_class
        self._lock = lock

    @property
    def record_class(self) -> type[TRecord]:
        return self._record_class

    @property
    def _rows(self) -> dict[tuple[Any, ...], MappingRecord]:
        return self._tables.setdefault(self._record_class, {})

    def _guard(self) -> AbstractAsyncContextManager[Any]:
        if self._lock is None:
            return contextlib.nullcontext()
        return self._lock

    def _primary_key(self, record: MappingRecord) -> tuple[Any, ...]:
        return tuple(getattr(record, name) for name in self._record_class.primary_key_fields())

    def _unique_key(self, record: MappingRecord) -> tuple[Any, ...]:
        return tuple(getattr(record, name) for name in self._record_class.unique_key_fields())

    def _attrs(self, operation: str, **extra: Any) -> dict[str, Any] | None:
        if not self._enable_tracing:
            return None
        attrs = {
            ATTR_MAPPING_KIND: self._record_class.kind(),
            ATTR_DB_SYSTEM: "memory",
            ATTR_DB_OPERATION: operation,
        }
        attrs.update({key: str(value) for key, value in extra.items()})
        return attrs

    def _matching(self, predicate: Any) -> list[TRecord]:
        return [record for record in self._rows.values() if predicate(record)]  # type: ignore[misc]

    async def insert(self, record: TRecord) -> TRecord:
        with self._tracer.span(
            "idmapping.store.insert",
            self._attrs("INSERT", **{ATTR_TARGET_ID: record.target_key}),
        ):
            async with self._guard():
                rows = self._rows
                pk = self._primary_key(record)
                if pk in rows:
                    raise UniqueConstraintViolation(
                        self._record_class.table_name(), record, "primary key"
                    )
                unique = self._unique_key(record)
                if any(self._unique_key(row) == unique for row in rows.values()):
                    raise UniqueConstraintViolation(
                        self._record_class.table_name(), record, "unique index"
                    )
                stored = record.with_created_at(datetime.now(UTC))
                rows[pk] = stored
                return stored  # type: ignore[return-value]

    async def update(self, record: TRecord) -> TRecord | None:
        if not self._record_class.is_updatable():
            raise MappingStoreError(f"{self._record_class.kind()} mappings cannot be updated")
        with self._tracer.span(
            "idmapping.store.update",
            self._attrs("UPDATE", **{ATTR_TARGET_ID: record.target_key}),
        ):
            async with self._guard():
                rows = self._rows
                current_pk = next(
                    (pk for pk, row in rows.items() if row.target_key == record.target_key),
                    None,
                )
                if current_pk is None:
                    return None
                current = rows[current_pk]
                unique = self._unique_key(record)
                new_pk = self._primary_key(record)
                for pk, row in rows.items():
                    if pk == current_pk:
                        continue
                    if pk == new_pk or self._unique_key(row) == unique:
                        raise UniqueConstraintViolation(
                            self._record_class.table_name(), record, "update"
                        )
                stored = record.with_created_at(current.created_at or datetime.now(UTC))
                del rows[current_pk]
                rows[new_pk] = stored
                return stored  # type: ignore[return-value]

    async def find_by_source_id(self, source_id: Any) -> TRecord | None:
        key = self._record_class.normalize_source_key(source_id)
        with self._tracer.span(
            "idmapping.store.find_by_source_id",
            self._attrs("SELECT", **{ATTR_SOURCE_ID: "/".join(map(str, key))}),
        ):
            async with self._guard():
                matches = self._matching(lambda r: r.source_key == key)
                return matches[0] if matches else None

    async def find_by_target_id(self, target_id: Any) -> TRecord | None:
        target = self._record_class.coerce_target_id(target_id)
        with self._tracer.span(
            "idmapping.store.find_by_target_id",
            self._attrs("SELECT", **{ATTR_TARGET_ID: target_id}),
        ):
            async with self._guard():
                matches = self._matching(lambda r: r.target_key == target)
                return matches[0] if matches else None

    async def find_by_subject(self, subject_id: Any) -> list[TRecord]:
        self._require_subject()
        with self._tracer.span(
            "idmapping.store.find_by_subject",
            self._attrs("SELECT", **{ATTR_SUBJECT_ID: subject_id}),
        ):
            async with self._guard():
                matches = self._matching(lambda r: r.subject_key == subject_id)
                return sorted(matches, key=lambda r: (str(r.target_key), r.source_key))

    async def delete_by_source_id(self, source_id: Any) -> int:
        key = self._record_class.normalize_source_key(source_id)
        with self._tracer.span(
            "idmapping.store.delete_by_source_id",
            self._attrs("DELETE", **{ATTR_SOURCE_ID: "/".join(map(str, key))}),
        ):
            async with self._guard():
                return self._delete_where(lambda r: r.source_key == key)

    async def delete_by_target_id(self, target_id: Any) -> int:
        target = self._record_class.coerce_target_id(target_id)
        with self._tracer.span(
            "idmapping.store.delete_by_target_id",
            self._attrs("DELETE", **{ATTR_TARGET_ID: target_id}),
        ):
            async with self._guard():
                return self._delete_where(lambda r: r.target_key == target)

    async def delete_by_subject(self, subject_id: Any) -> int:
        self._require_subject()
        with self._tracer.span(
            "idmapping.store.delete_by_subject",
            self._attrs("DELETE", **{ATTR_SUBJECT_ID: subject_id}),
        ):
            async with self._guard():
                return self._delete_where(lambda r: r.subject_key == subject_id)

    async def delete_all(self) -> int:
        with self._tracer.span("idmapping.store.delete_all", self._attrs("DELETE")):
            async with self._guard():
                return self._delete_where(lambda r: True)

    async def count_by_label(self, label: str) -> int:
        with self._tracer.span(
            "idmapping.store.count_by_label",
            self._attrs("SELECT", **{ATTR_RUN_LABEL: label}),
        ):
            async with self._guard():
                return len(self._matching(lambda r: r.label == label))

    async def find_by_label(self, label: str, page_request: PageRequest) -> list[TRecord]:
        with self._tracer.span(
            "idmapping.store.find_by_label",
            self._attrs("SELECT", **{ATTR_RUN_LABEL: label}),
        ):
            async with self._guard():
                ordered = label_order(self._matching(lambda r: r.label == label))
                return ordered[page_request.offset : page_request.offset + page_request.size]

    async def count_all(self) -> int:
        with self._tracer.span("idmapping.store.count_all", self._attrs("SELECT")):
            async with self._guard():
                return len(self._rows)

    async def find_all(self, page_request: PageRequest) -> list[TRecord]:
        with self._tracer.span("idmapping.store.find_all", self._attrs("SELECT")):
            async with self._guard():
                ordered = sorted(
                    self._matching(lambda r: True),
                    key=lambda r: (str(r.target_key), r.source_key),
                )
                return ordered[page_request.offset : page_request.offset + page_request.size]

    def _delete_where(self, predicate: Any) -> int:
        rows = self._rows
        doomed = [pk for pk, row in rows.items() if predicate(row)]
        for pk in doomed:
            del rows[pk]
        return len(doomed)

    def _require_subject(self) -> None:
        if self._record_class.subject_field() is None:
            raise MappingStoreError(f"{self._record_class.kind()} mappings have no subject field")

    def __repr__(self) -> str:
        return f"InMemoryMappingStore({self._record_class.__name__}, rows={len(self._rows)})"


class InMemoryMigrationMarkerStore:
    """In-memory migration markers keyed by (family, subject_id)."""

    def __init__(self, markers: _MarkerRows, lock: asyncio.Lock | None) -> None:
        self._markers = markers
        self._lock = lock

    def _guard(self) -> AbstractAsyncContextManager[Any]:
        if self._lock is None:
            return contextlib.nullcontext()
        return self._lock

    async def record(self, marker: MigrationMarker) -> MigrationMarker:
        async with self._guard():
            stored = marker.model_copy(update={"created_at": datetime.now(UTC)})
            self._markers[(marker.family, marker.subject_id)] = stored
            return stored

    async def find(self, family: str, subject_id: str) -> MigrationMarker | None:
        async with self._guard():
            return self._markers.get((family, subject_id))

    def _by_label(self, label: str, family: str | None) -> list[MigrationMarker]:
        return [
            marker
            for marker in self._markers.values()
            if marker.label == label and (family is None or marker.family == family)
        ]

    async def count_by_label(self, label: str, family: str | None = None) -> int:
        async with self._guard():
            return len(self._by_label(label, family))

    async def find_by_label(
        self,
        label: str,
        page_request: PageRequest,
        family: str | None = None,
    ) -> list[MigrationMarker]:
        async with self._guard():
            ordered = sorted(self._by_label(label, family), key=lambda m: (m.family, m.subject_id))
            return ordered[page_request.offset : page_request.offset + page_request.size]

    async def delete_all(self, family: str | None = None) -> int:
        async with self._guard():
            doomed = [
                key for key, marker in self._markers.items()
                if family is None or marker.family == family
            ]
            for key in doomed:
                del self._markers[key]
            return len(doomed)


class _InMemorySession:
    """Stores bound to an open in-memory transaction (lock already held)."""

    def __init__(self, database: InMemoryMappingDatabase) -> None:
        self._database = database

    def store(self, record_class: type[TRecord]) -> InMemoryMappingStore[TRecord]:
        return InMemoryMappingStore(
            self._database._tables, record_class, None, self._database._tracer
        )

    @property
    def markers(self) -> InMemoryMigrationMarkerStore:
        return InMemoryMigrationMarkerStore(self._database._markers, None)


class InMemoryMappingDatabase:
    """
    In-memory mapping database for testing.

    Example:
        >>> database = InMemoryMappingDatabase(enable_tracing=False)
        >>> await database.store(CorporateMapping).insert(
        ...     CorporateMapping(source_id=12345, target_id="54321")
        ... )
        >>> async with database.transaction() as session:
        ...     await session.store(CorporateAddressMapping).insert(address)

    Note:
        - All data is lost when the database instance is garbage collected
        - Use ``clear()`` for test teardown
    """

    def __init__(self, tracer: Tracer | None = None, enable_tracing: bool = True) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._tables: _Rows = {}
        self._markers: _MarkerRows = {}
        self._lock = asyncio.Lock()

    def store(self, record_class: type[TRecord]) -> InMemoryMappingStore[TRecord]:
        return InMemoryMappingStore(self._tables, record_class, self._lock, self._tracer)

    @property
    def markers(self) -> InMemoryMigrationMarkerStore:
        return InMemoryMigrationMarkerStore(self._markers, self._lock)

    @contextlib.asynccontextmanager
    async def transaction(self) -> AsyncIterator[_InMemorySession]:
        async with self._lock:
            tables_snapshot = {kind: dict(rows) for kind, rows in self._tables.items()}
            markers_snapshot = dict(self._markers)
            try:
                yield _InMemorySession(self)
            except BaseException:
                self._tables.clear()
                self._tables.update(tables_snapshot)
                self._markers.clear()
                self._markers.update(markers_snapshot)
                raise

    async def initialize(self, record_classes: Iterable[type[MappingRecord]]) -> None:
        for record_class in record_classes:
            self._tables.setdefault(record_class, {})

    async def close(self) -> None:
        pass

    def clear(self) -> None:
        """Drop every row and marker. Useful for test teardown."""
        self._tables.clear()
        self._markers.clear()

    def __repr__(self) -> str:
        return (
            f"InMemoryMappingDatabase(kinds={len(self._tables)}, "
            f"tracing={'enabled' if self._enable_tracing else 'disabled'})"
        )


__all__ = [
    "InMemoryMappingDatabase",
    "InMemoryMappingStore",
    "InMemoryMigrationMarkerStore",
]
