"""
Store protocols for mapping records and migration markers.

Each backend provides three things:

- ``MappingStore``: per-entity-kind persistence primitive
- ``MigrationMarkerStore``: (family, subject) -> latest run label
- ``MappingDatabase``: hands out auto-committing stores, and opens
  transactions whose session hands out stores sharing one transaction

The coordinators only ever talk to these protocols, so the in-memory,
SQLite and PostgreSQL backends are interchangeable.

See Also:
    - :mod:`idmapping.stores.in_memory`
    - :mod:`idmapping.stores.sqlite`
    - :mod:`idmapping.stores.postgresql`
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from contextlib import AbstractAsyncContextManager
from typing import TYPE_CHECKING, Any, Protocol, TypeVar, runtime_checkable

from idmapping.paging import Page, PagedMigrationQuery, PageRequest
from idmapping.records import MappingRecord, MigrationMarker

if TYPE_CHECKING:
    from idmapping.observability import Tracer

TRecord = TypeVar("TRecord", bound=MappingRecord)


@runtime_checkable
class MappingStore(Protocol[TRecord]):
    """
    Persistence primitive for one entity kind.

    ``insert`` never upserts: a colliding primary or secondary unique key
    always raises ``UniqueConstraintViolation``. Deletes return the number
    of rows removed and never fail for zero.
    """

    @property
    def record_class(self) -> type[TRecord]:
        """The MappingRecord subclass this store persists."""
        ...

    async def insert(self, record: TRecord) -> TRecord:
        """
        Insert a record.

        Returns:
            The stored record, with ``created_at`` assigned

        Raises:
            UniqueConstraintViolation: If the source key or target id exists
        """
        ...

    async def update(self, record: TRecord) -> TRecord | None:
        """
        Overwrite the row with the record's target id.

        Returns:
            The stored record, or None if no row had that target id

        Raises:
            MappingStoreError: If the kind does not support updates
            UniqueConstraintViolation: If the new source key is taken
        """
        ...

    async def find_by_source_id(self, source_id: Any) -> TRecord | None:
        """Find by source key (scalar, or tuple for composite kinds)."""
        ...

    async def find_by_target_id(self, target_id: Any) -> TRecord | None:
        """Find by target id."""
        ...

    async def find_by_subject(self, subject_id: Any) -> list[TRecord]:
        """All records owned by a subject, ordered by target id."""
        ...

    async def delete_by_source_id(self, source_id: Any) -> int:
        ...

    async def delete_by_target_id(self, target_id: Any) -> int:
        ...

    async def delete_by_subject(self, subject_id: Any) -> int:
        ...

    async def delete_all(self) -> int:
        ...

    async def count_by_label(self, label: str) -> int:
        ...

    async def find_by_label(self, label: str, page_request: PageRequest) -> list[TRecord]:
        """Content read for a label page, ordered label desc, target id asc."""
        ...

    async def count_all(self) -> int:
        ...

    async def find_all(self, page_request: PageRequest) -> list[TRecord]:
        """Content read over every record, ordered by target id."""
        ...

    async def page(self, label: str, page_request: PageRequest) -> Page[TRecord]:
        """Page of records for a run label (content and count read concurrently)."""
        ...

    async def page_all(self, page_request: PageRequest) -> Page[TRecord]:
        """Page over every record of the kind."""
        ...


@runtime_checkable
class MigrationMarkerStore(Protocol):
    """Latest-run markers, one per (family, subject)."""

    async def record(self, marker: MigrationMarker) -> MigrationMarker:
        """Replace any marker for the same (family, subject) with this one."""
        ...

    async def find(self, family: str, subject_id: str) -> MigrationMarker | None:
        ...

    async def count_by_label(self, label: str, family: str | None = None) -> int:
        ...

    async def find_by_label(
        self,
        label: str,
        page_request: PageRequest,
        family: str | None = None,
    ) -> list[MigrationMarker]:
        ...

    async def delete_all(self, family: str | None = None) -> int:
        ...


@runtime_checkable
class MappingSession(Protocol):
    """Source of stores that all share one transaction (or auto-commit)."""

    def store(self, record_class: type[TRecord]) -> MappingStore[TRecord]:
        ...

    @property
    def markers(self) -> MigrationMarkerStore:
        ...


@runtime_checkable
class MappingDatabase(MappingSession, Protocol):
    """
    A mapping backend.

    ``store()`` and ``markers`` on the database itself auto-commit each
    operation. ``transaction()`` yields a session whose stores share one
    transaction that commits when the block exits normally and rolls back
    when it raises.

    Example:
        >>> async with database.transaction() as session:
        ...     await session.store(CorporateMapping).insert(parent)
        ...     await session.store(CorporateAddressMapping).insert(address)
    """

    def transaction(self) -> AbstractAsyncContextManager[MappingSession]:
        ...

    async def initialize(self, record_classes: Iterable[type[MappingRecord]]) -> None:
        """Create tables and indexes for the given kinds (idempotent)."""
        ...

    async def close(self) -> None:
        ...


class PagingMixin:
    """Label paging shared by the store implementations."""

    _tracer: Tracer

    async def page(self, label: str, page_request: PageRequest) -> Page[Any]:
        return await PagedMigrationQuery(self, tracer=self._tracer).page_by_run_label(  # type: ignore[arg-type]
            label, page_request
        )

    async def page_all(self, page_request: PageRequest) -> Page[Any]:
        return await PagedMigrationQuery(self, tracer=self._tracer).page_all(page_request)  # type: ignore[arg-type]


def label_order(records: Sequence[TRecord]) -> list[TRecord]:
    """
    Sort records the way label pages are ordered.

    Label descending (records without a label last), then target id
    ascending, then source key ascending.
    """
    by_keys = sorted(records, key=lambda r: (str(r.target_key), r.source_key))
    return sorted(by_keys, key=lambda r: r.label or "", reverse=True)


__all__ = [
    "MappingDatabase",
    "MappingSession",
    "MappingStore",
    "MigrationMarkerStore",
    "PagingMixin",
    "TRecord",
    "label_order",
]
