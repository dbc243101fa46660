"""
The mapping service: the boundary callers (and an HTTP façade) talk to.

Every operation here either returns a result or raises one of the
taxonomy exceptions, which ``idmapping.responses.error_response`` turns
into a status and body:

- inserts rejected by a unique constraint become ``DuplicateMappingError``
  carrying a conflict report (409)
- single-record lookups that find nothing raise ``MappingNotFoundError`` (404)
- everything else propagates (500)

Example:
    >>> database = InMemoryMappingDatabase(enable_tracing=False)
    >>> service = MappingService(database, MappingServiceConfig(enable_tracing=False))
    >>> await service.create(CorporateMapping(source_id=12345, target_id="54321"))
    >>> await service.create(CorporateMapping(source_id=12345, target_id="99999"))
    Traceback (most recent call last):
    ...
    DuplicateMappingError: Corporate mapping already exists
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Sequence
from typing import Any, TypeVar

from idmapping.config import MappingServiceConfig
from idmapping.exceptions import (
    DuplicateMappingError,
    MappingNotFoundError,
    ResetNotAllowedError,
    UniqueConstraintViolation,
)
from idmapping.families import MappingFamily, MappingTree, TreePayload
from idmapping.observability import Tracer, create_tracer
from idmapping.paging import Page, PagedMigrationQuery, PageRequest, page_markers_by_label
from idmapping.reconciliation import ConflictResolver
from idmapping.records import MappingRecord, MigrationMarker
from idmapping.replacement import ReplacementCoordinator
from idmapping.stores.interface import MappingDatabase
from idmapping.tree import TreePersistenceCoordinator

logger = logging.getLogger(__name__)

TRecord = TypeVar("TRecord", bound=MappingRecord)


def _duplicate_message(record_class: type[MappingRecord]) -> str:
    return f"{record_class.kind().capitalize()} mapping already exists"


class MappingService:
    """
    Mapping operations for every entity kind and family.

    Args:
        database: Backend to read and write
        config: Service settings (defaults apply when omitted)
        tracer: Optional custom Tracer instance, shared with the coordinators
    """

    def __init__(
        self,
        database: MappingDatabase,
        config: MappingServiceConfig | None = None,
        tracer: Tracer | None = None,
    ) -> None:
        self._config = config or MappingServiceConfig()
        self._tracer = tracer or create_tracer(__name__, self._config.enable_tracing)
        self._database = database
        self._resolver = ConflictResolver(tracer=self._tracer)
        self._trees = TreePersistenceCoordinator(database, tracer=self._tracer)
        self._replacement = ReplacementCoordinator(database, tracer=self._tracer)

    @property
    def config(self) -> MappingServiceConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Single records
    # -------------------------------------------------------------------------

    async def create(self, record: TRecord) -> TRecord:
        """
        Insert one mapping.

        Raises:
            DuplicateMappingError: If the source key or target id is taken
        """
        store = self._database.store(type(record))
        try:
            return await store.insert(record)
        except UniqueConstraintViolation as e:
            report = await self._resolver.resolve_conflict(record, store)
            raise DuplicateMappingError(_duplicate_message(type(record)), report) from e

    async def get_by_source_id(self, record_class: type[TRecord], source_id: Any) -> TRecord:
        """
        Raises:
            MappingNotFoundError: If no mapping has this source id
        """
        record = await self._database.store(record_class).find_by_source_id(source_id)
        if record is None:
            key = record_class.normalize_source_key(source_id)
            raise MappingNotFoundError(
                record_class.kind(), **dict(zip(record_class.source_fields(), key))
            )
        return record

    async def get_by_target_id(self, record_class: type[TRecord], target_id: Any) -> TRecord:
        """
        Raises:
            MappingNotFoundError: If no mapping has this target id
        """
        record = await self._database.store(record_class).find_by_target_id(target_id)
        if record is None:
            raise MappingNotFoundError(
                record_class.kind(), **{record_class.target_field(): target_id}
            )
        return record

    async def get_by_subject(self, record_class: type[TRecord], subject_id: Any) -> list[TRecord]:
        return await self._database.store(record_class).find_by_subject(subject_id)

    async def update(self, record: TRecord) -> TRecord:
        """
        Overwrite an updatable mapping, matched by target id.

        Raises:
            MappingNotFoundError: If no mapping has the record's target id
            DuplicateMappingError: If the new source key belongs to another mapping
        """
        store = self._database.store(type(record))
        try:
            updated = await store.update(record)
        except UniqueConstraintViolation as e:
            report = await self._resolver.resolve_conflict(record, store)
            raise DuplicateMappingError(_duplicate_message(type(record)), report) from e
        if updated is None:
            raise MappingNotFoundError(
                record.kind(), **{record.target_field(): record.target_key}
            )
        return updated

    async def delete_by_source_id(self, record_class: type[MappingRecord], source_id: Any) -> None:
        """Delete by source id. Deleting a missing mapping is not an error."""
        await self._database.store(record_class).delete_by_source_id(source_id)

    async def delete_by_target_id(self, record_class: type[MappingRecord], target_id: Any) -> None:
        """Delete by target id. Deleting a missing mapping is not an error."""
        await self._database.store(record_class).delete_by_target_id(target_id)

    async def delete_all(self, record_class: type[MappingRecord]) -> int:
        """
        Delete every mapping of one kind.

        Raises:
            ResetNotAllowedError: Unless ``allow_reset`` is configured
        """
        self._check_reset(record_class.kind())
        deleted = await self._database.store(record_class).delete_all()
        logger.warning("Deleted all %s mappings (%d records)", record_class.kind(), deleted)
        return deleted

    # -------------------------------------------------------------------------
    # Trees
    # -------------------------------------------------------------------------

    async def create_tree(
        self,
        family: MappingFamily,
        tree: MappingTree | TreePayload,
    ) -> list[MappingRecord]:
        """
        Insert a parent and its children atomically.

        Raises:
            DuplicateMappingError: If any record collides; nothing is persisted.
                The report is resolved against the parent record.
        """
        tree = self._as_tree(family, tree)
        try:
            return await self._trees.create_tree(family, tree)
        except UniqueConstraintViolation as e:
            raise await self._tree_conflict(family, tree, e) from e

    async def create_migration_tree(
        self,
        family: MappingFamily,
        tree: MappingTree | TreePayload,
        subject_id: str,
    ) -> list[MappingRecord]:
        """
        Replace a subject's migrated tree and record the run's marker.

        Raises:
            DuplicateMappingError: If any record collides; nothing changes
        """
        tree = self._as_tree(family, tree)
        try:
            return await self._trees.create_migration_tree(family, tree, subject_id)
        except UniqueConstraintViolation as e:
            raise await self._tree_conflict(family, tree, e) from e

    async def delete_tree(self, family: MappingFamily) -> int:
        """
        Delete every mapping of every kind of a family.

        Raises:
            ResetNotAllowedError: Unless ``allow_reset`` is configured
        """
        self._check_reset(family.name)
        deleted = await self._trees.delete_tree_kinds(family)
        logger.warning("Deleted all %s family mappings (%d records)", family.name, deleted)
        return deleted

    # -------------------------------------------------------------------------
    # Replacement
    # -------------------------------------------------------------------------

    async def replace(
        self,
        kinds: Sequence[type[MappingRecord]],
        subject_id: str,
        new_records: Sequence[MappingRecord],
    ) -> list[MappingRecord]:
        return await self._replacement.replace(kinds, subject_id, new_records)

    async def replace_after_merge(
        self,
        kinds: Sequence[type[MappingRecord]],
        retained_subject_id: str,
        removed_subject_id: str,
        new_records: Sequence[MappingRecord],
    ) -> list[MappingRecord]:
        return await self._replacement.replace_after_merge(
            kinds, retained_subject_id, removed_subject_id, new_records
        )

    async def replace_records(self, records: Sequence[MappingRecord]) -> list[MappingRecord]:
        return await self._replacement.replace_records(records)

    # -------------------------------------------------------------------------
    # Paging and markers
    # -------------------------------------------------------------------------

    def page_request(
        self,
        page: int = 0,
        size: int | None = None,
        sort: Sequence[str] = (),
    ) -> PageRequest:
        """Build a page request, applying the configured default and maximum size."""
        return PageRequest(page=page, size=self._config.clamp_page_size(size), sort=tuple(sort))

    async def page_by_label(
        self,
        record_class: type[TRecord],
        label: str,
        page_request: PageRequest | None = None,
    ) -> Page[TRecord]:
        """One page of the mappings written by a migration run."""
        query = PagedMigrationQuery(self._database.store(record_class), tracer=self._tracer)
        return await query.page_by_run_label(label, self._bounded(page_request))

    async def page_all(
        self,
        record_class: type[TRecord],
        page_request: PageRequest | None = None,
    ) -> Page[TRecord]:
        """One page over every mapping of a kind."""
        query = PagedMigrationQuery(self._database.store(record_class), tracer=self._tracer)
        return await query.page_all(self._bounded(page_request))

    async def count_by_label(self, record_class: type[MappingRecord], label: str) -> int:
        return await self._database.store(record_class).count_by_label(label)

    async def get_migration_marker(self, family: MappingFamily, subject_id: str) -> MigrationMarker:
        """
        Raises:
            MappingNotFoundError: If the subject was never migrated in this family
        """
        marker = await self._database.markers.find(family.name, subject_id)
        if marker is None:
            raise MappingNotFoundError(f"{family.name} migration", subject_id=subject_id)
        return marker

    async def page_migration_markers(
        self,
        label: str,
        family: MappingFamily | None = None,
        page_request: PageRequest | None = None,
    ) -> Page[MigrationMarker]:
        """One page of the subjects migrated by a run."""
        return await page_markers_by_label(
            self._database.markers,
            label,
            self._bounded(page_request),
            family=family.name if family is not None else None,
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _bounded(self, page_request: PageRequest | None) -> PageRequest:
        """A caller's page request with its size held to ``max_page_size``."""
        if page_request is None:
            return self.page_request()
        size = self._config.clamp_page_size(page_request.size)
        if size == page_request.size:
            return page_request
        return dataclasses.replace(page_request, size=size)

    def _as_tree(self, family: MappingFamily, tree: MappingTree | TreePayload) -> MappingTree:
        if isinstance(tree, TreePayload):
            return family.build_tree(tree)
        return tree

    async def _tree_conflict(
        self,
        family: MappingFamily,
        tree: MappingTree,
        error: UniqueConstraintViolation,
    ) -> DuplicateMappingError:
        # Parentless families have no record standing for the tree, so the
        # rejected record is reported instead.
        if tree.parent is None:
            attempted = error.record
        else:
            attempted = tree.parent.stamped(tree.label, tree.origin)
        store = self._database.store(type(attempted))
        report = await self._resolver.resolve_conflict(attempted, store)
        if type(error.record) is not type(attempted):
            logger.warning(
                "%s tree rejected on %s; conflict reported against the parent",
                family.name,
                error.record.describe(),
            )
        return DuplicateMappingError(_duplicate_message(type(attempted)), report)

    def _check_reset(self, target: str) -> None:
        if not self._config.allow_reset:
            raise ResetNotAllowedError(target)


__all__ = ["MappingService"]
