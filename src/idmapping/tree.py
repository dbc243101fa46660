"""
Atomic persistence of mapping trees.

A tree (a parent record plus its typed child records) is written inside
one transaction: the parent first, then each child kind's records in the
family's order. Any failure rolls the whole tree back, so a tree is either
fully present or fully absent.

The migration variant also purges the subject's previous records first
(according to the family's purge policy) and records a migration marker
for the subject in the same transaction. Running it twice for one subject
leaves exactly the second run's records.
"""

from __future__ import annotations

import logging
from typing import Any

from idmapping.families import MappingFamily, MappingTree, PurgePolicy
from idmapping.observability import (
    ATTR_FAMILY,
    ATTR_RECORD_COUNT,
    ATTR_RUN_LABEL,
    ATTR_SUBJECT_ID,
    Tracer,
    create_tracer,
)
from idmapping.records import MappingRecord, MigrationMarker
from idmapping.stores.interface import MappingDatabase, MappingSession

logger = logging.getLogger(__name__)


class TreePersistenceCoordinator:
    """
    Writes and deletes whole mapping trees in single transactions.

    ``UniqueConstraintViolation`` from any insert propagates after the
    rollback; reconciling it is left to the caller (see
    :class:`idmapping.service.MappingService`).

    Args:
        database: Backend providing transactions
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing (default True)

    Example:
        >>> coordinator = TreePersistenceCoordinator(database, enable_tracing=False)
        >>> stored = await coordinator.create_tree(CORPORATE, CORPORATE.build_tree(payload))
    """

    def __init__(
        self,
        database: MappingDatabase,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._database = database

    async def create_tree(self, family: MappingFamily, tree: MappingTree) -> list[MappingRecord]:
        """
        Insert every record of the tree atomically.

        Args:
            family: Family the tree belongs to (fixes the insert order)
            tree: Parent and child records, label and origin

        Returns:
            The stored records, parent first

        Raises:
            UniqueConstraintViolation: If any record collides; nothing is persisted
        """
        records = family.ordered_records(tree)
        with self._tracer.span(
            "idmapping.tree.create_tree",
            self._attrs(family, tree, record_count=len(records)),
        ):
            async with self._database.transaction() as session:
                stored = await self._insert_all(session, records)

            logger.info(
                "Created %s tree with %d mappings (label=%s)",
                family.name,
                len(stored),
                tree.label,
            )
            return stored

    async def create_migration_tree(
        self,
        family: MappingFamily,
        tree: MappingTree,
        subject_id: str,
    ) -> list[MappingRecord]:
        """
        Replace a subject's migrated records with a new tree and mark the run.

        In one transaction: purge the subject's records per the family's
        purge policy, insert the tree, then replace the subject's migration
        marker with one carrying the tree's label.

        Raises:
            ValueError: If the family purges by subject and a record of the
                tree belongs to another subject
            UniqueConstraintViolation: If any record collides; nothing changes
        """
        records = family.ordered_records(tree)
        if family.purge_policy is PurgePolicy.BY_SUBJECT:
            foreign = [
                r for r in records
                if r.subject_field() is not None and str(r.subject_key) != subject_id
            ]
            if foreign:
                raise ValueError(
                    f"{foreign[0].describe()} does not belong to subject {subject_id}"
                )

        with self._tracer.span(
            "idmapping.tree.create_migration_tree",
            self._attrs(family, tree, record_count=len(records), subject_id=subject_id),
        ):
            async with self._database.transaction() as session:
                purged = await self._purge(session, family, subject_id)
                stored = await self._insert_all(session, records)
                await session.markers.record(
                    MigrationMarker(family=family.name, subject_id=subject_id, label=tree.label)
                )

            logger.info(
                "Migrated %s tree for %s: purged %d, created %d mappings (label=%s)",
                family.name,
                subject_id,
                purged,
                len(stored),
                tree.label,
            )
            return stored

    async def delete_tree_kinds(self, family: MappingFamily) -> int:
        """
        Delete every record of every kind of the family, children first.

        Returns:
            Total number of records deleted
        """
        with self._tracer.span("idmapping.tree.delete_tree_kinds", {ATTR_FAMILY: family.name}):
            deleted = 0
            async with self._database.transaction() as session:
                for kind in reversed(family.kinds()):
                    deleted += await session.store(kind).delete_all()
                await session.markers.delete_all(family=family.name)

            logger.info("Deleted all %s mappings (%d records)", family.name, deleted)
            return deleted

    async def _insert_all(
        self,
        session: MappingSession,
        records: list[MappingRecord],
    ) -> list[MappingRecord]:
        stored = []
        for record in records:
            stored.append(await session.store(type(record)).insert(record))
        return stored

    async def _purge(self, session: MappingSession, family: MappingFamily, subject_id: str) -> int:
        if family.purge_policy is PurgePolicy.NONE:
            return 0
        purged = 0
        for kind in family.subject_kinds():
            purged += await session.store(kind).delete_by_subject(subject_id)
        return purged

    def _attrs(
        self,
        family: MappingFamily,
        tree: MappingTree,
        record_count: int,
        subject_id: str | None = None,
    ) -> dict[str, Any]:
        attrs: dict[str, Any] = {
            ATTR_FAMILY: family.name,
            ATTR_RECORD_COUNT: record_count,
        }
        if tree.label is not None:
            attrs[ATTR_RUN_LABEL] = tree.label
        if subject_id is not None:
            attrs[ATTR_SUBJECT_ID] = subject_id
        return attrs


__all__ = ["TreePersistenceCoordinator"]
