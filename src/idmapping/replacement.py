"""
Wholesale replacement of mapping sets.

Used when the source system re-keys a subject (repairs), and when two
subjects are merged. The existing set is deleted and the new set inserted
in one transaction. There is no reconciliation here: a collision after the
delete step means the caller's view of the subject is wrong, so it is
raised as ``ReplacementConflictError`` and nothing changes.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from idmapping.exceptions import ReplacementConflictError, UniqueConstraintViolation
from idmapping.observability import (
    ATTR_RECORD_COUNT,
    ATTR_REMOVED_SUBJECT_ID,
    ATTR_RETAINED_SUBJECT_ID,
    ATTR_SUBJECT_ID,
    Tracer,
    create_tracer,
)
from idmapping.records import MappingRecord
from idmapping.stores.interface import MappingDatabase, MappingSession

logger = logging.getLogger(__name__)


class ReplacementCoordinator:
    """
    Deletes a subject's mappings and inserts a new set atomically.

    Args:
        database: Backend providing transactions
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing (default True)

    Example:
        >>> coordinator = ReplacementCoordinator(database, enable_tracing=False)
        >>> await coordinator.replace_after_merge(
        ...     [PrisonerRestrictionMapping], "A1234AA", "B1234BB", restrictions
        ... )
    """

    def __init__(
        self,
        database: MappingDatabase,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._database = database

    async def replace(
        self,
        kinds: Sequence[type[MappingRecord]],
        subject_id: str,
        new_records: Sequence[MappingRecord],
    ) -> list[MappingRecord]:
        """
        Replace every mapping a subject owns across the given kinds.

        Args:
            kinds: Subject-keyed kinds to clear for the subject
            subject_id: Subject whose mappings are replaced
            new_records: Records to insert once the old ones are gone

        Returns:
            The stored records

        Raises:
            ReplacementConflictError: If an insert collides; nothing changes
        """
        _require_subject_kinds(kinds)
        with self._tracer.span(
            "idmapping.replacement.replace",
            {ATTR_SUBJECT_ID: subject_id, ATTR_RECORD_COUNT: len(new_records)},
        ):
            try:
                async with self._database.transaction() as session:
                    deleted = await self._delete_subject(session, kinds, subject_id)
                    stored = await self._insert_all(session, new_records)
            except UniqueConstraintViolation as e:
                logger.error("Replacement for %s failed: %s", subject_id, e)
                raise ReplacementConflictError((subject_id,), e) from e

            logger.info(
                "Replaced mappings for %s: deleted %d, created %d",
                subject_id,
                deleted,
                len(stored),
            )
            return stored

    async def replace_after_merge(
        self,
        kinds: Sequence[type[MappingRecord]],
        retained_subject_id: str,
        removed_subject_id: str,
        new_records: Sequence[MappingRecord],
    ) -> list[MappingRecord]:
        """
        Replace the mappings of two merged subjects with one new set.

        Deletes everything the retained and the removed subject own across
        ``kinds``, then inserts ``new_records`` (normally all keyed to the
        retained subject).

        Raises:
            ReplacementConflictError: If an insert collides; nothing changes
        """
        _require_subject_kinds(kinds)
        with self._tracer.span(
            "idmapping.replacement.replace_after_merge",
            {
                ATTR_RETAINED_SUBJECT_ID: retained_subject_id,
                ATTR_REMOVED_SUBJECT_ID: removed_subject_id,
                ATTR_RECORD_COUNT: len(new_records),
            },
        ):
            try:
                async with self._database.transaction() as session:
                    deleted = await self._delete_subject(session, kinds, retained_subject_id)
                    deleted += await self._delete_subject(session, kinds, removed_subject_id)
                    stored = await self._insert_all(session, new_records)
            except UniqueConstraintViolation as e:
                logger.error(
                    "Merge replacement of %s into %s failed: %s",
                    removed_subject_id,
                    retained_subject_id,
                    e,
                )
                raise ReplacementConflictError((retained_subject_id, removed_subject_id), e) from e

            logger.info(
                "Replaced mappings after merge of %s into %s: deleted %d, created %d",
                removed_subject_id,
                retained_subject_id,
                deleted,
                len(stored),
            )
            return stored

    async def replace_records(self, records: Sequence[MappingRecord]) -> list[MappingRecord]:
        """
        Overwrite individual records.

        For each record any stored row sharing its source key or its target
        id is deleted, then the record is inserted. Used to repair a tree
        whose ids were re-issued.

        Raises:
            ReplacementConflictError: If an insert still collides; nothing changes
        """
        with self._tracer.span(
            "idmapping.replacement.replace_records",
            {ATTR_RECORD_COUNT: len(records)},
        ):
            try:
                async with self._database.transaction() as session:
                    deleted = 0
                    for record in records:
                        store = session.store(type(record))
                        deleted += await store.delete_by_source_id(record.source_key)
                        deleted += await store.delete_by_target_id(record.target_key)
                    stored = await self._insert_all(session, records)
            except UniqueConstraintViolation as e:
                logger.error("Record replacement failed: %s", e)
                raise ReplacementConflictError((), e) from e

            logger.info("Replaced %d mappings (deleted %d)", len(stored), deleted)
            return stored

    async def _delete_subject(
        self,
        session: MappingSession,
        kinds: Sequence[type[MappingRecord]],
        subject_id: str,
    ) -> int:
        deleted = 0
        for kind in kinds:
            deleted += await session.store(kind).delete_by_subject(subject_id)
        return deleted

    async def _insert_all(
        self,
        session: MappingSession,
        records: Sequence[MappingRecord],
    ) -> list[MappingRecord]:
        return [await session.store(type(record)).insert(record) for record in records]


def _require_subject_kinds(kinds: Sequence[type[MappingRecord]]) -> None:
    missing = [kind.__name__ for kind in kinds if kind.subject_field() is None]
    if missing:
        raise ValueError(f"Kinds without a subject field cannot be replaced by subject: {missing}")


__all__ = ["ReplacementCoordinator"]
