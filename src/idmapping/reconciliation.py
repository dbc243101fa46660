"""
Conflict reconciliation for rejected inserts.

When a store rejects an insert with ``UniqueConstraintViolation`` the
caller does not know which side collided: the source key, the target id,
or both. The resolver looks the record up by source key first, then by
target id, and reports the rejected record alongside the record it
collided with.

The lookup must run outside the transaction that failed (on PostgreSQL an
aborted transaction rejects further statements), so callers pass an
auto-committing store.

Example:
    >>> resolver = ConflictResolver(enable_tracing=False)
    >>> try:
    ...     await store.insert(attempted)
    ... except UniqueConstraintViolation:
    ...     report = await resolver.resolve_conflict(attempted, store)
    ...     raise DuplicateMappingError("Corporate mapping already exists", report) from None
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from idmapping.observability import (
    ATTR_MAPPING_KIND,
    ATTR_SOURCE_ID,
    ATTR_TARGET_ID,
    Tracer,
    create_tracer,
)
from idmapping.records import MappingRecord
from idmapping.stores.interface import MappingStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConflictReport:
    """
    A rejected record and the record it collided with.

    Attributes:
        duplicate: The record whose insert was rejected
        existing: The stored record it collided with. When no such record
            could be found (it was deleted in between, or the collision was
            on a record of another kind) this is the rejected record itself
            and ``degraded`` is True.
        degraded: Whether ``existing`` is a stand-in rather than a stored record
    """

    duplicate: MappingRecord
    existing: MappingRecord
    degraded: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Attribute maps of both records, as rendered in a 409 body."""
        return {
            "duplicate": self.duplicate.to_attributes(),
            "existing": self.existing.to_attributes(),
        }


class ConflictResolver:
    """
    Finds the stored record a rejected insert collided with.

    Args:
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing (default True)
    """

    def __init__(self, tracer: Tracer | None = None, enable_tracing: bool = True) -> None:
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def find_similar(
        self,
        attempted: MappingRecord,
        store: MappingStore[Any],
    ) -> MappingRecord | None:
        """
        Look up by source key, then by target id.

        Returns:
            The first stored record found, or None if neither lookup matched
        """
        with self._tracer.span(
            "idmapping.reconciliation.find_similar",
            {
                ATTR_MAPPING_KIND: attempted.kind(),
                ATTR_SOURCE_ID: "/".join(str(part) for part in attempted.source_key),
                ATTR_TARGET_ID: str(attempted.target_key),
            },
        ):
            existing = await store.find_by_source_id(attempted.source_key)
            if existing is None:
                existing = await store.find_by_target_id(attempted.target_key)
            return existing

    async def resolve_conflict(
        self,
        attempted: MappingRecord,
        store: MappingStore[Any],
    ) -> ConflictReport:
        """
        Build the conflict report for a rejected record.

        Never raises for a missing existing record: the report degrades to
        the attempted record and the degradation is logged.
        """
        existing = await self.find_similar(attempted, store)
        if existing is None:
            logger.error(
                "Duplicate %s reported but no existing record found; reporting the attempted record",
                attempted.describe(),
            )
            return ConflictReport(duplicate=attempted, existing=attempted, degraded=True)

        logger.debug("Resolved duplicate %s against %s", attempted.describe(), existing.describe())
        return ConflictReport(duplicate=attempted, existing=existing)


__all__ = ["ConflictReport", "ConflictResolver"]
