"""Library exceptions for the idmapping package."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from idmapping.reconciliation import ConflictReport
    from idmapping.records import MappingRecord


class MappingError(Exception):
    """Base exception for idmapping library."""

    pass


class MappingNotFoundError(MappingError):
    """
    Raised when a single-record lookup finds nothing.

    The message follows the form used by every lookup in the service, e.g.
    ``"No corporate mapping found for source_id=12345"``.
    """

    def __init__(self, kind: str, **lookup: Any) -> None:
        self.kind = kind
        self.lookup = lookup
        criteria = ", ".join(f"{key}={value}" for key, value in lookup.items())
        super().__init__(f"No {kind} mapping found for {criteria}")


class UniqueConstraintViolation(MappingError):
    """
    Raised by a store when an insert collides with an existing unique key.

    The store cannot say which constraint fired (source side or target
    side); the conflict resolver checks both.
    """

    def __init__(self, table: str, record: MappingRecord, detail: str | None = None) -> None:
        self.table = table
        self.record = record
        self.detail = detail
        message = f"Unique constraint violated inserting into {table}: {record.describe()}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class DuplicateMappingError(MappingError):
    """
    Raised at the service boundary when an insert was rejected as a duplicate.

    Carries the conflict report so the façade can render both the rejected
    payload and the record it collided with.
    """

    def __init__(self, message: str, report: ConflictReport) -> None:
        self.report = report
        super().__init__(message)

    @property
    def duplicate(self) -> MappingRecord:
        return self.report.duplicate

    @property
    def existing(self) -> MappingRecord:
        return self.report.existing


class ReplacementConflictError(MappingError):
    """Raised when inserts collide during a replacement after the delete step ran."""

    def __init__(self, subject_ids: tuple[str, ...], cause: UniqueConstraintViolation) -> None:
        self.subject_ids = subject_ids
        self.cause = cause
        subjects = ", ".join(subject_ids) or "<records>"
        super().__init__(f"Replacement for {subjects} collided with an existing mapping: {cause}")


class MappingStoreError(MappingError):
    """Raised when there's an error in a mapping store backend."""

    pass


class ResetNotAllowedError(MappingError):
    """Raised when a delete-all is requested but configuration forbids it."""

    def __init__(self, target: str) -> None:
        self.target = target
        super().__init__(f"Deleting all {target} mappings is disabled by configuration")


__all__ = [
    "MappingError",
    "MappingNotFoundError",
    "UniqueConstraintViolation",
    "DuplicateMappingError",
    "ReplacementConflictError",
    "MappingStoreError",
    "ResetNotAllowedError",
]
