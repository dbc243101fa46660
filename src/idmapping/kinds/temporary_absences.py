"""
Temporary absence mappings.

A prisoner's temporary absence applications, the scheduled absences under
them, and the actual external movements. All three belong to the prisoner
(offender number), which is the subject a migration run purges before
writing the prisoner's records again. Target ids are UUIDs.

External movements have no id of their own in the source system: they are
addressed by (booking id, movement sequence).
"""

from datetime import datetime
from typing import ClassVar
from uuid import UUID

from idmapping.families import MappingFamily, PurgePolicy, TreeKind
from idmapping.records import MappingRecord


class _PrisonerOwned(MappingRecord):
    offender_no: str
    booking_id: int

    __subject_field__: ClassVar[str | None] = "offender_no"


class TemporaryAbsenceApplicationMapping(_PrisonerOwned):
    source_id: int
    target_id: UUID


class TemporaryAbsenceScheduleMapping(_PrisonerOwned):
    """
    Scheduled absence (occurrence) mapping.

    Updatable in place: a rescheduled absence keeps its target id while
    its event time changes.
    """

    source_id: int
    target_id: UUID
    event_time: datetime | None = None

    __updatable__: ClassVar[bool] = True


class TemporaryAbsenceMovementMapping(_PrisonerOwned):
    movement_seq: int
    target_id: UUID

    __source_fields__: ClassVar[tuple[str, ...]] = ("booking_id", "movement_seq")


TEMPORARY_ABSENCES = MappingFamily(
    name="temporary absence",
    parent=None,
    children=(
        TreeKind("application", TemporaryAbsenceApplicationMapping),
        TreeKind("schedule", TemporaryAbsenceScheduleMapping),
        TreeKind("movement", TemporaryAbsenceMovementMapping),
    ),
    purge_policy=PurgePolicy.BY_SUBJECT,
)

__all__ = [
    "TEMPORARY_ABSENCES",
    "TemporaryAbsenceApplicationMapping",
    "TemporaryAbsenceMovementMapping",
    "TemporaryAbsenceScheduleMapping",
]
