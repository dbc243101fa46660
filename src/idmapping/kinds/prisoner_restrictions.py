"""
Prisoner restriction mappings.

Restrictions belong to a prisoner (offender number). When two prisoner
records are merged the whole restriction set of both is replaced.
"""

from typing import ClassVar

from idmapping.families import MappingFamily, TreeKind
from idmapping.records import MappingRecord


class PrisonerRestrictionMapping(MappingRecord):
    source_id: int
    target_id: str
    offender_no: str

    __subject_field__: ClassVar[str | None] = "offender_no"


PRISONER_RESTRICTIONS = MappingFamily(
    name="prisoner restriction",
    parent=TreeKind("restriction", PrisonerRestrictionMapping),
)

__all__ = ["PRISONER_RESTRICTIONS", "PrisonerRestrictionMapping"]
