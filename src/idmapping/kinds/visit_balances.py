"""Visit balance mappings, keyed by the source booking id."""

from typing import ClassVar, Literal

from idmapping.families import MappingFamily, TreeKind
from idmapping.records import MappingRecord


class VisitBalanceMapping(MappingRecord):
    source_id: int
    target_id: str

    __primary_key__: ClassVar[Literal["target", "source"]] = "source"


VISIT_BALANCES = MappingFamily(
    name="visit balance",
    parent=TreeKind("visit_balance", VisitBalanceMapping),
)

__all__ = ["VISIT_BALANCES", "VisitBalanceMapping"]
