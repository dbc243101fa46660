"""
Corporate (organisation) mappings.

An organisation and its addresses, address phones, phones, emails and web
addresses. Source ids are numeric, target ids are natural-key strings.
"""

from idmapping.families import MappingFamily, TreeKind
from idmapping.records import MappingRecord


class _CorporateIds(MappingRecord):
    source_id: int
    target_id: str


class CorporateMapping(_CorporateIds):
    """Organisation mapping; parent of the corporate family."""


class CorporateAddressMapping(_CorporateIds):
    pass


class CorporateAddressPhoneMapping(_CorporateIds):
    pass


class CorporatePhoneMapping(_CorporateIds):
    pass


class CorporateEmailMapping(_CorporateIds):
    pass


class CorporateWebMapping(_CorporateIds):
    pass


CORPORATE = MappingFamily(
    name="corporate",
    parent=TreeKind("corporate", CorporateMapping),
    children=(
        TreeKind("address", CorporateAddressMapping),
        TreeKind("address_phone", CorporateAddressPhoneMapping),
        TreeKind("phone", CorporatePhoneMapping),
        TreeKind("email", CorporateEmailMapping),
        TreeKind("web", CorporateWebMapping),
    ),
)

__all__ = [
    "CORPORATE",
    "CorporateAddressMapping",
    "CorporateAddressPhoneMapping",
    "CorporateEmailMapping",
    "CorporateMapping",
    "CorporatePhoneMapping",
    "CorporateWebMapping",
]
