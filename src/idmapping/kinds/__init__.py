"""
Entity kinds and the families they belong to.

Example:
    >>> from idmapping.kinds import CORPORATE, family
    >>> family("corporate") is CORPORATE
    True
"""

from idmapping.families import MappingFamily
from idmapping.kinds.contact_person import (
    CONTACT_PERSON,
    PersonAddressMapping,
    PersonContactMapping,
    PersonEmailMapping,
    PersonEmploymentMapping,
    PersonIdentifierMapping,
    PersonMapping,
    PersonPhoneMapping,
)
from idmapping.kinds.corporate import (
    CORPORATE,
    CorporateAddressMapping,
    CorporateAddressPhoneMapping,
    CorporateEmailMapping,
    CorporateMapping,
    CorporatePhoneMapping,
    CorporateWebMapping,
)
from idmapping.kinds.prisoner_restrictions import (
    PRISONER_RESTRICTIONS,
    PrisonerRestrictionMapping,
)
from idmapping.kinds.temporary_absences import (
    TEMPORARY_ABSENCES,
    TemporaryAbsenceApplicationMapping,
    TemporaryAbsenceMovementMapping,
    TemporaryAbsenceScheduleMapping,
)
from idmapping.kinds.visit_balances import VISIT_BALANCES, VisitBalanceMapping
from idmapping.records import MappingRecord

FAMILIES: dict[str, MappingFamily] = {
    f.name: f
    for f in (CORPORATE, CONTACT_PERSON, TEMPORARY_ABSENCES, PRISONER_RESTRICTIONS, VISIT_BALANCES)
}


def family(name: str) -> MappingFamily:
    """Look up a family by name."""
    try:
        return FAMILIES[name]
    except KeyError:
        raise KeyError(f"Unknown mapping family: {name!r}") from None


def all_kinds() -> list[type[MappingRecord]]:
    """Every record class of every family, for schema initialisation."""
    return [kind for f in FAMILIES.values() for kind in f.kinds()]


__all__ = [
    "FAMILIES",
    "family",
    "all_kinds",
    # Families
    "CONTACT_PERSON",
    "CORPORATE",
    "PRISONER_RESTRICTIONS",
    "TEMPORARY_ABSENCES",
    "VISIT_BALANCES",
    # Corporate
    "CorporateMapping",
    "CorporateAddressMapping",
    "CorporateAddressPhoneMapping",
    "CorporatePhoneMapping",
    "CorporateEmailMapping",
    "CorporateWebMapping",
    # Contact person
    "PersonMapping",
    "PersonAddressMapping",
    "PersonPhoneMapping",
    "PersonEmailMapping",
    "PersonIdentifierMapping",
    "PersonEmploymentMapping",
    "PersonContactMapping",
    # Prisoner restrictions
    "PrisonerRestrictionMapping",
    # Temporary absences
    "TemporaryAbsenceApplicationMapping",
    "TemporaryAbsenceScheduleMapping",
    "TemporaryAbsenceMovementMapping",
    # Visit balances
    "VisitBalanceMapping",
]
