"""
Contact person mappings.

A person and their addresses, phones, emails, identifiers, employments
and contacts. Identifiers and employments have no id of their own in the
source system: they are addressed by (person id, sequence number).
"""

from typing import ClassVar

from idmapping.families import MappingFamily, TreeKind
from idmapping.records import MappingRecord


class _PersonIds(MappingRecord):
    source_id: int
    target_id: str


class _PersonSequenceIds(MappingRecord):
    person_id: int
    sequence_number: int
    target_id: str

    __source_fields__: ClassVar[tuple[str, ...]] = ("person_id", "sequence_number")


class PersonMapping(_PersonIds):
    """Contact person mapping; parent of the contact person family."""


class PersonAddressMapping(_PersonIds):
    pass


class PersonPhoneMapping(_PersonIds):
    pass


class PersonEmailMapping(_PersonIds):
    pass


class PersonIdentifierMapping(_PersonSequenceIds):
    pass


class PersonEmploymentMapping(_PersonSequenceIds):
    pass


class PersonContactMapping(_PersonIds):
    """Relationship between a person and a prisoner."""


CONTACT_PERSON = MappingFamily(
    name="contact person",
    parent=TreeKind("person", PersonMapping),
    children=(
        TreeKind("address", PersonAddressMapping),
        TreeKind("phone", PersonPhoneMapping),
        TreeKind("email", PersonEmailMapping),
        TreeKind("identifier", PersonIdentifierMapping),
        TreeKind("employment", PersonEmploymentMapping),
        TreeKind("contact", PersonContactMapping),
    ),
)

__all__ = [
    "CONTACT_PERSON",
    "PersonAddressMapping",
    "PersonContactMapping",
    "PersonEmailMapping",
    "PersonEmploymentMapping",
    "PersonIdentifierMapping",
    "PersonMapping",
    "PersonPhoneMapping",
]
