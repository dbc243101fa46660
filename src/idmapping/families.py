"""
Mapping families and trees.

A family is a parent entity kind plus its ordered child kinds and a purge
policy. A tree is one parent record plus its child records, persisted
together by the tree coordinator under one run label.

Trees are built from a generic payload (plain dicts, as received from a
batch job) by an explicit factory per kind, looked up by the child's tag.

Example:
    >>> payload = TreePayload(
    ...     label="2023-01-01T12:45:12",
    ...     origin=OriginKind.MIGRATED,
    ...     parent={"source_id": 12345, "target_id": "54321"},
    ...     children={"address": [{"source_id": 1, "target_id": "11"}]},
    ... )
    >>> tree = CORPORATE.build_tree(payload)
    >>> [record.kind() for record in CORPORATE.ordered_records(tree)]
    ['corporate', 'corporate address']
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from idmapping.records import LABEL_MAX_LENGTH, MappingRecord, OriginKind

RecordFactory = Callable[[Mapping[str, Any], Mapping[str, Any]], MappingRecord]
"""Builds one record from a payload item and the payload-level context fields."""


class PurgePolicy(str, Enum):
    """What a migration run removes before writing a subject's tree."""

    NONE = "none"
    """Nothing is purged; the tree is inserted as-is."""

    BY_SUBJECT = "by_subject"
    """Every record of the family's subject-keyed kinds for the subject is deleted first."""


@dataclass(frozen=True)
class TreeKind:
    """
    One kind taking part in a tree, addressed by a short tag.

    Attributes:
        tag: Key used in payloads (e.g. ``"address"``)
        record_class: The MappingRecord subclass built for this tag
        factory: Optional custom builder; by default the item fields are
            merged over the context fields and validated
    """

    tag: str
    record_class: type[MappingRecord]
    factory: RecordFactory | None = None

    def build(self, item: Mapping[str, Any], context: Mapping[str, Any]) -> MappingRecord:
        if self.factory is not None:
            return self.factory(item, context)
        known = set(self.record_class.field_names())
        values = {key: value for key, value in context.items() if key in known}
        values.update(item)
        return self.record_class.model_validate(values)


class TreePayload(BaseModel):
    """
    Generic, untyped tree as received from a migration client.

    Attributes:
        label: Run label applied to every record of the tree
        origin: Provenance applied to every record of the tree
        parent: Parent record fields (None for parentless families)
        children: Child record fields grouped by tag
        context: Fields shared by every record (e.g. the subject id),
            overridden by item-level fields of the same name
    """

    model_config = ConfigDict(frozen=True)

    label: str | None = Field(default=None, max_length=LABEL_MAX_LENGTH)
    origin: OriginKind = OriginKind.TARGET_SYSTEM_CREATED
    parent: dict[str, Any] | None = None
    children: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)
    context: dict[str, Any] = Field(default_factory=dict)


@dataclass(frozen=True)
class MappingTree:
    """
    A parent record and its child records, grouped by child tag.

    Records are stamped with ``label`` and ``origin`` when the tree is
    persisted, whatever they carried before.
    """

    parent: MappingRecord | None
    children: Mapping[str, Sequence[MappingRecord]] = field(default_factory=dict)
    label: str | None = None
    origin: OriginKind = OriginKind.TARGET_SYSTEM_CREATED

    def __post_init__(self) -> None:
        if self.label is not None and len(self.label) > LABEL_MAX_LENGTH:
            raise ValueError(
                f"Run label {self.label!r} is longer than {LABEL_MAX_LENGTH} characters"
            )
        object.__setattr__(self, "origin", OriginKind(self.origin))

    def __len__(self) -> int:
        count = 0 if self.parent is None else 1
        return count + sum(len(records) for records in self.children.values())


@dataclass(frozen=True)
class MappingFamily:
    """
    A parent kind, its ordered child kinds and its purge policy.

    Attributes:
        name: Family name, used for migration markers and span attributes
        parent: Parent kind, or None for families that are only children
            of an external subject
        children: Child kinds in insert order
        purge_policy: What a migration run purges for the subject first
    """

    name: str
    parent: TreeKind | None
    children: tuple[TreeKind, ...] = ()
    purge_policy: PurgePolicy = PurgePolicy.NONE

    def __post_init__(self) -> None:
        tags = [kind.tag for kind in self.children]
        if len(tags) != len(set(tags)):
            raise ValueError(f"Family {self.name!r} has duplicate child tags: {tags}")
        if self.purge_policy is PurgePolicy.BY_SUBJECT and not self.subject_kinds():
            raise ValueError(f"Family {self.name!r} purges by subject but has no subject-keyed kind")

    def kinds(self) -> list[type[MappingRecord]]:
        """Every record class of the family, parent first, children in insert order."""
        parent = [self.parent.record_class] if self.parent is not None else []
        return parent + [kind.record_class for kind in self.children]

    def subject_kinds(self) -> list[type[MappingRecord]]:
        """Record classes that carry a subject field."""
        return [kind for kind in self.kinds() if kind.subject_field() is not None]

    def child(self, tag: str) -> TreeKind:
        for kind in self.children:
            if kind.tag == tag:
                return kind
        raise KeyError(f"Family {self.name!r} has no child kind {tag!r}")

    def build_tree(self, payload: TreePayload) -> MappingTree:
        """
        Build a typed tree from a generic payload.

        Raises:
            KeyError: If the payload names a child tag the family lacks
            ValueError: If the parent is missing or unexpected, or a record
                fails validation
        """
        if (payload.parent is None) != (self.parent is None):
            expected = "a parent" if self.parent is not None else "no parent"
            raise ValueError(f"Family {self.name!r} trees need {expected}")

        parent = None
        if self.parent is not None and payload.parent is not None:
            parent = self.parent.build(payload.parent, payload.context)

        children = {
            tag: [self.child(tag).build(item, payload.context) for item in items]
            for tag, items in payload.children.items()
        }
        return MappingTree(
            parent=parent,
            children=children,
            label=payload.label,
            origin=payload.origin,
        )

    def ordered_records(self, tree: MappingTree) -> list[MappingRecord]:
        """
        Stamp and order a tree's records for insertion.

        Parent first, then each child kind's records in the family's order.

        Raises:
            KeyError: If the tree holds a tag the family lacks
            TypeError: If a record is not of its tag's kind
        """
        for tag in tree.children:
            self.child(tag)
        return [
            record.stamped(tree.label, tree.origin) for record in self._walk(tree)
        ]

    def _walk(self, tree: MappingTree) -> Iterator[MappingRecord]:
        if tree.parent is not None:
            if self.parent is None or not isinstance(tree.parent, self.parent.record_class):
                raise TypeError(
                    f"Family {self.name!r} cannot take a {type(tree.parent).__name__} parent"
                )
            yield tree.parent
        for kind in self.children:
            for record in tree.children.get(kind.tag, ()):
                if not isinstance(record, kind.record_class):
                    raise TypeError(
                        f"{type(record).__name__} is not a {kind.record_class.__name__} "
                        f"({self.name} {kind.tag})"
                    )
                yield record


__all__ = [
    "MappingFamily",
    "MappingTree",
    "PurgePolicy",
    "RecordFactory",
    "TreeKind",
    "TreePayload",
]
