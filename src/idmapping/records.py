"""
Base class for mapping records.

A mapping record is one correspondence between a source-system identifier
(numeric, sometimes composite) and a target-system identifier (natural key
or UUID) for one entity kind. Each entity kind is a ``MappingRecord``
subclass that declares its id fields and a few class-level settings which
the stores and the schema generator read:

- ``__source_fields__``: field names forming the source key (one field, or
  several for composite kinds such as person id + sequence number)
- ``__target_field__``: field name holding the target id
- ``__primary_key__``: ``"target"`` (default) or ``"source"``; the other side
  gets a secondary unique index
- ``__subject_field__``: optional field naming the subject that owns the
  record, used by replacement and migration purges
- ``__updatable__``: whether in-place update by target id is supported
- ``__table_name__`` / ``__kind__``: optional overrides for the derived
  table name and the human-readable kind name
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

LABEL_MAX_LENGTH = 20

SourceKey = tuple[Any, ...]


class OriginKind(str, Enum):
    """
    Provenance of a mapping record.

    Informational only: nothing in the service branches on it apart from
    optional label filters.
    """

    MIGRATED = "MIGRATED"
    """Written by a bulk migration run."""

    SOURCE_SYSTEM_CREATED = "SOURCE_SYSTEM_CREATED"
    """Entity was created in the source system and synchronised across."""

    TARGET_SYSTEM_CREATED = "TARGET_SYSTEM_CREATED"
    """Entity was created in the target system and synchronised back."""


def _camel_to_snake(name: str) -> str:
    """
    Convert CamelCase to snake_case.

    Examples:
        >>> _camel_to_snake("CorporateAddressMapping")
        'corporate_address_mapping'
    """
    s1 = re.sub(r"(.)([A-Z][a-z]+)", r"\1_\2", name)
    return re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", s1).lower()


def _pluralize(name: str) -> str:
    """
    Simple English pluralization.

    Examples:
        >>> _pluralize("corporate_mapping")
        'corporate_mappings'
        >>> _pluralize("address")
        'addresses'
    """
    if name.endswith("y") and len(name) > 1 and name[-2] not in "aeiou":
        return name[:-1] + "ies"
    if name.endswith(("s", "x", "z", "ch", "sh")):
        return name + "es"
    return name + "s"


class MappingRecord(BaseModel):
    """
    Base class for every entity kind's mapping record.

    Records are immutable. Stores hand back copies with ``created_at``
    assigned; coordinators stamp run labels with ``stamped()``.

    Attributes:
        label: Optional run label (ISO-8601 timestamp of the migration run
            by convention), ``None`` for live-synchronisation records
        origin: Provenance tag
        created_at: Assigned by the store on insert

    Example:
        >>> class WidgetMapping(MappingRecord):
        ...     source_id: int
        ...     target_id: str
        ...
        >>> WidgetMapping.table_name()
        'widget_mappings'
        >>> WidgetMapping(source_id=1, target_id="a").source_key
        (1,)
    """

    model_config = ConfigDict(
        frozen=True,
        from_attributes=True,
        populate_by_name=True,
    )

    label: str | None = Field(
        default=None,
        max_length=LABEL_MAX_LENGTH,
        description="Run label correlating records from one migration run",
    )
    origin: OriginKind = Field(
        default=OriginKind.TARGET_SYSTEM_CREATED,
        description="Provenance tag",
    )
    created_at: datetime | None = Field(
        default=None,
        description="Server-assigned creation timestamp",
    )

    __table_name__: ClassVar[str | None] = None
    __kind__: ClassVar[str | None] = None
    __source_fields__: ClassVar[tuple[str, ...]] = ("source_id",)
    __target_field__: ClassVar[str] = "target_id"
    __primary_key__: ClassVar[Literal["target", "source"]] = "target"
    __subject_field__: ClassVar[str | None] = None
    __updatable__: ClassVar[bool] = False

    # -------------------------------------------------------------------------
    # Class-level metadata
    # -------------------------------------------------------------------------

    @classmethod
    def kind(cls) -> str:
        """
        Human-readable kind name used in messages and span attributes.

        Derived from the class name with the trailing "Mapping" removed,
        unless ``__kind__`` is set.

        Example:
            >>> CorporateAddressMapping.kind()
            'corporate address'
        """
        if cls.__kind__:
            return cls.__kind__
        snake = _camel_to_snake(cls.__name__)
        if snake.endswith("_mapping"):
            snake = snake[: -len("_mapping")]
        return snake.replace("_", " ")

    @classmethod
    def table_name(cls) -> str:
        """Table name: ``__table_name__`` or the pluralised snake_case class name."""
        if cls.__table_name__:
            return cls.__table_name__
        return _pluralize(_camel_to_snake(cls.__name__))

    @classmethod
    def field_names(cls) -> list[str]:
        """All column names, in declaration order."""
        return list(cls.model_fields.keys())

    @classmethod
    def source_fields(cls) -> tuple[str, ...]:
        return cls.__source_fields__

    @classmethod
    def target_field(cls) -> str:
        return cls.__target_field__

    @classmethod
    def subject_field(cls) -> str | None:
        return cls.__subject_field__

    @classmethod
    def is_updatable(cls) -> bool:
        return cls.__updatable__

    @classmethod
    def primary_key_fields(cls) -> tuple[str, ...]:
        """Columns of the primary key."""
        if cls.__primary_key__ == "source":
            return cls.__source_fields__
        return (cls.__target_field__,)

    @classmethod
    def unique_key_fields(cls) -> tuple[str, ...]:
        """Columns of the secondary unique index (the side that is not the primary key)."""
        if cls.__primary_key__ == "source":
            return (cls.__target_field__,)
        return cls.__source_fields__

    @classmethod
    def normalize_source_key(cls, source_id: Any) -> SourceKey:
        """
        Normalise a scalar or tuple source id into a key tuple.

        Args:
            source_id: A scalar for single-field kinds, or a tuple/list with
                one value per source field

        Returns:
            Tuple with one value per source field

        Raises:
            ValueError: If the number of values does not match the kind
        """
        key = tuple(source_id) if isinstance(source_id, (tuple, list)) else (source_id,)
        if len(key) != len(cls.__source_fields__):
            raise ValueError(
                f"{cls.__name__} source key needs {len(cls.__source_fields__)} value(s) "
                f"({', '.join(cls.__source_fields__)}), got {len(key)}"
            )
        return key

    @classmethod
    def coerce_target_id(cls, target_id: Any) -> Any:
        """Convert a caller-supplied target id to the kind's declared type (UUID or str)."""
        annotation = cls.model_fields[cls.__target_field__].annotation
        if annotation is UUID and not isinstance(target_id, UUID):
            return UUID(str(target_id))
        if annotation is str and not isinstance(target_id, str):
            return str(target_id)
        return target_id

    # -------------------------------------------------------------------------
    # Instance accessors
    # -------------------------------------------------------------------------

    @property
    def source_key(self) -> SourceKey:
        return tuple(getattr(self, name) for name in self.__source_fields__)

    @property
    def target_key(self) -> Any:
        return getattr(self, self.__target_field__)

    @property
    def subject_key(self) -> Any | None:
        if self.__subject_field__ is None:
            return None
        return getattr(self, self.__subject_field__)

    def stamped(self, label: str | None, origin: OriginKind) -> MappingRecord:
        """
        Return a copy carrying the given run label and provenance tag.

        The copy is validated like a new record.

        Raises:
            pydantic.ValidationError: If the label is too long or the origin unknown
        """
        return type(self).model_validate({**self.model_dump(), "label": label, "origin": origin})

    def with_created_at(self, created_at: datetime) -> MappingRecord:
        return self.model_copy(update={"created_at": created_at})

    def to_attributes(self) -> dict[str, Any]:
        """JSON-safe attribute map, as rendered in conflict payloads."""
        return self.model_dump(mode="json")

    def to_columns(self, json_safe: bool = False) -> dict[str, Any]:
        """
        Column values for persistence.

        Args:
            json_safe: Render UUIDs and datetimes as strings (SQLite);
                otherwise native values are kept (PostgreSQL drivers)
        """
        if json_safe:
            return self.model_dump(mode="json")
        columns = self.model_dump()
        return {
            name: value.value if isinstance(value, Enum) else value
            for name, value in columns.items()
        }

    def describe(self) -> str:
        """Short description used in log lines and error messages."""
        source = "/".join(str(part) for part in self.source_key)
        return f"{self.kind()} source={source} target={self.target_key}"


class MigrationMarker(BaseModel):
    """
    Latest migration run that touched a subject within one family.

    At most one marker exists per (family, subject_id); recording a new
    one replaces the old.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True)

    family: str
    subject_id: str
    label: str | None = Field(default=None, max_length=LABEL_MAX_LENGTH)
    created_at: datetime | None = None

    @classmethod
    def field_names(cls) -> list[str]:
        return list(cls.model_fields.keys())


__all__ = [
    "LABEL_MAX_LENGTH",
    "MappingRecord",
    "MigrationMarker",
    "OriginKind",
    "SourceKey",
]
