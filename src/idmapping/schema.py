"""
Schema generation for mapping tables.

Generates CREATE TABLE and CREATE INDEX statements from MappingRecord
classes. Each kind gets one table whose primary key is the target id (or
the source key for source-keyed kinds) and a unique index on the other
side, so the database enforces one record per source key and one per
target id.

Example:
    >>> from idmapping.kinds.corporate import CorporateMapping
    >>> from idmapping.schema import generate_full_schema
    >>> print(generate_full_schema(CorporateMapping, dialect="sqlite"))
    CREATE TABLE IF NOT EXISTS corporate_mappings (
        label TEXT,
        origin TEXT NOT NULL DEFAULT 'TARGET_SYSTEM_CREATED',
        created_at TEXT,
        source_id INTEGER NOT NULL,
        target_id TEXT NOT NULL,
        PRIMARY KEY (target_id)
    );
    <BLANKLINE>
    CREATE UNIQUE INDEX IF NOT EXISTS uq_corporate_mappings_source_id ON corporate_mappings(source_id);
    <BLANKLINE>
    CREATE INDEX IF NOT EXISTS idx_corporate_mappings_label ON corporate_mappings(label);
"""

from __future__ import annotations

import types
from collections.abc import Iterable
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Union, get_args, get_origin
from uuid import UUID

from pydantic.fields import FieldInfo

from idmapping.records import LABEL_MAX_LENGTH, MappingRecord

Dialect = Literal["postgresql", "sqlite"]

MARKER_TABLE = "migration_markers"

# Type mappings for PostgreSQL
POSTGRESQL_TYPE_MAP: dict[type, str] = {
    UUID: "UUID",
    str: "VARCHAR(255)",
    int: "BIGINT",
    bool: "BOOLEAN",
    datetime: "TIMESTAMP WITH TIME ZONE",
}

# Type mappings for SQLite
SQLITE_TYPE_MAP: dict[type, str] = {
    UUID: "TEXT",
    str: "TEXT",
    int: "INTEGER",
    bool: "INTEGER",
    datetime: "TEXT",
}


def generate_schema(
    record_class: type[MappingRecord],
    dialect: Dialect = "postgresql",
    if_not_exists: bool = True,
) -> str:
    """
    Generate CREATE TABLE SQL for a MappingRecord class.

    Args:
        record_class: The MappingRecord subclass to generate schema for
        dialect: Database dialect ('postgresql' or 'sqlite')
        if_not_exists: Include IF NOT EXISTS clause (default True)

    Returns:
        CREATE TABLE SQL statement
    """
    type_map = POSTGRESQL_TYPE_MAP if dialect == "postgresql" else SQLITE_TYPE_MAP
    table_name = record_class.table_name()

    columns = [
        _generate_column(name, info, type_map, dialect)
        for name, info in record_class.model_fields.items()
    ]
    columns.append(f"PRIMARY KEY ({', '.join(record_class.primary_key_fields())})")

    exists_clause = "IF NOT EXISTS " if if_not_exists else ""
    columns_sql = ",\n    ".join(columns)

    return f"""CREATE TABLE {exists_clause}{table_name} (
    {columns_sql}
);"""


def generate_indexes(
    record_class: type[MappingRecord],
    dialect: Dialect = "postgresql",
) -> list[str]:
    """
    Generate CREATE INDEX statements for a MappingRecord class.

    Always generates the secondary unique index and the label index; adds
    a subject index for subject-keyed kinds.

    Args:
        record_class: The MappingRecord subclass to generate indexes for
        dialect: Database dialect (both dialects share the syntax used here)

    Returns:
        List of CREATE INDEX SQL statements
    """
    table_name = record_class.table_name()
    unique_fields = record_class.unique_key_fields()
    indexes = [
        f"CREATE UNIQUE INDEX IF NOT EXISTS uq_{table_name}_{'_'.join(unique_fields)} "
        f"ON {table_name}({', '.join(unique_fields)});",
        f"CREATE INDEX IF NOT EXISTS idx_{table_name}_label ON {table_name}(label);",
    ]

    subject_field = record_class.subject_field()
    if subject_field is not None:
        indexes.append(
            f"CREATE INDEX IF NOT EXISTS idx_{table_name}_{subject_field} "
            f"ON {table_name}({subject_field});"
        )

    return indexes


def generate_full_schema(
    record_class: type[MappingRecord],
    dialect: Dialect = "postgresql",
) -> str:
    """Complete schema for one kind: table plus indexes."""
    parts = [generate_schema(record_class, dialect), *generate_indexes(record_class, dialect)]
    return "\n\n".join(parts)


def generate_marker_schema(dialect: Dialect = "postgresql") -> str:
    """Schema for the migration marker table, one row per (family, subject)."""
    return "\n\n".join(_marker_statements(dialect))


def generate_statements(
    record_classes: Iterable[type[MappingRecord]],
    dialect: Dialect = "postgresql",
) -> list[str]:
    """
    Every statement needed for the given kinds plus the marker table.

    Statements are returned one per item so drivers that cannot run a
    multi-statement script (asyncpg) can execute them one at a time.
    """
    statements: list[str] = []
    for record_class in record_classes:
        statements.append(generate_schema(record_class, dialect))
        statements.extend(generate_indexes(record_class, dialect))
    statements.extend(_marker_statements(dialect))
    return statements


def _marker_statements(dialect: str) -> list[str]:
    type_map = POSTGRESQL_TYPE_MAP if dialect == "postgresql" else SQLITE_TYPE_MAP
    text_type = type_map[str]
    table = f"""CREATE TABLE IF NOT EXISTS {MARKER_TABLE} (
    family {text_type} NOT NULL,
    subject_id {text_type} NOT NULL,
    label {_label_type(dialect)},
    created_at {type_map[datetime]},
    PRIMARY KEY (family, subject_id)
);"""
    index = f"CREATE INDEX IF NOT EXISTS idx_{MARKER_TABLE}_label ON {MARKER_TABLE}(label);"
    return [table, index]


def _label_type(dialect: str) -> str:
    if dialect == "postgresql":
        return f"VARCHAR({LABEL_MAX_LENGTH})"
    return "TEXT"


def _generate_column(
    field_name: str,
    field_info: FieldInfo,
    type_map: dict[type, str],
    dialect: str,
) -> str:
    """
    Generate a single column definition.

    Enum fields are stored as their string values. Optional fields are
    nullable; everything else is NOT NULL.
    """
    python_type = _extract_type(field_info.annotation)

    if field_name == "label":
        sql_type = _label_type(dialect)
    elif isinstance(python_type, type) and issubclass(python_type, Enum):
        sql_type = "VARCHAR(32)" if dialect == "postgresql" else "TEXT"
    else:
        sql_type = type_map.get(python_type, "TEXT")

    parts = [field_name, sql_type]
    if not _is_optional(field_info.annotation):
        parts.append("NOT NULL")

    default = field_info.default
    if isinstance(default, Enum):
        parts.append(f"DEFAULT '{default.value}'")

    return " ".join(parts)


def _extract_type(annotation: Any) -> type:
    """
    Extract the base type from a type annotation.

    Handles ``T | None`` and ``Optional[T]``.
    """
    if annotation is None:
        return str

    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        for arg in get_args(annotation):
            if arg is not type(None):
                return _extract_type(arg)

    return annotation if isinstance(annotation, type) else type(annotation)


def _is_optional(annotation: Any) -> bool:
    origin = get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        return type(None) in get_args(annotation)
    return False


__all__ = [
    "MARKER_TABLE",
    "POSTGRESQL_TYPE_MAP",
    "SQLITE_TYPE_MAP",
    "generate_full_schema",
    "generate_indexes",
    "generate_marker_schema",
    "generate_schema",
    "generate_statements",
]
