"""
Standard span attributes for idmapping.

Attribute constants shared by the stores and coordinators so spans carry
consistent keys. Database attributes follow OpenTelemetry semantic
conventions.

Example:
    >>> from idmapping.observability.attributes import ATTR_MAPPING_KIND, ATTR_RUN_LABEL
    >>>
    >>> with tracer.span(
    ...     "idmapping.store.count_by_label",
    ...     {ATTR_MAPPING_KIND: "corporate", ATTR_RUN_LABEL: "2023-01-01T12:45:12"},
    ... ):
    ...     pass
"""

# =============================================================================
# Mapping Attributes
# =============================================================================

ATTR_MAPPING_KIND = "idmapping.mapping.kind"
"""Entity kind tag of the mapping record (e.g., 'corporate-address')."""

ATTR_SOURCE_ID = "idmapping.mapping.source_id"
"""Source-system identifier, stringified (composite keys joined with '/')."""

ATTR_TARGET_ID = "idmapping.mapping.target_id"
"""Target-system identifier, stringified."""

ATTR_RUN_LABEL = "idmapping.mapping.label"
"""Run label correlating records from one migration run."""

ATTR_SUBJECT_ID = "idmapping.subject.id"
"""Subject owning a set of mappings (e.g., an offender number)."""

ATTR_RECORD_COUNT = "idmapping.record.count"
"""Number of records written or deleted by one operation."""

# =============================================================================
# Family / Tree Attributes
# =============================================================================

ATTR_FAMILY = "idmapping.family.name"
"""Name of the mapping family a tree belongs to."""

ATTR_RETAINED_SUBJECT_ID = "idmapping.merge.retained_subject_id"
"""Subject kept after a merge."""

ATTR_REMOVED_SUBJECT_ID = "idmapping.merge.removed_subject_id"
"""Subject removed by a merge."""

# =============================================================================
# Paging Attributes
# =============================================================================

ATTR_PAGE_NUMBER = "idmapping.page.number"
"""Zero-based page number requested."""

ATTR_PAGE_SIZE = "idmapping.page.size"
"""Page size requested."""

# =============================================================================
# Database Attributes (OpenTelemetry semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (e.g., 'postgresql', 'sqlite', 'memory')."""

ATTR_DB_OPERATION = "db.operation"
"""Database operation (e.g., 'INSERT', 'SELECT', 'DELETE')."""

ATTR_DB_TABLE = "db.sql.table"
"""Table the operation targets."""
