"""
idmapping - Two-way id mapping service for system migrations.

This library provides:
- Mapping records per entity kind, keyed on both source and target ids
- Mapping stores with In-Memory, SQLite and PostgreSQL backends
- Conflict reconciliation for rejected inserts
- Atomic tree persistence for migration runs, with migration markers
- Replacement of whole mapping sets for repairs and subject merges
- Run-label paging with concurrent content and count reads
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("idmapping-py")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from idmapping.config import MappingServiceConfig
from idmapping.exceptions import (
    DuplicateMappingError,
    MappingError,
    MappingNotFoundError,
    MappingStoreError,
    ReplacementConflictError,
    ResetNotAllowedError,
    UniqueConstraintViolation,
)
from idmapping.families import (
    MappingFamily,
    MappingTree,
    PurgePolicy,
    TreeKind,
    TreePayload,
)
from idmapping.paging import Page, PagedMigrationQuery, PageRequest
from idmapping.reconciliation import ConflictReport, ConflictResolver
from idmapping.records import MappingRecord, MigrationMarker, OriginKind
from idmapping.replacement import ReplacementCoordinator
from idmapping.responses import DuplicateMappingErrorResponse, ErrorResponse, error_response
from idmapping.service import MappingService
from idmapping.stores import (
    InMemoryMappingDatabase,
    MappingDatabase,
    MappingStore,
    MigrationMarkerStore,
    PostgreSQLMappingDatabase,
)
from idmapping.tree import TreePersistenceCoordinator

__all__ = [
    "__version__",
    # Records
    "MappingRecord",
    "MigrationMarker",
    "OriginKind",
    # Families and trees
    "MappingFamily",
    "MappingTree",
    "PurgePolicy",
    "TreeKind",
    "TreePayload",
    # Stores
    "MappingDatabase",
    "MappingStore",
    "MigrationMarkerStore",
    "InMemoryMappingDatabase",
    "PostgreSQLMappingDatabase",
    # Coordinators
    "ConflictReport",
    "ConflictResolver",
    "TreePersistenceCoordinator",
    "ReplacementCoordinator",
    "PagedMigrationQuery",
    "MappingService",
    # Paging
    "Page",
    "PageRequest",
    # Responses
    "ErrorResponse",
    "DuplicateMappingErrorResponse",
    "error_response",
    # Configuration
    "MappingServiceConfig",
    # Exceptions
    "MappingError",
    "MappingNotFoundError",
    "UniqueConstraintViolation",
    "DuplicateMappingError",
    "ReplacementConflictError",
    "MappingStoreError",
    "ResetNotAllowedError",
]
