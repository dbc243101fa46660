"""Mapping store implementations for the idmapping library."""

from idmapping.stores.in_memory import (
    InMemoryMappingDatabase,
    InMemoryMappingStore,
    InMemoryMigrationMarkerStore,
)
from idmapping.stores.interface import (
    MappingDatabase,
    MappingSession,
    MappingStore,
    MigrationMarkerStore,
    label_order,
)
from idmapping.stores.postgresql import (
    PostgreSQLMappingDatabase,
    PostgreSQLMappingStore,
    PostgreSQLMigrationMarkerStore,
)

# SQLite support is optional - only import if aiosqlite is available
try:
    from idmapping.stores.sqlite import (  # noqa: F401
        SQLiteMappingDatabase,
        SQLiteMappingStore,
        SQLiteMigrationMarkerStore,
    )

    _SQLITE_AVAILABLE = True
except ImportError:
    _SQLITE_AVAILABLE = False

__all__ = [
    # Protocols
    "MappingDatabase",
    "MappingSession",
    "MappingStore",
    "MigrationMarkerStore",
    "label_order",
    # Concrete implementations
    "InMemoryMappingDatabase",
    "InMemoryMappingStore",
    "InMemoryMigrationMarkerStore",
    "PostgreSQLMappingDatabase",
    "PostgreSQLMappingStore",
    "PostgreSQLMigrationMarkerStore",
]

# Add the SQLite classes to __all__ only if available
if _SQLITE_AVAILABLE:
    __all__ += ["SQLiteMappingDatabase", "SQLiteMappingStore", "SQLiteMigrationMarkerStore"]
