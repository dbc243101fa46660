"""
Configuration for the mapping service.

Settings are plain frozen dataclasses validated on construction. Loading
them from files or the environment is left to the embedding application.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class MappingServiceConfig:
    """
    Settings shared by the service boundary and the database backends.

    Attributes:
        default_page_size: Page size used when the caller does not give one
        max_page_size: Upper bound applied to caller-supplied page sizes
        allow_reset: Whether delete-all operations are permitted. Leave
            False anywhere other than test and development environments.
        enable_tracing: Whether to emit OpenTelemetry spans (when installed)
        sqlite_busy_timeout: Milliseconds SQLite waits on a locked database
        sqlite_wal_mode: Whether SQLite databases use write-ahead logging

    Example:
        >>> config = MappingServiceConfig(allow_reset=True, default_page_size=50)
        >>> config.clamp_page_size(5000)
        1000
    """

    default_page_size: int = 20
    max_page_size: int = 1000
    allow_reset: bool = False
    enable_tracing: bool = True
    sqlite_busy_timeout: int = 5000
    sqlite_wal_mode: bool = True

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.default_page_size < 1:
            raise ValueError(f"default_page_size must be positive, got {self.default_page_size}")
        if self.max_page_size < self.default_page_size:
            raise ValueError(
                f"max_page_size ({self.max_page_size}) must be at least "
                f"default_page_size ({self.default_page_size})"
            )
        if self.sqlite_busy_timeout < 0:
            raise ValueError(
                f"sqlite_busy_timeout must be non-negative, got {self.sqlite_busy_timeout}"
            )

    def clamp_page_size(self, size: int | None) -> int:
        """Resolve a caller-supplied page size against the configured bounds."""
        if size is None:
            return self.default_page_size
        return max(1, min(size, self.max_page_size))


__all__ = ["MappingServiceConfig"]
