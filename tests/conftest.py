"""
Shared pytest fixtures for the idmapping tests.

This module provides:
- Database fixtures (in_memory_database, sqlite_database)
- Service fixtures (service, coordinators with tracing disabled)
- Tree payload factories for the corporate and temporary absence families
- Tracing fixtures (mock_tracer)
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import pytest
import pytest_asyncio

from idmapping.config import MappingServiceConfig
from idmapping.families import TreePayload
from idmapping.kinds import all_kinds
from idmapping.observability import MockTracer
from idmapping.records import OriginKind
from idmapping.replacement import ReplacementCoordinator
from idmapping.service import MappingService
from idmapping.stores.in_memory import InMemoryMappingDatabase
from idmapping.tree import TreePersistenceCoordinator

if TYPE_CHECKING:
    from idmapping.stores.sqlite import SQLiteMappingDatabase

RUN_LABEL = "2023-01-01T12:45:12"

# ============================================================================
# SQLite Availability Check
# ============================================================================

AIOSQLITE_AVAILABLE = False
try:
    import aiosqlite  # noqa: F401

    AIOSQLITE_AVAILABLE = True
except ImportError:
    pass


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for tests."""
    config.addinivalue_line("markers", "sqlite: marks tests that require SQLite (aiosqlite)")


skip_if_no_aiosqlite = pytest.mark.skipif(not AIOSQLITE_AVAILABLE, reason="aiosqlite not installed")


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def in_memory_database() -> InMemoryMappingDatabase:
    """Fresh in-memory database with tracing disabled."""
    return InMemoryMappingDatabase(enable_tracing=False)


@pytest_asyncio.fixture
async def sqlite_database() -> AsyncGenerator[SQLiteMappingDatabase, None]:
    """
    In-memory SQLite database with every kind's table created.

    Skips the test when aiosqlite is not installed.
    """
    if not AIOSQLITE_AVAILABLE:
        pytest.skip("aiosqlite not installed")

    from idmapping.stores.sqlite import SQLiteMappingDatabase

    database = SQLiteMappingDatabase(":memory:", wal_mode=False, enable_tracing=False)
    await database.initialize(all_kinds())
    try:
        yield database
    finally:
        await database.close()


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def config() -> MappingServiceConfig:
    """Configuration with tracing disabled and resets allowed."""
    return MappingServiceConfig(enable_tracing=False, allow_reset=True)


@pytest.fixture
def service(
    in_memory_database: InMemoryMappingDatabase,
    config: MappingServiceConfig,
) -> MappingService:
    """Mapping service over the in-memory database."""
    return MappingService(in_memory_database, config)


@pytest.fixture
def tree_coordinator(in_memory_database: InMemoryMappingDatabase) -> TreePersistenceCoordinator:
    return TreePersistenceCoordinator(in_memory_database, enable_tracing=False)


@pytest.fixture
def replacement_coordinator(
    in_memory_database: InMemoryMappingDatabase,
) -> ReplacementCoordinator:
    return ReplacementCoordinator(in_memory_database, enable_tracing=False)


@pytest.fixture
def mock_tracer() -> MockTracer:
    """Tracer that records span names and attributes."""
    return MockTracer()


# ============================================================================
# Payload Factories
# ============================================================================


@pytest.fixture
def corporate_payload() -> Callable[..., TreePayload]:
    """
    Factory for corporate tree payloads.

    Ids are derived from ``base`` so that payloads built with different
    bases never collide.
    """

    def _create(
        base: int = 100,
        addresses: int = 2,
        phones: int = 3,
        label: str | None = RUN_LABEL,
        **extra_children: list[dict[str, Any]],
    ) -> TreePayload:
        children: dict[str, list[dict[str, Any]]] = {
            "address": [
                {"source_id": base + i, "target_id": str(base + i)} for i in range(addresses)
            ],
            "phone": [
                {"source_id": base + 50 + i, "target_id": str(base + 50 + i)}
                for i in range(phones)
            ],
        }
        children.update(extra_children)
        return TreePayload(
            label=label,
            origin=OriginKind.MIGRATED,
            parent={"source_id": base, "target_id": str(base)},
            children=children,
        )

    return _create


@pytest.fixture
def absence_payload() -> Callable[..., TreePayload]:
    """Factory for temporary absence payloads for one prisoner."""

    def _create(
        offender_no: str = "A1234BC",
        booking_id: int = 12345,
        label: str | None = RUN_LABEL,
        applications: int = 1,
        schedules: int = 2,
        movements: int = 2,
        first_id: int = 1,
    ) -> TreePayload:
        def _uuid() -> str:
            return str(uuid4())

        return TreePayload(
            label=label,
            origin=OriginKind.MIGRATED,
            context={"offender_no": offender_no, "booking_id": booking_id},
            children={
                "application": [
                    {"source_id": first_id + i, "target_id": _uuid()} for i in range(applications)
                ],
                "schedule": [
                    {"source_id": first_id + i, "target_id": _uuid()} for i in range(schedules)
                ],
                "movement": [
                    {"movement_seq": first_id + i, "target_id": _uuid()} for i in range(movements)
                ],
            },
        )

    return _create
