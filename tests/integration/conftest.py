"""
Integration fixtures: a real PostgreSQL server and the backend-parametrised
``database`` fixture.

PostgreSQL runs in a throwaway testcontainers container shared by the whole
session. Without testcontainers or a reachable Docker daemon the PostgreSQL
cases are skipped and the other backends still run.
"""

from __future__ import annotations

import subprocess
from collections.abc import AsyncIterator, Iterator
from typing import TYPE_CHECKING

import pytest
import pytest_asyncio

from idmapping.kinds import all_kinds
from idmapping.schema import MARKER_TABLE
from idmapping.stores.in_memory import InMemoryMappingDatabase

if TYPE_CHECKING:
    from idmapping.stores.interface import MappingDatabase
    from idmapping.stores.postgresql import PostgreSQLMappingDatabase

try:
    from testcontainers.postgres import PostgresContainer
except ImportError:
    PostgresContainer = None  # type: ignore[assignment, misc]


def _docker_running() -> bool:
    try:
        return subprocess.run(["docker", "info"], capture_output=True, timeout=5).returncode == 0
    except (subprocess.TimeoutExpired, OSError):
        return False


POSTGRES_AVAILABLE = PostgresContainer is not None and _docker_running()

skip_if_no_postgres_infra = pytest.mark.skipif(
    not POSTGRES_AVAILABLE,
    reason="testcontainers or Docker missing; PostgreSQL mapping tests skipped",
)


@pytest.fixture(scope="session")
def postgres_url() -> Iterator[str]:
    """asyncpg URL of a PostgreSQL 15 container started once per session."""
    if not POSTGRES_AVAILABLE:
        pytest.skip("testcontainers or Docker missing")

    with PostgresContainer("postgres:15", driver="asyncpg") as container:
        yield container.get_connection_url()


@pytest_asyncio.fixture
async def postgres_database(postgres_url: str) -> AsyncIterator[PostgreSQLMappingDatabase]:
    """
    PostgreSQL mapping database with the tables of every family created.

    Every mapping table and the marker table are truncated afterwards, so
    tests sharing the container never see each other's rows.
    """
    from sqlalchemy import text
    from sqlalchemy.ext.asyncio import create_async_engine

    from idmapping.stores.postgresql import PostgreSQLMappingDatabase

    engine = create_async_engine(postgres_url)
    database = PostgreSQLMappingDatabase(engine, enable_tracing=False)
    await database.initialize(all_kinds())

    yield database

    tables = ", ".join([kind.table_name() for kind in all_kinds()] + [MARKER_TABLE])
    async with engine.begin() as connection:
        await connection.execute(text(f"TRUNCATE TABLE {tables}"))  # nosec B608
    await database.close()


@pytest.fixture(params=["memory", "sqlite", "postgresql"])
def database(request: pytest.FixtureRequest) -> MappingDatabase:
    """
    Each mapping database backend in turn, empty and initialised.

    SQLite is skipped without aiosqlite, PostgreSQL without Docker.
    """
    if request.param == "memory":
        return InMemoryMappingDatabase(enable_tracing=False)
    if request.param == "sqlite":
        return request.getfixturevalue("sqlite_database")
    return request.getfixturevalue("postgres_database")
