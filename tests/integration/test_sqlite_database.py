"""
Integration tests specific to the SQLite mapping database.

Behaviour shared with the other backends is covered by
test_database_behaviour.py.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from idmapping.config import MappingServiceConfig
from idmapping.exceptions import MappingStoreError
from idmapping.kinds import CORPORATE, CorporateMapping
from tests.conftest import skip_if_no_aiosqlite

pytestmark = [pytest.mark.integration, pytest.mark.sqlite, skip_if_no_aiosqlite]


class TestSQLiteDatabase:
    """Tests for connection handling and persistence to a file."""

    @pytest.mark.asyncio
    async def test_file_database_persists(self, tmp_path: Path) -> None:
        """Test records survive closing and reopening a file database."""
        from idmapping.stores.sqlite import SQLiteMappingDatabase

        path = str(tmp_path / "mappings.db")
        async with SQLiteMappingDatabase(path, enable_tracing=False) as database:
            await database.initialize(CORPORATE.kinds())
            await database.store(CorporateMapping).insert(
                CorporateMapping(source_id=12345, target_id="54321")
            )

        async with SQLiteMappingDatabase(path, enable_tracing=False) as database:
            found = await database.store(CorporateMapping).find_by_source_id(12345)

        assert found is not None
        assert found.target_id == "54321"

    @pytest.mark.asyncio
    async def test_wal_mode(self, tmp_path: Path) -> None:
        """Test WAL journaling is enabled by default."""
        from idmapping.stores.sqlite import SQLiteMappingDatabase

        async with SQLiteMappingDatabase(str(tmp_path / "wal.db"), enable_tracing=False) as database:
            conn = database._ensure_connected()
            cursor = await conn.execute("PRAGMA journal_mode")
            row = await cursor.fetchone()

        assert row is not None
        assert row[0].lower() == "wal"

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self) -> None:
        """Test initialize can run twice over the same database."""
        from idmapping.stores.sqlite import SQLiteMappingDatabase

        async with SQLiteMappingDatabase(":memory:", wal_mode=False, enable_tracing=False) as database:
            await database.initialize(CORPORATE.kinds())
            await database.initialize(CORPORATE.kinds())

            assert await database.store(CorporateMapping).count_all() == 0

    @pytest.mark.asyncio
    async def test_not_connected(self) -> None:
        """Test using a closed database raises MappingStoreError."""
        from idmapping.stores.sqlite import SQLiteMappingDatabase

        database = SQLiteMappingDatabase(":memory:", enable_tracing=False)

        with pytest.raises(MappingStoreError, match="Not connected"):
            await database.store(CorporateMapping).count_all()

    @pytest.mark.asyncio
    async def test_close_twice(self) -> None:
        """Test close is safe to call more than once."""
        from idmapping.stores.sqlite import SQLiteMappingDatabase

        database = SQLiteMappingDatabase(":memory:", enable_tracing=False)
        await database.initialize(CORPORATE.kinds())
        await database.close()
        await database.close()

        assert "connected=False" in repr(database)

    @pytest.mark.asyncio
    async def test_from_config(self, tmp_path: Path) -> None:
        """Test journaling, busy timeout and tracing come from the service config."""
        from idmapping.stores.sqlite import SQLiteMappingDatabase

        config = MappingServiceConfig(
            sqlite_wal_mode=False, sqlite_busy_timeout=250, enable_tracing=False
        )
        database = SQLiteMappingDatabase.from_config(str(tmp_path / "config.db"), config)

        assert "tracing=disabled" in repr(database)
        async with database:
            conn = database._ensure_connected()
            cursor = await conn.execute("PRAGMA journal_mode")
            journal = await cursor.fetchone()
            cursor = await conn.execute("PRAGMA busy_timeout")
            timeout = await cursor.fetchone()

        assert journal is not None
        assert journal[0].lower() != "wal"
        assert timeout is not None
        assert timeout[0] == 250


class TestSQLiteIsolation:
    """Tests for reads made while a transaction is open."""

    @pytest.mark.asyncio
    async def test_read_waits_for_rollback(self, sqlite_database) -> None:
        """Test a read outside the transaction never sees rows it rolls back."""
        store = sqlite_database.store(CorporateMapping)

        with pytest.raises(RuntimeError):
            async with sqlite_database.transaction() as session:
                await session.store(CorporateMapping).insert(
                    CorporateMapping(source_id=1, target_id="a")
                )
                read = asyncio.create_task(store.find_by_source_id(1))
                await asyncio.sleep(0.01)
                assert not read.done()
                raise RuntimeError("abort")

        assert await read is None
        assert await store.count_all() == 0

    @pytest.mark.asyncio
    async def test_read_waits_for_commit(self, sqlite_database) -> None:
        """Test a read outside the transaction sees its rows once committed."""
        store = sqlite_database.store(CorporateMapping)

        async with sqlite_database.transaction() as session:
            await session.store(CorporateMapping).insert(
                CorporateMapping(source_id=1, target_id="a")
            )
            read = asyncio.create_task(store.find_by_source_id(1))
            await asyncio.sleep(0.01)
            assert not read.done()

        found = await read
        assert found is not None
        assert found.target_id == "a"

    @pytest.mark.asyncio
    async def test_marker_read_waits(self, sqlite_database) -> None:
        """Test marker lookups also wait for an open transaction."""
        from idmapping.records import MigrationMarker

        with pytest.raises(RuntimeError):
            async with sqlite_database.transaction() as session:
                await session.markers.record(
                    MigrationMarker(family="corporate", subject_id="s1", label="run-1")
                )
                read = asyncio.create_task(sqlite_database.markers.find("corporate", "s1"))
                await asyncio.sleep(0.01)
                assert not read.done()
                raise RuntimeError("abort")

        assert await read is None
