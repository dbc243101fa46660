"""Unit tests for the in-memory mapping database."""

from uuid import uuid4

import pytest

from idmapping.exceptions import MappingStoreError, UniqueConstraintViolation
from idmapping.kinds import (
    CorporateAddressMapping,
    CorporateMapping,
    PersonIdentifierMapping,
    TemporaryAbsenceScheduleMapping,
    VisitBalanceMapping,
)
from idmapping.paging import PageRequest
from idmapping.records import MigrationMarker
from idmapping.stores.in_memory import InMemoryMappingDatabase, InMemoryMappingStore
from idmapping.stores.interface import MappingDatabase, MappingStore, MigrationMarkerStore


@pytest.fixture
def database() -> InMemoryMappingDatabase:
    return InMemoryMappingDatabase(enable_tracing=False)


@pytest.fixture
def store(database: InMemoryMappingDatabase) -> InMemoryMappingStore[CorporateMapping]:
    return database.store(CorporateMapping)


def schedule(source_id: int, offender_no: str = "A1234BC") -> TemporaryAbsenceScheduleMapping:
    return TemporaryAbsenceScheduleMapping(
        source_id=source_id, target_id=uuid4(), offender_no=offender_no, booking_id=1
    )


class TestProtocols:
    """Tests that the in-memory classes satisfy the store protocols."""

    def test_database_protocol(self, database: InMemoryMappingDatabase) -> None:
        """Test the database and its stores are runtime protocol instances."""
        assert isinstance(database, MappingDatabase)
        assert isinstance(database.store(CorporateMapping), MappingStore)
        assert isinstance(database.markers, MigrationMarkerStore)


class TestInsertAndFind:
    """Tests for insert and the single-record lookups."""

    @pytest.mark.asyncio
    async def test_insert_assigns_created_at(self, store: InMemoryMappingStore) -> None:
        """Test insert returns the stored record with created_at set."""
        stored = await store.insert(CorporateMapping(source_id=12345, target_id="54321"))
        assert stored.created_at is not None

    @pytest.mark.asyncio
    async def test_find_by_either_id(self, store: InMemoryMappingStore) -> None:
        """Test a record is found by source id and by target id."""
        stored = await store.insert(CorporateMapping(source_id=12345, target_id="54321"))

        assert await store.find_by_source_id(12345) == stored
        assert await store.find_by_target_id("54321") == stored

    @pytest.mark.asyncio
    async def test_find_missing(self, store: InMemoryMappingStore) -> None:
        """Test lookups return None when nothing matches."""
        assert await store.find_by_source_id(1) is None
        assert await store.find_by_target_id("1") is None

    @pytest.mark.asyncio
    async def test_find_by_string_uuid(self, database: InMemoryMappingDatabase) -> None:
        """Test UUID kinds can be looked up with the string form."""
        store = database.store(TemporaryAbsenceScheduleMapping)
        stored = await store.insert(schedule(1))

        assert await store.find_by_target_id(str(stored.target_id)) == stored

    @pytest.mark.asyncio
    async def test_composite_source_key(self, database: InMemoryMappingDatabase) -> None:
        """Test composite kinds are found by the whole key only."""
        store = database.store(PersonIdentifierMapping)
        stored = await store.insert(
            PersonIdentifierMapping(person_id=7, sequence_number=2, target_id="x")
        )

        assert await store.find_by_source_id((7, 2)) == stored
        assert await store.find_by_source_id((7, 3)) is None

    @pytest.mark.asyncio
    async def test_kinds_are_separate_tables(self, database: InMemoryMappingDatabase) -> None:
        """Test the same ids may be used by different kinds."""
        await database.store(CorporateMapping).insert(CorporateMapping(source_id=1, target_id="a"))
        await database.store(CorporateAddressMapping).insert(
            CorporateAddressMapping(source_id=1, target_id="a")
        )

        assert await database.store(CorporateAddressMapping).find_by_source_id(1) is not None


class TestUniqueness:
    """Tests for unique key enforcement."""

    @pytest.mark.asyncio
    async def test_same_source_different_target(self, store: InMemoryMappingStore) -> None:
        """Test a second record for the same source id is rejected."""
        await store.insert(CorporateMapping(source_id=12345, target_id="54321"))

        with pytest.raises(UniqueConstraintViolation) as exc_info:
            await store.insert(CorporateMapping(source_id=12345, target_id="99999"))

        assert exc_info.value.table == "corporate_mappings"
        assert await store.find_by_target_id("99999") is None

    @pytest.mark.asyncio
    async def test_same_target_different_source(self, store: InMemoryMappingStore) -> None:
        """Test a second record for the same target id is rejected."""
        await store.insert(CorporateMapping(source_id=1, target_id="a"))

        with pytest.raises(UniqueConstraintViolation):
            await store.insert(CorporateMapping(source_id=2, target_id="a"))

    @pytest.mark.asyncio
    async def test_source_keyed_kind(self, database: InMemoryMappingDatabase) -> None:
        """Test source-keyed kinds enforce both sides too."""
        store = database.store(VisitBalanceMapping)
        await store.insert(VisitBalanceMapping(source_id=1, target_id="a"))

        with pytest.raises(UniqueConstraintViolation):
            await store.insert(VisitBalanceMapping(source_id=1, target_id="b"))
        with pytest.raises(UniqueConstraintViolation):
            await store.insert(VisitBalanceMapping(source_id=2, target_id="a"))


class TestUpdate:
    """Tests for in-place update of updatable kinds."""

    @pytest.mark.asyncio
    async def test_update_by_target(self, database: InMemoryMappingDatabase) -> None:
        """Test update overwrites the record with the same target id."""
        store = database.store(TemporaryAbsenceScheduleMapping)
        stored = await store.insert(schedule(1))

        updated = await store.update(stored.model_copy(update={"source_id": 2}))

        assert updated is not None
        assert updated.source_id == 2
        assert updated.created_at == stored.created_at
        assert await store.find_by_source_id(1) is None

    @pytest.mark.asyncio
    async def test_update_missing(self, database: InMemoryMappingDatabase) -> None:
        """Test update returns None when no record has the target id."""
        store = database.store(TemporaryAbsenceScheduleMapping)
        assert await store.update(schedule(1)) is None

    @pytest.mark.asyncio
    async def test_update_collision(self, database: InMemoryMappingDatabase) -> None:
        """Test update cannot take another record's source id."""
        store = database.store(TemporaryAbsenceScheduleMapping)
        first = await store.insert(schedule(1))
        await store.insert(schedule(2))

        with pytest.raises(UniqueConstraintViolation):
            await store.update(first.model_copy(update={"source_id": 2}))

    @pytest.mark.asyncio
    async def test_update_not_supported(self, store: InMemoryMappingStore) -> None:
        """Test kinds not flagged updatable refuse updates."""
        with pytest.raises(MappingStoreError, match="cannot be updated"):
            await store.update(CorporateMapping(source_id=1, target_id="a"))


class TestDeletes:
    """Tests for the delete operations."""

    @pytest.mark.asyncio
    async def test_delete_by_source_id(self, store: InMemoryMappingStore) -> None:
        """Test delete by source id removes the record."""
        await store.insert(CorporateMapping(source_id=1, target_id="a"))

        assert await store.delete_by_source_id(1) == 1
        assert await store.find_by_target_id("a") is None

    @pytest.mark.asyncio
    async def test_delete_by_target_id(self, store: InMemoryMappingStore) -> None:
        """Test delete by target id removes the record."""
        await store.insert(CorporateMapping(source_id=1, target_id="a"))

        assert await store.delete_by_target_id("a") == 1
        assert await store.find_by_source_id(1) is None

    @pytest.mark.asyncio
    async def test_delete_missing_is_not_an_error(self, store: InMemoryMappingStore) -> None:
        """Test deleting nothing returns zero."""
        assert await store.delete_by_source_id(1) == 0
        assert await store.delete_by_target_id("a") == 0

    @pytest.mark.asyncio
    async def test_delete_by_subject(self, database: InMemoryMappingDatabase) -> None:
        """Test delete by subject removes only that subject's records."""
        store = database.store(TemporaryAbsenceScheduleMapping)
        await store.insert(schedule(1, "A1234BC"))
        await store.insert(schedule(2, "A1234BC"))
        await store.insert(schedule(3, "Z9999ZZ"))

        assert await store.delete_by_subject("A1234BC") == 2
        assert [r.source_id for r in await store.find_by_subject("Z9999ZZ")] == [3]

    @pytest.mark.asyncio
    async def test_subject_operations_need_subject_field(
        self, store: InMemoryMappingStore
    ) -> None:
        """Test subject operations are refused for kinds without a subject."""
        with pytest.raises(MappingStoreError, match="no subject field"):
            await store.delete_by_subject("A1234BC")

    @pytest.mark.asyncio
    async def test_delete_all(self, store: InMemoryMappingStore) -> None:
        """Test delete_all empties the kind."""
        await store.insert(CorporateMapping(source_id=1, target_id="a"))
        await store.insert(CorporateMapping(source_id=2, target_id="b"))

        assert await store.delete_all() == 2
        assert await store.count_all() == 0


class TestLabelQueries:
    """Tests for label counts and label-ordered reads."""

    @pytest.mark.asyncio
    async def test_count_by_label(self, store: InMemoryMappingStore) -> None:
        """Test count_by_label counts only the label."""
        await store.insert(CorporateMapping(source_id=1, target_id="a", label="run-1"))
        await store.insert(CorporateMapping(source_id=2, target_id="b", label="run-1"))
        await store.insert(CorporateMapping(source_id=3, target_id="c", label="run-2"))

        assert await store.count_by_label("run-1") == 2
        assert await store.count_by_label("run-3") == 0

    @pytest.mark.asyncio
    async def test_find_by_label_window(self, store: InMemoryMappingStore) -> None:
        """Test find_by_label applies offset and size in target id order."""
        for i in range(5):
            await store.insert(CorporateMapping(source_id=i, target_id=f"t{i}", label="run"))

        window = await store.find_by_label("run", PageRequest(page=1, size=2))

        assert [record.target_id for record in window] == ["t2", "t3"]

    @pytest.mark.asyncio
    async def test_page_delegates(self, store: InMemoryMappingStore) -> None:
        """Test store.page returns a label page."""
        await store.insert(CorporateMapping(source_id=1, target_id="a", label="run"))

        page = await store.page("run", PageRequest())

        assert page.total_elements == 1
        assert page.content[0].target_id == "a"

    @pytest.mark.asyncio
    async def test_page_all(self, store: InMemoryMappingStore) -> None:
        """Test store.page_all covers labelled and unlabelled records."""
        await store.insert(CorporateMapping(source_id=1, target_id="a", label="run"))
        await store.insert(CorporateMapping(source_id=2, target_id="b"))

        page = await store.page_all(PageRequest(size=1))

        assert page.total_elements == 2
        assert page.total_pages == 2


class TestTransactions:
    """Tests for snapshot-and-restore transactions."""

    @pytest.mark.asyncio
    async def test_commit(self, database: InMemoryMappingDatabase) -> None:
        """Test writes inside a successful block are kept."""
        async with database.transaction() as session:
            await session.store(CorporateMapping).insert(CorporateMapping(source_id=1, target_id="a"))
            await session.markers.record(MigrationMarker(family="f", subject_id="s", label="l"))

        assert await database.store(CorporateMapping).count_all() == 1
        assert await database.markers.find("f", "s") is not None

    @pytest.mark.asyncio
    async def test_rollback(self, database: InMemoryMappingDatabase) -> None:
        """Test every write of a failing block is undone."""
        await database.store(CorporateMapping).insert(CorporateMapping(source_id=1, target_id="a"))

        with pytest.raises(RuntimeError):
            async with database.transaction() as session:
                await session.store(CorporateMapping).delete_all()
                await session.store(CorporateAddressMapping).insert(
                    CorporateAddressMapping(source_id=9, target_id="z")
                )
                await session.markers.record(MigrationMarker(family="f", subject_id="s"))
                raise RuntimeError("boom")

        assert await database.store(CorporateMapping).count_all() == 1
        assert await database.store(CorporateAddressMapping).count_all() == 0
        assert await database.markers.find("f", "s") is None

    @pytest.mark.asyncio
    async def test_clear(self, database: InMemoryMappingDatabase) -> None:
        """Test clear drops rows and markers."""
        await database.store(CorporateMapping).insert(CorporateMapping(source_id=1, target_id="a"))
        await database.markers.record(MigrationMarker(family="f", subject_id="s"))

        database.clear()

        assert await database.store(CorporateMapping).count_all() == 0
        assert await database.markers.find("f", "s") is None


class TestMarkers:
    """Tests for the in-memory marker store."""

    @pytest.mark.asyncio
    async def test_record_replaces(self, database: InMemoryMappingDatabase) -> None:
        """Test a new marker for the same subject replaces the old one."""
        await database.markers.record(MigrationMarker(family="f", subject_id="s", label="one"))
        await database.markers.record(MigrationMarker(family="f", subject_id="s", label="two"))

        marker = await database.markers.find("f", "s")

        assert marker is not None
        assert marker.label == "two"
        assert await database.markers.count_by_label("one") == 0

    @pytest.mark.asyncio
    async def test_label_queries_by_family(self, database: InMemoryMappingDatabase) -> None:
        """Test label reads can be limited to one family."""
        await database.markers.record(MigrationMarker(family="a", subject_id="s1", label="run"))
        await database.markers.record(MigrationMarker(family="b", subject_id="s2", label="run"))

        assert await database.markers.count_by_label("run") == 2
        assert await database.markers.count_by_label("run", family="a") == 1
        found = await database.markers.find_by_label("run", PageRequest(), family="b")
        assert [m.subject_id for m in found] == ["s2"]

    @pytest.mark.asyncio
    async def test_delete_all_by_family(self, database: InMemoryMappingDatabase) -> None:
        """Test deleting one family's markers keeps the others."""
        await database.markers.record(MigrationMarker(family="a", subject_id="s1"))
        await database.markers.record(MigrationMarker(family="b", subject_id="s2"))

        assert await database.markers.delete_all(family="a") == 1
        assert await database.markers.find("b", "s2") is not None
