"""
Behaviour tests run against every mapping database backend.

The ``database`` fixture is parametrised over the in-memory, SQLite and
PostgreSQL backends; each test here runs once per backend.
"""

from __future__ import annotations

from collections.abc import Callable
from uuid import uuid4

import pytest

from idmapping.config import MappingServiceConfig
from idmapping.exceptions import (
    DuplicateMappingError,
    MappingNotFoundError,
    ReplacementConflictError,
    UniqueConstraintViolation,
)
from idmapping.families import TreePayload
from idmapping.kinds import (
    CORPORATE,
    TEMPORARY_ABSENCES,
    CorporateAddressMapping,
    CorporateMapping,
    CorporatePhoneMapping,
    PersonIdentifierMapping,
    PrisonerRestrictionMapping,
    TemporaryAbsenceApplicationMapping,
    TemporaryAbsenceMovementMapping,
    TemporaryAbsenceScheduleMapping,
    VisitBalanceMapping,
)
from idmapping.paging import PagedMigrationQuery, PageRequest
from idmapping.records import MigrationMarker, OriginKind
from idmapping.responses import error_response
from idmapping.service import MappingService
from idmapping.stores.interface import MappingDatabase

pytestmark = pytest.mark.integration

RUN_LABEL = "2023-01-01T12:45:12"
ABSENCE_KINDS = (
    TemporaryAbsenceApplicationMapping,
    TemporaryAbsenceScheduleMapping,
    TemporaryAbsenceMovementMapping,
)


@pytest.fixture
def service(database: MappingDatabase) -> MappingService:
    return MappingService(database, MappingServiceConfig(enable_tracing=False, allow_reset=True))


async def count_rows(database: MappingDatabase, *kinds: type) -> int:
    total = 0
    for kind in kinds:
        total += await database.store(kind).count_all()
    return total


# ============================================================================
# Single Records
# ============================================================================


class TestRecords:
    """Tests for single-record storage."""

    @pytest.mark.asyncio
    async def test_round_trip(self, database: MappingDatabase) -> None:
        """Test a stored record reads back equal by either id."""
        store = database.store(CorporateMapping)
        stored = await store.insert(
            CorporateMapping(
                source_id=12345, target_id="54321", label=RUN_LABEL, origin=OriginKind.MIGRATED
            )
        )

        by_source = await store.find_by_source_id(12345)
        by_target = await store.find_by_target_id("54321")

        assert by_source is not None
        assert by_source.target_id == "54321"
        assert by_source.label == RUN_LABEL
        assert by_source.origin is OriginKind.MIGRATED
        assert by_source.created_at is not None
        assert by_target is not None
        assert by_target.source_id == stored.source_id

    @pytest.mark.asyncio
    async def test_uuid_targets(self, database: MappingDatabase) -> None:
        """Test UUID target ids survive storage and string lookups."""
        store = database.store(TemporaryAbsenceScheduleMapping)
        target = uuid4()
        await store.insert(
            TemporaryAbsenceScheduleMapping(
                source_id=1, target_id=target, offender_no="A1234BC", booking_id=2
            )
        )

        found = await store.find_by_target_id(str(target))

        assert found is not None
        assert found.target_id == target

    @pytest.mark.asyncio
    async def test_composite_keys(self, database: MappingDatabase) -> None:
        """Test composite source keys are unique as a whole."""
        store = database.store(PersonIdentifierMapping)
        await store.insert(PersonIdentifierMapping(person_id=7, sequence_number=1, target_id="a"))
        await store.insert(PersonIdentifierMapping(person_id=7, sequence_number=2, target_id="b"))

        with pytest.raises(UniqueConstraintViolation):
            await store.insert(
                PersonIdentifierMapping(person_id=7, sequence_number=2, target_id="c")
            )

        found = await store.find_by_source_id((7, 2))
        assert found is not None
        assert found.target_id == "b"

    @pytest.mark.asyncio
    async def test_both_sides_unique(self, database: MappingDatabase) -> None:
        """Test neither id can be reused within a kind."""
        store = database.store(VisitBalanceMapping)
        await store.insert(VisitBalanceMapping(source_id=1, target_id="a"))

        with pytest.raises(UniqueConstraintViolation):
            await store.insert(VisitBalanceMapping(source_id=1, target_id="b"))
        with pytest.raises(UniqueConstraintViolation):
            await store.insert(VisitBalanceMapping(source_id=2, target_id="a"))
        assert await store.count_all() == 1

    @pytest.mark.asyncio
    async def test_subject_operations(self, database: MappingDatabase) -> None:
        """Test subject reads and deletes see only that subject."""
        store = database.store(PrisonerRestrictionMapping)
        for source_id, offender_no in [(1, "A1234AA"), (2, "A1234AA"), (3, "B1234BB")]:
            await store.insert(
                PrisonerRestrictionMapping(
                    source_id=source_id, target_id=f"R{source_id}", offender_no=offender_no
                )
            )

        assert [r.source_id for r in await store.find_by_subject("A1234AA")] == [1, 2]
        assert await store.delete_by_subject("A1234AA") == 2
        assert await store.count_all() == 1

    @pytest.mark.asyncio
    async def test_update(self, database: MappingDatabase) -> None:
        """Test an updatable kind is overwritten in place by target id."""
        store = database.store(TemporaryAbsenceScheduleMapping)
        stored = await store.insert(
            TemporaryAbsenceScheduleMapping(
                source_id=1, target_id=uuid4(), offender_no="A1234BC", booking_id=2
            )
        )

        updated = await store.update(stored.model_copy(update={"source_id": 5}))

        assert updated is not None
        assert updated.source_id == 5
        assert await store.find_by_source_id(1) is None


# ============================================================================
# Transactions and Trees
# ============================================================================


class TestAtomicity:
    """Tests for all-or-nothing writes."""

    @pytest.mark.asyncio
    async def test_transaction_rolls_back_every_kind(self, database: MappingDatabase) -> None:
        """Test a failing transaction undoes writes to several kinds and markers."""
        with pytest.raises(UniqueConstraintViolation):
            async with database.transaction() as session:
                await session.store(CorporateMapping).insert(
                    CorporateMapping(source_id=1, target_id="1")
                )
                await session.markers.record(MigrationMarker(family="corporate", subject_id="1"))
                address = session.store(CorporateAddressMapping)
                await address.insert(CorporateAddressMapping(source_id=2, target_id="2"))
                await address.insert(CorporateAddressMapping(source_id=2, target_id="3"))

        assert await count_rows(database, CorporateMapping, CorporateAddressMapping) == 0
        assert await database.markers.find("corporate", "1") is None

    @pytest.mark.asyncio
    async def test_tree_created(
        self, service: MappingService, database: MappingDatabase,
        corporate_payload: Callable[..., TreePayload],
    ) -> None:
        """Test a parent with two addresses and three phones stores six labelled records."""
        await service.create_tree(CORPORATE, corporate_payload())

        assert await database.store(CorporateMapping).count_by_label(RUN_LABEL) == 1
        assert await database.store(CorporateAddressMapping).count_by_label(RUN_LABEL) == 2
        assert await database.store(CorporatePhoneMapping).count_by_label(RUN_LABEL) == 3

    @pytest.mark.asyncio
    async def test_tree_rolled_back(
        self, service: MappingService, database: MappingDatabase,
        corporate_payload: Callable[..., TreePayload],
    ) -> None:
        """Test a collision on the last child persists nothing of the tree."""
        await database.store(CorporatePhoneMapping).insert(
            CorporatePhoneMapping(source_id=152, target_id="held")
        )

        with pytest.raises(DuplicateMappingError):
            await service.create_tree(CORPORATE, corporate_payload())

        assert await count_rows(database, CorporateMapping, CorporateAddressMapping) == 0
        assert await database.store(CorporatePhoneMapping).count_all() == 1

    @pytest.mark.asyncio
    async def test_migration_rerun(
        self, service: MappingService, database: MappingDatabase,
        absence_payload: Callable[..., TreePayload],
    ) -> None:
        """Test migrating a subject twice leaves the second set and marker."""
        await service.create_migration_tree(
            TEMPORARY_ABSENCES, absence_payload(label="run-1"), "A1234BC"
        )
        await service.create_migration_tree(
            TEMPORARY_ABSENCES, absence_payload(label="run-2", schedules=1), "A1234BC"
        )

        assert await count_rows(database, *ABSENCE_KINDS) == 4
        for kind in ABSENCE_KINDS:
            assert await database.store(kind).count_by_label("run-1") == 0
        marker = await service.get_migration_marker(TEMPORARY_ABSENCES, "A1234BC")
        assert marker.label == "run-2"

    @pytest.mark.asyncio
    async def test_merge_replacement(
        self, service: MappingService, database: MappingDatabase
    ) -> None:
        """Test a merge replaces both subjects' sets, or nothing on conflict."""
        for source_id, offender_no in [(1, "A"), (2, "B"), (3, "C")]:
            await service.create(
                PrisonerRestrictionMapping(
                    source_id=source_id, target_id=f"R{source_id}", offender_no=offender_no
                )
            )

        with pytest.raises(ReplacementConflictError):
            await service.replace_after_merge(
                [PrisonerRestrictionMapping],
                "A",
                "B",
                [PrisonerRestrictionMapping(source_id=3, target_id="N3", offender_no="A")],
            )
        assert await count_rows(database, PrisonerRestrictionMapping) == 3

        await service.replace_after_merge(
            [PrisonerRestrictionMapping],
            "A",
            "B",
            [
                PrisonerRestrictionMapping(source_id=1, target_id="N1", offender_no="A"),
                PrisonerRestrictionMapping(source_id=2, target_id="N2", offender_no="A"),
            ],
        )
        store = database.store(PrisonerRestrictionMapping)
        assert sorted(r.target_id for r in await store.find_by_subject("A")) == ["N1", "N2"]
        assert await store.find_by_subject("B") == []


# ============================================================================
# Conflicts and Paging
# ============================================================================


class TestConflicts:
    """Tests for duplicate reporting."""

    @pytest.mark.asyncio
    async def test_duplicate_report(self, service: MappingService) -> None:
        """Test a duplicate source id reports the stored and the rejected record."""
        await service.create(CorporateMapping(source_id=12345, target_id="54321"))

        with pytest.raises(DuplicateMappingError) as exc_info:
            await service.create(CorporateMapping(source_id=12345, target_id="99999"))

        body = error_response(exc_info.value).to_body()
        assert body["status"] == 409
        assert body["moreInfo"]["existing"]["target_id"] == "54321"
        assert body["moreInfo"]["duplicate"]["target_id"] == "99999"

    @pytest.mark.asyncio
    async def test_not_found(self, service: MappingService) -> None:
        """Test missing lookups raise MappingNotFoundError."""
        with pytest.raises(MappingNotFoundError):
            await service.get_by_target_id(CorporateMapping, "nope")


class TestPaging:
    """Tests for label pages."""

    @pytest.mark.asyncio
    async def test_pages(self, database: MappingDatabase) -> None:
        """Test six records of one label give three ordered pages of two."""
        store = database.store(CorporateMapping)
        for i in (5, 3, 1, 6, 4, 2):
            await store.insert(CorporateMapping(source_id=i, target_id=f"t{i}", label=RUN_LABEL))
        await store.insert(CorporateMapping(source_id=9, target_id="t9", label="other"))

        query = PagedMigrationQuery(store, enable_tracing=False)
        pages = [
            await query.page_by_run_label(RUN_LABEL, PageRequest(page=n, size=2)) for n in range(3)
        ]

        assert [p.total_elements for p in pages] == [6, 6, 6]
        assert pages[0].total_pages == 3
        assert [r.target_id for p in pages for r in p.content] == [
            "t1", "t2", "t3", "t4", "t5", "t6",
        ]
        assert pages[2].last is True

    @pytest.mark.asyncio
    async def test_marker_pages(self, database: MappingDatabase) -> None:
        """Test markers are replaced per subject and paged by label."""
        markers = database.markers
        await markers.record(MigrationMarker(family="f", subject_id="s1", label="run-1"))
        await markers.record(MigrationMarker(family="f", subject_id="s1", label="run-2"))
        await markers.record(MigrationMarker(family="f", subject_id="s2", label="run-2"))

        assert await markers.count_by_label("run-1") == 0
        assert await markers.count_by_label("run-2", family="f") == 2
        found = await markers.find_by_label("run-2", PageRequest(page=1, size=1))
        assert [m.subject_id for m in found] == ["s2"]
