"""
Basic Usage Example

This example walks through the main mapping service operations:
- Creating and looking up single mappings
- Handling a duplicate and rendering its 409 body
- Persisting a corporate tree atomically under a run label
- Migrating a prisoner's temporary absences twice (the rerun replaces the first)
- Paging the mappings written by a run

Run with: python examples/basic_usage.py
"""

import asyncio
from uuid import uuid4

from idmapping import (
    DuplicateMappingError,
    InMemoryMappingDatabase,
    MappingNotFoundError,
    MappingService,
    OriginKind,
    TreePayload,
    error_response,
)
from idmapping.kinds import (
    CORPORATE,
    TEMPORARY_ABSENCES,
    CorporateAddressMapping,
    CorporateMapping,
    TemporaryAbsenceApplicationMapping,
)

RUN_LABEL = "2024-01-01T10:00:00"


def absences(first_id: int) -> TreePayload:
    return TreePayload(
        label=RUN_LABEL,
        origin=OriginKind.MIGRATED,
        context={"offender_no": "A1234BC", "booking_id": 12345},
        children={
            "application": [{"source_id": first_id, "target_id": str(uuid4())}],
            "schedule": [{"source_id": first_id, "target_id": str(uuid4())}],
            "movement": [{"movement_seq": 1, "target_id": str(uuid4())}],
        },
    )


async def main():
    """Demonstrate basic mapping service usage."""
    print("=" * 60)
    print("Id Mapping Basic Usage Example")
    print("=" * 60)

    service = MappingService(InMemoryMappingDatabase())

    # =========================================================================
    # Step 1: Single mappings
    # =========================================================================
    print("\n1. Creating a mapping")

    await service.create(CorporateMapping(source_id=12345, target_id="54321"))
    found = await service.get_by_target_id(CorporateMapping, "54321")
    print(f"   Source {found.source_id} -> target {found.target_id} ({found.origin.value})")

    try:
        await service.get_by_source_id(CorporateMapping, 99999)
    except MappingNotFoundError as e:
        print(f"   Lookup failed: {e}")

    # =========================================================================
    # Step 2: Duplicates
    # =========================================================================
    print("\n2. Inserting a duplicate")

    try:
        await service.create(CorporateMapping(source_id=12345, target_id="99999"))
    except DuplicateMappingError as e:
        response = error_response(e)
        print(f"   Status: {response.status}")
        print(f"   Existing: {response.to_body()['moreInfo']['existing']}")

    # =========================================================================
    # Step 3: Trees
    # =========================================================================
    print("\n3. Creating a corporate tree")

    records = await service.create_tree(
        CORPORATE,
        TreePayload(
            label=RUN_LABEL,
            origin=OriginKind.MIGRATED,
            parent={"source_id": 100, "target_id": "100"},
            children={
                "address": [{"source_id": 101, "target_id": "101"}],
                "phone": [{"source_id": 150, "target_id": "150"}],
            },
        ),
    )
    print(f"   Persisted {len(records)} mappings")

    try:
        await service.create_tree(
            CORPORATE,
            TreePayload(
                parent={"source_id": 200, "target_id": "200"},
                children={"address": [{"source_id": 101, "target_id": "201"}]},
            ),
        )
    except DuplicateMappingError:
        print("   Second tree rejected; parent 200 was rolled back")
        stored = await service.page_all(CorporateMapping)
        print(f"   Corporate mappings stored: {stored.total_elements}")

    # =========================================================================
    # Step 4: Migration reruns
    # =========================================================================
    print("\n4. Migrating temporary absences twice")

    await service.create_migration_tree(TEMPORARY_ABSENCES, absences(first_id=1), "A1234BC")
    await service.create_migration_tree(TEMPORARY_ABSENCES, absences(first_id=10), "A1234BC")

    applications = await service.get_by_subject(TemporaryAbsenceApplicationMapping, "A1234BC")
    print(f"   Applications after rerun: {[a.source_id for a in applications]}")
    marker = await service.get_migration_marker(TEMPORARY_ABSENCES, "A1234BC")
    print(f"   Marker label: {marker.label}")

    # =========================================================================
    # Step 5: Paging by run label
    # =========================================================================
    print("\n5. Paging the run")

    page = await service.page_by_label(
        CorporateAddressMapping, RUN_LABEL, service.page_request(size=10)
    )
    print(f"   Addresses in run: {page.total_elements} ({page.total_pages} page)")

    print("\n" + "=" * 60)
    print("Example completed successfully!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
