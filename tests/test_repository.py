"""
Unit tests for GarageRepository
Tests natural-key upserts, lookups and marker-based deletes
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from garage_data.data import GarageRepository, RelationalStore
from garage_data.data.repository import LOOKUP_CHUNK_SIZE
from garage_data.data.models import FloorRow, GarageRow, SpotRow, VehicleRow, utc_naive_now


class TestGarageRepository:
    """Test repository operations against a SQLite file"""

    @pytest.mark.asyncio
    async def test_upsert_inserts_then_updates(self, relational_store):
        async with relational_store.session() as session:
            repo = GarageRepository(session)
            await repo.upsert(GarageRow, [{"name": "Main Garage", "description": "first"}])
            await repo.upsert(GarageRow, [{"name": "Main Garage", "description": "second"}])

            [garage] = await repo.fetch_all(GarageRow)
            assert garage.description == "second"
            assert await repo.count_rows(GarageRow) == 1

    @pytest.mark.asyncio
    async def test_composite_natural_key(self, relational_store):
        async with relational_store.session() as session:
            repo = GarageRepository(session)
            await repo.upsert(GarageRow, [{"name": "Main Garage"}])
            garage_id = (await repo.get_garage_ids())["Main Garage"]

            spots = [
                {"garage_id": garage_id, "floor": 1, "bay": 1, "spot_number": n, "spot_code": f"F1-B1-S00{n}"}
                for n in (1, 2)
            ]
            await repo.upsert(SpotRow, spots)
            spots[0]["status"] = "MAINTENANCE"
            await repo.upsert(SpotRow, spots)

            assert await repo.count_rows(SpotRow) == 2
            codes = await repo.get_spot_ids(garage_id)
            assert sorted(codes) == ["F1-B1-S001", "F1-B1-S002"]
            rows = await repo.fetch_all(SpotRow)
            assert rows[0].status == "MAINTENANCE"

    @pytest.mark.asyncio
    async def test_upsert_batch_larger_than_lookup_chunk(self, relational_store):
        async with relational_store.session() as session:
            repo = GarageRepository(session)
            await repo.upsert(GarageRow, [{"name": "Main Garage"}])
            garage_id = (await repo.get_garage_ids())["Main Garage"]

            spots = [
                {"garage_id": garage_id, "floor": 1 + n // 1000, "bay": 1, "spot_number": n % 1000 + 1,
                 "spot_code": f"F{1 + n // 1000}-B1-S{n % 1000 + 1:03d}"}
                for n in range(LOOKUP_CHUNK_SIZE * 6 + 7)
            ]
            await repo.upsert(SpotRow, spots)
            for spot in spots:
                spot["status"] = "RESERVED"
            await repo.upsert(SpotRow, spots)

            assert await repo.count_rows(SpotRow) == len(spots)
            rows = await repo.fetch_all(SpotRow)
            assert {row.status for row in rows} == {"RESERVED"}

    @pytest.mark.asyncio
    async def test_failed_batch_is_rolled_back(self, relational_store):
        async with relational_store.session() as session:
            repo = GarageRepository(session)
            with pytest.raises(IntegrityError):
                await repo.upsert(FloorRow, [
                    {"garage_id": 1, "floor_number": 1},
                ])
            assert await repo.count_rows(FloorRow) == 0

    @pytest.mark.asyncio
    async def test_count_by_migration(self, relational_store):
        async with relational_store.session() as session:
            repo = GarageRepository(session)
            await repo.upsert(VehicleRow, [
                {"license_plate": "AAA111", "migration_id": "m1"},
                {"license_plate": "BBB222", "migration_id": "m2"},
            ])

            counts = await repo.count_by_migration("m1")
            assert counts["vehicles"] == 1
            assert counts["garages"] == 0
            assert (await repo.table_counts())["vehicles"] == 2

    @pytest.mark.asyncio
    async def test_delete_by_migration_children_first(self, relational_store):
        async with relational_store.session() as session:
            repo = GarageRepository(session)
            await repo.upsert(GarageRow, [{"name": "Main Garage", "migration_id": "m1"}])
            garage_id = (await repo.get_garage_ids())["Main Garage"]
            await repo.upsert(FloorRow, [{"garage_id": garage_id, "floor_number": 1, "migration_id": "m1"}])
            await repo.upsert(VehicleRow, [{"license_plate": "KEEP1", "migration_id": "other"}])

            deleted = await repo.delete_by_migration("m1")

            assert deleted["garages"] == 1
            assert deleted["floors"] == 1
            assert await repo.count_rows(VehicleRow) == 1

    @pytest.mark.asyncio
    async def test_delete_by_migration_with_cutoff(self, relational_store):
        async with relational_store.session() as session:
            repo = GarageRepository(session)
            await repo.upsert(VehicleRow, [
                {"license_plate": "OLD1", "migration_id": "m1"},
                {"license_plate": "NEW1", "migration_id": "m1",
                 "updated_at": utc_naive_now() + timedelta(hours=1)},
            ])

            deleted = await repo.delete_by_migration("m1", updated_before=utc_naive_now())

            assert deleted["vehicles"] == 1
            assert list((await repo.get_vehicle_ids())) == ["NEW1"]


class TestRelationalStore:
    """Test engine lifecycle"""

    @pytest.mark.asyncio
    async def test_initialize_creates_database_file(self, paths):
        store = RelationalStore(paths.database_url)
        assert store.is_sqlite
        assert store.database_file == paths.database_path

        async with store.session() as session:
            assert await GarageRepository(session).table_counts() == {
                "garages": 0, "floors": 0, "spots": 0, "vehicles": 0, "parking_sessions": 0, "payments": 0,
            }
        assert paths.database_path.exists()
        await store.dispose()
        assert not store.initialized

    def test_in_memory_database_has_no_file(self):
        store = RelationalStore("sqlite+aiosqlite:///:memory:")
        assert store.database_file is None
