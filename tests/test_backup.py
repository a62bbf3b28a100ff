"""
Unit tests for DataBackupUtility
Tests bundle layout, restore, listing and retention
"""

import json
from datetime import timedelta

import pytest

from garage_data.data import GarageRepository, RelationalStore
from garage_data.data.models import GarageRow
from garage_data.migration import DataBackupUtility
from garage_data.migration.backup import MANIFEST_FILENAME
from garage_data.models import GarageConfig, Spot, utc_now

from conftest import build_spots, park

MEMORY_FILES = [
    "memorystore-spots.json",
    "memorystore-vehicles.json",
    "memorystore-garageConfig.json",
    "memorystore-spotsByFloorBay.json",
    "memorystore-occupiedSpots.json",
]


class TestDataBackupUtility:
    """Test backup bundles of the memory store"""

    @pytest.fixture(autouse=True)
    def setup(self, paths, memory_store):
        self.paths = paths
        self.store = memory_store
        self.store.add_spots(build_spots(9))
        self.store.set_garage_config("main", GarageConfig(name="Downtown"))
        park(self.store, "F1-B1-S001", "ABC123")
        self.utility = DataBackupUtility(self.store, paths.backups_dir)

    @pytest.mark.asyncio
    async def test_create_backup_writes_bundle(self):
        result = await self.utility.create_backup("mig-1", include_database=False)

        assert result.success
        assert result.backup_id.startswith("mig-1-")
        assert result.files == MEMORY_FILES + ["memorystore-stats.json", MANIFEST_FILENAME]
        assert result.size > 0
        for name in result.files:
            assert (self.paths.backups_dir / result.backup_id / name).exists()

    @pytest.mark.asyncio
    async def test_manifest_contents(self):
        result = await self.utility.create_backup("mig-1", include_database=False)

        with open(self.paths.get_backup_path(result.backup_id) / MANIFEST_FILENAME, encoding="utf-8") as f:
            manifest = json.load(f)

        assert manifest["id"] == result.backup_id
        assert manifest["migrationId"] == "mig-1"
        assert manifest["version"] == "1.0.0"
        assert manifest["totalSize"] == result.size
        assert MANIFEST_FILENAME not in manifest["files"]

    @pytest.mark.asyncio
    async def test_stats_recorded(self):
        result = await self.utility.create_backup("mig-1", include_database=False)
        stats = self.utility.read_stats(result.backup_path)
        assert stats == self.store.get_stats()
        assert stats["occupiedSpots"] == 1

    @pytest.mark.asyncio
    async def test_restore_after_clear(self):
        expected = self.store.snapshot()
        result = await self.utility.create_backup("mig-1", include_database=False)
        self.store.clear()

        restore = await self.utility.restore_from_backup(result.backup_path)

        assert restore.success
        assert sorted(restore.restored_files) == sorted(MEMORY_FILES)
        assert self.store.snapshot() == expected

    @pytest.mark.asyncio
    async def test_restore_missing_artifact_leaves_store_unchanged(self):
        result = await self.utility.create_backup("mig-1", include_database=False)
        self.store.add_spot(Spot(floor=5, bay=1, spot_number=1))
        before = self.store.snapshot()
        (self.paths.get_backup_path(result.backup_id) / "memorystore-vehicles.json").unlink()

        restore = await self.utility.restore_from_backup(result.backup_path)

        assert not restore.success
        assert "memorystore-vehicles.json" in restore.error
        assert self.store.snapshot() == before
        assert await self.utility.verify_backup(result.backup_path) is not None

    @pytest.mark.asyncio
    async def test_restore_corrupt_artifact_fails(self):
        result = await self.utility.create_backup("mig-1", include_database=False)
        (self.paths.get_backup_path(result.backup_id) / "memorystore-occupiedSpots.json").write_text(
            "[]", encoding="utf-8"
        )

        restore = await self.utility.restore_from_backup(result.backup_path)

        assert not restore.success
        assert self.store.get_spot("F1-B1-S001").current_vehicle == "ABC123"

    @pytest.mark.asyncio
    async def test_restore_without_manifest_fails(self, data_dir):
        empty = data_dir / "not-a-backup"
        empty.mkdir()
        restore = await self.utility.restore_from_backup(str(empty))
        assert not restore.success
        assert "metadata file not found" in restore.error

    @pytest.mark.asyncio
    async def test_verify_backup(self):
        result = await self.utility.create_backup("mig-1", include_database=False)
        assert await self.utility.verify_backup(result.backup_path) is None

    @pytest.mark.asyncio
    async def test_list_backups_newest_first(self):
        first = await self.utility.create_backup("mig-1", include_database=False)
        second = await self.utility.create_backup("mig-2", include_database=False)

        backups = await self.utility.list_backups()

        assert [backup.id for backup in backups] == [second.backup_id, first.backup_id]
        assert [backup.id for backup in await self.utility.list_backups("mig-1")] == [first.backup_id]
        assert (await self.utility.find_backup("mig-2")).id == second.backup_id
        assert await self.utility.find_backup("mig-3") is None

    @pytest.mark.asyncio
    async def test_same_millisecond_backups_get_distinct_ids(self):
        first = await self.utility.create_backup("mig-1", include_database=False)
        second = await self.utility.create_backup("mig-1", include_database=False)
        assert first.backup_id != second.backup_id

    @pytest.mark.asyncio
    async def test_cleanup_old_backups(self):
        old = await self.utility.create_backup("mig-old", include_database=False)
        recent = await self.utility.create_backup("mig-new", include_database=False)

        manifest_path = self.paths.get_backup_path(old.backup_id) / MANIFEST_FILENAME
        manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
        manifest["timestamp"] = (utc_now() - timedelta(days=40)).isoformat()
        manifest_path.write_text(json.dumps(manifest), encoding="utf-8")

        removed = await self.utility.cleanup_old_backups(30)

        assert removed == 1
        assert not self.paths.get_backup_path(old.backup_id).exists()
        assert self.paths.get_backup_path(recent.backup_id).exists()

    @pytest.mark.asyncio
    async def test_memory_store_can_be_excluded(self):
        result = await self.utility.create_backup("mig-1", include_memory_store=False, include_database=False)
        assert result.success
        assert result.files == [MANIFEST_FILENAME]


class TestDatabaseBackup:
    """Test SQLite file copies inside bundles"""

    @pytest.mark.asyncio
    async def test_database_file_copied(self, paths, memory_store, relational_store):
        utility = DataBackupUtility(memory_store, paths.backups_dir, relational_store)

        result = await utility.create_backup("mig-db")

        assert result.success
        assert "sqlite-parking-garage.db" in result.files
        assert (paths.get_backup_path(result.backup_id) / "sqlite-parking-garage.db").exists()

    @pytest.mark.asyncio
    async def test_database_copy_is_consistent(self, paths, memory_store, relational_store):
        async with relational_store.session() as session:
            await GarageRepository(session).upsert(GarageRow, [{"name": "Harbor"}])
        utility = DataBackupUtility(memory_store, paths.backups_dir, relational_store)

        result = await utility.create_backup("mig-db")

        assert result.success
        assert not relational_store.initialized
        copy = paths.get_backup_path(result.backup_id) / "sqlite-parking-garage.db"
        backup_store = RelationalStore(f"sqlite+aiosqlite:///{copy}")
        try:
            async with backup_store.session() as session:
                assert list(await GarageRepository(session).get_garage_ids()) == ["Harbor"]
        finally:
            await backup_store.dispose()

        # The live store reopens on next use
        async with relational_store.session() as session:
            assert await GarageRepository(session).count_rows(GarageRow) == 1

    @pytest.mark.asyncio
    async def test_database_restore(self, paths, memory_store, relational_store):
        utility = DataBackupUtility(memory_store, paths.backups_dir, relational_store)
        result = await utility.create_backup("mig-db")

        restore = await utility.restore_from_backup(result.backup_path, restore_database=True)

        assert restore.success
        assert "sqlite-parking-garage.db" in restore.restored_files
        assert paths.database_path.exists()
