"""
Tests for the garage-data command line
Runs commands end to end against a temporary data directory
"""

import json
import sys

import pytest
import structlog

from garage_data import cli
from garage_data.models import GarageConfig, Vehicle
from garage_data.storage import KeyedMemoryStore

from conftest import build_spots, park


class TestCommandLine:
    """Test command dispatch and exit codes"""

    @pytest.fixture(autouse=True)
    def setup(self, data_dir, monkeypatch, capsys):
        for name in ("GARAGE_DATA_DATABASE_URL", "GARAGE_DATA_HOME", "GARAGE_DATA_LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)
        self.logging_calls = []
        monkeypatch.setattr(cli, "setup_logging", lambda *args: self.logging_calls.append(args))
        # Keep stdout for command output only
        structlog.configure(logger_factory=structlog.PrintLoggerFactory(sys.__stderr__))

        self.data_dir = data_dir
        self.capsys = capsys

        store = KeyedMemoryStore()
        store.add_spots(build_spots(12))
        store.set_garage_config("main", GarageConfig(name="Harbor"))
        park(store, "F1-B1-S001", "ABC123")
        store.add_vehicle(Vehicle(license_plate="XYZ789", status="completed"))
        self.source = data_dir / "snapshot.json"
        self.source.write_text(json.dumps(store.snapshot()), encoding="utf-8")
        yield
        structlog.reset_defaults()

    def _run(self, *argv):
        code = cli.main(["--data-dir", str(self.data_dir), *argv])
        return code, self.capsys.readouterr().out

    def test_parser_requires_command(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])

    def test_migrate_and_status(self):
        code, out = self._run("migrate", "--source", str(self.source), "--id", "cli-1", "--batch-size", "5")

        assert code == 0
        result = json.loads(out)
        assert result["success"]
        assert result["status"] == "completed"
        assert result["backup_path"]
        assert self.logging_calls

        code, out = self._run("status", "--migration-id", "cli-1")
        assert code == 0
        status = json.loads(out)
        assert status["status"]["status"] == "completed"
        assert status["progress"]["percentage"] == 100

    def test_status_of_unknown_migration(self):
        code, _ = self._run("status", "--migration-id", "nope")
        assert code == 1

    def test_dry_run(self):
        code, out = self._run("migrate", "--source", str(self.source), "--id", "cli-dry", "--dry-run")
        assert code == 0
        assert json.loads(out)["dry_run"]

    def test_rollback_requires_confirm(self):
        self._run("migrate", "--source", str(self.source), "--id", "cli-2")

        code, _ = self._run("rollback", "--migration-id", "cli-2", "--source", str(self.source))

        assert code == 1

    def test_rollback_writes_restored_snapshot(self):
        self._run("migrate", "--source", str(self.source), "--id", "cli-3")
        output = self.data_dir / "restored.json"

        code, out = self._run(
            "rollback", "--migration-id", "cli-3", "--confirm", "--output", str(output),
        )

        assert code == 0
        assert json.loads(out)["success"]
        restored = json.loads(output.read_text(encoding="utf-8"))
        assert restored == json.loads(self.source.read_text(encoding="utf-8"))

    def test_backup_and_list(self):
        code, out = self._run("backup", "--source", str(self.source), "--id", "nightly")
        assert code == 0
        backup_id = json.loads(out)["backup_id"]

        code, out = self._run("list-backups", "--migration-id", "nightly")
        assert code == 0
        assert [backup["id"] for backup in json.loads(out)] == [backup_id]

    def test_invalid_source_reports_error(self):
        bad = self.data_dir / "bad.json"
        bad.write_text(json.dumps({"occupiedSpots": ["F1-B1-S001"]}), encoding="utf-8")

        code, _ = self._run("migrate", "--source", str(bad), "--id", "cli-bad")

        assert code == 1
