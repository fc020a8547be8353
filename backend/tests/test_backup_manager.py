from __future__ import annotations

import os
from datetime import datetime, timezone

import pytest

from sysguard.services.backups import BackupKind, BackupManager
from sysguard.services.backups.locking import backup_lock
from sysguard.services.backups.verifier import IntegrityVerifier
from sysguard.services.cache import CacheMaintenance

from conftest import make_settings

FIXED_NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
FULL_ID = "full_backup_2024-05-01_12-00-00"


@pytest.fixture()
def build_manager(make_config, storage, sqlite_database, runner, source_tree, fake_redis_client):
    _, engine = sqlite_database

    def _build(**overrides) -> BackupManager:
        overrides.setdefault("file_paths", (source_tree / "storage",))
        cache = CacheMaintenance(make_settings(), client=fake_redis_client)
        return BackupManager(
            make_config(**overrides),
            storage,
            engine=engine,
            runner=runner,
            cache=cache,
            clock=lambda: FIXED_NOW,
        )

    return _build


def test_full_backup_produces_all_artifacts(build_manager, storage) -> None:
    manager = build_manager()

    run = manager.create_full_backup()

    assert run.success is True
    assert run.backup_id == FULL_ID
    assert run.message == "Full backup completed successfully"
    assert set(run.results) == {"database", "files", "config"}
    assert storage.exists(f"backups/database/database_{FULL_ID}.sql.gz")
    assert storage.exists(f"backups/files/files_{FULL_ID}.zip")
    assert storage.exists(f"backups/config/config_{FULL_ID}.json")
    assert run.verification is not None
    assert run.verification.database_readable and run.verification.files_readable
    assert run.verification.config_exists

    payload = run.to_dict()
    assert payload["backup_id"] == FULL_ID
    assert payload["results"]["database"]["filename"] == f"database_{FULL_ID}.sql.gz"
    assert payload["results"]["files"]["files_count"] == 2


def test_full_backup_attempts_every_step(build_manager, storage) -> None:
    manager = build_manager(database_url="oracle://scott:tiger@db/orcl")

    run = manager.create_full_backup(cleanup_old=False)

    assert run.success is False
    assert run.failed_artifacts == ["database"]
    assert run.message == "Full backup failed for: database"
    assert run.results["files"].success and run.results["config"].success
    assert run.verification is not None
    assert run.verification.database_exists is False
    assert storage.exists(f"backups/config/config_{FULL_ID}.json")


def test_concurrent_run_of_same_kind_is_rejected(build_manager) -> None:
    manager = build_manager()

    with backup_lock(manager.config.lock_dir, "database"):
        run = manager.backup_database()

    assert run.success is False
    assert run.backup_id == "db_2024-05-01_12-00-00"
    assert "already running" in (run.error or "")


def test_single_kind_runs(build_manager, storage) -> None:
    manager = build_manager()

    run = manager.run(BackupKind.CONFIG, verify=True)

    assert run.success is True
    assert run.backup_id == "config_2024-05-01_12-00-00"
    assert list(run.results) == ["config"]
    assert run.message == "Config backup completed successfully"
    assert run.verification is not None
    assert run.verification.config_exists is True
    assert run.verification.database_exists is False

    files_run = manager.run("files")
    assert files_run.verification is None
    assert storage.exists("backups/files/files_files_2024-05-01_12-00-00.zip")


def test_files_backup_without_sources_succeeds(build_manager, tmp_path) -> None:
    manager = build_manager(file_paths=(tmp_path / "nowhere",))

    run = manager.backup_files()

    assert run.success is True
    assert run.results["files"].message == "No files to backup"


def test_list_backups_newest_first(build_manager, storage) -> None:
    manager = build_manager()
    for name, ts in (("a", 100), ("b", 300), ("c", 200)):
        path = f"backups/config/config_{name}.json"
        storage.put(path, b"{}")
        os.utime(storage.root / path, (ts, ts))

    backups = manager.list_backups()

    assert [item.modified for item in backups] == [300, 200, 100]
    assert backups[0].path == "backups/config/config_b.json"
    assert backups[0].type == "config"

    info = manager.storage_info()
    assert info["backup_count"] == 3
    assert info["total_size_bytes"] == 6
    assert info["disk"] == "local"


def test_delete_backup_validates_paths(build_manager, storage) -> None:
    manager = build_manager()
    storage.put("backups/database/database_x.sql.gz", b"dump")

    assert manager.delete_backup("backups/database/database_x.sql.gz") is True
    assert manager.delete_backup("backups/database/database_x.sql.gz") is False
    with pytest.raises(ValueError):
        manager.delete_backup("backups/../secrets.txt")
    with pytest.raises(ValueError):
        manager.delete_backup("other/database/database_x.sql.gz")


def test_restore_requires_existing_backup(build_manager) -> None:
    result = build_manager().restore_from_backup("full_backup_1999-01-01_00-00-00")

    assert result.success is False
    assert result.error == "Backup not found"


@pytest.mark.parametrize(
    "run_id",
    ["backup_2024-05-01_12-00-00", "2024", "json", "full_backup_2024-05-01", "../config", ""],
)
def test_restore_matches_whole_run_ids_only(build_manager, fake_redis_client, run_id) -> None:
    manager = build_manager()
    manager.create_full_backup()
    fake_redis_client.set("sysguard_cache:dashboard", "stale")

    result = manager.restore_from_backup(run_id)

    assert result.success is False
    assert result.error == "Backup not found"
    assert result.results == {}
    assert fake_redis_client.get("sysguard_cache:dashboard") == "stale"


def test_restore_clears_application_cache(build_manager, fake_redis_client) -> None:
    manager = build_manager()
    manager.backup_configuration(FULL_ID)
    fake_redis_client.set("sysguard_cache:dashboard", "stale")
    fake_redis_client.set("unrelated", "keep")

    result = manager.restore_from_backup(FULL_ID)

    assert result.success is True
    assert result.message == "Restore completed successfully"
    assert result.results["database"]["success"] is True
    assert result.results["cache"]["application_keys"] == 1
    assert fake_redis_client.get("sysguard_cache:dashboard") is None
    assert fake_redis_client.get("unrelated") == "keep"


def test_retention_failure_does_not_fail_the_run(build_manager, monkeypatch) -> None:
    manager = build_manager()

    def broken_cleanup(now=None):
        raise RuntimeError("storage offline")

    monkeypatch.setattr(manager.retention, "cleanup_old_backups", broken_cleanup)

    run = manager.run(BackupKind.CONFIG, cleanup=True)

    assert run.success is True
    assert run.deleted == ()


def test_verifier_accepts_either_archive_format(storage) -> None:
    storage.put("backups/database/database_r1.sql.gz", b"dump")
    storage.put("backups/files/files_r1.tar.gz", b"")
    storage.put("backups/config/config_r1.json", b"{}")

    report = IntegrityVerifier(storage).verify_backup("r1")

    assert report.database_exists and report.database_readable
    assert report.files_exist is True
    assert report.files_readable is False
    assert report.config_exists is True
