from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone

import pytest

from sysguard.services.backups.retention import RetentionManager
from sysguard.services.storage.local import LocalBackupStorage

NOW = datetime(2024, 1, 31, tzinfo=timezone.utc)


def _store(storage: LocalBackupStorage, path: str, modified: datetime) -> str:
    storage.put(path, b"payload")
    ts = modified.timestamp()
    os.utime(storage.root / path, (ts, ts))
    return path


@pytest.fixture()
def aged_backups(storage: LocalBackupStorage) -> dict[str, str]:
    return {
        "old_db": _store(storage, "backups/database/database_db_2023-12-01_00-00-00.sql.gz", NOW - timedelta(days=61)),
        "old_files": _store(storage, "backups/files/files_files_2023-12-20_00-00-00.zip", NOW - timedelta(days=31)),
        "boundary": _store(storage, "backups/config/config_config_2024-01-01_00-00-00.json", NOW - timedelta(days=30)),
        "fresh": _store(storage, "backups/config/config_config_2024-01-30_00-00-00.json", NOW - timedelta(days=1)),
    }


def test_cleanup_deletes_only_expired_artifacts(make_config, storage, aged_backups) -> None:
    retention = RetentionManager(make_config(retention_days=30), storage)

    deleted = retention.cleanup_old_backups(now=NOW)

    assert sorted(deleted) == sorted([aged_backups["old_db"], aged_backups["old_files"]])
    assert not storage.exists(aged_backups["old_db"])
    assert storage.exists(aged_backups["boundary"])
    assert storage.exists(aged_backups["fresh"])


def test_cleanup_is_idempotent(make_config, storage, aged_backups) -> None:
    retention = RetentionManager(make_config(retention_days=30), storage)

    retention.cleanup_old_backups(now=NOW)

    assert retention.cleanup_old_backups(now=NOW) == []


def test_zero_retention_disables_cleanup(make_config, storage, aged_backups) -> None:
    retention = RetentionManager(make_config(retention_days=0), storage)

    assert retention.cleanup_old_backups(now=NOW) == []
    assert all(storage.exists(path) for path in aged_backups.values())


def test_cleanup_continues_after_delete_failure(make_config, storage, aged_backups, monkeypatch) -> None:
    original_delete = storage.delete

    def flaky_delete(path: str) -> None:
        if path == aged_backups["old_db"]:
            raise OSError("permission denied")
        original_delete(path)

    monkeypatch.setattr(storage, "delete", flaky_delete)
    retention = RetentionManager(make_config(retention_days=30), storage)

    deleted = retention.cleanup_old_backups(now=NOW)

    assert deleted == [aged_backups["old_files"]]
    assert storage.exists(aged_backups["old_db"])
