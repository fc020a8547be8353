from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from sysguard import cli
from sysguard.services.backups import BackupManager
from sysguard.services.health.models import HealthCheckResult, HealthStatus, OverallHealth
from sysguard.services.health.monitor import PerformanceMonitor

from conftest import make_settings

FIXED_NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class StubDiagnostics:
    def __init__(self, statuses: dict[str, HealthStatus]) -> None:
        self.statuses = statuses
        self.requested: list[str] | None = None

    def health_check(self, checks=None) -> OverallHealth:
        self.requested = list(checks) if checks else None
        names = self.requested or list(self.statuses)
        results = {
            name: HealthCheckResult(self.statuses.get(name, HealthStatus.SKIPPED), f"{name} probe")
            for name in names
        }
        worst = HealthStatus.HEALTHY
        if any(item.status is HealthStatus.CRITICAL for item in results.values()):
            worst = HealthStatus.CRITICAL
        return OverallHealth(status=worst, checks=results, environment="testing", timestamp=FIXED_NOW)


@pytest.fixture()
def manager(monkeypatch, make_config, storage, sqlite_database, runner, source_tree) -> BackupManager:
    _, engine = sqlite_database
    instance = BackupManager(
        make_config(file_paths=(source_tree / "storage",)),
        storage,
        engine=engine,
        runner=runner,
        clock=lambda: FIXED_NOW,
    )
    monkeypatch.setattr(cli, "_build_manager", lambda: instance)
    return instance


def test_parser_rejects_unknown_backup_type() -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.build_parser().parse_args(["backup", "run", "--type=logs"])
    assert excinfo.value.code == 2


def test_parser_defaults() -> None:
    args = cli.build_parser().parse_args(["backup", "run"])

    assert args.backup_type == "full"
    assert args.verify is False
    assert args.cleanup is False
    assert args.monitor is False


def test_backup_run_json(manager, capsys) -> None:
    exit_code = cli.main(["backup", "run", "--type=config", "--json"])

    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 0
    assert payload["success"] is True
    assert payload["backup_id"] == "config_2024-05-01_12-00-00"
    assert payload["results"]["config"]["path"] == "backups/config/config_config_2024-05-01_12-00-00.json"


def test_full_backup_with_monitoring(manager, capsys, monkeypatch, fake_redis_client, sqlite_database) -> None:
    _, engine = sqlite_database
    monitor = PerformanceMonitor(make_settings(), engine=engine, cache_client=fake_redis_client)
    monkeypatch.setattr(cli, "_build_monitor", lambda: monitor)

    exit_code = cli.main(["backup", "run", "--monitor"])

    captured = capsys.readouterr()
    assert exit_code == 0
    assert "Backup completed: Full backup completed successfully" in captured.out
    assert "Backup ID: full_backup_2024-05-01_12-00-00" in captured.out
    assert "Verification:" in captured.out
    assert "Queries executed:" in captured.out
    assert "Starting full backup..." in captured.err


def test_failed_backup_exits_nonzero(monkeypatch, make_config, storage, sqlite_database, runner, capsys) -> None:
    _, engine = sqlite_database
    broken = BackupManager(
        make_config(database_url="oracle://scott:tiger@db/orcl"),
        storage,
        engine=engine,
        runner=runner,
        clock=lambda: FIXED_NOW,
    )
    monkeypatch.setattr(cli, "_build_manager", lambda: broken)

    exit_code = cli.main(["backup", "run", "--type=database"])

    out = capsys.readouterr().out
    assert exit_code == 1
    assert "database: failed - Unsupported database driver: oracle" in out


def test_list_and_verify(manager, capsys) -> None:
    cli.main(["backup", "run", "--type=config", "--json"])
    capsys.readouterr()

    assert cli.main(["backup", "list", "--json"]) == 0
    listing = json.loads(capsys.readouterr().out)
    assert [item["type"] for item in listing] == ["config"]

    assert cli.main(["backup", "verify", "config_2024-05-01_12-00-00"]) == 0
    assert "config_exists: yes" in capsys.readouterr().out
    assert cli.main(["backup", "verify", "missing_run"]) == 1


def test_restore_unknown_backup(manager, capsys) -> None:
    exit_code = cli.main(["backup", "restore", "full_backup_1999-01-01_00-00-00", "--keep-cache"])

    payload = json.loads(capsys.readouterr().out)
    assert exit_code == 1
    assert payload["error"] == "Backup not found"


def test_health_exit_codes(monkeypatch, capsys) -> None:
    healthy = StubDiagnostics({"database": HealthStatus.HEALTHY, "cache": HealthStatus.HEALTHY})
    monkeypatch.setattr(cli, "_build_diagnostics", lambda: healthy)

    assert cli.main(["system", "health", "--detailed"]) == 0
    out = capsys.readouterr().out
    assert "[ok] Database: healthy - database probe" in out
    assert "Overall system status: HEALTHY" in out

    failing = StubDiagnostics({"database": HealthStatus.CRITICAL, "cache": HealthStatus.HEALTHY})
    monkeypatch.setattr(cli, "_build_diagnostics", lambda: failing)

    assert cli.main(["system", "health", "--json"]) == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload["overall_status"] == "critical"
    assert payload["checks"]["database"]["status"] == "critical"


def test_health_check_selection(monkeypatch, capsys) -> None:
    diagnostics = StubDiagnostics({"database": HealthStatus.HEALTHY, "cache": HealthStatus.HEALTHY})
    monkeypatch.setattr(cli, "_build_diagnostics", lambda: diagnostics)

    cli.main(["system", "health", "--check", "database,cache", "--check", "security"])

    assert diagnostics.requested == ["database", "cache", "security"]


def test_unexpected_errors_exit_nonzero(monkeypatch, capsys) -> None:
    def explode():
        raise RuntimeError("redis unreachable")

    monkeypatch.setattr(cli, "_build_diagnostics", explode)

    assert cli.main(["system", "health"]) == 1
    assert "Error: redis unreachable" in capsys.readouterr().err
