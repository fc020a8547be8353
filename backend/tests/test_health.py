from __future__ import annotations

import pytest
import redis
from sqlalchemy import text

from sysguard.db.session import build_engine
from sysguard.services.health import probes
from sysguard.services.health.models import (
    HealthCheckResult,
    HealthStatus,
    aggregate_status,
)
from sysguard.services.health.monitor import PerformanceMonitor
from sysguard.services.health.service import HealthDiagnostics

from conftest import make_settings, make_snapshot

H = HealthStatus


@pytest.mark.parametrize(
    ("statuses", "expected"),
    [
        ([], H.HEALTHY),
        ([H.HEALTHY, H.HEALTHY], H.HEALTHY),
        ([H.HEALTHY, H.WARNING], H.WARNING),
        ([H.WARNING, H.CRITICAL], H.CRITICAL),
        ([H.HEALTHY, H.ERROR], H.CRITICAL),
        ([H.SKIPPED, H.HEALTHY], H.HEALTHY),
    ],
)
def test_aggregate_status_precedence(statuses, expected) -> None:
    assert aggregate_status(statuses) is expected


def test_check_result_flattens_details() -> None:
    result = HealthCheckResult(
        H.WARNING,
        "Slow cache response",
        response_time_ms=75.5,
        issues=["Slow cache response"],
        details={"driver": "redis"},
    )

    assert result.to_dict() == {
        "status": "warning",
        "message": "Slow cache response",
        "response_time_ms": 75.5,
        "driver": "redis",
        "issues": ["Slow cache response"],
    }


class MismatchClient:
    def set(self, key, value, ex=None):
        return True

    def get(self, key):
        return "something-else"

    def delete(self, key):
        return 1


class BrokenClient:
    def set(self, key, value, ex=None):
        raise redis.ConnectionError("Connection refused")


class StubDiskMonitor:
    def __init__(self, used_percent: float) -> None:
        self.used_percent = used_percent

    def disk_usage(self) -> dict[str, float]:
        return {"used_percent": self.used_percent, "free_gb": 12.5}


class TestCacheProbe:
    settings = make_settings(health_cache_latency_ms=10_000)

    def test_roundtrip_is_healthy(self, fake_redis_client) -> None:
        result = probes.check_cache(fake_redis_client, self.settings)

        assert result.status is H.HEALTHY
        assert result.message == "Cache is healthy"
        assert result.response_time_ms is not None
        assert list(fake_redis_client.scan_iter(match="sysguard_cache:health_check_*")) == []

    def test_mismatch_is_critical(self) -> None:
        result = probes.check_cache(MismatchClient(), self.settings)

        assert result.status is H.CRITICAL
        assert result.issues == ["Cache write/read failed"]

    def test_connection_error_is_critical(self) -> None:
        result = probes.check_cache(BrokenClient(), self.settings)

        assert result.status is H.CRITICAL
        assert result.message.startswith("Cache system failed")


class TestSecurityProbe:
    def test_clean_production_configuration(self) -> None:
        settings = make_settings(app_env="production", secret_key="k" * 32, cors_origins=["https://ops.example.com"])

        result = probes.check_security(settings)

        assert result.status is H.HEALTHY
        assert result.message == "Security configuration is healthy"

    def test_debug_in_production_is_critical(self) -> None:
        settings = make_settings(app_env="production", app_debug=True, secret_key="k")

        result = probes.check_security(settings)

        assert result.status is H.CRITICAL
        assert result.critical_issues == ["Debug mode enabled in production"]
        assert result.message == "Security issues detected"

    def test_missing_key_is_critical(self) -> None:
        result = probes.check_security(make_settings(secret_key=""))

        assert result.status is H.CRITICAL
        assert "Application key not set" in result.critical_issues

    def test_warnings_only(self) -> None:
        settings = make_settings(
            app_env="production",
            secret_key="k",
            session_secure_cookie=False,
            cors_origins=["*"],
            rate_limit_enabled=False,
        )

        result = probes.check_security(settings)

        assert result.status is H.WARNING
        assert result.warnings == [
            "Secure cookies not enabled",
            "CORS allows all origins in production",
            "Rate limiting disabled",
        ]
        assert result.critical_issues == []

    def test_debug_outside_production_is_allowed(self) -> None:
        result = probes.check_security(make_settings(app_env="local", app_debug=True, secret_key="k"))

        assert result.status is H.HEALTHY


class TestDatabaseProbe:
    def test_reachable_database(self, sqlite_database, fake_redis_client) -> None:
        _, engine = sqlite_database
        settings = make_settings(health_database_latency_ms=10_000)
        monitor = PerformanceMonitor(settings, engine=engine, cache_client=fake_redis_client)

        result = probes.check_database(engine, monitor, settings)

        assert result.status is H.HEALTHY
        assert result.message == "Database is healthy"
        assert result.details["driver"] == "sqlite"
        assert result.details["database_size_mb"] >= 0

    def test_unreachable_database_is_critical(self, tmp_path, fake_redis_client) -> None:
        engine = build_engine(f"sqlite+pysqlite:///{tmp_path / 'missing' / 'nested' / 'app.db'}")
        settings = make_settings()
        monitor = PerformanceMonitor(settings, engine=engine, cache_client=fake_redis_client)

        result = probes.check_database(engine, monitor, settings)

        assert result.status is H.CRITICAL
        assert result.message.startswith("Database connection failed")


class TestStorageProbe:
    settings = make_settings(health_storage_latency_ms=10_000)

    def test_roundtrip_leaves_no_trace(self, storage) -> None:
        result = probes.check_storage(storage, StubDiskMonitor(40.0), self.settings)

        assert result.status is H.HEALTHY
        assert result.details["disk"] == "local"
        assert result.details["disk_free_gb"] == 12.5
        assert [entry for entry in storage.root.iterdir() if entry.is_file()] == []

    def test_full_disk_is_a_warning(self, storage) -> None:
        result = probes.check_storage(storage, StubDiskMonitor(91.0), self.settings)

        assert result.status is H.WARNING
        assert result.issues == ["High disk usage"]


def test_performance_probe_reports_threshold_breaches(fake_redis_client, monkeypatch) -> None:
    monitor = PerformanceMonitor(make_settings(), cache_client=fake_redis_client)
    monkeypatch.setattr(monitor, "get_system_metrics", lambda: make_snapshot(cpu_usage_percent=95.0))

    result = probes.check_performance(monitor)

    assert result.status is H.WARNING
    assert result.message == "System performance is warning"
    assert result.issues == ["cpu_usage"]
    assert result.details["checks"]["cpu_usage"] == {"status": "warning", "value": 95.0, "threshold": 80.0}


class TestDiagnostics:
    @pytest.fixture()
    def diagnostics(self, sqlite_database, fake_redis_client, storage) -> HealthDiagnostics:
        _, engine = sqlite_database
        settings = make_settings(
            secret_key="k",
            health_cache_latency_ms=10_000,
            health_database_latency_ms=10_000,
            health_storage_latency_ms=10_000,
        )
        return HealthDiagnostics(settings, engine=engine, cache_client=fake_redis_client, storage=storage)

    def test_subset_of_checks(self, diagnostics) -> None:
        report = diagnostics.health_check(["database", "cache", "database"])

        assert list(report.checks) == ["database", "cache"]
        assert report.status is H.HEALTHY
        assert report.healthy is True
        payload = report.to_dict()
        assert payload["overall_status"] == "healthy"
        assert payload["environment"] == "local"

    def test_probe_exception_becomes_error(self, diagnostics, monkeypatch) -> None:
        def explode(settings):
            raise RuntimeError("settings exploded")

        monkeypatch.setattr(probes, "check_security", explode)

        report = diagnostics.health_check(["security", "cache"])

        assert report.checks["security"].status is H.ERROR
        assert report.checks["security"].message == "settings exploded"
        assert report.checks["cache"].status is H.HEALTHY
        assert report.status is H.CRITICAL

    def test_unknown_check_is_skipped(self, diagnostics) -> None:
        report = diagnostics.health_check(["quantum"])

        assert report.checks["quantum"].status is H.SKIPPED
        assert report.checks["quantum"].message == "Unknown check"
        assert report.status is H.HEALTHY

    def test_database_probe_runs_real_query(self, diagnostics, sqlite_database) -> None:
        _, engine = sqlite_database
        with engine.connect() as conn:
            assert conn.execute(text("SELECT count(*) FROM users")).scalar_one() == 2

        assert diagnostics.run_check("database").status is H.HEALTHY
