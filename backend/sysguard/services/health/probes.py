"""Individual health probes.

Each probe returns a :class:`HealthCheckResult`. Connectivity failures are
reported as ``critical`` by the probe itself; anything unexpected is left to the
diagnostics service, which turns it into an ``error`` result.
"""

from __future__ import annotations

import secrets
import time
from datetime import datetime, timezone

import redis
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from sysguard.core.config import Settings
from sysguard.logging import get_logger
from sysguard.services.health.models import HealthCheckResult, HealthStatus, worst_status
from sysguard.services.health.monitor import CONNECTION_THRESHOLD, DISK_THRESHOLD_PERCENT, PerformanceMonitor
from sysguard.services.storage.base import BackupStorage

logger = get_logger()


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


def _summary(issues: list[str], healthy_message: str) -> str:
    return ", ".join(issues) if issues else healthy_message


def check_database(engine: Engine, monitor: PerformanceMonitor, settings: Settings) -> HealthCheckResult:
    start = time.perf_counter()
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        return HealthCheckResult(HealthStatus.CRITICAL, f"Database connection failed: {exc}")
    latency = _elapsed_ms(start)

    db_metrics = monitor.get_database_metrics()
    status = HealthStatus.HEALTHY
    issues: list[str] = []
    if latency > settings.health_database_latency_ms:
        status = HealthStatus.WARNING
        issues.append("Slow database response time")
    if db_metrics["connection_count"] > CONNECTION_THRESHOLD:
        status = HealthStatus.WARNING
        issues.append("High connection count")

    return HealthCheckResult(
        status,
        _summary(issues, "Database is healthy"),
        response_time_ms=latency,
        issues=issues,
        details={
            "driver": engine.dialect.name,
            "connections": db_metrics["connection_count"],
            "database_size_mb": db_metrics["database_size_mb"],
        },
    )


def check_cache(client: redis.Redis, settings: Settings) -> HealthCheckResult:
    key = f"{settings.cache_prefix}health_check_{int(time.time())}_{secrets.token_hex(4)}"
    value = secrets.token_hex(8)
    start = time.perf_counter()
    try:
        client.set(key, value, ex=60)
        retrieved = client.get(key)
        latency = _elapsed_ms(start)
        client.delete(key)
    except redis.RedisError as exc:
        return HealthCheckResult(HealthStatus.CRITICAL, f"Cache system failed: {exc}")

    if isinstance(retrieved, bytes):
        retrieved = retrieved.decode("utf-8", errors="replace")

    status = HealthStatus.HEALTHY
    issues: list[str] = []
    if retrieved != value:
        status = HealthStatus.CRITICAL
        issues.append("Cache write/read failed")
    if latency > settings.health_cache_latency_ms:
        status = worst_status(status, HealthStatus.WARNING)
        issues.append("Slow cache response")

    return HealthCheckResult(
        status,
        _summary(issues, "Cache is healthy"),
        response_time_ms=latency,
        issues=issues,
        details={"driver": settings.cache_driver},
    )


def check_storage(storage: BackupStorage, monitor: PerformanceMonitor, settings: Settings) -> HealthCheckResult:
    path = f"health_check_{int(time.time())}_{secrets.token_hex(4)}.txt"
    content = f"health check {datetime.now(timezone.utc).isoformat()}".encode("utf-8")
    start = time.perf_counter()
    try:
        storage.put(path, content)
        retrieved = storage.get(path)
        latency = _elapsed_ms(start)
    except Exception as exc:  # noqa: BLE001
        return HealthCheckResult(HealthStatus.CRITICAL, f"Storage system failed: {exc}")
    finally:
        try:
            storage.delete(path)
        except Exception as exc:  # noqa: BLE001
            logger.warning("storage_probe_cleanup_failed", path=path, error=str(exc))

    disk = monitor.disk_usage()
    status = HealthStatus.HEALTHY
    issues: list[str] = []
    if retrieved != content:
        status = HealthStatus.CRITICAL
        issues.append("Storage write/read failed")
    if latency > settings.health_storage_latency_ms:
        status = worst_status(status, HealthStatus.WARNING)
        issues.append("Slow storage response")
    if disk["used_percent"] > DISK_THRESHOLD_PERCENT:
        status = worst_status(status, HealthStatus.WARNING)
        issues.append("High disk usage")

    return HealthCheckResult(
        status,
        _summary(issues, "Storage is healthy"),
        response_time_ms=latency,
        issues=issues,
        details={
            "disk": storage.name,
            "disk_usage_percent": disk["used_percent"],
            "disk_free_gb": disk["free_gb"],
        },
    )


def check_security(settings: Settings) -> HealthCheckResult:
    critical_issues: list[str] = []
    warnings: list[str] = []

    if settings.is_production and settings.app_debug:
        critical_issues.append("Debug mode enabled in production")
    if not settings.secret_key:
        critical_issues.append("Application key not set")
    if settings.is_production and not settings.secure_session_cookies:
        warnings.append("Secure cookies not enabled")
    if settings.is_production and "*" in settings.cors_origins:
        warnings.append("CORS allows all origins in production")
    if not settings.rate_limit_enabled:
        warnings.append("Rate limiting disabled")

    if critical_issues:
        status = HealthStatus.CRITICAL
    elif warnings:
        status = HealthStatus.WARNING
    else:
        status = HealthStatus.HEALTHY

    return HealthCheckResult(
        status,
        "Security issues detected" if critical_issues or warnings else "Security configuration is healthy",
        warnings=warnings,
        critical_issues=critical_issues,
        details={"environment": settings.app_env},
    )


def check_performance(monitor: PerformanceMonitor) -> HealthCheckResult:
    report = monitor.health_check()
    metrics = report["metrics"]
    status: HealthStatus = report["status"]
    checks = {
        name: {"status": item["status"].value, "value": item["value"], "threshold": item["threshold"]}
        for name, item in report["checks"].items()
    }
    issues = [name for name, item in report["checks"].items() if item["status"] is not HealthStatus.HEALTHY]
    return HealthCheckResult(
        status,
        f"System performance is {status.value}",
        issues=issues,
        details={
            "memory_usage_mb": metrics.memory_usage_mb,
            "memory_peak_mb": metrics.memory_peak_mb,
            "cpu_usage_percent": metrics.cpu_usage_percent,
            "cache_hit_ratio": metrics.cache_hit_ratio,
            "checks": checks,
        },
    )


__all__ = [
    "check_cache",
    "check_database",
    "check_performance",
    "check_security",
    "check_storage",
]
