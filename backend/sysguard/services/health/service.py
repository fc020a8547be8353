from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

import redis
from sqlalchemy.engine import Engine

from sysguard.core.config import Settings, get_settings
from sysguard.core.redis import get_sync_redis
from sysguard.db.session import get_engine
from sysguard.logging import get_logger
from sysguard.observability.metrics import record_health_status
from sysguard.services.health import probes
from sysguard.services.health.models import HealthCheckResult, HealthStatus, OverallHealth, aggregate_status
from sysguard.services.health.monitor import PerformanceMonitor
from sysguard.services.storage import build_backup_storage
from sysguard.services.storage.base import BackupStorage

logger = get_logger()

DEFAULT_CHECKS = ("database", "cache", "storage", "security", "performance")


def split_check_names(values: Iterable[str]) -> list[str]:
    """Flatten repeated and comma separated check names into one list."""

    checks: list[str] = []
    for value in values:
        checks.extend(item.strip() for item in value.split(",") if item.strip())
    return checks


class HealthDiagnostics:
    def __init__(
        self,
        settings: Settings,
        *,
        engine: Engine,
        cache_client: redis.Redis,
        storage: BackupStorage,
        monitor: Optional[PerformanceMonitor] = None,
    ) -> None:
        self.settings = settings
        self.engine = engine
        self.cache_client = cache_client
        self.storage = storage
        self.monitor = monitor or PerformanceMonitor(settings, engine=engine, cache_client=cache_client)
        self._probes: dict[str, Callable[[], HealthCheckResult]] = {
            "database": lambda: probes.check_database(self.engine, self.monitor, self.settings),
            "cache": lambda: probes.check_cache(self.cache_client, self.settings),
            "storage": lambda: probes.check_storage(self.storage, self.monitor, self.settings),
            "security": lambda: probes.check_security(self.settings),
            "performance": lambda: probes.check_performance(self.monitor),
        }

    @classmethod
    def create(cls, settings: Optional[Settings] = None) -> "HealthDiagnostics":
        settings = settings or get_settings()
        return cls(
            settings,
            engine=get_engine(),
            cache_client=get_sync_redis(),
            storage=build_backup_storage(settings),
        )

    @property
    def available_checks(self) -> tuple[str, ...]:
        return tuple(self._probes)

    def run_check(self, name: str) -> HealthCheckResult:
        probe = self._probes.get(name)
        if probe is None:
            return HealthCheckResult(HealthStatus.SKIPPED, "Unknown check")
        try:
            result = probe()
        except Exception as exc:  # noqa: BLE001
            logger.exception("health_check_error", check=name)
            return HealthCheckResult(HealthStatus.ERROR, str(exc))
        if result.status is not HealthStatus.HEALTHY:
            logger.warning("health_check_degraded", check=name, status=result.status.value, message=result.message)
        return result

    def health_check(self, checks: Optional[Iterable[str]] = None) -> OverallHealth:
        """Run the requested probes (all of them by default) and aggregate their status."""

        names = list(dict.fromkeys(checks)) if checks else list(DEFAULT_CHECKS)
        results: dict[str, HealthCheckResult] = {}
        for name in names:
            result = self.run_check(name)
            results[name] = result
            record_health_status(name, result.status.value)

        overall = OverallHealth(
            status=aggregate_status(result.status for result in results.values()),
            checks=results,
            environment=self.settings.app_env,
            timestamp=datetime.now(timezone.utc),
        )
        logger.info("health_check_completed", status=overall.status.value, checks=names)
        return overall


__all__ = ["DEFAULT_CHECKS", "HealthDiagnostics", "split_check_names"]
