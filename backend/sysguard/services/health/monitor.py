from __future__ import annotations

import json
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import psutil
import redis
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from sysguard.core.config import Settings, get_settings
from sysguard.core.redis import get_sync_redis
from sysguard.logging import get_logger
from sysguard.observability.metrics import query_count
from sysguard.services.health.models import HealthStatus, OperationMetrics, SystemMetricsSnapshot, worst_status

logger = get_logger()

METRICS_KEY_PREFIX = "performance_metrics_"
METRICS_WINDOW_SIZE = 100
METRICS_TTL_SECONDS = 3600
CRITICAL_DURATION_MS = 5000.0

MEMORY_THRESHOLD_RATIO = 0.8
CPU_THRESHOLD_PERCENT = 80.0
DISK_THRESHOLD_PERCENT = 85.0
CONNECTION_THRESHOLD = 80
CACHE_HIT_THRESHOLD = 0.8

_BYTES_PER_MB = 1024 * 1024


def _mb(value: float) -> float:
    return round(value / _BYTES_PER_MB, 2)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PerformanceMonitor:
    """Process, host, database and cache metrics plus per-operation timing."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        engine: Optional[Engine] = None,
        cache_client: Optional[redis.Redis] = None,
        process: Optional[psutil.Process] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.settings = settings or get_settings()
        self.engine = engine
        self._cache_client = cache_client
        self.process = process or psutil.Process()
        self._clock = clock
        self._started = time.perf_counter()
        self._peak_rss = 0
        self._active: dict[str, dict[str, Any]] = {}

    @property
    def cache_client(self) -> redis.Redis:
        if self._cache_client is None:
            self._cache_client = get_sync_redis()
        return self._cache_client

    # Snapshots -------------------------------------------------------------------

    def get_system_metrics(self) -> SystemMetricsSnapshot:
        rss = self._rss()
        return SystemMetricsSnapshot(
            uptime_seconds=round(time.perf_counter() - self._started, 2),
            memory_usage_mb=_mb(rss),
            memory_peak_mb=_mb(self._peak_rss),
            memory_limit_mb=self.memory_limit_mb(),
            cpu_usage_percent=round(float(psutil.cpu_percent(interval=None)), 2),
            disk_usage_percent=self.disk_usage()["used_percent"],
            active_connections=self.active_connections(),
            cache_hit_ratio=self.cache_hit_ratio(),
            timestamp=_now_iso(),
        )

    def get_database_metrics(self) -> dict[str, Any]:
        return {
            "connection_count": self.active_connections(),
            "query_count": query_count(self.engine),
            "slow_queries": self.slow_queries(),
            "database_size_mb": self.database_size_mb(),
            "timestamp": _now_iso(),
        }

    def memory_limit_mb(self) -> float:
        if self.settings.monitor_memory_limit_mb:
            return float(self.settings.monitor_memory_limit_mb)
        return _mb(psutil.virtual_memory().total)

    def disk_usage(self) -> dict[str, float]:
        try:
            usage = psutil.disk_usage(self.settings.monitor_disk_path)
        except OSError as exc:
            logger.warning("disk_usage_unavailable", path=self.settings.monitor_disk_path, error=str(exc))
            return {"used_percent": 0.0, "free_gb": 0.0}
        return {
            "used_percent": round(float(usage.percent), 2),
            "free_gb": round(usage.free / 1024 / 1024 / 1024, 2),
        }

    def active_connections(self) -> int:
        if self.engine is None:
            return 0
        dialect = self.engine.dialect.name
        if dialect == "sqlite":
            checkedout = getattr(self.engine.pool, "checkedout", None)
            return int(checkedout()) if callable(checkedout) else 0
        if dialect == "postgresql":
            statement = "SELECT count(*) FROM pg_stat_activity WHERE datname = current_database()"
        elif dialect in {"mysql", "mariadb"}:
            statement = "SHOW STATUS LIKE 'Threads_connected'"
        else:
            return 0
        try:
            with self.engine.connect() as conn:
                row = conn.execute(text(statement)).one()
        except SQLAlchemyError as exc:
            logger.warning("db_connection_count_failed", error=str(exc))
            return 0
        return int(row[-1])

    def slow_queries(self) -> int:
        if self.engine is None or self.engine.dialect.name not in {"mysql", "mariadb"}:
            return 0
        try:
            with self.engine.connect() as conn:
                row = conn.execute(text("SHOW GLOBAL STATUS LIKE 'Slow_queries'")).one_or_none()
        except SQLAlchemyError as exc:
            logger.warning("db_slow_queries_failed", error=str(exc))
            return 0
        return int(row[-1]) if row is not None else 0

    def database_size_mb(self) -> float:
        if self.engine is None:
            return 0.0
        dialect = self.engine.dialect.name
        try:
            with self.engine.connect() as conn:
                if dialect == "sqlite":
                    page_count = conn.execute(text("PRAGMA page_count")).scalar_one()
                    page_size = conn.execute(text("PRAGMA page_size")).scalar_one()
                    size = int(page_count) * int(page_size)
                elif dialect == "postgresql":
                    size = conn.execute(text("SELECT pg_database_size(current_database())")).scalar_one()
                elif dialect in {"mysql", "mariadb"}:
                    size = conn.execute(
                        text(
                            "SELECT COALESCE(SUM(data_length + index_length), 0) "
                            "FROM information_schema.tables WHERE table_schema = DATABASE()"
                        )
                    ).scalar_one()
                else:
                    return 0.0
        except SQLAlchemyError as exc:
            logger.warning("db_size_failed", error=str(exc))
            return 0.0
        return _mb(float(size or 0))

    def cache_hit_ratio(self) -> float:
        try:
            stats = self.cache_client.info("stats")
        except redis.RedisError as exc:
            logger.warning("cache_stats_failed", error=str(exc))
            return 0.0
        hits = int(stats.get("keyspace_hits", 0))
        misses = int(stats.get("keyspace_misses", 0))
        total = hits + misses
        if total == 0:
            return 1.0
        return round(hits / total, 4)

    # Thresholds ----------------------------------------------------------------------

    def health_check(self, snapshot: Optional[SystemMetricsSnapshot] = None) -> dict[str, Any]:
        metrics = snapshot or self.get_system_metrics()
        memory_threshold = round(metrics.memory_limit_mb * MEMORY_THRESHOLD_RATIO, 2)

        def check(ok: bool, failing: HealthStatus, value: float, threshold: float) -> dict[str, Any]:
            return {
                "status": HealthStatus.HEALTHY if ok else failing,
                "value": value,
                "threshold": threshold,
            }

        checks = {
            "memory_usage": check(
                metrics.memory_usage_mb < memory_threshold,
                HealthStatus.WARNING,
                metrics.memory_usage_mb,
                memory_threshold,
            ),
            "cpu_usage": check(
                metrics.cpu_usage_percent < CPU_THRESHOLD_PERCENT,
                HealthStatus.WARNING,
                metrics.cpu_usage_percent,
                CPU_THRESHOLD_PERCENT,
            ),
            "disk_usage": check(
                metrics.disk_usage_percent < DISK_THRESHOLD_PERCENT,
                HealthStatus.CRITICAL,
                metrics.disk_usage_percent,
                DISK_THRESHOLD_PERCENT,
            ),
            "database_connections": check(
                metrics.active_connections < CONNECTION_THRESHOLD,
                HealthStatus.WARNING,
                metrics.active_connections,
                CONNECTION_THRESHOLD,
            ),
            "cache_performance": check(
                metrics.cache_hit_ratio > CACHE_HIT_THRESHOLD,
                HealthStatus.WARNING,
                metrics.cache_hit_ratio,
                CACHE_HIT_THRESHOLD,
            ),
        }
        return {
            "status": worst_status(*(item["status"] for item in checks.values())),
            "checks": checks,
            "metrics": metrics,
            "timestamp": _now_iso(),
        }

    # Operation timing -----------------------------------------------------------------

    def start_monitoring(self, operation: str) -> str:
        monitor_id = f"{operation}_{uuid.uuid4().hex[:13]}"
        self._active[monitor_id] = {
            "operation": operation,
            "start_time": time.perf_counter(),
            "start_memory": self._rss(),
            "queries_before": query_count(self.engine),
        }
        return monitor_id

    def stop_monitoring(self, monitor_id: str) -> Optional[OperationMetrics]:
        started = self._active.pop(monitor_id, None)
        if started is None:
            return None

        end_memory = self._rss()
        result = OperationMetrics(
            operation=started["operation"],
            duration_ms=round((time.perf_counter() - started["start_time"]) * 1000, 2),
            memory_used_mb=_mb(end_memory - started["start_memory"]),
            queries_executed=query_count(self.engine) - started["queries_before"],
            peak_memory_mb=_mb(self._peak_rss),
            timestamp=_now_iso(),
        )

        if result.duration_ms > CRITICAL_DURATION_MS:
            logger.critical("operation_critical_slow", **result.to_dict())
        elif result.duration_ms > self.settings.slow_query_threshold_ms:
            logger.warning("operation_slow", **result.to_dict())

        self._store(result)
        return result

    def recent_metrics(self, hour: Optional[datetime] = None) -> list[dict[str, Any]]:
        key = self._bucket_key(hour or self._clock())
        try:
            entries = self.cache_client.lrange(key, 0, -1)
        except redis.RedisError as exc:
            logger.warning("performance_metrics_read_failed", key=key, error=str(exc))
            return []
        return [json.loads(entry) for entry in entries]

    def _store(self, result: OperationMetrics) -> None:
        key = self._bucket_key(self._clock())
        try:
            pipeline = self.cache_client.pipeline()
            pipeline.rpush(key, json.dumps(result.to_dict()))
            pipeline.ltrim(key, -METRICS_WINDOW_SIZE, -1)
            pipeline.expire(key, METRICS_TTL_SECONDS)
            pipeline.execute()
        except redis.RedisError as exc:
            logger.warning("performance_metrics_store_failed", key=key, error=str(exc))

    def _bucket_key(self, moment: datetime) -> str:
        return f"{self.settings.cache_prefix}{METRICS_KEY_PREFIX}{moment.strftime('%Y-%m-%d-%H')}"

    def _rss(self) -> int:
        rss = int(self.process.memory_info().rss)
        self._peak_rss = max(self._peak_rss, rss)
        return rss


__all__ = [
    "CACHE_HIT_THRESHOLD",
    "CONNECTION_THRESHOLD",
    "CPU_THRESHOLD_PERCENT",
    "DISK_THRESHOLD_PERCENT",
    "METRICS_TTL_SECONDS",
    "METRICS_WINDOW_SIZE",
    "PerformanceMonitor",
]
