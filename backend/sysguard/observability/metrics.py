from __future__ import annotations

import time
from typing import Iterable

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from sqlalchemy import event
from sqlalchemy.engine import Engine
from starlette.responses import Response

from sysguard.core.config import get_settings

_settings = get_settings()
_NAMESPACE = _settings.metrics_namespace

_BACKUP_LABELS = ("kind", "status")
_ARTIFACT_LABELS = ("artifact", "status")
_HEALTH_LABELS = ("check",)

_HEALTH_STATUS_VALUES = {"healthy": 0, "warning": 1, "critical": 2, "error": 3}

DB_QUERY_DURATION = Histogram(
    "db_query_duration_seconds",
    "SQLAlchemy database query latency",
    ("operation",),
    namespace=_NAMESPACE,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5),
)
BACKUP_RUNS = Counter(
    "backup_runs_total",
    "Backup runs partitioned by kind and outcome",
    _BACKUP_LABELS,
    namespace=_NAMESPACE,
)
BACKUP_DURATION = Histogram(
    "backup_duration_seconds",
    "Wall clock duration of backup runs",
    ("kind",),
    namespace=_NAMESPACE,
    buckets=(1, 5, 10, 30, 60, 120, 300, 600, 1800, 3600),
)
BACKUP_ARTIFACTS = Counter(
    "backup_artifacts_total",
    "Backup artifacts produced partitioned by type and outcome",
    _ARTIFACT_LABELS,
    namespace=_NAMESPACE,
)
BACKUP_ARTIFACT_SIZE = Gauge(
    "backup_artifact_size_bytes",
    "Size of the most recent artifact of each type",
    ("artifact",),
    namespace=_NAMESPACE,
)
BACKUP_LAST_SUCCESS = Gauge(
    "backup_last_success_timestamp_seconds",
    "Unix timestamp of the last successful backup run per kind",
    ("kind",),
    namespace=_NAMESPACE,
)
BACKUP_RETENTION_DELETED = Counter(
    "backup_retention_deleted_total",
    "Artifacts deleted by the retention policy",
    namespace=_NAMESPACE,
)
HEALTH_CHECK_STATUS = Gauge(
    "health_check_status",
    "Latest health probe status (0 healthy, 1 warning, 2 critical, 3 error)",
    _HEALTH_LABELS,
    namespace=_NAMESPACE,
)


def _metrics_enabled() -> bool:
    return get_settings().metrics_enabled


def _normalize_label(value: str | None, default: str = "unknown") -> str:
    if not value:
        return default
    sanitized = value.strip().lower().replace(" ", "_")
    return sanitized[:64] if sanitized else default


def _classify_db_operation(statement: str) -> str:
    first = (statement or "").lstrip().split(" ", 1)[0].upper()
    if not first:
        return "OTHER"
    if first in {"SELECT", "INSERT", "UPDATE", "DELETE", "COMMIT", "ROLLBACK"}:
        return first
    return "OTHER"


def instrument_engine(engine: Engine) -> None:
    if getattr(engine, "_metrics_instrumented", False):
        return
    engine._query_count = 0  # type: ignore[attr-defined]

    @event.listens_for(engine, "before_cursor_execute")
    def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):  # type: ignore[override]
        engine._query_count += 1  # type: ignore[attr-defined]
        if not _metrics_enabled():
            return
        stack = conn.info.setdefault("_metrics_query_start", [])
        stack.append((time.perf_counter(), _classify_db_operation(statement)))

    @event.listens_for(engine, "after_cursor_execute")
    def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):  # type: ignore[override]
        if not _metrics_enabled():
            conn.info.pop("_metrics_query_start", None)
            return
        stack = conn.info.get("_metrics_query_start")
        if not stack:
            return
        start, operation = stack.pop()
        duration = time.perf_counter() - start
        DB_QUERY_DURATION.labels(operation=operation).observe(max(duration, 0.0))

    engine._metrics_instrumented = True  # type: ignore[attr-defined]


def query_count(engine: Engine | None) -> int:
    if engine is None:
        return 0
    return int(getattr(engine, "_query_count", 0))


def record_backup_result(
    *,
    kind: str,
    success: bool,
    duration_seconds: float | None,
    artifacts: Iterable[tuple[str, bool, int | None]] = (),
    finished_at: float | None = None,
) -> None:
    if not _metrics_enabled():
        return
    kind_label = _normalize_label(kind)
    status_label = "success" if success else "failure"
    BACKUP_RUNS.labels(kind=kind_label, status=status_label).inc()
    if duration_seconds is not None:
        BACKUP_DURATION.labels(kind=kind_label).observe(max(duration_seconds, 0.0))
    for artifact, artifact_ok, size_bytes in artifacts:
        artifact_label = _normalize_label(artifact)
        BACKUP_ARTIFACTS.labels(artifact=artifact_label, status="success" if artifact_ok else "failure").inc()
        if artifact_ok and size_bytes is not None:
            BACKUP_ARTIFACT_SIZE.labels(artifact=artifact_label).set(max(size_bytes, 0))
    if success:
        BACKUP_LAST_SUCCESS.labels(kind=kind_label).set(finished_at or time.time())


def record_retention_deleted(count: int) -> None:
    if not _metrics_enabled() or count <= 0:
        return
    BACKUP_RETENTION_DELETED.inc(count)


def record_health_status(check: str, status: str) -> None:
    if not _metrics_enabled():
        return
    value = _HEALTH_STATUS_VALUES.get(status)
    if value is None:
        return
    HEALTH_CHECK_STATUS.labels(check=_normalize_label(check)).set(value)


def metrics_response() -> Response:
    payload = generate_latest()
    return Response(payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "instrument_engine",
    "metrics_response",
    "query_count",
    "record_backup_result",
    "record_health_status",
    "record_retention_deleted",
]
