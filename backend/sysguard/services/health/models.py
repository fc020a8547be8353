from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping


class HealthStatus(str, enum.Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"
    ERROR = "error"
    SKIPPED = "skipped"


_SEVERITY = {
    HealthStatus.SKIPPED: -1,
    HealthStatus.HEALTHY: 0,
    HealthStatus.WARNING: 1,
    HealthStatus.CRITICAL: 2,
    HealthStatus.ERROR: 2,
}


def aggregate_status(statuses: Iterable[HealthStatus]) -> HealthStatus:
    """Precedence rule: any critical or error wins, then any warning, else healthy."""

    seen = set(statuses)
    if HealthStatus.CRITICAL in seen or HealthStatus.ERROR in seen:
        return HealthStatus.CRITICAL
    if HealthStatus.WARNING in seen:
        return HealthStatus.WARNING
    return HealthStatus.HEALTHY


def worst_status(*statuses: HealthStatus) -> HealthStatus:
    return max(statuses, key=lambda item: _SEVERITY[item], default=HealthStatus.HEALTHY)


@dataclass
class HealthCheckResult:
    status: HealthStatus
    message: str
    response_time_ms: float | None = None
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    critical_issues: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"status": self.status.value, "message": self.message}
        if self.response_time_ms is not None:
            payload["response_time_ms"] = self.response_time_ms
        payload.update(self.details)
        for key in ("issues", "warnings", "critical_issues"):
            values = getattr(self, key)
            if values:
                payload[key] = list(values)
        return payload


@dataclass
class OverallHealth:
    status: HealthStatus
    checks: Mapping[str, HealthCheckResult]
    environment: str
    timestamp: datetime

    @property
    def healthy(self) -> bool:
        return self.status is HealthStatus.HEALTHY

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "environment": self.environment,
            "overall_status": self.status.value,
            "checks": {name: result.to_dict() for name, result in self.checks.items()},
        }


@dataclass(frozen=True)
class SystemMetricsSnapshot:
    uptime_seconds: float
    memory_usage_mb: float
    memory_peak_mb: float
    memory_limit_mb: float
    cpu_usage_percent: float
    disk_usage_percent: float
    active_connections: int
    cache_hit_ratio: float
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class OperationMetrics:
    operation: str
    duration_ms: float
    memory_used_mb: float
    queries_executed: int
    peak_memory_mb: float
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


__all__ = [
    "HealthCheckResult",
    "HealthStatus",
    "OperationMetrics",
    "OverallHealth",
    "SystemMetricsSnapshot",
    "aggregate_status",
    "worst_status",
]
