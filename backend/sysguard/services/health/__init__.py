from sysguard.services.health.models import (
    HealthCheckResult,
    HealthStatus,
    OverallHealth,
    SystemMetricsSnapshot,
    aggregate_status,
)
from sysguard.services.health.monitor import PerformanceMonitor
from sysguard.services.health.service import DEFAULT_CHECKS, HealthDiagnostics

__all__ = [
    "DEFAULT_CHECKS",
    "HealthCheckResult",
    "HealthDiagnostics",
    "HealthStatus",
    "OverallHealth",
    "PerformanceMonitor",
    "SystemMetricsSnapshot",
    "aggregate_status",
]
