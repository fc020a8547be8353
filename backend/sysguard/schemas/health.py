from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class HealthReport(BaseModel):
    timestamp: str
    environment: str
    overall_status: str
    checks: dict[str, dict[str, Any]]


class SystemMetricsResponse(BaseModel):
    system: dict[str, Any]
    database: dict[str, Any]
    recent_operations: list[dict[str, Any]]


__all__ = ["HealthReport", "SystemMetricsResponse"]
