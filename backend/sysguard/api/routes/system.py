from __future__ import annotations

from fastapi import APIRouter, Depends

from sysguard.api.deps import get_cache_maintenance, get_health_diagnostics
from sysguard.api.response import ResponseEnvelope, success_response
from sysguard.schemas.health import SystemMetricsResponse
from sysguard.services.cache import CacheMaintenance
from sysguard.services.health.service import HealthDiagnostics

router = APIRouter(prefix="/admin/system", tags=["admin-system"])


@router.get("/metrics", response_model=ResponseEnvelope)
def system_metrics(diagnostics: HealthDiagnostics = Depends(get_health_diagnostics)) -> dict:
    monitor = diagnostics.monitor
    payload = SystemMetricsResponse(
        system=monitor.get_system_metrics().to_dict(),
        database=monitor.get_database_metrics(),
        recent_operations=monitor.recent_metrics(),
    )
    return success_response(payload.model_dump())


@router.post("/cache/clear", response_model=ResponseEnvelope)
def clear_cache(maintenance: CacheMaintenance = Depends(get_cache_maintenance)) -> dict:
    return success_response(maintenance.clear_all(), message="Cache cleared successfully")
