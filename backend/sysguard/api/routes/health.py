from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from starlette.responses import Response

from sysguard.api.deps import get_health_diagnostics
from sysguard.api.response import ResponseEnvelope, success_response
from sysguard.core.config import Settings, get_settings
from sysguard.core.errors import ErrorCode, http_exception
from sysguard.observability.metrics import metrics_response
from sysguard.schemas.health import HealthReport
from sysguard.services.health.models import HealthStatus
from sysguard.services.health.service import HealthDiagnostics, split_check_names

router = APIRouter(tags=["health"])


@router.get("/healthz", summary="Liveness probe", response_model=ResponseEnvelope)
def healthz() -> dict:
    return success_response({"status": "ok"})


@router.get("/health", summary="System health report", response_model=ResponseEnvelope)
def health(
    check: Optional[List[str]] = Query(default=None),
    diagnostics: HealthDiagnostics = Depends(get_health_diagnostics),
) -> JSONResponse:
    report = diagnostics.health_check(split_check_names(check or []))
    if report.status is HealthStatus.CRITICAL:
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        code = ErrorCode.HEALTH_DEGRADED
        message = "Some systems require attention"
    else:
        status_code = status.HTTP_200_OK
        code = ErrorCode.SUCCESS
        message = "All systems are operating normally" if report.healthy else "System health has warnings"
    return JSONResponse(
        status_code=status_code,
        content=success_response(HealthReport(**report.to_dict()).model_dump(), message=message, code=code),
    )


@router.get("/metrics", include_in_schema=False)
def prometheus_metrics(settings: Settings = Depends(get_settings)) -> Response:
    if not settings.metrics_enabled:
        raise http_exception(status.HTTP_404_NOT_FOUND, ErrorCode.NOT_FOUND, "Metrics endpoint is disabled")
    return metrics_response()
