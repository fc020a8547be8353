from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sysguard.api.routes import admin_backups, health, system
from sysguard.core.config import get_settings
from sysguard.core.errors import BackupInProgressError, ErrorCode, SysGuardError, create_error_detail
from sysguard.logging import RequestIdMiddleware, configure_logging, get_logger

load_dotenv()
configure_logging()
logger = get_logger()


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="SysGuard",
        version=settings.app_version,
        docs_url="/api/docs",
        openapi_url="/api/openapi.json",
    )

    app.state.settings = settings

    app.add_middleware(RequestIdMiddleware)
    cors_allow_origins = settings.cors_origins or []
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_allow_origins,
        allow_credentials=cors_allow_origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(admin_backups.router, prefix="/api/v1")
    app.include_router(system.router, prefix="/api/v1")

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        content = create_error_detail(ErrorCode.VALIDATION_ERROR, "Validation error", exc.errors())
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=content)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        detail = exc.detail
        if isinstance(detail, dict) and {"code", "message"}.issubset(detail.keys()):
            content = detail if "data" in detail else {**detail, "data": None}
        else:
            message = detail if isinstance(detail, str) else "An unexpected error occurred"
            content = create_error_detail(ErrorCode.BAD_REQUEST, message)
        return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

    @app.exception_handler(SysGuardError)
    async def sysguard_exception_handler(request: Request, exc: SysGuardError) -> JSONResponse:
        if isinstance(exc, BackupInProgressError):
            return JSONResponse(
                status_code=status.HTTP_409_CONFLICT,
                content=create_error_detail(ErrorCode.BACKUP_IN_PROGRESS, str(exc)),
            )
        logger.error("request_failed", path=str(request.url.path), error=str(exc))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=create_error_detail(ErrorCode.BACKUP_FAILED, str(exc)),
        )

    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info("application_started", environment=settings.app_env)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("application_stopped", environment=settings.app_env)

    return app


app = create_app()
