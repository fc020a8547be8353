from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse, Response

from sysguard.api.deps import get_backup_manager
from sysguard.api.response import ResponseEnvelope, success_response
from sysguard.core.errors import NOT_FOUND_EXCEPTION, ErrorCode, StorageError, http_exception
from sysguard.logging import get_logger
from sysguard.schemas.backup import (
    ArtifactSummary,
    BackupListResponse,
    BackupRestoreRequest,
    BackupRunRequest,
    BackupRunResponse,
    StorageInfoResponse,
)
from sysguard.services.backups.manager import BackupManager

logger = get_logger()

router = APIRouter(prefix="/admin/backups", tags=["admin-backups"])


@router.get("", response_model=ResponseEnvelope)
def list_backups(manager: BackupManager = Depends(get_backup_manager)) -> dict:
    items = [ArtifactSummary(**item.to_dict()) for item in manager.list_backups()]
    payload = BackupListResponse(items=items, total=len(items))
    return success_response(payload.model_dump())


@router.get("/storage", response_model=ResponseEnvelope)
def storage_info(manager: BackupManager = Depends(get_backup_manager)) -> dict:
    payload = StorageInfoResponse(**manager.storage_info())
    return success_response(payload.model_dump())


@router.post("/run", response_model=ResponseEnvelope)
def run_backup(
    request: BackupRunRequest,
    manager: BackupManager = Depends(get_backup_manager),
) -> JSONResponse:
    logger.info("backup_manual_trigger", kind=request.type.value)
    run = manager.run(request.type, cleanup=request.cleanup, verify=request.verify)
    payload = BackupRunResponse(**run.to_dict()).model_dump(exclude_none=True)
    if run.success:
        return JSONResponse(status_code=status.HTTP_200_OK, content=success_response(payload, message=run.message))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=success_response(payload, message=run.message, code=ErrorCode.BACKUP_FAILED),
    )


@router.post("/restore", response_model=ResponseEnvelope)
def restore_backup(
    request: BackupRestoreRequest,
    manager: BackupManager = Depends(get_backup_manager),
) -> dict:
    result = manager.restore_from_backup(
        request.backup_id,
        restore_database=request.restore_database,
        restore_files=request.restore_files,
        clear_cache=request.clear_cache,
    )
    if not result.success and result.error == "Backup not found":
        raise http_exception(status.HTTP_404_NOT_FOUND, ErrorCode.NOT_FOUND, "Backup not found")
    return success_response(result.to_dict(), message=result.message)


@router.get("/download")
def download_backup(
    path: str = Query(..., min_length=1),
    manager: BackupManager = Depends(get_backup_manager),
) -> Response:
    try:
        content = manager.read_backup(path)
    except ValueError as exc:
        raise http_exception(status.HTTP_400_BAD_REQUEST, ErrorCode.BAD_REQUEST, str(exc)) from exc
    except StorageError as exc:
        raise NOT_FOUND_EXCEPTION from exc
    filename = path.rsplit("/", 1)[-1]
    return Response(
        content,
        media_type="application/octet-stream",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.delete("", response_model=ResponseEnvelope)
def delete_backup(
    path: str = Query(..., min_length=1),
    manager: BackupManager = Depends(get_backup_manager),
) -> dict:
    try:
        deleted = manager.delete_backup(path)
    except ValueError as exc:
        raise http_exception(status.HTTP_400_BAD_REQUEST, ErrorCode.BAD_REQUEST, str(exc)) from exc
    if not deleted:
        raise NOT_FOUND_EXCEPTION
    return success_response({"path": path}, message="Backup deleted successfully")
