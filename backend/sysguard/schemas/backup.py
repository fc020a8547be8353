from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from sysguard.services.backups.models import BackupKind


class BackupRunRequest(BaseModel):
    type: BackupKind = BackupKind.FULL
    cleanup: bool = False
    verify: bool = False


class BackupRestoreRequest(BaseModel):
    backup_id: str = Field(min_length=1)
    restore_database: bool = True
    restore_files: bool = True
    clear_cache: bool = True


class ArtifactSummary(BaseModel):
    type: str
    path: str
    size: int
    modified: float


class BackupListResponse(BaseModel):
    items: list[ArtifactSummary]
    total: int


class StorageInfoResponse(BaseModel):
    total_size_bytes: int
    total_size_mb: float
    backup_count: int
    disk: str


class BackupRunResponse(BaseModel):
    success: bool
    backup_id: str
    kind: str
    timestamp: str
    results: dict[str, dict[str, Any]]
    message: str
    verification: dict[str, bool] | None = None
    deleted: list[str] | None = None
    error: str | None = None


__all__ = [
    "ArtifactSummary",
    "BackupListResponse",
    "BackupRestoreRequest",
    "BackupRunRequest",
    "BackupRunResponse",
    "StorageInfoResponse",
]
