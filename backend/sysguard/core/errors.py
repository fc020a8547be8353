from __future__ import annotations

from enum import Enum
from typing import Any

from fastapi import HTTPException, status


class ErrorCode(str, Enum):
    SUCCESS = "SUCCESS"
    VALIDATION_ERROR = "V001"
    NOT_FOUND = "N001"
    BAD_REQUEST = "B001"
    BACKUP_FAILED = "BK001"
    BACKUP_IN_PROGRESS = "BK002"
    HEALTH_DEGRADED = "H001"


class SysGuardError(Exception):
    """Base class for errors raised by the backup and health services."""


class BackupConfigurationError(SysGuardError):
    """The backup configuration cannot be used as given."""


class UnsupportedDriverError(BackupConfigurationError):
    def __init__(self, driver: str) -> None:
        super().__init__(f"Unsupported database driver: {driver}")
        self.driver = driver


class DumpError(SysGuardError):
    """A database dump strategy failed."""


class ArchiveError(SysGuardError):
    """A file archive could not be produced."""


class StorageError(SysGuardError):
    """The backup storage backend rejected an operation."""


class BackupInProgressError(SysGuardError):
    def __init__(self, kind: str) -> None:
        super().__init__(f"A {kind} backup is already running")
        self.kind = kind


def create_error_detail(code: ErrorCode | str, message: str, data: Any | None = None) -> dict[str, Any | None]:
    code_value = code.value if isinstance(code, ErrorCode) else str(code)
    return {"code": code_value, "message": message, "data": data}


def http_exception(
    status_code: int,
    code: ErrorCode | str,
    message: str,
    *,
    data: Any | None = None,
    headers: dict[str, str] | None = None,
) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail=create_error_detail(code, message, data),
        headers=headers,
    )


NOT_FOUND_EXCEPTION = http_exception(status.HTTP_404_NOT_FOUND, ErrorCode.NOT_FOUND, "Resource not found")


__all__ = [
    "ArchiveError",
    "BackupConfigurationError",
    "BackupInProgressError",
    "DumpError",
    "ErrorCode",
    "NOT_FOUND_EXCEPTION",
    "StorageError",
    "SysGuardError",
    "UnsupportedDriverError",
    "create_error_detail",
    "http_exception",
]
