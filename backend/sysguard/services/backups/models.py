from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Mapping

BACKUP_ROOT = "backups"
ARTIFACT_TYPES = ("database", "files", "config")
FILES_EXTENSIONS = (".tar.gz", ".zip")


class BackupKind(str, enum.Enum):
    FULL = "full"
    DATABASE = "database"
    FILES = "files"
    CONFIG = "config"


RUN_ID_PREFIXES: dict[BackupKind, str] = {
    BackupKind.FULL: "full_backup",
    BackupKind.DATABASE: "db",
    BackupKind.FILES: "files",
    BackupKind.CONFIG: "config",
}


def generate_backup_id(kind: BackupKind, timestamp: datetime) -> str:
    """Build a run id of the form ``<prefix>_YYYY-MM-DD_HH-MM-SS``."""

    return f"{RUN_ID_PREFIXES[kind]}_{timestamp.strftime('%Y-%m-%d_%H-%M-%S')}"


def artifact_path(artifact_type: str, filename: str) -> str:
    return f"{BACKUP_ROOT}/{artifact_type}/{filename}"


def run_artifact_paths(run_id: str) -> dict[str, tuple[str, ...]]:
    """Every path an artifact of ``run_id`` can be stored under, keyed by artifact type."""

    return {
        "database": (artifact_path("database", f"database_{run_id}.sql.gz"),),
        "files": tuple(artifact_path("files", f"files_{run_id}{ext}") for ext in FILES_EXTENSIONS),
        "config": (artifact_path("config", f"config_{run_id}.json"),),
    }


def size_in_mb(size_bytes: int) -> float:
    return round(size_bytes / 1024 / 1024, 2)


@dataclass(frozen=True)
class ArtifactResult:
    success: bool
    filename: str
    path: str | None = None
    size_bytes: int = 0
    files_count: int | None = None
    message: str | None = None
    error: str | None = None

    @property
    def size_mb(self) -> float:
        return size_in_mb(self.size_bytes)

    @classmethod
    def failed(cls, filename: str, error: str) -> "ArtifactResult":
        return cls(success=False, filename=filename, error=error)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "filename": self.filename,
            "path": self.path,
            "size_bytes": self.size_bytes,
            "size_mb": self.size_mb,
        }
        if self.files_count is not None:
            payload["files_count"] = self.files_count
        if self.message:
            payload["message"] = self.message
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class VerificationReport:
    database_exists: bool = False
    files_exist: bool = False
    config_exists: bool = False
    database_readable: bool = False
    files_readable: bool = False

    def to_dict(self) -> dict[str, bool]:
        return asdict(self)


@dataclass(frozen=True)
class BackupRun:
    backup_id: str
    kind: BackupKind
    timestamp: datetime
    results: Mapping[str, ArtifactResult]
    verification: VerificationReport | None = None
    deleted: tuple[str, ...] = ()
    error: str | None = None

    @property
    def success(self) -> bool:
        return bool(self.results) and self.error is None and all(item.success for item in self.results.values())

    @property
    def failed_artifacts(self) -> list[str]:
        return [name for name, item in self.results.items() if not item.success]

    @property
    def message(self) -> str:
        label = "Full backup" if self.kind is BackupKind.FULL else f"{self.kind.value.capitalize()} backup"
        if self.success:
            return f"{label} completed successfully"
        if self.failed_artifacts:
            return f"{label} failed for: {', '.join(self.failed_artifacts)}"
        return f"{label} failed"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "backup_id": self.backup_id,
            "kind": self.kind.value,
            "timestamp": self.timestamp.isoformat(),
            "results": {name: item.to_dict() for name, item in self.results.items()},
            "message": self.message,
        }
        if self.verification is not None:
            payload["verification"] = self.verification.to_dict()
        if self.deleted:
            payload["deleted"] = list(self.deleted)
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class ArtifactInfo:
    type: str
    path: str
    size: int
    modified: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RestoreResult:
    backup_id: str
    success: bool
    results: dict[str, Any] = field(default_factory=dict)
    message: str = ""
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "backup_id": self.backup_id,
            "results": self.results,
            "message": self.message,
        }
        if self.error:
            payload["error"] = self.error
        return payload


__all__ = [
    "ARTIFACT_TYPES",
    "ArtifactInfo",
    "ArtifactResult",
    "BACKUP_ROOT",
    "FILES_EXTENSIONS",
    "BackupKind",
    "BackupRun",
    "RestoreResult",
    "VerificationReport",
    "artifact_path",
    "generate_backup_id",
    "run_artifact_paths",
    "size_in_mb",
]
