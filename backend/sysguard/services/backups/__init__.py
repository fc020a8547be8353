from sysguard.services.backups.manager import BackupManager
from sysguard.services.backups.models import (
    ArtifactInfo,
    ArtifactResult,
    BackupKind,
    BackupRun,
    RestoreResult,
    VerificationReport,
)

__all__ = [
    "ArtifactInfo",
    "ArtifactResult",
    "BackupKind",
    "BackupManager",
    "BackupRun",
    "RestoreResult",
    "VerificationReport",
]
