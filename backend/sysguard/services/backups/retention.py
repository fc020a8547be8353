from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from sysguard.core.config import BackupConfig
from sysguard.logging import get_logger
from sysguard.observability.metrics import record_retention_deleted
from sysguard.services.backups.models import ARTIFACT_TYPES, BACKUP_ROOT
from sysguard.services.storage.base import BackupStorage

logger = get_logger()


@dataclass
class RetentionStats:
    scanned: int = 0
    deleted: list[str] = field(default_factory=list)
    failed: int = 0


class RetentionManager:
    def __init__(self, config: BackupConfig, storage: BackupStorage) -> None:
        self.config = config
        self.storage = storage

    def cleanup_old_backups(self, now: Optional[datetime] = None) -> list[str]:
        """Delete artifacts last modified strictly before the retention cutoff.

        Returns the storage paths that were deleted. A retention of zero days
        disables cleanup entirely.
        """

        retention_days = self.config.retention_days
        if retention_days <= 0:
            return []

        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=retention_days)
        cutoff_ts = cutoff.timestamp()
        stats = RetentionStats()

        for artifact_type in ARTIFACT_TYPES:
            for path in self.storage.files(f"{BACKUP_ROOT}/{artifact_type}"):
                stats.scanned += 1
                try:
                    if self.storage.last_modified(path) >= cutoff_ts:
                        continue
                    self.storage.delete(path)
                except Exception as exc:  # noqa: BLE001
                    stats.failed += 1
                    logger.warning("retention_delete_failed", path=path, error=str(exc))
                    continue
                stats.deleted.append(path)
                logger.info("retention_deleted", path=path)

        record_retention_deleted(len(stats.deleted))
        logger.info(
            "retention_completed",
            retention_days=retention_days,
            scanned=stats.scanned,
            deleted=len(stats.deleted),
            failed=stats.failed,
        )
        return stats.deleted


__all__ = ["RetentionManager", "RetentionStats"]
