from __future__ import annotations

import json
import platform
from datetime import datetime, timezone
from typing import Any, Optional

from sysguard.core.config import BackupConfig
from sysguard.logging import get_logger
from sysguard.services.backups.models import ArtifactResult, artifact_path
from sysguard.services.storage.base import BackupStorage

logger = get_logger()


class ConfigurationSnapshotter:
    """Writes the non-secret application settings that matter for a restore."""

    def __init__(self, config: BackupConfig, storage: BackupStorage) -> None:
        self.config = config
        self.storage = storage

    def snapshot(self, timestamp: Optional[datetime] = None) -> dict[str, Any]:
        ts = timestamp or datetime.now(timezone.utc)
        return {
            "app_name": self.config.app_name,
            "app_version": self.config.app_version,
            "environment": self.config.environment,
            "database_driver": self.config.database_driver,
            "cache_driver": self.config.cache_driver,
            "session_driver": self.config.session_driver,
            "queue_driver": self.config.queue_driver,
            "rate_limiting": dict(self.config.rate_limiting),
            "backup_timestamp": ts.isoformat(),
            "python_version": platform.python_version(),
            "platform": platform.platform(),
        }

    def backup_configuration(self, run_id: str, timestamp: Optional[datetime] = None) -> ArtifactResult:
        filename = f"config_{run_id}.json"
        path = artifact_path("config", filename)
        payload = json.dumps(self.snapshot(timestamp), indent=4, sort_keys=False)
        try:
            self.storage.put(path, payload.encode("utf-8"))
            size = self.storage.size(path)
        except Exception as exc:  # noqa: BLE001
            logger.exception("backup_artifact_failed", artifact="config", backup_id=run_id)
            return ArtifactResult.failed(filename, str(exc))

        logger.info("backup_artifact_stored", artifact="config", path=path, size=size)
        return ArtifactResult(success=True, filename=filename, path=path, size_bytes=size)


__all__ = ["ConfigurationSnapshotter"]
