from __future__ import annotations

from sysguard.logging import get_logger
from sysguard.services.backups.models import VerificationReport, run_artifact_paths
from sysguard.services.storage.base import BackupStorage

logger = get_logger()


class IntegrityVerifier:
    def __init__(self, storage: BackupStorage) -> None:
        self.storage = storage

    def verify_backup(self, run_id: str) -> VerificationReport:
        paths = run_artifact_paths(run_id)
        database_path = paths["database"][0]
        config_path = paths["config"][0]
        files_path = next((candidate for candidate in paths["files"] if self.storage.exists(candidate)), None)

        database_exists = self.storage.exists(database_path)
        report = VerificationReport(
            database_exists=database_exists,
            files_exist=files_path is not None,
            config_exists=self.storage.exists(config_path),
            database_readable=database_exists and self._non_empty(database_path),
            files_readable=files_path is not None and self._non_empty(files_path),
        )
        logger.info("backup_verified", backup_id=run_id, **report.to_dict())
        return report

    def _non_empty(self, path: str) -> bool:
        try:
            return self.storage.size(path) > 0
        except Exception as exc:  # noqa: BLE001
            logger.warning("backup_verify_size_failed", path=path, error=str(exc))
            return False


__all__ = ["IntegrityVerifier"]
