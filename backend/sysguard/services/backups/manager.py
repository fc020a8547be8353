from __future__ import annotations

import time
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Callable, Optional

from sqlalchemy.engine import Engine

from sysguard.core.config import BackupConfig, Settings, get_settings
from sysguard.core.errors import BackupInProgressError
from sysguard.core.process import ProcessRunner
from sysguard.db.session import get_engine
from sysguard.logging import get_logger, run_log_context
from sysguard.observability.metrics import record_backup_result
from sysguard.services.backups.locking import backup_lock
from sysguard.services.backups.models import (
    ARTIFACT_TYPES,
    BACKUP_ROOT,
    ArtifactInfo,
    ArtifactResult,
    BackupKind,
    BackupRun,
    RestoreResult,
    generate_backup_id,
    run_artifact_paths,
    size_in_mb,
)
from sysguard.services.backups.producer import ArchiveProducer
from sysguard.services.backups.retention import RetentionManager
from sysguard.services.backups.snapshot import ConfigurationSnapshotter
from sysguard.services.backups.verifier import IntegrityVerifier
from sysguard.services.cache import CacheMaintenance
from sysguard.services.storage import build_backup_storage
from sysguard.services.storage.base import BackupStorage

logger = get_logger()

ArtifactStep = Callable[[str], ArtifactResult]


class BackupManager:
    """Coordinates the artifact producers, retention and verification of a backup run."""

    def __init__(
        self,
        config: BackupConfig,
        storage: BackupStorage,
        *,
        engine: Engine,
        runner: Optional[ProcessRunner] = None,
        cache: Optional[CacheMaintenance] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config
        self.storage = storage
        self.producer = ArchiveProducer(config, storage, engine=engine, runner=runner)
        self.snapshotter = ConfigurationSnapshotter(config, storage)
        self.retention = RetentionManager(config, storage)
        self.verifier = IntegrityVerifier(storage)
        self.cache = cache
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def create(cls, settings: Optional[Settings] = None) -> "BackupManager":
        settings = settings or get_settings()
        return cls(
            BackupConfig.from_settings(settings),
            build_backup_storage(settings),
            engine=get_engine(),
            cache=CacheMaintenance(settings),
        )

    # Backup runs ---------------------------------------------------------------

    def create_full_backup(self, cleanup_old: bool = True, verify: bool = True) -> BackupRun:
        """Back up the database, files and configuration under one run id.

        Every step is attempted even when an earlier one failed; the run is
        successful only when all three artifacts are.
        """

        timestamp = self._clock()
        backup_id = generate_backup_id(BackupKind.FULL, timestamp)
        with run_log_context(backup_id, BackupKind.FULL.value):
            logger.info("backup_started", backup_id=backup_id, kind=BackupKind.FULL.value)
            start = time.perf_counter()

            results = {
                "database": self._run_step("database", backup_id, self.producer.backup_database),
                "files": self._run_step("files", backup_id, self.producer.backup_files),
                "config": self._run_step(
                    "config",
                    backup_id,
                    lambda run_id: self.snapshotter.backup_configuration(run_id, timestamp),
                ),
            }
            deleted = self._cleanup() if cleanup_old else ()
            verification = self.verifier.verify_backup(backup_id) if verify else None

            run = BackupRun(
                backup_id=backup_id,
                kind=BackupKind.FULL,
                timestamp=timestamp,
                results=results,
                verification=verification,
                deleted=deleted,
            )
            self._finish(run, time.perf_counter() - start)
        return run

    def backup_database(self, run_id: Optional[str] = None) -> BackupRun:
        return self._single(BackupKind.DATABASE, run_id, self.producer.backup_database)

    def backup_files(self, run_id: Optional[str] = None) -> BackupRun:
        return self._single(BackupKind.FILES, run_id, self.producer.backup_files)

    def backup_configuration(self, run_id: Optional[str] = None) -> BackupRun:
        return self._single(BackupKind.CONFIG, run_id, self.snapshotter.backup_configuration)

    def run(self, kind: BackupKind | str, *, cleanup: bool = False, verify: bool = False) -> BackupRun:
        backup_kind = BackupKind(kind)
        if backup_kind is BackupKind.FULL:
            # Full runs are always verified.
            return self.create_full_backup(cleanup_old=cleanup)

        operations: dict[BackupKind, Callable[[], BackupRun]] = {
            BackupKind.DATABASE: self.backup_database,
            BackupKind.FILES: self.backup_files,
            BackupKind.CONFIG: self.backup_configuration,
        }
        run = operations[backup_kind]()
        updates: dict[str, object] = {}
        if verify:
            updates["verification"] = self.verifier.verify_backup(run.backup_id)
        if cleanup:
            updates["deleted"] = self._cleanup()
        return replace(run, **updates) if updates else run

    # Inventory -----------------------------------------------------------------

    def list_backups(self) -> list[ArtifactInfo]:
        backups: list[ArtifactInfo] = []
        for artifact_type in ARTIFACT_TYPES:
            for path in self.storage.files(f"{BACKUP_ROOT}/{artifact_type}"):
                backups.append(
                    ArtifactInfo(
                        type=artifact_type,
                        path=path,
                        size=self.storage.size(path),
                        modified=self.storage.last_modified(path),
                    )
                )
        backups.sort(key=lambda item: item.modified, reverse=True)
        return backups

    def delete_backup(self, path: str) -> bool:
        key = _artifact_key(path)
        if not self.storage.exists(key):
            return False
        self.storage.delete(key)
        logger.info("backup_deleted", path=key)
        return True

    def read_backup(self, path: str) -> bytes:
        return self.storage.get(_artifact_key(path))

    def storage_info(self) -> dict[str, object]:
        backups = self.list_backups()
        total_size = sum(item.size for item in backups)
        return {
            "total_size_bytes": total_size,
            "total_size_mb": size_in_mb(total_size),
            "backup_count": len(backups),
            "disk": self.storage.name,
        }

    # Restore -------------------------------------------------------------------

    def restore_from_backup(
        self,
        run_id: str,
        *,
        restore_database: bool = True,
        restore_files: bool = True,
        clear_cache: bool = True,
    ) -> RestoreResult:
        artifacts = self._run_artifacts(run_id)
        if not artifacts:
            logger.warning("restore_backup_missing", backup_id=run_id)
            return RestoreResult(backup_id=run_id, success=False, message="Restore failed", error="Backup not found")

        logger.info("restore_started", backup_id=run_id, artifacts=artifacts)
        results: dict[str, object] = {}
        try:
            if restore_database:
                results["database"] = {"success": True, "message": "Database restore completed"}
            if restore_files:
                results["files"] = {"success": True, "message": "Files restore completed"}
            if clear_cache:
                maintenance = self.cache or CacheMaintenance()
                results["cache"] = maintenance.clear_all()
        except Exception as exc:  # noqa: BLE001
            logger.exception("restore_failed", backup_id=run_id)
            return RestoreResult(
                backup_id=run_id,
                success=False,
                results=results,
                message="Restore failed",
                error=str(exc),
            )

        logger.info("restore_completed", backup_id=run_id)
        return RestoreResult(
            backup_id=run_id,
            success=True,
            results=results,
            message="Restore completed successfully",
        )

    # Internals -----------------------------------------------------------------

    def _run_artifacts(self, run_id: str) -> list[str]:
        if not run_id or "/" in run_id or ".." in run_id:
            return []
        return [
            path
            for candidates in run_artifact_paths(run_id).values()
            for path in candidates
            if self.storage.exists(path)
        ]

    def _single(self, kind: BackupKind, run_id: Optional[str], step: ArtifactStep) -> BackupRun:
        timestamp = self._clock()
        backup_id = run_id or generate_backup_id(kind, timestamp)
        with run_log_context(backup_id, kind.value):
            logger.info("backup_started", backup_id=backup_id, kind=kind.value)
            start = time.perf_counter()
            result = self._run_step(kind.value, backup_id, step)
            run = BackupRun(
                backup_id=backup_id,
                kind=kind,
                timestamp=timestamp,
                results={kind.value: result},
                error=None if result.success else result.error,
            )
            self._finish(run, time.perf_counter() - start)
        return run

    def _run_step(self, artifact: str, backup_id: str, step: ArtifactStep) -> ArtifactResult:
        try:
            with backup_lock(self.config.lock_dir, artifact):
                result = step(backup_id)
        except BackupInProgressError as exc:
            return ArtifactResult.failed(_expected_filename(artifact, backup_id), str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("backup_artifact_failed", artifact=artifact, backup_id=backup_id)
            return ArtifactResult.failed(_expected_filename(artifact, backup_id), str(exc))
        if not result.success:
            logger.warning("backup_artifact_failed", artifact=artifact, backup_id=backup_id, error=result.error)
        return result

    def _cleanup(self) -> tuple[str, ...]:
        try:
            return tuple(self.retention.cleanup_old_backups())
        except Exception:  # noqa: BLE001
            logger.exception("retention_failed")
            return ()

    def _finish(self, run: BackupRun, duration: float) -> None:
        record_backup_result(
            kind=run.kind.value,
            success=run.success,
            duration_seconds=duration,
            artifacts=[(name, item.success, item.size_bytes) for name, item in run.results.items()],
        )
        if run.success:
            logger.info(
                "backup_completed",
                backup_id=run.backup_id,
                kind=run.kind.value,
                duration_seconds=round(duration, 3),
            )
        else:
            logger.error(
                "backup_failed",
                backup_id=run.backup_id,
                kind=run.kind.value,
                failed=run.failed_artifacts,
                duration_seconds=round(duration, 3),
            )


def _artifact_key(path: str) -> str:
    parts = PurePosixPath(path.strip("/")).parts
    if len(parts) != 3 or parts[0] != BACKUP_ROOT or parts[1] not in ARTIFACT_TYPES:
        raise ValueError(f"Not a backup artifact path: {path}")
    return "/".join(parts)


def _expected_filename(artifact: str, backup_id: str) -> str:
    if artifact == "database":
        return f"database_{backup_id}.sql.gz"
    if artifact == "config":
        return f"config_{backup_id}.json"
    return f"files_{backup_id}"


__all__ = ["BackupManager"]
