from __future__ import annotations

import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Sequence

from sqlalchemy.engine import Engine

from sysguard.core.config import BackupConfig
from sysguard.core.errors import ArchiveError, DumpError
from sysguard.core.process import ProcessRunner
from sysguard.logging import get_logger
from sysguard.services.backups.archive import (
    FileArchiver,
    TarArchiver,
    ZipArchiver,
    count_archive_members,
    gzip_file,
)
from sysguard.services.backups.dump import DumpStrategy, select_dump_strategies
from sysguard.services.backups.models import BACKUP_ROOT, ArtifactResult, artifact_path
from sysguard.services.storage.base import BackupStorage
from sysguard.services.storage.local import LocalBackupStorage

logger = get_logger()


class ArchiveProducer:
    """Produces the database and files artifacts of a backup run."""

    def __init__(
        self,
        config: BackupConfig,
        storage: BackupStorage,
        *,
        engine: Engine,
        runner: Optional[ProcessRunner] = None,
    ) -> None:
        self.config = config
        self.storage = storage
        self.engine = engine
        self.runner = runner or ProcessRunner()

    def backup_database(self, run_id: str) -> ArtifactResult:
        filename = f"database_{run_id}.sql.gz"
        try:
            strategies = select_dump_strategies(
                self.config.database_url,
                engine=self.engine,
                runner=self.runner,
                exclude_tables=self.config.exclude_tables,
                timeout=self.config.database_timeout,
            )
            with self._workspace(run_id, "database") as workdir:
                raw_path = workdir / f"database_{run_id}.sql"
                strategy = self._dump(strategies, raw_path)
                compressed = gzip_file(raw_path, workdir / filename, level=self.config.compression_level)
                path = artifact_path("database", filename)
                self.storage.put(path, compressed.read_bytes())
            size = self.storage.size(path)
        except Exception as exc:  # noqa: BLE001
            logger.exception("backup_artifact_failed", artifact="database", backup_id=run_id)
            return ArtifactResult.failed(filename, str(exc))

        logger.info("backup_artifact_stored", artifact="database", path=path, size=size, strategy=strategy.name)
        return ArtifactResult(
            success=True,
            filename=filename,
            path=path,
            size_bytes=size,
            message=f"Database dumped with {strategy.name}",
        )

    def backup_files(self, run_id: str) -> ArtifactResult:
        sources = [path for path in self.config.file_paths if path.exists()]
        if not sources:
            logger.info("backup_files_empty", backup_id=run_id)
            return ArtifactResult(success=True, filename="", size_bytes=0, files_count=0, message="No files to backup")

        filename = f"files_{run_id}"
        try:
            with self._workspace(run_id, "files") as workdir:
                skip_dirs = self._skipped_directories(sources)
                archiver, output_path = self._archive(sources, workdir, filename, skip_dirs)
                filename = output_path.name
                files_count = count_archive_members(sources, self.config.exclude_patterns, skip_dirs)
                path = artifact_path("files", filename)
                self.storage.put(path, output_path.read_bytes())
            size = self.storage.size(path)
        except Exception as exc:  # noqa: BLE001
            logger.exception("backup_artifact_failed", artifact="files", backup_id=run_id)
            return ArtifactResult.failed(filename, str(exc))

        logger.info(
            "backup_artifact_stored",
            artifact="files",
            path=path,
            size=size,
            files=files_count,
            archiver=archiver.name,
        )
        return ArtifactResult(
            success=True,
            filename=filename,
            path=path,
            size_bytes=size,
            files_count=files_count,
        )

    def file_archivers(self) -> list[FileArchiver]:
        return [
            TarArchiver(self.runner, timeout=self.config.files_timeout),
            ZipArchiver(compression_level=self.config.compression_level),
        ]

    def _dump(self, strategies: Sequence[DumpStrategy], output_path: Path) -> DumpStrategy:
        for strategy in strategies:
            if not strategy.is_available():
                logger.debug("dump_strategy_unavailable", strategy=strategy.name)
                continue
            try:
                strategy.dump(output_path)
            except DumpError as exc:
                if not strategy.fallback_on_error:
                    raise
                logger.warning("dump_strategy_failed", strategy=strategy.name, error=str(exc))
                continue
            return strategy
        raise DumpError("No database dump strategy is available")

    def _skipped_directories(self, sources: Sequence[Path]) -> tuple[Path, ...]:
        """Backup bookkeeping directories that live inside one of the archived sources."""

        candidates = [self.config.temp_dir, self.config.lock_dir]
        if isinstance(self.storage, LocalBackupStorage):
            candidates.append(self.storage.root / BACKUP_ROOT)
        resolved_sources = [source.resolve() for source in sources if source.is_dir()]
        return tuple(
            candidate
            for candidate in (path.resolve() for path in candidates)
            if any(candidate == source or source in candidate.parents for source in resolved_sources)
        )

    def _archive(
        self,
        sources: Sequence[Path],
        workdir: Path,
        stem: str,
        skip_dirs: Sequence[Path] = (),
    ) -> tuple[FileArchiver, Path]:
        available = [archiver for archiver in self.file_archivers() if archiver.is_available()]
        for index, archiver in enumerate(available):
            output_path = workdir / f"{stem}{archiver.extension}"
            try:
                archiver.create(sources, self.config.exclude_patterns, output_path, skip_dirs)
            except ArchiveError as exc:
                if index == len(available) - 1:
                    raise
                logger.warning("file_archiver_failed", archiver=archiver.name, error=str(exc))
                output_path.unlink(missing_ok=True)
                continue
            return archiver, output_path
        raise ArchiveError("No file archiver is available")

    @contextmanager
    def _workspace(self, run_id: str, artifact: str) -> Iterator[Path]:
        self.config.temp_dir.mkdir(parents=True, exist_ok=True)
        workdir = Path(tempfile.mkdtemp(prefix=f"{run_id}_{artifact}_", dir=self.config.temp_dir))
        try:
            yield workdir
        finally:
            shutil.rmtree(workdir, ignore_errors=True)


__all__ = ["ArchiveProducer"]
