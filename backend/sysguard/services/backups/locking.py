from __future__ import annotations

import fcntl
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sysguard.core.errors import BackupInProgressError
from sysguard.logging import get_logger

logger = get_logger()


@contextmanager
def backup_lock(lock_dir: Path, kind: str) -> Iterator[Path]:
    """Hold an exclusive advisory lock for one backup type.

    Raises :class:`BackupInProgressError` immediately when another process (or
    another call in this process) already holds the lock for ``kind``.
    """

    lock_dir.mkdir(parents=True, exist_ok=True)
    lock_path = lock_dir / f"backup-{kind}.lock"
    fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o644)
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as exc:
            logger.warning("backup_lock_busy", kind=kind, lock=str(lock_path))
            raise BackupInProgressError(kind) from exc
        os.ftruncate(fd, 0)
        os.write(fd, str(os.getpid()).encode("ascii"))
        try:
            yield lock_path
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


__all__ = ["backup_lock"]
