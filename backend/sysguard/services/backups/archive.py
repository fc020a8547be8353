from __future__ import annotations

import fnmatch
import gzip
import os
import shutil
import zipfile
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Iterable, Iterator, Sequence

from sysguard.core.errors import ArchiveError
from sysguard.core.process import ProcessRunner


def gzip_file(source: Path, destination: Path, *, level: int = 9) -> Path:
    with source.open("rb") as src, gzip.open(destination, "wb", compresslevel=level) as dst:
        shutil.copyfileobj(src, dst, length=1024 * 1024)
    return destination


def is_excluded(relative_path: str, patterns: Sequence[str]) -> bool:
    """Match a path relative to its archive root against exclude patterns.

    Patterns are checked against the full relative path and the base name, and a
    ``dir/*`` pattern also matches the directory at any depth.
    """

    posix = PurePosixPath(relative_path)
    for pattern in patterns:
        if fnmatch.fnmatch(str(posix), pattern) or fnmatch.fnmatch(posix.name, pattern):
            return True
        if pattern.endswith("/*"):
            directory = pattern[:-2]
            if directory in posix.parts[:-1]:
                return True
    return False


def iter_archive_members(
    paths: Iterable[Path],
    patterns: Sequence[str],
    skip_dirs: Iterable[Path] = (),
) -> Iterator[tuple[Path, str]]:
    """Yield ``(absolute path, archive name)`` for every file that is not excluded.

    Archive names are relative to each input's parent so the input's base name
    becomes the root entry. Directories in ``skip_dirs`` are not descended into.
    """

    skipped = {directory.resolve() for directory in skip_dirs}
    for path in paths:
        base = path.parent
        if path.resolve() in skipped:
            continue
        if path.is_file():
            if not is_excluded(path.name, patterns):
                yield path, path.name
            continue
        for root, dirs, files in os.walk(path):
            root_path = Path(root)
            dirs[:] = sorted(name for name in dirs if (root_path / name).resolve() not in skipped)
            for name in sorted(files):
                candidate = root_path / name
                arcname = candidate.relative_to(base).as_posix()
                inner = candidate.relative_to(path).as_posix()
                if is_excluded(inner, patterns) or is_excluded(arcname, patterns):
                    continue
                yield candidate, arcname


def count_archive_members(paths: Iterable[Path], patterns: Sequence[str], skip_dirs: Iterable[Path] = ()) -> int:
    return sum(1 for _ in iter_archive_members(paths, patterns, skip_dirs))


def skipped_member_names(paths: Iterable[Path], skip_dirs: Iterable[Path]) -> list[str]:
    """Archive names of the ``skip_dirs`` that sit inside one of ``paths``."""

    names: list[str] = []
    for path in paths:
        if not path.is_dir():
            continue
        resolved = path.resolve()
        for directory in skip_dirs:
            try:
                relative = directory.resolve().relative_to(resolved)
            except ValueError:
                continue
            names.append((PurePosixPath(path.name) / relative.as_posix()).as_posix())
    return names


class FileArchiver(ABC):
    name: str = "archive"
    extension: str = ""

    @abstractmethod
    def is_available(self) -> bool: ...

    @abstractmethod
    def create(
        self,
        paths: Sequence[Path],
        exclude_patterns: Sequence[str],
        output_path: Path,
        skip_dirs: Sequence[Path] = (),
    ) -> None: ...


class TarArchiver(FileArchiver):
    name = "tar"
    extension = ".tar.gz"

    def __init__(self, runner: ProcessRunner, *, timeout: float | None = None) -> None:
        self.runner = runner
        self.timeout = timeout

    def is_available(self) -> bool:
        return self.runner.which("tar") is not None

    def create(
        self,
        paths: Sequence[Path],
        exclude_patterns: Sequence[str],
        output_path: Path,
        skip_dirs: Sequence[Path] = (),
    ) -> None:
        command = ["tar", "-czf", str(output_path)]
        command.extend(f"--exclude={pattern}" for pattern in exclude_patterns)
        command.extend(f"--exclude={name}" for name in skipped_member_names(paths, skip_dirs))
        for path in paths:
            command.extend(["-C", str(path.parent), path.name])
        try:
            result = self.runner.run(command, timeout=self.timeout)
        except Exception as exc:  # noqa: BLE001
            raise ArchiveError(f"tar could not be executed: {exc}") from exc
        if not result.ok:
            message = f"tar failed with return code: {result.returncode}"
            if result.stderr:
                message = f"{message}: {result.stderr}"
            raise ArchiveError(message)
        if not output_path.exists():
            raise ArchiveError("tar did not produce an archive")


class ZipArchiver(FileArchiver):
    name = "zip"
    extension = ".zip"

    def __init__(self, *, compression_level: int = 9) -> None:
        self.compression_level = compression_level

    def is_available(self) -> bool:
        return True

    def create(
        self,
        paths: Sequence[Path],
        exclude_patterns: Sequence[str],
        output_path: Path,
        skip_dirs: Sequence[Path] = (),
    ) -> None:
        try:
            with zipfile.ZipFile(
                output_path,
                "w",
                compression=zipfile.ZIP_DEFLATED,
                compresslevel=self.compression_level,
            ) as archive:
                for source, arcname in iter_archive_members(paths, exclude_patterns, skip_dirs):
                    archive.write(source, arcname)
        except (OSError, zipfile.BadZipFile) as exc:
            raise ArchiveError(f"Cannot create zip file: {exc}") from exc


__all__ = [
    "FileArchiver",
    "TarArchiver",
    "ZipArchiver",
    "count_archive_members",
    "gzip_file",
    "is_excluded",
    "iter_archive_members",
    "skipped_member_names",
]
