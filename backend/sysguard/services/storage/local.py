from __future__ import annotations

from pathlib import Path, PurePosixPath

from sysguard.core.errors import StorageError


class LocalBackupStorage:
    name = "local"

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).expanduser().resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def put(self, path: str, content: bytes) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            target.write_bytes(content)
        except OSError as exc:
            raise StorageError(f"Failed to write {path}: {exc}") from exc

    def get(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except FileNotFoundError as exc:
            raise StorageError(f"File not found: {path}") from exc

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    def delete(self, path: str) -> None:
        self._resolve(path).unlink(missing_ok=True)

    def size(self, path: str) -> int:
        return self._stat(path).st_size

    def last_modified(self, path: str) -> float:
        return self._stat(path).st_mtime

    def files(self, prefix: str) -> list[str]:
        directory = self._resolve(prefix)
        if not directory.is_dir():
            return []
        return sorted(
            str(PurePosixPath(prefix.strip("/")) / entry.name)
            for entry in directory.iterdir()
            if entry.is_file()
        )

    def _stat(self, path: str):
        try:
            return self._resolve(path).stat()
        except FileNotFoundError as exc:
            raise StorageError(f"File not found: {path}") from exc

    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(path.strip("/"))
        if ".." in relative.parts:
            raise StorageError(f"Path escapes the storage root: {path}")
        return self._root.joinpath(*relative.parts)


__all__ = ["LocalBackupStorage"]
