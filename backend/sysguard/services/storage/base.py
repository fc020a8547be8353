from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class BackupStorage(Protocol):
    """Key/path blob store that holds backup artifacts.

    Paths are forward-slash separated keys such as ``backups/database/x.sql.gz``.
    ``last_modified`` returns a unix timestamp in seconds.
    """

    name: str

    def put(self, path: str, content: bytes) -> None: ...

    def get(self, path: str) -> bytes: ...

    def exists(self, path: str) -> bool: ...

    def delete(self, path: str) -> None: ...

    def size(self, path: str) -> int: ...

    def last_modified(self, path: str) -> float: ...

    def files(self, prefix: str) -> list[str]: ...


__all__ = ["BackupStorage"]
