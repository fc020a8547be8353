from __future__ import annotations

import os
import sys
import tempfile
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Generator, Optional, Sequence

import fakeredis
import pytest
from sqlalchemy import text
from sqlalchemy.engine import Engine

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

_TEST_DIR = Path(tempfile.mkdtemp(prefix="sysguard-tests-"))
os.environ.setdefault("DATABASE_URL", f"sqlite+pysqlite:///{_TEST_DIR / 'app.db'}")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("BACKUP_LOCAL_ROOT", str(_TEST_DIR / "storage"))
os.environ.setdefault("BACKUP_TEMP_DIR", str(_TEST_DIR / "temp"))
os.environ.setdefault("BACKUP_LOCK_DIR", str(_TEST_DIR / "locks"))

from sysguard.core.config import BackupConfig, Settings, get_settings  # noqa: E402

get_settings.cache_clear()

from sysguard.core import redis as redis_module  # noqa: E402
from sysguard.core.process import CommandResult  # noqa: E402
from sysguard.db.session import build_engine  # noqa: E402
from sysguard.services.health.models import SystemMetricsSnapshot  # noqa: E402
from sysguard.services.storage.local import LocalBackupStorage  # noqa: E402


@pytest.fixture(autouse=True)
def fake_redis_client(monkeypatch: pytest.MonkeyPatch) -> Generator[fakeredis.FakeRedis, None, None]:
    server = fakeredis.FakeServer()
    client = fakeredis.FakeRedis(server=server, decode_responses=True)
    monkeypatch.setattr(redis_module, "_sync_client", lambda: client)
    yield client


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    yield
    get_settings.cache_clear()


@pytest.fixture()
def sqlite_database(tmp_path: Path) -> Generator[tuple[str, Engine], None, None]:
    path = tmp_path / "app.db"
    url = f"sqlite+pysqlite:///{path}"
    engine = build_engine(url)
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT NOT NULL, avatar BLOB)"))
        conn.execute(text("CREATE INDEX ix_users_name ON users (name)"))
        conn.execute(text("CREATE TABLE cache (key TEXT PRIMARY KEY, value TEXT)"))
        conn.execute(
            text("INSERT INTO users (id, name, avatar) VALUES (1, 'Ada', NULL), (2, 'O''Brien', X'DEADBEEF')")
        )
        conn.execute(text("INSERT INTO cache (key, value) VALUES ('k', 'v')"))
    yield url, engine
    engine.dispose()


@pytest.fixture()
def storage(tmp_path: Path) -> LocalBackupStorage:
    return LocalBackupStorage(tmp_path / "storage")


@pytest.fixture()
def source_tree(tmp_path: Path) -> Path:
    """An application directory with a few files to archive, some of them excluded."""

    root = tmp_path / "app"
    (root / "storage" / "cache").mkdir(parents=True)
    (root / "storage" / "docs").mkdir(parents=True)
    (root / "storage" / "docs" / "readme.txt").write_text("hello", encoding="utf-8")
    (root / "storage" / "docs" / "notes.md").write_text("# notes", encoding="utf-8")
    (root / "storage" / "app.log").write_text("noise", encoding="utf-8")
    (root / "storage" / "cache" / "blob.bin").write_bytes(b"\x00" * 16)
    (root / ".env").write_text("APP_NAME=sysguard\n", encoding="utf-8")
    return root


def make_settings(**overrides: object) -> Settings:
    base: dict[str, object] = {
        "database_url": "sqlite+pysqlite:///:memory:",
        "redis_url": "redis://localhost:6379/0",
    }
    base.update(overrides)
    return Settings(**base)  # type: ignore[arg-type]


def make_snapshot(**overrides: object) -> SystemMetricsSnapshot:
    values: dict[str, object] = {
        "uptime_seconds": 10.0,
        "memory_usage_mb": 100.0,
        "memory_peak_mb": 120.0,
        "memory_limit_mb": 1024.0,
        "cpu_usage_percent": 5.0,
        "disk_usage_percent": 40.0,
        "active_connections": 1,
        "cache_hit_ratio": 0.95,
        "timestamp": "2024-05-01T12:00:00+00:00",
    }
    values.update(overrides)
    return SystemMetricsSnapshot(**values)  # type: ignore[arg-type]


@pytest.fixture()
def make_config(tmp_path: Path, sqlite_database: tuple[str, Engine]) -> Callable[..., BackupConfig]:
    url, _ = sqlite_database

    def _make(**overrides: object) -> BackupConfig:
        config = BackupConfig.from_settings(make_settings(database_url=url))
        defaults: dict[str, object] = {
            "temp_dir": tmp_path / "temp",
            "lock_dir": tmp_path / "locks",
            "file_paths": (),
        }
        defaults.update(overrides)
        return replace(config, **defaults)

    return _make


@dataclass
class FakeRunner:
    """Stands in for :class:`ProcessRunner` with scripted executables.

    ``handlers`` maps an executable name to a callable receiving the command and
    the stdout path; executables without a handler are reported as missing.
    """

    handlers: dict[str, Callable[[Sequence[str], Optional[Path]], CommandResult]] = field(default_factory=dict)
    calls: list[dict[str, object]] = field(default_factory=list)

    def which(self, executable: str) -> str | None:
        return f"/usr/bin/{executable}" if executable in self.handlers else None

    def run(self, command, *, env=None, stdout_path=None, timeout=None) -> CommandResult:
        self.calls.append({"command": list(command), "env": env, "stdout_path": stdout_path, "timeout": timeout})
        handler = self.handlers[command[0]]
        return handler(list(command), stdout_path)


def writes_stdout(content: bytes, returncode: int = 0, stderr: str = ""):
    def _handler(command: Sequence[str], stdout_path: Optional[Path]) -> CommandResult:
        if stdout_path is not None:
            stdout_path.write_bytes(content)
        return CommandResult(command=" ".join(command), returncode=returncode, stdout="", stderr=stderr)

    return _handler


def fails(returncode: int = 1, stderr: str = "boom"):
    def _handler(command: Sequence[str], stdout_path: Optional[Path]) -> CommandResult:
        return CommandResult(command=" ".join(command), returncode=returncode, stdout="", stderr=stderr)

    return _handler


@pytest.fixture()
def runner() -> FakeRunner:
    return FakeRunner()
