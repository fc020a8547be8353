from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Annotated, List

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from sqlalchemy.engine import make_url

DEFAULT_FILE_PATHS = ["./storage/app", "./public/uploads", "./.env"]
DEFAULT_EXCLUDE_PATTERNS = ["*.log", "cache/*", "sessions/*", "temp/*", ".DS_Store", "Thumbs.db"]
DEFAULT_EXCLUDE_TABLES = ["cache", "sessions", "failed_jobs"]


class Settings(BaseSettings):
    app_name: str = "sysguard"
    app_env: str = "local"
    app_version: str = "0.1.0"
    app_debug: bool = False
    log_level: str = "INFO"
    secret_key: str = ""
    database_url: str
    redis_url: str = "redis://localhost:6379/0"
    cache_driver: str = "redis"
    cache_prefix: str = "sysguard_cache:"
    session_driver: str = "redis"
    session_secure_cookie: bool | None = None
    queue_driver: str = "sync"
    cors_origins: Annotated[List[str], NoDecode] = []
    rate_limit_enabled: bool = True
    rate_limit_requests: int = 60
    rate_limit_window_seconds: int = 60
    redact_fields: Annotated[List[str], NoDecode] = ["authorization", "password", "token", "secret"]
    redaction_placeholder: str = "***"
    metrics_enabled: bool = False
    metrics_namespace: str = "sysguard"
    backup_disk: str = "local"
    backup_local_root: str = "./storage/app"
    backup_retention_days: int = 30
    backup_temp_dir: str = "./storage/app/temp"
    backup_lock_dir: str = "./storage/app/locks"
    backup_file_paths: Annotated[List[str], NoDecode] = DEFAULT_FILE_PATHS
    backup_exclude_patterns: Annotated[List[str], NoDecode] = DEFAULT_EXCLUDE_PATTERNS
    backup_exclude_tables: Annotated[List[str], NoDecode] = DEFAULT_EXCLUDE_TABLES
    backup_compression_level: int = 9
    backup_database_timeout_seconds: int = 300
    backup_files_timeout_seconds: int = 600
    backup_s3_bucket: str | None = None
    backup_s3_prefix: str = ""
    backup_s3_region: str | None = None
    backup_s3_endpoint_url: str | None = None
    backup_s3_access_key: str | None = None
    backup_s3_secret_key: str | None = None
    view_cache_dir: str | None = None
    route_cache_file: str | None = None
    monitor_memory_limit_mb: float | None = None
    monitor_disk_path: str = "/"
    slow_query_threshold_ms: float = 2000.0
    health_database_latency_ms: float = 100.0
    health_cache_latency_ms: float = 50.0
    health_storage_latency_ms: float = 100.0

    model_config = SettingsConfigDict(
        env_file=(".env",),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("app_env", mode="before")
    @classmethod
    def normalize_app_env(cls, value: str | None) -> str:
        env = str(value or "local").strip().lower()
        return env or "local"

    @field_validator("backup_retention_days", mode="before")
    @classmethod
    def validate_retention_days(cls, value: int | str) -> int:
        int_value = int(value) if isinstance(value, str) else value
        if int_value < 0:
            raise ValueError("BACKUP_RETENTION_DAYS must be zero or a positive integer")
        return int_value

    @field_validator("backup_compression_level", mode="before")
    @classmethod
    def validate_compression_level(cls, value: int | str) -> int:
        int_value = int(value) if isinstance(value, str) else value
        if not 1 <= int_value <= 9:
            raise ValueError("BACKUP_COMPRESSION_LEVEL must be between 1 and 9")
        return int_value

    @field_validator(
        "backup_database_timeout_seconds",
        "backup_files_timeout_seconds",
        "rate_limit_requests",
        "rate_limit_window_seconds",
        mode="before",
    )
    @classmethod
    def validate_positive_integers(cls, value: int | str) -> int:
        int_value = int(value) if isinstance(value, str) else value
        if int_value <= 0:
            raise ValueError("Value must be greater than zero")
        return int_value

    @field_validator(
        "slow_query_threshold_ms",
        "health_database_latency_ms",
        "health_cache_latency_ms",
        "health_storage_latency_ms",
        mode="before",
    )
    @classmethod
    def validate_positive_float(cls, value: float | str) -> float:
        float_value = float(value) if isinstance(value, str) else value
        if float_value <= 0:
            raise ValueError("Value must be greater than zero")
        return float_value

    @field_validator("backup_disk", mode="before")
    @classmethod
    def normalize_backup_disk(cls, value: str | None) -> str:
        disk = str(value or "local").strip().lower()
        if disk not in {"local", "s3"}:
            raise ValueError("BACKUP_DISK must be either 'local' or 's3'")
        return disk

    @field_validator(
        "cors_origins",
        "redact_fields",
        "backup_file_paths",
        "backup_exclude_patterns",
        "backup_exclude_tables",
        mode="before",
    )
    @classmethod
    def split_csv_list(cls, value: List[str] | str | None) -> List[str]:
        if value is None:
            return []
        if isinstance(value, list):
            return [item.strip() for item in value if isinstance(item, str) and item.strip()]
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        raise ValueError("Expected a list or a comma separated string")

    @field_validator("backup_s3_prefix", mode="before")
    @classmethod
    def normalize_storage_prefix(cls, value: str | None) -> str:
        if value is None:
            return ""
        prefix = str(value).strip().replace("\\", "/")
        prefix = prefix.lstrip("/")
        if not prefix:
            return ""
        if not prefix.endswith("/"):
            prefix = f"{prefix}/"
        return prefix

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def secure_session_cookies(self) -> bool:
        if self.session_secure_cookie is None:
            return self.is_production
        return self.session_secure_cookie

    @property
    def database_driver(self) -> str:
        return make_url(self.database_url).drivername.split("+")[0]


@dataclass(frozen=True)
class BackupConfig:
    """Snapshot of every setting the backup components read.

    Built once per orchestration and handed to each component so nothing in the
    backup flow looks settings up on its own.
    """

    disk: str
    database_url: str
    retention_days: int
    temp_dir: Path
    lock_dir: Path
    file_paths: tuple[Path, ...]
    exclude_patterns: tuple[str, ...]
    exclude_tables: tuple[str, ...]
    compression_level: int
    database_timeout: int
    files_timeout: int
    app_name: str
    app_version: str
    environment: str
    cache_driver: str
    session_driver: str
    queue_driver: str
    rate_limiting: dict

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackupConfig":
        return cls(
            disk=settings.backup_disk,
            database_url=settings.database_url,
            retention_days=settings.backup_retention_days,
            temp_dir=Path(settings.backup_temp_dir).expanduser(),
            lock_dir=Path(settings.backup_lock_dir).expanduser(),
            file_paths=tuple(Path(os.path.expanduser(item)) for item in settings.backup_file_paths),
            exclude_patterns=tuple(settings.backup_exclude_patterns),
            exclude_tables=tuple(settings.backup_exclude_tables),
            compression_level=settings.backup_compression_level,
            database_timeout=settings.backup_database_timeout_seconds,
            files_timeout=settings.backup_files_timeout_seconds,
            app_name=settings.app_name,
            app_version=settings.app_version,
            environment=settings.app_env,
            cache_driver=settings.cache_driver,
            session_driver=settings.session_driver,
            queue_driver=settings.queue_driver,
            rate_limiting={
                "enabled": settings.rate_limit_enabled,
                "limit": settings.rate_limit_requests,
                "window": settings.rate_limit_window_seconds,
            },
        )

    @property
    def database_driver(self) -> str:
        return make_url(self.database_url).drivername.split("+")[0]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


__all__ = ["BackupConfig", "Settings", "get_settings"]
