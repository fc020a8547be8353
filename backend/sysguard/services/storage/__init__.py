from __future__ import annotations

from sysguard.core.config import Settings
from sysguard.services.storage.base import BackupStorage
from sysguard.services.storage.local import LocalBackupStorage


def build_backup_storage(settings: Settings) -> BackupStorage:
    if settings.backup_disk == "s3":
        from sysguard.services.storage.s3 import S3BackupStorage

        client_kwargs: dict[str, object] = {}
        if settings.backup_s3_region:
            client_kwargs["region_name"] = settings.backup_s3_region
        if settings.backup_s3_endpoint_url:
            client_kwargs["endpoint_url"] = settings.backup_s3_endpoint_url
        if settings.backup_s3_access_key and settings.backup_s3_secret_key:
            client_kwargs["aws_access_key_id"] = settings.backup_s3_access_key
            client_kwargs["aws_secret_access_key"] = settings.backup_s3_secret_key
        return S3BackupStorage(
            settings.backup_s3_bucket or "",
            prefix=settings.backup_s3_prefix,
            **client_kwargs,
        )
    return LocalBackupStorage(settings.backup_local_root)


__all__ = ["BackupStorage", "LocalBackupStorage", "build_backup_storage"]
