from __future__ import annotations

from sysguard.services.backups.manager import BackupManager
from sysguard.services.cache import CacheMaintenance
from sysguard.services.health.service import HealthDiagnostics


def get_backup_manager() -> BackupManager:
    return BackupManager.create()


def get_health_diagnostics() -> HealthDiagnostics:
    return HealthDiagnostics.create()


def get_cache_maintenance() -> CacheMaintenance:
    return CacheMaintenance()


__all__ = ["get_backup_manager", "get_cache_maintenance", "get_health_diagnostics"]
