from . import admin_backups, health, system

__all__ = [
    "admin_backups",
    "health",
    "system",
]
