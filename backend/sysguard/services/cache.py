from __future__ import annotations

import shutil
from pathlib import Path
from typing import Optional

import redis

from sysguard.core.config import Settings, get_settings
from sysguard.core.redis import get_sync_redis
from sysguard.logging import get_logger

logger = get_logger()


class CacheMaintenance:
    """Invalidates the caches an application restore would leave stale."""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[redis.Redis] = None) -> None:
        self.settings = settings or get_settings()
        self._client = client

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = get_sync_redis()
        return self._client

    def clear_application_cache(self) -> int:
        removed = 0
        pattern = f"{self.settings.cache_prefix}*"
        for key in self.client.scan_iter(match=pattern, count=500):
            removed += int(self.client.delete(key))
        logger.info("cache_cleared", cache="application", keys=removed)
        return removed

    def clear_config_cache(self) -> None:
        get_settings.cache_clear()
        logger.info("cache_cleared", cache="config")

    def clear_view_cache(self) -> int:
        if not self.settings.view_cache_dir:
            return 0
        directory = Path(self.settings.view_cache_dir).expanduser()
        if not directory.is_dir():
            return 0
        removed = 0
        for entry in directory.iterdir():
            if entry.is_dir():
                shutil.rmtree(entry)
            else:
                entry.unlink()
            removed += 1
        logger.info("cache_cleared", cache="views", entries=removed)
        return removed

    def clear_route_cache(self) -> bool:
        if not self.settings.route_cache_file:
            return False
        path = Path(self.settings.route_cache_file).expanduser()
        if not path.exists():
            return False
        path.unlink()
        logger.info("cache_cleared", cache="routes", path=str(path))
        return True

    def clear_all(self) -> dict[str, object]:
        application_keys = self.clear_application_cache()
        self.clear_config_cache()
        return {
            "application_keys": application_keys,
            "config": True,
            "views": self.clear_view_cache(),
            "routes": self.clear_route_cache(),
        }


__all__ = ["CacheMaintenance"]
