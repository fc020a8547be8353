from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from sysguard.core.config import get_settings
from sysguard.observability.metrics import instrument_engine


def build_engine(database_url: str) -> Engine:
    connect_args: dict[str, Any] = {}
    engine_kwargs: dict[str, Any] = {
        "future": True,
        "connect_args": connect_args,
    }

    if database_url.startswith(("postgresql", "postgres")):
        connect_args["options"] = "-c timezone=utc"
        engine_kwargs.update({
            "pool_pre_ping": True,
            "pool_size": 5,
            "max_overflow": 10,
            "pool_timeout": 30,
            "pool_recycle": 1800,
        })
    elif database_url.startswith("mysql"):
        engine_kwargs.update({
            "pool_pre_ping": True,
            "pool_recycle": 1800,
        })
    elif database_url.startswith("sqlite"):
        engine_kwargs.update({
            "connect_args": {"check_same_thread": False},
        })

    engine = create_engine(database_url, **engine_kwargs)
    instrument_engine(engine)
    return engine


settings = get_settings()
engine = build_engine(settings.database_url)


def get_engine() -> Engine:
    return engine


__all__ = ["build_engine", "engine", "get_engine"]
