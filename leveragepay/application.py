"""Application factory driven by environment configuration."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

from fastapi import FastAPI

from .api import create_app
from .config import Settings, load_settings, resolve_database_path
from .database import Database


def build_database(settings: Settings) -> Database:
    return Database(
        resolve_database_path(settings.database_url),
        timeout=settings.db_timeout,
        pool_size=settings.db_pool_size,
    )


def create_application(
    *,
    settings: Optional[Settings] = None,
    config_path: Optional[Path] = None,
) -> FastAPI:
    """Create the ASGI application from settings, loading them from the environment if omitted."""

    config = settings or load_settings(config_path)
    if not config.secret_key:
        raise RuntimeError("LEVERAGEPAY_SECRET_KEY is not set")
    return create_app(database=build_database(config), settings=config)


__all__ = ["build_database", "create_application"]
