"""Configuration management for the LeveragePay service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

import yaml

# Environment variables are checked in order; the first one that is set wins.
_ENV_VARS: Dict[str, Tuple[str, ...]] = {
    "database_url": ("LEVERAGEPAY_DATABASE_URL", "DATABASE_URL"),
    "host": ("LEVERAGEPAY_HOST",),
    "port": ("PORT", "LEVERAGEPAY_PORT"),
    "secret_key": ("LEVERAGEPAY_SECRET_KEY",),
    "token_ttl_seconds": ("LEVERAGEPAY_TOKEN_TTL",),
    "db_timeout": ("LEVERAGEPAY_DB_TIMEOUT",),
    "db_pool_size": ("LEVERAGEPAY_DB_POOL_SIZE",),
    "password_min_length": ("LEVERAGEPAY_PASSWORD_MIN_LENGTH",),
    "bcrypt_rounds": ("LEVERAGEPAY_BCRYPT_ROUNDS",),
    "cors_origins": ("LEVERAGEPAY_CORS_ORIGINS",),
    "log_level": ("LEVERAGEPAY_LOG_LEVEL",),
}


def _split_origins(value: object) -> Tuple[str, ...]:
    if isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        items = str(value).split(",")
    return tuple(item.strip() for item in items if item.strip())


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the API process."""

    database_url: str = "sqlite:///data/leveragepay.sqlite3"
    host: str = "0.0.0.0"
    port: int = 4000
    secret_key: Optional[str] = None
    token_ttl_seconds: int = 3600
    db_timeout: float = 5.0
    db_pool_size: int = 5
    password_min_length: int = 8
    bcrypt_rounds: int = 12
    cors_origins: Tuple[str, ...] = field(default=("*",))
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not 1 <= self.port <= 65535:
            raise ValueError(f"port must be between 1 and 65535, got {self.port}")
        if self.token_ttl_seconds <= 0:
            raise ValueError("token_ttl_seconds must be positive")
        if self.db_timeout <= 0:
            raise ValueError("db_timeout must be positive")
        if self.db_pool_size < 1:
            raise ValueError("db_pool_size must be at least 1")
        if self.password_min_length < 1:
            raise ValueError("password_min_length must be at least 1")
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("bcrypt_rounds must be between 4 and 31")

    @staticmethod
    def from_dict(data: Mapping[str, object], base: Optional["Settings"] = None) -> "Settings":
        """Create :class:`Settings` from raw values, coercing strings to the field types."""

        known = {item.name for item in fields(Settings)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        values: Dict[str, object] = {}
        for key, raw in data.items():
            if raw is None:
                continue
            if key in {"port", "token_ttl_seconds", "db_pool_size", "password_min_length", "bcrypt_rounds"}:
                values[key] = int(raw)
            elif key == "db_timeout":
                values[key] = float(raw)
            elif key == "cors_origins":
                values[key] = _split_origins(raw)
            elif key == "log_level":
                values[key] = str(raw).strip().upper()
            else:
                values[key] = str(raw)

        return replace(base or Settings(), **values)


def _read_environment(environ: Mapping[str, str]) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for key, names in _ENV_VARS.items():
        for name in names:
            raw = environ.get(name)
            if raw is not None and raw.strip():
                values[key] = raw.strip()
                break
    return values


def load_settings(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from an optional YAML file, then apply environment overrides."""

    env = os.environ if environ is None else environ
    if config_path is None and env.get("LEVERAGEPAY_CONFIG"):
        config_path = Path(env["LEVERAGEPAY_CONFIG"]).expanduser()

    settings = Settings()
    if config_path is not None:
        with config_path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"Configuration file {config_path} must contain a mapping")
        settings = Settings.from_dict(raw, base=settings)

    return Settings.from_dict(_read_environment(env), base=settings)


def resolve_database_path(database_url: str) -> Path:
    """Turn a ``sqlite:///`` URL or plain path into an absolute file path.

    Relative paths are resolved against the project root.
    """

    raw = database_url.strip()
    if raw.startswith("sqlite:///"):
        raw = raw[len("sqlite:///"):]
    elif "://" in raw:
        raise ValueError(f"Unsupported database URL: {database_url}")
    if not raw or raw == ":memory:":
        raise ValueError("A file-backed SQLite database path is required")

    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = Path(__file__).resolve().parent.parent / path
    return path.resolve(strict=False)


__all__ = ["Settings", "load_settings", "resolve_database_path"]
