from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from leveragepay.config import Settings, load_settings, resolve_database_path


def test_defaults_without_environment() -> None:
    settings = load_settings(environ={})

    assert settings == Settings()
    assert settings.port == 4000
    assert settings.secret_key is None
    assert settings.cors_origins == ("*",)


def test_environment_overrides() -> None:
    settings = load_settings(
        environ={
            "DATABASE_URL": "sqlite:////tmp/payments.sqlite3",
            "PORT": "8080",
            "LEVERAGEPAY_SECRET_KEY": "s3cret",
            "LEVERAGEPAY_TOKEN_TTL": "120",
            "LEVERAGEPAY_DB_TIMEOUT": "2.5",
            "LEVERAGEPAY_CORS_ORIGINS": "https://a.example, https://b.example",
            "LEVERAGEPAY_LOG_LEVEL": "debug",
        }
    )

    assert settings.database_url == "sqlite:////tmp/payments.sqlite3"
    assert settings.port == 8080
    assert settings.secret_key == "s3cret"
    assert settings.token_ttl_seconds == 120
    assert settings.db_timeout == 2.5
    assert settings.cors_origins == ("https://a.example", "https://b.example")
    assert settings.log_level == "DEBUG"


def test_prefixed_database_url_wins_over_generic() -> None:
    settings = load_settings(
        environ={
            "LEVERAGEPAY_DATABASE_URL": "sqlite:///specific.sqlite3",
            "DATABASE_URL": "sqlite:///generic.sqlite3",
        }
    )
    assert settings.database_url == "sqlite:///specific.sqlite3"


def test_yaml_file_then_environment(tmp_path: Path) -> None:
    config_path = tmp_path / "leveragepay.yaml"
    config_path.write_text(
        textwrap.dedent(
            """
            port: 5000
            secret_key: from-file
            cors_origins:
              - https://app.example
            """
        ),
        encoding="utf-8",
    )

    settings = load_settings(environ={"LEVERAGEPAY_CONFIG": str(config_path), "PORT": "6000"})

    assert settings.port == 6000
    assert settings.secret_key == "from-file"
    assert settings.cors_origins == ("https://app.example",)


def test_unknown_yaml_keys_are_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "bad.yaml"
    config_path.write_text("listen_port: 1\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_settings(config_path, environ={})


@pytest.mark.parametrize(
    "environ",
    [
        {"PORT": "0"},
        {"PORT": "not-a-number"},
        {"LEVERAGEPAY_TOKEN_TTL": "-1"},
        {"LEVERAGEPAY_DB_POOL_SIZE": "0"},
        {"LEVERAGEPAY_BCRYPT_ROUNDS": "2"},
    ],
)
def test_invalid_values_raise(environ) -> None:
    with pytest.raises(ValueError):
        load_settings(environ=environ)


def test_resolve_database_path() -> None:
    assert resolve_database_path("sqlite:////var/lib/pay.sqlite3") == Path("/var/lib/pay.sqlite3")
    assert resolve_database_path("/var/lib/pay.sqlite3") == Path("/var/lib/pay.sqlite3")

    relative = resolve_database_path("sqlite:///data/pay.sqlite3")
    assert relative.is_absolute()
    assert relative.parts[-2:] == ("data", "pay.sqlite3")

    with pytest.raises(ValueError):
        resolve_database_path("postgresql://localhost/pay")
    with pytest.raises(ValueError):
        resolve_database_path(":memory:")
