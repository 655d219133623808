"""Unit tests for core.config: Config defaults and Settings."""

import os
import subprocess
import sys
from pathlib import Path

import pydantic
import pytest

from dbaccess.core.config import (
    CONN_MAX_IDLE_TIME,
    CONN_MAX_LIFETIME,
    DEFAULT_MIGRATION_DIR,
    DEFAULT_MIGRATIONS_TABLE,
    MAX_IDLE_CONNS,
    MAX_OPEN_CONNS,
    Config,
    Settings,
    get_settings,
)


def test_package_defaults() -> None:
    assert MAX_OPEN_CONNS == 10
    assert MAX_IDLE_CONNS == 5
    assert CONN_MAX_LIFETIME == 30.0
    assert CONN_MAX_IDLE_TIME == 1.0


def test_zero_values_use_defaults() -> None:
    c = Config()
    assert c.effective_max_open_conns() == MAX_OPEN_CONNS
    assert c.effective_max_idle_conns() == MAX_IDLE_CONNS
    assert c.effective_conn_max_lifetime() == CONN_MAX_LIFETIME
    assert c.effective_conn_max_idle_time() == CONN_MAX_IDLE_TIME
    assert c.effective_migration_dir() == DEFAULT_MIGRATION_DIR
    assert c.effective_migrations_table() == DEFAULT_MIGRATIONS_TABLE


def test_positive_overrides_win() -> None:
    c = Config(
        max_open_conns=7,
        max_idle_conns=3,
        conn_max_lifetime=120.0,
        conn_max_idle_time=5.0,
        migration_dir="/srv/migrations",
        migrations_table="versions",
    )
    assert c.effective_max_open_conns() == 7
    assert c.effective_max_idle_conns() == 3
    assert c.effective_conn_max_lifetime() == 120.0
    assert c.effective_conn_max_idle_time() == 5.0
    assert c.effective_migration_dir() == "/srv/migrations"
    assert c.effective_migrations_table() == "versions"


def test_negative_overrides_use_defaults() -> None:
    c = Config(max_open_conns=-1, conn_max_lifetime=-3.0)
    assert c.effective_max_open_conns() == MAX_OPEN_CONNS
    assert c.effective_conn_max_lifetime() == CONN_MAX_LIFETIME


def test_config_is_immutable() -> None:
    c = Config(host="a")
    with pytest.raises(pydantic.ValidationError):
        c.host = "b"  # type: ignore[misc]


def test_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DB_HOST", "mysql.internal")
    monkeypatch.setenv("DB_PORT", "3307")
    monkeypatch.setenv("DB_USER", "svc")
    monkeypatch.setenv("DB_NAME", "orders")
    monkeypatch.setenv("DB_PARSE_TIME", "true")
    monkeypatch.setenv("DB_MAX_OPEN_CONNS", "7")
    monkeypatch.setenv("DB_SENTRY_ENABLED", "1")

    c = Settings(_env_file=None).db_config()  # type: ignore[call-arg]

    assert c.host == "mysql.internal"
    assert c.port == 3307
    assert c.user == "svc"
    assert c.name == "orders"
    assert c.parse_time is True
    assert c.max_open_conns == 7
    assert c.sentry_enabled is True
    assert c.tls is False


# ------------------------------------------------------------------
# Reading the environment is deferred to get_settings()
# ------------------------------------------------------------------


def test_no_settings_read_at_import() -> None:
    import dbaccess.core.config as config_module

    assert not hasattr(config_module, "settings")


def test_get_settings_reads_environment_at_call_time(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DB_HOST", "first.local")
    assert get_settings().DB_HOST == "first.local"
    monkeypatch.setenv("DB_HOST", "second.local")
    assert get_settings().DB_HOST == "second.local"


def test_get_settings_rejects_invalid_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DB_TLS", "required")
    with pytest.raises(pydantic.ValidationError):
        get_settings()


def test_import_ignores_invalid_environment() -> None:
    root = Path(__file__).resolve().parents[2]
    proc = subprocess.run(
        [sys.executable, "-c", "import dbaccess, dbaccess.client, dbaccess.migrate"],
        env={**os.environ, "DB_TLS": "required", "DB_PORT": "not-a-port"},
        cwd=root,
        capture_output=True,
        text=True,
        check=False,
    )
    assert proc.returncode == 0, proc.stderr
