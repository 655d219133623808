"""Command line entry point with a mocked client."""

import json
from collections.abc import Iterator
from unittest.mock import MagicMock, patch

import pytest

from dbaccess import __main__ as cli
from dbaccess.core.config import Settings
from dbaccess.core.pool import PoolStats


@pytest.fixture(autouse=True)
def cli_settings(monkeypatch: pytest.MonkeyPatch) -> Settings:
    s = Settings(_env_file=None, DB_HOST="db.local", DB_NAME="shop", SENTRY_DSN=None)  # type: ignore[call-arg]
    monkeypatch.setattr(cli, "get_settings", lambda: s)
    return s


@pytest.fixture
def client_cls() -> Iterator[MagicMock]:
    with patch("dbaccess.__main__.Client") as mock_cls:
        yield mock_cls


def test_check_ok(client_cls: MagicMock, capsys: pytest.CaptureFixture[str]) -> None:
    client_cls.return_value.conn_check.return_value = (True, None)
    assert cli.main(["check"]) == 0
    assert capsys.readouterr().out.strip() == "ok"
    config = client_cls.call_args.args[0]
    assert config.host == "db.local"
    assert config.name == "shop"


def test_check_failure(client_cls: MagicMock) -> None:
    client_cls.return_value.conn_check.return_value = (False, OSError("unreachable"))
    assert cli.main(["check"]) == 1


def test_stats_prints_json(client_cls: MagicMock, capsys: pytest.CaptureFixture[str]) -> None:
    client_cls.return_value.get_stats.return_value = PoolStats(
        max_open_connections=10,
        open_connections=1,
        in_use=0,
        idle=1,
        wait_count=0,
        wait_duration=0.0,
        max_idle_closed=0,
        max_idle_time_closed=0,
        max_lifetime_closed=0,
    )
    assert cli.main(["stats"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["max_open_connections"] == 10
    assert data["idle"] == 1


def test_migrate_up_and_down(client_cls: MagicMock) -> None:
    assert cli.main(["migrate"]) == 0
    client_cls.return_value.migrate.assert_called_once_with()
    assert cli.main(["migrate", "--down"]) == 0
    client_cls.return_value.clean_up.assert_called_once_with()


def test_migration_files_override(client_cls: MagicMock) -> None:
    assert cli.main(["--migration-files", "/srv/migrations", "migrate"]) == 0
    config = client_cls.call_args.args[0]
    assert config.migration_dir == "/srv/migrations"


def test_migrate_failure_returns_1(client_cls: MagicMock) -> None:
    client_cls.return_value.migrate.side_effect = RuntimeError("bad revision")
    assert cli.main(["migrate"]) == 1


def test_version(client_cls: MagicMock, capsys: pytest.CaptureFixture[str]) -> None:
    client_cls.return_value.migration_version.return_value = "0002"
    assert cli.main(["version"]) == 0
    assert capsys.readouterr().out.strip() == "0002"

    client_cls.return_value.migration_version.return_value = None
    assert cli.main(["version"]) == 0
    assert capsys.readouterr().out.strip() == "none"


def test_sentry_initialised_when_dsn_set(
    client_cls: MagicMock, cli_settings: Settings, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(cli_settings, "SENTRY_DSN", "https://key@sentry.example/1")
    client_cls.return_value.conn_check.return_value = (True, None)
    with patch("dbaccess.__main__.sentry_sdk.init") as mock_init:
        assert cli.main(["check"]) == 0
    mock_init.assert_called_once_with(dsn="https://key@sentry.example/1", enable_tracing=True)


def test_command_required() -> None:
    with pytest.raises(SystemExit):
        cli.main([])


def test_invalid_environment_exits_with_usage_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.undo()
    monkeypatch.setenv("DB_TLS", "required")
    with pytest.raises(SystemExit) as exc_info:
        cli.main(["check"])
    assert exc_info.value.code == 2
