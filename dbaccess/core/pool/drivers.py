"""
SQL driver registry.

A driver turns a DSN into a live DB-API connection. Two are registered:

- ``mysql``: plain pymysql
- ``sentrymysql``: pymysql with a sentry span around every statement
"""

import logging
import threading
from typing import Any, Protocol, runtime_checkable

import pymysql
import pymysql.converters
import sentry_sdk
from pymysql.constants import FIELD_TYPE

from dbaccess.core.dsn import DSN, InvalidDSNError, parse_dsn, parse_duration

_log = logging.getLogger(__name__)

DEFAULT_DRIVER = "mysql"
SENTRY_DRIVER = "sentrymysql"

_TIME_TYPES = (
    FIELD_TYPE.DATE,
    FIELD_TYPE.DATETIME,
    FIELD_TYPE.TIMESTAMP,
    FIELD_TYPE.TIME,
    FIELD_TYPE.NEWDATE,
)

_TIMEOUT_PARAMS = {
    "timeout": "connect_timeout",
    "readTimeout": "read_timeout",
    "writeTimeout": "write_timeout",
}


class UnknownDriverError(LookupError):
    """Raised when no driver is registered under the requested name."""


@runtime_checkable
class Driver(Protocol):
    """Opens connections for a DSN.

    Returned connections follow DB-API 2 and also provide ``ping(reconnect)``,
    ``begin()``, ``thread_id()`` and an ``open`` attribute, as pymysql does.
    """

    def open(self, dsn: str) -> Any:
        """Open and return a new connection."""


def _connect_kwargs(dsn: DSN) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "host": dsn.host,
        "port": dsn.port,
        "user": dsn.user,
        "password": dsn.password,
        "database": dsn.database or None,
        "autocommit": True,
    }

    parse_time = False
    for key, value in dsn.params.items():
        if key == "parseTime":
            parse_time = _parse_bool(key, value)
        elif key == "tls":
            if _parse_bool(key, value):
                kwargs["ssl_verify_cert"] = True
                kwargs["ssl_verify_identity"] = True
        elif key in _TIMEOUT_PARAMS:
            seconds = parse_duration(value)
            if seconds > 0:  # 0 means no timeout
                kwargs[_TIMEOUT_PARAMS[key]] = seconds
        elif key == "charset":
            kwargs["charset"] = value
        elif key == "collation":
            kwargs["collation"] = value
        else:
            raise InvalidDSNError(f"unsupported DSN parameter: {key}")

    if not parse_time:
        # Without parseTime, temporal columns come back as their text form.
        conv = dict(pymysql.converters.conversions)
        for t in _TIME_TYPES:
            conv.pop(t, None)
        kwargs["conv"] = conv
    return kwargs


def _parse_bool(key: str, value: str) -> bool:
    v = value.strip().lower()
    if v in ("true", "1"):
        return True
    if v in ("false", "0"):
        return False
    raise InvalidDSNError(f"invalid value for {key}: {value!r}")


class PyMySQLDriver:
    """Driver backed by pymysql."""

    def open(self, dsn: str) -> Any:
        return pymysql.connect(**_connect_kwargs(parse_dsn(dsn)))


class _SentryCursor:
    def __init__(self, cursor: Any) -> None:
        self._cursor = cursor

    def execute(self, query: str, args: Any = None) -> Any:
        with sentry_sdk.start_span(op="db", name=query) as span:
            span.set_data("db.system", "mysql")
            return self._cursor.execute(query, args)

    def executemany(self, query: str, args: Any) -> Any:
        with sentry_sdk.start_span(op="db", name=query) as span:
            span.set_data("db.system", "mysql")
            return self._cursor.executemany(query, args)

    def __iter__(self) -> Any:
        return iter(self._cursor)

    def __getattr__(self, name: str) -> Any:
        return getattr(self._cursor, name)


class _SentryConnection:
    def __init__(self, conn: Any) -> None:
        self.wrapped = conn

    def cursor(self, *args: Any) -> _SentryCursor:
        return _SentryCursor(self.wrapped.cursor(*args))

    def __getattr__(self, name: str) -> Any:
        return getattr(self.wrapped, name)


class SentryMySQLDriver(PyMySQLDriver):
    """pymysql driver reporting each statement as a sentry ``db`` span."""

    def open(self, dsn: str) -> Any:
        with sentry_sdk.start_span(op="db.connect", name="mysql connect"):
            return _SentryConnection(super().open(dsn))


def unwrap(conn: Any) -> Any:
    """Return the underlying driver connection of an instrumented one."""
    return getattr(conn, "wrapped", conn)


_drivers: dict[str, Driver] = {
    DEFAULT_DRIVER: PyMySQLDriver(),
    SENTRY_DRIVER: SentryMySQLDriver(),
}
_drivers_lock = threading.Lock()


def register_driver(name: str, driver: Driver, *, replace: bool = False) -> None:
    """Register *driver* under *name*. Re-registering requires ``replace=True``."""
    with _drivers_lock:
        if name in _drivers and not replace:
            raise ValueError(f"driver already registered: {name}")
        _drivers[name] = driver
    _log.debug("Registered SQL driver %s", name)


def get_driver(name: str) -> Driver:
    with _drivers_lock:
        driver = _drivers.get(name)
    if driver is None:
        raise UnknownDriverError(f"unknown driver {name!r} (forgotten import?)")
    return driver


def drivers() -> list[str]:
    with _drivers_lock:
        return sorted(_drivers)
