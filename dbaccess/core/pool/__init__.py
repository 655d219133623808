"""
Connection pooling for the MySQL access layer.

pymysql does the wire protocol behind a small driver registry; a ``Config``
is enough to get a pinged, limit-configured ``ConnectionPool`` via ``open_db``.
"""

from .connect import driver_name, execute, open_db, qmark_to_format
from .drivers import (
    DEFAULT_DRIVER,
    SENTRY_DRIVER,
    Driver,
    UnknownDriverError,
    get_driver,
    register_driver,
)
from .manager import ConnectionPool, PoolClosedError, PooledConnection, PoolStats

__all__ = [
    "open_db",
    "driver_name",
    "execute",
    "qmark_to_format",
    "Driver",
    "DEFAULT_DRIVER",
    "SENTRY_DRIVER",
    "UnknownDriverError",
    "get_driver",
    "register_driver",
    "ConnectionPool",
    "PooledConnection",
    "PoolClosedError",
    "PoolStats",
]
