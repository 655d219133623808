"""
MySQL access layer: pooled connections, a uniform query / exec / prepared
statement / transaction surface, INSERT placeholder helpers and alembic
migrations.
"""

from dbaccess.client import Client, get_client
from dbaccess.context import DeadlineExceededError, QueryCancelledError, QueryContext
from dbaccess.core.config import (
    CONN_MAX_IDLE_TIME,
    CONN_MAX_LIFETIME,
    DEFAULT_MIGRATION_DIR,
    DEFAULT_MIGRATIONS_TABLE,
    MAX_IDLE_CONNS,
    MAX_OPEN_CONNS,
    Config,
)
from dbaccess.core.dsn import InvalidDSNError, build_dsn, build_parameters
from dbaccess.core.pool import PoolClosedError, PoolStats, UnknownDriverError
from dbaccess.migrate import NoChangeError
from dbaccess.query_builder import prepare_batch_insert_columns, prepare_insert_column
from dbaccess.results import (
    NoRowsError,
    Result,
    Row,
    Rows,
    Stmt,
    StmtClosedError,
    Tx,
    TxDoneError,
)

__all__ = [
    "Client",
    "get_client",
    "Config",
    "QueryContext",
    "QueryCancelledError",
    "DeadlineExceededError",
    "MAX_OPEN_CONNS",
    "MAX_IDLE_CONNS",
    "CONN_MAX_LIFETIME",
    "CONN_MAX_IDLE_TIME",
    "DEFAULT_MIGRATION_DIR",
    "DEFAULT_MIGRATIONS_TABLE",
    "build_dsn",
    "build_parameters",
    "InvalidDSNError",
    "PoolClosedError",
    "PoolStats",
    "UnknownDriverError",
    "NoChangeError",
    "prepare_insert_column",
    "prepare_batch_insert_columns",
    "NoRowsError",
    "Result",
    "Row",
    "Rows",
    "Stmt",
    "StmtClosedError",
    "Tx",
    "TxDoneError",
]
