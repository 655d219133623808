"""
Data-access client: query / exec / prepare / transaction operations.

Every operation that is not a statement or transaction delegate opens its own
pool through ``open_db`` and closes it on every failure path. On success the
pool travels with the returned handle (``Rows``, ``Row``, ``Stmt``, ``Tx``)
and is closed when the caller closes / commits / rolls back that handle;
operations returning plain values close it before returning.
"""

import logging
from collections.abc import Sequence
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Any

from dbaccess import migrate as _migrate
from dbaccess.context import QueryContext
from dbaccess.core.config import Config
from dbaccess.core.pool import ConnectionPool, PoolStats, execute, open_db
from dbaccess.results import Result, Row, Rows, Stmt, Tx, result_from_cursor, validate_statement

_log = logging.getLogger(__name__)

Params = Sequence[Any] | None


@dataclass(frozen=True)
class Client:
    """Immutable wrapper around one ``Config``; safe to share between threads."""

    config: Config

    def _open(self, ctx: QueryContext | None = None) -> ConnectionPool:
        return open_db(self.config, ctx)

    # ------------------------------------------------------------------
    # Health / monitoring
    # ------------------------------------------------------------------

    def conn_check(self) -> tuple[bool, Exception | None]:
        """Open a connection and ping it. Returns (alive, error)."""
        return self._conn_check(None)

    def conn_check_with_context(
        self, ctx: QueryContext
    ) -> tuple[bool, Exception | None]:
        return self._conn_check(ctx)

    def _conn_check(self, ctx: QueryContext | None) -> tuple[bool, Exception | None]:
        try:
            with self._open(ctx) as db:
                db.ping(ctx)
        except Exception as exc:
            _log.debug("Connection check failed for %s: %s", self.config.host, exc)
            return (False, exc)
        return (True, None)

    def get_stats(self) -> PoolStats:
        with self._open() as db:
            return db.stats()

    # ------------------------------------------------------------------
    # Query / exec
    # ------------------------------------------------------------------

    def query(self, query: str, params: Params = None) -> Rows:
        """Run a query; the caller must exhaust or close the returned rows."""
        return self._query(self._open(), None, query, params)

    def query_with_context(
        self, ctx: QueryContext, query: str, params: Params = None
    ) -> Rows:
        return self._query(self._open(ctx), ctx, query, params)

    def query_row(self, query: str, params: Params = None) -> Row:
        """
        Run a query expected to return at most one row.

        Connection errors raise here; query errors and "no rows" surface from
        ``Row.scan()``.
        """
        return self._query_row(self._open(), None, query, params)

    def query_row_with_context(
        self, ctx: QueryContext, query: str, params: Params = None
    ) -> Row:
        return self._query_row(self._open(ctx), ctx, query, params)

    def exec(self, query: str, params: Params = None) -> Result:
        """Run an INSERT / UPDATE / DELETE (or DDL) statement."""
        return self._exec(None, query, params)

    def exec_with_context(
        self, ctx: QueryContext, query: str, params: Params = None
    ) -> Result:
        return self._exec(ctx, query, params)

    @staticmethod
    def _query(
        db: ConnectionPool, ctx: QueryContext | None, query: str, params: Params
    ) -> Rows:
        with ExitStack() as stack:
            stack.callback(db.close)
            pc = stack.enter_context(db.connection(ctx))
            with pc.interruptible(ctx):
                cursor = execute(pc.conn, query, params, stream=True)
            return Rows(cursor, release=stack.pop_all().close, ctx=ctx, pc=pc)

    def _query_row(
        self, db: ConnectionPool, ctx: QueryContext | None, query: str, params: Params
    ) -> Row:
        try:
            return Row(self._query(db, ctx, query, params))
        except Exception as exc:
            return Row(err=exc)

    def _exec(self, ctx: QueryContext | None, query: str, params: Params) -> Result:
        with self._open(ctx) as db, db.connection(ctx) as pc, pc.interruptible(ctx):
            return result_from_cursor(execute(pc.conn, query, params))

    # ------------------------------------------------------------------
    # Prepared statements
    # ------------------------------------------------------------------

    def prepare(self, query: str) -> Stmt:
        """Prepare a reusable statement; the caller must close it."""
        return self._prepare(None, query)

    def prepare_with_context(self, ctx: QueryContext, query: str) -> Stmt:
        return self._prepare(ctx, query)

    def _prepare(self, ctx: QueryContext | None, query: str) -> Stmt:
        db = self._open(ctx)
        try:
            with db.connection(ctx) as pc, pc.interruptible(ctx):
                validate_statement(pc.conn, query)
        except BaseException:
            db.close()
            raise
        return Stmt(query, pool=db, on_close=db.close)

    def stmt_query(self, stmt: Stmt, params: Params = None) -> Rows:
        return stmt.query(params)

    def stmt_query_with_context(
        self, ctx: QueryContext, stmt: Stmt, params: Params = None
    ) -> Rows:
        return stmt.query(params, ctx)

    def stmt_query_row(self, stmt: Stmt, params: Params = None) -> Row:
        return stmt.query_row(params)

    def stmt_query_row_with_context(
        self, ctx: QueryContext, stmt: Stmt, params: Params = None
    ) -> Row:
        return stmt.query_row(params, ctx)

    def stmt_exec(self, stmt: Stmt, params: Params = None) -> Result:
        return stmt.exec(params)

    def stmt_exec_with_context(
        self, ctx: QueryContext, stmt: Stmt, params: Params = None
    ) -> Result:
        return stmt.exec(params, ctx)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def begin_tx(self) -> Tx:
        """
        Start a transaction. The caller must end it with ``tx_commit`` or
        ``tx_rollback`` on every path, including after a failed statement.
        """
        return self._begin_tx(None)

    def begin_tx_with_context(self, ctx: QueryContext) -> Tx:
        return self._begin_tx(ctx)

    def _begin_tx(self, ctx: QueryContext | None) -> Tx:
        with ExitStack() as stack:
            db = self._open(ctx)
            stack.callback(db.close)
            pc = stack.enter_context(db.connection(ctx))
            with pc.interruptible(ctx):
                pc.conn.begin()
            return Tx(pc, release=stack.pop_all().close)

    def tx_prepare(self, tx: Tx, query: str) -> Stmt:
        return tx.prepare(query)

    def tx_prepare_with_context(self, ctx: QueryContext, tx: Tx, query: str) -> Stmt:
        return tx.prepare(query, ctx)

    def tx_query(self, tx: Tx, query: str, params: Params = None) -> Rows:
        return tx.query(query, params)

    def tx_query_with_context(
        self, ctx: QueryContext, tx: Tx, query: str, params: Params = None
    ) -> Rows:
        return tx.query(query, params, ctx)

    def tx_query_row(self, tx: Tx, query: str, params: Params = None) -> Row:
        return tx.query_row(query, params)

    def tx_query_row_with_context(
        self, ctx: QueryContext, tx: Tx, query: str, params: Params = None
    ) -> Row:
        return tx.query_row(query, params, ctx)

    def tx_exec(self, tx: Tx, query: str, params: Params = None) -> Result:
        return tx.exec(query, params)

    def tx_exec_with_context(
        self, ctx: QueryContext, tx: Tx, query: str, params: Params = None
    ) -> Result:
        return tx.exec(query, params, ctx)

    def tx_commit(self, tx: Tx) -> None:
        tx.commit()

    def tx_rollback(self, tx: Tx) -> None:
        tx.rollback()

    # ------------------------------------------------------------------
    # Migrations
    # ------------------------------------------------------------------

    def migrate(self, engine_factory: _migrate.EngineFactory | None = None) -> None:
        """Apply all pending migrations; "no change" is not an error."""
        _migrate.migrate_up(self.config, engine_factory or _migrate.alembic_engine)

    def clean_up(self, engine_factory: _migrate.EngineFactory | None = None) -> None:
        """Revert all migrations; "no change" is not an error."""
        _migrate.migrate_down(self.config, engine_factory or _migrate.alembic_engine)

    def migration_version(
        self, engine_factory: _migrate.EngineFactory | None = None
    ) -> str | None:
        return _migrate.migration_version(
            self.config, engine_factory or _migrate.alembic_engine
        )


def get_client(config: Config) -> Client:
    return Client(config)
