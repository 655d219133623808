"""
Handles returned by the data-access client: rows, single row, exec result,
prepared statement and transaction.

Whoever receives a ``Rows``, ``Stmt`` or ``Tx`` owns the connection behind
it and must close / commit / roll it back. ``Row`` closes itself on ``scan``.
"""

import logging
import threading
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from functools import partial
from typing import Any

from dbaccess.context import QueryContext
from dbaccess.core.pool import ConnectionPool, PooledConnection, execute

_log = logging.getLogger(__name__)

_PREPARE_CHECK = "PREPARE dbaccess_check FROM ?"
_DEALLOCATE_CHECK = "DEALLOCATE PREPARE dbaccess_check"


class NoRowsError(LookupError):
    """``Row.scan`` found no row."""


class TxDoneError(RuntimeError):
    """The transaction was already committed or rolled back."""


class StmtClosedError(RuntimeError):
    """The prepared statement was closed."""


@dataclass(frozen=True)
class Result:
    rows_affected: int
    last_insert_id: int


def result_from_cursor(cursor: Any) -> Result:
    """Build a ``Result`` from an executed cursor and close the cursor."""
    try:
        rowcount = cursor.rowcount
        return Result(
            rows_affected=rowcount if rowcount is not None and rowcount >= 0 else 0,
            last_insert_id=cursor.lastrowid or 0,
        )
    finally:
        cursor.close()


class Rows:
    """
    Forward-only, single-pass iterator over a result set.

    Iterating yields one tuple per row. The rows hold a connection until they
    are exhausted or ``close()`` is called; ``release`` is invoked exactly once
    at that point.

    With a ``ctx``, the rows stay bound to it until closed: once it is done
    the next fetch closes the rows and raises the context's error, and if
    ``pc`` is given the statement still streaming on it is killed.
    """

    def __init__(
        self,
        cursor: Any,
        *,
        release: Callable[[], None] | None = None,
        ctx: QueryContext | None = None,
        pc: PooledConnection | None = None,
    ) -> None:
        self._cursor = cursor
        self._release = release
        self._ctx = ctx
        self._closed = False
        desc = cursor.description
        self.columns: list[str] = [d[0] for d in desc] if desc else []
        self._unwatch = pc.watch(ctx) if ctx is not None and pc is not None else None

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self) -> "Rows":
        return self

    def __next__(self) -> tuple[Any, ...]:
        if self._closed:
            raise StopIteration
        if self._ctx is not None:
            err = self._ctx.error()
            if err is not None:
                self.close()
                raise err
        try:
            row = self._cursor.fetchone()
        except BaseException as exc:
            self.close()
            err = self._ctx.error() if self._ctx is not None else None
            if err is not None:
                raise err from exc
            raise
        if row is None:
            self.close()
            raise StopIteration
        return tuple(row)

    def dicts(self) -> Iterator[dict[str, Any]]:
        """Iterate the remaining rows as column-name dicts."""
        for row in self:
            yield dict(zip(self.columns, row, strict=True))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._unwatch is not None:
            self._unwatch()
        try:
            self._cursor.close()
        except Exception:
            _log.warning("Error closing result cursor", exc_info=True)
        finally:
            if self._release is not None:
                self._release()

    def __enter__(self) -> "Rows":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class Row:
    """
    Result of a single-row query.

    Query errors and "no rows" are deferred until ``scan()``.
    """

    def __init__(self, rows: Rows | None = None, *, err: BaseException | None = None) -> None:
        self._rows = rows
        self._err = err
        self._row: tuple[Any, ...] | None = None

    @property
    def err(self) -> BaseException | None:
        return self._err

    @property
    def columns(self) -> list[str]:
        return self._rows.columns if self._rows is not None else []

    def scan(self) -> tuple[Any, ...]:
        """Return the first row; raise the query error or ``NoRowsError``."""
        if self._err is not None:
            raise self._err
        if self._row is None and self._rows is not None:
            with self._rows as rows:
                self._row = next(rows, None)
        if self._row is None:
            raise NoRowsError("no rows in result set")
        return self._row


def validate_statement(conn: Any, sql: str) -> None:
    """Have the server parse *sql* so syntax errors surface at prepare time."""
    execute(conn, _PREPARE_CHECK, [sql]).close()
    execute(conn, _DEALLOCATE_CHECK).close()


class Stmt:
    """
    Prepared statement, reusable with different parameter sets.

    Bound to a pool (each call checks out its own connection) or to a
    transaction (calls run on the transaction's connection).
    """

    def __init__(
        self,
        sql: str,
        *,
        pool: ConnectionPool | None = None,
        tx: "Tx | None" = None,
        on_close: Callable[[], None] | None = None,
    ) -> None:
        if (pool is None) == (tx is None):
            raise ValueError("Stmt needs exactly one of pool or tx")
        self.sql = sql
        self._pool = pool
        self._tx = tx
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def query(
        self, params: Sequence[Any] | None = None, ctx: QueryContext | None = None
    ) -> Rows:
        self._check_open()
        if self._tx is not None:
            return self._tx.query(self.sql, params, ctx)
        assert self._pool is not None
        pc = self._pool.acquire(ctx)
        try:
            with pc.interruptible(ctx):
                cursor = execute(pc.conn, self.sql, params, stream=True)
        except BaseException:
            self._pool.release(pc)
            raise
        return Rows(cursor, release=partial(self._pool.release, pc), ctx=ctx, pc=pc)

    def query_row(
        self, params: Sequence[Any] | None = None, ctx: QueryContext | None = None
    ) -> Row:
        try:
            return Row(self.query(params, ctx))
        except Exception as exc:
            return Row(err=exc)

    def exec(
        self, params: Sequence[Any] | None = None, ctx: QueryContext | None = None
    ) -> Result:
        self._check_open()
        if self._tx is not None:
            return self._tx.exec(self.sql, params, ctx)
        assert self._pool is not None
        with self._pool.connection(ctx) as pc, pc.interruptible(ctx):
            return result_from_cursor(execute(pc.conn, self.sql, params))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._on_close is not None:
            self._on_close()

    def __enter__(self) -> "Stmt":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _check_open(self) -> None:
        if self._closed:
            raise StmtClosedError("statement is closed")


class Tx:
    """
    An open transaction on one pooled connection.

    Must be ended by exactly one ``commit()`` or ``rollback()``; nothing rolls
    it back implicitly, not even a failed statement or a cancelled context.
    """

    def __init__(self, pc: PooledConnection, *, release: Callable[[], None]) -> None:
        self._pc = pc
        self._release = release
        self._done = False
        self._lock = threading.Lock()

    @property
    def done(self) -> bool:
        return self._done

    def query(
        self,
        sql: str,
        params: Sequence[Any] | None = None,
        ctx: QueryContext | None = None,
    ) -> Rows:
        pc = self._active()
        with pc.interruptible(ctx):
            return Rows(execute(pc.conn, sql, params), ctx=ctx)

    def query_row(
        self,
        sql: str,
        params: Sequence[Any] | None = None,
        ctx: QueryContext | None = None,
    ) -> Row:
        try:
            return Row(self.query(sql, params, ctx))
        except Exception as exc:
            return Row(err=exc)

    def exec(
        self,
        sql: str,
        params: Sequence[Any] | None = None,
        ctx: QueryContext | None = None,
    ) -> Result:
        pc = self._active()
        with pc.interruptible(ctx):
            return result_from_cursor(execute(pc.conn, sql, params))

    def prepare(self, sql: str, ctx: QueryContext | None = None) -> Stmt:
        pc = self._active()
        with pc.interruptible(ctx):
            validate_statement(pc.conn, sql)
        return Stmt(sql, tx=self)

    def commit(self) -> None:
        self._finish("commit")

    def rollback(self) -> None:
        self._finish("rollback")

    def _active(self) -> PooledConnection:
        if self._done:
            raise TxDoneError("transaction has already been committed or rolled back")
        return self._pc

    def _finish(self, action: str) -> None:
        with self._lock:
            self._active()
            self._done = True
        try:
            getattr(self._pc.conn, action)()
        finally:
            self._release()
