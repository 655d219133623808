"""
Connection provider: DSN -> driver -> pinged, limit-configured pool.

Statements use ``?`` positional placeholders (see ``dbaccess.query_builder``);
``execute`` converts them to pymysql's ``%s`` style when parameters are given.
"""

import logging
from collections.abc import Sequence
from typing import Any

import pymysql.cursors

from dbaccess.context import QueryContext
from dbaccess.core.config import Config
from dbaccess.core.dsn import build_dsn

from .drivers import DEFAULT_DRIVER, SENTRY_DRIVER, get_driver
from .manager import ConnectionPool

_log = logging.getLogger(__name__)


def driver_name(config: Config) -> str:
    return SENTRY_DRIVER if config.sentry_enabled else DEFAULT_DRIVER


def open_db(config: Config, ctx: QueryContext | None = None) -> ConnectionPool:
    """
    Open a pool for *config*, verify it with a ping and apply pool limits.

    Errors from the driver (bad DSN, unreachable host, auth) are raised as-is;
    nothing is retried. The caller owns the returned pool and must close it.
    """
    name = driver_name(config)
    pool = ConnectionPool(get_driver(name), build_dsn(config), driver_name=name)
    try:
        pool.ping(ctx)
    except BaseException:
        pool.close()
        raise

    pool.set_max_open_conns(config.effective_max_open_conns())
    pool.set_max_idle_conns(config.effective_max_idle_conns())
    pool.set_conn_max_lifetime(config.effective_conn_max_lifetime())
    pool.set_conn_max_idle_time(config.effective_conn_max_idle_time())
    _log.debug(
        "Opened pool host=%s db=%s driver=%s max_open=%s max_idle=%s",
        config.host,
        config.name,
        name,
        pool.max_open,
        pool.max_idle,
    )
    return pool


def execute(
    conn: Any,
    sql: str,
    params: Sequence[Any] | None = None,
    *,
    stream: bool = False,
) -> Any:
    """
    Execute one statement and return the cursor.

    - params: positional values for the ``?`` placeholders in *sql*.
    - stream: use an unbuffered cursor; rows are read from the server as the
      caller iterates, and the connection stays busy until the cursor is closed.
    """
    cur = conn.cursor(pymysql.cursors.SSCursor) if stream else conn.cursor()
    try:
        if params:
            cur.execute(qmark_to_format(sql), tuple(params))
        else:
            cur.execute(sql)
    except BaseException:
        try:
            cur.close()
        except Exception:
            _log.warning("Error closing cursor", exc_info=True)
        raise
    return cur


def qmark_to_format(sql: str) -> str:
    """Rewrite ``?`` placeholders to ``%s`` and escape literal ``%``.

    Question marks inside quoted strings, backquoted identifiers and comments
    are left alone.
    """
    out: list[str] = []
    i = 0
    length = len(sql)

    while i < length:
        ch = sql[i]

        if ch in ("'", '"', "`"):
            quote = ch
            out.append(ch)
            i += 1
            while i < length:
                c = sql[i]
                out.append("%%" if c == "%" else c)
                if c == quote:
                    if i + 1 < length and sql[i + 1] == quote:
                        out.append(sql[i + 1])
                        i += 2
                        continue
                    i += 1
                    break
                if c == "\\" and quote != "`" and i + 1 < length:
                    nxt = sql[i + 1]
                    out.append("%%" if nxt == "%" else nxt)
                    i += 2
                    continue
                i += 1
            continue

        # MySQL only treats "--" as a comment when whitespace or a control
        # character follows it.
        if ch == "#" or (
            ch == "-" and sql.startswith("--", i) and _dash_comment_ends(sql, i + 2)
        ):
            end = sql.find("\n", i)
            end = length if end == -1 else end + 1
            out.append(sql[i:end].replace("%", "%%"))
            i = end
            continue

        if ch == "/" and sql.startswith("/*", i):
            end = sql.find("*/", i + 2)
            end = length if end == -1 else end + 2
            out.append(sql[i:end].replace("%", "%%"))
            i = end
            continue

        if ch == "?":
            out.append("%s")
        elif ch == "%":
            out.append("%%")
        else:
            out.append(ch)
        i += 1

    return "".join(out)


def _dash_comment_ends(sql: str, i: int) -> bool:
    return i >= len(sql) or sql[i].isspace() or sql[i] < " "
