"""
Connection pool bound to one driver and DSN.

Opening is lazy: connections are created on demand by ``acquire`` and
returned with ``release``. Limits (max open, max idle, max lifetime, max idle
time) are applied on every checkout and return; expired or broken
connections are closed instead of being handed out again.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from functools import partial
from typing import Any

from dbaccess.context import QueryContext

from .drivers import Driver

_log = logging.getLogger(__name__)

# Go-style default when no max-idle limit was ever set.
_DEFAULT_MAX_IDLE = 2
# Waiters with a context re-check it at least this often.
_WAIT_SLICE = 0.05


class PoolClosedError(RuntimeError):
    """Raised when acquiring from a closed pool."""


@dataclass(frozen=True)
class PoolStats:
    max_open_connections: int
    open_connections: int
    in_use: int
    idle: int
    wait_count: int
    wait_duration: float
    max_idle_closed: int
    max_idle_time_closed: int
    max_lifetime_closed: int


class PooledConnection:
    """A driver connection checked out of a ``ConnectionPool``."""

    def __init__(self, pool: "ConnectionPool", conn: Any) -> None:
        self.pool = pool
        self.conn = conn
        self.created_at = time.monotonic()
        self.returned_at = self.created_at
        # Token of the statement a context may interrupt; guarded by _watch_lock.
        self._watched: object | None = None
        self._watch_lock = threading.Lock()

    @property
    def broken(self) -> bool:
        return not getattr(self.conn, "open", True)

    @contextmanager
    def interruptible(self, ctx: QueryContext | None) -> Iterator[None]:
        """
        Run the enclosed driver call under *ctx*.

        If *ctx* is cancelled or expires meanwhile, the running statement is
        killed server-side and the resulting driver error is replaced by the
        context's own error.
        """
        if ctx is None:
            yield
            return
        ctx.raise_if_done()
        unwatch = self.watch(ctx)
        try:
            yield
        except Exception as exc:
            err = ctx.error()
            if err is not None:
                raise err from exc
            raise
        finally:
            unwatch()

    def watch(self, ctx: QueryContext) -> Callable[[], None]:
        """
        Kill the statement running on this connection once *ctx* is done.

        Returns the function that ends the watch. After it returns no kill is
        sent, even from a context callback that was already running.
        """
        token = object()
        with self._watch_lock:
            self._watched = token
        unregister = ctx.on_done(partial(self._interrupt, token))

        def unwatch() -> None:
            unregister()
            with self._watch_lock:
                if self._watched is token:
                    self._watched = None

        return unwatch

    def _interrupt(self, token: object) -> None:
        # Holding the lock makes unwatch() wait until the kill has completed.
        with self._watch_lock:
            if self._watched is not token:
                return
            try:
                thread_id = int(self.conn.thread_id())
            except Exception:
                _log.warning("Cannot interrupt connection: no thread id", exc_info=True)
                return
            self.pool.kill_query(thread_id)


class ConnectionPool:
    """Thread-safe pool of driver connections."""

    def __init__(self, driver: Driver, dsn: str, *, driver_name: str = "") -> None:
        self._driver = driver
        self._dsn = dsn
        self.driver_name = driver_name
        self._cond = threading.Condition(threading.Lock())
        self._idle: list[PooledConnection] = []
        self._num_open = 0
        self._closed = False

        self._max_open = 0
        self._max_idle = _DEFAULT_MAX_IDLE
        self._max_lifetime = 0.0
        self._max_idle_time = 0.0

        self._wait_count = 0
        self._wait_duration = 0.0
        self._max_idle_closed = 0
        self._max_idle_time_closed = 0
        self._max_lifetime_closed = 0

    # ------------------------------------------------------------------
    # Limits
    # ------------------------------------------------------------------

    @property
    def max_open(self) -> int:
        return self._max_open

    @property
    def max_idle(self) -> int:
        return self._max_idle

    @property
    def conn_max_lifetime(self) -> float:
        return self._max_lifetime

    @property
    def conn_max_idle_time(self) -> float:
        return self._max_idle_time

    def set_max_open_conns(self, n: int) -> None:
        """Limit open connections; ``n <= 0`` means unlimited."""
        with self._cond:
            self._max_open = max(n, 0)
            if self._max_open and self._max_idle > self._max_open:
                self._max_idle = self._max_open
            stale = self._trim_idle()
        self._close_all(stale)

    def set_max_idle_conns(self, n: int) -> None:
        """Limit idle connections kept for reuse; ``n <= 0`` keeps none."""
        with self._cond:
            n = max(n, 0)
            if self._max_open and n > self._max_open:
                n = self._max_open
            self._max_idle = n
            stale = self._trim_idle()
        self._close_all(stale)

    def set_conn_max_lifetime(self, seconds: float) -> None:
        """Close connections older than *seconds*; ``<= 0`` means no limit."""
        with self._cond:
            self._max_lifetime = max(seconds, 0.0)
            stale = self._evict_expired(time.monotonic())
        self._close_all(stale)

    def set_conn_max_idle_time(self, seconds: float) -> None:
        """Close connections idle longer than *seconds*; ``<= 0`` means no limit."""
        with self._cond:
            self._max_idle_time = max(seconds, 0.0)
            stale = self._evict_expired(time.monotonic())
        self._close_all(stale)

    # ------------------------------------------------------------------
    # Checkout / return
    # ------------------------------------------------------------------

    def acquire(self, ctx: QueryContext | None = None) -> PooledConnection:
        """Return an idle connection or open a new one, waiting at max-open."""
        if ctx is not None:
            ctx.raise_if_done()
        stale: list[PooledConnection] = []
        waited_since: float | None = None
        try:
            with self._cond:
                while True:
                    if self._closed:
                        raise PoolClosedError("connection pool is closed")
                    stale.extend(self._evict_expired(time.monotonic()))
                    if self._idle:
                        pc = self._idle.pop()
                        self._end_wait(waited_since)
                        return pc
                    if not self._max_open or self._num_open < self._max_open:
                        self._num_open += 1
                        self._end_wait(waited_since)
                        break
                    if waited_since is None:
                        waited_since = time.monotonic()
                        self._wait_count += 1
                    try:
                        self._wait(ctx)
                    except BaseException:
                        self._end_wait(waited_since)
                        raise
        finally:
            self._close_all(stale)

        try:
            conn = self._driver.open(self._dsn)
        except BaseException:
            with self._cond:
                self._num_open -= 1
                self._cond.notify()
            raise
        _log.debug("Opened connection via driver %s", self.driver_name)
        return PooledConnection(self, conn)

    def release(self, pc: PooledConnection) -> None:
        """Return *pc* to the idle list, or close it if it cannot be kept."""
        now = time.monotonic()
        with self._cond:
            keep = not self._closed and not pc.broken
            if keep and self._lifetime_exceeded(pc, now):
                self._max_lifetime_closed += 1
                keep = False
            if keep and len(self._idle) >= self._max_idle:
                self._max_idle_closed += 1
                keep = False
            if keep:
                pc.returned_at = now
                self._idle.append(pc)
            else:
                self._num_open -= 1
            self._cond.notify()
        if not keep:
            self._close_quiet(pc.conn)

    @contextmanager
    def connection(self, ctx: QueryContext | None = None) -> Iterator[PooledConnection]:
        """Acquire a connection for the duration of the block."""
        pc = self.acquire(ctx)
        try:
            yield pc
        finally:
            self.release(pc)

    def ping(self, ctx: QueryContext | None = None) -> None:
        """Verify the server is reachable; raises the driver error otherwise."""
        with self.connection(ctx) as pc, pc.interruptible(ctx):
            pc.conn.ping(reconnect=False)

    def kill_query(self, thread_id: int) -> None:
        """Abort the statement running on *thread_id* via a side connection."""
        try:
            side = self._driver.open(self._dsn)
        except Exception:
            _log.warning("Cannot open connection to kill query %s", thread_id, exc_info=True)
            return
        try:
            cur = side.cursor()
            cur.execute(f"KILL QUERY {int(thread_id)}")
            cur.close()
            _log.debug("Killed query on connection %s", thread_id)
        except Exception:
            _log.warning("Failed to kill query on connection %s", thread_id, exc_info=True)
        finally:
            self._close_quiet(side)

    # ------------------------------------------------------------------
    # Lifecycle / monitoring
    # ------------------------------------------------------------------

    def stats(self) -> PoolStats:
        """Return pool statistics for monitoring."""
        with self._cond:
            stale = self._evict_expired(time.monotonic())
            idle = len(self._idle)
            stats = PoolStats(
                max_open_connections=self._max_open,
                open_connections=self._num_open,
                in_use=self._num_open - idle,
                idle=idle,
                wait_count=self._wait_count,
                wait_duration=self._wait_duration,
                max_idle_closed=self._max_idle_closed,
                max_idle_time_closed=self._max_idle_time_closed,
                max_lifetime_closed=self._max_lifetime_closed,
            )
        self._close_all(stale)
        return stats

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Close idle connections; in-use ones are closed when released."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            entries, self._idle = self._idle, []
            self._num_open -= len(entries)
            self._cond.notify_all()
        self._close_all(entries)
        _log.debug("Closed connection pool (driver %s)", self.driver_name)

    def __enter__(self) -> "ConnectionPool":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internals (callers hold self._cond unless noted)
    # ------------------------------------------------------------------

    def _wait(self, ctx: QueryContext | None) -> None:
        if ctx is None:
            self._cond.wait()
            return
        ctx.raise_if_done()
        remaining = ctx.remaining()
        timeout = _WAIT_SLICE if remaining is None else min(remaining, _WAIT_SLICE)
        self._cond.wait(timeout)
        ctx.raise_if_done()

    def _end_wait(self, waited_since: float | None) -> None:
        if waited_since is not None:
            self._wait_duration += time.monotonic() - waited_since

    def _lifetime_exceeded(self, pc: PooledConnection, now: float) -> bool:
        return bool(self._max_lifetime) and now - pc.created_at > self._max_lifetime

    def _evict_expired(self, now: float) -> list[PooledConnection]:
        kept: list[PooledConnection] = []
        stale: list[PooledConnection] = []
        for pc in self._idle:
            if self._lifetime_exceeded(pc, now):
                self._max_lifetime_closed += 1
                stale.append(pc)
            elif self._max_idle_time and now - pc.returned_at > self._max_idle_time:
                self._max_idle_time_closed += 1
                stale.append(pc)
            elif pc.broken:
                stale.append(pc)
            else:
                kept.append(pc)
        self._idle = kept
        self._num_open -= len(stale)
        return stale

    def _trim_idle(self) -> list[PooledConnection]:
        excess = len(self._idle) - self._max_idle
        if excess <= 0:
            return []
        stale, self._idle = self._idle[:excess], self._idle[excess:]
        self._max_idle_closed += len(stale)
        self._num_open -= len(stale)
        return stale

    def _close_all(self, entries: list[PooledConnection]) -> None:
        # Called without the lock held.
        for pc in entries:
            self._close_quiet(pc.conn)

    @staticmethod
    def _close_quiet(conn: Any) -> None:
        try:
            conn.close()
        except Exception:
            _log.warning("Error closing connection", exc_info=True)
