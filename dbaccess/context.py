"""
Cancellation context for the ``*_with_context`` client operations.

A ``QueryContext`` is done once it is cancelled or its deadline passes.
Callbacks registered with ``on_done`` fire at that moment (from the
cancelling thread or a timer thread); the connection layer uses them to
interrupt the statement that is in flight.
"""

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

_log = logging.getLogger(__name__)


class QueryCancelledError(RuntimeError):
    """The context was cancelled."""


class DeadlineExceededError(QueryCancelledError, TimeoutError):
    """The context deadline passed."""


class QueryContext:
    """Cancellation signal with an optional deadline.

    Usage::

        with QueryContext(timeout=2.5) as ctx:
            rows = client.query_with_context(ctx, "SELECT SLEEP(10)")

    Leaving the ``with`` block cancels the context and stops its timer.
    Children inherit the earlier of their own and their parent's deadline
    and are cancelled together with the parent.
    """

    def __init__(
        self,
        timeout: float | None = None,
        *,
        parent: "QueryContext | None" = None,
    ) -> None:
        self._lock = threading.Lock()
        self._error: QueryCancelledError | None = None
        self._callbacks: list[Callable[[], Any]] = []
        self._timer: threading.Timer | None = None

        deadline = time.monotonic() + timeout if timeout is not None else None
        if parent is not None and parent.deadline is not None:
            if deadline is None or parent.deadline < deadline:
                deadline = parent.deadline
        self._deadline = deadline

        self._parent = parent
        self._unlink_parent: Callable[[], None] = lambda: None
        if parent is not None:
            self._unlink_parent = parent.on_done(self._cancel_from_parent)

    @property
    def deadline(self) -> float | None:
        """Deadline on the ``time.monotonic()`` clock, or None."""
        return self._deadline

    def remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    @property
    def done(self) -> bool:
        return self.error() is not None

    def error(self) -> QueryCancelledError | None:
        """The reason the context is done, or None while it is still live."""
        with self._lock:
            if self._error is not None:
                return self._error
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._finish(DeadlineExceededError("context deadline exceeded"))
            with self._lock:
                return self._error
        return None

    def raise_if_done(self) -> None:
        err = self.error()
        if err is not None:
            raise err

    def cancel(self) -> None:
        self._finish(QueryCancelledError("context cancelled"))

    def on_done(self, callback: Callable[[], Any]) -> Callable[[], None]:
        """
        Run *callback* when the context becomes done (immediately if it already is).

        Returns a function that unregisters the callback.
        """
        if self.done:
            self._run_callback(callback)
            return lambda: None

        with self._lock:
            if self._error is None:
                self._callbacks.append(callback)
                self._start_timer()
                registered = True
            else:
                registered = False
        if not registered:
            self._run_callback(callback)
            return lambda: None

        def unregister() -> None:
            with self._lock:
                try:
                    self._callbacks.remove(callback)
                except ValueError:
                    pass

        return unregister

    def __enter__(self) -> "QueryContext":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.cancel()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _start_timer(self) -> None:
        # Caller holds self._lock.
        if self._deadline is None or self._timer is not None:
            return
        delay = max(0.0, self._deadline - time.monotonic())
        self._timer = threading.Timer(delay, self._expire)
        self._timer.daemon = True
        self._timer.start()

    def _expire(self) -> None:
        self._finish(DeadlineExceededError("context deadline exceeded"))

    def _cancel_from_parent(self) -> None:
        assert self._parent is not None
        self._finish(self._parent.error() or QueryCancelledError("context cancelled"))

    def _finish(self, error: QueryCancelledError) -> None:
        with self._lock:
            if self._error is not None:
                return
            self._error = error
            callbacks, self._callbacks = self._callbacks, []
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
        self._unlink_parent()
        for callback in callbacks:
            self._run_callback(callback)

    @staticmethod
    def _run_callback(callback: Callable[[], Any]) -> None:
        try:
            callback()
        except Exception:
            _log.warning("Context callback %r failed", callback, exc_info=True)
