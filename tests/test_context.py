"""Unit tests for QueryContext cancellation and deadlines."""

import threading
import time

import pytest

from dbaccess.context import DeadlineExceededError, QueryCancelledError, QueryContext


def test_live_context() -> None:
    ctx = QueryContext()
    assert not ctx.done
    assert ctx.error() is None
    assert ctx.deadline is None
    assert ctx.remaining() is None
    ctx.raise_if_done()


def test_cancel() -> None:
    ctx = QueryContext()
    ctx.cancel()
    assert ctx.done
    with pytest.raises(QueryCancelledError):
        ctx.raise_if_done()
    assert not isinstance(ctx.error(), DeadlineExceededError)


def test_deadline_passes() -> None:
    ctx = QueryContext(timeout=0.01)
    time.sleep(0.02)
    assert isinstance(ctx.error(), DeadlineExceededError)
    assert isinstance(ctx.error(), TimeoutError)
    assert ctx.remaining() == 0.0


def test_first_reason_wins() -> None:
    ctx = QueryContext(timeout=0.01)
    time.sleep(0.02)
    ctx.cancel()
    assert isinstance(ctx.error(), DeadlineExceededError)


def test_on_done_fires_on_cancel() -> None:
    ctx = QueryContext()
    fired = []
    ctx.on_done(lambda: fired.append(1))
    ctx.cancel()
    ctx.cancel()
    assert fired == [1]


def test_on_done_fires_from_timer() -> None:
    ctx = QueryContext(timeout=0.02)
    fired = threading.Event()
    ctx.on_done(fired.set)
    assert fired.wait(timeout=2)
    assert isinstance(ctx.error(), DeadlineExceededError)


def test_on_done_after_done_runs_immediately() -> None:
    ctx = QueryContext()
    ctx.cancel()
    fired = []
    ctx.on_done(lambda: fired.append(1))
    assert fired == [1]


def test_unregister() -> None:
    ctx = QueryContext()
    fired = []
    unregister = ctx.on_done(lambda: fired.append(1))
    unregister()
    unregister()
    ctx.cancel()
    assert fired == []


def test_failing_callback_does_not_stop_others() -> None:
    ctx = QueryContext()
    fired = []

    def bad() -> None:
        raise RuntimeError("boom")

    ctx.on_done(bad)
    ctx.on_done(lambda: fired.append(1))
    ctx.cancel()
    assert fired == [1]


def test_with_block_cancels_on_exit() -> None:
    with QueryContext(timeout=60) as ctx:
        assert not ctx.done
    assert ctx.done


def test_child_inherits_earlier_deadline() -> None:
    parent = QueryContext(timeout=1)
    child = QueryContext(timeout=60, parent=parent)
    assert child.deadline == parent.deadline
    sooner = QueryContext(timeout=0.5, parent=parent)
    assert sooner.deadline is not None and parent.deadline is not None
    assert sooner.deadline < parent.deadline
    parent.cancel()


def test_parent_cancel_propagates() -> None:
    parent = QueryContext()
    child = QueryContext(parent=parent)
    parent.cancel()
    assert child.done
    assert isinstance(child.error(), QueryCancelledError)


def test_child_cancel_leaves_parent_live() -> None:
    parent = QueryContext()
    child = QueryContext(parent=parent)
    child.cancel()
    assert not parent.done


def test_child_of_done_parent_is_done() -> None:
    parent = QueryContext()
    parent.cancel()
    assert QueryContext(parent=parent).done
