import threading
import time

from a11yscan.cancel import CancellationToken, WaitResult


def test_sleep_completes_without_cancel():
    assert CancellationToken().sleep(0.01) is WaitResult.OK


def test_sleep_is_interrupted_by_cancel():
    token = CancellationToken()
    threading.Timer(0.05, token.cancel).start()
    t0 = time.monotonic()
    assert token.sleep(30) is WaitResult.CANCELLED
    assert time.monotonic() - t0 < 5


def test_callbacks_fire_once_and_late_registration_runs_immediately():
    token = CancellationToken()
    hits = []
    token.register(lambda: hits.append("a"))
    unregister = token.register(lambda: hits.append("b"))
    unregister()

    token.cancel()
    token.cancel()
    assert hits == ["a"]

    token.register(lambda: hits.append("late"))
    assert hits == ["a", "late"]


def test_child_follows_parent_but_not_the_other_way():
    parent = CancellationToken()
    child = parent.child()
    child.cancel()
    assert child.cancelled and not parent.cancelled

    other = parent.child()
    parent.cancel()
    assert other.cancelled


def test_detached_child_ignores_parent():
    parent = CancellationToken()
    child = parent.child()
    child.detach()
    parent.cancel()
    assert not child.cancelled
