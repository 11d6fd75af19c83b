from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from adguardfilter.scheduling.timer import TimerNotFoundError, TimerRegistry, TimerValidationError

SHORT = timedelta(milliseconds=50)
LONG = timedelta(minutes=10)


class _Counter:
    def __init__(self) -> None:
        self.calls = 0
        self.fired = threading.Event()
        self._lock = threading.Lock()

    def __call__(self) -> None:
        with self._lock:
            self.calls += 1
        self.fired.set()


def _wait_until(predicate, timeout: float = 2.0) -> bool:
    end = time.monotonic() + timeout
    while time.monotonic() < end:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_create_with_duration_is_active_with_expected_expiry() -> None:
    registry = TimerRegistry()
    before = datetime.now(timezone.utc)
    timer = registry.create_with_duration("t", LONG, _Counter())

    assert timer.is_active()
    assert timer.get_id() == "t"
    assert registry.get_active() == ["t"]
    expected = before + LONG
    assert abs((timer.get_expire_time() - expected).total_seconds()) < 1
    registry.stop_all()


def test_numeric_duration_is_minutes() -> None:
    registry = TimerRegistry()
    timer = registry.create_with_duration("t", 5, _Counter())

    remaining = timer.get_expire_time() - datetime.now(timezone.utc)
    assert timedelta(minutes=4, seconds=58) < remaining <= timedelta(minutes=5)
    registry.stop_all()


@pytest.mark.parametrize("duration", [0, -1, timedelta(0), timedelta(seconds=-5)])
def test_non_positive_duration_is_rejected(duration) -> None:
    registry = TimerRegistry()
    with pytest.raises(TimerValidationError):
        registry.create_with_duration("t", duration, _Counter())
    assert registry.get_active() == []
    assert registry.get("t") == (None, False)


def test_huge_duration_is_rejected() -> None:
    registry = TimerRegistry()
    with pytest.raises(TimerValidationError):
        registry.create_with_duration("t", 10**12, _Counter())
    assert registry.get_active() == []


def test_past_deadline_is_rejected() -> None:
    registry = TimerRegistry()
    with pytest.raises(TimerValidationError, match="future"):
        registry.create_with_deadline("r1", datetime.now(timezone.utc) - timedelta(seconds=1), _Counter())
    assert registry.get("r1") == (None, False)


def test_missing_callback_is_rejected() -> None:
    registry = TimerRegistry()
    with pytest.raises(TimerValidationError):
        registry.create_with_duration("t", LONG, None)  # type: ignore[arg-type]
    assert registry.get_active() == []


def test_deadline_fires_once_and_leaves_registry() -> None:
    registry = TimerRegistry()
    cb = _Counter()
    timer = registry.create_with_deadline("r1", datetime.now(timezone.utc) + timedelta(milliseconds=100), cb)

    assert cb.fired.wait(2)
    assert timer.join(2)
    assert cb.calls == 1
    assert timer.outcome == "expired"
    assert not timer.is_active()
    assert registry.get("r1") == (None, False)
    assert registry.get_active() == []


def test_naive_deadline_is_treated_as_utc() -> None:
    registry = TimerRegistry()
    naive = datetime.now(timezone.utc).replace(tzinfo=None) + LONG
    timer = registry.create_with_deadline("n", naive, _Counter())

    assert timer.get_expire_time().tzinfo is not None
    assert timer.get_expire_time() == naive.replace(tzinfo=timezone.utc)
    registry.stop_all()


def test_stop_cancels_without_running_callback() -> None:
    registry = TimerRegistry()
    cb = _Counter()
    timer = registry.create_with_duration("t", SHORT * 4, cb)

    registry.stop("t")

    assert not timer.is_active()
    assert timer.outcome == "stopped"
    assert registry.get("t") == (None, False)
    assert timer.join(2)
    time.sleep(0.3)
    assert cb.calls == 0


def test_stop_unknown_id_raises_not_found() -> None:
    registry = TimerRegistry()
    with pytest.raises(TimerNotFoundError) as exc:
        registry.stop("missing")
    assert exc.value.timer_id == "missing"


def test_stopping_handle_twice_is_a_noop() -> None:
    registry = TimerRegistry()
    timer = registry.create_with_duration("t", LONG, _Counter())

    timer.stop()
    timer.stop()

    assert not timer.is_active()
    assert timer.outcome == "stopped"


def test_stop_after_fire_is_a_noop() -> None:
    registry = TimerRegistry()
    cb = _Counter()
    timer = registry.create_with_duration("t", SHORT, cb)
    assert cb.fired.wait(2)
    assert timer.join(2)

    timer.stop()

    assert timer.outcome == "expired"
    assert cb.calls == 1


def test_replacing_an_id_supersedes_the_old_timer() -> None:
    registry = TimerRegistry()
    cb_a = _Counter()
    cb_b = _Counter()
    first = registry.create_with_duration("t", SHORT * 2, cb_a)
    second = registry.create_with_duration("t", SHORT * 4, cb_b)

    assert not first.is_active()
    assert first.outcome == "stopped"
    timer, found = registry.get("t")
    assert found and timer is second
    assert registry.get_active() == ["t"]

    assert cb_b.fired.wait(2)
    assert second.join(2)
    assert cb_a.calls == 0
    assert cb_b.calls == 1
    assert registry.get_active() == []


def test_stale_timer_does_not_remove_its_replacement() -> None:
    registry = TimerRegistry()
    release = threading.Event()
    started = threading.Event()

    def slow_callback() -> None:
        started.set()
        release.wait(2)

    first = registry.create_with_duration("t", SHORT, slow_callback)
    assert started.wait(2)
    # First has fired but is still inside its callback; replace it under the same id.
    second = registry.create_with_duration("t", LONG, _Counter())
    release.set()
    assert first.join(2)

    timer, found = registry.get("t")
    assert found and timer is second
    assert second.is_active()
    registry.stop_all()


def test_per_id_policy_keeps_independent_timers() -> None:
    registry = TimerRegistry(exclusive=False)
    registry.create_with_duration("a", LONG, _Counter())
    registry.create_with_duration("b", LONG, _Counter())

    assert sorted(registry.get_active()) == ["a", "b"]
    registry.stop_all()
    assert registry.get_active() == []


def test_exclusive_policy_keeps_one_timer_system_wide() -> None:
    registry = TimerRegistry(exclusive=True)
    cb_a = _Counter()
    a = registry.create_with_duration("a", SHORT * 2, cb_a)
    b = registry.create_with_duration("b", LONG, _Counter())

    assert not a.is_active()
    assert b.is_active()
    assert registry.get_active() == ["b"]
    time.sleep(0.3)
    assert cb_a.calls == 0
    registry.stop_all()


def test_callback_exception_is_contained() -> None:
    registry = TimerRegistry()
    other = registry.create_with_duration("other", LONG, _Counter())

    def boom() -> None:
        raise RuntimeError("upstream down")

    failing = registry.create_with_duration("failing", SHORT, boom)

    assert failing.join(2)
    assert failing.outcome == "expired"
    assert registry.get("failing") == (None, False)
    assert other.is_active()
    assert registry.get_active() == ["other"]
    registry.stop_all()


def test_cancel_event_stops_the_timer() -> None:
    registry = TimerRegistry()
    cb = _Counter()
    cancel = threading.Event()
    timer = registry.create_with_duration("t", LONG, cb, cancel_event=cancel)

    cancel.set()

    assert timer.join(2)
    assert timer.outcome == "stopped"
    assert _wait_until(lambda: registry.get("t") == (None, False))
    assert cb.calls == 0


def test_stop_racing_expiry_runs_exactly_one_path() -> None:
    for i in range(20):
        registry = TimerRegistry()
        cb = _Counter()
        timer = registry.create_with_duration(f"race-{i}", timedelta(milliseconds=5), cb)
        time.sleep(0.005)
        timer.stop()
        assert timer.join(2)

        if timer.outcome == "expired":
            assert cb.calls == 1
        else:
            assert timer.outcome == "stopped"
            assert cb.calls == 0
        assert registry.get_active() == []
        assert registry.get(f"race-{i}") == (None, False)


def test_concurrent_creations_leave_one_active_timer() -> None:
    registry = TimerRegistry()
    callbacks = [_Counter() for _ in range(8)]
    barrier = threading.Barrier(len(callbacks))

    def create(cb) -> None:
        barrier.wait()
        registry.create_with_duration("shared", LONG, cb)

    threads = [threading.Thread(target=create, args=(cb,)) for cb in callbacks]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5)

    assert registry.get_active() == ["shared"]
    registry.stop_all()
    assert registry.get_active() == []


@pytest.mark.parametrize("duration", [float("nan"), float("inf"), float("-inf")])
def test_non_finite_duration_is_rejected(duration) -> None:
    registry = TimerRegistry()
    with pytest.raises(TimerValidationError):
        registry.create_with_duration("t", duration, _Counter())
    assert registry.get_active() == []


def test_replacing_with_a_shared_cancel_event_keeps_the_replacement() -> None:
    registry = TimerRegistry()
    cancel = threading.Event()
    first = registry.create_with_duration("t", LONG, _Counter(), cancel_event=cancel)
    second = registry.create_with_duration("t", LONG, _Counter(), cancel_event=cancel)

    assert first.outcome == "stopped"
    assert not cancel.is_set()
    time.sleep(0.2)
    assert second.is_active()
    assert registry.get_active() == ["t"]
    registry.stop_all()


def test_stopping_never_sets_the_callers_cancel_event() -> None:
    registry = TimerRegistry()
    cancel = threading.Event()
    timer = registry.create_with_duration("t", LONG, _Counter(), cancel_event=cancel)

    registry.stop("t")

    assert timer.join(2)
    assert timer.outcome == "stopped"
    assert not cancel.is_set()

    other = registry.create_with_duration("u", LONG, _Counter(), cancel_event=cancel)
    registry.stop_all()
    assert other.outcome == "stopped"
    assert not cancel.is_set()


def test_stop_by_id_while_callback_runs() -> None:
    registry = TimerRegistry()
    release = threading.Event()
    started = threading.Event()
    calls = []

    def slow_callback() -> None:
        calls.append(1)
        started.set()
        release.wait(2)

    timer = registry.create_with_duration("t", SHORT, slow_callback)
    assert started.wait(2)

    # Still registered until the callback returns; stopping it is a no-op.
    registry.stop("t")
    release.set()

    assert timer.join(2)
    assert timer.outcome == "expired"
    assert calls == [1]
    assert registry.get("t") == (None, False)
