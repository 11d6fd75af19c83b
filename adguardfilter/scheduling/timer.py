"""
One-shot timers keyed by id.

Each Timer owns a daemon thread that waits on a `threading.Event` until either its
expiry elapses or it is cancelled. Exactly one of two termination paths runs, once:

- expiry: mark inactive, run the callback (exceptions are logged, never raised), then
  leave the registry;
- cancellation: mark inactive, wake the waiting thread, leave the registry. The
  callback never runs.

A caller-supplied cancel token is only observed: the Timer polls it while waiting
and never sets it, so one token may be shared by several timers.

The outcome decision, the active flag and the registry removal for a cancellation all
happen inside the Timer's own lock, and removal only deletes the entry if it still
points at *this* Timer. A stale timer can therefore never evict a replacement
registered under the same id.

Lock order is always Timer lock -> registry lock; the registry never calls into a Timer
while holding its own lock.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterator, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

Callback = Callable[[], None]

OUTCOME_EXPIRED = "expired"
OUTCOME_STOPPED = "stopped"

# How often a waiting timer checks a caller-supplied cancel token.
CANCEL_POLL_SECONDS = 0.05


class TimerValidationError(ValueError):
    """Rejected before any registry state changed."""


class TimerNotFoundError(LookupError):
    def __init__(self, timer_id: str) -> None:
        self.timer_id = timer_id
        super().__init__(f"timer not found: {timer_id}")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _ReadWriteLock:
    """Shared readers, exclusive writers; a waiting writer blocks new readers."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class Timer:
    """Handle for a scheduled callback. Created and started only by `TimerRegistry`."""

    def __init__(
        self,
        timer_id: str,
        expire_at: datetime,
        delay_seconds: float,
        callback: Callback,
        registry: "TimerRegistry",
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self._id = timer_id
        self._expire_at = expire_at
        self._due = time.monotonic() + delay_seconds
        self._callback = callback
        self._registry = registry
        self._lock = threading.Lock()
        self._active = True
        self._outcome: Optional[str] = None
        # Internal stop signal. The caller's cancel token is only ever read, never set.
        self._stop_event = threading.Event()
        self._cancel_event = cancel_event
        self._thread = threading.Thread(target=self._run, name=f"timer-{timer_id}", daemon=True)

    def __repr__(self) -> str:
        return f"Timer(id={self._id!r}, expire_at={self._expire_at.isoformat()}, active={self.is_active()})"

    def get_id(self) -> str:
        return self._id

    def get_expire_time(self) -> datetime:
        return self._expire_at

    def is_active(self) -> bool:
        with self._lock:
            return self._active

    @property
    def outcome(self) -> Optional[str]:
        """`"expired"`, `"stopped"`, or None while still pending."""
        with self._lock:
            return self._outcome

    def stop(self) -> None:
        """Cancel the timer. Never raises; stopping an inactive timer does nothing."""
        if self._terminate(OUTCOME_STOPPED):
            logger.info("Timer '%s' stopped manually", self._id)
        else:
            logger.debug("Timer '%s' is already inactive", self._id)

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the worker thread; True once it has exited."""
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _start(self) -> None:
        self._thread.start()

    def _terminate(self, outcome: str) -> bool:
        """Claim the single termination for `outcome`. False if another path already won."""
        with self._lock:
            if not self._active:
                return False
            self._active = False
            self._outcome = outcome
            if outcome == OUTCOME_STOPPED:
                self._stop_event.set()
                self._registry._discard(self)
            return True

    def _cancelled(self) -> bool:
        return self._stop_event.is_set() or (self._cancel_event is not None and self._cancel_event.is_set())

    def _wait(self) -> bool:
        """Block until due (False) or until stopped or the cancel token is set (True)."""
        while True:
            if self._cancelled():
                return True
            left = self._due - time.monotonic()
            if left <= 0:
                return False
            step = min(left, threading.TIMEOUT_MAX)
            if self._cancel_event is not None:
                step = min(step, CANCEL_POLL_SECONDS)
            if self._stop_event.wait(step):
                return True

    def _run(self) -> None:
        if self._wait():
            # A set cancel token has not done the cancellation bookkeeping yet.
            if self._terminate(OUTCOME_STOPPED):
                logger.info("Timer '%s' cancelled by its cancel event", self._id)
            return

        if not self._terminate(OUTCOME_EXPIRED):
            return

        logger.info("Timer '%s' expired. Executing callback...", self._id)
        try:
            self._callback()
            logger.info("Callback executed successfully for timer '%s'", self._id)
        except Exception:
            logger.exception("Callback raised for timer '%s'", self._id)
        finally:
            self._registry._discard(self)


class TimerRegistry:
    """
    Directory of live timers.

    With `exclusive=True` the registry keeps at most one timer in total: creating a
    timer stops every other one first. Otherwise the limit is one timer per id.
    """

    def __init__(self, *, exclusive: bool = False) -> None:
        self.exclusive = exclusive
        self._timers: Dict[str, Timer] = {}
        self._rw = _ReadWriteLock()
        # Serializes "stop previous -> install new" across concurrent creations.
        self._create_lock = threading.Lock()

    def create_with_duration(
        self,
        timer_id: str,
        duration: Union[timedelta, int, float],
        callback: Callback,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> Timer:
        """Schedule `callback` after `duration` (a timedelta, or a number of minutes)."""
        if isinstance(duration, bool) or not isinstance(duration, (timedelta, int, float)):
            raise TimerValidationError("duration must be a timedelta or a number of minutes")
        if isinstance(duration, float) and not math.isfinite(duration):
            raise TimerValidationError("duration must be a finite number of minutes")
        try:
            if not isinstance(duration, timedelta):
                duration = timedelta(minutes=duration)
            if duration <= timedelta(0):
                logger.error("Duration must be greater than 0 (timer '%s')", timer_id)
                raise TimerValidationError("duration must be greater than 0 minutes")
            expire_at = _utcnow() + duration
        except OverflowError as e:
            raise TimerValidationError("duration is too large") from e
        if callback is None:
            raise TimerValidationError("callback function cannot be None")

        logger.info("Creating timer '%s' for %s", timer_id, duration)
        logger.debug("Timer '%s' will expire at %s", timer_id, expire_at.isoformat())
        return self._create(timer_id, expire_at, duration.total_seconds(), callback, cancel_event)

    def create_with_deadline(
        self,
        timer_id: str,
        deadline: datetime,
        callback: Callback,
        *,
        cancel_event: Optional[threading.Event] = None,
    ) -> Timer:
        """Schedule `callback` at `deadline`. Naive datetimes are taken as UTC."""
        if not isinstance(deadline, datetime):
            raise TimerValidationError("deadline must be a datetime")
        if deadline.tzinfo is None:
            deadline = deadline.replace(tzinfo=timezone.utc)
        now = _utcnow()
        if deadline <= now:
            logger.error("Deadline %s for timer '%s' is not in the future", deadline.isoformat(), timer_id)
            raise TimerValidationError("deadline must be in the future")
        if callback is None:
            raise TimerValidationError("callback function cannot be None")

        delay = (deadline - now).total_seconds()
        logger.info("Creating timer '%s' with deadline %s", timer_id, deadline.isoformat())
        logger.debug("Duration until deadline for '%s': %.1fs", timer_id, delay)
        return self._create(timer_id, deadline, delay, callback, cancel_event)

    def _create(
        self,
        timer_id: str,
        expire_at: datetime,
        delay_seconds: float,
        callback: Callback,
        cancel_event: Optional[threading.Event],
    ) -> Timer:
        with self._create_lock:
            if self.exclusive:
                previous = self._snapshot()
            else:
                existing, found = self.get(timer_id)
                previous = [existing] if found and existing is not None else []

            for old in previous:
                if old.is_active():
                    logger.warning("Timer '%s' is active. Stopping it before creating '%s'", old.get_id(), timer_id)
                # Stopped outside the registry lock; an old timer that already fired is a no-op.
                old.stop()

            timer = Timer(timer_id, expire_at, delay_seconds, callback, self, cancel_event=cancel_event)
            with self._rw.write():
                self._timers[timer_id] = timer
            timer._start()

        logger.info("Timer '%s' started successfully", timer_id)
        return timer

    def _discard(self, timer: Timer) -> None:
        with self._rw.write():
            if self._timers.get(timer.get_id()) is timer:
                del self._timers[timer.get_id()]

    def _snapshot(self) -> List[Timer]:
        with self._rw.read():
            return list(self._timers.values())

    def get(self, timer_id: str) -> Tuple[Optional[Timer], bool]:
        with self._rw.read():
            timer = self._timers.get(timer_id)
        return timer, timer is not None

    def stop(self, timer_id: str) -> None:
        timer, found = self.get(timer_id)
        if not found or timer is None:
            logger.warning("Timer '%s' not found", timer_id)
            raise TimerNotFoundError(timer_id)
        timer.stop()

    def get_active(self) -> List[str]:
        return [t.get_id() for t in self._snapshot() if t.is_active()]

    def stop_all(self) -> None:
        timers = self._snapshot()
        logger.info("Stopping all timers (%d registered)", len(timers))
        for timer in timers:
            timer.stop()
