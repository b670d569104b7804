"""Timers and clocks behind injectable protocols.

Debounce windows, long-press detection, LED blinking, live-view pacing
and reconnect backoff all need "run this later" and "run this every N
seconds" with a handle that can be canceled. Production code uses
``ThreadingScheduler`` (daemon threads on the wall clock) together with
``SystemClock``; tests use ``ManualScheduler``, a virtual clock that only
moves when the test calls ``advance()``, so a 2 s long-press or a 5 s
reconnect delay runs instantly and deterministically.

Example:
    scheduler = ManualScheduler()
    fired = []
    handle = scheduler.call_later(2.0, lambda: fired.append("long"))

    scheduler.advance(1.9)
    assert fired == []
    scheduler.advance(0.1)
    assert fired == ["long"]
    assert not handle.active
"""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from capture_station.observability import get_logger

logger = get_logger(__name__)

Callback = Callable[[], None]


@runtime_checkable
class Clock(Protocol):  # pragma: no cover
    """Time source used for countdowns, intervals and durations.

    Example:
        class FrozenClock:
            def monotonic(self) -> float:
                return 0.0

            def sleep(self, seconds: float) -> None:
                pass
    """

    def monotonic(self) -> float:
        """Return seconds from an arbitrary, never-decreasing origin."""
        ...

    def sleep(self, seconds: float) -> None:
        """Suspend the caller for ``seconds`` (non-positive returns at once)."""
        ...


@runtime_checkable
class TimerHandle(Protocol):  # pragma: no cover
    """Cancel handle returned by every scheduling call."""

    @property
    def active(self) -> bool:
        """True until the timer fired (one-shot) or was canceled."""
        ...

    def cancel(self) -> None:
        """Stop the timer. Idempotent; safe from inside its own callback."""
        ...


@runtime_checkable
class Scheduler(Protocol):  # pragma: no cover
    """Schedule-once and schedule-repeating capability.

    Business context: Every timed behavior of the station (debounce,
    long-press, blink, reconnect) is expressed through this protocol so
    the same code runs on real threads in the kiosk and on a virtual
    clock in tests.
    """

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        """Run ``callback`` once after ``delay`` seconds."""
        ...

    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        """Run ``callback`` every ``interval`` seconds until canceled.

        The first run happens one full interval after scheduling.
        """
        ...


class SystemClock:
    """``Clock`` backed by ``time.monotonic`` and ``time.sleep``."""

    def monotonic(self) -> float:
        """Return ``time.monotonic()``."""
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        """Block the calling thread for ``seconds``."""
        if seconds > 0:
            time.sleep(seconds)


def _run_callback(callback: Callback) -> None:
    """Invoke a timer callback, logging instead of killing the timer thread."""
    try:
        callback()
    except Exception:
        logger.exception("Timer callback failed", callback=repr(callback))


class _ThreadTimerHandle:
    """Handle for a timer running on its own daemon thread."""

    def __init__(self, delay: float, callback: Callback, repeat: bool) -> None:
        self._delay = max(0.0, delay)
        self._callback = callback
        self._repeat = repeat
        self._stopped = threading.Event()
        self._thread = threading.Thread(
            target=self._run, name="station-timer", daemon=True
        )

    @property
    def active(self) -> bool:
        return not self._stopped.is_set()

    def cancel(self) -> None:
        self._stopped.set()

    def start(self) -> _ThreadTimerHandle:
        self._thread.start()
        return self

    def _run(self) -> None:
        while not self._stopped.wait(self._delay):
            if not self._repeat:
                self._stopped.set()
            _run_callback(self._callback)
            if not self._repeat:
                return


class ThreadingScheduler:
    """Wall-clock ``Scheduler``: one daemon thread per pending timer.

    Callbacks run on the timer thread, so anything they touch must be
    thread-safe. A failing callback is logged; a repeating timer keeps
    running after a failure.
    """

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        """Start a one-shot timer thread."""
        return _ThreadTimerHandle(delay, callback, repeat=False).start()

    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        """Start a repeating timer thread."""
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        return _ThreadTimerHandle(interval, callback, repeat=True).start()


class _ManualTimer:
    """Timer entry owned by ``ManualScheduler``."""

    def __init__(self, callback: Callback, interval: float | None) -> None:
        self.callback = callback
        self.interval = interval
        self.canceled = False
        self.fired = False

    @property
    def active(self) -> bool:
        return not self.canceled and not self.fired

    def cancel(self) -> None:
        self.canceled = True


class ManualScheduler:
    """Deterministic virtual-time ``Scheduler`` that is also a ``Clock``.

    Time starts at 0.0 and moves only through ``advance()`` or
    ``sleep()``. While advancing, due timers fire in due-time order (ties
    in scheduling order) and the clock reads exactly the due time of the
    timer being run. Timers scheduled by callbacks during an advance fire
    in the same advance when they fall due before its end.

    Not thread-safe; intended for single-threaded tests.
    """

    def __init__(self, start: float = 0.0) -> None:
        """Create a scheduler whose clock reads ``start``."""
        self._now = start
        self._queue: list[tuple[float, int, _ManualTimer]] = []
        self._sequence = itertools.count()

    # -- Clock -------------------------------------------------------------

    def monotonic(self) -> float:
        """Current virtual time in seconds."""
        return self._now

    def sleep(self, seconds: float) -> None:
        """Advance virtual time, firing timers that fall due meanwhile."""
        self.advance(max(0.0, seconds))

    # -- Scheduler ---------------------------------------------------------

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        """Queue a one-shot timer ``delay`` seconds from now."""
        timer = _ManualTimer(callback, None)
        self._push(self._now + max(0.0, delay), timer)
        return timer

    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        """Queue a repeating timer with period ``interval``."""
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        timer = _ManualTimer(callback, interval)
        self._push(self._now + interval, timer)
        return timer

    # -- Test controls -----------------------------------------------------

    @property
    def pending(self) -> int:
        """Number of timers that are still active."""
        return sum(1 for _, _, timer in self._queue if timer.active)

    def advance(self, seconds: float) -> None:
        """Move the clock forward by ``seconds`` and fire due timers.

        Args:
            seconds: Non-negative amount of virtual time to elapse.

        Raises:
            ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError(f"cannot move time backwards ({seconds})")
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            due, _, timer = heapq.heappop(self._queue)
            if not timer.active:
                continue
            self._now = max(self._now, due)
            if timer.interval is None:
                timer.fired = True
            _run_callback(timer.callback)
            if timer.interval is not None and timer.active:
                self._push(due + timer.interval, timer)
        self._now = max(self._now, target)

    def _push(self, due: float, timer: _ManualTimer) -> None:
        heapq.heappush(self._queue, (due, next(self._sequence), timer))
