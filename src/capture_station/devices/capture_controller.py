"""Capture Controller: one active strategy, its connection lifecycle, and
every capture, video, live-view and settings operation.

Connection states::

    UNINITIALIZED --initialize--> INITIALIZING --ok--> READY
                                      |
                                      +--fail, retries left--> RECONNECTING
                                      +--fail, no retries----> FAILED
    RECONNECTING --retry ok--> READY
    RECONNECTING --retries exhausted--> FAILED (+ connection.lost)
    any --switch_strategy--> UNINITIALIZED --> INITIALIZING ...

Reconnect policy: after a failed ``initialize()`` with
``reconnect_attempts > 0`` a single repeating timer retries every
``reconnect_delay`` seconds. The first success, whether observed in the
timer or in an explicit ``initialize()``, cancels the timer, moves to
READY and publishes ``connection.restored``. After ``reconnect_attempts``
failed retries the timer is canceled, the controller moves to FAILED
and ``connection.lost`` is published; nothing is retried until
``switch_strategy()`` or an explicit ``initialize()``.

Capture, video and live-view start are serialized: an overlapping call
is rejected with ``BusyError`` rather than queued.

Example:
    controller = CaptureController(factory.create_strategy, StrategyType.SIMULATED)
    controller.initialize()
    result = controller.capture(CaptureOptions(countdown=3, flash=True))
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from capture_station.devices.events import EventBus, EventTopic
from capture_station.drivers.cameras import (
    Capabilities,
    CaptureResult,
    CaptureSettings,
    CaptureStrategy,
    LiveViewStream,
    StrategyType,
)
from capture_station.errors import (
    BusyError,
    CaptureFailedError,
    DeviceUnavailableError,
    StationError,
    UnsupportedOperationError,
)
from capture_station.observability import CaptureStats, LogContext, get_logger
from capture_station.scheduling import (
    Clock,
    Scheduler,
    SystemClock,
    ThreadingScheduler,
    TimerHandle,
)

logger = get_logger(__name__)

StrategyFactory = Callable[[StrategyType], CaptureStrategy]


class ConnectionState(Enum):
    """Lifecycle state of the active strategy."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


@dataclass
class CaptureOptions:
    """Per-capture options.

    Attributes:
        countdown: Seconds to count down (one ``countdown.tick`` per second).
        sound: Publish ``cue.sound`` hints (a beep per tick, a shutter sound).
        flash: Publish a ``cue.flash`` hint right before the exposure.
        settings: Setting overrides for this capture only.
        save_to_gallery: Publish ``gallery.add`` with the result.
    """

    countdown: int = 0
    sound: bool = False
    flash: bool = False
    settings: CaptureSettings | dict[str, Any] | None = None
    save_to_gallery: bool = False


class CaptureController:
    """Owns exactly one capture strategy and drives its lifecycle."""

    def __init__(
        self,
        strategy_factory: StrategyFactory,
        strategy_type: StrategyType,
        *,
        events: EventBus | None = None,
        scheduler: Scheduler | None = None,
        clock: Clock | None = None,
        stats: CaptureStats | None = None,
        reconnect_attempts: int = 3,
        reconnect_delay: float = 5.0,
        default_settings: CaptureSettings | None = None,
    ) -> None:
        """Create the controller and its first (uninitialized) strategy.

        Args:
            strategy_factory: Builds a new strategy for a type.
            strategy_type: Backend to start with.
            events: Bus for capture/video/settings/connection events.
            scheduler: Provides the reconnect timer.
            clock: Used for countdowns, batch intervals and durations.
            stats: Receives one record per still capture.
            reconnect_attempts: Retries after a failed initialize.
            reconnect_delay: Seconds between retries.
            default_settings: Target of ``reset_settings()``.
        """
        if reconnect_attempts < 0:
            raise ValueError("reconnect_attempts must be >= 0")
        self.events = events or EventBus()
        self.stats = stats or CaptureStats()
        self.reconnect_attempts = reconnect_attempts
        self.reconnect_delay = reconnect_delay
        self.default_settings = default_settings or CaptureSettings.defaults()
        self._factory = strategy_factory
        self._scheduler = scheduler or ThreadingScheduler()
        self._clock = clock or SystemClock()

        self._strategy_type = strategy_type
        self._strategy = strategy_factory(strategy_type)
        self._state = ConnectionState.UNINITIALIZED
        self._reconnect_timer: TimerHandle | None = None
        self._reconnect_failures = 0
        self._reconnect_generation = 0
        self._connection_lost = False
        self._live_view: LiveViewStream | None = None
        self._recording = False

        self._lock = threading.RLock()
        self._busy = threading.Lock()

    def __enter__(self) -> CaptureController:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # -- introspection ---------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def strategy(self) -> CaptureStrategy:
        """The active strategy."""
        return self._strategy

    @property
    def strategy_type(self) -> StrategyType:
        """Type of the active strategy."""
        return self._strategy_type

    @property
    def is_recording(self) -> bool:
        """True while a video recording is in flight."""
        return self._recording

    @property
    def reconnect_pending(self) -> bool:
        """True while the reconnect timer is scheduled."""
        timer = self._reconnect_timer
        return timer is not None and timer.active

    def capabilities(self) -> Capabilities:
        """Capabilities of the active strategy."""
        return self._strategy.capabilities()

    # -- lifecycle ---------------------------------------------------------------

    def initialize(self) -> None:
        """Bring the active strategy to READY.

        No-op when already READY. From FAILED this starts a fresh cycle
        (the retry budget is reset). While RECONNECTING it makes one
        immediate attempt alongside the timer.

        Raises:
            DeviceUnavailableError: If this attempt failed; the controller
                is then RECONNECTING (retries scheduled) or FAILED.
        """
        failure: DeviceUnavailableError | None = None
        lost = restored = False
        with self._lock:
            if self._state is ConnectionState.READY:
                return
            if self._state is ConnectionState.FAILED:
                self._reconnect_failures = 0
            reconnecting = self._state is ConnectionState.RECONNECTING
            if not reconnecting:
                self._state = ConnectionState.INITIALIZING
            try:
                self._initialize_strategy()
            except DeviceUnavailableError as exc:
                failure = exc
                if not reconnecting:
                    lost = self._after_first_failure(exc)
            else:
                restored = self._mark_ready()
        if lost:
            self._publish_lost()
        if restored:
            self._publish_restored()
        if failure is not None:
            raise failure

    def switch_strategy(self, strategy_type: StrategyType | str) -> None:
        """Tear down the active strategy and initialize a new one.

        The previous strategy is always cleaned up (live view stopped,
        reconnect timer canceled) before the new one is built.

        Raises:
            BusyError: If a capture, video or live-view start is in flight.
            ConfigurationError: For unknown strategy names.
            DeviceUnavailableError: If the new strategy failed to initialize.
        """
        kind = StrategyType.parse(strategy_type)
        if not self._busy.acquire(blocking=False):
            raise BusyError("Cannot switch strategy while an operation is in progress")
        try:
            with self._lock:
                previous = self._strategy
                self._cancel_reconnect()
                self._stop_live_view_locked()
                try:
                    previous.cleanup()
                except Exception:
                    logger.exception("Strategy cleanup failed", strategy=previous.name)
                self._recording = False
                self._strategy = self._factory(kind)
                self._strategy_type = kind
                self._state = ConnectionState.UNINITIALIZED
                self._reconnect_failures = 0
            logger.info(
                "Strategy switched",
                previous=previous.name,
                strategy=self._strategy.name,
            )
        finally:
            self._busy.release()
        self.initialize()

    def close(self) -> None:
        """Cancel timers, stop live view and recording, clean up the strategy."""
        with self._lock:
            self._cancel_reconnect()
            self._stop_live_view_locked()
            self._recording = False
            self._strategy.cleanup()
            self._state = ConnectionState.UNINITIALIZED

    def test_connection(self, capture: bool = False) -> bool:
        """Best-effort health check that never raises.

        Args:
            capture: Also take a throwaway picture.

        Returns:
            True when the strategy initialized, reports itself available
            and, if requested, produced a picture.
        """
        try:
            if self._state is not ConnectionState.READY:
                self.initialize()
            if not self._strategy.is_available():
                return False
            if capture:
                self.capture()
            return True
        except Exception as exc:
            logger.warning(
                "Connection test failed",
                strategy=self._strategy.name,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return False

    # -- stills ------------------------------------------------------------------

    def capture(self, options: CaptureOptions | None = None) -> CaptureResult:
        """Take one still picture.

        Raises:
            BusyError: If another operation or a recording is in flight.
            DeviceUnavailableError: If the strategy cannot be initialized.
            ConfigurationError: If the setting overrides are invalid.
            CaptureFailedError: If the capture itself failed.
        """
        opts = options or CaptureOptions()
        with self._operation("capture"):
            return self._capture_locked(opts)

    def capture_multiple(
        self,
        count: int,
        interval: float,
        options: CaptureOptions | None = None,
    ) -> list[CaptureResult]:
        """Take ``count`` pictures one after another, ``interval`` seconds apart.

        The batch holds the operation slot throughout, so nothing can
        interleave. The first failure aborts the batch and propagates.

        Raises:
            ValueError: If count < 1 or interval < 0.
            BusyError: If another operation is in flight.
        """
        if count < 1:
            raise ValueError(f"count must be >= 1, got {count}")
        if interval < 0:
            raise ValueError(f"interval must be >= 0, got {interval}")
        opts = options or CaptureOptions()
        results: list[CaptureResult] = []
        with self._operation("capture_multiple"):
            for index in range(count):
                if index:
                    self._clock.sleep(interval)
                results.append(self._capture_locked(opts))
        logger.info("Capture batch completed", count=count, interval_s=interval)
        return results

    def _capture_locked(self, opts: CaptureOptions) -> CaptureResult:
        if self._recording:
            raise BusyError("Cannot take a picture while recording video")
        self._ensure_ready()
        overrides = (
            CaptureSettings.from_mapping(opts.settings)
            if isinstance(opts.settings, dict)
            else opts.settings
        )
        strategy = self._strategy
        self.events.publish(
            EventTopic.CAPTURE_STARTED, strategy=strategy.name, countdown=opts.countdown
        )

        for remaining in range(opts.countdown, 0, -1):
            self.events.publish(EventTopic.COUNTDOWN_TICK, remaining=remaining)
            if opts.sound:
                self.events.publish(EventTopic.CUE_SOUND, sound="beep")
            self._clock.sleep(1.0)
        if opts.sound:
            self.events.publish(EventTopic.CUE_SOUND, sound="shutter")
        if opts.flash:
            self.events.publish(EventTopic.CUE_FLASH)

        started = self._clock.monotonic()
        with LogContext(strategy=strategy.name):
            try:
                result = strategy.take_picture(overrides)
            except Exception as exc:
                error = exc if isinstance(exc, StationError) else CaptureFailedError(str(exc))
                self.stats.record_capture(
                    strategy.name,
                    (self._clock.monotonic() - started) * 1000,
                    success=False,
                    error_type=type(error).__name__,
                )
                logger.error("Capture failed", error=str(exc), error_type=type(exc).__name__)
                self.events.publish(
                    EventTopic.CAPTURE_FAILED, strategy=strategy.name, error=str(error)
                )
                if error is exc:
                    raise
                raise error from exc

            duration_ms = (self._clock.monotonic() - started) * 1000
            self.stats.record_capture(strategy.name, duration_ms, success=True)
            logger.info(
                "Capture completed",
                file_name=result.file_name,
                duration_ms=round(duration_ms, 1),
            )
        self.events.publish(
            EventTopic.CAPTURE_COMPLETED, strategy=strategy.name, result=result
        )
        if opts.save_to_gallery:
            self.events.publish(EventTopic.GALLERY_ADD, result=result)
        return result

    # -- video -------------------------------------------------------------------

    def start_video(self) -> None:
        """Start recording on the active strategy.

        Raises:
            UnsupportedOperationError: If the strategy cannot record video.
            BusyError: If an operation or another recording is in flight.
        """
        self._require_video()
        with self._operation("start_video"):
            if self._recording:
                raise BusyError("A recording is already in progress")
            self._ensure_ready()
            self._strategy.start_video()
            self._recording = True
        self.events.publish(EventTopic.VIDEO_STARTED, strategy=self._strategy.name)

    def stop_video(self) -> CaptureResult:
        """Stop the recording and return the video file.

        Raises:
            UnsupportedOperationError: If the strategy cannot record video.
            CaptureFailedError: If no recording is in progress.
            CaptureTimeoutError: If the recorder had to be force-terminated.
        """
        self._require_video()
        with self._operation("stop_video"):
            if not self._recording:
                raise CaptureFailedError("No recording in progress")
            try:
                result = self._strategy.stop_video()
            except Exception as exc:
                self.events.publish(
                    EventTopic.VIDEO_STOPPED, strategy=self._strategy.name, error=str(exc)
                )
                raise
            finally:
                self._recording = False
        self.events.publish(
            EventTopic.VIDEO_STOPPED, strategy=self._strategy.name, result=result
        )
        return result

    def _require_video(self) -> None:
        if not self.capabilities().can_record_video:
            raise UnsupportedOperationError(
                f"{self._strategy.name} does not support video recording"
            )

    # -- live view ---------------------------------------------------------------

    def start_live_view(self) -> LiveViewStream:
        """Start (or return the already running) live-view stream.

        A stream whose source died on its own is released and replaced.

        Raises:
            UnsupportedOperationError: If the strategy has no live view.
            BusyError: If another operation is in flight.
        """
        if not self.capabilities().can_live_view:
            raise UnsupportedOperationError(f"{self._strategy.name} has no live view")
        with self._operation("start_live_view"):
            with self._lock:
                if self._live_view is not None and self._live_view.is_streaming:
                    return self._live_view
                self._stop_live_view_locked()
            self._ensure_ready()
            stream = self._strategy.live_view()
            stream.start()
            with self._lock:
                self._live_view = stream
            return stream

    def stop_live_view(self) -> None:
        """Stop the live-view stream; no-op when none is running."""
        with self._lock:
            self._stop_live_view_locked()

    @property
    def live_view(self) -> LiveViewStream | None:
        """The running live-view stream, if any."""
        stream = self._live_view
        return stream if stream is not None and stream.is_streaming else None

    def _stop_live_view_locked(self) -> None:
        stream, self._live_view = self._live_view, None
        if stream is not None:
            stream.stop()

    # -- settings ----------------------------------------------------------------

    def get_settings(self) -> CaptureSettings:
        """Current settings of the active strategy (initializes lazily)."""
        self._ensure_ready()
        return self._strategy.get_settings()

    def update_settings(
        self, partial: CaptureSettings | dict[str, Any]
    ) -> CaptureSettings:
        """Merge and apply a partial settings update (initializes lazily).

        Raises:
            ConfigurationError: If ``partial`` is invalid.
            BusyError: If another operation is in flight.
        """
        if isinstance(partial, dict):
            partial = CaptureSettings.from_mapping(partial)
        with self._operation("update_settings"):
            self._ensure_ready()
            merged = self._strategy.update_settings(partial)
        self.events.publish(
            EventTopic.SETTINGS_CHANGED,
            strategy=self._strategy.name,
            changed=partial.to_dict(),
            settings=merged.to_dict(),
        )
        return merged

    def reset_settings(self) -> CaptureSettings:
        """Restore ``default_settings`` on the active strategy."""
        return self.update_settings(self.default_settings)

    # -- internals ---------------------------------------------------------------

    def _operation(self, name: str) -> _OperationSlot:
        return _OperationSlot(self._busy, name)

    def _ensure_ready(self) -> None:
        state = self._state
        if state is ConnectionState.READY:
            return
        if state is ConnectionState.FAILED:
            raise DeviceUnavailableError(
                f"{self._strategy.name} connection failed; reinitialize or switch strategy"
            )
        if state is ConnectionState.RECONNECTING:
            raise DeviceUnavailableError(f"{self._strategy.name} is reconnecting")
        self.initialize()

    def _initialize_strategy(self) -> None:
        """Run strategy.initialize(), normalizing failures to DeviceUnavailableError."""
        try:
            self._strategy.initialize()
        except DeviceUnavailableError:
            raise
        except Exception as exc:
            raise DeviceUnavailableError(
                f"{self._strategy.name} failed to initialize: {exc}"
            ) from exc

    def _mark_ready(self) -> bool:
        """Enter READY and cancel retries; True if a restore should be published."""
        self._cancel_reconnect()
        restored = self._state is ConnectionState.RECONNECTING or self._connection_lost
        self._state = ConnectionState.READY
        self._reconnect_failures = 0
        self._connection_lost = False
        logger.info("Capture backend ready", strategy=self._strategy.name)
        return restored

    def _after_first_failure(self, exc: DeviceUnavailableError) -> bool:
        """Handle a failed non-retry attempt; True if connection.lost is due."""
        if self.reconnect_attempts > 0:
            self._state = ConnectionState.RECONNECTING
            self._schedule_reconnect()
            logger.warning(
                "Capture backend unavailable, will retry",
                strategy=self._strategy.name,
                error=str(exc),
                attempts=self.reconnect_attempts,
                delay_s=self.reconnect_delay,
            )
            return False
        self._state = ConnectionState.FAILED
        self._connection_lost = True
        logger.error(
            "Capture backend unavailable", strategy=self._strategy.name, error=str(exc)
        )
        return True

    def _schedule_reconnect(self) -> None:
        if self.reconnect_pending:
            return
        self._reconnect_failures = 0
        self._reconnect_generation += 1
        generation = self._reconnect_generation
        self._reconnect_timer = self._scheduler.call_every(
            self.reconnect_delay, lambda: self._reconnect_tick(generation)
        )

    def _cancel_reconnect(self) -> None:
        self._reconnect_generation += 1
        timer, self._reconnect_timer = self._reconnect_timer, None
        if timer is not None:
            timer.cancel()

    def _reconnect_tick(self, generation: int) -> None:
        lost = restored = False
        with self._lock:
            if generation != self._reconnect_generation:
                return
            if self._state is not ConnectionState.RECONNECTING:
                self._cancel_reconnect()
                return
            try:
                self._initialize_strategy()
            except DeviceUnavailableError as exc:
                self._reconnect_failures += 1
                logger.warning(
                    "Reconnect attempt failed",
                    strategy=self._strategy.name,
                    attempt=self._reconnect_failures,
                    attempts=self.reconnect_attempts,
                    error=str(exc),
                )
                if self._reconnect_failures >= self.reconnect_attempts:
                    self._cancel_reconnect()
                    self._state = ConnectionState.FAILED
                    self._connection_lost = True
                    lost = True
            else:
                restored = self._mark_ready()
        if lost:
            self._publish_lost()
        if restored:
            self._publish_restored()

    def _publish_lost(self) -> None:
        logger.error("Capture backend connection lost", strategy=self._strategy.name)
        self.events.publish(
            EventTopic.CONNECTION_LOST,
            strategy=self._strategy.name,
            attempts=self.reconnect_attempts,
        )

    def _publish_restored(self) -> None:
        self.events.publish(EventTopic.CONNECTION_RESTORED, strategy=self._strategy.name)


class _OperationSlot:
    """Non-blocking acquisition of the controller's single operation slot."""

    def __init__(self, lock: threading.Lock, name: str) -> None:
        self._lock = lock
        self._name = name

    def __enter__(self) -> None:
        if not self._lock.acquire(blocking=False):
            raise BusyError(f"Cannot {self._name}: another operation is in progress")

    def __exit__(self, *exc: object) -> None:
        self._lock.release()
