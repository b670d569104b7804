"""Live-view streams: low-latency preview frames with push and pull delivery.

A stream moves Stopped -> Starting -> Streaming -> Stopped. Frames are
pushed to every ``on_frame`` subscriber and can also be pulled with
``get_frame()``, which waits (bounded) for the next frame.

Two frame sources exist:

* ``SimulatedLiveViewStream`` renders test cards on a repeating timer.
* ``ProcessLiveViewStream`` runs a tool that writes concatenated JPEGs
  to stdout and splits them with ``FrameParser``.

Example:
    stream = strategy.live_view()
    stream.on_frame(lambda jpeg: websocket.send(jpeg))
    stream.start()
    first = stream.get_frame(timeout=5.0)
    stream.stop()
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from enum import Enum

from capture_station.drivers.cameras.synthetic import encode_image, render_test_card
from capture_station.drivers.frames import FrameParser
from capture_station.drivers.process import CommandRunner, ProcessHandle
from capture_station.errors import CaptureFailedError, CaptureTimeoutError
from capture_station.observability import get_logger
from capture_station.scheduling import Scheduler, TimerHandle

logger = get_logger(__name__)

FrameCallback = Callable[[bytes], None]

#: Default wait for ``get_frame`` in seconds.
DEFAULT_FRAME_TIMEOUT = 5.0


class LiveViewState(Enum):
    """Lifecycle state of a live-view stream."""

    STOPPED = "stopped"
    STARTING = "starting"
    STREAMING = "streaming"


class LiveViewStream:
    """Base stream with state, subscribers and frame hand-off.

    Subclasses implement ``_open`` (start producing frames and feed them
    to ``_deliver``) and ``_close`` (release the producer).
    """

    def __init__(self, name: str, frame_timeout: float = DEFAULT_FRAME_TIMEOUT) -> None:
        """Create a stopped stream.

        Args:
            name: Label used in logs (usually the strategy name).
            frame_timeout: Default wait for ``get_frame``.
        """
        self.name = name
        self.frame_timeout = frame_timeout
        self._state = LiveViewState.STOPPED
        self._subscribers: list[FrameCallback] = []
        self._latest: bytes | None = None
        self._frame_count = 0
        self._pulled = 0
        self._cond = threading.Condition(threading.RLock())

    @property
    def state(self) -> LiveViewState:
        """Current lifecycle state."""
        return self._state

    @property
    def is_streaming(self) -> bool:
        """True while frames are being produced."""
        return self._state is LiveViewState.STREAMING

    @property
    def frame_count(self) -> int:
        """Frames delivered since the last start."""
        return self._frame_count

    def start(self) -> None:
        """Begin producing frames. No-op unless Stopped.

        Raises:
            CaptureFailedError: If the frame source cannot be started; the
                stream is back in Stopped.
        """
        with self._cond:
            if self._state is not LiveViewState.STOPPED:
                return
            self._state = LiveViewState.STARTING
            self._frame_count = 0
            self._pulled = 0
            self._latest = None
            try:
                self._open()
            except BaseException:
                self._state = LiveViewState.STOPPED
                raise
            self._state = LiveViewState.STREAMING
        logger.info("Live view started", stream=self.name)

    def stop(self) -> None:
        """Release the frame source and drop all subscribers. Idempotent."""
        with self._cond:
            if self._state is LiveViewState.STOPPED:
                return
            self._state = LiveViewState.STOPPED
            self._subscribers.clear()
            self._cond.notify_all()
        try:
            self._close()
        finally:
            logger.info("Live view stopped", stream=self.name, frames=self._frame_count)

    def on_frame(self, callback: FrameCallback) -> Callable[[], None]:
        """Register a durable subscriber; returns an unsubscribe function."""
        with self._cond:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._cond:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def get_frame(self, timeout: float | None = None) -> bytes:
        """Return the next frame not yet pulled, waiting up to ``timeout``.

        Args:
            timeout: Seconds to wait; defaults to ``frame_timeout``.

        Raises:
            CaptureTimeoutError: Immediately when the stream is not
                streaming, or when no frame arrives in time.
        """
        wait = self.frame_timeout if timeout is None else timeout
        with self._cond:
            if not self.is_streaming:
                raise CaptureTimeoutError(f"Live view {self.name} is not streaming")
            arrived = self._cond.wait_for(
                lambda: self._frame_count > self._pulled or not self.is_streaming,
                timeout=wait,
            )
            if not arrived or self._latest is None or not self.is_streaming:
                raise CaptureTimeoutError(
                    f"No live-view frame from {self.name} within {wait}s"
                )
            self._pulled = self._frame_count
            return self._latest

    def _source_ended(self, **details: object) -> None:
        """Move to Stopped because the frame source went away on its own.

        Pending ``get_frame`` callers wake and time out at once; a later
        ``start()`` opens a fresh source.
        """
        with self._cond:
            if self._state is LiveViewState.STOPPED:
                return
            self._state = LiveViewState.STOPPED
            self._cond.notify_all()
        logger.warning(
            "Live view source ended", stream=self.name, frames=self._frame_count, **details
        )

    def _deliver(self, frame: bytes) -> None:
        with self._cond:
            if not self.is_streaming:
                return
            self._latest = frame
            self._frame_count += 1
            self._cond.notify_all()
            targets = list(self._subscribers)
        for callback in targets:
            try:
                callback(frame)
            except Exception:
                logger.exception("Live-view subscriber failed", stream=self.name)

    def _open(self) -> None:  # pragma: no cover - abstract
        raise NotImplementedError

    def _close(self) -> None:  # pragma: no cover - abstract
        raise NotImplementedError


class SimulatedLiveViewStream(LiveViewStream):
    """Test-card frames produced on a repeating scheduler timer."""

    def __init__(
        self,
        scheduler: Scheduler,
        width: int = 640,
        height: int = 480,
        fps: float = 30.0,
        name: str = "simulated",
    ) -> None:
        """Create the stream.

        Args:
            scheduler: Drives frame production (one frame per tick).
            width: Frame width.
            height: Frame height.
            fps: Frames per second.
            name: Log label.
        """
        super().__init__(name)
        self._scheduler = scheduler
        self._width = width
        self._height = height
        self._interval = 1.0 / fps
        self._timer: TimerHandle | None = None
        self._sequence = 0

    def _open(self) -> None:
        self._timer = self._scheduler.call_every(self._interval, self._produce)

    def _close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _produce(self) -> None:
        self._sequence += 1
        img = render_test_card(self._width, self._height, "LIVE VIEW", self._sequence)
        self._deliver(encode_image(img, "jpeg", quality=70))


class ProcessLiveViewStream(LiveViewStream):
    """Frames parsed from a subprocess emitting concatenated JPEGs on stdout.

    Stopping kills the subprocess at once; preview output has nothing
    worth finalizing.

    When the subprocess exits by itself (camera unplugged, tool error)
    the stream drops to Stopped.
    """

    def __init__(
        self,
        runner: CommandRunner,
        args: Sequence[str],
        name: str,
        parser_factory: Callable[[], FrameParser] = FrameParser,
    ) -> None:
        """Create the stream.

        Args:
            runner: Launches the preview process.
            args: Full argument vector of the preview command.
            name: Log label.
            parser_factory: Builds a fresh parser on every start.
        """
        super().__init__(name)
        self._runner = runner
        self._args = list(args)
        self._parser_factory = parser_factory
        self._parser: FrameParser | None = None
        self._process: ProcessHandle | None = None
        self._generation = 0

    @property
    def args(self) -> list[str]:
        """Preview command line."""
        return list(self._args)

    def _open(self) -> None:
        self._parser = self._parser_factory()
        self._generation += 1
        generation = self._generation
        try:
            self._process = self._runner.spawn(
                self._args,
                on_stdout=self._on_chunk,
                name=f"{self.name}-liveview",
                on_exit=lambda returncode: self._on_exit(generation, returncode),
            )
        except OSError as exc:
            raise CaptureFailedError(f"Could not start live view: {exc}") from exc

    def _close(self) -> None:
        process, self._process = self._process, None
        if process is not None:
            process.force_kill()
        if self._parser is not None:
            self._parser.reset()

    def _on_chunk(self, chunk: bytes) -> None:
        parser = self._parser
        if parser is None:
            return
        for frame in parser.feed(chunk):
            self._deliver(frame)

    def _on_exit(self, generation: int, returncode: int | None) -> None:
        with self._cond:
            if generation != self._generation:
                return
            self._process = None
        self._source_ended(returncode=returncode)
