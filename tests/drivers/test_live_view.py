"""Tests for live-view streams: state machine, push and pull delivery."""

from __future__ import annotations

import sys
import threading
import time

import pytest

from capture_station.drivers.cameras import (
    LiveViewState,
    ProcessLiveViewStream,
    SimulatedLiveViewStream,
)
from capture_station.drivers.frames import FrameParser
from capture_station.drivers.process import SubprocessRunner
from capture_station.errors import CaptureFailedError, CaptureTimeoutError
from tests.helpers import JPEG_BYTES


@pytest.fixture
def process_stream(runner) -> ProcessLiveViewStream:
    return ProcessLiveViewStream(runner, ["ffmpeg", "-f", "mjpeg", "-"], name="webcam")


class TestLiveViewStateMachine:
    def test_starts_stopped(self, process_stream) -> None:
        assert process_stream.state is LiveViewState.STOPPED
        assert not process_stream.is_streaming

    def test_start_is_idempotent(self, process_stream, runner) -> None:
        process_stream.start()
        process_stream.start()

        assert process_stream.state is LiveViewState.STREAMING
        assert len(runner.spawned) == 1

    def test_failed_start_returns_to_stopped(self, process_stream, runner, monkeypatch) -> None:
        def refuse(*args, **kwargs):
            raise FileNotFoundError("ffmpeg")

        monkeypatch.setattr(runner, "spawn", refuse)

        with pytest.raises(CaptureFailedError, match="Could not start live view"):
            process_stream.start()
        assert process_stream.state is LiveViewState.STOPPED

    def test_stop_is_idempotent_and_drops_subscribers(self, process_stream, runner) -> None:
        seen: list[bytes] = []
        process_stream.on_frame(seen.append)
        process_stream.start()
        process_stream.stop()
        process_stream.stop()

        process_stream.start()
        runner.spawned[-1].emit(JPEG_BYTES)

        assert seen == []
        assert process_stream.frame_count == 1

    def test_restart_uses_fresh_parser(self, runner) -> None:
        parsers: list[FrameParser] = []

        def make_parser() -> FrameParser:
            parsers.append(FrameParser())
            return parsers[-1]

        stream = ProcessLiveViewStream(runner, ["tool"], name="t", parser_factory=make_parser)
        stream.start()
        stream.stop()
        stream.start()

        assert len(parsers) == 2


class TestLiveViewDelivery:
    """Push to subscribers, pull with get_frame."""

    def test_push_delivery_in_order(self, process_stream, runner) -> None:
        frames: list[bytes] = []
        process_stream.on_frame(frames.append)
        process_stream.start()

        first = b"\xff\xd8one\xff\xd9"
        second = b"\xff\xd8two\xff\xd9"
        runner.spawned[0].emit(first + second)

        assert frames == [first, second]

    def test_failing_subscriber_does_not_stop_stream(self, process_stream, runner) -> None:
        frames: list[bytes] = []

        def broken(frame: bytes) -> None:
            raise RuntimeError("websocket closed")

        process_stream.on_frame(broken)
        process_stream.on_frame(frames.append)
        process_stream.start()

        runner.spawned[0].emit(JPEG_BYTES)

        assert frames == [JPEG_BYTES]

    def test_unsubscribe(self, process_stream, runner) -> None:
        frames: list[bytes] = []
        unsubscribe = process_stream.on_frame(frames.append)
        process_stream.start()
        unsubscribe()
        unsubscribe()

        runner.spawned[0].emit(JPEG_BYTES)

        assert frames == []

    def test_get_frame_when_stopped_fails_immediately(self, process_stream) -> None:
        with pytest.raises(CaptureTimeoutError, match="not streaming"):
            process_stream.get_frame(timeout=10.0)

    def test_get_frame_times_out_without_frames(self, process_stream) -> None:
        process_stream.start()
        with pytest.raises(CaptureTimeoutError, match="No live-view frame"):
            process_stream.get_frame(timeout=0.05)

    def test_get_frame_waits_for_next_frame(self, process_stream, runner) -> None:
        """Verifies a pull blocks until a frame arrives from the reader thread.

        Arrangement:
        1. Streaming process stream; a timer thread emits one JPEG after
           50 ms, standing in for the stdout reader.

        Action:
        get_frame(timeout=2.0).

        Assertion Strategy:
        - Returns that JPEG.
        - A second pull does not return the same frame again.
        """
        process_stream.start()
        process = runner.spawned[0]
        threading.Timer(0.05, process.emit, args=(JPEG_BYTES,)).start()

        assert process_stream.get_frame(timeout=2.0) == JPEG_BYTES
        with pytest.raises(CaptureTimeoutError):
            process_stream.get_frame(timeout=0.05)


class TestSimulatedLiveView:
    def test_frames_follow_fps(self, scheduler) -> None:
        stream = SimulatedLiveViewStream(scheduler, 64, 48, fps=10, name="sim")
        stream.start()

        scheduler.advance(0.55)

        assert stream.frame_count == 5
        assert stream.get_frame(timeout=0).startswith(b"\xff\xd8")

    def test_stop_cancels_timer(self, scheduler) -> None:
        stream = SimulatedLiveViewStream(scheduler, 64, 48, fps=10)
        stream.start()
        stream.stop()

        assert scheduler.pending == 0


class TestSourceExit:
    """A preview process that dies takes the stream down with it."""

    def test_process_exit_stops_stream(self, process_stream, runner) -> None:
        process_stream.start()

        runner.spawned[0].exit(1)

        assert process_stream.state is LiveViewState.STOPPED
        with pytest.raises(CaptureTimeoutError, match="not streaming"):
            process_stream.get_frame(timeout=0.05)

    def test_exit_wakes_pending_pull(self, process_stream, runner) -> None:
        """Verifies a get_frame caller is released as soon as the source dies.

        Arrangement:
        1. Streaming process stream; a timer thread ends the process after
           50 ms, standing in for an unplugged camera.

        Action:
        get_frame(timeout=10.0).

        Assertion Strategy:
        - CaptureTimeoutError raised well before the 10 s timeout.
        """
        process_stream.start()
        threading.Timer(0.05, runner.spawned[0].exit).start()

        started = time.monotonic()
        with pytest.raises(CaptureTimeoutError):
            process_stream.get_frame(timeout=10.0)

        assert time.monotonic() - started < 5.0

    def test_restart_after_exit_spawns_fresh_process(self, process_stream, runner) -> None:
        process_stream.start()
        dead = runner.spawned[0]
        dead.exit(1)

        process_stream.start()
        dead.exit(1)

        assert len(runner.spawned) == 2
        assert process_stream.is_streaming
        runner.spawned[1].emit(JPEG_BYTES)
        assert process_stream.get_frame(timeout=0) == JPEG_BYTES

    def test_real_process_exit_detected(self) -> None:
        stream = ProcessLiveViewStream(
            SubprocessRunner(), [sys.executable, "-c", "import sys; sys.exit(1)"], name="gphoto2"
        )
        stream.start()

        deadline = time.monotonic() + 5.0
        while stream.is_streaming and time.monotonic() < deadline:
            time.sleep(0.01)

        assert stream.state is LiveViewState.STOPPED
        stream.stop()
