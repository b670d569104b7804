"""Test helpers for capture-station.

Provides protocol compliance checks plus hand-written fakes for the
collaborators strategies and controllers depend on (command runner,
long-running process, capture strategy) and a recorder for bus events.

Example:
    from tests.helpers import FakeRunner, assert_implements_protocol
    from capture_station.drivers.process import CommandRunner

    def test_fake_runner_is_a_runner():
        assert_implements_protocol(FakeRunner(), CommandRunner)
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from capture_station.devices.events import CATEGORIES, Event, EventBus, EventTopic
from capture_station.drivers.cameras import (
    Capabilities,
    CaptureResult,
    CaptureSettings,
    ImageMetadata,
    LiveViewStream,
    SimulatedLiveViewStream,
)
from capture_station.drivers.cameras.types import capture_file_name, unique_timestamp
from capture_station.drivers.process import CommandResult
from capture_station.errors import (
    CaptureFailedError,
    CaptureTimeoutError,
    DeviceUnavailableError,
)
from capture_station.scheduling import ManualScheduler

JPEG_BYTES = b"\xff\xd8fake-jpeg-payload\xff\xd9"


def assert_implements_protocol(instance: object, protocol: type[Protocol]) -> None:
    """Assert that an instance implements a ``@runtime_checkable`` Protocol.

    Business context: Fakes used throughout the suite stand in for real
    drivers; if a fake drifts from the protocol, tests would pass against
    an interface production code never sees.

    Args:
        instance: Object to check for protocol compliance.
        protocol: Protocol class decorated with ``@runtime_checkable``.

    Raises:
        AssertionError: Listing the members the instance lacks.
    """
    if isinstance(instance, protocol):
        return
    wanted = {
        attr
        for attr in set(dir(protocol)) - set(dir(object))
        if not attr.startswith("_")
    }
    missing = sorted(attr for attr in wanted if not hasattr(instance, attr))
    raise AssertionError(
        f"{type(instance).__name__} does not implement {protocol.__name__}. "
        f"Missing: {', '.join(missing) or 'unknown'}"
    )


# =============================================================================
# Process fakes
# =============================================================================


@dataclass
class _Rule:
    tokens: tuple[str, ...]
    returncode: int = 0
    stdout: bytes = b""
    stderr: bytes = b""
    action: Callable[[list[str]], None] | None = None
    error: Exception | None = None


def write_last_arg(args: list[str]) -> None:
    """Runner action: create the file named by the final argument."""
    Path(args[-1]).write_bytes(JPEG_BYTES)


def write_after(flag: str) -> Callable[[list[str]], None]:
    """Runner action: create the file named by the argument after ``flag``."""

    def action(args: list[str]) -> None:
        Path(args[args.index(flag) + 1]).write_bytes(JPEG_BYTES)

    return action


class FakeProcess:
    """In-memory ``ProcessHandle`` returned by ``FakeRunner.spawn``."""

    def __init__(
        self,
        args: Sequence[str],
        on_stdout: Callable[[bytes], None] | None,
        stop_input: bytes | None,
        on_stop: Callable[[list[str]], None] | None = None,
        hang: bool = False,
        on_exit: Callable[[int | None], None] | None = None,
    ) -> None:
        self.args = list(args)
        self.on_stdout = on_stdout
        self.stop_input = stop_input
        self.on_stop = on_stop
        self.hang = hang
        self.on_exit = on_exit
        self.running = True
        self.killed = False
        self.stop_calls: list[float] = []

    @property
    def pid(self) -> int | None:
        return 4242

    @property
    def is_running(self) -> bool:
        return self.running

    def emit(self, chunk: bytes) -> None:
        """Push ``chunk`` to the stdout consumer as the reader thread would."""
        assert self.on_stdout is not None
        self.on_stdout(chunk)

    def exit(self, returncode: int = 1) -> None:
        """End the process on its own, as a crashed or unplugged tool would."""
        self.running = False
        if self.on_exit is not None:
            self.on_exit(returncode)

    def stop(self, grace_period: float = 5.0) -> int | None:
        self.stop_calls.append(grace_period)
        if self.hang:
            self.force_kill()
            raise CaptureTimeoutError(f"{self.args[0]} did not exit within {grace_period}s")
        if self.on_stop is not None:
            self.on_stop(self.args)
        self.running = False
        return 0

    def force_kill(self) -> None:
        self.killed = True
        self.running = False


class FakeRunner:
    """Scriptable ``CommandRunner`` recording every invocation.

    Responses are matched by tokens: the most recently added rule whose
    tokens all appear in the argument vector wins. Unmatched commands
    succeed with empty output.
    """

    def __init__(self, available: Sequence[str] = ("ffmpeg", "gphoto2", "convert", "exiftool")):
        self.available = set(available)
        self.calls: list[list[str]] = []
        self.spawned: list[FakeProcess] = []
        self.spawn_on_stop: Callable[[list[str]], None] | None = None
        self.spawn_hangs = False
        self._rules: list[_Rule] = []

    def on(self, *tokens: str, **response: Any) -> FakeRunner:
        """Script the response for commands containing every token."""
        self._rules.append(_Rule(tokens, **response))
        return self

    def which(self, executable: str) -> str | None:
        return f"/usr/bin/{executable}" if executable in self.available else None

    def run(self, args: Sequence[str], timeout: float = 30.0) -> CommandResult:
        argv = list(args)
        self.calls.append(argv)
        rule = next(
            (r for r in reversed(self._rules) if all(t in argv for t in r.tokens)),
            None,
        )
        if rule is None:
            return CommandResult(tuple(argv), 0)
        if rule.error is not None:
            raise rule.error
        if rule.action is not None:
            rule.action(argv)
        return CommandResult(tuple(argv), rule.returncode, rule.stdout, rule.stderr)

    def spawn(
        self,
        args: Sequence[str],
        *,
        on_stdout: Callable[[bytes], None] | None = None,
        stop_input: bytes | None = None,
        name: str | None = None,
        on_exit: Callable[[int | None], None] | None = None,
    ) -> FakeProcess:
        process = FakeProcess(
            args,
            on_stdout,
            stop_input,
            on_stop=self.spawn_on_stop,
            hang=self.spawn_hangs,
            on_exit=on_exit,
        )
        self.spawned.append(process)
        return process

    def commands(self, executable: str) -> list[list[str]]:
        """Recorded ``run`` calls of one executable."""
        return [c for c in self.calls if c and c[0] == executable]


# =============================================================================
# Strategy fake
# =============================================================================

FAKE_CAPABILITIES = Capabilities(
    can_capture_still=True,
    can_record_video=True,
    can_live_view=True,
    can_adjust_settings=True,
)


class FakeStrategy:
    """Minimal ``CaptureStrategy`` with call counters shared across instances.

    Attributes:
        counters: Shared ``Counter`` of method calls (``initialize``,
            ``cleanup``, ``take_picture`` ...).
        fail_initialize: Number of upcoming ``initialize`` calls that raise
            ``DeviceUnavailableError``; -1 fails forever.
        capture_error: Raised by ``take_picture`` when set.
    """

    name = "fake"

    def __init__(
        self,
        counters: Counter[str] | None = None,
        *,
        output_dir: Path = Path("/tmp/fake-captures"),
        scheduler: ManualScheduler | None = None,
        fail_initialize: int = 0,
        capabilities: Capabilities = FAKE_CAPABILITIES,
    ) -> None:
        self.counters = counters if counters is not None else Counter()
        self.output_dir = output_dir
        self.fail_initialize = fail_initialize
        self.capture_error: Exception | None = None
        self.available = True
        self._caps = capabilities
        self._scheduler = scheduler or ManualScheduler()
        self._settings = CaptureSettings.defaults()
        self._stream: LiveViewStream | None = None
        self._recording = False
        self.taken: list[CaptureSettings | None] = []

    def initialize(self) -> None:
        self.counters["initialize"] += 1
        if self.fail_initialize:
            if self.fail_initialize > 0:
                self.fail_initialize -= 1
            raise DeviceUnavailableError("fake camera unplugged")

    def is_available(self) -> bool:
        return self.available

    def capabilities(self) -> Capabilities:
        return self._caps

    def take_picture(self, settings: CaptureSettings | None = None) -> CaptureResult:
        self.counters["take_picture"] += 1
        self.taken.append(settings)
        if self.capture_error is not None:
            raise self.capture_error
        when = unique_timestamp()
        file_name = capture_file_name("IMG", "jpg", when)
        return CaptureResult(
            path=self.output_dir / file_name,
            file_name=file_name,
            timestamp=when,
            metadata=ImageMetadata(
                width=640,
                height=480,
                size=len(JPEG_BYTES),
                format="jpeg",
                settings=self._settings.merge(settings),
            ),
        )

    def start_video(self) -> None:
        if self._recording:
            raise CaptureFailedError("already recording")
        self.counters["start_video"] += 1
        self._recording = True

    def stop_video(self) -> CaptureResult:
        if not self._recording:
            raise CaptureFailedError("not recording")
        self.counters["stop_video"] += 1
        self._recording = False
        when = unique_timestamp()
        file_name = capture_file_name("VID", "mp4", when)
        return CaptureResult(
            path=self.output_dir / file_name,
            file_name=file_name,
            timestamp=when,
            metadata=ImageMetadata(width=1280, height=720, size=1, format="mp4"),
        )

    def live_view(self) -> LiveViewStream:
        if self._stream is None:
            self._stream = SimulatedLiveViewStream(self._scheduler, 32, 24, fps=10, name="fake")
        return self._stream

    def get_settings(self) -> CaptureSettings:
        return self._settings

    def update_settings(self, partial: CaptureSettings | dict[str, Any]) -> CaptureSettings:
        self.counters["update_settings"] += 1
        self._settings = self._settings.merge(partial)
        return self._settings

    def cleanup(self) -> None:
        self.counters["cleanup"] += 1
        if self._stream is not None:
            self._stream.stop()
        self._recording = False


# =============================================================================
# Event recorder
# =============================================================================


class EventRecorder:
    """Collects every event published on a bus, in delivery order."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list[Event] = []
        for category in CATEGORIES:
            bus.subscribe(category, self.events.append)

    @property
    def topics(self) -> list[EventTopic]:
        return [e.topic for e in self.events]

    def payloads(self, topic: EventTopic) -> list[dict[str, Any]]:
        """Payloads of every event with ``topic``."""
        return [e.payload for e in self.events if e.topic is topic]

    def count(self, topic: EventTopic) -> int:
        return sum(1 for e in self.events if e.topic is topic)

    def clear(self) -> None:
        self.events.clear()
