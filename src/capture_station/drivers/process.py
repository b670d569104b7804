"""Subprocess execution for external capture tools.

Two shapes of process are needed by the capture backends:

* One-shot commands (``ffmpeg -frames:v 1``, ``gphoto2 --auto-detect``,
  ``exiftool -j``) run to completion via ``CommandRunner.run``.
* Long-running processes (video recording, live-view streams) are
  wrapped in a ``ManagedProcess`` with an explicit lifecycle:
  ``start()``, ``stop(grace_period)`` which asks politely first and
  escalates to a kill, and ``force_kill()`` for immediate teardown.

Strategies receive a ``CommandRunner`` by injection so tests can replace
real binaries with scripted fakes.

Example:
    runner = SubprocessRunner()
    result = runner.run(["gphoto2", "--auto-detect"], timeout=10)
    if result.ok:
        print(result.text)

    recorder = runner.spawn(["ffmpeg", "-i", "/dev/video0", "out.mp4"])
    ...
    recorder.stop(grace_period=5.0)
"""

from __future__ import annotations

import shutil
import signal
import subprocess
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import IO, Protocol, runtime_checkable

from capture_station.errors import CaptureTimeoutError
from capture_station.observability import get_logger

logger = get_logger(__name__)

ChunkCallback = Callable[[bytes], None]
ExitCallback = Callable[[int | None], None]

#: Exit code reported when the executable does not exist (shell convention).
COMMAND_NOT_FOUND = 127

#: Read size for stdout chunks of long-running processes.
DEFAULT_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Outcome of a one-shot command.

    Attributes:
        args: The argument vector that was executed.
        returncode: Process exit status (127 when the binary is missing).
        stdout: Raw standard output.
        stderr: Raw standard error.
    """

    args: tuple[str, ...]
    returncode: int
    stdout: bytes = b""
    stderr: bytes = b""

    @property
    def ok(self) -> bool:
        """True when the command exited with status 0."""
        return self.returncode == 0

    @property
    def text(self) -> str:
        """Standard output decoded as UTF-8 (undecodable bytes replaced)."""
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def error_text(self) -> str:
        """Standard error decoded and stripped, for error messages."""
        return self.stderr.decode("utf-8", errors="replace").strip()


@runtime_checkable
class ProcessHandle(Protocol):  # pragma: no cover
    """Lifecycle surface of a long-running subprocess."""

    @property
    def pid(self) -> int | None:
        """OS process id once started."""
        ...

    @property
    def is_running(self) -> bool:
        """True while the process has not exited."""
        ...

    def stop(self, grace_period: float = 5.0) -> int | None:
        """Request a graceful exit, kill after ``grace_period`` seconds."""
        ...

    def force_kill(self) -> None:
        """Terminate immediately without a grace period."""
        ...


@runtime_checkable
class CommandRunner(Protocol):  # pragma: no cover
    """Injectable process launcher used by capture strategies.

    Business context: Webcam and tethered DSLR support are thin wrappers
    around ``ffmpeg`` and ``gphoto2``. Routing every invocation through
    this protocol keeps the argument construction testable on machines
    that have neither tool installed.
    """

    def which(self, executable: str) -> str | None:
        """Return the resolved path of ``executable`` or None."""
        ...

    def run(self, args: Sequence[str], timeout: float = 30.0) -> CommandResult:
        """Run a command to completion.

        Raises:
            CaptureTimeoutError: If it does not exit within ``timeout``.
        """
        ...

    def spawn(
        self,
        args: Sequence[str],
        *,
        on_stdout: ChunkCallback | None = None,
        stop_input: bytes | None = None,
        name: str | None = None,
        on_exit: ExitCallback | None = None,
    ) -> ProcessHandle:
        """Start a long-running process and return its handle.

        ``on_exit`` is called once with the exit status when the process
        ends, whether it was stopped or died on its own.
        """
        ...


class ManagedProcess:
    """A long-running subprocess with graceful and forced termination.

    Stdout, when requested, is read on a daemon thread in chunks and
    pushed to ``on_stdout``; stderr is always drained on another daemon
    thread and forwarded to debug logs so a chatty tool cannot block on
    a full pipe.

    Graceful stop either writes ``stop_input`` to stdin (``b"q"`` makes
    ffmpeg finalize its output file) or, when no stop input is set,
    sends SIGINT.

    ``on_exit`` fires once after the process ends. With a stdout consumer
    it runs on the stdout thread after the last chunk, so no chunk can
    arrive after it; otherwise a watcher thread waits for the exit.
    """

    def __init__(
        self,
        args: Sequence[str],
        *,
        on_stdout: ChunkCallback | None = None,
        stop_input: bytes | None = None,
        name: str | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        on_exit: ExitCallback | None = None,
    ) -> None:
        """Prepare, but do not start, the process.

        Args:
            args: Argument vector, executable first.
            on_stdout: Receives stdout chunks; stdout is discarded if None.
            stop_input: Bytes written to stdin to request a graceful exit.
            name: Label for logs; defaults to the executable name.
            chunk_size: Maximum bytes per stdout read.
            on_exit: Receives the exit status once the process has ended.
        """
        self.args = tuple(args)
        self.name = name or (self.args[0] if self.args else "process")
        self._on_stdout = on_stdout
        self._stop_input = stop_input
        self._chunk_size = chunk_size
        self._on_exit = on_exit
        self._process: subprocess.Popen[bytes] | None = None
        self._readers: list[threading.Thread] = []
        self._lock = threading.Lock()

    @property
    def pid(self) -> int | None:
        """OS process id, None before ``start()``."""
        return self._process.pid if self._process else None

    @property
    def is_running(self) -> bool:
        """True between a successful start and process exit."""
        return self._process is not None and self._process.poll() is None

    @property
    def returncode(self) -> int | None:
        """Exit status once the process has ended."""
        return self._process.poll() if self._process else None

    def start(self) -> ManagedProcess:
        """Launch the process and its reader threads.

        Returns:
            self, for chaining.

        Raises:
            RuntimeError: If already started.
            FileNotFoundError: If the executable does not exist.
        """
        with self._lock:
            if self._process is not None:
                raise RuntimeError(f"{self.name} already started")
            self._process = subprocess.Popen(
                self.args,
                stdin=subprocess.PIPE if self._stop_input else subprocess.DEVNULL,
                stdout=subprocess.PIPE if self._on_stdout else subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        logger.debug("Process started", process=self.name, pid=self._process.pid)

        if self._on_stdout is not None and self._process.stdout is not None:
            self._start_reader(self._read_stdout, self._process.stdout, "stdout")
        elif self._on_exit is not None:
            self._start_reader(self._wait_exit, None, "exit")
        if self._process.stderr is not None:
            self._start_reader(self._read_stderr, self._process.stderr, "stderr")
        return self

    def stop(self, grace_period: float = 5.0) -> int | None:
        """Ask the process to exit, escalating to a kill after the grace period.

        Args:
            grace_period: Seconds to wait after the graceful request.

        Returns:
            The exit status, or None if the process was never started.

        Raises:
            CaptureTimeoutError: If the process ignored the graceful
                request; it has been killed by the time this is raised.
        """
        process = self._process
        if process is None:
            return None
        if process.poll() is not None:
            self._join_readers()
            return process.returncode

        self._request_exit(process)
        try:
            returncode = process.wait(timeout=grace_period)
        except subprocess.TimeoutExpired as exc:
            logger.warning(
                "Process ignored graceful stop, killing",
                process=self.name,
                pid=process.pid,
                grace_period=grace_period,
            )
            self.force_kill()
            raise CaptureTimeoutError(
                f"{self.name} did not exit within {grace_period}s"
            ) from exc
        self._join_readers()
        logger.debug("Process stopped", process=self.name, returncode=returncode)
        return returncode

    def force_kill(self) -> None:
        """Kill the process immediately and reap it. Idempotent."""
        process = self._process
        if process is None:
            return
        if process.poll() is None:
            process.kill()
            process.wait()
            logger.debug("Process killed", process=self.name, pid=process.pid)
        self._join_readers()

    def _request_exit(self, process: subprocess.Popen[bytes]) -> None:
        if self._stop_input and process.stdin is not None:
            try:
                process.stdin.write(self._stop_input)
                process.stdin.flush()
                process.stdin.close()
                return
            except OSError as exc:
                logger.debug(
                    "Stop input failed, falling back to SIGINT",
                    process=self.name,
                    error=str(exc),
                )
        process.send_signal(signal.SIGINT)

    def _start_reader(
        self,
        target: Callable[[IO[bytes] | None], None],
        stream: IO[bytes] | None,
        label: str,
    ) -> None:
        thread = threading.Thread(
            target=target,
            args=(stream,),
            name=f"{self.name}-{label}",
            daemon=True,
        )
        self._readers.append(thread)
        thread.start()

    def _read_stdout(self, stream: IO[bytes]) -> None:
        callback = self._on_stdout
        assert callback is not None
        read = getattr(stream, "read1", stream.read)
        while True:
            try:
                chunk = read(self._chunk_size)
            except (OSError, ValueError):
                break
            if not chunk:
                break
            try:
                callback(chunk)
            except Exception:
                logger.exception("Stdout consumer failed", process=self.name)
        stream.close()
        self._notify_exit()

    def _wait_exit(self, _stream: None) -> None:
        self._notify_exit()

    def _notify_exit(self) -> None:
        process, callback = self._process, self._on_exit
        if process is None or callback is None:
            return
        returncode = process.wait()
        logger.debug("Process exited", process=self.name, returncode=returncode)
        try:
            callback(returncode)
        except Exception:
            logger.exception("Exit consumer failed", process=self.name)

    def _read_stderr(self, stream: IO[bytes]) -> None:
        for raw in iter(stream.readline, b""):
            line = raw.decode("utf-8", errors="replace").rstrip()
            if line:
                logger.debug("Process stderr", process=self.name, line=line)
        stream.close()

    def _join_readers(self) -> None:
        current = threading.current_thread()
        for thread in self._readers:
            if thread is not current:
                thread.join(timeout=1.0)


class SubprocessRunner:
    """``CommandRunner`` backed by the ``subprocess`` module."""

    def which(self, executable: str) -> str | None:
        """Resolve ``executable`` on PATH."""
        return shutil.which(executable)

    def run(self, args: Sequence[str], timeout: float = 30.0) -> CommandResult:
        """Run ``args`` and capture output.

        A missing executable is reported as exit status 127 rather than
        an exception, so callers handle "tool missing" and "tool failed"
        through one code path.

        Raises:
            CaptureTimeoutError: If the command outlives ``timeout``.
        """
        argv = tuple(args)
        logger.debug("Running command", args=list(argv), timeout=timeout)
        try:
            completed = subprocess.run(
                argv,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                timeout=timeout,
                check=False,
            )
        except FileNotFoundError:
            return CommandResult(
                argv, COMMAND_NOT_FOUND, stderr=f"{argv[0]}: not found".encode()
            )
        except subprocess.TimeoutExpired as exc:
            raise CaptureTimeoutError(
                f"{argv[0]} did not finish within {timeout}s"
            ) from exc
        return CommandResult(argv, completed.returncode, completed.stdout, completed.stderr)

    def spawn(
        self,
        args: Sequence[str],
        *,
        on_stdout: ChunkCallback | None = None,
        stop_input: bytes | None = None,
        name: str | None = None,
        on_exit: ExitCallback | None = None,
    ) -> ManagedProcess:
        """Create and start a ``ManagedProcess``."""
        return ManagedProcess(
            args,
            on_stdout=on_stdout,
            stop_input=stop_input,
            name=name,
            on_exit=on_exit,
        ).start()
