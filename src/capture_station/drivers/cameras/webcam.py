"""External-process webcam backend driven by ``ffmpeg``.

* Still: one ``ffmpeg -frames:v 1`` run per picture.
* Video: a long-running ``ffmpeg`` encoding to H.264; stopped by
  writing ``q`` to its stdin so the MP4 is finalized, killed if it does
  not exit within the grace period.
* Live view: ``ffmpeg -f mjpeg -`` whose stdout is split into frames.

The input format and default device depend on the platform (V4L2 on
Linux, AVFoundation on macOS, DirectShow on Windows) and are resolved
once at construction.
"""

from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

from capture_station.drivers.cameras.base import BaseStrategy
from capture_station.drivers.cameras.live_view import (
    LiveViewStream,
    ProcessLiveViewStream,
)
from capture_station.drivers.cameras.types import (
    Capabilities,
    CaptureResult,
    CaptureSettings,
    ImageMetadata,
    Resolution,
    StrategyType,
)
from capture_station.drivers.process import (
    CommandRunner,
    ProcessHandle,
    SubprocessRunner,
)
from capture_station.errors import (
    CaptureFailedError,
    CaptureTimeoutError,
    DeviceUnavailableError,
)
from capture_station.observability import get_logger
from capture_station.scheduling import Clock, SystemClock

logger = get_logger(__name__)

FFMPEG = "ffmpeg"

#: (input format, default device) per ``sys.platform`` prefix.
PLATFORM_INPUTS: dict[str, tuple[str, str]] = {
    "linux": ("v4l2", "/dev/video0"),
    "darwin": ("avfoundation", "0"),
    "win32": ("dshow", "video=USB Camera"),
}

#: ``-q:v`` value per image quality (lower is better).
QSCALE = {"superfine": 1, "fine": 2, "standard": 5}

#: Seconds ffmpeg gets to finalize a recording after ``q``.
DEFAULT_VIDEO_GRACE_PERIOD = 5.0

LIVE_VIEW_SIZE = "640x480"
LIVE_VIEW_FPS = 30


def resolve_platform_input(platform: str, device: str | None = None) -> tuple[str, str]:
    """Return ``(input_format, device)`` for ``platform``.

    Unknown platforms are treated like Linux.

    Example:
        >>> resolve_platform_input("darwin")
        ('avfoundation', '0')
    """
    for prefix, (input_format, default_device) in PLATFORM_INPUTS.items():
        if platform.startswith(prefix):
            return input_format, device or default_device
    input_format, default_device = PLATFORM_INPUTS["linux"]
    return input_format, device or default_device


class WebcamStrategy(BaseStrategy):
    """USB/UVC webcam through ``ffmpeg`` subprocesses.

    Settings cannot be pushed to a generic webcam; ``update_settings``
    only changes the stored values (image quality still selects the
    encoder quality) and per-capture overrides are ignored.
    """

    name = "webcam"
    strategy_type = StrategyType.EXTERNAL_PROCESS
    CAPABILITIES = Capabilities(
        can_capture_still=True,
        can_record_video=True,
        can_live_view=True,
        can_adjust_settings=False,
        supported_formats=("jpeg", "png"),
        supported_resolutions=(
            Resolution(640, 480, "VGA"),
            Resolution(1280, 720, "HD"),
            Resolution(1920, 1080, "Full HD"),
        ),
    )

    def __init__(
        self,
        output_dir: Path | str,
        thumbnail_dir: Path | str | None = None,
        settings: CaptureSettings | None = None,
        *,
        device: str | None = None,
        runner: CommandRunner | None = None,
        clock: Clock | None = None,
        platform: str | None = None,
        resolution: Resolution = Resolution(1920, 1080, "Full HD"),
        capture_timeout: float = 15.0,
        video_grace_period: float = DEFAULT_VIDEO_GRACE_PERIOD,
    ) -> None:
        """Create the webcam backend.

        Args:
            output_dir: Directory receiving captured files.
            thumbnail_dir: Thumbnail directory (default ``<output>/thumbnails``).
            settings: Initial setting overrides.
            device: Device path or name; platform default when None.
            runner: Executes ffmpeg (injectable for tests).
            clock: Measures recording durations.
            platform: ``sys.platform`` override.
            resolution: Still capture size.
            capture_timeout: Seconds a still capture may take.
            video_grace_period: Seconds ffmpeg gets to finish a recording.
        """
        super().__init__(output_dir, thumbnail_dir, settings)
        self.platform = platform or sys.platform
        self.input_format, self.device = resolve_platform_input(self.platform, device)
        self.resolution = resolution
        self.capture_timeout = capture_timeout
        self.video_grace_period = video_grace_period
        self._runner = runner or SubprocessRunner()
        self._clock = clock or SystemClock()
        self._recorder: ProcessHandle | None = None
        self._recording_path: Path | None = None
        self._recording_started_at = 0.0
        self._recording_when: datetime | None = None

    def _input_args(self, size: str | None = None) -> list[str]:
        args = ["-f", self.input_format]
        if size:
            args += ["-video_size", size]
        return args + ["-i", self.device]

    def _probe(self) -> bool:
        if self._runner.which(FFMPEG) is None:
            return False
        if self.input_format == "v4l2":
            return Path(self.device).exists()
        result = self._runner.run(
            [FFMPEG, "-hide_banner", "-f", self.input_format,
             "-list_devices", "true", "-i", "dummy"],
            timeout=10.0,
        )
        # ffmpeg prints the device list on stderr and exits non-zero.
        listing = (result.stdout + result.stderr).decode("utf-8", errors="replace")
        wanted = self.device.split("=", 1)[-1].strip('"')
        return wanted in listing or "video" in listing.lower()

    def _initialize(self) -> None:
        if not self._probe():
            raise DeviceUnavailableError(
                f"Webcam {self.device} not reachable via {self.input_format}"
            )

    def _take_picture(
        self, settings: CaptureSettings, overrides: CaptureSettings | None
    ) -> CaptureResult:
        image_format = "png" if settings.image_format == "png" else "jpeg"
        when, file_name, path = self._next_output(
            "IMG", "png" if image_format == "png" else "jpg"
        )
        qscale = QSCALE.get(settings.image_quality or "fine", 2)
        args = [
            FFMPEG, "-hide_banner", "-y",
            *self._input_args(str(self.resolution)),
            "-frames:v", "1", "-q:v", str(qscale), str(path),
        ]
        result = self._runner.run(args, timeout=self.capture_timeout)
        if not result.ok or not path.exists():
            raise CaptureFailedError(
                f"ffmpeg still capture failed ({result.returncode}): {result.error_text}"
            )

        return CaptureResult(
            path=path,
            file_name=file_name,
            timestamp=when,
            thumbnail_path=self._make_thumbnail(path, file_name),
            metadata=ImageMetadata(
                width=self.resolution.width,
                height=self.resolution.height,
                size=path.stat().st_size,
                format=image_format,
                settings=settings,
            ),
        )

    def _make_thumbnail(self, source: Path, file_name: str) -> Path | None:
        thumbnail = self._thumbnail_path(file_name)
        try:
            result = self._runner.run(
                [FFMPEG, "-hide_banner", "-y", "-i", str(source),
                 "-vf", "scale=200:-1", "-q:v", "5", str(thumbnail)],
                timeout=self.capture_timeout,
            )
        except CaptureTimeoutError as exc:
            logger.warning("Thumbnail generation timed out", source=str(source), error=str(exc))
            return None
        if not result.ok or not thumbnail.exists():
            logger.warning(
                "Thumbnail generation failed",
                source=str(source),
                returncode=result.returncode,
            )
            return None
        return thumbnail

    def _start_video(self) -> None:
        when, _, path = self._next_output("VID", "mp4")
        args = [
            FFMPEG, "-hide_banner", "-y",
            *self._input_args(),
            "-c:v", "libx264", "-preset", "fast", "-crf", "22", str(path),
        ]
        try:
            self._recorder = self._runner.spawn(args, stop_input=b"q", name="ffmpeg-video")
        except OSError as exc:
            raise CaptureFailedError(f"Could not start ffmpeg recording: {exc}") from exc
        self._recording_path = path
        self._recording_when = when
        self._recording_started_at = self._clock.monotonic()

    def _stop_video(self, started: datetime) -> CaptureResult:
        recorder, self._recorder = self._recorder, None
        path, self._recording_path = self._recording_path, None
        assert recorder is not None and path is not None
        duration = max(0.0, self._clock.monotonic() - self._recording_started_at)

        # CaptureTimeoutError propagates after the recorder was killed.
        recorder.stop(self.video_grace_period)
        if not path.exists():
            raise CaptureFailedError(f"Recording {path.name} was not written")

        return CaptureResult(
            path=path,
            file_name=path.name,
            timestamp=self._recording_when or started,
            metadata=ImageMetadata(
                width=self.resolution.width,
                height=self.resolution.height,
                size=path.stat().st_size,
                format="mp4",
                settings=self._settings,
                duration_s=round(duration, 3),
            ),
        )

    def _abort_video(self) -> None:
        recorder, self._recorder = self._recorder, None
        self._recording_path = None
        if recorder is not None:
            recorder.force_kill()

    def _create_live_view(self) -> LiveViewStream:
        args = [
            FFMPEG, "-hide_banner", "-loglevel", "error",
            *self._input_args(LIVE_VIEW_SIZE),
            "-f", "mjpeg", "-q:v", "5", "-r", str(LIVE_VIEW_FPS), "-",
        ]
        return ProcessLiveViewStream(self._runner, args, name=self.name)
