"""Simulated capture backend.

Never touches hardware: stills and live-view frames are test cards
rendered with OpenCV, and every operation waits an artificial latency
on the injected clock so timing-dependent behavior (countdowns, Busy
rejection, UI spinners) looks like the real thing. Used on development
machines and as the fallback when no camera is detected.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from capture_station.drivers.cameras.base import BaseStrategy
from capture_station.drivers.cameras.live_view import (
    LiveViewStream,
    SimulatedLiveViewStream,
)
from capture_station.drivers.cameras.synthetic import (
    encode_image,
    make_thumbnail,
    render_test_card,
)
from capture_station.drivers.cameras.types import (
    Capabilities,
    CaptureResult,
    CaptureSettings,
    ImageMetadata,
    Resolution,
    StrategyType,
)
from capture_station.errors import CaptureFailedError, DeviceUnavailableError
from capture_station.observability import get_logger
from capture_station.scheduling import (
    Clock,
    Scheduler,
    SystemClock,
    ThreadingScheduler,
)

logger = get_logger(__name__)

#: Artificial delay of a simulated still capture, in seconds.
DEFAULT_CAPTURE_LATENCY = 0.5

#: JPEG quality used for each ``image_quality`` setting.
JPEG_QUALITY = {"standard": 75, "fine": 90, "superfine": 98}

#: Placeholder written as the body of simulated video files.
VIDEO_PLACEHOLDER = b"SIMULATED-VIDEO\n"


class SimulatedStrategy(BaseStrategy):
    """Synthetic still, video and live-view source.

    ``available`` can be flipped to False to simulate an unplugged
    camera: ``initialize()`` then raises ``DeviceUnavailableError`` and
    the availability probe reports False.
    """

    name = "mock"
    strategy_type = StrategyType.SIMULATED
    CAPABILITIES = Capabilities(
        can_capture_still=True,
        can_record_video=True,
        can_live_view=True,
        can_adjust_settings=True,
        supported_formats=("jpeg", "png", "raw"),
        supported_resolutions=(
            Resolution(640, 480, "VGA"),
            Resolution(1280, 720, "HD"),
            Resolution(1920, 1080, "Full HD"),
            Resolution(3840, 2160, "4K"),
        ),
    )

    def __init__(
        self,
        output_dir: Path | str,
        thumbnail_dir: Path | str | None = None,
        settings: CaptureSettings | None = None,
        *,
        scheduler: Scheduler | None = None,
        clock: Clock | None = None,
        latency: float = DEFAULT_CAPTURE_LATENCY,
        width: int = 1920,
        height: int = 1080,
        model: str = "Simulated Camera",
    ) -> None:
        """Create the simulated backend.

        Args:
            output_dir: Directory receiving captured files.
            thumbnail_dir: Thumbnail directory (default ``<output>/thumbnails``).
            settings: Initial setting overrides.
            scheduler: Drives live-view frame production.
            clock: Used for the artificial latency and video durations.
            latency: Seconds each still capture takes.
            width: Still width in pixels.
            height: Still height in pixels.
            model: Camera model reported in EXIF.
        """
        super().__init__(output_dir, thumbnail_dir, settings)
        self._scheduler = scheduler or ThreadingScheduler()
        self._clock = clock or SystemClock()
        self.latency = latency
        self.width = width
        self.height = height
        self.model = model
        self.available = True
        self._sequence = 0
        self._video_started_at = 0.0

    def _probe(self) -> bool:
        return self.available

    def _initialize(self) -> None:
        if not self.available:
            raise DeviceUnavailableError("Simulated camera is unplugged")

    def _take_picture(
        self, settings: CaptureSettings, overrides: CaptureSettings | None
    ) -> CaptureResult:
        self._clock.sleep(self.latency)
        self._sequence += 1
        image_format = "png" if settings.image_format == "png" else "jpeg"
        when, file_name, path = self._next_output(
            "IMG", "png" if image_format == "png" else "jpg"
        )

        img = render_test_card(self.width, self.height, "SIMULATED", self._sequence)
        quality = JPEG_QUALITY.get(settings.image_quality or "fine", 90)
        data = encode_image(img, image_format, quality)
        try:
            path.write_bytes(data)
        except OSError as exc:
            raise CaptureFailedError(f"Could not write {path}: {exc}") from exc
        thumbnail: Path | None = self._thumbnail_path(file_name)
        try:
            thumbnail.write_bytes(make_thumbnail(img))
        except OSError as exc:
            logger.warning(
                "Thumbnail generation failed", file_name=file_name, error=str(exc)
            )
            thumbnail = None

        logger.debug("Simulated still written", file_name=file_name, size=len(data))
        return CaptureResult(
            path=path,
            file_name=file_name,
            timestamp=when,
            thumbnail_path=thumbnail,
            metadata=ImageMetadata(
                width=self.width,
                height=self.height,
                size=len(data),
                format=image_format,
                settings=settings,
                exif=self._exif(when, settings),
            ),
        )

    def _exif(self, when: datetime, settings: CaptureSettings) -> dict[str, str]:
        return {
            "Make": "Mock",
            "Model": self.model,
            "DateTime": when.strftime("%Y:%m:%d %H:%M:%S"),
            "ISO": settings.iso or "auto",
            "FNumber": settings.aperture or "",
            "ExposureTime": settings.shutter_speed or "",
        }

    def _start_video(self) -> None:
        self._video_started_at = self._clock.monotonic()

    def _stop_video(self, started: datetime) -> CaptureResult:
        duration = max(0.0, self._clock.monotonic() - self._video_started_at)
        when, file_name, path = self._next_output("VID", "mp4")
        try:
            path.write_bytes(VIDEO_PLACEHOLDER)
        except OSError as exc:
            raise CaptureFailedError(f"Could not write {path}: {exc}") from exc
        return CaptureResult(
            path=path,
            file_name=file_name,
            timestamp=when,
            metadata=ImageMetadata(
                width=1280,
                height=720,
                size=len(VIDEO_PLACEHOLDER),
                format="mp4",
                settings=self._settings,
                duration_s=round(duration, 3),
            ),
        )

    def _create_live_view(self) -> LiveViewStream:
        return SimulatedLiveViewStream(self._scheduler, name=self.name)
