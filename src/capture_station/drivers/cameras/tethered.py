"""Tethered DSLR backend driven by the ``gphoto2`` command line.

Detection parses ``gphoto2 --auto-detect``; settings are pushed one
``--set-config key=value`` call per field and individual failures are
tolerated (cameras differ in which keys they expose); stills use
``--capture-image-and-download``. Thumbnails (ImageMagick ``convert``)
and EXIF extraction (``exiftool -j``) are best-effort extras that never
fail a capture. Video is not offered; live view streams the camera's
preview through ``--capture-movie --stdout``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

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
    extension_for,
)
from capture_station.drivers.process import CommandResult, CommandRunner, SubprocessRunner
from capture_station.errors import (
    CaptureFailedError,
    CaptureTimeoutError,
    DeviceUnavailableError,
)
from capture_station.observability import get_logger

logger = get_logger(__name__)

GPHOTO2 = "gphoto2"
CONVERT = "convert"
EXIFTOOL = "exiftool"

#: Dimensions assumed when EXIF extraction yields none.
FALLBACK_DIMENSIONS = (6000, 4000)

#: EXIF tags copied into ``ImageMetadata.exif``.
EXIF_KEYS = (
    "Make",
    "Model",
    "DateTimeOriginal",
    "ISO",
    "FNumber",
    "ExposureTime",
    "FocalLength",
    "WhiteBalance",
)

_IMAGE_FORMAT_CONFIG = {"jpeg": "JPEG Fine", "raw": "RAW", "raw+jpeg": "RAW+JPEG Fine"}
_CURRENT = re.compile(r"^Current:\s*(.+)$", re.MULTILINE)
_PORT_PREFIXES = ("usb:", "ptpip:")


@dataclass(frozen=True, slots=True)
class DetectedCamera:
    """One line of ``gphoto2 --auto-detect`` output."""

    model: str
    port: str


def parse_auto_detect(output: str) -> list[DetectedCamera]:
    """Parse ``--auto-detect`` output into cameras.

    The port is the last whitespace-separated token of a line; gphoto2
    pads the model column to 30 characters, so a long model name may be
    followed by a single space. The table header and separator lines are
    skipped; only lines whose port starts with ``usb:`` or ``ptpip:`` count.

    Example:
        >>> text = (
        ...     "Model                          Port\\n"
        ...     "----------------------------------------------------------\\n"
        ...     "Canon EOS 2000D                usb:001,004\\n"
        ... )
        >>> parse_auto_detect(text)
        [DetectedCamera(model='Canon EOS 2000D', port='usb:001,004')]
    """
    cameras = []
    for line in output.splitlines():
        parts = line.strip().rsplit(None, 1)
        if len(parts) == 2 and parts[1].startswith(_PORT_PREFIXES):
            cameras.append(DetectedCamera(parts[0].strip(), parts[1]))
    return cameras


def settings_to_config(settings: CaptureSettings) -> list[tuple[str, str]]:
    """Translate set fields into gphoto2 ``(key, value)`` pairs, in field order."""
    pairs: list[tuple[str, str]] = []
    if settings.iso is not None:
        pairs.append(("iso", "Auto" if settings.iso == "auto" else settings.iso))
    if settings.aperture is not None:
        pairs.append(("aperture", settings.aperture.removeprefix("f/")))
    if settings.shutter_speed is not None:
        pairs.append(("shutterspeed", settings.shutter_speed))
    if settings.white_balance is not None:
        pairs.append(("whitebalance", settings.white_balance.capitalize()))
    if settings.focus_mode is not None:
        pairs.append(("focusmode", "AF-S" if settings.focus_mode == "auto" else "MF"))
    if settings.image_format in _IMAGE_FORMAT_CONFIG:
        pairs.append(("imageformat", _IMAGE_FORMAT_CONFIG[settings.image_format]))
    return pairs


class TetheredStrategy(BaseStrategy):
    """USB-tethered DSLR/mirrorless camera through ``gphoto2``."""

    name = "gphoto2"
    strategy_type = StrategyType.TETHERED_CLI
    CAPABILITIES = Capabilities(
        can_capture_still=True,
        can_record_video=False,
        can_live_view=True,
        can_adjust_settings=True,
        supported_formats=("jpeg", "raw", "raw+jpeg"),
        supported_resolutions=(
            Resolution(6000, 4000, "24MP"),
            Resolution(4500, 3000, "13.5MP"),
            Resolution(3000, 2000, "6MP"),
        ),
    )

    def __init__(
        self,
        output_dir: Path | str,
        thumbnail_dir: Path | str | None = None,
        settings: CaptureSettings | None = None,
        *,
        port: str | None = None,
        runner: CommandRunner | None = None,
        command_timeout: float = 30.0,
    ) -> None:
        """Create the tethered backend.

        Args:
            output_dir: Directory receiving captured files.
            thumbnail_dir: Thumbnail directory (default ``<output>/thumbnails``).
            settings: Initial setting overrides.
            port: gphoto2 port (``usb:001,004``); first detected camera when None.
            runner: Executes gphoto2/convert/exiftool (injectable for tests).
            command_timeout: Seconds any single command may take.
        """
        super().__init__(output_dir, thumbnail_dir, settings)
        self.requested_port = port
        self.port: str | None = port
        self.model: str | None = None
        self.command_timeout = command_timeout
        self._runner = runner or SubprocessRunner()
        self._detected: list[DetectedCamera] = []

    # -- gphoto2 plumbing --------------------------------------------------

    def _gphoto(self, *args: str) -> CommandResult:
        argv = [GPHOTO2, *args]
        if self.port:
            argv += ["--port", self.port]
        return self._runner.run(argv, timeout=self.command_timeout)

    def detect(self) -> list[DetectedCamera]:
        """List attached cameras (empty when gphoto2 is missing or fails)."""
        result = self._runner.run([GPHOTO2, "--auto-detect"], timeout=self.command_timeout)
        if not result.ok:
            logger.debug("Auto-detect failed", returncode=result.returncode)
            return []
        return parse_auto_detect(result.text)

    def set_config(self, key: str, value: str) -> bool:
        """Set one camera config entry; returns False (logged) on failure."""
        try:
            result = self._gphoto("--set-config", f"{key}={value}")
        except CaptureTimeoutError as exc:
            logger.warning("Camera config timed out", key=key, value=value, error=str(exc))
            return False
        if not result.ok:
            logger.warning(
                "Camera rejected config",
                key=key,
                value=value,
                error=result.error_text,
            )
            return False
        return True

    def get_config(self, key: str) -> str | None:
        """Read the current value of one config entry, None if unavailable."""
        try:
            result = self._gphoto("--get-config", key)
        except CaptureTimeoutError:
            return None
        if not result.ok:
            return None
        match = _CURRENT.search(result.text)
        return match.group(1).strip() if match else None

    # -- BaseStrategy hooks ------------------------------------------------

    def _select(self, cameras: list[DetectedCamera]) -> DetectedCamera | None:
        if self.requested_port is None:
            return cameras[0] if cameras else None
        return next((c for c in cameras if c.port == self.requested_port), None)

    def _probe(self) -> bool:
        if self._runner.which(GPHOTO2) is None:
            return False
        self._detected = self.detect()
        return self._select(self._detected) is not None

    def _initialize(self) -> None:
        if not self.is_available():
            raise DeviceUnavailableError(
                "No tethered camera detected"
                + (f" on {self.requested_port}" if self.requested_port else "")
            )
        camera = self._select(self._detected)
        if camera is None:
            raise DeviceUnavailableError("Tethered camera disappeared during detection")
        self.model, self.port = camera.model, camera.port
        logger.info("Tethered camera detected", model=self.model, port=self.port)
        # Keep captures on the camera card as well as downloading them.
        self.set_config("capturetarget", "1")
        self._apply_settings(self._settings)

    def _apply_settings(self, partial: CaptureSettings) -> None:
        applied = [key for key, value in settings_to_config(partial) if self.set_config(key, value)]
        logger.debug("Camera settings applied", applied=applied)

    def get_settings(self) -> CaptureSettings:
        """Stored settings refreshed with values read back from the camera."""
        if not self._initialized:
            return self._settings
        read_back: dict[str, Any] = {}
        for field_name, key in (
            ("iso", "iso"),
            ("aperture", "aperture"),
            ("shutter_speed", "shutterspeed"),
        ):
            value = self.get_config(key)
            if value:
                if field_name == "aperture" and not value.startswith("f/"):
                    value = f"f/{value}"
                if field_name == "iso" and value.lower() == "auto":
                    value = "auto"
                read_back[field_name] = value
        try:
            return self._settings.merge(read_back)
        except ValueError:
            logger.debug("Camera reported non-standard settings", values=read_back)
            return self._settings

    def _take_picture(
        self, settings: CaptureSettings, overrides: CaptureSettings | None
    ) -> CaptureResult:
        if overrides is not None:
            self._apply_settings(overrides)
        when, file_name, path = self._next_output(
            "IMG", extension_for(settings.image_format)
        )
        result = self._gphoto(
            "--capture-image-and-download",
            "--filename", str(path),
            "--force-overwrite",
        )
        if not result.ok:
            raise CaptureFailedError(
                f"gphoto2 capture failed ({result.returncode}): {result.error_text}"
            )
        if not path.exists():
            raise CaptureFailedError(f"gphoto2 reported success but {path.name} is missing")

        exif = self._read_exif(path)
        width, height = FALLBACK_DIMENSIONS
        if isinstance(exif.get("ImageWidth"), int) and isinstance(exif.get("ImageHeight"), int):
            width, height = exif["ImageWidth"], exif["ImageHeight"]

        return CaptureResult(
            path=path,
            file_name=file_name,
            timestamp=when,
            thumbnail_path=self._make_thumbnail(path, file_name),
            metadata=ImageMetadata(
                width=width,
                height=height,
                size=path.stat().st_size,
                format=settings.image_format or "jpeg",
                settings=settings,
                exif={k: exif[k] for k in EXIF_KEYS if k in exif},
            ),
        )

    def _make_thumbnail(self, source: Path, file_name: str) -> Path | None:
        thumbnail = self._thumbnail_path(file_name)
        try:
            result = self._runner.run(
                [CONVERT, str(source), "-resize", "200x150", "-quality", "85", str(thumbnail)],
                timeout=self.command_timeout,
            )
        except CaptureTimeoutError as exc:
            logger.warning("Thumbnail generation timed out", source=str(source), error=str(exc))
            return None
        if not result.ok or not thumbnail.exists():
            logger.warning(
                "Thumbnail generation failed",
                source=str(source),
                error=result.error_text,
            )
            return None
        return thumbnail

    def _read_exif(self, path: Path) -> dict[str, Any]:
        try:
            result = self._runner.run([EXIFTOOL, "-j", str(path)], timeout=self.command_timeout)
        except CaptureTimeoutError as exc:
            logger.warning("EXIF extraction timed out", file=path.name, error=str(exc))
            return {}
        if not result.ok:
            logger.warning("EXIF extraction failed", file=path.name, error=result.error_text)
            return {}
        try:
            records = json.loads(result.text)
        except json.JSONDecodeError as exc:
            logger.warning("EXIF output unparseable", file=path.name, error=str(exc))
            return {}
        if isinstance(records, list) and records and isinstance(records[0], dict):
            return records[0]
        return {}

    def _create_live_view(self) -> LiveViewStream:
        args = [GPHOTO2, "--capture-movie", "--stdout"]
        if self.port:
            args += ["--port", self.port]
        return ProcessLiveViewStream(self._runner, args, name=self.name)

    def _cleanup(self) -> None:
        try:
            result = self._gphoto("--reset")
        except CaptureTimeoutError as exc:
            logger.warning("Camera reset timed out", error=str(exc))
        else:
            if not result.ok:
                logger.warning("Camera reset failed", error=result.error_text)
        self.port = self.requested_port
