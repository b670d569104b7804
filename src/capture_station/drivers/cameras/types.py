"""Data types shared by every capture strategy.

Capabilities describe what a backend can do, ``CaptureSettings`` what
it should do, and ``CaptureResult`` what it produced. File names are
derived from a process-wide strictly increasing timestamp so two
captures can never collide, even when the wall clock stalls or jumps
backwards.
"""

from __future__ import annotations

import re
import threading
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any

from capture_station.errors import ConfigurationError


class StrategyType(Enum):
    """Closed set of capture backends."""

    SIMULATED = "simulated"
    EXTERNAL_PROCESS = "external-process"
    TETHERED_CLI = "tethered-cli"

    @classmethod
    def parse(cls, value: str | StrategyType) -> StrategyType:
        """Accept enum members, values, or the legacy names used in deployments.

        ``mock``, ``webcam`` and ``gphoto2`` map to the simulated, external
        process and tethered CLI backends.

        Raises:
            ConfigurationError: For any other value.
        """
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        aliases = {
            "mock": cls.SIMULATED,
            "webcam": cls.EXTERNAL_PROCESS,
            "ffmpeg": cls.EXTERNAL_PROCESS,
            "gphoto2": cls.TETHERED_CLI,
            "dslr": cls.TETHERED_CLI,
        }
        if key in aliases:
            return aliases[key]
        for member in cls:
            if member.value == key or member.name.lower() == key:
                return member
        raise ConfigurationError(f"Unknown strategy type: {value!r}")


@dataclass(frozen=True, slots=True)
class Resolution:
    """A supported output size."""

    width: int
    height: int
    label: str = ""

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass(frozen=True, slots=True)
class Capabilities:
    """Static feature set of one strategy instance.

    Attributes:
        can_capture_still: Still capture supported.
        can_record_video: ``start_video``/``stop_video`` supported.
        can_live_view: ``live_view`` supported.
        can_adjust_settings: Exposure settings are applied to the device.
        supported_formats: Image formats, e.g. ``("jpeg", "raw")``.
        supported_resolutions: Output sizes the backend can produce.
    """

    can_capture_still: bool = True
    can_record_video: bool = False
    can_live_view: bool = False
    can_adjust_settings: bool = False
    supported_formats: tuple[str, ...] = ("jpeg",)
    supported_resolutions: tuple[Resolution, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible representation."""
        data = asdict(self)
        data["supported_resolutions"] = [
            {"width": r.width, "height": r.height, "label": r.label}
            for r in self.supported_resolutions
        ]
        data["supported_formats"] = list(self.supported_formats)
        return data


ISO_VALUES = frozenset({"auto", "100", "200", "400", "800", "1600", "3200", "6400"})
WHITE_BALANCE_VALUES = frozenset(
    {"auto", "daylight", "cloudy", "shade", "tungsten", "fluorescent", "flash"}
)
FOCUS_MODES = frozenset({"auto", "manual"})
IMAGE_FORMATS = frozenset({"jpeg", "png", "raw", "raw+jpeg"})
IMAGE_QUALITIES = frozenset({"standard", "fine", "superfine"})

_APERTURE = re.compile(r"^f/\d+(\.\d+)?$")
_SHUTTER = re.compile(r"^(1/\d+|\d+(\.\d+)?|bulb)$")

_ALLOWED: dict[str, frozenset[str]] = {
    "iso": ISO_VALUES,
    "white_balance": WHITE_BALANCE_VALUES,
    "focus_mode": FOCUS_MODES,
    "image_format": IMAGE_FORMATS,
    "image_quality": IMAGE_QUALITIES,
}


@dataclass(frozen=True, slots=True)
class CaptureSettings:
    """Exposure and output settings; ``None`` means "backend default".

    Attributes:
        iso: Sensitivity (``"auto"`` or a value such as ``"400"``).
        aperture: F-number written ``"f/5.6"``.
        shutter_speed: ``"1/125"``, ``"2"`` (seconds) or ``"bulb"``.
        white_balance: ``auto``, ``daylight``, ``cloudy`` ...
        focus_mode: ``auto`` or ``manual``.
        image_format: ``jpeg``, ``png``, ``raw`` or ``raw+jpeg``.
        image_quality: ``standard``, ``fine`` or ``superfine``.
    """

    iso: str | None = None
    aperture: str | None = None
    shutter_speed: str | None = None
    white_balance: str | None = None
    focus_mode: str | None = None
    image_format: str | None = None
    image_quality: str | None = None

    @classmethod
    def defaults(cls) -> CaptureSettings:
        """Station-wide defaults used when nothing is configured."""
        return cls(
            iso="200",
            aperture="f/5.6",
            shutter_speed="1/125",
            white_balance="auto",
            focus_mode="auto",
            image_format="jpeg",
            image_quality="fine",
        )

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> CaptureSettings:
        """Build validated settings from a dict, ignoring ``None`` values.

        Raises:
            ConfigurationError: On unknown keys or invalid values.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown setting(s): {', '.join(sorted(unknown))}")
        settings = cls(**{k: str(v) for k, v in data.items() if v is not None})
        settings.validate()
        return settings

    def validate(self) -> None:
        """Check every non-None field.

        Raises:
            ConfigurationError: Naming the first invalid field.
        """
        for name, allowed in _ALLOWED.items():
            value = getattr(self, name)
            if value is not None and value not in allowed:
                raise ConfigurationError(f"Invalid {name}: {value!r}")
        if self.aperture is not None and not _APERTURE.match(self.aperture):
            raise ConfigurationError(f"Invalid aperture: {self.aperture!r}")
        if self.shutter_speed is not None and not _SHUTTER.match(self.shutter_speed):
            raise ConfigurationError(f"Invalid shutter_speed: {self.shutter_speed!r}")

    def merge(self, update: CaptureSettings | dict[str, Any] | None) -> CaptureSettings:
        """Return these settings with every non-None field of ``update`` applied.

        Raises:
            ConfigurationError: If ``update`` is invalid.
        """
        if update is None:
            return self
        if isinstance(update, dict):
            update = CaptureSettings.from_mapping(update)
        else:
            update.validate()
        changes = {
            f.name: getattr(update, f.name)
            for f in fields(update)
            if getattr(update, f.name) is not None
        }
        return replace(self, **changes)

    def to_dict(self, include_none: bool = False) -> dict[str, str | None]:
        """Field mapping, omitting unset fields unless ``include_none``."""
        data = asdict(self)
        return data if include_none else {k: v for k, v in data.items() if v is not None}


@dataclass(slots=True)
class ImageMetadata:
    """Facts about a captured file.

    Attributes:
        width: Pixel width.
        height: Pixel height.
        size: File size in bytes.
        format: ``jpeg``, ``png``, ``raw`` or ``mp4``.
        settings: Settings in effect for the capture.
        exif: Best-effort EXIF-like map (may be empty).
        duration_s: Recording length for videos.
    """

    width: int
    height: int
    size: int
    format: str
    settings: CaptureSettings = field(default_factory=CaptureSettings)
    exif: dict[str, Any] = field(default_factory=dict)
    duration_s: float | None = None


@dataclass(slots=True)
class CaptureResult:
    """One produced file.

    Attributes:
        path: Full path of the written file.
        file_name: Unique name (``IMG_...`` / ``VID_...``).
        timestamp: Capture time; strictly increasing within the process.
        metadata: Dimensions, size, format, settings and EXIF.
        thumbnail_path: Thumbnail location when one could be generated.
    """

    path: Path
    file_name: str
    timestamp: datetime
    metadata: ImageMetadata
    thumbnail_path: Path | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible representation for collaborators."""
        return {
            "path": str(self.path),
            "file_name": self.file_name,
            "timestamp": self.timestamp.isoformat(),
            "thumbnail_path": str(self.thumbnail_path) if self.thumbnail_path else None,
            "metadata": {
                "width": self.metadata.width,
                "height": self.metadata.height,
                "size": self.metadata.size,
                "format": self.metadata.format,
                "settings": self.metadata.settings.to_dict(),
                "exif": dict(self.metadata.exif),
                "duration_s": self.metadata.duration_s,
            },
        }


class _UniqueTimestamps:
    """Hands out strictly increasing datetimes (microsecond resolution)."""

    def __init__(self) -> None:
        self._last: datetime | None = None
        self._lock = threading.Lock()

    def next(self) -> datetime:
        with self._lock:
            now = datetime.now()
            if self._last is not None and now <= self._last:
                now = self._last + timedelta(microseconds=1)
            self._last = now
            return now


_timestamps = _UniqueTimestamps()


def unique_timestamp() -> datetime:
    """Next process-wide unique capture timestamp."""
    return _timestamps.next()


def capture_file_name(prefix: str, extension: str, when: datetime) -> str:
    """Build ``<prefix>_YYYYmmdd_HHMMSS_ffffff.<extension>``.

    Example:
        >>> capture_file_name("IMG", "jpg", datetime(2026, 3, 1, 12, 0, 0, 7))
        'IMG_20260301_120000_000007.jpg'
    """
    return f"{prefix}_{when:%Y%m%d_%H%M%S_%f}.{extension}"


def extension_for(image_format: str | None) -> str:
    """File extension for an image format (``raw`` maps to ``cr2``)."""
    return {"png": "png", "raw": "cr2"}.get(image_format or "jpeg", "jpg")
