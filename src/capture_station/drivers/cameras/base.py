"""Shared behavior for capture strategies.

``BaseStrategy`` implements the parts of the strategy contract that do
not depend on the backend: output directory preparation, capability
checks, settings merging, the one-recording-at-a-time rule, live-view
bookkeeping and idempotent cleanup. Backends fill in the underscore
hooks.
"""

from __future__ import annotations

import threading
from datetime import datetime
from pathlib import Path
from typing import Any, ClassVar

from capture_station.drivers.cameras.live_view import LiveViewStream
from capture_station.drivers.cameras.types import (
    Capabilities,
    CaptureResult,
    CaptureSettings,
    StrategyType,
    capture_file_name,
    unique_timestamp,
)
from capture_station.errors import (
    CaptureFailedError,
    DeviceUnavailableError,
    UnsupportedOperationError,
)
from capture_station.observability import get_logger

logger = get_logger(__name__)

#: Name of the thumbnail folder created below the output directory.
THUMBNAIL_SUBDIR = "thumbnails"


class BaseStrategy:
    """Backend-independent half of a capture strategy.

    Subclasses set ``name``, ``strategy_type`` and ``CAPABILITIES`` and
    implement ``_probe``, ``_initialize`` and ``_take_picture``, plus the
    video/live-view hooks when their capabilities say so.

    Thread Safety:
        Public operations serialize on an internal re-entrant lock; the
        Capture Controller additionally rejects overlapping operations.
    """

    name: ClassVar[str] = "base"
    strategy_type: ClassVar[StrategyType]
    CAPABILITIES: ClassVar[Capabilities] = Capabilities()

    def __init__(
        self,
        output_dir: Path | str,
        thumbnail_dir: Path | str | None = None,
        settings: CaptureSettings | None = None,
    ) -> None:
        """Configure output locations and starting settings.

        Args:
            output_dir: Directory receiving captured files.
            thumbnail_dir: Directory for thumbnails; defaults to
                ``<output_dir>/thumbnails``.
            settings: Overrides merged over ``CaptureSettings.defaults()``.
        """
        self.output_dir = Path(output_dir)
        self.thumbnail_dir = (
            Path(thumbnail_dir) if thumbnail_dir else self.output_dir / THUMBNAIL_SUBDIR
        )
        self._settings = CaptureSettings.defaults().merge(settings)
        self._initialized = False
        self._live_view: LiveViewStream | None = None
        self._recording_since: datetime | None = None
        self._lock = threading.RLock()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(output_dir={str(self.output_dir)!r})"

    # -- contract ----------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        """True after a successful ``initialize()`` until ``cleanup()``."""
        return self._initialized

    @property
    def is_recording(self) -> bool:
        """True between ``start_video()`` and ``stop_video()``."""
        return self._recording_since is not None

    def capabilities(self) -> Capabilities:
        """Static capabilities of this backend."""
        return self.CAPABILITIES

    def initialize(self) -> None:
        """Create output directories and verify the device is reachable.

        Raises:
            DeviceUnavailableError: If directories cannot be created or
                the backend is unreachable.
        """
        with self._lock:
            try:
                self.output_dir.mkdir(parents=True, exist_ok=True)
                self.thumbnail_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise DeviceUnavailableError(
                    f"Cannot prepare output directory {self.output_dir}: {exc}"
                ) from exc
            self._initialize()
            self._initialized = True
        logger.info(
            "Strategy initialized",
            strategy=self.name,
            output_dir=str(self.output_dir),
        )

    def is_available(self) -> bool:
        """Probe reachability without raising."""
        try:
            return bool(self._probe())
        except Exception as exc:
            logger.debug("Availability probe failed", strategy=self.name, error=str(exc))
            return False

    def take_picture(self, settings: CaptureSettings | None = None) -> CaptureResult:
        """Capture one still image.

        Overrides in ``settings`` are applied only when the backend can
        adjust settings; otherwise the current settings are used as is.

        Raises:
            UnsupportedOperationError: If stills are not supported.
            CaptureFailedError: If the backend failed to produce a file.
            ConfigurationError: If ``settings`` is invalid.
        """
        caps = self.capabilities()
        if not caps.can_capture_still:
            raise UnsupportedOperationError(f"{self.name} cannot capture stills")
        with self._lock:
            effective = self._settings
            if settings is not None and caps.can_adjust_settings:
                effective = self._settings.merge(settings)
            return self._take_picture(effective, settings)

    def start_video(self) -> None:
        """Begin recording.

        Raises:
            UnsupportedOperationError: If video is not supported.
            CaptureFailedError: If a recording is already running or the
                recorder could not be started.
        """
        self._require(self.capabilities().can_record_video, "record video")
        with self._lock:
            if self.is_recording:
                raise CaptureFailedError(f"{self.name} is already recording")
            self._start_video()
            self._recording_since = unique_timestamp()
        logger.info("Video recording started", strategy=self.name)

    def stop_video(self) -> CaptureResult:
        """Finish the running recording and return the produced file.

        Raises:
            UnsupportedOperationError: If video is not supported.
            CaptureFailedError: If no recording is running or the file is missing.
            CaptureTimeoutError: If the recorder ignored the graceful stop
                (it has been force-terminated).
        """
        self._require(self.capabilities().can_record_video, "record video")
        with self._lock:
            started = self._recording_since
            if started is None:
                raise CaptureFailedError(f"{self.name} is not recording")
            self._recording_since = None
            result = self._stop_video(started)
        logger.info(
            "Video recording stopped",
            strategy=self.name,
            file_name=result.file_name,
            duration_s=result.metadata.duration_s,
        )
        return result

    def live_view(self) -> LiveViewStream:
        """Return this strategy's live-view stream (created once, not started).

        Raises:
            UnsupportedOperationError: If live view is not supported.
        """
        self._require(self.capabilities().can_live_view, "provide live view")
        with self._lock:
            if self._live_view is None:
                self._live_view = self._create_live_view()
            return self._live_view

    def get_settings(self) -> CaptureSettings:
        """Current settings."""
        return self._settings

    def update_settings(self, partial: CaptureSettings | dict[str, Any]) -> CaptureSettings:
        """Merge ``partial`` over the current settings and apply it.

        Returns:
            The merged settings now in effect.

        Raises:
            ConfigurationError: If ``partial`` is invalid.
        """
        with self._lock:
            if isinstance(partial, dict):
                partial = CaptureSettings.from_mapping(partial)
            merged = self._settings.merge(partial)
            if self._initialized:
                self._apply_settings(partial)
            self._settings = merged
        logger.info("Settings updated", strategy=self.name, **partial.to_dict())
        return merged

    def cleanup(self) -> None:
        """Release live view, recorder and device handles. Idempotent."""
        with self._lock:
            stream, self._live_view = self._live_view, None
            if stream is not None:
                stream.stop()
            if self._recording_since is not None:
                self._recording_since = None
                self._abort_video()
            was_initialized, self._initialized = self._initialized, False
            if was_initialized:
                self._cleanup()
        if was_initialized:
            logger.info("Strategy cleaned up", strategy=self.name)

    # -- helpers for subclasses --------------------------------------------

    def _next_output(self, prefix: str, extension: str) -> tuple[datetime, str, Path]:
        """Reserve a unique timestamp, file name and output path."""
        when = unique_timestamp()
        file_name = capture_file_name(prefix, extension, when)
        return when, file_name, self.output_dir / file_name

    def _thumbnail_path(self, file_name: str) -> Path:
        return self.thumbnail_dir / f"thumb_{Path(file_name).stem}.jpg"

    def _require(self, supported: bool, action: str) -> None:
        if not supported:
            raise UnsupportedOperationError(f"{self.name} cannot {action}")

    # -- hooks -------------------------------------------------------------

    def _probe(self) -> bool:  # pragma: no cover - abstract
        raise NotImplementedError

    def _initialize(self) -> None:  # pragma: no cover - abstract
        raise NotImplementedError

    def _take_picture(
        self, settings: CaptureSettings, overrides: CaptureSettings | None
    ) -> CaptureResult:  # pragma: no cover - abstract
        raise NotImplementedError

    def _start_video(self) -> None:  # pragma: no cover - abstract
        raise NotImplementedError

    def _stop_video(self, started: datetime) -> CaptureResult:  # pragma: no cover
        raise NotImplementedError

    def _abort_video(self) -> None:
        """Discard a recording during cleanup; default does nothing."""

    def _create_live_view(self) -> LiveViewStream:  # pragma: no cover - abstract
        raise NotImplementedError

    def _apply_settings(self, partial: CaptureSettings) -> None:
        """Push changed fields to the device; default keeps them in memory."""

    def _cleanup(self) -> None:
        """Release backend handles; default does nothing."""
