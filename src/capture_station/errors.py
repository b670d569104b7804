"""Error taxonomy for the capture station.

Every failure that leaves a strategy, controller or pin layer is one of
the kinds below. Callers can catch ``StationError`` for "anything the
station raised" or a specific subclass to decide between retrying,
reporting, or giving up.

Kinds:
    DeviceUnavailableError: Backend unreachable at initialize/probe time.
        Drives the reconnect policy; never fatal to the controller.
    CaptureFailedError: A tool or subprocess failed during one operation.
        The controller stays Ready.
    UnsupportedOperationError: The active backend lacks the capability.
        Never retried.
    ConfigurationError: Unknown pin/button name or invalid settings value.
    BusyError: Overlapping capture/video/live-view operation rejected.
    CaptureTimeoutError: Frame wait or video-stop grace period exceeded.

Example:
    from capture_station.errors import BusyError, StationError

    try:
        station.capture()
    except BusyError:
        show_message("Camera busy, try again")
    except StationError as exc:
        show_message(f"Capture failed: {exc}")
"""

from __future__ import annotations

__all__ = [
    "BusyError",
    "CaptureFailedError",
    "CaptureTimeoutError",
    "ConfigurationError",
    "DeviceUnavailableError",
    "StationError",
    "UnsupportedOperationError",
]


class StationError(Exception):
    """Base exception for every capture station failure."""

    pass


class DeviceUnavailableError(StationError):
    """Raised when a capture backend cannot be reached."""

    pass


class CaptureFailedError(StationError):
    """Raised when a capture tool or subprocess fails mid-operation."""

    pass


class UnsupportedOperationError(StationError):
    """Raised when the active backend does not offer a capability."""

    pass


class ConfigurationError(StationError, ValueError):
    """Raised for unknown pin names or invalid settings values."""

    pass


class BusyError(StationError):
    """Raised when another capture-bound operation is already in flight."""

    pass


class CaptureTimeoutError(StationError, TimeoutError):
    """Raised when a frame wait or a graceful stop exceeds its deadline."""

    pass
