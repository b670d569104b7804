"""Capture strategies: the swappable backends behind the Capture Controller.

Each strategy offers the same capability set (initialize, is_available,
capabilities, take_picture, start_video, stop_video, live_view,
get_settings, update_settings, cleanup). Three variants exist, one per
``StrategyType``:

* ``SimulatedStrategy``  - synthetic images, no hardware.
* ``WebcamStrategy``     - ``ffmpeg`` subprocesses against a UVC webcam.
* ``TetheredStrategy``   - ``gphoto2`` against a USB-tethered DSLR.

Adding a backend means one new class, one entry in ``STRATEGY_CLASSES``
(which ``DriverFactory.create_strategy`` dispatches through) and its
construction options in the factory.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from capture_station.drivers.cameras.base import BaseStrategy
from capture_station.drivers.cameras.live_view import (
    LiveViewState,
    LiveViewStream,
    ProcessLiveViewStream,
    SimulatedLiveViewStream,
)
from capture_station.drivers.cameras.simulated import SimulatedStrategy
from capture_station.drivers.cameras.tethered import (
    DetectedCamera,
    TetheredStrategy,
    parse_auto_detect,
)
from capture_station.drivers.cameras.types import (
    Capabilities,
    CaptureResult,
    CaptureSettings,
    ImageMetadata,
    Resolution,
    StrategyType,
)
from capture_station.drivers.cameras.webcam import WebcamStrategy


@runtime_checkable
class CaptureStrategy(Protocol):  # pragma: no cover
    """Contract every capture backend fulfils.

    Business context: The Capture Controller holds exactly one strategy
    and talks to it only through these methods, so a kiosk can move from
    a webcam to a DSLR (or to the simulator when the camera is
    unplugged) without any other component noticing.

    Failure kinds follow ``capture_station.errors``:
    ``DeviceUnavailableError`` from ``initialize``,
    ``CaptureFailedError`` from capture operations,
    ``UnsupportedOperationError`` for missing capabilities.
    """

    name: str

    def initialize(self) -> None:
        """Prepare output directories and verify reachability."""
        ...

    def is_available(self) -> bool:
        """Non-throwing reachability probe."""
        ...

    def capabilities(self) -> Capabilities:
        """Static feature set."""
        ...

    def take_picture(self, settings: CaptureSettings | None = None) -> CaptureResult:
        """Capture one still, applying overrides when settings are adjustable."""
        ...

    def start_video(self) -> None:
        """Begin recording; error if already recording."""
        ...

    def stop_video(self) -> CaptureResult:
        """Finish recording; error if not recording."""
        ...

    def live_view(self) -> LiveViewStream:
        """Return the (not yet started) live-view stream."""
        ...

    def get_settings(self) -> CaptureSettings:
        """Current settings."""
        ...

    def update_settings(self, partial: CaptureSettings | dict[str, Any]) -> CaptureSettings:
        """Merge and apply a partial settings update."""
        ...

    def cleanup(self) -> None:
        """Release every handle; idempotent."""
        ...


#: Strategy class per backend type.
STRATEGY_CLASSES: dict[StrategyType, type[BaseStrategy]] = {
    StrategyType.SIMULATED: SimulatedStrategy,
    StrategyType.EXTERNAL_PROCESS: WebcamStrategy,
    StrategyType.TETHERED_CLI: TetheredStrategy,
}

__all__ = [
    "BaseStrategy",
    "Capabilities",
    "CaptureResult",
    "CaptureSettings",
    "CaptureStrategy",
    "DetectedCamera",
    "ImageMetadata",
    "LiveViewState",
    "LiveViewStream",
    "ProcessLiveViewStream",
    "Resolution",
    "STRATEGY_CLASSES",
    "SimulatedLiveViewStream",
    "SimulatedStrategy",
    "StrategyType",
    "TetheredStrategy",
    "WebcamStrategy",
    "parse_auto_detect",
]
