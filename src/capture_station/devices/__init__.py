"""Device-control layer - controllers, dispatch and events over the drivers."""

from capture_station.devices.actions import KioskActions
from capture_station.devices.buttons import (
    ActionRegistry,
    ButtonDispatcher,
    ButtonMode,
    ButtonPressState,
)
from capture_station.devices.capture_controller import (
    CaptureController,
    CaptureOptions,
    ConnectionState,
)
from capture_station.devices.events import (
    CATEGORIES,
    Event,
    EventBus,
    EventChannel,
    EventTopic,
)
from capture_station.devices.pins import PinController
from capture_station.devices.station import CaptureStation

__all__ = [
    # Events
    "CATEGORIES",
    "Event",
    "EventBus",
    "EventChannel",
    "EventTopic",
    # Capture
    "CaptureController",
    "CaptureOptions",
    "ConnectionState",
    # Pins
    "PinController",
    # Buttons
    "ActionRegistry",
    "ButtonDispatcher",
    "ButtonMode",
    "ButtonPressState",
    "KioskActions",
    # Facade
    "CaptureStation",
]
