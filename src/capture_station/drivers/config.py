"""Station configuration and driver factory.

``StationConfig`` carries every recognized option (capture backend,
device, directories, reconnect policy, default settings, button and LED
pin maps, pin backend). ``DriverFactory`` turns it into concrete
strategies and pin backends, choosing real hardware or simulation.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any

from capture_station.drivers.cameras import (
    STRATEGY_CLASSES,
    BaseStrategy,
    StrategyType,
)
from capture_station.drivers.cameras.types import CaptureSettings
from capture_station.drivers.gpio import PinBackend, PinConfig, SimulatedPinBackend
from capture_station.drivers.process import CommandRunner, SubprocessRunner
from capture_station.errors import ConfigurationError
from capture_station.observability import get_logger
from capture_station.scheduling import (
    Clock,
    Scheduler,
    SystemClock,
    ThreadingScheduler,
)

logger = get_logger(__name__)

# =============================================================================
# Constants
# =============================================================================

DEFAULT_OUTPUT_DIR = Path("/tmp/photobooth/captures")
DEFAULT_RECONNECT_ATTEMPTS = 3
DEFAULT_RECONNECT_DELAY = 5.0
DEFAULT_LONG_PRESS = 2.0
DEFAULT_VIDEO_MAX_DURATION = 30.0
DEFAULT_COUNTDOWN = 3

#: Kiosk button map: logical name -> BCM pin.
DEFAULT_BUTTON_PINS: dict[str, int] = {
    "capture": 17,
    "print": 22,
    "gallery": 23,
    "delete": 24,
    "mode": 25,
}

#: Kiosk LED map: logical name -> BCM pin.
DEFAULT_LED_PINS: dict[str, int] = {
    "status": 27,
    "flash": 4,
    "success": 5,
    "error": 6,
    "print": 12,
    "recording": 13,
}

_GPIO_SYSFS = Path("/sys/class/gpio")


class PinBackendType(Enum):
    """Pin backend selection."""

    SIMULATED = "simulated"
    GPIOZERO = "gpiozero"
    AUTO = "auto"


def _default_buttons() -> list[PinConfig]:
    return [PinConfig.button(name, pin) for name, pin in DEFAULT_BUTTON_PINS.items()]


def _default_leds() -> list[PinConfig]:
    return [PinConfig.led(f"{name}_led", pin) for name, pin in DEFAULT_LED_PINS.items()]


@dataclass
class StationConfig:
    """Everything needed to assemble a capture station.

    Attributes:
        strategy: Capture backend; None probes tethered, then webcam, and
            falls back to simulated.
        device: Webcam device path/name or gphoto2 port.
        output_dir: Directory for captured files.
        thumbnail_dir: Thumbnail directory (``<output_dir>/thumbnails`` if None).
        reconnect_attempts: Retries after a failed initialize (0 disables).
        reconnect_delay: Seconds between retries.
        auto_connect: Initialize the backend when the station starts.
        default_settings: Settings every strategy starts with.
        buttons: Input lines registered at start.
        leds: Output lines registered at start (names end in ``_led``).
        pin_backend: Simulated, gpiozero, or auto (gpiozero on Linux with
            ``/sys/class/gpio``).
        simulated_latency: Seconds a simulated still takes.
        long_press_threshold: Hold time that turns a press into a long press.
        video_max_duration: Auto-stop for button-started recordings.
        countdown: Countdown seconds used by the capture button.
        video_grace_period: Seconds a recorder gets to finish before a kill.
    """

    strategy: StrategyType | None = None
    device: str | None = None
    output_dir: Path = DEFAULT_OUTPUT_DIR
    thumbnail_dir: Path | None = None
    reconnect_attempts: int = DEFAULT_RECONNECT_ATTEMPTS
    reconnect_delay: float = DEFAULT_RECONNECT_DELAY
    auto_connect: bool = True
    default_settings: CaptureSettings = field(default_factory=CaptureSettings.defaults)
    buttons: list[PinConfig] = field(default_factory=_default_buttons)
    leds: list[PinConfig] = field(default_factory=_default_leds)
    pin_backend: PinBackendType = PinBackendType.AUTO
    simulated_latency: float = 0.5
    long_press_threshold: float = DEFAULT_LONG_PRESS
    video_max_duration: float = DEFAULT_VIDEO_MAX_DURATION
    countdown: int = DEFAULT_COUNTDOWN
    video_grace_period: float = 5.0

    def __post_init__(self) -> None:
        """Validate numeric options.

        Raises:
            ConfigurationError: For negative attempts, delays or durations.
        """
        self.output_dir = Path(self.output_dir)
        if self.thumbnail_dir is not None:
            self.thumbnail_dir = Path(self.thumbnail_dir)
        if self.reconnect_attempts < 0:
            raise ConfigurationError("reconnect_attempts must be >= 0")
        if self.reconnect_delay <= 0:
            raise ConfigurationError("reconnect_delay must be > 0")
        if self.long_press_threshold <= 0:
            raise ConfigurationError("long_press_threshold must be > 0")
        if self.countdown < 0:
            raise ConfigurationError("countdown must be >= 0")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> StationConfig:
        """Build a configuration from deployment environment variables.

        Recognized variables:
            CAMERA_STRATEGY: ``mock``/``webcam``/``gphoto2`` or a type value.
            CAMERA_DEVICE, CAMERA_OUTPUT_PATH, CAMERA_THUMBNAIL_PATH.
            CAMERA_RECONNECT_ATTEMPTS, CAMERA_RECONNECT_DELAY (milliseconds).
            CAMERA_AUTO_CONNECT (``true``/``false``).
            CAMERA_DEFAULT_ISO, _APERTURE, _SHUTTER_SPEED, _WHITE_BALANCE,
            _FOCUS_MODE, _IMAGE_FORMAT, _IMAGE_QUALITY.
            GPIO_MOCK (``true`` forces simulation, ``false`` forces gpiozero).
            GPIO_BUTTON_<NAME>_PIN, GPIO_LED_<NAME>_PIN.

        Raises:
            ConfigurationError: On malformed values.
        """
        env = os.environ if environ is None else environ
        config = cls()
        changes: dict[str, object] = {}

        if env.get("CAMERA_STRATEGY"):
            changes["strategy"] = StrategyType.parse(env["CAMERA_STRATEGY"])
        if env.get("CAMERA_DEVICE"):
            changes["device"] = env["CAMERA_DEVICE"]
        if env.get("CAMERA_OUTPUT_PATH"):
            changes["output_dir"] = Path(env["CAMERA_OUTPUT_PATH"])
        if env.get("CAMERA_THUMBNAIL_PATH"):
            changes["thumbnail_dir"] = Path(env["CAMERA_THUMBNAIL_PATH"])
        if env.get("CAMERA_RECONNECT_ATTEMPTS"):
            changes["reconnect_attempts"] = _int(env, "CAMERA_RECONNECT_ATTEMPTS")
        if env.get("CAMERA_RECONNECT_DELAY"):
            changes["reconnect_delay"] = _int(env, "CAMERA_RECONNECT_DELAY") / 1000.0
        if env.get("CAMERA_AUTO_CONNECT"):
            changes["auto_connect"] = _bool(env, "CAMERA_AUTO_CONNECT")

        settings = {
            name: env.get(f"CAMERA_DEFAULT_{name.upper()}")
            for name in CaptureSettings.defaults().to_dict()
        }
        if any(settings.values()):
            changes["default_settings"] = config.default_settings.merge(
                {k: v for k, v in settings.items() if v}
            )

        if env.get("GPIO_MOCK"):
            changes["pin_backend"] = (
                PinBackendType.SIMULATED
                if _bool(env, "GPIO_MOCK")
                else PinBackendType.GPIOZERO
            )
        changes["buttons"] = [
            replace(b, pin=_int(env, f"GPIO_BUTTON_{b.name.upper()}_PIN", b.pin))
            for b in config.buttons
        ]
        changes["leds"] = [
            replace(
                led,
                pin=_int(
                    env, f"GPIO_LED_{led.name.removesuffix('_led').upper()}_PIN", led.pin
                ),
            )
            for led in config.leds
        ]
        return replace(config, **changes)  # type: ignore[arg-type]


def _int(env: Mapping[str, str], key: str, default: int | None = None) -> int:
    raw = env.get(key)
    if not raw:
        if default is None:
            raise ConfigurationError(f"{key} is required")
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from exc


def _bool(env: Mapping[str, str], key: str) -> bool:
    raw = env.get(key, "").strip().lower()
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    raise ConfigurationError(f"{key} must be true or false, got {raw!r}")


def gpio_available(platform: str | None = None) -> bool:
    """True on Linux machines exposing the GPIO sysfs class."""
    return (platform or sys.platform).startswith("linux") and _GPIO_SYSFS.exists()


class DriverFactory:
    """Builds strategies and pin backends from a ``StationConfig``.

    Shared collaborators (command runner, scheduler, clock) are created
    once here and handed to every strategy, so tests can inject fakes in
    one place.

    Thread Safety:
        Not thread-safe. Configure once at startup.
    """

    def __init__(
        self,
        config: StationConfig | None = None,
        *,
        runner: CommandRunner | None = None,
        scheduler: Scheduler | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Create a factory.

        Args:
            config: Station configuration; defaults when None.
            runner: Process runner for webcam/tethered strategies.
            scheduler: Timer source for live view, debounce, reconnect.
            clock: Time source for latency, countdowns and durations.
        """
        self.config = config or StationConfig()
        self.runner = runner or SubprocessRunner()
        self.scheduler = scheduler or ThreadingScheduler()
        self.clock = clock or SystemClock()

    def create_strategy(self, strategy_type: StrategyType | str | None = None) -> BaseStrategy:
        """Instantiate a capture strategy.

        Args:
            strategy_type: Backend to build; the configured one when None,
                auto-detected when neither is set.

        Returns:
            A new, uninitialized strategy.

        Raises:
            ConfigurationError: For unknown strategy names.
        """
        if strategy_type is None:
            strategy_type = self.config.strategy or self.detect_strategy_type()
        kind = StrategyType.parse(strategy_type)
        cfg = self.config
        common = {
            "output_dir": cfg.output_dir,
            "thumbnail_dir": cfg.thumbnail_dir,
            "settings": cfg.default_settings,
        }
        options: dict[StrategyType, dict[str, Any]] = {
            StrategyType.SIMULATED: {
                "scheduler": self.scheduler,
                "clock": self.clock,
                "latency": cfg.simulated_latency,
            },
            StrategyType.EXTERNAL_PROCESS: {
                "device": cfg.device,
                "runner": self.runner,
                "clock": self.clock,
                "video_grace_period": cfg.video_grace_period,
            },
            StrategyType.TETHERED_CLI: {"port": cfg.device, "runner": self.runner},
        }
        return STRATEGY_CLASSES[kind](**common, **options[kind])

    def detect_strategy_type(self) -> StrategyType:
        """Probe for a tethered camera, then a webcam; fall back to simulated."""
        for kind in (StrategyType.TETHERED_CLI, StrategyType.EXTERNAL_PROCESS):
            probe = self.create_strategy(kind)
            if probe.is_available():
                logger.info("Capture backend detected", strategy=kind.value)
                return kind
        logger.info("No camera detected, using simulated backend")
        return StrategyType.SIMULATED

    def create_pin_backend(self) -> PinBackend:
        """Instantiate the configured pin backend."""
        selected = self.config.pin_backend
        if selected is PinBackendType.AUTO:
            selected = (
                PinBackendType.GPIOZERO if gpio_available() else PinBackendType.SIMULATED
            )
        if selected is PinBackendType.GPIOZERO:
            from capture_station.drivers.gpio.gpiozero_backend import GpioZeroPinBackend

            logger.info("Using gpiozero pin backend")
            return GpioZeroPinBackend()
        logger.info("Using simulated pin backend")
        return SimulatedPinBackend()


# =============================================================================
# Global Singletons
# =============================================================================
# Not thread-safe: configure once at startup before spawning threads.

_factory: DriverFactory | None = None


def get_factory() -> DriverFactory:
    """Return the process-wide factory, creating a default one on first use."""
    global _factory
    if _factory is None:
        _factory = DriverFactory()
    return _factory


def configure(config: StationConfig, **collaborators: object) -> DriverFactory:
    """Replace the process-wide factory.

    Args:
        config: New station configuration.
        **collaborators: ``runner``, ``scheduler`` or ``clock`` overrides.

    Returns:
        The new factory.
    """
    global _factory
    _factory = DriverFactory(config, **collaborators)  # type: ignore[arg-type]
    return _factory


def reset_factory() -> None:
    """Forget the process-wide factory (used by tests)."""
    global _factory
    _factory = None
