"""Default kiosk button actions.

Button map (short press / long press):

    capture   take a photo (countdown, sound, flash, gallery) / start video
    print     print indicator blink / -
    gallery   status indicator blink / -
    delete    error indicator blink / long error blink (clear gallery)
    mode      cycle mock -> webcam -> gphoto2 -> mock / reset settings

While a button-started video is recording the dispatcher is in
``ButtonMode.RECORDING`` and both presses of the capture button stop the
recording. Recordings stop on their own after ``video_max_duration``.
LED names follow the ``<name>_led`` convention of ``StationConfig``.
"""

from __future__ import annotations

import threading
from collections.abc import Callable

from capture_station.devices.buttons import ActionRegistry, ButtonDispatcher, ButtonMode
from capture_station.devices.capture_controller import CaptureController, CaptureOptions
from capture_station.devices.pins import PinController
from capture_station.drivers.cameras import StrategyType
from capture_station.errors import StationError
from capture_station.observability import get_logger
from capture_station.scheduling import Scheduler, TimerHandle

logger = get_logger(__name__)

#: Strategy selected by a short press of the mode button.
NEXT_STRATEGY: dict[StrategyType, StrategyType] = {
    StrategyType.SIMULATED: StrategyType.EXTERNAL_PROCESS,
    StrategyType.EXTERNAL_PROCESS: StrategyType.TETHERED_CLI,
    StrategyType.TETHERED_CLI: StrategyType.SIMULATED,
}

# (duration, interval) in seconds
FLASH_BLINK = (0.1, 0.05)
SUCCESS_BLINK = (1.0, 0.2)
FAILURE_BLINK = (1.0, 0.2)
PRINT_BLINK = (2.0, 0.5)
GALLERY_BLINK = (0.5, 0.1)
DELETE_BLINK = (0.5, 0.1)
DELETE_ALL_BLINK = (3.0, 0.1)
RESET_BLINK = (2.0, 0.1)


class KioskActions:
    """The photo-booth behavior bound to a controller, pins and dispatcher."""

    def __init__(
        self,
        controller: CaptureController,
        pins: PinController,
        dispatcher: ButtonDispatcher,
        scheduler: Scheduler,
        *,
        countdown: int = 3,
        video_max_duration: float = 30.0,
    ) -> None:
        self.controller = controller
        self.pins = pins
        self.dispatcher = dispatcher
        self.countdown = countdown
        self.video_max_duration = video_max_duration
        self._scheduler = scheduler
        self._auto_stop: TimerHandle | None = None
        self._lock = threading.Lock()

    def install(self, registry: ActionRegistry | None = None) -> ActionRegistry:
        """Register every default action and return the registry used."""
        registry = registry or self.dispatcher.registry
        registry.register("capture", short=self.take_photo, long=self.start_recording)
        registry.register(
            "capture",
            short=self.stop_recording,
            long=self.stop_recording,
            mode=ButtonMode.RECORDING,
        )
        registry.register("print", short=self.print_pressed)
        registry.register("gallery", short=self.gallery_pressed)
        registry.register("delete", short=self.delete_pressed, long=self.delete_all)
        registry.register("mode", short=self.cycle_strategy, long=self.reset_settings)
        return registry

    def close(self) -> None:
        """Cancel a pending video auto-stop."""
        with self._lock:
            self._cancel_auto_stop()

    # -- capture button ----------------------------------------------------------

    def take_photo(self) -> None:
        """Countdown photo with every cue enabled; failures propagate."""
        logger.info("Capture button pressed, taking photo")
        self._blink("flash_led", FLASH_BLINK)
        result = self.controller.capture(
            CaptureOptions(
                countdown=self.countdown,
                sound=True,
                flash=True,
                save_to_gallery=True,
            )
        )
        logger.info("Photo captured", file_name=result.file_name)
        self._blink("success_led", SUCCESS_BLINK)

    def start_recording(self) -> None:
        """Start a video, light the recording LED and arm the auto-stop."""
        logger.info("Long press on capture, starting video recording")
        try:
            self.controller.start_video()
        except StationError as exc:
            logger.error("Failed to start video recording", error=str(exc))
            self._blink("error_led", FAILURE_BLINK)
            return
        self.dispatcher.mode = ButtonMode.RECORDING
        self._set("recording_led", True)
        with self._lock:
            self._cancel_auto_stop()
            self._auto_stop = self._scheduler.call_later(
                self.video_max_duration, self._on_auto_stop
            )

    def stop_recording(self) -> None:
        """Stop the video and return the capture button to photo mode."""
        with self._lock:
            self._cancel_auto_stop()
        try:
            result = self.controller.stop_video()
        except StationError as exc:
            logger.error("Failed to stop video recording", error=str(exc))
            self._blink("error_led", FAILURE_BLINK)
        else:
            logger.info("Video saved", file_name=result.file_name)
            self._blink("success_led", SUCCESS_BLINK)
        finally:
            self._set("recording_led", False)
            self.dispatcher.mode = ButtonMode.NORMAL

    def _on_auto_stop(self) -> None:
        with self._lock:
            self._auto_stop = None
        if not self.controller.is_recording:
            return
        logger.info("Maximum video duration reached", max_duration_s=self.video_max_duration)
        self.dispatcher.run_action("capture", "auto-stop", self.stop_recording)

    def _cancel_auto_stop(self) -> None:
        timer, self._auto_stop = self._auto_stop, None
        if timer is not None:
            timer.cancel()

    # -- mode button ---------------------------------------------------------------

    def cycle_strategy(self) -> None:
        """Switch to the next capture backend; failures blink the error LED."""
        target = NEXT_STRATEGY[self.controller.strategy_type]
        logger.info("Mode button pressed, switching strategy", strategy=target.value)
        try:
            self.controller.switch_strategy(target)
        except StationError as exc:
            logger.error("Failed to switch strategy", strategy=target.value, error=str(exc))
            self._blink("error_led", FAILURE_BLINK)
            return
        self._blink("success_led", SUCCESS_BLINK)

    def reset_settings(self) -> None:
        """Restore the default capture settings."""
        logger.info("Long press on mode, resetting settings")
        self.controller.reset_settings()
        self._blink("success_led", RESET_BLINK)

    # -- indicator-only buttons ----------------------------------------------------

    def print_pressed(self) -> None:
        logger.info("Print button pressed")
        self._blink("print_led", PRINT_BLINK)

    def gallery_pressed(self) -> None:
        logger.info("Gallery button pressed")
        self._blink("status_led", GALLERY_BLINK)

    def delete_pressed(self) -> None:
        logger.info("Delete button pressed")
        self._blink("error_led", DELETE_BLINK)

    def delete_all(self) -> None:
        logger.info("Long press on delete, clearing gallery")
        self._blink("error_led", DELETE_ALL_BLINK)

    # -- helpers -------------------------------------------------------------------

    def _guarded(self, led: str, op: Callable[[], None]) -> None:
        if not self.pins.is_registered(led):
            return
        try:
            op()
        except StationError as exc:
            logger.warning("LED update failed", led=led, error=str(exc))

    def _blink(self, led: str, timing: tuple[float, float]) -> None:
        self._guarded(led, lambda: self.pins.blink(led, *timing))

    def _set(self, led: str, level: bool) -> None:
        self._guarded(led, lambda: self.pins.write(led, level))
