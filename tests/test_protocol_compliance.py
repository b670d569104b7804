"""Tests for protocol compliance across all drivers and devices.

Verifies that all implementations correctly satisfy their Protocol
interfaces using @runtime_checkable isinstance() checks.

These tests catch missing methods or incorrect signatures early,
ensuring fakes and real drivers are interchangeable.
"""

from __future__ import annotations

import sys

import pytest

from tests.helpers import FakeProcess, FakeRunner, FakeStrategy, assert_implements_protocol


class TestCaptureStrategyCompliance:
    """Verify every capture backend implements CaptureStrategy."""

    @pytest.mark.parametrize("kind", ["mock", "webcam", "gphoto2"])
    def test_factory_strategies_implement_protocol(self, factory, kind) -> None:
        """Each strategy the factory can build satisfies CaptureStrategy.

        Verifies that the controller can hold any backend behind the
        same interface, so switching strategies never needs a type check.

        Arrangement:
        1. Driver factory over the fake runner and virtual time.
        2. One strategy per supported type.

        Action:
        Call assert_implements_protocol() with the strategy.

        Assertion Strategy:
        Validates protocol compliance by confirming:
        - No assertion error raised.
        - The strategy exposes its type and name.
        """
        from capture_station.drivers.cameras import CaptureStrategy, StrategyType

        strategy = factory.create_strategy(kind)

        assert_implements_protocol(strategy, CaptureStrategy)
        assert strategy.strategy_type is StrategyType.parse(kind)
        assert strategy.name == kind

    def test_fake_strategy_implements_protocol(self) -> None:
        """FakeStrategy used in controller tests stays interface-compatible."""
        from capture_station.drivers.cameras import CaptureStrategy

        assert_implements_protocol(FakeStrategy(), CaptureStrategy)

    def test_strategy_classes_cover_every_type(self) -> None:
        from capture_station.drivers.cameras import STRATEGY_CLASSES, StrategyType

        assert set(STRATEGY_CLASSES) == set(StrategyType)


class TestProcessProtocolCompliance:
    """Verify command runners and process handles."""

    def test_subprocess_runner_implements_protocol(self) -> None:
        from capture_station.drivers.process import CommandRunner, SubprocessRunner

        assert_implements_protocol(SubprocessRunner(), CommandRunner)

    def test_fake_runner_implements_protocol(self) -> None:
        from capture_station.drivers.process import CommandRunner

        assert_implements_protocol(FakeRunner(), CommandRunner)

    def test_managed_process_implements_protocol(self) -> None:
        """ManagedProcess satisfies ProcessHandle without being started.

        Assertion Strategy:
        Validates protocol compliance by confirming:
        - No assertion error raised for an unstarted process.
        """
        from capture_station.drivers.process import ManagedProcess, ProcessHandle

        process = ManagedProcess([sys.executable, "-c", "pass"])
        assert_implements_protocol(process, ProcessHandle)

    def test_fake_process_implements_protocol(self) -> None:
        from capture_station.drivers.process import ProcessHandle

        process = FakeProcess(["ffmpeg"], on_stdout=None, stop_input=b"q")
        assert_implements_protocol(process, ProcessHandle)


class TestPinBackendCompliance:
    """Verify pin backends implement PinBackend."""

    def test_simulated_backend_implements_protocol(self) -> None:
        from capture_station.drivers.gpio import PinBackend, SimulatedPinBackend

        assert_implements_protocol(SimulatedPinBackend(), PinBackend)

    def test_gpiozero_backend_implements_protocol(self) -> None:
        from gpiozero.pins.mock import MockFactory

        from capture_station.drivers.gpio import PinBackend
        from capture_station.drivers.gpio.gpiozero_backend import GpioZeroPinBackend

        backend = GpioZeroPinBackend(pin_factory=MockFactory())
        try:
            assert_implements_protocol(backend, PinBackend)
        finally:
            backend.close()


class TestSchedulingCompliance:
    """Verify clocks, schedulers and timer handles."""

    def test_manual_scheduler_is_clock_and_scheduler(self) -> None:
        """ManualScheduler doubles as Clock and Scheduler.

        Business context:
        Tests pass one ManualScheduler as both collaborators so that a
        countdown sleep also fires debounce and blink timers.
        """
        from capture_station.scheduling import Clock, ManualScheduler, Scheduler, TimerHandle

        scheduler = ManualScheduler()

        assert_implements_protocol(scheduler, Clock)
        assert_implements_protocol(scheduler, Scheduler)
        assert_implements_protocol(scheduler.call_later(1.0, lambda: None), TimerHandle)

    def test_threading_scheduler_and_system_clock(self) -> None:
        from capture_station.scheduling import (
            Clock,
            Scheduler,
            SystemClock,
            ThreadingScheduler,
            TimerHandle,
        )

        timer = ThreadingScheduler().call_later(60.0, lambda: None)
        try:
            assert_implements_protocol(timer, TimerHandle)
        finally:
            timer.cancel()
        assert_implements_protocol(ThreadingScheduler(), Scheduler)
        assert_implements_protocol(SystemClock(), Clock)


class TestAssertImplementsProtocol:
    def test_reports_missing_members(self) -> None:
        from capture_station.drivers.gpio import PinBackend

        with pytest.raises(AssertionError, match="Missing: .*setup_input"):
            assert_implements_protocol(object(), PinBackend)
