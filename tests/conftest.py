"""Pytest configuration and fixtures for capture-station tests.

Every timed behavior runs on a ``ManualScheduler`` (virtual time that
only moves when a test advances it), every line on the in-memory pin
backend, and every external tool through ``FakeRunner``, so the suite
needs neither cameras, GPIO headers, ffmpeg nor gphoto2.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from capture_station.devices.events import EventBus
from capture_station.devices.pins import PinController
from capture_station.drivers.cameras import SimulatedStrategy, StrategyType
from capture_station.drivers.config import (
    DriverFactory,
    PinBackendType,
    StationConfig,
    reset_factory,
)
from capture_station.drivers.gpio import SimulatedPinBackend
from capture_station.observability import reset_logging
from capture_station.scheduling import ManualScheduler
from tests.helpers import EventRecorder, FakeRunner


@pytest.fixture
def scheduler() -> ManualScheduler:
    """Provide a virtual-time scheduler that doubles as the clock.

    Business context: Countdowns, debounce windows, 2 s long presses and
    5 s reconnect delays would make a real-time suite slow and flaky.
    Tests advance this scheduler explicitly instead.

    Returns:
        ManualScheduler starting at t=0.0.
    """
    return ManualScheduler()


@pytest.fixture
def bus() -> EventBus:
    """Provide a fresh event bus with no subscribers."""
    return EventBus()


@pytest.fixture
def recorder(bus: EventBus) -> EventRecorder:
    """Record every event published on ``bus``."""
    return EventRecorder(bus)


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    """Capture directory below pytest's per-test temporary directory."""
    return tmp_path / "captures"


@pytest.fixture
def runner() -> FakeRunner:
    """Scriptable command runner with every tool reported as installed."""
    return FakeRunner()


@pytest.fixture
def simulated(output_dir: Path, scheduler: ManualScheduler) -> SimulatedStrategy:
    """Simulated strategy running on virtual time.

    Returns:
        Uninitialized SimulatedStrategy whose 0.5 s latency elapses on
        ``scheduler`` instantly.
    """
    return SimulatedStrategy(output_dir, scheduler=scheduler, clock=scheduler)


@pytest.fixture
def pin_backend() -> SimulatedPinBackend:
    """In-memory pin backend."""
    return SimulatedPinBackend()


@pytest.fixture
def pins(
    pin_backend: SimulatedPinBackend, scheduler: ManualScheduler, bus: EventBus
) -> Iterator[PinController]:
    """Pin controller over the simulated backend and virtual time."""
    controller = PinController(pin_backend, scheduler, bus)
    yield controller
    controller.cleanup()


@pytest.fixture
def station_config(output_dir: Path) -> StationConfig:
    """Simulated station configuration writing into ``output_dir``.

    Uses a short reconnect delay and the simulated pin backend so
    station tests never probe real hardware.
    """
    return StationConfig(
        strategy=StrategyType.SIMULATED,
        output_dir=output_dir,
        reconnect_attempts=2,
        reconnect_delay=1.0,
        pin_backend=PinBackendType.SIMULATED,
    )


@pytest.fixture
def factory(
    station_config: StationConfig, runner: FakeRunner, scheduler: ManualScheduler
) -> DriverFactory:
    """Driver factory wired to the fake runner and virtual time."""
    return DriverFactory(station_config, runner=runner, scheduler=scheduler, clock=scheduler)


@pytest.fixture(autouse=True)
def _isolate_globals():
    """Reset the process-wide factory and logging after each test.

    Business context: ``configure()`` and ``configure_logging()`` mutate
    module globals; without a reset one test's configuration would leak
    into the next.
    """
    yield
    reset_factory()
    reset_logging()
