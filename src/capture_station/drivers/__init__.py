"""Hardware-facing drivers: capture backends, processes, pins, configuration.

Example:
    from capture_station.drivers import DriverFactory, StationConfig

    factory = DriverFactory(StationConfig(strategy=StrategyType.SIMULATED))
    strategy = factory.create_strategy()
    strategy.initialize()
"""

from capture_station.drivers.cameras import StrategyType
from capture_station.drivers.config import (
    DriverFactory,
    PinBackendType,
    StationConfig,
    configure,
    get_factory,
)
from capture_station.drivers.frames import FrameParser
from capture_station.drivers.process import (
    CommandResult,
    CommandRunner,
    ManagedProcess,
    SubprocessRunner,
)

__all__ = [
    "CommandResult",
    "CommandRunner",
    "DriverFactory",
    "FrameParser",
    "ManagedProcess",
    "PinBackendType",
    "StationConfig",
    "StrategyType",
    "SubprocessRunner",
    "configure",
    "get_factory",
]
