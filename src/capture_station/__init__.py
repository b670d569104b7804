"""Device-control core for a kiosk-style capture station.

Abstracts capture backends (simulated, ffmpeg webcam, gphoto2 tethered
DSLR) and physical buttons/LEDs behind one control surface, coordinates
their lifecycles, and turns electrical and process events into
application-level actions and published events.

Example:
    from capture_station import CaptureStation, StationConfig

    with CaptureStation(StationConfig()) as station:
        result = station.capture()
        print(result.file_name)
"""

from capture_station.devices.station import CaptureStation
from capture_station.drivers.config import StationConfig

__version__ = "0.1.0"

__all__ = ["CaptureStation", "StationConfig", "__version__"]
