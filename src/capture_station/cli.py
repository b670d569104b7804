"""CLI entry point for capture-station.

Provides the ``capture-station`` console script with subcommands:

- ``test``: Check that the capture backend is reachable
- ``capture``: Take one or more pictures
- ``settings``: Print the backend's current capture settings
- ``live-view``: Save a number of live-view frames to a directory

Usage::

    # Probe the auto-detected backend
    capture-station test

    # Three pictures, two seconds apart, with a countdown
    capture-station --strategy webcam capture --count 3 --interval 2 --countdown 3

    # Grab 10 preview frames from a tethered DSLR
    capture-station --strategy gphoto2 live-view --frames 10 --dest /tmp/frames

Global options override the ``CAMERA_*`` environment variables read by
``StationConfig.from_env``. Results are printed as JSON on stdout; logs
go to stderr.
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

from capture_station.devices.capture_controller import CaptureOptions
from capture_station.devices.station import CaptureStation
from capture_station.drivers.cameras import StrategyType
from capture_station.drivers.config import PinBackendType, StationConfig
from capture_station.errors import StationError
from capture_station.observability import configure_logging, get_logger

logger = get_logger(__name__)

PROG = "capture-station"


def build_parser() -> argparse.ArgumentParser:
    """Argument parser with the global options and every subcommand."""
    parser = argparse.ArgumentParser(
        prog=PROG,
        description="Kiosk capture station: webcam, tethered DSLR or simulated camera",
    )
    parser.add_argument(
        "--strategy",
        help="Capture backend: mock, webcam, gphoto2 (default: CAMERA_STRATEGY or auto-detect)",
    )
    parser.add_argument("--device", help="Webcam device or gphoto2 port")
    parser.add_argument("--output", type=Path, help="Directory for captured files")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines")

    subparsers = parser.add_subparsers(dest="command", required=True, help="Available commands")

    subparsers.add_parser("test", help="Test the backend connection")

    capture_parser = subparsers.add_parser("capture", help="Take pictures")
    capture_parser.add_argument("--countdown", type=int, default=0, help="Countdown seconds")
    capture_parser.add_argument("--count", type=int, default=1, help="Number of pictures")
    capture_parser.add_argument(
        "--interval", type=float, default=1.0, help="Seconds between pictures"
    )

    subparsers.add_parser("settings", help="Print current capture settings")

    live_parser = subparsers.add_parser("live-view", help="Save live-view frames")
    live_parser.add_argument("--frames", type=int, default=1, help="Frames to save")
    live_parser.add_argument(
        "--dest", type=Path, default=Path("."), help="Directory receiving the frames"
    )
    live_parser.add_argument(
        "--timeout", type=float, default=5.0, help="Seconds to wait for each frame"
    )
    return parser


def config_from_args(args: argparse.Namespace) -> StationConfig:
    """Environment configuration with command-line overrides applied.

    The CLI never drives pins and does not retry a missing backend.
    """
    config = StationConfig.from_env()
    changes: dict[str, Any] = {
        "pin_backend": PinBackendType.SIMULATED,
        "reconnect_attempts": 0,
        "auto_connect": False,
    }
    if args.strategy:
        changes["strategy"] = StrategyType.parse(args.strategy)
    if args.device:
        changes["device"] = args.device
    if args.output:
        changes["output_dir"] = args.output
    return replace(config, **changes)


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def run_test(station: CaptureStation) -> int:
    ok = station.test_connection()
    _emit({"ok": ok, **station.status()})
    return 0 if ok else 1


def run_capture(station: CaptureStation, args: argparse.Namespace) -> int:
    options = CaptureOptions(countdown=args.countdown)
    if args.count > 1:
        results = station.capture_multiple(args.count, args.interval, options)
    else:
        results = [station.capture(options)]
    _emit([result.to_dict() for result in results])
    return 0


def run_settings(station: CaptureStation) -> int:
    _emit(station.get_settings().to_dict())
    return 0


def run_live_view(station: CaptureStation, args: argparse.Namespace) -> int:
    if args.frames < 1:
        raise ValueError("--frames must be >= 1")
    args.dest.mkdir(parents=True, exist_ok=True)
    stream = station.start_live_view()
    saved: list[str] = []
    try:
        for index in range(args.frames):
            frame = stream.get_frame(timeout=args.timeout)
            path = args.dest / f"frame_{index:04d}.jpg"
            path.write_bytes(frame)
            saved.append(str(path))
    finally:
        station.stop_live_view()
    _emit({"frames": saved})
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point for capture-station.

    Args:
        argv: Arguments without the program name (``sys.argv[1:]`` when None).

    Returns:
        Exit code 0 for success, 1 when the backend failed, 2 for
        configuration errors.

    Raises:
        SystemExit: On --help or argument parsing errors.
    """
    args = build_parser().parse_args(argv)
    configure_logging(
        level=args.log_level, json_format=args.json_logs, stream=sys.stderr, force=True
    )

    try:
        config = config_from_args(args)
    except (StationError, ValueError) as exc:
        logger.error("Invalid configuration", error=str(exc))
        return 2

    station = CaptureStation(config, default_actions=False)
    try:
        if args.command == "test":
            return run_test(station)
        if args.command == "capture":
            return run_capture(station, args)
        if args.command == "settings":
            return run_settings(station)
        return run_live_view(station, args)
    except ValueError as exc:
        logger.error("Invalid arguments", command=args.command, error=str(exc))
        return 2
    except StationError as exc:
        logger.error(
            "Command failed",
            command=args.command,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return 1
    finally:
        station.close()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
