"""Observability for the capture station: structured logging and stats.

Example:
    from capture_station.observability import LogContext, get_logger

    logger = get_logger(__name__)

    with LogContext(strategy="tethered-cli"):
        logger.info("Capture completed", file_name="IMG_20260101_120000_000001.jpg")
"""

from capture_station.observability.logging import (
    JSONFormatter,
    LogContext,
    StructuredFormatter,
    StructuredLogger,
    configure_logging,
    get_logger,
    reset_logging,
)
from capture_station.observability.stats import CaptureStats, StatsSummary

__all__ = [
    "CaptureStats",
    "JSONFormatter",
    "LogContext",
    "StatsSummary",
    "StructuredFormatter",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
    "reset_logging",
]
