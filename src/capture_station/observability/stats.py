"""Capture statistics per strategy.

Keeps a bounded rolling window of still-capture outcomes for every
strategy the controller has used, and summarizes success rate, timing
percentiles and failure kinds on demand. Thread-safe: captures are
recorded from the controller's calling thread while the CLI or a status
endpoint reads summaries from another.

Example:
    stats = CaptureStats()
    stats.record_capture("webcam", duration_ms=420.0, success=True)
    stats.record_capture("webcam", duration_ms=0.0, success=False,
                         error_type="CaptureFailedError")

    summary = stats.get_summary("webcam")
    print(f"{summary.success_rate:.0%} ok, p95 {summary.p95_duration_ms:.0f}ms")
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

import numpy as np

#: Outcomes retained per strategy for duration statistics.
DEFAULT_STATS_WINDOW_SIZE = 500


@dataclass
class StatsSummary:
    """Snapshot of capture statistics for one strategy.

    Attributes:
        strategy: Strategy name the figures belong to.
        total_captures: All attempts since creation or reset.
        successful_captures: Attempts that produced a file.
        failed_captures: Attempts that raised.
        success_rate: successful / total, 0.0 without attempts.
        min_duration_ms: Fastest successful capture in the window.
        max_duration_ms: Slowest successful capture in the window.
        avg_duration_ms: Mean successful duration in the window.
        p95_duration_ms: 95th percentile successful duration.
        error_counts: Failures grouped by error type name.
        last_capture_time: UTC time of the latest attempt.
        uptime_seconds: Seconds since creation or reset.
    """

    strategy: str
    total_captures: int = 0
    successful_captures: int = 0
    failed_captures: int = 0
    success_rate: float = 0.0
    min_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    avg_duration_ms: float = 0.0
    p95_duration_ms: float = 0.0
    error_counts: dict[str, int] = field(default_factory=dict)
    last_capture_time: datetime | None = None
    uptime_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible dict (timestamp as ISO string)."""
        data = asdict(self)
        data["last_capture_time"] = (
            self.last_capture_time.isoformat() if self.last_capture_time else None
        )
        return data


@dataclass(slots=True)
class _Outcome:
    duration_ms: float
    success: bool


class _StrategyWindow:
    """Counters plus rolling outcomes for a single strategy."""

    def __init__(self, window_size: int) -> None:
        self.outcomes: deque[_Outcome] = deque(maxlen=window_size)
        self.total = 0
        self.successful = 0
        self.error_counts: dict[str, int] = {}
        self.started = time.monotonic()
        self.last_capture_time: datetime | None = None


class CaptureStats:
    """Thread-safe statistics store keyed by strategy name."""

    def __init__(self, window_size: int = DEFAULT_STATS_WINDOW_SIZE) -> None:
        """Create an empty store.

        Args:
            window_size: Outcomes kept per strategy for duration figures.
                Counters are cumulative regardless of the window.

        Raises:
            ValueError: If window_size is not positive.
        """
        if window_size <= 0:
            raise ValueError(f"window_size must be positive, got {window_size}")
        self._window_size = window_size
        self._windows: dict[str, _StrategyWindow] = {}
        self._lock = threading.Lock()

    def record_capture(
        self,
        strategy: str,
        duration_ms: float,
        success: bool,
        error_type: str | None = None,
    ) -> None:
        """Record one capture attempt.

        Args:
            strategy: Name of the strategy that handled the capture.
            duration_ms: Wall time of the attempt.
            success: Whether a file was produced.
            error_type: Failure category (usually the exception class name).
        """
        with self._lock:
            window = self._windows.get(strategy)
            if window is None:
                window = self._windows[strategy] = _StrategyWindow(self._window_size)
            window.outcomes.append(_Outcome(duration_ms, success))
            window.total += 1
            if success:
                window.successful += 1
            elif error_type:
                window.error_counts[error_type] = (
                    window.error_counts.get(error_type, 0) + 1
                )
            window.last_capture_time = datetime.now(UTC)

    def get_summary(self, strategy: str) -> StatsSummary:
        """Summarize one strategy; unknown names yield an empty summary."""
        with self._lock:
            window = self._windows.get(strategy)
            if window is None:
                return StatsSummary(strategy=strategy)
            durations = [
                o.duration_ms for o in window.outcomes if o.success and o.duration_ms > 0
            ]
            total = window.total
            successful = window.successful
            errors = dict(window.error_counts)
            last = window.last_capture_time
            started = window.started

        summary = StatsSummary(
            strategy=strategy,
            total_captures=total,
            successful_captures=successful,
            failed_captures=total - successful,
            success_rate=successful / total if total else 0.0,
            error_counts=errors,
            last_capture_time=last,
            uptime_seconds=time.monotonic() - started,
        )
        if durations:
            values = np.asarray(durations, dtype=float)
            summary.min_duration_ms = float(values.min())
            summary.max_duration_ms = float(values.max())
            summary.avg_duration_ms = float(values.mean())
            summary.p95_duration_ms = float(np.percentile(values, 95))
        return summary

    def get_all_summaries(self) -> dict[str, StatsSummary]:
        """Summaries for every strategy seen so far."""
        with self._lock:
            names = list(self._windows)
        return {name: self.get_summary(name) for name in names}

    def reset(self, strategy: str | None = None) -> None:
        """Forget one strategy's figures, or everything when None."""
        with self._lock:
            if strategy is None:
                self._windows.clear()
            else:
                self._windows.pop(strategy, None)

    def to_dict(self) -> dict[str, Any]:
        """Serialize all summaries keyed by strategy name."""
        return {name: s.to_dict() for name, s in self.get_all_summaries().items()}
