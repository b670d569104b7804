"""Structured logging for the capture station.

Thin layer over the standard ``logging`` module that lets every call
site attach key-value data to a record:

    logger = get_logger(__name__)
    logger.info("Capture completed", strategy="webcam", duration_ms=412)

Structured values are rendered either as trailing ``key=value`` pairs
(human-readable, default) or as top-level keys of a one-line JSON
object (``configure_logging(json_format=True)``) for log shipping.

``LogContext`` scopes values to a block so that, for example, every
record emitted while a button action runs carries ``button=capture``.

Security Note:
    Values coming from outside the process (device model strings read
    from gphoto2, stderr lines from ffmpeg) belong in keyword arguments,
    never interpolated into the message:

    # SAFE
    logger.warning("Tool stderr", line=stderr_line)

    # UNSAFE - a CRLF in stderr_line forges a new log entry
    logger.warning(f"Tool stderr: {stderr_line}")
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import threading
from datetime import UTC, datetime
from typing import Any, TextIO, cast

#: Name of the package root logger; every module logger hangs below it.
ROOT_LOGGER_NAME = "capture_station"

_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "capture_station_log_context", default={}
)

_configured = False
_config_lock = threading.Lock()


class StructuredLogger(logging.Logger):
    """Logger whose level methods accept arbitrary keyword arguments.

    ``Logger.info(msg, *args, **kwargs)`` forwards unknown keyword
    arguments straight to ``_log``; this subclass collects them (merged
    over the active ``LogContext``) into ``record.structured_data``.

    Usage:
        logger = get_logger("capture_station.devices.pins")
        logger.debug("Debounce settled", pin="capture", level=True)
    """

    def _log(  # type: ignore[override]
        self,
        level: int,
        msg: object,
        args: Any,
        exc_info: Any = None,
        extra: dict[str, Any] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **kwargs: Any,
    ) -> None:
        """Emit a record carrying context and keyword data.

        Explicit keyword arguments win over ``LogContext`` values with
        the same key.

        Args:
            level: Numeric level (``logging.INFO`` etc.).
            msg: Message, may contain %-placeholders for ``args``.
            args: Positional %-format arguments.
            exc_info: Exception info as accepted by ``logging``.
            extra: Extra record attributes; ``structured_data`` is set.
            stack_info: Attach the current stack when True.
            stacklevel: Frames to skip when resolving the caller.
            **kwargs: Structured key-value data for the record.
        """
        merged = {**_log_context.get(), **kwargs}
        extra = dict(extra) if extra else {}
        extra["structured_data"] = merged
        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


def _format_value(value: Any) -> str:
    """Render one structured value for the key=value formatter.

    Args:
        value: Any value attached to a log call.

    Returns:
        ``null`` for None, quoted text for strings containing spaces,
        JSON for dicts/lists/tuples, ``str(value)`` otherwise.

    Example:
        >>> _format_value("USB Camera")
        '"USB Camera"'
        >>> _format_value({"iso": 200})
        '{"iso": 200}'
    """
    if value is None:
        return "null"
    if isinstance(value, str):
        return f'"{value}"' if " " in value else value
    if isinstance(value, dict | list | tuple):
        return json.dumps(value, default=str)
    return str(value)


class StructuredFormatter(logging.Formatter):
    """Human-readable formatter: ``<base format> | key=value key=value``."""

    DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        include_structured: bool = True,
    ) -> None:
        """Create the formatter.

        Args:
            fmt: Base format string; defaults to ``DEFAULT_FORMAT``.
            datefmt: ``asctime`` format passed to ``logging.Formatter``.
            include_structured: Append structured pairs when True.
        """
        super().__init__(fmt or self.DEFAULT_FORMAT, datefmt)
        self.include_structured = include_structured

    def format(self, record: logging.LogRecord) -> str:
        """Format the base record, then append structured pairs if any."""
        base = super().format(record)
        structured = getattr(record, "structured_data", None)
        if not self.include_structured or not structured:
            return base
        pairs = " ".join(f"{k}={_format_value(v)}" for k, v in structured.items())
        return f"{base} | {pairs}"


class JSONFormatter(logging.Formatter):
    """One JSON object per line with structured data merged at top level.

    Fixed keys are ``timestamp`` (UTC ISO 8601), ``level``, ``logger``,
    ``message`` and, when present, ``exception``. Values that JSON cannot
    encode fall back to ``str()``.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Serialize ``record`` as a single NDJSON line."""
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(getattr(record, "structured_data", {}))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class LogContext:
    """Scope structured values to a ``with`` block.

    Backed by ``contextvars`` so values stay local to the thread (or
    task) that entered the block. Nested contexts merge, inner values
    overriding outer ones.

    Usage:
        with LogContext(button="capture", mode="normal"):
            logger.info("Dispatching short press")
    """

    def __init__(self, **kwargs: Any) -> None:
        """Remember the values to apply on ``__enter__``."""
        self._values = kwargs
        self._token: contextvars.Token[dict[str, Any]] | None = None

    def __enter__(self) -> LogContext:
        """Activate the values for the current context."""
        self._token = _log_context.set({**_log_context.get(), **self._values})
        return self

    def __exit__(self, *exc: object) -> None:
        """Restore the context that was active before entry."""
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None

    def __repr__(self) -> str:
        """Show the scoped values."""
        return f"LogContext({self._values!r})"


def _install_handler(
    level: int | str,
    json_format: bool,
    stream: TextIO | None,
    include_structured: bool,
) -> None:
    """Attach a single stream handler to the package root logger.

    Caller must hold ``_config_lock``.
    """
    global _configured
    if _configured:
        return

    logging.setLoggerClass(StructuredLogger)
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    formatter: logging.Formatter = (
        JSONFormatter()
        if json_format
        else StructuredFormatter(include_structured=include_structured)
    )
    handler.setFormatter(formatter)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    root.addHandler(handler)
    root.propagate = False
    _configured = True


def _remove_handlers() -> None:
    """Detach and close every handler on the package root logger.

    Caller must hold ``_config_lock``.
    """
    global _configured
    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    _configured = False


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: TextIO | None = None,
    include_structured: bool = True,
    force: bool = False,
) -> None:
    """Configure output for every ``capture_station`` logger.

    Idempotent: only the first call installs a handler unless ``force``
    is set, in which case the existing handler is replaced. Safe to call
    from several threads at startup.

    Business context: The kiosk runs headless, so the CLI calls this once
    with ``json_format=True`` when logs are shipped to a collector and
    with the human-readable formatter on a developer workstation.

    Args:
        level: Minimum level (int or name such as ``"DEBUG"``).
        json_format: Use ``JSONFormatter`` instead of ``StructuredFormatter``.
        stream: Destination stream; ``sys.stderr`` when None.
        include_structured: Append key=value pairs in text mode.
        force: Replace an existing configuration.

    Example:
        >>> import io
        >>> buffer = io.StringIO()
        >>> configure_logging(level="DEBUG", stream=buffer, force=True)
    """
    with _config_lock:
        if force:
            _remove_handlers()
        _install_handler(level, json_format, stream, include_structured)


def reset_logging() -> None:
    """Return logging to the unconfigured state (used by tests)."""
    with _config_lock:
        _remove_handlers()


def get_logger(name: str) -> StructuredLogger:
    """Return the structured logger for ``name``.

    Configures logging with defaults (INFO, text, stderr) on first use
    so modules can call this at import time.

    Args:
        name: Usually ``__name__``; should sit below ``capture_station``
            to inherit the package handler.

    Returns:
        A ``StructuredLogger`` accepting keyword data on every level call.

    Example:
        >>> logger = get_logger("capture_station.drivers.cameras.webcam")
        >>> logger.info("ffmpeg spawned", pid=4242, device="/dev/video0")
    """
    if not _configured:
        with _config_lock:
            if not _configured:  # pragma: no branch
                _install_handler(logging.INFO, False, None, True)
    return cast(StructuredLogger, logging.getLogger(name))
