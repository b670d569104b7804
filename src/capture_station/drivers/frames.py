"""Frame-boundary parser for concatenated frame byte streams.

Live view from ``ffmpeg -f mjpeg -`` and ``gphoto2 --capture-movie
--stdout`` arrives as one endless byte stream of back-to-back JPEGs cut
into arbitrary pipe-sized chunks. ``FrameParser`` accumulates those
chunks and hands back every complete ``start marker ... end marker``
span it finds.

Example:
    parser = FrameParser()
    frames = parser.feed(b"junk\\xff\\xd8abc")   # -> []
    frames = parser.feed(b"def\\xff\\xd9\\xff\\xd8")  # -> [b"\\xff\\xd8abcdef\\xff\\xd9"]
"""

from __future__ import annotations

from capture_station.observability import get_logger

logger = get_logger(__name__)

#: JPEG start-of-image marker.
JPEG_SOI = b"\xff\xd8"

#: JPEG end-of-image marker.
JPEG_EOI = b"\xff\xd9"

#: Buffer size after which an incomplete frame is dropped.
DEFAULT_MAX_BUFFER = 1024 * 1024


class FrameParser:
    """Incremental start/end marker frame extractor.

    Bytes before a start marker are dropped (apart from a possible
    partial marker at the very end of the buffer). When the buffer holds
    more than ``max_buffer`` bytes after extraction, the incomplete frame
    is discarded so a stream that never closes a frame cannot grow the
    buffer without bound.

    Not thread-safe; each stream owns its parser and feeds it from its
    single reader thread.
    """

    def __init__(
        self,
        start_marker: bytes = JPEG_SOI,
        end_marker: bytes = JPEG_EOI,
        max_buffer: int = DEFAULT_MAX_BUFFER,
    ) -> None:
        """Create a parser.

        Args:
            start_marker: Byte sequence opening a frame.
            end_marker: Byte sequence closing a frame.
            max_buffer: Safety bound in bytes for the accumulation buffer.

        Raises:
            ValueError: If a marker is empty or max_buffer is not positive.
        """
        if not start_marker or not end_marker:
            raise ValueError("Frame markers must not be empty")
        if max_buffer <= 0:
            raise ValueError(f"max_buffer must be positive, got {max_buffer}")
        self.start_marker = start_marker
        self.end_marker = end_marker
        self.max_buffer = max_buffer
        self._buffer = bytearray()
        self.frames_emitted = 0
        self.overflows = 0

    @property
    def buffered(self) -> int:
        """Bytes currently held waiting for a frame to complete."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[bytes]:
        """Append ``chunk`` and return every frame it completes, in order."""
        self._buffer.extend(chunk)
        frames: list[bytes] = []

        while True:
            start = self._buffer.find(self.start_marker)
            if start < 0:
                self._keep_partial_marker()
                break
            if start:
                del self._buffer[:start]
            end = self._buffer.find(self.end_marker, len(self.start_marker))
            if end < 0:
                break
            stop = end + len(self.end_marker)
            frames.append(bytes(self._buffer[:stop]))
            del self._buffer[:stop]

        if len(self._buffer) > self.max_buffer:
            self.overflows += 1
            logger.warning(
                "Frame buffer overflow, dropping partial frame",
                buffered=len(self._buffer),
                max_buffer=self.max_buffer,
            )
            self._buffer.clear()

        self.frames_emitted += len(frames)
        return frames

    def reset(self) -> None:
        """Drop any buffered partial frame."""
        self._buffer.clear()

    def _keep_partial_marker(self) -> None:
        # Retain the tail that could be the first bytes of a split marker.
        keep = len(self.start_marker) - 1
        if len(self._buffer) > keep:
            del self._buffer[: len(self._buffer) - keep]
