"""
Line framing for raw GPS byte streams.

Turns partial reads from a serial device or the relay pipe into
complete, terminator-stripped sentence lines.
"""

from typing import Optional

from .interfaces import RawStreamInterface, LoggerInterface

TERMINATOR = b"\n"
DEFAULT_LINE_CAPACITY = 2048


class LineFramer:
    """
    Reads one complete line at a time from a raw stream.

    Bytes are accumulated in a single reusable buffer. A read may end in
    the middle of a line or carry several lines; either way the framer
    yields the same sequence of lines, so output does not depend on how
    the stream was chunked.

    Empty lines (runs of terminators) are swallowed and never returned.
    A line that fills the whole buffer without a terminator is dropped
    so the framer can resynchronise on the next terminator.
    """

    def __init__(
        self,
        stream: RawStreamInterface,
        capacity: int = DEFAULT_LINE_CAPACITY,
        logger: Optional[LoggerInterface] = None,
    ):
        if capacity < 2:
            raise ValueError("line capacity must allow at least one byte plus terminator")
        self._stream = stream
        self._capacity = capacity
        self._logger = logger
        self._buffer = bytearray()
        self._bytes_read = 0
        self._lines_framed = 0
        self._lines_discarded = 0

    @property
    def bytes_read(self) -> int:
        """Total bytes read from the stream."""
        return self._bytes_read

    @property
    def lines_framed(self) -> int:
        """Number of non-empty lines returned."""
        return self._lines_framed

    @property
    def lines_discarded(self) -> int:
        """Number of overlong partial lines dropped."""
        return self._lines_discarded

    @property
    def pending(self) -> int:
        """Bytes buffered but not yet returned as a line."""
        return len(self._buffer)

    def reset(self) -> None:
        """Drop any partial line, e.g. after the stream was re-opened."""
        if self._buffer and self._logger:
            self._logger.warning(f"dropping {len(self._buffer)} bytes of partial line")
        self._buffer.clear()

    def read_line(self) -> bytes:
        """
        Block until a full non-empty line is available and return it.

        An empty read means "no complete line yet", not end of stream.
        Read errors from the stream propagate (DeviceReadError is fatal).
        """
        while True:
            line = self._take_buffered_line()
            if line is not None:
                self._lines_framed += 1
                return line

            if len(self._buffer) >= self._capacity:
                self._discard_overlong()

            self._stream.wait_readable()
            data = self._stream.read(self._capacity - len(self._buffer))
            if not data:
                continue

            self._bytes_read += len(data)
            self._buffer += data

    def _take_buffered_line(self) -> Optional[bytes]:
        while True:
            end = self._buffer.find(TERMINATOR)
            if end < 0:
                return None

            line = bytes(self._buffer[:end])
            del self._buffer[:end + 1]
            if line:
                return line

    def _discard_overlong(self) -> None:
        self._lines_discarded += 1
        if self._logger:
            self._logger.warning(
                f"no terminator within {self._capacity} bytes, discarding partial line"
            )
        self._buffer.clear()
