"""
Batch accumulation of sentences for one network delivery.
"""

from typing import List

from .errors import BatchOverflowError

DEFAULT_BATCH_CAPACITY = 8192
SENTENCE_START = b"$"
DEFAULT_TRIGGER = b"$GPRMC"


def is_sentence(line: bytes) -> bool:
    """True when the line starts with the sentence marker."""
    return line.startswith(SENTENCE_START)


def sentence_type(line: bytes) -> bytes:
    """Leading token of a sentence, e.g. b'$GPGGA'."""
    return line.split(b",", 1)[0]


def is_trigger(line: bytes, trigger: bytes = DEFAULT_TRIGGER) -> bool:
    """
    True when the sentence closes a fix record and the batch should flush.

    The whole type token must match, so b"$GPRMCX,..." does not flush, and
    neither does a bare b"$GPRMC*xx" with no comma-separated fields (its
    token is b"$GPRMC*xx"). A plain six-byte prefix test would accept both.
    """
    return sentence_type(line) == trigger


class Batch:
    """
    Size-bounded buffer of newline-joined sentences.

    The serialized size (each line plus one terminator byte) never
    exceeds capacity. A rejected append leaves the batch untouched;
    the caller decides what to do about it (normally reset and move on).

    The underlying buffer is allocated once and reused across resets.
    """

    def __init__(self, capacity: int = DEFAULT_BATCH_CAPACITY):
        if capacity <= 0:
            raise ValueError("batch capacity must be positive")
        self._capacity = capacity
        self._buffer = bytearray(capacity)
        self._cursor = 0
        self._count = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def length(self) -> int:
        """Content length in bytes, terminators included."""
        return self._cursor

    @property
    def count(self) -> int:
        """Number of lines in the batch."""
        return self._count

    @property
    def payload(self) -> bytes:
        """Batch content as sent on the wire."""
        return bytes(self._buffer[:self._cursor])

    @property
    def lines(self) -> List[bytes]:
        return self.payload.split(b"\n")[:-1] if self._cursor else []

    def is_empty(self) -> bool:
        return self._cursor == 0

    def append(self, line: bytes) -> int:
        """
        Append a line plus terminator and return the new line count.

        Raises BatchOverflowError if it would not fit.
        """
        end = self._cursor + len(line) + 1
        if end > self._capacity:
            raise BatchOverflowError(self._cursor, len(line), self._capacity)

        self._buffer[self._cursor:end - 1] = line
        self._buffer[end - 1] = 0x0A
        self._cursor = end
        self._count += 1
        return self._count

    def reset(self) -> None:
        """Empty the batch, keeping its buffer."""
        self._cursor = 0
        self._count = 0

    def __repr__(self) -> str:
        return f"Batch(count={self._count}, length={self._cursor}, capacity={self._capacity})"
