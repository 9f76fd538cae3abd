"""
Mock implementations for testing.

These classes implement the abstract interfaces with in-memory behavior
suitable for unit testing without a GPS receiver or a server.
"""

from typing import Optional, List, Dict, Union
from collections import deque

from .errors import ServerUnreachableError
from .interfaces import (
    RawStreamInterface, FileSystemInterface, ClockInterface,
    LoggerInterface, TransportInterface,
)


class MockStreamExhausted(Exception):
    """Raised by MockRawStream once every scripted chunk was read."""


class MockRawStream(RawStreamInterface):
    """
    Scripted raw stream.

    Each injected chunk is returned by exactly one read() call, so tests
    control where reads split the byte stream. Once drained, the next
    wait_readable() raises MockStreamExhausted instead of blocking.
    """

    def __init__(self, chunks: Optional[List[bytes]] = None):
        self._chunks: deque = deque(chunks or [])
        self._read_sizes: List[int] = []
        self._closed = False
        self._fail_with: Optional[Exception] = None

    def wait_readable(self) -> None:
        if not self._chunks:
            raise MockStreamExhausted()

    def read(self, max_bytes: int) -> bytes:
        if self._fail_with is not None:
            raise self._fail_with
        self._read_sizes.append(max_bytes)
        if not self._chunks:
            return b""
        chunk = self._chunks.popleft()
        if len(chunk) > max_bytes:
            # keep the remainder for the next read
            self._chunks.appendleft(chunk[max_bytes:])
            chunk = chunk[:max_bytes]
        return chunk

    def close(self) -> None:
        self._closed = True

    # Test helper methods

    def inject(self, chunk: bytes) -> None:
        """Queue one read's worth of bytes."""
        self._chunks.append(chunk)

    def inject_line(self, line: str) -> None:
        """Queue a full line plus terminator."""
        self._chunks.append((line + "\n").encode("ascii"))

    def fail_with(self, error: Exception) -> None:
        """Make every following read() raise error."""
        self._fail_with = error

    def get_read_sizes(self) -> List[int]:
        """max_bytes passed to each read() call."""
        return self._read_sizes.copy()

    @property
    def closed(self) -> bool:
        return self._closed


class MockFileSystem(FileSystemInterface):
    """
    In-memory file system for testing.

    All file operations are performed in memory without touching disk.
    """

    def __init__(self):
        self._files: Dict[str, str] = {}
        self._dirs: set = set()
        self._fail_writes: set = set()

    def read_file(self, path: str) -> str:
        if path not in self._files:
            raise FileNotFoundError(f"No such file: {path}")
        return self._files[path]

    def write_file(self, path: str, content: str, append: bool = False) -> None:
        if path in self._fail_writes:
            raise PermissionError(f"Permission denied: {path}")
        if append and path in self._files:
            self._files[path] += content
        else:
            self._files[path] = content

    def file_exists(self, path: str) -> bool:
        return path in self._files

    def ensure_dir(self, path: str) -> None:
        if path in self._fail_writes:
            raise PermissionError(f"Permission denied: {path}")
        self._dirs.add(path)

    # Test helper methods

    def get_all_files(self) -> Dict[str, str]:
        """Get dictionary of all files and contents."""
        return self._files.copy()

    def get_dirs(self) -> set:
        """Directories created through ensure_dir()."""
        return set(self._dirs)

    def fail_writes_to(self, path: str) -> None:
        """Make write_file() or ensure_dir() on path raise PermissionError."""
        self._fail_writes.add(path)


class MockClock(ClockInterface):
    """
    Controllable clock for testing.

    sleep() returns immediately and records the call.
    """

    def __init__(self):
        self._sleep_calls: List[float] = []

    def sleep(self, seconds: float) -> None:
        self._sleep_calls.append(seconds)

    # Test helper methods

    def get_sleep_calls(self) -> List[float]:
        """Get list of all sleep() calls made."""
        return self._sleep_calls.copy()


class MockLogger(LoggerInterface):
    """
    Logger that captures all messages for testing.
    """

    def __init__(self):
        self._messages: List[tuple] = []

    def debug(self, msg: str) -> None:
        self._messages.append(("DEBUG", msg))

    def info(self, msg: str) -> None:
        self._messages.append(("INFO", msg))

    def warning(self, msg: str) -> None:
        self._messages.append(("WARNING", msg))

    def error(self, msg: str) -> None:
        self._messages.append(("ERROR", msg))

    # Test helper methods

    def get_messages(self, level: Optional[str] = None) -> List[tuple]:
        """Get logged messages, optionally filtered by level."""
        if level:
            return [(l, m) for l, m in self._messages if l == level]
        return self._messages.copy()

    def contains(self, substring: str, level: Optional[str] = None) -> bool:
        """Check if any message contains substring."""
        messages = self.get_messages(level)
        return any(substring in m for _, m in messages)


class MockTransport(TransportInterface):
    """
    Scripted server for testing.

    Each exchange() consumes the next scripted outcome: response bytes,
    or an exception instance to raise. When the script runs out, the
    default response is returned.
    """

    def __init__(self, default_response: bytes = b"HTTP/1.1 200 OK\r\n\r\n"):
        self._script: deque = deque()
        self._default = default_response
        self._requests: List[tuple] = []

    def exchange(self, host: str, port: int, request: bytes) -> bytes:
        self._requests.append((host, port, request))
        outcome = self._script.popleft() if self._script else self._default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    # Test helper methods

    def queue(self, *outcomes: Union[bytes, Exception]) -> None:
        """Script the next outcomes in order."""
        self._script.extend(outcomes)

    def fail_times(self, count: int) -> None:
        """Next count exchanges raise ServerUnreachableError."""
        for i in range(count):
            self._script.append(ServerUnreachableError(f"connect: refused (mock #{i + 1})"))

    def get_requests(self) -> List[tuple]:
        """(host, port, request bytes) for every exchange made."""
        return self._requests.copy()

    def get_bodies(self) -> List[bytes]:
        """Request bodies (everything after the blank line)."""
        return [r.split(b"\r\n\r\n", 1)[1] for _, _, r in self._requests]

    def get_paths(self) -> List[str]:
        """Request paths, e.g. '/api/ping'."""
        return [r.split(b" ", 2)[1].decode("ascii") for _, _, r in self._requests]
