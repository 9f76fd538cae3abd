"""
Interfaces for gpsrelay.

Abstract base classes that define contracts for all pluggable components.
This enables dependency injection and mock-based testing without a GPS
receiver or a collection server.
"""

from abc import ABC, abstractmethod
from enum import Enum


class SessionState(Enum):
    """Delivery session states."""
    CLOSED = "closed"
    VALIDATING = "validating"
    OPEN = "open"


class RawStreamInterface(ABC):
    """
    Abstract interface for a readable byte source.

    Implementations:
    - SerialStream: serial GPS device
    - FifoStream: read end of the relay pipe
    - MockRawStream: scripted chunks for unit testing
    """

    @abstractmethod
    def wait_readable(self) -> None:
        """Block until the stream has data (no timeout)."""
        pass

    @abstractmethod
    def read(self, max_bytes: int) -> bytes:
        """Read up to max_bytes. Returns b'' when nothing is available."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the underlying descriptor."""
        pass


class FileSystemInterface(ABC):
    """
    Abstract interface for file system operations.

    Implementations:
    - RealFileSystem: Actual file I/O
    - MockFileSystem: In-memory for testing
    """

    @abstractmethod
    def read_file(self, path: str) -> str:
        """Read entire file contents."""
        pass

    @abstractmethod
    def write_file(self, path: str, content: str, append: bool = False) -> None:
        """Write content to file. Creates parent dirs if needed."""
        pass

    @abstractmethod
    def file_exists(self, path: str) -> bool:
        """Check if file exists."""
        pass

    @abstractmethod
    def ensure_dir(self, path: str) -> None:
        """Create directory and parents if they don't exist."""
        pass


class ClockInterface(ABC):
    """
    Abstract interface for time operations.

    Enables deterministic testing of the retry loop.
    """

    @abstractmethod
    def sleep(self, seconds: float) -> None:
        """Sleep for specified duration."""
        pass


class LoggerInterface(ABC):
    """
    Abstract interface for logging.

    Separates daemon logic from log output formatting.
    """

    @abstractmethod
    def debug(self, msg: str) -> None:
        """Log debug message."""
        pass

    @abstractmethod
    def info(self, msg: str) -> None:
        """Log info message."""
        pass

    @abstractmethod
    def warning(self, msg: str) -> None:
        """Log warning message."""
        pass

    @abstractmethod
    def error(self, msg: str) -> None:
        """Log error message."""
        pass


class TransportInterface(ABC):
    """
    Abstract interface for one request/response exchange with the server.

    Implementations:
    - SocketTransport: fresh TCP connection per exchange
    - MockTransport: scripted responses for testing
    """

    @abstractmethod
    def exchange(self, host: str, port: int, request: bytes) -> bytes:
        """
        Connect, send request, receive the response, close.

        Raises ServerUnreachableError when the server cannot be reached.
        """
        pass
