"""
Error taxonomy for gpsrelay.

Leaf components raise these instead of exiting; the daemon entry point
decides what terminates the process.

- FatalError: the process cannot continue safely (exit non-zero).
- RetryableError: transient condition, caller may loop and retry.
- DegradedError: log it, drop the affected data, keep running.
"""


class GpsRelayError(Exception):
    """Base class for all gpsrelay errors."""


class FatalError(GpsRelayError):
    """Unrecoverable fault. Only the daemon entry point handles these."""


class RetryableError(GpsRelayError):
    """Transient fault, safe to retry."""


class DegradedError(GpsRelayError):
    """Non-fatal fault, the affected data is dropped."""


# Fatal

class ConfigError(FatalError):
    """Invalid or incomplete configuration."""


class DeviceOpenError(FatalError):
    """Serial device could not be opened."""


class DeviceConfigError(FatalError):
    """Terminal attributes could not be read or applied."""


class DeviceReadError(FatalError):
    """Read or readiness-wait failure on a raw stream."""


class IndexReadError(FatalError):
    """Log index exists but cannot be read (not a regular file, no permission)."""


class IndexWriteError(FatalError):
    """Log index could not be persisted."""


class CaptureLogError(FatalError):
    """Local capture file could not be created."""


class RelayError(FatalError):
    """Unexpected failure on the relay pipe."""


class RelayCreateError(RelayError):
    """Relay pipe could not be created (stale path from an unclean run?)."""


class ProtocolError(FatalError):
    """Server answered with something other than the success marker."""

    def __init__(self, endpoint: str, response: bytes):
        self.endpoint = endpoint
        self.response = response
        status = response.split(b"\r\n", 1)[0].decode("ascii", errors="replace")
        super().__init__(f"{endpoint}: wrong response from server: {status!r}")


# Retryable

class ServerUnreachableError(RetryableError):
    """Name resolution, socket or connection failure."""


# Degraded

class BatchOverflowError(DegradedError):
    """Appending the line would exceed the batch capacity."""

    def __init__(self, length: int, line_length: int, capacity: int):
        self.length = length
        self.line_length = line_length
        self.capacity = capacity
        super().__init__(
            f"batch overflow: {length} + {line_length} + 1 > {capacity}"
        )


class NoReaderError(DegradedError):
    """Relay write end cannot be opened: nobody has the read end open."""
