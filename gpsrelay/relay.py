"""
Named-pipe relay between the capture process and the push process.

The gateway (capture side) owns the FIFO: it creates it at startup,
writes every accepted sentence into it when a reader is attached, and
removes it on a clean stop. The push side opens the read end and frames
lines out of it exactly like it would from the serial device.

Either process can be restarted without stopping the other:
- no reader yet: the writer keeps capturing, re-trying the open per line
- reader gone: the write fails with EPIPE (SIGPIPE is ignored), the
  writer closes its end and goes back to re-trying the open
- writer gone: the reader sees end-of-file and re-opens the FIFO,
  blocking until a writer shows up again
"""

import errno
import fcntl
import os
import select
from typing import Callable, Optional

from .errors import DeviceReadError, NoReaderError, RelayCreateError, RelayError
from .interfaces import ClockInterface, LoggerInterface, RawStreamInterface

DEFAULT_RELAY_PATH = "/tmp/gps.pipe"
RELAY_PIPE_SIZE = 32 * 1024 * 1024


class RelayWriter:
    """
    Best-effort write end of the relay FIFO.

    Usage:
        writer = RelayWriter("/tmp/gps.pipe", logger)
        writer.create()
        ...
        writer.write_line(b"$GPGGA,...")   # False while nobody reads
    """

    def __init__(
        self,
        path: str,
        logger: LoggerInterface,
        pipe_size: int = RELAY_PIPE_SIZE,
    ):
        self._path = path
        self._logger = logger
        self._pipe_size = pipe_size
        self._fd: Optional[int] = None
        self._created = False
        self._waiting_for_reader = False
        self._lines_relayed = 0
        self._lines_dropped = 0

    @property
    def path(self) -> str:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._fd is not None

    @property
    def lines_relayed(self) -> int:
        return self._lines_relayed

    @property
    def lines_dropped(self) -> int:
        """Lines not relayed (no reader, reader gone, pipe full)."""
        return self._lines_dropped

    def create(self) -> None:
        """
        Create the FIFO.

        Raises RelayCreateError if it cannot be created, typically because
        the path survived an unclean shutdown.
        """
        self._logger.info(f"creating fifo push file: {self._path}")
        try:
            os.mkfifo(self._path, 0o644)
        except OSError as e:
            raise RelayCreateError(f"mkfifo {self._path}: {e}") from e
        self._created = True

    def open(self) -> None:
        """
        Open the write end without blocking.

        Raises NoReaderError when no process has the read end open.
        """
        try:
            fd = os.open(self._path, os.O_WRONLY | os.O_NONBLOCK)
        except OSError as e:
            if e.errno == errno.ENXIO:
                raise NoReaderError(f"{self._path}: end-pipe not ready yet") from e
            raise RelayError(f"{self._path}: {e}") from e

        self._fd = fd
        self._waiting_for_reader = False
        self._resize()
        self._logger.info("push: pipe opened")

    def _resize(self) -> None:
        # F_SETPIPE_SZ is Linux only
        set_size = getattr(fcntl, "F_SETPIPE_SZ", None)
        if set_size is None:
            return
        try:
            fcntl.fcntl(self._fd, set_size, self._pipe_size)
        except OSError as e:
            self._logger.warning(f"push: cannot grow pipe to {self._pipe_size} bytes: {e}")

    def write_line(self, line: bytes) -> bool:
        """
        Write one sentence plus terminator.

        Returns False when the line could not be relayed; the caller
        still has it in the local capture log.
        """
        if self._fd is None:
            try:
                self.open()
            except NoReaderError as e:
                self._lines_dropped += 1
                if not self._waiting_for_reader:
                    self._logger.warning(f"push: {e}")
                    self._waiting_for_reader = True
                else:
                    self._logger.debug(f"push: {e}")
                return False

        data = line + b"\n"
        try:
            written = os.write(self._fd, data)
        except BrokenPipeError:
            self._lines_dropped += 1
            self._logger.warning("push: reader gone, closing write end")
            self.close()
            return False
        except BlockingIOError:
            self._lines_dropped += 1
            self._logger.warning("push: pipe full, dropping line")
            return False
        except OSError as e:
            self._lines_dropped += 1
            self._logger.error(f"push write: {e}")
            self.close()
            return False

        if written < len(data):
            self._logger.warning(f"push: short write ({written}/{len(data)} bytes)")

        self._lines_relayed += 1
        return True

    def close(self) -> None:
        """Close the write end (the FIFO itself stays)."""
        if self._fd is not None:
            try:
                os.close(self._fd)
            except OSError:
                pass
            self._fd = None

    def remove(self) -> None:
        """Close and unlink the FIFO if this writer created it."""
        self.close()
        if self._created:
            try:
                os.unlink(self._path)
            except FileNotFoundError:
                pass
            self._created = False


class FifoStream(RawStreamInterface):
    """
    Read end of the relay FIFO, used as a raw stream by the push side.

    The open blocks until a writer opens the other end. When every
    writer has gone, read() returns b'' and the FIFO is re-opened, so
    a restarted gateway is picked up without restarting this process.
    """

    def __init__(
        self,
        path: str,
        clock: ClockInterface,
        logger: LoggerInterface,
        retry_delay: float = 1.0,
    ):
        self._path = path
        self._clock = clock
        self._logger = logger
        self._retry_delay = retry_delay
        self._fd: Optional[int] = None
        self._reopen_count = 0
        self._on_reopen: Optional[Callable[[], None]] = None

    @property
    def path(self) -> str:
        return self._path

    @property
    def reopen_count(self) -> int:
        return self._reopen_count

    def set_reopen_hook(self, callback: Callable[[], None]) -> None:
        """Call callback after the FIFO was re-opened for a new writer."""
        self._on_reopen = callback

    def open(self) -> None:
        """Open the read end, waiting for the FIFO to exist if needed."""
        if not os.path.exists(self._path):
            self._logger.warning(f"{self._path} does not exist, waiting for the gateway")
            while not os.path.exists(self._path):
                self._clock.sleep(self._retry_delay)

        self._logger.info(f"opening relay pipe {self._path}")
        try:
            self._fd = os.open(self._path, os.O_RDONLY)
        except OSError as e:
            raise RelayError(f"{self._path}: {e}") from e
        self._logger.info("relay pipe connected")

    def wait_readable(self) -> None:
        if self._fd is None:
            self.open()
        try:
            select.select([self._fd], [], [])
        except OSError as e:
            raise DeviceReadError(f"select {self._path}: {e}") from e

    def read(self, max_bytes: int) -> bytes:
        if self._fd is None:
            self.open()
        try:
            data = os.read(self._fd, max_bytes)
        except BlockingIOError:
            return b""
        except OSError as e:
            raise DeviceReadError(f"{self._path} read: {e}") from e

        if not data:
            self._logger.warning("relay writer gone, waiting for it to come back")
            self.close()
            self._reopen_count += 1
            self.open()
            # bytes buffered from the old writer can never be completed
            if self._on_reopen:
                self._on_reopen()
        return data

    def close(self) -> None:
        if self._fd is not None:
            try:
                os.close(self._fd)
            except OSError:
                pass
            self._fd = None
