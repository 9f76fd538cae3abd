"""
Local durable log of captured sentences.

One sentence per line, append-only. Written before any network or relay
activity so a field unit keeps its data when the uplink is down.
"""

from .errors import CaptureLogError
from .interfaces import FileSystemInterface, LoggerInterface


class CaptureLog:
    """
    Append-only capture file.

    Features:
    - One sentence per line, no timestamps or decoration
    - Header-free, so files can be replayed through the relay as-is
    - Write failures are reported and counted, never fatal
    """

    def __init__(
        self,
        filesystem: FileSystemInterface,
        path: str,
        logger: LoggerInterface,
    ):
        self._fs = filesystem
        self._path = path
        self._logger = logger
        self._lines_logged = 0
        self._write_errors = 0

    @property
    def path(self) -> str:
        return self._path

    @property
    def lines_logged(self) -> int:
        """Number of sentences written."""
        return self._lines_logged

    @property
    def write_errors(self) -> int:
        return self._write_errors

    def open(self) -> None:
        """
        Create the capture file (empty) if it does not exist yet.

        Raises CaptureLogError if the path cannot be opened for appending.
        """
        self._logger.info(f"opening local log file: {self._path}")
        try:
            self._fs.write_file(self._path, "", append=True)
        except OSError as e:
            raise CaptureLogError(f"{self._path}: {e}") from e

    def append(self, line: bytes) -> bool:
        """Append one sentence. Returns False if the write failed."""
        text = line.decode("ascii", errors="replace")
        try:
            self._fs.write_file(self._path, text + "\n", append=True)
        except OSError as e:
            self._write_errors += 1
            self._logger.error(f"logs write: {e}")
            return False

        self._lines_logged += 1
        return True
