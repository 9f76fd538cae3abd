"""
Persistent sequence counter for naming capture files.

The counter lives in a small text file (``index``) inside the storage
directory. Read-then-increment is not atomic across processes: a single
writer per storage directory is assumed.
"""

import os
from typing import Optional

from .errors import IndexReadError, IndexWriteError
from .interfaces import FileSystemInterface, LoggerInterface

INDEX_FILENAME = "index"
CAPTURE_NAME_FORMAT = "gps-{:05d}"


class LogIndex:
    """
    Hands out successive capture file sequence numbers.

    Usage:
        index = LogIndex(fs, "/mnt/backlog")
        path = index.capture_path()   # /mnt/backlog/gps-00000 on first run
    """

    def __init__(
        self,
        filesystem: FileSystemInterface,
        storage_dir: str,
        logger: Optional[LoggerInterface] = None,
    ):
        self._fs = filesystem
        self._storage_dir = storage_dir
        self._logger = logger
        self._index_path = os.path.join(storage_dir, INDEX_FILENAME)

    @property
    def index_path(self) -> str:
        return self._index_path

    def peek(self) -> int:
        """
        Current stored value (0 when no index exists yet).

        Raises IndexReadError when the index exists but cannot be read.
        """
        if not self._fs.file_exists(self._index_path):
            return 0

        try:
            content = self._fs.read_file(self._index_path).strip()
        except OSError as e:
            raise IndexReadError(f"{self._index_path}: {e}") from e

        try:
            return int(content)
        except ValueError:
            if self._logger:
                self._logger.warning(
                    f"unreadable index {self._index_path!r} ({content[:32]!r}), restarting at 0"
                )
            return 0

    def next(self) -> int:
        """
        Return the stored value and persist value + 1.

        Raises IndexWriteError if the new value cannot be written; carrying
        on would risk reusing a sequence number.
        """
        value = self.peek()
        try:
            self._fs.write_file(self._index_path, f"{value + 1:05d}")
        except OSError as e:
            raise IndexWriteError(f"{self._index_path}: {e}") from e
        return value

    def capture_path(self) -> str:
        """Allocate the next sequence number and build the capture file path."""
        return os.path.join(self._storage_dir, CAPTURE_NAME_FORMAT.format(self.next()))


def next_index(filesystem: FileSystemInterface, storage_dir: str) -> int:
    """Shortcut for LogIndex(filesystem, storage_dir).next()."""
    return LogIndex(filesystem, storage_dir).next()
