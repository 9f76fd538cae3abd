"""
Real implementations of interfaces for production use.

These classes wrap actual system resources (files, sockets, the clock)
and implement the abstract interfaces.
"""

from typing import Optional
import os
import socket
import sys
import time

import portalocker

from .errors import ServerUnreachableError
from .interfaces import (
    FileSystemInterface, ClockInterface, LoggerInterface, TransportInterface
)

# Largest response kept from the server; only its first line matters.
FRAME_SIZE = 8192


class RealFileSystem(FileSystemInterface):
    """
    Real file system implementation.

    Appends take an exclusive lock so a reader tailing the capture log
    never sees a half-written sentence.
    """

    def read_file(self, path: str) -> str:
        with open(path, "r", encoding="ascii", errors="replace") as f:
            return f.read()

    def write_file(self, path: str, content: str, append: bool = False) -> None:
        # Ensure parent directory exists
        parent = os.path.dirname(path)
        if parent and not os.path.exists(parent):
            os.makedirs(parent, exist_ok=True)

        mode = "a" if append else "w"
        with open(path, mode, encoding="ascii", errors="replace") as f:
            if append:
                portalocker.lock(f, portalocker.LOCK_EX)
            try:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())  # Ensure written to disk
            finally:
                if append:
                    portalocker.unlock(f)

    def file_exists(self, path: str) -> bool:
        return os.path.exists(path)

    def ensure_dir(self, path: str) -> None:
        os.makedirs(path, exist_ok=True)


class RealClock(ClockInterface):
    """
    Real clock implementation using system time.
    """

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class ConsoleLogger(LoggerInterface):
    """
    Console logger with a fixed severity marker per line.

    Debug and info go to stdout, warnings and errors to stderr.
    Debug output is dropped unless verbose is set.
    """

    def __init__(self, prefix: str = "gpsrelay", verbose: bool = False):
        self._prefix = prefix
        self._verbose = verbose

    def debug(self, msg: str) -> None:
        if self._verbose:
            print(f"[{self._prefix}] DEBUG: {msg}", flush=True)

    def info(self, msg: str) -> None:
        print(f"[{self._prefix}] INFO: {msg}", flush=True)

    def warning(self, msg: str) -> None:
        print(f"[{self._prefix}] WARN: {msg}", file=sys.stderr, flush=True)

    def error(self, msg: str) -> None:
        print(f"[{self._prefix}] ERROR: {msg}", file=sys.stderr, flush=True)


class SocketTransport(TransportInterface):
    """
    One TCP connection per exchange: resolve, connect, send, receive, close.

    No pooling and no keep-alive. The server is expected to close the
    connection after answering (HTTP/1.0).
    """

    def __init__(self, timeout: Optional[float] = None):
        self._timeout = timeout

    def exchange(self, host: str, port: int, request: bytes) -> bytes:
        try:
            infos = socket.getaddrinfo(host, port, socket.AF_INET, socket.SOCK_STREAM)
        except socket.gaierror as e:
            raise ServerUnreachableError(f"{host}: name resolution failed: {e}") from e

        family, socktype, proto, _, address = infos[0]
        try:
            sock = socket.socket(family, socktype, proto)
        except OSError as e:
            raise ServerUnreachableError(f"socket: {e}") from e

        with sock:
            sock.settimeout(self._timeout)
            try:
                sock.connect(address)
            except OSError as e:
                raise ServerUnreachableError(f"connect {host}:{port}: {e}") from e

            try:
                sock.sendall(request)
                return self._receive(sock)
            except OSError as e:
                raise ServerUnreachableError(f"exchange with {host}:{port} failed: {e}") from e

    @staticmethod
    def _receive(sock: socket.socket) -> bytes:
        response = bytearray()
        while len(response) < FRAME_SIZE:
            chunk = sock.recv(FRAME_SIZE - len(response))
            if not chunk:
                break
            response += chunk
        return bytes(response)
