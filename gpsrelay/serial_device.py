"""
Serial GPS receiver as a raw stream.

pyserial opens the port (read-write, non-blocking, no controlling
terminal) and sets 8N1 with hardware flow control. It always puts the
line in raw mode, so the canonical-input flags the receiver relies on
(ICANON, ICRNL) are applied afterwards through termios.
"""

import select
import termios
from typing import Optional

import serial

from .errors import DeviceConfigError, DeviceOpenError, DeviceReadError
from .interfaces import LoggerInterface, RawStreamInterface

DEFAULT_DEVICE = "/dev/ttyAMA0"
DEFAULT_BAUD = 9600

# termios.tcgetattr() list layout
IFLAG, OFLAG, CFLAG, LFLAG, ISPEED, OSPEED, CC = range(7)


def apply_line_discipline(fd: int) -> None:
    """
    Configure the tty for line-buffered NMEA input.

    CS8 | CRTSCTS | CLOCAL | CREAD, IGNPAR | ICRNL, ICANON, raw output,
    VMIN=1 VTIME=0. The baud rate set by pyserial is kept.
    """
    try:
        attrs = termios.tcgetattr(fd)
    except termios.error as e:
        raise DeviceConfigError(f"tcgetattr: {e}") from e

    baud_bits = attrs[CFLAG] & getattr(termios, "CBAUD", 0)
    crtscts = getattr(termios, "CRTSCTS", 0)

    attrs[CFLAG] = baud_bits | crtscts | termios.CS8 | termios.CLOCAL | termios.CREAD
    attrs[IFLAG] = termios.IGNPAR | termios.ICRNL
    attrs[LFLAG] = termios.ICANON
    attrs[OFLAG] = 0
    attrs[CC][termios.VMIN] = 1
    attrs[CC][termios.VTIME] = 0

    try:
        termios.tcsetattr(fd, termios.TCSANOW, attrs)
    except termios.error as e:
        raise DeviceConfigError(f"tcsetattr: {e}") from e


class SerialStream(RawStreamInterface):
    """
    Serial device opened for NMEA capture.

    Usage:
        stream = SerialStream("/dev/ttyAMA0", 9600, logger)
        stream.open()
        framer = LineFramer(stream)
    """

    def __init__(
        self,
        device: str = DEFAULT_DEVICE,
        baud: int = DEFAULT_BAUD,
        logger: Optional[LoggerInterface] = None,
    ):
        self._device = device
        self._baud = baud
        self._logger = logger
        self._serial: Optional[serial.Serial] = None

    @property
    def device(self) -> str:
        return self._device

    @property
    def baud(self) -> int:
        return self._baud

    def is_open(self) -> bool:
        if self._serial is None:
            return False
        return self._serial.is_open

    def open(self) -> None:
        """
        Open and configure the device.

        Raises DeviceOpenError or DeviceConfigError; both are fatal.
        """
        if self._logger:
            self._logger.info(f"opening serial device: {self._device} ({self._baud} baud)")
        try:
            self._serial = serial.Serial(
                port=self._device,
                baudrate=self._baud,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                rtscts=True,
                timeout=0,
            )
        except (serial.SerialException, ValueError) as e:
            raise DeviceOpenError(f"{self._device}: {e}") from e

        apply_line_discipline(self._serial.fileno())

    def wait_readable(self) -> None:
        try:
            select.select([self._serial.fileno()], [], [])
        except OSError as e:
            raise DeviceReadError(f"select {self._device}: {e}") from e

    def read(self, max_bytes: int) -> bytes:
        try:
            return self._serial.read(max_bytes)
        except serial.SerialException as e:
            raise DeviceReadError(f"{self._device} read: {e}") from e

    def close(self) -> None:
        if self._serial:
            try:
                self._serial.close()
            except Exception:
                pass
            self._serial = None
