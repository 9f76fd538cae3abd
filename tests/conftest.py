"""Shared pytest configuration for gpsrelay tests."""


def pytest_addoption(parser):
    parser.addoption(
        "--hw",
        action="store_true",
        default=False,
        help="Run hardware-in-the-loop tests (requires a GPS receiver on a serial port)",
    )
    parser.addoption(
        "--gps-device",
        default="/dev/ttyAMA0",
        help="Serial device the GPS receiver is attached to",
    )
    parser.addoption(
        "--gps-baud",
        type=int,
        default=9600,
        help="Baud rate of the GPS receiver",
    )
