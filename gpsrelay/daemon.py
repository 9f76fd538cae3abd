#!/usr/bin/env python3
"""
gpsrelay - GPS capture and forwarding daemons

Reads NMEA sentences from a serial GPS receiver, keeps a local capture
log, and forwards batches of sentences to a collection server.

Run modes:
    direct   capture -> batch -> deliver, in one process
    gateway  capture -> local log + relay pipe
    push     relay pipe -> batch -> deliver

Usage:
    python -m gpsrelay direct --server gps.example.net --secret s3cret
    python -m gpsrelay gateway --device /dev/ttyAMA0 --detach
    python -m gpsrelay push --server gps.example.net
"""

import argparse
import os
import signal
import sys
from dataclasses import dataclass
from typing import Optional

from .batcher import Batch, DEFAULT_TRIGGER, is_sentence, is_trigger
from .capture_log import CaptureLog
from .config import GatewayConfig, load_config
from .delivery import DeliveryClient
from .errors import BatchOverflowError, CaptureLogError, FatalError
from .implementations import ConsoleLogger, RealClock, RealFileSystem, SocketTransport
from .interfaces import (
    ClockInterface, FileSystemInterface, LoggerInterface, RawStreamInterface,
    TransportInterface,
)
from .line_framer import LineFramer
from .log_index import LogIndex
from .relay import FifoStream, RelayWriter
from .serial_device import SerialStream


@dataclass
class RelayStats:
    """Counters reported when a daemon stops."""
    lines_read: int = 0
    lines_skipped: int = 0
    lines_logged: int = 0
    lines_relayed: int = 0
    batches_pushed: int = 0
    push_failures: int = 0
    overflows: int = 0


class BatchForwarder:
    """
    Feeds sentences into a batch and pushes it on the trigger sentence.

    An overflowing append drops the line and the batch collected so far;
    sentences are far smaller than a batch, so this only happens when
    the trigger sentence never shows up.
    """

    def __init__(
        self,
        batch: Batch,
        client: DeliveryClient,
        logger: LoggerInterface,
        trigger: bytes = DEFAULT_TRIGGER,
    ):
        self._batch = batch
        self._client = client
        self._logger = logger
        self._trigger = trigger
        self._overflows = 0

    @property
    def batch(self) -> Batch:
        return self._batch

    @property
    def overflows(self) -> int:
        return self._overflows

    def feed(self, line: bytes) -> bool:
        """Append a sentence. Returns True if the batch was flushed."""
        try:
            self._batch.append(line)
        except BatchOverflowError as e:
            self._overflows += 1
            self._logger.warning(f"bundle overflow, skipping ({e})")
            self._batch.reset()
            return False

        if not is_trigger(line, self._trigger):
            return False

        self._client.push(self._batch)
        self._batch.reset()
        return True


class BaseDaemon:
    """
    Shared main loop: frame a line, drop noise, hand sentences on.

    Subclasses open their input in start() and decide in
    _handle_sentence() where a sentence goes.
    """

    mode = "base"

    def __init__(
        self,
        config: GatewayConfig,
        logger: Optional[LoggerInterface] = None,
        clock: Optional[ClockInterface] = None,
        filesystem: Optional[FileSystemInterface] = None,
        stream: Optional[RawStreamInterface] = None,
    ):
        self._config = config
        self._logger = logger or ConsoleLogger()
        self._clock = clock or RealClock()
        self._fs = filesystem or RealFileSystem()
        self._stream = stream
        self._framer: Optional[LineFramer] = None
        self._capture_log: Optional[CaptureLog] = None
        self._running = False
        self._lines_read = 0
        self._lines_skipped = 0

    @property
    def capture_log(self) -> Optional[CaptureLog]:
        return self._capture_log

    @property
    def running(self) -> bool:
        return self._running

    def _open_capture_log(self) -> None:
        """Open the local log when one is configured, else skip logging."""
        if not self._config.logging_enabled:
            self._logger.info("local logging disabled")
            return

        path = self._config.log_path
        if not path:
            try:
                self._fs.ensure_dir(self._config.storage_dir)
            except OSError as e:
                raise CaptureLogError(f"storage directory {self._config.storage_dir}: {e}") from e
            path = LogIndex(self._fs, self._config.storage_dir, self._logger).capture_path()

        self._capture_log = CaptureLog(self._fs, path, self._logger)
        self._capture_log.open()

    def _open_serial(self) -> None:
        if self._stream is None:
            stream = SerialStream(self._config.device, self._config.baud, self._logger)
            stream.open()
            self._stream = stream

    def _make_framer(self) -> None:
        self._framer = LineFramer(self._stream, self._config.line_capacity, self._logger)

    def _make_client(self, transport: Optional[TransportInterface]) -> DeliveryClient:
        endpoints = self._config.endpoints
        return DeliveryClient(
            transport=transport or SocketTransport(self._config.timeout),
            clock=self._clock,
            logger=self._logger,
            server=self._config.server,
            port=self._config.port,
            secret=self._config.secret,
            retry_delay=self._config.retry_delay,
            ping_endpoint=endpoints.ping,
            session_endpoint=endpoints.session,
            datapoint_endpoint=endpoints.datapoint,
        )

    def start(self) -> None:
        """Open inputs and outputs. Raises FatalError on failure."""
        raise NotImplementedError

    def run(self, max_lines: Optional[int] = None) -> None:
        """Main loop. Runs until stop(), or until max_lines lines were read."""
        self._running = True
        try:
            while self._running:
                self._logger.debug("waiting for serial data")
                line = self._framer.read_line()
                self._process_line(line)
                if max_lines is not None and self._lines_read >= max_lines:
                    break
        finally:
            self._running = False
            self.shutdown()

    def _process_line(self, line: bytes) -> None:
        self._lines_read += 1
        self._logger.debug(f">> {line.decode('ascii', errors='replace')}")

        # skip invalid header
        if not is_sentence(line):
            self._lines_skipped += 1
            return

        self._handle_sentence(line)

    def _handle_sentence(self, line: bytes) -> None:
        raise NotImplementedError

    def _log_locally(self, line: bytes) -> None:
        if self._capture_log:
            self._capture_log.append(line)

    def stop(self) -> None:
        """Ask the main loop to exit after the current line."""
        self._running = False

    def shutdown(self) -> None:
        """Release resources and report counters."""
        if self._stream:
            self._stream.close()
        self._logger.info(f"{self.mode} stopped: {self.stats()}")

    def stats(self) -> RelayStats:
        return RelayStats(
            lines_read=self._lines_read,
            lines_skipped=self._lines_skipped,
            lines_logged=self._capture_log.lines_logged if self._capture_log else 0,
        )


class DirectDaemon(BaseDaemon):
    """
    Single process: serial -> local log + batch -> server.
    """

    mode = "direct"

    def __init__(
        self,
        config: GatewayConfig,
        transport: Optional[TransportInterface] = None,
        **kwargs,
    ):
        super().__init__(config, **kwargs)
        self._client = self._make_client(transport)
        self._forwarder = BatchForwarder(
            Batch(config.batch_capacity), self._client, self._logger, config.trigger_bytes
        )

    @property
    def client(self) -> DeliveryClient:
        return self._client

    @property
    def forwarder(self) -> BatchForwarder:
        return self._forwarder

    def start(self) -> None:
        self._config.require_server()
        self._open_capture_log()
        self._open_serial()
        self._make_framer()
        self._client.handshake()

    def _handle_sentence(self, line: bytes) -> None:
        self._log_locally(line)
        self._forwarder.feed(line)

    def stats(self) -> RelayStats:
        stats = super().stats()
        stats.batches_pushed = self._client.batches_pushed
        stats.push_failures = self._client.push_failures
        stats.overflows = self._forwarder.overflows
        return stats


class GatewayDaemon(BaseDaemon):
    """
    Capture side of the split topology: serial -> local log + relay pipe.

    Never talks to the network, so a dead uplink or a restarting push
    process cannot hold up serial reads beyond the pipe buffer.
    """

    mode = "gateway"

    def __init__(
        self,
        config: GatewayConfig,
        relay: Optional[RelayWriter] = None,
        **kwargs,
    ):
        super().__init__(config, **kwargs)
        self._relay = relay or RelayWriter(config.relay_path, self._logger)

    @property
    def relay(self) -> RelayWriter:
        return self._relay

    def start(self) -> None:
        self._open_capture_log()

        # reader loss must show up as EPIPE on write, not kill us
        signal.signal(signal.SIGPIPE, signal.SIG_IGN)

        self._relay.create()
        try:
            self._open_serial()
        except FatalError:
            self._relay.remove()
            raise
        self._make_framer()

    def _handle_sentence(self, line: bytes) -> None:
        self._log_locally(line)
        self._relay.write_line(line)

    def shutdown(self) -> None:
        self._relay.remove()
        super().shutdown()

    def stats(self) -> RelayStats:
        stats = super().stats()
        stats.lines_relayed = self._relay.lines_relayed
        return stats


class PushDaemon(BaseDaemon):
    """
    Delivery side of the split topology: relay pipe -> batch -> server.
    """

    mode = "push"

    def __init__(
        self,
        config: GatewayConfig,
        transport: Optional[TransportInterface] = None,
        **kwargs,
    ):
        super().__init__(config, **kwargs)
        self._client = self._make_client(transport)
        self._forwarder = BatchForwarder(
            Batch(config.batch_capacity), self._client, self._logger, config.trigger_bytes
        )

    @property
    def client(self) -> DeliveryClient:
        return self._client

    @property
    def forwarder(self) -> BatchForwarder:
        return self._forwarder

    def start(self) -> None:
        self._config.require_server()
        if self._stream is None:
            stream = FifoStream(
                self._config.relay_path, self._clock, self._logger, self._config.retry_delay
            )
            stream.open()
            self._stream = stream
        self._make_framer()
        if isinstance(self._stream, FifoStream):
            self._stream.set_reopen_hook(self._framer.reset)
        self._client.handshake()

    def _handle_sentence(self, line: bytes) -> None:
        self._forwarder.feed(line)

    def stats(self) -> RelayStats:
        stats = super().stats()
        stats.batches_pushed = self._client.batches_pushed
        stats.push_failures = self._client.push_failures
        stats.overflows = self._forwarder.overflows
        return stats


DAEMONS = {
    "direct": DirectDaemon,
    "gateway": GatewayDaemon,
    "push": PushDaemon,
}


def detach() -> None:
    """Fork into the background; the parent exits successfully."""
    if os.fork():
        os._exit(0)
    os.setsid()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gpsrelay",
        description="Capture NMEA sentences from a serial GPS and forward them to a server",
    )
    parser.add_argument("--config", "-c", help="YAML configuration file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Echo every line read")

    sub = parser.add_subparsers(dest="mode", required=True)

    def add_serial(p):
        p.add_argument("--device", help="Serial device (default: /dev/ttyAMA0)")
        p.add_argument("--baud", type=int, help="Baud rate (default: 9600)")

    def add_logging(p):
        p.add_argument("--storage-dir", help="Directory for numbered capture files (default: /mnt/backlog)")
        p.add_argument("--log-path", help="Explicit capture file, bypasses the index")
        p.add_argument("--no-log", action="store_true", help="Disable the local capture log")

    def add_server(p):
        p.add_argument("--server", help="Collection server host")
        p.add_argument("--port", type=int, help="Collection server port (default: 80)")
        p.add_argument("--secret", help="Shared secret (or set GPSRELAY_SECRET)")
        p.add_argument("--trigger", help="Sentence type that flushes a batch (default: $GPRMC)")

    def add_relay(p):
        p.add_argument("--relay-path", help="Relay named pipe (default: /tmp/gps.pipe)")

    direct = sub.add_parser("direct", help="Capture and deliver in one process")
    add_serial(direct)
    add_logging(direct)
    add_server(direct)

    gateway = sub.add_parser("gateway", help="Capture to local log and relay pipe")
    add_serial(gateway)
    add_logging(gateway)
    add_relay(gateway)
    gateway.add_argument("--detach", action="store_true", help="Fork into the background once ready")

    push = sub.add_parser("push", help="Deliver sentences read from the relay pipe")
    add_server(push)
    add_relay(push)

    return parser


def _overrides(args: argparse.Namespace) -> dict:
    keys = (
        "device", "baud", "server", "port", "secret", "trigger",
        "storage_dir", "log_path", "relay_path",
    )
    overrides = {key: getattr(args, key, None) for key in keys}
    if getattr(args, "no_log", False):
        overrides["storage_dir"] = ""
        overrides["log_path"] = ""
    if args.mode == "push":
        # the push side never writes a capture log
        overrides["storage_dir"] = ""
        overrides["log_path"] = ""
    return overrides


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = ConsoleLogger(verbose=args.verbose)

    try:
        config = load_config(args.config, _overrides(args))
        daemon = DAEMONS[args.mode](config, logger=logger)

        # Handle signals
        def signal_handler(sig, frame):
            daemon.stop()
            sys.exit(0)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        logger.info(f"starting gpsrelay {args.mode}")
        daemon.start()
        if getattr(args, "detach", False):
            detach()
        daemon.run()
    except FatalError as e:
        logger.error(str(e))
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
