"""End-to-end tests for the direct, gateway and push daemons (no hardware)."""

import os

import pytest

from gpsrelay import daemon as daemon_module
from gpsrelay.batcher import Batch
from gpsrelay.config import GatewayConfig
from gpsrelay.daemon import (
    BatchForwarder, DirectDaemon, GatewayDaemon, PushDaemon, build_parser, main, _overrides,
)
from gpsrelay.delivery import DeliveryClient
from gpsrelay.errors import (
    CaptureLogError, DeviceOpenError, IndexReadError, ProtocolError, RelayCreateError,
)
from gpsrelay.implementations import RealFileSystem
from gpsrelay.interfaces import SessionState
from gpsrelay.mocks import (
    MockClock, MockFileSystem, MockLogger, MockRawStream, MockStreamExhausted, MockTransport,
)
from gpsrelay.relay import FifoStream

GGA = b"$GPGGA,123519,4807.038,N,01131.000,E,1,08,0.9,545.4,M,46.9,M,,*47"
RMC = b"$GPRMC,123519,A,4807.038,N,01131.000,E,022.4,084.4,230394,003.1,W*6A"
GSA = b"$GPGSA,A,3,04,05,,09,12,,,24,,,,,2.5,1.3,2.1*39"

LOG_PATH = "/mnt/backlog/gps-00000"


def make_config(**kwargs):
    values = dict(server="gps.example.net", secret="s3cret", storage_dir="/mnt/backlog")
    values.update(kwargs)
    return GatewayConfig(**values)


class Harness:
    """Mocks shared by one daemon under test."""

    def __init__(self, lines=()):
        self.stream = MockRawStream([line + b"\n" for line in lines])
        self.fs = MockFileSystem()
        self.clock = MockClock()
        self.logger = MockLogger()
        self.transport = MockTransport()

    def kwargs(self):
        return dict(logger=self.logger, clock=self.clock, filesystem=self.fs, stream=self.stream)


class TestDirectDaemon:
    def test_start_opens_log_and_handshakes(self):
        h = Harness()
        d = DirectDaemon(make_config(), transport=h.transport, **h.kwargs())
        d.start()

        assert h.fs.file_exists(LOG_PATH)
        assert h.fs.read_file("/mnt/backlog/index") == "00001"
        assert h.transport.get_paths() == ["/api/ping", "/api/push/session"]
        assert d.client.state == SessionState.OPEN

    def test_storage_dir_created(self):
        h = Harness()
        DirectDaemon(make_config(), transport=h.transport, **h.kwargs()).start()
        assert h.fs.get_dirs() == {"/mnt/backlog"}

    def test_storage_dir_failure_is_fatal(self):
        h = Harness()
        h.fs.fail_writes_to("/mnt/backlog")
        d = DirectDaemon(make_config(), transport=h.transport, **h.kwargs())
        with pytest.raises(CaptureLogError):
            d.start()
        assert h.transport.get_requests() == []

    def test_storage_dir_is_regular_file(self, tmp_path):
        blocker = tmp_path / "backlog"
        blocker.write_text("x")
        h = Harness()
        d = DirectDaemon(
            make_config(storage_dir=str(blocker)), transport=h.transport,
            logger=h.logger, clock=h.clock, filesystem=RealFileSystem(), stream=h.stream,
        )
        with pytest.raises(CaptureLogError):
            d.start()

    def test_index_is_directory(self, tmp_path):
        (tmp_path / "index").mkdir()
        h = Harness()
        d = DirectDaemon(
            make_config(storage_dir=str(tmp_path)), transport=h.transport,
            logger=h.logger, clock=h.clock, filesystem=RealFileSystem(), stream=h.stream,
        )
        with pytest.raises(IndexReadError):
            d.start()

    def test_flush_right_after_trigger(self):
        h = Harness([GGA, RMC])
        d = DirectDaemon(make_config(), transport=h.transport, **h.kwargs())
        d.start()

        d.run(max_lines=1)
        assert len(h.transport.get_requests()) == 2
        assert d.forwarder.batch.count == 1

        d.run(max_lines=2)
        assert h.transport.get_paths()[-1] == "/api/push/datapoint"
        assert h.transport.get_bodies()[-1] == GGA + b"\n" + RMC + b"\n"
        assert d.forwarder.batch.is_empty()

    def test_sentences_logged_locally(self):
        h = Harness([GGA, GSA, RMC])
        d = DirectDaemon(make_config(), transport=h.transport, **h.kwargs())
        d.start()
        d.run(max_lines=3)

        expected = b"\n".join([GGA, GSA, RMC]).decode() + "\n"
        assert h.fs.read_file(LOG_PATH) == expected

    def test_noise_never_logged_or_batched(self):
        h = Harness([b"\x15\x00garbage", GGA, b"GPGGA,no-marker", RMC])
        d = DirectDaemon(make_config(), transport=h.transport, **h.kwargs())
        d.start()
        d.run(max_lines=4)

        log = h.fs.read_file(LOG_PATH)
        assert "garbage" not in log
        assert "no-marker" not in log
        assert h.transport.get_bodies()[-1] == GGA + b"\n" + RMC + b"\n"
        assert d.stats().lines_skipped == 2

    def test_failed_push_drops_batch_and_continues(self):
        h = Harness([GGA, RMC, GSA, RMC])
        h.transport.queue(b"HTTP/1.1 200 OK\r\n", b"HTTP/1.1 200 OK\r\n")
        h.transport.fail_times(1)
        d = DirectDaemon(make_config(), transport=h.transport, **h.kwargs())
        d.start()
        d.run(max_lines=4)

        assert h.clock.get_sleep_calls() == []
        assert h.transport.get_bodies()[-1] == GSA + b"\n" + RMC + b"\n"
        stats = d.stats()
        assert stats.push_failures == 1
        assert stats.batches_pushed == 1

    def test_overflow_resets_batch(self):
        filler = b"$GPGSV," + b"x" * 40
        h = Harness([filler, filler, filler, RMC])
        config = make_config(batch_capacity=100, line_capacity=90)
        d = DirectDaemon(config, transport=h.transport, **h.kwargs())
        d.start()
        d.run(max_lines=4)

        assert h.transport.get_bodies()[-1] == RMC + b"\n"
        assert d.stats().overflows == 1
        assert h.logger.contains("bundle overflow", "WARNING")

    def test_handshake_retries_while_unreachable(self):
        h = Harness()
        h.transport.fail_times(2)
        d = DirectDaemon(make_config(), transport=h.transport, **h.kwargs())
        d.start()
        assert h.clock.get_sleep_calls() == [1.0, 1.0]

    def test_handshake_error_response_is_fatal(self):
        h = Harness()
        h.transport.queue(b"HTTP/1.1 500 Error\r\n\r\n")
        d = DirectDaemon(make_config(), transport=h.transport, **h.kwargs())
        with pytest.raises(ProtocolError):
            d.start()

    def test_logging_disabled(self):
        h = Harness([GGA, RMC])
        d = DirectDaemon(make_config(storage_dir=""), transport=h.transport, **h.kwargs())
        d.start()
        d.run(max_lines=2)

        assert d.capture_log is None
        assert h.fs.get_all_files() == {}
        assert h.transport.get_bodies()[-1] == GGA + b"\n" + RMC + b"\n"

    def test_explicit_log_path_skips_index(self):
        h = Harness([GGA])
        d = DirectDaemon(make_config(log_path="/data/raw.log"), transport=h.transport, **h.kwargs())
        d.start()
        d.run(max_lines=1)

        assert h.fs.read_file("/data/raw.log") == GGA.decode() + "\n"
        assert not h.fs.file_exists("/mnt/backlog/index")

    def test_run_closes_stream(self):
        h = Harness([GGA])
        d = DirectDaemon(make_config(), transport=h.transport, **h.kwargs())
        d.start()
        with pytest.raises(MockStreamExhausted):
            d.run()
        assert h.stream.closed
        assert not d.running


class TestGatewayDaemon:
    def test_relays_and_logs(self, tmp_path):
        relay_path = str(tmp_path / "gps.pipe")
        h = Harness([GGA, b"noise", RMC])
        d = GatewayDaemon(make_config(relay_path=relay_path), **h.kwargs())
        d.start()
        assert os.path.exists(relay_path)

        rfd = os.open(relay_path, os.O_RDONLY | os.O_NONBLOCK)
        try:
            d.run(max_lines=3)
            assert os.read(rfd, 4096) == GGA + b"\n" + RMC + b"\n"
        finally:
            os.close(rfd)

        assert h.fs.read_file(LOG_PATH) == (GGA + b"\n" + RMC + b"\n").decode()
        assert d.stats().lines_relayed == 2
        assert h.transport.get_requests() == []

    def test_no_reader_keeps_capturing(self, tmp_path):
        relay_path = str(tmp_path / "gps.pipe")
        h = Harness([GGA, RMC])
        d = GatewayDaemon(make_config(relay_path=relay_path), **h.kwargs())
        d.start()
        d.run(max_lines=2)

        assert h.fs.read_file(LOG_PATH) == (GGA + b"\n" + RMC + b"\n").decode()
        assert d.relay.lines_dropped == 2
        assert d.stats().lines_relayed == 0

    def test_clean_stop_removes_fifo(self, tmp_path):
        relay_path = str(tmp_path / "gps.pipe")
        h = Harness([GGA])
        d = GatewayDaemon(make_config(relay_path=relay_path), **h.kwargs())
        d.start()
        d.run(max_lines=1)
        assert not os.path.exists(relay_path)

    def test_stale_fifo_is_fatal(self, tmp_path):
        relay_path = str(tmp_path / "gps.pipe")
        os.mkfifo(relay_path)
        h = Harness()
        d = GatewayDaemon(make_config(relay_path=relay_path), **h.kwargs())
        with pytest.raises(RelayCreateError):
            d.start()

    def test_device_failure_removes_fifo(self, tmp_path, monkeypatch):
        class FailingStream:
            def __init__(self, *args, **kwargs):
                pass

            def open(self):
                raise DeviceOpenError("/dev/ttyAMA0: No such file or directory")

        monkeypatch.setattr(daemon_module, "SerialStream", FailingStream)
        relay_path = str(tmp_path / "gps.pipe")
        h = Harness()
        d = GatewayDaemon(
            make_config(relay_path=relay_path),
            logger=h.logger, clock=h.clock, filesystem=h.fs,
        )
        with pytest.raises(DeviceOpenError):
            d.start()
        assert not os.path.exists(relay_path)


class TestPushDaemon:
    def test_batches_from_relay(self):
        h = Harness([GGA, GSA, RMC])
        d = PushDaemon(make_config(), transport=h.transport, **h.kwargs())
        d.start()
        d.run(max_lines=3)

        assert h.transport.get_paths() == ["/api/ping", "/api/push/session", "/api/push/datapoint"]
        assert h.transport.get_bodies()[-1] == GGA + b"\n" + GSA + b"\n" + RMC + b"\n"
        assert h.fs.get_all_files() == {}

    def test_custom_trigger(self):
        gnrmc = b"$GNRMC,123519,A"
        h = Harness([GGA, RMC, gnrmc])
        d = PushDaemon(make_config(trigger="$GNRMC"), transport=h.transport, **h.kwargs())
        d.start()
        d.run(max_lines=3)

        assert h.transport.get_bodies()[-1] == GGA + b"\n" + RMC + b"\n" + gnrmc + b"\n"


    def test_writer_restart_drops_partial_line(self, monkeypatch):
        hooks = []

        class ConnectedFifo(FifoStream):
            def open(self):
                pass

            def set_reopen_hook(self, callback):
                hooks.append(callback)
                super().set_reopen_hook(callback)

        monkeypatch.setattr(daemon_module, "FifoStream", ConnectedFifo)
        h = Harness()
        d = PushDaemon(
            make_config(), transport=h.transport,
            logger=h.logger, clock=h.clock, filesystem=h.fs,
        )
        d.start()
        assert [hook.__name__ for hook in hooks] == ["reset"]


class TestBatchForwarder:
    def test_count_does_not_matter_for_flush(self):
        transport = MockTransport()
        client = DeliveryClient(transport, MockClock(), MockLogger(), server="s", secret="x")
        forwarder = BatchForwarder(Batch(), client, MockLogger())

        assert forwarder.feed(RMC) is True
        assert transport.get_bodies() == [RMC + b"\n"]
        assert forwarder.batch.is_empty()

    def test_non_trigger_does_not_flush(self):
        transport = MockTransport()
        client = DeliveryClient(transport, MockClock(), MockLogger(), server="s", secret="x")
        forwarder = BatchForwarder(Batch(), client, MockLogger())

        assert forwarder.feed(GGA) is False
        assert transport.get_requests() == []


class TestCommandLine:
    def test_modes(self):
        parser = build_parser()
        assert parser.parse_args(["direct"]).mode == "direct"
        assert parser.parse_args(["gateway", "--detach"]).detach is True
        assert parser.parse_args(["push", "--relay-path", "/run/gps.pipe"]).relay_path == "/run/gps.pipe"

    def test_mode_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_overrides(self):
        args = build_parser().parse_args(["direct", "--baud", "4800", "--no-log"])
        overrides = _overrides(args)
        assert overrides["baud"] == 4800
        assert overrides["storage_dir"] == ""
        assert overrides["device"] is None

    def test_push_never_logs(self):
        args = build_parser().parse_args(["push"])
        assert _overrides(args)["storage_dir"] == ""

    def test_missing_server_exits_non_zero(self, monkeypatch):
        monkeypatch.delenv("GPSRELAY_SECRET", raising=False)
        monkeypatch.setattr(daemon_module.signal, "signal", lambda *args: None)
        assert main(["direct", "--no-log"]) == 1

    def test_bad_config_file_exits_non_zero(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("- not a mapping\n")
        assert main(["--config", str(path), "push"]) == 1

    def test_bad_value_type_exits_non_zero(self, tmp_path, monkeypatch):
        monkeypatch.setattr(daemon_module.signal, "signal", lambda *args: None)
        path = tmp_path / "c.yaml"
        path.write_text("baud: fast\n")
        assert main(["--config", str(path), "push"]) == 1

    def test_storage_fault_exits_non_zero(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setattr(daemon_module.signal, "signal", lambda *args: None)
        blocker = tmp_path / "backlog"
        blocker.write_text("x")

        assert main(["gateway", "--storage-dir", str(blocker)]) == 1
        assert "[gpsrelay] ERROR:" in capsys.readouterr().err

    def test_unreadable_index_exits_non_zero(self, tmp_path, monkeypatch, capsys):
        monkeypatch.setattr(daemon_module.signal, "signal", lambda *args: None)
        (tmp_path / "index").mkdir()

        assert main(["gateway", "--storage-dir", str(tmp_path)]) == 1
        assert "index" in capsys.readouterr().err
