"""
Configuration for gpsrelay.

Settings come from, in increasing priority: built-in defaults, an
optional YAML file, the GPSRELAY_SECRET environment variable (secret
only), and command-line flags. The result is frozen for the process
lifetime.
"""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from typing import Any, Optional

import yaml

from .batcher import DEFAULT_BATCH_CAPACITY, DEFAULT_TRIGGER
from .delivery import DATAPOINT_ENDPOINT, PING_ENDPOINT, SESSION_ENDPOINT
from .errors import ConfigError
from .line_framer import DEFAULT_LINE_CAPACITY
from .relay import DEFAULT_RELAY_PATH
from .serial_device import DEFAULT_BAUD, DEFAULT_DEVICE

SECRET_ENV = "GPSRELAY_SECRET"
DEFAULT_STORAGE_DIR = "/mnt/backlog"

_NONE = type(None)

# Accepted value types per field; bool never counts as a number.
_FIELD_TYPES = {
    "device": (str,),
    "baud": (int,),
    "server": (str, _NONE),
    "port": (int,),
    "secret": (str,),
    "storage_dir": (str, _NONE),
    "log_path": (str, _NONE),
    "relay_path": (str,),
    "trigger": (str,),
    "batch_capacity": (int,),
    "line_capacity": (int,),
    "retry_delay": (int, float),
    "timeout": (int, float, _NONE),
}

# Encoded as ASCII into requests or compared against raw sentence bytes.
_ASCII_FIELDS = ("server", "secret", "trigger")


@dataclass(frozen=True)
class Endpoints:
    """Server paths used by the delivery client."""
    ping: str = PING_ENDPOINT
    session: str = SESSION_ENDPOINT
    datapoint: str = DATAPOINT_ENDPOINT


@dataclass(frozen=True)
class GatewayConfig:
    """Everything a gpsrelay process needs, fixed at startup.

    Attributes:
        device: Serial device path.
        baud: Serial baud rate.
        server: Collection server host name (required to deliver).
        port: Collection server TCP port.
        secret: Shared secret sent in the X-GPS-Auth header.
        storage_dir: Directory holding the index file and numbered capture
            files. ``None`` disables local logging unless log_path is set.
        log_path: Explicit capture file path, bypassing the index.
        relay_path: Named pipe joining the gateway and push processes.
        trigger: Sentence type that flushes the batch.
        batch_capacity: Batch size limit in bytes.
        line_capacity: Longest line the framer accepts.
        retry_delay: Seconds between handshake attempts.
        timeout: Socket timeout in seconds, ``None`` to block.
        endpoints: Server paths.
    """
    device: str = DEFAULT_DEVICE
    baud: int = DEFAULT_BAUD
    server: Optional[str] = None
    port: int = 80
    secret: str = ""
    storage_dir: Optional[str] = DEFAULT_STORAGE_DIR
    log_path: Optional[str] = None
    relay_path: str = DEFAULT_RELAY_PATH
    trigger: str = DEFAULT_TRIGGER.decode("ascii")
    batch_capacity: int = DEFAULT_BATCH_CAPACITY
    line_capacity: int = DEFAULT_LINE_CAPACITY
    retry_delay: float = 1.0
    timeout: Optional[float] = None
    endpoints: Endpoints = field(default_factory=Endpoints)

    @property
    def logging_enabled(self) -> bool:
        return bool(self.log_path or self.storage_dir)

    @property
    def trigger_bytes(self) -> bytes:
        return self.trigger.encode("ascii")

    def require_server(self) -> None:
        """Raise ConfigError unless delivery settings are usable."""
        if not self.server:
            raise ConfigError("no server configured")
        if not self.secret:
            raise ConfigError(f"missing password (set 'secret' or {SECRET_ENV})")

    def validate(self) -> "GatewayConfig":
        """Raise ConfigError on a value of the wrong type or out of range."""
        self._check_types()
        if self.baud <= 0:
            raise ConfigError(f"invalid baud rate: {self.baud}")
        if not 0 < self.port < 65536:
            raise ConfigError(f"invalid server port: {self.port}")
        if self.line_capacity < 2:
            raise ConfigError(f"invalid line capacity: {self.line_capacity}")
        if self.batch_capacity < self.line_capacity:
            raise ConfigError("batch capacity must hold at least one full line")
        if not self.trigger.startswith("$"):
            raise ConfigError(f"trigger must be a sentence type like '$GPRMC': {self.trigger!r}")
        return self

    def _check_types(self) -> None:
        for name, types in _FIELD_TYPES.items():
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, types):
                expected = " or ".join("null" if t is _NONE else t.__name__ for t in types)
                raise ConfigError(f"invalid {name}: {value!r} (expected {expected})")

        for name in _ASCII_FIELDS:
            value = getattr(self, name)
            if value and not (value.isascii() and value.isprintable()):
                raise ConfigError(f"{name} must be printable ASCII: {value!r}")

        for name in _ENDPOINT_FIELDS:
            path = getattr(self.endpoints, name)
            if not isinstance(path, str) or not path.startswith("/"):
                raise ConfigError(f"invalid {name} endpoint: {path!r}")
            if not (path.isascii() and path.isprintable()) or " " in path:
                raise ConfigError(f"{name} endpoint must be printable ASCII without spaces: {path!r}")


_FIELDS = {f.name for f in dataclasses.fields(GatewayConfig)}
_ENDPOINT_FIELDS = {f.name for f in dataclasses.fields(Endpoints)}


def _build(values: dict[str, Any]) -> GatewayConfig:
    unknown = set(values) - _FIELDS
    if unknown:
        raise ConfigError(f"unknown configuration keys: {', '.join(sorted(unknown))}")

    values = dict(values)
    endpoints = values.pop("endpoints", None)
    if endpoints is not None and not isinstance(endpoints, Endpoints):
        if not isinstance(endpoints, dict):
            raise ConfigError("'endpoints' must be a mapping")
        bad = set(endpoints) - _ENDPOINT_FIELDS
        if bad:
            raise ConfigError(f"unknown endpoints: {', '.join(sorted(bad))}")
        endpoints = Endpoints(**endpoints)
    if endpoints is not None:
        values["endpoints"] = endpoints

    try:
        return GatewayConfig(**values)
    except TypeError as e:
        raise ConfigError(str(e)) from e


def load_config(
    path: Optional[str] = None,
    overrides: Optional[dict[str, Any]] = None,
    environ: Optional[dict[str, str]] = None,
) -> GatewayConfig:
    """Build the effective configuration.

    Args:
        path: Optional YAML file holding a mapping of GatewayConfig fields.
        overrides: Values from the command line; ``None`` entries are ignored.
        environ: Environment to read the secret from (default: os.environ).

    Raises:
        ConfigError: unreadable file, bad document, unknown keys or
            invalid values.
    """
    values: dict[str, Any] = {}

    if path:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"{path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"{path}: invalid YAML: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"Invalid config file (expected mapping): {path}")
        values.update(data)

    env = os.environ if environ is None else environ
    if not values.get("secret") and env.get(SECRET_ENV):
        values["secret"] = env[SECRET_ENV]

    for key, value in (overrides or {}).items():
        if value is not None:
            values[key] = value

    return _build(values).validate()
