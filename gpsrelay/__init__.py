"""
gpsrelay - GPS capture and forwarding

Serial NMEA capture with local logging, sentence batching and HTTP
delivery, optionally split into a gateway and a push process joined
by a named pipe.
"""

__version__ = "0.1.0"

from .interfaces import (
    SessionState,
    RawStreamInterface,
    FileSystemInterface,
    ClockInterface,
    LoggerInterface,
    TransportInterface,
)

from .errors import (
    GpsRelayError,
    FatalError,
    RetryableError,
    DegradedError,
    BatchOverflowError,
    NoReaderError,
    ProtocolError,
    ServerUnreachableError,
)

from .line_framer import LineFramer
from .batcher import Batch, is_sentence, is_trigger
from .log_index import LogIndex, next_index
from .delivery import DeliveryClient
from .relay import RelayWriter, FifoStream
from .config import GatewayConfig, load_config

__all__ = [
    "SessionState",
    "RawStreamInterface",
    "FileSystemInterface",
    "ClockInterface",
    "LoggerInterface",
    "TransportInterface",
    "GpsRelayError",
    "FatalError",
    "RetryableError",
    "DegradedError",
    "BatchOverflowError",
    "NoReaderError",
    "ProtocolError",
    "ServerUnreachableError",
    "LineFramer",
    "Batch",
    "is_sentence",
    "is_trigger",
    "LogIndex",
    "next_index",
    "DeliveryClient",
    "RelayWriter",
    "FifoStream",
    "GatewayConfig",
    "load_config",
]
