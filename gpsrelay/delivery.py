"""
Delivery of sentence batches to the collection server.

Wire format is a bare HTTP/1.0 POST over a fresh TCP connection per
request. Success is recognised only by the response starting with
``HTTP/1.1 200 OK``; nothing else in the response is parsed.
"""

from .batcher import Batch
from .errors import ProtocolError, ServerUnreachableError
from .interfaces import (
    TransportInterface, ClockInterface, LoggerInterface, SessionState
)

SUCCESS_MARKER = b"HTTP/1.1 200 OK"
AUTH_HEADER = "X-GPS-Auth"

PING_ENDPOINT = "/api/ping"
SESSION_ENDPOINT = "/api/push/session"
DATAPOINT_ENDPOINT = "/api/push/datapoint"


def is_success(response: bytes) -> bool:
    return response.startswith(SUCCESS_MARKER)


class DeliveryClient:
    """
    Posts batches to the server with a shared-secret header.

    Startup goes through handshake(): a liveness check then a session
    open, each retried every retry_delay seconds for as long as the
    server is unreachable. Steady-state pushes are tried once; a failed
    push is logged and the batch is dropped so serial capture never
    stalls behind the network.
    """

    def __init__(
        self,
        transport: TransportInterface,
        clock: ClockInterface,
        logger: LoggerInterface,
        server: str,
        port: int = 80,
        secret: str = "",
        retry_delay: float = 1.0,
        ping_endpoint: str = PING_ENDPOINT,
        session_endpoint: str = SESSION_ENDPOINT,
        datapoint_endpoint: str = DATAPOINT_ENDPOINT,
    ):
        self._transport = transport
        self._clock = clock
        self._logger = logger
        self._server = server
        self._port = port
        self._secret = secret
        self._retry_delay = retry_delay
        self._ping_endpoint = ping_endpoint
        self._session_endpoint = session_endpoint
        self._datapoint_endpoint = datapoint_endpoint

        self._state = SessionState.CLOSED
        self._retries = 0
        self._batches_pushed = 0
        self._push_failures = 0

    @property
    def state(self) -> SessionState:
        """Current session state."""
        return self._state

    @property
    def retries(self) -> int:
        """Number of retry sleeps taken while validating."""
        return self._retries

    @property
    def batches_pushed(self) -> int:
        return self._batches_pushed

    @property
    def push_failures(self) -> int:
        return self._push_failures

    def build_request(self, endpoint: str, payload: bytes) -> bytes:
        """Serialize the POST request for endpoint carrying payload."""
        header = (
            f"POST {endpoint} HTTP/1.0\r\n"
            f"Content-Length: {len(payload)}\r\n"
            f"{AUTH_HEADER}: {self._secret}\r\n"
            f"Host: {self._server}\r\n"
            f"\r\n"
        )
        return header.encode("ascii") + payload

    def post(self, endpoint: str, payload: bytes = b"") -> bytes:
        """
        Send one request on a new connection and return the raw response.

        Raises ServerUnreachableError if the server cannot be reached.
        """
        self._logger.debug(f"posting {len(payload)} bytes to {endpoint}")
        response = self._transport.exchange(
            self._server, self._port, self.build_request(endpoint, payload)
        )
        self._logger.debug(f"response: {response[:80]!r}")
        return response

    def validate(self, endpoint: str) -> bytes:
        """
        Post an empty request until the server answers, then check it.

        Unreachable servers are retried forever with a fixed delay.
        Raises ProtocolError if the answer is not a success.
        """
        while True:
            try:
                response = self.post(endpoint)
                break
            except ServerUnreachableError as e:
                self._logger.warning(f"{endpoint}: not reachable, retrying... ({e})")
                self._retries += 1
                self._clock.sleep(self._retry_delay)

        if not is_success(response):
            raise ProtocolError(endpoint, response)
        return response

    def handshake(self) -> None:
        """Check the server is alive and open a push session."""
        self._state = SessionState.VALIDATING

        self._logger.info(f"validating remote server {self._server}:{self._port}")
        self.validate(self._ping_endpoint)

        self._logger.info("requesting server new-session")
        self.validate(self._session_endpoint)

        self._state = SessionState.OPEN
        self._logger.info("session opened")

    def push(self, batch: Batch) -> bool:
        """
        Post one batch to the datapoint endpoint, without retry.

        Returns True when the server acknowledged it. The caller resets
        the batch either way.
        """
        self._logger.info(f"posting {batch.count} sentences ({batch.length} bytes)")
        try:
            response = self.post(self._datapoint_endpoint, batch.payload)
        except ServerUnreachableError as e:
            self._push_failures += 1
            self._logger.warning(f"cannot send datapoint: {e}")
            return False

        if not is_success(response):
            self._push_failures += 1
            status = response.split(b"\r\n", 1)[0].decode("ascii", errors="replace")
            self._logger.warning(f"datapoint rejected by server: {status!r}")
            return False

        self._batches_pushed += 1
        return True
