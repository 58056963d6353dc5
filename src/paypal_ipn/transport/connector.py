"""TLS byte-stream connections used to talk to the PayPal servers."""

import logging
import ssl
import time
from collections.abc import Callable
from typing import Protocol

import certifi
import httpcore

logger = logging.getLogger(__name__)

HTTPS_PORT = 443
DEFAULT_TIMEOUT = 120
READ_CHUNK_SIZE = 1024


class TransportError(Exception):
    """Base class for connector failures."""


class ConnectError(TransportError):
    """Raised when the TCP connection or TLS handshake cannot be completed."""


class StreamError(TransportError):
    """Raised when reading from or writing to an open stream fails."""


class Stream(Protocol):
    def write(self, data: bytes) -> None: ...

    def read(self, max_bytes: int = READ_CHUNK_SIZE) -> bytes: ...

    def close(self) -> None: ...

    def __enter__(self) -> "Stream": ...

    def __exit__(self, *exc_info) -> None: ...


class Connector(Protocol):
    def open(
        self, hostname: str, port: int = HTTPS_PORT, timeout: float = DEFAULT_TIMEOUT
    ) -> Stream: ...


class TlsStream:
    """An encrypted, exclusively owned stream. Closes at most once.

    All reads and writes share one deadline, so a peer trickling bytes cannot
    hold the call open past the connector timeout.
    """

    def __init__(
        self,
        stream: httpcore.NetworkStream,
        deadline: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._stream = stream
        self._deadline = deadline
        self._clock = clock
        self._closed = False

    def __enter__(self) -> "TlsStream":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def _remaining(self) -> float:
        remaining = self._deadline - self._clock()
        if remaining <= 0:
            raise StreamError("Timed out: connection deadline exceeded")
        return remaining

    def write(self, data: bytes) -> None:
        timeout = self._remaining()
        try:
            self._stream.write(data, timeout=timeout)
        except (httpcore.NetworkError, httpcore.TimeoutException) as exc:
            raise StreamError(f"Write failed: {exc}") from exc

    def read(self, max_bytes: int = READ_CHUNK_SIZE) -> bytes:
        """Read up to ``max_bytes``; an empty result means end-of-stream."""
        timeout = self._remaining()
        try:
            return self._stream.read(max_bytes, timeout=timeout)
        except (httpcore.NetworkError, httpcore.TimeoutException) as exc:
            raise StreamError(f"Read failed: {exc}") from exc

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._stream.close()


class TlsConnector:
    """Opens one fresh TLS connection per call. No pooling, no retry."""

    def __init__(
        self,
        backend: httpcore.NetworkBackend | None = None,
        ssl_context: ssl.SSLContext | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._backend = backend or httpcore.SyncBackend()
        self._clock = clock
        self._ssl_context = ssl_context or ssl.create_default_context(cafile=certifi.where())

    def open(
        self, hostname: str, port: int = HTTPS_PORT, timeout: float = DEFAULT_TIMEOUT
    ) -> TlsStream:
        logger.debug("Connecting to %s:%d (timeout %ss)", hostname, port, timeout)
        deadline = self._clock() + timeout
        try:
            raw = self._backend.connect_tcp(hostname, port, timeout=timeout)
        except (httpcore.NetworkError, httpcore.TimeoutException) as exc:
            raise ConnectError(f"Cannot connect to {hostname}:{port}: {exc}") from exc

        remaining = deadline - self._clock()
        if remaining <= 0:
            raw.close()
            raise ConnectError(f"Timed out connecting to {hostname}:{port}")

        try:
            tls = raw.start_tls(self._ssl_context, server_hostname=hostname, timeout=remaining)
        except (httpcore.NetworkError, httpcore.TimeoutException) as exc:
            raw.close()
            raise ConnectError(f"TLS handshake with {hostname} failed: {exc}") from exc

        return TlsStream(tls, deadline, self._clock)
