"""Tests for the TLS connector, driven through httpcore's mock backend."""

import ssl

import httpcore
import pytest

from paypal_ipn.transport.connector import ConnectError, StreamError, TlsConnector


class RefusingBackend(httpcore.NetworkBackend):
    def connect_tcp(self, host, port, timeout=None, local_address=None, socket_options=None):
        raise httpcore.ConnectTimeout("timed out")


class BrokenTlsStream(httpcore.MockStream):
    def __init__(self) -> None:
        super().__init__([])
        self.close_count = 0

    def start_tls(self, ssl_context, server_hostname=None, timeout=None):
        raise httpcore.ConnectError("certificate verify failed")

    def close(self) -> None:
        self.close_count += 1
        super().close()


class BrokenTlsBackend(httpcore.NetworkBackend):
    def __init__(self) -> None:
        self.stream = BrokenTlsStream()

    def connect_tcp(self, host, port, timeout=None, local_address=None, socket_options=None):
        return self.stream


class TimingOutStream(httpcore.MockStream):
    def read(self, max_bytes, timeout=None):
        raise httpcore.ReadTimeout("timed out")


class TimingOutBackend(httpcore.NetworkBackend):
    def connect_tcp(self, host, port, timeout=None, local_address=None, socket_options=None):
        return TimingOutStream([])


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TricklingStream(httpcore.MockStream):
    """Hands out one byte per read, four seconds apart."""

    def __init__(self, clock: FakeClock) -> None:
        super().__init__([])
        self.clock = clock
        self.read_timeouts: list[float] = []
        self.tls_timeout = None

    def start_tls(self, ssl_context, server_hostname=None, timeout=None):
        self.tls_timeout = timeout
        return self

    def read(self, max_bytes, timeout=None):
        self.read_timeouts.append(timeout)
        self.clock.now += 4
        return b"V"


class TricklingBackend(httpcore.NetworkBackend):
    def __init__(self, clock: FakeClock) -> None:
        self.stream = TricklingStream(clock)

    def connect_tcp(self, host, port, timeout=None, local_address=None, socket_options=None):
        return self.stream


def _connector(backend) -> TlsConnector:
    return TlsConnector(backend=backend, ssl_context=ssl.create_default_context())


class TestTlsConnector:
    def test_reads_until_end_of_stream(self):
        connector = _connector(httpcore.MockBackend([b"HTTP/1.1 200 OK\r\n\r\n", b"VERIFIED"]))
        received = b""
        with connector.open("www.paypal.com", 443, timeout=5) as stream:
            stream.write(b"POST /cgi-bin/webscr HTTP/1.1\r\n\r\n")
            while True:
                chunk = stream.read()
                if not chunk:
                    break
                received += chunk
        assert received == b"HTTP/1.1 200 OK\r\n\r\nVERIFIED"
        assert stream.closed

    def test_close_is_idempotent(self):
        stream = _connector(httpcore.MockBackend([])).open("www.paypal.com")
        stream.close()
        stream.close()
        assert stream.closed

    def test_connect_failure(self):
        with pytest.raises(ConnectError):
            _connector(RefusingBackend()).open("www.paypal.com", 443, timeout=1)

    def test_tls_failure_closes_socket(self):
        backend = BrokenTlsBackend()
        with pytest.raises(ConnectError):
            _connector(backend).open("www.paypal.com")
        assert backend.stream.close_count == 1

    def test_read_timeout_becomes_stream_error(self):
        stream = _connector(TimingOutBackend()).open("www.paypal.com")
        with pytest.raises(StreamError):
            stream.read()
        stream.close()

    def test_default_ssl_context_verifies_certificates(self):
        connector = TlsConnector(backend=httpcore.MockBackend([]))
        assert connector._ssl_context.verify_mode == ssl.CERT_REQUIRED
        assert connector._ssl_context.check_hostname is True

    def test_one_deadline_covers_every_read(self):
        clock = FakeClock()
        backend = TricklingBackend(clock)
        connector = TlsConnector(
            backend=backend, ssl_context=ssl.create_default_context(), clock=clock
        )
        stream = connector.open("www.paypal.com", 443, timeout=10)

        assert stream.read() == b"V"
        assert stream.read() == b"V"
        assert stream.read() == b"V"
        with pytest.raises(StreamError):
            stream.read()
        assert backend.stream.tls_timeout == 10
        assert backend.stream.read_timeouts == [10, 6, 2]
