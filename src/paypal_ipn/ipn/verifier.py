"""PayPal IPN verification: classify, echo back to PayPal, dispatch."""

import logging
from collections.abc import Callable, Mapping
from typing import Any
from urllib.parse import urlencode

from paypal_ipn.config import Settings
from paypal_ipn.ipn.exceptions import (
    ConnectionFailedError,
    MalformedResponseError,
    SandboxDisallowedError,
    ValidationRejectedError,
)
from paypal_ipn.ipn.models import DEFAULT_CHARSET, IpnNotification, Verdict
from paypal_ipn.transport.connector import (
    DEFAULT_TIMEOUT,
    HTTPS_PORT,
    READ_CHUNK_SIZE,
    Connector,
    TlsConnector,
    TransportError,
)

logger = logging.getLogger(__name__)

PRODUCTION_HOST = "www.paypal.com"
SANDBOX_HOST = "www.sandbox.paypal.com"
VALIDATION_PATH = "/cgi-bin/webscr"
VALIDATE_COMMAND = "cmd=_notify-validate"
USER_AGENT_TOKEN = "PayPal"

IpnHandler = Callable[[Mapping[str, str]], Any]


def is_truthy(value: str | None) -> bool:
    """Form-value truthiness: missing, empty and "0" are false."""
    return value not in (None, "", "0")


def build_validation_query(
    fields: Mapping[str, str], charset: str = DEFAULT_CHARSET
) -> str:
    """URL-encode the posted fields in order and append the validate command.

    Values are encoded in the charset PayPal posted them in, so the echoed
    body is byte-for-byte what PayPal signed off on.
    """
    query = urlencode(
        list(fields.items()), encoding=charset, errors="surrogateescape"
    )
    if query:
        return f"{query}&{VALIDATE_COMMAND}"
    return VALIDATE_COMMAND


def build_validation_request(hostname: str, body: bytes) -> bytes:
    head = (
        f"POST {VALIDATION_PATH} HTTP/1.1\r\n"
        f"Host: {hostname}\r\n"
        "Content-type: application/x-www-form-urlencoded\r\n"
        f"Content-length: {len(body)}\r\n"
        "\r\n"
    )
    return head.encode("ascii") + body


def parse_verdict(response: str) -> Verdict:
    """Map PayPal's raw reply (headers included) to a verdict by substring match."""
    if "VERIFIED" in response:
        return Verdict.VERIFIED
    if "INVALID" in response:
        return Verdict.INVALID
    return Verdict.MALFORMED


class IpnVerifier:
    def __init__(
        self,
        connector: Connector | None = None,
        *,
        allow_test_ipns: bool = False,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        self._connector = connector or TlsConnector()
        self.allow_test_ipns = allow_test_ipns
        self.set_timeout(timeout)

    @classmethod
    def from_settings(
        cls, settings: Settings, connector: Connector | None = None
    ) -> "IpnVerifier":
        return cls(
            connector,
            allow_test_ipns=settings.allow_test_ipns,
            timeout=settings.timeout,
        )

    def enable_test_ipns(self, enable: bool = True) -> "IpnVerifier":
        """Accept IPNs from the PayPal sandbox and IPN simulator."""
        self.allow_test_ipns = enable
        return self

    def set_timeout(self, timeout: int) -> "IpnVerifier":
        """Set the connect/read timeout, in seconds, for talking to PayPal."""
        if timeout <= 0:
            raise ValueError("timeout must be a positive number of seconds")
        self.timeout = timeout
        return self

    def is_ipn(self, notification: IpnNotification) -> bool:
        """Cheap local checks that discard unrelated traffic before any network I/O."""
        if notification.method != "POST":
            logger.debug("Not an IPN: method is %s", notification.method)
            return False
        if USER_AGENT_TOKEN not in notification.user_agent:
            logger.debug("Not an IPN: user agent %r", notification.user_agent)
            return False
        if "txn_id" not in notification.fields:
            logger.debug("Not an IPN: no txn_id field")
            return False
        return True

    def process(self, notification: IpnNotification, handler: IpnHandler) -> bool:
        """Validate a PayPal IPN and, if genuine, pass its fields to ``handler``.

        Returns False when the request does not look like an IPN at all.
        Raises a ``SecurityError`` subclass when it looks like one but cannot
        be verified.
        """
        if not self.is_ipn(notification):
            return False

        self.validate_request(notification)

        logger.info("Verified IPN for transaction %s", notification.txn_id)
        handler(notification.fields)
        return True

    def target_host(self, notification: IpnNotification) -> str:
        if not is_truthy(notification.fields.get("test_ipn")):
            return PRODUCTION_HOST
        if not self.allow_test_ipns:
            logger.warning(
                "Rejected sandbox IPN for transaction %s: test IPNs are disabled",
                notification.txn_id,
            )
            raise SandboxDisallowedError()
        return SANDBOX_HOST

    def validate_request(self, notification: IpnNotification) -> Verdict:
        """Echo the notification back to PayPal and require a VERIFIED reply."""
        hostname = self.target_host(notification)
        logger.info("Validating IPN %s against %s", notification.txn_id, hostname)

        query = build_validation_query(notification.fields, notification.charset)
        body = query.encode("ascii")
        request = build_validation_request(hostname, body)

        try:
            stream = self._connector.open(hostname, HTTPS_PORT, self.timeout)
        except TransportError as exc:
            logger.error("Unable to connect to %s: %s", hostname, exc)
            raise ConnectionFailedError(hostname, str(exc)) from exc

        raw = b""
        with stream:
            try:
                stream.write(request)
                logger.debug("Sent %d bytes to %s", len(request), hostname)

                while True:
                    chunk = stream.read(READ_CHUNK_SIZE)
                    if not chunk:
                        break
                    raw += chunk
            except TransportError as exc:
                logger.error("Validation exchange with %s failed: %s", hostname, exc)
                raise ConnectionFailedError(hostname, str(exc)) from exc

        logger.debug("Received %d bytes from %s", len(raw), hostname)
        response = raw.decode("utf-8", errors="replace")

        verdict = parse_verdict(response)
        if verdict is Verdict.INVALID:
            logger.warning("PayPal rejected IPN %s as INVALID", notification.txn_id)
            raise ValidationRejectedError()
        if verdict is Verdict.MALFORMED:
            logger.warning("Unexpected PayPal response for IPN %s", notification.txn_id)
            raise MalformedResponseError(response)
        return verdict
