from enum import Enum


class SecurityErrorKind(str, Enum):
    SANDBOX_DISALLOWED = "sandbox_disallowed"
    CONNECTION_FAILED = "connection_failed"
    REJECTED = "rejected"
    MALFORMED_RESPONSE = "malformed_response"


class SecurityError(Exception):
    """Base class for every IPN verification failure.

    ``kind`` lets callers branch on the reason, e.g. alert on
    ``REJECTED`` but only log ``CONNECTION_FAILED``.
    """

    kind: SecurityErrorKind


class SandboxDisallowedError(SecurityError):
    """Raised when a test IPN arrives while sandbox notifications are disabled."""

    kind = SecurityErrorKind.SANDBOX_DISALLOWED

    def __init__(self) -> None:
        super().__init__("Sandbox requests are not allowed but were detected")


class ConnectionFailedError(SecurityError):
    """Raised when the PayPal servers cannot be reached or the exchange fails."""

    kind = SecurityErrorKind.CONNECTION_FAILED

    def __init__(self, hostname: str, reason: str = "") -> None:
        self.hostname = hostname
        message = f"Unable to establish a connection to PayPal ({hostname})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ValidationRejectedError(SecurityError):
    """Raised when PayPal answers INVALID."""

    kind = SecurityErrorKind.REJECTED

    def __init__(self) -> None:
        super().__init__("PayPal validation returned invalid, possible attack")


class MalformedResponseError(SecurityError):
    """Raised when PayPal's answer contains neither VERIFIED nor INVALID."""

    kind = SecurityErrorKind.MALFORMED_RESPONSE

    def __init__(self, response: str) -> None:
        self.response = response
        super().__init__("PayPal validation returned an invalid response")
