"""Pydantic models for PayPal IPN deliveries."""

import codecs
from enum import Enum

from pydantic import BaseModel, Field

# PayPal posts IPNs in windows-1252 unless the account overrides it
DEFAULT_CHARSET = "windows-1252"


class Verdict(str, Enum):
    """Outcome of asking PayPal to validate a notification."""

    VERIFIED = "VERIFIED"
    INVALID = "INVALID"
    MALFORMED = "MALFORMED"


def resolve_charset(name: str | None) -> str:
    """Return a usable codec name for an IPN ``charset`` value."""
    if not name:
        return DEFAULT_CHARSET
    try:
        return codecs.lookup(name).name
    except LookupError:
        return DEFAULT_CHARSET


class IpnNotification(BaseModel):
    """A single inbound IPN delivery as handed over by the web framework.

    Field values that were not valid in ``charset`` carry surrogate escapes
    so they encode back to the exact bytes PayPal sent.
    """

    method: str
    user_agent: str = ""
    fields: dict[str, str] = Field(default_factory=dict)  # posted form fields, in order

    @property
    def txn_id(self) -> str | None:
        return self.fields.get("txn_id")

    @property
    def charset(self) -> str:
        return resolve_charset(self.fields.get("charset"))
