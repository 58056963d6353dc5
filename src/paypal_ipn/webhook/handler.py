"""FastAPI glue for receiving PayPal IPN webhooks."""

import logging
from urllib.parse import parse_qsl

from fastapi import APIRouter, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from paypal_ipn.ipn.exceptions import SecurityError
from paypal_ipn.ipn.models import IpnNotification, resolve_charset
from paypal_ipn.ipn.verifier import IpnHandler, IpnVerifier

logger = logging.getLogger(__name__)


def parse_form_body(body: bytes) -> dict[str, str]:
    """Decode a urlencoded IPN body in the charset it declares.

    Undecodable bytes are kept as surrogate escapes and a repeated key keeps
    its last value, so the fields re-encode to what PayPal posted.
    """
    text = body.decode("latin-1")
    # latin-1 maps every byte, enough to read the ASCII charset name
    declared = dict(parse_qsl(text, keep_blank_values=True, encoding="latin-1"))
    charset = resolve_charset(declared.get("charset"))
    return dict(
        parse_qsl(text, keep_blank_values=True, encoding=charset, errors="surrogateescape")
    )


async def read_notification(request: Request) -> IpnNotification:
    """Collect method, user agent and form fields from an inbound request."""
    fields: dict[str, str] = {}
    if request.method == "POST":
        fields = parse_form_body(await request.body())

    # Surrogate escapes would fail pydantic str validation
    return IpnNotification.model_construct(
        method=request.method,
        user_agent=request.headers.get("user-agent", ""),
        fields=fields,
    )


def create_router(
    verifier: IpnVerifier, handler: IpnHandler, path: str = "/webhook/paypal"
) -> APIRouter:
    router = APIRouter()

    @router.post(path)
    async def handle_ipn(request: Request):
        """Verify an IPN with PayPal before handing it to ``handler``."""
        notification = await read_notification(request)

        # Verification blocks on a socket round trip to PayPal
        try:
            processed = await run_in_threadpool(verifier.process, notification, handler)
        except SecurityError as exc:
            logger.warning(
                "IPN verification failed (%s) for transaction %s: %s",
                exc.kind.value, notification.txn_id, exc,
            )
            raise HTTPException(status_code=400, detail=exc.kind.value) from exc

        if not processed:
            logger.debug("Ignoring non-IPN request to %s", path)
            return {"status": "ignored"}
        return {"status": "ok"}

    return router
