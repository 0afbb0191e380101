"""Gateway webhook route - public endpoint for payment events.

Security rules:
- Validate X-Razorpay-Signature over the raw body before anything else.
- Never log payload or signature header.
- Unknown orders and event types are acknowledged (the gateway would
  otherwise redeliver forever); store failures return 500 so it redelivers.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Request, Response
from fastapi.concurrency import run_in_threadpool

from roomly.api.deps import get_gateway, get_notifier
from roomly.domain.webhooks import process_event
from roomly.gateway.adapter import GatewayAdapter
from roomly.gateway.webhook import (
    EVENT_ID_HEADER,
    SIGNATURE_HEADER,
    InvalidPayloadError,
    InvalidSignatureError,
    verify_and_extract,
)
from roomly.observability.correlation import get_correlation_id
from roomly.observability.logging import get_logger
from roomly.observability.redaction import safe_log_context
from roomly.services.notifier import Notifier

router = APIRouter(tags=["webhooks"])

logger = get_logger(__name__)


@router.post("/payments/webhook")
async def payment_webhook(
    request: Request,
    signature: str | None = Header(None, alias=SIGNATURE_HEADER),
    event_id: str | None = Header(None, alias=EVENT_ID_HEADER),
    gateway: GatewayAdapter = Depends(get_gateway),
    notifier: Notifier = Depends(get_notifier),
) -> Response:
    """Receive gateway webhook events.

    Returns:
        200 "ok" when applied or ignored, "duplicate" for a repeated event id.
        400 on invalid signature or malformed payload.
        500 when the event could not be stored.
    """
    correlation_id = get_correlation_id()
    payload_bytes = await request.body()

    try:
        event = verify_and_extract(payload_bytes, signature, gateway=gateway)
    except InvalidSignatureError:
        return Response(status_code=400, content="invalid signature")
    except InvalidPayloadError:
        return Response(status_code=400, content="invalid payload")

    try:
        result = await run_in_threadpool(
            process_event, event, event_id=event_id, notifier=notifier
        )
    except Exception:
        # Transaction rolled back - do NOT return 2xx
        logger.exception(
            "webhook processing failed",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    event_type=event.event_type,
                )
            },
        )
        return Response(status_code=500, content="processing failed")

    if result == "duplicate":
        return Response(status_code=200, content="duplicate")
    return Response(status_code=200, content="ok")
