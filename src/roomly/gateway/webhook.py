"""Gateway webhook signature validation and payload parsing.

Purpose:
- Validate the X-Razorpay-Signature header before looking at the body.
- Extract only the fields the reconciliation handlers need.
- Never log payload or signature.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from roomly.gateway.adapter import GatewayAdapter
from roomly.observability.correlation import get_correlation_id
from roomly.observability.logging import get_logger
from roomly.observability.redaction import safe_log_context

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Razorpay-Signature"
EVENT_ID_HEADER = "X-Razorpay-Event-Id"


class InvalidSignatureError(Exception):
    """Webhook signature validation failed."""


class InvalidPayloadError(Exception):
    """Payload structure is invalid or missing required fields."""


@dataclass(frozen=True)
class GatewayWebhookEvent:
    """Minimal extracted data from a gateway webhook event."""

    event_type: str
    order_id: str | None
    payment_id: str | None = None
    method: str | None = None
    amount_minor: int | None = None
    captured_at: datetime | None = None
    error_code: str | None = None
    error_description: str | None = None
    amount_paid_minor: int | None = None


def _entity(payload: dict[str, Any], name: str) -> dict[str, Any]:
    node = payload.get(name) or {}
    entity = node.get("entity") if isinstance(node, dict) else None
    return entity if isinstance(entity, dict) else {}


def _as_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidPayloadError("Amount is not an integer") from None


def _as_datetime(value: Any) -> datetime | None:
    if value in (None, "", 0):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        raise InvalidPayloadError("Timestamp is not an epoch value") from None


def parse_event(body: dict[str, Any]) -> GatewayWebhookEvent:
    """Extract a GatewayWebhookEvent from a decoded webhook body.

    Raises:
        InvalidPayloadError: If the event type is missing.
    """
    event_type = body.get("event")
    if not event_type or not isinstance(event_type, str):
        raise InvalidPayloadError("Missing event type")

    payload = body.get("payload") or {}
    if not isinstance(payload, dict):
        raise InvalidPayloadError("Payload is not an object")

    payment = _entity(payload, "payment")
    order = _entity(payload, "order")

    captured_at = _as_datetime(payment.get("captured_at")) or _as_datetime(
        payment.get("created_at")
    ) or _as_datetime(body.get("created_at"))

    return GatewayWebhookEvent(
        event_type=event_type,
        order_id=payment.get("order_id") or order.get("id"),
        payment_id=payment.get("id"),
        method=payment.get("method"),
        amount_minor=_as_int(payment.get("amount")),
        captured_at=captured_at,
        error_code=payment.get("error_code"),
        error_description=payment.get("error_description"),
        amount_paid_minor=_as_int(order.get("amount_paid")),
    )


def verify_and_extract(
    payload_bytes: bytes,
    signature_header: str | None,
    *,
    gateway: GatewayAdapter,
) -> GatewayWebhookEvent:
    """Validate the webhook signature over the raw body, then parse it.

    Args:
        payload_bytes: Raw request body bytes, exactly as received.
        signature_header: Value of the signature header (may be missing).
        gateway: Adapter holding the webhook secret.

    Returns:
        GatewayWebhookEvent with the fields handlers need.

    Raises:
        InvalidSignatureError: If signature validation fails.
        InvalidPayloadError: If the body is not a valid event.
    """
    if not gateway.verify_webhook_signature(payload=payload_bytes, signature=signature_header):
        # Do NOT log signature or payload
        logger.warning(
            "webhook signature verification failed",
            extra={"extra_fields": safe_log_context(correlationId=get_correlation_id())},
        )
        raise InvalidSignatureError("Invalid signature")

    try:
        body = json.loads(payload_bytes)
    except (ValueError, UnicodeDecodeError) as e:
        logger.warning(
            "webhook payload parsing failed",
            extra={"extra_fields": safe_log_context(correlationId=get_correlation_id())},
        )
        raise InvalidPayloadError("Invalid payload") from e

    if not isinstance(body, dict):
        raise InvalidPayloadError("Payload is not an object")

    return parse_event(body)
