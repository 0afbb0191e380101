"""Gateway webhook ingestion.

Dispatches a verified GatewayWebhookEvent to its handler. The optional
event-id receipt and the state change commit together, so a redelivery
after a crash is applied again and a redelivery after commit is a no-op.
Store errors propagate; the route answers 500 and the gateway redelivers.
"""

from __future__ import annotations

from roomly.domain.payments import (
    PaymentOutcome,
    apply_payment_captured,
    apply_payment_failed,
    notify_payment_completed,
    reconcile_order_paid,
)
from roomly.gateway.webhook import GatewayWebhookEvent
from roomly.infra.db import txn
from roomly.infra.repositories.events_repository import record_event_receipt
from roomly.observability.correlation import get_correlation_id
from roomly.observability.logging import get_logger
from roomly.observability.redaction import id_prefix, safe_log_context
from roomly.services.notifier import Notifier

logger = get_logger(__name__)

EVENT_SOURCE = "razorpay"

PAYMENT_CAPTURED = "payment.captured"
PAYMENT_FAILED = "payment.failed"
ORDER_PAID = "order.paid"

HANDLED_EVENTS = frozenset({PAYMENT_CAPTURED, PAYMENT_FAILED, ORDER_PAID})

PROCESSED = "processed"
DUPLICATE = "duplicate"
IGNORED = "ignored"


def _dispatch(cur, event: GatewayWebhookEvent) -> PaymentOutcome:
    if event.event_type == PAYMENT_CAPTURED:
        return apply_payment_captured(
            cur,
            gateway_order_id=event.order_id,
            gateway_payment_id=event.payment_id,
            method=event.method,
            captured_at=event.captured_at,
            amount_minor=event.amount_minor,
        )
    if event.event_type == PAYMENT_FAILED:
        return apply_payment_failed(
            cur,
            gateway_order_id=event.order_id,
            error_code=event.error_code,
            error_description=event.error_description,
        )
    return reconcile_order_paid(
        cur,
        gateway_order_id=event.order_id,
        amount_paid_minor=event.amount_paid_minor,
    )


def process_event(
    event: GatewayWebhookEvent,
    *,
    event_id: str | None,
    notifier: Notifier,
) -> str:
    """Apply one webhook event.

    Args:
        event: Verified, parsed event.
        event_id: Gateway delivery id, when the header was sent.
        notifier: Invoked after commit if this delivery completed a payment.

    Returns:
        "processed", "duplicate" (event id already recorded) or "ignored"
        (unknown event type, or an event without an order id).
    """
    correlation_id = get_correlation_id()

    if event.event_type not in HANDLED_EVENTS:
        logger.info(
            "unhandled webhook event ignored",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, event_type=event.event_type)},
        )
        return IGNORED

    if not event.order_id or (event.event_type == PAYMENT_CAPTURED and not event.payment_id):
        logger.warning(
            "webhook event without order reference ignored",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, event_type=event.event_type)},
        )
        return IGNORED

    with txn() as cur:
        if event_id and not record_event_receipt(cur, source=EVENT_SOURCE, external_id=event_id):
            logger.info(
                "duplicate webhook event ignored",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=correlation_id,
                        event_id_prefix=id_prefix(event_id, 12),
                    )
                },
            )
            return DUPLICATE

        outcome = _dispatch(cur, event)

    logger.info(
        "webhook event processed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                event_type=event.event_type,
                result=outcome.result,
            )
        },
    )

    if event.event_type == PAYMENT_CAPTURED:
        notify_payment_completed(notifier, outcome)

    return PROCESSED
