"""Refund engine.

Eligibility is always re-checked against freshly read Booking and Payment
rows. The gateway refund is requested before any local write; if it fails
nothing changes locally and the caller may retry. A failed request is
followed by a lookup of the payment's refunds at the gateway, so a refund
performed by an earlier timed-out attempt is recorded instead of being
refused forever. The final write is
conditional on the Payment still being 'completed', so two concurrent
refunds record at most one.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from roomly.config import Settings
from roomly.domain.errors import (
    AlreadyRefundedError,
    AmountMismatchError,
    ForbiddenError,
    PaymentNotCompletedError,
    RecordNotFoundError,
    RefundFailedError,
    RefundWindowExpiredError,
)
from roomly.gateway.adapter import GatewayAdapter, GatewayError, GatewayRefund
from roomly.infra.db import txn
from roomly.infra.repositories import bookings_repository, payments_repository
from roomly.infra.time import utc_now
from roomly.observability.correlation import get_correlation_id
from roomly.observability.logging import get_logger
from roomly.observability.redaction import id_prefix, safe_log_context
from roomly.services.notifier import (
    REFUND_PROCESSED,
    Notifier,
    notify_safely,
    refund_processed_body,
)

logger = get_logger(__name__)


def check_refund_eligibility(
    payment: dict[str, Any],
    *,
    amount_minor: int | None,
    now: datetime,
    window_days: int,
) -> int:
    """Validate a refund request against a Payment.

    Args:
        payment: Current Payment row.
        amount_minor: Requested amount; None means the full amount.
        now: Evaluation time.
        window_days: Refund policy window, counted from the transaction date
            (or the Payment's creation when no transaction date is stored).

    Returns:
        The amount to refund, in minor units.

    Raises:
        AlreadyRefundedError, PaymentNotCompletedError, AmountMismatchError,
        RefundWindowExpiredError.
    """
    if payment["status"] == "refunded":
        raise AlreadyRefundedError("Payment has already been refunded")
    if payment["status"] != "completed":
        raise PaymentNotCompletedError("Only completed payments can be refunded")

    refund_minor = payment["amount_minor"] if amount_minor is None else amount_minor
    if refund_minor <= 0 or refund_minor > payment["amount_minor"]:
        raise AmountMismatchError("Refund amount must be positive and not exceed the amount paid")

    paid_at = payment["transaction_date"] or payment["created_at"]
    if paid_at is not None and now - paid_at > timedelta(days=window_days):
        raise RefundWindowExpiredError(
            f"Refunds are only allowed within {window_days} days of payment"
        )

    return refund_minor


def _refund_receipt(payment_id: str) -> str:
    return f"refund_{payment_id.replace('-', '')}"


def find_gateway_refund(
    gateway: GatewayAdapter,
    gateway_payment_id: str,
    *,
    receipt: str,
    refund_minor: int,
) -> GatewayRefund | None:
    """Return a refund the gateway already holds for this request, if any.

    A create_refund that timed out may still have been performed, and the
    gateway then refuses every retry. A refund carrying our receipt, or
    refunds that together cover the requested amount, count as ours.
    """
    try:
        refunds = gateway.fetch_refunds(gateway_payment_id)
    except GatewayError:
        return None

    for refund in refunds:
        if refund.receipt == receipt:
            return refund

    total_minor = sum(refund.amount_minor or 0 for refund in refunds)
    if refunds and total_minor >= refund_minor:
        return GatewayRefund(
            refund_id=refunds[-1].refund_id,
            amount_minor=total_minor,
            receipt=refunds[-1].receipt,
        )
    return None


def process_refund(
    *,
    booking_id: str,
    caller_id: str,
    gateway: GatewayAdapter,
    notifier: Notifier,
    settings: Settings,
    amount_minor: int | None = None,
    reason: str | None = None,
) -> dict[str, Any]:
    """Refund a booking's completed payment and cancel the booking.

    Raises:
        RecordNotFoundError: Unknown booking.
        ForbiddenError: Caller is neither seeker nor owner.
        PaymentNotCompletedError: No completed Payment to refund.
        AlreadyRefundedError: Payment already refunded (also when a
            concurrent refund was recorded first).
        AmountMismatchError: Amount not in 1..Payment.amount.
        RefundWindowExpiredError: Outside the policy window.
        RefundFailedError: Gateway refused or could not be reached and
            holds no matching refund; no local state changed.
    """
    correlation_id = get_correlation_id()

    with txn() as cur:
        booking = bookings_repository.get_booking(cur, booking_id)
        if booking is None:
            raise RecordNotFoundError("Booking not found")
        if caller_id not in (booking["seeker_id"], booking["owner_id"]):
            raise ForbiddenError("Only the seeker or the owner can request a refund")
        payment = payments_repository.get_latest_payment_for_booking(cur, booking_id)

    if payment is None:
        raise PaymentNotCompletedError("No payment found for this booking")

    refund_minor = check_refund_eligibility(
        payment,
        amount_minor=amount_minor,
        now=utc_now(),
        window_days=settings.refund_window_days,
    )

    receipt = _refund_receipt(payment["id"])
    try:
        refund = gateway.create_refund(
            payment["gateway_payment_id"],
            amount_minor=refund_minor,
            receipt=receipt,
        )
    except GatewayError as e:
        refund = find_gateway_refund(
            gateway,
            payment["gateway_payment_id"],
            receipt=receipt,
            refund_minor=refund_minor,
        )
        if refund is None:
            logger.warning(
                "gateway refund failed",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=correlation_id,
                        payment_id=payment["id"],
                        error_type=type(e).__name__,
                    )
                },
            )
            raise RefundFailedError("Refund could not be processed, please retry") from e

        logger.warning(
            "gateway already holds refund, recording it",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    payment_id=payment["id"],
                    refund_id_prefix=id_prefix(refund.refund_id, 13),
                    error_type=type(e).__name__,
                )
            },
        )
        if refund.amount_minor is not None:
            refund_minor = min(refund.amount_minor, payment["amount_minor"])

    refund_date = utc_now()
    with txn() as cur:
        recorded = payments_repository.mark_payment_refunded(
            cur,
            payment_id=payment["id"],
            refund_id=refund.refund_id,
            refund_amount_minor=refund_minor,
            refund_date=refund_date,
        )
        if recorded:
            bookings_repository.mirror_payment_refunded(
                cur, booking_id=booking_id, refund_date=refund_date
            )

    if not recorded:
        logger.error(
            "refund accepted by gateway but payment already refunded",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    payment_id=payment["id"],
                    refund_id_prefix=id_prefix(refund.refund_id, 13),
                )
            },
        )
        raise AlreadyRefundedError("Payment has already been refunded")

    logger.info(
        "refund processed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                payment_id=payment["id"],
                booking_id=booking_id,
                refund_minor=refund_minor,
                partial=refund_minor < payment["amount_minor"],
                reason=reason,
            )
        },
    )

    body = refund_processed_body(refund_minor, payment["currency"])
    if reason:
        body = f"{body} Reason: {reason}"
    for user_id in (booking["seeker_id"], booking["owner_id"]):
        notify_safely(notifier, user_id, REFUND_PROCESSED, body, booking_id=booking_id)

    return {
        "refundId": refund.refund_id,
        "refundAmount": refund_minor,
        "currency": payment["currency"],
        "status": "refunded",
    }
