"""Payment reconciliation domain logic.

Order creation, the shared captured/failed update path used by both the
webhook and the client verification call, and payment history.

Concurrency: there are no locks. Every state change is a conditional
UPDATE in the payments repository; the Payment row is written first and
the Booking cache right after, in the same transaction. Only the writer
whose conditional update matched a row notifies.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from roomly.config import Settings
from roomly.domain.errors import (
    AmountMismatchError,
    ForbiddenError,
    GatewayUnavailableError,
    InvalidTransitionError,
    OrderExistsError,
    RecordNotFoundError,
    SignatureInvalidError,
)
from roomly.gateway.adapter import GatewayAdapter, GatewayError
from roomly.infra.db import txn
from roomly.infra.repositories import bookings_repository, payments_repository
from roomly.infra.repositories.payments_repository import TERMINAL_STATUSES
from roomly.infra.time import utc_now
from roomly.observability.correlation import get_correlation_id
from roomly.observability.logging import get_logger
from roomly.observability.redaction import id_prefix, safe_log_context
from roomly.services.notifier import (
    PAID_AFTER_CANCELLATION,
    PAYMENT_COMPLETED,
    Notifier,
    notify_safely,
    paid_after_cancellation_body,
    payment_completed_body,
)

logger = get_logger(__name__)

APPLIED = "applied"
ALREADY_APPLIED = "already_applied"
UNKNOWN_ORDER = "unknown_order"
AMOUNT_MISMATCH = "amount_mismatch"

MAX_HISTORY_LIMIT = 50


@dataclass(frozen=True)
class PaymentOutcome:
    """Result of applying one gateway observation to the stores."""

    result: str
    payment: dict[str, Any] | None = None
    owner_id: str | None = None
    seeker_id: str | None = None
    booking_status: str | None = None

    @property
    def applied(self) -> bool:
        return self.result == APPLIED


def payment_view(payment: dict[str, Any]) -> dict[str, Any]:
    """Public JSON view of a Payment (amounts in minor units)."""
    return {
        "id": payment["id"],
        "bookingId": payment["booking_id"],
        "orderId": payment["gateway_order_id"],
        "paymentId": payment["gateway_payment_id"],
        "amount": payment["amount_minor"],
        "currency": payment["currency"],
        "status": payment["status"],
        "paymentMethod": payment["payment_method"],
        "transactionDate": _iso(payment["transaction_date"]),
        "refundAmount": payment["refund_amount_minor"],
        "refundDate": _iso(payment["refund_date"]),
        "createdAt": _iso(payment["created_at"]),
    }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _receipt_for(booking_id: str, attempt: int) -> str:
    # deterministic per attempt so a retried gateway call reuses the receipt
    return f"{booking_id.replace('-', '')}_{attempt}"


# ── Order creation ───────────────────────────────────────


def create_order(
    *,
    booking_id: str,
    caller_id: str,
    gateway: GatewayAdapter,
    settings: Settings,
) -> dict[str, Any]:
    """Create a gateway order and a Payment in 'created' state.

    Raises:
        RecordNotFoundError: Unknown booking.
        ForbiddenError: Caller is not the booking's seeker.
        InvalidTransitionError: Booking is not pending or is already paid.
        OrderExistsError: Another Payment for the booking is outstanding.
        GatewayUnavailableError: Gateway call failed; nothing was stored.
    """
    correlation_id = get_correlation_id()

    with txn() as cur:
        booking = bookings_repository.get_booking(cur, booking_id)
        if booking is None:
            raise RecordNotFoundError("Booking not found")
        if booking["seeker_id"] != caller_id:
            raise ForbiddenError("Only the seeker can pay for this booking")
        if booking["status"] != "pending" or booking["payment"]["status"] in TERMINAL_STATUSES:
            raise InvalidTransitionError(
                f"Cannot create an order for a {booking['status']} booking"
            )
        if payments_repository.find_outstanding_payment(cur, booking_id) is not None:
            raise OrderExistsError("A payment order is already outstanding for this booking")
        attempt = payments_repository.count_payments_for_booking(cur, booking_id) + 1

    amount_minor = booking["payment"]["amount_minor"]
    currency = booking["payment"]["currency"] or settings.currency
    receipt = _receipt_for(booking_id, attempt)

    try:
        order = gateway.create_order(
            amount_minor=amount_minor,
            currency=currency,
            receipt=receipt,
            metadata={"booking_id": booking_id},
        )
    except GatewayError as e:
        logger.warning(
            "order creation failed at gateway",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    booking_id=booking_id,
                    error_type=type(e).__name__,
                )
            },
        )
        raise GatewayUnavailableError("Payment gateway is unavailable, please retry") from e

    with txn() as cur:
        payment_id = payments_repository.insert_payment(
            cur,
            booking_id=booking_id,
            payer_id=caller_id,
            gateway_order_id=order.gateway_order_id,
            receipt=receipt,
            amount_minor=amount_minor,
            currency=order.currency,
        )
        if payment_id is None:
            # a concurrent request stored its order first; ours is never paid
            raise OrderExistsError("A payment order is already outstanding for this booking")
        bookings_repository.mirror_order_created(
            cur, booking_id=booking_id, gateway_order_id=order.gateway_order_id
        )

    logger.info(
        "payment order created",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                booking_id=booking_id,
                payment_id=payment_id,
                order_id_prefix=id_prefix(order.gateway_order_id, 14),
                amount_minor=amount_minor,
            )
        },
    )

    return {
        "paymentId": payment_id,
        "orderId": order.gateway_order_id,
        "amount": amount_minor,
        "currency": order.currency,
        "gatewayPublicKey": settings.gateway_key_id,
    }


# ── Shared update path ───────────────────────────────────


def apply_payment_captured(
    cur,
    *,
    gateway_order_id: str,
    gateway_payment_id: str,
    method: str | None,
    captured_at: datetime | None,
    amount_minor: int | None,
) -> PaymentOutcome:
    """Apply a captured payment, effectively once.

    Runs inside the caller's transaction. The caller notifies after commit
    when the outcome is ``applied``.

    Args:
        cur: Database cursor (within transaction).
        gateway_order_id: Order the payment belongs to.
        gateway_payment_id: Gateway payment id.
        method: Payment method reported by the gateway.
        captured_at: Capture time; now when unknown.
        amount_minor: Amount reported by the gateway, cross-checked against
            the stored Payment amount. None skips the check.
    """
    payment = payments_repository.get_payment_by_order(cur, gateway_order_id)
    if payment is None:
        logger.warning(
            "captured payment for unknown order discarded",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(),
                    order_id_prefix=id_prefix(gateway_order_id, 14),
                )
            },
        )
        return PaymentOutcome(UNKNOWN_ORDER)

    if payment["status"] in TERMINAL_STATUSES:
        return PaymentOutcome(ALREADY_APPLIED, payment=payment)

    if amount_minor is not None and amount_minor != payment["amount_minor"]:
        logger.error(
            "captured amount does not match payment amount",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(),
                    payment_id=payment["id"],
                    expected_minor=payment["amount_minor"],
                    reported_minor=amount_minor,
                )
            },
        )
        return PaymentOutcome(AMOUNT_MISMATCH, payment=payment)

    transaction_date = captured_at or utc_now()
    if not payments_repository.mark_payment_completed(
        cur,
        payment_id=payment["id"],
        gateway_payment_id=gateway_payment_id,
        payment_method=method,
        transaction_date=transaction_date,
    ):
        # lost the race to another writer
        return PaymentOutcome(
            ALREADY_APPLIED,
            payment=payments_repository.get_payment_by_order(cur, gateway_order_id),
        )

    bookings_repository.mirror_payment_completed(
        cur,
        booking_id=payment["booking_id"],
        gateway_order_id=gateway_order_id,
        gateway_payment_id=gateway_payment_id,
        payment_date=transaction_date,
    )
    booking = bookings_repository.get_booking(cur, payment["booking_id"])
    booking_status = booking["status"] if booking else None

    if booking_status == "cancelled":
        # the seeker was charged for a booking cancelled while its order was open
        logger.error(
            "payment captured for cancelled booking",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(),
                    payment_id=payment["id"],
                    booking_id=payment["booking_id"],
                    amount_minor=payment["amount_minor"],
                )
            },
        )

    logger.info(
        "payment completed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=get_correlation_id(),
                payment_id=payment["id"],
                booking_id=payment["booking_id"],
                booking_status=booking_status,
            )
        },
    )

    completed = dict(
        payment,
        status="completed",
        gateway_payment_id=gateway_payment_id,
        payment_method=method or payment["payment_method"],
        transaction_date=transaction_date,
    )
    return PaymentOutcome(
        APPLIED,
        payment=completed,
        owner_id=booking["owner_id"] if booking else None,
        seeker_id=booking["seeker_id"] if booking else None,
        booking_status=booking_status,
    )


def apply_payment_failed(
    cur,
    *,
    gateway_order_id: str,
    error_code: str | None = None,
    error_description: str | None = None,
) -> PaymentOutcome:
    """Mark an outstanding Payment failed. Completed/refunded Payments never regress."""
    payment = payments_repository.get_payment_by_order(cur, gateway_order_id)
    if payment is None:
        logger.warning(
            "failed payment for unknown order discarded",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(),
                    order_id_prefix=id_prefix(gateway_order_id, 14),
                )
            },
        )
        return PaymentOutcome(UNKNOWN_ORDER)

    if not payments_repository.mark_payment_failed(cur, payment_id=payment["id"]):
        logger.info(
            "late payment failure ignored",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(),
                    payment_id=payment["id"],
                    current_status=payment["status"],
                )
            },
        )
        return PaymentOutcome(ALREADY_APPLIED, payment=payment)

    bookings_repository.mirror_payment_failed(
        cur, booking_id=payment["booking_id"], gateway_order_id=gateway_order_id
    )

    logger.info(
        "payment failed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=get_correlation_id(),
                payment_id=payment["id"],
                error_code=error_code,
                error_description=error_description,
            )
        },
    )
    return PaymentOutcome(APPLIED, payment=dict(payment, status="failed"))


def reconcile_order_paid(cur, *, gateway_order_id: str, amount_paid_minor: int | None) -> PaymentOutcome:
    """Cross-check an order.paid amount. Informational; never writes."""
    payment = payments_repository.get_payment_by_order(cur, gateway_order_id)
    if payment is None:
        logger.warning(
            "order paid for unknown order",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(),
                    order_id_prefix=id_prefix(gateway_order_id, 14),
                )
            },
        )
        return PaymentOutcome(UNKNOWN_ORDER)

    if amount_paid_minor != payment["amount_minor"]:
        logger.error(
            "order paid amount discrepancy",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(),
                    payment_id=payment["id"],
                    expected_minor=payment["amount_minor"],
                    reported_minor=amount_paid_minor,
                )
            },
        )
        return PaymentOutcome(AMOUNT_MISMATCH, payment=payment)

    return PaymentOutcome(ALREADY_APPLIED, payment=payment)


def notify_payment_completed(notifier: Notifier, outcome: PaymentOutcome) -> None:
    """Tell the owner about a completed payment. Call after commit.

    A payment that landed on a cancelled booking goes to the seeker instead,
    who can then request a refund.
    """
    if not outcome.applied or outcome.payment is None:
        return
    if outcome.booking_status == "cancelled":
        if outcome.seeker_id is not None:
            notify_safely(
                notifier,
                outcome.seeker_id,
                PAID_AFTER_CANCELLATION,
                paid_after_cancellation_body(outcome.payment["amount_minor"], outcome.payment["currency"]),
                booking_id=outcome.payment["booking_id"],
            )
        return
    if outcome.owner_id is None:
        return
    notify_safely(
        notifier,
        outcome.owner_id,
        PAYMENT_COMPLETED,
        payment_completed_body(outcome.payment["amount_minor"], outcome.payment["currency"]),
        booking_id=outcome.payment["booking_id"],
    )


# ── Client verification ──────────────────────────────────


def verify_client_payment(
    *,
    caller_id: str,
    order_id: str,
    payment_id: str,
    signature: str,
    gateway: GatewayAdapter,
    notifier: Notifier,
) -> dict[str, Any]:
    """Verify a checkout signature and apply the captured payment.

    Steps: signature, scoped lookup, authoritative fetch from the gateway,
    then the same conditional update the webhook uses.

    Returns:
        {"status": "completed"} once captured, {"status": "pending"} while
        the gateway has not captured yet.

    Raises:
        SignatureInvalidError: Signature mismatch; the caller's outstanding
            Payment is marked failed.
        ForbiddenError: The order belongs to another payer.
        RecordNotFoundError: Unknown order.
        AmountMismatchError: Gateway record disagrees with the stored Payment.
        GatewayUnavailableError: Gateway could not be reached.
    """
    correlation_id = get_correlation_id()

    if not gateway.verify_payment_signature(
        order_id=order_id, payment_id=payment_id, signature=signature
    ):
        with txn() as cur:
            own = payments_repository.get_payment_by_order_for_payer(
                cur, gateway_order_id=order_id, payer_id=caller_id
            )
            if own is not None and payments_repository.mark_payment_failed(cur, payment_id=own["id"]):
                bookings_repository.mirror_payment_failed(
                    cur, booking_id=own["booking_id"], gateway_order_id=order_id
                )
        logger.warning(
            "client payment signature invalid",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    order_id_prefix=id_prefix(order_id, 14),
                    payment_marked_failed=own is not None,
                )
            },
        )
        raise SignatureInvalidError("Payment verification failed")

    with txn() as cur:
        payment = payments_repository.get_payment_by_order_for_payer(
            cur, gateway_order_id=order_id, payer_id=caller_id
        )
        if payment is None:
            if payments_repository.get_payment_by_order(cur, order_id) is not None:
                raise ForbiddenError("Order belongs to another payer")
            raise RecordNotFoundError("Payment not found")

    if payment["status"] in TERMINAL_STATUSES:
        return {"status": payment["status"]}

    try:
        fetched = gateway.fetch_payment(payment_id)
    except GatewayError as e:
        raise GatewayUnavailableError("Payment gateway is unavailable, please retry") from e

    if fetched.gateway_order_id != order_id or fetched.amount_captured_minor != payment["amount_minor"]:
        logger.error(
            "gateway payment does not match stored payment",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    payment_id=payment["id"],
                    expected_minor=payment["amount_minor"],
                    reported_minor=fetched.amount_captured_minor,
                    order_matches=fetched.gateway_order_id == order_id,
                )
            },
        )
        raise AmountMismatchError("Payment amount does not match the booking amount")

    if not fetched.captured:
        return {"status": "pending"}

    with txn() as cur:
        outcome = apply_payment_captured(
            cur,
            gateway_order_id=order_id,
            gateway_payment_id=fetched.gateway_payment_id,
            method=fetched.method,
            captured_at=fetched.captured_at,
            amount_minor=fetched.amount_captured_minor,
        )

    notify_payment_completed(notifier, outcome)

    status = outcome.payment["status"] if outcome.payment else "completed"
    return {"status": status}


# ── History ──────────────────────────────────────────────


def list_payment_history(
    *,
    caller_id: str,
    page: int,
    limit: int,
    status: str | None = None,
) -> dict[str, Any]:
    """Page through the caller's own Payments, newest first."""
    limit = max(1, min(limit, MAX_HISTORY_LIMIT))
    page = max(1, page)

    with txn() as cur:
        payments, total = payments_repository.list_payments_for_payer(
            cur,
            payer_id=caller_id,
            status=status,
            limit=limit,
            offset=(page - 1) * limit,
        )

    return {
        "payments": [payment_view(p) for p in payments],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }
