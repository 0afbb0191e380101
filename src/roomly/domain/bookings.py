"""Booking status changes, identity documents and payment status reads.

Payment rows are authoritative; the payment fields cached on a booking
are refreshed from them on read when they disagree.
"""

from __future__ import annotations

from typing import Any

from roomly.config import Settings
from roomly.domain.errors import (
    ForbiddenError,
    IdentityNotVerifiedError,
    InvalidIdentityDocumentError,
    InvalidTransitionError,
    PaymentNotCompletedError,
    ReconciliationError,
    RecordNotFoundError,
    RefundFailedError,
    StaleStateError,
)
from roomly.domain.identity import last_four, validate_identity_document
from roomly.domain.payments import payment_view
from roomly.domain.refunds import process_refund
from roomly.domain.transitions import BookingStatus, DenyReason, can_transition
from roomly.gateway.adapter import GatewayAdapter
from roomly.infra.db import txn
from roomly.infra.repositories import bookings_repository, payments_repository
from roomly.infra.time import utc_now
from roomly.observability.correlation import get_correlation_id
from roomly.observability.logging import get_logger
from roomly.observability.redaction import safe_log_context
from roomly.services.notifier import (
    BOOKING_CANCELLED,
    BOOKING_CONFIRMED,
    Notifier,
    notify_safely,
    status_changed_body,
)

logger = get_logger(__name__)

_DENY_ERRORS: dict[DenyReason, type[ReconciliationError]] = {
    DenyReason.INVALID_TRANSITION: InvalidTransitionError,
    DenyReason.PAYMENT_NOT_COMPLETED: PaymentNotCompletedError,
    DenyReason.IDENTITY_NOT_VERIFIED: IdentityNotVerifiedError,
}

_DENY_MESSAGES = {
    DenyReason.INVALID_TRANSITION: "Booking cannot move from {current} to {requested}",
    DenyReason.PAYMENT_NOT_COMPLETED: "Payment must be completed before confirming",
    DenyReason.IDENTITY_NOT_VERIFIED: "Identity document not yet verified",
}


def booking_view(booking: dict[str, Any]) -> dict[str, Any]:
    payment = booking["payment"]
    identity = booking["identity_document"]
    return {
        "id": booking["id"],
        "roomId": booking["room_id"],
        "seekerId": booking["seeker_id"],
        "ownerId": booking["owner_id"],
        "status": booking["status"],
        "payment": {
            "amount": payment["amount_minor"],
            "currency": payment["currency"],
            "status": payment["status"],
            "orderId": payment["gateway_order_id"],
            "paymentId": payment["gateway_payment_id"],
            "paymentDate": _iso(payment["payment_date"]),
            "refundDate": _iso(payment["refund_date"]),
        },
        "identityDocument": {
            "verified": identity["verified"],
            "verificationDate": _iso(identity["verification_date"]),
            "numberLast4": identity["number_last4"],
        },
        "requestDate": _iso(booking["request_date"]),
        "responseDate": _iso(booking["response_date"]),
        "message": booking["message"],
    }


def _iso(value):
    return value.isoformat() if value else None


def _cache_status(payment_status: str) -> str:
    return "pending" if payment_status in payments_repository.OUTSTANDING_STATUSES else payment_status


def _load_for_participant(cur, booking_id: str, caller_id: str) -> dict[str, Any]:
    booking = bookings_repository.get_booking(cur, booking_id)
    if booking is None:
        raise RecordNotFoundError("Booking not found")
    if caller_id not in (booking["seeker_id"], booking["owner_id"]):
        raise ForbiddenError("Access denied")
    return booking


def _authorize_status_change(booking: dict[str, Any], caller_id: str, requested: str) -> None:
    if caller_id == booking["owner_id"]:
        return
    if (
        caller_id == booking["seeker_id"]
        and requested == BookingStatus.CANCELLED.value
        and booking["status"] == BookingStatus.PENDING.value
    ):
        return
    raise ForbiddenError("Not allowed to change this booking's status")


def update_booking_status(
    *,
    booking_id: str,
    caller_id: str,
    requested_status: str,
    message: str | None,
    gateway: GatewayAdapter,
    notifier: Notifier,
    settings: Settings,
) -> dict[str, Any]:
    """Confirm or cancel a booking.

    Cancelling a booking whose payment is completed refunds it in full
    first when the refund is eligible; otherwise the booking is cancelled
    without a refund and ``refundSkippedReason`` says why.

    Raises:
        RecordNotFoundError, ForbiddenError, InvalidTransitionError,
        PaymentNotCompletedError, IdentityNotVerifiedError.
        StaleStateError: The booking changed between read and write.
        RefundFailedError: The gateway refund failed; nothing changed.
    """
    correlation_id = get_correlation_id()

    with txn() as cur:
        booking = bookings_repository.get_booking(cur, booking_id)
        if booking is None:
            raise RecordNotFoundError("Booking not found")
        _authorize_status_change(booking, caller_id, requested_status)
        payment = payments_repository.get_latest_payment_for_booking(cur, booking_id)

    payment_status = payment["status"] if payment else booking["payment"]["status"]
    decision = can_transition(
        booking["status"],
        payment_status,
        bool(booking["identity_document"]["verified"]),
        requested_status,
    )
    if not decision.allowed:
        logger.info(
            "booking status change denied",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=correlation_id,
                    booking_id=booking_id,
                    current_status=booking["status"],
                    requested_status=requested_status,
                    reason=decision.reason.value,
                )
            },
        )
        raise _DENY_ERRORS[decision.reason](
            _DENY_MESSAGES[decision.reason].format(
                current=booking["status"], requested=requested_status
            )
        )

    result: dict[str, Any] = {}

    if requested_status == BookingStatus.CANCELLED.value and payment_status == "completed":
        try:
            result["refund"] = process_refund(
                booking_id=booking_id,
                caller_id=caller_id,
                gateway=gateway,
                notifier=notifier,
                settings=settings,
                reason=message,
            )
        except RefundFailedError:
            raise
        except ReconciliationError as e:
            result["refundSkippedReason"] = e.code
            logger.info(
                "cancellation proceeds without refund",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=correlation_id,
                        booking_id=booking_id,
                        reason=e.code,
                    )
                },
            )

    with txn() as cur:
        if "refund" in result:
            # the refund already moved the booking to cancelled
            if message:
                bookings_repository.set_booking_message(cur, booking_id=booking_id, message=message)
        elif not bookings_repository.update_booking_status(
            cur,
            booking_id=booking_id,
            expected_status=booking["status"],
            new_status=requested_status,
            message=message,
            response_date=utc_now(),
        ):
            raise StaleStateError("Booking was changed by another request, reload and retry")
        updated = bookings_repository.get_booking(cur, booking_id)

    logger.info(
        "booking status changed",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                booking_id=booking_id,
                from_status=booking["status"],
                to_status=requested_status,
            )
        },
    )

    body = status_changed_body(requested_status, message)
    if requested_status == BookingStatus.CONFIRMED.value:
        notify_safely(notifier, booking["seeker_id"], BOOKING_CONFIRMED, body, booking_id=booking_id)
    else:
        other = booking["seeker_id"] if caller_id == booking["owner_id"] else booking["owner_id"]
        notify_safely(notifier, other, BOOKING_CANCELLED, body, booking_id=booking_id)

    result["booking"] = booking_view(updated)
    return result


def submit_identity_document(
    *,
    booking_id: str,
    caller_id: str,
    file_url: str,
    file_type: str,
    file_size: int,
    document_number: str,
) -> dict[str, Any]:
    """Validate and store the seeker's identity document as verified.

    Only the last four digits of the document number are stored.
    """
    with txn() as cur:
        booking = bookings_repository.get_booking(cur, booking_id)
        if booking is None:
            raise RecordNotFoundError("Booking not found")
        if booking["seeker_id"] != caller_id:
            raise ForbiddenError("Only the seeker can submit an identity document")

        problems = validate_identity_document(
            user_id=caller_id,
            file_url=file_url,
            file_type=file_type,
            file_size=file_size,
            document_number=document_number,
        )
        if problems:
            raise InvalidIdentityDocumentError(problems)

        verified_at = utc_now()
        if not bookings_repository.set_identity_document(
            cur,
            booking_id=booking_id,
            file_url=file_url,
            number_last4=last_four(document_number),
            verified_at=verified_at,
        ):
            raise InvalidTransitionError("Cannot attach a document to a cancelled booking")

    logger.info(
        "identity document verified",
        extra={"extra_fields": safe_log_context(correlationId=get_correlation_id(), booking_id=booking_id)},
    )

    return {
        "verified": True,
        "verificationDate": verified_at.isoformat(),
        "numberLast4": last_four(document_number),
    }


def get_payment_status(*, booking_id: str, caller_id: str) -> dict[str, Any]:
    """Return the authoritative payment state, refreshing a stale booking cache."""
    with txn() as cur:
        booking = _load_for_participant(cur, booking_id, caller_id)
        payment = payments_repository.get_latest_payment_for_booking(cur, booking_id)

        if payment is None:
            return {
                "bookingId": booking_id,
                "bookingStatus": booking["status"],
                "payment": None,
            }

        cached = booking["payment"]
        if (
            cached["status"] != _cache_status(payment["status"])
            or cached["gateway_order_id"] != payment["gateway_order_id"]
        ):
            refreshed = bookings_repository.refresh_payment_cache(
                cur,
                booking_id=booking_id,
                expected_payment_status=cached["status"],
                payment=payment,
            )
            logger.info(
                "booking payment cache refreshed",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=get_correlation_id(),
                        booking_id=booking_id,
                        cached_status=cached["status"],
                        payment_status=payment["status"],
                        refreshed=refreshed,
                    )
                },
            )

    return {
        "bookingId": booking_id,
        "bookingStatus": booking["status"],
        "payment": payment_view(payment),
    }
