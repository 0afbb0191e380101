"""Fire-and-forget notifications for booking/payment transitions.

A notification is sent after the transition it reports has committed.
Delivery failures are logged with a stack trace and never reach the caller:
the transition already happened and must not be reported as failed.
"""

from __future__ import annotations

from typing import Protocol

from roomly.infra.db import txn
from roomly.infra.repositories.notifications_repository import insert_notification
from roomly.observability.correlation import get_correlation_id
from roomly.observability.logging import get_logger
from roomly.observability.redaction import safe_log_context

logger = get_logger(__name__)

PAYMENT_COMPLETED = "payment_completed"
BOOKING_CONFIRMED = "booking_confirmed"
BOOKING_CANCELLED = "booking_cancelled"
REFUND_PROCESSED = "refund_processed"
PAID_AFTER_CANCELLATION = "paid_after_cancellation"

_TITLES = {
    PAYMENT_COMPLETED: "Payment received",
    BOOKING_CONFIRMED: "Booking confirmed",
    BOOKING_CANCELLED: "Booking cancelled",
    REFUND_PROCESSED: "Refund processed",
    PAID_AFTER_CANCELLATION: "Payment received for a cancelled booking",
}


class Notifier(Protocol):
    """Delivers one user-facing notification. Must never raise."""

    def notify(self, user_id: str, kind: str, body: str, *, booking_id: str | None = None) -> None: ...


def _format_amount(amount_minor: int, currency: str) -> str:
    return f"{currency} {amount_minor // 100}.{amount_minor % 100:02d}"


def payment_completed_body(amount_minor: int, currency: str) -> str:
    return f"Payment of {_format_amount(amount_minor, currency)} has been received for your room."


def refund_processed_body(amount_minor: int, currency: str) -> str:
    return f"A refund of {_format_amount(amount_minor, currency)} has been processed."


def paid_after_cancellation_body(amount_minor: int, currency: str) -> str:
    return (
        f"Payment of {_format_amount(amount_minor, currency)} was received after the booking "
        "was cancelled. You can request a refund."
    )


def status_changed_body(status: str, message: str | None) -> str:
    body = f"The booking is now {status}."
    if message:
        body = f"{body} Message: {message}"
    return body


class DbNotifier:
    """Stores notifications in the notifications table (in-app inbox)."""

    def notify(self, user_id: str, kind: str, body: str, *, booking_id: str | None = None) -> None:
        try:
            with txn() as cur:
                insert_notification(
                    cur,
                    user_id=user_id,
                    kind=kind,
                    title=_TITLES.get(kind, kind.replace("_", " ").capitalize()),
                    body=body,
                    booking_id=booking_id,
                )
        except Exception:
            logger.exception(
                "notification delivery failed",
                extra={
                    "extra_fields": safe_log_context(
                        correlationId=get_correlation_id(),
                        kind=kind,
                        booking_id=booking_id,
                    )
                },
            )
            return

        logger.info(
            "notification stored",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(),
                    kind=kind,
                    booking_id=booking_id,
                )
            },
        )


def notify_safely(
    notifier: Notifier,
    user_id: str,
    kind: str,
    body: str,
    *,
    booking_id: str | None = None,
) -> None:
    """Call any Notifier, containing failures of implementations that raise anyway."""
    try:
        notifier.notify(user_id, kind, body, booking_id=booking_id)
    except Exception:
        logger.exception(
            "notifier raised",
            extra={"extra_fields": safe_log_context(kind=kind, booking_id=booking_id)},
        )
