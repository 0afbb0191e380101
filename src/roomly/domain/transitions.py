"""Booking status transition guard.

Pure decision function, no I/O. Who may ask for a transition (owner or
seeker) is checked by the caller; this module only answers whether the
requested status is reachable from the current state.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class BookingStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    CREATED = "created"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class DenyReason(str, Enum):
    INVALID_TRANSITION = "INVALID_TRANSITION"
    PAYMENT_NOT_COMPLETED = "PAYMENT_NOT_COMPLETED"
    IDENTITY_NOT_VERIFIED = "IDENTITY_NOT_VERIFIED"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: DenyReason | None = None


ALLOW = Decision(allowed=True)


def _deny(reason: DenyReason) -> Decision:
    return Decision(allowed=False, reason=reason)


# Sources from which each target is structurally reachable.
_REACHABLE_FROM: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset(),
    BookingStatus.PAID: frozenset({BookingStatus.PENDING}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.PENDING, BookingStatus.PAID}),
    BookingStatus.CANCELLED: frozenset(
        {BookingStatus.PENDING, BookingStatus.PAID, BookingStatus.CONFIRMED}
    ),
}


def can_transition(
    current_booking_status: str,
    current_payment_status: str,
    identity_verified: bool,
    requested_status: str,
) -> Decision:
    """Decide whether a booking may move to ``requested_status``.

    Rules:
        - nothing moves into ``pending``, and self-transitions are denied
        - ``cancelled`` is terminal; it is reachable from every other status
        - ``confirmed`` (from pending or paid) needs a completed payment
          and a verified identity document, checked in that order
        - ``paid`` (from pending) needs a completed payment

    Unknown status strings are denied as invalid transitions.
    """
    try:
        current = BookingStatus(current_booking_status)
        requested = BookingStatus(requested_status)
    except ValueError:
        return _deny(DenyReason.INVALID_TRANSITION)

    if current == requested or current not in _REACHABLE_FROM[requested]:
        return _deny(DenyReason.INVALID_TRANSITION)

    payment_completed = current_payment_status == PaymentStatus.COMPLETED.value

    if requested == BookingStatus.CONFIRMED:
        if not payment_completed:
            return _deny(DenyReason.PAYMENT_NOT_COMPLETED)
        if not identity_verified:
            return _deny(DenyReason.IDENTITY_NOT_VERIFIED)
        return ALLOW

    if requested == BookingStatus.PAID and not payment_completed:
        return _deny(DenyReason.PAYMENT_NOT_COMPLETED)

    return ALLOW
