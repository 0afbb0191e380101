"""Bookings repository - persistence for Booking records.

Uses raw SQL with psycopg2 (no ORM).

The payment_* columns are a cache of the authoritative payments row. They
are written in the same transaction as the Payment change they mirror, and
every write is conditional on the cached state it expects to replace.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

_COLUMNS = """
    id, room_id, seeker_id, owner_id, status, amount_minor, currency,
    payment_status, gateway_order_id, gateway_payment_id, payment_date,
    refund_date, identity_file_url, identity_verified,
    identity_verification_date, identity_number_last4, request_date,
    response_date, message
"""


def _row_to_booking(row: tuple[Any, ...]) -> dict[str, Any]:
    return {
        "id": str(row[0]),
        "room_id": row[1],
        "seeker_id": str(row[2]),
        "owner_id": str(row[3]),
        "status": row[4],
        "payment": {
            "amount_minor": row[5],
            "currency": row[6],
            "status": row[7],
            "gateway_order_id": row[8],
            "gateway_payment_id": row[9],
            "payment_date": row[10],
            "refund_date": row[11],
        },
        "identity_document": {
            "file_url": row[12],
            "verified": row[13],
            "verification_date": row[14],
            "number_last4": row[15],
        },
        "request_date": row[16],
        "response_date": row[17],
        "message": row[18],
    }


def get_booking(cur: PgCursor, booking_id: str) -> dict[str, Any] | None:
    """Get a booking by id."""
    cur.execute(f"SELECT {_COLUMNS} FROM bookings WHERE id = %s", (booking_id,))
    row = cur.fetchone()
    return _row_to_booking(row) if row else None


def mirror_order_created(cur: PgCursor, *, booking_id: str, gateway_order_id: str) -> bool:
    """Point the cache at a new order. Settled payments are left alone."""
    cur.execute(
        """
        UPDATE bookings
        SET gateway_order_id = %s,
            payment_status = 'pending',
            updated_at = now()
        WHERE id = %s AND payment_status NOT IN ('completed', 'refunded')
        RETURNING id
        """,
        (gateway_order_id, booking_id),
    )
    return cur.fetchone() is not None


def mirror_payment_completed(
    cur: PgCursor,
    *,
    booking_id: str,
    gateway_order_id: str,
    gateway_payment_id: str,
    payment_date: datetime,
) -> bool:
    """Cache a completed payment and advance pending -> paid.

    Any other booking status is kept: a booking cancelled before the
    capture arrived stays cancelled.
    """
    cur.execute(
        """
        UPDATE bookings
        SET payment_status = 'completed',
            gateway_order_id = %s,
            gateway_payment_id = %s,
            payment_date = %s,
            status = CASE WHEN status = 'pending' THEN 'paid' ELSE status END,
            updated_at = now()
        WHERE id = %s AND payment_status NOT IN ('completed', 'refunded')
        RETURNING id
        """,
        (gateway_order_id, gateway_payment_id, payment_date, booking_id),
    )
    return cur.fetchone() is not None


def mirror_payment_failed(cur: PgCursor, *, booking_id: str, gateway_order_id: str) -> bool:
    """Cache a failed attempt, only while it is the booking's current order."""
    cur.execute(
        """
        UPDATE bookings
        SET payment_status = 'failed', updated_at = now()
        WHERE id = %s
          AND payment_status NOT IN ('completed', 'refunded')
          AND (gateway_order_id IS NULL OR gateway_order_id = %s)
        RETURNING id
        """,
        (booking_id, gateway_order_id),
    )
    return cur.fetchone() is not None


def mirror_payment_refunded(cur: PgCursor, *, booking_id: str, refund_date: datetime) -> bool:
    """Cache the refund and cancel the booking."""
    cur.execute(
        """
        UPDATE bookings
        SET payment_status = 'refunded',
            refund_date = %s,
            status = 'cancelled',
            response_date = COALESCE(response_date, %s),
            updated_at = now()
        WHERE id = %s AND payment_status <> 'refunded'
        RETURNING id
        """,
        (refund_date, refund_date, booking_id),
    )
    return cur.fetchone() is not None


def refresh_payment_cache(
    cur: PgCursor,
    *,
    booking_id: str,
    expected_payment_status: str,
    payment: dict[str, Any],
) -> bool:
    """Overwrite the cache from an authoritative Payment row.

    Conditional on the cache still holding ``expected_payment_status`` so a
    concurrent mirror write is never clobbered by a stale read.
    """
    cache_status = "pending" if payment["status"] in ("created", "pending") else payment["status"]
    cur.execute(
        """
        UPDATE bookings
        SET payment_status = %s,
            gateway_order_id = %s,
            gateway_payment_id = COALESCE(%s, gateway_payment_id),
            payment_date = COALESCE(%s, payment_date),
            refund_date = COALESCE(%s, refund_date),
            updated_at = now()
        WHERE id = %s AND payment_status = %s
        RETURNING id
        """,
        (
            cache_status,
            payment["gateway_order_id"],
            payment["gateway_payment_id"],
            payment["transaction_date"],
            payment["refund_date"],
            booking_id,
            expected_payment_status,
        ),
    )
    return cur.fetchone() is not None


def update_booking_status(
    cur: PgCursor,
    *,
    booking_id: str,
    expected_status: str,
    new_status: str,
    message: str | None,
    response_date: datetime,
) -> bool:
    """Compare-and-set the booking status.

    Returns:
        False when the status is no longer ``expected_status``.
    """
    cur.execute(
        """
        UPDATE bookings
        SET status = %s,
            message = COALESCE(%s, message),
            response_date = %s,
            updated_at = now()
        WHERE id = %s AND status = %s
        RETURNING id
        """,
        (new_status, message, response_date, booking_id, expected_status),
    )
    return cur.fetchone() is not None


def set_identity_document(
    cur: PgCursor,
    *,
    booking_id: str,
    file_url: str,
    number_last4: str,
    verified_at: datetime,
) -> bool:
    """Store a checked identity document as verified. Cancelled bookings are skipped."""
    cur.execute(
        """
        UPDATE bookings
        SET identity_file_url = %s,
            identity_number_last4 = %s,
            identity_verified = true,
            identity_verification_date = %s,
            updated_at = now()
        WHERE id = %s AND status <> 'cancelled'
        RETURNING id
        """,
        (file_url, number_last4, verified_at, booking_id),
    )
    return cur.fetchone() is not None


def set_booking_message(cur: PgCursor, *, booking_id: str, message: str) -> None:
    """Attach a response message without touching status."""
    cur.execute(
        "UPDATE bookings SET message = %s, updated_at = now() WHERE id = %s",
        (message, booking_id),
    )
