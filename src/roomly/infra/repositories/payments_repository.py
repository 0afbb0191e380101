"""Payments repository - persistence for Payment records.

Uses raw SQL with psycopg2 (no ORM).

Every status change is a single conditional UPDATE that names the states it
may leave. A writer that loses a race gets ``False``/``None`` back instead of
overwriting the winner.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from psycopg2.extensions import cursor as PgCursor

OUTSTANDING_STATUSES = ("created", "pending")
TERMINAL_STATUSES = ("completed", "refunded")

_COLUMNS = """
    id, booking_id, payer_id, gateway_order_id, gateway_payment_id, receipt,
    amount_minor, currency, status, payment_method, transaction_date,
    refund_id, refund_amount_minor, refund_date, created_at
"""


def _row_to_payment(row: tuple[Any, ...]) -> dict[str, Any]:
    return {
        "id": str(row[0]),
        "booking_id": str(row[1]),
        "payer_id": str(row[2]),
        "gateway_order_id": row[3],
        "gateway_payment_id": row[4],
        "receipt": row[5],
        "amount_minor": row[6],
        "currency": row[7],
        "status": row[8],
        "payment_method": row[9],
        "transaction_date": row[10],
        "refund_id": row[11],
        "refund_amount_minor": row[12],
        "refund_date": row[13],
        "created_at": row[14],
    }


def insert_payment(
    cur: PgCursor,
    *,
    booking_id: str,
    payer_id: str,
    gateway_order_id: str,
    receipt: str,
    amount_minor: int,
    currency: str,
) -> str | None:
    """Insert a Payment in 'created' state.

    The partial unique index on (booking_id) for outstanding statuses makes
    this the arbiter of the one-outstanding-order rule.

    Returns:
        Payment UUID, or None when another outstanding Payment already
        exists for the booking.
    """
    cur.execute(
        """
        INSERT INTO payments (
            booking_id, payer_id, gateway_order_id, receipt,
            amount_minor, currency, status
        )
        VALUES (%s, %s, %s, %s, %s, %s, 'created')
        ON CONFLICT (booking_id) WHERE status IN ('created', 'pending') DO NOTHING
        RETURNING id
        """,
        (booking_id, payer_id, gateway_order_id, receipt, amount_minor, currency),
    )
    row = cur.fetchone()
    return str(row[0]) if row else None


def count_payments_for_booking(cur: PgCursor, booking_id: str) -> int:
    """Number of Payment attempts ever made for a booking."""
    cur.execute("SELECT COUNT(*) FROM payments WHERE booking_id = %s", (booking_id,))
    return cur.fetchone()[0]


def find_outstanding_payment(cur: PgCursor, booking_id: str) -> dict[str, Any] | None:
    """Get the booking's Payment in 'created'/'pending', if any."""
    cur.execute(
        f"""
        SELECT {_COLUMNS}
        FROM payments
        WHERE booking_id = %s AND status IN ('created', 'pending')
        LIMIT 1
        """,
        (booking_id,),
    )
    row = cur.fetchone()
    return _row_to_payment(row) if row else None


def get_payment_by_order(cur: PgCursor, gateway_order_id: str) -> dict[str, Any] | None:
    """Get a Payment by gateway order id."""
    cur.execute(
        f"SELECT {_COLUMNS} FROM payments WHERE gateway_order_id = %s",
        (gateway_order_id,),
    )
    row = cur.fetchone()
    return _row_to_payment(row) if row else None


def get_payment_by_order_for_payer(
    cur: PgCursor,
    *,
    gateway_order_id: str,
    payer_id: str,
) -> dict[str, Any] | None:
    """Get a Payment by gateway order id, scoped to the payer who created it."""
    cur.execute(
        f"""
        SELECT {_COLUMNS}
        FROM payments
        WHERE gateway_order_id = %s AND payer_id = %s
        """,
        (gateway_order_id, payer_id),
    )
    row = cur.fetchone()
    return _row_to_payment(row) if row else None


def get_latest_payment_for_booking(cur: PgCursor, booking_id: str) -> dict[str, Any] | None:
    """Get the booking's most relevant Payment.

    A completed or refunded Payment outranks later failed or abandoned
    attempts; otherwise the newest attempt wins.
    """
    cur.execute(
        f"""
        SELECT {_COLUMNS}
        FROM payments
        WHERE booking_id = %s
        ORDER BY (status IN ('completed', 'refunded')) DESC, created_at DESC
        LIMIT 1
        """,
        (booking_id,),
    )
    row = cur.fetchone()
    return _row_to_payment(row) if row else None


def list_payments_for_payer(
    cur: PgCursor,
    *,
    payer_id: str,
    status: str | None,
    limit: int,
    offset: int,
) -> tuple[list[dict[str, Any]], int]:
    """Page through a payer's Payments, newest first.

    Returns:
        (page of payment dicts, total matching count)
    """
    conditions = ["payer_id = %s"]
    params: list[Any] = [payer_id]
    if status:
        conditions.append("status = %s")
        params.append(status)
    where_clause = " AND ".join(conditions)

    cur.execute(f"SELECT COUNT(*) FROM payments WHERE {where_clause}", params)
    total = cur.fetchone()[0]

    cur.execute(
        f"""
        SELECT {_COLUMNS}
        FROM payments
        WHERE {where_clause}
        ORDER BY created_at DESC
        LIMIT %s OFFSET %s
        """,
        [*params, limit, offset],
    )
    return [_row_to_payment(row) for row in cur.fetchall()], total


def mark_payment_completed(
    cur: PgCursor,
    *,
    payment_id: str,
    gateway_payment_id: str,
    payment_method: str | None,
    transaction_date: datetime,
) -> bool:
    """created/pending/failed -> completed.

    Returns:
        True if this call performed the transition, False if the Payment was
        already completed or refunded.
    """
    cur.execute(
        """
        UPDATE payments
        SET status = 'completed',
            gateway_payment_id = %s,
            payment_method = COALESCE(%s, payment_method),
            transaction_date = %s,
            updated_at = now()
        WHERE id = %s AND status NOT IN ('completed', 'refunded')
        RETURNING id
        """,
        (gateway_payment_id, payment_method, transaction_date, payment_id),
    )
    return cur.fetchone() is not None


def mark_payment_failed(cur: PgCursor, *, payment_id: str) -> bool:
    """created/pending -> failed. Completed and refunded Payments never regress.

    Returns:
        True if this call performed the transition.
    """
    cur.execute(
        """
        UPDATE payments
        SET status = 'failed', updated_at = now()
        WHERE id = %s AND status IN ('created', 'pending')
        RETURNING id
        """,
        (payment_id,),
    )
    return cur.fetchone() is not None


def mark_payment_refunded(
    cur: PgCursor,
    *,
    payment_id: str,
    refund_id: str,
    refund_amount_minor: int,
    refund_date: datetime,
) -> bool:
    """completed -> refunded.

    Returns:
        True if this call performed the transition, False if a concurrent
        refund got there first or the Payment is no longer completed.
    """
    cur.execute(
        """
        UPDATE payments
        SET status = 'refunded',
            refund_id = %s,
            refund_amount_minor = %s,
            refund_date = %s,
            updated_at = now()
        WHERE id = %s AND status = 'completed' AND %s <= amount_minor
        RETURNING id
        """,
        (refund_id, refund_amount_minor, refund_date, payment_id, refund_amount_minor),
    )
    return cur.fetchone() is not None
