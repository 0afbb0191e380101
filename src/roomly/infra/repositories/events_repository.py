"""Processed-events repository - webhook delivery receipts.

Uses raw SQL with psycopg2 (no ORM).
"""

from psycopg2.extensions import cursor as PgCursor


def record_event_receipt(cur: PgCursor, *, source: str, external_id: str) -> bool:
    """Insert a delivery receipt inside the caller's transaction.

    Returns:
        True for a first delivery, False for a redelivery of a known event.
        If the surrounding transaction rolls back, the receipt goes with it
        and the redelivery is processed again.
    """
    cur.execute(
        """
        INSERT INTO processed_events (source, external_id)
        VALUES (%s, %s)
        ON CONFLICT (source, external_id) DO NOTHING
        """,
        (source, external_id),
    )
    return cur.rowcount == 1
