"""Notifications repository - in-app notification sink.

Uses raw SQL with psycopg2 (no ORM).
"""

from psycopg2.extensions import cursor as PgCursor


def insert_notification(
    cur: PgCursor,
    *,
    user_id: str,
    kind: str,
    title: str,
    body: str,
    booking_id: str | None = None,
) -> str:
    """Insert an unread notification.

    Args:
        cur: Database cursor (within transaction).
        user_id: Recipient user UUID.
        kind: Notification kind (e.g., payment_completed).
        title: Short title.
        body: Message body (no PII beyond what the recipient already sees).
        booking_id: Related booking, if any.

    Returns:
        The notification UUID.
    """
    cur.execute(
        """
        INSERT INTO notifications (user_id, kind, title, body, booking_id)
        VALUES (%s, %s, %s, %s, %s)
        RETURNING id
        """,
        (user_id, kind, title, body, booking_id),
    )
    return str(cur.fetchone()[0])
