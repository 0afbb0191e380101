"""Users repository - identity lookups for authenticated callers.

Uses raw SQL with psycopg2 (no ORM).
"""

from typing import Any

from psycopg2.extensions import cursor as PgCursor


def get_user_by_subject(cur: PgCursor, external_subject: str) -> dict[str, Any] | None:
    """Resolve a token subject to a user row."""
    cur.execute(
        "SELECT id, external_subject, email, name FROM users WHERE external_subject = %s",
        (external_subject,),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return {
        "id": str(row[0]),
        "external_subject": row[1],
        "email": row[2],
        "name": row[3],
    }
