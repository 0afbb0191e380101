"""HMAC-SHA256 helpers for gateway signatures.

Both the client payment signature (over "order_id|payment_id") and the
webhook signature (over the raw body) are lowercase hex HMAC-SHA256
digests. Comparison is always constant-time.
"""

import hashlib
import hmac


def hmac_sha256_hex(secret: str, message: bytes | str) -> str:
    """Return the hex HMAC-SHA256 of message under secret."""
    if isinstance(message, str):
        message = message.encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def signatures_match(expected: str, supplied: str | None) -> bool:
    """Constant-time comparison; never raises on bad input."""
    if not supplied or not isinstance(supplied, str):
        return False
    try:
        return hmac.compare_digest(expected.encode(), supplied.strip().encode())
    except (TypeError, UnicodeError):
        return False
