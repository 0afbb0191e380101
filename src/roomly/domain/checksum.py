"""Identity-document (Aadhaar-style) number validation.

A number is valid when, after stripping spaces and hyphens, it has exactly
12 digits, does not start with 0 or 1, and passes the Verhoeff check
(dihedral group D5 multiplication and position permutation tables).
"""

from __future__ import annotations

import re

# d(j, k): multiplication in the dihedral group D5.
_MULTIPLICATION = (
    (0, 1, 2, 3, 4, 5, 6, 7, 8, 9),
    (1, 2, 3, 4, 0, 6, 7, 8, 9, 5),
    (2, 3, 4, 0, 1, 7, 8, 9, 5, 6),
    (3, 4, 0, 1, 2, 8, 9, 5, 6, 7),
    (4, 0, 1, 2, 3, 9, 5, 6, 7, 8),
    (5, 9, 8, 7, 6, 0, 4, 3, 2, 1),
    (6, 5, 9, 8, 7, 1, 0, 4, 3, 2),
    (7, 6, 5, 9, 8, 2, 1, 0, 4, 3),
    (8, 7, 6, 5, 9, 3, 2, 1, 0, 4),
    (9, 8, 7, 6, 5, 4, 3, 2, 1, 0),
)

# p(i mod 8, n): position-dependent permutation.
_PERMUTATION = (
    (0, 1, 2, 3, 4, 5, 6, 7, 8, 9),
    (1, 5, 7, 6, 2, 8, 3, 0, 9, 4),
    (5, 8, 0, 3, 7, 9, 6, 1, 4, 2),
    (8, 9, 1, 6, 0, 4, 3, 5, 2, 7),
    (9, 4, 5, 3, 1, 2, 6, 8, 7, 0),
    (4, 2, 8, 6, 5, 7, 3, 9, 0, 1),
    (2, 7, 9, 3, 8, 0, 6, 4, 1, 5),
    (7, 0, 4, 6, 9, 1, 3, 2, 5, 8),
)

_SEPARATORS = re.compile(r"[\s-]")
_CANDIDATE = re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}\b")

DOCUMENT_NUMBER_LENGTH = 12


def normalize_document_number(value: str) -> str:
    """Strip spaces and hyphens."""
    return _SEPARATORS.sub("", value)


def verhoeff_checksum_ok(digits: str) -> bool:
    """True iff the Verhoeff accumulator over the reversed digits is zero."""
    checksum = 0
    for position, digit in enumerate(reversed(digits)):
        checksum = _MULTIPLICATION[checksum][_PERMUTATION[position % 8][int(digit)]]
    return checksum == 0


def is_valid_document_number(value: str | None) -> bool:
    """Validate a 12-digit identity-document number. Pure, never raises."""
    if not value or not isinstance(value, str):
        return False
    digits = normalize_document_number(value)
    if len(digits) != DOCUMENT_NUMBER_LENGTH or not digits.isascii() or not digits.isdigit():
        return False
    if digits[0] in "01":
        return False
    return verhoeff_checksum_ok(digits)


def mask_document_number(value: str) -> str:
    """Show only the last four digits: XXXX-XXXX-1234."""
    digits = normalize_document_number(value)
    if len(digits) != DOCUMENT_NUMBER_LENGTH:
        return "Invalid document number"
    return f"XXXX-XXXX-{digits[-4:]}"


def format_document_number(value: str) -> str:
    """Group as 1234-5678-9012; anything not 12 characters is returned unchanged."""
    digits = normalize_document_number(value)
    if len(digits) != DOCUMENT_NUMBER_LENGTH:
        return value
    return f"{digits[:4]}-{digits[4:8]}-{digits[8:]}"


def extract_document_number(text: str) -> str | None:
    """Return the first checksum-valid 12-digit group found in free text."""
    for match in _CANDIDATE.finditer(text):
        digits = normalize_document_number(match.group())
        if is_valid_document_number(digits):
            return digits
    return None
