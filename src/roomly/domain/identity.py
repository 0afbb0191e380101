"""Identity-document submission checks (pure)."""

from __future__ import annotations

from roomly.domain.checksum import is_valid_document_number, normalize_document_number

ALLOWED_FILE_TYPES = frozenset({"jpeg", "jpg", "png", "webp", "pdf"})
MAX_FILE_SIZE_BYTES = 5 * 1024 * 1024


def upload_prefix(user_id: str) -> str:
    return f"/uploads/documents/{user_id}/"


def validate_identity_document(
    *,
    user_id: str,
    file_url: str,
    file_type: str,
    file_size: int,
    document_number: str,
) -> list[str]:
    """Return every problem with a submission; an empty list means valid."""
    problems: list[str] = []

    normalized_type = file_type.lower().rsplit("/", 1)[-1]
    if normalized_type not in ALLOWED_FILE_TYPES:
        problems.append(
            f"Invalid file type. Allowed types: {', '.join(sorted(ALLOWED_FILE_TYPES))}"
        )

    if file_size <= 0 or file_size > MAX_FILE_SIZE_BYTES:
        problems.append("File size must be between 1 byte and 5MB")

    prefix = upload_prefix(user_id)
    if not file_url.startswith(prefix) or ".." in file_url or len(file_url) == len(prefix):
        problems.append("File must be uploaded to your own documents folder")

    if not is_valid_document_number(document_number):
        problems.append("Invalid identity document number")

    return problems


def last_four(document_number: str) -> str:
    return normalize_document_number(document_number)[-4:]
