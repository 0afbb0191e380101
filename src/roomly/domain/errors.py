"""Reconciliation error taxonomy.

Each error carries a stable ``code`` that API callers can branch on and the
HTTP status the routes answer with.
"""

from __future__ import annotations


class ReconciliationError(Exception):
    """Base class for booking/payment rule violations."""

    code = "RECONCILIATION_ERROR"
    status_code = 400

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__class__.__doc__ or self.code)

    @property
    def message(self) -> str:
        return str(self)


class SignatureInvalidError(ReconciliationError):
    """Payment signature verification failed."""

    code = "SIGNATURE_INVALID"


class AmountMismatchError(ReconciliationError):
    """Amount does not match the stored payment amount."""

    code = "AMOUNT_MISMATCH"


class AlreadyRefundedError(ReconciliationError):
    """Payment has already been refunded."""

    code = "ALREADY_REFUNDED"


class RefundWindowExpiredError(ReconciliationError):
    """Refund window for this payment has closed."""

    code = "REFUND_WINDOW_EXPIRED"


class InvalidTransitionError(ReconciliationError):
    """Requested booking status change is not allowed."""

    code = "INVALID_TRANSITION"


class PaymentNotCompletedError(ReconciliationError):
    """Payment must be completed first."""

    code = "PAYMENT_NOT_COMPLETED"


class IdentityNotVerifiedError(ReconciliationError):
    """Identity document not yet verified."""

    code = "IDENTITY_NOT_VERIFIED"


class RecordNotFoundError(ReconciliationError):
    """Record not found."""

    code = "RECORD_NOT_FOUND"
    status_code = 404


class ForbiddenError(ReconciliationError):
    """Access denied."""

    code = "FORBIDDEN"
    status_code = 403


class GatewayUnavailableError(ReconciliationError):
    """Payment gateway is unavailable, retry later."""

    code = "GATEWAY_UNAVAILABLE"
    status_code = 502


class OrderExistsError(ReconciliationError):
    """Payment order already exists for this booking."""

    code = "ORDER_EXISTS"


class RefundFailedError(ReconciliationError):
    """Refund could not be processed by the gateway, retry later."""

    code = "REFUND_FAILED"
    status_code = 502


class StaleStateError(ReconciliationError):
    """Booking changed concurrently, reload and retry."""

    code = "STALE_STATE"
    status_code = 409


class InvalidIdentityDocumentError(ReconciliationError):
    """Identity document failed validation."""

    code = "INVALID_IDENTITY_DOCUMENT"

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("; ".join(problems))
