"""Tests for the /bookings routes (domain layer patched)."""

from unittest.mock import patch

from roomly.domain.errors import (
    IdentityNotVerifiedError,
    InvalidIdentityDocumentError,
    RecordNotFoundError,
    RefundFailedError,
    StaleStateError,
)

from .helpers import VALID_DOCUMENT_NUMBER

BOOKING_ID = "6f1c2b7e-3d4a-4e5f-9a8b-0c1d2e3f4a5b"
STATUS_URL = f"/bookings/{BOOKING_ID}/status"


class TestUpdateStatus:
    def test_confirm(self, as_user):
        with patch(
            "roomly.domain.bookings.update_booking_status",
            return_value={"booking": {"id": BOOKING_ID, "status": "confirmed"}},
        ) as update:
            response = as_user("owner-1").put(STATUS_URL, json={"status": "confirmed", "message": "See you"})

        assert response.status_code == 200
        assert response.json()["booking"]["status"] == "confirmed"
        kwargs = update.call_args.kwargs
        assert kwargs["booking_id"] == BOOKING_ID
        assert kwargs["requested_status"] == "confirmed"
        assert kwargs["message"] == "See you"

    def test_only_confirm_or_cancel_accepted(self, as_user):
        response = as_user("owner-1").put(STATUS_URL, json={"status": "paid"})
        assert response.status_code == 422

    def test_bad_uuid_is_422(self, as_user):
        response = as_user("owner-1").put("/bookings/abc/status", json={"status": "cancelled"})
        assert response.status_code == 422

    def test_identity_not_verified(self, as_user):
        with patch("roomly.domain.bookings.update_booking_status", side_effect=IdentityNotVerifiedError()):
            response = as_user("owner-1").put(STATUS_URL, json={"status": "confirmed"})

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "IDENTITY_NOT_VERIFIED"

    def test_stale_is_409(self, as_user):
        with patch("roomly.domain.bookings.update_booking_status", side_effect=StaleStateError()):
            response = as_user("owner-1").put(STATUS_URL, json={"status": "cancelled"})

        assert response.status_code == 409

    def test_refund_failure_is_502(self, as_user):
        with patch("roomly.domain.bookings.update_booking_status", side_effect=RefundFailedError()):
            response = as_user("owner-1").put(STATUS_URL, json={"status": "cancelled"})

        assert response.status_code == 502
        assert response.json()["detail"]["code"] == "REFUND_FAILED"


class TestPaymentStatus:
    def test_returns_status(self, as_user):
        result = {"bookingId": BOOKING_ID, "bookingStatus": "paid", "payment": {"status": "completed"}}
        with patch("roomly.domain.bookings.get_payment_status", return_value=result):
            response = as_user("seeker-1").get(f"/bookings/{BOOKING_ID}/payment-status")

        assert response.status_code == 200
        assert response.json() == result

    def test_not_found(self, as_user):
        with patch("roomly.domain.bookings.get_payment_status", side_effect=RecordNotFoundError()):
            response = as_user("seeker-1").get(f"/bookings/{BOOKING_ID}/payment-status")

        assert response.status_code == 404


class TestIdentityDocument:
    BODY = {
        "fileUrl": "/uploads/documents/seeker-1/id.png",
        "fileType": "image/png",
        "fileSize": 1024,
        "documentNumber": VALID_DOCUMENT_NUMBER,
    }

    def test_success(self, as_user):
        result = {"verified": True, "verificationDate": "2026-01-01T00:00:00+00:00", "numberLast4": "2346"}
        with patch("roomly.domain.bookings.submit_identity_document", return_value=result) as submit:
            response = as_user("seeker-1").post(f"/bookings/{BOOKING_ID}/identity-document", json=self.BODY)

        assert response.status_code == 200
        assert response.json()["numberLast4"] == "2346"
        assert submit.call_args.kwargs["document_number"] == VALID_DOCUMENT_NUMBER

    def test_problems_listed(self, as_user):
        error = InvalidIdentityDocumentError(["Invalid identity document number"])
        with patch("roomly.domain.bookings.submit_identity_document", side_effect=error):
            response = as_user("seeker-1").post(f"/bookings/{BOOKING_ID}/identity-document", json=self.BODY)

        assert response.status_code == 400
        assert response.json()["detail"]["problems"] == ["Invalid identity document number"]
