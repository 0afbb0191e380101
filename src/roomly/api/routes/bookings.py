"""Booking endpoints: status changes, payment status, identity document."""

from __future__ import annotations

from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends, Path
from pydantic import BaseModel, ConfigDict, Field

from roomly.api.auth import CurrentUser, get_current_user
from roomly.api.deps import get_gateway, get_notifier, get_settings, http_error
from roomly.config import Settings
from roomly.domain import bookings as bookings_domain
from roomly.domain.errors import ReconciliationError
from roomly.gateway.adapter import GatewayAdapter
from roomly.services.notifier import Notifier

router = APIRouter(prefix="/bookings", tags=["bookings"])


class UpdateStatusRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: Literal["confirmed", "cancelled"]
    message: str | None = Field(default=None, max_length=500)


class IdentityDocumentRequest(BaseModel):
    """Metadata of an already uploaded identity document."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    file_url: str = Field(alias="fileUrl", min_length=1)
    file_type: str = Field(alias="fileType", min_length=1)
    file_size: int = Field(alias="fileSize")
    document_number: str = Field(alias="documentNumber", min_length=1)


@router.put("/{booking_id}/status")
def update_status(
    body: UpdateStatusRequest,
    booking_id: UUID = Path(..., description="Booking UUID"),
    user: CurrentUser = Depends(get_current_user),
    gateway: GatewayAdapter = Depends(get_gateway),
    notifier: Notifier = Depends(get_notifier),
    settings: Settings = Depends(get_settings),
) -> dict:
    """Confirm (owner) or cancel (owner, or seeker while pending) a booking."""
    try:
        return bookings_domain.update_booking_status(
            booking_id=str(booking_id),
            caller_id=user.id,
            requested_status=body.status,
            message=body.message,
            gateway=gateway,
            notifier=notifier,
            settings=settings,
        )
    except ReconciliationError as e:
        raise http_error(e) from e


@router.get("/{booking_id}/payment-status")
def payment_status(
    booking_id: UUID = Path(..., description="Booking UUID"),
    user: CurrentUser = Depends(get_current_user),
) -> dict:
    try:
        return bookings_domain.get_payment_status(booking_id=str(booking_id), caller_id=user.id)
    except ReconciliationError as e:
        raise http_error(e) from e


@router.post("/{booking_id}/identity-document")
def submit_identity_document(
    body: IdentityDocumentRequest,
    booking_id: UUID = Path(..., description="Booking UUID"),
    user: CurrentUser = Depends(get_current_user),
) -> dict:
    """Attach and verify the seeker's identity document."""
    try:
        return bookings_domain.submit_identity_document(
            booking_id=str(booking_id),
            caller_id=user.id,
            file_url=body.file_url,
            file_type=body.file_type,
            file_size=body.file_size,
            document_number=body.document_number,
        )
    except ReconciliationError as e:
        raise http_error(e) from e
