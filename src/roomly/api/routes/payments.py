"""Payment endpoints: order creation, client verification, refunds, history.

Amounts are integer minor units (paise) in requests and responses.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from roomly.api.auth import CurrentUser, get_current_user
from roomly.api.deps import get_gateway, get_notifier, get_settings, http_error
from roomly.config import Settings
from roomly.domain import payments as payments_domain
from roomly.domain.errors import ReconciliationError
from roomly.domain.refunds import process_refund
from roomly.gateway.adapter import GatewayAdapter
from roomly.services.notifier import Notifier

router = APIRouter(prefix="/payments", tags=["payments"])

PAYMENT_STATUSES = ("created", "pending", "completed", "failed", "refunded")


# ── Schemas ───────────────────────────────────────────────


class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    booking_id: UUID = Field(alias="bookingId")


class VerifyPaymentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    order_id: str = Field(alias="orderId", min_length=1)
    payment_id: str = Field(alias="paymentId", min_length=1)
    signature: str = Field(min_length=1)


class RefundRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    booking_id: UUID = Field(alias="bookingId")
    amount: int | None = Field(default=None, gt=0)
    reason: str | None = Field(default=None, max_length=500)


# ── Routes ────────────────────────────────────────────────


@router.post("/order")
def create_order(
    body: CreateOrderRequest,
    user: CurrentUser = Depends(get_current_user),
    gateway: GatewayAdapter = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
) -> dict:
    """Create a gateway order for the caller's pending booking."""
    try:
        return payments_domain.create_order(
            booking_id=str(body.booking_id),
            caller_id=user.id,
            gateway=gateway,
            settings=settings,
        )
    except ReconciliationError as e:
        raise http_error(e) from e


@router.post("/verify")
def verify_payment(
    body: VerifyPaymentRequest,
    user: CurrentUser = Depends(get_current_user),
    gateway: GatewayAdapter = Depends(get_gateway),
    notifier: Notifier = Depends(get_notifier),
) -> dict:
    """Verify the checkout signature returned to the client after payment."""
    try:
        return payments_domain.verify_client_payment(
            caller_id=user.id,
            order_id=body.order_id,
            payment_id=body.payment_id,
            signature=body.signature,
            gateway=gateway,
            notifier=notifier,
        )
    except ReconciliationError as e:
        raise http_error(e) from e


@router.post("/refund")
def refund_payment(
    body: RefundRequest,
    user: CurrentUser = Depends(get_current_user),
    gateway: GatewayAdapter = Depends(get_gateway),
    notifier: Notifier = Depends(get_notifier),
    settings: Settings = Depends(get_settings),
) -> dict:
    """Refund a booking's completed payment (full amount when omitted)."""
    try:
        return process_refund(
            booking_id=str(body.booking_id),
            caller_id=user.id,
            gateway=gateway,
            notifier=notifier,
            settings=settings,
            amount_minor=body.amount,
            reason=body.reason,
        )
    except ReconciliationError as e:
        raise http_error(e) from e


@router.get("/history")
def payment_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=payments_domain.MAX_HISTORY_LIMIT),
    status: str | None = Query(None, pattern=f"^({'|'.join(PAYMENT_STATUSES)})$"),
    user: CurrentUser = Depends(get_current_user),
) -> dict:
    """The caller's own payments, newest first."""
    return payments_domain.list_payment_history(
        caller_id=user.id, page=page, limit=limit, status=status
    )
