"""Gateway adapter contract.

Domain code depends on GatewayAdapter only. RazorpayClient is the
production implementation; tests pass a fake with the same methods.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


class GatewayError(Exception):
    """A gateway call did not succeed."""


class GatewayUnavailableError(GatewayError):
    """Network failure, timeout, rejected credentials or gateway 5xx.

    The outcome of the call is unknown and must be treated as not succeeded.
    """


class GatewayRejectedError(GatewayError):
    """The gateway answered and refused the request (4xx other than auth)."""

    def __init__(self, status_code: int, description: str):
        self.status_code = status_code
        self.description = description
        super().__init__(f"gateway rejected request ({status_code}): {description}")


@dataclass(frozen=True)
class GatewayOrder:
    gateway_order_id: str
    amount_minor: int
    currency: str


@dataclass(frozen=True)
class GatewayPayment:
    """Authoritative capture details for one payment."""

    gateway_payment_id: str
    gateway_order_id: str | None
    status: str
    method: str | None
    amount_captured_minor: int
    captured_at: datetime | None

    @property
    def captured(self) -> bool:
        return self.status == "captured"


@dataclass(frozen=True)
class GatewayRefund:
    refund_id: str
    amount_minor: int | None
    receipt: str | None = None


class GatewayAdapter(Protocol):
    """Order, payment and refund operations of a payment gateway."""

    def create_order(
        self,
        *,
        amount_minor: int,
        currency: str,
        receipt: str,
        metadata: dict[str, str] | None = None,
    ) -> GatewayOrder: ...

    def verify_payment_signature(self, *, order_id: str, payment_id: str, signature: str) -> bool: ...

    def verify_webhook_signature(self, *, payload: bytes, signature: str | None) -> bool: ...

    def fetch_payment(self, payment_id: str) -> GatewayPayment: ...

    def create_refund(
        self,
        payment_id: str,
        *,
        amount_minor: int | None = None,
        receipt: str | None = None,
    ) -> GatewayRefund: ...

    def fetch_refunds(self, payment_id: str) -> list[GatewayRefund]: ...
