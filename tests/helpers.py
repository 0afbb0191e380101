"""Shared test helper functions for roomly tests.

These are NOT fixtures - they are regular functions and fakes that both
conftest.py and individual test files import.
"""

from __future__ import annotations

import base64
import json
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import MagicMock

import jwt
from cryptography.hazmat.primitives.asymmetric import rsa

from roomly.config import Settings
from roomly.gateway.adapter import (
    GatewayOrder,
    GatewayPayment,
    GatewayRefund,
    GatewayRejectedError,
    GatewayUnavailableError,
)
from roomly.infra.hashing import hmac_sha256_hex, signatures_match

KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"

# Checksum-valid 12-digit identity-document numbers.
VALID_DOCUMENT_NUMBER = "234123412346"
OTHER_VALID_DOCUMENT_NUMBER = "555555555551"


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "gateway_key_id": "rzp_test_key",
        "gateway_key_secret": KEY_SECRET,
        "webhook_secret": WEBHOOK_SECRET,
        "gateway_api_base": "https://gateway.test/v1",
    }
    values.update(overrides)
    return Settings(**values)


def payment_signature(order_id: str, payment_id: str, secret: str = KEY_SECRET) -> str:
    return hmac_sha256_hex(secret, f"{order_id}|{payment_id}")


def webhook_signature(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac_sha256_hex(secret, body)


def captured_event_body(
    order_id: str,
    payment_id: str,
    amount_minor: int,
    captured_at: int | None = None,
    method: str = "upi",
) -> bytes:
    captured_at = captured_at or int(time.time())
    return json.dumps(
        {
            "entity": "event",
            "event": "payment.captured",
            "payload": {
                "payment": {
                    "entity": {
                        "id": payment_id,
                        "order_id": order_id,
                        "amount": amount_minor,
                        "currency": "INR",
                        "status": "captured",
                        "method": method,
                        "captured_at": captured_at,
                        "created_at": captured_at - 5,
                    }
                }
            },
            "created_at": captured_at,
        }
    ).encode()


def failed_event_body(order_id: str, payment_id: str, amount_minor: int) -> bytes:
    return json.dumps(
        {
            "entity": "event",
            "event": "payment.failed",
            "payload": {
                "payment": {
                    "entity": {
                        "id": payment_id,
                        "order_id": order_id,
                        "amount": amount_minor,
                        "status": "failed",
                        "error_code": "BAD_REQUEST_ERROR",
                        "error_description": "Payment was declined by the bank",
                    }
                }
            },
        }
    ).encode()


def order_paid_body(order_id: str, amount_paid_minor: int) -> bytes:
    return json.dumps(
        {
            "entity": "event",
            "event": "order.paid",
            "payload": {
                "order": {"entity": {"id": order_id, "amount_paid": amount_paid_minor}},
            },
        }
    ).encode()


@dataclass
class FakeGateway:
    """In-memory GatewayAdapter with real signature checks."""

    key_secret: str = KEY_SECRET
    webhook_secret: str = WEBHOOK_SECRET
    payments: dict[str, GatewayPayment] = field(default_factory=dict)
    orders: list[GatewayOrder] = field(default_factory=list)
    refunds: list[tuple[str, int | None, str | None]] = field(default_factory=list)
    fail_orders: bool = False
    fail_refunds: bool = False
    # refunds the gateway performs but whose reply times out
    lost_refund_replies: int = 0
    # distinguishes order ids across tests sharing one database
    namespace: str = ""

    def create_order(self, *, amount_minor, currency, receipt, metadata=None) -> GatewayOrder:
        if self.fail_orders:
            raise GatewayUnavailableError("gateway timeout on POST /orders")
        order = GatewayOrder(
            gateway_order_id=f"order_{self.namespace}{len(self.orders) + 1:014d}",
            amount_minor=amount_minor,
            currency=currency,
        )
        self.orders.append(order)
        return order

    def verify_payment_signature(self, *, order_id, payment_id, signature) -> bool:
        return signatures_match(payment_signature(order_id, payment_id, self.key_secret), signature)

    def verify_webhook_signature(self, *, payload, signature) -> bool:
        return signatures_match(webhook_signature(payload, self.webhook_secret), signature)

    def fetch_payment(self, payment_id) -> GatewayPayment:
        return self.payments[payment_id]

    def create_refund(self, payment_id, *, amount_minor=None, receipt=None) -> GatewayRefund:
        if self.fail_refunds:
            raise GatewayUnavailableError("gateway timeout on POST /refund")
        if any(refunded == payment_id for refunded, _, _ in self.refunds):
            raise GatewayRejectedError(400, "The payment has been fully refunded already")
        self.refunds.append((payment_id, amount_minor, receipt))
        if self.lost_refund_replies:
            self.lost_refund_replies -= 1
            raise GatewayUnavailableError("gateway timeout on POST /refund")
        return GatewayRefund(refund_id=f"rfnd_{len(self.refunds):014d}", amount_minor=amount_minor, receipt=receipt)

    def fetch_refunds(self, payment_id) -> list[GatewayRefund]:
        return [
            GatewayRefund(refund_id=f"rfnd_{n:014d}", amount_minor=amount, receipt=receipt)
            for n, (refunded, amount, receipt) in enumerate(self.refunds, start=1)
            if refunded == payment_id
        ]

    def capture(self, payment_id: str, order_id: str, amount_minor: int, *, status: str = "captured") -> None:
        self.payments[payment_id] = GatewayPayment(
            gateway_payment_id=payment_id,
            gateway_order_id=order_id,
            status=status,
            method="card",
            amount_captured_minor=amount_minor,
            captured_at=datetime.now(timezone.utc),
        )


class RecordingNotifier:
    """Notifier that records calls instead of delivering them."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, str, str | None]] = []

    def notify(self, user_id, kind, body, *, booking_id=None) -> None:
        self.calls.append((user_id, kind, body, booking_id))

    def kinds(self) -> list[str]:
        return [call[1] for call in self.calls]


@contextmanager
def fake_txn():
    """Stand-in for infra.db.txn() in unit tests: yields a MagicMock cursor."""
    yield MagicMock()


def make_payment(**overrides: Any) -> dict[str, Any]:
    now = datetime.now(timezone.utc)
    payment = {
        "id": "pay-uuid-1",
        "booking_id": "booking-uuid-1",
        "payer_id": "seeker-1",
        "gateway_order_id": "order_00000000000001",
        "gateway_payment_id": None,
        "receipt": "bookinguuid1_1",
        "amount_minor": 1_500_000,
        "currency": "INR",
        "status": "created",
        "payment_method": None,
        "transaction_date": None,
        "refund_id": None,
        "refund_amount_minor": None,
        "refund_date": None,
        "created_at": now,
    }
    payment.update(overrides)
    return payment


def make_completed_payment(days_ago: int = 10, **overrides: Any) -> dict[str, Any]:
    paid_at = datetime.now(timezone.utc) - timedelta(days=days_ago)
    values = {
        "status": "completed",
        "gateway_payment_id": "pay_00000000000001",
        "payment_method": "card",
        "transaction_date": paid_at,
        "created_at": paid_at,
    }
    values.update(overrides)
    return make_payment(**values)


def make_booking(**overrides: Any) -> dict[str, Any]:
    booking = {
        "id": "booking-uuid-1",
        "room_id": "room-1",
        "seeker_id": "seeker-1",
        "owner_id": "owner-1",
        "status": "pending",
        "payment": {
            "amount_minor": 1_500_000,
            "currency": "INR",
            "status": "pending",
            "gateway_order_id": None,
            "gateway_payment_id": None,
            "payment_date": None,
            "refund_date": None,
        },
        "identity_document": {
            "file_url": None,
            "verified": False,
            "verification_date": None,
            "number_last4": None,
        },
        "request_date": datetime.now(timezone.utc),
        "response_date": None,
        "message": None,
    }
    for key, value in overrides.items():
        if key in ("payment", "identity_document"):
            booking[key] = {**booking[key], **value}
        else:
            booking[key] = value
    return booking


def _generate_rsa_keypair():
    """Generate RSA key pair for test JWT signing."""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
    )
    return private_key, private_key.public_key()


def _create_jwks(public_key, kid: str = "test-key-1") -> dict:
    """Create JWKS from public key."""
    public_numbers = public_key.public_numbers()

    def int_to_base64(n: int) -> str:
        byte_length = (n.bit_length() + 7) // 8
        return base64.urlsafe_b64encode(n.to_bytes(byte_length, "big")).rstrip(b"=").decode()

    return {
        "keys": [
            {
                "kty": "RSA",
                "use": "sig",
                "alg": "RS256",
                "kid": kid,
                "n": int_to_base64(public_numbers.n),
                "e": int_to_base64(public_numbers.e),
            }
        ]
    }


def _create_token(
    private_key,
    kid: str = "test-key-1",
    sub: str = "user-123",
    iss: str = "https://auth.example.com",
    aud: str = "roomly-api",
    exp: int | None = None,
    azp: str | None = None,
) -> str:
    """Create signed JWT for testing."""
    now = int(time.time())
    payload = {
        "sub": sub,
        "iss": iss,
        "aud": aud,
        "exp": exp if exp is not None else now + 3600,
        "iat": now,
    }
    if azp:
        payload["azp"] = azp
    return jwt.encode(payload, private_key, algorithm="RS256", headers={"kid": kid})
