"""Thin wrapper around the Razorpay REST API.

Purpose:
- Keep gateway HTTP calls out of domain code (domain sees GatewayAdapter).
- Bound every call with a timeout; a timeout is "outcome unknown".
- Verify payment and webhook signatures with constant-time comparison.
- Never log secrets, signatures or full payloads (ids by prefix only).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import requests

from roomly.config import Settings
from roomly.gateway.adapter import (
    GatewayOrder,
    GatewayPayment,
    GatewayRefund,
    GatewayRejectedError,
    GatewayUnavailableError,
)
from roomly.infra.hashing import hmac_sha256_hex, signatures_match
from roomly.observability.logging import get_logger
from roomly.observability.redaction import id_prefix, safe_log_context

logger = get_logger(__name__)

# Razorpay limits receipts to 40 characters.
MAX_RECEIPT_LENGTH = 40


def _epoch_to_datetime(value: Any) -> datetime | None:
    if value in (None, "", 0):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


class RazorpayClient:
    """GatewayAdapter implementation for Razorpay.

    Usage:
        client = RazorpayClient(load_settings())
        order = client.create_order(amount_minor=1_500_000, currency="INR", receipt="rcpt_1")
        client.verify_payment_signature(order_id=order.gateway_order_id, payment_id=..., signature=...)
    """

    def __init__(self, settings: Settings) -> None:
        self._key_id = settings.gateway_key_id
        self._key_secret = settings.gateway_key_secret
        self._webhook_secret = settings.webhook_secret
        self._api_base = settings.gateway_api_base
        self._timeout = settings.gateway_timeout_seconds

    def _request(self, method: str, path: str, json_body: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self._api_base}{path}"
        try:
            resp = requests.request(
                method,
                url,
                json=json_body,
                auth=(self._key_id, self._key_secret),
                timeout=self._timeout,
            )
        except requests.Timeout as e:
            logger.warning(
                "gateway call timed out",
                extra={"extra_fields": safe_log_context(method=method, path=path.split("/")[1])},
            )
            raise GatewayUnavailableError(f"gateway timeout on {method} {path}") from e
        except requests.RequestException as e:
            logger.warning(
                "gateway call failed",
                extra={"extra_fields": safe_log_context(method=method, error_type=type(e).__name__)},
            )
            raise GatewayUnavailableError(f"gateway unreachable on {method} {path}") from e

        if resp.status_code in (401, 403) or resp.status_code >= 500:
            logger.error(
                "gateway unavailable",
                extra={"extra_fields": safe_log_context(method=method, status_code=resp.status_code)},
            )
            raise GatewayUnavailableError(f"gateway returned {resp.status_code}")

        if resp.status_code >= 400:
            description = _error_description(resp)
            logger.warning(
                "gateway rejected request",
                extra={
                    "extra_fields": safe_log_context(
                        method=method,
                        status_code=resp.status_code,
                        description=description,
                    )
                },
            )
            raise GatewayRejectedError(resp.status_code, description)

        try:
            return resp.json()
        except ValueError as e:
            raise GatewayUnavailableError("gateway returned a non-JSON body") from e

    def create_order(
        self,
        *,
        amount_minor: int,
        currency: str,
        receipt: str,
        metadata: dict[str, str] | None = None,
    ) -> GatewayOrder:
        """Create an order for amount_minor in currency.

        Raises:
            GatewayUnavailableError: Outcome unknown; safe to retry.
            GatewayRejectedError: The gateway refused the order.
        """
        body: dict[str, Any] = {
            "amount": amount_minor,
            "currency": currency.upper(),
            "receipt": receipt[:MAX_RECEIPT_LENGTH],
        }
        if metadata:
            body["notes"] = metadata

        order = self._request("POST", "/orders", body)

        logger.info(
            "gateway order created",
            extra={"extra_fields": safe_log_context(order_id_prefix=id_prefix(order.get("id"), 14))},
        )

        return GatewayOrder(
            gateway_order_id=order["id"],
            amount_minor=int(order.get("amount", amount_minor)),
            currency=order.get("currency", currency.upper()),
        )

    def verify_payment_signature(self, *, order_id: str, payment_id: str, signature: str) -> bool:
        """Check the checkout signature HMAC-SHA256("order_id|payment_id"). Never raises."""
        expected = hmac_sha256_hex(self._key_secret, f"{order_id}|{payment_id}")
        return signatures_match(expected, signature)

    def verify_webhook_signature(self, *, payload: bytes, signature: str | None) -> bool:
        """Check the webhook signature HMAC-SHA256(raw body). Never raises."""
        expected = hmac_sha256_hex(self._webhook_secret, payload)
        return signatures_match(expected, signature)

    def fetch_payment(self, payment_id: str) -> GatewayPayment:
        """Fetch authoritative payment details.

        Raises:
            GatewayUnavailableError: Gateway not reachable or malformed answer.
            GatewayRejectedError: Unknown payment id.
        """
        payment = self._request("GET", f"/payments/{payment_id}")
        try:
            captured_at = _epoch_to_datetime(payment.get("captured_at")) or _epoch_to_datetime(
                payment.get("created_at")
            )
            return GatewayPayment(
                gateway_payment_id=payment["id"],
                gateway_order_id=payment.get("order_id"),
                status=payment.get("status", ""),
                method=payment.get("method"),
                amount_captured_minor=int(payment.get("amount", 0)),
                captured_at=captured_at,
            )
        except (KeyError, TypeError, ValueError, OverflowError, OSError) as e:
            logger.warning(
                "gateway payment response malformed",
                extra={
                    "extra_fields": safe_log_context(
                        payment_id_prefix=id_prefix(payment_id, 12),
                        error_type=type(e).__name__,
                    )
                },
            )
            raise GatewayUnavailableError("gateway returned a malformed payment") from e

    def fetch_refunds(self, payment_id: str) -> list[GatewayRefund]:
        """List refunds the gateway already holds for a payment.

        Raises:
            GatewayUnavailableError: Gateway not reachable or malformed answer.
            GatewayRejectedError: Unknown payment id.
        """
        collection = self._request("GET", f"/payments/{payment_id}/refunds")
        try:
            return [
                GatewayRefund(
                    refund_id=item["id"],
                    amount_minor=int(item["amount"]),
                    receipt=item.get("receipt"),
                )
                for item in collection.get("items", [])
                if item.get("status") != "failed"
            ]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise GatewayUnavailableError("gateway returned malformed refunds") from e

    def create_refund(
        self,
        payment_id: str,
        *,
        amount_minor: int | None = None,
        receipt: str | None = None,
    ) -> GatewayRefund:
        """Refund a captured payment; omitting amount_minor refunds it in full."""
        body: dict[str, Any] = {}
        if amount_minor is not None:
            body["amount"] = amount_minor
        if receipt:
            body["receipt"] = receipt[:MAX_RECEIPT_LENGTH]

        refund = self._request("POST", f"/payments/{payment_id}/refund", body)

        logger.info(
            "gateway refund created",
            extra={
                "extra_fields": safe_log_context(
                    refund_id_prefix=id_prefix(refund.get("id"), 13),
                    amount_minor=refund.get("amount"),
                )
            },
        )

        return GatewayRefund(
            refund_id=refund["id"],
            amount_minor=refund.get("amount", amount_minor),
            receipt=refund.get("receipt", body.get("receipt")),
        )


def _error_description(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return f"http {resp.status_code}"
    error = data.get("error") if isinstance(data, dict) else None
    if not isinstance(error, dict):
        return f"http {resp.status_code}"
    return str(error.get("description") or error.get("code") or f"http {resp.status_code}")
