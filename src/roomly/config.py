"""Process configuration, read once at startup.

A missing gateway credential is a deployment error, so load_settings()
raises before the application starts serving instead of failing requests
one by one.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

DEFAULT_API_BASE = "https://api.razorpay.com/v1"


class ConfigurationError(RuntimeError):
    """Required configuration is missing or malformed."""


@dataclass(frozen=True)
class Settings:
    """Gateway credentials and payment policy knobs."""

    gateway_key_id: str
    gateway_key_secret: str
    webhook_secret: str
    gateway_api_base: str = DEFAULT_API_BASE
    gateway_timeout_seconds: float = 10.0
    currency: str = "INR"
    refund_window_days: int = 30

    def __repr__(self) -> str:
        # secrets stay out of tracebacks and logs
        return (
            f"Settings(gateway_key_id={self.gateway_key_id!r}, "
            f"gateway_api_base={self.gateway_api_base!r}, currency={self.currency!r}, "
            f"refund_window_days={self.refund_window_days})"
        )


def _required(env: Mapping[str, str], name: str, missing: list[str]) -> str:
    value = env.get(name, "").strip()
    if not value:
        missing.append(name)
    return value


def _positive_number(env: Mapping[str, str], name: str, default: str, cast: type) -> float | int:
    raw = env.get(name, default).strip() or default
    try:
        value = cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {raw!r}")
    return value


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from environment variables.

    Args:
        env: Mapping to read instead of os.environ (tests).

    Raises:
        ConfigurationError: If a gateway secret is missing or a number is invalid.
    """
    if env is None:
        env = os.environ

    missing: list[str] = []
    key_id = _required(env, "RAZORPAY_KEY_ID", missing)
    key_secret = _required(env, "RAZORPAY_KEY_SECRET", missing)
    webhook_secret = _required(env, "RAZORPAY_WEBHOOK_SECRET", missing)
    if missing:
        raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")

    currency = env.get("PAYMENT_CURRENCY", "INR").strip().upper() or "INR"
    if len(currency) != 3 or not currency.isalpha():
        raise ConfigurationError(f"PAYMENT_CURRENCY must be an ISO 4217 code, got {currency!r}")

    return Settings(
        gateway_key_id=key_id,
        gateway_key_secret=key_secret,
        webhook_secret=webhook_secret,
        gateway_api_base=(env.get("RAZORPAY_API_BASE", "").strip() or DEFAULT_API_BASE).rstrip("/"),
        gateway_timeout_seconds=float(_positive_number(env, "GATEWAY_TIMEOUT_SECONDS", "10", float)),
        currency=currency,
        refund_window_days=int(_positive_number(env, "REFUND_WINDOW_DAYS", "30", int)),
    )
