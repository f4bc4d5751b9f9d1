"""Payment gateway configuration helpers."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional


@dataclass(frozen=True)
class PaymentConfig:
    """Credentials and pricing settings for the payment gateway."""

    provider_name: str
    key_id: Optional[str]
    key_secret: Optional[str]
    api_base_url: str
    currency: str
    timeout_seconds: float

    @property
    def is_configured(self) -> bool:
        return bool(self.key_id and self.key_secret)


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def load_payment_config(env: Optional[Mapping[str, str]] = None) -> PaymentConfig:
    """Load :class:`PaymentConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    provider_name = (env_mapping.get("PAYMENT_GATEWAY") or "razorpay").strip().lower() or "razorpay"
    api_base_url = env_mapping.get("RAZORPAY_API_BASE", "https://api.razorpay.com/v1")
    currency = (env_mapping.get("PAYMENT_CURRENCY") or "INR").strip().upper()
    timeout_seconds = max(0.5, _to_float(env_mapping.get("PAYMENT_GATEWAY_TIMEOUT"), default=10.0))

    return PaymentConfig(
        provider_name=provider_name,
        key_id=env_mapping.get("RAZORPAY_KEY_ID") or None,
        key_secret=env_mapping.get("RAZORPAY_KEY_SECRET") or None,
        api_base_url=api_base_url.rstrip("/"),
        currency=currency,
        timeout_seconds=timeout_seconds,
    )


__all__ = ["PaymentConfig", "load_payment_config"]
