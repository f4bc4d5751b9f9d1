"""Payment gateway integrations used to open checkout orders."""
from __future__ import annotations

import base64
import json
import logging
from typing import Dict, Optional, Protocol
from urllib import error as urllib_error, request as urllib_request
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from ..entitlements.errors import GatewayError
from .config import PaymentConfig

logger = logging.getLogger("payments")

NOT_CONFIGURED_MESSAGE = "Payment gateway not configured. Please contact support."


class GatewayOrder(BaseModel):
    """Order as acknowledged by the gateway."""

    order_id: str
    amount: int = Field(ge=0)
    currency: str
    receipt: Optional[str] = None
    status: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class PaymentGateway(Protocol):
    """External payment processor integration."""

    @property
    def key_id(self) -> str:
        """Public key handed to the client checkout widget."""

    @property
    def configured(self) -> bool:
        ...

    def create_order(
        self,
        *,
        amount: int,
        currency: str,
        receipt: str,
        notes: Dict[str, str],
    ) -> GatewayOrder:
        """Create an order for ``amount`` minor units; raise ``GatewayError`` on failure."""


def _error_description(exc: urllib_error.HTTPError) -> Optional[str]:
    try:
        body = json.loads(exc.read().decode("utf-8"))
    except (OSError, ValueError):
        return None
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return None
    return error.get("description") or error.get("reason")


class RazorpayGateway:
    """Creates orders through the Razorpay REST API."""

    name = "razorpay"

    def __init__(self, config: PaymentConfig) -> None:
        self._config = config

    @property
    def key_id(self) -> str:
        return self._config.key_id or ""

    @property
    def configured(self) -> bool:
        return self._config.is_configured

    def _authorization(self) -> str:
        credentials = f"{self._config.key_id}:{self._config.key_secret}".encode("utf-8")
        return "Basic " + base64.b64encode(credentials).decode("ascii")

    def create_order(
        self,
        *,
        amount: int,
        currency: str,
        receipt: str,
        notes: Dict[str, str],
    ) -> GatewayOrder:
        if not self.configured:
            logger.error("Razorpay credentials missing; cannot create order")
            raise GatewayError(NOT_CONFIGURED_MESSAGE)

        body = json.dumps(
            {"amount": amount, "currency": currency, "receipt": receipt, "notes": notes}
        ).encode("utf-8")
        http_request = urllib_request.Request(
            f"{self._config.api_base_url}/orders",
            data=body,
            method="POST",
            headers={
                "Content-Type": "application/json",
                "Authorization": self._authorization(),
            },
        )
        try:
            with urllib_request.urlopen(http_request, timeout=self._config.timeout_seconds) as response:
                payload = json.loads(response.read().decode("utf-8"))
        except urllib_error.HTTPError as exc:
            description = _error_description(exc)
            logger.warning(
                "Razorpay order creation rejected",
                extra={"gateway_status": exc.code, "gateway_error": description, "receipt": receipt},
            )
            raise GatewayError(description or "Failed to create payment order") from exc
        except (OSError, ValueError) as exc:
            logger.warning(
                "Razorpay order creation failed",
                extra={"gateway_error": str(exc), "receipt": receipt},
            )
            raise GatewayError("Failed to create payment order") from exc

        order_id = payload.get("id") if isinstance(payload, dict) else None
        if not order_id:
            raise GatewayError("Payment gateway returned an invalid order")

        return GatewayOrder(
            order_id=str(order_id),
            amount=int(payload.get("amount", amount)),
            currency=str(payload.get("currency", currency)),
            receipt=payload.get("receipt"),
            status=payload.get("status"),
        )


class SandboxPaymentGateway:
    """Local gateway that fabricates order ids; pair it with a test key secret."""

    name = "sandbox"

    def __init__(self, config: Optional[PaymentConfig] = None) -> None:
        self._key_id = (config.key_id if config else None) or "rzp_test_sandbox"

    @property
    def key_id(self) -> str:
        return self._key_id

    @property
    def configured(self) -> bool:
        return True

    def create_order(
        self,
        *,
        amount: int,
        currency: str,
        receipt: str,
        notes: Dict[str, str],
    ) -> GatewayOrder:
        return GatewayOrder(
            order_id=f"order_{uuid4().hex[:14]}",
            amount=amount,
            currency=currency,
            receipt=receipt,
            status="created",
        )


def create_payment_gateway(config: PaymentConfig) -> PaymentGateway:
    provider = (config.provider_name or "razorpay").strip().lower()
    if provider == "sandbox":
        return SandboxPaymentGateway(config)
    return RazorpayGateway(config)


__all__ = [
    "GatewayOrder",
    "PaymentGateway",
    "RazorpayGateway",
    "SandboxPaymentGateway",
    "create_payment_gateway",
]
