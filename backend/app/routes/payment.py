"""API routes for plan checkout and payment confirmation."""
from __future__ import annotations

from functools import lru_cache
from typing import Any, Callable, Optional

from fastapi import APIRouter, Depends, Header

from ..schemas.payment import (
    CreateOrderRequest,
    CreateOrderResponse,
    GatewayStatusResponse,
    SubscriptionStatusResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from ..services.entitlements import get_entitlement_service


def _resolve_get_current_user() -> Callable[..., Any]:  # pragma: no cover - helper for lazy import
    try:
        from backend.main import get_current_user as resolved
    except ModuleNotFoundError as exc:
        if exc.name != "backend":
            raise
        from ...main import get_current_user as resolved  # type: ignore[no-redef]
    return resolved


@lru_cache(maxsize=1)
def _get_current_user_callable() -> Callable[..., Any]:
    return _resolve_get_current_user()


def _get_current_user(
    authorization: Optional[str] = Header(None),
    x_auth_token: Optional[str] = Header(None, alias="x-auth-token"),
) -> Any:
    resolved = _get_current_user_callable()
    return resolved(authorization=authorization, x_auth_token=x_auth_token)


router = APIRouter(prefix="/api/payment", tags=["payment"])


@router.post("/create-order", response_model=CreateOrderResponse)
def create_order(
    payload: CreateOrderRequest,
    *,
    current_user=Depends(_get_current_user),
) -> CreateOrderResponse:
    result = get_entitlement_service().create_payment_order(
        str(current_user.id),
        payload.plan_type,
        payload.billing_cycle,
        email=getattr(current_user, "email", None),
    )
    if result.error is not None:
        raise result.error.to_http_exception()
    return CreateOrderResponse.from_order(result.order)


@router.post("/verify-payment", response_model=VerifyPaymentResponse)
def verify_payment(
    payload: VerifyPaymentRequest,
    *,
    current_user=Depends(_get_current_user),
) -> VerifyPaymentResponse:
    """Check the gateway signature and activate the purchased plan."""

    result = get_entitlement_service().verify_and_activate(
        str(current_user.id),
        payload.to_confirmation(),
    )
    if result.error is not None:
        raise result.error.to_http_exception()
    return VerifyPaymentResponse.from_record(result.record)


@router.get("/subscription-status", response_model=SubscriptionStatusResponse)
def subscription_status(*, current_user=Depends(_get_current_user)) -> SubscriptionStatusResponse:
    record = get_entitlement_service().get_record(str(current_user.id))
    return SubscriptionStatusResponse.from_record(record)


@router.get("/status", response_model=GatewayStatusResponse)
@router.get("/test", response_model=GatewayStatusResponse, include_in_schema=False)
def gateway_status() -> GatewayStatusResponse:
    status = get_entitlement_service().gateway_status()
    return GatewayStatusResponse(
        provider=status["provider"],
        razorpay_configured=bool(status["configured"]),
    )
