"""API routes for the free trial and feature access checks."""
from __future__ import annotations

from functools import lru_cache
from typing import Any, Callable, Optional

from fastapi import APIRouter, Depends, Header

from ..schemas.entitlements import (
    AccessCheckResponse,
    TrialStartResponse,
    TrialStatusResponse,
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


router = APIRouter(prefix="/api/auth", tags=["trial"])


@router.post("/start-trial", response_model=TrialStartResponse)
def start_trial(*, current_user=Depends(_get_current_user)) -> TrialStartResponse:
    """Start the one-time 7-day trial for a free-plan user."""

    result = get_entitlement_service().start_trial(str(current_user.id))
    if result.error is not None:
        raise result.error.to_http_exception()
    return TrialStartResponse.from_record(result.record)


@router.get("/check-access", response_model=AccessCheckResponse)
@router.get("/check-gpt-access", response_model=AccessCheckResponse, include_in_schema=False)
def check_access(*, current_user=Depends(_get_current_user)) -> AccessCheckResponse:
    view = get_entitlement_service().get_access(str(current_user.id))
    return AccessCheckResponse.from_view(view)


@router.get("/trial-status", response_model=TrialStatusResponse)
def trial_status(*, current_user=Depends(_get_current_user)) -> TrialStatusResponse:
    view = get_entitlement_service().get_access(str(current_user.id))
    return TrialStatusResponse.from_view(view)
