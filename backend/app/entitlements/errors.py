"""Error taxonomy for entitlement and payment operations."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


@dataclass(eq=False)
class EntitlementError(Exception):
    """Domain failure carried back to the API layer as a value."""

    code: str
    message: str
    status_code: int = status.HTTP_400_BAD_REQUEST
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "msg": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


class ValidationError(EntitlementError):
    def __init__(self, message: str, **detail: Any) -> None:
        super().__init__(code="validation_error", message=message, detail=detail or None)


_NOT_ELIGIBLE_MESSAGES = {
    "plan": "Trial is only available for the free plan. Please upgrade to a paid plan.",
    "paid": "You already have a paid plan. Trial is not available for paid users.",
}


class TrialNotEligible(EntitlementError):
    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(
            code="trial_not_eligible",
            message=_NOT_ELIGIBLE_MESSAGES.get(reason, "Trial is not available."),
            detail={"reason": reason},
        )


class TrialAlreadyActive(EntitlementError):
    def __init__(self) -> None:
        super().__init__(code="trial_already_active", message="You already have an active trial")


class TrialAlreadyUsed(EntitlementError):
    def __init__(self) -> None:
        super().__init__(
            code="trial_already_used",
            message="You have already used your free trial. Please upgrade to a paid plan to continue.",
        )


class PaymentVerificationFailed(EntitlementError):
    def __init__(self, reason: str = "signature_mismatch") -> None:
        self.reason = reason
        super().__init__(
            code="payment_verification_failed",
            message="Payment verification failed",
            detail={"reason": reason},
        )


class GatewayError(EntitlementError):
    def __init__(self, message: str = "Payment gateway unavailable") -> None:
        super().__init__(
            code="gateway_unavailable",
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )


class PersistenceError(EntitlementError):
    def __init__(self, message: str = "Unable to persist entitlement state") -> None:
        super().__init__(
            code="persistence_error",
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


class ConcurrentUpdateError(EntitlementError):
    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(
            code="concurrent_update",
            message="Entitlement record was modified concurrently; please retry",
            status_code=status.HTTP_409_CONFLICT,
        )


__all__ = [
    "ConcurrentUpdateError",
    "EntitlementError",
    "GatewayError",
    "PaymentVerificationFailed",
    "PersistenceError",
    "TrialAlreadyActive",
    "TrialAlreadyUsed",
    "TrialNotEligible",
    "ValidationError",
]
