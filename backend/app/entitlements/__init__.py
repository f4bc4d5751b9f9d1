"""Entitlements domain: trial and subscription state, pricing and transitions.

The service module is imported directly (``from .service import ...``) since it
depends on the billing package.
"""

from .catalog import PLAN_CATALOG, PlanDefinition, PriceQuote, PriceTable
from .clock import Clock, FrozenClock, utcnow
from .engine import (
    SUBSCRIPTION_DURATION_DAYS,
    TRIAL_DURATION,
    activate_subscription,
    compute_access,
    reconcile,
    record_order,
    start_trial,
)
from .errors import (
    ConcurrentUpdateError,
    EntitlementError,
    GatewayError,
    PaymentVerificationFailed,
    PersistenceError,
    TrialAlreadyActive,
    TrialAlreadyUsed,
    TrialNotEligible,
    ValidationError,
)
from .models import (
    AccessView,
    ActivationResult,
    BillingCycle,
    EntitlementAuditEvent,
    EntitlementAuditEventType,
    EntitlementRecord,
    OrderResult,
    PaymentConfirmation,
    PaymentOrder,
    PaymentStatus,
    PendingOrder,
    PlanType,
    TimeWindow,
    TrialResult,
    VerifiedPayment,
)

__all__ = [
    "PLAN_CATALOG",
    "PlanDefinition",
    "PriceQuote",
    "PriceTable",
    "Clock",
    "FrozenClock",
    "utcnow",
    "SUBSCRIPTION_DURATION_DAYS",
    "TRIAL_DURATION",
    "activate_subscription",
    "compute_access",
    "reconcile",
    "record_order",
    "start_trial",
    "ConcurrentUpdateError",
    "EntitlementError",
    "GatewayError",
    "PaymentVerificationFailed",
    "PersistenceError",
    "TrialAlreadyActive",
    "TrialAlreadyUsed",
    "TrialNotEligible",
    "ValidationError",
    "AccessView",
    "ActivationResult",
    "BillingCycle",
    "EntitlementAuditEvent",
    "EntitlementAuditEventType",
    "EntitlementRecord",
    "OrderResult",
    "PaymentConfirmation",
    "PaymentOrder",
    "PaymentStatus",
    "PendingOrder",
    "PlanType",
    "TimeWindow",
    "TrialResult",
    "VerifiedPayment",
]
