"""Domain models for trial and subscription entitlements."""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .clock import ensure_aware

if TYPE_CHECKING:  # pragma: no cover
    from .errors import EntitlementError

_ONE_DAY = timedelta(days=1)


class PlanType(str, Enum):
    """Canonical identifiers for plans a user can be on."""

    FREE = "free"
    INDIVIDUAL = "individual"
    GROUP = "group"
    CUSTOM = "custom"


class BillingCycle(str, Enum):
    """Supported billing frequencies."""

    MONTHLY = "monthly"
    ANNUAL = "annual"


class PaymentStatus(str, Enum):
    """Status of the most recent payment applied to a record."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class TimeWindow(BaseModel):
    """Half-open access period ``[start_at, end_at)``."""

    start_at: datetime
    end_at: datetime

    model_config = ConfigDict(frozen=True)

    @field_validator("start_at", "end_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        return ensure_aware(value)

    def is_open(self, now: datetime) -> bool:
        return self.end_at > now

    def has_ended(self, now: datetime) -> bool:
        return self.end_at < now

    def days_remaining(self, now: datetime) -> int:
        """Whole days left, rounded up, or 0 once the window is closed."""

        if not self.is_open(now):
            return 0
        return math.ceil((self.end_at - now) / _ONE_DAY)


class PendingOrder(BaseModel):
    """Gateway order created for a user and awaiting payment confirmation."""

    order_id: str
    plan_type: PlanType
    billing_cycle: BillingCycle
    amount: int = Field(ge=0, description="Amount in minor currency units")
    currency: str = Field(min_length=3, max_length=3)
    created_at: datetime

    model_config = ConfigDict(frozen=True)


class EntitlementRecord(BaseModel):
    """Per-user trial and subscription state."""

    user_id: str
    plan_type: PlanType = PlanType.FREE
    trial_window: Optional[TimeWindow] = None
    trial_active: bool = False
    has_paid_plan: bool = False
    subscription_window: Optional[TimeWindow] = None
    billing_cycle: Optional[BillingCycle] = None
    payment_status: Optional[PaymentStatus] = None
    pending_order: Optional[PendingOrder] = None
    last_order_id: Optional[str] = None
    last_payment_id: Optional[str] = None
    last_payment_signature: Optional[str] = None
    last_payment_amount: Optional[int] = None
    last_payment_currency: Optional[str] = None
    last_payment_at: Optional[datetime] = None
    version: int = 0

    model_config = ConfigDict(frozen=True)

    @classmethod
    def new(cls, user_id: str) -> "EntitlementRecord":
        """Record as created at signup: free plan, nothing started."""

        return cls(user_id=user_id)

    @property
    def has_used_trial(self) -> bool:
        return self.trial_window is not None


@dataclass(frozen=True)
class VerifiedPayment:
    """Gateway payment whose signature has been checked.

    Instances are produced by :meth:`PaymentVerifier.confirm` and are the only
    accepted proof for activating a subscription.
    """

    order_id: str
    payment_id: str
    signature: str


class AccessView(BaseModel):
    """Access decision and supporting fields derived from a record."""

    has_access: bool
    active_subscription: bool
    active_trial: bool
    days_remaining: int
    subscription_days_remaining: int
    has_used_trial: bool
    plan_type: PlanType
    trial_window: Optional[TimeWindow] = None
    subscription_window: Optional[TimeWindow] = None
    billing_cycle: Optional[BillingCycle] = None
    payment_status: Optional[PaymentStatus] = None
    last_payment_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)


class EntitlementAuditEventType(str, Enum):
    """Audit event categories emitted by entitlement transitions."""

    TRIAL_STARTED = "trial_started"
    TRIAL_EXPIRED = "trial_expired"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    ORDER_CREATED = "order_created"
    SUBSCRIPTION_ACTIVATED = "subscription_activated"
    PAYMENT_VERIFICATION_FAILED = "payment_verification_failed"


class EntitlementAuditEvent(BaseModel):
    """Structured audit event for logging and alerting."""

    event_type: EntitlementAuditEventType
    user_id: str
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)


@dataclass(frozen=True)
class PaymentConfirmation:
    """Checkout callback fields submitted by the client after paying."""

    order_id: Optional[str]
    payment_id: Optional[str]
    signature: Optional[str]
    plan_type: Optional[str]
    billing_cycle: Optional[str]


@dataclass(frozen=True)
class TrialResult:
    """Outcome of a trial start attempt; ``record`` is always persistable."""

    record: EntitlementRecord
    error: Optional["EntitlementError"] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class PaymentOrder:
    """Order details handed back to the client to open the gateway checkout."""

    order_id: str
    amount: int
    currency: str
    key_id: str


@dataclass(frozen=True)
class OrderResult:
    order: Optional[PaymentOrder] = None
    error: Optional["EntitlementError"] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ActivationResult:
    record: Optional[EntitlementRecord] = None
    error: Optional["EntitlementError"] = None

    @property
    def ok(self) -> bool:
        return self.error is None
