"""Pure trial/subscription transitions and the access decision.

Every function takes the record and the current time and returns a new
record (or a value derived from it); nothing here performs I/O. Expiry is
always re-derived from the stored windows, so ``trial_active`` and
``has_paid_plan`` are only trusted after :func:`reconcile` has run against
``now``.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, Optional

from .errors import TrialAlreadyActive, TrialAlreadyUsed, TrialNotEligible
from .models import (
    AccessView,
    BillingCycle,
    EntitlementRecord,
    PaymentStatus,
    PendingOrder,
    PlanType,
    TimeWindow,
    TrialResult,
    VerifiedPayment,
)

TRIAL_DURATION = timedelta(days=7)

SUBSCRIPTION_DURATION_DAYS: Dict[BillingCycle, int] = {
    BillingCycle.MONTHLY: 30,
    BillingCycle.ANNUAL: 365,
}


def subscription_duration(cycle: BillingCycle) -> timedelta:
    return timedelta(days=SUBSCRIPTION_DURATION_DAYS[BillingCycle(cycle)])


def reconcile(record: EntitlementRecord, now: datetime) -> EntitlementRecord:
    """Clear flags whose backing window has ended.

    Applying this twice with the same ``now`` yields the same record.
    """

    update: Dict[str, object] = {}

    if record.has_paid_plan and (
        record.subscription_window is None or record.subscription_window.has_ended(now)
    ):
        update["has_paid_plan"] = False
        update["payment_status"] = PaymentStatus.PENDING

    if record.trial_active and (
        record.trial_window is None
        or record.trial_window.has_ended(now)
        or record.plan_type != PlanType.FREE
    ):
        update["trial_active"] = False

    if not update:
        return record
    return record.model_copy(update=update)


def start_trial(record: EntitlementRecord, now: datetime) -> TrialResult:
    """Open the one-time trial window.

    Preconditions are checked in order and the first failing one is
    returned as the error; the record in the result is then the reconciled
    input, never a partially started trial.
    """

    current = reconcile(record, now)

    if current.plan_type != PlanType.FREE:
        return TrialResult(record=current, error=TrialNotEligible("plan"))
    if current.has_paid_plan:
        return TrialResult(record=current, error=TrialNotEligible("paid"))
    if (
        current.trial_active
        and current.trial_window is not None
        and current.trial_window.is_open(now)
    ):
        return TrialResult(record=current, error=TrialAlreadyActive())
    if current.trial_window is not None:
        return TrialResult(record=current, error=TrialAlreadyUsed())

    started = current.model_copy(
        update={
            "trial_window": TimeWindow(start_at=now, end_at=now + TRIAL_DURATION),
            "trial_active": True,
            "plan_type": PlanType.FREE,
        }
    )
    return TrialResult(record=started)


def record_order(
    record: EntitlementRecord,
    order: PendingOrder,
    now: datetime,
) -> EntitlementRecord:
    """Remember the latest gateway order so verification can match it."""

    return reconcile(record, now).model_copy(update={"pending_order": order})


def activate_subscription(
    record: EntitlementRecord,
    payment: VerifiedPayment,
    *,
    plan: PlanType,
    cycle: BillingCycle,
    now: datetime,
    amount: int,
    currency: str,
) -> EntitlementRecord:
    """Grant the paid window for a verified payment.

    The paid plan supersedes any trial; the trial window itself is kept so
    the trial stays consumed.
    """

    if not isinstance(payment, VerifiedPayment):
        raise TypeError("activate_subscription requires a VerifiedPayment")

    cycle = BillingCycle(cycle)
    return record.model_copy(
        update={
            "subscription_window": TimeWindow(start_at=now, end_at=now + subscription_duration(cycle)),
            "plan_type": PlanType(plan),
            "has_paid_plan": True,
            "payment_status": PaymentStatus.COMPLETED,
            "billing_cycle": cycle,
            "trial_active": False,
            "pending_order": None,
            "last_order_id": payment.order_id,
            "last_payment_id": payment.payment_id,
            "last_payment_signature": payment.signature,
            "last_payment_amount": amount,
            "last_payment_currency": currency,
            "last_payment_at": now,
        }
    )


def _open_window(window: Optional[TimeWindow], now: datetime) -> bool:
    return window is not None and window.is_open(now)


def compute_access(record: EntitlementRecord, now: datetime) -> AccessView:
    current = reconcile(record, now)

    active_subscription = current.has_paid_plan and _open_window(current.subscription_window, now)
    active_trial = (
        current.plan_type == PlanType.FREE
        and current.trial_active
        and _open_window(current.trial_window, now)
    )

    return AccessView(
        has_access=active_subscription or active_trial,
        active_subscription=active_subscription,
        active_trial=active_trial,
        days_remaining=current.trial_window.days_remaining(now) if active_trial else 0,
        subscription_days_remaining=(
            current.subscription_window.days_remaining(now) if active_subscription else 0
        ),
        has_used_trial=current.has_used_trial,
        plan_type=current.plan_type,
        trial_window=current.trial_window,
        subscription_window=current.subscription_window,
        billing_cycle=current.billing_cycle,
        payment_status=current.payment_status,
        last_payment_at=current.last_payment_at,
    )
