"""API schemas for trial and access endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..entitlements.models import AccessView, BillingCycle, EntitlementRecord, PlanType


class TrialStartResponse(BaseModel):
    msg: str = "Free trial started successfully"
    trial_start_date: datetime = Field(alias="trialStartDate")
    trial_end_date: datetime = Field(alias="trialEndDate")
    is_trial_active: bool = Field(alias="isTrialActive")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_record(cls, record: EntitlementRecord) -> "TrialStartResponse":
        if record.trial_window is None:
            raise ValueError("record has no trial window")
        return cls(
            trial_start_date=record.trial_window.start_at,
            trial_end_date=record.trial_window.end_at,
            is_trial_active=record.trial_active,
        )


class AccessCheckResponse(BaseModel):
    has_access: bool = Field(alias="hasAccess")
    has_paid_plan: bool = Field(alias="hasPaidPlan")
    is_trial_active: bool = Field(alias="isTrialActive")
    trial_end_date: Optional[datetime] = Field(alias="trialEndDate", default=None)
    subscription_end_date: Optional[datetime] = Field(alias="subscriptionEndDate", default=None)
    plan_type: PlanType = Field(alias="planType")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_view(cls, view: AccessView) -> "AccessCheckResponse":
        return cls(
            has_access=view.has_access,
            has_paid_plan=view.active_subscription,
            is_trial_active=view.active_trial,
            trial_end_date=view.trial_window.end_at if view.trial_window else None,
            subscription_end_date=(
                view.subscription_window.end_at if view.subscription_window else None
            ),
            plan_type=view.plan_type,
        )


class TrialStatusResponse(BaseModel):
    trial_start_date: Optional[datetime] = Field(alias="trialStartDate", default=None)
    trial_end_date: Optional[datetime] = Field(alias="trialEndDate", default=None)
    is_trial_active: bool = Field(alias="isTrialActive")
    has_paid_plan: bool = Field(alias="hasPaidPlan")
    has_access: bool = Field(alias="hasAccess")
    plan_type: PlanType = Field(alias="planType")
    days_remaining: int = Field(alias="daysRemaining")
    subscription_days_remaining: int = Field(alias="subscriptionDaysRemaining")
    has_used_trial: bool = Field(alias="hasUsedTrial")
    subscription_start_date: Optional[datetime] = Field(alias="subscriptionStartDate", default=None)
    subscription_end_date: Optional[datetime] = Field(alias="subscriptionEndDate", default=None)
    billing_cycle: Optional[BillingCycle] = Field(alias="billingCycle", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_view(cls, view: AccessView) -> "TrialStatusResponse":
        trial = view.trial_window
        subscription = view.subscription_window
        return cls(
            trial_start_date=trial.start_at if trial else None,
            trial_end_date=trial.end_at if trial else None,
            is_trial_active=view.active_trial,
            has_paid_plan=view.active_subscription,
            has_access=view.has_access,
            plan_type=view.plan_type,
            days_remaining=view.days_remaining,
            subscription_days_remaining=view.subscription_days_remaining,
            has_used_trial=view.has_used_trial,
            subscription_start_date=subscription.start_at if subscription else None,
            subscription_end_date=subscription.end_at if subscription else None,
            billing_cycle=view.billing_cycle,
        )


class ProfileResponse(BaseModel):
    name: str
    email: str
    has_access: bool = Field(alias="hasAccess")
    days_remaining: int = Field(alias="daysRemaining")
    subscription_days_remaining: int = Field(alias="subscriptionDaysRemaining")
    has_used_trial: bool = Field(alias="hasUsedTrial")
    trial_start_date: Optional[datetime] = Field(alias="trialStartDate", default=None)
    trial_end_date: Optional[datetime] = Field(alias="trialEndDate", default=None)
    is_trial_active: bool = Field(alias="isTrialActive")
    has_paid_plan: bool = Field(alias="hasPaidPlan")
    plan_type: PlanType = Field(alias="planType")
    subscription_end_date: Optional[datetime] = Field(alias="subscriptionEndDate", default=None)
    billing_cycle: Optional[BillingCycle] = Field(alias="billingCycle", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_view(cls, *, name: str, email: str, view: AccessView) -> "ProfileResponse":
        trial = view.trial_window
        return cls(
            name=name,
            email=email,
            has_access=view.has_access,
            days_remaining=view.days_remaining,
            subscription_days_remaining=view.subscription_days_remaining,
            has_used_trial=view.has_used_trial,
            trial_start_date=trial.start_at if trial else None,
            trial_end_date=trial.end_at if trial else None,
            is_trial_active=view.active_trial,
            has_paid_plan=view.active_subscription,
            plan_type=view.plan_type,
            subscription_end_date=(
                view.subscription_window.end_at if view.subscription_window else None
            ),
            billing_cycle=view.billing_cycle,
        )


__all__ = [
    "AccessCheckResponse",
    "ProfileResponse",
    "TrialStartResponse",
    "TrialStatusResponse",
]
