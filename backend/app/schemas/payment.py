"""API schemas for payment endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..entitlements.models import (
    BillingCycle,
    EntitlementRecord,
    PaymentConfirmation,
    PaymentOrder,
    PaymentStatus,
    PlanType,
)


class CreateOrderRequest(BaseModel):
    # Left as plain strings so unknown values reach the price table's messages.
    plan_type: Optional[str] = Field(alias="planType", default=None)
    billing_cycle: Optional[str] = Field(alias="billingCycle", default=None)

    model_config = ConfigDict(populate_by_name=True)


class CreateOrderResponse(BaseModel):
    order_id: str = Field(alias="orderId")
    amount: int
    currency: str
    key_id: str = Field(alias="keyId")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_order(cls, order: PaymentOrder) -> "CreateOrderResponse":
        return cls(
            order_id=order.order_id,
            amount=order.amount,
            currency=order.currency,
            key_id=order.key_id,
        )


class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    plan_type: Optional[str] = Field(alias="planType", default=None)
    billing_cycle: Optional[str] = Field(alias="billingCycle", default=None)

    model_config = ConfigDict(populate_by_name=True)

    def to_confirmation(self) -> PaymentConfirmation:
        return PaymentConfirmation(
            order_id=self.razorpay_order_id,
            payment_id=self.razorpay_payment_id,
            signature=self.razorpay_signature,
            plan_type=self.plan_type,
            billing_cycle=self.billing_cycle,
        )


class VerifyPaymentResponse(BaseModel):
    msg: str = "Payment verified and subscription activated successfully"
    subscription_start_date: datetime = Field(alias="subscriptionStartDate")
    subscription_end_date: datetime = Field(alias="subscriptionEndDate")
    plan_type: PlanType = Field(alias="planType")
    billing_cycle: BillingCycle = Field(alias="billingCycle")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_record(cls, record: EntitlementRecord) -> "VerifyPaymentResponse":
        window = record.subscription_window
        if window is None or record.billing_cycle is None:
            raise ValueError("record has no active subscription")
        return cls(
            subscription_start_date=window.start_at,
            subscription_end_date=window.end_at,
            plan_type=record.plan_type,
            billing_cycle=record.billing_cycle,
        )


class SubscriptionStatusResponse(BaseModel):
    has_paid_plan: bool = Field(alias="hasPaidPlan")
    plan_type: PlanType = Field(alias="planType")
    subscription_start_date: Optional[datetime] = Field(alias="subscriptionStartDate", default=None)
    subscription_end_date: Optional[datetime] = Field(alias="subscriptionEndDate", default=None)
    billing_cycle: Optional[BillingCycle] = Field(alias="billingCycle", default=None)
    payment_status: Optional[PaymentStatus] = Field(alias="paymentStatus", default=None)
    last_payment_date: Optional[datetime] = Field(alias="lastPaymentDate", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_record(cls, record: EntitlementRecord) -> "SubscriptionStatusResponse":
        window = record.subscription_window
        return cls(
            has_paid_plan=record.has_paid_plan,
            plan_type=record.plan_type,
            subscription_start_date=window.start_at if window else None,
            subscription_end_date=window.end_at if window else None,
            billing_cycle=record.billing_cycle,
            payment_status=record.payment_status,
            last_payment_date=record.last_payment_at,
        )


class GatewayStatusResponse(BaseModel):
    message: str = "Payment route is working"
    provider: Optional[str] = None
    razorpay_configured: bool = Field(alias="razorpayConfigured")

    model_config = ConfigDict(populate_by_name=True)


__all__ = [
    "CreateOrderRequest",
    "CreateOrderResponse",
    "GatewayStatusResponse",
    "SubscriptionStatusResponse",
    "VerifyPaymentRequest",
    "VerifyPaymentResponse",
]
