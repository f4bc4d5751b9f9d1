"""Service applying entitlement transitions against the record store."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, NamedTuple, Optional, Protocol, Tuple

from ..billing.config import PaymentConfig
from ..billing.gateway import PaymentGateway
from ..billing.verifier import PaymentVerifier
from . import engine
from .catalog import PriceTable
from .clock import Clock, ensure_aware, utcnow
from .errors import (
    ConcurrentUpdateError,
    EntitlementError,
    GatewayError,
    PaymentVerificationFailed,
    ValidationError,
)
from .models import (
    AccessView,
    ActivationResult,
    EntitlementAuditEvent,
    EntitlementAuditEventType,
    EntitlementRecord,
    OrderResult,
    PaymentConfirmation,
    PaymentOrder,
    PendingOrder,
    TrialResult,
)
from .repository import EntitlementRepository

logger = logging.getLogger("entitlements")

Transition = Callable[
    [EntitlementRecord, datetime],
    Tuple[EntitlementRecord, Optional[EntitlementError]],
]


class EntitlementEventLogger(Protocol):
    """Captures structured entitlement audit events."""

    def log(self, event: EntitlementAuditEvent) -> None:
        ...


class _Applied(NamedTuple):
    record: EntitlementRecord
    error: Optional[EntitlementError]
    now: datetime


def build_receipt(user_id: str, now: datetime) -> str:
    """Short gateway receipt: user id tail plus millisecond timestamp tail."""

    millis = str(int(now.timestamp() * 1000))
    return f"{user_id[-12:]}{millis[-8:]}"


class EntitlementService:
    """Coordinates trial, order and activation flows for a single user record."""

    def __init__(
        self,
        repository: EntitlementRepository,
        verifier: PaymentVerifier,
        gateway: PaymentGateway,
        price_table: PriceTable,
        payment_config: Optional[PaymentConfig] = None,
        *,
        clock: Optional[Clock] = None,
        event_logger: Optional[EntitlementEventLogger] = None,
        max_write_attempts: int = 3,
    ) -> None:
        self._repository = repository
        self._verifier = verifier
        self._gateway = gateway
        self._price_table = price_table
        self._payment_config = payment_config
        self._clock = clock or utcnow
        self._event_logger = event_logger
        self._max_write_attempts = max(1, max_write_attempts)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def ensure_record(self, user_id: str) -> EntitlementRecord:
        """Return the stored record, creating the signup default if missing."""

        record = self._repository.get(user_id)
        if record is not None:
            return record
        return self._repository.create(EntitlementRecord.new(user_id))

    def get_record(self, user_id: str) -> EntitlementRecord:
        return self._apply(user_id, _reconcile_only).record

    def get_access(self, user_id: str) -> AccessView:
        applied = self._apply(user_id, _reconcile_only)
        return engine.compute_access(applied.record, applied.now)

    def gateway_status(self) -> Dict[str, object]:
        provider = self._payment_config.provider_name if self._payment_config else None
        return {"provider": provider, "configured": self._gateway.configured}

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def start_trial(self, user_id: str) -> TrialResult:
        def transition(record: EntitlementRecord, now: datetime):
            result = engine.start_trial(record, now)
            return result.record, result.error

        applied = self._apply(user_id, transition)
        if applied.error is None and applied.record.trial_window is not None:
            self._log(
                EntitlementAuditEventType.TRIAL_STARTED,
                user_id,
                {"trial_end_at": applied.record.trial_window.end_at.isoformat()},
            )
        return TrialResult(record=applied.record, error=applied.error)

    def create_payment_order(
        self,
        user_id: str,
        plan_type: Optional[str],
        billing_cycle: Optional[str],
        *,
        email: Optional[str] = None,
    ) -> OrderResult:
        try:
            quote = self._price_table.quote(plan_type, billing_cycle)
        except ValidationError as exc:
            return OrderResult(error=exc)

        now = self._now()
        notes = {
            "userId": user_id,
            "planType": quote.plan_type.value,
            "billingCycle": quote.billing_cycle.value,
        }
        if email:
            notes["email"] = email

        try:
            gateway_order = self._gateway.create_order(
                amount=quote.amount,
                currency=quote.currency,
                receipt=build_receipt(user_id, now),
                notes=notes,
            )
        except GatewayError as exc:
            logger.error(
                "Payment order creation failed",
                extra={"user_id": user_id, "plan_type": quote.plan_type.value, "reason": exc.message},
            )
            return OrderResult(error=exc)

        pending = PendingOrder(
            order_id=gateway_order.order_id,
            plan_type=quote.plan_type,
            billing_cycle=quote.billing_cycle,
            amount=gateway_order.amount,
            currency=gateway_order.currency,
            created_at=now,
        )
        self._apply(user_id, lambda record, at: (engine.record_order(record, pending, at), None))
        self._log(
            EntitlementAuditEventType.ORDER_CREATED,
            user_id,
            {
                "order_id": pending.order_id,
                "plan_type": pending.plan_type.value,
                "billing_cycle": pending.billing_cycle.value,
                "amount": str(pending.amount),
                "currency": pending.currency,
            },
        )
        return OrderResult(
            order=PaymentOrder(
                order_id=pending.order_id,
                amount=pending.amount,
                currency=pending.currency,
                key_id=self._gateway.key_id,
            )
        )

    def verify_and_activate(self, user_id: str, request: PaymentConfirmation) -> ActivationResult:
        if not (request.order_id and request.payment_id and request.signature):
            return ActivationResult(error=ValidationError("Missing payment details"))

        try:
            definition, cycle = self._price_table.resolve(request.plan_type, request.billing_cycle)
        except ValidationError as exc:
            return ActivationResult(error=exc)

        payment = self._verifier.confirm(request.order_id, request.payment_id, request.signature)
        if payment is None:
            error = PaymentVerificationFailed()
            self._log_verification_failure(user_id, request.order_id, error)
            return ActivationResult(error=error)

        def transition(record: EntitlementRecord, now: datetime):
            pending = record.pending_order
            if (
                pending is None
                or pending.order_id != payment.order_id
                or pending.plan_type != definition.plan_type
                or pending.billing_cycle != cycle
            ):
                return engine.reconcile(record, now), PaymentVerificationFailed("order_mismatch")
            activated = engine.activate_subscription(
                record,
                payment,
                plan=definition.plan_type,
                cycle=cycle,
                now=now,
                amount=pending.amount,
                currency=pending.currency,
            )
            return activated, None

        applied = self._apply(user_id, transition)
        if applied.error is not None:
            self._log_verification_failure(user_id, request.order_id, applied.error)
            return ActivationResult(error=applied.error)

        window = applied.record.subscription_window
        self._log(
            EntitlementAuditEventType.SUBSCRIPTION_ACTIVATED,
            user_id,
            {
                "order_id": payment.order_id,
                "payment_id": payment.payment_id,
                "plan_type": definition.plan_type.value,
                "billing_cycle": cycle.value,
                "subscription_end_at": window.end_at.isoformat() if window else "",
            },
        )
        return ActivationResult(record=applied.record)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _now(self) -> datetime:
        return ensure_aware(self._clock())

    def _apply(self, user_id: str, transition: Transition) -> _Applied:
        """Read, transition and conditionally write one record.

        A version conflict re-reads the record and recomputes the transition;
        the error value of the last attempt is returned alongside the record.
        """

        for attempt in range(1, self._max_write_attempts + 1):
            current = self.ensure_record(user_id)
            now = self._now()
            updated, error = transition(current, now)
            if updated == current:
                return _Applied(current, error, now)
            try:
                saved = self._repository.save(updated, expected_version=current.version)
            except ConcurrentUpdateError:
                logger.info(
                    "Entitlement record changed during update; retrying",
                    extra={"user_id": user_id, "attempt": attempt},
                )
                continue
            self._log_expiries(current, now)
            return _Applied(saved, error, now)

        logger.warning(
            "Giving up on entitlement update after %s attempts",
            self._max_write_attempts,
            extra={"user_id": user_id},
        )
        raise ConcurrentUpdateError(user_id)

    def _log_expiries(self, before: EntitlementRecord, now: datetime) -> None:
        after = engine.reconcile(before, now)
        if before.trial_active and not after.trial_active:
            self._log(EntitlementAuditEventType.TRIAL_EXPIRED, before.user_id, {})
        if before.has_paid_plan and not after.has_paid_plan:
            self._log(
                EntitlementAuditEventType.SUBSCRIPTION_EXPIRED,
                before.user_id,
                {"plan_type": before.plan_type.value},
            )

    def _log_verification_failure(
        self,
        user_id: str,
        order_id: Optional[str],
        error: EntitlementError,
    ) -> None:
        self._log(
            EntitlementAuditEventType.PAYMENT_VERIFICATION_FAILED,
            user_id,
            {"order_id": order_id or "", "reason": getattr(error, "reason", error.code)},
        )

    def _log(
        self,
        event_type: EntitlementAuditEventType,
        user_id: str,
        metadata: Dict[str, str],
    ) -> None:
        if self._event_logger is None:
            return
        event = EntitlementAuditEvent(
            event_type=event_type,
            user_id=user_id,
            metadata=metadata,
            occurred_at=self._now(),
        )
        self._event_logger.log(event)


def _reconcile_only(record: EntitlementRecord, now: datetime):
    return engine.reconcile(record, now), None


__all__ = [
    "EntitlementEventLogger",
    "EntitlementService",
    "Transition",
    "build_receipt",
]
