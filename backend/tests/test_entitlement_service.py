from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from backend.app.billing import GatewayOrder, PaymentConfig, PaymentVerifier
from backend.app.entitlements import (
    BillingCycle,
    ConcurrentUpdateError,
    EntitlementAuditEvent,
    EntitlementAuditEventType,
    FrozenClock,
    GatewayError,
    PaymentConfirmation,
    PaymentStatus,
    PaymentVerificationFailed,
    PlanType,
    PriceTable,
    TrialAlreadyActive,
    TrialAlreadyUsed,
    TrialNotEligible,
    ValidationError,
    VerifiedPayment,
    activate_subscription,
    start_trial,
)
from backend.app.entitlements.repository import InMemoryEntitlementRepository
from backend.app.entitlements.service import EntitlementService, build_receipt

T0 = datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)
SECRET = "test-key-secret"
USER = "64f1c0ffee1234567890abcd"


class FakeGateway:
    key_id = "rzp_test_key"
    configured = True

    def __init__(self, *, error: Optional[GatewayError] = None) -> None:
        self.calls: List[Dict[str, object]] = []
        self._error = error

    def create_order(self, *, amount, currency, receipt, notes) -> GatewayOrder:
        self.calls.append({"amount": amount, "currency": currency, "receipt": receipt, "notes": notes})
        if self._error is not None:
            raise self._error
        return GatewayOrder(
            order_id=f"order_{len(self.calls)}",
            amount=amount,
            currency=currency,
            receipt=receipt,
            status="created",
        )


class RecordingEventLogger:
    def __init__(self) -> None:
        self.events: List[EntitlementAuditEvent] = []

    def log(self, event: EntitlementAuditEvent) -> None:
        self.events.append(event)

    def types(self) -> List[EntitlementAuditEventType]:
        return [event.event_type for event in self.events]


class InterleavingRepository(InMemoryEntitlementRepository):
    """Lets another writer commit just before the next save."""

    def __init__(self, interloper) -> None:
        super().__init__()
        self._interloper = interloper
        self.conflicts = 0

    def save(self, record, *, expected_version):
        if self._interloper is not None:
            interloper, self._interloper = self._interloper, None
            current = self.get(record.user_id)
            super().save(interloper(current), expected_version=current.version)
            self.conflicts += 1
        return super().save(record, expected_version=expected_version)


class AlwaysConflictingRepository(InMemoryEntitlementRepository):
    def __init__(self) -> None:
        super().__init__()
        self.attempts = 0

    def save(self, record, *, expected_version):
        self.attempts += 1
        raise ConcurrentUpdateError(record.user_id)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(T0)


@pytest.fixture
def events() -> RecordingEventLogger:
    return RecordingEventLogger()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def repository() -> InMemoryEntitlementRepository:
    return InMemoryEntitlementRepository()


def _build_service(repository, gateway, clock, events) -> EntitlementService:
    return EntitlementService(
        repository=repository,
        verifier=PaymentVerifier(SECRET),
        gateway=gateway,
        price_table=PriceTable(),
        payment_config=PaymentConfig(
            provider_name="razorpay",
            key_id="rzp_test_key",
            key_secret=SECRET,
            api_base_url="https://api.razorpay.com/v1",
            currency="INR",
            timeout_seconds=10.0,
        ),
        clock=clock,
        event_logger=events,
    )


@pytest.fixture
def service(repository, gateway, clock, events) -> EntitlementService:
    return _build_service(repository, gateway, clock, events)


def _confirmation(order_id: str, *, payment_id="pay_1", signature=None, plan="individual", cycle="monthly"):
    if signature is None:
        signature = PaymentVerifier(SECRET).sign(order_id, payment_id)
    return PaymentConfirmation(
        order_id=order_id,
        payment_id=payment_id,
        signature=signature,
        plan_type=plan,
        billing_cycle=cycle,
    )


def test_fresh_user_trial_flow(service, repository, events):
    result = service.start_trial(USER)

    assert result.ok
    stored = repository.get(USER)
    assert stored.trial_active is True
    assert stored.trial_window.end_at == T0 + timedelta(days=7)
    assert stored.version == 1

    view = service.get_access(USER)
    assert view.has_access is True
    assert view.days_remaining == 7
    assert events.types() == [EntitlementAuditEventType.TRIAL_STARTED]


def test_expired_trial_is_persisted_and_cannot_restart(service, repository, clock, events):
    service.start_trial(USER)
    clock.advance(days=8)

    view = service.get_access(USER)
    assert view.has_access is False
    assert view.has_used_trial is True
    assert repository.get(USER).trial_active is False
    assert EntitlementAuditEventType.TRIAL_EXPIRED in events.types()

    retry = service.start_trial(USER)
    assert isinstance(retry.error, TrialAlreadyUsed)
    assert retry.error.to_http_exception().status_code == 400


def test_second_trial_request_while_active(service):
    service.start_trial(USER)

    retry = service.start_trial(USER)

    assert isinstance(retry.error, TrialAlreadyActive)


def test_get_access_creates_missing_record(service, repository):
    view = service.get_access("brand-new")

    assert view.has_access is False
    assert view.plan_type == PlanType.FREE
    assert repository.get("brand-new") is not None


def test_ensure_record_is_idempotent(service, repository):
    first = service.ensure_record(USER)
    second = service.ensure_record(USER)

    assert first == second
    assert second.version == 0


@pytest.mark.parametrize(
    "plan, cycle, amount",
    [
        ("individual", "monthly", 166000),
        ("individual", "annual", 1792800),
        ("group", "monthly", 166000),
        ("group", "annual", 1593600),
    ],
)
def test_create_order_prices_in_minor_units(service, gateway, repository, plan, cycle, amount):
    result = service.create_payment_order(USER, plan, cycle, email="user@example.com")

    assert result.ok
    assert result.order.amount == amount
    assert result.order.currency == "INR"
    assert result.order.key_id == "rzp_test_key"

    call = gateway.calls[0]
    assert call["amount"] == amount
    assert call["notes"] == {
        "userId": USER,
        "planType": plan,
        "billingCycle": cycle,
        "email": "user@example.com",
    }
    pending = repository.get(USER).pending_order
    assert pending.order_id == result.order.order_id
    assert pending.amount == amount


def test_receipt_fits_gateway_limit():
    receipt = build_receipt(USER, T0)

    assert len(receipt) == 20
    assert receipt.startswith(USER[-12:])


@pytest.mark.parametrize(
    "plan, cycle, message",
    [
        (None, "monthly", "Missing planType or billingCycle in request body"),
        ("individual", None, "Missing planType or billingCycle in request body"),
        ("platinum", "monthly", "Invalid plan type"),
        ("free", "monthly", "Invalid plan type"),
        ("individual", "weekly", "Invalid billing cycle"),
    ],
)
def test_create_order_validation(service, gateway, plan, cycle, message):
    result = service.create_payment_order(USER, plan, cycle)

    assert isinstance(result.error, ValidationError)
    assert result.error.message == message
    assert gateway.calls == []


def test_custom_plan_requires_contact(service, gateway):
    result = service.create_payment_order(USER, "custom", "annual")

    assert isinstance(result.error, ValidationError)
    assert result.error.payload["requiresContact"] is True
    assert gateway.calls == []


def test_gateway_failure_leaves_record_untouched(repository, clock, events):
    failing = FakeGateway(error=GatewayError("Payment gateway not configured. Please contact support."))
    service = _build_service(repository, failing, clock, events)

    result = service.create_payment_order(USER, "individual", "monthly")

    assert isinstance(result.error, GatewayError)
    assert result.error.status_code == 503
    record = repository.get(USER)
    assert record is None or record.pending_order is None


def test_verified_payment_activates_subscription(service, repository, clock, events):
    service.start_trial(USER)
    clock.advance(days=2)
    order = service.create_payment_order(USER, "individual", "monthly").order

    result = service.verify_and_activate(USER, _confirmation(order.order_id))

    assert result.ok
    record = repository.get(USER)
    assert record.has_paid_plan is True
    assert record.trial_active is False
    assert record.plan_type == PlanType.INDIVIDUAL
    assert record.payment_status == PaymentStatus.COMPLETED
    assert record.subscription_window.end_at == clock() + timedelta(days=30)
    assert record.last_payment_amount == 166000
    assert record.pending_order is None
    assert events.types()[-1] == EntitlementAuditEventType.SUBSCRIPTION_ACTIVATED


def test_tampered_signature_changes_nothing(service, repository, events):
    order = service.create_payment_order(USER, "individual", "monthly").order
    before = repository.get(USER)
    good = PaymentVerifier(SECRET).sign(order.order_id, "pay_1")
    tampered = good[:-1] + ("0" if good[-1] != "0" else "1")

    result = service.verify_and_activate(USER, _confirmation(order.order_id, signature=tampered))

    assert isinstance(result.error, PaymentVerificationFailed)
    assert result.error.reason == "signature_mismatch"
    assert repository.get(USER) == before
    assert events.types()[-1] == EntitlementAuditEventType.PAYMENT_VERIFICATION_FAILED


def test_missing_payment_details(service):
    result = service.verify_and_activate(
        USER,
        PaymentConfirmation(order_id="order_1", payment_id=None, signature="abc", plan_type="individual", billing_cycle="monthly"),
    )

    assert isinstance(result.error, ValidationError)
    assert result.error.message == "Missing payment details"


def test_signed_payment_for_foreign_order_is_rejected(service, repository):
    service.create_payment_order(USER, "individual", "monthly")

    result = service.verify_and_activate(USER, _confirmation("order_someone_else"))

    assert isinstance(result.error, PaymentVerificationFailed)
    assert result.error.reason == "order_mismatch"
    assert repository.get(USER).has_paid_plan is False


def test_plan_switch_after_order_is_rejected(service, repository):
    order = service.create_payment_order(USER, "individual", "monthly").order

    result = service.verify_and_activate(USER, _confirmation(order.order_id, plan="group", cycle="annual"))

    assert result.error.reason == "order_mismatch"
    assert repository.get(USER).has_paid_plan is False


def test_replayed_payment_is_rejected(service, clock):
    order = service.create_payment_order(USER, "individual", "monthly").order
    confirmation = _confirmation(order.order_id)
    assert service.verify_and_activate(USER, confirmation).ok
    first_end = service.get_record(USER).subscription_window.end_at

    clock.advance(days=20)
    replay = service.verify_and_activate(USER, confirmation)

    assert replay.error.reason == "order_mismatch"
    assert service.get_record(USER).subscription_window.end_at == first_end


def test_monthly_subscription_lapses_after_thirty_days(service, repository, clock, events):
    order = service.create_payment_order(USER, "individual", "monthly").order
    service.verify_and_activate(USER, _confirmation(order.order_id))

    clock.advance(days=31)
    view = service.get_access(USER)

    assert view.has_access is False
    assert view.active_subscription is False
    stored = repository.get(USER)
    assert stored.has_paid_plan is False
    assert stored.payment_status == PaymentStatus.PENDING
    assert EntitlementAuditEventType.SUBSCRIPTION_EXPIRED in events.types()


@pytest.mark.parametrize("seed", range(10))
def test_no_activation_without_valid_signature(service, repository, seed):
    rng = random.Random(seed)
    order = service.create_payment_order(USER, "group", "annual").order

    for _ in range(25):
        signature = "".join(rng.choice("0123456789abcdef") for _ in range(64))
        payment_id = f"pay_{rng.getrandbits(40):x}"
        result = service.verify_and_activate(
            USER,
            _confirmation(order.order_id, payment_id=payment_id, signature=signature, plan="group", cycle="annual"),
        )
        assert not result.ok

    record = repository.get(USER)
    assert record.has_paid_plan is False
    assert record.subscription_window is None
    assert record.pending_order.order_id == order.order_id


def test_conflicting_write_recomputes_transition(clock, gateway, events):
    repository = InterleavingRepository(lambda current: start_trial(current, T0).record)
    service = _build_service(repository, gateway, clock, events)

    result = service.start_trial(USER)

    assert repository.conflicts == 1
    assert isinstance(result.error, TrialAlreadyActive)
    assert repository.get(USER).version == 1


def test_trial_start_racing_payment_keeps_paid_window(clock, gateway, events):
    def pay(current):
        return activate_subscription(
            current,
            VerifiedPayment(order_id="order_9", payment_id="pay_9", signature="sig"),
            plan=PlanType.INDIVIDUAL,
            cycle=BillingCycle.MONTHLY,
            now=T0,
            amount=166000,
            currency="INR",
        )

    repository = InterleavingRepository(pay)
    service = _build_service(repository, gateway, clock, events)

    result = service.start_trial(USER)

    assert repository.conflicts == 1
    assert isinstance(result.error, TrialNotEligible)
    assert result.error.reason == "plan"
    stored = repository.get(USER)
    assert stored.has_paid_plan is True
    assert stored.plan_type == PlanType.INDIVIDUAL
    assert stored.subscription_window.end_at == T0 + timedelta(days=30)
    assert stored.trial_window is None
    assert stored.version == 1
    assert EntitlementAuditEventType.TRIAL_STARTED not in events.types()


def test_persistent_conflicts_surface_after_retries(clock, gateway, events):
    repository = AlwaysConflictingRepository()
    service = _build_service(repository, gateway, clock, events)

    with pytest.raises(ConcurrentUpdateError) as excinfo:
        service.start_trial(USER)

    assert repository.attempts == 3
    assert excinfo.value.to_http_exception().status_code == 409


def test_gateway_status_reports_provider(service):
    assert service.gateway_status() == {"provider": "razorpay", "configured": True}
