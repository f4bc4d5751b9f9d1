"""Randomized invariant checks over generated records and event sequences."""
from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from backend.app.billing import PaymentVerifier, compute_signature, verify_signature
from backend.app.entitlements import (
    BillingCycle,
    EntitlementRecord,
    PaymentStatus,
    PlanType,
    TimeWindow,
    VerifiedPayment,
    activate_subscription,
    compute_access,
    reconcile,
    start_trial,
)

EPOCH = datetime(2025, 1, 1, tzinfo=timezone.utc)
SEEDS = list(range(25))


def _random_moment(rng: random.Random) -> datetime:
    return EPOCH + timedelta(seconds=rng.randint(0, 400 * 24 * 3600))


def _random_window(rng: random.Random) -> Optional[TimeWindow]:
    if rng.random() < 0.3:
        return None
    start = _random_moment(rng)
    return TimeWindow(start_at=start, end_at=start + timedelta(days=rng.randint(1, 400)))


def _random_record(rng: random.Random) -> EntitlementRecord:
    return EntitlementRecord(
        user_id=f"user-{rng.randint(1, 1000)}",
        plan_type=rng.choice(list(PlanType)),
        trial_window=_random_window(rng),
        trial_active=rng.random() < 0.5,
        has_paid_plan=rng.random() < 0.5,
        subscription_window=_random_window(rng),
        billing_cycle=rng.choice([None, *BillingCycle]),
        payment_status=rng.choice([None, *PaymentStatus]),
    )


def _payment(rng: random.Random) -> VerifiedPayment:
    return VerifiedPayment(
        order_id=f"order_{rng.getrandbits(32):x}",
        payment_id=f"pay_{rng.getrandbits(32):x}",
        signature="0" * 64,
    )


@pytest.mark.parametrize("seed", SEEDS)
def test_reconcile_is_idempotent(seed):
    rng = random.Random(seed)
    for _ in range(40):
        record = _random_record(rng)
        now = _random_moment(rng)
        once = reconcile(record, now)
        assert reconcile(once, now) == once


@pytest.mark.parametrize("seed", SEEDS)
def test_access_matches_open_windows(seed):
    rng = random.Random(seed)
    for _ in range(40):
        record = _random_record(rng)
        now = _random_moment(rng)
        view = compute_access(record, now)

        subscription_open = (
            record.has_paid_plan
            and record.subscription_window is not None
            and record.subscription_window.end_at > now
        )
        trial_open = (
            record.plan_type == PlanType.FREE
            and record.trial_active
            and record.trial_window is not None
            and record.trial_window.end_at > now
        )
        assert view.has_access == (subscription_open or trial_open)
        assert view.active_subscription == subscription_open
        assert view.active_trial == trial_open


@pytest.mark.parametrize("seed", SEEDS)
def test_trial_is_consumed_at_most_once(seed):
    rng = random.Random(seed)
    record = EntitlementRecord.new("user-1")
    now = EPOCH
    starts = 0
    first_window = None

    for _ in range(60):
        now = now + timedelta(hours=rng.randint(1, 72))
        action = rng.choice(["trial", "trial", "pay", "check"])
        if action == "trial":
            result = start_trial(record, now)
            if result.ok:
                starts += 1
            record = result.record
        elif action == "pay":
            record = activate_subscription(
                record,
                _payment(rng),
                plan=rng.choice([PlanType.INDIVIDUAL, PlanType.GROUP]),
                cycle=rng.choice(list(BillingCycle)),
                now=now,
                amount=100,
                currency="INR",
            )
        else:
            record = reconcile(record, now)

        if record.trial_window is not None:
            if first_window is None:
                first_window = record.trial_window
            assert record.trial_window == first_window

    assert starts <= 1


@pytest.mark.parametrize("seed", SEEDS)
def test_activation_always_ends_trial(seed):
    rng = random.Random(seed)
    for _ in range(20):
        record = _random_record(rng)
        now = _random_moment(rng)
        activated = activate_subscription(
            record,
            _payment(rng),
            plan=PlanType.INDIVIDUAL,
            cycle=rng.choice(list(BillingCycle)),
            now=now,
            amount=100,
            currency="INR",
        )
        view = compute_access(activated, now)
        assert activated.trial_active is False
        assert view.active_trial is False
        assert view.active_subscription is True
        assert activated.trial_window == record.trial_window


@pytest.mark.parametrize("seed", SEEDS[:10])
def test_single_bit_signature_mutations_are_rejected(seed):
    rng = random.Random(seed)
    secret = f"secret-{rng.getrandbits(64):x}"
    order_id = f"order_{rng.getrandbits(48):x}"
    payment_id = f"pay_{rng.getrandbits(48):x}"
    signature = compute_signature(order_id, payment_id, secret)

    assert verify_signature(order_id, payment_id, signature, secret) is True

    raw = bytearray(signature.encode("ascii"))
    for _ in range(32):
        mutated = bytearray(raw)
        position = rng.randrange(len(mutated))
        mutated[position] ^= 1 << rng.randrange(7)
        candidate = mutated.decode("ascii")
        if candidate == signature:
            continue
        assert verify_signature(order_id, payment_id, candidate, secret) is False


@pytest.mark.parametrize("seed", SEEDS[:10])
def test_confirm_never_vouches_for_wrong_pairs(seed):
    rng = random.Random(seed)
    verifier = PaymentVerifier("shared-secret")
    order_id = f"order_{rng.getrandbits(40):x}"
    payment_id = f"pay_{rng.getrandbits(40):x}"
    signature = verifier.sign(order_id, payment_id)

    assert verifier.confirm(order_id, payment_id, signature) is not None
    assert verifier.confirm(order_id + "x", payment_id, signature) is None
    assert verifier.confirm(order_id, payment_id + "x", signature) is None
    assert PaymentVerifier("other-secret").confirm(order_id, payment_id, signature) is None
