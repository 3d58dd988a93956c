"""
Payment orders and verification.

Gateway calls go to an in-memory fake; signatures are real HMACs.
"""
import threading

import pytest
from unittest.mock import patch
from sqlalchemy import func, select

from voicepost.core.database import credit_grants, get_session_factory, payment_history
from voicepost.core.errors import (
    ConflictError,
    ExternalServiceError,
    RecordNotFound,
    SignatureMismatchError,
    ValidationError,
)
from voicepost.features.billing import service as billing_service
from voicepost.features.billing.plans import PAYMENT_PLANS
from voicepost.features.credits.ledger import get_available_credits
from voicepost.models.payment import PaymentStatus
from voicepost.tests.mocks import FakeGateway


def _payment_count(db):
    return db.execute(select(func.count()).select_from(payment_history)).scalar()


def _grant_count(db, user_id):
    return db.execute(
        select(func.count()).select_from(credit_grants).where(credit_grants.c.user_id == user_id)
    ).scalar()


def test_order_then_verify_credits_thirty(db, fake_gateway):
    user_id = "user_buyer"
    assert get_available_credits(db, user_id) == 0

    order = billing_service.create_order(db, user_id, "solo-global", gateway=fake_gateway)
    assert order.credits == 30
    assert order.currency == "INR"
    assert order.amount == 99900
    assert PAYMENT_PLANS["solo-global"].display_amount == 999
    assert order.public_key == fake_gateway.public_key

    # Pending order grants nothing
    assert get_available_credits(db, user_id) == 0
    record = billing_service.get_payment(db, user_id, order.order_id)
    assert record.status == PaymentStatus.PENDING

    signature = FakeGateway.sign(order.order_id, "pay_1")
    result = billing_service.verify_payment(db, user_id, order.order_id, "pay_1", signature, gateway=fake_gateway)

    assert result.credits_added == 30
    assert result.amount_paid == 99900
    assert result.currency == "INR"
    assert result.replayed is False
    assert get_available_credits(db, user_id) == 30

    settled = billing_service.get_payment(db, user_id, order.order_id)
    assert settled.status == PaymentStatus.SUCCESS
    assert settled.gateway_payment_id == "pay_1"


def test_plan_defaults_to_solo_global(db, fake_gateway):
    order = billing_service.create_order(db, "user_a", None, gateway=fake_gateway)
    assert order.plan_id == "solo-global"
    notes = fake_gateway.orders[0]["notes"]
    assert notes["plan_id"] == "solo-global"
    assert notes["user_id"] == "user_a"


@pytest.mark.parametrize("plan_id", ["gold", "free-tier", "SOLO-GLOBAL"])
def test_unknown_or_free_plan_is_rejected(db, fake_gateway, plan_id):
    with pytest.raises(ValidationError):
        billing_service.create_order(db, "user_a", plan_id, gateway=fake_gateway)
    assert fake_gateway.orders == []
    assert _payment_count(db) == 0


def test_gateway_failure_leaves_no_record(db):
    with pytest.raises(ExternalServiceError):
        billing_service.create_order(db, "user_a", "solo-in", gateway=FakeGateway(fail=True))
    assert _payment_count(db) == 0


def test_duplicate_receipt_is_a_hard_error(db, fake_gateway):
    with patch.object(billing_service, "generate_receipt_id", return_value="receipt_user_a_1_dead"):
        billing_service.create_order(db, "user_a", "solo-in", gateway=fake_gateway)
        with pytest.raises(ConflictError):
            billing_service.create_order(db, "user_a", "solo-in", gateway=fake_gateway)
    assert _payment_count(db) == 1


def test_receipt_id_format():
    receipt = billing_service.generate_receipt_id("user_1234567890")
    assert receipt.startswith("receipt_user_123_")
    millis, suffix = receipt.rsplit("_", 2)[1:]
    assert millis.isdigit()
    assert len(suffix) == 8


def test_verify_twice_credits_exactly_once(db, fake_gateway):
    order = billing_service.create_order(db, "user_a", "startup-in", gateway=fake_gateway)
    signature = FakeGateway.sign(order.order_id, "pay_9")

    first = billing_service.verify_payment(db, "user_a", order.order_id, "pay_9", signature, gateway=fake_gateway)
    second = billing_service.verify_payment(db, "user_a", order.order_id, "pay_9", signature, gateway=fake_gateway)

    assert first.credits_added == 60
    assert second.credits_added == 60
    assert second.replayed is True
    assert get_available_credits(db, "user_a") == 60
    assert _grant_count(db, "user_a") == 1


def test_concurrent_verifications_credit_exactly_once(db, fake_gateway):
    order = billing_service.create_order(db, "user_rush", "solo-global", gateway=fake_gateway)
    signature = FakeGateway.sign(order.order_id, "pay_rush")

    factory = get_session_factory()
    barrier = threading.Barrier(4)
    results = []
    errors = []

    def worker():
        session = factory()
        try:
            barrier.wait()
            results.append(
                billing_service.verify_payment(
                    session, "user_rush", order.order_id, "pay_rush", signature, gateway=fake_gateway
                )
            )
        except Exception as e:  # surfaced through `errors`
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert not errors
    assert sorted(r.replayed for r in results) == [False, True, True, True]
    assert all(r.credits_added == 30 for r in results)
    assert get_available_credits(db, "user_rush") == 30
    assert _grant_count(db, "user_rush") == 1


def _flip_bit(signature: str, index: int) -> str:
    char = signature[index]
    flipped = format(int(char, 16) ^ 1, "x")
    return signature[:index] + flipped + signature[index + 1:]


@pytest.mark.parametrize("index", [0, 7, 31, 63])
def test_tampered_signature_changes_nothing(db, fake_gateway, caplog, index):
    order = billing_service.create_order(db, "user_a", "solo-in", gateway=fake_gateway)
    bad = _flip_bit(FakeGateway.sign(order.order_id, "pay_1"), index)

    with pytest.raises(SignatureMismatchError):
        billing_service.verify_payment(db, "user_a", order.order_id, "pay_1", bad, gateway=fake_gateway)

    assert get_available_credits(db, "user_a") == 0
    assert billing_service.get_payment(db, "user_a", order.order_id).status == PaymentStatus.PENDING
    assert any(getattr(r, "event_type", None) == "payment.signature_mismatch" for r in caplog.records)


def test_signature_is_bound_to_payment_id(db, fake_gateway):
    order = billing_service.create_order(db, "user_a", "solo-in", gateway=fake_gateway)
    signature = FakeGateway.sign(order.order_id, "pay_1")
    with pytest.raises(SignatureMismatchError):
        billing_service.verify_payment(db, "user_a", order.order_id, "pay_2", signature, gateway=fake_gateway)


def test_verify_other_users_order_is_not_found(db, fake_gateway):
    order = billing_service.create_order(db, "user_a", "solo-in", gateway=fake_gateway)
    signature = FakeGateway.sign(order.order_id, "pay_1")
    with pytest.raises(RecordNotFound):
        billing_service.verify_payment(db, "user_b", order.order_id, "pay_1", signature, gateway=fake_gateway)
    assert get_available_credits(db, "user_b") == 0


@pytest.mark.parametrize("missing", ["order", "payment", "signature"])
def test_missing_verification_fields(db, fake_gateway, missing):
    fields = {"order": "order_x", "payment": "pay_x", "signature": "abc"}
    fields[missing] = ""
    with pytest.raises(ValidationError):
        billing_service.verify_payment(
            db, "user_a", fields["order"], fields["payment"], fields["signature"], gateway=fake_gateway
        )


def test_failed_payment_can_still_settle_on_gateway_retry(db, fake_gateway):
    order = billing_service.create_order(db, "user_a", "solo-in", gateway=fake_gateway)

    failed = billing_service.mark_payment_failed(db, "user_a", order.order_id, "card declined")
    assert failed.status == PaymentStatus.FAILED
    assert failed.failure_reason == "card declined"

    signature = FakeGateway.sign(order.order_id, "pay_retry")
    result = billing_service.verify_payment(db, "user_a", order.order_id, "pay_retry", signature, gateway=fake_gateway)
    assert result.credits_added == 30
    record = billing_service.get_payment(db, "user_a", order.order_id)
    assert record.status == PaymentStatus.SUCCESS
    assert record.failure_reason is None


def test_mark_failed_never_touches_settled_payment(db, fake_gateway):
    order = billing_service.create_order(db, "user_a", "solo-in", gateway=fake_gateway)
    signature = FakeGateway.sign(order.order_id, "pay_1")
    billing_service.verify_payment(db, "user_a", order.order_id, "pay_1", signature, gateway=fake_gateway)

    record = billing_service.mark_payment_failed(db, "user_a", order.order_id, "late failure")
    assert record.status == PaymentStatus.SUCCESS
    assert get_available_credits(db, "user_a") == 30


def test_grant_failure_rolls_back_status_flip(db, fake_gateway):
    order = billing_service.create_order(db, "user_a", "solo-in", gateway=fake_gateway)
    signature = FakeGateway.sign(order.order_id, "pay_1")

    with patch.object(billing_service, "add_credits", side_effect=RuntimeError("ledger down")):
        with pytest.raises(RuntimeError):
            billing_service.verify_payment(db, "user_a", order.order_id, "pay_1", signature, gateway=fake_gateway)

    assert billing_service.get_payment(db, "user_a", order.order_id).status == PaymentStatus.PENDING
    assert get_available_credits(db, "user_a") == 0
