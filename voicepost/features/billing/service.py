"""
Payment service orchestrator.

Coordinates:
- Order creation (plan lookup, receipt id, remote order, pending record)
- Verification (signature, exactly-once settlement, credit grant)
- Client-reported failures

All Razorpay-specific code is in razorpay_provider.py.
"""
import logging
import secrets
import time
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from voicepost.core.config import Settings, settings
from voicepost.core.database import payment_history, utcnow
from voicepost.core.errors import (
    ConflictError,
    ExternalServiceError,
    RecordNotFound,
    SignatureMismatchError,
    ValidationError,
)
from voicepost.core.logging import log_event
from voicepost.features.billing.plans import DEFAULT_PLAN_ID, get_plan
from voicepost.features.billing.provider import PaymentGateway, PaymentGatewayError
from voicepost.features.billing.razorpay_provider import RazorpayGateway
from voicepost.features.credits.ledger import add_credits
from voicepost.models.credit import CreditSource
from voicepost.models.payment import OrderDetails, PaymentRecord, PaymentStatus, VerificationResult

logger = logging.getLogger("voicepost.billing")

RECENT_PAYMENTS_LIMIT = 10


def get_gateway(settings_obj: Optional[Settings] = None) -> PaymentGateway:
    """Build the gateway from configuration. Raises ExternalServiceError when unconfigured."""
    cfg = settings_obj or settings
    try:
        return RazorpayGateway.from_settings(cfg)
    except PaymentGatewayError as e:
        raise ExternalServiceError(str(e), code="payment_gateway_unconfigured", status_code=503)


def generate_receipt_id(user_id: str) -> str:
    return f"receipt_{user_id[:8]}_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def _row_to_record(row) -> PaymentRecord:
    return PaymentRecord(
        id=row.id,
        user_id=row.user_id,
        plan_id=row.plan_id,
        amount=row.amount,
        currency=row.currency,
        credits_purchased=row.credits_purchased,
        transaction_id=row.transaction_id,
        gateway_order_id=row.gateway_order_id,
        gateway_payment_id=row.gateway_payment_id,
        status=PaymentStatus(row.status),
        failure_reason=row.failure_reason,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def get_payment(db: Session, user_id: str, gateway_order_id: str) -> Optional[PaymentRecord]:
    row = db.execute(
        select(payment_history).where(
            payment_history.c.gateway_order_id == gateway_order_id,
            payment_history.c.user_id == user_id,
        )
    ).first()
    return _row_to_record(row) if row else None


def list_recent_payments(db: Session, user_id: str, limit: int = RECENT_PAYMENTS_LIMIT) -> List[PaymentRecord]:
    rows = db.execute(
        select(payment_history)
        .where(payment_history.c.user_id == user_id)
        .order_by(payment_history.c.created_at.desc())
        .limit(limit)
    ).fetchall()
    return [_row_to_record(r) for r in rows]


def create_order(
    db: Session,
    user_id: str,
    plan_id: Optional[str] = None,
    gateway: Optional[PaymentGateway] = None,
) -> OrderDetails:
    """
    Create a gateway order for a plan and persist it as pending.

    The pending row is committed before the order details are returned, so a
    verification that races the HTTP response still finds it. A gateway
    failure leaves no local record.
    """
    plan = get_plan(plan_id or DEFAULT_PLAN_ID)
    gateway = gateway or get_gateway()
    receipt = generate_receipt_id(user_id)

    try:
        order = gateway.create_order(
            amount=plan.amount,
            currency=plan.currency,
            receipt=receipt,
            notes={"user_id": user_id, "plan_id": plan.plan_id, "credits": str(plan.credits)},
        )
    except PaymentGatewayError as e:
        log_event(
            "warning",
            "payment.order_failed",
            user_id=user_id,
            event_type="payment.order_failed",
            error_code="external_service_error",
            extra={"plan_id": plan.plan_id, "reason": str(e)},
        )
        raise ExternalServiceError(f"Failed to create payment order: {e}")

    now = utcnow()
    try:
        db.execute(
            insert(payment_history).values(
                id=str(uuid4()),
                user_id=user_id,
                amount=plan.amount,
                currency=plan.currency,
                credits_purchased=plan.credits,
                plan_id=plan.plan_id,
                transaction_id=receipt,
                gateway_order_id=order.order_id,
                status=PaymentStatus.PENDING.value,
                created_at=now,
                updated_at=now,
            )
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Duplicate payment receipt or order id")

    log_event(
        "info",
        "payment.order_created",
        user_id=user_id,
        event_type="payment.order_created",
        extra={"plan_id": plan.plan_id, "gateway_order_id": order.order_id, "amount": plan.amount},
    )
    return OrderDetails(
        order_id=order.order_id,
        amount=plan.amount,
        currency=plan.currency,
        credits=plan.credits,
        public_key=gateway.public_key,
        plan_id=plan.plan_id,
    )


def _replay(record: PaymentRecord) -> VerificationResult:
    return VerificationResult(
        credits_added=record.credits_purchased,
        amount_paid=record.amount,
        currency=record.currency,
        gateway_order_id=record.gateway_order_id,
        replayed=True,
    )


def verify_payment(
    db: Session,
    user_id: str,
    gateway_order_id: str,
    gateway_payment_id: str,
    signature: str,
    gateway: Optional[PaymentGateway] = None,
) -> VerificationResult:
    """
    Settle a payment exactly once.

    Credits always come from the stored record, never from the request. The
    status flip is a compare-and-set from pending/failed to success, and the
    grant insert shares its transaction, so a lost race or a failed insert
    leaves nothing half-applied.
    """
    if not gateway_order_id or not gateway_payment_id or not signature:
        raise ValidationError("Missing required payment verification fields")

    gateway = gateway or get_gateway()
    if not gateway.verify_signature(gateway_order_id, gateway_payment_id, signature):
        log_event(
            "warning",
            "payment.signature_mismatch",
            user_id=user_id,
            event_type="payment.signature_mismatch",
            error_code="invalid_signature",
            extra={"gateway_order_id": gateway_order_id, "gateway_payment_id": gateway_payment_id},
        )
        raise SignatureMismatchError()

    record = get_payment(db, user_id, gateway_order_id)
    if record is None:
        raise RecordNotFound("Payment record not found")

    if record.status == PaymentStatus.SUCCESS:
        logger.info("payment.replay", extra={"user_id": user_id, "gateway_order_id": gateway_order_id})
        return _replay(record)

    try:
        result = db.execute(
            update(payment_history)
            .where(
                payment_history.c.id == record.id,
                payment_history.c.status.in_([PaymentStatus.PENDING.value, PaymentStatus.FAILED.value]),
            )
            .values(
                status=PaymentStatus.SUCCESS.value,
                gateway_payment_id=gateway_payment_id,
                failure_reason=None,
                updated_at=utcnow(),
            )
        )
        if result.rowcount != 1:
            # A concurrent verification settled it first
            db.rollback()
            settled = get_payment(db, user_id, gateway_order_id)
            if settled is not None and settled.status == PaymentStatus.SUCCESS:
                return _replay(settled)
            raise ConflictError("Payment could not be settled")

        add_credits(
            db,
            user_id,
            record.credits_purchased,
            CreditSource.PURCHASE,
            payment_id=record.id,
            commit=False,
        )
        db.commit()
    except IntegrityError:
        # Grant for this payment already exists; the status flip goes with it
        db.rollback()
        settled = get_payment(db, user_id, gateway_order_id)
        if settled is not None and settled.status == PaymentStatus.SUCCESS:
            return _replay(settled)
        raise ConflictError("Payment could not be settled")
    except Exception:
        db.rollback()
        raise

    log_event(
        "info",
        "payment.verified",
        user_id=user_id,
        event_type="payment.verified",
        extra={
            "gateway_order_id": gateway_order_id,
            "gateway_payment_id": gateway_payment_id,
            "credits": record.credits_purchased,
        },
    )
    return VerificationResult(
        credits_added=record.credits_purchased,
        amount_paid=record.amount,
        currency=record.currency,
        gateway_order_id=gateway_order_id,
    )


def mark_payment_failed(db: Session, user_id: str, gateway_order_id: str, reason: Optional[str] = None) -> PaymentRecord:
    """
    Record a gateway failure reported by the client. Only pending records move.

    A settled payment is returned untouched.
    """
    if not gateway_order_id:
        raise ValidationError("Missing gateway order id")

    record = get_payment(db, user_id, gateway_order_id)
    if record is None:
        raise RecordNotFound("Payment record not found")

    reason = (reason or "Payment failed")[:500]
    result = db.execute(
        update(payment_history)
        .where(
            payment_history.c.id == record.id,
            payment_history.c.status == PaymentStatus.PENDING.value,
        )
        .values(status=PaymentStatus.FAILED.value, failure_reason=reason, updated_at=utcnow())
    )
    db.commit()

    if result.rowcount == 1:
        log_event(
            "info",
            "payment.failed",
            user_id=user_id,
            event_type="payment.failed",
            extra={"gateway_order_id": gateway_order_id, "reason": reason},
        )
    return get_payment(db, user_id, gateway_order_id)
