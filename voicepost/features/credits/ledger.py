"""
Credit ledger.

A user's balance is the sum of (total_credits - used_credits) over their grant
rows. Grants are append-only; the only mutation is used_credits += 1 on the
oldest grant with spare capacity, done as a single conditional UPDATE so that
concurrent deductions can never overdraw a grant.
"""
import logging
import time
from typing import List, Optional, Union
from uuid import uuid4

from sqlalchemy import func, insert, select, update
from sqlalchemy.orm import Session

from voicepost.core.database import credit_grants, utcnow
from voicepost.core.errors import ValidationError
from voicepost.models.credit import CreditGrant, CreditSource

logger = logging.getLogger("voicepost.credits")

# A zero-row UPDATE while the balance is still positive means the candidate
# grant filled up while we waited on its lock; retry a bounded number of times.
MAX_DEDUCT_ATTEMPTS = 5
DEDUCT_RETRY_DELAY_SECONDS = 0.02


def _row_to_grant(row) -> CreditGrant:
    return CreditGrant(
        id=row.id,
        user_id=row.user_id,
        total_credits=row.total_credits,
        used_credits=row.used_credits,
        source=CreditSource(row.source),
        payment_id=row.payment_id,
        created_at=row.created_at,
    )


def get_available_credits(db: Session, user_id: str) -> int:
    """Sum of remaining credits across every grant the user holds."""
    total = db.execute(
        select(
            func.coalesce(func.sum(credit_grants.c.total_credits - credit_grants.c.used_credits), 0)
        ).where(credit_grants.c.user_id == user_id)
    ).scalar()
    return int(total or 0)


def get_credit_breakdown(db: Session, user_id: str) -> List[CreditGrant]:
    """All grants for a user, newest first."""
    rows = db.execute(
        select(credit_grants)
        .where(credit_grants.c.user_id == user_id)
        .order_by(credit_grants.c.created_at.desc(), credit_grants.c.id)
    ).fetchall()
    return [_row_to_grant(r) for r in rows]


def add_credits(
    db: Session,
    user_id: str,
    amount: int,
    source: Union[CreditSource, str],
    payment_id: Optional[str] = None,
    commit: bool = True,
) -> CreditGrant:
    """
    Append a grant row. Pure insert, never merged into an existing grant.

    Callers that settle payments pass payment_id; the column is unique so a
    payment can back at most one grant.
    """
    if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
        raise ValidationError("Credit amount must be a positive integer")
    try:
        source = CreditSource(source)
    except ValueError:
        raise ValidationError(f"Unknown credit source: {source}")

    now = utcnow()
    grant_id = str(uuid4())
    db.execute(
        insert(credit_grants).values(
            id=grant_id,
            user_id=user_id,
            total_credits=amount,
            used_credits=0,
            source=source.value,
            payment_id=payment_id,
            created_at=now,
            updated_at=now,
        )
    )
    if commit:
        db.commit()

    logger.info(
        "credits.granted",
        extra={"user_id": user_id, "credits": amount, "source": source.value, "payment_id": payment_id},
    )
    return CreditGrant(
        id=grant_id,
        user_id=user_id,
        total_credits=amount,
        used_credits=0,
        source=source,
        payment_id=payment_id,
        created_at=now,
    )


def _deduct_statement(user_id: str, dialect_name: str):
    candidate = (
        select(credit_grants.c.id)
        .where(
            credit_grants.c.user_id == user_id,
            credit_grants.c.used_credits < credit_grants.c.total_credits,
        )
        .order_by(credit_grants.c.created_at, credit_grants.c.id)
        .limit(1)
    )
    if dialect_name == "postgresql":
        # Block on a grant another transaction is spending, then re-check it
        candidate = candidate.with_for_update()

    return (
        update(credit_grants)
        .where(
            credit_grants.c.id == candidate.scalar_subquery(),
            credit_grants.c.used_credits < credit_grants.c.total_credits,
        )
        .values(used_credits=credit_grants.c.used_credits + 1, updated_at=utcnow())
    )


def deduct_credit(db: Session, user_id: str, commit: bool = True) -> bool:
    """
    Consume exactly one credit from the oldest grant with spare capacity.

    Returns False, with nothing mutated, when the balance is zero. The
    deduction is a conditional UPDATE, so this must be the first write of the
    caller's transaction when commit=False.
    """
    for attempt in range(MAX_DEDUCT_ATTEMPTS):
        result = db.execute(_deduct_statement(user_id, db.get_bind().dialect.name))
        if result.rowcount == 1:
            if commit:
                db.commit()
            logger.info("credits.deducted", extra={"user_id": user_id})
            return True

        if get_available_credits(db, user_id) <= 0:
            break
        time.sleep(DEDUCT_RETRY_DELAY_SECONDS * (attempt + 1))

    if commit:
        db.rollback()
    logger.info("credits.insufficient", extra={"user_id": user_id})
    return False
