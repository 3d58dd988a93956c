"""
User domain service.
- get_or_create_user(db, user_id): first sight of a user also appends the free signup grant
- get_user(db, user_id)
- has_role / grant_role for the administrative capability
"""

import logging
from typing import Optional

from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from voicepost.core.config import settings
from voicepost.core.database import user_roles, users as app_users, utcnow
from voicepost.models.credit import CreditSource
from voicepost.models.user import ADMIN_ROLE, User

logger = logging.getLogger("voicepost.users")


def has_role(db: Session, user_id: str, role: str) -> bool:
    row = db.execute(
        select(user_roles.c.id).where(user_roles.c.user_id == user_id, user_roles.c.role == role)
    ).first()
    return row is not None


def is_admin(db: Session, user_id: str) -> bool:
    return has_role(db, user_id, ADMIN_ROLE)


def grant_role(db: Session, user_id: str, role: str) -> None:
    """Give a user a role. Granting an existing role is a no-op."""
    if has_role(db, user_id, role):
        return
    try:
        db.execute(insert(user_roles).values(user_id=user_id, role=role, created_at=utcnow()))
        db.commit()
    except IntegrityError:
        db.rollback()


def get_user(db: Session, user_id: str) -> Optional[User]:
    row = db.execute(select(app_users).where(app_users.c.user_id == user_id)).first()
    if not row:
        return None
    return User(
        user_id=row.user_id,
        email=row.email,
        created_at=row.created_at,
        is_admin=is_admin(db, user_id),
    )


def get_or_create_user(db: Session, user_id: str, email: Optional[str] = None) -> User:
    existing = get_user(db, user_id)
    if existing:
        return existing

    from voicepost.features.credits.ledger import add_credits

    now = utcnow()
    try:
        db.execute(insert(app_users).values(user_id=user_id, email=email, created_at=now))
        if settings.FREE_SIGNUP_CREDITS > 0:
            add_credits(db, user_id, settings.FREE_SIGNUP_CREDITS, CreditSource.FREE, commit=False)
        db.commit()
    except IntegrityError:
        # Concurrent first request created the user (and its grant) already
        db.rollback()
        existing = get_user(db, user_id)
        if existing:
            return existing
        raise

    logger.info(
        "user.created",
        extra={"user_id": user_id, "free_credits": settings.FREE_SIGNUP_CREDITS},
    )
    return User(user_id=user_id, email=email, created_at=now, is_admin=False)
