"""
Credit consumption gate.

The only place a publish credit is spent. Admin users pass without a
deduction; everyone else must win deduct_credit or the publish is refused
before any webhook is contacted.
"""
import logging

from sqlalchemy.orm import Session

from voicepost.core.errors import InsufficientCreditsError
from voicepost.features.credits.ledger import deduct_credit, get_available_credits, get_credit_breakdown
from voicepost.features.users.service import is_admin
from voicepost.models.credit import CreditSummary

logger = logging.getLogger("voicepost.credits")


def consume_publish_credit(db: Session, user_id: str, commit: bool = True) -> bool:
    """
    Spend one credit for a publish attempt.

    Returns True when a credit was deducted and False for admins, who publish
    without spending. Raises InsufficientCreditsError when the balance is zero.
    """
    if is_admin(db, user_id):
        logger.info("credits.admin_bypass", extra={"user_id": user_id})
        return False

    if not deduct_credit(db, user_id, commit=commit):
        raise InsufficientCreditsError()
    return True


def check_credits(db: Session, user_id: str) -> CreditSummary:
    """Advisory balance for display. Never used to authorize a publish."""
    return CreditSummary(
        user_id=user_id,
        available_credits=get_available_credits(db, user_id),
        is_admin=is_admin(db, user_id),
        grants=get_credit_breakdown(db, user_id),
    )
