"""Fixed price list. Configuration, not runtime data."""
from typing import Dict

from voicepost.core.errors import ValidationError
from voicepost.models.payment import PaymentPlan

DEFAULT_PLAN_ID = "solo-global"

PAYMENT_PLANS: Dict[str, PaymentPlan] = {
    # Signup allotment; defines FREE_SIGNUP_CREDITS, cannot be bought
    "free-tier": PaymentPlan(plan_id="free-tier", amount=0, currency="INR", credits=5, purchasable=False),
    "solo-in": PaymentPlan(plan_id="solo-in", amount=49900, currency="INR", credits=30),
    "startup-in": PaymentPlan(plan_id="startup-in", amount=99900, currency="INR", credits=60),
    "solo-global": PaymentPlan(plan_id="solo-global", amount=99900, currency="INR", credits=30),
    "startup-global": PaymentPlan(plan_id="startup-global", amount=149900, currency="INR", credits=60),
}


def get_plan(plan_id: str) -> PaymentPlan:
    """Look up a purchasable plan or raise ValidationError."""
    plan = PAYMENT_PLANS.get(plan_id)
    if plan is None or not plan.purchasable:
        raise ValidationError(f"Invalid plan ID: {plan_id}")
    return plan


def list_purchasable_plans():
    return [p for p in PAYMENT_PLANS.values() if p.purchasable]
