"""
Payments and credits API routes.

- POST /api/payments/orders: Create a gateway order for a plan
- POST /api/payments/verify: Settle a completed checkout (idempotent)
- POST /api/payments/failed: Record a failure reported by the checkout UI
- GET  /api/payments/plans: Purchasable price list
- GET  /api/credits: Balance, admin flag, grants and recent payments
"""
from typing import Callable, List, Optional

from fastapi import APIRouter, Depends
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from voicepost.api.deps import get_payment_gateway, get_payment_gateway_factory
from voicepost.core.auth import get_current_user_id
from voicepost.core.database import get_db
from voicepost.features.billing import service as billing_service
from voicepost.features.billing.plans import DEFAULT_PLAN_ID, get_plan, list_purchasable_plans
from voicepost.features.billing.provider import PaymentGateway
from voicepost.features.credits.gate import check_credits

router = APIRouter(prefix="/api", tags=["payments"])


class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    plan_id: str = Field(DEFAULT_PLAN_ID, validation_alias=AliasChoices("planId", "plan_id"))


class CreateOrderResponse(BaseModel):
    success: bool = True
    orderId: str
    amount: int
    currency: str
    credits: int
    publicKey: str
    planId: str


class VerifyPaymentRequest(BaseModel):
    """Accepts our field names and the gateway's native checkout names."""
    gateway_order_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("gatewayOrderId", "razorpay_order_id", "orderId")
    )
    gateway_payment_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("gatewayPaymentId", "razorpay_payment_id", "paymentId")
    )
    signature: Optional[str] = Field(None, validation_alias=AliasChoices("signature", "razorpay_signature"))


class VerifyPaymentResponse(BaseModel):
    success: bool = True
    creditsAdded: int
    amountPaid: int
    currency: str
    alreadyProcessed: bool = False


class PaymentFailedRequest(BaseModel):
    gateway_order_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("gatewayOrderId", "razorpay_order_id", "orderId")
    )
    reason: Optional[str] = Field(None, max_length=500)


class CreditGrantOut(BaseModel):
    id: str
    totalCredits: int
    usedCredits: int
    source: str
    createdAt: str


class PaymentOut(BaseModel):
    id: str
    planId: str
    amount: int
    currency: str
    creditsPurchased: int
    status: str
    createdAt: str


class CreditsResponse(BaseModel):
    success: bool = True
    availableCredits: int
    isAdmin: bool
    creditBreakdown: List[CreditGrantOut]
    recentPayments: List[PaymentOut]


@router.post("/payments/orders", response_model=CreateOrderResponse)
def create_payment_order(
    payload: CreateOrderRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    gateway_factory: Callable[[], PaymentGateway] = Depends(get_payment_gateway_factory),
):
    plan = get_plan(payload.plan_id)
    order = billing_service.create_order(db, user_id, plan.plan_id, gateway=gateway_factory())
    return CreateOrderResponse(
        orderId=order.order_id,
        amount=order.amount,
        currency=order.currency,
        credits=order.credits,
        publicKey=order.public_key,
        planId=order.plan_id,
    )


@router.post("/payments/verify", response_model=VerifyPaymentResponse)
def verify_payment(
    payload: VerifyPaymentRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    result = billing_service.verify_payment(
        db,
        user_id,
        payload.gateway_order_id or "",
        payload.gateway_payment_id or "",
        payload.signature or "",
        gateway=gateway,
    )
    return VerifyPaymentResponse(
        creditsAdded=result.credits_added,
        amountPaid=result.amount_paid,
        currency=result.currency,
        alreadyProcessed=result.replayed,
    )


@router.post("/payments/failed")
def report_payment_failed(
    payload: PaymentFailedRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    record = billing_service.mark_payment_failed(db, user_id, payload.gateway_order_id or "", payload.reason)
    return {"success": True, "status": record.status.value}


@router.get("/credits", response_model=CreditsResponse)
def get_credits(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    summary = check_credits(db, user_id)
    payments = billing_service.list_recent_payments(db, user_id)
    return CreditsResponse(
        availableCredits=summary.available_credits,
        isAdmin=summary.is_admin,
        creditBreakdown=[
            CreditGrantOut(
                id=g.id,
                totalCredits=g.total_credits,
                usedCredits=g.used_credits,
                source=g.source.value,
                createdAt=g.created_at.isoformat(),
            )
            for g in summary.grants
        ],
        recentPayments=[
            PaymentOut(
                id=p.id,
                planId=p.plan_id,
                amount=p.amount,
                currency=p.currency,
                creditsPurchased=p.credits_purchased,
                status=p.status.value,
                createdAt=p.created_at.isoformat(),
            )
            for p in payments
        ],
    )


@router.get("/payments/plans")
def get_payment_plans():
    return {
        "success": True,
        "plans": [
            {"planId": p.plan_id, "amount": p.amount, "currency": p.currency, "credits": p.credits}
            for p in list_purchasable_plans()
        ],
    }
