from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class PaymentPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    plan_id: str
    amount: int  # minor currency units (paise)
    currency: str
    credits: int
    purchasable: bool = True

    @property
    def display_amount(self) -> float:
        return self.amount / 100


class PaymentRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    plan_id: str
    amount: int
    currency: str
    credits_purchased: int
    transaction_id: str
    gateway_order_id: str
    gateway_payment_id: Optional[str] = None
    status: PaymentStatus
    failure_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class OrderDetails(BaseModel):
    """What the client needs to open the gateway checkout. No secrets."""
    model_config = ConfigDict(frozen=True)

    order_id: str
    amount: int
    currency: str
    credits: int
    public_key: str
    plan_id: str


class VerificationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    credits_added: int
    amount_paid: int
    currency: str
    gateway_order_id: str
    replayed: bool = False
