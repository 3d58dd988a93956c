from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CreditSource(str, Enum):
    FREE = "free"
    PURCHASE = "purchase"
    ADJUSTMENT = "adjustment"


class CreditGrant(BaseModel):
    """One grant row. Only used_credits ever changes after insert."""
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    total_credits: int = Field(ge=0)
    used_credits: int = Field(ge=0)
    source: CreditSource
    payment_id: Optional[str] = None
    created_at: datetime


class CreditSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    available_credits: int
    is_admin: bool = False
    grants: List[CreditGrant] = []
