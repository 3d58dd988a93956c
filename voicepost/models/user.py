from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict


ADMIN_ROLE = "admin"


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    created_at: datetime
    email: Optional[str] = None
    is_admin: bool = False
