from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class UserOut(BaseModel):
    id: int
    phone_no: str
    name: Optional[str] = None
    email: Optional[str] = None
    is_premium: bool
    joined_at: datetime

    model_config = ConfigDict(from_attributes=True)
