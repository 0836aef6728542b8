# app/schemas/user.py
from pydantic import BaseModel, ConfigDict
from typing import Optional


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    nickname: Optional[str] = None
    avatar_url: Optional[str] = None
    plan: Optional[str] = None
