# backend/agenda/schemas/members.py

from typing import Optional
from pydantic import BaseModel


class ChangeLocationRequest(BaseModel):
    location_id: int


class MemberRead(BaseModel):
    id: int
    provider_id: int
    location_id: int
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    is_default: bool
    is_active: bool

    model_config = {"from_attributes": True}


class AccessCodeRead(BaseModel):
    member_id: int
    access_code: str
