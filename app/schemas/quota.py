# app/schemas/quota.py
from pydantic import BaseModel, ConfigDict, Field, field_serializer
from typing import List, Optional
from datetime import datetime, timezone


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored times are naive UTC; mark them so clients do not read local time"""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class SubscriptionOut(BaseModel):
    id: str
    user_id: str
    product_code: str
    plan_tier: str
    status: str
    expires_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    quota_limit: int
    quota_used: int
    quota_reset_at: datetime

    @field_serializer("expires_at", "created_at", "updated_at", "quota_reset_at")
    def serialize_utc(self, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class QuotaResponse(BaseModel):
    subscription: SubscriptionOut


class ConsumeRequest(BaseModel):
    model: str = Field(..., min_length=1)
    tokens: int = Field(..., gt=0, strict=True)
    request_id: Optional[str] = None


class ConsumeResponse(BaseModel):
    success: bool = True
    quota_remaining: int


class AccessLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    model_name: str
    tokens: int
    timestamp: datetime
    request_id: Optional[str] = None

    @field_serializer("timestamp")
    def serialize_timestamp(self, value: datetime) -> datetime:
        return as_utc(value)


class HistoryResponse(BaseModel):
    logs: List[AccessLogOut]
