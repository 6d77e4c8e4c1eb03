from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


class ContextCreateRequest(BaseModel):
    context_name: str
    context_text: str


class ContextUpdateRequest(BaseModel):
    context_name: Optional[str] = None
    context_text: Optional[str] = None


class SavedContextResponse(BaseModel):
    id: int
    context_name: str
    context_text: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ContextLimitsResponse(BaseModel):
    plan_code: str
    base_limit: int
    extra_slots: int
    limit: int
    used: int
    remaining: int
    can_save_more: bool


class ContextListResponse(BaseModel):
    contexts: List[SavedContextResponse]
    usage: ContextLimitsResponse


class ContextAddonResponse(BaseModel):
    id: int
    chargebee_subscription_id: str
    quantity: int
    status: Optional[str] = None
    next_billing_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ContextAddonListResponse(BaseModel):
    addons: List[ContextAddonResponse]
    total_extra_slots: int = Field(0, ge=0)
