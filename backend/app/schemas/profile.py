from pydantic import BaseModel
from typing import Optional
from datetime import datetime


class ProfileExtractRequest(BaseModel):
    profile_url: str


class TargetProfileResponse(BaseModel):
    id: int
    linkedin_url: str
    status: str
    full_name: Optional[str] = None
    headline: Optional[str] = None
    current_company: Optional[str] = None
    location: Optional[str] = None
    error: Optional[str] = None
    scraped_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProfileExtractResponse(BaseModel):
    profile: TargetProfileResponse
    charged: bool
    credits_used: float
    new_balance: Optional[float] = None
