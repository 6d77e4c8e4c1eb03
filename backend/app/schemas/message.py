from pydantic import BaseModel
from typing import Dict, Any, Optional
from datetime import datetime
from enum import Enum


class MessageType(str, Enum):
    INBOX_MESSAGE = "inbox_message"
    CONNECTION_REQUEST = "connection_request"
    INTRO_REQUEST = "intro_request"


class MessageGenerateRequest(BaseModel):
    target_profile_url: str
    outreach_context: Optional[str] = None
    # a saved context to use instead of outreach_context
    context_id: Optional[int] = None
    message_type: MessageType = MessageType.INBOX_MESSAGE


class MessageResponse(BaseModel):
    id: int
    target_profile_url: Optional[str] = None
    target_name: Optional[str] = None
    target_company: Optional[str] = None
    message_type: str
    generated_message: Optional[str] = None
    model_name: Optional[str] = None
    email_finder: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MessageGenerateResponse(BaseModel):
    message: MessageResponse
    charged: bool
    credits_used: float
    new_balance: Optional[float] = None


class EmailFinderResponse(BaseModel):
    status: str
    email: Optional[str] = None
    charged: bool
    cached: bool
    credits_used: float = 0.0
    new_balance: Optional[float] = None
