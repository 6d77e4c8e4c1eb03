from pydantic import BaseModel
from typing import Dict, List, Any, Optional
from datetime import datetime


class BalanceResponse(BaseModel):
    credits: float
    held: float
    available: float
    package_type: Optional[str] = None
    billing_model: Optional[str] = None


class CreditCheckResponse(BaseModel):
    has_enough: bool
    required: float
    available: float
    held: float
    effective_available: float
    package_type: Optional[str] = None
    billing_model: Optional[str] = None


class HistoryItem(BaseModel):
    type: str
    amount: float
    description: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    timestamp: Optional[datetime] = None


class HistoryResponse(BaseModel):
    transactions: List[HistoryItem]


class ReleaseHoldResponse(BaseModel):
    released: bool


class ResetResponse(BaseModel):
    applied: bool
    reason: str
    old_balance: Optional[float] = None
    new_balance: Optional[float] = None


class LedgerAuditResponse(BaseModel):
    user_id: str
    stored_balance: float
    transactions_total: float
    transaction_count: int
    consistent: bool


class HoldSweepResponse(BaseModel):
    released: int
