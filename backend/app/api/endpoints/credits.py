from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import credit_service
from app.api.errors import credit_error_to_http, to_http_error
from app.core.database import get_db
from app.core.security import CurrentUser, get_current_user
from app.schemas.credits import (
    BalanceResponse,
    CreditCheckResponse,
    HistoryItem,
    HistoryResponse,
    ReleaseHoldResponse,
)
from app.services.credits.errors import CreditError
from app.services.credits.service import CreditService


router = APIRouter(dependencies=[Depends(get_current_user)])


@router.get("/credits/balance", response_model=BalanceResponse)
async def balance(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    service: CreditService = Depends(credit_service),
):
    try:
        bal = service.get_credit_balance(db, current_user.id)
    except CreditError as e:
        raise credit_error_to_http(e)
    return BalanceResponse(
        credits=float(bal.total),
        held=float(bal.held),
        available=float(bal.available),
        package_type=bal.package_type,
        billing_model=bal.billing_model,
    )


@router.get("/credits/history", response_model=HistoryResponse)
async def history(
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    service: CreditService = Depends(credit_service),
):
    try:
        entries = service.get_credit_history(db, current_user.id, limit)
    except CreditError as e:
        raise credit_error_to_http(e)
    return HistoryResponse(
        transactions=[
            HistoryItem(
                type=e.type,
                amount=float(e.amount),
                description=e.description,
                metadata=e.metadata,
                timestamp=e.timestamp,
            )
            for e in entries
        ]
    )


@router.get("/credits/check", response_model=CreditCheckResponse)
async def check(
    required: Decimal = Query(Decimal("1.0"), ge=0),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    service: CreditService = Depends(credit_service),
):
    try:
        result = service.check_credits(db, current_user.id, required)
    except (CreditError, ValueError) as e:
        raise to_http_error(e)
    return CreditCheckResponse(
        has_enough=result.has_enough,
        required=float(required),
        available=float(result.available),
        held=float(result.held),
        effective_available=float(result.effective_available),
        package_type=result.package_type,
        billing_model=result.billing_model,
    )


@router.delete("/credits/hold", response_model=ReleaseHoldResponse)
async def release_hold(
    hold_id: str | None = None,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    service: CreditService = Depends(credit_service),
):
    try:
        released = service.release_credit_hold(db, current_user.id, hold_id)
    except CreditError as e:
        raise credit_error_to_http(e)
    return ReleaseHoldResponse(released=released)
