from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.api.deps import credit_service
from app.api.errors import credit_error_to_http
from app.core.database import get_db
from app.core.security import require_admin
from app.models.account import Account
from app.schemas.credits import HoldSweepResponse, LedgerAuditResponse, ResetResponse
from app.services import contexts
from app.services.credits.amounts import as_float
from app.services.credits.errors import CreditError
from app.services.credits.service import CreditService


router = APIRouter(dependencies=[Depends(require_admin)])


class AdminUserOut(BaseModel):
    id: str
    email: str | None = None
    role: str | None = None
    package_type: str | None = None
    billing_model: str | None = None
    credits: float


class HoldOut(BaseModel):
    hold_id: str
    user_id: str
    amount: float
    operation: str
    created_at: str


@router.get("/admin/users")
async def admin_users(
    q: str | None = None,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
) -> dict:
    query = db.query(Account)
    if q:
        query = query.filter(func.lower(Account.email).contains(q.strip().lower()))
    total = int(query.count())
    rows = query.order_by(Account.created_at.desc()).limit(limit).all()
    return {
        "total": total,
        "items": [
            AdminUserOut(
                id=r.id,
                email=r.email,
                role=r.role,
                package_type=r.package_type,
                billing_model=r.billing_model,
                credits=as_float(r.credits_remaining),
            )
            for r in rows
        ],
    }


@router.post("/admin/users/{user_id}/reset-free-credits", response_model=ResetResponse)
async def reset_free_credits(
    user_id: str,
    db: Session = Depends(get_db),
    service: CreditService = Depends(credit_service),
):
    try:
        result = service.reset_free_credits(db, user_id)
    except CreditError as e:
        raise credit_error_to_http(e)
    return ResetResponse(
        applied=result.applied,
        reason=result.reason,
        old_balance=(float(result.old_balance) if result.old_balance is not None else None),
        new_balance=(float(result.new_balance) if result.new_balance is not None else None),
    )


@router.get("/admin/users/{user_id}/ledger-audit", response_model=LedgerAuditResponse)
async def ledger_audit(
    user_id: str,
    db: Session = Depends(get_db),
    service: CreditService = Depends(credit_service),
):
    try:
        audit = service.audit(db, user_id)
    except CreditError as e:
        raise credit_error_to_http(e)
    return LedgerAuditResponse(
        user_id=audit.user_id,
        stored_balance=as_float(audit.stored_balance),
        transactions_total=as_float(audit.transactions_total),
        transaction_count=audit.transaction_count,
        consistent=audit.consistent,
    )


@router.get("/admin/holds", response_model=list[HoldOut])
async def list_holds(db: Session = Depends(get_db), service: CreditService = Depends(credit_service)):
    return [
        HoldOut(
            hold_id=h.hold_id,
            user_id=h.user_id,
            amount=as_float(h.amount),
            operation=h.operation,
            created_at=h.created_at.isoformat(),
        )
        for h in service.holds.list_holds(db)
    ]


@router.post("/admin/holds/sweep", response_model=HoldSweepResponse)
async def sweep_holds(db: Session = Depends(get_db), service: CreditService = Depends(credit_service)):
    try:
        released = service.sweep_expired_holds(db)
    except CreditError as e:
        raise credit_error_to_http(e)
    return HoldSweepResponse(released=released)


@router.post("/admin/context-addons/expire")
async def expire_context_addons(db: Session = Depends(get_db)) -> dict:
    return {"expired": contexts.expire_addons(db)}
