from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.deps import credit_service
from app.api.errors import credit_error_to_http
from app.core.database import get_db
from app.core.security import (
    CurrentUser,
    get_current_user,
    issue_session_token,
    upsert_account,
    verify_extension_access_token,
    verify_google_id_token,
)
from app.services.credits.errors import CreditError
from app.services.credits.service import CreditService


router = APIRouter()


class GoogleLoginRequest(BaseModel):
    id_token: str


class ExtensionLoginRequest(BaseModel):
    access_token: str


class AccountOut(BaseModel):
    id: str
    email: str
    role: str
    display_name: str | None = None
    package_type: str | None = None
    billing_model: str | None = None
    credits: float


class LoginResponse(BaseModel):
    token: str
    created: bool
    user: AccountOut


def _login(db: Session, identity, service: CreditService) -> LoginResponse:
    try:
        acct, created = upsert_account(db, identity, service)
        balance = service.get_credit_balance(db, acct.id)
    except CreditError as e:
        raise credit_error_to_http(e)
    return LoginResponse(
        token=issue_session_token(acct),
        created=created,
        user=AccountOut(
            id=acct.id,
            email=acct.email or "",
            role=acct.role or "user",
            display_name=acct.display_name,
            package_type=acct.package_type,
            billing_model=acct.billing_model,
            credits=float(balance.available),
        ),
    )


@router.post("/auth/google", response_model=LoginResponse)
async def google_login(
    body: GoogleLoginRequest,
    db: Session = Depends(get_db),
    service: CreditService = Depends(credit_service),
):
    return _login(db, verify_google_id_token(body.id_token), service)


@router.post("/auth/extension", response_model=LoginResponse)
async def extension_login(
    body: ExtensionLoginRequest,
    db: Session = Depends(get_db),
    service: CreditService = Depends(credit_service),
):
    return _login(db, verify_extension_access_token(body.access_token), service)


@router.get("/auth/me")
async def me(current_user: CurrentUser = Depends(get_current_user)) -> dict:
    return {"id": current_user.id, "email": current_user.email, "role": current_user.role}
