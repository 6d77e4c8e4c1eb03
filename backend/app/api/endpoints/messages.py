from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import credit_service, llm_client, snov_client
from app.api.errors import SERVICE_ERRORS, to_http_error
from app.core.database import get_db
from app.core.security import CurrentUser, get_current_user
from app.core.settings import settings
from app.schemas.message import (
    EmailFinderResponse,
    MessageGenerateRequest,
    MessageGenerateResponse,
    MessageResponse,
)
from app.services.contexts import get_context
from app.services.credits.service import CreditService
from app.services.email_finder import EmailFinderDisabled, find_email_for_message
from app.services.messages import generate_message, list_messages


router = APIRouter(dependencies=[Depends(get_current_user)])


@router.post("/messages/generate", response_model=MessageGenerateResponse)
async def generate(
    body: MessageGenerateRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    service: CreditService = Depends(credit_service),
    llm=Depends(llm_client),
):
    try:
        outreach_context = body.outreach_context or ""
        if body.context_id is not None:
            outreach_context = get_context(db, current_user.id, body.context_id).context_text
        result = await generate_message(
            db,
            current_user.id,
            body.target_profile_url,
            outreach_context,
            body.message_type.value,
            llm=llm,
            service=service,
        )
    except SERVICE_ERRORS as e:
        raise to_http_error(e)
    return MessageGenerateResponse(
        message=MessageResponse.model_validate(result.message),
        charged=result.charged,
        credits_used=result.credits_used,
        new_balance=result.new_balance,
    )


@router.get("/messages", response_model=list[MessageResponse])
async def messages(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return list_messages(db, current_user.id, limit)


def _email_finder_enabled() -> None:
    if not settings.email_finder_enabled:
        raise to_http_error(EmailFinderDisabled("Email finder is disabled"))


@router.post(
    "/email-finder/{message_id}",
    response_model=EmailFinderResponse,
    dependencies=[Depends(_email_finder_enabled)],
)
async def find_email(
    message_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    service: CreditService = Depends(credit_service),
    snov=Depends(snov_client),
):
    try:
        result = await find_email_for_message(db, current_user.id, message_id, snov=snov, service=service)
    except SERVICE_ERRORS as e:
        raise to_http_error(e)
    return EmailFinderResponse(
        status=result.status,
        email=result.email,
        charged=result.charged,
        cached=result.cached,
        credits_used=result.credits_used,
        new_balance=result.new_balance,
    )
