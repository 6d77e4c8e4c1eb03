from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.errors import SERVICE_ERRORS, to_http_error
from app.core.database import get_db
from app.core.security import CurrentUser, get_current_user
from app.schemas.context import (
    ContextAddonListResponse,
    ContextAddonResponse,
    ContextCreateRequest,
    ContextLimitsResponse,
    ContextListResponse,
    ContextUpdateRequest,
    SavedContextResponse,
)
from app.services import contexts
from app.services.contexts import ContextLimits


router = APIRouter(dependencies=[Depends(get_current_user)])


def _limits_out(limits: ContextLimits) -> ContextLimitsResponse:
    return ContextLimitsResponse(
        plan_code=limits.plan_code,
        base_limit=limits.base_limit,
        extra_slots=limits.extra_slots,
        limit=limits.limit,
        used=limits.used,
        remaining=limits.remaining,
        can_save_more=limits.can_save_more,
    )


@router.get("/contexts", response_model=ContextListResponse)
async def list_contexts(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    try:
        limits = contexts.context_limits(db, current_user.id)
    except SERVICE_ERRORS as e:
        raise to_http_error(e)
    rows = contexts.list_contexts(db, current_user.id)
    return ContextListResponse(
        contexts=[SavedContextResponse.model_validate(r) for r in rows],
        usage=_limits_out(limits),
    )


@router.get("/contexts/limits", response_model=ContextLimitsResponse)
async def context_limits(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    try:
        return _limits_out(contexts.context_limits(db, current_user.id))
    except SERVICE_ERRORS as e:
        raise to_http_error(e)


@router.post("/contexts", response_model=SavedContextResponse, status_code=201)
async def create_context(
    body: ContextCreateRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return contexts.create_context(db, current_user.id, body.context_name, body.context_text)
    except SERVICE_ERRORS as e:
        raise to_http_error(e)


@router.put("/contexts/{context_id}", response_model=SavedContextResponse)
async def update_context(
    context_id: int,
    body: ContextUpdateRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return contexts.update_context(
            db, current_user.id, context_id, name=body.context_name, text=body.context_text
        )
    except SERVICE_ERRORS as e:
        raise to_http_error(e)


@router.delete("/contexts/{context_id}")
async def delete_context(
    context_id: int,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> dict:
    try:
        contexts.delete_context(db, current_user.id, context_id)
    except SERVICE_ERRORS as e:
        raise to_http_error(e)
    return {"deleted": True}


@router.get("/contexts/addons", response_model=ContextAddonListResponse)
async def context_addons(db: Session = Depends(get_db), current_user: CurrentUser = Depends(get_current_user)):
    rows = contexts.list_addons(db, current_user.id)
    return ContextAddonListResponse(
        addons=[ContextAddonResponse.model_validate(r) for r in rows],
        total_extra_slots=sum(int(r.quantity or 0) for r in rows if r.status == "active"),
    )
