from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import brightdata_client, credit_service
from app.api.errors import SERVICE_ERRORS, to_http_error
from app.core.database import get_db
from app.core.security import CurrentUser, get_current_user
from app.schemas.profile import ProfileExtractRequest, ProfileExtractResponse, TargetProfileResponse
from app.services.credits.service import CreditService
from app.services.profiles import extract_target_profile, list_profiles


router = APIRouter(dependencies=[Depends(get_current_user)])


@router.post("/profiles/extract", response_model=ProfileExtractResponse)
async def extract_profile(
    body: ProfileExtractRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
    service: CreditService = Depends(credit_service),
    client=Depends(brightdata_client),
):
    try:
        result = await extract_target_profile(db, current_user.id, body.profile_url, client=client, service=service)
    except SERVICE_ERRORS as e:
        raise to_http_error(e)
    return ProfileExtractResponse(
        profile=TargetProfileResponse.model_validate(result.profile),
        charged=result.charged,
        credits_used=result.credits_used,
        new_balance=result.new_balance,
    )


@router.get("/profiles", response_model=list[TargetProfileResponse])
async def profiles(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return list_profiles(db, current_user.id, limit)
