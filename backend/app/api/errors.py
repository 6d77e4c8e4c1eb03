from __future__ import annotations

from fastapi import HTTPException

from app.services.contexts import ContextLimitReached
from app.services.credits.errors import (
    AccountNotFound,
    CreditError,
    DuplicateSubmission,
    ExternalProviderError,
    HoldConflict,
    InsufficientCredits,
    LedgerWriteFailed,
)
from app.services.email_finder import EmailFinderDisabled, RateLimitExceeded
from app.services.llm.client import LLMDisabledError
from app.services.scraping.brightdata import ScrapingDisabledError

CREDIT_ERROR_STATUS: dict[type[CreditError], int] = {
    AccountNotFound: 404,
    InsufficientCredits: 402,
    HoldConflict: 409,
    DuplicateSubmission: 409,
    LedgerWriteFailed: 503,
    ExternalProviderError: 502,
}

SERVICE_ERRORS = (
    CreditError,
    ValueError,
    LookupError,
    PermissionError,
    RateLimitExceeded,
    EmailFinderDisabled,
    LLMDisabledError,
    ScrapingDisabledError,
)


def credit_error_to_http(e: CreditError) -> HTTPException:
    status = CREDIT_ERROR_STATUS.get(type(e), 500)
    headers = {"Retry-After": "2"} if isinstance(e, (HoldConflict, LedgerWriteFailed)) else None
    return HTTPException(status_code=status, detail=e.to_dict(), headers=headers)


def to_http_error(e: Exception) -> HTTPException:
    if isinstance(e, CreditError):
        return credit_error_to_http(e)
    if isinstance(e, RateLimitExceeded):
        return HTTPException(status_code=429, detail={"error": "RATE_LIMITED", "message": str(e)}, headers={"Retry-After": "3600"})
    if isinstance(e, (EmailFinderDisabled, LLMDisabledError, ScrapingDisabledError)):
        return HTTPException(status_code=503, detail={"error": "FEATURE_UNAVAILABLE", "message": str(e)})
    if isinstance(e, ContextLimitReached):
        return HTTPException(
            status_code=403,
            detail={"error": "CONTEXT_LIMIT_REACHED", "message": str(e), "limit": e.limit, "plan_upgrade_required": True},
        )
    if isinstance(e, PermissionError):
        return HTTPException(status_code=403, detail={"error": "PLAN_REQUIRED", "message": str(e)})
    if isinstance(e, LookupError):
        return HTTPException(status_code=404, detail={"error": "NOT_FOUND", "message": str(e).strip("'\"")})
    if isinstance(e, ValueError):
        return HTTPException(status_code=400, detail={"error": "INVALID_REQUEST", "message": str(e)})
    return HTTPException(status_code=500, detail={"error": "INTERNAL_ERROR", "message": "Unexpected error"})
