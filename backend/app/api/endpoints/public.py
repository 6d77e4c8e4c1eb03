from __future__ import annotations

from fastapi import APIRouter

from app.core.settings import settings


router = APIRouter()


@router.get("/public-config")
async def public_config() -> dict:
    return {
        "googleClientId": settings.google_client_id or "",
        "googleExtensionClientId": settings.google_extension_client_id or "",
        "emailFinderEnabled": settings.email_finder_enabled,
        "costs": {
            "profile_extraction": settings.profile_extraction_cost,
            "message_generation": settings.message_generation_cost,
            "email_finder": settings.email_finder_cost,
        },
        "freeTierCredits": settings.free_tier_credits,
    }
