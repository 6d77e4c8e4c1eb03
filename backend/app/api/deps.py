from __future__ import annotations

from fastapi import HTTPException

from app.services.credits.service import CreditService, get_credit_service
from app.services.email.snov import SnovClient, SnovError, get_snov_client
from app.services.llm.client import LLMDisabledError, MessageLLM, get_llm_client
from app.services.scraping.brightdata import BrightDataClient, ScrapingDisabledError, get_brightdata_client

_clients: dict[str, object] = {}


def credit_service() -> CreditService:
    return get_credit_service()


def brightdata_client() -> BrightDataClient:
    client = _clients.get("brightdata")
    if client is None:
        try:
            client = _clients["brightdata"] = get_brightdata_client()
        except ScrapingDisabledError as e:
            raise HTTPException(status_code=503, detail={"error": "FEATURE_UNAVAILABLE", "message": str(e)})
    return client  # type: ignore[return-value]


def llm_client() -> MessageLLM:
    client = _clients.get("llm")
    if client is None:
        try:
            client = _clients["llm"] = get_llm_client()
        except LLMDisabledError as e:
            raise HTTPException(status_code=503, detail={"error": "FEATURE_UNAVAILABLE", "message": str(e)})
    return client  # type: ignore[return-value]


def snov_client() -> SnovClient:
    client = _clients.get("snov")
    if client is None:
        try:
            client = _clients["snov"] = get_snov_client()
        except SnovError as e:
            raise HTTPException(status_code=503, detail={"error": "FEATURE_UNAVAILABLE", "message": str(e)})
    return client  # type: ignore[return-value]


async def close_clients() -> None:
    for client in list(_clients.values()):
        aclose = getattr(client, "aclose", None)
        if aclose is not None:
            await aclose()
    _clients.clear()
