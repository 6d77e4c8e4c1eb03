from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from app.core.settings import settings

logger = logging.getLogger(__name__)

SNOV_BASE_URL = "https://api.snov.io"


class SnovError(RuntimeError):
    pass


@dataclass(frozen=True)
class EmailLookup:
    status: str  # verified | not_found | error
    email: str | None = None
    confidence: float | None = None
    raw: dict[str, Any] | None = None


class SnovClient:
    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        base_url: str = SNOV_BASE_URL,
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client_id = (client_id or "").strip()
        self._client_secret = (client_secret or "").strip()
        self._base_url = (base_url or SNOV_BASE_URL).rstrip("/")
        kwargs: dict[str, Any] = {"timeout": httpx.Timeout(timeout_s)}
        if transport is not None:
            kwargs["transport"] = transport
        self._client = httpx.AsyncClient(**kwargs)
        self._token: str | None = None
        self._token_expires_at = 0.0

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _access_token(self) -> str:
        if self._token and time.time() < self._token_expires_at:
            return self._token
        try:
            resp = await self._client.post(
                f"{self._base_url}/v1/oauth/access_token",
                data={
                    "grant_type": "client_credentials",
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                },
            )
        except httpx.HTTPError as e:
            raise SnovError(f"Snov token request failed: {e}") from e
        if resp.status_code >= 400:
            raise SnovError(f"Snov token HTTP {resp.status_code}")
        data = resp.json()
        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise SnovError("Snov token response had no access_token")
        expires_in = int(data.get("expires_in") or 3600)
        self._token = str(token)
        # refresh a minute early
        self._token_expires_at = time.time() + max(60, expires_in - 60)
        return self._token

    async def find_email(self, first_name: str, last_name: str, domain: str) -> EmailLookup:
        first = (first_name or "").strip()
        last = (last_name or "").strip()
        dom = (domain or "").strip().lower()
        if not first or not dom:
            return EmailLookup(status="not_found")

        token = await self._access_token()
        try:
            resp = await self._client.post(
                f"{self._base_url}/v1/get-emails-from-names",
                json={"access_token": token, "firstName": first, "lastName": last, "domain": dom},
            )
        except httpx.HTTPError as e:
            raise SnovError(f"Snov request failed: {e}") from e
        if resp.status_code >= 400:
            raise SnovError(f"Snov HTTP {resp.status_code}: {resp.text[:300]}")

        payload = resp.json()
        data = payload.get("data") if isinstance(payload, dict) else None
        prospects = (data.get("emails") or data.get("prospects") or []) if isinstance(data, dict) else []
        for p in prospects:
            if not isinstance(p, dict):
                continue
            email = (p.get("email") or "").strip()
            if "@" not in email:
                continue
            status = str(p.get("emailStatus") or p.get("status") or "valid").lower()
            if status not in {"valid", "verified"}:
                continue
            confidence = p.get("confidence")
            logger.info("snov.email_found domain=%s", dom)
            return EmailLookup(
                status="verified",
                email=email,
                confidence=(float(confidence) if isinstance(confidence, (int, float)) else None),
                raw=payload,
            )
        logger.info("snov.email_not_found domain=%s", dom)
        return EmailLookup(status="not_found", raw=payload if isinstance(payload, dict) else None)


def get_snov_client() -> SnovClient:
    if not settings.snov_client_id or not settings.snov_client_secret:
        raise SnovError("Snov is not configured")
    return SnovClient(
        client_id=settings.snov_client_id,
        client_secret=settings.snov_client_secret,
        timeout_s=settings.email_finder_timeout_s,
    )
