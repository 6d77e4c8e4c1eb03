from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from app.core.settings import settings

logger = logging.getLogger(__name__)


class BrightDataError(RuntimeError):
    pass


class ScrapingDisabledError(RuntimeError):
    pass


_STATUS_MAP = {
    "ready": "ready",
    "done": "ready",
    "failed": "failed",
    "error": "failed",
    "running": "running",
    "collecting": "running",
    "digesting": "running",
    "building": "running",
    "starting": "pending",
    "pending": "pending",
    "queued": "pending",
}


def normalize_status(raw: Any) -> str:
    return _STATUS_MAP.get(str(raw or "").strip().lower(), "pending")


@dataclass(frozen=True)
class JobPoll:
    status: str
    result: Any | None = None


class BrightDataClient:
    """Async client for the Bright Data dataset API (trigger, progress, snapshot)."""

    def __init__(
        self,
        *,
        api_key: str,
        dataset_id: str,
        base_url: str = "https://api.brightdata.com",
        timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = (api_key or "").strip()
        self._dataset_id = (dataset_id or "").strip()
        self._base_url = (base_url or "https://api.brightdata.com").rstrip("/")
        kwargs: dict[str, Any] = {"timeout": httpx.Timeout(timeout_s)}
        if transport is not None:
            kwargs["transport"] = transport
        self._client = httpx.AsyncClient(**kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self._base_url}{path}"
        try:
            resp = await self._client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            raise BrightDataError(f"Bright Data request failed: {e}") from e
        if resp.status_code >= 400:
            raise BrightDataError(f"Bright Data HTTP {resp.status_code}: {resp.text[:300]}")
        return resp

    async def submit(self, profile_url: str) -> str:
        resp = await self._request(
            "POST",
            "/datasets/v3/trigger",
            params={"dataset_id": self._dataset_id, "include_errors": "true"},
            json=[{"url": profile_url}],
        )
        try:
            data = resp.json()
        except ValueError as e:
            raise BrightDataError("Bright Data trigger returned invalid JSON") from e
        snapshot_id = data.get("snapshot_id") if isinstance(data, dict) else None
        if not snapshot_id:
            raise BrightDataError("Bright Data trigger returned no snapshot_id")
        logger.info("brightdata.submitted snapshot=%s url=%s", snapshot_id, profile_url)
        return str(snapshot_id)

    async def poll(self, snapshot_id: str) -> JobPoll:
        resp = await self._request("GET", f"/datasets/v3/progress/{snapshot_id}")
        try:
            data = resp.json()
        except ValueError as e:
            raise BrightDataError("Bright Data progress returned invalid JSON") from e
        status = normalize_status(data.get("status") if isinstance(data, dict) else None)
        if status != "ready":
            return JobPoll(status=status)

        snap = await self._request("GET", f"/datasets/v3/snapshot/{snapshot_id}", params={"format": "json"})
        try:
            result = snap.json()
        except ValueError as e:
            raise BrightDataError("Bright Data snapshot returned invalid JSON") from e
        return JobPoll(status="ready", result=result)

    async def wait_for_result(self, snapshot_id: str, *, max_wait_s: float, poll_interval_s: float) -> Any:
        started = time.monotonic()
        while True:
            job = await self.poll(snapshot_id)
            if job.status == "ready":
                logger.info(
                    "brightdata.ready snapshot=%s elapsed_s=%.1f", snapshot_id, time.monotonic() - started
                )
                return job.result
            if job.status == "failed":
                raise BrightDataError(f"Bright Data snapshot {snapshot_id} failed")
            if time.monotonic() - started + poll_interval_s > max_wait_s:
                raise BrightDataError(f"Bright Data snapshot {snapshot_id} not ready after {max_wait_s}s")
            await asyncio.sleep(poll_interval_s)

    async def scrape_profile(self, profile_url: str) -> dict[str, Any]:
        snapshot_id = await self.submit(profile_url)
        result = await self.wait_for_result(
            snapshot_id,
            max_wait_s=settings.bright_data_max_wait_s,
            poll_interval_s=settings.bright_data_poll_interval_s,
        )
        record = result[0] if isinstance(result, list) and result else result
        if not isinstance(record, dict) or not record:
            raise BrightDataError(f"Bright Data snapshot {snapshot_id} returned no profile")
        if record.get("error") and not record.get("name"):
            raise BrightDataError(f"Bright Data profile error: {record.get('error')}")
        return {"snapshot_id": snapshot_id, "profile": record}


def get_brightdata_client() -> BrightDataClient:
    if not settings.bright_data_api_key or not settings.bright_data_dataset_id:
        raise ScrapingDisabledError("Bright Data is not configured")
    return BrightDataClient(
        api_key=settings.bright_data_api_key,
        dataset_id=settings.bright_data_dataset_id,
        base_url=settings.bright_data_base_url,
    )
