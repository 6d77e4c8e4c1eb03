from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.settings import settings
from app.models.target_profile import TargetProfile
from app.services.credits.errors import CreditError, ExternalProviderError
from app.services.credits.ledger import utcnow
from app.services.credits.paid_operation import run_paid_operation
from app.services.credits.service import CreditService, get_credit_service
from app.services.linkedin_urls import clean_linkedin_url, is_linkedin_profile_url

logger = logging.getLogger(__name__)

OPERATION = "profile_extraction"


@dataclass(frozen=True)
class ProfileExtraction:
    profile: TargetProfile
    charged: bool
    credits_used: float
    new_balance: float | None


def _as_utc(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt


def _is_duplicate(row: TargetProfile | None, now: datetime) -> bool:
    if row is None:
        return False
    if row.status == "pending":
        # a pending row older than a hold's lifetime is left over from a crash
        updated = _as_utc(row.updated_at) or _as_utc(row.created_at)
        return updated is not None and now - updated < timedelta(seconds=settings.hold_ttl_s)
    if row.status == "ready":
        scraped = _as_utc(row.scraped_at)
        return scraped is not None and now - scraped < timedelta(hours=settings.profile_rescrape_cooldown_h)
    return False


def _company_name(record: dict[str, Any]) -> str | None:
    company = record.get("current_company")
    if isinstance(company, dict) and company.get("name"):
        return str(company["name"])
    for key in ("current_company_name", "company"):
        if record.get(key):
            return str(record[key])
    return None


def profile_fields(record: dict[str, Any]) -> dict[str, Any]:
    name = record.get("name") or " ".join(
        p for p in (record.get("first_name"), record.get("last_name")) if p
    )
    location = record.get("city") or record.get("location")
    return {
        "full_name": (str(name).strip() or None) if name else None,
        "headline": record.get("position") or record.get("headline"),
        "current_company": _company_name(record),
        "location": str(location) if location else None,
        "about": record.get("about"),
    }


def get_profile(db: Session, user_id: str, profile_url: str) -> TargetProfile | None:
    return (
        db.query(TargetProfile)
        .filter(TargetProfile.user_id == user_id, TargetProfile.linkedin_url == clean_linkedin_url(profile_url))
        .first()
    )


def list_profiles(db: Session, user_id: str, limit: int = 50) -> list[TargetProfile]:
    return (
        db.query(TargetProfile)
        .filter(TargetProfile.user_id == user_id)
        .order_by(TargetProfile.updated_at.desc(), TargetProfile.id.desc())
        .limit(max(1, int(limit or 50)))
        .all()
    )


def _mark_pending(db: Session, user_id: str, url: str) -> TargetProfile:
    row = get_profile(db, user_id, url)
    now = utcnow()
    if row is None:
        row = TargetProfile(user_id=user_id, linkedin_url=url, status="pending", created_at=now, updated_at=now)
        db.add(row)
    else:
        row.status = "pending"
        row.error = None
        row.updated_at = now
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        row = get_profile(db, user_id, url)
        if row is None:
            raise
        row.status = "pending"
        row.updated_at = now
        db.commit()
    db.refresh(row)
    return row


async def extract_target_profile(
    db: Session,
    user_id: str,
    profile_url: str,
    *,
    client: Any,
    service: CreditService | None = None,
) -> ProfileExtraction:
    url = clean_linkedin_url(profile_url)
    if not is_linkedin_profile_url(url):
        raise ValueError("Not a LinkedIn profile URL")
    service = service or get_credit_service()

    started = False

    async def scrape() -> dict[str, Any]:
        nonlocal started
        started = True
        _mark_pending(db, user_id, url)
        return await client.scrape_profile(url)

    try:
        result = await run_paid_operation(
            db,
            service=service,
            user_id=user_id,
            operation=OPERATION,
            amount=settings.profile_extraction_cost,
            action=scrape,
            timeout_s=settings.paid_call_timeout_s,
            is_duplicate=lambda: _is_duplicate(get_profile(db, user_id, url), utcnow()),
            target=url,
            metadata=lambda scraped: {"profile_url": url, "snapshot_id": scraped.get("snapshot_id")},
            deduct_retries=settings.ledger_write_retries,
        )
    except CreditError as e:
        # The row only turns ready once the charge is committed. Any failure
        # after the pending mark leaves it failed, which is free to retry.
        reason = e.reason if isinstance(e, ExternalProviderError) else str(e)
        if started:
            db.rollback()
            row = get_profile(db, user_id, url)
            if row is not None and row.status == "pending":
                row.status = "failed"
                row.error = reason[:1000]
                row.updated_at = utcnow()
                db.commit()
        logger.warning("profiles.extraction_failed user=%s url=%s error=%s reason=%s", user_id, url, e.code, reason)
        raise

    scraped = result.value
    record = scraped.get("profile") or {}
    row = get_profile(db, user_id, url)
    for key, value in profile_fields(record).items():
        setattr(row, key, value)
    row.snapshot_id = scraped.get("snapshot_id")
    row.data_json = record
    row.status = "ready"
    row.error = None
    row.scraped_at = utcnow()
    row.updated_at = row.scraped_at
    db.commit()
    db.refresh(row)
    logger.info("profiles.extracted user=%s url=%s charged=%s", user_id, url, result.charged)
    return ProfileExtraction(
        profile=row,
        charged=result.charged,
        credits_used=float(result.amount) if result.charged else 0.0,
        new_balance=(float(result.new_balance) if result.new_balance is not None else None),
    )
