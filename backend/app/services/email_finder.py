from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from app.core.settings import settings
from app.models.message_log import MessageLog
from app.models.target_profile import TargetProfile
from app.services.cache import TTLCache
from app.services.credits import ledger
from app.services.credits.paid_operation import run_paid_operation
from app.services.credits.service import CreditService, get_credit_service
from app.services.email.snov import EmailLookup, SnovError

logger = logging.getLogger(__name__)

OPERATION = "email_finder"

_RATE_COUNTERS = TTLCache(max_items=20000, ttl_s=3600)

_COMPANY_SUFFIXES = re.compile(r"\b(inc|llc|ltd|limited|corp|corporation|gmbh|co|company|plc|sa|ag)\b\.?", re.IGNORECASE)


class EmailFinderDisabled(RuntimeError):
    pass


class RateLimitExceeded(RuntimeError):
    def __init__(self, limit: int) -> None:
        super().__init__(f"Email finder limit of {limit} lookups per hour reached")
        self.limit = limit


@dataclass(frozen=True)
class EmailFinderResult:
    status: str
    email: str | None
    charged: bool
    cached: bool
    credits_used: float = 0.0
    new_balance: float | None = None


def company_domain(company: str | None, website: str | None = None) -> str | None:
    site = (website or "").strip().lower()
    if site:
        site = re.sub(r"^https?://", "", site)
        site = site.split("/", 1)[0]
        return site[4:] if site.startswith("www.") else site
    name = _COMPANY_SUFFIXES.sub("", company or "")
    slug = re.sub(r"[^a-z0-9]", "", name.lower())
    return f"{slug}.com" if slug else None


def _split_name(full_name: str | None) -> tuple[str, str]:
    parts = (full_name or "").split()
    if not parts:
        return "", ""
    return parts[0], (parts[-1] if len(parts) > 1 else "")


def _rate_key(user_id: str) -> str:
    return f"email_finder:{user_id}:{int(time.time() // 3600)}"


def _check_rate_limit(user_id: str) -> None:
    limit = settings.email_finder_rate_limit_per_hour
    if limit <= 0:
        return
    count = int(_RATE_COUNTERS.get(_rate_key(user_id)) or 0)
    if count >= limit:
        logger.warning("email_finder.rate_limited user=%s count=%s limit=%s", user_id, count, limit)
        raise RateLimitExceeded(limit)


def _record_lookup(user_id: str) -> None:
    if settings.email_finder_rate_limit_per_hour > 0:
        _RATE_COUNTERS.incr(_rate_key(user_id), ttl_s=3600)


def reset_rate_limits() -> None:
    _RATE_COUNTERS.clear()


async def find_email_for_message(
    db: Session,
    user_id: str,
    message_id: int,
    *,
    snov: Any,
    service: CreditService | None = None,
) -> EmailFinderResult:
    if not settings.email_finder_enabled:
        raise EmailFinderDisabled("Email finder is disabled")

    message = db.query(MessageLog).filter(MessageLog.id == message_id, MessageLog.user_id == user_id).first()
    if message is None:
        raise LookupError("Message not found")

    previous = message.email_finder or {}
    if previous.get("status") == "verified" and previous.get("email"):
        return EmailFinderResult(status="verified", email=previous["email"], charged=False, cached=True)

    acct = ledger.get_account(db, user_id)
    if (acct.package_type or "free").strip().lower() == "free":
        raise PermissionError("Email finder requires a paid plan")

    _check_rate_limit(user_id)

    first, last = _split_name(message.target_name)
    website = None
    if message.target_profile_id is not None:
        profile = db.query(TargetProfile).filter(TargetProfile.id == message.target_profile_id).first()
        data = (profile.data_json if profile is not None else None) or {}
        company = data.get("current_company") if isinstance(data, dict) else None
        if isinstance(company, dict):
            website = company.get("website")
    domain = company_domain(message.target_company, website)
    service = service or get_credit_service()

    async def lookup() -> EmailLookup:
        # runs only once the hold is placed, so rejected attempts cost no quota
        _record_lookup(user_id)
        if not first or not domain:
            return EmailLookup(status="not_found")
        try:
            return await snov.find_email(first, last, domain)
        except SnovError as e:
            logger.warning("email_finder.provider_error user=%s message=%s error=%s", user_id, message_id, e)
            return EmailLookup(status="error")

    result = await run_paid_operation(
        db,
        service=service,
        user_id=user_id,
        operation=OPERATION,
        amount=settings.email_finder_cost,
        action=lookup,
        timeout_s=settings.email_finder_timeout_s,
        billable=lambda r: r.status == "verified",
        metadata=lambda r: {"message_id": message_id, "domain": domain},
        deduct_retries=settings.ledger_write_retries,
    )

    found: EmailLookup = result.value
    message.email_finder = {
        "status": found.status,
        "email": found.email,
        "confidence": found.confidence,
        "domain": domain,
        "checked_at": ledger.utcnow().isoformat(),
    }
    db.commit()
    logger.info("email_finder.done user=%s message=%s status=%s charged=%s", user_id, message_id, found.status, result.charged)
    return EmailFinderResult(
        status=found.status,
        email=found.email,
        charged=result.charged,
        cached=False,
        credits_used=float(result.amount) if result.charged else 0.0,
        new_balance=(float(result.new_balance) if result.new_balance is not None else None),
    )
