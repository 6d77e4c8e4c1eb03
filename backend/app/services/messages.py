from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from sqlalchemy.orm import Session

from app.core.settings import settings
from app.models.message_log import MessageLog
from app.models.target_profile import TargetProfile
from app.services.credits.amounts import to_minor
from app.services.credits.ledger import utcnow
from app.services.credits.paid_operation import run_paid_operation
from app.services.credits.service import CreditService, get_credit_service
from app.services.linkedin_urls import clean_linkedin_url
from app.services.llm.client import LLMResult

logger = logging.getLogger(__name__)

MESSAGE_OPERATIONS = {
    "inbox_message": "message_generation",
    "connection_request": "connection_generation",
    "intro_request": "intro_generation",
}

_TYPE_INSTRUCTIONS = {
    "inbox_message": "Write a short LinkedIn inbox message (under 120 words).",
    "connection_request": "Write a LinkedIn connection request note. It must be under 300 characters.",
    "intro_request": "Write a short message asking a mutual connection for an introduction (under 120 words).",
}

SYSTEM_PROMPT = (
    "You write personalized LinkedIn outreach. Be specific to the recipient, plain, and friendly. "
    "Return only the message text with no subject line, no placeholders, and no signature block."
)


@dataclass(frozen=True)
class GeneratedMessage:
    message: MessageLog
    charged: bool
    credits_used: float
    new_balance: float | None


def build_prompt(profile: TargetProfile, outreach_context: str, message_type: str) -> str:
    lines = [_TYPE_INSTRUCTIONS[message_type], "", "Recipient:"]
    for label, value in (
        ("Name", profile.full_name),
        ("Headline", profile.headline),
        ("Company", profile.current_company),
        ("Location", profile.location),
    ):
        if value:
            lines.append(f"- {label}: {value}")
    if profile.about:
        lines.append(f"- About: {profile.about[:1500]}")
    lines += ["", "Sender context:", (outreach_context or "").strip()]
    return "\n".join(lines)


def _first_name(full_name: str | None) -> str | None:
    parts = (full_name or "").split()
    return parts[0] if parts else None


def _recent_duplicate_exists(db: Session, user_id: str, url: str, context: str, message_type: str) -> bool:
    cutoff = utcnow() - timedelta(seconds=settings.message_dedup_window_s)
    existing = (
        db.query(MessageLog.id)
        .filter(
            MessageLog.user_id == user_id,
            MessageLog.target_profile_url == url,
            MessageLog.context_text == context,
            MessageLog.message_type == message_type,
            MessageLog.created_at >= cutoff,
        )
        .first()
    )
    return existing is not None


def list_messages(db: Session, user_id: str, limit: int = 50) -> list[MessageLog]:
    return (
        db.query(MessageLog)
        .filter(MessageLog.user_id == user_id)
        .order_by(MessageLog.created_at.desc(), MessageLog.id.desc())
        .limit(max(1, int(limit or 50)))
        .all()
    )


async def generate_message(
    db: Session,
    user_id: str,
    target_profile_url: str,
    outreach_context: str,
    message_type: str = "inbox_message",
    *,
    llm: Any,
    service: CreditService | None = None,
) -> GeneratedMessage:
    operation = MESSAGE_OPERATIONS.get(message_type)
    if operation is None:
        raise ValueError(f"Unsupported message_type: {message_type}")
    context = (outreach_context or "").strip()
    if not context:
        raise ValueError("outreach_context is required")

    url = clean_linkedin_url(target_profile_url)
    profile = (
        db.query(TargetProfile)
        .filter(TargetProfile.user_id == user_id, TargetProfile.linkedin_url == url, TargetProfile.status == "ready")
        .first()
    )
    if profile is None:
        raise LookupError("Target profile has not been extracted yet")

    service = service or get_credit_service()
    prompt = build_prompt(profile, context, message_type)

    async def call_llm() -> LLMResult:
        return await llm.generate(prompt, system_prompt=SYSTEM_PROMPT, purpose=operation)

    result = await run_paid_operation(
        db,
        service=service,
        user_id=user_id,
        operation=operation,
        amount=settings.message_generation_cost,
        action=call_llm,
        timeout_s=settings.paid_call_timeout_s,
        is_duplicate=lambda: _recent_duplicate_exists(db, user_id, url, context, message_type),
        target=url,
        metadata=lambda r: {"target_profile_url": url, "message_type": message_type, "model": r.model},
        deduct_retries=settings.ledger_write_retries,
    )

    llm_result: LLMResult = result.value
    row = MessageLog(
        user_id=user_id,
        target_profile_id=profile.id,
        target_profile_url=url,
        target_name=profile.full_name,
        target_first_name=_first_name(profile.full_name),
        target_company=profile.current_company,
        message_type=message_type,
        context_text=context,
        generated_message=llm_result.text,
        model_name=llm_result.model,
        prompt_tokens=llm_result.usage.get("prompt_tokens"),
        completion_tokens=llm_result.usage.get("completion_tokens"),
        credits_used=to_minor(result.amount) if result.charged else 0,
        created_at=utcnow(),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("messages.generated user=%s type=%s message=%s", user_id, message_type, row.id)
    return GeneratedMessage(
        message=row,
        charged=result.charged,
        credits_used=float(result.amount) if result.charged else 0.0,
        new_balance=(float(result.new_balance) if result.new_balance is not None else None),
    )
