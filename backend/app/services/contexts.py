"""Saved outreach contexts and the plan limits on how many a user may keep.

Each plan allows a fixed number of saved contexts (``BASE_PLAN_LIMITS``).
Users can buy extra slots as a separate Chargebee subscription
(``extra-context-slot``); every active add-on adds its quantity to the limit.
Add-on state only changes through Chargebee webhooks, and a cancelled or
unpaid add-on stops counting right away. ``expire_addons`` moves add-ons
whose grace period has run out to ``expired``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.context_addon import ContextAddon
from app.models.saved_context import SavedContext
from app.services.billing import find_account_id
from app.services.credits import ledger
from app.services.credits.errors import AccountNotFound

logger = logging.getLogger(__name__)

BASE_PLAN_LIMITS: dict[str, int] = {
    "free": 1,
    "silver-monthly": 3,
    "gold-monthly": 6,
    "platinum-monthly": 10,
    "silver-payasyougo": 1,
    "gold-payasyougo": 1,
    "platinum-payasyougo": 1,
}
DEFAULT_BASE_LIMIT = 1
MAX_NAME_LENGTH = 100

ADDON_ITEM_PRICE_IDS = {"extra-context-slot"}
ADDON_EVENTS = {
    "subscription_created",
    "subscription_renewed",
    "subscription_cancelled",
    "subscription_reactivated",
    "payment_failed",
}
ADDON_GRACE_PERIOD = timedelta(days=3)


class ContextLimitReached(PermissionError):
    def __init__(self, limit: int) -> None:
        super().__init__(f"Saved context limit of {limit} reached; upgrade your plan or add extra slots")
        self.limit = limit


@dataclass(frozen=True)
class ContextLimits:
    plan_code: str
    base_limit: int
    extra_slots: int
    used: int

    @property
    def limit(self) -> int:
        return self.base_limit + self.extra_slots

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    @property
    def can_save_more(self) -> bool:
        return self.used < self.limit


def base_limit(package_type: str | None) -> int:
    return BASE_PLAN_LIMITS.get((package_type or "free").strip().lower(), DEFAULT_BASE_LIMIT)


def active_extra_slots(db: Session, user_id: str) -> int:
    total = (
        db.query(func.coalesce(func.sum(ContextAddon.quantity), 0))
        .filter(ContextAddon.user_id == user_id, ContextAddon.status == "active")
        .scalar()
    )
    return int(total or 0)


def context_limits(db: Session, user_id: str) -> ContextLimits:
    acct = ledger.get_account(db, user_id)
    plan_code = (acct.package_type or "free").strip().lower()
    used = db.query(func.count(SavedContext.id)).filter(SavedContext.user_id == user_id).scalar()
    return ContextLimits(
        plan_code=plan_code,
        base_limit=base_limit(plan_code),
        extra_slots=active_extra_slots(db, user_id),
        used=int(used or 0),
    )


def list_contexts(db: Session, user_id: str) -> list[SavedContext]:
    return (
        db.query(SavedContext)
        .filter(SavedContext.user_id == user_id)
        .order_by(SavedContext.updated_at.desc(), SavedContext.id.desc())
        .all()
    )


def get_context(db: Session, user_id: str, context_id: int) -> SavedContext:
    row = db.query(SavedContext).filter(SavedContext.id == context_id, SavedContext.user_id == user_id).first()
    if row is None:
        raise LookupError("Context not found")
    return row


def _clean_name(name: str | None) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValueError("context_name is required")
    if len(cleaned) > MAX_NAME_LENGTH:
        raise ValueError(f"context_name must be {MAX_NAME_LENGTH} characters or less")
    return cleaned


def _clean_text(text: str | None) -> str:
    cleaned = (text or "").strip()
    if not cleaned:
        raise ValueError("context_text is required")
    return cleaned


def _commit_unique_name(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValueError("A context with this name already exists")


def create_context(db: Session, user_id: str, name: str | None, text: str | None) -> SavedContext:
    name = _clean_name(name)
    text = _clean_text(text)
    limits = context_limits(db, user_id)
    if not limits.can_save_more:
        logger.info("contexts.limit_reached user=%s plan=%s limit=%s", user_id, limits.plan_code, limits.limit)
        raise ContextLimitReached(limits.limit)

    now = ledger.utcnow()
    row = SavedContext(user_id=user_id, context_name=name, context_text=text, created_at=now, updated_at=now)
    db.add(row)
    _commit_unique_name(db)
    db.refresh(row)
    logger.info("contexts.created user=%s context=%s", user_id, row.id)
    return row


def update_context(
    db: Session,
    user_id: str,
    context_id: int,
    *,
    name: str | None = None,
    text: str | None = None,
) -> SavedContext:
    row = get_context(db, user_id, context_id)
    if name is not None:
        row.context_name = _clean_name(name)
    if text is not None:
        row.context_text = _clean_text(text)
    row.updated_at = ledger.utcnow()
    _commit_unique_name(db)
    db.refresh(row)
    return row


def delete_context(db: Session, user_id: str, context_id: int) -> None:
    row = get_context(db, user_id, context_id)
    db.delete(row)
    db.commit()
    logger.info("contexts.deleted user=%s context=%s", user_id, context_id)


def list_addons(db: Session, user_id: str) -> list[ContextAddon]:
    return (
        db.query(ContextAddon)
        .filter(ContextAddon.user_id == user_id)
        .order_by(ContextAddon.created_at.desc(), ContextAddon.id.desc())
        .all()
    )


@dataclass(frozen=True)
class AddonEvent:
    event_type: str
    subscription_id: str
    quantity: int
    chargebee_status: str | None
    next_billing_at: datetime | None
    user_hint: str | None = None
    customer_email: str | None = None


@dataclass(frozen=True)
class AddonOutcome:
    subscription_id: str
    status: str | None
    applied: bool
    user_id: str | None = None


def _from_timestamp(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _addon_quantity(subscription: dict[str, Any]) -> int | None:
    for item in subscription.get("subscription_items") or []:
        if isinstance(item, dict) and item.get("item_price_id") in ADDON_ITEM_PRICE_IDS:
            return int(item.get("quantity") or 1)
    if subscription.get("plan_id") in ADDON_ITEM_PRICE_IDS:
        return int(subscription.get("plan_quantity") or 1)
    return None


def addon_event_from_chargebee(payload: dict[str, Any]) -> AddonEvent | None:
    """Return an ``AddonEvent`` when the webhook is about an extra-slot subscription."""
    event_type = str(payload.get("event_type") or "").strip()
    if event_type not in ADDON_EVENTS:
        return None
    content = payload.get("content") or {}
    subscription = content.get("subscription") or {}
    customer = content.get("customer") or {}
    quantity = _addon_quantity(subscription)
    if quantity is None or not subscription.get("id"):
        return None

    user_hint = subscription.get("cf_user_id") or customer.get("cf_user_id")
    customer_id = str(customer.get("id") or "")
    if not user_hint and customer_id.startswith("user_"):
        user_hint = customer_id[len("user_"):]
    return AddonEvent(
        event_type=event_type,
        subscription_id=str(subscription["id"]),
        quantity=max(1, quantity),
        chargebee_status=subscription.get("status"),
        next_billing_at=_from_timestamp(subscription.get("next_billing_at")),
        user_hint=(str(user_hint) if user_hint else None),
        customer_email=(customer.get("email") or "").strip().lower() or None,
    )


def apply_addon_event(db: Session, event: AddonEvent, now: datetime | None = None) -> AddonOutcome:
    now = now or ledger.utcnow()
    row = (
        db.query(ContextAddon)
        .filter(ContextAddon.chargebee_subscription_id == event.subscription_id)
        .first()
    )

    if event.event_type == "subscription_created":
        user_id = find_account_id(db, event.user_hint, event.customer_email)
        if user_id is None:
            raise AccountNotFound(event.user_hint or event.customer_email or "<unknown>")
        if row is None:
            row = ContextAddon(
                user_id=user_id,
                chargebee_subscription_id=event.subscription_id,
                created_at=now,
            )
            db.add(row)
        row.quantity = event.quantity
        row.status = "active"
        row.expires_at = None
    elif row is None:
        logger.warning(
            "contexts.addon_unknown_subscription event_type=%s subscription=%s", event.event_type, event.subscription_id
        )
        return AddonOutcome(subscription_id=event.subscription_id, status=None, applied=False)
    elif event.event_type in {"subscription_renewed", "subscription_reactivated"}:
        row.status = "active"
        row.quantity = event.quantity
        row.expires_at = None
    elif event.event_type == "subscription_cancelled":
        row.status = "cancelled"
        row.expires_at = now + ADDON_GRACE_PERIOD
    elif event.event_type == "payment_failed":
        row.status = "grace_period"
        row.expires_at = now + ADDON_GRACE_PERIOD

    row.chargebee_status = event.chargebee_status
    if event.next_billing_at is not None:
        row.next_billing_at = event.next_billing_at
    row.updated_at = now
    db.commit()
    logger.info(
        "contexts.addon_updated user=%s subscription=%s event_type=%s status=%s quantity=%s",
        row.user_id,
        event.subscription_id,
        event.event_type,
        row.status,
        row.quantity,
    )
    return AddonOutcome(subscription_id=event.subscription_id, status=row.status, applied=True, user_id=row.user_id)


def expire_addons(db: Session, now: datetime | None = None) -> int:
    now = now or ledger.utcnow()
    rows = (
        db.query(ContextAddon)
        .filter(ContextAddon.status.in_(["cancelled", "grace_period"]), ContextAddon.expires_at.isnot(None))
        .all()
    )
    expired = 0
    for row in rows:
        expires_at = row.expires_at if row.expires_at.tzinfo else row.expires_at.replace(tzinfo=timezone.utc)
        if expires_at <= now:
            row.status = "expired"
            row.updated_at = now
            expired += 1
    if expired:
        db.commit()
        logger.info("contexts.addons_expired count=%s", expired)
    return expired
