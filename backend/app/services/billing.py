"""Plan purchases and renewals coming in from Chargebee webhooks.

Monthly plans raise the balance to the plan allowance (``renewal``). One-time
(pay-as-you-go) purchases add their credits on top (``topup``). Each ledger
change carries ``chargebee:<event id>`` as its source, so replayed webhooks do
not grant twice. Holds are never touched here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.account import Account
from app.services.credits import ledger
from app.services.credits.amounts import as_float, to_minor
from app.services.credits.errors import AccountNotFound

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Plan:
    plan_code: str
    credits: int
    billing_model: str  # monthly | one_time


PLAN_MAPPING: dict[str, Plan] = {
    "Silver-Monthly": Plan("silver-monthly", 30, "monthly"),
    "Gold-Monthly": Plan("gold-monthly", 100, "monthly"),
    "Platinum-Monthly": Plan("platinum-monthly", 250, "monthly"),
    "Silver-PAYG-USD": Plan("silver-payasyougo", 30, "one_time"),
    "Gold-PAYG-USD": Plan("gold-payasyougo", 100, "one_time"),
    "Platinum-PAYG-USD": Plan("platinum-payasyougo", 250, "one_time"),
}

SUBSCRIPTION_EVENTS = {"subscription_created", "subscription_renewed"}
INVOICE_EVENTS = {"invoice_generated", "payment_succeeded"}
CANCEL_EVENTS = {"subscription_cancelled"}


@dataclass(frozen=True)
class BillingEvent:
    user_id: str | None
    plan_code: str | None
    renewable_credits: int
    billing_model: str
    event_id: str
    kind: str = "purchase"  # purchase | cancel
    customer_email: str | None = None


@dataclass(frozen=True)
class BillingOutcome:
    user_id: str
    kind: str
    applied: bool
    old_balance: float | None = None
    new_balance: float | None = None


def subscription_plan_id(subscription: dict[str, Any]) -> str | None:
    for item in subscription.get("subscription_items") or []:
        if isinstance(item, dict) and item.get("item_type") == "plan":
            return item.get("item_price_id")
    return subscription.get("plan_id")


def _invoice_plan_id(invoice: dict[str, Any]) -> str | None:
    for item in invoice.get("line_items") or []:
        if not isinstance(item, dict):
            continue
        if item.get("entity_type") in {"plan_item_price", "charge_item_price"} and item.get("entity_id") in PLAN_MAPPING:
            return item["entity_id"]
    return None


def event_from_chargebee(payload: dict[str, Any]) -> BillingEvent | None:
    """Turn a Chargebee webhook body into a ``BillingEvent``.

    Returns None for event types and plans this backend does not bill for.
    Monthly allowances come from subscription events and one-time purchases
    from invoice events, so a single purchase is never counted from both.
    """
    event_type = str(payload.get("event_type") or "").strip()
    content = payload.get("content") or {}
    customer = content.get("customer") or {}
    subscription = content.get("subscription") or {}
    invoice = content.get("invoice") or {}
    email = (customer.get("email") or "").strip().lower() or None
    user_hint = subscription.get("cf_user_id") or customer.get("cf_user_id")
    event_id = str(payload.get("id") or "").strip()

    if event_type in CANCEL_EVENTS:
        return BillingEvent(
            user_id=(str(user_hint) if user_hint else None),
            plan_code=None,
            renewable_credits=0,
            billing_model="monthly",
            event_id=event_id or f"cancel:{subscription.get('id')}",
            kind="cancel",
            customer_email=email,
        )

    if event_type in SUBSCRIPTION_EVENTS:
        plan = PLAN_MAPPING.get(subscription_plan_id(subscription) or "")
        if plan is None or plan.billing_model != "monthly":
            return None
        source_id = event_id or f"subscription:{subscription.get('id')}:{subscription.get('current_term_start')}"
    elif event_type in INVOICE_EVENTS:
        plan = PLAN_MAPPING.get(_invoice_plan_id(invoice) or "")
        if plan is None or plan.billing_model != "one_time":
            return None
        # both invoice events fire for one purchase; key on the invoice
        source_id = f"invoice:{invoice.get('id')}" if invoice.get("id") else event_id
    else:
        return None

    if not source_id:
        return None
    return BillingEvent(
        user_id=(str(user_hint) if user_hint else None),
        plan_code=plan.plan_code,
        renewable_credits=plan.credits,
        billing_model=plan.billing_model,
        event_id=source_id,
        customer_email=email,
    )


def find_account_id(db: Session, user_hint: str | None, email: str | None) -> str | None:
    if user_hint:
        if db.query(Account.id).filter(Account.id == user_hint).first() is not None:
            return user_hint
    if email:
        row = db.query(Account.id).filter(func.lower(Account.email) == email).first()
        if row is not None:
            return row[0]
    return None


def resolve_user_id(db: Session, event: BillingEvent) -> str | None:
    return find_account_id(db, event.user_id, event.customer_email)


def _set_plan(db: Session, user_id: str, *, package_type: str, plan_code: str | None, billing_model: str) -> None:
    acct = ledger.get_account(db, user_id)
    acct.package_type = package_type
    acct.plan_code = plan_code
    acct.billing_model = billing_model
    db.commit()


def apply_billing_event(db: Session, event: BillingEvent) -> BillingOutcome:
    user_id = resolve_user_id(db, event)
    if user_id is None:
        raise AccountNotFound(event.user_id or event.customer_email or "<unknown>")

    if event.kind == "cancel":
        _set_plan(db, user_id, package_type="free", plan_code=None, billing_model="monthly")
        logger.info("billing.cancelled user=%s event=%s", user_id, event.event_id)
        return BillingOutcome(user_id=user_id, kind="cancel", applied=True)

    source = f"chargebee:{event.event_id}"
    metadata = {"plan_code": event.plan_code, "chargebee_event": event.event_id}
    amount = to_minor(event.renewable_credits)

    if event.billing_model == "monthly":
        _set_plan(db, user_id, package_type=event.plan_code or "paid", plan_code=event.plan_code, billing_model="monthly")
        change = ledger.apply_reset(
            db,
            user_id,
            amount,
            transaction_type="renewal",
            description=f"Monthly plan allowance ({event.plan_code})",
            metadata=metadata,
            source=source,
        )
    else:
        acct = ledger.get_account(db, user_id)
        # a one-time purchase does not replace an active monthly plan
        if (acct.package_type or "free") == "free" or acct.billing_model == "one_time":
            _set_plan(db, user_id, package_type=event.plan_code or "paid", plan_code=event.plan_code, billing_model="one_time")
        change = ledger.apply_grant(
            db,
            user_id,
            amount,
            transaction_type="topup",
            description=f"Pay-as-you-go credits ({event.plan_code})",
            metadata=metadata,
            source=source,
        )

    logger.info(
        "billing.applied user=%s plan=%s model=%s applied=%s event=%s",
        user_id,
        event.plan_code,
        event.billing_model,
        change.applied,
        event.event_id,
    )
    return BillingOutcome(
        user_id=user_id,
        kind=event.billing_model,
        applied=change.applied,
        old_balance=as_float(change.old_balance),
        new_balance=as_float(change.new_balance),
    )
