from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.api.errors import credit_error_to_http
from app.core.auth import require_webhook_basic_auth
from app.core.database import get_db
from app.services.billing import apply_billing_event, event_from_chargebee
from app.services.contexts import addon_event_from_chargebee, apply_addon_event
from app.services.credits.errors import AccountNotFound, CreditError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/billing/chargebee/webhook", dependencies=[Depends(require_webhook_basic_auth)])
async def chargebee_webhook(request: Request, db: Session = Depends(get_db)) -> dict:
    try:
        payload = (await request.json()) or {}
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")

    event_type = str(payload.get("event_type") or "")
    # extra-slot add-ons are separate subscriptions; they never change the plan
    addon_event = addon_event_from_chargebee(payload)
    if addon_event is not None:
        try:
            addon = apply_addon_event(db, addon_event)
        except AccountNotFound:
            logger.warning("billing.webhook_unknown_user event_type=%s email=%s", event_type, addon_event.customer_email)
            return {"received": True, "handled": False}
        return {"received": True, "handled": True, "applied": addon.applied}

    event = event_from_chargebee(payload)
    if event is None:
        logger.info("billing.webhook_ignored event_type=%s id=%s", event_type, payload.get("id"))
        return {"received": True, "handled": False}

    try:
        outcome = apply_billing_event(db, event)
    except AccountNotFound:
        # acknowledge so Chargebee stops retrying; nothing to credit
        logger.warning("billing.webhook_unknown_user event_type=%s email=%s", event_type, event.customer_email)
        return {"received": True, "handled": False}
    except CreditError as e:
        raise credit_error_to_http(e)

    return {"received": True, "handled": True, "applied": outcome.applied}
