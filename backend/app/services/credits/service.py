"""Credit service: the only entry point paid features use.

Protocol for a paid action::

    check_credits -> create_credit_hold -> external call
        -> success: deduct_credits (also releases the hold)
        -> failure: release_credit_hold (no ledger change)

``run_paid_operation`` in ``paid_operation.py`` wires this sequence up for the
operation callers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from app.core.settings import settings
from app.services.credits import ledger
from app.services.credits.amounts import AmountLike, from_minor, positive_minor, to_minor
from app.services.credits.errors import LedgerWriteFailed
from app.services.credits.holds import HoldManager, HoldResult, build_hold_manager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreditCheck:
    has_enough: bool
    available: Decimal
    held: Decimal
    effective_available: Decimal
    package_type: str | None
    billing_model: str | None


@dataclass(frozen=True)
class DeductionResult:
    new_balance: Decimal
    deducted: Decimal
    operation: str


@dataclass(frozen=True)
class CreditBalance:
    total: Decimal
    held: Decimal
    available: Decimal
    package_type: str | None
    billing_model: str | None


@dataclass(frozen=True)
class HistoryEntry:
    type: str
    amount: Decimal
    description: str | None
    metadata: dict[str, Any] | None
    timestamp: datetime | None


@dataclass(frozen=True)
class ResetResult:
    applied: bool
    old_balance: Decimal | None
    new_balance: Decimal | None
    reason: str


class CreditService:
    def __init__(self, holds: HoldManager, *, free_tier_floor: AmountLike = 7) -> None:
        self.holds = holds
        self.free_tier_floor = positive_minor(free_tier_floor)

    def check_credits(self, db: Session, user_id: str, required: AmountLike) -> CreditCheck:
        required_minor = to_minor(required)
        acct = ledger.get_account(db, user_id)
        balance = ledger.get_balance(db, user_id)
        held = self.holds.held_amount(db, user_id)
        effective = balance - held
        return CreditCheck(
            has_enough=effective >= required_minor,
            available=from_minor(balance),
            held=from_minor(held),
            effective_available=from_minor(effective),
            package_type=acct.package_type,
            billing_model=acct.billing_model,
        )

    def create_credit_hold(self, db: Session, user_id: str, amount: AmountLike, operation: str) -> HoldResult:
        return self.holds.create(db, user_id, positive_minor(amount), operation)

    def release_credit_hold(self, db: Session, user_id: str, hold_id: str | None = None) -> bool:
        return self.holds.release(db, user_id, hold_id)

    def deduct_credits(
        self,
        db: Session,
        user_id: str,
        amount: AmountLike,
        operation: str,
        metadata: dict[str, Any] | None = None,
    ) -> DeductionResult:
        amount_minor = positive_minor(amount)
        new_balance = ledger.apply_deduction(db, user_id, amount_minor, operation, metadata)
        # One hold per user, so whatever hold is outstanding belongs to this
        # deduction. The charge is committed at this point: a failed release
        # must not look like a failed ledger write, or callers retry and charge
        # twice. The sweeper drops the hold after its TTL.
        try:
            self.holds.release(db, user_id)
        except LedgerWriteFailed as e:
            logger.warning(
                "credits.hold_release_after_deduct_failed user=%s operation=%s error=%s", user_id, operation, e
            )
        return DeductionResult(new_balance=from_minor(new_balance), deducted=from_minor(amount_minor), operation=operation)

    def get_credit_balance(self, db: Session, user_id: str) -> CreditBalance:
        acct = ledger.get_account(db, user_id)
        total = ledger.get_balance(db, user_id)
        held = self.holds.held_amount(db, user_id)
        return CreditBalance(
            total=from_minor(total),
            held=from_minor(held),
            available=from_minor(total - held),
            package_type=acct.package_type,
            billing_model=acct.billing_model,
        )

    def get_credit_history(self, db: Session, user_id: str, limit: int = 20) -> list[HistoryEntry]:
        ledger.get_account(db, user_id)
        return [
            HistoryEntry(
                type=row.transaction_type,
                amount=from_minor(row.credits_change),
                description=row.description,
                metadata=row.event_metadata,
                timestamp=row.created_at,
            )
            for row in ledger.list_transactions(db, user_id, limit)
        ]

    def reset_free_credits(self, db: Session, user_id: str) -> ResetResult:
        acct = ledger.get_account(db, user_id)
        if (acct.package_type or "").strip().lower() != "free":
            return ResetResult(applied=False, old_balance=None, new_balance=None, reason="not_free_plan")
        change = ledger.apply_reset(
            db,
            user_id,
            self.free_tier_floor,
            transaction_type="reset",
            description="Monthly free credit reset",
            metadata={"reset_type": "monthly"},
        )
        if not change.applied:
            return ResetResult(
                applied=False,
                old_balance=from_minor(change.old_balance),
                new_balance=from_minor(change.new_balance),
                reason="already_at_floor",
            )
        return ResetResult(
            applied=True,
            old_balance=from_minor(change.old_balance),
            new_balance=from_minor(change.new_balance),
            reason="reset_to_floor",
        )

    def grant_signup_credits(self, db: Session, user_id: str) -> ledger.LedgerChange:
        return ledger.apply_grant(
            db,
            user_id,
            self.free_tier_floor,
            transaction_type="signup",
            description="Free plan starting credits",
            source=f"signup:{user_id}",
        )

    def sweep_expired_holds(self, db: Session) -> int:
        return len(self.holds.sweep_expired(db))

    def audit(self, db: Session, user_id: str) -> ledger.LedgerAudit:
        audit = ledger.audit_account(db, user_id)
        if not audit.consistent:
            logger.error(
                "credits.ledger_drift user=%s stored=%s transactions=%s",
                user_id,
                from_minor(audit.stored_balance),
                from_minor(audit.transactions_total),
            )
        return audit


_CREDIT_SERVICE: CreditService | None = None


def get_credit_service() -> CreditService:
    global _CREDIT_SERVICE
    if _CREDIT_SERVICE is None:
        holds = build_hold_manager(settings.hold_backend, ttl_s=settings.hold_ttl_s)
        _CREDIT_SERVICE = CreditService(holds, free_tier_floor=settings.free_tier_credits)
    return _CREDIT_SERVICE


def set_credit_service(service: CreditService | None) -> None:
    global _CREDIT_SERVICE
    _CREDIT_SERVICE = service
