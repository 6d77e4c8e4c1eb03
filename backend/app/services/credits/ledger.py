"""Durable balance + append-only transaction log.

Every mutating call writes the balance and exactly one ``credits_transactions``
row in the same database transaction. The stored balance is a projection of the
transaction log and ``audit_account`` checks that it never drifts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.account import Account
from app.models.credit_transaction import CreditTransaction
from app.services.credits.amounts import as_float, from_minor
from app.services.credits.errors import AccountNotFound, CreditError, InsufficientCredits, LedgerWriteFailed

logger = logging.getLogger(__name__)

TRANSACTION_TYPES = ("signup", "deduction", "reset", "renewal", "topup")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LedgerChange:
    applied: bool
    old_balance: int
    new_balance: int
    transaction_id: int | None = None


@dataclass(frozen=True)
class LedgerAudit:
    user_id: str
    stored_balance: int
    transactions_total: int
    transaction_count: int

    @property
    def consistent(self) -> bool:
        return self.stored_balance == self.transactions_total


def get_or_create_account(db: Session, user_id: str, *, email: str = "", display_name: str | None = None) -> tuple[Account, bool]:
    acct = db.query(Account).filter(Account.id == user_id).first()
    if acct is not None:
        return acct, False
    acct = Account(
        id=user_id,
        email=email,
        display_name=display_name,
        credits_remaining=0,
        package_type="free",
        billing_model="monthly",
    )
    db.add(acct)
    try:
        db.commit()
    except IntegrityError:
        # concurrent first login created it
        db.rollback()
        return get_account(db, user_id), False
    except SQLAlchemyError as e:
        db.rollback()
        raise LedgerWriteFailed("Failed to create account", cause=e) from e
    db.refresh(acct)
    return acct, True


def get_account(db: Session, user_id: str, *, for_update: bool = False) -> Account:
    q = db.query(Account).filter(Account.id == user_id)
    if for_update:
        q = q.with_for_update().populate_existing()
    acct = q.first()
    if acct is None:
        raise AccountNotFound(user_id)
    return acct


def get_balance(db: Session, user_id: str) -> int:
    row = db.query(Account.credits_remaining).filter(Account.id == user_id).first()
    if row is None:
        raise AccountNotFound(user_id)
    return int(row[0] or 0)


def _source_exists(db: Session, user_id: str, source: str) -> bool:
    existing = (
        db.query(CreditTransaction.id)
        .filter(CreditTransaction.user_id == user_id, CreditTransaction.source == source)
        .first()
    )
    return existing is not None


def _append(
    db: Session,
    *,
    user_id: str,
    transaction_type: str,
    credits_change: int,
    description: str,
    metadata: dict[str, Any] | None,
    source: str | None = None,
) -> CreditTransaction:
    entry = CreditTransaction(
        user_id=user_id,
        transaction_type=transaction_type,
        credits_change=int(credits_change),
        description=description,
        source=source,
        event_metadata=(metadata or None),
        created_at=utcnow(),
    )
    db.add(entry)
    db.flush()
    return entry


def apply_deduction(
    db: Session,
    user_id: str,
    amount: int,
    operation: str,
    metadata: dict[str, Any] | None = None,
) -> int:
    amount = int(amount)
    if amount <= 0:
        raise ValueError("deduction amount must be positive")
    try:
        acct = get_account(db, user_id, for_update=True)
        current = int(acct.credits_remaining or 0)
        if amount > current:
            raise InsufficientCredits(available=from_minor(current), held=from_minor(0), required=from_minor(amount))

        # Conditional update keeps the no-lost-update guarantee on engines
        # where FOR UPDATE is a no-op (SQLite).
        result = db.execute(
            update(Account)
            .where(Account.id == user_id, Account.credits_remaining >= amount)
            .values(credits_remaining=Account.credits_remaining - amount)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            latest = get_balance(db, user_id)
            raise InsufficientCredits(available=from_minor(latest), held=from_minor(0), required=from_minor(amount))

        new_balance = get_balance(db, user_id)
        old_balance = new_balance + amount
        _append(
            db,
            user_id=user_id,
            transaction_type="deduction",
            credits_change=-amount,
            description=f"Credit deduction: {operation}",
            metadata={
                "operation": operation,
                "old_balance": as_float(old_balance),
                "new_balance": as_float(new_balance),
                **(metadata or {}),
            },
        )
        db.commit()
    except CreditError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("credits.deduction_write_failed user=%s operation=%s error=%s", user_id, operation, e)
        raise LedgerWriteFailed(cause=e) from e

    logger.info(
        "credits.deducted user=%s operation=%s amount=%s balance=%s->%s",
        user_id,
        operation,
        from_minor(amount),
        from_minor(old_balance),
        from_minor(new_balance),
    )
    return new_balance


def apply_reset(
    db: Session,
    user_id: str,
    target_floor: int,
    *,
    transaction_type: str = "reset",
    description: str = "Monthly free credit reset",
    metadata: dict[str, Any] | None = None,
    source: str | None = None,
) -> LedgerChange:
    target_floor = int(target_floor)
    try:
        acct = get_account(db, user_id, for_update=True)
        current = int(acct.credits_remaining or 0)
        if current >= target_floor or (source and _source_exists(db, user_id, source)):
            db.rollback()
            return LedgerChange(applied=False, old_balance=current, new_balance=current)

        result = db.execute(
            update(Account)
            .where(Account.id == user_id, Account.credits_remaining == current)
            .values(credits_remaining=target_floor)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise LedgerWriteFailed("Balance changed during reset")
        entry = _append(
            db,
            user_id=user_id,
            transaction_type=transaction_type,
            credits_change=target_floor - current,
            description=description,
            metadata={
                "operation": transaction_type,
                "old_balance": as_float(current),
                "new_balance": as_float(target_floor),
                **(metadata or {}),
            },
            source=source,
        )
        entry_id = entry.id
        db.commit()
    except CreditError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        raise LedgerWriteFailed(cause=e) from e

    logger.info(
        "credits.reset user=%s type=%s balance=%s->%s",
        user_id,
        transaction_type,
        from_minor(current),
        from_minor(target_floor),
    )
    return LedgerChange(applied=True, old_balance=current, new_balance=target_floor, transaction_id=entry_id)


def apply_grant(
    db: Session,
    user_id: str,
    amount: int,
    *,
    transaction_type: str,
    description: str,
    metadata: dict[str, Any] | None = None,
    source: str | None = None,
) -> LedgerChange:
    amount = int(amount)
    if amount <= 0:
        raise ValueError("grant amount must be positive")
    try:
        acct = get_account(db, user_id, for_update=True)
        current = int(acct.credits_remaining or 0)
        if source and _source_exists(db, user_id, source):
            db.rollback()
            return LedgerChange(applied=False, old_balance=current, new_balance=current)

        db.execute(
            update(Account)
            .where(Account.id == user_id)
            .values(credits_remaining=Account.credits_remaining + amount)
            .execution_options(synchronize_session=False)
        )
        new_balance = get_balance(db, user_id)
        old_balance = new_balance - amount
        entry = _append(
            db,
            user_id=user_id,
            transaction_type=transaction_type,
            credits_change=amount,
            description=description,
            metadata={
                "operation": transaction_type,
                "old_balance": as_float(old_balance),
                "new_balance": as_float(new_balance),
                **(metadata or {}),
            },
            source=source,
        )
        entry_id = entry.id
        db.commit()
    except CreditError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        raise LedgerWriteFailed(cause=e) from e

    logger.info("credits.granted user=%s type=%s amount=%s source=%s", user_id, transaction_type, from_minor(amount), source)
    return LedgerChange(applied=True, old_balance=old_balance, new_balance=new_balance, transaction_id=entry_id)


def list_transactions(db: Session, user_id: str, limit: int = 20) -> list[CreditTransaction]:
    limit = max(1, int(limit or 20))
    return (
        db.query(CreditTransaction)
        .filter(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
        .limit(limit)
        .all()
    )


def audit_account(db: Session, user_id: str) -> LedgerAudit:
    stored = get_balance(db, user_id)
    total, count = (
        db.query(func.coalesce(func.sum(CreditTransaction.credits_change), 0), func.count(CreditTransaction.id))
        .filter(CreditTransaction.user_id == user_id)
        .one()
    )
    return LedgerAudit(
        user_id=user_id,
        stored_balance=stored,
        transactions_total=int(total or 0),
        transaction_count=int(count or 0),
    )
