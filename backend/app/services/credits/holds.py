"""Credit holds: short-lived reservations against a user's balance.

One outstanding hold per user. A second paid action for the same user fails
with ``HoldConflict`` (or ``InsufficientCredits`` when the remaining balance
would not cover it anyway) until the first hold is committed, released, or
swept after ``ttl_s``.

``InMemoryHoldManager`` keeps holds in the process, so conflicts are only
detected between requests served by the same process. ``DatabaseHoldManager``
stores them in ``credit_holds`` (unique on ``user_id``) and is the one to use
with more than one backend instance.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.credit_hold import CreditHold
from app.services.credits import ledger
from app.services.credits.amounts import from_minor
from app.services.credits.errors import CreditError, HoldConflict, InsufficientCredits, LedgerWriteFailed

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class Hold:
    hold_id: str
    user_id: str
    amount: int
    operation: str
    created_at: datetime


@dataclass(frozen=True)
class HoldResult:
    hold_id: str
    amount: Decimal
    projected_remaining: Decimal


class HoldManager:
    backend = "base"

    def __init__(self, *, ttl_s: int = 3600, clock: Clock | None = None) -> None:
        self.ttl_s = max(1, int(ttl_s or 1))
        self._clock: Clock = clock or ledger.utcnow

    def now(self) -> datetime:
        return _as_utc(self._clock())

    def is_expired(self, hold: Hold, now: datetime) -> bool:
        return (_as_utc(now) - _as_utc(hold.created_at)).total_seconds() > self.ttl_s

    def _new_hold(self, user_id: str, amount: int, operation: str) -> Hold:
        now = self.now()
        hold_id = f"{user_id}_{int(now.timestamp() * 1000)}_{secrets.token_hex(5)}"
        return Hold(hold_id=hold_id, user_id=user_id, amount=amount, operation=operation, created_at=now)

    def _check_available(self, user_id: str, balance: int, existing: Hold | None, amount: int) -> None:
        held = existing.amount if existing else 0
        if balance - held < amount:
            raise InsufficientCredits(available=from_minor(balance), held=from_minor(held), required=from_minor(amount))
        if existing is not None:
            raise HoldConflict(user_id, hold_id=existing.hold_id, held=from_minor(held))

    def held_amount(self, db: Session, user_id: str) -> int:
        hold = self.get(db, user_id)
        return hold.amount if hold else 0

    def get(self, db: Session, user_id: str) -> Hold | None:
        raise NotImplementedError

    def create(self, db: Session, user_id: str, amount: int, operation: str) -> HoldResult:
        raise NotImplementedError

    def release(self, db: Session, user_id: str, hold_id: str | None = None) -> bool:
        raise NotImplementedError

    def sweep_expired(self, db: Session, now_fn: Clock | None = None) -> list[Hold]:
        raise NotImplementedError

    def list_holds(self, db: Session) -> list[Hold]:
        raise NotImplementedError


class InMemoryHoldManager(HoldManager):
    backend = "memory"

    def __init__(self, *, ttl_s: int = 3600, clock: Clock | None = None) -> None:
        super().__init__(ttl_s=ttl_s, clock=clock)
        self._holds: dict[str, Hold] = {}
        self._lock = threading.Lock()

    def get(self, db: Session, user_id: str) -> Hold | None:
        with self._lock:
            return self._holds.get(user_id)

    def create(self, db: Session, user_id: str, amount: int, operation: str) -> HoldResult:
        amount = int(amount)
        if amount <= 0:
            raise ValueError("hold amount must be positive")
        with self._lock:
            balance = ledger.get_balance(db, user_id)
            existing = self._holds.get(user_id)
            self._check_available(user_id, balance, existing, amount)
            hold = self._new_hold(user_id, amount, operation)
            self._holds[user_id] = hold
        logger.info("credits.hold_created user=%s hold=%s amount=%s operation=%s", user_id, hold.hold_id, from_minor(amount), operation)
        return HoldResult(hold_id=hold.hold_id, amount=from_minor(amount), projected_remaining=from_minor(balance - amount))

    def release(self, db: Session, user_id: str, hold_id: str | None = None) -> bool:
        with self._lock:
            hold = self._holds.get(user_id)
            if hold is None or (hold_id and hold.hold_id != hold_id):
                return False
            del self._holds[user_id]
        logger.info("credits.hold_released user=%s hold=%s amount=%s", user_id, hold.hold_id, from_minor(hold.amount))
        return True

    def sweep_expired(self, db: Session | None = None, now_fn: Clock | None = None) -> list[Hold]:
        now = _as_utc((now_fn or self._clock)())
        with self._lock:
            expired = [h for h in self._holds.values() if self.is_expired(h, now)]
            for hold in expired:
                self._holds.pop(hold.user_id, None)
        for hold in expired:
            logger.info("credits.hold_expired user=%s hold=%s amount=%s", hold.user_id, hold.hold_id, from_minor(hold.amount))
        return expired

    def list_holds(self, db: Session | None = None) -> list[Hold]:
        with self._lock:
            return list(self._holds.values())


def _to_hold(row: CreditHold) -> Hold:
    return Hold(
        hold_id=row.hold_id,
        user_id=row.user_id,
        amount=int(row.amount),
        operation=row.operation,
        created_at=_as_utc(row.created_at),
    )


class DatabaseHoldManager(HoldManager):
    backend = "database"

    def get(self, db: Session, user_id: str) -> Hold | None:
        row = db.query(CreditHold).filter(CreditHold.user_id == user_id).first()
        return _to_hold(row) if row is not None else None

    def create(self, db: Session, user_id: str, amount: int, operation: str) -> HoldResult:
        amount = int(amount)
        if amount <= 0:
            raise ValueError("hold amount must be positive")
        try:
            acct = ledger.get_account(db, user_id, for_update=True)
            balance = int(acct.credits_remaining or 0)
            existing = self.get(db, user_id)
            self._check_available(user_id, balance, existing, amount)
            hold = self._new_hold(user_id, amount, operation)
            db.add(
                CreditHold(
                    hold_id=hold.hold_id,
                    user_id=user_id,
                    amount=amount,
                    operation=operation,
                    created_at=hold.created_at,
                )
            )
            db.commit()
        except CreditError:
            db.rollback()
            raise
        except IntegrityError:
            # another process inserted the user's hold first
            db.rollback()
            current = self.get(db, user_id)
            raise HoldConflict(
                user_id,
                hold_id=(current.hold_id if current else None),
                held=(from_minor(current.amount) if current else None),
            )
        except SQLAlchemyError as e:
            db.rollback()
            raise LedgerWriteFailed("Failed to store credit hold", cause=e) from e

        logger.info("credits.hold_created user=%s hold=%s amount=%s operation=%s", user_id, hold.hold_id, from_minor(amount), operation)
        return HoldResult(hold_id=hold.hold_id, amount=from_minor(amount), projected_remaining=from_minor(balance - amount))

    def release(self, db: Session, user_id: str, hold_id: str | None = None) -> bool:
        try:
            q = db.query(CreditHold).filter(CreditHold.user_id == user_id)
            if hold_id:
                q = q.filter(CreditHold.hold_id == hold_id)
            deleted = q.delete(synchronize_session=False)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise LedgerWriteFailed("Failed to release credit hold", cause=e) from e
        if deleted:
            logger.info("credits.hold_released user=%s hold=%s", user_id, hold_id or "*")
        return bool(deleted)

    def sweep_expired(self, db: Session, now_fn: Clock | None = None) -> list[Hold]:
        now = _as_utc((now_fn or self._clock)())
        cutoff = now - timedelta(seconds=self.ttl_s)
        try:
            rows = db.query(CreditHold).filter(CreditHold.created_at < cutoff).all()
            expired = [_to_hold(r) for r in rows]
            if expired:
                (
                    db.query(CreditHold)
                    .filter(CreditHold.hold_id.in_([h.hold_id for h in expired]))
                    .delete(synchronize_session=False)
                )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise LedgerWriteFailed("Failed to sweep credit holds", cause=e) from e
        for hold in expired:
            logger.info("credits.hold_expired user=%s hold=%s amount=%s", hold.user_id, hold.hold_id, from_minor(hold.amount))
        return expired

    def list_holds(self, db: Session) -> list[Hold]:
        return [_to_hold(r) for r in db.query(CreditHold).order_by(CreditHold.created_at.asc()).all()]


def build_hold_manager(backend: str, *, ttl_s: int = 3600, clock: Clock | None = None) -> HoldManager:
    b = (backend or "").strip().lower()
    if b == "memory":
        return InMemoryHoldManager(ttl_s=ttl_s, clock=clock)
    if b == "database":
        return DatabaseHoldManager(ttl_s=ttl_s, clock=clock)
    raise ValueError(f"Unknown HOLD_BACKEND: {backend!r}")


class HoldSweeper:
    def __init__(self, holds: HoldManager, session_factory: Callable[[], Session], *, interval_s: int = 1800) -> None:
        self._holds = holds
        self._session_factory = session_factory
        self._interval_s = max(1, int(interval_s or 1))
        self._task: asyncio.Task | None = None

    def sweep_once(self) -> int:
        db = self._session_factory()
        try:
            return len(self._holds.sweep_expired(db))
        finally:
            db.close()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval_s)
            try:
                # sync SQLAlchemy session; keep it off the event loop
                released = await asyncio.to_thread(self.sweep_once)
            except Exception:
                logger.exception("credits.hold_sweep_failed")
                continue
            if released:
                logger.info("credits.hold_sweep released=%s", released)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
