from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Generic, TypeVar

from sqlalchemy.orm import Session

from app.services.credits.amounts import AmountLike, from_minor, positive_minor
from app.services.credits.errors import (
    DuplicateSubmission,
    ExternalProviderError,
    InsufficientCredits,
    LedgerWriteFailed,
)
from app.services.credits.service import CreditService

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PaidOperationResult(Generic[T]):
    value: T
    charged: bool
    hold_id: str
    amount: Decimal
    new_balance: Decimal | None = None


async def run_paid_operation(
    db: Session,
    *,
    service: CreditService,
    user_id: str,
    operation: str,
    amount: AmountLike,
    action: Callable[[], Awaitable[T]],
    timeout_s: float,
    is_duplicate: Callable[[], bool] | None = None,
    target: str | None = None,
    billable: Callable[[T], bool] | None = None,
    metadata: Callable[[T], dict[str, Any]] | dict[str, Any] | None = None,
    deduct_retries: int = 3,
    retry_base_s: float = 0.5,
) -> PaidOperationResult[T]:
    """Run one paid external action under a credit hold.

    The amount is fixed before the call and is exactly what gets deducted.
    A failed, cancelled, or timed-out ``action`` releases the hold and raises
    ``ExternalProviderError``. When ``billable`` returns False for the result
    the hold is released and the result is returned uncharged.
    """
    amount_minor = positive_minor(amount)

    if is_duplicate is not None and is_duplicate():
        raise DuplicateSubmission(operation, target or str(user_id))

    check = service.check_credits(db, user_id, from_minor(amount_minor))
    if not check.has_enough:
        raise InsufficientCredits(available=check.available, held=check.held, required=from_minor(amount_minor))

    hold = service.create_credit_hold(db, user_id, from_minor(amount_minor), operation)

    try:
        value = await asyncio.wait_for(action(), timeout=timeout_s)
    except asyncio.TimeoutError:
        service.release_credit_hold(db, user_id, hold.hold_id)
        logger.warning("credits.paid_call_timeout user=%s operation=%s timeout_s=%s", user_id, operation, timeout_s)
        raise ExternalProviderError(operation, f"timed out after {timeout_s}s")
    except asyncio.CancelledError:
        service.release_credit_hold(db, user_id, hold.hold_id)
        raise
    except ExternalProviderError:
        service.release_credit_hold(db, user_id, hold.hold_id)
        raise
    except Exception as e:
        service.release_credit_hold(db, user_id, hold.hold_id)
        logger.warning("credits.paid_call_failed user=%s operation=%s error=%s", user_id, operation, e)
        raise ExternalProviderError(operation, str(e) or e.__class__.__name__) from e

    if billable is not None and not billable(value):
        service.release_credit_hold(db, user_id, hold.hold_id)
        logger.info("credits.paid_call_not_billable user=%s operation=%s", user_id, operation)
        return PaidOperationResult(value=value, charged=False, hold_id=hold.hold_id, amount=from_minor(amount_minor))

    meta = metadata(value) if callable(metadata) else (metadata or {})
    meta = {"hold_id": hold.hold_id, **meta}

    attempts = max(1, int(deduct_retries or 1))
    for attempt in range(1, attempts + 1):
        try:
            result = service.deduct_credits(db, user_id, from_minor(amount_minor), operation, meta)
            break
        except LedgerWriteFailed:
            if attempt < attempts:
                sleep_s = retry_base_s * (2 ** (attempt - 1)) + random.random() * 0.25
                logger.warning(
                    "credits.deduct_retry user=%s operation=%s attempt=%s sleep_s=%.2f", user_id, operation, attempt, sleep_s
                )
                await asyncio.sleep(min(15.0, sleep_s))
                continue
            service.release_credit_hold(db, user_id, hold.hold_id)
            raise
        except InsufficientCredits:
            service.release_credit_hold(db, user_id, hold.hold_id)
            raise

    return PaidOperationResult(
        value=value,
        charged=True,
        hold_id=hold.hold_id,
        amount=result.deducted,
        new_balance=result.new_balance,
    )
