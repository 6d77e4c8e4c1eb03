import asyncio
import unittest
from datetime import timedelta
from decimal import Decimal

from db_support import make_session_factory, seed_account

from app.models.credit_transaction import CreditTransaction
from app.services.credits import ledger
from app.services.credits.errors import (
    DuplicateSubmission,
    ExternalProviderError,
    HoldConflict,
    InsufficientCredits,
    LedgerWriteFailed,
)
from app.services.credits.holds import InMemoryHoldManager
from app.services.credits.paid_operation import run_paid_operation
from app.services.credits.service import CreditService


class _FlakyLedgerService(CreditService):
    def __init__(self, *args, failures: int, **kwargs):
        super().__init__(*args, **kwargs)
        self.failures = failures
        self.calls = 0

    def deduct_credits(self, db, user_id, amount, operation, metadata=None):
        self.calls += 1
        if self.calls <= self.failures:
            raise LedgerWriteFailed("simulated outage")
        return super().deduct_credits(db, user_id, amount, operation, metadata)


class _ReleaseFailsOnceHolds(InMemoryHoldManager):
    """Fails the first unconditional release, the one made after a deduction."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.failed = False

    def release(self, db, user_id, hold_id=None):
        if hold_id is None and not self.failed:
            self.failed = True
            raise LedgerWriteFailed("simulated release outage")
        return super().release(db, user_id, hold_id)


class TestRunPaidOperation(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.engine, self.Session = make_session_factory()
        self.db = self.Session()
        self.holds = InMemoryHoldManager(ttl_s=3600)
        self.service = CreditService(self.holds, free_tier_floor=7)
        seed_account(self.db, "u1", credits=7)

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    async def _run(self, action, **kwargs):
        params = {
            "service": self.service,
            "user_id": "u1",
            "operation": "profile_extraction",
            "amount": 1,
            "action": action,
            "timeout_s": 5,
            "retry_base_s": 0,
        }
        params.update(kwargs)
        return await run_paid_operation(self.db, **params)

    def _balance(self) -> int:
        return ledger.get_balance(self.db, "u1")

    async def test_success_charges_exactly_the_held_amount(self):
        async def action():
            return {"snapshot_id": "s1"}

        result = await self._run(action, metadata=lambda v: {"snapshot_id": v["snapshot_id"]})
        self.assertTrue(result.charged)
        self.assertEqual(result.amount, Decimal("1.00"))
        self.assertEqual(result.new_balance, Decimal("6.00"))
        self.assertEqual(self._balance(), 600)
        self.assertIsNone(self.holds.get(self.db, "u1"))

        row = (
            self.db.query(CreditTransaction)
            .filter(CreditTransaction.user_id == "u1", CreditTransaction.transaction_type == "deduction")
            .one()
        )
        self.assertEqual(row.event_metadata["hold_id"], result.hold_id)
        self.assertEqual(row.event_metadata["snapshot_id"], "s1")

    async def test_provider_failure_releases_hold_without_charge(self):
        async def action():
            raise RuntimeError("provider returned 500")

        with self.assertRaises(ExternalProviderError) as ctx:
            await self._run(action)
        self.assertIn("provider returned 500", ctx.exception.reason)
        self.assertFalse(ctx.exception.to_dict()["charged"])
        self.assertEqual(self._balance(), 700)
        self.assertIsNone(self.holds.get(self.db, "u1"))
        self.assertEqual(ledger.audit_account(self.db, "u1").transaction_count, 1)

    async def test_timeout_releases_hold(self):
        async def action():
            await asyncio.sleep(5)

        with self.assertRaises(ExternalProviderError):
            await self._run(action, timeout_s=0.05)
        self.assertEqual(self._balance(), 700)
        self.assertIsNone(self.holds.get(self.db, "u1"))

    async def test_cancellation_releases_hold(self):
        started = asyncio.Event()

        async def action():
            started.set()
            await asyncio.sleep(5)

        task = asyncio.ensure_future(self._run(action))
        await started.wait()
        self.assertIsNotNone(self.holds.get(self.db, "u1"))
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task
        self.assertIsNone(self.holds.get(self.db, "u1"))
        self.assertEqual(self._balance(), 700)

    async def test_duplicate_rejected_before_hold(self):
        calls = []

        async def action():
            calls.append(1)

        with self.assertRaises(DuplicateSubmission):
            await self._run(action, is_duplicate=lambda: True, target="https://www.linkedin.com/in/ada")
        self.assertEqual(calls, [])
        self.assertIsNone(self.holds.get(self.db, "u1"))

    async def test_insufficient_credits_skips_provider(self):
        calls = []

        async def action():
            calls.append(1)

        with self.assertRaises(InsufficientCredits):
            await self._run(action, amount=8)
        self.assertEqual(calls, [])

    async def test_concurrent_operation_conflicts(self):
        self.service.create_credit_hold(self.db, "u1", 1, "message_generation")

        async def action():
            return "x"

        with self.assertRaises(HoldConflict):
            await self._run(action)

    async def test_not_billable_result_is_free(self):
        async def action():
            return {"status": "not_found"}

        result = await self._run(action, amount=2, operation="email_finder", billable=lambda r: r["status"] == "verified")
        self.assertFalse(result.charged)
        self.assertIsNone(result.new_balance)
        self.assertEqual(self._balance(), 700)
        self.assertIsNone(self.holds.get(self.db, "u1"))

    async def test_ledger_outage_is_retried(self):
        service = _FlakyLedgerService(self.holds, free_tier_floor=7, failures=2)

        async def action():
            return "ok"

        result = await self._run(action, service=service, deduct_retries=3)
        self.assertTrue(result.charged)
        self.assertEqual(service.calls, 3)
        self.assertEqual(self._balance(), 600)
        self.assertIsNone(self.holds.get(self.db, "u1"))

    async def test_ledger_outage_exhausted_releases_hold(self):
        service = _FlakyLedgerService(self.holds, free_tier_floor=7, failures=10)

        async def action():
            return "ok"

        with self.assertRaises(LedgerWriteFailed):
            await self._run(action, service=service, deduct_retries=2)
        self.assertEqual(service.calls, 2)
        self.assertEqual(self._balance(), 700)
        self.assertIsNone(self.holds.get(self.db, "u1"))

    async def test_failed_release_after_deduction_charges_once(self):
        holds = _ReleaseFailsOnceHolds(ttl_s=3600)
        service = CreditService(holds, free_tier_floor=7)

        async def action():
            return "ok"

        result = await self._run(action, service=service, amount=2, deduct_retries=3)
        self.assertTrue(result.charged)
        self.assertTrue(holds.failed)
        self.assertEqual(result.new_balance, Decimal("5.00"))
        self.assertEqual(self._balance(), 500)

        deductions = (
            self.db.query(CreditTransaction)
            .filter(CreditTransaction.user_id == "u1", CreditTransaction.transaction_type == "deduction")
            .count()
        )
        self.assertEqual(deductions, 1)
        audit = ledger.audit_account(self.db, "u1")
        self.assertTrue(audit.consistent)
        self.assertEqual(audit.transaction_count, 2)

        # the stale hold is left for the sweeper
        self.assertIsNotNone(holds.get(self.db, "u1"))
        self.assertEqual(len(holds.sweep_expired(self.db, now_fn=lambda: ledger.utcnow() + timedelta(hours=2))), 1)

    async def test_rejects_bad_amount(self):
        async def action():
            return "x"

        with self.assertRaises(ValueError):
            await self._run(action, amount=0)


if __name__ == "__main__":
    unittest.main()
