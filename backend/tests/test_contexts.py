import unittest
from datetime import datetime, timedelta, timezone

from db_support import make_session_factory, seed_account

from app.models.context_addon import ContextAddon
from app.services import contexts
from app.services.credits.errors import AccountNotFound

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def addon_payload(event_type="subscription_created", subscription_id="sub_addon_1", quantity=2, customer_id="user_u1", email=None):
    return {
        "id": f"ev_{event_type}",
        "event_type": event_type,
        "content": {
            "customer": {"id": customer_id, "email": email},
            "subscription": {
                "id": subscription_id,
                "status": "active",
                "next_billing_at": int(NOW.timestamp()) + 30 * 86400,
                "subscription_items": [{"item_type": "plan", "item_price_id": "extra-context-slot", "quantity": quantity}],
            },
        },
    }


class _ContextTestCase(unittest.TestCase):
    def setUp(self):
        self.engine, self.Session = make_session_factory()
        self.db = self.Session()

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def add_addon(self, event_type="subscription_created", **kwargs):
        event = contexts.addon_event_from_chargebee(addon_payload(event_type, **kwargs))
        return contexts.apply_addon_event(self.db, event, now=NOW)


class TestPlanLimits(_ContextTestCase):
    def test_base_limits_follow_plan(self):
        self.assertEqual(contexts.base_limit("free"), 1)
        self.assertEqual(contexts.base_limit("Gold-Monthly"), 6)
        self.assertEqual(contexts.base_limit("platinum-monthly"), 10)
        self.assertEqual(contexts.base_limit("gold-payasyougo"), 1)
        self.assertEqual(contexts.base_limit("diamond-monthly"), 1)
        self.assertEqual(contexts.base_limit(None), 1)

    def test_limits_for_unknown_user(self):
        with self.assertRaises(AccountNotFound):
            contexts.context_limits(self.db, "nobody")

    def test_free_plan_keeps_one_context(self):
        seed_account(self.db, "u1")
        contexts.create_context(self.db, "u1", "Looms", "We build looms.")
        limits = contexts.context_limits(self.db, "u1")
        self.assertEqual((limits.limit, limits.used, limits.remaining), (1, 1, 0))
        self.assertFalse(limits.can_save_more)
        with self.assertRaises(contexts.ContextLimitReached) as ctx:
            contexts.create_context(self.db, "u1", "Engines", "We also build engines.")
        self.assertEqual(ctx.exception.limit, 1)

    def test_active_addons_add_slots(self):
        seed_account(self.db, "u1", package_type="silver-monthly")
        self.add_addon(quantity=2)
        self.add_addon(subscription_id="sub_addon_2", quantity=1)
        limits = contexts.context_limits(self.db, "u1")
        self.assertEqual(limits.base_limit, 3)
        self.assertEqual(limits.extra_slots, 3)
        self.assertEqual(limits.limit, 6)


class TestSavedContexts(_ContextTestCase):
    def setUp(self):
        super().setUp()
        seed_account(self.db, "u1", package_type="gold-monthly")
        seed_account(self.db, "u2", package_type="gold-monthly")

    def test_create_trims_and_lists(self):
        row = contexts.create_context(self.db, "u1", "  Looms ", "  We build looms.\n")
        self.assertEqual(row.context_name, "Looms")
        self.assertEqual(row.context_text, "We build looms.")
        self.assertEqual([c.id for c in contexts.list_contexts(self.db, "u1")], [row.id])
        self.assertEqual(contexts.list_contexts(self.db, "u2"), [])

    def test_validation(self):
        with self.assertRaises(ValueError):
            contexts.create_context(self.db, "u1", " ", "text")
        with self.assertRaises(ValueError):
            contexts.create_context(self.db, "u1", "name", "")
        with self.assertRaises(ValueError):
            contexts.create_context(self.db, "u1", "x" * 101, "text")
        contexts.create_context(self.db, "u1", "x" * 100, "text")

    def test_duplicate_name_per_user(self):
        contexts.create_context(self.db, "u1", "Looms", "one")
        with self.assertRaises(ValueError):
            contexts.create_context(self.db, "u1", "Looms", "two")
        # another user may use the same name
        contexts.create_context(self.db, "u2", "Looms", "three")
        self.assertEqual(contexts.context_limits(self.db, "u1").used, 1)

    def test_update(self):
        first = contexts.create_context(self.db, "u1", "Looms", "one")
        second = contexts.create_context(self.db, "u1", "Engines", "two")
        updated = contexts.update_context(self.db, "u1", first.id, text=" new text ")
        self.assertEqual(updated.context_text, "new text")
        self.assertEqual(updated.context_name, "Looms")
        with self.assertRaises(ValueError):
            contexts.update_context(self.db, "u1", second.id, name="Looms")
        with self.assertRaises(LookupError):
            contexts.update_context(self.db, "u2", first.id, text="mine now")

    def test_delete_frees_a_slot(self):
        row = contexts.create_context(self.db, "u1", "Looms", "one")
        with self.assertRaises(LookupError):
            contexts.delete_context(self.db, "u2", row.id)
        contexts.delete_context(self.db, "u1", row.id)
        with self.assertRaises(LookupError):
            contexts.get_context(self.db, "u1", row.id)
        self.assertEqual(contexts.context_limits(self.db, "u1").used, 0)


class TestAddonEvents(_ContextTestCase):
    def setUp(self):
        super().setUp()
        seed_account(self.db, "u1", package_type="free", email="u1@example.com")

    def test_parsing(self):
        event = contexts.addon_event_from_chargebee(addon_payload())
        self.assertEqual(event.subscription_id, "sub_addon_1")
        self.assertEqual(event.quantity, 2)
        self.assertEqual(event.user_hint, "u1")
        self.assertEqual(event.next_billing_at, NOW + timedelta(days=30))

    def test_plan_subscriptions_are_not_addons(self):
        payload = addon_payload()
        payload["content"]["subscription"]["subscription_items"] = [{"item_type": "plan", "item_price_id": "Gold-Monthly"}]
        self.assertIsNone(contexts.addon_event_from_chargebee(payload))
        self.assertIsNone(contexts.addon_event_from_chargebee(addon_payload(event_type="invoice_generated")))

    def test_created_is_idempotent(self):
        self.add_addon(quantity=2)
        self.add_addon(quantity=2)
        self.assertEqual(self.db.query(ContextAddon).count(), 1)
        self.assertEqual(contexts.active_extra_slots(self.db, "u1"), 2)

    def test_resolves_user_by_email(self):
        outcome = self.add_addon(customer_id="cb_123", email="U1@example.com")
        self.assertEqual(outcome.user_id, "u1")

    def test_unknown_customer(self):
        with self.assertRaises(AccountNotFound):
            self.add_addon(customer_id="user_nobody")

    def test_cancel_stops_counting_then_expires(self):
        self.add_addon(quantity=2)
        outcome = self.add_addon("subscription_cancelled")
        self.assertEqual(outcome.status, "cancelled")
        self.assertEqual(contexts.active_extra_slots(self.db, "u1"), 0)

        self.assertEqual(contexts.expire_addons(self.db, now=NOW + timedelta(days=2)), 0)
        self.assertEqual(contexts.expire_addons(self.db, now=NOW + timedelta(days=3, seconds=1)), 1)
        self.assertEqual(contexts.list_addons(self.db, "u1")[0].status, "expired")

    def test_payment_failure_then_reactivation(self):
        self.add_addon(quantity=1)
        self.assertEqual(self.add_addon("payment_failed").status, "grace_period")
        self.assertEqual(contexts.context_limits(self.db, "u1").limit, 1)
        self.assertEqual(self.add_addon("subscription_reactivated", quantity=1).status, "active")
        self.assertEqual(contexts.context_limits(self.db, "u1").limit, 2)
        row = contexts.list_addons(self.db, "u1")[0]
        self.assertIsNone(row.expires_at)

    def test_event_for_unknown_subscription_is_not_applied(self):
        outcome = self.add_addon("subscription_renewed", subscription_id="sub_missing")
        self.assertFalse(outcome.applied)
        self.assertEqual(self.db.query(ContextAddon).count(), 0)


if __name__ == "__main__":
    unittest.main()
