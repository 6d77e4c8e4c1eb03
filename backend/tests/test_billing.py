import unittest

from db_support import make_session_factory, seed_account

from app.models.credit_transaction import CreditTransaction
from app.services.billing import apply_billing_event, event_from_chargebee
from app.services.credits import ledger
from app.services.credits.errors import AccountNotFound


def subscription_payload(event_id="ev_1", plan="Silver-Monthly", user_id="u1", event_type="subscription_renewed"):
    return {
        "id": event_id,
        "event_type": event_type,
        "content": {
            "customer": {"email": "U1@Example.com"},
            "subscription": {
                "id": "sub_1",
                "cf_user_id": user_id,
                "subscription_items": [{"item_type": "plan", "item_price_id": plan}],
            },
        },
    }


def invoice_payload(event_id="ev_2", plan="Gold-PAYG-USD", invoice_id="inv_1", event_type="payment_succeeded", email="u1@example.com"):
    return {
        "id": event_id,
        "event_type": event_type,
        "content": {
            "customer": {"email": email},
            "invoice": {
                "id": invoice_id,
                "line_items": [{"entity_type": "charge_item_price", "entity_id": plan}],
            },
        },
    }


class TestEventParsing(unittest.TestCase):
    def test_subscription_event(self):
        event = event_from_chargebee(subscription_payload())
        self.assertEqual(event.user_id, "u1")
        self.assertEqual(event.plan_code, "silver-monthly")
        self.assertEqual(event.renewable_credits, 30)
        self.assertEqual(event.billing_model, "monthly")
        self.assertEqual(event.event_id, "ev_1")
        self.assertEqual(event.customer_email, "u1@example.com")

    def test_invoice_event_is_keyed_on_invoice(self):
        event = event_from_chargebee(invoice_payload())
        self.assertEqual(event.billing_model, "one_time")
        self.assertEqual(event.renewable_credits, 100)
        self.assertEqual(event.event_id, "invoice:inv_1")
        self.assertIsNone(event.user_id)

    def test_ignored_events(self):
        self.assertIsNone(event_from_chargebee({"id": "ev", "event_type": "customer_created", "content": {}}))
        self.assertIsNone(event_from_chargebee(subscription_payload(plan="Diamond-Monthly")))
        # monthly plans are billed from subscription events only
        self.assertIsNone(event_from_chargebee(invoice_payload(plan="Gold-Monthly")))
        self.assertIsNone(event_from_chargebee(subscription_payload(plan="Gold-PAYG-USD")))

    def test_cancel_event(self):
        event = event_from_chargebee(subscription_payload(event_type="subscription_cancelled"))
        self.assertEqual(event.kind, "cancel")
        self.assertIsNone(event.plan_code)


class TestApplyBillingEvent(unittest.TestCase):
    def setUp(self):
        self.engine, self.Session = make_session_factory()
        self.db = self.Session()
        seed_account(self.db, "u1", credits=7, email="u1@example.com")

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def apply(self, payload):
        return apply_billing_event(self.db, event_from_chargebee(payload))

    def test_monthly_renewal_raises_to_allowance(self):
        outcome = self.apply(subscription_payload())
        self.assertTrue(outcome.applied)
        self.assertEqual((outcome.old_balance, outcome.new_balance), (7.0, 30.0))

        acct = ledger.get_account(self.db, "u1")
        self.assertEqual(acct.package_type, "silver-monthly")
        self.assertEqual(acct.billing_model, "monthly")
        row = (
            self.db.query(CreditTransaction)
            .filter(CreditTransaction.user_id == "u1", CreditTransaction.transaction_type == "renewal")
            .one()
        )
        self.assertEqual(row.source, "chargebee:ev_1")
        self.assertEqual(row.credits_change, 2300)

    def test_replayed_webhook_grants_once(self):
        self.apply(subscription_payload())
        ledger.apply_deduction(self.db, "u1", 500, "profile_extraction")
        replay = self.apply(subscription_payload())
        self.assertFalse(replay.applied)
        self.assertEqual(ledger.get_balance(self.db, "u1"), 2500)

    def test_next_renewal_resets_to_allowance_without_stacking(self):
        self.apply(subscription_payload(event_id="ev_1"))
        ledger.apply_deduction(self.db, "u1", 500, "profile_extraction")
        self.apply(subscription_payload(event_id="ev_2"))
        self.assertEqual(ledger.get_balance(self.db, "u1"), 3000)

    def test_one_time_purchase_is_additive_and_deduped(self):
        outcome = self.apply(invoice_payload(event_id="ev_a", event_type="invoice_generated"))
        self.assertTrue(outcome.applied)
        self.assertEqual(outcome.new_balance, 107.0)

        # the payment event for the same invoice is not a second purchase
        again = self.apply(invoice_payload(event_id="ev_b", event_type="payment_succeeded"))
        self.assertFalse(again.applied)
        self.assertEqual(ledger.get_balance(self.db, "u1"), 10700)

        acct = ledger.get_account(self.db, "u1")
        self.assertEqual(acct.package_type, "gold-payasyougo")
        self.assertEqual(acct.billing_model, "one_time")

    def test_one_time_purchase_keeps_monthly_plan(self):
        self.apply(subscription_payload())
        self.apply(invoice_payload())
        acct = ledger.get_account(self.db, "u1")
        self.assertEqual(acct.package_type, "silver-monthly")
        self.assertEqual(ledger.get_balance(self.db, "u1"), 13000)

    def test_cancel_returns_to_free_and_keeps_balance(self):
        self.apply(subscription_payload())
        outcome = self.apply(subscription_payload(event_id="ev_c", event_type="subscription_cancelled"))
        self.assertEqual(outcome.kind, "cancel")
        acct = ledger.get_account(self.db, "u1")
        self.assertEqual(acct.package_type, "free")
        self.assertIsNone(acct.plan_code)
        self.assertEqual(ledger.get_balance(self.db, "u1"), 3000)

    def test_unknown_user(self):
        with self.assertRaises(AccountNotFound):
            self.apply(invoice_payload(email="stranger@example.com"))

    def test_audit_stays_consistent(self):
        self.apply(subscription_payload())
        self.apply(invoice_payload())
        self.assertTrue(ledger.audit_account(self.db, "u1").consistent)


if __name__ == "__main__":
    unittest.main()
