import unittest
from unittest import mock

from db_support import make_session_factory, seed_account
from fastapi.testclient import TestClient

from app.api import deps
from app.core.database import get_db
from app.core.security import issue_session_token
from app.core.settings import settings
from app.services import contexts
from app.services.credits import ledger
from app.services.credits.holds import InMemoryHoldManager
from app.services.credits.service import CreditService
from app.services.llm.client import LLMResult
from main import app

ADA_URL = "https://www.linkedin.com/in/ada-lovelace"


class FakeScraper:
    async def scrape_profile(self, url):
        return {"snapshot_id": "s_1", "profile": {"name": "Ada Lovelace", "current_company": {"name": "Analytical Engines"}}}


class FakeLLM:
    async def generate(self, prompt, *, system_prompt="", purpose=""):
        return LLMResult(text="Hello Ada.", model="fake-model", usage={})


class TestApi(unittest.TestCase):
    def setUp(self):
        self.engine, self.Session = make_session_factory()
        self.service = CreditService(InMemoryHoldManager(ttl_s=3600), free_tier_floor=7)

        def override_db():
            db = self.Session()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_db
        app.dependency_overrides[deps.credit_service] = lambda: self.service
        app.dependency_overrides[deps.brightdata_client] = lambda: FakeScraper()
        app.dependency_overrides[deps.llm_client] = lambda: FakeLLM()
        self.addCleanup(app.dependency_overrides.clear)
        # no context manager: startup would open the configured database
        self.client = TestClient(app)

    def tearDown(self):
        self.engine.dispose()

    def seed(self, user_id="u1", **kwargs):
        db = self.Session()
        try:
            acct = seed_account(db, user_id, **kwargs)
            return {"Authorization": f"Bearer {issue_session_token(acct)}"}
        finally:
            db.close()

    def balance(self, user_id="u1"):
        db = self.Session()
        try:
            return ledger.get_balance(db, user_id)
        finally:
            db.close()

    def test_health(self):
        r = self.client.get("/health")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json(), {"status": "healthy"})

    def test_requires_bearer_token(self):
        self.assertEqual(self.client.get("/api/credits/balance").status_code, 401)
        r = self.client.get("/api/credits/balance", headers={"Authorization": "Bearer not-a-jwt"})
        self.assertEqual(r.status_code, 401)

    def test_balance_and_check(self):
        headers = self.seed(credits=7)
        r = self.client.get("/api/credits/balance", headers=headers)
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["available"], 7.0)
        self.assertEqual(r.json()["package_type"], "free")

        r = self.client.get("/api/credits/check", params={"required": "8"}, headers=headers)
        self.assertEqual(r.status_code, 200)
        self.assertFalse(r.json()["has_enough"])

        self.assertEqual(self.client.get("/api/credits/check", params={"required": "-1"}, headers=headers).status_code, 422)

    def test_extract_profile_then_duplicate(self):
        headers = self.seed(credits=7)
        r = self.client.post("/api/profiles/extract", json={"profile_url": ADA_URL + "/"}, headers=headers)
        self.assertEqual(r.status_code, 200, r.text)
        body = r.json()
        self.assertTrue(body["charged"])
        self.assertEqual(body["new_balance"], 6.0)
        self.assertEqual(body["profile"]["full_name"], "Ada Lovelace")

        r = self.client.post("/api/profiles/extract", json={"profile_url": ADA_URL}, headers=headers)
        self.assertEqual(r.status_code, 409)
        self.assertEqual(r.json()["detail"]["error"], "DUPLICATE_SUBMISSION")

        r = self.client.get("/api/profiles", headers=headers)
        self.assertEqual([p["linkedin_url"] for p in r.json()], [ADA_URL])

        history = self.client.get("/api/credits/history", headers=headers).json()["transactions"]
        self.assertEqual(history[0]["type"], "deduction")
        self.assertEqual(history[0]["amount"], -1.0)

    def test_insufficient_credits(self):
        headers = self.seed(credits=0)
        r = self.client.post("/api/profiles/extract", json={"profile_url": ADA_URL}, headers=headers)
        self.assertEqual(r.status_code, 402)
        self.assertEqual(r.json()["detail"]["error"], "INSUFFICIENT_CREDITS")

    def test_pending_hold_conflicts_and_can_be_released(self):
        headers = self.seed(credits=7)
        db = self.Session()
        try:
            hold = self.service.create_credit_hold(db, "u1", 1, "message_generation")
        finally:
            db.close()

        r = self.client.post("/api/profiles/extract", json={"profile_url": ADA_URL}, headers=headers)
        self.assertEqual(r.status_code, 409)
        self.assertEqual(r.json()["detail"]["error"], "HOLD_CONFLICT")
        self.assertIn("retry-after", r.headers)

        r = self.client.delete("/api/credits/hold", params={"hold_id": hold.hold_id}, headers=headers)
        self.assertTrue(r.json()["released"])
        r = self.client.post("/api/profiles/extract", json={"profile_url": ADA_URL}, headers=headers)
        self.assertEqual(r.status_code, 200)

    def test_bad_profile_url(self):
        headers = self.seed(credits=7)
        r = self.client.post("/api/profiles/extract", json={"profile_url": "https://example.com/ada"}, headers=headers)
        self.assertEqual(r.status_code, 400)
        self.assertEqual(self.balance(), 700)

    def test_generate_message(self):
        headers = self.seed(credits=7)
        self.client.post("/api/profiles/extract", json={"profile_url": ADA_URL}, headers=headers)
        r = self.client.post(
            "/api/messages/generate",
            json={"target_profile_url": ADA_URL, "outreach_context": "We build looms.", "message_type": "intro_request"},
            headers=headers,
        )
        self.assertEqual(r.status_code, 200, r.text)
        self.assertEqual(r.json()["message"]["generated_message"], "Hello Ada.")
        self.assertEqual(r.json()["new_balance"], 5.0)

        r = self.client.get("/api/messages", headers=headers)
        self.assertEqual(len(r.json()), 1)

    def test_generate_without_profile_is_not_found(self):
        headers = self.seed(credits=7)
        r = self.client.post(
            "/api/messages/generate",
            json={"target_profile_url": ADA_URL, "outreach_context": "Hi"},
            headers=headers,
        )
        self.assertEqual(r.status_code, 404)

    def test_email_finder_disabled(self):
        headers = self.seed(credits=7, package_type="silver-monthly")
        with mock.patch.object(settings, "email_finder_enabled", False):
            r = self.client.post("/api/email-finder/1", headers=headers)
        self.assertEqual(r.status_code, 503)

    def test_admin_routes_require_admin(self):
        headers = self.seed("u1", credits=7)
        self.assertEqual(self.client.get("/api/admin/users", headers=headers).status_code, 403)

        admin_headers = self.seed("boss", credits=0, role="admin")
        r = self.client.get("/api/admin/users", headers=admin_headers)
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["total"], 2)

        r = self.client.get("/api/admin/users/u1/ledger-audit", headers=admin_headers)
        self.assertTrue(r.json()["consistent"])
        r = self.client.post("/api/admin/holds/sweep", headers=admin_headers)
        self.assertEqual(r.json()["released"], 0)
        r = self.client.post("/api/admin/users/u1/reset-free-credits", headers=admin_headers)
        self.assertEqual(r.json()["reason"], "already_at_floor")
        r = self.client.post("/api/admin/context-addons/expire", headers=admin_headers)
        self.assertEqual(r.json(), {"expired": 0})

    def test_saved_contexts_crud_and_limit(self):
        headers = self.seed(credits=7)
        r = self.client.post("/api/contexts", json={"context_name": "Looms", "context_text": "We build looms."}, headers=headers)
        self.assertEqual(r.status_code, 201, r.text)
        context_id = r.json()["id"]

        r = self.client.post("/api/contexts", json={"context_name": "Engines", "context_text": "Engines too."}, headers=headers)
        self.assertEqual(r.status_code, 403)
        self.assertEqual(r.json()["detail"]["error"], "CONTEXT_LIMIT_REACHED")

        r = self.client.get("/api/contexts", headers=headers)
        self.assertEqual([c["context_name"] for c in r.json()["contexts"]], ["Looms"])
        self.assertEqual(r.json()["usage"]["remaining"], 0)
        r = self.client.get("/api/contexts/limits", headers=headers)
        self.assertEqual(r.json()["plan_code"], "free")
        self.assertFalse(r.json()["can_save_more"])

        r = self.client.put(f"/api/contexts/{context_id}", json={"context_text": "We build better looms."}, headers=headers)
        self.assertEqual(r.json()["context_text"], "We build better looms.")
        self.assertEqual(self.client.put("/api/contexts/999", json={"context_text": "x"}, headers=headers).status_code, 404)
        r = self.client.post("/api/contexts", json={"context_name": " ", "context_text": "x"}, headers=headers)
        self.assertEqual(r.status_code, 400)

        self.assertEqual(self.client.delete(f"/api/contexts/{context_id}", headers=headers).json(), {"deleted": True})
        self.assertEqual(self.client.delete(f"/api/contexts/{context_id}", headers=headers).status_code, 404)

    def test_generate_message_from_saved_context(self):
        headers = self.seed(credits=7)
        self.client.post("/api/profiles/extract", json={"profile_url": ADA_URL}, headers=headers)
        context_id = self.client.post(
            "/api/contexts", json={"context_name": "Looms", "context_text": "We build looms."}, headers=headers
        ).json()["id"]
        r = self.client.post(
            "/api/messages/generate", json={"target_profile_url": ADA_URL, "context_id": context_id}, headers=headers
        )
        self.assertEqual(r.status_code, 200, r.text)
        r = self.client.post("/api/messages/generate", json={"target_profile_url": ADA_URL, "context_id": 999}, headers=headers)
        self.assertEqual(r.status_code, 404)

    def test_public_config(self):
        r = self.client.get("/api/public-config")
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json()["costs"]["email_finder"], settings.email_finder_cost)


class TestChargebeeWebhook(unittest.TestCase):
    def setUp(self):
        self.engine, self.Session = make_session_factory()

        def override_db():
            db = self.Session()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_db
        self.addCleanup(app.dependency_overrides.clear)
        patcher = mock.patch.multiple(settings, chargebee_webhook_username="cb", chargebee_webhook_password="secret")
        patcher.start()
        self.addCleanup(patcher.stop)
        self.client = TestClient(app)

        db = self.Session()
        try:
            seed_account(db, "u1", credits=7, email="u1@example.com")
        finally:
            db.close()

    def tearDown(self):
        self.engine.dispose()

    def payload(self, event_id="ev_1", email="u1@example.com"):
        return {
            "id": event_id,
            "event_type": "subscription_created",
            "content": {
                "customer": {"email": email},
                "subscription": {"id": "sub_1", "subscription_items": [{"item_type": "plan", "item_price_id": "Gold-Monthly"}]},
            },
        }

    def test_rejects_missing_credentials(self):
        r = self.client.post("/api/billing/chargebee/webhook", json=self.payload())
        self.assertEqual(r.status_code, 401)
        r = self.client.post("/api/billing/chargebee/webhook", json=self.payload(), auth=("cb", "wrong"))
        self.assertEqual(r.status_code, 401)

    def test_applies_plan_once(self):
        r = self.client.post("/api/billing/chargebee/webhook", json=self.payload(), auth=("cb", "secret"))
        self.assertEqual(r.json(), {"received": True, "handled": True, "applied": True})
        r = self.client.post("/api/billing/chargebee/webhook", json=self.payload(), auth=("cb", "secret"))
        self.assertEqual(r.json()["applied"], False)

        db = self.Session()
        try:
            self.assertEqual(ledger.get_balance(db, "u1"), 10000)
        finally:
            db.close()

    def test_unknown_customer_is_acknowledged(self):
        r = self.client.post(
            "/api/billing/chargebee/webhook", json=self.payload(email="nobody@example.com"), auth=("cb", "secret")
        )
        self.assertEqual(r.status_code, 200)
        self.assertEqual(r.json(), {"received": True, "handled": False})

    def test_ignored_event_type(self):
        r = self.client.post(
            "/api/billing/chargebee/webhook", json={"id": "ev", "event_type": "customer_changed"}, auth=("cb", "secret")
        )
        self.assertEqual(r.json(), {"received": True, "handled": False})

    def test_addon_cancellation_keeps_the_plan(self):
        db = self.Session()
        try:
            acct = ledger.get_account(db, "u1")
            acct.package_type = "gold-monthly"
            db.commit()
        finally:
            db.close()

        def addon(event_type):
            return {
                "id": f"ev_{event_type}",
                "event_type": event_type,
                "content": {
                    "customer": {"id": "user_u1"},
                    "subscription": {"id": "sub_addon", "plan_id": "extra-context-slot", "plan_quantity": 2},
                },
            }

        r = self.client.post("/api/billing/chargebee/webhook", json=addon("subscription_created"), auth=("cb", "secret"))
        self.assertEqual(r.json(), {"received": True, "handled": True, "applied": True})
        r = self.client.post("/api/billing/chargebee/webhook", json=addon("subscription_cancelled"), auth=("cb", "secret"))
        self.assertEqual(r.json()["handled"], True)

        db = self.Session()
        try:
            self.assertEqual(ledger.get_account(db, "u1").package_type, "gold-monthly")
            self.assertEqual(contexts.list_addons(db, "u1")[0].status, "cancelled")
        finally:
            db.close()


if __name__ == "__main__":
    unittest.main()
