"""Tests for the Stripe webhook: signature checks, idempotency and plan changes."""

from unittest.mock import patch

import pytest
import stripe
from fastapi.testclient import TestClient

pytestmark = pytest.mark.integration

WEBHOOK_URL = "/api/webhooks/stripe"


def _make_stripe_event(event_id: str, event_type: str, data: dict) -> dict:
    """Build a minimal Stripe-style event dict."""
    return {
        "id": event_id,
        "type": event_type,
        "data": {"object": data},
    }


def _post_event(api_client: TestClient, event: dict):
    with patch("stripe.Webhook.construct_event", return_value=event):
        return api_client.post(WEBHOOK_URL, content=b"{}", headers={"stripe-signature": "t=1,v1=test"})


def _current(api_client: TestClient, headers: dict) -> dict:
    return api_client.get("/api/subscription/current", headers=headers).json()


class TestWebhookGuards:
    def test_returns_503_when_secret_missing(self, api_client: TestClient, api_context):
        api_context.settings = api_context.settings.model_copy(update={"stripe_webhook_secret": ""})

        response = api_client.post(WEBHOOK_URL, content=b"{}", headers={"stripe-signature": "t=1,v1=x"})

        assert response.status_code == 503

    def test_missing_signature_header(self, api_client: TestClient):
        response = api_client.post(WEBHOOK_URL, content=b"{}")

        assert response.status_code == 400
        assert response.json()["detail"] == "Missing stripe-signature header"

    def test_invalid_signature(self, api_client: TestClient):
        error = stripe.SignatureVerificationError("bad signature", "t=1,v1=x")
        with patch("stripe.Webhook.construct_event", side_effect=error):
            response = api_client.post(WEBHOOK_URL, content=b"{}", headers={"stripe-signature": "t=1,v1=x"})

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid signature"

    def test_invalid_payload(self, api_client: TestClient):
        with patch("stripe.Webhook.construct_event", side_effect=ValueError("not json")):
            response = api_client.post(WEBHOOK_URL, content=b"nope", headers={"stripe-signature": "t=1,v1=x"})

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid payload"


class TestWebhookEvents:
    def test_checkout_completed_upgrades_plan(self, api_client: TestClient, seed_user, auth_headers):
        user = seed_user(credits=2, total=5)
        event = _make_stripe_event(
            "evt_checkout_1",
            "checkout.session.completed",
            {
                "id": "cs_1",
                "customer": "cus_1",
                "subscription": "sub_1",
                "metadata": {"user_id": str(user.id), "plan": "pro"},
            },
        )

        response = _post_event(api_client, event)

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
        current = _current(api_client, auth_headers(user))
        assert current["plan"] == "pro"
        assert current["credits_remaining"] == 100
        assert current["credits_total"] == 100

    def test_duplicate_event_processed_once(self, api_client: TestClient, seed_user, auth_headers, balance_of):
        user = seed_user(credits=2, total=5)
        headers = auth_headers(user)
        event = _make_stripe_event(
            "evt_dup",
            "checkout.session.completed",
            {"id": "cs_2", "customer": "cus_2", "metadata": {"user_id": str(user.id), "plan": "team"}},
        )

        assert _post_event(api_client, event).status_code == 200
        # Spend a credit, then replay the event: the balance must not be reset
        api_client.post(
            "/api/polish/create",
            json={"name": "x", "framework": "vue", "original_code": "<template />"},
            headers=headers,
        )
        assert _post_event(api_client, event).status_code == 200

        assert balance_of(user.id) == 499

    def test_checkout_without_metadata_ignored(self, api_client: TestClient, seed_user, auth_headers):
        user = seed_user()
        event = _make_stripe_event("evt_nometa", "checkout.session.completed", {"id": "cs_3"})

        assert _post_event(api_client, event).status_code == 200
        assert _current(api_client, auth_headers(user))["plan"] == "free"

    def test_subscription_deleted_downgrades(self, api_client: TestClient, seed_user, auth_headers):
        user = seed_user(credits=2, total=5)
        upgrade = _make_stripe_event(
            "evt_up",
            "checkout.session.completed",
            {"id": "cs_4", "customer": "cus_4", "subscription": "sub_4", "metadata": {"user_id": str(user.id), "plan": "pro"}},
        )
        deleted = _make_stripe_event("evt_del", "customer.subscription.deleted", {"id": "sub_4", "customer": "cus_4"})

        _post_event(api_client, upgrade)
        response = _post_event(api_client, deleted)

        assert response.status_code == 200
        current = _current(api_client, auth_headers(user))
        assert current["plan"] == "free"
        assert current["credits_total"] == 5
        assert current["credits_remaining"] == 5

    def test_unknown_event_type_acknowledged(self, api_client: TestClient):
        event = _make_stripe_event("evt_other", "invoice.created", {"id": "in_1"})

        assert _post_event(api_client, event).json() == {"status": "ok"}
