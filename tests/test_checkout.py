from types import SimpleNamespace

import pytest
import stripe

from conftest import FRONTEND


HEADERS = {"X-Account-Id": "acc-1", "X-User-Id": "user-1"}


@pytest.fixture
def stripe_calls(monkeypatch):
    calls = {"create": [], "retrieve": [], "portal": []}
    sessions = {}

    def create(**params):
        calls["create"].append(params)
        return SimpleNamespace(id="cs_test_1", url="https://checkout.stripe.test/cs_test_1")

    def retrieve(session_id, **params):
        calls["retrieve"].append((session_id, params))
        return sessions[session_id]

    def portal(**params):
        calls["portal"].append(params)
        return SimpleNamespace(url="https://billing.stripe.test/p/1")

    monkeypatch.setattr(stripe.checkout.Session, "create", create)
    monkeypatch.setattr(stripe.checkout.Session, "retrieve", retrieve)
    monkeypatch.setattr(stripe.billing_portal.Session, "create", portal)
    calls["sessions"] = sessions
    return calls


def test_create_checkout_session(client, stripe_calls):
    resp = client.post("/api/create-checkout-session", headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "url": "https://checkout.stripe.test/cs_test_1", "sessionId": "cs_test_1"}

    params = stripe_calls["create"][0]
    assert params["mode"] == "subscription"
    assert params["line_items"] == [{"price": "price_123", "quantity": 1}]
    assert params["metadata"] == {"accountId": "acc-1", "userId": "user-1"}
    assert params["subscription_data"]["metadata"]["accountId"] == "acc-1"
    assert params["client_reference_id"] == "acc-1"
    assert params["success_url"] == f"{FRONTEND}/checkout-success?session_id={{CHECKOUT_SESSION_ID}}"
    assert params["cancel_url"] == f"{FRONTEND}/checkout-cancel"
    assert "customer" not in params


def test_checkout_returns_to_allowed_preview_origin(client, store, stripe_calls):
    store.attach_customer(store.get_or_create("acc-1"), "cus_1")
    origin = "https://studio-git-main.vercel.app"

    resp = client.post("/api/create-checkout-session", headers=dict(HEADERS, Origin=origin))
    assert resp.status_code == 200

    params = stripe_calls["create"][0]
    assert params["cancel_url"] == f"{origin}/checkout-cancel"
    assert params["customer"] == "cus_1"


def test_checkout_stripe_error_is_502(client, monkeypatch):
    def fail(**params):
        raise stripe.InvalidRequestError("No such price", "price")

    monkeypatch.setattr(stripe.checkout.Session, "create", fail)
    resp = client.post("/api/create-checkout-session", headers=HEADERS)
    assert resp.status_code == 502
    assert resp.json()["error"] == "stripe_error"


def test_billing_routes_in_maintenance(make_client, stripe_calls):
    client = make_client(maintenance_mode=True)
    for path in ("/api/create-checkout-session", "/api/billing-portal", "/api/create-portal-session"):
        resp = client.post(path, headers=HEADERS)
        assert resp.status_code == 503
        assert resp.json()["error"] == "maintenance"
        assert resp.headers["Retry-After"] == "3600"
    assert stripe_calls["create"] == []


def test_billing_routes_without_stripe(make_client):
    client = make_client(stripe_secret_key="")
    resp = client.post("/api/create-checkout-session", headers=HEADERS)
    assert resp.status_code == 500
    assert resp.json()["error"] == "stripe_not_configured"


def test_sync_checkout_session_upgrades(client, store, stripe_calls):
    stripe_calls["sessions"]["cs_test_1"] = {
        "id": "cs_test_1",
        "status": "complete",
        "payment_status": "paid",
        "metadata": {"accountId": "acc-1"},
        "customer": {"id": "cus_1"},
        "subscription": {
            "id": "sub_1",
            "status": "active",
            "cancel_at_period_end": False,
            "items": {"data": [{"current_period_end": 1_900_000_000}]},
        },
    }

    resp = client.post("/api/sync-checkout-session", json={"sessionId": "cs_test_1"}, headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "plan": "PRO", "customerId": "cus_1", "subscriptionId": "sub_1"}

    acc = store.get("acc-1")
    assert acc.stripe.current_period_end == 1_900_000_000_000
    assert store.get_by_customer("cus_1") is acc
    assert stripe_calls["retrieve"][0] == ("cs_test_1", {"expand": ["subscription", "customer"]})


def test_sync_requires_session_id(client, stripe_calls):
    resp = client.post("/api/sync-checkout-session", json={}, headers=HEADERS)
    assert resp.status_code == 400
    assert resp.json()["error"] == "missing_session_id"


def test_sync_rejects_foreign_session(client, store, stripe_calls):
    stripe_calls["sessions"]["cs_other"] = {
        "id": "cs_other",
        "status": "complete",
        "metadata": {"accountId": "acc-2"},
        "customer": "cus_2",
    }
    resp = client.post("/api/sync-checkout-session", json={"sessionId": "cs_other"}, headers=HEADERS)
    assert resp.status_code == 403
    assert resp.json()["error"] == "session_account_mismatch"
    assert store.get("acc-1").plan == "FREE"


def test_sync_rejects_open_session(client, store, stripe_calls):
    stripe_calls["sessions"]["cs_open"] = {"id": "cs_open", "status": "open", "payment_status": "unpaid"}
    resp = client.post("/api/sync-checkout-session", json={"sessionId": "cs_open"}, headers=HEADERS)
    assert resp.status_code == 409
    assert resp.json()["error"] == "checkout_incomplete"
    assert store.get("acc-1").plan == "FREE"


def test_sync_rejects_expired_free_session(client, store, stripe_calls):
    stripe_calls["sessions"]["cs_expired"] = {
        "id": "cs_expired",
        "status": "expired",
        "payment_status": "no_payment_required",
        "metadata": {"accountId": "acc-1"},
    }
    resp = client.post("/api/sync-checkout-session", json={"sessionId": "cs_expired"}, headers=HEADERS)
    assert resp.status_code == 409
    assert resp.json()["error"] == "checkout_incomplete"
    assert store.get("acc-1").plan == "FREE"


def test_portal_requires_customer(client, stripe_calls):
    resp = client.post("/api/billing-portal", headers=HEADERS)
    assert resp.status_code == 400
    assert resp.json()["error"] == "missing_customer_id"
    assert stripe_calls["portal"] == []


def test_portal_session(client, store, stripe_calls):
    store.attach_customer(store.get_or_create("acc-1"), "cus_1")

    resp = client.post("/api/create-portal-session", headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "url": "https://billing.stripe.test/p/1"}
    assert stripe_calls["portal"][0] == {"customer": "cus_1", "return_url": f"{FRONTEND}/?from=billing"}
