import hashlib
import hmac
import json
import os
import time

import pytest
from fastapi.testclient import TestClient

from main import create_app
from settings import Settings
from store import AccountStore


WEBHOOK_SECRET = "whsec_test_secret"
FRONTEND = "https://studio.example.com"


class FakeGenerator:
    """
    Stands in for TextGenerator. Returns queued outputs in order (the last one
    repeats) or raises `error`.
    """

    def __init__(self, outputs=None, error=None):
        self.outputs = list(outputs or ["Fertiger Text für die Landingpage."])
        self.error = error
        self.calls = []

    def generate(self, api_key, model, prompt, temperature=None):
        self.calls.append({"api_key": api_key, "model": model, "prompt": prompt, "temperature": temperature})
        if self.error is not None:
            raise self.error
        if len(self.outputs) > 1:
            return self.outputs.pop(0)
        return self.outputs[0]


@pytest.fixture
def settings(tmp_path):
    s = Settings()
    s.data_dir = str(tmp_path)
    s.save_debounce_seconds = 0
    s.byok_only = False
    s.server_openai_key = ""
    s.model_byok = "model-byok"
    s.model_pro = "model-pro"
    s.model_boost = "model-boost"
    s.free_limit = 25
    s.pro_limit = 250
    s.pro_boost_limit = 50
    s.trial_enabled = False
    s.trial_limit_24h = 3
    s.bouncer_enabled = False
    s.bouncer_max_passes = 0
    s.bouncer_banned_stems = []
    s.maintenance_mode = False
    s.admin_key = "admin-secret"
    s.build_tag = "test-build"
    s.stripe_secret_key = "sk_test_123"
    s.stripe_price_id = "price_123"
    s.stripe_webhook_secret = WEBHOOK_SECRET
    s.frontend_url = FRONTEND
    s.stripe_return_url = FRONTEND
    s.allowed_origins = [FRONTEND]
    s.allowed_origin_suffixes = [".vercel.app"]
    return s


@pytest.fixture
def store(tmp_path):
    return AccountStore(os.path.join(str(tmp_path), "db.json"), debounce_seconds=0, stripe_mode="TEST")


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def make_client(settings, store, generator):
    def _make(**overrides):
        for name, value in overrides.items():
            setattr(settings, name, value)
        return TestClient(create_app(settings=settings, store=store, generator=generator))

    return _make


@pytest.fixture
def client(make_client):
    return make_client()


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET) -> str:
    ts = int(time.time())
    signed = f"{ts}.{payload}".encode("utf-8")
    sig = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


def post_event(client, event, secret: str = WEBHOOK_SECRET):
    payload = json.dumps(event)
    return client.post(
        "/api/stripe-webhook",
        content=payload,
        headers={"Content-Type": "application/json", "Stripe-Signature": sign_payload(payload, secret)},
    )
