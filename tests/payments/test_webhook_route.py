import hashlib
import hmac
import time

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from core.settings import MockSettings, PaymentSettings, StripeSettings
from infrastructure.external.payments.mock_client import MockPaymentClient
from infrastructure.external.payments.registry import PaymentGatewayRegistry
from infrastructure.repositories.webhook_event_store import InMemoryWebhookEventStore, RedisWebhookEventStore
from main import create_app
from shared.codes.payment_codes import PaymentCode


STRIPE_SECRET = "whsec_route_secret"


@pytest.fixture
def registry():
    return PaymentGatewayRegistry(
        PaymentSettings(
            default_provider="mock",
            mock=MockSettings(enabled=True, webhook_secret="route_secret"),
            stripe=StripeSettings(api_key="sk_test_123", webhook_secret=STRIPE_SECRET),
        )
    )


@pytest.fixture
def client(registry):
    app = create_app(registry=registry, store=InMemoryWebhookEventStore())
    with TestClient(app) as test_client:
        yield test_client


def _post(client, processor, body, headers):
    return client.post(f"/api/v1/payments/webhooks/{processor}", content=body, headers=headers)


def test_webhook_is_acknowledged_once(client, registry):
    body, sig = registry.get("mock").build_webhook("payment.succeeded", event_id="evt_1", payment_intent_id="pi_1")

    first = _post(client, "mock", body, {"X-Mock-Signature": sig})
    assert first.status_code == 200
    assert first.json()["data"] == {
        "processor": "mock",
        "events": [{"id": "evt_1", "type": "payment.succeeded", "duplicate": False}],
    }

    second = _post(client, "mock", body, {"X-Mock-Signature": sig})
    assert second.status_code == 200
    assert second.json()["data"]["events"][0]["duplicate"] is True


def test_bad_signature_is_never_acknowledged(client, registry):
    body, _ = registry.get("mock").build_webhook("payment.succeeded", event_id="evt_2")
    resp = _post(client, "mock", body, {"X-Mock-Signature": "deadbeef"})
    assert resp.status_code == 401
    payload = resp.json()
    assert payload["code"] == PaymentCode.SIGNATURE_ERROR
    assert payload["error"]["details"]["error_code"] == "INVALID_SIGNATURE"

    resp = _post(client, "mock", body, {})
    assert resp.status_code == 401


def test_malformed_signed_body_is_rejected(client, registry):
    gateway = registry.get("mock")
    body = b'{"id": "evt_3"}'
    resp = _post(client, "mock", body, {"X-Mock-Signature": gateway.generate_webhook_signature(body)})
    assert resp.status_code == 400
    assert resp.json()["code"] == PaymentCode.WEBHOOK_INVALID


def test_unknown_processor_is_404(client):
    resp = _post(client, "square", b"{}", {})
    assert resp.status_code == 404


def test_disabled_mock_webhook_is_refused():
    handled = []

    async def handler(event):
        handled.append(event)

    registry = PaymentGatewayRegistry(
        PaymentSettings(stripe=StripeSettings(api_key="sk_test_123", webhook_secret=STRIPE_SECRET))
    )
    app = create_app(registry=registry, store=InMemoryWebhookEventStore(), handler=handler)
    # Signed with the default mock secret
    body, sig = MockPaymentClient().build_webhook("payment.succeeded", event_id="evt_x", payment_intent_id="pi_x")
    with TestClient(app) as client:
        resp = _post(client, "mock", body, {"X-Mock-Signature": sig})
    assert resp.status_code == 503
    assert resp.json()["code"] == PaymentCode.CONFIGURATION_ERROR
    assert handled == []


def test_stripe_webhook_end_to_end(client):
    body = (
        b'{"id":"evt_s1","type":"charge.refunded","created":1706702400,'
        b'"data":{"object":{"object":"charge","id":"ch_1","payment_intent":"pi_1","amount":10320,'
        b'"amount_refunded":10320,"currency":"usd","status":"succeeded"}}}'
    )
    ts = int(time.time())
    sig = hmac.new(STRIPE_SECRET.encode(), f"{ts}.".encode() + body, hashlib.sha256).hexdigest()
    resp = _post(client, "stripe", body, {"Stripe-Signature": f"t={ts},v1={sig}"})
    assert resp.status_code == 200
    assert resp.json()["data"]["events"] == [{"id": "evt_s1", "type": "payment.refunded", "duplicate": False}]


def test_handler_failure_returns_5xx_so_vendor_retries(registry):
    async def failing_handler(event):
        raise RuntimeError("ledger offline")

    app = create_app(registry=registry, store=InMemoryWebhookEventStore(), handler=failing_handler)
    body, sig = registry.get("mock").build_webhook("payment.succeeded", event_id="evt_4")
    with TestClient(app, raise_server_exceptions=False) as client:
        resp = _post(client, "mock", body, {"X-Mock-Signature": sig})
    assert resp.status_code == 500


class _BrokenRedis:
    async def set(self, *args, **kwargs):
        raise RedisConnectionError("down")

    async def aclose(self):
        return None


def test_dedupe_store_outage_returns_503(registry):
    app = create_app(registry=registry, store=RedisWebhookEventStore(_BrokenRedis()))
    body, sig = registry.get("mock").build_webhook("payment.succeeded", event_id="evt_5")
    with TestClient(app) as client:
        resp = _post(client, "mock", body, {"X-Mock-Signature": sig})
    assert resp.status_code == 503


def test_fee_quote_and_processor_listing(client):
    resp = client.get("/api/v1/payments/mock/fees", params={"amount": 10000, "donor_covers_fee": "true"})
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["calculated_fee"] == 320
    assert data["total_amount"] == 10320

    resp = client.get("/api/v1/payments/processors")
    listing = {p["name"]: p for p in resp.json()["data"]["processors"]}
    assert listing["mock"]["configured"] is True
    assert listing["paypal"]["configured"] is False
    assert listing["stripe"]["capabilities"]["native_quarterly_interval"] is True


def test_fee_quote_rejects_bad_amount(client):
    resp = client.get("/api/v1/payments/mock/fees", params={"amount": 0})
    assert resp.status_code == 422
