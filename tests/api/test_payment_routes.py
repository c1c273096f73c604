import json

import httpx
import pytest
import pytest_asyncio

from api.dependencies import get_payment_service
from application.dtos.payments import InitiateOptions
from core.settings import payment_settings
from infrastructure.external.payments.razorpay_client import hmac_sha256_hex
from main import app


PREFIX = "/api/v1/payment"


@pytest_asyncio.fixture
async def client(service):
    app.dependency_overrides[get_payment_service] = lambda: service
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
    app.dependency_overrides.clear()


async def _payu_fields(service, status="success", options=None):
    result = await service.initiate_payment("payu", 1, options)
    payu = await service.gateways.create("payu")
    fields = {
        "key": "gtKFFx",
        "txnid": result.correlation_id,
        "amount": "499.00",
        "productinfo": "Order #ORD-1001",
        "firstname": "Asha",
        "email": "asha@example.com",
        "status": status,
        "mihpayid": "403993715521",
    }
    fields["hash"] = payu.response_hash(fields)
    return fields


@pytest.mark.asyncio
async def test_routes_registered(client):
    # a known path with the wrong verb is 405; an unknown path is 404
    for path in ("/payu/initiate", "/payu/webhook", "/cod/1/delivered", "/refund"):
        resp = await client.get(f"{PREFIX}{path}")
        assert resp.status_code == 405, path
    resp = await client.put(f"{PREFIX}/payu/callback")
    assert resp.status_code == 405

    resp = await client.get(f"{PREFIX}/payu/nowhere")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_initiate_and_deliver_cod(client, store):
    resp = await client.post(f"{PREFIX}/cod/initiate", json={"order_id": 1})
    assert resp.status_code == 200
    body = resp.json()
    assert body["code"] == 0
    assert body["data"]["sdk_params"]["cod"] is True
    payment_id = body["data"]["payment_id"]

    resp = await client.post(f"{PREFIX}/cod/{payment_id}/delivered")
    assert resp.status_code == 200
    assert resp.json()["data"]["payment_status"] == "completed"

    resp = await client.get(f"{PREFIX}/status/1")
    assert resp.json()["data"]["payment_status"] == "paid"


@pytest.mark.asyncio
async def test_error_taxonomy_maps_to_http_status(client, config_source):
    resp = await client.post(f"{PREFIX}/paypal/initiate", json={"order_id": 1})
    assert resp.status_code == 404
    assert resp.json()["code"] == 60005

    resp = await client.post(f"{PREFIX}/cod/initiate", json={"order_id": 2})
    assert resp.status_code == 422
    assert resp.json()["error"]["field"] == "amount"

    config_source.configs["payu"].is_enabled = False
    resp = await client.post(f"{PREFIX}/payu/initiate", json={"order_id": 1})
    assert resp.status_code == 403

    resp = await client.get(f"{PREFIX}/status/999")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_callback_redirects_to_storefront(client, service):
    fields = await _payu_fields(service)
    await client.post(f"{PREFIX}/payu/webhook", data=fields)

    resp = await client.post(f"{PREFIX}/payu/callback", data=fields)

    assert resp.status_code == 303
    assert resp.headers["location"] == payment_settings.frontend_url("success", 1)


@pytest.mark.asyncio
async def test_callback_redirects_to_return_url_given_at_initiation(client, service):
    options = InitiateOptions(
        return_url="https://spa.example.com/done?ref=abc",
        cancel_url="https://spa.example.com/cart",
    )
    fields = await _payu_fields(service, options=options)
    await client.post(f"{PREFIX}/payu/webhook", data=fields)

    resp = await client.post(f"{PREFIX}/payu/callback", data=fields)

    assert resp.status_code == 303
    assert resp.headers["location"] == "https://spa.example.com/done?ref=abc&status=success&order=1"


@pytest.mark.asyncio
async def test_failed_callback_redirects_to_cancel_url(client, service):
    options = InitiateOptions(return_url="https://spa.example.com/done", cancel_url="https://spa.example.com/cart")
    fields = await _payu_fields(service, status="failure", options=options)

    resp = await client.post(f"{PREFIX}/payu/callback", data=fields)

    assert resp.status_code == 303
    assert resp.headers["location"] == "https://spa.example.com/cart?status=failure&order=1"


@pytest.mark.asyncio
async def test_initiate_rejects_foreign_return_url(client, store):
    resp = await client.post(
        f"{PREFIX}/payu/initiate",
        json={"order_id": 1, "return_url": "https://evil.example.net/steal"},
    )

    assert resp.status_code == 422
    assert resp.json()["error"]["field"] == "return_url"
    assert store.payments == {}


@pytest.mark.asyncio
async def test_callback_json_mode(client, service):
    fields = await _payu_fields(service, status="failure")

    resp = await client.post(f"{PREFIX}/payu/callback?format=json", data=fields)

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["success"] is False
    assert data["payment_status"] == "failed"


@pytest.mark.asyncio
async def test_forged_callback(client, service):
    fields = await _payu_fields(service)
    fields["amount"] = "1.00"

    browser = await client.post(f"{PREFIX}/payu/callback", data=fields)
    assert browser.status_code == 303
    assert browser.headers["location"] == payment_settings.frontend_url("failure")

    api = await client.post(f"{PREFIX}/payu/callback", data=fields, headers={"Accept": "application/json"})
    assert api.status_code == 401


@pytest.mark.asyncio
async def test_payu_webhook_failures_still_acknowledged(client, service, store):
    fields = await _payu_fields(service)
    fields["hash"] = "f" * 128

    resp = await client.post(f"{PREFIX}/payu/webhook", data=fields)

    assert resp.status_code == 200
    assert resp.json()["data"] == {"handled": False}
    assert store.orders[1].payment_status.value == "pending"


@pytest.mark.asyncio
async def test_razorpay_webhook_signature_rejected(client):
    body = json.dumps({"event": "payment.captured", "payload": {}}).encode()

    resp = await client.post(
        f"{PREFIX}/razorpay/webhook",
        content=body,
        headers={"content-type": "application/json", "X-Razorpay-Signature": hmac_sha256_hex("wrong", body)},
    )

    assert resp.status_code == 401
    assert resp.json()["code"] == 60002


@pytest.mark.asyncio
async def test_webhook_ip_allowlist(client, service, monkeypatch):
    monkeypatch.setattr(payment_settings.webhook, "ip_allowlist", ["10.0.0.0/8", "203.0.113.7"])
    fields = await _payu_fields(service)

    blocked = await client.post(f"{PREFIX}/payu/webhook", data=fields)
    assert blocked.status_code == 403

    allowed = await client.post(f"{PREFIX}/payu/webhook", data=fields, headers={"X-Forwarded-For": "10.20.30.40"})
    assert allowed.status_code == 200
    assert allowed.json()["data"]["payment_status"] == "completed"


@pytest.mark.asyncio
async def test_gateway_listing_and_cache_clear(client):
    resp = await client.get(f"{PREFIX}/gateways", params={"amount": "499.00", "currency": "inr"})
    assert resp.status_code == 200
    assert [g["keyword"] for g in resp.json()["data"]] == ["razorpay", "cashfree", "payu", "phonepe", "cod"]

    resp = await client.post(f"{PREFIX}/cache/clear")
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_refund_cancels_undelivered_cod(client, service):
    result = await service.initiate_payment("cod", 1)

    resp = await client.post(f"{PREFIX}/refund", json={"payment_id": result.payment_id, "reason": "Changed mind"})

    assert resp.status_code == 200
    assert resp.json()["data"]["payment_status"] == "cancelled"
