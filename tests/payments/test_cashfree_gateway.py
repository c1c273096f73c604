import json
from decimal import Decimal

import pytest

from application.dtos.payments import InboundRequest
from domain.order.entity import OrderPaymentStatus
from domain.payment.entity import PaymentStatus
from domain.payment.exceptions import SignatureError, UpstreamError, ValidationError
from infrastructure.external.payments.cashfree_client import API_VERSION, webhook_signature


@pytest.fixture
def cashfree_order(provider_stub):
    provider_stub.on(
        "POST",
        "/pg/orders",
        json={
            "cf_order_id": 2149460581,
            "payment_session_id": "session_a1b2c3",
            "order_status": "ACTIVE",
        },
    )


def signed_webhook(event, timestamp="1697712000", secret="cf_whsec"):
    body = json.dumps(event).encode()
    return InboundRequest(
        headers={
            "content-type": "application/json",
            "x-webhook-timestamp": timestamp,
            "x-webhook-signature": webhook_signature(secret, timestamp, body),
        },
        body=body,
    )


def success_event(order_id, amount=499.0):
    return {
        "type": "PAYMENT_SUCCESS_WEBHOOK",
        "data": {
            "order": {"order_id": order_id, "order_amount": amount},
            "payment": {"cf_payment_id": 5114910, "payment_status": "SUCCESS", "payment_amount": amount},
        },
    }


@pytest.mark.asyncio
async def test_initiate_sends_api_headers_and_stores_session(service, store, provider_stub, cashfree_order):
    result = await service.initiate_payment("cashfree", 1)

    request = provider_stub.calls("POST", "/pg/orders")[0]
    assert request.headers["x-client-id"] == "cf_app"
    assert request.headers["x-api-version"] == API_VERSION
    sent = json.loads(request.content)
    assert sent["order_id"] == result.correlation_id
    assert sent["order_amount"] == 499.0
    assert sent["order_meta"]["return_url"].endswith("/payment/cashfree/callback?order_id={order_id}")

    assert result.correlation_id.startswith("order_1_")
    assert result.session_token == "session_a1b2c3"
    payment = store.payments[result.payment_id]
    assert payment.payment_data["payment_session_id"] == "session_a1b2c3"


@pytest.mark.asyncio
async def test_return_redirect_resolved_by_polling(service, store, provider_stub, cashfree_order):
    result = await service.initiate_payment("cashfree", 1)
    order_id = result.correlation_id
    provider_stub.on(
        "GET",
        f"/pg/orders/{order_id}",
        json={"cf_order_id": 2149460581, "order_status": "PAID", "order_amount": 499.00},
    )

    callback = await service.handle_callback("cashfree", InboundRequest(method="GET", query={"order_id": order_id}))

    assert callback.success is True
    assert store.payments[result.payment_id].status == PaymentStatus.COMPLETED
    assert store.orders[1].payment_status == OrderPaymentStatus.PAID


@pytest.mark.asyncio
async def test_webhook_signature_and_replay(service, store, cart, cashfree_order):
    result = await service.initiate_payment("cashfree", 1)
    event = success_event(result.correlation_id)

    with pytest.raises(SignatureError):
        await service.handle_webhook("cashfree", signed_webhook(event, secret="wrong"))

    await service.handle_webhook("cashfree", signed_webhook(event))
    await service.handle_webhook("cashfree", signed_webhook(event))

    payment = store.payments[result.payment_id]
    assert payment.status == PaymentStatus.COMPLETED
    assert payment.provider_ref == "5114910"
    assert len(cart.calls) == 1


@pytest.mark.asyncio
async def test_unknown_webhook_type_is_acknowledged(service, cashfree_order):
    result = await service.initiate_payment("cashfree", 1)
    event = {"type": "REFUND_STATUS_WEBHOOK", "data": {"order": {"order_id": result.correlation_id}}}

    outcome = await service.handle_webhook("cashfree", signed_webhook(event))

    assert outcome.handled is False


@pytest.mark.asyncio
async def test_verify_without_remote_session(service, store, provider_stub):
    provider_stub.on("POST", "/pg/orders", json={"message": "authentication Failed"}, status=401)

    with pytest.raises(UpstreamError):
        await service.initiate_payment("cashfree", 1)
    [payment] = store.payments.values()

    with pytest.raises(ValidationError):
        await service.verify_payment(payment.id)


@pytest.mark.asyncio
async def test_verify_records_completion_only(service, store, provider_stub, cashfree_order):
    result = await service.initiate_payment("cashfree", 1)
    path = f"/pg/orders/{result.correlation_id}"

    provider_stub.on("GET", path, json={"cf_order_id": 2149460581, "order_status": "EXPIRED"})
    expired = await service.verify_payment(result.payment_id)
    assert expired.payment_status == "pending"
    assert store.payments[result.payment_id].status == PaymentStatus.PENDING

    provider_stub.on("GET", path, json={"cf_order_id": 2149460581, "order_status": "PAID", "order_amount": "499.00"})
    paid = await service.verify_payment(result.payment_id)
    assert paid.success is True
    assert store.payments[result.payment_id].amount == Decimal("499.00")
    assert store.payments[result.payment_id].payment_data["evidence"][-1]["source"] == "poll"


@pytest.mark.asyncio
async def test_webhook_status_rewritten_after_signing(service, store, cart, fulfillment, cashfree_order):
    result = await service.initiate_payment("cashfree", 1)
    failed = success_event(result.correlation_id)
    failed["type"] = "PAYMENT_FAILED_WEBHOOK"
    failed["data"]["payment"]["payment_status"] = "FAILED"
    genuine = signed_webhook(failed)

    forged = InboundRequest(headers=genuine.headers, body=json.dumps(success_event(result.correlation_id)).encode())

    with pytest.raises(SignatureError):
        await service.handle_webhook("cashfree", forged)
    assert store.payments[result.payment_id].status == PaymentStatus.PENDING
    assert store.orders[1].payment_status == OrderPaymentStatus.PENDING
    assert cart.calls == []
    assert fulfillment.calls == []
