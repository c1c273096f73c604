from decimal import Decimal

import pytest

from application.dtos.payments import InboundRequest
from domain.payment.exceptions import (
    GatewayDisabledError,
    InvalidStateError,
    OrderNotFoundError,
    PaymentNotFoundError,
    ValidationError,
)
from infrastructure.external.payments.razorpay_client import hmac_sha256_hex


@pytest.mark.asyncio
async def test_initiate_rejects_paid_order(service, store):
    result = await service.initiate_payment("cod", 1)
    await service.mark_delivered(result.payment_id)

    with pytest.raises(InvalidStateError):
        await service.initiate_payment("cod", 1)


@pytest.mark.asyncio
async def test_initiate_unknown_order(service):
    with pytest.raises(OrderNotFoundError):
        await service.initiate_payment("cod", 404)


@pytest.mark.asyncio
async def test_disabled_gateway_is_refused(service, config_source, store):
    config_source.configs["cod"].is_enabled = False

    with pytest.raises(GatewayDisabledError):
        await service.initiate_payment("cod", 1)
    assert store.payments == {}


@pytest.mark.asyncio
async def test_refund_of_pending_online_payment(service, provider_stub):
    provider_stub.on("POST", "/v1/orders", json={"id": "order_pending1", "amount": 49900, "currency": "INR"})
    result = await service.initiate_payment("razorpay", 1)

    with pytest.raises(InvalidStateError):
        await service.refund_payment(result.payment_id, Decimal("10.00"))
    with pytest.raises(ValidationError):
        await service.refund_payment(result.payment_id, Decimal("-1"))


@pytest.mark.asyncio
async def test_mark_delivered_only_for_cod(service, provider_stub):
    provider_stub.on("POST", "/v1/orders", json={"id": "order_pending2", "amount": 49900, "currency": "INR"})
    result = await service.initiate_payment("razorpay", 1)

    with pytest.raises(ValidationError):
        await service.mark_delivered(result.payment_id)


@pytest.mark.asyncio
async def test_status_lists_attempts_newest_first(service, provider_stub):
    provider_stub.on("POST", "/v1/orders", json={"id": "order_first", "amount": 49900, "currency": "INR"})
    first = await service.initiate_payment("razorpay", 1)
    second = await service.initiate_payment("cod", 1)

    summary = await service.get_payment_status(1)

    assert summary.order_number == "ORD-1001"
    assert summary.payment_status == "pending"
    assert summary.payment_method == "cod"
    assert [a.id for a in summary.attempts] == [second.payment_id, first.payment_id]
    assert summary.attempts[1].correlation_id == "order_first"


@pytest.mark.asyncio
async def test_webhook_for_unknown_transaction(service):
    body = b'{"event": "payment.captured", "payload": {"payment": {"entity": {"order_id": "order_ghost", "amount": 100}}}}'
    request = InboundRequest(
        headers={"content-type": "application/json", "x-razorpay-signature": hmac_sha256_hex("rzp_whsec", body)},
        body=body,
    )
    with pytest.raises(PaymentNotFoundError):
        await service.handle_webhook("razorpay", request)


@pytest.mark.asyncio
async def test_clear_cache_forces_config_reload(service, config_source):
    await service.available_gateways(Decimal("499.00"), "INR")
    await service.gateways.create("payu")
    reads = config_source.reads

    service.clear_cache()
    await service.gateways.create("payu")

    assert config_source.reads == reads + 1
