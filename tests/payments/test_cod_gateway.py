from decimal import Decimal

import pytest

from application.dtos.payments import InboundRequest
from domain.order.entity import OrderPaymentStatus
from domain.payment.entity import PaymentStatus, RefundStatus
from domain.payment.exceptions import InvalidStateError, ValidationError


@pytest.mark.asyncio
async def test_cod_order_paid_on_delivery(service, store, cart, fulfillment):
    result = await service.initiate_payment("cod", 1)

    assert result.sdk_params["cod"] is True
    assert result.sdk_params["amount"] == "499.00"
    payment = store.payments[result.payment_id]
    assert payment.status == PaymentStatus.PENDING
    assert payment.payment_data["payment_on_delivery"] is True
    assert store.orders[1].payment_status == OrderPaymentStatus.PENDING
    assert fulfillment.calls == []

    delivered = await service.mark_delivered(result.payment_id)

    assert delivered.success is True
    assert store.orders[1].payment_status == OrderPaymentStatus.PAID
    assert store.payments[result.payment_id].payment_data["evidence"][-1]["source"] == "delivery"
    assert cart.calls == [(7, "sess-1")]
    assert fulfillment.calls == [1]

    # a second delivery confirmation changes nothing
    await service.mark_delivered(result.payment_id)
    assert fulfillment.calls == [1]


@pytest.mark.asyncio
async def test_cod_below_minimum_creates_no_row(service, store):
    with pytest.raises(ValidationError) as exc_info:
        await service.initiate_payment("cod", 2)

    assert "100.00" in exc_info.value.message
    assert store.payments == {}
    assert store.orders[2].payment_status == OrderPaymentStatus.NO_PAYMENT


@pytest.mark.asyncio
async def test_cancel_before_delivery(service, store, fulfillment):
    result = await service.initiate_payment("cod", 1)

    refund = await service.refund_payment(result.payment_id, reason="Customer cancelled")

    assert refund.refund_id == f"cod_cancel_{result.payment_id}"
    assert refund.payment_status == "cancelled"
    assert store.orders[1].payment_status == OrderPaymentStatus.NO_PAYMENT
    assert store.refunds == {}
    with pytest.raises(InvalidStateError):
        await service.mark_delivered(result.payment_id)
    assert fulfillment.calls == []


@pytest.mark.asyncio
async def test_refund_after_delivery_is_manual(service, store):
    result = await service.initiate_payment("cod", 1)
    await service.mark_delivered(result.payment_id)

    refund = await service.refund_payment(result.payment_id, Decimal("99.00"))

    assert refund.status == RefundStatus.PENDING.value
    assert refund.refund_id.startswith(f"cod_refund_{result.payment_id}_")
    [row] = store.refunds.values()
    assert row.refund_data == {"manual_processing_required": True}
    assert store.orders[1].payment_status == OrderPaymentStatus.PARTIALLY_REFUNDED


@pytest.mark.asyncio
async def test_cod_has_no_callbacks_or_webhooks(service):
    with pytest.raises(ValidationError):
        await service.handle_callback("cod", InboundRequest(query={"order_id": "1"}))
    with pytest.raises(ValidationError):
        await service.handle_webhook("cod", InboundRequest(body=b"{}"))
