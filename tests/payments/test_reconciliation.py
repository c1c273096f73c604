import asyncio
from decimal import Decimal

import pytest

from domain.order.entity import Order, OrderPaymentStatus
from domain.payment.entity import EvidenceSource, PaymentStatus, RefundStatus
from domain.payment.exceptions import InvalidStateError, PaymentNotFoundError
from domain.payment.service import OUTCOME_COMPLETED, OUTCOME_FAILED, Outcome


async def _open(reconciler, correlation="TXN1_a", provider="payu"):
    return await reconciler.open_attempt(
        1,
        provider,
        amount=Decimal("499.00"),
        currency="INR",
        correlation_key="transaction_id",
        correlation_id=correlation,
    )


def completed(amount="499.00"):
    return Outcome(status=OUTCOME_COMPLETED, provider_ref="ref_1", amount=Decimal(amount))


def failed(reason="declined"):
    return Outcome(status=OUTCOME_FAILED, reason=reason)


@pytest.mark.asyncio
async def test_settled_payment_never_moves_back_to_failed(reconciler, store):
    payment = await _open(reconciler)
    await reconciler.apply_outcome(payment.id, completed(), EvidenceSource.WEBHOOK)

    result = await reconciler.apply_outcome(payment.id, failed(), EvidenceSource.WEBHOOK)

    assert result.anomaly == "failure_after_settlement"
    assert store.payments[payment.id].status == PaymentStatus.COMPLETED
    assert store.orders[1].payment_status == OrderPaymentStatus.PAID


@pytest.mark.asyncio
async def test_authoritative_success_promotes_failed_attempt(reconciler, store, fulfillment):
    payment = await _open(reconciler)
    await reconciler.apply_outcome(payment.id, failed(), EvidenceSource.CALLBACK)
    assert store.orders[1].payment_status == OrderPaymentStatus.FAILED

    result = await reconciler.apply_outcome(payment.id, completed(), EvidenceSource.WEBHOOK)

    assert result.changed is True
    assert result.anomaly == "success_after_failure"
    assert store.payments[payment.id].status == PaymentStatus.COMPLETED
    assert store.orders[1].payment_status == OrderPaymentStatus.PAID
    assert fulfillment.calls == [1]


@pytest.mark.asyncio
async def test_browser_success_cannot_promote_failed_attempt(reconciler, store, fulfillment):
    payment = await _open(reconciler)
    await reconciler.apply_outcome(payment.id, failed(), EvidenceSource.WEBHOOK)

    result = await reconciler.apply_outcome(payment.id, completed(), EvidenceSource.CALLBACK)

    assert result.changed is False
    assert result.anomaly == "unconfirmed_success_ignored"
    assert store.payments[payment.id].status == PaymentStatus.FAILED
    assert fulfillment.calls == []


@pytest.mark.asyncio
async def test_stale_attempt_failure_keeps_order_pending(reconciler, store):
    first = await _open(reconciler, correlation="TXN1_a")
    second = await _open(reconciler, correlation="TXN1_b", provider="razorpay")

    await reconciler.apply_outcome(first.id, failed(), EvidenceSource.WEBHOOK)

    assert store.payments[first.id].status == PaymentStatus.FAILED
    assert store.orders[1].payment_status == OrderPaymentStatus.PENDING
    assert store.orders[1].payment_method == "razorpay"
    assert second.id != first.id


@pytest.mark.asyncio
async def test_second_successful_attempt_is_flagged_not_refulfilled(reconciler, store, fulfillment):
    first = await _open(reconciler, correlation="TXN1_a")
    second = await _open(reconciler, correlation="TXN1_b")
    await reconciler.apply_outcome(first.id, completed(), EvidenceSource.WEBHOOK)

    # the order is paid now, so no new attempt may start
    with pytest.raises(InvalidStateError):
        await _open(reconciler, correlation="TXN1_c")

    result = await reconciler.apply_outcome(second.id, completed(), EvidenceSource.WEBHOOK)
    assert result.anomaly == "order_already_paid"
    assert store.payments[second.id].status == PaymentStatus.COMPLETED
    assert store.orders[1].payment_metadata["paid_payment_id"] == first.id
    assert fulfillment.calls == [1]


@pytest.mark.asyncio
async def test_concurrent_deliveries_fire_side_effects_once(reconciler, store, cart, fulfillment):
    payment = await _open(reconciler)

    results = await asyncio.gather(
        reconciler.apply_outcome(payment.id, completed(), EvidenceSource.WEBHOOK),
        reconciler.apply_outcome(payment.id, completed(), EvidenceSource.CALLBACK_VERIFIED),
        reconciler.apply_outcome(payment.id, completed(), EvidenceSource.POLL),
    )

    assert sum(1 for r in results if r.changed) == 1
    assert store.orders[1].payment_status == OrderPaymentStatus.PAID
    assert len(cart.calls) == 1
    assert fulfillment.calls == [1]


@pytest.mark.asyncio
async def test_collaborator_failure_keeps_order_paid(reconciler, store, cart, fulfillment):
    cart.error = RuntimeError("cart service down")
    payment = await _open(reconciler)

    await reconciler.apply_outcome(payment.id, completed(), EvidenceSource.WEBHOOK)

    assert store.orders[1].payment_status == OrderPaymentStatus.PAID
    assert fulfillment.calls == [1]


@pytest.mark.asyncio
async def test_failed_write_rolls_back(reconciler, store, monkeypatch):
    payment = await _open(reconciler)
    await reconciler.apply_outcome(payment.id, completed(), EvidenceSource.WEBHOOK)

    def boom(self, fully):
        raise RuntimeError("connection lost")

    monkeypatch.setattr(Order, "mark_refunded", boom)
    with pytest.raises(RuntimeError):
        await reconciler.apply_refund(payment.id, Decimal("100.00"), refund_id="r1", status=RefundStatus.COMPLETED)

    assert store.payments[payment.id].refunded_amount == Decimal("0.00")
    assert store.refunds == {}


@pytest.mark.asyncio
async def test_unknown_correlation(reconciler):
    with pytest.raises(PaymentNotFoundError):
        await reconciler.find_payment("payu", "TXN404")
    with pytest.raises(PaymentNotFoundError):
        await reconciler.find_payment("payu", None)
