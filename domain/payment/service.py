"""
Payment domain service - the reconciliation rules.

Every write to a Payment row or to an order's payment_status goes through
this class. Callers wrap it in a unit of work; the rows it decides on are
read with `for_update=True` so concurrent deliveries serialize and each one
sees the previous writer's committed status.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, List, Optional

from domain.order.entity import Order
from domain.order.repository import OrderRepository
from .entity import (
    EvidenceSource,
    Payment,
    PaymentStatus,
    Refund,
    RefundStatus,
)
from .events import (
    PaymentCancelled,
    PaymentCompleted,
    PaymentFailed,
    PaymentRefunded,
    ReconciliationAnomaly,
)
from .exceptions import OrderNotFoundError, PaymentNotFoundError
from .repository import PaymentRepository, RefundRepository


OUTCOME_COMPLETED = "completed"
OUTCOME_FAILED = "failed"
OUTCOME_PENDING = "pending"


@dataclass
class Outcome:
    """A provider's claim about one attempt, normalized."""

    status: str  # completed / failed / pending
    provider_ref: Optional[str] = None
    amount: Optional[Decimal] = None
    reason: Optional[str] = None
    payload: Any = None


@dataclass
class ReconcileResult:
    payment: Payment
    order: Order
    changed: bool = False
    anomaly: Optional[str] = None
    events: List = field(default_factory=list)


class PaymentDomainService:
    """
    Reconciliation of callback/webhook/poll evidence into one ledger state.

    Rules:
    1. duplicates of the recorded terminal status are no-ops
    2. a settled payment (completed/refunded) never moves back to failed
    3. authoritative evidence of success promotes a failed/cancelled attempt
    4. the order enters paid once; side-effect events carry that flag
    5. a failed attempt only fails the order when it is the latest attempt
    """

    def __init__(
        self,
        payment_repository: PaymentRepository,
        order_repository: OrderRepository,
        refund_repository: RefundRepository,
    ):
        self.payment_repository = payment_repository
        self.order_repository = order_repository
        self.refund_repository = refund_repository
        self.events: List = []

    async def _lock(self, payment_id: int) -> tuple[Payment, Order]:
        # lock order: payment row first, then its order
        payment = await self.payment_repository.get_by_id(payment_id, for_update=True)
        if payment is None:
            raise PaymentNotFoundError(str(payment_id))
        order = await self.order_repository.get_by_id(payment.order_id, for_update=True)
        if order is None:
            raise OrderNotFoundError(payment.order_id)
        return payment, order

    def _anomaly(self, payment: Payment, kind: str, claimed: str, source: EvidenceSource) -> str:
        self.events.append(
            ReconciliationAnomaly(
                payment_id=payment.id,
                order_id=payment.order_id,
                provider=payment.provider,
                kind=kind,
                current_status=payment.status.value,
                claimed_status=claimed,
                source=source.value,
            )
        )
        return kind

    async def open_attempt(
        self,
        order_id: int,
        provider: str,
        *,
        amount: Decimal,
        currency: str,
        correlation_key: str,
        correlation_id: str,
        payment_data: Optional[dict] = None,
    ) -> Payment:
        """Create the pending row for a new attempt and point the order at it."""
        order = await self.order_repository.get_by_id(order_id, for_update=True)
        if order is None:
            raise OrderNotFoundError(order_id)
        order.start_attempt(provider, {correlation_key: correlation_id})

        payment = await self.payment_repository.create(
            Payment(
                id=None,
                order_id=order.id,
                provider=provider,
                correlation_id=correlation_id,
                amount=amount,
                currency=currency,
                payment_data=dict(payment_data or {}),
            )
        )
        order.payment_metadata["payment_id"] = payment.id
        await self.order_repository.save_payment_state(order)
        return payment

    async def attach_correlation(
        self,
        payment_id: int,
        *,
        correlation_key: str,
        correlation_id: str,
        payment_data: Optional[dict] = None,
    ) -> Payment:
        """Store a provider-issued id once the remote session exists."""
        payment, order = await self._lock(payment_id)
        payment.correlation_id = correlation_id
        if payment_data:
            payment.payment_data.update(payment_data)
        payment = await self.payment_repository.update(payment)
        order.payment_metadata[correlation_key] = correlation_id
        await self.order_repository.save_payment_state(order)
        return payment

    async def apply_outcome(
        self,
        payment_id: int,
        outcome: Outcome,
        source: EvidenceSource,
    ) -> ReconcileResult:
        payment, order = await self._lock(payment_id)
        result = ReconcileResult(payment=payment, order=order)

        if outcome.status == OUTCOME_COMPLETED:
            await self._apply_completed(payment, order, outcome, source, result)
        elif outcome.status == OUTCOME_FAILED:
            await self._apply_failed(payment, order, outcome, source, result)
        result.events = list(self.events)
        return result

    async def _apply_completed(
        self,
        payment: Payment,
        order: Order,
        outcome: Outcome,
        source: EvidenceSource,
        result: ReconcileResult,
    ) -> None:
        current = payment.status
        if payment.is_settled:
            return
        if current != PaymentStatus.PENDING and not source.authoritative:
            result.anomaly = self._anomaly(payment, "unconfirmed_success_ignored", OUTCOME_COMPLETED, source)
            return
        if outcome.amount is not None and Decimal(outcome.amount).quantize(Decimal("0.01")) != payment.amount:
            result.anomaly = self._anomaly(payment, "amount_mismatch", OUTCOME_COMPLETED, source)
            return
        if current != PaymentStatus.PENDING:
            result.anomaly = self._anomaly(payment, "success_after_failure", OUTCOME_COMPLETED, source)

        payment.mark_completed(outcome.provider_ref)
        payment.record_evidence(source, OUTCOME_COMPLETED, outcome.payload)
        result.payment = await self.payment_repository.update(payment)

        became_paid = order.mark_paid(payment.provider)
        if became_paid:
            order.payment_metadata["paid_payment_id"] = payment.id
            result.order = await self.order_repository.save_payment_state(order)
        else:
            result.anomaly = self._anomaly(payment, "order_already_paid", OUTCOME_COMPLETED, source)
        result.changed = True
        self.events.append(
            PaymentCompleted(
                payment_id=payment.id,
                order_id=order.id,
                provider=payment.provider,
                order_became_paid=became_paid,
                user_id=order.user_id,
                session_id=order.session_id,
                source=source.value,
            )
        )

    async def _apply_failed(
        self,
        payment: Payment,
        order: Order,
        outcome: Outcome,
        source: EvidenceSource,
        result: ReconcileResult,
    ) -> None:
        current = payment.status
        if current == PaymentStatus.FAILED:
            return
        if current != PaymentStatus.PENDING:
            kind = "failure_after_settlement" if payment.is_settled else "failure_after_cancellation"
            result.anomaly = self._anomaly(payment, kind, OUTCOME_FAILED, source)
            return

        payment.mark_failed(outcome.reason)
        payment.record_evidence(source, OUTCOME_FAILED, outcome.payload)
        result.payment = await self.payment_repository.update(payment)

        latest = await self.payment_repository.get_latest_for_order(order.id)
        if (latest is None or latest.id == payment.id) and order.mark_failed():
            result.order = await self.order_repository.save_payment_state(order)
        result.changed = True
        self.events.append(
            PaymentFailed(
                payment_id=payment.id,
                order_id=order.id,
                provider=payment.provider,
                reason=outcome.reason,
                source=source.value,
            )
        )

    async def _reserved(self, payment_id: int, *, exclude: Optional[int] = None) -> Decimal:
        refunds = await self.refund_repository.list_by_payment(payment_id)
        return sum(
            (r.amount for r in refunds if r.is_reservation and r.id != exclude),
            Decimal("0"),
        )

    async def reserve_refund(
        self,
        payment_id: int,
        amount: Decimal,
        *,
        reason: Optional[str] = None,
    ) -> Refund:
        """Hold `amount` before the provider is asked to send money back.

        The payment row lock makes concurrent reservations see each other,
        so two refunds can never together exceed what was paid.
        """
        payment, _ = await self._lock(payment_id)
        payment.ensure_refundable(Decimal(amount), await self._reserved(payment.id))
        return await self.refund_repository.create(
            Refund(
                id=None,
                payment_id=payment.id,
                amount=Decimal(amount),
                status=RefundStatus.REQUESTED,
                reason=reason,
            )
        )

    async def release_refund(self, reservation_id: int, error: str) -> Refund:
        refund = await self.refund_repository.get_by_id(reservation_id)
        if refund is None:
            raise PaymentNotFoundError(f"refund {reservation_id}")
        await self._lock(refund.payment_id)
        refund = await self.refund_repository.get_by_id(reservation_id, for_update=True)
        refund.release(error)
        return await self.refund_repository.update(refund)

    async def apply_refund(
        self,
        payment_id: int,
        amount: Decimal,
        *,
        refund_id: Optional[str],
        status: RefundStatus,
        reason: Optional[str] = None,
        refund_data: Optional[dict] = None,
        reservation_id: Optional[int] = None,
    ) -> tuple[Payment, Refund]:
        """Book a refund the provider accepted.

        With `reservation_id` the held row is settled in place; without it
        (cash on delivery, manual refunds) a new row is written.
        """
        payment, order = await self._lock(payment_id)
        payment.apply_refund(amount, await self._reserved(payment.id, exclude=reservation_id))
        payment = await self.payment_repository.update(payment)

        if reservation_id is not None:
            refund = await self.refund_repository.get_by_id(reservation_id, for_update=True)
            if refund is None or refund.payment_id != payment.id:
                raise PaymentNotFoundError(f"refund {reservation_id}")
            refund.settle(refund_id, status, refund_data)
            refund = await self.refund_repository.update(refund)
        else:
            refund = await self.refund_repository.create(
                Refund(
                    id=None,
                    payment_id=payment.id,
                    amount=Decimal(amount),
                    status=status,
                    refund_id=refund_id,
                    reason=reason,
                    refund_data=dict(refund_data or {}),
                )
            )
        fully = payment.status == PaymentStatus.REFUNDED
        order.mark_refunded(fully)
        await self.order_repository.save_payment_state(order)
        self.events.append(
            PaymentRefunded(
                payment_id=payment.id,
                order_id=order.id,
                provider=payment.provider,
                refund_id=refund_id,
                amount=str(amount),
                fully_refunded=fully,
            )
        )
        return payment, refund

    async def cancel_attempt(self, payment_id: int, reason: Optional[str] = None) -> Payment:
        payment, order = await self._lock(payment_id)
        payment.mark_cancelled(reason)
        payment = await self.payment_repository.update(payment)

        latest = await self.payment_repository.get_latest_for_order(order.id)
        if (latest is None or latest.id == payment.id) and order.reset_payment():
            await self.order_repository.save_payment_state(order)
        self.events.append(
            PaymentCancelled(
                payment_id=payment.id,
                order_id=order.id,
                provider=payment.provider,
                reason=reason,
            )
        )
        return payment
