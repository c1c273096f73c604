"""
Transactional front door to the payment ledger.

Each write runs the domain reconciliation rules inside one unit of work;
events collected during the transaction are dispatched only after it
commits, so cart clearing and fulfillment start never fire for a rolled
back transition.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Awaitable, Callable, Optional, TypeVar

from application.ports.collaborators import CartPort, FulfillmentPort
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order
from domain.payment.entity import EvidenceSource, Payment, Refund, RefundStatus
from domain.payment.events import (
    PaymentCancelled,
    PaymentCompleted,
    PaymentFailed,
    PaymentRefunded,
    ReconciliationAnomaly,
)
from domain.payment.exceptions import OrderNotFoundError, PaymentNotFoundError
from domain.payment.service import Outcome, PaymentDomainService, ReconcileResult


logger = get_logger(__name__)

T = TypeVar("T")
UnitOfWorkFactory = Callable[..., AbstractUnitOfWork]


class PaymentReconciler:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        *,
        cart: CartPort,
        fulfillment: FulfillmentPort,
    ) -> None:
        self._uow_factory = uow_factory
        self._cart = cart
        self._fulfillment = fulfillment

    # ---- reads -----------------------------------------------------------

    async def get_order(self, order_id: int) -> Order:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def get_payment(self, payment_id: int) -> Payment:
        async with self._uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_id(payment_id)
        if payment is None:
            raise PaymentNotFoundError(str(payment_id))
        return payment

    async def find_payment(self, provider: str, correlation_id: Optional[str]) -> Payment:
        if not correlation_id:
            raise PaymentNotFoundError("<missing correlation id>", provider=provider)
        async with self._uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_correlation(provider, correlation_id)
        if payment is None:
            raise PaymentNotFoundError(correlation_id, provider=provider)
        return payment

    async def list_payments(self, order_id: int) -> list[Payment]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.payment_repository.list_by_order(order_id)

    # ---- writes ----------------------------------------------------------

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
        payment = await self._run(
            lambda svc: svc.open_attempt(
                order_id,
                provider,
                amount=amount,
                currency=currency,
                correlation_key=correlation_key,
                correlation_id=correlation_id,
                payment_data=payment_data,
            )
        )
        logger.info(
            "payment_attempt_opened",
            payment_id=payment.id,
            order_id=order_id,
            provider=provider,
            correlation_id=correlation_id,
        )
        return payment

    async def attach_correlation(
        self,
        payment_id: int,
        *,
        correlation_key: str,
        correlation_id: str,
        payment_data: Optional[dict] = None,
    ) -> Payment:
        return await self._run(
            lambda svc: svc.attach_correlation(
                payment_id,
                correlation_key=correlation_key,
                correlation_id=correlation_id,
                payment_data=payment_data,
            )
        )

    async def apply_outcome(
        self,
        payment_id: int,
        outcome: Outcome,
        source: EvidenceSource,
    ) -> ReconcileResult:
        result = await self._run(lambda svc: svc.apply_outcome(payment_id, outcome, source))
        if not result.changed and result.anomaly is None:
            logger.info(
                "payment_outcome_noop",
                payment_id=payment_id,
                status=result.payment.status.value,
                claimed=outcome.status,
                source=source.value,
            )
        return result

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
        return await self._run(
            lambda svc: svc.apply_refund(
                payment_id,
                amount,
                refund_id=refund_id,
                status=status,
                reason=reason,
                refund_data=refund_data,
                reservation_id=reservation_id,
            )
        )

    async def reserve_refund(self, payment_id: int, amount: Decimal, *, reason: Optional[str] = None) -> Refund:
        refund = await self._run(lambda svc: svc.reserve_refund(payment_id, amount, reason=reason))
        logger.info("payment_refund_reserved", payment_id=payment_id, refund_row_id=refund.id, amount=str(amount))
        return refund

    async def release_refund(self, reservation_id: int, error: str) -> Refund:
        refund = await self._run(lambda svc: svc.release_refund(reservation_id, error))
        logger.info("payment_refund_released", payment_id=refund.payment_id, refund_row_id=refund.id, error=error)
        return refund

    async def cancel_attempt(self, payment_id: int, reason: Optional[str] = None) -> Payment:
        return await self._run(lambda svc: svc.cancel_attempt(payment_id, reason))

    # ---- internals -------------------------------------------------------

    async def _run(self, op: Callable[[PaymentDomainService], Awaitable[T]]) -> T:
        async with self._uow_factory() as uow:
            service = PaymentDomainService(
                payment_repository=uow.payment_repository,
                order_repository=uow.order_repository,
                refund_repository=uow.refund_repository,
            )
            result = await op(service)
            events = list(service.events)
        await self._dispatch(events)
        return result

    async def _dispatch(self, events: list) -> None:
        for event in events:
            if isinstance(event, ReconciliationAnomaly):
                logger.error(
                    "payment_reconciliation_anomaly",
                    kind=event.kind,
                    payment_id=event.payment_id,
                    order_id=event.order_id,
                    provider=event.provider,
                    current_status=event.current_status,
                    claimed_status=event.claimed_status,
                    source=event.source,
                )
            elif isinstance(event, PaymentCompleted):
                logger.info(
                    "payment_completed",
                    payment_id=event.payment_id,
                    order_id=event.order_id,
                    provider=event.provider,
                    source=event.source,
                )
                if event.order_became_paid:
                    await self._on_order_paid(event)
            elif isinstance(event, PaymentFailed):
                logger.info(
                    "payment_failed",
                    payment_id=event.payment_id,
                    order_id=event.order_id,
                    provider=event.provider,
                    reason=event.reason,
                    source=event.source,
                )
            elif isinstance(event, PaymentRefunded):
                logger.info(
                    "payment_refunded",
                    payment_id=event.payment_id,
                    order_id=event.order_id,
                    provider=event.provider,
                    refund_id=event.refund_id,
                    amount=event.amount,
                    fully_refunded=event.fully_refunded,
                )
            elif isinstance(event, PaymentCancelled):
                logger.info(
                    "payment_cancelled",
                    payment_id=event.payment_id,
                    order_id=event.order_id,
                    provider=event.provider,
                    reason=event.reason,
                )

    async def _on_order_paid(self, event: PaymentCompleted) -> None:
        # The order is already durably paid; a failing collaborator must not undo that.
        try:
            await self._cart.clear_cart(event.user_id, event.session_id)
        except Exception as exc:
            logger.error(
                "cart_clear_failed",
                order_id=event.order_id,
                user_id=event.user_id,
                error=str(exc),
                exc_info=True,
            )
        try:
            await self._fulfillment.start_fulfillment(event.order_id)
        except Exception as exc:
            logger.error(
                "fulfillment_start_failed",
                order_id=event.order_id,
                error=str(exc),
                exc_info=True,
            )
