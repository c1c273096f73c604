"""
Application service orchestrating payment use-cases.

This class depends only on the application ports and DTOs. Gateway
implementations are provided by infrastructure and injected from the
composition root (API), keeping dependencies one-way.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from application.dtos.payments import (
    CallbackResult,
    GatewayListing,
    InboundRequest,
    InitiateOptions,
    InitiateResult,
    OrderPaymentSummary,
    PaymentAttemptView,
    RefundResult,
    VerifyResult,
    WebhookResult,
)
from application.ports.payment_gateway import DeliveryConfirmable, GatewayResolver
from application.services.reconciliation_service import PaymentReconciler
from core.logging_config import get_logger
from domain.payment.exceptions import InvalidStateError, ValidationError


logger = get_logger(__name__)


class PaymentApplicationService:
    def __init__(self, gateways: GatewayResolver, reconciler: PaymentReconciler) -> None:
        self.gateways = gateways
        self.reconciler = reconciler

    async def initiate_payment(
        self,
        provider: str,
        order_id: int,
        options: Optional[InitiateOptions] = None,
    ) -> InitiateResult:
        logger.info("payment_initiate_request", order_id=order_id, provider=provider)
        gateway = await self.gateways.create(provider)
        order = await self.reconciler.get_order(order_id)
        if order.is_paid:
            raise InvalidStateError(
                f"Order {order_id} is already paid",
                details={"order_id": order_id, "payment_status": order.payment_status.value},
            )
        result = await gateway.initiate_payment(order, options or InitiateOptions())
        logger.info(
            "payment_initiate_response",
            order_id=order_id,
            provider=provider,
            payment_id=result.payment_id,
            success=result.success,
        )
        return result

    async def handle_callback(self, provider: str, request: InboundRequest) -> CallbackResult:
        gateway = await self.gateways.create(provider)
        return await gateway.process_callback(request)

    async def handle_webhook(self, provider: str, request: InboundRequest) -> WebhookResult:
        gateway = await self.gateways.create(provider)
        return await gateway.process_webhook(request)

    def webhook_always_acknowledged(self, provider: str) -> bool:
        return self.gateways.acknowledges_webhooks(provider)

    async def verify_payment(self, payment_id: int) -> VerifyResult:
        payment = await self.reconciler.get_payment(payment_id)
        gateway = await self.gateways.create(payment.provider)
        logger.info("payment_verify_request", payment_id=payment_id, provider=payment.provider)
        return await gateway.verify_payment(payment_id)

    async def refund_payment(
        self,
        payment_id: int,
        amount: Optional[Decimal] = None,
        *,
        reason: Optional[str] = None,
    ) -> RefundResult:
        payment = await self.reconciler.get_payment(payment_id)
        gateway = await self.gateways.create(payment.provider)
        logger.info(
            "payment_refund_request",
            payment_id=payment_id,
            provider=payment.provider,
            amount=str(amount) if amount is not None else None,
        )
        return await gateway.refund_payment(payment_id, amount, reason=reason)

    async def mark_delivered(self, payment_id: int) -> VerifyResult:
        payment = await self.reconciler.get_payment(payment_id)
        gateway = await self.gateways.create(payment.provider)
        if not isinstance(gateway, DeliveryConfirmable):
            raise ValidationError(
                "Only cash-on-delivery payments can be marked delivered",
                provider=payment.provider,
                field="payment_id",
            )
        return await gateway.mark_delivered(payment_id)

    async def get_payment_status(self, order_id: int) -> OrderPaymentSummary:
        order = await self.reconciler.get_order(order_id)
        payments = await self.reconciler.list_payments(order_id)
        return OrderPaymentSummary(
            order_id=order.id,
            order_number=order.order_number,
            payment_status=order.payment_status.value,
            payment_method=order.payment_method,
            total_amount=order.total_amount,
            currency=order.currency,
            attempts=[
                PaymentAttemptView(
                    id=p.id,
                    provider=p.provider,
                    amount=p.amount,
                    currency=p.currency,
                    status=p.status.value,
                    correlation_id=p.correlation_id,
                    provider_ref=p.provider_ref,
                    refunded_amount=p.refunded_amount,
                    created_at=p.created_at,
                    completed_at=p.completed_at,
                )
                for p in payments
            ],
        )

    async def available_gateways(self, amount: Decimal, currency: str) -> list[GatewayListing]:
        return await self.gateways.available_gateways(amount, currency)

    def clear_cache(self) -> None:
        self.gateways.clear_cache()
        logger.info("payment_gateway_cache_cleared")
