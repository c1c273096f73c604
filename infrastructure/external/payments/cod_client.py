"""
Cash on delivery.

No remote provider: the attempt stays pending until delivery is confirmed,
refunds before delivery cancel the attempt and refunds after delivery are
recorded for manual settlement.
"""
from __future__ import annotations

import time
from decimal import Decimal
from typing import Optional

from application.dtos.payments import (
    CallbackResult,
    InboundRequest,
    InitiateOptions,
    InitiateResult,
    RefundResult,
    VerifyResult,
    WebhookResult,
)
from domain.order.entity import Order
from domain.payment.entity import EvidenceSource, Payment, PaymentStatus, RefundStatus, SETTLED_STATUSES
from domain.payment.exceptions import InvalidStateError, ValidationError
from domain.payment.service import OUTCOME_COMPLETED, Outcome
from infrastructure.external.payments.base import BasePaymentClient, format_amount


class CashOnDeliveryClient(BasePaymentClient):
    provider = "cod"
    correlation_key = "cod_reference"
    correlation_prefix = "COD"

    def _limit(self, name: str) -> Decimal:
        default = getattr(self.settings.cod, name)
        return Decimal(str(self.config.option(name, default)))

    @property
    def service_charge(self) -> Decimal:
        return self._limit("service_charge")

    def is_available(self) -> bool:
        return bool(self.config.is_enabled)

    def is_applicable(self, amount: Decimal, currency: str) -> bool:
        if not super().is_applicable(amount, currency):
            return False
        return self._limit("min_order_amount") <= Decimal(amount) <= self._limit("max_order_amount")

    def _validate_order(self, order: Order) -> None:
        super()._validate_order(order)
        minimum = self._limit("min_order_amount")
        maximum = self._limit("max_order_amount")
        if Decimal(order.total_amount) < minimum:
            raise ValidationError(
                f"Minimum order amount for cash on delivery is {format_amount(minimum)}",
                provider=self.provider,
                field="amount",
            )
        if Decimal(order.total_amount) > maximum:
            raise ValidationError(
                f"Maximum order amount for cash on delivery is {format_amount(maximum)}",
                provider=self.provider,
                field="amount",
            )

    async def _start_session(self, order: Order, payment: Payment, options: InitiateOptions) -> InitiateResult:
        return InitiateResult(
            success=True,
            provider=self.provider,
            payment_id=payment.id,
            correlation_id=payment.correlation_id,
            sdk_params={
                "cod": True,
                "amount": format_amount(payment.amount),
                "currency": payment.currency,
                "service_charge": format_amount(self.service_charge),
            },
            message="COD order placed successfully",
        )

    def _attempt_data(self, order: Order) -> dict:
        return {
            "service_charge": format_amount(self.service_charge),
            "payment_on_delivery": True,
        }

    async def verify_payment(self, payment_id: int) -> VerifyResult:
        payment = await self.reconciler.get_payment(payment_id)
        self._ensure_own(payment)
        return VerifyResult(
            success=payment.status in SETTLED_STATUSES,
            payment_id=payment.id,
            payment_status=payment.status.value,
        )

    async def mark_delivered(self, payment_id: int) -> VerifyResult:
        """Cash was collected at the door: the attempt completes."""
        payment = await self.reconciler.get_payment(payment_id)
        self._ensure_own(payment)
        if payment.status not in (PaymentStatus.PENDING, *SETTLED_STATUSES):
            raise InvalidStateError(
                f"Cannot mark a {payment.status.value} COD payment as delivered",
                details={"payment_id": payment.id},
            )
        result = await self.reconciler.apply_outcome(
            payment.id,
            Outcome(
                status=OUTCOME_COMPLETED,
                provider_ref=f"cod_{payment.id}",
                amount=payment.amount,
                payload={"delivered_at": int(time.time())},
            ),
            EvidenceSource.DELIVERY,
        )
        self._log("cod_payment_delivered", payment_id=payment.id, order_id=payment.order_id)
        return VerifyResult(
            success=result.payment.status in SETTLED_STATUSES,
            payment_id=payment.id,
            payment_status=result.payment.status.value,
        )

    async def process_callback(self, request: InboundRequest) -> CallbackResult:
        raise ValidationError("COD does not support payment callbacks", provider=self.provider)

    async def process_webhook(self, request: InboundRequest) -> WebhookResult:
        raise ValidationError("COD does not support webhooks", provider=self.provider)

    def validate_webhook_signature(self, request: InboundRequest) -> bool:
        return False

    async def refund_payment(
        self,
        payment_id: int,
        amount: Optional[Decimal] = None,
        *,
        reason: Optional[str] = None,
    ) -> RefundResult:
        payment = await self.reconciler.get_payment(payment_id)
        self._ensure_own(payment)

        if payment.status == PaymentStatus.PENDING:
            # not delivered yet: nothing was collected, the attempt is cancelled
            payment = await self.reconciler.cancel_attempt(payment.id, reason or "Order cancelled")
            self._log("cod_payment_cancelled", payment_id=payment.id, order_id=payment.order_id)
            return RefundResult(
                success=True,
                provider=self.provider,
                payment_id=payment.id,
                refund_id=f"cod_cancel_{payment.id}",
                status=RefundStatus.COMPLETED.value,
                amount=payment.amount,
                payment_status=payment.status.value,
                message="COD order cancelled successfully",
            )

        amount = Decimal(amount if amount is not None else payment.refundable_amount())
        payment.ensure_refundable(amount)
        payment, refund = await self.reconciler.apply_refund(
            payment.id,
            amount,
            refund_id=f"cod_refund_{payment.id}_{int(time.time())}",
            status=RefundStatus.PENDING,
            reason=reason,
            refund_data={"manual_processing_required": True},
        )
        self._log("cod_refund_logged", payment_id=payment.id, amount=str(amount))
        return RefundResult(
            success=True,
            provider=self.provider,
            payment_id=payment.id,
            refund_id=refund.refund_id,
            status=refund.status.value,
            amount=amount,
            payment_status=payment.status.value,
            message="Refund request logged for manual processing",
        )
