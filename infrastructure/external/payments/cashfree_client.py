"""
Cashfree PG adapter (API version 2022-09-01).

The merchant order id we generate is the correlation key; Cashfree returns
its own cf_order_id plus a payment_session_id for the JS SDK.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import time
from decimal import Decimal
from typing import Optional

from application.dtos.payments import InboundRequest, InitiateOptions, InitiateResult
from core.logging_config import get_logger
from domain.order.entity import Order
from domain.payment.entity import Payment
from domain.payment.exceptions import UpstreamError, ValidationError
from domain.payment.service import OUTCOME_COMPLETED, OUTCOME_PENDING, Outcome
from infrastructure.external.payments.base import (
    BasePaymentClient,
    CallbackEvidence,
    RemoteRefund,
    WebhookEvidence,
    parse_decimal,
    safe_equals,
)


logger = get_logger(__name__)

API_VERSION = "2022-09-01"

_WEBHOOK_TYPES = (
    "PAYMENT_SUCCESS",
    "PAYMENT_SUCCESS_WEBHOOK",
    "PAYMENT_FAILED",
    "PAYMENT_FAILED_WEBHOOK",
    "PAYMENT_USER_DROPPED_WEBHOOK",
)


def webhook_signature(secret: str, timestamp: str, raw_body: bytes) -> str:
    message = timestamp.encode("utf-8") + raw_body
    digest = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


class CashfreeClient(BasePaymentClient):
    provider = "cashfree"
    required_credentials = ("app_id", "secret_key")
    correlation_key = "cashfree_order_id"
    correlation_prefix = "order_"
    confirm_pending_callbacks = True
    production_url = "https://api.cashfree.com/pg"
    sandbox_url = "https://sandbox.cashfree.com/pg"

    def _headers(self) -> dict:
        return {
            "x-client-id": self.config.credential("app_id") or "",
            "x-client-secret": self.config.credential("secret_key") or "",
            "x-api-version": API_VERSION,
            "Content-Type": "application/json",
        }

    def _url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}{path}"

    # ---- session ---------------------------------------------------------

    async def _start_session(self, order: Order, payment: Payment, options: InitiateOptions) -> InitiateResult:
        response = await self._request(
            "POST",
            self._url("/orders"),
            operation="create_order",
            headers=self._headers(),
            json={
                "order_id": payment.correlation_id,
                "order_amount": float(payment.amount),
                "order_currency": payment.currency,
                "customer_details": {
                    "customer_id": f"customer_{order.user_id or order.id}",
                    "customer_email": order.customer_email or "",
                    "customer_phone": order.customer_phone or "",
                    "customer_name": order.customer_name or "",
                },
                "order_meta": {
                    "return_url": f"{self._callback_url()}?order_id={{order_id}}",
                    "notify_url": self._webhook_url(),
                },
                "order_note": f"Order #{order.order_number}",
            },
        )
        data = self._json(response, operation="create_order")
        session_id = data.get("payment_session_id")
        if not session_id:
            raise UpstreamError(provider=self.provider, details={"operation": "create_order", "reason": "missing_session"})

        payment = await self.reconciler.attach_correlation(
            payment.id,
            correlation_key=self.correlation_key,
            correlation_id=payment.correlation_id,
            payment_data={
                "cf_order_id": data.get("cf_order_id"),
                "payment_session_id": session_id,
            },
        )
        return InitiateResult(
            success=True,
            provider=self.provider,
            payment_id=payment.id,
            correlation_id=payment.correlation_id,
            redirect_url=data.get("payment_link"),
            session_token=session_id,
            sdk_params={
                "payment_session_id": session_id,
                "cf_order_id": data.get("cf_order_id"),
                "mode": "production" if self.config.is_production else "sandbox",
            },
            message="Payment initiated successfully",
        )

    # ---- status ----------------------------------------------------------

    async def _fetch_status(self, payment: Payment) -> Outcome:
        if not payment.payment_data.get("cf_order_id") or not payment.payment_data.get("payment_session_id"):
            raise ValidationError(
                "Cashfree session was never created for this payment",
                provider=self.provider,
                field="payment_id",
            )
        response = await self._request(
            "GET",
            self._url(f"/orders/{payment.correlation_id}"),
            operation="fetch_order",
            headers=self._headers(),
        )
        data = self._json(response, operation="fetch_order")
        status = self._map_status(str(data.get("order_status") or ""))
        return Outcome(
            status=status,
            provider_ref=str(data.get("cf_order_id")) if data.get("cf_order_id") else None,
            amount=parse_decimal(data.get("order_amount")) if status == OUTCOME_COMPLETED else None,
            reason=None if status == OUTCOME_COMPLETED else data.get("order_status"),
            payload=data,
        )

    # ---- callback / webhook ----------------------------------------------

    def _parse_callback(self, request: InboundRequest) -> CallbackEvidence:
        fields = request.inputs()
        correlation = fields.get("order_id")
        if not correlation:
            raise ValidationError("Order ID not received", provider=self.provider, field="order_id")
        return CallbackEvidence(
            correlation_id=correlation,
            # the return_url carries no status; always resolved by polling
            claimed_status=OUTCOME_PENDING,
            verified=False,
            provider_ref=fields.get("cf_payment_id"),
            payload=dict(fields),
        )

    def validate_webhook_signature(self, request: InboundRequest) -> bool:
        secret = self.config.credential("webhook_secret")
        signature = request.header("x-webhook-signature")
        timestamp = request.header("x-webhook-timestamp")
        if not secret or not signature or not timestamp:
            return False
        return safe_equals(webhook_signature(secret, timestamp, request.body), signature)

    def _parse_webhook(self, request: InboundRequest) -> WebhookEvidence:
        body = request.json_body()
        event = str(body.get("type") or "")
        data = body.get("data") or {}
        order = data.get("order") or {}
        payment = data.get("payment") or {}

        status = OUTCOME_PENDING
        if event in _WEBHOOK_TYPES:
            status = self._map_status(event)
        else:
            logger.info("cashfree_webhook_unhandled", event_type=event)
        amount = payment.get("payment_amount", order.get("order_amount"))
        return WebhookEvidence(
            event_type=event or "unknown",
            correlation_id=order.get("order_id"),
            outcome=Outcome(
                status=status,
                provider_ref=str(payment.get("cf_payment_id")) if payment.get("cf_payment_id") else None,
                amount=parse_decimal(amount) if status == OUTCOME_COMPLETED else None,
                reason=payment.get("payment_message"),
                payload={"type": event, "data": data},
            ),
        )

    # ---- refund ----------------------------------------------------------

    async def _remote_refund(self, payment: Payment, amount: Decimal, reason: Optional[str]) -> RemoteRefund:
        refund_id = f"refund_{payment.id}_{int(time.time())}"
        response = await self._request(
            "POST",
            self._url(f"/orders/{payment.correlation_id}/refunds"),
            operation="refund",
            headers=self._headers(),
            json={
                "refund_amount": float(amount),
                "refund_id": refund_id,
                "refund_note": reason or "Refund requested",
            },
        )
        data = self._json(response, operation="refund")
        return RemoteRefund(
            refund_id=str(data.get("cf_refund_id") or data.get("refund_id") or refund_id),
            status=self._map_refund_status(data.get("refund_status")),
            payload=data,
        )
