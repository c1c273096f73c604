"""
Razorpay Checkout adapter over the v1 REST API.

A Razorpay order is created server-side and its id is handed to the
Checkout SDK in the browser. The order id is the correlation key for
callbacks and webhooks.
"""
from __future__ import annotations

import hashlib
import hmac
import json
from decimal import Decimal
from typing import Optional

from application.dtos.payments import InboundRequest, InitiateOptions, InitiateResult
from core.logging_config import get_logger
from domain.order.entity import Order
from domain.payment.entity import Payment
from domain.payment.exceptions import SignatureError, UpstreamError, ValidationError
from domain.payment.service import OUTCOME_COMPLETED, OUTCOME_FAILED, OUTCOME_PENDING, Outcome
from infrastructure.external.payments.base import (
    BasePaymentClient,
    CallbackEvidence,
    RemoteRefund,
    WebhookEvidence,
    from_minor_units,
    safe_equals,
    to_minor_units,
)


logger = get_logger(__name__)


def hmac_sha256_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class RazorpayClient(BasePaymentClient):
    provider = "razorpay"
    required_credentials = ("key", "secret")
    correlation_key = "razorpay_order_id"
    correlation_prefix = "RZP"
    production_url = "https://api.razorpay.com/v1"
    sandbox_url = "https://api.razorpay.com/v1"

    @property
    def key_id(self) -> str:
        return self.config.credential("key") or ""

    @property
    def key_secret(self) -> str:
        return self.config.credential("secret") or ""

    @property
    def _auth(self) -> tuple[str, str]:
        return (self.key_id, self.key_secret)

    def _url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}{path}"

    # ---- session ---------------------------------------------------------

    async def _start_session(self, order: Order, payment: Payment, options: InitiateOptions) -> InitiateResult:
        response = await self._request(
            "POST",
            self._url("/orders"),
            operation="create_order",
            auth=self._auth,
            json={
                "amount": to_minor_units(payment.amount),
                "currency": payment.currency,
                "receipt": order.order_number,
                "payment_capture": 1,
                "notes": {
                    "order_id": str(order.id),
                    "order_number": order.order_number,
                    "payment_id": str(payment.id),
                },
            },
        )
        data = self._json(response, operation="create_order")
        remote_id = data.get("id")
        if not remote_id:
            raise UpstreamError(provider=self.provider, details={"operation": "create_order", "reason": "missing_id"})

        payment = await self.reconciler.attach_correlation(
            payment.id,
            correlation_key=self.correlation_key,
            correlation_id=remote_id,
            payment_data={"razorpay_order": data},
        )
        return InitiateResult(
            success=True,
            provider=self.provider,
            payment_id=payment.id,
            correlation_id=remote_id,
            session_token=remote_id,
            sdk_params={
                "key": self.key_id,
                "order_id": remote_id,
                "amount": data.get("amount", to_minor_units(payment.amount)),
                "currency": data.get("currency", payment.currency),
                "description": options.description or f"Order #{order.order_number}",
                "prefill": {
                    "name": order.customer_name or "",
                    "email": order.customer_email or "",
                    "contact": order.customer_phone or "",
                },
                "callback_url": self._callback_url(),
            },
            message="Payment initiated successfully",
        )

    # ---- status ----------------------------------------------------------

    async def _fetch_status(self, payment: Payment) -> Outcome:
        response = await self._request(
            "GET",
            self._url(f"/orders/{payment.correlation_id}/payments"),
            operation="fetch_order_payments",
            auth=self._auth,
        )
        data = self._json(response, operation="fetch_order_payments")
        items = data.get("items") or []
        for item in items:
            if item.get("status") == "captured":
                return Outcome(
                    status=OUTCOME_COMPLETED,
                    provider_ref=item.get("id"),
                    amount=from_minor_units(item.get("amount", 0)),
                    payload=item,
                )
        if items and all(item.get("status") == "failed" for item in items):
            last = items[0]
            return Outcome(
                status=OUTCOME_FAILED,
                provider_ref=last.get("id"),
                reason=last.get("error_description"),
                payload=last,
            )
        return Outcome(status=OUTCOME_PENDING, payload=data)

    # ---- callback / webhook ----------------------------------------------

    def payment_signature(self, order_id: str, payment_id: str) -> str:
        return hmac_sha256_hex(self.key_secret, f"{order_id}|{payment_id}".encode("utf-8"))

    def _parse_callback(self, request: InboundRequest) -> CallbackEvidence:
        fields = request.inputs()
        order_id = fields.get("razorpay_order_id")
        payment_id = fields.get("razorpay_payment_id")
        signature = fields.get("razorpay_signature")

        if payment_id and order_id:
            verified = False
            if signature:
                if not safe_equals(self.payment_signature(order_id, payment_id), signature):
                    logger.warning("razorpay_payment_signature_mismatch", razorpay_order_id=order_id)
                    raise SignatureError("Invalid payment signature", provider=self.provider)
                verified = True
            return CallbackEvidence(
                correlation_id=order_id,
                claimed_status=OUTCOME_COMPLETED,
                verified=verified,
                provider_ref=payment_id,
                payload={"razorpay_order_id": order_id, "razorpay_payment_id": payment_id},
            )

        # Checkout failure redirects carry error[...] fields
        error_meta = fields.get("error[metadata]") or ""
        order_id = order_id or _metadata_value(error_meta, "order_id")
        if not order_id:
            raise ValidationError("Missing razorpay_order_id", provider=self.provider, field="razorpay_order_id")
        return CallbackEvidence(
            correlation_id=order_id,
            claimed_status=OUTCOME_FAILED,
            verified=False,
            reason=fields.get("error[description]") or fields.get("error_description"),
            payload={k: v for k, v in fields.items() if k.startswith("error")},
        )

    def validate_webhook_signature(self, request: InboundRequest) -> bool:
        secret = self.config.credential("webhook_secret")
        signature = request.header("x-razorpay-signature")
        if not secret or not signature:
            return False
        return safe_equals(hmac_sha256_hex(secret, request.body), signature)

    def _parse_webhook(self, request: InboundRequest) -> WebhookEvidence:
        body = request.json_body()
        event = str(body.get("event") or "")
        payload = body.get("payload") or {}
        payment_entity = (payload.get("payment") or {}).get("entity") or {}
        order_entity = (payload.get("order") or {}).get("entity") or {}

        if event == "order.paid":
            correlation = order_entity.get("id") or payment_entity.get("order_id")
            amount = order_entity.get("amount_paid", payment_entity.get("amount"))
        else:
            correlation = payment_entity.get("order_id")
            amount = payment_entity.get("amount")

        status = self._map_status(event)
        if event not in ("payment.captured", "order.paid", "payment.failed"):
            status = OUTCOME_PENDING
        return WebhookEvidence(
            event_type=event or "unknown",
            correlation_id=correlation,
            outcome=Outcome(
                status=status,
                provider_ref=payment_entity.get("id"),
                amount=from_minor_units(amount) if amount is not None and status == OUTCOME_COMPLETED else None,
                reason=payment_entity.get("error_description"),
                payload={"event": event, "payment": payment_entity or None, "order": order_entity or None},
            ),
        )

    # ---- refund ----------------------------------------------------------

    async def _remote_refund(self, payment: Payment, amount: Decimal, reason: Optional[str]) -> RemoteRefund:
        if not payment.provider_ref:
            raise ValidationError("Razorpay payment id not recorded", provider=self.provider, field="payment_id")
        response = await self._request(
            "POST",
            self._url(f"/payments/{payment.provider_ref}/refund"),
            operation="refund",
            auth=self._auth,
            json={
                "amount": to_minor_units(amount),
                "notes": {"reason": reason or "", "payment_id": str(payment.id)},
            },
        )
        data = self._json(response, operation="refund")
        return RemoteRefund(
            refund_id=data.get("id"),
            status=self._map_refund_status(data.get("status")),
            payload=data,
        )


def _metadata_value(raw: str, key: str) -> Optional[str]:
    """error[metadata] is a JSON string; tolerate anything else."""
    try:
        data = json.loads(raw) if raw else {}
    except ValueError:
        return None
    return data.get(key) if isinstance(data, dict) else None
