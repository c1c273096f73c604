"""
PhonePe PG (hermes) adapter.

Requests are base64 JSON envelopes signed with the X-VERIFY checksum:
sha256(payload + path + salt_key) + "###" + salt_index.
"""
from __future__ import annotations

import base64
import hashlib
import json
import time
from decimal import Decimal
from typing import Optional

from application.dtos.payments import InboundRequest, InitiateOptions, InitiateResult
from core.logging_config import get_logger
from domain.order.entity import Order
from domain.payment.entity import Payment
from domain.payment.exceptions import UpstreamError, ValidationError
from domain.payment.service import OUTCOME_COMPLETED, Outcome
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

PAY_PATH = "/pg/v1/pay"
REFUND_PATH = "/pg/v1/refund"


def encode_payload(payload: dict) -> str:
    return base64.b64encode(json.dumps(payload, separators=(",", ":")).encode("utf-8")).decode("ascii")


class PhonePeClient(BasePaymentClient):
    provider = "phonepe"
    required_credentials = ("merchant_id", "salt_key", "salt_index")
    correlation_key = "phonepe_transaction_id"
    confirm_pending_callbacks = True
    correlation_prefix = "TXN"
    production_url = "https://api.phonepe.com/apis/hermes"
    sandbox_url = "https://api-preprod.phonepe.com/apis/pg-sandbox"

    @property
    def merchant_id(self) -> str:
        return self.config.credential("merchant_id") or ""

    def checksum(self, message: str) -> str:
        salt_key = self.config.credential("salt_key") or ""
        salt_index = self.config.credential("salt_index") or ""
        digest = hashlib.sha256((message + salt_key).encode("utf-8")).hexdigest()
        return f"{digest}###{salt_index}"

    def _url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}{path}"

    async def _post_signed(self, path: str, payload: dict, *, operation: str) -> dict:
        encoded = encode_payload(payload)
        response = await self._request(
            "POST",
            self._url(path),
            operation=operation,
            json={"request": encoded},
            headers={"Content-Type": "application/json", "X-VERIFY": self.checksum(encoded + path)},
        )
        data = self._json(response, operation=operation)
        if not data.get("success"):
            logger.warning("phonepe_request_rejected", operation=operation, code=data.get("code"))
            raise UpstreamError(
                message=data.get("message") or "PhonePe rejected the request",
                provider=self.provider,
                details={"operation": operation, "code": data.get("code")},
            )
        return data

    # ---- session ---------------------------------------------------------

    async def _start_session(self, order: Order, payment: Payment, options: InitiateOptions) -> InitiateResult:
        payload = {
            "merchantId": self.merchant_id,
            "merchantTransactionId": payment.correlation_id,
            "merchantUserId": str(order.user_id or f"guest_{order.id}"),
            "amount": to_minor_units(payment.amount),
            "redirectUrl": self._callback_url(),
            "redirectMode": "POST",
            "callbackUrl": self._webhook_url(),
            "paymentInstrument": {"type": "PAY_PAGE"},
        }
        if order.customer_phone:
            payload["mobileNumber"] = order.customer_phone

        data = await self._post_signed(PAY_PATH, payload, operation="pay")
        redirect = (
            ((data.get("data") or {}).get("instrumentResponse") or {}).get("redirectInfo") or {}
        ).get("url")
        if not redirect:
            raise UpstreamError(provider=self.provider, details={"operation": "pay", "reason": "missing_redirect"})
        return InitiateResult(
            success=True,
            provider=self.provider,
            payment_id=payment.id,
            correlation_id=payment.correlation_id,
            redirect_url=redirect,
            method="GET",
            message="Payment initiated successfully",
        )

    # ---- status ----------------------------------------------------------

    async def _fetch_status(self, payment: Payment) -> Outcome:
        path = f"/pg/v1/status/{self.merchant_id}/{payment.correlation_id}"
        response = await self._request(
            "GET",
            self._url(path),
            operation="status",
            headers={
                "Content-Type": "application/json",
                "X-VERIFY": self.checksum(path),
                "X-MERCHANT-ID": self.merchant_id,
            },
        )
        data = self._json(response, operation="status")
        return self._outcome(data)

    def _outcome(self, data: dict) -> Outcome:
        code = str(data.get("code") or "")
        body = data.get("data") or {}
        status = self._map_status(code)
        amount = body.get("amount")
        return Outcome(
            status=status,
            provider_ref=body.get("transactionId"),
            amount=from_minor_units(amount) if amount is not None and status == OUTCOME_COMPLETED else None,
            reason=None if status == OUTCOME_COMPLETED else (data.get("message") or code),
            payload=data,
        )

    # ---- callback / webhook ----------------------------------------------

    def _parse_callback(self, request: InboundRequest) -> CallbackEvidence:
        fields = request.inputs()
        correlation = fields.get("transactionId") or fields.get("merchantTransactionId")
        if not correlation:
            raise ValidationError("Missing transactionId", provider=self.provider, field="transactionId")
        # the redirect carries no usable signature; the base class confirms via the status API
        return CallbackEvidence(
            correlation_id=correlation,
            claimed_status=self._map_status(str(fields.get("code") or "")),
            verified=False,
            provider_ref=fields.get("providerReferenceId"),
            payload={k: v for k, v in fields.items() if k != "checksum"},
        )

    def validate_webhook_signature(self, request: InboundRequest) -> bool:
        x_verify = request.header("x-verify")
        try:
            encoded = request.json_body().get("response")
        except ValidationError:
            return False
        if not x_verify or not encoded or not self.config.credential("salt_key"):
            return False
        return safe_equals(self.checksum(str(encoded)), x_verify)

    def _parse_webhook(self, request: InboundRequest) -> WebhookEvidence:
        encoded = request.json_body().get("response") or ""
        try:
            decoded = json.loads(base64.b64decode(encoded))
        except (ValueError, TypeError) as exc:
            raise ValidationError("Malformed PhonePe webhook payload", provider=self.provider, field="response") from exc
        if not isinstance(decoded, dict):
            raise ValidationError("Malformed PhonePe webhook payload", provider=self.provider, field="response")
        body = decoded.get("data") or {}
        return WebhookEvidence(
            event_type=str(decoded.get("code") or "unknown"),
            correlation_id=body.get("merchantTransactionId"),
            outcome=self._outcome(decoded),
        )

    # ---- refund ----------------------------------------------------------

    async def _remote_refund(self, payment: Payment, amount: Decimal, reason: Optional[str]) -> RemoteRefund:
        refund_txn = f"RFD{payment.id}_{int(time.time())}"
        data = await self._post_signed(
            REFUND_PATH,
            {
                "merchantId": self.merchant_id,
                "merchantUserId": f"payment_{payment.id}",
                "originalTransactionId": payment.correlation_id,
                "merchantTransactionId": refund_txn,
                "amount": to_minor_units(amount),
                "callbackUrl": self._webhook_url(),
            },
            operation="refund",
        )
        body = data.get("data") or {}
        return RemoteRefund(
            refund_id=body.get("transactionId") or refund_txn,
            status=self._map_refund_status(data.get("code")),
            payload=data,
        )
