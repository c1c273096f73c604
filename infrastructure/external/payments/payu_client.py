"""
PayU India hosted checkout adapter.

The browser is handed an auto-submitting form; PayU posts the result back
to our callback (surl/furl) and, separately, to the configured webhook.
Both carry the reverse response hash. Status confirmation and refunds go
through the merchant postservice API.
"""
from __future__ import annotations

import hashlib
import time
import uuid
from decimal import Decimal
from typing import Optional

from application.dtos.payments import InboundRequest, InitiateOptions, InitiateResult
from core.logging_config import get_logger
from domain.order.entity import Order
from domain.payment.entity import Payment
from domain.payment.exceptions import SignatureError, UpstreamError, ValidationError
from domain.payment.service import OUTCOME_PENDING, Outcome
from infrastructure.external.payments.base import (
    BasePaymentClient,
    CallbackEvidence,
    RemoteRefund,
    WebhookEvidence,
    format_amount,
    parse_decimal,
    safe_equals,
)


logger = get_logger(__name__)

_UDF_FIELDS = ("udf1", "udf2", "udf3", "udf4", "udf5")


def _sha512(value: str) -> str:
    return hashlib.sha512(value.encode("utf-8")).hexdigest()


class PayUClient(BasePaymentClient):
    provider = "payu"
    # PayU retries forever on non-2xx; failures are logged instead
    always_acknowledge_webhooks = True
    required_credentials = ("merchant_key", "salt")
    correlation_key = "payu_txnid"
    production_url = "https://secure.payu.in/_payment"
    sandbox_url = "https://test.payu.in/_payment"

    @property
    def postservice_url(self) -> str:
        if self.config.is_production:
            return "https://info.payu.in/merchant/postservice.php?form=2"
        return "https://test.payu.in/merchant/postservice.php?form=2"

    @property
    def merchant_key(self) -> str:
        return self.config.credential("merchant_key") or ""

    @property
    def salt(self) -> str:
        return self.config.credential("salt") or ""

    def _new_correlation_id(self, order: Order) -> str:
        return f"ORD{order.id}T{int(time.time())}"

    # ---- hashing ---------------------------------------------------------

    def request_hash(self, fields: dict) -> str:
        """sha512(key|txnid|amount|productinfo|firstname|email|udf1..udf5||||||salt)"""
        parts = [
            fields.get("key", ""),
            fields.get("txnid", ""),
            fields.get("amount", ""),
            fields.get("productinfo", ""),
            fields.get("firstname", ""),
            fields.get("email", ""),
        ]
        parts += [fields.get(name, "") for name in _UDF_FIELDS]
        return _sha512("|".join(str(p) for p in parts) + "||||||" + self.salt)

    def response_hash(self, fields: dict) -> str:
        """sha512(salt|status||||||udf5..udf1|email|firstname|productinfo|amount|txnid|key)"""
        head = f"{self.salt}|{fields.get('status', '')}||||||"
        tail = [str(fields.get(name) or "") for name in reversed(_UDF_FIELDS)]
        tail += [
            str(fields.get("email") or ""),
            str(fields.get("firstname") or ""),
            str(fields.get("productinfo") or ""),
            str(fields.get("amount") or ""),
            str(fields.get("txnid") or ""),
            str(fields.get("key") or ""),
        ]
        return _sha512(head + "|".join(tail))

    def command_hash(self, command: str, var1: str) -> str:
        return _sha512(f"{self.merchant_key}|{command}|{var1}|{self.salt}")

    # ---- session ---------------------------------------------------------

    async def _start_session(self, order: Order, payment: Payment, options: InitiateOptions) -> InitiateResult:
        name = (order.customer_name or "").strip()
        fields = {
            "key": self.merchant_key,
            "txnid": payment.correlation_id,
            "amount": format_amount(payment.amount),
            "productinfo": f"Order #{order.order_number}",
            "firstname": name.split(" ")[0] if name else "Customer",
            "email": order.customer_email or "",
            "phone": order.customer_phone or "",
            "surl": self._callback_url(),
            "furl": self._callback_url(),
            "udf1": str(order.id),
            "udf2": order.order_number,
            "udf3": str(order.user_id or ""),
            "udf4": "",
            "udf5": "",
        }
        fields["hash"] = self.request_hash(fields)
        return InitiateResult(
            success=True,
            provider=self.provider,
            payment_id=payment.id,
            correlation_id=payment.correlation_id,
            redirect_url=self.base_url,
            method="POST",
            form_params=fields,
            message="Payment initiated successfully",
        )

    # ---- status ----------------------------------------------------------

    async def _fetch_status(self, payment: Payment) -> Outcome:
        txnid = payment.correlation_id
        response = await self._request(
            "POST",
            self.postservice_url,
            operation="verify_payment",
            data={
                "key": self.merchant_key,
                "command": "verify_payment",
                "var1": txnid,
                "hash": self.command_hash("verify_payment", txnid),
            },
        )
        data = self._json(response, operation="verify_payment")
        details = (data.get("transaction_details") or {}).get(txnid) or {}
        if str(data.get("status")) != "1" or not details:
            return Outcome(status=OUTCOME_PENDING, payload=data)
        return Outcome(
            status=self._map_status(str(details.get("status", "")).lower()),
            provider_ref=details.get("mihpayid"),
            amount=parse_decimal(details.get("amt") or details.get("transaction_amount")),
            reason=details.get("error_Message") or details.get("field9"),
            payload=data,
        )

    # ---- callback / webhook ----------------------------------------------

    def _verify_hash(self, fields: dict) -> bool:
        return safe_equals(self.response_hash(fields), str(fields.get("hash") or "").lower())

    def _parse_callback(self, request: InboundRequest) -> CallbackEvidence:
        fields = request.inputs()
        if not fields.get("txnid"):
            raise ValidationError("Missing txnid in PayU response", provider=self.provider, field="txnid")
        if not self._verify_hash(fields):
            logger.warning("payu_response_hash_mismatch", txnid=fields.get("txnid"))
            raise SignatureError("Invalid payment response signature", provider=self.provider)
        return CallbackEvidence(
            correlation_id=fields.get("txnid"),
            claimed_status=self._map_status(str(fields.get("status", "")).lower()),
            verified=True,
            provider_ref=fields.get("mihpayid"),
            reason=fields.get("error_Message") or fields.get("field9"),
            payload={k: v for k, v in fields.items() if k != "hash"},
        )

    def validate_webhook_signature(self, request: InboundRequest) -> bool:
        fields = request.inputs()
        if not fields.get("hash") or not self.salt:
            return False
        return self._verify_hash(fields)

    def _parse_webhook(self, request: InboundRequest) -> WebhookEvidence:
        fields = request.inputs()
        status = str(fields.get("status", "")).lower()
        return WebhookEvidence(
            event_type=status or "unknown",
            correlation_id=fields.get("txnid"),
            outcome=Outcome(
                status=self._map_status(status),
                provider_ref=fields.get("mihpayid"),
                amount=parse_decimal(fields.get("amount")),
                reason=fields.get("error_Message") or fields.get("field9"),
                payload={k: v for k, v in fields.items() if k != "hash"},
            ),
        )

    # ---- refund ----------------------------------------------------------

    async def _remote_refund(self, payment: Payment, amount: Decimal, reason: Optional[str]) -> RemoteRefund:
        mihpayid = payment.provider_ref or payment.payment_data.get("mihpayid")
        if not mihpayid:
            raise ValidationError("PayU payment id (mihpayid) not recorded", provider=self.provider, field="payment_id")
        token = uuid.uuid4().hex[:20]
        response = await self._request(
            "POST",
            self.postservice_url,
            operation="cancel_refund_transaction",
            data={
                "key": self.merchant_key,
                "command": "cancel_refund_transaction",
                "var1": mihpayid,
                "var2": token,
                "var3": format_amount(amount),
                "hash": self.command_hash("cancel_refund_transaction", mihpayid),
            },
        )
        data = self._json(response, operation="cancel_refund_transaction")
        if str(data.get("status")) != "1":
            logger.warning("payu_refund_rejected", payment_id=payment.id, msg=data.get("msg"))
            raise UpstreamError(
                message=data.get("msg") or "Refund request rejected",
                provider=self.provider,
                details={"operation": "cancel_refund_transaction"},
            )
        return RemoteRefund(
            refund_id=str(data.get("request_id") or token),
            status=self._map_refund_status(data.get("status")),
            payload=data,
        )
