"""
Base payment client implementing shared concerns: http, retry, logging,
status mapping and the state-machine half of the gateway contract.

Concrete providers subclass and implement only their wire format:
`_start_session`, `_fetch_status`, `_parse_callback`, `_parse_webhook`,
`validate_webhook_signature` and `_remote_refund`.
"""
from __future__ import annotations

import hmac
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Callable, Optional
from contextlib import asynccontextmanager

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from application.dtos.payments import (
    CallbackResult,
    InboundRequest,
    InitiateOptions,
    InitiateResult,
    RefundResult,
    VerifyResult,
    WebhookResult,
)
from application.services.reconciliation_service import PaymentReconciler
from domain.common.exceptions import BusinessException
from domain.order.entity import Order
from domain.payment.entity import (
    EvidenceSource,
    GatewayConfig,
    Payment,
    PaymentStatus,
    RefundStatus,
    SETTLED_STATUSES,
)
from domain.payment.exceptions import (
    ConfigurationError,
    SignatureError,
    UpstreamError,
    ValidationError,
)
from domain.payment.service import (
    OUTCOME_COMPLETED,
    OUTCOME_FAILED,
    OUTCOME_PENDING,
    Outcome,
)
from shared.codes.payment_codes import (
    PROVIDER_REFUND_STATUS_TO_INTERNAL,
    PROVIDER_STATUS_TO_INTERNAL,
)


logger = get_logger(__name__)

_CENT = Decimal("0.01")


def to_minor_units(amount: Decimal) -> int:
    """199.00 -> 19900"""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(value: Any) -> Decimal:
    """19900 -> Decimal('199.00')"""
    return (Decimal(int(value)) / 100).quantize(_CENT)


def format_amount(amount: Decimal) -> str:
    """Decimal string with exactly two places, e.g. '199.00'."""
    return f"{Decimal(amount).quantize(_CENT, rounding=ROUND_HALF_UP):.2f}"


def parse_decimal(value: Any) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def safe_equals(expected: Optional[str], received: Optional[str]) -> bool:
    if not expected or not received:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))


@dataclass
class CallbackEvidence:
    correlation_id: Optional[str]
    claimed_status: str
    # signature/hash over the redirect was checked
    verified: bool = False
    provider_ref: Optional[str] = None
    reason: Optional[str] = None
    payload: dict = field(default_factory=dict)


@dataclass
class WebhookEvidence:
    event_type: str
    correlation_id: Optional[str] = None
    outcome: Optional[Outcome] = None


@dataclass
class RemoteRefund:
    refund_id: Optional[str]
    status: RefundStatus
    payload: dict = field(default_factory=dict)


class BasePaymentClient:
    provider: str = "base"
    always_acknowledge_webhooks: bool = False
    required_credentials: tuple[str, ...] = ()
    # key under which the correlation id is stored in order.payment_metadata
    correlation_key: str = "transaction_id"
    correlation_prefix: str = "TXN"
    # poll the status API even when the redirect claims nothing final
    confirm_pending_callbacks: bool = False
    production_url: str = ""
    sandbox_url: str = ""

    def __init__(
        self,
        config: GatewayConfig,
        reconciler: PaymentReconciler,
        *,
        settings: Optional[PaymentSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self.reconciler = reconciler
        self.settings = settings or payment_settings
        self._timeouts_cfg = self.settings.timeouts
        self._retry_cfg = self.settings.retry
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._in_flight = 0

    # ---- http ------------------------------------------------------------

    @property
    def busy(self) -> bool:
        return self._in_flight > 0

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            self._timeouts_cfg.total,
            connect=self._timeouts_cfg.connect,
            read=self._timeouts_cfg.read,
            write=self._timeouts_cfg.write,
        )

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeouts, transport=self._transport)
        self._in_flight += 1
        try:
            yield self._client
        finally:
            # Keep open for reuse; explicit aclose() will close.
            self._in_flight -= 1

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _retry(self, fn: Callable[[], Any]):
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg.max) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg.base_backoff, min=0.1, max=2.0),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
            reraise=True,
        ):
            with attempt:
                return await fn()

    async def _request(self, method: str, url: str, *, operation: str, **kwargs) -> httpx.Response:
        """Send with retry; every failure leaves as UpstreamError."""
        async def _send() -> httpx.Response:
            async with self.client() as c:
                return await c.request(method, url, **kwargs)

        try:
            response = await self._retry(_send)
        except httpx.TimeoutException as exc:
            logger.warning("payment_provider_timeout", provider=self.provider, operation=operation)
            raise UpstreamError(provider=self.provider, details={"operation": operation, "reason": "timeout"}) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "payment_provider_transport_error",
                provider=self.provider,
                operation=operation,
                error=str(exc),
            )
            raise UpstreamError(provider=self.provider, details={"operation": operation}) from exc

        if response.status_code >= 400:
            logger.warning(
                "payment_provider_http_error",
                provider=self.provider,
                operation=operation,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise UpstreamError(
                provider=self.provider,
                details={"operation": operation, "status_code": response.status_code},
            )
        return response

    def _json(self, response: httpx.Response, *, operation: str) -> dict:
        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamError(provider=self.provider, details={"operation": operation, "reason": "bad_json"}) from exc
        if not isinstance(data, dict):
            raise UpstreamError(provider=self.provider, details={"operation": operation, "reason": "bad_json"})
        return data

    # ---- configuration ---------------------------------------------------

    @property
    def base_url(self) -> str:
        if self.config.is_production:
            return self.config.option("production_url") or self.production_url
        return self.config.option("sandbox_url") or self.sandbox_url

    def _missing_credentials(self) -> list[str]:
        return [name for name in self.required_credentials if not self.config.credential(name)]

    def is_available(self) -> bool:
        return bool(self.config.is_enabled) and not self._missing_credentials()

    def _require_configuration(self) -> None:
        missing = self._missing_credentials()
        if missing:
            logger.error("payment_gateway_misconfigured", provider=self.provider, missing=missing)
            raise ConfigurationError(
                f"{self.provider} is missing required credentials",
                provider=self.provider,
                details={"missing": missing},
            )

    def supported_currencies(self) -> list[str]:
        currencies = self.config.supported_currencies or [self.settings.default_currency]
        return [c.upper() for c in currencies]

    def is_applicable(self, amount: Decimal, currency: str) -> bool:
        return Decimal(amount) > 0 and (currency or "").upper() in self.supported_currencies()

    def _validate_order(self, order: Order) -> None:
        if order.total_amount is None or Decimal(order.total_amount) <= 0:
            raise ValidationError(
                f"Order amount must be greater than 0: {order.total_amount}",
                provider=self.provider,
                field="amount",
            )
        if (order.currency or "").upper() not in self.supported_currencies():
            raise ValidationError(
                f"Currency {order.currency} is not supported by {self.provider}",
                provider=self.provider,
                field="currency",
            )

    def _storefront_urls(self, options: InitiateOptions) -> dict:
        """Client return/cancel pages; the provider itself always returns to our callback."""
        urls = {}
        for name in ("return_url", "cancel_url"):
            url = getattr(options, name)
            if not url:
                continue
            if not self.settings.is_allowed_return_url(url):
                raise ValidationError(
                    f"{name} must point at an allowed storefront host",
                    provider=self.provider,
                    field=name,
                )
            urls[name] = url
        return urls

    def _callback_url(self) -> str:
        return self.settings.endpoint_url(self.provider, "callback")

    def _webhook_url(self) -> str:
        return self.settings.endpoint_url(self.provider, "webhook")

    def _new_correlation_id(self, order: Order) -> str:
        return f"{self.correlation_prefix}{order.id}_{uuid.uuid4().hex[:12]}"

    def _map_status(self, provider_status: Optional[str]) -> str:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        return mapping.get(provider_status or "", OUTCOME_PENDING)

    def _map_refund_status(self, provider_status: Optional[str]) -> RefundStatus:
        mapping = PROVIDER_REFUND_STATUS_TO_INTERNAL.get(self.provider, {})
        return RefundStatus(mapping.get(str(provider_status or ""), RefundStatus.PROCESSING.value))

    def _ensure_own(self, payment: Payment) -> None:
        if payment.provider != self.provider:
            raise ValidationError(
                f"Payment {payment.id} belongs to {payment.provider}, not {self.provider}",
                provider=self.provider,
                field="payment_id",
            )

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )

    # ---- contract --------------------------------------------------------

    async def initiate_payment(self, order: Order, options: InitiateOptions) -> InitiateResult:
        self._require_configuration()
        self._validate_order(order)
        storefront = self._storefront_urls(options)

        correlation_id = self._new_correlation_id(order)
        payment = await self.reconciler.open_attempt(
            order.id,
            self.provider,
            amount=Decimal(order.total_amount),
            currency=order.currency.upper(),
            correlation_key=self.correlation_key,
            correlation_id=correlation_id,
            payment_data={
                "initiated_at": datetime.now(timezone.utc).isoformat(),
                "environment": "production" if self.config.is_production else "sandbox",
                **storefront,
                **self._attempt_data(order),
            },
        )
        self._log("payment_initiated", payment_id=payment.id, order_id=order.id, correlation_id=correlation_id)

        # The row stays pending if the provider call fails; verify/webhook resolves it.
        try:
            return await self._start_session(order, payment, options)
        except UpstreamError:
            logger.warning(
                "payment_session_not_created",
                provider=self.provider,
                payment_id=payment.id,
                order_id=order.id,
            )
            raise

    async def verify_payment(self, payment_id: int) -> VerifyResult:
        payment = await self.reconciler.get_payment(payment_id)
        self._ensure_own(payment)
        self._require_configuration()

        outcome = await self._fetch_status(payment)
        status = payment.status
        # read-mostly: only a newly discovered completion is written
        if outcome.status == OUTCOME_COMPLETED and payment.status not in SETTLED_STATUSES:
            result = await self.reconciler.apply_outcome(payment.id, outcome, EvidenceSource.POLL)
            status = result.payment.status
        self._log("payment_verified", payment_id=payment.id, provider_status=outcome.status, status=status.value)
        return VerifyResult(
            success=status in SETTLED_STATUSES,
            payment_id=payment.id,
            payment_status=status.value,
            raw=outcome.payload if isinstance(outcome.payload, dict) else None,
        )

    async def process_callback(self, request: InboundRequest) -> CallbackResult:
        try:
            evidence = self._parse_callback(request)
        except SignatureError:
            logger.warning("payment_callback_signature_invalid", provider=self.provider)
            raise
        payment = await self.reconciler.find_payment(self.provider, evidence.correlation_id)
        self._check_callback(payment, evidence)

        outcome: Optional[Outcome] = None
        source = EvidenceSource.CALLBACK
        needs_confirmation = (
            evidence.claimed_status == OUTCOME_COMPLETED
            or (evidence.claimed_status == OUTCOME_FAILED and not evidence.verified)
            or (evidence.claimed_status == OUTCOME_PENDING and self.confirm_pending_callbacks)
        )
        if payment.is_settled:
            # webhook already won the race; nothing a redirect says can change that
            pass
        elif needs_confirmation:
            # never trust the browser: ask the provider what really happened
            try:
                outcome = await self._fetch_status(payment)
                source = EvidenceSource.CALLBACK_VERIFIED
            except UpstreamError:
                logger.warning(
                    "payment_callback_confirmation_failed",
                    provider=self.provider,
                    payment_id=payment.id,
                )
        elif evidence.claimed_status == OUTCOME_FAILED:
            outcome = Outcome(
                status=OUTCOME_FAILED,
                provider_ref=evidence.provider_ref,
                reason=evidence.reason,
                payload=evidence.payload,
            )

        if outcome is not None and outcome.status != OUTCOME_PENDING:
            result = await self.reconciler.apply_outcome(payment.id, outcome, source)
            payment = result.payment

        self._log(
            "payment_callback_processed",
            payment_id=payment.id,
            order_id=payment.order_id,
            claimed=evidence.claimed_status,
            status=payment.status.value,
        )
        success = payment.status in SETTLED_STATUSES
        return CallbackResult(
            success=success,
            provider=self.provider,
            order_id=payment.order_id,
            payment_id=payment.id,
            payment_status=payment.status.value,
            claimed_status=evidence.claimed_status,
            return_url=payment.payment_data.get("return_url"),
            cancel_url=payment.payment_data.get("cancel_url"),
            message="Payment successful" if success else (
                "Payment failed" if payment.status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED)
                or evidence.claimed_status == OUTCOME_FAILED
                else "Payment is being confirmed"
            ),
        )

    async def process_webhook(self, request: InboundRequest) -> WebhookResult:
        if not self.validate_webhook_signature(request):
            logger.warning("payment_webhook_signature_invalid", provider=self.provider)
            raise SignatureError(provider=self.provider)

        evidence = self._parse_webhook(request)
        if evidence.outcome is None or evidence.outcome.status == OUTCOME_PENDING:
            self._log("payment_webhook_ignored", event_type=evidence.event_type)
            return WebhookResult(
                success=True,
                provider=self.provider,
                handled=False,
                message=f"Event {evidence.event_type} acknowledged",
            )

        payment = await self.reconciler.find_payment(self.provider, evidence.correlation_id)
        result = await self.reconciler.apply_outcome(payment.id, evidence.outcome, EvidenceSource.WEBHOOK)
        self._log(
            "payment_webhook_processed",
            event_type=evidence.event_type,
            payment_id=payment.id,
            order_id=payment.order_id,
            changed=result.changed,
            status=result.payment.status.value,
        )
        return WebhookResult(
            success=result.anomaly is None or result.changed,
            provider=self.provider,
            order_id=payment.order_id,
            payment_id=payment.id,
            payment_status=result.payment.status.value,
            message=result.anomaly or "Webhook processed",
        )

    async def refund_payment(
        self,
        payment_id: int,
        amount: Optional[Decimal] = None,
        *,
        reason: Optional[str] = None,
    ) -> RefundResult:
        payment = await self.reconciler.get_payment(payment_id)
        self._ensure_own(payment)
        self._require_configuration()
        amount = Decimal(amount if amount is not None else payment.refundable_amount()).quantize(_CENT)
        # held under the row lock before any money moves
        reservation = await self.reconciler.reserve_refund(payment.id, amount, reason=reason)

        try:
            remote = await self._remote_refund(payment, amount, reason)
        except UpstreamError as exc:
            if (exc.details or {}).get("reason") == "timeout":
                # the provider may still have acted; the hold stays until someone checks
                logger.error(
                    "payment_refund_outcome_unknown",
                    provider=self.provider,
                    payment_id=payment.id,
                    refund_row_id=reservation.id,
                    amount=str(amount),
                )
                raise
            await self.reconciler.release_refund(reservation.id, exc.message)
            raise
        except BusinessException as exc:
            await self.reconciler.release_refund(reservation.id, exc.message)
            raise

        try:
            payment, refund = await self.reconciler.apply_refund(
                payment.id,
                amount,
                refund_id=remote.refund_id,
                status=remote.status,
                reason=reason,
                refund_data=remote.payload,
                reservation_id=reservation.id,
            )
        except Exception:
            # money already moved at the provider; the hold keeps the amount
            # blocked until the ledger is fixed by hand
            logger.error(
                "payment_refund_ledger_write_failed",
                provider=self.provider,
                payment_id=payment.id,
                refund_row_id=reservation.id,
                refund_id=remote.refund_id,
                amount=str(amount),
                exc_info=True,
            )
            raise
        self._log("payment_refund_recorded", payment_id=payment.id, refund_id=refund.refund_id, amount=str(amount))
        return RefundResult(
            success=True,
            provider=self.provider,
            payment_id=payment.id,
            refund_id=refund.refund_id,
            status=refund.status.value,
            amount=amount,
            payment_status=payment.status.value,
            message="Refund initiated",
        )

    # ---- provider hooks --------------------------------------------------

    async def _start_session(self, order: Order, payment: Payment, options: InitiateOptions) -> InitiateResult:
        raise NotImplementedError

    async def _fetch_status(self, payment: Payment) -> Outcome:
        raise NotImplementedError

    def _parse_callback(self, request: InboundRequest) -> CallbackEvidence:
        raise NotImplementedError

    def _attempt_data(self, order: Order) -> dict:
        """Extra fields stored on the pending row at initiation."""
        return {}

    def _check_callback(self, payment: Payment, evidence: CallbackEvidence) -> None:
        """Hook for provider-specific cross-checks of a resolved callback."""

    def _parse_webhook(self, request: InboundRequest) -> WebhookEvidence:
        raise NotImplementedError

    def validate_webhook_signature(self, request: InboundRequest) -> bool:
        raise NotImplementedError

    async def _remote_refund(self, payment: Payment, amount: Decimal, reason: Optional[str]) -> RemoteRefund:
        raise NotImplementedError
