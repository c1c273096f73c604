"""
Payment gateway ports (application/ports) exposing replaceable protocols.

Application depends on these Protocols; infrastructure implements the
provider adapters and the registry that resolves them.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional, Protocol, runtime_checkable

from application.dtos.payments import (
    CallbackResult,
    GatewayListing,
    InboundRequest,
    InitiateOptions,
    InitiateResult,
    RefundResult,
    VerifyResult,
    WebhookResult,
)
from domain.order.entity import Order


@runtime_checkable
class PaymentGateway(Protocol):
    """Uniform contract every provider adapter implements."""

    provider: str
    # True when the provider must always receive HTTP 200 for webhooks
    always_acknowledge_webhooks: bool

    def is_available(self) -> bool: ...

    def is_applicable(self, amount: Decimal, currency: str) -> bool: ...

    async def initiate_payment(self, order: Order, options: InitiateOptions) -> InitiateResult: ...

    async def verify_payment(self, payment_id: int) -> VerifyResult: ...

    async def process_callback(self, request: InboundRequest) -> CallbackResult: ...

    async def process_webhook(self, request: InboundRequest) -> WebhookResult: ...

    def validate_webhook_signature(self, request: InboundRequest) -> bool: ...

    async def refund_payment(
        self,
        payment_id: int,
        amount: Optional[Decimal] = None,
        *,
        reason: Optional[str] = None,
    ) -> RefundResult: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class GatewayResolver(Protocol):
    """Resolves provider keys to usable adapters."""

    async def create(self, provider: str) -> PaymentGateway: ...

    async def available_gateways(self, amount: Decimal, currency: str) -> list[GatewayListing]: ...

    async def best_gateway(
        self, amount: Decimal, currency: str, preferred: Optional[str] = None
    ) -> Optional[PaymentGateway]: ...

    def acknowledges_webhooks(self, provider: str) -> bool: ...

    def clear_cache(self) -> None: ...


@runtime_checkable
class DeliveryConfirmable(Protocol):
    """Adapters whose money is collected at the door."""

    async def mark_delivered(self, payment_id: int) -> VerifyResult: ...
