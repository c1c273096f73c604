"""
Payment domain entities - one Payment row per attempt, plus its refunds.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from enum import Enum

from domain.common.exceptions import DomainValidationException
from domain.payment.exceptions import (
    InvalidStateError,
    RefundExceedsRemainingError,
    ValidationError,
)


class PaymentStatus(str, Enum):
    """Payment attempt status"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    CANCELLED = "cancelled"


class RefundStatus(str, Enum):
    # amount held against the payment while the provider call is in flight
    REQUESTED = "requested"
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class EvidenceSource(str, Enum):
    """Where a status claim came from.

    Only CALLBACK is browser-carried and unconfirmed; every other source is
    either pushed by the provider backend or fetched from it directly.
    """
    CALLBACK = "callback"
    CALLBACK_VERIFIED = "callback_verified"
    WEBHOOK = "webhook"
    POLL = "poll"
    DELIVERY = "delivery"

    @property
    def authoritative(self) -> bool:
        return self is not EvidenceSource.CALLBACK


SETTLED_STATUSES = (
    PaymentStatus.COMPLETED,
    PaymentStatus.REFUNDED,
    PaymentStatus.PARTIALLY_REFUNDED,
)

_MONEY = Decimal("0.01")


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Payment:
    """
    Payment attempt aggregate.

    Business rules:
    1. amount must be positive and currency a 3-letter code
    2. a settled payment (completed/refunded) never goes back to pending/failed
    3. only completed or partially refunded payments accept refunds
    4. the refunded total never exceeds the amount
    """

    id: Optional[int]
    order_id: int
    provider: str
    correlation_id: Optional[str]
    amount: Decimal
    currency: str
    status: PaymentStatus = PaymentStatus.PENDING
    provider_ref: Optional[str] = None
    refunded_amount: Decimal = field(default_factory=lambda: Decimal("0"))
    payment_data: dict = field(default_factory=dict)
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        if self.amount is None or self.amount <= 0:
            raise DomainValidationException(
                f"Payment amount must be greater than 0: {self.amount}",
                field="amount",
            )
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(
                f"Invalid currency code: {self.currency}",
                field="currency",
            )
        self.amount = Decimal(self.amount).quantize(_MONEY)
        self.refunded_amount = Decimal(self.refunded_amount or 0).quantize(_MONEY)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.completed_at = _ensure_utc(self.completed_at)
        if self.payment_data is None:
            self.payment_data = {}

    @property
    def is_settled(self) -> bool:
        return self.status in SETTLED_STATUSES

    def mark_completed(self, provider_ref: Optional[str] = None) -> None:
        """pending/failed/cancelled -> completed.

        The caller decides whether the evidence is strong enough to promote a
        failed or cancelled attempt.
        """
        if self.is_settled:
            raise DomainValidationException(
                f"Cannot transition from {self.status.value} to completed",
                field="status",
            )
        self.status = PaymentStatus.COMPLETED
        if provider_ref:
            self.provider_ref = provider_ref
        self.completed_at = _now()
        self.updated_at = self.completed_at
        self.failure_reason = None

    def mark_failed(self, reason: Optional[str] = None) -> None:
        if self.status != PaymentStatus.PENDING:
            raise DomainValidationException(
                f"Cannot transition from {self.status.value} to failed",
                field="status",
            )
        self.status = PaymentStatus.FAILED
        self.failure_reason = reason
        self.updated_at = _now()

    def mark_cancelled(self, reason: Optional[str] = None) -> None:
        if self.status != PaymentStatus.PENDING:
            raise InvalidStateError(
                f"Only pending payments can be cancelled, current status is {self.status.value}",
                details={"payment_id": self.id},
            )
        self.status = PaymentStatus.CANCELLED
        self.failure_reason = reason
        self.updated_at = _now()

    def can_refund(self) -> bool:
        return (
            self.status in (PaymentStatus.COMPLETED, PaymentStatus.PARTIALLY_REFUNDED)
            and self.refunded_amount < self.amount
        )

    def refundable_amount(self) -> Decimal:
        return self.amount - self.refunded_amount

    def ensure_refundable(self, amount: Decimal, reserved: Decimal = Decimal("0")) -> None:
        """Raise unless `amount` can be refunded right now.

        `reserved` is the total of refunds already sent to the provider but
        not yet recorded; it counts against the remaining amount.
        """
        if amount is None or amount <= 0:
            raise ValidationError(
                f"Refund amount must be greater than 0: {amount}",
                provider=self.provider,
                field="amount",
            )
        if not self.can_refund():
            raise InvalidStateError(
                f"Payment status is {self.status.value}, refund not allowed",
                details={"payment_id": self.id, "status": self.status.value},
            )
        remaining = self.refundable_amount() - Decimal(reserved)
        if amount > remaining:
            raise RefundExceedsRemainingError(amount, remaining)

    def apply_refund(self, amount: Decimal, reserved: Decimal = Decimal("0")) -> None:
        amount = Decimal(amount).quantize(_MONEY)
        self.ensure_refundable(amount, reserved)
        self.refunded_amount += amount
        self.updated_at = _now()
        if self.refunded_amount >= self.amount:
            self.status = PaymentStatus.REFUNDED
        else:
            self.status = PaymentStatus.PARTIALLY_REFUNDED

    def record_evidence(self, source: EvidenceSource, status: str, payload: Any = None) -> None:
        """Append a provider claim to the attempt's audit trail."""
        trail = list(self.payment_data.get("evidence") or [])
        trail.append({"source": source.value, "status": status, "at": _now().isoformat()})
        self.payment_data["evidence"] = trail
        if payload is not None:
            self.payment_data[f"{source.value}_payload"] = payload
        self.updated_at = _now()


@dataclass
class Refund:
    """A refund against one Payment attempt."""

    id: Optional[int]
    payment_id: int
    amount: Decimal
    status: RefundStatus
    refund_id: Optional[str] = None  # provider refund id
    reason: Optional[str] = None
    refund_data: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.amount <= 0:
            raise DomainValidationException(
                f"Refund amount must be greater than 0: {self.amount}",
                field="amount",
            )
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        if self.refund_data is None:
            self.refund_data = {}

    @property
    def is_reservation(self) -> bool:
        return self.status == RefundStatus.REQUESTED

    def settle(self, refund_id: Optional[str], status: RefundStatus, refund_data: Optional[dict] = None) -> None:
        """Record the provider's answer on a reservation."""
        if not self.is_reservation:
            raise InvalidStateError(
                f"Refund {self.id} is already {self.status.value}",
                details={"refund_row_id": self.id},
            )
        self.refund_id = refund_id
        self.status = status
        self.refund_data.update(refund_data or {})
        self.updated_at = _now()

    def release(self, error: str) -> None:
        """The provider refused: the held amount becomes refundable again."""
        if not self.is_reservation:
            raise InvalidStateError(
                f"Refund {self.id} is already {self.status.value}",
                details={"refund_row_id": self.id},
            )
        self.status = RefundStatus.FAILED
        self.refund_data["error"] = error
        self.updated_at = _now()


@dataclass
class GatewayConfig:
    """Read-only provider configuration owned by the admin surface."""

    keyword: str
    is_enabled: bool = False
    is_production: bool = False
    credentials: dict = field(default_factory=dict)
    configuration: dict = field(default_factory=dict)
    priority: int = 0
    display_name: Optional[str] = None
    description: Optional[str] = None
    supported_currencies: Optional[list[str]] = None

    def credential(self, name: str) -> Optional[str]:
        value = (self.credentials or {}).get(name)
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    def option(self, name: str, default: Any = None) -> Any:
        return (self.configuration or {}).get(name, default)
