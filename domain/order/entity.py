"""
Order payment state - the subset of the order aggregate the payment core owns.

Order management owns everything else about an order; this entity only
carries what is needed to price an attempt and the single authoritative
`payment_status` field.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import DomainValidationException
from domain.payment.exceptions import InvalidStateError


class OrderPaymentStatus(str, Enum):
    NO_PAYMENT = "no_payment"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


# once paid, only refund transitions are allowed
_PAID_FAMILY = (
    OrderPaymentStatus.PAID,
    OrderPaymentStatus.REFUNDED,
    OrderPaymentStatus.PARTIALLY_REFUNDED,
)


@dataclass
class Order:
    id: int
    order_number: str
    total_amount: Decimal
    currency: str
    payment_status: OrderPaymentStatus = OrderPaymentStatus.NO_PAYMENT
    payment_method: Optional[str] = None
    payment_metadata: dict = field(default_factory=dict)
    user_id: Optional[int] = None
    session_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None

    def __post_init__(self):
        if self.payment_metadata is None:
            self.payment_metadata = {}
        if not isinstance(self.payment_status, OrderPaymentStatus):
            self.payment_status = OrderPaymentStatus(self.payment_status)

    @property
    def is_paid(self) -> bool:
        """True once money was captured, refunds included."""
        return self.payment_status in _PAID_FAMILY

    def start_attempt(self, provider: str, correlation: dict[str, Any]) -> None:
        if self.is_paid:
            raise InvalidStateError(
                f"Order {self.id} is already paid",
                details={"order_id": self.id, "payment_status": self.payment_status.value},
            )
        self.payment_status = OrderPaymentStatus.PENDING
        self.payment_method = provider
        self.payment_metadata.update(correlation)

    def mark_paid(self, provider: str) -> bool:
        """Returns True only on the first transition into paid."""
        if self.is_paid:
            return False
        self.payment_status = OrderPaymentStatus.PAID
        self.payment_method = provider
        return True

    def mark_failed(self) -> bool:
        if self.is_paid:
            return False
        self.payment_status = OrderPaymentStatus.FAILED
        return True

    def reset_payment(self) -> bool:
        if self.is_paid:
            return False
        self.payment_status = OrderPaymentStatus.NO_PAYMENT
        return True

    def mark_refunded(self, fully: bool) -> None:
        if not self.is_paid:
            raise DomainValidationException(
                f"Order {self.id} is not paid, cannot record a refund",
                field="payment_status",
            )
        self.payment_status = (
            OrderPaymentStatus.REFUNDED if fully else OrderPaymentStatus.PARTIALLY_REFUNDED
        )
