"""
Payment domain events.

Dataclass events record payment lifecycle facts for downstream handling
(cart clearing, fulfillment, alerting). Domain remains free of
infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class PaymentEvent:
    payment_id: int
    order_id: int
    provider: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PaymentCompleted(PaymentEvent):
    # True only for the transition that moved the order into paid
    order_became_paid: bool = False
    user_id: Optional[int] = None
    session_id: Optional[str] = None
    source: str = ""


@dataclass
class PaymentFailed(PaymentEvent):
    reason: Optional[str] = None
    source: str = ""


@dataclass
class PaymentRefunded(PaymentEvent):
    refund_id: Optional[str] = None
    amount: str = ""
    fully_refunded: bool = False


@dataclass
class PaymentCancelled(PaymentEvent):
    reason: Optional[str] = None


@dataclass
class ReconciliationAnomaly(PaymentEvent):
    """Two pieces of evidence disagreed, or evidence contradicted the ledger."""
    kind: str = ""
    current_status: str = ""
    claimed_status: str = ""
    source: str = ""
