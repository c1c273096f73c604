"""
Payment ORM models - SQLAlchemy mapping
Infrastructure detail only; the business rules live in domain.payment.entity.
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, JSON,
    Index, ForeignKey
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentModel(Base):
    """One row per payment attempt"""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)

    order_id = Column(
        Integer,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Order this attempt pays for",
    )

    provider = Column(String(50), nullable=False, index=True, comment="payu/razorpay/phonepe/cashfree/cod")
    correlation_id = Column(String(200), nullable=True, comment="Id the provider echoes back (txnid, remote order id, ...)")
    provider_ref = Column(String(200), nullable=True, comment="Provider transaction/payment id")

    amount = Column(Numeric(precision=15, scale=2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR", comment="ISO-4217")
    refunded_amount = Column(Numeric(precision=15, scale=2), nullable=False, default=0)

    status = Column(
        String(30),
        nullable=False,
        default="pending",
        index=True,
        comment="pending/completed/failed/refunded/partially_refunded/cancelled",
    )
    failure_reason = Column(Text, nullable=True)
    payment_data = Column(JSON, nullable=True, comment="Opaque provider payloads, hashes and evidence trail")

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    refunds = relationship("PaymentRefundModel", back_populates="payment", lazy="select")

    __table_args__ = (
        Index("ix_payments_provider_correlation", "provider", "correlation_id"),
        Index("ix_payments_order_status", "order_id", "status"),
    )

    def __repr__(self):
        return (
            f"<PaymentModel(id={self.id}, order_id={self.order_id}, "
            f"provider='{self.provider}', amount={self.amount}, status='{self.status}')>"
        )


class PaymentRefundModel(Base):
    __tablename__ = "payment_refunds"

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(
        Integer,
        ForeignKey("payments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    refund_id = Column(String(200), nullable=True, index=True, comment="Provider refund id")
    amount = Column(Numeric(precision=15, scale=2), nullable=False)
    status = Column(String(30), nullable=False, default="pending", comment="requested/pending/processing/completed/failed")
    reason = Column(Text, nullable=True)
    refund_data = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    payment = relationship("PaymentModel", back_populates="refunds")

    def __repr__(self):
        return (
            f"<PaymentRefundModel(id={self.id}, payment_id={self.payment_id}, "
            f"amount={self.amount}, status='{self.status}')>"
        )
