"""
Order ORM model.

The orders table belongs to order management; only the columns the payment
core reads or writes are mapped here.
"""
from sqlalchemy import Column, Integer, String, Numeric, JSON

from .base import Base


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), unique=True, nullable=False)
    user_id = Column(Integer, nullable=True, index=True)
    session_id = Column(String(100), nullable=True)

    total_amount = Column(Numeric(precision=15, scale=2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")

    payment_status = Column(String(30), nullable=False, default="no_payment", index=True)
    payment_method = Column(String(50), nullable=True)
    payment_metadata = Column(JSON, nullable=True)

    customer_name = Column(String(255), nullable=True)
    customer_email = Column(String(255), nullable=True)
    customer_phone = Column(String(30), nullable=True)

    def __repr__(self):
        return f"<OrderModel(id={self.id}, order_number='{self.order_number}', payment_status='{self.payment_status}')>"
