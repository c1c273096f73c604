"""
Payment gateway configuration ORM model (edited by the admin surface).
"""
from sqlalchemy import Column, Integer, String, Boolean, Text, JSON

from .base import Base


class PaymentGatewaySettingModel(Base):
    __tablename__ = "payment_gateway_settings"

    id = Column(Integer, primary_key=True, index=True)
    keyword = Column(String(50), unique=True, nullable=False, comment="Provider key, e.g. payu")
    display_name = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    is_enabled = Column(Boolean, nullable=False, default=False)
    is_production = Column(Boolean, nullable=False, default=False)
    priority = Column(Integer, nullable=False, default=0)
    credentials = Column(JSON, nullable=True, comment="Provider-specific secrets")
    configuration = Column(JSON, nullable=True, comment="Non-secret options and display config")
    supported_currencies = Column(JSON, nullable=True)

    def __repr__(self):
        return f"<PaymentGatewaySettingModel(keyword='{self.keyword}', enabled={self.is_enabled})>"
