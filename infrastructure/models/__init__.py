"""Infrastructure models package exports."""
from .base import Base, metadata
from .order import OrderModel
from .payment import PaymentModel, PaymentRefundModel
from .gateway_setting import PaymentGatewaySettingModel

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "PaymentModel",
    "PaymentRefundModel",
    "PaymentGatewaySettingModel",
]
