"""
Payment error taxonomy.

Every adapter translates provider SDK/HTTP failures into one of these before
they leave the infrastructure layer.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


def _details(provider: Optional[str], extra: Optional[dict]) -> Optional[dict]:
    details = {"provider": provider} if provider else {}
    if extra:
        details.update(extra)
    return details or None


class ConfigurationError(BusinessException):
    """Missing or invalid provider credentials. Not retryable."""

    def __init__(self, message: str, *, provider: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(
            code=PaymentCode.CONFIGURATION_ERROR,
            message=message,
            error_type="ConfigurationError",
            details=_details(provider, details),
        )


class ValidationError(BusinessException):
    """Bad amount, currency or order state supplied by the caller."""

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        field: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(
            code=PaymentCode.VALIDATION_ERROR,
            message=message,
            error_type="ValidationError",
            details=_details(provider, details),
            field=field,
        )


class UpstreamError(BusinessException):
    """Provider network/HTTP failure. Retryable by the caller."""

    def __init__(
        self,
        message: str = "Payment provider is temporarily unavailable, please try again",
        *,
        provider: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(
            code=PaymentCode.UPSTREAM_ERROR,
            message=message,
            error_type="UpstreamError",
            details=_details(provider, details),
        )


class SignatureError(BusinessException):
    """A webhook or callback failed cryptographic verification."""

    def __init__(self, message: str = "Signature verification failed", *, provider: Optional[str] = None):
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="SignatureError",
            details=_details(provider, None),
        )


class InvalidStateError(BusinessException):
    """The requested operation does not fit the payment's current status."""

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(
            code=PaymentCode.INVALID_STATE,
            message=message,
            error_type="InvalidStateError",
            details=details,
        )


class RefundExceedsRemainingError(InvalidStateError):
    def __init__(self, requested: Decimal, remaining: Decimal):
        super().__init__(
            f"Refund amount {requested} exceeds remaining refundable amount {remaining}",
            details={"requested": str(requested), "remaining": str(remaining)},
        )


class UnsupportedGatewayError(BusinessException):
    def __init__(self, provider: str):
        super().__init__(
            code=PaymentCode.UNSUPPORTED_GATEWAY,
            message=f"Payment gateway '{provider}' is not supported",
            error_type="UnsupportedGatewayError",
            details={"provider": provider},
        )


class GatewayDisabledError(BusinessException):
    def __init__(self, provider: str):
        super().__init__(
            code=PaymentCode.GATEWAY_DISABLED,
            message=f"Payment gateway '{provider}' is not enabled",
            error_type="GatewayDisabledError",
            details={"provider": provider},
        )


class PaymentNotFoundError(BusinessException):
    def __init__(self, identifier: str, *, provider: Optional[str] = None):
        super().__init__(
            code=PaymentCode.PAYMENT_NOT_FOUND,
            message=f"Payment not found: {identifier}",
            error_type="PaymentNotFound",
            details=_details(provider, {"identifier": identifier}),
        )


class OrderNotFoundError(BusinessException):
    def __init__(self, order_id: int):
        super().__init__(
            code=PaymentCode.ORDER_NOT_FOUND,
            message=f"Order not found: {order_id}",
            error_type="OrderNotFound",
            details={"order_id": order_id},
        )
