"""
Payment DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator
from pydantic.types import condecimal

from domain.payment.exceptions import ValidationError


class InboundRequest(BaseModel):
    """Framework-neutral view of a browser redirect or provider push.

    Header names are lower-cased so adapters can look them up without
    caring how the HTTP layer spelled them.
    """

    method: str = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    query: dict[str, Any] = Field(default_factory=dict)
    form: dict[str, Any] = Field(default_factory=dict)
    body: bytes = b""
    client_ip: Optional[str] = None
    wants_json: bool = False

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @field_validator("headers")
    @classmethod
    def _lower_header_names(cls, v: dict[str, str]) -> dict[str, str]:
        return {str(k).lower(): v for k, v in (v or {}).items()}

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())

    def json_body(self) -> dict[str, Any]:
        if not self.body:
            return {}
        try:
            data = json.loads(self.body)
        except (ValueError, UnicodeDecodeError) as exc:
            raise ValidationError("Malformed JSON body", field="body") from exc
        if not isinstance(data, dict):
            raise ValidationError("JSON body must be an object", field="body")
        return data

    def inputs(self) -> dict[str, Any]:
        """Query, then form, then JSON fields; later sources win."""
        merged: dict[str, Any] = dict(self.query)
        merged.update(self.form)
        content_type = self.header("content-type") or ""
        if "json" in content_type:
            merged.update(self.json_body())
        return merged

    def input(self, name: str, default: Any = None) -> Any:
        return self.inputs().get(name, default)


class InitiateOptions(BaseModel):
    return_url: Optional[str] = None
    cancel_url: Optional[str] = None
    description: Optional[str] = None


class InitiateResult(BaseModel):
    success: bool
    provider: str
    payment_id: Optional[int] = None
    correlation_id: Optional[str] = None
    # Hosted pages: redirect (GET) or auto-submitted form (POST)
    redirect_url: Optional[str] = None
    method: Optional[str] = None
    form_params: Optional[dict[str, Any]] = None
    # Client SDK flows
    session_token: Optional[str] = None
    sdk_params: Optional[dict[str, Any]] = None
    message: str = ""


class VerifyResult(BaseModel):
    success: bool
    payment_id: int
    payment_status: str
    raw: Optional[dict[str, Any]] = None


class CallbackResult(BaseModel):
    success: bool
    provider: str
    order_id: Optional[int] = None
    payment_id: Optional[int] = None
    payment_status: str = "pending"
    claimed_status: Optional[str] = None
    # storefront pages named at initiation, if any
    return_url: Optional[str] = None
    cancel_url: Optional[str] = None
    message: str = ""


class WebhookResult(BaseModel):
    success: bool
    provider: str
    handled: bool = True
    order_id: Optional[int] = None
    payment_id: Optional[int] = None
    payment_status: Optional[str] = None
    message: str = ""


class RefundResult(BaseModel):
    success: bool
    provider: str
    payment_id: int
    refund_id: Optional[str] = None
    status: str
    amount: Decimal
    payment_status: str
    message: str = ""


class GatewayListing(BaseModel):
    keyword: str
    display_name: str
    description: Optional[str] = None
    priority: int = 0
    is_production: bool = False
    configuration: dict[str, Any] = Field(default_factory=dict)


class PaymentAttemptView(BaseModel):
    id: int
    provider: str
    amount: Decimal
    currency: str
    status: str
    correlation_id: Optional[str] = None
    provider_ref: Optional[str] = None
    refunded_amount: Decimal = Decimal("0")
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class OrderPaymentSummary(BaseModel):
    order_id: int
    order_number: str
    payment_status: str
    payment_method: Optional[str] = None
    total_amount: Decimal
    currency: str
    attempts: list[PaymentAttemptView] = Field(default_factory=list)


# --- request bodies -------------------------------------------------------

class InitiatePaymentRequest(BaseModel):
    order_id: int = Field(gt=0)
    return_url: Optional[str] = None
    cancel_url: Optional[str] = None


class VerifyPaymentRequest(BaseModel):
    payment_id: int = Field(gt=0)


class RefundPaymentRequest(BaseModel):
    payment_id: int = Field(gt=0)
    amount: Optional[condecimal(gt=0, decimal_places=2)] = None  # type: ignore[valid-type]
    reason: Optional[str] = Field(default=None, max_length=255)
