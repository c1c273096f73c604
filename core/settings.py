"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Provider credentials are not read from the environment: they live in the
payment_gateway_settings table and reach adapters through the registry.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 5.0
    read: float = 20.0
    write: float = 20.0
    total: float = 30.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    ip_allowlist: list[str] | None = None  # Optional IPs/CIDRs allowed to post webhooks


class RegistrySettings(BaseModel):
    config_ttl_seconds: int = 3600


class FrontendSettings(BaseModel):
    base_url: str = "http://localhost:3000"
    success_path: str = "/checkout/success"
    pending_path: str = "/checkout/pending"
    failure_path: str = "/checkout/failed"
    # hosts besides base_url's that initiate may name as return_url / cancel_url
    allowed_return_hosts: list[str] = Field(default_factory=list)


class CodDefaults(BaseModel):
    min_order_amount: Decimal = Decimal("100")
    max_order_amount: Decimal = Decimal("50000")
    service_charge: Decimal = Decimal("0")


class PaymentSettings(BaseSettings):
    default_currency: str = "INR"
    public_base_url: str = "http://localhost:8000"
    api_prefix: str = "/api/v1"
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    registry: RegistrySettings = Field(default_factory=RegistrySettings)
    frontend: FrontendSettings = Field(default_factory=FrontendSettings)
    cod: CodDefaults = Field(default_factory=CodDefaults)

    model_config = SettingsConfigDict(
        env_prefix="PAYMENT__",
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    def endpoint_url(self, provider: str, kind: str) -> str:
        """Absolute URL of our callback/webhook endpoint for a provider."""
        base = self.public_base_url.rstrip("/")
        return f"{base}{self.api_prefix}/payment/{provider}/{kind}"

    def frontend_url(self, outcome: str, order_id: Optional[int] = None, target: Optional[str] = None) -> str:
        """Where the shopper lands after a callback.

        `target` is a return/cancel URL given at initiation; it gets the
        outcome as `status` since its path does not encode it.
        """
        params: list[tuple[str, str]] = []
        if target:
            url = target
            params.append(("status", outcome))
        else:
            path = {
                "success": self.frontend.success_path,
                "pending": self.frontend.pending_path,
            }.get(outcome, self.frontend.failure_path)
            url = f"{self.frontend.base_url.rstrip('/')}{path}"
        if order_id is not None:
            params.append(("order", str(order_id)))
        if not params:
            return url
        parts = urlsplit(url)
        query = parse_qsl(parts.query, keep_blank_values=True) + params
        return urlunsplit(parts._replace(query=urlencode(query)))

    def is_allowed_return_url(self, url: str) -> bool:
        parts = urlsplit(url)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            return False
        allowed = {urlsplit(self.frontend.base_url).hostname, *self.frontend.allowed_return_hosts}
        return parts.hostname.lower() in {h.lower() for h in allowed if h}


payment_settings = PaymentSettings()
