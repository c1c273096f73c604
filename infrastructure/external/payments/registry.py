"""
Gateway registry: provider key -> configured adapter.

Owned by the application's composition root. Adapter instances live for the
process (or until `clear_cache`); the enablement flag behind them is re-read
from the configuration source once its TTL expires, so disabling a provider
takes effect without a database hit per request. Provider listings are
served from the same TTL cache.
"""
from __future__ import annotations

import time
from decimal import Decimal
from typing import Callable, Optional, Protocol, Type

import httpx

from application.dtos.payments import GatewayListing
from application.services.reconciliation_service import PaymentReconciler, UnitOfWorkFactory
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.payment.entity import GatewayConfig
from domain.payment.exceptions import GatewayDisabledError, UnsupportedGatewayError
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.cashfree_client import CashfreeClient
from infrastructure.external.payments.cod_client import CashOnDeliveryClient
from infrastructure.external.payments.payu_client import PayUClient
from infrastructure.external.payments.phonepe_client import PhonePeClient
from infrastructure.external.payments.razorpay_client import RazorpayClient


logger = get_logger(__name__)


DEFAULT_GATEWAYS: dict[str, Type[BasePaymentClient]] = {
    "payu": PayUClient,
    "razorpay": RazorpayClient,
    "phonepe": PhonePeClient,
    "cashfree": CashfreeClient,
    "cod": CashOnDeliveryClient,
}


class GatewayConfigSource(Protocol):
    async def get(self, keyword: str) -> Optional[GatewayConfig]: ...

    async def list_all(self) -> list[GatewayConfig]: ...


class UnitOfWorkConfigSource:
    """Reads payment_gateway_settings through a read-only unit of work."""

    def __init__(self, uow_factory: UnitOfWorkFactory):
        self._uow_factory = uow_factory

    async def get(self, keyword: str) -> Optional[GatewayConfig]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.gateway_config_repository.get_by_keyword(keyword)

    async def list_all(self) -> list[GatewayConfig]:
        async with self._uow_factory(readonly=True) as uow:
            return await uow.gateway_config_repository.list_all()


class GatewayRegistry:
    def __init__(
        self,
        source: GatewayConfigSource,
        reconciler: PaymentReconciler,
        *,
        settings: Optional[PaymentSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._reconciler = reconciler
        self._settings = settings or payment_settings
        self._transport = transport
        self._clock = clock
        self._ttl = float(self._settings.registry.config_ttl_seconds)
        self._classes: dict[str, Type[BasePaymentClient]] = dict(DEFAULT_GATEWAYS)
        self._configs: dict[str, tuple[float, Optional[GatewayConfig]]] = {}
        self._listing: Optional[tuple[float, list[GatewayConfig]]] = None
        self._instances: dict[str, BasePaymentClient] = {}
        self._retired: list[BasePaymentClient] = []

    def register(self, keyword: str, gateway_cls: Type[BasePaymentClient]) -> None:
        """Plug in an extra adapter class under `keyword`."""
        key = keyword.strip().lower()
        self._classes[key] = gateway_cls
        self._drop_instance(key)
        self._configs.pop(key, None)
        logger.info("payment_gateway_registered", provider=key, adapter=gateway_cls.__name__)

    def supported(self) -> list[str]:
        return sorted(self._classes)

    def acknowledges_webhooks(self, provider: str) -> bool:
        """True when the provider must get HTTP 200 whatever the outcome."""
        gateway_cls = self._classes.get((provider or "").strip().lower())
        return bool(gateway_cls and gateway_cls.always_acknowledge_webhooks)

    # ---- configuration cache ---------------------------------------------

    async def _config(self, keyword: str) -> Optional[GatewayConfig]:
        now = self._clock()
        cached = self._configs.get(keyword)
        if cached is not None and now - cached[0] < self._ttl:
            return cached[1]
        config = await self._source.get(keyword)
        self._configs[keyword] = (now, config)
        return config

    async def _all_configs(self) -> list[GatewayConfig]:
        now = self._clock()
        if self._listing is not None and now - self._listing[0] < self._ttl:
            return self._listing[1]
        configs = await self._source.list_all()
        self._listing = (now, configs)
        for config in configs:
            self._configs[config.keyword.strip().lower()] = (now, config)
        return configs

    def _drop_instance(self, keyword: str) -> None:
        instance = self._instances.pop(keyword, None)
        if instance is not None:
            self._retired.append(instance)

    async def _reap_retired(self) -> None:
        # a retired adapter may still be mid-request for an earlier caller
        idle = [g for g in self._retired if not g.busy]
        if not idle:
            return
        self._retired = [g for g in self._retired if g.busy]
        for gateway in idle:
            await gateway.aclose()
        logger.debug("payment_gateways_reaped", count=len(idle), waiting=len(self._retired))

    def _instance(self, keyword: str, config: GatewayConfig) -> BasePaymentClient:
        instance = self._instances.get(keyword)
        if instance is None:
            instance = self._classes[keyword](
                config,
                self._reconciler,
                settings=self._settings,
                transport=self._transport,
            )
            self._instances[keyword] = instance
        elif instance.config != config:
            instance.config = config
        return instance

    # ---- resolution ------------------------------------------------------

    async def create(self, provider: str) -> BasePaymentClient:
        key = (provider or "").strip().lower()
        if key not in self._classes:
            raise UnsupportedGatewayError(provider)
        await self._reap_retired()
        config = await self._config(key)
        if config is None or not config.is_enabled:
            # never hand back an adapter for a disabled provider
            self._drop_instance(key)
            raise GatewayDisabledError(key)
        return self._instance(key, config)

    async def _usable(self, amount: Decimal, currency: str) -> list[tuple[GatewayConfig, BasePaymentClient]]:
        await self._reap_retired()
        usable = []
        for config in await self._all_configs():
            key = config.keyword.strip().lower()
            if key not in self._classes:
                continue
            if not config.is_enabled:
                continue
            gateway = self._instance(key, config)
            if gateway.is_available() and gateway.is_applicable(amount, currency):
                usable.append((config, gateway))
        usable.sort(key=lambda pair: pair[0].priority, reverse=True)
        return usable

    async def available_gateways(self, amount: Decimal, currency: str) -> list[GatewayListing]:
        """Applicable, enabled providers sorted by descending priority."""
        return [
            GatewayListing(
                keyword=gateway.provider,
                display_name=config.display_name or gateway.provider,
                description=config.description,
                priority=config.priority,
                is_production=config.is_production,
                configuration=_public_configuration(config),
            )
            for config, gateway in await self._usable(amount, currency)
        ]

    async def best_gateway(
        self,
        amount: Decimal,
        currency: str,
        preferred: Optional[str] = None,
    ) -> Optional[BasePaymentClient]:
        usable = await self._usable(amount, currency)
        if preferred:
            for _, gateway in usable:
                if gateway.provider == preferred.strip().lower():
                    return gateway
        return usable[0][1] if usable else None

    def clear_cache(self) -> None:
        for key in list(self._instances):
            self._drop_instance(key)
        self._configs.clear()
        self._listing = None

    async def aclose(self) -> None:
        """Close every adapter, busy or not; only for shutdown."""
        self.clear_cache()
        retired, self._retired = self._retired, []
        for gateway in retired:
            await gateway.aclose()


def _public_configuration(config: GatewayConfig) -> dict:
    # options safe to show the payer; credentials never leave the registry
    keys = ("min_order_amount", "max_order_amount", "service_charge")
    return {k: str(v) for k, v in (config.configuration or {}).items() if k in keys}
