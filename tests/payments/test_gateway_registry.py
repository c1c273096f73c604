from dataclasses import replace
from decimal import Decimal

import httpx
import pytest

from domain.payment.entity import GatewayConfig
from domain.payment.exceptions import ConfigurationError, GatewayDisabledError, UnsupportedGatewayError
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.cod_client import CashOnDeliveryClient
from infrastructure.external.payments.registry import GatewayRegistry, UnitOfWorkConfigSource


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def timed_registry(config_source, reconciler, test_settings, provider_stub, clock):
    return GatewayRegistry(
        config_source,
        reconciler,
        settings=test_settings,
        transport=httpx.MockTransport(provider_stub),
        clock=clock,
    )


@pytest.mark.asyncio
async def test_config_cached_until_ttl(timed_registry, config_source, clock):
    first = await timed_registry.create("payu")
    second = await timed_registry.create("PayU ")
    assert first is second
    assert config_source.reads == 1

    clock.now += 3601
    await timed_registry.create("payu")
    assert config_source.reads == 2


@pytest.mark.asyncio
async def test_disable_takes_effect_after_ttl_or_clear(timed_registry, config_source, clock):
    await timed_registry.create("razorpay")
    config_source.put(replace(config_source.configs["razorpay"], is_enabled=False))

    # still cached
    await timed_registry.create("razorpay")

    timed_registry.clear_cache()
    with pytest.raises(GatewayDisabledError):
        await timed_registry.create("razorpay")


@pytest.mark.asyncio
async def test_unknown_and_unconfigured_providers(registry, config_source):
    with pytest.raises(UnsupportedGatewayError):
        await registry.create("paypal")

    config_source.configs.pop("phonepe")
    with pytest.raises(GatewayDisabledError):
        await registry.create("phonepe")


@pytest.mark.asyncio
async def test_listing_sorted_by_priority(registry):
    listings = await registry.available_gateways(Decimal("499.00"), "INR")

    assert [item.keyword for item in listings] == ["razorpay", "cashfree", "payu", "phonepe", "cod"]
    cod = listings[-1]
    assert cod.configuration == {"min_order_amount": "100", "max_order_amount": "50000"}
    assert all("credentials" not in item.model_dump() for item in listings)


@pytest.mark.asyncio
async def test_listing_filters_amount_currency_and_credentials(registry, config_source):
    small = await registry.available_gateways(Decimal("50.00"), "INR")
    assert "cod" not in [item.keyword for item in small]

    assert await registry.available_gateways(Decimal("499.00"), "USD") == []

    config_source.put(replace(config_source.configs["payu"], credentials={"merchant_key": "gtKFFx"}))
    registry.clear_cache()
    listed = [item.keyword for item in await registry.available_gateways(Decimal("499.00"), "INR")]
    assert "payu" not in listed


@pytest.mark.asyncio
async def test_missing_credentials_block_initiation(service, config_source, store):
    config_source.put(replace(config_source.configs["razorpay"], credentials={"key": "rzp_test_key"}))

    with pytest.raises(ConfigurationError) as exc_info:
        await service.initiate_payment("razorpay", 1)

    assert exc_info.value.details["missing"] == ["secret"]
    assert store.payments == {}


@pytest.mark.asyncio
async def test_best_gateway_honours_preference(registry):
    best = await registry.best_gateway(Decimal("499.00"), "INR")
    preferred = await registry.best_gateway(Decimal("499.00"), "INR", preferred="cod")

    assert best.provider == "razorpay"
    assert isinstance(preferred, CashOnDeliveryClient)
    assert await registry.best_gateway(Decimal("499.00"), "EUR") is None


@pytest.mark.asyncio
async def test_register_extra_adapter(registry, config_source):
    class UpiClient(BasePaymentClient):
        provider = "upi"

    registry.register("upi", UpiClient)
    config_source.put(GatewayConfig(keyword="upi", is_enabled=True))

    assert "upi" in registry.supported()
    assert isinstance(await registry.create("upi"), UpiClient)


def test_webhook_acknowledgement_policy(registry):
    assert registry.acknowledges_webhooks("payu") is True
    assert registry.acknowledges_webhooks("razorpay") is False
    assert registry.acknowledges_webhooks("nope") is False


@pytest.mark.asyncio
async def test_config_source_reads_through_unit_of_work(store, uow_factory):
    store.configs["payu"] = GatewayConfig(keyword="payu", is_enabled=True)
    source = UnitOfWorkConfigSource(uow_factory)

    assert (await source.get("payu")).is_enabled is True
    assert await source.get("stripe") is None
    assert [c.keyword for c in await source.list_all()] == ["payu"]


@pytest.mark.asyncio
async def test_aclose_closes_adapter_clients(registry):
    gateway = await registry.create("razorpay")
    async with gateway.client():
        pass
    assert gateway._client is not None

    await registry.aclose()

    assert gateway._client is None


@pytest.mark.asyncio
async def test_listing_served_from_cache_until_ttl(timed_registry, config_source, clock):
    await timed_registry.available_gateways(Decimal("499.00"), "INR")
    await timed_registry.available_gateways(Decimal("499.00"), "INR")
    await timed_registry.best_gateway(Decimal("499.00"), "INR")
    await timed_registry.create("payu")
    assert config_source.reads == 1

    config_source.put(replace(config_source.configs["razorpay"], is_enabled=False))
    clock.now += 3601
    listed = [item.keyword for item in await timed_registry.available_gateways(Decimal("499.00"), "INR")]

    assert config_source.reads == 2
    assert "razorpay" not in listed


@pytest.mark.asyncio
async def test_retired_adapters_closed_on_next_resolution(timed_registry):
    old = await timed_registry.create("razorpay")
    async with old.client():
        pass

    timed_registry.clear_cache()
    fresh = await timed_registry.create("razorpay")

    assert fresh is not old
    assert old._client is None
    assert timed_registry._retired == []


@pytest.mark.asyncio
async def test_busy_retired_adapter_closed_once_idle(timed_registry, config_source):
    old = await timed_registry.create("razorpay")
    async with old.client():
        config_source.put(replace(config_source.configs["razorpay"], is_enabled=False))
        timed_registry.clear_cache()
        with pytest.raises(GatewayDisabledError):
            await timed_registry.create("razorpay")
        assert old._client is not None
        assert timed_registry._retired == [old]

    await timed_registry.available_gateways(Decimal("499.00"), "INR")

    assert old._client is None
    assert timed_registry._retired == []
