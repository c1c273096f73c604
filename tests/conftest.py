"""Pytest bootstrap configuration.

Shared fixtures: an in-memory unit of work with real rollback, recording
collaborators, and a gateway registry whose HTTP traffic is served by an
httpx.MockTransport stub.
"""
import asyncio
import copy
import os
from decimal import Decimal
from typing import Callable, Optional
from urllib.parse import parse_qs

# Settings are read at import time; keep tests off any developer .env
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("PAYMENT__PUBLIC_BASE_URL", "https://shop.example.com")

import httpx
import pytest

from application.services.payment_service import PaymentApplicationService
from application.services.reconciliation_service import PaymentReconciler
from core.settings import FrontendSettings, PaymentRetry, PaymentSettings
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order
from domain.order.repository import OrderRepository
from domain.payment.entity import GatewayConfig, Payment, Refund
from domain.payment.repository import GatewayConfigRepository, PaymentRepository, RefundRepository
from infrastructure.external.payments.registry import GatewayRegistry


# ---- in-memory persistence -----------------------------------------------


class InMemoryStore:
    def __init__(self):
        self.orders: dict[int, Order] = {}
        self.payments: dict[int, Payment] = {}
        self.refunds: dict[int, Refund] = {}
        self.configs: dict[str, GatewayConfig] = {}
        self.next_payment_id = 1
        self.next_refund_id = 1
        # writers serialize like row locks would
        self.lock = asyncio.Lock()

    def add_order(self, order: Order) -> Order:
        self.orders[order.id] = copy.deepcopy(order)
        return order

    def snapshot(self):
        return copy.deepcopy(
            (self.orders, self.payments, self.refunds, self.next_payment_id, self.next_refund_id)
        )

    def restore(self, state) -> None:
        (self.orders, self.payments, self.refunds, self.next_payment_id, self.next_refund_id) = state


class InMemoryPaymentRepository(PaymentRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def create(self, payment: Payment) -> Payment:
        payment = copy.deepcopy(payment)
        payment.id = self.store.next_payment_id
        self.store.next_payment_id += 1
        self.store.payments[payment.id] = payment
        return copy.deepcopy(payment)

    async def get_by_id(self, payment_id: int, *, for_update: bool = False) -> Optional[Payment]:
        payment = self.store.payments.get(payment_id)
        return copy.deepcopy(payment) if payment else None

    async def get_by_correlation(self, provider: str, correlation_id: str) -> Optional[Payment]:
        for payment in self.store.payments.values():
            if payment.provider == provider and payment.correlation_id == correlation_id:
                return copy.deepcopy(payment)
        return None

    async def get_latest_for_order(self, order_id: int) -> Optional[Payment]:
        attempts = await self.list_by_order(order_id)
        return attempts[0] if attempts else None

    async def list_by_order(self, order_id: int) -> list[Payment]:
        attempts = [p for p in self.store.payments.values() if p.order_id == order_id]
        return [copy.deepcopy(p) for p in sorted(attempts, key=lambda p: p.id, reverse=True)]

    async def update(self, payment: Payment) -> Payment:
        self.store.payments[payment.id] = copy.deepcopy(payment)
        return copy.deepcopy(payment)


class InMemoryRefundRepository(RefundRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def create(self, refund: Refund) -> Refund:
        refund = copy.deepcopy(refund)
        refund.id = self.store.next_refund_id
        self.store.next_refund_id += 1
        self.store.refunds[refund.id] = refund
        return copy.deepcopy(refund)

    async def get_by_id(self, refund_row_id: int, *, for_update: bool = False) -> Optional[Refund]:
        refund = self.store.refunds.get(refund_row_id)
        return copy.deepcopy(refund) if refund else None

    async def update(self, refund: Refund) -> Refund:
        self.store.refunds[refund.id] = copy.deepcopy(refund)
        return copy.deepcopy(refund)

    async def list_by_payment(self, payment_id: int) -> list[Refund]:
        return [copy.deepcopy(r) for r in self.store.refunds.values() if r.payment_id == payment_id]


class InMemoryOrderRepository(OrderRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def get_by_id(self, order_id: int, *, for_update: bool = False) -> Optional[Order]:
        order = self.store.orders.get(order_id)
        return copy.deepcopy(order) if order else None

    async def save_payment_state(self, order: Order) -> Order:
        stored = self.store.orders[order.id]
        stored.payment_status = order.payment_status
        stored.payment_method = order.payment_method
        stored.payment_metadata = copy.deepcopy(order.payment_metadata)
        return copy.deepcopy(stored)


class InMemoryGatewayConfigRepository(GatewayConfigRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def get_by_keyword(self, keyword: str) -> Optional[GatewayConfig]:
        return self.store.configs.get(keyword)

    async def list_all(self) -> list[GatewayConfig]:
        return list(self.store.configs.values())


class InMemoryUnitOfWork(AbstractUnitOfWork):
    def __init__(self, store: InMemoryStore, *, readonly: bool = False):
        super().__init__(readonly=readonly)
        self.store = store
        self._snapshot = None

    async def __aenter__(self):
        if not self._readonly:
            await self.store.lock.acquire()
            self._snapshot = self.store.snapshot()
        self.payment_repository = InMemoryPaymentRepository(self.store)
        self.refund_repository = InMemoryRefundRepository(self.store)
        self.order_repository = InMemoryOrderRepository(self.store)
        self.gateway_config_repository = InMemoryGatewayConfigRepository(self.store)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            if not self._readonly:
                self.store.lock.release()

    async def commit(self) -> None:
        self._snapshot = None
        self._committed = True

    async def rollback(self) -> None:
        if self._snapshot is not None:
            self.store.restore(self._snapshot)
            self._snapshot = None
        self._committed = False


# ---- collaborators --------------------------------------------------------


class RecordingCart:
    def __init__(self):
        self.calls: list[tuple] = []
        self.error: Optional[Exception] = None

    async def clear_cart(self, user_id, session_id) -> None:
        self.calls.append((user_id, session_id))
        if self.error is not None:
            raise self.error


class RecordingFulfillment:
    def __init__(self):
        self.calls: list[int] = []

    async def start_fulfillment(self, order_id: int) -> None:
        self.calls.append(order_id)


# ---- provider HTTP stub ---------------------------------------------------


class ProviderStub:
    """MockTransport handler: the last registered matching route wins."""

    def __init__(self):
        self.routes: list[tuple[str, str, Callable[[httpx.Request], httpx.Response]]] = []
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, json=None, status: int = 200, handler=None) -> None:
        if handler is None:
            def handler(request, _json=json, _status=status):
                return httpx.Response(_status, json=_json)
        self.routes.append((method.upper(), path, handler))

    @staticmethod
    def form(request: httpx.Request) -> dict:
        return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method.upper() and r.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for method, path, handler in reversed(self.routes):
            if request.method == method and request.url.path == path:
                return handler(request)
        return httpx.Response(404, json={"error": "no stub for " + request.url.path})


# ---- configuration ----------------------------------------------------------


class StaticConfigSource:
    """In-memory gateway configuration that counts how often it is read."""

    def __init__(self, configs: Optional[list[GatewayConfig]] = None):
        self.configs: dict[str, GatewayConfig] = {c.keyword: c for c in (configs or [])}
        self.reads = 0

    def put(self, config: GatewayConfig) -> None:
        self.configs[config.keyword] = config

    async def get(self, keyword: str) -> Optional[GatewayConfig]:
        self.reads += 1
        return self.configs.get(keyword)

    async def list_all(self) -> list[GatewayConfig]:
        self.reads += 1
        return list(self.configs.values())


def gateway_configs() -> list[GatewayConfig]:
    return [
        GatewayConfig(
            keyword="payu",
            is_enabled=True,
            priority=10,
            display_name="PayU",
            credentials={"merchant_key": "gtKFFx", "salt": "eCwWELxi"},
        ),
        GatewayConfig(
            keyword="razorpay",
            is_enabled=True,
            priority=20,
            display_name="Razorpay",
            credentials={"key": "rzp_test_key", "secret": "rzp_secret", "webhook_secret": "rzp_whsec"},
        ),
        GatewayConfig(
            keyword="phonepe",
            is_enabled=True,
            priority=5,
            display_name="PhonePe",
            credentials={"merchant_id": "PGTESTPAYUAT", "salt_key": "phonepe-salt", "salt_index": "1"},
        ),
        GatewayConfig(
            keyword="cashfree",
            is_enabled=True,
            priority=15,
            display_name="Cashfree",
            credentials={"app_id": "cf_app", "secret_key": "cf_secret", "webhook_secret": "cf_whsec"},
        ),
        GatewayConfig(
            keyword="cod",
            is_enabled=True,
            priority=0,
            display_name="Cash on Delivery",
            configuration={"min_order_amount": "100", "max_order_amount": "50000"},
        ),
    ]


@pytest.fixture
def store() -> InMemoryStore:
    s = InMemoryStore()
    s.add_order(
        Order(
            id=1,
            order_number="ORD-1001",
            total_amount=Decimal("499.00"),
            currency="INR",
            user_id=7,
            session_id="sess-1",
            customer_name="Asha Rao",
            customer_email="asha@example.com",
            customer_phone="9876543210",
        )
    )
    s.add_order(Order(id=2, order_number="ORD-1002", total_amount=Decimal("50.00"), currency="INR", user_id=8))
    return s


@pytest.fixture
def uow_factory(store):
    def _factory(readonly: bool = False) -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork(store, readonly=readonly)
    return _factory


@pytest.fixture
def cart() -> RecordingCart:
    return RecordingCart()


@pytest.fixture
def fulfillment() -> RecordingFulfillment:
    return RecordingFulfillment()


@pytest.fixture
def reconciler(uow_factory, cart, fulfillment) -> PaymentReconciler:
    return PaymentReconciler(uow_factory, cart=cart, fulfillment=fulfillment)


@pytest.fixture
def provider_stub() -> ProviderStub:
    return ProviderStub()


@pytest.fixture
def test_settings() -> PaymentSettings:
    return PaymentSettings(
        public_base_url="https://shop.example.com",
        retry=PaymentRetry(max=0),
        frontend=FrontendSettings(allowed_return_hosts=["spa.example.com"]),
    )


@pytest.fixture
def config_source() -> StaticConfigSource:
    return StaticConfigSource(gateway_configs())


@pytest.fixture
def registry(config_source, reconciler, test_settings, provider_stub) -> GatewayRegistry:
    return GatewayRegistry(
        config_source,
        reconciler,
        settings=test_settings,
        transport=httpx.MockTransport(provider_stub),
    )


@pytest.fixture
def service(registry, reconciler) -> PaymentApplicationService:
    return PaymentApplicationService(registry, reconciler)
