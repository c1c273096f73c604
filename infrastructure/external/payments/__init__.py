"""
Factory for the payment gateway registry.
"""
from __future__ import annotations

from typing import Optional

import httpx

from application.services.reconciliation_service import PaymentReconciler, UnitOfWorkFactory
from core.settings import PaymentSettings
from infrastructure.external.payments.registry import GatewayRegistry, UnitOfWorkConfigSource


def build_gateway_registry(
    uow_factory: UnitOfWorkFactory,
    reconciler: PaymentReconciler,
    *,
    settings: Optional[PaymentSettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> GatewayRegistry:
    return GatewayRegistry(
        UnitOfWorkConfigSource(uow_factory),
        reconciler,
        settings=settings,
        transport=transport,
    )
