"""
Payment repository interfaces - what the ledger can do, not how.
"""
from abc import ABC, abstractmethod
from typing import Optional, List

from .entity import Payment, Refund, GatewayConfig


class PaymentRepository(ABC):

    @abstractmethod
    async def create(self, payment: Payment) -> Payment:
        pass

    @abstractmethod
    async def get_by_id(self, payment_id: int, *, for_update: bool = False) -> Optional[Payment]:
        pass

    @abstractmethod
    async def get_by_correlation(self, provider: str, correlation_id: str) -> Optional[Payment]:
        """Resolve an attempt by the id the provider echoes back to us."""
        pass

    @abstractmethod
    async def get_latest_for_order(self, order_id: int) -> Optional[Payment]:
        pass

    @abstractmethod
    async def list_by_order(self, order_id: int) -> List[Payment]:
        """All attempts for an order, newest first."""
        pass

    @abstractmethod
    async def update(self, payment: Payment) -> Payment:
        pass


class RefundRepository(ABC):

    @abstractmethod
    async def create(self, refund: Refund) -> Refund:
        pass

    @abstractmethod
    async def get_by_id(self, refund_row_id: int, *, for_update: bool = False) -> Optional[Refund]:
        pass

    @abstractmethod
    async def update(self, refund: Refund) -> Refund:
        pass

    @abstractmethod
    async def list_by_payment(self, payment_id: int) -> List[Refund]:
        pass


class GatewayConfigRepository(ABC):
    """Read-only access to provider configuration."""

    @abstractmethod
    async def get_by_keyword(self, keyword: str) -> Optional[GatewayConfig]:
        pass

    @abstractmethod
    async def list_all(self) -> List[GatewayConfig]:
        pass
