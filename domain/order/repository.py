"""
Order repository interface (payment subset only).
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Order


class OrderRepository(ABC):

    @abstractmethod
    async def get_by_id(self, order_id: int, *, for_update: bool = False) -> Optional[Order]:
        """Fetch an order; `for_update` locks the row until the transaction ends."""
        pass

    @abstractmethod
    async def save_payment_state(self, order: Order) -> Order:
        """Persist payment_status, payment_method and payment_metadata only."""
        pass
