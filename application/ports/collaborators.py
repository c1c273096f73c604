"""
Narrow ports onto collaborators outside the payment core.
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class CartPort(Protocol):
    async def clear_cart(self, user_id: Optional[int], session_id: Optional[str]) -> None: ...


@runtime_checkable
class FulfillmentPort(Protocol):
    async def start_fulfillment(self, order_id: int) -> None: ...
