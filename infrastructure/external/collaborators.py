"""
Clients for the collaborators notified once an order becomes paid.

When an endpoint is configured the call goes over HTTP with a bounded
retry on transport errors and transient status codes; otherwise the side
effect is only logged, which keeps local and test setups self-contained.
"""
from __future__ import annotations

from typing import Any, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import CollaboratorSettings, settings
from core.logging_config import get_logger


logger = get_logger(__name__)

RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class CollaboratorError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RetryableCollaboratorError(CollaboratorError):
    pass


class _HttpCollaborator:
    def __init__(
        self,
        base_url: str,
        config: Optional[CollaboratorSettings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config or settings.collaborators
        self.base_url = base_url.rstrip("/")
        headers = {"Accept": "application/json"}
        if self._config.api_token:
            headers["Authorization"] = f"Bearer {self._config.api_token}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self._config.timeout),
            headers=headers,
            transport=transport,
        )

    async def _post(self, path: str, payload: dict[str, Any]) -> None:
        async def _send_once() -> None:
            response = await self._client.post(path, json=payload)
            if response.status_code in RETRY_STATUS_CODES:
                raise RetryableCollaboratorError(
                    f"Transient error from {self.base_url}{path}", response.status_code
                )
            if response.status_code >= 400:
                raise CollaboratorError(f"{self.base_url}{path} rejected the call", response.status_code)

        async for attempt in AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self._config.retries + 1),
            wait=wait_exponential(multiplier=0.2, min=0.1, max=2.0),
            retry=retry_if_exception_type(
                (httpx.TimeoutException, httpx.TransportError, RetryableCollaboratorError)
            ),
        ):
            with attempt:
                await _send_once()

    async def aclose(self) -> None:
        await self._client.aclose()


class HttpCartClient(_HttpCollaborator):
    async def clear_cart(self, user_id: Optional[int], session_id: Optional[str]) -> None:
        await self._post("/cart/clear", {"user_id": user_id, "session_id": session_id})
        logger.info("cart_cleared", user_id=user_id, session_id=session_id)


class HttpFulfillmentClient(_HttpCollaborator):
    async def start_fulfillment(self, order_id: int) -> None:
        await self._post("/fulfillment/start", {"order_id": order_id})
        logger.info("fulfillment_started", order_id=order_id)


class LoggingCart:
    async def clear_cart(self, user_id: Optional[int], session_id: Optional[str]) -> None:
        logger.info("cart_clear_requested", user_id=user_id, session_id=session_id)

    async def aclose(self) -> None:
        return None


class LoggingFulfillment:
    async def start_fulfillment(self, order_id: int) -> None:
        logger.info("fulfillment_start_requested", order_id=order_id)

    async def aclose(self) -> None:
        return None


def build_collaborators(config: Optional[CollaboratorSettings] = None):
    """Return (cart, fulfillment) clients for the configured endpoints."""
    config = config or settings.collaborators
    cart = HttpCartClient(config.cart_url, config) if config.cart_url else LoggingCart()
    fulfillment = (
        HttpFulfillmentClient(config.fulfillment_url, config)
        if config.fulfillment_url
        else LoggingFulfillment()
    )
    return cart, fulfillment
