import json

import httpx
import pytest

from core.config import CollaboratorSettings
from infrastructure.external.collaborators import (
    CollaboratorError,
    HttpCartClient,
    HttpFulfillmentClient,
    LoggingCart,
    LoggingFulfillment,
    build_collaborators,
)


def _transport(statuses, seen):
    responses = iter(statuses)

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(next(responses))

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_cart_clear_retries_transient_errors():
    seen = []
    config = CollaboratorSettings(cart_url="http://cart.internal", api_token="svc-token", retries=2)
    client = HttpCartClient(config.cart_url, config, transport=_transport([503, 200], seen))

    await client.clear_cart(7, "sess-1")
    await client.aclose()

    assert len(seen) == 2
    assert seen[-1].url.path == "/cart/clear"
    assert seen[-1].headers["Authorization"] == "Bearer svc-token"
    assert json.loads(seen[-1].content) == {"user_id": 7, "session_id": "sess-1"}


@pytest.mark.asyncio
async def test_fulfillment_client_errors_are_not_retried():
    seen = []
    config = CollaboratorSettings(fulfillment_url="http://fulfillment.internal", retries=2)
    client = HttpFulfillmentClient(config.fulfillment_url, config, transport=_transport([400], seen))

    with pytest.raises(CollaboratorError) as exc_info:
        await client.start_fulfillment(1)
    await client.aclose()

    assert exc_info.value.status_code == 400
    assert len(seen) == 1


def test_unconfigured_collaborators_only_log():
    cart, fulfillment = build_collaborators(CollaboratorSettings())

    assert isinstance(cart, LoggingCart)
    assert isinstance(fulfillment, LoggingFulfillment)


def test_configured_collaborators_use_http():
    cart, fulfillment = build_collaborators(
        CollaboratorSettings(cart_url="http://cart.internal", fulfillment_url="http://fulfillment.internal")
    )

    assert isinstance(cart, HttpCartClient)
    assert isinstance(fulfillment, HttpFulfillmentClient)
    assert fulfillment.base_url == "http://fulfillment.internal"
