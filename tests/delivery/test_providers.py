"""Tests for delivery providers."""

import json

import httpx
import pytest

from ridematch.core.exceptions import DeliveryFailedError
from ridematch.delivery.providers import HttpDeliveryProvider, LoggingDeliveryProvider

MESSAGE = {"type": "ride_offer", "request_id": "r1"}


def make_provider(handler) -> HttpDeliveryProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpDeliveryProvider("http://push.test/", timeout=1.0, client=client)


@pytest.mark.unit
class TestLoggingDeliveryProvider:
    @pytest.mark.asyncio
    async def test_records_and_succeeds(self):
        provider = LoggingDeliveryProvider()

        assert await provider.send("tok", MESSAGE) is True
        assert await provider.send_batch(["a", "b"], MESSAGE) == {"a": True, "b": True}
        assert [token for token, _ in provider.sent] == ["tok", "a", "b"]


@pytest.mark.unit
class TestHttpDeliveryProvider:
    @pytest.mark.asyncio
    async def test_send_posts_token_and_message(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.url.path, json.loads(request.content)))
            return httpx.Response(202)

        provider = make_provider(handler)

        assert await provider.send("tok", MESSAGE) is True
        assert seen == [("/send", {"token": "tok", "message": MESSAGE})]
        await provider.aclose()

    @pytest.mark.asyncio
    async def test_rejected_send_is_false(self):
        provider = make_provider(lambda request: httpx.Response(410))

        assert await provider.send("tok", MESSAGE) is False
        await provider.aclose()

    @pytest.mark.asyncio
    async def test_batch_results_per_token(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/send-batch"
            assert json.loads(request.content)["tokens"] == ["a", "b", "c"]
            return httpx.Response(200, json={"results": {"a": True, "b": False}})

        provider = make_provider(handler)

        results = await provider.send_batch(["a", "b", "c"], MESSAGE)

        assert results == {"a": True, "b": False, "c": False}
        await provider.aclose()

    @pytest.mark.asyncio
    async def test_rejected_batch_fails_every_token(self):
        provider = make_provider(lambda request: httpx.Response(503))

        assert await provider.send_batch(["a", "b"], MESSAGE) == {"a": False, "b": False}
        await provider.aclose()

    @pytest.mark.asyncio
    async def test_malformed_batch_response_raises(self):
        provider = make_provider(lambda request: httpx.Response(200, content=b"<html>"))

        with pytest.raises(DeliveryFailedError):
            await provider.send_batch(["a"], MESSAGE)
        await provider.aclose()

    @pytest.mark.asyncio
    async def test_transport_error_raises_delivery_failed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        provider = make_provider(handler)

        with pytest.raises(DeliveryFailedError, match="unreachable"):
            await provider.send("tok", MESSAGE)
        await provider.aclose()

    @pytest.mark.asyncio
    async def test_timeout_raises_delivery_failed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow gateway")

        provider = make_provider(handler)

        with pytest.raises(DeliveryFailedError, match="timed out"):
            await provider.send("tok", MESSAGE)
        await provider.aclose()
