"""Tests for the outbound httpx clients (SSE stream and /data snapshot)."""

import json

import httpx
import pytest

from adapters.external.feeds.feed_data_client import FeedDataClient
from adapters.external.feeds.sse_stream_client import SseStreamClient
from core.domain.exceptions import FeedConnectionError


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
class TestSseStreamClient:
    """Event framing and error mapping."""

    async def test_yields_event_data(self):
        body = ': connected\n\ndata: {"Value": "2,400.00"}\n\nevent: tick\ndata: line1\ndata: line2\n\ndata: tail'

        def handler(request):
            return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

        opened = []
        client = SseStreamClient(url="http://feed/stream", client=_client(handler))
        events = [e async for e in client.events(on_open=lambda: opened.append(True))]
        await client.aclose()

        assert opened == [True]
        assert events == ['{"Value": "2,400.00"}', "line1\nline2", "tail"]

    async def test_non_200_raises(self):
        client = SseStreamClient(url="http://feed/stream", client=_client(lambda r: httpx.Response(503)))
        with pytest.raises(FeedConnectionError):
            async for _ in client.events():
                pass

    async def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = SseStreamClient(url="http://feed/stream", client=_client(handler))
        with pytest.raises(FeedConnectionError):
            async for _ in client.events():
                pass


@pytest.mark.asyncio
class TestFeedDataClient:
    """One-shot snapshot with a bounded retry."""

    async def test_returns_json(self):
        payload = {"success": True, "data": {"Value": "2400"}}
        client = FeedDataClient(client=_client(lambda r: httpx.Response(200, json=payload)))
        assert await client.fetch("http://feed/data") == payload

    async def test_retries_once_then_raises(self):
        calls = []

        def handler(request):
            calls.append(request.url)
            return httpx.Response(500)

        client = FeedDataClient(retries=1, client=_client(handler))
        with pytest.raises(FeedConnectionError):
            await client.fetch("http://feed/data")
        assert len(calls) == 2

    async def test_recovers_on_retry(self):
        responses = [httpx.Response(502), httpx.Response(200, text=json.dumps({"Value": "1"}))]
        client = FeedDataClient(retries=1, client=_client(lambda r: responses.pop(0)))
        assert await client.fetch("http://feed/data") == {"Value": "1"}

    async def test_invalid_json_raises(self):
        client = FeedDataClient(retries=0, client=_client(lambda r: httpx.Response(200, text="<html>")))
        with pytest.raises(FeedConnectionError):
            await client.fetch("http://feed/data")
