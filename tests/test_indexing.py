"""Tests for rolodex.indexing notifiers."""

from __future__ import annotations

import json

import httpx
import pytest

from rolodex.indexing import HttpIndexNotifier, NullIndexNotifier

pytestmark = pytest.mark.unit

URL = "http://indexer.test/api/entities/touched"


class TestHttpIndexNotifier:
    async def test_posts_one_batch(self, mock_http_client):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(202)

        notifier = HttpIndexNotifier(URL, mock_http_client(handler))
        await notifier.notify("person", ["p1", "p2"], "ws-1")

        [request] = requests
        assert request.method == "POST"
        assert str(request.url) == URL
        assert json.loads(request.content) == [
            {"entityType": "person", "entityId": "p1", "workspaceId": "ws-1"},
            {"entityType": "person", "entityId": "p2", "workspaceId": "ws-1"},
        ]

    async def test_empty_batch_sends_nothing(self, mock_http_client):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        await HttpIndexNotifier(URL, mock_http_client(handler)).notify("interaction", [], "ws-1")

    async def test_non_2xx_raises(self, mock_http_client):
        notifier = HttpIndexNotifier(URL, mock_http_client(lambda request: httpx.Response(503)))
        with pytest.raises(httpx.HTTPStatusError):
            await notifier.notify("company", ["c1"], "ws-1")


class TestNullIndexNotifier:
    async def test_drops_batches(self):
        assert await NullIndexNotifier().notify("person", ["p1"], "ws-1") is None
