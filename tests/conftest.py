"""Shared test fixtures for the rolodex test suite."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

import httpx
import pytest

from rolodex.gateway import SyncGateway
from rolodex.testing.stores import InMemoryGraphStore, InMemoryIntegrationStore
from rolodex.vault import CredentialVault

TEST_KEY_HEX = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
WORKSPACE_ID = "ws-1"


class SleepRecorder:
    """Async ``sleep`` replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def vault() -> CredentialVault:
    return CredentialVault(TEST_KEY_HEX)


@pytest.fixture
def integration_store() -> InMemoryIntegrationStore:
    return InMemoryIntegrationStore()


@pytest.fixture
def graph_store() -> InMemoryGraphStore:
    return InMemoryGraphStore()


@pytest.fixture
def gateway(graph_store: InMemoryGraphStore) -> SyncGateway:
    return SyncGateway(graph_store)


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2026, 3, 10, 12, 0, tzinfo=UTC))


@pytest.fixture
def mock_http_client() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """Factory for an ``AsyncClient`` answering through a handler function."""

    def _build(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _build
