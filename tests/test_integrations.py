"""Tests for rolodex.integrations: connect, import, configure, disconnect."""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from rolodex.connectors.csv_import import CsvImportConnector
from rolodex.connectors.gmail import GmailConnector
from rolodex.connectors.google import GOOGLE_OAUTH_TOKEN_URL
from rolodex.connectors.google_calendar import GoogleCalendarConnector
from rolodex.connectors.google_contacts import GoogleContactsConnector
from rolodex.connectors.registry import ConnectorRegistry
from rolodex.errors import (
    IntegrationNotFoundError,
    InvalidAutoSyncSettingsError,
    OAuthStateError,
    UnknownProviderError,
    UnsupportedCapabilityError,
)
from rolodex.gateway import SyncGateway
from rolodex.integrations import IntegrationManager, initial_sync_key, manual_sync_key
from rolodex.oauth_state import sign_state, verify_state

pytestmark = pytest.mark.unit

WS = "ws-1"
SECRET = "state-secret"
REDIRECT = "https://crm.example.com/api/integrations/google/callback"
GOOGLE_PROVIDERS = ["gmail", "google-calendar", "google-contacts"]


class _RecordingTrigger:
    def __init__(self, *, fail: bool = False) -> None:
        self.calls: list[tuple[str, str, str]] = []
        self.fail = fail

    async def trigger(self, integration_id: str, workspace_id: str, idempotency_key: str) -> None:
        if self.fail:
            raise RuntimeError("queue unavailable")
        self.calls.append((integration_id, workspace_id, idempotency_key))


class _FailingGateway(SyncGateway):
    async def process_sync(self, result, workspace_id):
        raise RuntimeError("database unavailable")


class _TokenEndpoint:
    def __init__(self) -> None:
        self.posts = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        assert str(request.url) == GOOGLE_OAUTH_TOKEN_URL
        self.posts += 1
        return httpx.Response(
            200, json={"access_token": "at-new", "refresh_token": "rt-new", "expires_in": 3600}
        )


@pytest.fixture
def token_endpoint() -> _TokenEndpoint:
    return _TokenEndpoint()


@pytest.fixture
def registry(token_endpoint, mock_http_client) -> ConnectorRegistry:
    google = {
        "client_id": "cid",
        "client_secret": "secret",
        "http_client": mock_http_client(token_endpoint),
    }
    return ConnectorRegistry(
        [
            CsvImportConnector(),
            GmailConnector(**google),
            GoogleCalendarConnector(**google),
            GoogleContactsConnector(**google),
        ]
    )


@pytest.fixture
def trigger() -> _RecordingTrigger:
    return _RecordingTrigger()


@pytest.fixture
def manager(integration_store, registry, vault, gateway, trigger, clock) -> IntegrationManager:
    return IntegrationManager(
        integration_store,
        registry,
        vault,
        gateway,
        state_secret=SECRET,
        trigger=trigger,
        clock=clock,
    )


def _state(clock, workspace_id: str = WS) -> str:
    return sign_state(SECRET, workspace_id, "user-1", now_ms=int(clock.now.timestamp() * 1000))


class TestOAuthConnect:
    def test_begin_oauth_signs_workspace_into_state(self, manager, clock):
        url = manager.begin_oauth("google", WS, "user-1", REDIRECT)

        params = parse_qs(urlparse(url).query)
        assert params["redirect_uri"] == [REDIRECT]
        verified = verify_state(
            SECRET, params["state"][0], now_ms=int(clock.now.timestamp() * 1000)
        )
        assert (verified.workspace_id, verified.user_id) == (WS, "user-1")

    def test_begin_oauth_unknown_family(self, manager):
        with pytest.raises(UnknownProviderError):
            manager.begin_oauth("myspace", WS, None, REDIRECT)

    def test_file_provider_has_no_consent_url(self, manager):
        with pytest.raises(UnsupportedCapabilityError):
            manager.authorization_url("csv", REDIRECT, "state")

    async def test_callback_connects_every_family_provider(
        self, manager, integration_store, vault, trigger, token_endpoint, clock
    ):
        integrations = await manager.complete_oauth_callback(
            "google", "auth-code", _state(clock), REDIRECT
        )

        assert token_endpoint.posts == 1
        assert sorted(i.provider for i in integrations) == GOOGLE_PROVIDERS
        for integration in integrations:
            assert integration.workspace_id == WS
            assert integration.status == "active"
            assert integration.sync_cursor == {}
            assert vault.decrypt(integration.access_token_encrypted) == "at-new"
            assert vault.decrypt(integration.refresh_token_encrypted) == "rt-new"
            assert integration.token_expires_at is not None

        assert trigger.calls == [
            (integration.id, WS, initial_sync_key(integration.id)) for integration in integrations
        ]

    async def test_reconnect_resets_cursor_and_error(
        self, manager, integration_store, clock
    ):
        existing = integration_store.add_integration(
            workspace_id=WS,
            provider="gmail",
            status="error",
            last_sync_error="invalid_grant",
            sync_cursor={"historyId": "5"},
        )

        await manager.complete_oauth_callback("google", "code", _state(clock), REDIRECT)

        reconnected = integration_store.integrations[existing.id]
        assert reconnected.status == "active"
        assert reconnected.last_sync_error is None
        assert reconnected.sync_cursor == {}
        assert len(integration_store.integrations) == 3

    async def test_tampered_state_rejected_before_exchange(
        self, manager, integration_store, token_endpoint, clock
    ):
        state = _state(clock)
        with pytest.raises(OAuthStateError):
            await manager.complete_oauth_callback("google", "code", state + "0", REDIRECT)
        assert token_endpoint.posts == 0
        assert integration_store.integrations == {}

    async def test_initial_sync_queue_failure_marks_error(
        self, integration_store, registry, vault, gateway, clock
    ):
        manager = IntegrationManager(
            integration_store,
            registry,
            vault,
            gateway,
            state_secret=SECRET,
            trigger=_RecordingTrigger(fail=True),
            clock=clock,
        )
        integrations = await manager.complete_oauth_callback(
            "google", "code", _state(clock), REDIRECT
        )

        for integration in integrations:
            stored = integration_store.integrations[integration.id]
            assert stored.status == "error"
            assert stored.last_sync_error == "queue unavailable"

    async def test_single_provider_exchange(self, manager, integration_store, trigger):
        integration = await manager.complete_oauth(WS, "google-contacts", "code", REDIRECT)
        assert integration.provider == "google-contacts"
        assert list(integration_store.integrations) == [integration.id]
        assert trigger.calls == []


class TestRequestSync:
    async def test_queues_manual_run(self, manager, integration_store, trigger, clock):
        integration = integration_store.add_integration(workspace_id=WS, provider="gmail")
        key = await manager.request_sync(integration.id, WS)
        assert key == manual_sync_key(integration.id, clock.now)
        assert trigger.calls == [(integration.id, WS, key)]

    async def test_wrong_workspace(self, manager, integration_store, trigger):
        integration = integration_store.add_integration(workspace_id=WS, provider="gmail")
        with pytest.raises(IntegrationNotFoundError):
            await manager.request_sync(integration.id, "ws-other")
        assert trigger.calls == []

    async def test_queue_failure_propagates(
        self, integration_store, registry, vault, gateway
    ):
        integration = integration_store.add_integration(workspace_id=WS, provider="gmail")
        manager = IntegrationManager(
            integration_store, registry, vault, gateway, trigger=_RecordingTrigger(fail=True)
        )
        with pytest.raises(RuntimeError, match="queue unavailable"):
            await manager.request_sync(integration.id, WS)


class TestImportFile:
    CSV = b"Name,Email,Company\nAda Lovelace,ada@example.com,Engines Ltd\n"

    async def test_import_records_a_csv_run(self, manager, integration_store, graph_store, clock):
        summary = await manager.import_file(WS, self.CSV, "team.csv")

        assert (summary.people_created, summary.companies_created) == (1, 1)
        [integration] = integration_store.integrations.values()
        assert integration.provider == "csv"
        assert integration.status == "active"
        assert integration.last_synced_at == clock.now
        [log] = integration_store.logs_for(integration.id)
        assert log.status == "completed"
        assert log.items_created == 1
        [person] = graph_store.people_in(WS)
        assert person["sources"] == ["csv:team.csv"]

    async def test_reimport_reuses_integration_and_updates(
        self, manager, integration_store
    ):
        await manager.import_file(WS, self.CSV, "team.csv")
        summary = await manager.import_file(WS, self.CSV, "team.csv")

        assert (summary.people_created, summary.people_updated) == (0, 1)
        assert len(integration_store.integrations) == 1
        [integration] = integration_store.integrations.values()
        assert len(integration_store.logs_for(integration.id)) == 2

    async def test_failed_import_marks_error(
        self, integration_store, registry, vault, graph_store, clock
    ):
        manager = IntegrationManager(
            integration_store, registry, vault, _FailingGateway(graph_store), clock=clock
        )
        with pytest.raises(RuntimeError, match="database unavailable"):
            await manager.import_file(WS, self.CSV, "team.csv")

        [integration] = integration_store.integrations.values()
        assert integration.status == "error"
        assert integration.last_sync_error == "database unavailable"
        [log] = integration_store.logs_for(integration.id)
        assert (log.status, log.error_message) == ("failed", "database unavailable")


class TestAutoSyncSettings:
    async def test_enable_with_time_and_timezone(self, manager, integration_store):
        integration = integration_store.add_integration(workspace_id=WS, provider="gmail")
        updated = await manager.set_auto_sync(
            integration.id, WS, enabled=True, time_local="07:30", timezone="Europe/Paris"
        )
        assert updated.auto_sync_enabled is True
        assert updated.auto_sync_time_local == "07:30"
        assert updated.auto_sync_timezone == "Europe/Paris"

    async def test_omitted_time_keeps_current_and_timezone_follows_workspace(
        self, manager, integration_store
    ):
        integration = integration_store.add_integration(
            workspace_id=WS,
            provider="gmail",
            auto_sync_time_local="06:45",
            auto_sync_timezone="Europe/Paris",
        )
        updated = await manager.set_auto_sync(integration.id, WS, enabled=False)
        assert updated.auto_sync_enabled is False
        assert updated.auto_sync_time_local == "06:45"
        assert updated.auto_sync_timezone is None

    @pytest.mark.parametrize("time_local", ["24:00", "9:00", "09:60", "09:00:00", "noon"])
    async def test_invalid_time_rejected(self, manager, integration_store, time_local):
        integration = integration_store.add_integration(workspace_id=WS, provider="gmail")
        with pytest.raises(InvalidAutoSyncSettingsError, match="time"):
            await manager.set_auto_sync(integration.id, WS, enabled=True, time_local=time_local)

    async def test_invalid_timezone_rejected(self, manager, integration_store):
        integration = integration_store.add_integration(workspace_id=WS, provider="gmail")
        with pytest.raises(InvalidAutoSyncSettingsError, match="timezone"):
            await manager.set_auto_sync(
                integration.id, WS, enabled=True, timezone="Atlantis/Capital"
            )

    async def test_missing_integration(self, manager):
        with pytest.raises(IntegrationNotFoundError):
            await manager.set_auto_sync("missing", WS, enabled=True)


class TestDisconnect:
    async def test_removes_integration_and_trigger_history(self, manager, integration_store):
        integration = integration_store.add_integration(workspace_id=WS, provider="gmail")
        other = integration_store.add_integration(workspace_id=WS, provider="csv")
        await integration_store.claim_trigger_key("autosync:a:2026-01-01", integration.id)
        await integration_store.claim_trigger_key("autosync:b:2026-01-01", other.id)

        await manager.disconnect(integration.id, WS)

        assert integration.id not in integration_store.integrations
        assert integration_store.trigger_keys == {"autosync:b:2026-01-01": other.id}

    async def test_missing_integration(self, manager, integration_store):
        integration = integration_store.add_integration(workspace_id=WS, provider="gmail")
        with pytest.raises(IntegrationNotFoundError):
            await manager.disconnect(integration.id, "ws-other")
        assert integration.id in integration_store.integrations
