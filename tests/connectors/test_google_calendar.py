"""Tests for the Google Calendar connector."""

from __future__ import annotations

from datetime import UTC, datetime

import httpx
import pytest

from rolodex.connectors.base import SyncRequest
from rolodex.connectors.google_calendar import (
    GOOGLE_CALENDAR_EVENTS_URL,
    GoogleCalendarConnector,
)
from rolodex.errors import ProviderRequestError

pytestmark = pytest.mark.unit

PLANNING = {
    "id": "e1",
    "status": "confirmed",
    "summary": "Planning",
    "description": "Q3 roadmap",
    "htmlLink": "https://calendar.google.com/event?eid=e1",
    "location": "Room 1",
    "start": {"dateTime": "2026-03-01T10:00:00Z"},
    "end": {"dateTime": "2026-03-01T10:45:00Z"},
    "attendees": [
        {"email": "me@example.com", "self": True},
        {"email": "Carol@Example.com", "displayName": "Carol Danvers"},
        {"email": "dan@example.com"},
    ],
}
CANCELLED = {"id": "e2", "status": "cancelled"}
ALL_DAY = {"id": "e3", "start": {"date": "2026-03-02"}, "end": {"date": "2026-03-03"}}


def _connector(handler, mock_http_client, sleep_recorder) -> GoogleCalendarConnector:
    return GoogleCalendarConnector(
        client_id="cid",
        client_secret="secret",
        http_client=mock_http_client(handler),
        sleep=sleep_recorder,
    )


class TestGoogleCalendarSync:
    async def test_first_run_lists_window_and_maps_events(self, mock_http_client, sleep_recorder):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            assert str(request.url).startswith(GOOGLE_CALENDAR_EVENTS_URL)
            return httpx.Response(
                200, json={"items": [PLANNING, CANCELLED, ALL_DAY], "nextSyncToken": "cal-2"}
            )

        connector = _connector(handler, mock_http_client, sleep_recorder)
        result = await connector.sync(SyncRequest(workspace_id="ws", access_token="tok"))

        params = requests[0].url.params
        assert "timeMin" in params
        assert params["singleEvents"] == "true"
        assert params["orderBy"] == "startTime"
        assert "syncToken" not in params
        assert result.cursor == {"calendarSyncToken": "cal-2"}

        assert [i.source_id for i in result.interactions] == ["e1", "e3"]
        meeting = result.interactions[0]
        assert meeting.interaction_type == "meeting"
        assert meeting.subject == "Planning"
        assert meeting.content == "Q3 roadmap"
        assert meeting.duration_minutes == 45
        assert meeting.occurred_at == datetime(2026, 3, 1, 10, 0, tzinfo=UTC)
        assert meeting.participant_emails == ["carol@example.com", "dan@example.com"]
        assert meeting.source_url == "https://calendar.google.com/event?eid=e1"
        assert meeting.metadata == {"location": "Room 1"}

        all_day = result.interactions[1]
        assert all_day.subject == "Untitled Event"
        assert all_day.duration_minutes is None
        assert all_day.occurred_at == datetime(2026, 3, 2, tzinfo=UTC)

        carol = result.people[0]
        assert (carol.email, carol.first_name, carol.last_name) == (
            "carol@example.com",
            "Carol",
            "Danvers",
        )
        assert [p.email for p in result.people] == ["carol@example.com", "dan@example.com"]

    async def test_sync_token_used_and_pages_followed(self, mock_http_client, sleep_recorder):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if "pageToken" not in request.url.params:
                return httpx.Response(200, json={"items": [PLANNING], "nextPageToken": "p2"})
            return httpx.Response(200, json={"items": [], "nextSyncToken": "cal-3"})

        connector = _connector(handler, mock_http_client, sleep_recorder)
        result = await connector.sync(
            SyncRequest(
                workspace_id="ws", access_token="tok", cursor={"calendarSyncToken": "cal-2"}
            )
        )

        assert requests[0].url.params["syncToken"] == "cal-2"
        assert "timeMin" not in requests[0].url.params
        assert requests[1].url.params["pageToken"] == "p2"
        assert "syncToken" not in requests[1].url.params
        assert result.cursor == {"calendarSyncToken": "cal-3"}

    async def test_expired_token_triggers_one_full_resync(self, mock_http_client, sleep_recorder):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if "syncToken" in request.url.params:
                return httpx.Response(410, json={"error": {"message": "Sync token expired"}})
            return httpx.Response(200, json={"items": [PLANNING], "nextSyncToken": "cal-new"})

        connector = _connector(handler, mock_http_client, sleep_recorder)
        result = await connector.sync(
            SyncRequest(
                workspace_id="ws", access_token="tok", cursor={"calendarSyncToken": "stale"}
            )
        )

        assert len(requests) == 2
        assert "timeMin" in requests[1].url.params
        assert result.cursor == {"calendarSyncToken": "cal-new"}
        assert len(result.interactions) == 1

    async def test_gone_after_resync_is_provider_error(self, mock_http_client, sleep_recorder):
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            return httpx.Response(410, json={"error": {"message": "Gone"}})

        connector = _connector(handler, mock_http_client, sleep_recorder)
        with pytest.raises(ProviderRequestError, match="Gone"):
            await connector.sync(
                SyncRequest(
                    workspace_id="ws", access_token="tok", cursor={"calendarSyncToken": "stale"}
                )
            )
        assert attempts == 2
