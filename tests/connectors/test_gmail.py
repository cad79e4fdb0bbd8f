"""Tests for the Gmail connector."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import httpx
import pytest

from rolodex.connectors import gmail
from rolodex.connectors.base import SyncRequest
from rolodex.connectors.gmail import GmailConnector, parse_address_header
from rolodex.errors import ProviderRequestError

pytestmark = pytest.mark.unit

MESSAGES_PATH = "/gmail/v1/users/me/messages"
HISTORY_PATH = "/gmail/v1/users/me/history"
PROFILE_PATH = "/gmail/v1/users/me/profile"


def _message(message_id: str, headers: dict[str, str], **extra: Any) -> dict[str, Any]:
    return {
        "id": message_id,
        "threadId": f"thread-{message_id}",
        "snippet": "Quick question about the offsite",
        "internalDate": "1700000000000",
        "payload": {"headers": [{"name": k, "value": v} for k, v in headers.items()]},
        **extra,
    }


MESSAGES = {
    "m1": _message(
        "m1",
        {
            "From": "Alice Example <Alice@Example.com>",
            "To": 'me@example.com, "Bob B" <bob@example.com>',
            "Subject": "Offsite",
        },
    ),
    "m2": _message(
        "m2",
        {"From": "bob@example.com", "To": "me@example.com", "Subject": "Re: Offsite"},
    ),
}


class _GmailApi:
    """Routes Gmail REST calls to canned payloads and records every request."""

    def __init__(
        self,
        *,
        listing: list[str] | None = None,
        history: dict[str, Any] | None = None,
        history_status: int = 200,
        history_pages: list[dict[str, Any] | int] | None = None,
        profile_history_id: str | None = "900",
    ) -> None:
        self.listing = listing or []
        self.history = history
        self.history_pages = history_pages
        self.history_status = history_status
        self.profile_history_id = profile_history_id
        self.requests: list[httpx.Request] = []

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == MESSAGES_PATH:
            return httpx.Response(200, json={"messages": [{"id": mid} for mid in self.listing]})
        if path.startswith(MESSAGES_PATH + "/"):
            message = MESSAGES.get(path.rsplit("/", 1)[1])
            if message is None:
                return httpx.Response(404, json={"error": {"message": "Not Found"}})
            return httpx.Response(200, json=message)
        if path == HISTORY_PATH and self.history_pages is not None:
            page = self.history_pages[int(request.url.params.get("pageToken", "0"))]
            if isinstance(page, int):
                return httpx.Response(page, json={"error": {"message": "Backend Error"}})
            return httpx.Response(200, json=page)
        if path == HISTORY_PATH:
            if self.history_status != 200:
                return httpx.Response(self.history_status, json={"error": {"message": "gone"}})
            return httpx.Response(200, json=self.history or {})
        if path == PROFILE_PATH:
            return httpx.Response(200, json={"historyId": self.profile_history_id})
        return httpx.Response(500, json={"error": {"message": f"unexpected {path}"}})


async def _sync(api: _GmailApi, mock_http_client, sleep_recorder, cursor: dict[str, Any]):
    connector = GmailConnector(
        client_id="cid",
        client_secret="secret",
        http_client=mock_http_client(api),
        sleep=sleep_recorder,
    )
    return await connector.sync(SyncRequest(workspace_id="ws", access_token="tok", cursor=cursor))


class TestParseAddressHeader:
    def test_quoted_names_and_bare_addresses(self):
        assert parse_address_header('"Ada L." <Ada@Example.com>, bob@example.com') == [
            ("ada@example.com", "Ada L."),
            ("bob@example.com", None),
        ]

    def test_unresolvable_entries_dropped(self):
        assert parse_address_header("undisclosed-recipients:;") == []

    def test_empty_header(self):
        assert parse_address_header("") == []


class TestFullFetch:
    async def test_first_run_lists_recent_mail_and_stores_history_id(
        self, mock_http_client, sleep_recorder
    ):
        api = _GmailApi(listing=["m1", "m2"])
        result = await _sync(api, mock_http_client, sleep_recorder, {})

        listing = next(r for r in api.requests if r.url.path == MESSAGES_PATH)
        assert listing.url.params["q"].startswith("after:")
        assert result.cursor == {"historyId": "900"}

        emails = [person.email for person in result.people]
        assert emails == ["alice@example.com", "me@example.com", "bob@example.com"]
        alice = result.people[0]
        assert (alice.first_name, alice.last_name, alice.display_name) == (
            "Alice",
            "Example",
            "Alice Example",
        )
        assert all(person.source == "gmail" for person in result.people)

        first = result.interactions[0]
        assert first.interaction_type == "email"
        assert first.direction == "inbound"
        assert first.subject == "Offsite"
        assert first.content == "Quick question about the offsite"
        assert first.source_id == "m1"
        assert first.participant_emails == [
            "alice@example.com",
            "me@example.com",
            "bob@example.com",
        ]
        assert first.occurred_at == datetime.fromtimestamp(1700000000, tz=UTC)
        assert first.metadata == {"threadId": "thread-m1"}
        assert len(result.interactions) == 2

    async def test_unfetchable_message_is_skipped(self, mock_http_client, sleep_recorder):
        api = _GmailApi(listing=["missing", "m2"])
        result = await _sync(api, mock_http_client, sleep_recorder, {})
        assert [i.source_id for i in result.interactions] == ["m2"]

    async def test_listing_failure_raises(self, mock_http_client, sleep_recorder):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, json={"error": {"message": "Insufficient Permission"}})

        connector = GmailConnector(
            client_id="cid", client_secret="secret", http_client=mock_http_client(handler)
        )
        with pytest.raises(ProviderRequestError, match="Insufficient Permission"):
            await connector.sync(SyncRequest(workspace_id="ws", access_token="tok"))


class TestHistoryFetch:
    async def test_history_id_fetches_only_added_messages(self, mock_http_client, sleep_recorder):
        api = _GmailApi(
            history={
                "history": [
                    {"messagesAdded": [{"message": {"id": "m2"}}]},
                    {"messagesAdded": [{"message": {"id": "m2"}}]},
                ],
                "historyId": "150",
            }
        )
        result = await _sync(api, mock_http_client, sleep_recorder, {"historyId": "100"})

        history_call = api.requests[0]
        assert history_call.url.params["startHistoryId"] == "100"
        assert history_call.url.params["historyTypes"] == "messageAdded"
        assert MESSAGES_PATH not in api.paths()
        assert PROFILE_PATH not in api.paths()
        assert result.cursor == {"historyId": "150"}
        assert [i.source_id for i in result.interactions] == ["m2"]

    async def test_history_failure_falls_back_to_full_fetch(
        self, mock_http_client, sleep_recorder
    ):
        api = _GmailApi(listing=["m1"], history_status=404, profile_history_id="901")
        result = await _sync(api, mock_http_client, sleep_recorder, {"historyId": "1"})

        assert api.paths()[0] == HISTORY_PATH
        assert MESSAGES_PATH in api.paths()
        assert result.cursor == {"historyId": "901"}
        assert [i.source_id for i in result.interactions] == ["m1"]

    async def test_failed_later_page_resumes_from_last_consumed_record(
        self, mock_http_client, sleep_recorder
    ):
        api = _GmailApi(
            history_pages=[
                {
                    "history": [
                        {"id": "120", "messagesAdded": [{"message": {"id": "m1"}}]},
                        {"id": "130", "messagesAdded": [{"message": {"id": "m2"}}]},
                    ],
                    "historyId": "500",
                    "nextPageToken": "1",
                },
                503,
            ]
        )
        result = await _sync(api, mock_http_client, sleep_recorder, {"historyId": "100"})

        assert result.cursor == {"historyId": "130"}
        assert result.has_more is True
        assert [i.source_id for i in result.interactions] == ["m1", "m2"]
        assert MESSAGES_PATH not in api.paths()

    async def test_message_cap_leaves_remaining_records_for_next_run(
        self, mock_http_client, sleep_recorder, monkeypatch
    ):
        monkeypatch.setattr(gmail, "MAX_MESSAGES_PER_RUN", 1)
        api = _GmailApi(
            history_pages=[
                {
                    "history": [
                        {"id": "110", "messagesAdded": [{"message": {"id": "m1"}}]},
                        {"id": "120", "messagesAdded": [{"message": {"id": "m2"}}]},
                    ],
                    "historyId": "500",
                    "nextPageToken": "1",
                },
            ]
        )
        result = await _sync(api, mock_http_client, sleep_recorder, {"historyId": "100"})

        assert result.cursor == {"historyId": "110"}
        assert result.has_more is True
        assert [i.source_id for i in result.interactions] == ["m1"]
        assert api.paths().count(HISTORY_PATH) == 1

    async def test_all_pages_consumed_advances_to_mailbox_history_id(
        self, mock_http_client, sleep_recorder
    ):
        api = _GmailApi(
            history_pages=[
                {
                    "history": [{"id": "120", "messagesAdded": [{"message": {"id": "m1"}}]}],
                    "historyId": "500",
                    "nextPageToken": "1",
                },
                {
                    "history": [{"id": "140", "messagesAdded": [{"message": {"id": "m2"}}]}],
                    "historyId": "500",
                },
            ]
        )
        result = await _sync(api, mock_http_client, sleep_recorder, {"historyId": "100"})

        assert result.cursor == {"historyId": "500"}
        assert result.has_more is False
        assert [i.source_id for i in result.interactions] == ["m1", "m2"]
