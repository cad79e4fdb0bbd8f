"""Tests for the Google Contacts connector."""

from __future__ import annotations

import httpx
import pytest

from rolodex.connectors.base import SyncRequest
from rolodex.connectors.google_contacts import (
    GOOGLE_PEOPLE_API_CONNECTIONS_URL,
    GoogleContactsConnector,
    contact_to_person,
)

pytestmark = pytest.mark.unit

ADA = {
    "resourceName": "people/c1",
    "names": [{"displayName": "Ada Lovelace", "givenName": "Ada", "familyName": "Lovelace"}],
    "emailAddresses": [{"value": "Ada@Example.com"}],
    "phoneNumbers": [{"value": "+44 20 1234"}],
    "organizations": [{"name": "Analytical Engines", "title": "Programmer", "domain": "ae.io"}],
    "addresses": [{"formattedValue": "London, UK"}],
    "biographies": [{"value": "First programmer"}],
    "photos": [
        {"url": "https://photos/default.png", "default": True},
        {"url": "https://photos/ada.png"},
    ],
    "urls": [
        {"value": "https://www.linkedin.com/in/ada"},
        {"value": "https://x.com/ada"},
        {"value": "https://ada.dev"},
    ],
}


class TestContactToPerson:
    def test_maps_every_field(self):
        person = contact_to_person(ADA)
        assert person is not None
        assert person.source == "google-contacts"
        assert person.source_id == "people/c1"
        assert person.email == "ada@example.com"
        assert (person.first_name, person.last_name, person.display_name) == (
            "Ada",
            "Lovelace",
            "Ada Lovelace",
        )
        assert person.phone == "+44 20 1234"
        assert person.company_name == "Analytical Engines"
        assert person.company_domain == "ae.io"
        assert person.job_title == "Programmer"
        assert person.location == "London, UK"
        assert person.bio == "First programmer"
        assert person.avatar_url == "https://photos/ada.png"
        assert [(p.platform, p.profile_url) for p in person.social_profiles] == [
            ("linkedin", "https://www.linkedin.com/in/ada"),
            ("twitter", "https://x.com/ada"),
        ]

    def test_contact_without_name_or_email_is_dropped(self):
        assert contact_to_person({"resourceName": "people/c9", "phoneNumbers": []}) is None

    def test_email_only_contact(self):
        person = contact_to_person({"emailAddresses": [{"value": "x@example.com"}]})
        assert person is not None
        assert person.first_name is None
        assert person.social_profiles == []


class TestGoogleContactsSync:
    async def test_pages_and_stores_final_sync_token(self, mock_http_client, sleep_recorder):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            assert str(request.url).startswith(GOOGLE_PEOPLE_API_CONNECTIONS_URL)
            if "pageToken" not in request.url.params:
                return httpx.Response(200, json={"connections": [ADA], "nextPageToken": "p2"})
            return httpx.Response(
                200,
                json={
                    "connections": [{"resourceName": "people/empty"}],
                    "nextSyncToken": "contacts-2",
                },
            )

        connector = GoogleContactsConnector(
            client_id="cid",
            client_secret="secret",
            http_client=mock_http_client(handler),
            sleep=sleep_recorder,
        )
        result = await connector.sync(
            SyncRequest(
                workspace_id="ws", access_token="tok", cursor={"contactsSyncToken": "contacts-1"}
            )
        )

        assert requests[0].url.params["syncToken"] == "contacts-1"
        assert requests[0].url.params["requestSyncToken"] == "true"
        assert "syncToken" not in requests[1].url.params
        assert [p.email for p in result.people] == ["ada@example.com"]
        assert result.interactions == []
        assert result.cursor == {"contactsSyncToken": "contacts-2"}

    async def test_missing_new_token_keeps_cursor(self, mock_http_client, sleep_recorder):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"connections": []})

        connector = GoogleContactsConnector(
            client_id="cid",
            client_secret="secret",
            http_client=mock_http_client(handler),
            sleep=sleep_recorder,
        )
        result = await connector.sync(
            SyncRequest(workspace_id="ws", access_token="tok", cursor={"contactsSyncToken": "c1"})
        )
        assert result.cursor == {"contactsSyncToken": "c1"}

    async def test_expired_token_resyncs_without_it(self, mock_http_client, sleep_recorder):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if "syncToken" in request.url.params:
                return httpx.Response(410, json={"error": {"message": "EXPIRED_SYNC_TOKEN"}})
            return httpx.Response(200, json={"connections": [ADA], "nextSyncToken": "fresh"})

        connector = GoogleContactsConnector(
            client_id="cid",
            client_secret="secret",
            http_client=mock_http_client(handler),
            sleep=sleep_recorder,
        )
        result = await connector.sync(
            SyncRequest(workspace_id="ws", access_token="tok", cursor={"contactsSyncToken": "old"})
        )

        assert len(requests) == 2
        assert result.cursor == {"contactsSyncToken": "fresh"}
        assert len(result.people) == 1
