"""Google Calendar connector: opaque sync-token incremental fetch.

Cursor shape: ``{"calendarSyncToken": "<token>"}``.

Without a token the last 90 days of the primary calendar are listed.  A 410
response to a token request means the token expired: the run clears it and
repeats once as a full fetch.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from rolodex.connectors._normalize import (
    PeopleCollector,
    as_non_empty_string,
    duration_minutes,
    lower_email,
    parse_datetime,
)
from rolodex.connectors.base import NormalizedInteraction, SyncRequest, SyncResult
from rolodex.connectors.cursor import collect_with_full_resync
from rolodex.connectors.google import GoogleConnector
from rolodex.connectors.http import json_object, raise_for_provider_status
from rolodex.errors import CursorRejectedError

GOOGLE_CALENDAR_EVENTS_URL = "https://www.googleapis.com/calendar/v3/calendars/primary/events"
CURSOR_KEY = "calendarSyncToken"
FULL_SYNC_WINDOW = timedelta(days=90)
PAGE_SIZE = 100


class GoogleCalendarConnector(GoogleConnector):
    """Imports meetings from the primary calendar and their attendees as people."""

    @property
    def id(self) -> str:
        return "google-calendar"

    @property
    def name(self) -> str:
        return "Google Calendar"

    @property
    def description(self) -> str:
        return "Import meetings and events from Google Calendar."

    async def sync(self, request: SyncRequest) -> SyncResult:
        access_token = await self.resolve_access_token(request)

        async def collect(cursor: dict[str, Any]) -> SyncResult:
            return await self._collect(access_token, cursor)

        return await collect_with_full_resync(
            collect,
            request.cursor,
            provider=self.name,
            cursor_key=CURSOR_KEY,
        )

    async def _collect(self, access_token: str, cursor: dict[str, Any]) -> SyncResult:
        sync_token = as_non_empty_string(cursor.get(CURSOR_KEY))
        time_min = None
        if sync_token is None:
            time_min = (datetime.now(UTC) - FULL_SYNC_WINDOW).isoformat()

        people = PeopleCollector("google-calendar")
        interactions: list[NormalizedInteraction] = []
        new_sync_token: str | None = None
        page_token: str | None = None

        while True:
            params: dict[str, Any] = {"maxResults": PAGE_SIZE, "singleEvents": "true"}
            if sync_token is not None:
                if page_token is None:
                    params["syncToken"] = sync_token
            else:
                params["timeMin"] = time_min
                params["orderBy"] = "startTime"
            if page_token is not None:
                params["pageToken"] = page_token

            response = await self._get(GOOGLE_CALENDAR_EVENTS_URL, access_token, params=params)
            if response.status_code == 410 and sync_token is not None:
                raise CursorRejectedError("Google Calendar sync token expired")
            raise_for_provider_status(response, provider=self.name)
            payload = json_object(response, provider=self.name)

            for event in payload.get("items") or []:
                if isinstance(event, dict):
                    interaction = _event_to_interaction(event, people)
                    if interaction is not None:
                        interactions.append(interaction)

            new_sync_token = as_non_empty_string(payload.get("nextSyncToken")) or new_sync_token
            page_token = as_non_empty_string(payload.get("nextPageToken"))
            if page_token is None:
                break

        return SyncResult(
            people=people.people,
            interactions=interactions,
            cursor={**cursor, CURSOR_KEY: new_sync_token or sync_token},
        )


def _event_to_interaction(
    event: dict[str, Any],
    people: PeopleCollector,
) -> NormalizedInteraction | None:
    if event.get("status") == "cancelled":
        return None
    start = event.get("start") or {}
    end = event.get("end") or {}
    occurred_at = parse_datetime(start.get("dateTime") or start.get("date"))
    if occurred_at is None:
        return None

    participants: list[str] = []
    for attendee in event.get("attendees") or []:
        if not isinstance(attendee, dict) or attendee.get("self"):
            continue
        email = lower_email(attendee.get("email"))
        if email is None:
            continue
        people.add(email, attendee.get("displayName"))
        if email not in participants:
            participants.append(email)

    return NormalizedInteraction(
        interaction_type="meeting",
        subject=as_non_empty_string(event.get("summary")) or "Untitled Event",
        content=as_non_empty_string(event.get("description")),
        occurred_at=occurred_at,
        duration_minutes=duration_minutes(
            parse_datetime(start.get("dateTime")),
            parse_datetime(end.get("dateTime")),
        ),
        participant_emails=participants,
        source="google-calendar",
        source_id=as_non_empty_string(event.get("id")),
        source_url=as_non_empty_string(event.get("htmlLink")),
        metadata={"location": event.get("location")},
    )
