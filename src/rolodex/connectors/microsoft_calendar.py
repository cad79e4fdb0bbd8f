"""Microsoft 365 calendar connector (Graph ``events/delta``).

Cursor shape: ``{"calendarDeltaLink": "<url>"}``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from rolodex.connectors._normalize import (
    PeopleCollector,
    as_non_empty_string,
    duration_minutes,
    lower_email,
    parse_datetime,
)
from rolodex.connectors.base import NormalizedInteraction, SyncRequest, SyncResult
from rolodex.connectors.cursor import collect_with_full_resync
from rolodex.connectors.microsoft_graph import GRAPH_BASE_URL, MicrosoftGraphConnector

CURSOR_KEY = "calendarDeltaLink"
EVENTS_DELTA_URL = (
    f"{GRAPH_BASE_URL}/me/events/delta"
    "?$select=id,subject,bodyPreview,start,end,attendees,organizer,webLink,location,isCancelled"
    "&$top=100"
)


class MicrosoftCalendarConnector(MicrosoftGraphConnector):
    """Imports meetings and their attendees from Microsoft 365."""

    @property
    def id(self) -> str:
        return "microsoft-calendar"

    @property
    def name(self) -> str:
        return "Microsoft Calendar"

    @property
    def description(self) -> str:
        return "Import meetings and events from Microsoft 365."

    async def sync(self, request: SyncRequest) -> SyncResult:
        access_token = await self.resolve_access_token(request)

        async def collect(cursor: dict[str, Any]) -> SyncResult:
            people = PeopleCollector("microsoft-calendar")
            interactions: list[NormalizedInteraction] = []

            def handle(event: dict[str, Any]) -> bool:
                interaction = _event_to_interaction(event, people)
                if interaction is None:
                    return False
                interactions.append(interaction)
                return True

            next_cursor, has_more = await self._collect_delta(
                access_token,
                cursor,
                cursor_key=CURSOR_KEY,
                initial_url=EVENTS_DELTA_URL,
                handle_item=handle,
            )
            return SyncResult(
                people=people.people,
                interactions=interactions,
                cursor=next_cursor,
                has_more=has_more,
            )

        return await collect_with_full_resync(
            collect,
            request.cursor,
            provider=self.name,
            cursor_key=CURSOR_KEY,
        )


def _event_time(value: Any) -> datetime | None:
    """Parse a Graph ``dateTimeTimeZone``; naive times use its ``timeZone``."""
    if not isinstance(value, dict):
        return None
    raw = as_non_empty_string(value.get("dateTime"))
    if raw is None:
        return None
    has_offset = raw.endswith("Z") or "+" in raw[10:] or "-" in raw[10:]
    parsed = parse_datetime(raw)
    zone_name = as_non_empty_string(value.get("timeZone"))
    if parsed is None or has_offset or zone_name is None or zone_name.upper() == "UTC":
        return parsed
    try:
        zone = ZoneInfo(zone_name)
    except (ZoneInfoNotFoundError, ValueError):
        return parsed
    return parsed.replace(tzinfo=zone)


def _event_to_interaction(
    event: dict[str, Any],
    people: PeopleCollector,
) -> NormalizedInteraction | None:
    if "@removed" in event or event.get("isCancelled"):
        return None
    start = _event_time(event.get("start"))
    if start is None:
        return None
    end = _event_time(event.get("end"))

    participants: list[str] = []
    for attendee in event.get("attendees") or []:
        email_address = attendee.get("emailAddress") if isinstance(attendee, dict) else None
        if not isinstance(email_address, dict):
            continue
        email = lower_email(email_address.get("address"))
        if email is None:
            continue
        people.add(email, email_address.get("name"))
        if email not in participants:
            participants.append(email)

    location = event.get("location")
    organizer = event.get("organizer")
    organizer_address = organizer.get("emailAddress") if isinstance(organizer, dict) else None
    return NormalizedInteraction(
        interaction_type="meeting",
        subject=as_non_empty_string(event.get("subject")) or "Untitled Event",
        content=as_non_empty_string(event.get("bodyPreview")),
        occurred_at=start,
        duration_minutes=duration_minutes(start, end),
        participant_emails=participants,
        source="microsoft-calendar",
        source_id=as_non_empty_string(event.get("id")),
        source_url=as_non_empty_string(event.get("webLink")),
        metadata={
            "location": location.get("displayName") if isinstance(location, dict) else None,
            "organizer": (
                organizer_address.get("address") if isinstance(organizer_address, dict) else None
            ),
        },
    )
