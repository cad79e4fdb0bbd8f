"""Google Contacts connector (People API connections).

Cursor shape: ``{"contactsSyncToken": "<token>"}``.  The token is replaced
only when the final page of a completed run returns a fresh one.
"""

from __future__ import annotations

from typing import Any

from rolodex.connectors._normalize import as_non_empty_string, lower_email
from rolodex.connectors.base import NormalizedPerson, SocialProfile, SyncRequest, SyncResult
from rolodex.connectors.cursor import collect_with_full_resync
from rolodex.connectors.google import GoogleConnector
from rolodex.connectors.http import json_object, raise_for_provider_status
from rolodex.errors import CursorRejectedError

GOOGLE_PEOPLE_API_CONNECTIONS_URL = "https://people.googleapis.com/v1/people/me/connections"
PERSON_FIELDS = (
    "names,emailAddresses,phoneNumbers,organizations,addresses,biographies,photos,urls"
)
CURSOR_KEY = "contactsSyncToken"
PAGE_SIZE = 100


class GoogleContactsConnector(GoogleConnector):
    """Imports the address book as people with company and social profile data."""

    @property
    def id(self) -> str:
        return "google-contacts"

    @property
    def name(self) -> str:
        return "Google Contacts"

    @property
    def description(self) -> str:
        return "Import contacts from Google Contacts."

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
        people: list[NormalizedPerson] = []
        new_sync_token: str | None = None
        page_token: str | None = None

        while True:
            params: dict[str, Any] = {
                "personFields": PERSON_FIELDS,
                "pageSize": PAGE_SIZE,
                "requestSyncToken": "true",
            }
            if sync_token is not None and page_token is None:
                params["syncToken"] = sync_token
            if page_token is not None:
                params["pageToken"] = page_token

            response = await self._get(
                GOOGLE_PEOPLE_API_CONNECTIONS_URL, access_token, params=params
            )
            if response.status_code == 410 and sync_token is not None:
                raise CursorRejectedError("Google People sync token expired")
            raise_for_provider_status(response, provider=self.name)
            payload = json_object(response, provider=self.name)

            for contact in payload.get("connections") or []:
                if isinstance(contact, dict):
                    person = contact_to_person(contact)
                    if person is not None:
                        people.append(person)

            new_sync_token = as_non_empty_string(payload.get("nextSyncToken")) or new_sync_token
            page_token = as_non_empty_string(payload.get("nextPageToken"))
            if page_token is None:
                break

        next_cursor = dict(cursor)
        if new_sync_token is not None:
            next_cursor[CURSOR_KEY] = new_sync_token
        return SyncResult(people=people, cursor=next_cursor)


def _first(values: Any) -> dict[str, Any]:
    if isinstance(values, list):
        for item in values:
            if isinstance(item, dict):
                return item
    return {}


def contact_to_person(contact: dict[str, Any]) -> NormalizedPerson | None:
    """Map one People API person; ``None`` when it has neither name nor email."""
    name = _first(contact.get("names"))
    email = lower_email(_first(contact.get("emailAddresses")).get("value"))
    display_name = as_non_empty_string(name.get("displayName"))
    if display_name is None and email is None:
        return None

    organization = _first(contact.get("organizations"))
    avatar_url = None
    for photo in contact.get("photos") or []:
        if isinstance(photo, dict) and not photo.get("default"):
            avatar_url = as_non_empty_string(photo.get("url"))
            break

    return NormalizedPerson(
        email=email,
        phone=as_non_empty_string(_first(contact.get("phoneNumbers")).get("value")),
        first_name=as_non_empty_string(name.get("givenName")),
        last_name=as_non_empty_string(name.get("familyName")),
        display_name=display_name,
        company_name=as_non_empty_string(organization.get("name")),
        company_domain=as_non_empty_string(organization.get("domain")),
        job_title=as_non_empty_string(organization.get("title")),
        location=as_non_empty_string(_first(contact.get("addresses")).get("formattedValue")),
        bio=as_non_empty_string(_first(contact.get("biographies")).get("value")),
        avatar_url=avatar_url,
        social_profiles=_social_profiles(contact.get("urls")),
        source="google-contacts",
        source_id=as_non_empty_string(contact.get("resourceName")),
    )


def _social_profiles(urls: Any) -> list[SocialProfile]:
    profiles: list[SocialProfile] = []
    for item in urls or []:
        value = as_non_empty_string(item.get("value")) if isinstance(item, dict) else None
        if value is None:
            continue
        lowered = value.lower()
        if "linkedin.com" in lowered:
            profiles.append(SocialProfile(platform="linkedin", profile_url=value))
        elif "twitter.com" in lowered or "x.com" in lowered:
            profiles.append(SocialProfile(platform="twitter", profile_url=value))
    return profiles
