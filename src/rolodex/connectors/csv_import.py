"""CSV file-import connector.

No network and no cursor: ``parse_file`` maps an uploaded spreadsheet export
to people.  A professional-network connections export (``First Name``,
``Last Name``, ``Connected On`` columns) is detected and mapped with its own
preset; any other file goes through the generic column map.
"""

from __future__ import annotations

import csv
import io
import logging
import re

from rolodex.connectors._normalize import split_name
from rolodex.connectors.base import (
    AuthKind,
    Connector,
    FileImportCapable,
    NormalizedPerson,
    SocialProfile,
    SyncRequest,
    SyncResult,
)

logger = logging.getLogger(__name__)

GENERIC_COLUMNS: dict[str, str] = {
    "first_name": "first_name",
    "firstname": "first_name",
    "first name": "first_name",
    "last_name": "last_name",
    "lastname": "last_name",
    "last name": "last_name",
    "name": "display_name",
    "full name": "display_name",
    "fullname": "display_name",
    "email": "email",
    "email address": "email",
    "e_mail": "email",
    "phone": "phone",
    "phone number": "phone",
    "telephone": "phone",
    "company": "company_name",
    "company name": "company_name",
    "organization": "company_name",
    "title": "job_title",
    "job title": "job_title",
    "position": "job_title",
    "role": "job_title",
    "location": "location",
    "city": "location",
    "address": "location",
    "bio": "bio",
    "notes": "bio",
    "description": "bio",
    "website": "website",
    "url": "website",
    "linkedin": "linkedin_url",
    "linkedin url": "linkedin_url",
    "twitter": "twitter_handle",
    "twitter handle": "twitter_handle",
}

LINKEDIN_COLUMNS: dict[str, str] = {
    "first name": "first_name",
    "last name": "last_name",
    "email address": "email",
    "company": "company_name",
    "position": "job_title",
    "connected on": "connected_on",
    "url": "linkedin_url",
}

PRESETS: dict[str, dict[str, str]] = {"generic": GENERIC_COLUMNS, "linkedin": LINKEDIN_COLUMNS}

_PERSON_FIELDS = (
    "first_name",
    "last_name",
    "display_name",
    "email",
    "phone",
    "company_name",
    "job_title",
    "location",
    "bio",
)
# Recognized columns with no person field of their own
_CUSTOM_FIELDS = ("website", "connected_on")
_WHITESPACE = re.compile(r"\s+")


def normalize_header(header: str) -> str:
    return _WHITESPACE.sub(" ", header.strip().lower())


def detect_preset(headers: list[str]) -> str:
    normalized = {normalize_header(header) for header in headers}
    if {"first name", "last name", "connected on"} <= normalized:
        return "linkedin"
    return "generic"


def row_to_person(row: dict[str, str], source: str) -> NormalizedPerson:
    """Build a person from a row already mapped to field names."""
    fields = {name: row[name] for name in _PERSON_FIELDS if row.get(name)}
    if not fields.get("first_name") and fields.get("display_name"):
        first, last = split_name(fields["display_name"])
        fields["first_name"] = first
        if last is not None and not fields.get("last_name"):
            fields["last_name"] = last

    profiles: list[SocialProfile] = []
    if row.get("linkedin_url"):
        profiles.append(SocialProfile(platform="linkedin", profile_url=row["linkedin_url"]))
    if row.get("twitter_handle"):
        profiles.append(
            SocialProfile(platform="twitter", username=row["twitter_handle"].removeprefix("@"))
        )

    custom = {name: row[name] for name in _CUSTOM_FIELDS if row.get(name)}
    return NormalizedPerson(
        source=source,
        social_profiles=profiles,
        custom_data=custom or None,
        **fields,
    )


class CsvImportConnector(Connector, FileImportCapable):
    """Imports people from an uploaded CSV file."""

    @property
    def id(self) -> str:
        return "csv"

    @property
    def name(self) -> str:
        return "CSV Import"

    @property
    def description(self) -> str:
        return "Import contacts from a CSV file. Supports LinkedIn exports."

    @property
    def auth(self) -> AuthKind:
        return "file"

    async def sync(self, request: SyncRequest) -> SyncResult:
        del request
        return SyncResult(cursor=None)

    def parse_file(self, data: bytes, filename: str) -> SyncResult:
        text = data.decode("utf-8-sig", errors="replace")
        rows = [
            [value.strip() for value in row]
            for row in csv.reader(io.StringIO(text), skipinitialspace=True)
            if any(value.strip() for value in row)
        ]
        if len(rows) < 2:
            return SyncResult(cursor=None)

        headers = [normalize_header(header) for header in rows[0]]
        preset = detect_preset(headers)
        column_map = PRESETS[preset]
        source = f"csv:{filename}"

        people: list[NormalizedPerson] = []
        skipped = 0
        for values in rows[1:]:
            mapped: dict[str, str] = {}
            for header, value in zip(headers, values, strict=False):
                field = column_map.get(header)
                if field is not None and value:
                    mapped[field] = value
            if not (mapped.get("first_name") or mapped.get("display_name") or mapped.get("email")):
                skipped += 1
                continue
            people.append(row_to_person(mapped, source))

        logger.info(
            "Parsed %s with %s preset: %d people, %d rows skipped",
            filename,
            preset,
            len(people),
            skipped,
        )
        return SyncResult(people=people, cursor=None)
