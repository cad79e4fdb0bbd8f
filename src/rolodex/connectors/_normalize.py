"""Small value-mapping helpers shared by the provider connectors."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import Any

from rolodex.connectors.base import NormalizedPerson

_WHITESPACE = re.compile(r"\s+")


def as_non_empty_string(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    return normalized or None


def split_name(full_name: str) -> tuple[str, str | None]:
    """Split a display name into (first token, remaining tokens or None)."""
    parts = _WHITESPACE.split(full_name.strip())
    return parts[0], " ".join(parts[1:]) or None


def person_from_email(
    email: str,
    *,
    source: str,
    name: str | None = None,
) -> NormalizedPerson:
    """Build a person from an address, splitting *name* when one is known."""
    person = NormalizedPerson(email=email, source=source)
    cleaned = as_non_empty_string(name)
    if cleaned is not None and cleaned.lower() != email.lower():
        first, last = split_name(cleaned)
        person.first_name = first
        person.last_name = last
        person.display_name = cleaned
    return person


def parse_datetime(value: Any) -> datetime | None:
    """Parse an RFC 3339 timestamp; naive values are taken as UTC."""
    raw = as_non_empty_string(value)
    if raw is None:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    # Graph emits seven fractional digits, fromisoformat accepts at most six
    raw = re.sub(r"(\.\d{6})\d+", r"\1", raw)
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def duration_minutes(start: datetime | None, end: datetime | None) -> int | None:
    if start is None or end is None:
        return None
    return max(0, round((end - start).total_seconds() / 60))


def lower_email(value: Any) -> str | None:
    email = as_non_empty_string(value)
    return email.lower() if email is not None else None


class PeopleCollector:
    """Accumulates one person per distinct (lower-cased) email within a run."""

    def __init__(self, source: str) -> None:
        self.source = source
        self.people: list[NormalizedPerson] = []
        self._seen: set[str] = set()

    def add(self, email: str, name: str | None = None) -> None:
        key = email.lower()
        if key in self._seen:
            return
        self._seen.add(key)
        self.people.append(person_from_email(key, source=self.source, name=name))
