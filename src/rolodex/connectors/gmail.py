"""Gmail connector: mail-history incremental fetch with a windowed full fallback.

Cursor shape: ``{"historyId": "<id>"}``.

With a stored history id only messages added since that id are fetched.  When
the history call fails (typically because the id is too old) the run falls
back to listing the last 90 days of mail instead of failing.  Both paths stop
after 200 messages.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime, timedelta
from email.utils import getaddresses
from typing import Any

from rolodex.connectors._normalize import PeopleCollector, as_non_empty_string
from rolodex.connectors.base import NormalizedInteraction, SyncRequest, SyncResult
from rolodex.connectors.google import GoogleConnector
from rolodex.connectors.http import json_object, raise_for_provider_status

logger = logging.getLogger(__name__)

GMAIL_API_BASE_URL = "https://gmail.googleapis.com/gmail/v1/users/me"
GMAIL_HISTORY_URL = f"{GMAIL_API_BASE_URL}/history"
GMAIL_MESSAGES_URL = f"{GMAIL_API_BASE_URL}/messages"
GMAIL_PROFILE_URL = f"{GMAIL_API_BASE_URL}/profile"

MAX_MESSAGES_PER_RUN = 200
FULL_SYNC_WINDOW = timedelta(days=90)
LIST_PAGE_SIZE = 50
HISTORY_PAGE_SIZE = 100
METADATA_HEADERS = ("From", "To", "Cc", "Subject", "Date")

_EMAIL_PATTERN = re.compile(r"[\w.+-]+@[\w.-]+\.\w+")
_NAME_NOISE = re.compile(r"[\"'<>]")


def parse_address_header(value: str) -> list[tuple[str, str | None]]:
    """Parse a From/To/Cc header into ``(lower-cased email, name)`` pairs.

    Quoted display names and angle-bracket addresses are supported; entries
    without a recognizable address are dropped.
    """
    parsed: list[tuple[str, str | None]] = []
    for name, address in getaddresses([value]):
        email = address.strip().lower() if "@" in address else None
        if email is None:
            match = _EMAIL_PATTERN.search(f"{name} {address}")
            if match is None:
                continue
            email = match.group(0).lower()
            name = ""
        cleaned = _NAME_NOISE.sub("", name).strip()
        parsed.append((email, cleaned or None))
    return parsed


class GmailConnector(GoogleConnector):
    """Imports email senders/recipients as people and messages as interactions."""

    @property
    def id(self) -> str:
        return "gmail"

    @property
    def name(self) -> str:
        return "Gmail"

    @property
    def description(self) -> str:
        return "Import emails and contacts from Gmail."

    async def sync(self, request: SyncRequest) -> SyncResult:
        access_token = await self.resolve_access_token(request)
        collected = _MessageCollector()

        history_id = as_non_empty_string(str(request.cursor.get("historyId") or ""))
        if history_id is not None:
            history = await self._collect_history(access_token, history_id, collected)
            if history is not None:
                next_history_id, has_more = history
                return collected.result(
                    {**request.cursor, "historyId": next_history_id}, has_more=has_more
                )
            logger.warning(
                "Gmail history fetch failed for historyId=%s; falling back to a %d-day fetch",
                history_id,
                FULL_SYNC_WINDOW.days,
            )

        await self._collect_window(access_token, collected)
        new_history_id = await self._current_history_id(access_token)
        return collected.result({**request.cursor, "historyId": new_history_id})

    async def _collect_history(
        self,
        access_token: str,
        history_id: str,
        collected: _MessageCollector,
    ) -> tuple[str, bool] | None:
        """Ingest messages added since *history_id*.

        Returns ``(next historyId, has_more)``, or ``None`` when the first page
        failed. A run stopped by the message cap or by a failed later page
        resumes from the last history record it fully consumed.
        """
        message_ids: list[str] = []
        latest_history_id = history_id
        resume_from = history_id
        page_token: str | None = None
        stopped_early = False
        while True:
            params: dict[str, Any] = {
                "startHistoryId": history_id,
                "historyTypes": "messageAdded",
                "maxResults": HISTORY_PAGE_SIZE,
            }
            if page_token is not None:
                params["pageToken"] = page_token
            response = await self._get(GMAIL_HISTORY_URL, access_token, params=params)
            if not response.is_success:
                if page_token is None:
                    return None
                stopped_early = True
                break

            payload = json_object(response, provider=self.name)
            for record in payload.get("history") or []:
                if len(message_ids) >= MAX_MESSAGES_PER_RUN:
                    stopped_early = True
                    break
                for added in record.get("messagesAdded") or []:
                    message_id = as_non_empty_string((added.get("message") or {}).get("id"))
                    if message_id is not None and message_id not in message_ids:
                        message_ids.append(message_id)
                resume_from = str(record.get("id") or resume_from)
            if stopped_early:
                break
            latest_history_id = str(payload.get("historyId") or latest_history_id)
            page_token = as_non_empty_string(payload.get("nextPageToken"))
            if page_token is None:
                break
            if len(message_ids) >= MAX_MESSAGES_PER_RUN:
                stopped_early = True
                break

        for message_id in message_ids:
            message = await self._fetch_message(access_token, message_id)
            if message is not None:
                collected.add_message(message)
        if stopped_early:
            logger.info("Gmail history run stopped early; resuming from historyId=%s", resume_from)
            return resume_from, True
        return latest_history_id, False

    async def _collect_window(self, access_token: str, collected: _MessageCollector) -> None:
        since = datetime.now(UTC) - FULL_SYNC_WINDOW
        query = f"after:{int(since.timestamp())}"
        page_token: str | None = None
        processed = 0
        while processed < MAX_MESSAGES_PER_RUN:
            params: dict[str, Any] = {"maxResults": LIST_PAGE_SIZE, "q": query}
            if page_token is not None:
                params["pageToken"] = page_token
            response = await self._get(GMAIL_MESSAGES_URL, access_token, params=params)
            raise_for_provider_status(response, provider=self.name)
            payload = json_object(response, provider=self.name)

            for stub in payload.get("messages") or []:
                if processed >= MAX_MESSAGES_PER_RUN:
                    break
                message_id = as_non_empty_string(stub.get("id"))
                if message_id is None:
                    continue
                message = await self._fetch_message(access_token, message_id)
                if message is not None:
                    collected.add_message(message)
                    processed += 1

            page_token = as_non_empty_string(payload.get("nextPageToken"))
            if page_token is None:
                break

    async def _fetch_message(self, access_token: str, message_id: str) -> dict[str, Any] | None:
        response = await self._get(
            f"{GMAIL_MESSAGES_URL}/{message_id}",
            access_token,
            params={"format": "metadata", "metadataHeaders": list(METADATA_HEADERS)},
        )
        if not response.is_success:
            logger.debug("Skipping Gmail message %s (HTTP %s)", message_id, response.status_code)
            return None
        try:
            payload = response.json()
        except ValueError:
            return None
        return payload if isinstance(payload, dict) else None

    async def _current_history_id(self, access_token: str) -> str | None:
        response = await self._get(GMAIL_PROFILE_URL, access_token)
        if not response.is_success:
            logger.warning(
                "Gmail profile fetch failed (HTTP %s); next run will repeat the full fetch",
                response.status_code,
            )
            return None
        payload = json_object(response, provider=self.name)
        history_id = payload.get("historyId")
        return str(history_id) if history_id else None


class _MessageCollector:
    def __init__(self) -> None:
        self.people = PeopleCollector("gmail")
        self.interactions: list[NormalizedInteraction] = []

    def add_message(self, message: dict[str, Any]) -> None:
        headers = _headers(message)
        participants: list[str] = []
        for header in ("from", "to", "cc"):
            for email, name in parse_address_header(headers.get(header, "")):
                self.people.add(email, name)
                if email not in participants:
                    participants.append(email)

        # Messages with no resolvable address still contribute people above
        if not participants:
            return

        message_id = as_non_empty_string(message.get("id"))
        self.interactions.append(
            NormalizedInteraction(
                interaction_type="email",
                direction="inbound",
                subject=headers.get("subject") or None,
                content=as_non_empty_string(message.get("snippet")),
                occurred_at=_internal_date(message.get("internalDate")),
                participant_emails=participants,
                source="gmail",
                source_id=message_id,
                metadata={"threadId": message.get("threadId")},
            )
        )

    def result(self, cursor: dict[str, Any], *, has_more: bool = False) -> SyncResult:
        return SyncResult(
            people=self.people.people,
            interactions=self.interactions,
            cursor=cursor,
            has_more=has_more,
        )


def _headers(message: dict[str, Any]) -> dict[str, str]:
    payload = message.get("payload")
    raw_headers = payload.get("headers") if isinstance(payload, dict) else None
    headers: dict[str, str] = {}
    for item in raw_headers or []:
        if not isinstance(item, dict):
            continue
        name = item.get("name")
        value = item.get("value")
        if isinstance(name, str) and isinstance(value, str):
            headers.setdefault(name.lower(), value)
    return headers


def _internal_date(value: Any) -> datetime:
    try:
        millis = int(value)
    except (TypeError, ValueError):
        return datetime.now(UTC)
    return datetime.fromtimestamp(millis / 1000, tz=UTC)
