"""Microsoft 365 mail connector (Graph ``messages/delta``).

Cursor shape: ``{"mailDeltaLink": "<url>"}``.  At most 200 messages are
imported per run.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from rolodex.connectors._normalize import (
    PeopleCollector,
    as_non_empty_string,
    lower_email,
    parse_datetime,
)
from rolodex.connectors.base import NormalizedInteraction, SyncRequest, SyncResult
from rolodex.connectors.cursor import collect_with_full_resync
from rolodex.connectors.microsoft_graph import GRAPH_BASE_URL, MicrosoftGraphConnector

CURSOR_KEY = "mailDeltaLink"
MAX_MESSAGES_PER_RUN = 200
MAIL_DELTA_URL = (
    f"{GRAPH_BASE_URL}/me/messages/delta"
    "?$select=id,subject,bodyPreview,from,toRecipients,ccRecipients,"
    "receivedDateTime,webLink,conversationId&$top=50"
)


class MicrosoftMailConnector(MicrosoftGraphConnector):
    """Imports senders and recipients as people and messages as interactions."""

    @property
    def id(self) -> str:
        return "microsoft-mail"

    @property
    def name(self) -> str:
        return "Microsoft Mail"

    @property
    def description(self) -> str:
        return "Import email interactions from Microsoft 365."

    async def sync(self, request: SyncRequest) -> SyncResult:
        access_token = await self.resolve_access_token(request)

        async def collect(cursor: dict[str, Any]) -> SyncResult:
            people = PeopleCollector("microsoft-mail")
            interactions: list[NormalizedInteraction] = []

            def handle(message: dict[str, Any]) -> bool:
                if "@removed" in message:
                    return False
                interaction = _message_to_interaction(message, people)
                if interaction is not None:
                    interactions.append(interaction)
                return True

            next_cursor, has_more = await self._collect_delta(
                access_token,
                cursor,
                cursor_key=CURSOR_KEY,
                initial_url=MAIL_DELTA_URL,
                handle_item=handle,
                max_items=MAX_MESSAGES_PER_RUN,
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


def _address(recipient: Any) -> tuple[str | None, str | None]:
    if not isinstance(recipient, dict):
        return None, None
    email_address = recipient.get("emailAddress")
    if not isinstance(email_address, dict):
        return None, None
    return lower_email(email_address.get("address")), as_non_empty_string(
        email_address.get("name")
    )


def _message_to_interaction(
    message: dict[str, Any],
    people: PeopleCollector,
) -> NormalizedInteraction | None:
    participants: list[str] = []

    sender_email, sender_name = _address(message.get("from"))
    if sender_email is not None:
        people.add(sender_email, sender_name)
        participants.append(sender_email)

    for field in ("toRecipients", "ccRecipients"):
        for recipient in message.get(field) or []:
            email, name = _address(recipient)
            if email is None:
                continue
            people.add(email, name)
            if email not in participants:
                participants.append(email)

    if not participants:
        return None

    occurred_at = parse_datetime(message.get("receivedDateTime"))
    return NormalizedInteraction(
        interaction_type="email",
        direction="inbound",
        subject=as_non_empty_string(message.get("subject")),
        content=as_non_empty_string(message.get("bodyPreview")),
        occurred_at=occurred_at if occurred_at is not None else datetime.now(UTC),
        participant_emails=participants,
        source="microsoft-mail",
        source_id=as_non_empty_string(message.get("id")),
        source_url=as_non_empty_string(message.get("webLink")),
        metadata={"conversationId": message.get("conversationId")},
    )
