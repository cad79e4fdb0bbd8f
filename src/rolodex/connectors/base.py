"""Connector contract and the normalized record shapes connectors emit.

Every provider connector fetches records from one external account and maps
them into ``NormalizedPerson`` / ``NormalizedInteraction`` values.  Cursor
state is a provider-owned dict: only the connector that produced it reads it.

Optional capabilities are mixins checked with ``isinstance``:

- ``OAuthCapable``: authorization URL + code exchange
- ``FileImportCapable``: parse an uploaded file into a ``SyncResult``
"""

from __future__ import annotations

import abc
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

AuthKind = Literal["oauth", "file", "none"]
InteractionType = Literal["email", "meeting", "message", "call"]
Direction = Literal["inbound", "outbound"]


class SocialProfile(BaseModel):
    """One social account attached to a person."""

    model_config = ConfigDict(extra="forbid")

    platform: str = Field(min_length=1)
    profile_url: str | None = None
    username: str | None = None


class NormalizedPerson(BaseModel):
    """Provider-neutral person record.  Only ``source`` is required."""

    model_config = ConfigDict(extra="forbid")

    source: str = Field(min_length=1)
    source_id: str | None = None
    email: str | None = None
    phone: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    display_name: str | None = None
    bio: str | None = None
    location: str | None = None
    avatar_url: str | None = None
    company_name: str | None = None
    company_domain: str | None = None
    job_title: str | None = None
    social_profiles: list[SocialProfile] = Field(default_factory=list)
    custom_data: dict[str, Any] | None = None

    @field_validator(
        "email",
        "phone",
        "first_name",
        "last_name",
        "display_name",
        "bio",
        "location",
        "avatar_url",
        "company_name",
        "company_domain",
        "job_title",
    )
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None


class NormalizedInteraction(BaseModel):
    """Provider-neutral interaction record (an email, meeting, message or call)."""

    model_config = ConfigDict(extra="forbid")

    interaction_type: InteractionType
    occurred_at: datetime
    source: str = Field(min_length=1)
    source_id: str | None = None
    source_url: str | None = None
    direction: Direction | None = None
    subject: str | None = None
    content: str | None = None
    duration_minutes: int | None = None
    participant_emails: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class SyncResult(BaseModel):
    """Output of one connector invocation."""

    model_config = ConfigDict(extra="forbid")

    people: list[NormalizedPerson] = Field(default_factory=list)
    interactions: list[NormalizedInteraction] = Field(default_factory=list)
    cursor: dict[str, Any] | None = None
    # True when a capped run stopped early; the cursor resumes from the pending page.
    has_more: bool = False


class SyncRequest(BaseModel):
    """Decrypted credentials and stored state handed to ``Connector.sync``."""

    model_config = ConfigDict(extra="forbid")

    workspace_id: str
    access_token: str | None = None
    refresh_token: str | None = None
    cursor: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def __repr__(self) -> str:
        return (
            f"SyncRequest(workspace_id={self.workspace_id!r}, "
            f"access_token={'<set>' if self.access_token else None}, "
            f"refresh_token={'<set>' if self.refresh_token else None}, "
            f"cursor_keys={sorted(self.cursor)})"
        )

    __str__ = __repr__


class OAuthTokens(BaseModel):
    """Result of an authorization-code or refresh-token exchange."""

    model_config = ConfigDict(extra="forbid")

    access_token: str = Field(min_length=1)
    refresh_token: str | None = None
    expires_at: datetime | None = None
    account_email: str | None = None
    account_name: str | None = None


class Connector(abc.ABC):
    """Contract implemented by every provider connector."""

    @property
    @abc.abstractmethod
    def id(self) -> str:
        """Stable provider id, e.g. ``gmail``."""
        ...

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Human-readable provider name."""
        ...

    @property
    def description(self) -> str:
        return ""

    @property
    @abc.abstractmethod
    def auth(self) -> AuthKind:
        """How the integration authenticates."""
        ...

    @abc.abstractmethod
    async def sync(self, request: SyncRequest) -> SyncResult:
        """Fetch changes since ``request.cursor`` and return a normalized batch."""
        ...

    async def shutdown(self) -> None:
        """Release connector resources."""
        return None


class OAuthCapable(abc.ABC):
    """Connector capability: OAuth authorization-code flow."""

    @abc.abstractmethod
    def get_auth_url(self, redirect_uri: str, state: str) -> str:
        """Build the provider consent URL."""
        ...

    @abc.abstractmethod
    async def handle_callback(self, code: str, redirect_uri: str) -> OAuthTokens:
        """Exchange an authorization code for tokens."""
        ...


class FileImportCapable(abc.ABC):
    """Connector capability: import records from an uploaded file."""

    @abc.abstractmethod
    def parse_file(self, data: bytes, filename: str) -> SyncResult:
        """Parse *data* into a normalized batch."""
        ...
