"""Persistence contracts for integrations, run logs and the relationship graph.

The sync engine reads and writes through two protocols:

- ``IntegrationStore``: integration rows, sync logs, the trigger ledger and
  the per-integration run lock.
- ``GraphStore``: canonical people, companies, interactions and their links.

``rolodex.pg_store`` implements both on PostgreSQL; ``rolodex.testing``
provides in-memory versions.
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field

from rolodex.connectors.base import NormalizedInteraction, NormalizedPerson, SocialProfile

IntegrationStatus = Literal["active", "error"]
SyncLogStatus = Literal["running", "completed", "failed"]

DEFAULT_AUTO_SYNC_TIME = "02:00"

# Person columns automated sync may overwrite.  Relationship type/strength and
# custom data are user-curated and never touched on update.
PERSON_MERGE_FIELDS = (
    "first_name",
    "last_name",
    "display_name",
    "phone",
    "bio",
    "location",
    "avatar_url",
)


class Integration(BaseModel):
    """One connected provider account in a workspace."""

    model_config = ConfigDict(extra="ignore")

    id: str
    workspace_id: str
    provider: str
    access_token_encrypted: str | None = None
    refresh_token_encrypted: str | None = None
    token_expires_at: datetime | None = None
    sync_cursor: dict[str, Any] | None = None
    status: IntegrationStatus = "active"
    last_sync_error: str | None = None
    last_synced_at: datetime | None = None
    auto_sync_enabled: bool = False
    auto_sync_time_local: str | None = None
    auto_sync_timezone: str | None = None
    account_email: str | None = None
    account_name: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AutoSyncCandidate(BaseModel):
    """An auto-sync-enabled active integration joined to its workspace timezone."""

    model_config = ConfigDict(extra="ignore")

    integration_id: str
    workspace_id: str
    provider: str
    auto_sync_time_local: str | None = None
    auto_sync_timezone: str | None = None
    workspace_timezone: str | None = None


class SyncLog(BaseModel):
    """Append-only record of one run."""

    model_config = ConfigDict(extra="ignore")

    id: str
    integration_id: str
    workspace_id: str
    status: SyncLogStatus = "running"
    items_synced: int = 0
    items_created: int = 0
    items_updated: int = 0
    error_message: str | None = None
    started_at: datetime
    completed_at: datetime | None = None


class StoredPerson(BaseModel):
    """The subset of a canonical person the gateway merges against."""

    model_config = ConfigDict(extra="ignore")

    id: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    display_name: str | None = None
    phone: str | None = None
    bio: str | None = None
    location: str | None = None
    avatar_url: str | None = None
    sources: list[str] = Field(default_factory=list)
    source_ids: dict[str, str] = Field(default_factory=dict)


class IntegrationStore(Protocol):
    """Integration rows, sync logs, trigger ledger and run locks."""

    async def get_integration(self, integration_id: str, workspace_id: str) -> Integration | None:
        """Load an integration scoped to its workspace."""
        ...

    async def get_integration_by_provider(
        self, workspace_id: str, provider: str
    ) -> Integration | None:
        ...

    async def upsert_integration(
        self,
        workspace_id: str,
        provider: str,
        *,
        access_token_encrypted: str | None,
        refresh_token_encrypted: str | None,
        token_expires_at: datetime | None,
        account_email: str | None = None,
        account_name: str | None = None,
    ) -> Integration:
        """Create or reconnect the (workspace, provider) integration.

        Reconnecting replaces the tokens, sets status ``active`` and clears
        the cursor and last error.
        """
        ...

    async def mark_sync_success(
        self, integration_id: str, cursor: dict[str, Any] | None, synced_at: datetime
    ) -> None:
        ...

    async def mark_sync_error(self, integration_id: str, message: str) -> None:
        ...

    async def update_auto_sync(
        self,
        integration_id: str,
        workspace_id: str,
        *,
        enabled: bool,
        time_local: str | None,
        timezone: str | None,
    ) -> Integration | None:
        ...

    async def delete_integration(self, integration_id: str, workspace_id: str) -> bool:
        """Delete an integration and its trigger-ledger rows."""
        ...

    async def list_auto_sync_candidates(self) -> list[AutoSyncCandidate]:
        ...

    async def create_sync_log(
        self, integration_id: str, workspace_id: str, started_at: datetime
    ) -> str:
        ...

    async def complete_sync_log(
        self,
        log_id: str,
        *,
        items_synced: int,
        items_created: int,
        items_updated: int,
        completed_at: datetime,
    ) -> None:
        ...

    async def fail_sync_log(self, log_id: str, error_message: str, completed_at: datetime) -> None:
        ...

    async def claim_trigger_key(self, key: str, integration_id: str) -> bool:
        """Record *key*; False when it was already claimed."""
        ...

    def run_lock(self, integration_id: str) -> AbstractAsyncContextManager[bool]:
        """Non-blocking per-integration lock; yields whether it was acquired."""
        ...


class GraphStore(Protocol):
    """Canonical graph writes used by the sync gateway."""

    async def find_person_by_email(self, workspace_id: str, email: str) -> StoredPerson | None:
        """Case-insensitive lookup by email within the workspace."""
        ...

    async def insert_person(self, workspace_id: str, person: NormalizedPerson) -> str:
        ...

    async def update_person(
        self,
        person_id: str,
        fields: dict[str, str],
        *,
        source: str,
        source_id: str | None,
    ) -> None:
        """Apply merge fields and record *source* provenance."""
        ...

    async def find_company_by_name(self, workspace_id: str, name: str) -> str | None:
        ...

    async def insert_company(self, workspace_id: str, name: str, domain: str | None) -> str:
        ...

    async def upsert_person_company(
        self, person_id: str, company_id: str, role: str | None
    ) -> None:
        ...

    async def upsert_social_profile(self, person_id: str, profile: SocialProfile) -> None:
        ...

    async def find_interaction(
        self, workspace_id: str, source: str, source_id: str
    ) -> str | None:
        ...

    async def insert_interaction(
        self, workspace_id: str, interaction: NormalizedInteraction
    ) -> str:
        ...

    async def link_participant(self, interaction_id: str, person_id: str) -> None:
        """Idempotently link a person to an interaction."""
        ...
