"""PostgreSQL implementations of ``IntegrationStore`` and ``GraphStore``.

All SQL is raw asyncpg.  JSONB columns are written with ``json.dumps`` and a
``::jsonb`` cast and read back through ``decode_jsonb``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from rolodex.connectors.base import NormalizedInteraction, NormalizedPerson, SocialProfile
from rolodex.db import Database, decode_jsonb
from rolodex.store import (
    DEFAULT_AUTO_SYNC_TIME,
    PERSON_MERGE_FIELDS,
    AutoSyncCandidate,
    Integration,
    StoredPerson,
)

logger = logging.getLogger(__name__)

SCHEMA_DDL: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS workspaces (
        id         UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        name       TEXT NOT NULL,
        settings   JSONB NOT NULL DEFAULT '{}',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS integrations (
        id                      UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        workspace_id            UUID NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
        provider                TEXT NOT NULL,
        status                  TEXT NOT NULL DEFAULT 'active',
        access_token_encrypted  TEXT,
        refresh_token_encrypted TEXT,
        token_expires_at        TIMESTAMPTZ,
        last_synced_at          TIMESTAMPTZ,
        last_sync_error         TEXT,
        sync_cursor             JSONB DEFAULT '{}',
        account_email           TEXT,
        account_name            TEXT,
        metadata                JSONB DEFAULT '{}',
        auto_sync_enabled       BOOLEAN NOT NULL DEFAULT false,
        auto_sync_time_local    TIME NOT NULL DEFAULT '02:00:00',
        auto_sync_timezone      TEXT,
        created_at              TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at              TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (workspace_id, provider)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sync_logs (
        id             UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        integration_id UUID NOT NULL REFERENCES integrations(id) ON DELETE CASCADE,
        workspace_id   UUID NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
        status         TEXT NOT NULL,
        items_synced   INTEGER NOT NULL DEFAULT 0,
        items_created  INTEGER NOT NULL DEFAULT 0,
        items_updated  INTEGER NOT NULL DEFAULT 0,
        error_message  TEXT,
        started_at     TIMESTAMPTZ NOT NULL DEFAULT now(),
        completed_at   TIMESTAMPTZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sync_trigger_keys (
        idempotency_key TEXT PRIMARY KEY,
        integration_id  UUID NOT NULL REFERENCES integrations(id) ON DELETE CASCADE,
        created_at      TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS people (
        id                    UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        workspace_id          UUID NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
        email                 TEXT,
        phone                 TEXT,
        first_name            TEXT,
        last_name             TEXT,
        display_name          TEXT,
        avatar_url            TEXT,
        relationship_type     TEXT DEFAULT 'contact',
        relationship_strength REAL,
        bio                   TEXT,
        location              TEXT,
        custom_data           JSONB DEFAULT '{}',
        sources               TEXT[] DEFAULT '{}',
        source_ids            JSONB DEFAULT '{}',
        created_at            TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at            TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (workspace_id, email)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS companies (
        id           UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        workspace_id UUID NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
        name         TEXT NOT NULL,
        domain       TEXT,
        created_at   TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (workspace_id, name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS person_companies (
        id           UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        person_id    UUID NOT NULL REFERENCES people(id) ON DELETE CASCADE,
        company_id   UUID NOT NULL REFERENCES companies(id) ON DELETE CASCADE,
        workspace_id UUID NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
        role         TEXT,
        is_current   BOOLEAN DEFAULT TRUE,
        UNIQUE (person_id, company_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS social_profiles (
        id           UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        person_id    UUID NOT NULL REFERENCES people(id) ON DELETE CASCADE,
        workspace_id UUID NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
        platform     TEXT NOT NULL,
        profile_url  TEXT,
        username     TEXT,
        UNIQUE (person_id, platform)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS interactions (
        id                 UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        workspace_id       UUID NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
        interaction_type   TEXT NOT NULL,
        direction          TEXT,
        subject            TEXT,
        content            TEXT,
        occurred_at        TIMESTAMPTZ NOT NULL,
        duration_minutes   INTEGER,
        source_integration TEXT,
        source_id          TEXT,
        source_url         TEXT,
        metadata           JSONB DEFAULT '{}',
        created_at         TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE (workspace_id, source_integration, source_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS interaction_people (
        id             UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        interaction_id UUID NOT NULL REFERENCES interactions(id) ON DELETE CASCADE,
        person_id      UUID NOT NULL REFERENCES people(id) ON DELETE CASCADE,
        workspace_id   UUID NOT NULL REFERENCES workspaces(id) ON DELETE CASCADE,
        role           TEXT NOT NULL DEFAULT 'participant',
        UNIQUE (interaction_id, person_id, role)
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_integrations_workspace_auto_sync_status
    ON integrations (workspace_id, auto_sync_enabled, status)
    """,
)

_INTEGRATION_COLUMNS = """
    id::text AS id, workspace_id::text AS workspace_id, provider, status,
    access_token_encrypted, refresh_token_encrypted, token_expires_at,
    last_synced_at, last_sync_error, sync_cursor, account_email, account_name,
    metadata, auto_sync_enabled,
    to_char(auto_sync_time_local, 'HH24:MI') AS auto_sync_time_local,
    auto_sync_timezone
"""


async def ensure_schema(db: Database) -> None:
    """Create every table the sync engine reads or writes when missing."""
    for statement in SCHEMA_DDL:
        await db.execute(statement)
    logger.info("Sync schema ensured (%d statements)", len(SCHEMA_DDL))


def _integration_from_row(row: Any) -> Integration:
    data = dict(row)
    data["sync_cursor"] = decode_jsonb(data.get("sync_cursor"))
    data["metadata"] = decode_jsonb(data.get("metadata")) or {}
    return Integration.model_validate(data)


def _person_from_row(row: Any) -> StoredPerson:
    data = dict(row)
    data["sources"] = list(data.get("sources") or [])
    data["source_ids"] = decode_jsonb(data.get("source_ids")) or {}
    return StoredPerson.model_validate(data)


def _time_local_param(value: str | None) -> str:
    return f"{value or DEFAULT_AUTO_SYNC_TIME}:00"


class PostgresIntegrationStore:
    """``IntegrationStore`` over the ``integrations`` / ``sync_logs`` tables."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def get_integration(self, integration_id: str, workspace_id: str) -> Integration | None:
        row = await self._db.fetchrow(
            f"SELECT {_INTEGRATION_COLUMNS} FROM integrations "
            "WHERE id = $1::uuid AND workspace_id = $2::uuid",
            integration_id,
            workspace_id,
        )
        return _integration_from_row(row) if row is not None else None

    async def get_integration_by_provider(
        self, workspace_id: str, provider: str
    ) -> Integration | None:
        row = await self._db.fetchrow(
            f"SELECT {_INTEGRATION_COLUMNS} FROM integrations "
            "WHERE workspace_id = $1::uuid AND provider = $2",
            workspace_id,
            provider,
        )
        return _integration_from_row(row) if row is not None else None

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
        row = await self._db.fetchrow(
            f"""
            INSERT INTO integrations
                (workspace_id, provider, status, access_token_encrypted,
                 refresh_token_encrypted, token_expires_at, account_email, account_name,
                 sync_cursor)
            VALUES ($1::uuid, $2, 'active', $3, $4, $5, $6, $7, '{{}}'::jsonb)
            ON CONFLICT (workspace_id, provider) DO UPDATE SET
                status                  = 'active',
                access_token_encrypted  = EXCLUDED.access_token_encrypted,
                refresh_token_encrypted = EXCLUDED.refresh_token_encrypted,
                token_expires_at        = EXCLUDED.token_expires_at,
                account_email           = EXCLUDED.account_email,
                account_name            = EXCLUDED.account_name,
                sync_cursor             = '{{}}'::jsonb,
                last_sync_error         = NULL,
                updated_at              = now()
            RETURNING {_INTEGRATION_COLUMNS}
            """,
            workspace_id,
            provider,
            access_token_encrypted,
            refresh_token_encrypted,
            token_expires_at,
            account_email,
            account_name,
        )
        return _integration_from_row(row)

    async def mark_sync_success(
        self, integration_id: str, cursor: dict[str, Any] | None, synced_at: datetime
    ) -> None:
        await self._db.execute(
            """
            UPDATE integrations
            SET sync_cursor = $2::jsonb, last_synced_at = $3, status = 'active',
                last_sync_error = NULL, updated_at = now()
            WHERE id = $1::uuid
            """,
            integration_id,
            json.dumps(cursor) if cursor is not None else None,
            synced_at,
        )

    async def mark_sync_error(self, integration_id: str, message: str) -> None:
        await self._db.execute(
            """
            UPDATE integrations
            SET status = 'error', last_sync_error = $2, updated_at = now()
            WHERE id = $1::uuid
            """,
            integration_id,
            message,
        )

    async def update_auto_sync(
        self,
        integration_id: str,
        workspace_id: str,
        *,
        enabled: bool,
        time_local: str | None,
        timezone: str | None,
    ) -> Integration | None:
        row = await self._db.fetchrow(
            f"""
            UPDATE integrations
            SET auto_sync_enabled = $3, auto_sync_time_local = $4::time,
                auto_sync_timezone = $5, updated_at = now()
            WHERE id = $1::uuid AND workspace_id = $2::uuid
            RETURNING {_INTEGRATION_COLUMNS}
            """,
            integration_id,
            workspace_id,
            enabled,
            _time_local_param(time_local),
            timezone,
        )
        return _integration_from_row(row) if row is not None else None

    async def delete_integration(self, integration_id: str, workspace_id: str) -> bool:
        await self._db.execute(
            "DELETE FROM sync_trigger_keys WHERE integration_id = $1::uuid",
            integration_id,
        )
        status = await self._db.execute(
            "DELETE FROM integrations WHERE id = $1::uuid AND workspace_id = $2::uuid",
            integration_id,
            workspace_id,
        )
        return status.endswith(" 1")

    async def list_auto_sync_candidates(self) -> list[AutoSyncCandidate]:
        rows = await self._db.fetch(
            """
            SELECT i.id::text AS integration_id, i.workspace_id::text AS workspace_id,
                   i.provider,
                   to_char(i.auto_sync_time_local, 'HH24:MI') AS auto_sync_time_local,
                   i.auto_sync_timezone,
                   w.settings ->> 'timezone' AS workspace_timezone
            FROM integrations i
            JOIN workspaces w ON w.id = i.workspace_id
            WHERE i.auto_sync_enabled AND i.status = 'active'
            ORDER BY i.id
            """
        )
        return [AutoSyncCandidate.model_validate(dict(row)) for row in rows]

    async def create_sync_log(
        self, integration_id: str, workspace_id: str, started_at: datetime
    ) -> str:
        log_id = await self._db.fetchval(
            """
            INSERT INTO sync_logs (integration_id, workspace_id, status, started_at)
            VALUES ($1::uuid, $2::uuid, 'running', $3)
            RETURNING id::text
            """,
            integration_id,
            workspace_id,
            started_at,
        )
        return str(log_id)

    async def complete_sync_log(
        self,
        log_id: str,
        *,
        items_synced: int,
        items_created: int,
        items_updated: int,
        completed_at: datetime,
    ) -> None:
        await self._db.execute(
            """
            UPDATE sync_logs
            SET status = 'completed', items_synced = $2, items_created = $3,
                items_updated = $4, completed_at = $5
            WHERE id = $1::uuid
            """,
            log_id,
            items_synced,
            items_created,
            items_updated,
            completed_at,
        )

    async def fail_sync_log(self, log_id: str, error_message: str, completed_at: datetime) -> None:
        await self._db.execute(
            """
            UPDATE sync_logs
            SET status = 'failed', error_message = $2, completed_at = $3
            WHERE id = $1::uuid
            """,
            log_id,
            error_message,
            completed_at,
        )

    async def claim_trigger_key(self, key: str, integration_id: str) -> bool:
        claimed = await self._db.fetchval(
            """
            INSERT INTO sync_trigger_keys (idempotency_key, integration_id)
            VALUES ($1, $2::uuid)
            ON CONFLICT (idempotency_key) DO NOTHING
            RETURNING idempotency_key
            """,
            key,
            integration_id,
        )
        return claimed is not None

    @asynccontextmanager
    async def run_lock(self, integration_id: str) -> AsyncIterator[bool]:
        """Session advisory lock keyed on the integration id."""
        async with self._db.acquire() as conn:
            acquired = await conn.fetchval(
                "SELECT pg_try_advisory_lock(hashtextextended($1, 0))", integration_id
            )
            try:
                yield bool(acquired)
            finally:
                if acquired:
                    await conn.execute(
                        "SELECT pg_advisory_unlock(hashtextextended($1, 0))", integration_id
                    )


class PostgresGraphStore:
    """``GraphStore`` over people, companies and interactions."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def find_person_by_email(self, workspace_id: str, email: str) -> StoredPerson | None:
        row = await self._db.fetchrow(
            """
            SELECT id::text AS id, email, first_name, last_name, display_name, phone,
                   bio, location, avatar_url, sources, source_ids
            FROM people
            WHERE workspace_id = $1::uuid AND lower(email) = lower($2)
            LIMIT 1
            """,
            workspace_id,
            email,
        )
        return _person_from_row(row) if row is not None else None

    async def insert_person(self, workspace_id: str, person: NormalizedPerson) -> str:
        source_ids = {person.source: person.source_id} if person.source_id else {}
        person_id = await self._db.fetchval(
            """
            INSERT INTO people
                (workspace_id, email, phone, first_name, last_name, display_name, bio,
                 location, avatar_url, custom_data, sources, source_ids)
            VALUES ($1::uuid, $2, $3, $4, $5, $6, $7, $8, $9, $10::jsonb, $11, $12::jsonb)
            RETURNING id::text
            """,
            workspace_id,
            person.email.lower() if person.email else None,
            person.phone,
            person.first_name or "Unknown",
            person.last_name,
            person.display_name,
            person.bio,
            person.location,
            person.avatar_url,
            json.dumps(person.custom_data or {}),
            [person.source],
            json.dumps(source_ids),
        )
        return str(person_id)

    async def update_person(
        self,
        person_id: str,
        fields: dict[str, str],
        *,
        source: str,
        source_id: str | None,
    ) -> None:
        assignments: list[str] = []
        args: list[Any] = [person_id, source, json.dumps({source: source_id} if source_id else {})]
        for name, value in fields.items():
            if name not in PERSON_MERGE_FIELDS:
                raise ValueError(f"Field '{name}' is not mergeable")
            args.append(value)
            assignments.append(f"{name} = ${len(args)}")
        assignments.extend(
            [
                "sources = CASE WHEN $2 = ANY(COALESCE(sources, '{}')) THEN sources "
                "ELSE array_append(COALESCE(sources, '{}'), $2) END",
                "source_ids = COALESCE(source_ids, '{}'::jsonb) || $3::jsonb",
                "updated_at = now()",
            ]
        )
        await self._db.execute(
            f"UPDATE people SET {', '.join(assignments)} WHERE id = $1::uuid",
            *args,
        )

    async def find_company_by_name(self, workspace_id: str, name: str) -> str | None:
        company_id = await self._db.fetchval(
            "SELECT id::text FROM companies WHERE workspace_id = $1::uuid AND name = $2",
            workspace_id,
            name,
        )
        return str(company_id) if company_id is not None else None

    async def insert_company(self, workspace_id: str, name: str, domain: str | None) -> str:
        company_id = await self._db.fetchval(
            """
            INSERT INTO companies (workspace_id, name, domain)
            VALUES ($1::uuid, $2, $3)
            ON CONFLICT (workspace_id, name) DO UPDATE SET name = EXCLUDED.name
            RETURNING id::text
            """,
            workspace_id,
            name,
            domain,
        )
        return str(company_id)

    async def upsert_person_company(
        self, person_id: str, company_id: str, role: str | None
    ) -> None:
        await self._db.execute(
            """
            INSERT INTO person_companies (person_id, company_id, workspace_id, role)
            SELECT $1::uuid, $2::uuid, p.workspace_id, $3
            FROM people p WHERE p.id = $1::uuid
            ON CONFLICT (person_id, company_id) DO UPDATE SET role = EXCLUDED.role
            """,
            person_id,
            company_id,
            role,
        )

    async def upsert_social_profile(self, person_id: str, profile: SocialProfile) -> None:
        await self._db.execute(
            """
            INSERT INTO social_profiles (person_id, workspace_id, platform, profile_url, username)
            SELECT $1::uuid, p.workspace_id, $2, $3, $4
            FROM people p WHERE p.id = $1::uuid
            ON CONFLICT (person_id, platform) DO UPDATE SET
                profile_url = EXCLUDED.profile_url,
                username    = EXCLUDED.username
            """,
            person_id,
            profile.platform,
            profile.profile_url,
            profile.username,
        )

    async def find_interaction(
        self, workspace_id: str, source: str, source_id: str
    ) -> str | None:
        interaction_id = await self._db.fetchval(
            """
            SELECT id::text FROM interactions
            WHERE workspace_id = $1::uuid AND source_integration = $2 AND source_id = $3
            """,
            workspace_id,
            source,
            source_id,
        )
        return str(interaction_id) if interaction_id is not None else None

    async def insert_interaction(
        self, workspace_id: str, interaction: NormalizedInteraction
    ) -> str:
        interaction_id = await self._db.fetchval(
            """
            INSERT INTO interactions
                (workspace_id, interaction_type, direction, subject, content, occurred_at,
                 duration_minutes, source_integration, source_id, source_url, metadata)
            VALUES ($1::uuid, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11::jsonb)
            RETURNING id::text
            """,
            workspace_id,
            interaction.interaction_type,
            interaction.direction,
            interaction.subject,
            interaction.content,
            interaction.occurred_at,
            interaction.duration_minutes,
            interaction.source,
            interaction.source_id,
            interaction.source_url,
            json.dumps(interaction.metadata),
        )
        return str(interaction_id)

    async def link_participant(self, interaction_id: str, person_id: str) -> None:
        await self._db.execute(
            """
            INSERT INTO interaction_people (interaction_id, person_id, workspace_id, role)
            SELECT $1::uuid, $2::uuid, i.workspace_id, 'participant'
            FROM interactions i WHERE i.id = $1::uuid
            ON CONFLICT (interaction_id, person_id, role) DO NOTHING
            """,
            interaction_id,
            person_id,
        )
