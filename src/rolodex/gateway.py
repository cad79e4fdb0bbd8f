"""Sync gateway: merges one normalized batch into the canonical graph.

Processing order is fixed.  All people (with their companies and social
profiles) are written before any interaction, because participant linking
resolves emails through the per-run email -> person id map filled while
writing people.

Per-record write failures are logged and counted, never raised; the index
notification runs last and its failures are swallowed.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict

from rolodex.connectors.base import NormalizedInteraction, NormalizedPerson, SyncResult
from rolodex.core.metrics import record_gateway_write
from rolodex.indexing import EntityType, IndexNotifier, NullIndexNotifier
from rolodex.store import PERSON_MERGE_FIELDS, GraphStore

logger = logging.getLogger(__name__)


class SyncSummary(BaseModel):
    """Counts produced by one ``process_sync`` call."""

    model_config = ConfigDict(extra="forbid")

    people_created: int = 0
    people_updated: int = 0
    companies_created: int = 0
    interactions_created: int = 0
    interactions_skipped: int = 0
    write_errors: int = 0

    @property
    def items_synced(self) -> int:
        return self.people_created + self.people_updated + self.interactions_created

    @property
    def items_created(self) -> int:
        return self.people_created + self.interactions_created

    @property
    def items_updated(self) -> int:
        return self.people_updated


def merge_fields(person: NormalizedPerson) -> dict[str, str]:
    """Non-empty allow-listed fields an incoming person may write onto a match."""
    fields: dict[str, str] = {}
    for name in PERSON_MERGE_FIELDS:
        value = getattr(person, name)
        if value:
            fields[name] = value
    return fields


class SyncGateway:
    """Writes connector batches into a ``GraphStore``."""

    def __init__(self, store: GraphStore, notifier: IndexNotifier | None = None) -> None:
        self._store = store
        self._notifier = notifier or NullIndexNotifier()

    async def process_sync(self, result: SyncResult, workspace_id: str) -> SyncSummary:
        summary = SyncSummary()
        email_to_person: dict[str, str] = {}
        touched_people: list[str] = []
        touched_interactions: list[str] = []

        for person in result.people:
            try:
                person_id = await self._write_person(
                    person, workspace_id, email_to_person, summary
                )
            except Exception:
                summary.write_errors += 1
                record_gateway_write("person", "error")
                logger.exception(
                    "Failed to write person (source=%s, source_id=%s, email=%s)",
                    person.source,
                    person.source_id,
                    person.email,
                )
                continue
            if person_id not in touched_people:
                touched_people.append(person_id)
            await self._write_company(person, person_id, workspace_id, summary)
            await self._write_social_profiles(person, person_id, summary)

        for interaction in result.interactions:
            try:
                interaction_id = await self._write_interaction(interaction, workspace_id, summary)
            except Exception:
                summary.write_errors += 1
                record_gateway_write("interaction", "error")
                logger.exception(
                    "Failed to write interaction (source=%s, source_id=%s)",
                    interaction.source,
                    interaction.source_id,
                )
                continue
            if interaction_id is None:
                continue
            touched_interactions.append(interaction_id)
            await self._link_participants(interaction, interaction_id, email_to_person, summary)

        record_gateway_write("person", "created", summary.people_created)
        record_gateway_write("person", "updated", summary.people_updated)
        record_gateway_write("company", "created", summary.companies_created)
        record_gateway_write("interaction", "created", summary.interactions_created)
        record_gateway_write("interaction", "skipped", summary.interactions_skipped)

        await self._notify("person", touched_people, workspace_id)
        await self._notify("interaction", touched_interactions, workspace_id)

        logger.info(
            "Processed batch for workspace %s: %d people created, %d updated, "
            "%d companies created, %d interactions created, %d skipped, %d write errors",
            workspace_id,
            summary.people_created,
            summary.people_updated,
            summary.companies_created,
            summary.interactions_created,
            summary.interactions_skipped,
            summary.write_errors,
        )
        return summary

    async def _write_person(
        self,
        person: NormalizedPerson,
        workspace_id: str,
        email_to_person: dict[str, str],
        summary: SyncSummary,
    ) -> str:
        email_key = person.email.lower() if person.email else None
        if email_key is not None:
            existing = await self._store.find_person_by_email(workspace_id, email_key)
            if existing is not None:
                await self._store.update_person(
                    existing.id,
                    merge_fields(person),
                    source=person.source,
                    source_id=person.source_id,
                )
                email_to_person[email_key] = existing.id
                summary.people_updated += 1
                return existing.id

        person_id = await self._store.insert_person(workspace_id, person)
        if email_key is not None:
            email_to_person[email_key] = person_id
        summary.people_created += 1
        return person_id

    async def _write_company(
        self,
        person: NormalizedPerson,
        person_id: str,
        workspace_id: str,
        summary: SyncSummary,
    ) -> None:
        if not person.company_name:
            return
        try:
            company_id = await self._store.find_company_by_name(workspace_id, person.company_name)
            if company_id is None:
                company_id = await self._store.insert_company(
                    workspace_id, person.company_name, person.company_domain
                )
                summary.companies_created += 1
            await self._store.upsert_person_company(person_id, company_id, person.job_title)
        except Exception:
            summary.write_errors += 1
            record_gateway_write("company", "error")
            logger.exception(
                "Failed to link person %s to company %r", person_id, person.company_name
            )

    async def _write_social_profiles(
        self, person: NormalizedPerson, person_id: str, summary: SyncSummary
    ) -> None:
        for profile in person.social_profiles:
            try:
                await self._store.upsert_social_profile(person_id, profile)
            except Exception:
                summary.write_errors += 1
                record_gateway_write("social_profile", "error")
                logger.exception(
                    "Failed to write %s profile for person %s", profile.platform, person_id
                )

    async def _write_interaction(
        self,
        interaction: NormalizedInteraction,
        workspace_id: str,
        summary: SyncSummary,
    ) -> str | None:
        if interaction.source and interaction.source_id:
            existing = await self._store.find_interaction(
                workspace_id, interaction.source, interaction.source_id
            )
            if existing is not None:
                summary.interactions_skipped += 1
                return None
        interaction_id = await self._store.insert_interaction(workspace_id, interaction)
        summary.interactions_created += 1
        return interaction_id

    async def _link_participants(
        self,
        interaction: NormalizedInteraction,
        interaction_id: str,
        email_to_person: dict[str, str],
        summary: SyncSummary,
    ) -> None:
        linked: set[str] = set()
        for email in interaction.participant_emails:
            person_id = email_to_person.get(email.strip().lower())
            if person_id is None or person_id in linked:
                continue
            try:
                await self._store.link_participant(interaction_id, person_id)
            except Exception:
                summary.write_errors += 1
                record_gateway_write("participant", "error")
                logger.exception(
                    "Failed to link person %s to interaction %s", person_id, interaction_id
                )
                continue
            linked.add(person_id)

    async def _notify(
        self, entity_type: EntityType, entity_ids: list[str], workspace_id: str
    ) -> None:
        if not entity_ids:
            return
        try:
            await self._notifier.notify(entity_type, entity_ids, workspace_id)
        except Exception:
            logger.warning(
                "Index notification failed for %d %s ids",
                len(entity_ids),
                entity_type,
                exc_info=True,
            )
