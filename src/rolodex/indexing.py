"""Search-index notification after graph writes."""

from __future__ import annotations

import logging
from typing import Literal, Protocol

import httpx

logger = logging.getLogger(__name__)

EntityType = Literal["person", "interaction", "company"]


class IndexNotifier(Protocol):
    async def notify(
        self, entity_type: EntityType, entity_ids: list[str], workspace_id: str
    ) -> None:
        """Queue *entity_ids* for (re)indexing."""
        ...


class NullIndexNotifier:
    """Drops every batch."""

    async def notify(
        self, entity_type: EntityType, entity_ids: list[str], workspace_id: str
    ) -> None:
        logger.debug(
            "Index notification dropped: %d %s ids for workspace %s",
            len(entity_ids),
            entity_type,
            workspace_id,
        )


class HttpIndexNotifier:
    """POSTs one JSON batch per call to the indexing service.

    Body: ``[{"entityType": ..., "entityId": ..., "workspaceId": ...}, ...]``.
    Non-2xx responses raise ``httpx.HTTPStatusError``; callers decide whether
    that is fatal.
    """

    def __init__(self, url: str, http_client: httpx.AsyncClient) -> None:
        self._url = url
        self._http = http_client

    async def notify(
        self, entity_type: EntityType, entity_ids: list[str], workspace_id: str
    ) -> None:
        if not entity_ids:
            return
        payload = [
            {"entityType": entity_type, "entityId": entity_id, "workspaceId": workspace_id}
            for entity_id in entity_ids
        ]
        response = await self._http.post(self._url, json=payload)
        response.raise_for_status()
        logger.debug("Queued %d %s ids for indexing", len(entity_ids), entity_type)
