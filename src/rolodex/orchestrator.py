"""Per-integration sync run.

``SyncOrchestrator.run`` drives one integration end to end:

1. load the integration (scoped to its workspace) and resolve its connector
2. take the per-integration run lock; a held lock means another run is live
3. open a ``running`` sync log, decrypt credentials, call the connector
4. hand the batch to the gateway, persist the new cursor, complete the log

Any failure after the log is opened marks the integration ``error``, fails
the log with the message and re-raises.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from opentelemetry import trace

from rolodex.connectors.base import Connector, SyncRequest
from rolodex.connectors.registry import ConnectorRegistry
from rolodex.core.logging import bind_sync_context
from rolodex.core.metrics import SyncRunMetrics
from rolodex.errors import IntegrationNotFoundError, SyncAlreadyRunningError, UnknownProviderError
from rolodex.gateway import SyncGateway, SyncSummary
from rolodex.store import Integration, IntegrationStore
from rolodex.vault import CredentialVault

logger = logging.getLogger(__name__)

UNKNOWN_ERROR_MESSAGE = "Unknown error"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def error_message(exc: BaseException) -> str:
    """Human-readable message stored in ``last_sync_error``."""
    return str(exc).strip() or UNKNOWN_ERROR_MESSAGE


class SyncOrchestrator:
    """Runs one integration's sync and records the outcome."""

    def __init__(
        self,
        store: IntegrationStore,
        gateway: SyncGateway,
        registry: ConnectorRegistry,
        vault: CredentialVault,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._registry = registry
        self._vault = vault
        self._clock = clock

    async def run(self, integration_id: str, workspace_id: str) -> SyncSummary:
        tracer = trace.get_tracer("rolodex")
        with tracer.start_as_current_span("rolodex.sync.run") as span:
            span.set_attribute("integration_id", integration_id)
            span.set_attribute("workspace_id", workspace_id)

            integration = await self._store.get_integration(integration_id, workspace_id)
            if integration is None:
                raise IntegrationNotFoundError(
                    f"Integration {integration_id} not found in workspace {workspace_id}"
                )
            connector = self._registry.get(integration.provider)
            if connector is None:
                raise UnknownProviderError(integration.provider)
            span.set_attribute("provider", integration.provider)

            with bind_sync_context(
                workspace_id=workspace_id,
                integration_id=integration_id,
                provider=integration.provider,
            ):
                async with self._store.run_lock(integration_id) as acquired:
                    if not acquired:
                        raise SyncAlreadyRunningError(
                            f"Integration {integration_id} already has a sync in progress"
                        )
                    with SyncRunMetrics(integration.provider).track_run():
                        summary = await self._run_locked(integration, connector)

            span.set_attribute("items_synced", summary.items_synced)
            return summary

    async def _run_locked(self, integration: Integration, connector: Connector) -> SyncSummary:
        integration_id = integration.id
        workspace_id = integration.workspace_id
        log_id = await self._store.create_sync_log(integration_id, workspace_id, self._clock())
        logger.info("Sync started (log %s)", log_id)
        try:
            request = SyncRequest(
                workspace_id=workspace_id,
                access_token=self._vault.decrypt_optional(integration.access_token_encrypted),
                refresh_token=self._vault.decrypt_optional(integration.refresh_token_encrypted),
                cursor=dict(integration.sync_cursor or {}),
                metadata=dict(integration.metadata or {}),
            )
            result = await connector.sync(request)
            summary = await self._gateway.process_sync(result, workspace_id)
            finished_at = self._clock()
            await self._store.mark_sync_success(integration_id, result.cursor, finished_at)
            await self._store.complete_sync_log(
                log_id,
                items_synced=summary.items_synced,
                items_created=summary.items_created,
                items_updated=summary.items_updated,
                completed_at=finished_at,
            )
        except Exception as exc:
            message = error_message(exc)
            logger.exception("Sync failed: %s", message)
            try:
                await self._store.mark_sync_error(integration_id, message)
            finally:
                await self._store.fail_sync_log(log_id, message, self._clock())
            raise

        if result.has_more:
            logger.info("Sync left pages pending; the next run resumes from the stored cursor")
        logger.info(
            "Sync completed: %d synced, %d created, %d updated",
            summary.items_synced,
            summary.items_created,
            summary.items_updated,
        )
        return summary
