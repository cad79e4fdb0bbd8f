"""Integration lifecycle: connect, import, configure, trigger and disconnect.

Google and Microsoft connect as provider families: one consent grants mail,
calendar and contacts, so completing the OAuth round-trip upserts one
integration per provider in the family and queues an initial sync for each.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import UTC, datetime

from rolodex.connectors.base import OAuthTokens
from rolodex.connectors.google import GOOGLE_PROVIDER_IDS
from rolodex.connectors.microsoft_graph import MICROSOFT_PROVIDER_IDS
from rolodex.connectors.registry import ConnectorRegistry
from rolodex.errors import (
    IntegrationNotFoundError,
    InvalidAutoSyncSettingsError,
    UnknownProviderError,
    UnsupportedCapabilityError,
)
from rolodex.gateway import SyncGateway, SyncSummary
from rolodex.oauth_state import OAuthState, sign_state, verify_state
from rolodex.orchestrator import error_message
from rolodex.scheduler import SyncTrigger, is_valid_timezone
from rolodex.store import Integration, IntegrationStore
from rolodex.vault import CredentialVault

logger = logging.getLogger(__name__)

PROVIDER_FAMILIES: dict[str, tuple[str, ...]] = {
    "google": GOOGLE_PROVIDER_IDS,
    "microsoft": MICROSOFT_PROVIDER_IDS,
}
CSV_PROVIDER = "csv"
_HH_MM = re.compile(r"([01]\d|2[0-3]):[0-5]\d")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def initial_sync_key(integration_id: str) -> str:
    return f"initial-sync:{integration_id}"


def manual_sync_key(integration_id: str, now: datetime) -> str:
    return f"manual-sync:{integration_id}:{int(now.timestamp())}"


def family_providers(family: str) -> tuple[str, ...]:
    providers = PROVIDER_FAMILIES.get(family)
    if providers is None:
        raise UnknownProviderError(family)
    return providers


class IntegrationManager:
    """Operations that create, change or remove integrations."""

    def __init__(
        self,
        store: IntegrationStore,
        registry: ConnectorRegistry,
        vault: CredentialVault,
        gateway: SyncGateway,
        *,
        state_secret: str | None = None,
        trigger: SyncTrigger | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._registry = registry
        self._vault = vault
        self._gateway = gateway
        self._state_secret = state_secret
        self._trigger = trigger
        self._clock = clock

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def authorization_url(self, provider: str, redirect_uri: str, state: str) -> str:
        connector = self._registry.oauth_connector(provider)
        if connector is None:
            raise UnsupportedCapabilityError(f"Provider {provider} does not support OAuth")
        return connector.get_auth_url(redirect_uri, state)

    def begin_oauth(
        self, family: str, workspace_id: str, user_id: str | None, redirect_uri: str
    ) -> str:
        """Consent URL for a provider family with a freshly signed state."""
        state = sign_state(
            self._state_secret,
            workspace_id,
            user_id,
            now_ms=int(self._clock().timestamp() * 1000),
        )
        return self.authorization_url(family_providers(family)[0], redirect_uri, state)

    async def complete_oauth(
        self, workspace_id: str, provider: str, code: str, redirect_uri: str
    ) -> Integration:
        """Exchange *code* and store the tokens on one provider's integration."""
        tokens = await self._exchange(provider, code, redirect_uri)
        return await self._store_tokens(workspace_id, provider, tokens)

    async def complete_oauth_callback(
        self, family: str, code: str, state: str, redirect_uri: str
    ) -> list[Integration]:
        """Finish a family consent round-trip started by ``begin_oauth``.

        Verifies the signed state, exchanges the code once, upserts every
        provider of the family and queues an initial sync per integration.
        """
        verified: OAuthState = verify_state(
            self._state_secret,
            state,
            now_ms=int(self._clock().timestamp() * 1000),
        )
        providers = family_providers(family)
        tokens = await self._exchange(providers[0], code, redirect_uri)

        integrations = [
            await self._store_tokens(verified.workspace_id, provider, tokens)
            for provider in providers
        ]
        logger.info(
            "Connected %s for workspace %s (%s)",
            family,
            verified.workspace_id,
            tokens.account_email or "unknown account",
        )
        for integration in integrations:
            await self._queue(integration, initial_sync_key(integration.id))
        return integrations

    async def _exchange(self, provider: str, code: str, redirect_uri: str) -> OAuthTokens:
        connector = self._registry.oauth_connector(provider)
        if connector is None:
            raise UnsupportedCapabilityError(f"Provider {provider} does not support OAuth")
        return await connector.handle_callback(code, redirect_uri)

    async def _store_tokens(
        self, workspace_id: str, provider: str, tokens: OAuthTokens
    ) -> Integration:
        return await self._store.upsert_integration(
            workspace_id,
            provider,
            access_token_encrypted=self._vault.encrypt(tokens.access_token),
            refresh_token_encrypted=(
                self._vault.encrypt(tokens.refresh_token) if tokens.refresh_token else None
            ),
            token_expires_at=tokens.expires_at,
            account_email=tokens.account_email,
            account_name=tokens.account_name,
        )

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    async def request_sync(self, integration_id: str, workspace_id: str) -> str:
        """Queue a manual run after checking the integration belongs to the workspace."""
        integration = await self._require(integration_id, workspace_id)
        key = manual_sync_key(integration.id, self._clock())
        await self._queue(integration, key, raise_on_error=True)
        return key

    async def _queue(
        self, integration: Integration, key: str, *, raise_on_error: bool = False
    ) -> None:
        if self._trigger is None:
            logger.debug("No trigger configured; %s not queued", key)
            return
        try:
            await self._trigger.trigger(integration.id, integration.workspace_id, key)
        except Exception as exc:
            logger.exception("Failed to queue sync %s", key)
            if raise_on_error:
                raise
            await self._store.mark_sync_error(integration.id, error_message(exc))

    async def import_file(self, workspace_id: str, data: bytes, filename: str) -> SyncSummary:
        """Parse an uploaded file and merge it as a ``csv`` integration run."""
        connector = self._registry.file_connector(CSV_PROVIDER)
        if connector is None:
            raise UnsupportedCapabilityError("No file-import connector is registered")

        integration = await self._store.get_integration_by_provider(workspace_id, CSV_PROVIDER)
        if integration is None:
            integration = await self._store.upsert_integration(
                workspace_id,
                CSV_PROVIDER,
                access_token_encrypted=None,
                refresh_token_encrypted=None,
                token_expires_at=None,
            )

        log_id = await self._store.create_sync_log(integration.id, workspace_id, self._clock())
        try:
            result = connector.parse_file(data, filename)
            summary = await self._gateway.process_sync(result, workspace_id)
            finished_at = self._clock()
            await self._store.mark_sync_success(integration.id, None, finished_at)
            await self._store.complete_sync_log(
                log_id,
                items_synced=summary.items_synced,
                items_created=summary.items_created,
                items_updated=summary.items_updated,
                completed_at=finished_at,
            )
        except Exception as exc:
            message = error_message(exc)
            logger.exception("Import of %s failed: %s", filename, message)
            try:
                await self._store.mark_sync_error(integration.id, message)
            finally:
                await self._store.fail_sync_log(log_id, message, self._clock())
            raise
        logger.info("Imported %s into workspace %s", filename, workspace_id)
        return summary

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def set_auto_sync(
        self,
        integration_id: str,
        workspace_id: str,
        *,
        enabled: bool,
        time_local: str | None = None,
        timezone: str | None = None,
    ) -> Integration:
        """Update auto-sync preferences.

        ``time_local`` must be ``HH:MM`` (24h); ``timezone`` must be an IANA
        zone name, or ``None`` to follow the workspace preference.
        """
        if time_local is not None and not _HH_MM.fullmatch(time_local):
            raise InvalidAutoSyncSettingsError(f"Invalid auto-sync time: {time_local!r}")
        if timezone is not None and not is_valid_timezone(timezone):
            raise InvalidAutoSyncSettingsError(f"Invalid timezone: {timezone!r}")

        current = await self._require(integration_id, workspace_id)
        updated = await self._store.update_auto_sync(
            integration_id,
            workspace_id,
            enabled=enabled,
            time_local=time_local or current.auto_sync_time_local,
            timezone=timezone,
        )
        if updated is None:
            raise IntegrationNotFoundError(
                f"Integration {integration_id} not found in workspace {workspace_id}"
            )
        return updated

    async def disconnect(self, integration_id: str, workspace_id: str) -> None:
        if not await self._store.delete_integration(integration_id, workspace_id):
            raise IntegrationNotFoundError(
                f"Integration {integration_id} not found in workspace {workspace_id}"
            )
        logger.info("Disconnected integration %s", integration_id)

    async def _require(self, integration_id: str, workspace_id: str) -> Integration:
        integration = await self._store.get_integration(integration_id, workspace_id)
        if integration is None:
            raise IntegrationNotFoundError(
                f"Integration {integration_id} not found in workspace {workspace_id}"
            )
        return integration

