"""Process wiring: builds every collaborator from one ``RolodexConfig``."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx

from rolodex.config import ConfigError, RolodexConfig
from rolodex.connectors.registry import ConnectorRegistry, build_default_registry
from rolodex.db import Database
from rolodex.gateway import SyncGateway
from rolodex.indexing import HttpIndexNotifier, IndexNotifier, NullIndexNotifier
from rolodex.integrations import IntegrationManager
from rolodex.orchestrator import SyncOrchestrator
from rolodex.pg_store import PostgresGraphStore, PostgresIntegrationStore
from rolodex.scheduler import AsyncioTrigger, AutoSyncScheduler
from rolodex.vault import CredentialVault

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    config: RolodexConfig
    db: Database
    http_client: httpx.AsyncClient
    registry: ConnectorRegistry
    vault: CredentialVault
    integration_store: PostgresIntegrationStore
    gateway: SyncGateway
    orchestrator: SyncOrchestrator
    trigger: AsyncioTrigger
    scheduler: AutoSyncScheduler
    manager: IntegrationManager


def build_notifier(config: RolodexConfig, http_client: httpx.AsyncClient) -> IndexNotifier:
    if config.indexing.url:
        return HttpIndexNotifier(config.indexing.url, http_client)
    logger.info("No indexing URL configured; index notifications are dropped")
    return NullIndexNotifier()


@asynccontextmanager
async def open_runtime(config: RolodexConfig) -> AsyncIterator[Runtime]:
    """Connect the pool and HTTP client, yield the wired runtime, then tear down."""
    if not config.database_url:
        raise ConfigError("DATABASE_URL (or rolodex.database_url) is required")

    db = Database.from_url(config.database_url)
    await db.connect()
    http_client = httpx.AsyncClient(timeout=config.http_timeout_seconds)
    registry = build_default_registry(config, http_client)
    try:
        vault = CredentialVault(env_var=config.encryption_key_env)
        integration_store = PostgresIntegrationStore(db)
        gateway = SyncGateway(PostgresGraphStore(db), build_notifier(config, http_client))
        orchestrator = SyncOrchestrator(integration_store, gateway, registry, vault)
        trigger = AsyncioTrigger(orchestrator.run)
        yield Runtime(
            config=config,
            db=db,
            http_client=http_client,
            registry=registry,
            vault=vault,
            integration_store=integration_store,
            gateway=gateway,
            orchestrator=orchestrator,
            trigger=trigger,
            scheduler=AutoSyncScheduler(
                integration_store,
                trigger,
                cron=config.scheduler.cron,
                default_time_local=config.scheduler.default_time_local,
            ),
            manager=IntegrationManager(
                integration_store,
                registry,
                vault,
                gateway,
                state_secret=config.oauth_state_secret,
                trigger=trigger,
            ),
        )
    finally:
        await registry.shutdown()
        await http_client.aclose()
        await db.close()
