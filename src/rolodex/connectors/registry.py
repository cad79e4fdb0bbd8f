"""Connector registry.

The provider set is fixed: ``build_default_registry`` instantiates every
built-in connector against one configuration and one shared HTTP client.
Registries are plain values passed to the orchestrator and lifecycle code,
so tests build their own with doubles.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from rolodex.config import RolodexConfig
from rolodex.connectors.base import Connector, FileImportCapable, OAuthCapable
from rolodex.connectors.csv_import import CsvImportConnector
from rolodex.connectors.gmail import GmailConnector
from rolodex.connectors.google_calendar import GoogleCalendarConnector
from rolodex.connectors.google_contacts import GoogleContactsConnector
from rolodex.connectors.http import SleepFn
from rolodex.connectors.microsoft_calendar import MicrosoftCalendarConnector
from rolodex.connectors.microsoft_contacts import MicrosoftContactsConnector
from rolodex.connectors.microsoft_mail import MicrosoftMailConnector

logger = logging.getLogger(__name__)


class ConnectorRegistry:
    """Maps stable provider ids to connector instances."""

    def __init__(self, connectors: list[Connector] | None = None) -> None:
        self._connectors: dict[str, Connector] = {}
        for connector in connectors or []:
            self.register(connector)

    def register(self, connector: Connector) -> None:
        """Register *connector*.

        Raises ``ValueError`` if a connector with the same id is already
        registered.
        """
        connector_id = connector.id
        if connector_id in self._connectors:
            raise ValueError(f"Connector '{connector_id}' is already registered")
        self._connectors[connector_id] = connector

    def get(self, connector_id: str) -> Connector | None:
        """Return the connector for *connector_id*, or ``None`` when unknown."""
        return self._connectors.get(connector_id)

    def list(self) -> list[Connector]:
        return [self._connectors[key] for key in self.ids]

    @property
    def ids(self) -> list[str]:
        """All registered ids (sorted for determinism)."""
        return sorted(self._connectors)

    def oauth_connector(self, connector_id: str) -> OAuthCapable | None:
        connector = self.get(connector_id)
        return connector if isinstance(connector, OAuthCapable) else None

    def file_connector(self, connector_id: str) -> FileImportCapable | None:
        connector = self.get(connector_id)
        return connector if isinstance(connector, FileImportCapable) else None

    def __contains__(self, connector_id: object) -> bool:
        return connector_id in self._connectors

    def __len__(self) -> int:
        return len(self._connectors)

    async def shutdown(self) -> None:
        """Shut down every connector, logging (not raising) individual failures."""
        for connector in self._connectors.values():
            try:
                await connector.shutdown()
            except Exception:
                logger.exception("Failed to shut down connector %s", connector.id)


def build_default_registry(
    config: RolodexConfig,
    http_client: httpx.AsyncClient,
    *,
    sleep: SleepFn = asyncio.sleep,
) -> ConnectorRegistry:
    """Create a registry holding every built-in connector."""
    google = {
        "client_id": config.google.client_id,
        "client_secret": config.google.client_secret,
        "http_client": http_client,
        "sleep": sleep,
    }
    microsoft = {
        "client_id": config.microsoft.client_id,
        "client_secret": config.microsoft.client_secret,
        "tenant_id": config.microsoft.tenant_id,
        "http_client": http_client,
        "sleep": sleep,
    }
    return ConnectorRegistry(
        [
            CsvImportConnector(),
            GmailConnector(**google),
            GoogleCalendarConnector(**google),
            GoogleContactsConnector(**google),
            MicrosoftMailConnector(**microsoft),
            MicrosoftCalendarConnector(**microsoft),
            MicrosoftContactsConnector(**microsoft),
        ]
    )
