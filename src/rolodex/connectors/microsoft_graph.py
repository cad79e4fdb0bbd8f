"""Shared Microsoft identity platform and Graph delta-query support.

The mail, calendar and contacts connectors all walk a Graph ``delta``
collection: follow ``@odata.nextLink`` until it runs out and keep the final
``@odata.deltaLink`` as the cursor for the next run.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import httpx

from rolodex.connectors._normalize import as_non_empty_string
from rolodex.connectors.http import SleepFn, json_object, safe_error_message
from rolodex.connectors.oauth import OAuthClient, OAuthConnector
from rolodex.errors import CursorRejectedError, ProviderRequestError

logger = logging.getLogger(__name__)

MICROSOFT_LOGIN_BASE_URL = "https://login.microsoftonline.com"
MICROSOFT_SCOPES = (
    "offline_access",
    "User.Read",
    "Contacts.Read",
    "Mail.Read",
    "Calendars.Read",
)
GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
GRAPH_PROFILE_URL = f"{GRAPH_BASE_URL}/me?$select=id,displayName,userPrincipalName,mail"

MICROSOFT_PROVIDER_IDS = ("microsoft-mail", "microsoft-calendar", "microsoft-contacts")

_INVALID_DELTA_CODES = ("syncstatenotfound", "invalidsynctoken")


def is_invalid_delta_error(error: Any) -> bool:
    """True when a Graph error object says the delta state is gone or invalid."""
    if not isinstance(error, dict):
        return False
    code = str(error.get("code") or "").lower()
    message = str(error.get("message") or "").lower()
    return any(marker in code for marker in _INVALID_DELTA_CODES) or "delta token" in message


def _graph_error(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    error = payload.get("error") if isinstance(payload, dict) else None
    return error if isinstance(error, dict) else {}


class MicrosoftGraphConnector(OAuthConnector):
    """Base class for connectors that read from Microsoft Graph delta queries."""

    def __init__(
        self,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        tenant_id: str = "common",
        http_client: httpx.AsyncClient | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        super().__init__(http_client=http_client, sleep=sleep)
        tenant = tenant_id.strip() or "common"
        self._oauth = OAuthClient(
            provider_label="Microsoft OAuth",
            authorize_url=f"{MICROSOFT_LOGIN_BASE_URL}/{tenant}/oauth2/v2.0/authorize",
            token_url=f"{MICROSOFT_LOGIN_BASE_URL}/{tenant}/oauth2/v2.0/token",
            client_id=client_id,
            client_secret=client_secret,
            scopes=MICROSOFT_SCOPES,
            http_client=self._http_client,
            extra_authorize_params={"response_mode": "query"},
        )

    @property
    def oauth(self) -> OAuthClient:
        return self._oauth

    async def fetch_account_identity(self, access_token: str) -> tuple[str | None, str | None]:
        response = await self._get(GRAPH_PROFILE_URL, access_token)
        if not response.is_success:
            logger.warning("Microsoft profile lookup failed (HTTP %s)", response.status_code)
            return None, None
        try:
            profile = response.json()
        except ValueError:
            return None, None
        if not isinstance(profile, dict):
            return None, None
        email = as_non_empty_string(profile.get("mail")) or as_non_empty_string(
            profile.get("userPrincipalName")
        )
        return email, as_non_empty_string(profile.get("displayName"))

    async def _collect_delta(
        self,
        access_token: str,
        cursor: dict[str, Any],
        *,
        cursor_key: str,
        initial_url: str,
        handle_item: Callable[[dict[str, Any]], bool],
        max_items: int | None = None,
    ) -> tuple[dict[str, Any], bool]:
        """Walk a delta collection and return ``(next cursor, has_more)``.

        ``handle_item`` returns True for items that count toward ``max_items``.
        The cap is checked between pages; when it stops the walk early the
        pending ``@odata.nextLink`` becomes the cursor so the next run resumes.

        Raises
        ------
        CursorRejectedError
            When Graph rejects the stored delta link.
        ProviderRequestError
            On any other non-2xx response.
        """
        stored_link = as_non_empty_string(cursor.get(cursor_key))
        next_url: str | None = stored_link or initial_url
        delta_link: str | None = None
        counted = 0

        while next_url is not None:
            if max_items is not None and counted >= max_items:
                logger.info(
                    "%s stopped after %d items; resuming from nextLink next run",
                    self.name,
                    counted,
                )
                return {**cursor, cursor_key: next_url}, True

            response = await self._get(next_url, access_token)
            if not response.is_success:
                error = _graph_error(response)
                if stored_link is not None and is_invalid_delta_error(error):
                    reason = error.get("code") or error.get("message")
                    raise CursorRejectedError(f"{self.name} delta link rejected: {reason}")
                message = as_non_empty_string(error.get("message"))
                raise ProviderRequestError(
                    provider=self.name,
                    status_code=response.status_code,
                    message=message or safe_error_message(response),
                )

            payload = json_object(response, provider=self.name)
            for item in payload.get("value") or []:
                if isinstance(item, dict) and handle_item(item):
                    counted += 1

            delta_link = as_non_empty_string(payload.get("@odata.deltaLink")) or delta_link
            next_url = as_non_empty_string(payload.get("@odata.nextLink"))

        return {**cursor, cursor_key: delta_link or stored_link}, False
