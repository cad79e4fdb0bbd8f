"""Shared Google OAuth wiring for the Gmail, Calendar and Contacts connectors.

All three connectors share one consent screen: connecting Google grants the
read-only mail, contacts and calendar scopes at once.
"""

from __future__ import annotations

import asyncio

import httpx

from rolodex.connectors.http import SleepFn
from rolodex.connectors.oauth import OAuthClient, OAuthConnector

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_SCOPES = (
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/contacts.readonly",
    "https://www.googleapis.com/auth/calendar.readonly",
)

GOOGLE_PROVIDER_IDS = ("gmail", "google-calendar", "google-contacts")


class GoogleConnector(OAuthConnector):
    """Base class binding a connector to the Google identity platform."""

    def __init__(
        self,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        super().__init__(http_client=http_client, sleep=sleep)
        self._oauth = OAuthClient(
            provider_label="Google OAuth",
            authorize_url=GOOGLE_AUTHORIZE_URL,
            token_url=GOOGLE_OAUTH_TOKEN_URL,
            client_id=client_id,
            client_secret=client_secret,
            scopes=GOOGLE_SCOPES,
            http_client=self._http_client,
            extra_authorize_params={"access_type": "offline", "prompt": "consent"},
        )

    @property
    def oauth(self) -> OAuthClient:
        return self._oauth
