"""OAuth authorization-code and refresh-token exchange, plus the shared base
class for connectors that authenticate with a bearer token."""

from __future__ import annotations

import abc
import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlencode

import httpx

from rolodex.connectors.base import AuthKind, Connector, OAuthCapable, OAuthTokens, SyncRequest
from rolodex.connectors.http import (
    DEFAULT_TIMEOUT,
    SleepFn,
    get_with_retry,
    safe_error_message,
)
from rolodex.errors import ConnectorError, MissingCredentialsError, TokenRefreshError

DEFAULT_EXPIRES_IN_SECONDS = 3600


class OAuthClient:
    """Talks to one identity provider's authorize and token endpoints."""

    def __init__(
        self,
        *,
        provider_label: str,
        authorize_url: str,
        token_url: str,
        client_id: str | None,
        client_secret: str | None,
        scopes: tuple[str, ...],
        http_client: httpx.AsyncClient,
        extra_authorize_params: dict[str, str] | None = None,
    ) -> None:
        self.provider_label = provider_label
        self.authorize_url = authorize_url
        self.token_url = token_url
        self._client_id = client_id
        self._client_secret = client_secret
        self._scopes = scopes
        self._http_client = http_client
        self._extra_authorize_params = dict(extra_authorize_params or {})

    def __repr__(self) -> str:
        return f"OAuthClient(provider={self.provider_label!r}, client_secret=<redacted>)"

    def _require_client(self) -> tuple[str, str]:
        if not self._client_id or not self._client_secret:
            raise ConnectorError(f"{self.provider_label} OAuth client is not configured")
        return self._client_id, self._client_secret

    def authorization_url(self, redirect_uri: str, state: str) -> str:
        client_id, _ = self._require_client()
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(self._scopes),
            **self._extra_authorize_params,
            "state": state,
        }
        return f"{self.authorize_url}?{urlencode(params)}"

    async def exchange_code(self, code: str, redirect_uri: str) -> OAuthTokens:
        client_id, client_secret = self._require_client()
        return await self._request_token(
            {
                "client_id": client_id,
                "client_secret": client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": redirect_uri,
            },
            action="token exchange",
        )

    async def refresh(self, refresh_token: str) -> OAuthTokens:
        client_id, client_secret = self._require_client()
        return await self._request_token(
            {
                "client_id": client_id,
                "client_secret": client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            action="token refresh",
        )

    async def _request_token(self, form: dict[str, str], *, action: str) -> OAuthTokens:
        try:
            response = await self._http_client.post(
                self.token_url,
                data=form,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise TokenRefreshError(
                f"{self.provider_label} {action} request failed: {exc}"
            ) from exc

        if not response.is_success:
            raise TokenRefreshError(
                f"{self.provider_label} {action} failed "
                f"({response.status_code}): {safe_error_message(response)}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise TokenRefreshError(
                f"{self.provider_label} token endpoint returned invalid JSON"
            ) from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token.strip():
            raise TokenRefreshError(
                f"{self.provider_label} token response is missing a non-empty access_token"
            )

        refresh_token = payload.get("refresh_token")
        if not isinstance(refresh_token, str) or not refresh_token:
            refresh_token = None
        return OAuthTokens(
            access_token=access_token.strip(),
            refresh_token=refresh_token,
            expires_at=datetime.now(UTC)
            + timedelta(seconds=_coerce_expires_in_seconds(payload.get("expires_in"))),
        )


def _coerce_expires_in_seconds(value: Any) -> int:
    if isinstance(value, bool):
        return DEFAULT_EXPIRES_IN_SECONDS
    if isinstance(value, int | float):
        return int(value) if value > 0 else DEFAULT_EXPIRES_IN_SECONDS
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip()) or DEFAULT_EXPIRES_IN_SECONDS
    return DEFAULT_EXPIRES_IN_SECONDS


class OAuthConnector(Connector, OAuthCapable):
    """Base for connectors that call a REST API with an OAuth bearer token.

    Owns the HTTP client when none is injected.
    """

    def __init__(
        self,
        *,
        http_client: httpx.AsyncClient | None = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._owns_http_client = http_client is None
        self._http_client = (
            http_client if http_client is not None else httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
        )
        self._sleep = sleep

    @property
    def auth(self) -> AuthKind:
        return "oauth"

    @property
    @abc.abstractmethod
    def oauth(self) -> OAuthClient:
        """Identity-provider client used for consent, code exchange and refresh."""
        ...

    def get_auth_url(self, redirect_uri: str, state: str) -> str:
        return self.oauth.authorization_url(redirect_uri, state)

    async def handle_callback(self, code: str, redirect_uri: str) -> OAuthTokens:
        tokens = await self.oauth.exchange_code(code, redirect_uri)
        email, name = await self.fetch_account_identity(tokens.access_token)
        return tokens.model_copy(update={"account_email": email, "account_name": name})

    async def fetch_account_identity(self, access_token: str) -> tuple[str | None, str | None]:
        """Return ``(email, display name)`` of the connected account when knowable."""
        del access_token
        return None, None

    async def resolve_access_token(self, request: SyncRequest) -> str:
        """Use the stored access token, else exchange the refresh token."""
        if request.access_token:
            return request.access_token
        if request.refresh_token:
            tokens = await self.oauth.refresh(request.refresh_token)
            return tokens.access_token
        raise MissingCredentialsError("No access token available")

    async def _get(
        self,
        url: str,
        access_token: str,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        return await get_with_retry(
            self._http_client,
            url,
            access_token,
            provider=self.id,
            params=params,
            sleep=self._sleep,
        )

    async def shutdown(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()
