"""HTTP helpers shared by the provider connectors."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import httpx

from rolodex.core.metrics import record_source_call, record_source_retry
from rolodex.errors import ProviderRequestError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 0.5
DEFAULT_TIMEOUT = httpx.Timeout(20.0, connect=10.0)

SleepFn = Callable[[float], Awaitable[None]]


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def retry_after_seconds(response: httpx.Response) -> float:
    """Parse a delta-seconds ``Retry-After`` header; anything else counts as 0."""
    raw = response.headers.get("retry-after")
    if raw is None:
        return 0.0
    try:
        value = float(raw.strip())
    except ValueError:
        return 0.0
    return value if value > 0 else 0.0


async def get_with_retry(
    client: httpx.AsyncClient,
    url: str,
    access_token: str,
    *,
    provider: str,
    params: Mapping[str, Any] | None = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    sleep: SleepFn = asyncio.sleep,
) -> httpx.Response:
    """GET *url* with a bearer token, retrying 429 and 5xx responses.

    Waits ``max(base_delay * 2**(attempt-1), Retry-After)`` between attempts.
    Any other non-2xx status, or exhausting ``max_attempts``, returns the
    failing response to the caller; transport errors propagate.
    """
    headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
    attempt = 0
    while True:
        attempt += 1
        response = await client.get(url, params=params, headers=headers)
        record_source_call(provider, response.status_code)

        if response.is_success:
            return response
        if not is_retryable_status(response.status_code) or attempt >= max_attempts:
            return response

        delay = max(base_delay * 2 ** (attempt - 1), retry_after_seconds(response))
        record_source_retry(provider, response.status_code)
        logger.warning(
            "%s request returned %s; retrying in %.1fs (attempt %d/%d)",
            provider,
            response.status_code,
            delay,
            attempt,
            max_attempts,
        )
        await sleep(delay)


def safe_error_message(response: httpx.Response) -> str:
    """Extract a short provider error message from *response*."""
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return " ".join(message.split())[:200]
        message = payload.get("error_description") or payload.get("message")
        if isinstance(message, str) and message.strip():
            return " ".join(message.split())[:200]
        if isinstance(error_payload, str) and error_payload.strip():
            return error_payload.strip()[:200]

    text = response.text.strip()
    if text:
        return " ".join(text.split())[:200]
    return str(response.status_code)


def json_object(response: httpx.Response, *, provider: str) -> dict[str, Any]:
    """Decode a JSON object body or raise ``ProviderRequestError``."""
    try:
        payload = response.json()
    except ValueError as exc:
        raise ProviderRequestError(
            provider=provider,
            status_code=response.status_code,
            message="invalid JSON payload",
        ) from exc
    if not isinstance(payload, dict):
        raise ProviderRequestError(
            provider=provider,
            status_code=response.status_code,
            message="payload must be a JSON object",
        )
    return payload


def raise_for_provider_status(response: httpx.Response, *, provider: str) -> None:
    if not response.is_success:
        raise ProviderRequestError(
            provider=provider,
            status_code=response.status_code,
            message=safe_error_message(response),
        )
