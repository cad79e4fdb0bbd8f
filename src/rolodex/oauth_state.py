"""Signed OAuth ``state`` parameter.

The state binds a consent round-trip to the workspace and user that started
it: ``base64url(json payload) + "." + hex(HMAC-SHA256(payload))``, where the
payload is ``{"workspaceId", "userId", "ts"}`` with ``ts`` in epoch
milliseconds.  States older than ten minutes are rejected.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import time
from dataclasses import dataclass

from rolodex.errors import OAuthStateError

STATE_MAX_AGE_MS = 10 * 60 * 1000


@dataclass(frozen=True)
class OAuthState:
    workspace_id: str
    user_id: str | None
    issued_at_ms: int


def _now_ms() -> int:
    return int(time.time() * 1000)


def _signature(secret: str, payload: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def _require_secret(secret: str | None) -> str:
    if not secret:
        raise OAuthStateError("OAuth state secret is not configured (OAUTH_STATE_SECRET)")
    return secret


def sign_state(
    secret: str | None,
    workspace_id: str,
    user_id: str | None = None,
    *,
    now_ms: int | None = None,
) -> str:
    payload = json.dumps(
        {
            "workspaceId": workspace_id,
            "userId": user_id,
            "ts": _now_ms() if now_ms is None else now_ms,
        },
        separators=(",", ":"),
    ).encode("utf-8")
    encoded = base64.urlsafe_b64encode(payload).decode("ascii").rstrip("=")
    return f"{encoded}.{_signature(_require_secret(secret), payload)}"


def verify_state(
    secret: str | None,
    state: str,
    *,
    now_ms: int | None = None,
    max_age_ms: int = STATE_MAX_AGE_MS,
) -> OAuthState:
    """Check the signature and age of *state* and return its payload."""
    key = _require_secret(secret)
    encoded, sep, signature = state.rpartition(".")
    if not sep or not encoded or not signature:
        raise OAuthStateError("Malformed OAuth state")

    try:
        payload = base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4))
    except (binascii.Error, ValueError) as exc:
        raise OAuthStateError("Malformed OAuth state payload") from exc

    expected = _signature(key, payload)
    if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
        raise OAuthStateError("OAuth state signature mismatch")

    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise OAuthStateError("OAuth state payload is not JSON") from exc
    if not isinstance(data, dict) or not isinstance(data.get("workspaceId"), str):
        raise OAuthStateError("OAuth state payload has no workspace")

    issued_at = data.get("ts")
    if not isinstance(issued_at, int) or isinstance(issued_at, bool):
        raise OAuthStateError("OAuth state payload has no timestamp")
    current = _now_ms() if now_ms is None else now_ms
    if current - issued_at > max_age_ms:
        raise OAuthStateError("OAuth state has expired")

    user_id = data.get("userId")
    return OAuthState(
        workspace_id=data["workspaceId"],
        user_id=user_id if isinstance(user_id, str) else None,
        issued_at_ms=issued_at,
    )
