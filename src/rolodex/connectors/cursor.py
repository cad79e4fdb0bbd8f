"""Single full-resync fallback for cursor-based connectors."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from rolodex.connectors.base import SyncResult
from rolodex.errors import CursorRejectedError, StaleCursorError

logger = logging.getLogger(__name__)

CollectFn = Callable[[dict[str, Any]], Awaitable[SyncResult]]


async def collect_with_full_resync(
    collect: CollectFn,
    cursor: dict[str, Any],
    *,
    provider: str,
    cursor_key: str,
) -> SyncResult:
    """Run *collect* with the stored cursor, then at most once without it.

    ``collect`` raises ``CursorRejectedError`` when the provider refuses the
    cursor.  The retry drops only ``cursor_key``; a second rejection is fatal.
    """
    try:
        return await collect(cursor)
    except CursorRejectedError as exc:
        logger.warning(
            "%s rejected stored %s (%s); running a full resync",
            provider,
            cursor_key,
            exc,
        )

    cleared = {key: value for key, value in cursor.items() if key != cursor_key}
    try:
        return await collect(cleared)
    except CursorRejectedError as exc:
        raise StaleCursorError(
            f"{provider} rejected the sync cursor again during full resync: {exc}"
        ) from exc
