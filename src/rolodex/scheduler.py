"""Daily auto-sync scheduler.

Every tick lists auto-sync-enabled active integrations and, for each, checks
whether the current wall-clock minute in its effective timezone equals its
preferred local time.  A match claims the idempotency key
``autosync:<integration_id>:<local_date>`` in the trigger ledger before the
run is triggered, so an integration fires at most once per local calendar
date however many ticks land on the matching minute.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter
from opentelemetry import trace

from rolodex.core.metrics import autosync_triggers_total
from rolodex.errors import SyncAlreadyRunningError
from rolodex.gateway import SyncSummary
from rolodex.store import DEFAULT_AUTO_SYNC_TIME, AutoSyncCandidate, IntegrationStore

logger = logging.getLogger(__name__)

DEFAULT_TICK_CRON = "*/5 * * * *"
DEFAULT_TIMEZONE = "UTC"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def is_valid_timezone(name: str | None) -> bool:
    if not name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def resolve_timezone(override: str | None, workspace_timezone: str | None) -> str:
    """Integration override, else workspace preference, else UTC."""
    if is_valid_timezone(override):
        return override  # type: ignore[return-value]
    if is_valid_timezone(workspace_timezone):
        return workspace_timezone  # type: ignore[return-value]
    return DEFAULT_TIMEZONE


def normalize_time(value: str | None, default: str = DEFAULT_AUTO_SYNC_TIME) -> str:
    """Truncate ``HH:MM[:SS]`` to ``HH:MM``; blank means *default*."""
    if not value:
        return default[:5]
    return value.strip()[:5]


def local_parts(now: datetime, timezone: str) -> tuple[str, str]:
    """Return ``(YYYY-MM-DD, HH:MM)`` for *now* in *timezone*."""
    local = now.astimezone(ZoneInfo(timezone))
    return local.strftime("%Y-%m-%d"), local.strftime("%H:%M")


def trigger_key(integration_id: str, local_date: str) -> str:
    return f"autosync:{integration_id}:{local_date}"


@dataclass
class TickReport:
    evaluated: int = 0
    matched: int = 0
    triggered: int = 0
    duplicates: int = 0
    failed: int = 0


class SyncTrigger(Protocol):
    async def trigger(self, integration_id: str, workspace_id: str, idempotency_key: str) -> None:
        """Start a run for the integration without waiting for it."""
        ...


class AsyncioTrigger:
    """Runs each triggered sync as an independent asyncio task."""

    def __init__(self, run: Callable[[str, str], Awaitable[SyncSummary]]) -> None:
        self._run = run
        self._tasks: set[asyncio.Task] = set()

    async def trigger(self, integration_id: str, workspace_id: str, idempotency_key: str) -> None:
        task = asyncio.create_task(
            self._run_and_log(integration_id, workspace_id, idempotency_key),
            name=idempotency_key,
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_and_log(
        self, integration_id: str, workspace_id: str, idempotency_key: str
    ) -> None:
        try:
            summary = await self._run(integration_id, workspace_id)
        except SyncAlreadyRunningError:
            logger.info("Skipped %s: integration already syncing", idempotency_key)
        except Exception:
            logger.exception("Triggered sync %s failed", idempotency_key)
        else:
            logger.info(
                "Triggered sync %s completed (%d items)", idempotency_key, summary.items_synced
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every in-flight triggered run."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class AutoSyncScheduler:
    """Evaluates auto-sync preferences and triggers due integrations."""

    def __init__(
        self,
        store: IntegrationStore,
        trigger: SyncTrigger,
        *,
        clock: Callable[[], datetime] = _utcnow,
        cron: str = DEFAULT_TICK_CRON,
        default_time_local: str = DEFAULT_AUTO_SYNC_TIME,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._trigger = trigger
        self._clock = clock
        self._cron = cron
        self._default_time_local = default_time_local
        self._sleep = sleep

    async def tick(self, now: datetime | None = None) -> TickReport:
        """Evaluate every candidate once; per-integration failures do not stop the tick."""
        tracer = trace.get_tracer("rolodex")
        with tracer.start_as_current_span("rolodex.scheduler.tick") as span:
            now = now or self._clock()
            candidates = await self._store.list_auto_sync_candidates()
            report = TickReport(evaluated=len(candidates))
            span.set_attribute("evaluated", report.evaluated)

            for candidate in candidates:
                try:
                    await self._evaluate(candidate, now, report)
                except Exception:
                    report.failed += 1
                    autosync_triggers_total.labels(outcome="failed").inc()
                    logger.exception(
                        "Failed to trigger auto-sync for integration %s", candidate.integration_id
                    )

            span.set_attribute("matched", report.matched)
            span.set_attribute("triggered", report.triggered)
            if report.matched:
                logger.info(
                    "Auto-sync tick: %d evaluated, %d matched, %d triggered, %d duplicates, "
                    "%d failed",
                    report.evaluated,
                    report.matched,
                    report.triggered,
                    report.duplicates,
                    report.failed,
                )
            return report

    async def _evaluate(
        self, candidate: AutoSyncCandidate, now: datetime, report: TickReport
    ) -> None:
        timezone = resolve_timezone(candidate.auto_sync_timezone, candidate.workspace_timezone)
        local_date, local_time = local_parts(now, timezone)
        if local_time != normalize_time(candidate.auto_sync_time_local, self._default_time_local):
            return
        report.matched += 1

        key = trigger_key(candidate.integration_id, local_date)
        if not await self._store.claim_trigger_key(key, candidate.integration_id):
            report.duplicates += 1
            autosync_triggers_total.labels(outcome="duplicate").inc()
            logger.debug("Auto-sync %s already triggered", key)
            return

        await self._trigger.trigger(candidate.integration_id, candidate.workspace_id, key)
        report.triggered += 1
        autosync_triggers_total.labels(outcome="triggered").inc()
        logger.info("Triggered auto-sync %s (%s %s)", key, local_time, timezone)

    def next_tick_at(self, now: datetime) -> datetime:
        return croniter(self._cron, now).get_next(datetime).replace(tzinfo=UTC)

    async def run_forever(self) -> None:
        """Tick on every cron boundary until cancelled."""
        logger.info("Auto-sync scheduler started (cron %r)", self._cron)
        while True:
            now = self._clock()
            delay = max((self.next_tick_at(now) - now).total_seconds(), 0.0)
            await self._sleep(delay)
            try:
                await self.tick()
            except Exception:
                logger.exception("Auto-sync tick failed")
