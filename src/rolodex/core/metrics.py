"""Prometheus metrics for sync runs.

Metrics exported:
- rolodex_sync_runs_total: Counter of orchestrated runs by provider and outcome
- rolodex_sync_run_duration_seconds: Histogram of run wall time
- rolodex_source_api_calls_total: Counter of provider API calls by status
- rolodex_source_api_retries_total: Counter of retried provider API calls
- rolodex_gateway_writes_total: Counter of canonical entity writes by outcome
- rolodex_autosync_triggers_total: Counter of scheduler trigger decisions
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

from prometheus_client import Counter, Histogram

sync_runs_total = Counter(
    "rolodex_sync_runs_total",
    "Total number of integration sync runs",
    labelnames=["provider", "status"],
)

sync_run_duration_seconds = Histogram(
    "rolodex_sync_run_duration_seconds",
    "Wall time of integration sync runs in seconds",
    labelnames=["provider", "status"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0),
)

source_api_calls_total = Counter(
    "rolodex_source_api_calls_total",
    "Total number of provider API calls",
    labelnames=["provider", "status"],
)

source_api_retries_total = Counter(
    "rolodex_source_api_retries_total",
    "Total number of provider API calls retried after 429/5xx",
    labelnames=["provider", "status"],
)

gateway_writes_total = Counter(
    "rolodex_gateway_writes_total",
    "Total number of canonical entity writes",
    labelnames=["entity", "outcome"],
)

autosync_triggers_total = Counter(
    "rolodex_autosync_triggers_total",
    "Scheduler trigger decisions for matched integrations",
    labelnames=["outcome"],
)


def record_source_call(provider: str, status_code: int) -> None:
    source_api_calls_total.labels(provider=provider, status=str(status_code)).inc()


def record_source_retry(provider: str, status_code: int) -> None:
    source_api_retries_total.labels(provider=provider, status=str(status_code)).inc()


def record_gateway_write(entity: str, outcome: str, count: int = 1) -> None:
    if count > 0:
        gateway_writes_total.labels(entity=entity, outcome=outcome).inc(count)


class SyncRunMetrics:
    """Records the outcome and duration of one provider's sync runs."""

    def __init__(self, provider: str) -> None:
        self._provider = provider

    @contextmanager
    def track_run(self) -> Iterator[None]:
        """Time the enclosed block; an escaping exception is recorded as ``error``."""
        start = time.perf_counter()
        status = "success"
        try:
            yield
        except BaseException:
            status = "error"
            raise
        finally:
            sync_runs_total.labels(provider=self._provider, status=status).inc()
            sync_run_duration_seconds.labels(provider=self._provider, status=status).observe(
                time.perf_counter() - start
            )
