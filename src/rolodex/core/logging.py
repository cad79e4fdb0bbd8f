"""Structured logging for rolodex, with sync-run context.

Uses structlog's ProcessorFormatter so plain ``logging.getLogger(__name__)``
call sites render through structlog without changes.

Two output formats:
- ``text``: colored, human-readable console output (dev default)
- ``json``: JSON lines (production / log aggregation)

The identity of the current sync run (workspace, integration, provider) is
injected from ContextVars, and OTel trace context from the current span.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path

import structlog
from opentelemetry import trace

_workspace_context: ContextVar[str | None] = ContextVar("workspace_id", default=None)
_integration_context: ContextVar[str | None] = ContextVar("integration_id", default=None)
_provider_context: ContextVar[str | None] = ContextVar("provider", default=None)

_NOISE_LOGGERS = ("httpx", "httpcore", "asyncio")
_LOG_FILE_NAME = "rolodex.log"


@contextmanager
def bind_sync_context(
    *,
    workspace_id: str | None,
    integration_id: str | None = None,
    provider: str | None = None,
) -> Iterator[None]:
    """Tag every log record emitted inside the block with the run identity."""
    tokens = (
        _workspace_context.set(workspace_id),
        _integration_context.set(integration_id),
        _provider_context.set(provider),
    )
    try:
        yield
    finally:
        _provider_context.reset(tokens[2])
        _integration_context.reset(tokens[1])
        _workspace_context.reset(tokens[0])


def get_sync_context() -> dict[str, str | None]:
    return {
        "workspace_id": _workspace_context.get(),
        "integration_id": _integration_context.get(),
        "provider": _provider_context.get(),
    }


def add_sync_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Inject the run identity keys that are set in the current context."""
    for key, value in get_sync_context().items():
        if value is not None:
            event_dict.setdefault(key, value)
    return event_dict


def add_otel_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Inject ``trace_id`` and ``span_id`` from the current OTel span."""
    ctx = trace.get_current_span().get_span_context()
    if ctx and ctx.trace_id:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def _build_processors(time_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt),
        add_sync_context,
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
    ]


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | None = None,
) -> None:
    """Configure structured logging for the process.

    Parameters
    ----------
    level:
        Root log level (e.g. "DEBUG", "INFO", "WARNING").
    fmt:
        ``"text"`` for colored console output, ``"json"`` for JSON lines.
    log_root:
        When set, JSON logs are also written to ``{log_root}/rolodex.log``.
    """
    if fmt == "json":
        console_processors = _build_processors(time_fmt="iso")
        renderer = structlog.processors.JSONRenderer()
    else:
        console_processors = _build_processors(time_fmt="%H:%M:%S")
        renderer = structlog.dev.ConsoleRenderer()

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=console_processors,
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)

    root = logging.getLogger()
    # Reconfiguration replaces handlers instead of stacking them
    root.handlers.clear()
    root.addHandler(console_handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if log_root is not None:
        log_root = Path(log_root)
        log_root.mkdir(parents=True, exist_ok=True)
        file_formatter = structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.JSONRenderer(),
            ],
            foreign_pre_chain=_build_processors(time_fmt="iso"),
        )
        file_handler = logging.FileHandler(log_root / _LOG_FILE_NAME)
        file_handler.setFormatter(file_formatter)
        file_handler.setLevel(logging.DEBUG)
        root.addHandler(file_handler)

    structlog.configure(
        processors=[
            *console_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
