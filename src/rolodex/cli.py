"""CLI for rolodex: run the auto-sync scheduler, trigger runs, import files."""

from __future__ import annotations

import asyncio
import secrets
import signal
import sys
from pathlib import Path

import click
import httpx

from rolodex.config import ConfigError, RolodexConfig, load_config
from rolodex.connectors.registry import build_default_registry
from rolodex.core.logging import configure_logging
from rolodex.errors import RolodexError
from rolodex.pg_store import ensure_schema
from rolodex.runtime import open_runtime


def _config(ctx: click.Context) -> RolodexConfig:
    return ctx.obj["config"]


def _run(coro) -> None:
    """Run *coro*, turning rolodex errors into a clean non-zero exit."""
    try:
        asyncio.run(coro)
    except RolodexError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)


@click.group()
@click.version_option(version="0.1.0")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to a rolodex.toml file (environment variables are used otherwise)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """Rolodex: multi-provider contact and interaction sync."""
    try:
        config = load_config(config_path)
    except ConfigError as exc:
        click.echo(f"Configuration error: {exc}", err=True)
        sys.exit(1)
    configure_logging(
        config.logging.level,
        config.logging.format,
        Path(config.logging.log_root) if config.logging.log_root else None,
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@cli.command()
@click.pass_context
def providers(ctx: click.Context) -> None:
    """List the registered provider connectors."""

    async def _list() -> None:
        async with httpx.AsyncClient() as client:
            registry = build_default_registry(_config(ctx), client)
            for connector in registry.list():
                click.echo(f"{connector.id:<20} {connector.auth:<6} {connector.name}")

    _run(_list())


@cli.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create the sync tables when they are missing."""

    async def _init() -> None:
        async with open_runtime(_config(ctx)) as runtime:
            await ensure_schema(runtime.db)
        click.echo("Schema ready")

    _run(_init())


@cli.command()
@click.argument("integration_id")
@click.option("--workspace", "workspace_id", required=True, help="Owning workspace id")
@click.pass_context
def sync(ctx: click.Context, integration_id: str, workspace_id: str) -> None:
    """Run one integration's sync in the foreground."""

    async def _sync() -> None:
        async with open_runtime(_config(ctx)) as runtime:
            summary = await runtime.orchestrator.run(integration_id, workspace_id)
        click.echo(
            f"people created={summary.people_created} updated={summary.people_updated} "
            f"companies created={summary.companies_created} "
            f"interactions created={summary.interactions_created} "
            f"skipped={summary.interactions_skipped} write errors={summary.write_errors}"
        )

    _run(_sync())


@cli.command("import-csv")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--workspace", "workspace_id", required=True, help="Target workspace id")
@click.pass_context
def import_csv(ctx: click.Context, path: Path, workspace_id: str) -> None:
    """Import people from a CSV export."""

    async def _import() -> None:
        async with open_runtime(_config(ctx)) as runtime:
            summary = await runtime.manager.import_file(workspace_id, path.read_bytes(), path.name)
        click.echo(
            f"Imported {path.name}: {summary.people_created} created, "
            f"{summary.people_updated} updated, {summary.companies_created} companies"
        )

    _run(_import())


@cli.command()
@click.argument("integration_id")
@click.option("--workspace", "workspace_id", required=True, help="Owning workspace id")
@click.option("--enable/--disable", "enabled", default=True, help="Turn daily auto-sync on or off")
@click.option("--time", "time_local", default=None, help="Local time of day, HH:MM (24h)")
@click.option("--timezone", default=None, help="IANA timezone; defaults to the workspace's")
@click.pass_context
def autosync(
    ctx: click.Context,
    integration_id: str,
    workspace_id: str,
    enabled: bool,
    time_local: str | None,
    timezone: str | None,
) -> None:
    """Configure daily auto-sync for an integration."""

    async def _configure() -> None:
        async with open_runtime(_config(ctx)) as runtime:
            integration = await runtime.manager.set_auto_sync(
                integration_id,
                workspace_id,
                enabled=enabled,
                time_local=time_local,
                timezone=timezone,
            )
        state = "enabled" if integration.auto_sync_enabled else "disabled"
        click.echo(
            f"Auto-sync {state} for {integration.provider} at "
            f"{integration.auto_sync_time_local or 'default time'} "
            f"({integration.auto_sync_timezone or 'workspace timezone'})"
        )

    _run(_configure())


@cli.command()
@click.argument("integration_id")
@click.option("--workspace", "workspace_id", required=True, help="Owning workspace id")
@click.pass_context
def disconnect(ctx: click.Context, integration_id: str, workspace_id: str) -> None:
    """Delete an integration and its trigger history."""

    async def _disconnect() -> None:
        async with open_runtime(_config(ctx)) as runtime:
            await runtime.manager.disconnect(integration_id, workspace_id)
        click.echo(f"Disconnected {integration_id}")

    _run(_disconnect())


@cli.command("connect-url")
@click.argument("family", type=click.Choice(["google", "microsoft"]))
@click.option("--workspace", "workspace_id", required=True, help="Workspace being connected")
@click.option("--user", "user_id", default=None, help="User starting the consent flow")
@click.pass_context
def connect_url(ctx: click.Context, family: str, workspace_id: str, user_id: str | None) -> None:
    """Print the provider consent URL for a workspace."""

    async def _url() -> None:
        config = _config(ctx)
        async with open_runtime(config) as runtime:
            url = runtime.manager.begin_oauth(
                family, workspace_id, user_id, config.redirect_uri(family)
            )
        click.echo(url)

    _run(_url())


@cli.command()
@click.option("--once", is_flag=True, help="Evaluate a single tick, wait for its runs, and exit")
@click.pass_context
def scheduler(ctx: click.Context, once: bool) -> None:
    """Run the auto-sync scheduler."""
    _run(_scheduler(_config(ctx), once=once))


async def _scheduler(config: RolodexConfig, *, once: bool) -> None:
    async with open_runtime(config) as runtime:
        if once:
            report = await runtime.scheduler.tick()
            await runtime.trigger.drain()
            click.echo(
                f"evaluated={report.evaluated} matched={report.matched} "
                f"triggered={report.triggered} duplicates={report.duplicates} "
                f"failed={report.failed}"
            )
            return

        loop = asyncio.get_running_loop()
        shutdown_event = asyncio.Event()

        def _signal_handler() -> None:
            click.echo("\nShutting down...")
            shutdown_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _signal_handler)

        ticker = asyncio.create_task(runtime.scheduler.run_forever())
        click.echo(f"Scheduler running (cron {config.scheduler.cron!r})")
        await shutdown_event.wait()
        ticker.cancel()
        try:
            await ticker
        except asyncio.CancelledError:
            pass
        await runtime.trigger.drain()


@cli.command("generate-key")
def generate_key() -> None:
    """Print a fresh 256-bit encryption key for INTEGRATION_ENCRYPTION_KEY."""
    click.echo(secrets.token_hex(32))
