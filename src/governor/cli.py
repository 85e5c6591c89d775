"""
Governor CLI Tool
Command-line interface for inspecting and maintaining API governance state.
"""

import asyncio
import sys
from collections.abc import Awaitable, Callable
from typing import Any

import click
from rich.console import Console
from rich.table import Table

from governor.config import Settings, get_settings
from governor.errors import GovernorError
from governor.gateway import Gateway
from governor.http.client import HttpClient
from governor.logging_config import configure_logging
from governor.providers import ProviderClient

console = Console()


def run_with_gateway(settings: Settings, action: Callable[[Gateway], Awaitable[Any]]) -> Any:
    """Build a gateway, run an async action against it, then close it."""

    async def runner() -> Any:
        gateway = await Gateway.from_settings(settings)
        try:
            return await action(gateway)
        finally:
            await gateway.close()

    return asyncio.run(runner())


def parse_params(pairs: tuple[str, ...]) -> dict[str, str]:
    """Parse key=value pairs from the command line."""
    params = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint="--param")
        params[key] = value
    return params


@click.group()
@click.option("--log-level", "-l", default=None, help="Override LOG_LEVEL")
@click.pass_context
def cli(ctx, log_level: str | None):
    """Governor CLI - rate limits, caches and budgets for dashboard API calls."""
    settings = get_settings()
    configure_logging(log_level or settings.log_level)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def status(ctx, as_json: bool):
    """Show service limits and this month's usage."""

    async def collect(gateway: Gateway) -> list[dict[str, Any]]:
        usage = await gateway.usage.all_usage()
        rows = []
        for service, limits in gateway.rate_card.items():
            rows.append(
                {
                    "service": service.value,
                    "name": limits.name,
                    "capacity": limits.capacity,
                    "window_ms": limits.window_ms,
                    **usage[service.value].to_dict(),
                }
            )
        return rows

    rows = run_with_gateway(ctx.obj["settings"], collect)

    if as_json:
        console.print_json(data=rows)
        return

    table = Table(title="API Services")
    table.add_column("Service", style="cyan")
    table.add_column("Rate", justify="right")
    table.add_column("Used", justify="right")
    table.add_column("Monthly limit", justify="right")
    table.add_column("Usage", justify="right")

    for row in rows:
        pct = row["percentage"]
        color = "red" if pct >= 100 else "yellow" if pct > 80 else "green"
        limit = f"{row['limit']:,}" if row["limit"] is not None else "∞"
        table.add_row(
            row["name"],
            f"{row['capacity']}/{row['window_ms'] // 1000}s",
            f"{row['used']:,}",
            limit,
            f"[{color}]{pct:.1f}%[/{color}]",
        )

    console.print(table)


@cli.command("reset-usage")
@click.argument("service", required=False)
@click.confirmation_option(prompt="Delete usage counters?")
@click.pass_context
def reset_usage(ctx, service: str | None):
    """Delete monthly usage counters (all services if SERVICE is omitted)."""
    try:
        count = run_with_gateway(
            ctx.obj["settings"], lambda gateway: gateway.usage.reset_usage(service)
        )
    except GovernorError as e:
        console.print(f"❌ [red]Error: {e}[/red]")
        sys.exit(1)
    console.print(f"✅ [green]Deleted {count} usage counters[/green]")


@cli.command("cache-stats")
@click.pass_context
def cache_stats(ctx):
    """Show cache entry counts."""
    stats = run_with_gateway(ctx.obj["settings"], lambda gateway: gateway.cache.stats())
    console.print(f"Memory entries:  {stats['memory']['size']}")
    console.print(f"Durable entries: {stats['durable']['size']} ({stats['durable']['backend']})")


@cli.command()
@click.pass_context
def sweep(ctx):
    """Purge expired cache entries now."""
    removed = run_with_gateway(ctx.obj["settings"], lambda gateway: gateway.cache.sweep_expired())
    console.print(f"✅ [green]Removed {removed} expired entries[/green]")


@cli.command("clear-cache")
@click.confirmation_option(prompt="Drop all cached responses?")
@click.pass_context
def clear_cache(ctx):
    """Drop every cached response (usage counters are kept)."""
    removed = run_with_gateway(ctx.obj["settings"], lambda gateway: gateway.cache.clear())
    console.print(f"✅ [green]Removed {removed} entries[/green]")


@cli.command()
@click.argument("service")
@click.argument("endpoint")
@click.option("--param", "-p", "params", multiple=True, help="Query parameter as key=value")
@click.option("--ttl-ms", type=int, default=None, help="Cache lifetime in milliseconds")
@click.option("--force", is_flag=True, help="Skip the fresh-cache lookup")
@click.pass_context
def fetch(ctx, service: str, endpoint: str, params: tuple[str, ...], ttl_ms: int | None, force: bool):
    """Run a governed GET against a provider and print the JSON body."""
    settings = ctx.obj["settings"]
    query = parse_params(params)

    async def do_fetch(gateway: Gateway) -> Any:
        async with HttpClient.from_settings(settings) as http:
            client = ProviderClient(gateway, http, settings.api_keys())
            return await client.get_json(
                service, endpoint, query, ttl_ms=ttl_ms, force_refresh=force
            )

    try:
        result = run_with_gateway(settings, do_fetch)
    except GovernorError as e:
        console.print(f"❌ [red]Error: {e}[/red]")
        sys.exit(1)

    if result.stale:
        console.print("⚠️ [yellow]Served stale cached data[/yellow]")
    elif result.cached:
        console.print("[dim]cache hit[/dim]")
    console.print_json(data=result.data)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
