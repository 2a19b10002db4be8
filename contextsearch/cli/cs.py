#!/usr/bin/env python3
"""
Command-line client for the ContextSearch daemon.

Usage:
    cs search "query"       - Search apps, tabs, files and more
    cs diagnostics          - Show permissions, source health and caches
    cs invalidate [target]  - Drop cached apps and/or windows
    cs daemon start         - Start the daemon
    cs daemon stop          - Stop the daemon
    cs daemon status        - Check daemon status
"""

import asyncio
from typing import Optional

import click
import httpx
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn
from loguru import logger

console = Console()

# Default daemon URL
DAEMON_URL = "http://localhost:8766"


@click.group()
@click.option("--url", envvar="CONTEXTSEARCH_URL", default=DAEMON_URL, show_default=True,
              help="Daemon base URL")
@click.pass_context
def cli(ctx, url: str):
    """ContextSearch - unified launcher search."""
    ctx.ensure_object(dict)
    ctx.obj["url"] = url.rstrip("/")


@cli.command()
@click.argument("query")
@click.option("--no-apps", is_flag=True, help="Skip installed applications")
@click.option("--no-tabs", is_flag=True, help="Skip open tabs and windows")
@click.option("--no-files", is_flag=True, help="Skip file search")
@click.option("--no-commands", is_flag=True, help="Skip system commands")
@click.option("--no-shortcuts", is_flag=True, help="Skip Shortcuts")
@click.option("--no-plugins", is_flag=True, help="Skip plugins")
@click.option("--grouped", "-g", is_flag=True, help="Group tabs and files like the launcher does")
@click.pass_context
def search(ctx, query: str, no_apps: bool, no_tabs: bool, no_files: bool,
           no_commands: bool, no_shortcuts: bool, no_plugins: bool, grouped: bool):
    """Search everything."""
    filters = {
        "apps": not no_apps,
        "tabs": not no_tabs,
        "files": not no_files,
        "commands": not no_commands,
        "shortcuts": not no_shortcuts,
        "plugins": not no_plugins,
    }
    asyncio.run(run_search(ctx.obj["url"], query, filters, grouped))


async def run_search(url: str, query: str, filters: dict, grouped: bool):
    """Send search request to daemon."""
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=console
        ) as progress:
            progress.add_task(description="Searching...", total=None)

            async with httpx.AsyncClient() as client:
                response = await client.post(
                    f"{url}/search",
                    params={"organize": "true"} if grouped else None,
                    json={"query": query, "filters": filters, "callerId": "cli"},
                    timeout=10.0
                )

        if response.status_code == 200:
            display_search_results(response.json(), grouped)
        else:
            console.print(f"[red]Search failed:[/red] {response.text}")

    except httpx.ConnectError:
        console.print("[red]Cannot connect to daemon[/red]")
        console.print("Start with: [cyan]cs daemon start[/cyan]")
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")


def _detail(result: dict) -> str:
    kind = result.get("type")
    if kind in ("tab", "window"):
        return result.get("url") or result.get("appName", "")
    if kind == "web-search":
        return result.get("url", "")
    if kind == "command":
        return result.get("description", "")
    return result.get("path") or ""


def display_search_results(data: dict, grouped: bool = False):
    """Display search results in a nice table."""
    results = data.get("results", [])

    if not results:
        console.print("[yellow]No results found[/yellow]")
        return

    table = Table(title=f"Results ({len(results)})")
    if grouped:
        table.add_column("Group", style="green")
    table.add_column("Name", style="cyan", no_wrap=False)
    table.add_column("Type", style="magenta")
    table.add_column("Score", justify="right")
    table.add_column("Detail", no_wrap=False)

    for r in results:
        row = [
            r.get("name", "Untitled"),
            r.get("type", "unknown"),
            f"{r.get('score', 0):.2f}",
            _detail(r)[:100]
        ]
        if grouped:
            group = r.get("group")
            label = ""
            if group and r.get("isGroupStart"):
                label = f"{group['name']} ({group['itemCount']})"
            row.insert(0, label)
        table.add_row(*row)

    console.print(table)


@cli.command()
@click.pass_context
def diagnostics(ctx):
    """Show automation permission, source health and cache statistics."""
    asyncio.run(show_diagnostics(ctx.obj["url"]))


async def show_diagnostics(url: str):
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(f"{url}/diagnostics", timeout=5.0)

        if response.status_code != 200:
            console.print(f"[red]Failed to get diagnostics:[/red] {response.text}")
            return

        data = response.json()
        automation = data.get("permissions", {}).get("automation", {})
        if automation.get("granted", True):
            console.print("[green]✓ Automation permission granted[/green]")
        else:
            console.print(f"[red]✗ Automation permission denied:[/red] {automation.get('error')}")

        sources = data.get("health", {}).get("sources", {})
        if sources:
            table = Table(title="Sources")
            table.add_column("Source", style="cyan")
            table.add_column("State")
            table.add_column("Error rate", justify="right")
            table.add_column("Failures in a row", justify="right")

            state_color = {"healthy": "green", "degraded": "yellow", "circuit_open": "red"}
            for name, health in sorted(sources.items()):
                color = state_color.get(health.get("state"), "white")
                table.add_row(
                    name,
                    f"[{color}]{health.get('state')}[/{color}]",
                    f"{health.get('error_rate', 0):.1%}",
                    str(health.get("consecutive_failures", 0))
                )
            console.print(table)

        windows = data.get("caches", {}).get("windows", {})
        apps = data.get("caches", {}).get("apps", {})
        console.print(
            f"\nWindow cache: {windows.get('entries', 0)} entries, "
            f"{windows.get('hits', 0)} hits, {windows.get('misses', 0)} misses"
        )
        console.print(f"Applications: {apps.get('count', 0)} cached")

        search = data.get("search", {})
        console.print(
            f"Searches: {search.get('total_searches', 0)} "
            f"(avg {search.get('average_latency_ms', 0):.1f}ms, "
            f"{search.get('timeouts', 0)} with timeouts)"
        )

    except httpx.ConnectError:
        console.print("[red]Cannot connect to daemon[/red]")
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")


@cli.command()
@click.argument("target", type=click.Choice(["apps", "windows", "all"]), default="all")
@click.pass_context
def invalidate(ctx, target: str):
    """Drop cached applications and/or windows."""
    asyncio.run(invalidate_cache(ctx.obj["url"], target))


async def invalidate_cache(url: str, target: str):
    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{url}/cache/invalidate",
                json={"target": target},
                timeout=5.0
            )

        if response.status_code == 200:
            console.print(f"[green]✓[/green] Invalidated {target}")
        else:
            console.print(f"[red]Failed to invalidate:[/red] {response.text}")

    except httpx.ConnectError:
        console.print("[red]Cannot connect to daemon[/red]")
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")


@cli.group()
def daemon():
    """Manage the ContextSearch daemon."""
    pass


@daemon.command()
@click.option("--config", "-c", type=click.Path(exists=True), help="Config file path")
@click.option("--log-level", default="INFO",
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]), show_default=True)
def start(config: Optional[str], log_level: str):
    """Start the ContextSearch daemon."""
    console.print("[cyan]Starting ContextSearch daemon...[/cyan]")

    # Import here so the client commands stay light
    from ..daemon.main import main as daemon_main

    try:
        asyncio.run(daemon_main(config, log_level))
    except KeyboardInterrupt:
        console.print("\n[yellow]Daemon stopped by user[/yellow]")
    except Exception as e:
        console.print(f"[red]Daemon error:[/red] {e}")
        logger.exception("Daemon crashed")


@daemon.command()
@click.pass_context
def stop(ctx):
    """Stop the ContextSearch daemon."""
    asyncio.run(stop_daemon(ctx.obj["url"]))


async def stop_daemon(url: str):
    """Send stop signal to daemon."""
    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(f"{url}/shutdown", timeout=5.0)

            if response.status_code == 200:
                console.print("[green]Daemon stopped[/green]")
            else:
                console.print(f"[red]Failed to stop daemon:[/red] {response.text}")

    except httpx.ConnectError:
        console.print("[yellow]Daemon not running[/yellow]")
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")


@daemon.command()
@click.pass_context
def status(ctx):
    """Check daemon status."""
    asyncio.run(check_status(ctx.obj["url"]))


async def check_status(url: str):
    """Check if daemon is running and get stats."""
    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(f"{url}/status", timeout=2.0)

            if response.status_code == 200:
                data = response.json()
                console.print("[green]✓ Daemon is running[/green]")

                console.print(f"\nUptime: {data.get('uptime', 'unknown')}")
                if data.get("stats"):
                    stats = data["stats"]
                    console.print(f"Searches: {stats.get('search_count', 0)}")
                    console.print(f"Memory: {stats.get('memory_mb', 0):.1f} MB")
            else:
                console.print("[red]Daemon error[/red]")

    except httpx.ConnectError:
        console.print("[red]✗ Daemon is not running[/red]")
        console.print("Start with: [cyan]cs daemon start[/cyan]")
    except Exception as e:
        console.print(f"[red]Error checking status:[/red] {e}")


def main():
    """Entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
