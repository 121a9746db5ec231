#!/usr/bin/env python3
"""
hibe-revocation - command-line interface for the revocation gateway.

Commands:
    hibe-revocation serve                    Run the gateway
    hibe-revocation fingerprint H URI S E    Compute a key fingerprint locally
    hibe-revocation revoke                   Revoke a key
    hibe-revocation revoke-uri URI           Revoke every known key under a URI
    hibe-revocation check FINGERPRINT        Is a key revoked?
    hibe-revocation list                     List revocations
    hibe-revocation reinstate FINGERPRINT    Clear a revocation
    hibe-revocation stats                    Revocation counts
    hibe-revocation cleanup                  Remove expired revocations
    hibe-revocation delegations              Show the delegation log
    hibe-revocation config                   Show configuration
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from hibe_revocation import config
from hibe_revocation.client import GatewayConnectionError, RevocationClient
from hibe_revocation.errors import RevocationError
from hibe_revocation.fingerprint import fingerprint_hex

app = typer.Typer(
    name="hibe-revocation",
    help="Revocation registry and gate for HIBE key delegation",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()

URL_OPTION = typer.Option(config.SERVER_URL, "--url", "-u", help="Gateway URL")


# =============================================================================
# Utility Functions
# =============================================================================


def format_timestamp(ts: Optional[int]) -> str:
    """Format a Unix timestamp for display."""
    if ts is None:
        return "never"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def truncate_key(key: str, length: int = 16) -> str:
    """Truncate a fingerprint for display with ellipsis."""
    if len(key) <= length:
        return key
    return f"{key[:length//2]}...{key[-length//2:]}"


def call(action):
    """Run a client call, turning gateway errors into a clean exit."""
    try:
        return action()
    except GatewayConnectionError:
        rprint(Panel(
            "[bold red]Revocation gateway not reachable![/bold red]\n\n"
            "[dim]Start it with:[/dim] [bold cyan]hibe-revocation serve[/bold cyan]",
            title="Connection Error",
            border_style="red",
        ))
        raise typer.Exit(1)
    except RevocationError as e:
        rprint(f"[red]{e.kind}:[/red] {e.message}")
        raise typer.Exit(1)


def entries_table(entries: list, title: str) -> Table:
    table = Table(title=title)
    table.add_column("Fingerprint", style="cyan")
    table.add_column("URI")
    table.add_column("Status")
    table.add_column("Reason")
    table.add_column("Effective from")
    table.add_column("Effective until")
    for e in entries:
        table.add_row(
            truncate_key(e["fingerprint"]),
            e.get("uri") or "-",
            e.get("status", "-"),
            e["reason"],
            format_timestamp(e["effective_from"]),
            format_timestamp(e.get("effective_until")),
        )
    return table


# =============================================================================
# Commands
# =============================================================================


@app.command("serve")
def serve(
    host: str = typer.Option(config.HOST, help="Bind host"),
    port: int = typer.Option(config.PORT, help="Bind port"),
):
    """Run the revocation gateway."""
    from hibe_revocation.server import main

    main(host=host, port=port)


@app.command("fingerprint")
def fingerprint_cmd(
    hierarchy: str = typer.Argument(..., help="Authority hierarchy"),
    uri: str = typer.Argument(..., help="Delegated URI pattern"),
    start: int = typer.Argument(..., help="Window start (Unix seconds)"),
    end: int = typer.Argument(..., help="Window end (Unix seconds)"),
):
    """Compute a key fingerprint without contacting the gateway."""
    try:
        print(fingerprint_hex(hierarchy, uri, start, end))
    except RevocationError as e:
        rprint(f"[red]{e.kind}:[/red] {e.message}")
        raise typer.Exit(1)


@app.command("revoke")
def revoke(
    reason: str = typer.Option(..., "--reason", "-r", help="Reason for revocation"),
    fingerprint: Optional[str] = typer.Option(None, "--fingerprint", "-f"),
    hierarchy: Optional[str] = typer.Option(None, "--hierarchy"),
    uri: Optional[str] = typer.Option(None, "--uri"),
    start: Optional[int] = typer.Option(None, "--start"),
    end: Optional[int] = typer.Option(None, "--end"),
    revoked_by: str = typer.Option("", "--by", help="Revoking principal"),
    effective_from: Optional[int] = typer.Option(None, "--from", help="Unix seconds"),
    duration: Optional[int] = typer.Option(None, "--for", help="Seconds the revocation lasts"),
    url: str = URL_OPTION,
):
    """
    Revoke a key by fingerprint or by delegation tuple.

    Examples:
        hibe-revocation revoke -f 3a7b... -r "device lost"
        hibe-revocation revoke --hierarchy testHierarchy --uri facility/bin123/record \\
            --start 1565119330 --end 1565219330 -r "maintenance" --for 3600
    """
    with RevocationClient(url) as client:
        data = call(lambda: client.revoke(
            reason,
            fingerprint=fingerprint,
            hierarchy=hierarchy,
            uri=uri,
            start=start,
            end=end,
            revoked_by=revoked_by,
            effective_from=effective_from,
            effective_for_seconds=duration,
        ))
    rprint(f"[green]✓[/green] Revoked [cyan]{data['fingerprint']}[/cyan]")
    rprint(f"  effective {format_timestamp(data['effective_from'])} "
           f"until {format_timestamp(data.get('effective_until'))}")


@app.command("revoke-uri")
def revoke_uri(
    uri: str = typer.Argument(...),
    reason: str = typer.Option(..., "--reason", "-r"),
    revoked_by: str = typer.Option("", "--by"),
    url: str = URL_OPTION,
):
    """Revoke every known key under a URI."""
    with RevocationClient(url) as client:
        data = call(lambda: client.revoke_by_uri(uri, reason, revoked_by))
    rprint(f"[green]✓[/green] Revoked {data['revoked_count']} key(s) for {uri}")


@app.command("check")
def check(fingerprint: str = typer.Argument(...), url: str = URL_OPTION):
    """Check whether a key is currently revoked."""
    with RevocationClient(url) as client:
        data = call(lambda: client.check(fingerprint))
    if data["is_revoked"]:
        entry = data.get("entry", {})
        rprint(f"[red]REVOKED[/red] {data['fingerprint']} - {entry.get('reason', '')}")
        raise typer.Exit(2)
    rprint(f"[green]not revoked[/green] {data['fingerprint']}")


@app.command("list")
def list_cmd(
    status: str = typer.Option("all", "--status", "-s", help="all, active, pending or expired"),
    uri: Optional[str] = typer.Option(None, "--uri", help="Only entries for this URI"),
    url: str = URL_OPTION,
):
    """List revocations."""
    with RevocationClient(url) as client:
        if uri:
            data = call(lambda: client.list_by_uri(uri))
        else:
            data = call(lambda: client.list_revocations(status))
    console.print(entries_table(data["entries"], f"Revocations ({data['count']})"))


@app.command("reinstate")
def reinstate(fingerprint: str = typer.Argument(...), url: str = URL_OPTION):
    """Clear a revocation, reinstating the key."""
    with RevocationClient(url) as client:
        data = call(lambda: client.reinstate(fingerprint))
    rprint(f"[green]✓[/green] Reinstated [cyan]{data['fingerprint']}[/cyan]")


@app.command("stats")
def stats(url: str = URL_OPTION):
    """Show revocation counts."""
    with RevocationClient(url) as client:
        data = call(client.stats)
    table = Table(title="Revocation statistics")
    table.add_column("Metric")
    table.add_column("Count", justify="right")
    for key in ("total", "active", "pending", "expired", "unique_uris"):
        table.add_row(key, str(data[key]))
    console.print(table)


@app.command("cleanup")
def cleanup(url: str = URL_OPTION):
    """Remove expired revocations."""
    with RevocationClient(url) as client:
        data = call(client.cleanup)
    rprint(f"[green]✓[/green] Removed {data['removed_count']}, "
           f"{data['remaining_count']} remaining")


@app.command("delegations")
def delegations(url: str = URL_OPTION):
    """Show the delegation log."""
    with RevocationClient(url) as client:
        data = call(client.delegations)
    table = Table(title=f"Delegations ({data['count']})")
    table.add_column("Fingerprint", style="cyan")
    table.add_column("URI")
    table.add_column("Window")
    table.add_column("Uses", justify="right")
    table.add_column("Revoked")
    for d in data["delegations"]:
        table.add_row(
            truncate_key(d["fingerprint"]),
            d["uri"],
            f"{format_timestamp(d['window_start'])} - {format_timestamp(d['window_end'])}",
            str(d["use_count"]),
            "[red]yes[/red]" if d["is_revoked"] else "no",
        )
    console.print(table)


@app.command("config")
def show_config():
    """Show the effective configuration."""
    config.print_config()


def main():
    app()


if __name__ == "__main__":
    main()
