"""Slash command for PocketBase synchronization."""

from __future__ import annotations

from typing import List

from rich.console import Console
from rich.table import Table

from ..models import format_timestamp
from ..slash_commands import (
    SlashCommand,
    SlashCommandContext,
    render_rich,
)
from ..sync import RemoteError, SyncGatingError


async def _handler(context: SlashCommandContext, args: List[str]) -> str:
    """Manage synchronization with the PocketBase server."""

    if not args:
        return _show_status(context)

    subcommand = args[0].lower()

    if subcommand == "status":
        return _show_status(context)
    elif subcommand == "now":
        return await _run_sync(context)
    elif subcommand == "auto":
        return _start_auto(context, args[1:])
    elif subcommand == "stop":
        context.runtime.sync.stop_auto_sync()
        return "[sync] Auto-sync stopped."
    elif subcommand == "login":
        return await _login(context, args[1:])
    elif subcommand == "logout":
        await context.runtime.auth.logout()
        return "[sync] Logged out."
    elif subcommand == "refresh":
        return await _refresh(context)
    elif subcommand == "help":
        return _show_help()
    else:
        return f"[sync] Unknown subcommand '{subcommand}'. Use /sync help for usage."


def _show_status(context: SlashCommandContext) -> str:
    """Show sync status."""
    runtime = context.runtime
    settings = runtime.settings.get()
    status = runtime.sync.get_status()
    auth_status = runtime.auth.get_status()
    stats = runtime.store.get_stats()

    def _render(console: Console) -> None:
        table = Table(title="Sync Status", show_header=False)
        table.add_column("Property", style="bold")
        table.add_column("Value")

        table.add_row("State", status.state.value.upper())
        table.add_row("Enabled", str(settings.enabled))
        table.add_row("Server URL", settings.server_url or "(not configured)")
        table.add_row("Online", str(status.is_online))
        table.add_row("Signed in", auth_status.email or str(auth_status.is_authenticated))
        table.add_row("Last sync", format_timestamp(status.last_sync) or "(never)")
        if status.error:
            table.add_row("Error", f"[red]{status.error}[/]")

        interval = runtime.sync.auto_sync_interval
        table.add_row("Auto-sync", f"every {interval:g} min" if interval else "off")
        table.add_row("Collections", ", ".join(settings.collections))
        for name in settings.collections:
            total = stats.get(f"{name}_total")
            if total is None:
                continue
            table.add_row(
                f"  {name}",
                f"{total} total, {stats[f'{name}_unsynced']} unsynced, "
                f"{stats[f'{name}_local_only']} local-only",
            )
        for name, error in sorted(runtime.sync.last_collection_errors.items()):
            table.add_row(f"  {name} error", f"[red]{error}[/]")

        console.print(table)

    return render_rich(_render)


async def _run_sync(context: SlashCommandContext) -> str:
    """Run sync operation."""
    service = context.runtime.sync
    if service.get_status().sync_in_progress:
        return "[sync] A sync is already running."

    try:
        await service.sync()
    except SyncGatingError as exc:
        return f"[sync] Sync not started: {exc}"

    lines = ["[sync] Sync completed."]
    for name, outcome in sorted(service.last_outcomes.items()):
        if outcome.ok:
            lines.append(f"  {name}: ok")
        else:
            lines.append(f"  {name}: {outcome.failed} record(s) failed")
            for failure in outcome.failures[:5]:
                lines.append(f"    - {failure.operation} #{failure.local_id}: {failure.message}")
    for name, error in sorted(service.last_collection_errors.items()):
        lines.append(f"  {name}: skipped ({error})")
    return "\n".join(lines)


def _start_auto(context: SlashCommandContext, args: List[str]) -> str:
    settings = context.runtime.settings.get()
    interval = settings.interval_minutes
    if args:
        try:
            interval = float(args[0])
        except ValueError:
            return f"[sync] '{args[0]}' is not a number of minutes."
        if interval <= 0:
            return "[sync] Interval must be positive."

    if not context.runtime.sync.start_auto_sync(interval):
        return "[sync] Sync is disabled. Enable it with '/config sync.enabled true' first."
    return f"[sync] Auto-sync every {interval:g} minute(s)."


async def _login(context: SlashCommandContext, args: List[str]) -> str:
    if len(args) < 2:
        return "[sync] usage: /sync login <email> <password>"
    email, password = args[0], " ".join(args[1:])
    try:
        user = await context.runtime.auth.login(email, password)
    except RemoteError as exc:
        return f"[sync] Login failed: {exc}"
    except RuntimeError as exc:
        return f"[sync] {exc}"
    return f"[sync] Logged in as {user.get('email', email)}."


async def _refresh(context: SlashCommandContext) -> str:
    auth = context.runtime.auth
    if not auth.is_authenticated:
        return "[sync] Not signed in. Use /sync login <email> <password>."
    if await auth.refresh():
        return "[sync] Session refreshed."
    if auth.is_authenticated:
        return f"[sync] Refresh failed, session kept: {auth.get_status().error}"
    return "[sync] Session expired. Please log in again."


def _show_help() -> str:
    """Show sync command help."""
    return """[sync] Usage:
  /sync                          Show sync status
  /sync status                   Show sync status
  /sync now                      Run a sync pass now
  /sync auto [minutes]           Sync periodically (default: sync.interval_minutes)
  /sync stop                     Stop periodic sync
  /sync login <email> <password> Sign in to the PocketBase server
  /sync refresh                  Renew the stored session token
  /sync logout                   Forget the stored session
  /sync help                     Show this help

Configuration (in $TASKDOWN_HOME/config):
  sync:
    enabled: true
    server_url: http://localhost:8090
    auto_sync: true
    interval_minutes: 5
    collections:
      - tasks
      - notes"""


COMMAND = SlashCommand(
    name="sync",
    description="Synchronize with the server. Usage: /sync [status|now|auto|stop|login|refresh|logout]",
    handler=_handler,
    requires_runtime=True,
)
