"""Slash command for runtime status."""

from __future__ import annotations

from typing import Dict, Iterable, List, Sequence, Tuple

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..slash_commands import SlashCommand, SlashCommandContext, render_rich

SECTION_ALIASES: Dict[str, Sequence[str]] = {
    "info": ("info", "summary"),
    "store": ("store", "db", "data"),
    "diagnostics": ("diagnostics", "diag", "diags"),
}
DEFAULT_MAX_ROWS = 5


def _resolve_sections(args: Iterable[str]) -> Tuple[List[str], bool]:
    """Return sections to render and whether all rows should be shown."""

    normalized = [arg.strip().lower() for arg in args]
    show_all = any(arg in {"--all", "-a", "all"} for arg in normalized)

    requested: List[str] = []
    for section, aliases in SECTION_ALIASES.items():
        if any(arg in aliases for arg in normalized):
            requested.append(section)

    if not requested:
        requested = list(SECTION_ALIASES.keys())

    return requested, show_all


async def _handler(context: SlashCommandContext, args: List[str]) -> str:
    config = context.config
    runtime = context.runtime
    sections, show_all = _resolve_sections(args)

    def _render_summary(console: Console) -> None:
        info = Table.grid(padding=(0, 1))
        info.add_column("Key", style="bold", no_wrap=True)
        info.add_column("Value", overflow="fold")
        info.add_row("Data dir", str(config.data_dir))
        info.add_row("Status", config.status)
        info.add_row("Config files", str(len(config.files_loaded)))
        info.add_row("Log path", str(config.log_path or "(not initialized)"))
        if runtime is not None:
            sync_status = runtime.sync.get_status()
            info.add_row("Database", str(runtime.store.db_path))
            info.add_row("Sync", sync_status.state.value)
            info.add_row("Uptime", f"{int(runtime.uptime)}s")

        console.print(
            Panel(
                info,
                title="Runtime Status",
                border_style="green",
                padding=(0, 1),
            )
        )

    def _render_store(console: Console) -> None:
        if runtime is None:
            console.print(Panel("[dim]Local store not open.", title="Store", border_style="blue"))
            return

        stats = runtime.store.get_stats()
        table = Table(
            show_header=True,
            header_style="bold blue",
            box=box.SIMPLE,
            pad_edge=False,
        )
        table.add_column("Collection", style="cyan")
        table.add_column("Total", justify="right")
        table.add_column("Unsynced", justify="right", style="yellow")
        table.add_column("Local only", justify="right")
        for name in ("tasks", "notes"):
            table.add_row(
                name,
                str(stats[f"{name}_total"]),
                str(stats[f"{name}_unsynced"]),
                str(stats[f"{name}_local_only"]),
            )
        console.print(Panel(table, title="Store", border_style="blue", padding=(0, 1)))

    def _render_diagnostics(console: Console) -> None:
        if not config.diagnostics:
            console.print(Panel("[green]No diagnostics reported.", title="Diagnostics", border_style="red"))
            return

        diag_table = Table(
            show_header=True,
            header_style="bold red",
            box=box.SIMPLE,
            pad_edge=False,
        )
        diag_table.add_column("Lvl", style="red", no_wrap=True)
        diag_table.add_column("Message", overflow="fold", ratio=2)
        diag_table.add_column("Source", overflow="fold", ratio=2)

        max_rows = len(config.diagnostics) if show_all else DEFAULT_MAX_ROWS
        for diag in config.diagnostics[:max_rows]:
            diag_table.add_row(diag.level.upper(), diag.message, str(diag.source or config.data_dir))

        console.print(
            Panel(
                diag_table,
                title="Diagnostics",
                border_style="red",
                padding=(0, 1),
            )
        )
        if len(config.diagnostics) > max_rows:
            console.print(
                f"\n[dim]Showing {max_rows}/{len(config.diagnostics)}. "
                "Use '/status diagnostics --all' for the full list.[/dim]"
            )

    renderers = {
        "info": _render_summary,
        "store": _render_store,
        "diagnostics": _render_diagnostics,
    }

    def _render(console: Console) -> None:
        for section in sections:
            renderers[section](console)

    return render_rich(_render)


COMMAND = SlashCommand(
    name="status",
    description="Show data directory, store, and configuration diagnostics.",
    handler=_handler,
)
