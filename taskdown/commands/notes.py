"""Slash command for managing notes in the local store."""

from __future__ import annotations

from typing import List

from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from ..models import Note, format_timestamp
from ..slash_commands import SlashCommand, SlashCommandContext, render_rich
from ..storage import NoteCollection

CONTENT_SEPARATOR = "--"
PREVIEW_LENGTH = 60


async def _handler(context: SlashCommandContext, args: List[str]) -> str:
    notes = context.runtime.store.notes
    if not args:
        return await _list_notes(notes)

    subcommand, rest = args[0].lower(), args[1:]
    if subcommand == "add":
        return await _add_note(notes, rest)
    if subcommand in {"list", "ls"}:
        return await _list_notes(notes)
    if subcommand == "show":
        return await _show_note(notes, rest)
    if subcommand in {"delete", "rm"}:
        return await _delete_note(notes, rest)
    if subcommand == "search":
        return await _search_notes(notes, rest)
    if subcommand == "help":
        return _show_help()
    return f"[note] Unknown subcommand '{subcommand}'. Use /note help for usage."


def _parse_id(args: List[str]) -> int | None:
    if not args:
        return None
    try:
        return int(args[0].lstrip("#"))
    except ValueError:
        return None


async def _add_note(notes: NoteCollection, args: List[str]) -> str:
    if CONTENT_SEPARATOR in args:
        split = args.index(CONTENT_SEPARATOR)
        title_words, content_words = args[:split], args[split + 1:]
    else:
        title_words, content_words = args, []
    title = " ".join(title_words).strip()
    if not title:
        return "[note] usage: /note add <title> [-- <content>]"

    async with notes.lock:
        note_id = await notes.create({"title": title, "content": " ".join(content_words)})
    return f"[note] Added #{note_id}: {title}"


async def _list_notes(notes: NoteCollection, records: List[Note] | None = None, title: str = "Notes") -> str:
    if records is None:
        records = await notes.get_all()
    if not records:
        return "[note] No notes."

    def _render(console: Console) -> None:
        table = Table(title=title, box=box.SIMPLE, header_style="bold cyan")
        table.add_column("#", justify="right", style="magenta", no_wrap=True)
        table.add_column("Title", overflow="fold")
        table.add_column("Preview", overflow="fold", ratio=2, style="dim")
        table.add_column("Sync", no_wrap=True)
        for note in records:
            preview = note.content.replace("\n", " ")
            if len(preview) > PREVIEW_LENGTH:
                preview = preview[: PREVIEW_LENGTH - 3] + "..."
            if note.remote_id is None:
                marker = "[yellow]local[/]"
            else:
                marker = "[green]synced[/]" if note.synced else "[yellow]pending[/]"
            table.add_row(str(note.id), note.title, preview, marker)
        console.print(table)

    return render_rich(_render)


async def _show_note(notes: NoteCollection, args: List[str]) -> str:
    note_id = _parse_id(args)
    if note_id is None:
        return "[note] usage: /note show <id>"
    note = await notes.get_by_id(note_id)
    if note is None:
        return f"[note] Note #{note_id} not found."

    def _render(console: Console) -> None:
        subtitle = f"updated {format_timestamp(note.updated_at)}"
        console.print(
            Panel(
                Markdown(note.content or "_(empty)_"),
                title=f"#{note.id} {note.title}",
                subtitle=subtitle,
                border_style="cyan",
                padding=(0, 1),
            )
        )

    return render_rich(_render)


async def _delete_note(notes: NoteCollection, args: List[str]) -> str:
    note_id = _parse_id(args)
    if note_id is None:
        return "[note] usage: /note delete <id>"
    async with notes.lock:
        deleted = await notes.delete(note_id)
    if not deleted:
        return f"[note] Note #{note_id} not found."
    return f"[note] Deleted #{note_id} locally."


async def _search_notes(notes: NoteCollection, args: List[str]) -> str:
    query = " ".join(args).strip()
    if not query:
        return "[note] usage: /note search <text>"
    matches = await notes.search(query)
    if not matches:
        return f"[note] No notes match '{query}'."
    return await _list_notes(notes, matches, title=f"Notes matching '{query}'")


def _show_help() -> str:
    return """[note] Usage:
  /note                          List notes
  /note add <title> [-- <content>]
  /note show <id>                Render a note
  /note search <text>            Search titles and content
  /note delete <id>              Delete locally (the server copy is kept)
  /note help                     Show this help"""


COMMAND = SlashCommand(
    name="note",
    description="Manage notes. Usage: /note [add|list|show|delete|search]",
    handler=_handler,
    requires_runtime=True,
)
