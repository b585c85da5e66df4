"""Slash command for managing tasks in the local store."""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from rich import box
from rich.console import Console
from rich.table import Table

from ..models import Recurrence, Task, utcnow
from ..slash_commands import SlashCommand, SlashCommandContext, render_rich
from ..storage import RecordNotFoundError, TaskCollection

OPTION_FLAGS = {"--date", "--time", "--tags", "--repeat"}


class TaskArgumentError(ValueError):
    """Raised for malformed /task arguments."""


async def _handler(context: SlashCommandContext, args: List[str]) -> str:
    if not args:
        return await _list_tasks(context, [])

    subcommand, rest = args[0].lower(), args[1:]
    tasks = context.runtime.store.tasks
    try:
        if subcommand == "add":
            return await _add_task(tasks, rest)
        if subcommand in {"list", "ls"}:
            return await _list_tasks(context, rest)
        if subcommand == "done":
            return await _toggle_task(tasks, rest)
        if subcommand in {"delete", "rm"}:
            return await _delete_task(tasks, rest)
        if subcommand == "reschedule":
            return await _reschedule_task(tasks, rest)
        if subcommand == "help":
            return _show_help()
    except TaskArgumentError as exc:
        return f"[task] {exc}"
    except RecordNotFoundError as exc:
        return f"[task] {exc}"
    return f"[task] Unknown subcommand '{subcommand}'. Use /task help for usage."


def _split_options(args: List[str]) -> Tuple[List[str], Dict[str, str]]:
    """Separate ``--flag value`` pairs from free text."""

    words: List[str] = []
    options: Dict[str, str] = {}
    index = 0
    while index < len(args):
        token = args[index]
        if token in OPTION_FLAGS:
            if index + 1 >= len(args):
                raise TaskArgumentError(f"{token} needs a value.")
            options[token[2:]] = args[index + 1]
            index += 2
            continue
        words.append(token)
        index += 1
    return words, options


def _parse_date(value: str) -> str:
    try:
        return date.fromisoformat(value).isoformat()
    except ValueError as exc:
        raise TaskArgumentError(f"'{value}' is not a YYYY-MM-DD date.") from exc


def _parse_id(args: List[str]) -> int:
    if not args:
        raise TaskArgumentError("a task id is required.")
    try:
        return int(args[0].lstrip("#"))
    except ValueError as exc:
        raise TaskArgumentError(f"'{args[0]}' is not a task id.") from exc


async def _add_task(tasks: TaskCollection, args: List[str]) -> str:
    words, options = _split_options(args)
    title = " ".join(words).strip()
    if not title:
        raise TaskArgumentError("usage: /task add <title> [--date D] [--time T] [--tags a,b] [--repeat R]")

    payload: Dict[str, Any] = {"title": title}
    if "date" in options:
        payload["date"] = _parse_date(options["date"])
    if "time" in options:
        payload["time"] = options["time"]
    if "tags" in options:
        payload["tags"] = [tag.strip() for tag in options["tags"].split(",") if tag.strip()]
    if "repeat" in options:
        try:
            payload["recurrence"] = Recurrence(options["repeat"].lower())
        except ValueError as exc:
            choices = ", ".join(item.value for item in Recurrence)
            raise TaskArgumentError(f"--repeat must be one of: {choices}.") from exc

    async with tasks.lock:
        task_id = await tasks.create(payload)
    return f"[task] Added #{task_id}: {title}"


async def _list_tasks(context: SlashCommandContext, args: List[str]) -> str:
    tasks = context.runtime.store.tasks
    normalized = [arg.lower() for arg in args]
    title = "Open Tasks"
    today = utcnow().date()

    if "--today" in normalized:
        records = await tasks.uncompleted_for_date(today)
        title = f"Due {today.isoformat()}"
    elif "--overdue" in normalized:
        records = await tasks.overdue(today)
        title = "Overdue"
    elif "--suggest" in normalized:
        records = await tasks.suggestions_by_usage()
        title = "Frequently Used"
    elif "--tag" in normalized:
        position = normalized.index("--tag")
        if position + 1 >= len(args):
            return "[task] --tag needs a value."
        tag = args[position + 1]
        records = await tasks.with_tags([tag])
        title = f"Tagged '{tag}'"
    elif "--all" in normalized:
        records = await tasks.get_all()
        title = "All Tasks"
    elif "--done" in normalized:
        records = [task for task in await tasks.get_all() if task.done]
        title = "Completed"
    else:
        records = [task for task in await tasks.get_all() if not task.done]

    if not records:
        return f"[task] No tasks ({title.lower()})."
    return _render_tasks(title, records)


def _render_tasks(title: str, records: List[Task]) -> str:
    def _render(console: Console) -> None:
        table = Table(title=title, box=box.SIMPLE, header_style="bold cyan")
        table.add_column("#", justify="right", style="magenta", no_wrap=True)
        table.add_column("", no_wrap=True)
        table.add_column("Title", overflow="fold", ratio=2)
        table.add_column("When", no_wrap=True)
        table.add_column("Tags", overflow="fold")
        table.add_column("Repeat", no_wrap=True)
        table.add_column("Sync", no_wrap=True)
        for task in records:
            when = " ".join(part for part in (task.date, task.time) if part) or "-"
            table.add_row(
                str(task.id),
                "[green]✔[/]" if task.done else "·",
                task.title,
                when,
                ", ".join(task.tags) or "-",
                "" if task.recurrence is Recurrence.NONE else task.recurrence.value,
                _sync_marker(task.synced, task.remote_id),
            )
        console.print(table)

    return render_rich(_render)


def _sync_marker(synced: bool, remote_id: Optional[str]) -> str:
    if remote_id is None:
        return "[yellow]local[/]"
    return "[green]synced[/]" if synced else "[yellow]pending[/]"


async def _toggle_task(tasks: TaskCollection, args: List[str]) -> str:
    task_id = _parse_id(args)
    async with tasks.lock:
        follow_up = await tasks.toggle_done(task_id)
        task = await tasks.get_by_id(task_id)
    state = "done" if task and task.done else "open"
    message = f"[task] #{task_id} marked {state}."
    if follow_up is not None:
        next_task = await tasks.get_by_id(follow_up)
        when = next_task.date if next_task else "?"
        message += f" Next occurrence scheduled as #{follow_up} ({when})."
    return message


async def _delete_task(tasks: TaskCollection, args: List[str]) -> str:
    task_id = _parse_id(args)
    async with tasks.lock:
        deleted = await tasks.delete(task_id)
    if not deleted:
        return f"[task] Task #{task_id} not found."
    return f"[task] Deleted #{task_id} locally."


async def _reschedule_task(tasks: TaskCollection, args: List[str]) -> str:
    task_id = _parse_id(args)
    if len(args) < 2:
        raise TaskArgumentError("usage: /task reschedule <id> <YYYY-MM-DD>")
    new_date = _parse_date(args[1])
    async with tasks.lock:
        await tasks.reschedule(task_id, new_date)
    return f"[task] #{task_id} moved to {new_date}."


def _show_help() -> str:
    return """[task] Usage:
  /task                          List open tasks
  /task add <title> [--date YYYY-MM-DD] [--time HH:MM] [--tags a,b] [--repeat daily|weekly|custom]
  /task list [--all|--done|--today|--overdue|--suggest|--tag <tag>]
  /task done <id>                Toggle completion (recurring tasks schedule the next one)
  /task reschedule <id> <date>   Move a task to another day
  /task delete <id>              Delete locally (the server copy is kept)
  /task help                     Show this help"""


COMMAND = SlashCommand(
    name="task",
    description="Manage tasks. Usage: /task [add|list|done|delete|reschedule]",
    handler=_handler,
    requires_runtime=True,
)
