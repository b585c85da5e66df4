"""Slash command for viewing, validating and overriding configuration."""

from __future__ import annotations

from dataclasses import asdict
import logging
from pathlib import Path
from typing import Any, Dict, List

import yaml
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.tree import Tree

from ..configuration import ConfigurationBundle, load_runtime_configuration
from ..settings import SyncSettings
from ..slash_commands import SlashCommand, SlashCommandContext, render_rich

logger = logging.getLogger("taskdown.commands.config")

YAML_FLAGS = {"--yaml", "-y", "yaml"}
CLI_OVERRIDE_FILENAME = "99-cli-overrides.yml"


class ConfigMutationError(RuntimeError):
    """Signals a failure while editing data-directory overrides."""


class OverrideFile:
    """The YAML file that ``/config <key> <value>`` writes to."""

    def __init__(self, data_dir: Path) -> None:
        self.path = data_dir / "config" / CLI_OVERRIDE_FILENAME

    def load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigMutationError(f"[config] failed to read {self.path}: {exc}") from exc
        try:
            data = yaml.safe_load(raw) or {}
        except yaml.YAMLError as exc:
            raise ConfigMutationError(f"[config] could not parse {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigMutationError(f"[config] override file '{self.path}' must contain a mapping.")
        return data

    def save(self, data: Dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                yaml.safe_dump(data, sort_keys=True, default_flow_style=False),
                encoding="utf-8",
            )
        except OSError as exc:
            raise ConfigMutationError(f"[config] failed to write {self.path}: {exc}") from exc

    def set(self, key_parts: List[str], value: Any) -> None:
        data = self.load()
        cursor: Dict[str, Any] = data
        for part in key_parts[:-1]:
            child = cursor.get(part)
            if not isinstance(child, dict):
                child = {}
                cursor[part] = child
            cursor = child
        cursor[key_parts[-1]] = value
        self.save(data)


async def _handler(context: SlashCommandContext, args: List[str]) -> str:
    if not args:
        return _render_config_view(context.config, show_yaml=False)

    if all(arg.lower() in YAML_FLAGS for arg in args):
        return _render_config_view(context.config, show_yaml=True)

    if args[0].lower() == "validate":
        return _validate(context)

    key_parts = [segment.strip() for segment in args[0].split(".") if segment.strip()]
    if not key_parts:
        return "[config] key path cannot be empty."

    if len(args) == 1:
        value = _lookup_path(context.config.merged, key_parts)
        dotted = ".".join(key_parts)
        if value is None:
            return f"[config] {dotted} is not set."
        return f"[config] {dotted} = {_format_value(value)}"

    value_raw = " ".join(args[1:]).strip()
    try:
        value = yaml.safe_load(value_raw)
    except yaml.YAMLError as exc:
        return f"[config] could not parse value: {exc}"
    if isinstance(value, (list, dict)):
        return "[config] only scalar values can be set from the command line."

    override = OverrideFile(context.config.data_dir)
    try:
        override.set(key_parts, value)
    except ConfigMutationError as exc:
        return str(exc)

    bundle = _reload_configuration(context)
    dotted = ".".join(key_parts)
    message = (
        f"[config] {dotted} updated to {_format_value(_lookup_path(bundle.merged, key_parts))} "
        f"(stored in config/{CLI_OVERRIDE_FILENAME})"
    )
    if key_parts[0] == "sync" and context.runtime is not None:
        _apply_sync_settings(context, bundle)
    if any(diag.level == "error" for diag in bundle.diagnostics):
        message += "\n[config] configuration now has errors; run '/config validate'."
    return message


def _render_config_view(bundle: ConfigurationBundle, show_yaml: bool) -> str:
    files_table = Table(
        show_header=True,
        header_style="bold magenta",
        box=box.SIMPLE,
        pad_edge=False,
    )
    files_table.add_column("Order", justify="right", style="magenta", no_wrap=True)
    files_table.add_column("File", overflow="fold", ratio=1)
    for idx, path in enumerate(bundle.files_loaded, start=1):
        files_table.add_row(str(idx), str(path))
    if not bundle.files_loaded:
        files_table.add_row("-", "[dim]No config files loaded[/dim]")

    tree = Tree("config", guide_style="cyan")
    _add_tree_nodes(tree, bundle.merged or {})

    def _render(console: Console) -> None:
        console.print(Panel(files_table, title="Loaded Config Files", border_style="magenta", padding=(0, 1)))
        console.print(Panel(tree, title="Merged Configuration", border_style="cyan", padding=(0, 1)))
        if show_yaml:
            yaml_text = yaml.safe_dump(bundle.merged or {}, sort_keys=True, default_flow_style=False).strip()
            syntax = Syntax(yaml_text or "# empty configuration", "yaml", word_wrap=True)
            console.print(Panel(syntax, title="Merged Configuration (YAML)", border_style="cyan", padding=(0, 1)))
        else:
            console.print("[dim]Tip: use '/config --yaml' to view the merged YAML.[/dim]")

    return render_rich(_render)


def _add_tree_nodes(node: Tree, value: Any, *, label: str | None = None) -> None:
    if isinstance(value, dict):
        branch = node.add(f"[bold]{label}[/]") if label else node
        for key in sorted(value):
            _add_tree_nodes(branch, value[key], label=str(key))
        if not value:
            branch.add("[dim]{ }[/]")
        return
    if isinstance(value, list):
        text = ", ".join(_format_value(item) for item in value) or "[dim][empty][/]"
        node.add(f"[bold]{label}[/]: [{text}]" if label else text)
        return
    node.add(f"[bold]{label}[/]: {_format_value(value)}" if label else _format_value(value))


def _validate(context: SlashCommandContext) -> str:
    bundle = _reload_configuration(context)

    def _render(console: Console) -> None:
        if not bundle.diagnostics:
            console.print(Panel(f"[green]Configuration is {bundle.status}.", title="Diagnostics", border_style="green"))
            return
        table = Table(show_header=True, header_style="bold red", box=box.SIMPLE, pad_edge=False)
        table.add_column("Lvl", style="red", no_wrap=True)
        table.add_column("Message", overflow="fold", ratio=2)
        table.add_column("Source", overflow="fold", ratio=2)
        for diag in bundle.diagnostics:
            table.add_row(diag.level.upper(), diag.message, _friendly_path(diag.source, bundle.data_dir))
        console.print(Panel(table, title=f"Diagnostics ({bundle.status})", border_style="red", padding=(0, 1)))

    return render_rich(_render)


def _apply_sync_settings(context: SlashCommandContext, bundle: ConfigurationBundle) -> None:
    settings_service = context.runtime.settings
    updated = SyncSettings.from_config(bundle.merged)
    if updated != settings_service.get():
        logger.info("Applying updated sync settings from configuration")
        settings_service.update(**asdict(updated))


def _lookup_path(data: Any, parts: List[str]) -> Any:
    cursor = data
    for part in parts:
        if not isinstance(cursor, dict) or part not in cursor:
            return None
        cursor = cursor[part]
    return cursor


def _reload_configuration(context: SlashCommandContext) -> ConfigurationBundle:
    bundle = load_runtime_configuration(context.config.data_dir)
    bundle.log_path = context.config.log_path
    context.router.config = bundle
    context.config = bundle
    if context.runtime is not None:
        context.runtime.config = bundle
    return bundle


def _friendly_path(path: Path | None, data_dir: Path) -> str:
    if path is None:
        return "-"
    try:
        return str(path.relative_to(data_dir))
    except ValueError:
        return str(path)


def _format_value(value: Any) -> str:
    if isinstance(value, str):
        return f'"{value}"'
    return repr(value)


COMMAND = SlashCommand(
    name="config",
    description="Show, validate, or override configuration. Usage: /config [key [value]|validate|--yaml]",
    handler=_handler,
)
