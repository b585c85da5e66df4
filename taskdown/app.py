# taskdown/app.py
"""
Runtime wiring and the interactive Taskdown loop.

``build_runtime`` constructs every long-lived component explicitly (local
store, settings, auth, PocketBase client, sync orchestrator) so tests and the
REPL share the same assembly without module-level singletons.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path
try:
    import readline
except ImportError:  # pragma: no cover
    readline = None
from shutil import get_terminal_size
from typing import List, Optional

import httpx
from rich.console import Console

from . import __version__
from .auth import AuthService
from .commands import COMMANDS
from .configuration import (
    ConfigurationBundle,
    Diagnostic,
    load_runtime_configuration,
    resolve_data_dir,
)
from .logging_utils import setup_logging
from .settings import SettingsService, SyncSettings
from .slash_commands import CommandRouter
from .storage import LocalStore
from .sync import PocketBaseClient, SyncService

REPO_ROOT = Path(__file__).resolve().parent.parent
logger = logging.getLogger("taskdown")
TRUE_STRINGS = {"1", "true", "yes", "on"}
FALSE_STRINGS = {"0", "false", "no", "off"}


def _client_key(settings: SyncSettings) -> tuple:
    """Settings a live client was built from."""
    return (settings.sync_url, settings.timeout, settings.page_size)


class Runtime:
    """Long-lived components for one Taskdown process."""

    def __init__(
        self,
        config: ConfigurationBundle,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self.started_at = time.monotonic()
        self._transport = transport
        self._client: Optional[PocketBaseClient] = None
        self._retired_clients: List[PocketBaseClient] = []

        storage_cfg = config.section("storage")
        auth_cfg = config.section("auth")
        self.store = LocalStore(config.resolve_path(storage_cfg.get("path", "state/taskdown.db")))
        self.settings = SettingsService.from_bundle(config)
        self.auth = AuthService(
            config.resolve_path(auth_cfg.get("token_file", "state/auth.json")),
            self.client,
        )
        self.sync = SyncService(self.store, self.settings, self.auth, self.client)
        self.api_server = None
        self._client_settings = _client_key(self.settings.get())
        self._unsubscribe_settings = self.settings.on_change(self._on_settings_changed)

    @property
    def uptime(self) -> float:
        return time.monotonic() - self.started_at

    def client(self) -> Optional[PocketBaseClient]:
        """Current PocketBase client, or ``None`` while sync is disabled."""
        settings = self.settings.get()
        if not settings.sync_url:
            return None
        if self._client is None:
            self._client = PocketBaseClient(
                settings.sync_url,
                timeout=settings.timeout,
                page_size=settings.page_size,
                token_provider=lambda: self.auth.token,
                transport=self._transport,
            )
        return self._client

    def _on_settings_changed(self, settings: SyncSettings) -> None:
        connection = _client_key(settings)
        if connection == self._client_settings:
            return
        self._client_settings = connection
        # An in-flight sync may still hold the old client; close it on shutdown.
        if self._client is not None:
            self._retired_clients.append(self._client)
            self._client = None

    async def start(self) -> None:
        """Start background work: auto-sync and the HTTP API when enabled."""
        settings = self.settings.get()
        if settings.enabled and settings.auto_sync:
            self.sync.start_auto_sync(settings.interval_minutes)

        api_cfg = self.config.section("api")
        if api_cfg.get("enabled"):
            from .api import APIServer

            self.api_server = APIServer(
                self,
                host=str(api_cfg.get("host", "127.0.0.1")),
                port=int(api_cfg.get("port", 8765)),
            )
            await self.api_server.start()

    async def aclose(self) -> None:
        if self.api_server is not None:
            await self.api_server.stop()
            self.api_server = None
        await self.sync.aclose()
        self._unsubscribe_settings()
        clients = self._retired_clients + ([self._client] if self._client else [])
        for client in clients:
            await client.aclose()
        self._retired_clients.clear()
        self._client = None
        self.store.close()


def build_runtime(
    config: ConfigurationBundle,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Runtime:
    """Construct and initialize the runtime for ``config``."""

    runtime = Runtime(config, transport=transport)
    runtime.store.initialize()
    runtime.auth.load()
    return runtime


def print_banner(name: str) -> None:
    """Print the runtime header so operators know which data dir is in use."""

    terminal_width = get_terminal_size(fallback=(80, 24)).columns
    title = f"{name.upper()} {__version__}"
    if terminal_width >= 60:
        inner_width = 58
        print("╔" + "═" * inner_width + "╗")
        print(f"║{title.center(inner_width)}║")
        print(f"║{'tasks ◇ notes ◇ sync'.center(inner_width)}║")
        print("╚" + "═" * inner_width + "╝")
    else:
        print(title)
    print()


def _parse_env_flag(value: str, *, default: bool = True) -> bool:
    normalized = value.strip().lower()
    if normalized in TRUE_STRINGS:
        return True
    if normalized in FALSE_STRINGS:
        return False
    return default


def _resolve_ui_verbose(config_bundle: ConfigurationBundle) -> bool:
    """Resolve whether the CLI should display the banner or a quiet view."""

    env_value = os.environ.get("TASKDOWN_UI_VERBOSE")
    if env_value is not None:
        return _parse_env_flag(env_value)

    verbose_setting = config_bundle.section("ui").get("verbose")
    if verbose_setting is None:
        return True
    return bool(verbose_setting)


def _log_path_within_data_dir(log_path: Path, data_dir: Path) -> bool:
    try:
        log_path.relative_to(data_dir)
        return True
    except ValueError:
        return False


def build_router(config: ConfigurationBundle, runtime: Optional[Runtime] = None) -> CommandRouter:
    """Register every slash command against ``runtime``."""

    router = CommandRouter(
        config,
        runtime=runtime,
        metadata={"repo_root": str(REPO_ROOT)},
    )
    for command in COMMANDS:
        router.register(command)
    return router


def emit_configuration_report(config: ConfigurationBundle) -> None:
    """Print diagnostics so operators can correct issues quickly."""

    if not config.diagnostics:
        print(
            f"[config] Loaded {len(config.files_loaded)} file(s) "
            f"from repo and data config directories."
        )
        return

    print("[config] Diagnostics:")
    for diag in config.diagnostics:
        prefix = diag.source or config.data_dir
        print(f"  - ({diag.level.upper()}) {diag.message} [{prefix}]")


def configure_autocomplete(router: CommandRouter) -> None:
    """Enable readline tab completion for slash commands."""

    if readline is None:
        return

    commands = list(router.command_names)

    def completer(text: str, state: int):
        buffer = readline.get_line_buffer()
        if not buffer.startswith("/"):
            return None
        fragment = text[1:] if text.startswith("/") else text
        matches = [f"/{cmd}" for cmd in commands if cmd.startswith(fragment)]
        if state < len(matches):
            return matches[state]
        return None

    readline.set_completer(completer)
    readline.parse_and_bind("tab: complete")
    readline.set_completer_delims(" \t")


async def execute_cli_command(command_line: str, router: CommandRouter) -> str:
    """Run one slash command line (without the leading ``/``)."""

    stripped = command_line.strip()
    if not stripped:
        return ""

    parts = stripped.split()
    command, args = parts[0], parts[1:]
    try:
        result = await router.handle(command, args)
    except Exception as exc:
        logger.exception("Command '/%s' failed", command)
        result = f"[{command}] failed: {exc}"
    logger.info("Executed CLI command: /%s", command)
    return result


async def run_repl(runtime: Runtime, router: CommandRouter, *, ui_verbose: bool = True) -> None:
    """Read slash commands until EOF or ``/quit``."""

    console = Console()
    loop = asyncio.get_running_loop()
    name = runtime.config.section("runtime").get("name", "Taskdown")

    while True:
        try:
            raw_line = await loop.run_in_executor(None, input, "> ")
        except (EOFError, KeyboardInterrupt):
            print(f"\n[Exiting {name}]")
            break

        if raw_line == "\x0c":  # Ctrl-L (form feed)
            print("\033[2J\033[H", end="")
            if ui_verbose:
                print_banner(name)
            continue

        line = raw_line.strip()
        if not line:
            continue
        if line.lower() in {"quit", "exit", "/quit", "/exit"}:
            print("[Goodbye]")
            break
        if not line.startswith("/"):
            console.print("[dim]Commands start with '/'. Try /help.[/dim]")
            continue

        result = await execute_cli_command(line[1:], router)
        if result:
            print(result)


async def _run(config_bundle: ConfigurationBundle, ui_verbose: bool) -> None:
    runtime = build_runtime(config_bundle)
    router = build_router(config_bundle, runtime)
    configure_autocomplete(router)
    try:
        await runtime.start()
        await run_repl(runtime, router, ui_verbose=ui_verbose)
    finally:
        await runtime.aclose()


def main() -> None:
    """Entry point for `python -m taskdown`."""

    data_dir = resolve_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True)
    config_bundle = load_runtime_configuration(data_dir)
    ui_verbose = _resolve_ui_verbose(config_bundle)
    name = config_bundle.section("runtime").get("name", "Taskdown")
    if ui_verbose:
        print_banner(name)
    else:
        print(f"[{name}] ready (quiet mode)")
        print()

    logging_cfg = config_bundle.section("logging")
    env_level = os.environ.get("TASKDOWN_LOG_LEVEL")
    log_level_name = (env_level or logging_cfg.get("level") or "WARNING").upper()
    log_path = setup_logging(
        config_bundle.data_dir,
        log_level_name,
        structured=bool(logging_cfg.get("structured", True)),
        console=False,
    )
    config_bundle.log_path = log_path
    if not _log_path_within_data_dir(log_path, config_bundle.data_dir):
        config_bundle.diagnostics.append(
            Diagnostic(
                level="warning",
                message=(
                    "Data log directory is not writable; "
                    f"logging to fallback path '{log_path}'."
                ),
                source=log_path,
            )
        )
    logger.info("Logging initialized at %s", log_path)
    if ui_verbose:
        emit_configuration_report(config_bundle)

    try:
        asyncio.run(_run(config_bundle, ui_verbose))
    except KeyboardInterrupt:
        print("\n[Interrupted]")
