"""Slash command registry."""

from __future__ import annotations

from .config import COMMAND as CONFIG_COMMAND
from .help import COMMAND as HELP_COMMAND
from .notes import COMMAND as NOTE_COMMAND
from .status import COMMAND as STATUS_COMMAND
from .sync import COMMAND as SYNC_COMMAND
from .tasks import COMMAND as TASK_COMMAND

COMMANDS = [
    STATUS_COMMAND,
    HELP_COMMAND,
    TASK_COMMAND,
    NOTE_COMMAND,
    SYNC_COMMAND,
    CONFIG_COMMAND,
]

__all__ = ["COMMANDS"]
