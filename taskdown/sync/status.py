"""Sync status snapshot published to observers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from ..models import format_timestamp


class SyncState(str, Enum):
    """Orchestrator lifecycle states."""
    IDLE = "idle"
    SYNCING = "syncing"
    ERROR = "error"


@dataclass(frozen=True)
class SyncStatus:
    """Immutable view of the sync engine's state."""

    is_online: bool = False
    last_sync: Optional[datetime] = None
    sync_in_progress: bool = False
    error: Optional[str] = None
    is_enabled: bool = False
    requires_auth: bool = False

    @property
    def state(self) -> SyncState:
        if self.sync_in_progress:
            return SyncState.SYNCING
        if self.error:
            return SyncState.ERROR
        return SyncState.IDLE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "is_online": self.is_online,
            "last_sync": format_timestamp(self.last_sync),
            "sync_in_progress": self.sync_in_progress,
            "error": self.error,
            "is_enabled": self.is_enabled,
            "requires_auth": self.requires_auth,
        }


__all__ = ["SyncState", "SyncStatus"]
