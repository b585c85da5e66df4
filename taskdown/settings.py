"""Runtime sync settings and change notifications."""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
from typing import Any, Callable, Dict

from .configuration import ConfigurationBundle
from .events import Signal, Unsubscribe

logger = logging.getLogger("taskdown.settings")


@dataclass(frozen=True)
class SyncSettings:
    """Settings for sync operations."""

    enabled: bool = False
    server_url: str = "http://localhost:8090"
    auto_sync: bool = True
    interval_minutes: float = 5
    timeout: float = 10.0
    page_size: int = 200
    collections: tuple = ("tasks", "notes")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SyncSettings":
        raw = config.get("sync", {}) if config else {}
        return cls(
            enabled=bool(raw.get("enabled", False)),
            server_url=str(raw.get("server_url") or "").rstrip("/"),
            auto_sync=bool(raw.get("auto_sync", True)),
            interval_minutes=float(raw.get("interval_minutes", 5)),
            timeout=float(raw.get("timeout", 10.0)),
            page_size=int(raw.get("page_size", 200)),
            collections=tuple(raw.get("collections", ["tasks", "notes"])),
        )

    @property
    def sync_url(self) -> str:
        """Server URL when sync is enabled, otherwise empty."""
        return self.server_url if self.enabled else ""


class SettingsService:
    """Holds the current :class:`SyncSettings` and announces replacements."""

    def __init__(self, settings: SyncSettings) -> None:
        self._settings = settings
        self.changed: Signal[SyncSettings] = Signal("settings_changed")

    @classmethod
    def from_bundle(cls, bundle: ConfigurationBundle) -> "SettingsService":
        return cls(SyncSettings.from_config(bundle.merged))

    def get(self) -> SyncSettings:
        return self._settings

    def update(self, **changes: Any) -> SyncSettings:
        """Replace fields and notify subscribers. Unknown fields raise ``TypeError``."""
        self._settings = replace(self._settings, **changes)
        logger.debug("Settings updated: %s", ", ".join(sorted(changes)))
        self.changed.publish(self._settings)
        return self._settings

    def on_change(self, callback: Callable[[SyncSettings], None]) -> Unsubscribe:
        return self.changed.subscribe(callback)


__all__ = ["SettingsService", "SyncSettings"]
