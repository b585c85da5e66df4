"""Pre-sync connectivity and authentication gate."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Optional

from .remote import PocketBaseClient, RemoteError

if TYPE_CHECKING:
    from ..auth import AuthService
    from ..settings import SettingsService

logger = logging.getLogger("taskdown.sync.prober")

StatusUpdater = Callable[..., None]

DISABLED_MESSAGE = "Sync is disabled"
AUTH_REQUIRED_MESSAGE = "Login required"
UNREACHABLE_MESSAGE = "Sync server unreachable"


class ConnectivityProber:
    """Checks enablement, auth and reachability; reports through ``update_status``."""

    def __init__(
        self,
        settings: "SettingsService",
        auth: "AuthService",
        client_provider: Callable[[], Optional[PocketBaseClient]],
        update_status: StatusUpdater,
    ):
        self._settings = settings
        self._auth = auth
        self._client_provider = client_provider
        self._update_status = update_status

    async def check_connection(self) -> bool:
        """Return ``True`` when a sync may proceed. Never raises."""
        try:
            return await self._check()
        except Exception as exc:  # pragma: no cover - last-resort guard
            logger.exception("Connectivity check crashed")
            self._update_status(is_online=False, error=f"{UNREACHABLE_MESSAGE}: {exc}")
            return False

    async def _check(self) -> bool:
        client = self._client_provider()
        if not self._settings.get().enabled or client is None:
            self._update_status(is_online=False, error=DISABLED_MESSAGE)
            return False

        if not self._auth.is_authenticated:
            self._update_status(is_online=False, error=AUTH_REQUIRED_MESSAGE)
            return False

        try:
            await client.health()
        except RemoteError as exc:
            logger.warning("Health probe against %s failed: %s", client.base_url, exc)
            self._update_status(is_online=False, error=UNREACHABLE_MESSAGE)
            return False

        self._update_status(is_online=True, error=None)
        return True


__all__ = ["ConnectivityProber"]
