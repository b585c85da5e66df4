"""Sync orchestrator: gating, per-collection reconciliation and scheduling."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Set

from ..events import Signal, Unsubscribe
from ..models import utcnow
from .prober import ConnectivityProber
from .reconciler import ReconcileOutcome, Reconciler
from .remote import PocketBaseClient
from .status import SyncStatus

if TYPE_CHECKING:
    from ..auth import AuthService, AuthStatus
    from ..settings import SettingsService, SyncSettings
    from ..storage import LocalStore

logger = logging.getLogger("taskdown.sync.service")

ClientProvider = Callable[[], Optional[PocketBaseClient]]


class SyncGatingError(RuntimeError):
    """Sync could not start: disabled, not authenticated, or server unreachable."""


class SyncService:
    """Runs sync passes over every configured collection.

    At most one pass runs at a time; a second ``sync()`` while one is in
    flight returns immediately. Failures inside one collection are logged and
    do not stop the others. Settings and auth changes only affect the next
    attempt.
    """

    def __init__(
        self,
        store: "LocalStore",
        settings: "SettingsService",
        auth: "AuthService",
        client_provider: ClientProvider,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.settings = settings
        self.auth = auth
        self._client_provider = client_provider
        self._clock = clock
        self._status = self._initial_status()
        self.status_changed: Signal[SyncStatus] = Signal("sync_status_changed")
        self.prober = ConnectivityProber(settings, auth, client_provider, self._update_status)
        self.last_outcomes: Dict[str, ReconcileOutcome] = {}
        self.last_collection_errors: Dict[str, str] = {}
        self._auto_task: Optional[asyncio.Task] = None
        self._auto_interval: Optional[float] = None
        self._ticking: Set[asyncio.Task] = set()
        self._detached: Set[asyncio.Task] = set()
        self._subscriptions: List[Unsubscribe] = [
            settings.on_change(self._on_settings_changed),
            auth.on_auth_change(self._on_auth_changed),
        ]

    # -- status -------------------------------------------------------------

    def get_status(self) -> SyncStatus:
        return self._status

    def on_status_change(self, callback: Callable[[SyncStatus], None]) -> Unsubscribe:
        return self.status_changed.subscribe(callback)

    def _initial_status(self) -> SyncStatus:
        settings = self.settings.get()
        return SyncStatus(
            is_enabled=settings.enabled,
            requires_auth=settings.enabled and not self.auth.is_authenticated,
        )

    def _update_status(self, **changes: Any) -> None:
        self._status = replace(self._status, **changes)
        self.status_changed.publish(self._status)

    # -- sync ---------------------------------------------------------------

    async def sync(self) -> None:
        """Run one pass. Raises :class:`SyncGatingError` when sync cannot start."""
        if self._status.sync_in_progress:
            logger.debug("Sync already in progress; skipping request.")
            return
        self._update_status(sync_in_progress=True, error=None)

        try:
            if not await self.prober.check_connection():
                message = self._status.error or "Sync unavailable"
                logger.warning("Sync not started: %s", message)
                raise SyncGatingError(message)

            client = self._client_provider()
            if client is None:
                self._update_status(error="Sync is disabled")
                raise SyncGatingError("Sync is disabled")

            outcomes: Dict[str, ReconcileOutcome] = {}
            errors: Dict[str, str] = {}
            for name in self.settings.get().collections:
                try:
                    reconciler = Reconciler(
                        self.store.collection(name),
                        client.collection(name),
                        clock=self._clock,
                    )
                    outcomes[name] = await reconciler.run()
                except Exception as exc:
                    logger.error(
                        "Sync of '%s' failed: %s", name, exc,
                        extra={"collection": name},
                    )
                    errors[name] = str(exc)

            self.last_outcomes = outcomes
            self.last_collection_errors = errors
            self._update_status(last_sync=self._clock(), error=None)
            logger.info(
                "Sync finished: %d collection(s) reconciled, %d failed",
                len(outcomes), len(errors),
            )
        finally:
            self._update_status(sync_in_progress=False)

    # -- scheduling ---------------------------------------------------------

    @property
    def auto_sync_running(self) -> bool:
        return self._auto_task is not None and not self._auto_task.done()

    @property
    def auto_sync_interval(self) -> Optional[float]:
        return self._auto_interval if self.auto_sync_running else None

    def start_auto_sync(self, interval_minutes: float = 5) -> bool:
        """Schedule periodic syncs. Returns ``False`` when sync is disabled."""
        self.stop_auto_sync()
        if not self.settings.get().enabled:
            logger.info("Auto-sync not started: sync is disabled.")
            return False
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive")
        self._auto_interval = float(interval_minutes)
        self._auto_task = asyncio.get_running_loop().create_task(
            self._auto_loop(self._auto_interval * 60),
            name="taskdown-auto-sync",
        )
        logger.info("Auto-sync every %s minute(s)", interval_minutes)
        return True

    def stop_auto_sync(self) -> None:
        """Cancel the schedule. A pass already running is left to finish."""
        task, self._auto_task = self._auto_task, None
        self._auto_interval = None
        if task is None or task.done():
            return
        if task in self._ticking:
            # The loop notices it was replaced once its pass returns.
            self._detached.add(task)
            task.add_done_callback(self._detached.discard)
        else:
            task.cancel()
        logger.info("Auto-sync stopped")

    async def _auto_loop(self, interval_seconds: float) -> None:
        me = asyncio.current_task()
        while self._auto_task is me:
            await asyncio.sleep(interval_seconds)
            self._ticking.add(me)
            try:
                await self._tick()
            finally:
                self._ticking.discard(me)

    async def _tick(self) -> None:
        try:
            await self.sync()
        except SyncGatingError as exc:
            logger.info("Scheduled sync skipped: %s", exc)
        except Exception:
            logger.exception("Scheduled sync failed")

    # -- reactions ----------------------------------------------------------

    def _on_settings_changed(self, settings: "SyncSettings") -> None:
        self._update_status(
            is_enabled=settings.enabled,
            requires_auth=settings.enabled and not self.auth.is_authenticated,
        )
        if not settings.enabled:
            self.stop_auto_sync()

    def _on_auth_changed(self, status: "AuthStatus") -> None:
        changes: Dict[str, Any] = {
            "requires_auth": self.settings.get().enabled and not status.is_authenticated,
        }
        if not status.is_authenticated:
            changes["is_online"] = False
        self._update_status(**changes)

    async def aclose(self) -> None:
        """Stop scheduling and wait for any loop still winding down."""
        pending = [task for task in (self._auto_task, *self._detached) if task is not None]
        self.stop_auto_sync()
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions.clear()
        for task in pending:
            try:
                await task
            except asyncio.CancelledError:
                pass


__all__ = ["SyncGatingError", "SyncService"]
