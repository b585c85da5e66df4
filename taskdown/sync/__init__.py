"""Bidirectional sync between the local store and a PocketBase server."""

from __future__ import annotations

from .prober import ConnectivityProber
from .reconciler import ReconcileOutcome, Reconciler, RecordFailure
from .remote import (
    CollectionNotFoundError,
    PocketBaseClient,
    RemoteAuthError,
    RemoteCollection,
    RemoteError,
)
from .service import SyncGatingError, SyncService
from .status import SyncState, SyncStatus

__all__ = [
    # Remote
    "PocketBaseClient",
    "RemoteCollection",
    "RemoteError",
    "RemoteAuthError",
    "CollectionNotFoundError",
    # Reconciliation
    "Reconciler",
    "ReconcileOutcome",
    "RecordFailure",
    # Orchestration
    "ConnectivityProber",
    "SyncService",
    "SyncGatingError",
    "SyncState",
    "SyncStatus",
]
