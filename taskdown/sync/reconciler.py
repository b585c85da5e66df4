"""Last-write-wins reconciliation of one collection against the remote."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..models import EPOCH, parse_timestamp, utcnow
from ..storage import RecordCollection
from .remote import RemoteCollection, RemoteError

logger = logging.getLogger("taskdown.sync.reconciler")

Record = Any  # Task | Note


@dataclass
class RecordFailure:
    """A single record that could not be synchronized this pass."""

    operation: str  # "push" or "create"
    message: str
    local_id: Optional[int] = None
    remote_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "message": self.message,
            "local_id": self.local_id,
            "remote_id": self.remote_id,
        }


@dataclass
class ReconcileOutcome:
    """Result of one reconciliation pass. Only failures are reported."""

    collection: str
    failures: List[RecordFailure] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> Dict[str, Any]:
        return {
            "collection": self.collection,
            "failed": self.failed,
            "failures": [failure.to_dict() for failure in self.failures],
        }


class Reconciler:
    """Merges a local collection and its remote counterpart.

    Linked records (local ``remote_id`` matches a remote id) are resolved by
    ``updated_at``; remote-only records are materialized locally; local-only
    records are uploaded. Remote call failures are recorded per record and
    never abort the pass. Local store errors propagate.
    """

    def __init__(
        self,
        local: RecordCollection,
        remote: RemoteCollection,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.local = local
        self.remote = remote
        self._clock = clock

    @property
    def name(self) -> str:
        return self.local.name

    async def run(self) -> ReconcileOutcome:
        """Snapshot both sides and reconcile, holding the collection lock."""
        async with self.local.lock:
            local_records = await self.local.get_all()
            remote_records = await self.remote.get_full_list()
            return await self.reconcile(local_records, remote_records)

    async def reconcile(
        self,
        local_records: Sequence[Record],
        remote_records: Sequence[Dict[str, Any]],
    ) -> ReconcileOutcome:
        outcome = ReconcileOutcome(collection=self.name)

        linked: Dict[str, Record] = {}
        unlinked: List[Record] = []
        for record in local_records:
            if record.remote_id is None:
                unlinked.append(record)
            elif record.remote_id in linked:
                logger.warning(
                    "Local %s #%s duplicates remote id %s; ignoring it",
                    self.name, record.id, record.remote_id,
                    extra={"collection": self.name},
                )
            else:
                linked[record.remote_id] = record

        remote_by_id: Dict[str, Dict[str, Any]] = {}
        for data in remote_records:
            remote_id = data.get("id")
            if remote_id:
                remote_by_id.setdefault(remote_id, data)

        for remote_id, data in remote_by_id.items():
            local = linked.get(remote_id)
            if local is not None:
                await self._merge_linked(local, data, outcome)
            else:
                await self._materialize(data)

        for record in unlinked:
            await self._upload(record, outcome)

        if outcome.failures:
            logger.warning(
                "Reconciled '%s' with %d failure(s)", self.name, outcome.failed,
                extra={"collection": self.name},
            )
        else:
            logger.info("Reconciled '%s'", self.name, extra={"collection": self.name})
        return outcome

    async def _merge_linked(
        self,
        local: Record,
        data: Dict[str, Any],
        outcome: ReconcileOutcome,
    ) -> None:
        local_updated = local.updated_at or EPOCH
        remote_updated = parse_timestamp(data.get("updated")) or EPOCH

        if local_updated > remote_updated:
            try:
                response = await self.remote.update(local.remote_id, local.to_remote())
            except RemoteError as exc:
                self._record_failure(outcome, "push", exc, local.id, local.remote_id)
                return
            await self.local.update(local.id, self._linked_changes(response))
            logger.debug("Pushed %s #%s -> %s", self.name, local.id, local.remote_id)
        elif remote_updated > local_updated:
            await self.local.update(local.id, self.local.model.changes_from_remote(data))
            logger.debug("Pulled %s into #%s", local.remote_id, local.id)
        else:
            await self.local.update(local.id, {"synced": True, "last_sync_at": self._clock()})

    async def _materialize(self, data: Dict[str, Any]) -> None:
        record_id = await self.local.create(self.local.model.changes_from_remote(data))
        logger.debug("Materialized %s %s as #%d", self.name, data.get("id"), record_id)

    async def _upload(self, record: Record, outcome: ReconcileOutcome) -> None:
        try:
            created = await self.remote.create(record.to_remote())
        except RemoteError as exc:
            self._record_failure(outcome, "create", exc, record.id, None)
            return

        remote_id = created.get("id")
        if not remote_id:
            self._record_failure(outcome, "create", "server returned no id", record.id, None)
            return
        changes = self._linked_changes(created)
        changes["remote_id"] = remote_id
        await self.local.update(record.id, changes)
        logger.debug("Uploaded %s #%s as %s", self.name, record.id, remote_id)

    def _linked_changes(self, response: Dict[str, Any]) -> Dict[str, Any]:
        changes: Dict[str, Any] = {"synced": True, "last_sync_at": self._clock()}
        # Adopt the server's stamp so the next pass sees equal timestamps. This
        # relaxes the non-decreasing updated_at rule when the server clock lags.
        server_updated = parse_timestamp(response.get("updated"))
        if server_updated is not None:
            changes["updated_at"] = server_updated
        return changes

    def _record_failure(
        self,
        outcome: ReconcileOutcome,
        operation: str,
        error: Any,
        local_id: Optional[int],
        remote_id: Optional[str],
    ) -> None:
        logger.error(
            "Failed to %s %s #%s: %s", operation, self.name, local_id, error,
            extra={"collection": self.name},
        )
        outcome.failures.append(
            RecordFailure(
                operation=operation,
                message=str(error),
                local_id=local_id,
                remote_id=remote_id,
            )
        )


__all__ = ["Reconciler", "ReconcileOutcome", "RecordFailure"]
