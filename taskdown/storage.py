"""SQLite-backed local record store for tasks, notes and embeddings."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from dataclasses import fields
from datetime import date
from pathlib import Path
from typing import Any, Dict, Generic, Iterable, List, Mapping, Optional, Sequence, Type, TypeVar

from .models import (
    Embedding,
    Note,
    Recurrence,
    Task,
    format_timestamp,
    next_occurrence,
    parse_timestamp,
    utcnow,
)

logger = logging.getLogger("taskdown.storage")

# Bookkeeping columns that do not count as a payload mutation.
SYNC_FIELDS = frozenset({"remote_id", "synced", "last_sync_at"})
TIMESTAMP_FIELDS = frozenset({"created_at", "updated_at", "last_sync_at"})

RecordT = TypeVar("RecordT", Task, Note)


class StoreError(RuntimeError):
    """Raised when the local store cannot complete an operation."""


class RecordNotFoundError(StoreError):
    """Raised when an operation needs a record that does not exist."""


class RecordCollection(Generic[RecordT]):
    """CRUD over one table. Each call is atomic; sequences of calls are not.

    ``lock`` serializes multi-step read/modify/write sequences (sync passes
    and interactive edits) against the same collection.
    """

    table: str = ""
    model: Type[RecordT]
    json_columns: frozenset = frozenset()
    bool_columns: frozenset = frozenset({"synced"})

    def __init__(self, store: "LocalStore") -> None:
        self._store = store
        self.lock = asyncio.Lock()
        self._columns = [f.name for f in fields(self.model)]

    @property
    def name(self) -> str:
        return self.table

    async def create(self, payload: Mapping[str, Any]) -> int:
        """Insert a record and return its local id."""
        values = self._defaults()
        values.update(self._check_fields(payload))
        values.pop("id", None)

        now = utcnow()
        values["created_at"] = values.get("created_at") or now
        values["updated_at"] = values.get("updated_at") or values["created_at"]

        columns = list(values.keys())
        placeholders = ", ".join("?" for _ in columns)
        sql = f"INSERT INTO {self.table} ({', '.join(columns)}) VALUES ({placeholders})"
        with self._store.transaction() as conn:
            cursor = conn.execute(sql, [self._encode(col, values[col]) for col in columns])
            record_id = int(cursor.lastrowid)
        logger.debug("Created %s #%d", self.table, record_id)
        return record_id

    async def get_all(self) -> List[RecordT]:
        """All records, newest creation first."""
        rows = self._store.query(
            f"SELECT * FROM {self.table} ORDER BY created_at DESC, id DESC"
        )
        return [self._decode_row(row) for row in rows]

    async def get_by_id(self, record_id: int) -> Optional[RecordT]:
        rows = self._store.query(f"SELECT * FROM {self.table} WHERE id = ?", (record_id,))
        return self._decode_row(rows[0]) if rows else None

    async def get_by_remote_id(self, remote_id: str) -> Optional[RecordT]:
        rows = self._store.query(
            f"SELECT * FROM {self.table} WHERE remote_id = ?", (remote_id,)
        )
        return self._decode_row(rows[0]) if rows else None

    async def update(self, record_id: int, changes: Mapping[str, Any]) -> bool:
        """Apply a partial update. Returns ``False`` when the id is unknown.

        Payload changes refresh ``updated_at`` and clear ``synced`` unless the
        caller sets them explicitly. An explicit ``updated_at`` is stored as given,
        even when older than the current value (sync adopts the server stamp
        this way, so a lagging server clock can move it backwards).
        Changes that only touch sync bookkeeping leave ``updated_at`` alone.
        """
        values = self._check_fields(changes)
        values.pop("id", None)
        if not values:
            return await self.get_by_id(record_id) is not None

        with self._store.transaction() as conn:
            row = conn.execute(
                f"SELECT id FROM {self.table} WHERE id = ?", (record_id,)
            ).fetchone()
            if row is None:
                return False

            touches_payload = any(
                key not in SYNC_FIELDS and key not in TIMESTAMP_FIELDS for key in values
            )
            requested = parse_timestamp(values.get("updated_at"))
            if requested is None and touches_payload:
                requested = utcnow()
            if requested is not None:
                values["updated_at"] = requested
            else:
                values.pop("updated_at", None)
            if touches_payload and "synced" not in values:
                values["synced"] = False

            assignments = ", ".join(f"{col} = ?" for col in values)
            params = [self._encode(col, values[col]) for col in values]
            try:
                conn.execute(
                    f"UPDATE {self.table} SET {assignments} WHERE id = ?",
                    [*params, record_id],
                )
            except sqlite3.IntegrityError as exc:
                raise StoreError(
                    f"Cannot update {self.table} #{record_id}: {exc}"
                ) from exc
        return True

    async def delete(self, record_id: int) -> bool:
        """Delete a record and its embeddings. The remote copy is left alone."""
        owner_column = "task_id" if self.table == "tasks" else "note_id"
        with self._store.transaction() as conn:
            cursor = conn.execute(f"DELETE FROM {self.table} WHERE id = ?", (record_id,))
            conn.execute(f"DELETE FROM embeddings WHERE {owner_column} = ?", (record_id,))
            deleted = cursor.rowcount > 0
        if deleted:
            logger.debug("Deleted %s #%d", self.table, record_id)
        return deleted

    def _defaults(self) -> Dict[str, Any]:
        return {"synced": False}

    def _check_fields(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        unknown = [key for key in payload if key not in self._columns]
        if unknown:
            raise StoreError(f"Unknown {self.table} field(s): {', '.join(sorted(unknown))}")
        return dict(payload)

    def _encode(self, column: str, value: Any) -> Any:
        if value is None:
            return None
        if column in TIMESTAMP_FIELDS:
            return format_timestamp(parse_timestamp(value))
        if column in self.json_columns:
            return json.dumps(list(value))
        if column in self.bool_columns:
            return 1 if value else 0
        if isinstance(value, Recurrence):
            return value.value
        return value

    def _decode_row(self, row: sqlite3.Row) -> RecordT:
        data: Dict[str, Any] = {}
        for column in self._columns:
            value = row[column]
            if column in TIMESTAMP_FIELDS:
                value = parse_timestamp(value)
            elif column in self.json_columns:
                value = json.loads(value) if value else []
            elif column in self.bool_columns:
                value = bool(value)
            data[column] = value
        return self.model(**data)


class TaskCollection(RecordCollection[Task]):
    table = "tasks"
    model = Task
    json_columns = frozenset({"tags"})
    bool_columns = frozenset({"synced", "done"})

    def _defaults(self) -> Dict[str, Any]:
        return {
            "synced": False,
            "done": False,
            "tags": [],
            "usage_count": 0,
            "recurrence": Recurrence.NONE,
        }

    def _check_fields(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        values = super()._check_fields(payload)
        if "recurrence" in values:
            values["recurrence"] = Recurrence.coerce(values["recurrence"])
        if "usage_count" in values:
            values["usage_count"] = int(values["usage_count"] or 0)
        return values

    def _decode_row(self, row: sqlite3.Row) -> Task:
        task = super()._decode_row(row)
        task.recurrence = Recurrence.coerce(task.recurrence)
        return task

    async def toggle_done(self, task_id: int, today: Optional[date] = None) -> Optional[int]:
        """Flip ``done``. Completing a recurring task schedules the next one.

        Returns the id of the follow-up task, if one was created.
        """
        task = await self.get_by_id(task_id)
        if task is None:
            raise RecordNotFoundError(f"Task #{task_id} not found")

        changes: Dict[str, Any] = {"done": not task.done}
        if not task.done:
            changes["usage_count"] = (task.usage_count or 0) + 1
        await self.update(task_id, changes)

        if task.done or task.recurrence is Recurrence.NONE:
            return None
        follow_up = await self.create({
            "title": task.title,
            "date": next_occurrence(task.date, task.recurrence, today=today),
            "time": task.time,
            "tags": list(task.tags),
            "recurrence": task.recurrence,
            "usage_count": 0,
            "done": False,
        })
        logger.info("Scheduled next '%s' occurrence as task #%d", task.title, follow_up)
        return follow_up

    async def reschedule(self, task_id: int, new_date: str) -> None:
        task = await self.get_by_id(task_id)
        if task is None:
            raise RecordNotFoundError(f"Task #{task_id} not found")
        await self.update(task_id, {
            "date": new_date,
            "usage_count": (task.usage_count or 0) + 1,
        })

    async def uncompleted_for_date(self, day: date) -> List[Task]:
        target = day.isoformat()
        return [task for task in await self.get_all() if not task.done and task.date == target]

    async def overdue(self, today: Optional[date] = None) -> List[Task]:
        cutoff = (today or utcnow().date()).isoformat()
        return [
            task for task in await self.get_all()
            if not task.done and task.date and task.date < cutoff
        ]

    async def suggestions_by_usage(self, limit: int = 5) -> List[Task]:
        ranked = sorted(
            (task for task in await self.get_all() if (task.usage_count or 0) > 0),
            key=lambda task: task.usage_count,
            reverse=True,
        )
        return ranked[:limit]

    async def with_tags(self, tags: Iterable[str]) -> List[Task]:
        wanted = set(tags)
        return [task for task in await self.get_all() if wanted.intersection(task.tags)]


class NoteCollection(RecordCollection[Note]):
    table = "notes"
    model = Note

    def _defaults(self) -> Dict[str, Any]:
        return {"synced": False, "content": ""}

    async def search(self, query: str) -> List[Note]:
        needle = query.lower()
        return [
            note for note in await self.get_all()
            if needle in note.title.lower() or needle in note.content.lower()
        ]


class LocalStore:
    """Owns the sqlite connection and the per-collection accessors."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self.tasks = TaskCollection(self)
        self.notes = NoteCollection(self)

    def collection(self, name: str) -> RecordCollection:
        if name == "tasks":
            return self.tasks
        if name == "notes":
            return self.notes
        raise KeyError(f"Unknown collection '{name}'")

    def initialize(self) -> None:
        """Open the database and create tables."""
        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(str(self.db_path))
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open local store at {self.db_path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        self._create_tables()
        logger.info("Local store ready at %s", self.db_path)

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def _create_tables(self) -> None:
        with self.transaction() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tasks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    date TEXT,
                    time TEXT,
                    tags TEXT NOT NULL DEFAULT '[]',
                    done INTEGER NOT NULL DEFAULT 0,
                    usage_count INTEGER NOT NULL DEFAULT 0,
                    recurrence TEXT NOT NULL DEFAULT 'none',
                    remote_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    synced INTEGER NOT NULL DEFAULT 0,
                    last_sync_at TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS notes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL DEFAULT '',
                    remote_id TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    synced INTEGER NOT NULL DEFAULT 0,
                    last_sync_at TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS embeddings (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    task_id INTEGER,
                    note_id INTEGER,
                    vector TEXT NOT NULL
                )
            """)
            # A remote record maps to at most one local record.
            conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_remote_id
                ON tasks(remote_id) WHERE remote_id IS NOT NULL
            """)
            conn.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_notes_remote_id
                ON notes(remote_id) WHERE remote_id IS NOT NULL
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_embeddings_task ON embeddings(task_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_embeddings_note ON embeddings(note_id)")

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreError("Local store is not initialized")
        return self._conn

    def transaction(self) -> "_Transaction":
        return _Transaction(self._connection())

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        try:
            return self._connection().execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"Query failed: {exc}") from exc

    async def create_embedding(self, embedding: Embedding) -> int:
        with self.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO embeddings (task_id, note_id, vector) VALUES (?, ?, ?)",
                (embedding.task_id, embedding.note_id, json.dumps(embedding.vector)),
            )
            return int(cursor.lastrowid)

    async def embeddings_for_task(self, task_id: int) -> List[Embedding]:
        return self._embeddings("task_id", task_id)

    async def embeddings_for_note(self, note_id: int) -> List[Embedding]:
        return self._embeddings("note_id", note_id)

    def _embeddings(self, column: str, owner_id: int) -> List[Embedding]:
        rows = self.query(f"SELECT * FROM embeddings WHERE {column} = ?", (owner_id,))
        return [
            Embedding(
                id=row["id"],
                task_id=row["task_id"],
                note_id=row["note_id"],
                vector=json.loads(row["vector"]),
            )
            for row in rows
        ]

    async def clear_all(self) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM tasks")
            conn.execute("DELETE FROM notes")
            conn.execute("DELETE FROM embeddings")

    def get_stats(self) -> Dict[str, int]:
        stats: Dict[str, int] = {}
        for table in ("tasks", "notes"):
            stats[f"{table}_total"] = self.query(f"SELECT COUNT(*) FROM {table}")[0][0]
            stats[f"{table}_unsynced"] = self.query(
                f"SELECT COUNT(*) FROM {table} WHERE synced = 0"
            )[0][0]
            stats[f"{table}_local_only"] = self.query(
                f"SELECT COUNT(*) FROM {table} WHERE remote_id IS NULL"
            )[0][0]
        return stats


class _Transaction:
    """Commit on success, roll back and wrap sqlite errors on failure."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def __enter__(self) -> sqlite3.Connection:
        return self._conn

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            self._conn.commit()
            return False
        self._conn.rollback()
        if isinstance(exc, sqlite3.Error):
            raise StoreError(str(exc)) from exc
        return False


__all__ = [
    "LocalStore",
    "NoteCollection",
    "RecordCollection",
    "RecordNotFoundError",
    "StoreError",
    "TaskCollection",
]
