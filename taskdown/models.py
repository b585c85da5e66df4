"""Record types shared by the local store and the sync engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class Recurrence(str, Enum):
    """How a task repeats once it is completed."""
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    CUSTOM = "custom"

    @classmethod
    def coerce(cls, value: Any) -> "Recurrence":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "none").lower())
        except ValueError:
            return cls.NONE


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 or PocketBase (``2024-01-03 00:00:00.000Z``) timestamps.

    Naive values are assumed to be UTC. Returns ``None`` for empty or
    unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds") if value else None


def next_occurrence(
    current: Optional[str],
    recurrence: Recurrence,
    today: Optional[date] = None,
) -> str:
    """Compute the next due date (``YYYY-MM-DD``) for a recurring task.

    The task's own date is the base when it parses, otherwise ``today``.
    Custom recurrence currently repeats weekly.
    """
    base = today or utcnow().date()
    if current:
        try:
            base = date.fromisoformat(current[:10])
        except ValueError:
            pass

    if recurrence in (Recurrence.WEEKLY, Recurrence.CUSTOM):
        step = timedelta(days=7)
    else:
        step = timedelta(days=1)
    return (base + step).isoformat()


@dataclass
class Task:
    """A to-do item."""

    title: str
    tags: List[str] = field(default_factory=list)
    done: bool = False
    date: Optional[str] = None
    time: Optional[str] = None
    usage_count: int = 0
    recurrence: Recurrence = Recurrence.NONE

    id: Optional[int] = None
    remote_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    synced: bool = False
    last_sync_at: Optional[datetime] = None

    COLLECTION: ClassVar[str] = "tasks"
    PAYLOAD_FIELDS: ClassVar[Tuple[str, ...]] = (
        "title", "date", "time", "tags", "done", "usage_count", "recurrence",
    )

    @property
    def is_linked(self) -> bool:
        return self.remote_id is not None

    def to_remote(self) -> Dict[str, Any]:
        """Wire shape sent to the remote ``tasks`` collection."""
        return {
            "title": self.title,
            "date": self.date or "",
            "time": self.time or "",
            "tags": list(self.tags),
            "done": self.done,
            "usageCount": self.usage_count or 0,
            "recurrence": Recurrence.coerce(self.recurrence).value,
        }

    @classmethod
    def changes_from_remote(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        """Local field values for a record pulled from the remote."""
        now = utcnow()
        return {
            "remote_id": data.get("id"),
            "title": data.get("title") or "",
            "date": data.get("date") or None,
            "time": data.get("time") or None,
            "tags": list(data.get("tags") or []),
            "done": bool(data.get("done", False)),
            "usage_count": int(data.get("usageCount") or 0),
            "recurrence": Recurrence.coerce(data.get("recurrence")),
            "created_at": parse_timestamp(data.get("created")) or now,
            "updated_at": parse_timestamp(data.get("updated")) or now,
            "synced": True,
            "last_sync_at": now,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "remote_id": self.remote_id,
            "title": self.title,
            "date": self.date,
            "time": self.time,
            "tags": list(self.tags),
            "done": self.done,
            "usage_count": self.usage_count,
            "recurrence": Recurrence.coerce(self.recurrence).value,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "synced": self.synced,
            "last_sync_at": format_timestamp(self.last_sync_at),
        }


@dataclass
class Note:
    """A free-form note."""

    title: str
    content: str = ""

    id: Optional[int] = None
    remote_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    synced: bool = False
    last_sync_at: Optional[datetime] = None

    COLLECTION: ClassVar[str] = "notes"
    PAYLOAD_FIELDS: ClassVar[Tuple[str, ...]] = ("title", "content")

    @property
    def is_linked(self) -> bool:
        return self.remote_id is not None

    def to_remote(self) -> Dict[str, Any]:
        return {"title": self.title, "content": self.content}

    @classmethod
    def changes_from_remote(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        now = utcnow()
        return {
            "remote_id": data.get("id"),
            "title": data.get("title") or "",
            "content": data.get("content") or "",
            "created_at": parse_timestamp(data.get("created")) or now,
            "updated_at": parse_timestamp(data.get("updated")) or now,
            "synced": True,
            "last_sync_at": now,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "remote_id": self.remote_id,
            "title": self.title,
            "content": self.content,
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "synced": self.synced,
            "last_sync_at": format_timestamp(self.last_sync_at),
        }


@dataclass
class Embedding:
    """Vector derived from a task or note; removed with its owner."""

    vector: List[float]
    task_id: Optional[int] = None
    note_id: Optional[int] = None
    id: Optional[int] = None


__all__ = [
    "EPOCH",
    "Embedding",
    "Note",
    "Recurrence",
    "Task",
    "format_timestamp",
    "next_occurrence",
    "parse_timestamp",
    "utcnow",
]
