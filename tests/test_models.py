"""Tests for record helpers and timestamp handling."""

from __future__ import annotations

from datetime import date, datetime, timezone

from taskdown.models import Note, Recurrence, Task, next_occurrence, parse_timestamp


def test_parse_timestamp_accepts_pocketbase_format():
    parsed = parse_timestamp("2024-01-03 10:20:30.456Z")

    assert parsed == datetime(2024, 1, 3, 10, 20, 30, 456000, tzinfo=timezone.utc)


def test_parse_timestamp_treats_naive_as_utc_and_rejects_garbage():
    assert parse_timestamp("2024-01-03T00:00:00") == datetime(2024, 1, 3, tzinfo=timezone.utc)
    assert parse_timestamp("") is None
    assert parse_timestamp("yesterday") is None


def test_next_occurrence_steps():
    assert next_occurrence("2024-02-28", Recurrence.DAILY) == "2024-02-29"
    assert next_occurrence("2024-02-28", Recurrence.WEEKLY) == "2024-03-06"
    assert next_occurrence("2024-02-28", Recurrence.CUSTOM) == "2024-03-06"
    assert next_occurrence(None, Recurrence.DAILY, today=date(2024, 1, 1)) == "2024-01-02"


def test_task_wire_shape():
    task = Task(title="Run", tags=["health"], usage_count=2, recurrence=Recurrence.DAILY)

    assert task.to_remote() == {
        "title": "Run",
        "date": "",
        "time": "",
        "tags": ["health"],
        "done": False,
        "usageCount": 2,
        "recurrence": "daily",
    }


def test_remote_changes_fall_back_to_now_without_stamps():
    changes = Note.changes_from_remote({"id": "n1", "title": "T"})

    assert changes["remote_id"] == "n1"
    assert changes["content"] == ""
    assert changes["synced"] is True
    assert changes["updated_at"] is not None


def test_unknown_recurrence_coerces_to_none():
    assert Recurrence.coerce("fortnightly") is Recurrence.NONE
    assert Recurrence.coerce(None) is Recurrence.NONE
