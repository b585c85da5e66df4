"""Tests for the task, note, sync and status slash commands."""

from __future__ import annotations

import pytest

from fakes import FakePocketBase
from taskdown.app import build_router, execute_cli_command

SYNC_ENABLED = """
sync:
  enabled: true
  server_url: http://pb.test
  auto_sync: false
"""


async def _run(router, line: str) -> str:
    return await execute_cli_command(line, router)


@pytest.mark.asyncio
async def test_task_add_list_and_done(make_runtime):
    runtime = make_runtime()
    router = build_router(runtime.config, runtime)

    output = await _run(router, "task add Buy milk --date 2024-01-05 --tags home,shop")
    assert "Added #1: Buy milk" in output

    task = await runtime.store.tasks.get_by_id(1)
    assert task.date == "2024-01-05"
    assert task.tags == ["home", "shop"]

    assert "Buy milk" in await _run(router, "task list")
    assert "marked done" in await _run(router, "task done 1")
    assert (await runtime.store.tasks.get_by_id(1)).usage_count == 1
    assert "No tasks" in await _run(router, "task")


@pytest.mark.asyncio
async def test_recurring_task_reports_next_occurrence(make_runtime):
    runtime = make_runtime()
    router = build_router(runtime.config, runtime)

    await _run(router, "task add Bins --date 2024-03-04 --repeat weekly")
    output = await _run(router, "task done 1")

    assert "Next occurrence scheduled as #2 (2024-03-11)" in output


@pytest.mark.asyncio
async def test_task_argument_errors_are_reported(make_runtime):
    runtime = make_runtime()
    router = build_router(runtime.config, runtime)
    await _run(router, "task add Dentist")

    assert "not a YYYY-MM-DD date" in await _run(router, "task reschedule 1 soon")
    assert "not found" in await _run(router, "task done 99")
    assert "--repeat must be one of" in await _run(router, "task add Gym --repeat hourly")
    assert "Unknown subcommand" in await _run(router, "task archive 1")

    assert "moved to 2024-02-02" in await _run(router, "task reschedule 1 2024-02-02")
    assert "Deleted #1" in await _run(router, "task delete 1")
    assert await runtime.store.tasks.get_all() == []


@pytest.mark.asyncio
async def test_note_commands(make_runtime):
    runtime = make_runtime()
    router = build_router(runtime.config, runtime)

    assert "Added #1: Groceries" in await _run(router, "note add Groceries -- eggs and milk")
    note = await runtime.store.notes.get_by_id(1)
    assert note.content == "eggs and milk"

    assert "Groceries" in await _run(router, "note search milk")
    assert "No notes match" in await _run(router, "note search bread")
    assert "eggs and milk" in await _run(router, "note show 1")
    assert "Deleted #1" in await _run(router, "note delete 1")
    assert "No notes" in await _run(router, "note list")


@pytest.mark.asyncio
async def test_sync_now_reports_gating_failure(make_runtime):
    runtime = make_runtime()
    router = build_router(runtime.config, runtime)

    output = await _run(router, "sync now")

    assert "Sync not started: Sync is disabled" in output
    assert "ERROR" in await _run(router, "sync status")


@pytest.mark.asyncio
async def test_login_then_sync_uploads_local_records(make_runtime):
    server = FakePocketBase()
    runtime = make_runtime(SYNC_ENABLED, server=server)
    router = build_router(runtime.config, runtime)
    await _run(router, "task add Buy milk")

    assert "Login required" in await _run(router, "sync now")
    assert "Logged in as me@example.com" in await _run(router, "sync login me@example.com hunter2")

    output = await _run(router, "sync now")

    assert "Sync completed" in output
    assert [r["title"] for r in server.collections["tasks"].values()] == ["Buy milk"]
    task = (await runtime.store.tasks.get_all())[0]
    assert task.synced is True

    assert "Logged out" in await _run(router, "sync logout")
    assert runtime.sync.get_status().is_online is False


@pytest.mark.asyncio
async def test_sync_auto_and_stop(make_runtime):
    runtime = make_runtime(SYNC_ENABLED, server=FakePocketBase())
    router = build_router(runtime.config, runtime)

    assert "every 15 minute(s)" in await _run(router, "sync auto 15")
    assert runtime.sync.auto_sync_running is True
    assert "every 15 min" in await _run(router, "sync status")

    assert "stopped" in await _run(router, "sync stop")
    assert runtime.sync.auto_sync_running is False
    assert "not a number" in await _run(router, "sync auto soon")


@pytest.mark.asyncio
async def test_sync_auto_refused_while_disabled(make_runtime):
    runtime = make_runtime()
    router = build_router(runtime.config, runtime)

    assert "Sync is disabled" in await _run(router, "sync auto")
    assert runtime.sync.auto_sync_running is False


@pytest.mark.asyncio
async def test_status_and_help(make_runtime):
    runtime = make_runtime()
    router = build_router(runtime.config, runtime)

    status = await _run(router, "status")
    assert "Runtime Status" in status
    assert "Store" in status

    help_text = await _run(router, "help")
    for name in ("/task", "/note", "/sync", "/config", "/status"):
        assert name in help_text


@pytest.mark.asyncio
async def test_sync_refresh_renews_or_expires_session(make_runtime):
    server = FakePocketBase()
    runtime = make_runtime(SYNC_ENABLED, server=server)
    router = build_router(runtime.config, runtime)

    assert "Not signed in" in await _run(router, "sync refresh")
    await _run(router, "sync login me@example.com hunter2")
    assert "Session refreshed" in await _run(router, "sync refresh")
    assert runtime.auth.is_authenticated is True

    server.valid_tokens.clear()
    assert "Session expired" in await _run(router, "sync refresh")
    assert runtime.auth.is_authenticated is False
