"""Tests for the sync orchestrator."""

from __future__ import annotations

import asyncio
from typing import List

import pytest

from fakes import FakeAuth, FakeClient, FakeRemoteCollection, MissingRemoteCollection
from taskdown.settings import SettingsService, SyncSettings
from taskdown.sync import SyncGatingError, SyncService, SyncState, SyncStatus


def _service(store, *, enabled=True, authenticated=True, client=None):
    settings = SettingsService(SyncSettings(enabled=enabled, server_url="http://pb.test"))
    auth = FakeAuth(authenticated=authenticated)
    client = client or FakeClient()
    service = SyncService(store, settings, auth, lambda: client)
    return service, settings, auth, client


class BlockingRemoteCollection(FakeRemoteCollection):
    """Remote whose listing waits until released."""

    def __init__(self, name: str):
        super().__init__(name)
        self.release = asyncio.Event()
        self.list_calls = 0

    async def get_full_list(self):
        self.list_calls += 1
        await self.release.wait()
        return await super().get_full_list()


@pytest.mark.asyncio
async def test_sync_uploads_and_returns_to_idle(store):
    service, _, _, client = _service(store)
    await store.tasks.create({"title": "Buy milk"})

    await service.sync()

    status = service.get_status()
    assert status.state is SyncState.IDLE
    assert status.is_online is True
    assert status.last_sync is not None
    assert status.error is None
    assert [r["title"] for r in client.collection("tasks").records.values()] == ["Buy milk"]
    assert set(service.last_outcomes) == {"tasks", "notes"}


@pytest.mark.asyncio
async def test_disabled_sync_raises_gating_error(store):
    service, _, _, client = _service(store, enabled=False)

    with pytest.raises(SyncGatingError):
        await service.sync()

    status = service.get_status()
    assert status.state is SyncState.ERROR
    assert status.error == "Sync is disabled"
    assert status.sync_in_progress is False
    assert client.health_calls == 0


@pytest.mark.asyncio
async def test_unauthenticated_sync_raises_gating_error(store):
    service, _, _, _ = _service(store, authenticated=False)

    with pytest.raises(SyncGatingError, match="Login required"):
        await service.sync()
    assert service.get_status().requires_auth is True


@pytest.mark.asyncio
async def test_unreachable_server_raises_gating_error(store):
    service, _, _, client = _service(store, client=FakeClient(healthy=False))
    await store.tasks.create({"title": "stays local"})

    with pytest.raises(SyncGatingError):
        await service.sync()

    status = service.get_status()
    assert status.is_online is False
    assert status.state is SyncState.ERROR
    assert client.collections == {}
    assert (await store.tasks.get_all())[0].remote_id is None


@pytest.mark.asyncio
async def test_missing_collection_does_not_block_others(store):
    client = FakeClient({"notes": MissingRemoteCollection("notes")})
    service, _, _, _ = _service(store, client=client)
    task_id = await store.tasks.create({"title": "Buy milk"})
    await store.notes.create({"title": "stranded"})

    await service.sync()

    assert service.get_status().state is SyncState.IDLE
    assert (await store.tasks.get_by_id(task_id)).synced is True
    assert "notes" in service.last_collection_errors
    assert set(service.last_outcomes) == {"tasks"}


@pytest.mark.asyncio
async def test_concurrent_sync_requests_run_once(store):
    blocking = BlockingRemoteCollection("tasks")
    client = FakeClient({"tasks": blocking})
    service, settings, _, _ = _service(store, client=client)
    settings.update(collections=("tasks",))

    first = asyncio.get_running_loop().create_task(service.sync())
    while blocking.list_calls == 0:
        await asyncio.sleep(0)
    assert service.get_status().state is SyncState.SYNCING

    await service.sync()
    assert blocking.list_calls == 1

    blocking.release.set()
    await first
    assert service.get_status().state is SyncState.IDLE


@pytest.mark.asyncio
async def test_observers_see_each_transition_and_can_unsubscribe(store):
    service, _, _, _ = _service(store)
    seen: List[SyncStatus] = []
    unsubscribe = service.on_status_change(seen.append)

    await service.sync()

    states = [status.state for status in seen]
    assert states[0] is SyncState.SYNCING
    assert states[-1] is SyncState.IDLE
    assert any(status.is_online for status in seen)

    unsubscribe()
    count = len(seen)
    await service.sync()
    assert len(seen) == count


@pytest.mark.asyncio
async def test_auto_sync_runs_ticks_until_stopped(store):
    service, _, _, client = _service(store)

    assert service.start_auto_sync(interval_minutes=0.0005) is True
    assert service.auto_sync_running is True
    for _ in range(50):
        if client.health_calls >= 2:
            break
        await asyncio.sleep(0.02)

    service.stop_auto_sync()
    await asyncio.sleep(0)
    assert client.health_calls >= 2
    assert service.auto_sync_running is False
    service.stop_auto_sync()


@pytest.mark.asyncio
async def test_auto_sync_survives_failing_ticks(store):
    service, _, _, client = _service(store, client=FakeClient(healthy=False))

    service.start_auto_sync(interval_minutes=0.0005)
    for _ in range(50):
        if client.health_calls >= 2:
            break
        await asyncio.sleep(0.02)

    assert client.health_calls >= 2
    assert service.auto_sync_running is True
    service.stop_auto_sync()


@pytest.mark.asyncio
async def test_auto_sync_is_not_started_when_disabled(store):
    service, _, _, _ = _service(store, enabled=False)

    assert service.start_auto_sync() is False
    assert service.auto_sync_running is False


@pytest.mark.asyncio
async def test_disabling_sync_stops_schedule_and_updates_status(store):
    service, settings, _, _ = _service(store)
    service.start_auto_sync(interval_minutes=10)

    settings.update(enabled=False)
    await asyncio.sleep(0)

    assert service.auto_sync_running is False
    assert service.get_status().is_enabled is False


@pytest.mark.asyncio
async def test_logout_marks_status_offline(store):
    service, _, auth, _ = _service(store)
    await service.sync()
    assert service.get_status().is_online is True

    auth.set_authenticated(False)

    status = service.get_status()
    assert status.is_online is False
    assert status.requires_auth is True
    await service.aclose()


async def _wait_for_listing(remote: BlockingRemoteCollection) -> None:
    for _ in range(200):
        if remote.list_calls:
            return
        await asyncio.sleep(0.005)
    raise AssertionError("remote was never listed")


@pytest.mark.asyncio
async def test_disabling_sync_lets_scheduled_pass_finish(store):
    blocking = BlockingRemoteCollection("tasks")
    service, settings, _, _ = _service(store, client=FakeClient({"tasks": blocking}))
    settings.update(collections=("tasks",))
    await store.tasks.create({"title": "Buy milk"})

    service.start_auto_sync(interval_minutes=0.0005)
    await _wait_for_listing(blocking)
    assert service.get_status().sync_in_progress is True

    settings.update(enabled=False)
    assert service.auto_sync_running is False
    blocking.release.set()
    await service.aclose()

    assert [r["title"] for r in blocking.records.values()] == ["Buy milk"]
    assert (await store.tasks.get_all())[0].synced is True
    assert service.get_status().sync_in_progress is False
    assert blocking.list_calls == 1


@pytest.mark.asyncio
async def test_stop_during_scheduled_pass_ends_loop_after_it(store):
    blocking = BlockingRemoteCollection("tasks")
    service, settings, _, _ = _service(store, client=FakeClient({"tasks": blocking}))
    settings.update(collections=("tasks",))

    service.start_auto_sync(interval_minutes=0.0005)
    loop_task = service._auto_task
    await _wait_for_listing(blocking)

    service.stop_auto_sync()
    blocking.release.set()
    for _ in range(100):
        if loop_task.done():
            break
        await asyncio.sleep(0.005)

    assert loop_task.done() and not loop_task.cancelled()
    assert service.get_status().last_sync is not None
    assert blocking.list_calls == 1


@pytest.mark.asyncio
async def test_logout_during_pass_does_not_abort_it(store):
    blocking = BlockingRemoteCollection("tasks")
    service, settings, auth, _ = _service(store, client=FakeClient({"tasks": blocking}))
    settings.update(collections=("tasks",))
    await store.tasks.create({"title": "Buy milk"})

    running = asyncio.get_running_loop().create_task(service.sync())
    await _wait_for_listing(blocking)
    auth.set_authenticated(False)
    blocking.release.set()
    await running

    assert [r["title"] for r in blocking.records.values()] == ["Buy milk"]
    status = service.get_status()
    assert status.requires_auth is True
    assert status.last_sync is not None


@pytest.mark.asyncio
async def test_restarting_auto_sync_replaces_previous_schedule(store):
    service, _, _, client = _service(store)

    service.start_auto_sync(interval_minutes=0.0005)
    first = service._auto_task
    service.start_auto_sync(interval_minutes=0.001)
    second = service._auto_task

    assert first is not second
    with pytest.raises(asyncio.CancelledError):
        await first
    assert service.auto_sync_interval == 0.001

    for _ in range(50):
        if client.health_calls >= 1:
            break
        await asyncio.sleep(0.02)
    assert client.health_calls >= 1
    assert not second.done()
    await service.aclose()
    assert second.done()


@pytest.mark.asyncio
async def test_aclose_reaps_sleeping_schedule(store):
    service, _, _, _ = _service(store)
    service.start_auto_sync(interval_minutes=10)
    loop_task = service._auto_task

    await service.aclose()

    assert loop_task.cancelled()
    assert service.auto_sync_running is False
