from __future__ import annotations

import asyncio

import pytest

from zkwire.core.watches import StateChannel, StateWatcher, WatchedEvent, WatchKind, WatchManager
from zkwire.protocol.constants import EventType, KeeperState, WatcherType
from zkwire.protocol.errors import NoWatcherError


def _event(event_type: EventType, path: str) -> WatchedEvent:
    return WatchedEvent(event_type, KeeperState.SYNC_CONNECTED, path)


@pytest.mark.asyncio
async def test_oneshot_fires_at_most_once():
    manager = WatchManager()
    watcher = manager.add("/a", WatchKind.DATA)

    assert manager.dispatch(_event(EventType.NODE_DATA_CHANGED, "/a")) == 1
    assert manager.dispatch(_event(EventType.NODE_DATA_CHANGED, "/a")) == 0
    assert watcher.fired
    event = await asyncio.wait_for(watcher.changed(), 1)
    assert event.event_type == EventType.NODE_DATA_CHANGED
    # Asking again returns the same event.
    assert await watcher.changed() == event


@pytest.mark.asyncio
async def test_event_routing_by_kind():
    manager = WatchManager()
    data = manager.add("/n", WatchKind.DATA)
    exist = manager.add("/n", WatchKind.EXIST)
    child = manager.add("/n", WatchKind.CHILD)

    manager.dispatch(_event(EventType.NODE_CHILDREN_CHANGED, "/n"))
    assert child.fired
    assert not data.fired and not exist.fired

    child_again = manager.add("/n", WatchKind.CHILD)
    assert manager.dispatch(_event(EventType.NODE_DELETED, "/n")) == 3
    assert data.fired and exist.fired and child_again.fired
    assert len(manager) == 0


@pytest.mark.asyncio
async def test_persistent_watches():
    manager = WatchManager()
    exact = manager.add("/app", WatchKind.PERSISTENT)
    tree = manager.add("/app", WatchKind.PERSISTENT_RECURSIVE)

    manager.dispatch(_event(EventType.NODE_CHILDREN_CHANGED, "/app"))
    manager.dispatch(_event(EventType.NODE_CREATED, "/app/x/y"))
    manager.dispatch(_event(EventType.NODE_DATA_CHANGED, "/app"))

    assert (await exact.changed()).event_type == EventType.NODE_CHILDREN_CHANGED
    assert (await exact.changed()).event_type == EventType.NODE_DATA_CHANGED
    created = await tree.changed()
    assert created.path == "/app/x/y"
    assert (await tree.changed()).event_type == EventType.NODE_DATA_CHANGED
    assert len(manager) == 2


@pytest.mark.asyncio
async def test_disconnect_reaches_persistent_watches_only():
    manager = WatchManager()
    oneshot = manager.add("/a", WatchKind.DATA)
    persistent = manager.add("/a", WatchKind.PERSISTENT)

    manager.disconnect()
    assert not oneshot.fired
    event = await persistent.changed()
    assert event.event_type == EventType.SESSION
    assert event.session_state == KeeperState.DISCONNECTED
    assert not persistent.fired


@pytest.mark.asyncio
async def test_terminate_resolves_every_holder():
    manager = WatchManager()
    oneshot = manager.add("/a", WatchKind.CHILD)
    persistent = manager.add("/b", WatchKind.PERSISTENT_RECURSIVE)

    manager.terminate(KeeperState.EXPIRED)
    assert len(manager) == 0
    assert (await oneshot.changed()).session_state == KeeperState.EXPIRED
    for _ in range(2):
        event = await asyncio.wait_for(persistent.changed(), 1)
        assert event.session_state == KeeperState.EXPIRED

    # Nothing is delivered after the end.
    persistent.deliver(_event(EventType.NODE_CREATED, "/b"))
    assert (await persistent.changed()).event_type == EventType.SESSION


@pytest.mark.asyncio
async def test_chroot_paths_are_stripped():
    manager = WatchManager()
    watcher = manager.add("/root/a", WatchKind.DATA, root="/root")
    manager.dispatch(_event(EventType.NODE_DELETED, "/root/a"))
    assert (await watcher.changed()).path == "/a"
    assert _event(EventType.NODE_CREATED, "/root").relative_to("/root").path == "/"
    assert _event(EventType.NODE_CREATED, "/other").relative_to("/root").path == "/other"


@pytest.mark.asyncio
async def test_remove_only_when_last_holder():
    removed = []

    async def remover(path, watcher_type):
        removed.append((path, watcher_type))

    manager = WatchManager(remover=remover)
    first = manager.add("/a", WatchKind.DATA)
    second = manager.add("/a", WatchKind.EXIST)
    children = manager.add("/a", WatchKind.CHILD)

    await first.remove()
    assert removed == []
    await second.remove()
    assert removed == [("/a", WatcherType.DATA)]
    await children.remove()
    assert removed[-1] == ("/a", WatcherType.CHILDREN)
    assert len(manager) == 0


@pytest.mark.asyncio
async def test_remove_ignores_missing_server_watch():
    async def remover(path, watcher_type):
        raise NoWatcherError(path=path)

    manager = WatchManager(remover=remover)
    watcher = manager.add("/a", WatchKind.PERSISTENT)
    await watcher.remove()
    assert len(manager) == 0


@pytest.mark.asyncio
async def test_cancel_is_local():
    manager = WatchManager()
    watcher = manager.add("/a", WatchKind.DATA)
    watcher.cancel()
    assert manager.dispatch(_event(EventType.NODE_DATA_CHANGED, "/a")) == 0
    assert not watcher.fired


@pytest.mark.asyncio
async def test_full_persistent_queue_drops_oldest():
    manager = WatchManager(queue_size=2)
    watcher = manager.add("/a", WatchKind.PERSISTENT)
    for _ in range(3):
        manager.dispatch(_event(EventType.NODE_DATA_CHANGED, "/a"))
    manager.dispatch(_event(EventType.NODE_DELETED, "/a"))
    assert (await watcher.changed()).event_type == EventType.NODE_DATA_CHANGED
    assert (await watcher.changed()).event_type == EventType.NODE_DELETED


@pytest.mark.asyncio
async def test_snapshot_and_subscription():
    manager = WatchManager()
    manager.add("/a", WatchKind.DATA)
    manager.add("/b", WatchKind.PERSISTENT_RECURSIVE)
    snapshot = manager.snapshot()
    assert snapshot[WatchKind.DATA] == ["/a"]
    assert snapshot[WatchKind.PERSISTENT_RECURSIVE] == ["/b"]
    assert snapshot[WatchKind.CHILD] == []

    subscription = manager.subscribe()
    event = _event(EventType.NODE_CREATED, "/zzz")
    manager.dispatch(event)
    assert subscription.get_nowait() == event
    subscription.close()
    manager.dispatch(event)
    with pytest.raises(asyncio.QueueEmpty):
        subscription.get_nowait()


@pytest.mark.asyncio
async def test_state_watcher():
    channel = StateChannel("connecting")
    watcher = StateWatcher(channel)
    assert watcher.peek_state() == "connecting"

    channel.publish("connected")
    channel.publish("connected")
    assert await asyncio.wait_for(watcher.changed(), 1) == "connected"

    waiter = asyncio.ensure_future(watcher.changed())
    await asyncio.sleep(0)
    assert not waiter.done()
    channel.publish("closed")
    assert await asyncio.wait_for(waiter, 1) == "closed"
    assert watcher.state() == "closed"

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(watcher.changed(), 0.05)
