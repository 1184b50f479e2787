from __future__ import annotations

import asyncio

import pytest

from fakeserver import CONFIG_DATA
from helpers import next_watched_event
from zkwire import (
    OPEN_ACL_UNSAFE,
    READ_ACL_UNSAFE,
    AddWatchMode,
    AuthFailedError,
    BadArgumentsError,
    BadVersionError,
    CheckFailedError,
    CheckResult,
    ChildrenResult,
    Client,
    CreateMode,
    CreateResult,
    DataResult,
    DeleteResult,
    ErrorResult,
    EventType,
    InvalidACLError,
    MultiWriteError,
    NodeExistsError,
    NoNodeError,
    NotEmptyError,
    OpAborted,
    OpFailed,
    OpSucceeded,
    SessionClosedError,
    SessionState,
    SetDataResult,
)
from zkwire.protocol.constants import KeeperState, OpCode
from zkwire.protocol.errors import NoChildrenForEphemeralsError


@pytest.mark.asyncio
async def test_connect_reports_session(client, server):
    assert client.state is SessionState.CONNECTED
    assert client.session_id in server.sessions
    assert len(client.session_password) == 16
    assert client.session_timeout == 2.0
    assert client.path == "/"


@pytest.mark.asyncio
async def test_node_lifecycle(client):
    stat, sequence = await client.create("/a", b"one")
    assert sequence is None
    assert stat.version == 0
    assert stat.data_length == 3

    data, stat = await client.get_data("/a")
    assert data == b"one"

    stat = await client.set_data("/a", b"two", version=0)
    assert stat.version == 1
    with pytest.raises(BadVersionError):
        await client.set_data("/a", b"three", version=0)

    assert (await client.check_stat("/a")).version == 1
    assert await client.check_stat("/missing") is None

    with pytest.raises(BadVersionError):
        await client.delete("/a", version=7)
    await client.delete("/a")
    with pytest.raises(NoNodeError):
        await client.get_data("/a")


@pytest.mark.asyncio
async def test_server_errors(client):
    await client.create("/p")
    await client.create("/p/c")
    with pytest.raises(NodeExistsError):
        await client.create("/p")
    with pytest.raises(NotEmptyError):
        await client.delete("/p")
    with pytest.raises(NoNodeError) as info:
        await client.create("/nope/child")
    assert info.value.path == "/nope/child"


@pytest.mark.asyncio
async def test_arguments_checked_before_sending(client, server):
    sent = len(server.requests)
    with pytest.raises(BadArgumentsError):
        await client.create("relative")
    with pytest.raises(BadArgumentsError):
        await client.delete("/")
    with pytest.raises(BadArgumentsError):
        await client.create("/ttl", mode=CreateMode.PERSISTENT_WITH_TTL)
    with pytest.raises(BadArgumentsError):
        await client.create("/ttl", ttl=1000)
    with pytest.raises(InvalidACLError):
        await client.create("/acl", acl=[])
    assert len(server.requests) == sent


@pytest.mark.asyncio
async def test_sequential_create(client):
    await client.create("/q")
    _, first = await client.create("/q/item-", mode=CreateMode.PERSISTENT_SEQUENTIAL)
    _, second = await client.create("/q/item-", mode=CreateMode.PERSISTENT_SEQUENTIAL)
    _, third = await client.create("/q/", mode=CreateMode.EPHEMERAL_SEQUENTIAL)
    assert (first, second, third) == (0, 1, 2)
    assert await client.list_children("/q") == ["0000000002", "item-0000000000", "item-0000000001"]


@pytest.mark.asyncio
async def test_special_create_modes(client, server):
    await client.create("/box", mode=CreateMode.CONTAINER)
    await client.create("/lease", mode=CreateMode.PERSISTENT_WITH_TTL, ttl=5000)
    assert server.sent(OpCode.CREATE_CONTAINER) == 1
    assert server.sent(OpCode.CREATE_TTL) == 1
    assert server.nodes["/lease"].ttl == 5000


@pytest.mark.asyncio
async def test_children_and_counts(client):
    await client.create("/t")
    await client.create("/t/a")
    await client.create("/t/b")
    await client.create("/t/a/x")

    children, stat = await client.get_children("/t")
    assert children == ["a", "b"]
    assert stat.num_children == 2
    assert await client.count_descendants_number("/t") == 3
    assert "zookeeper" in await client.list_children("/")


@pytest.mark.asyncio
async def test_acl(client):
    await client.create("/secured", acl=READ_ACL_UNSAFE)
    acl, stat = await client.get_acl("/secured")
    assert acl == READ_ACL_UNSAFE
    assert stat.aversion == 0

    stat = await client.set_acl("/secured", OPEN_ACL_UNSAFE, version=0)
    assert stat.aversion == 1
    with pytest.raises(InvalidACLError):
        await client.set_acl("/secured", [])


@pytest.mark.asyncio
async def test_pipelined_requests_complete_in_order(client):
    results = await asyncio.gather(
        client.create("/order", b"0"),
        client.set_data("/order", b"1"),
        client.get_data("/order"),
        client.delete("/order"),
        client.check_stat("/order"),
    )
    data, stat = results[2]
    assert data == b"1"
    assert stat.version == 1
    assert results[4] is None


@pytest.mark.asyncio
async def test_ephemerals_and_whoami(client, server):
    await client.create("/e")
    await client.create("/e/mine", mode=CreateMode.EPHEMERAL)
    assert await client.list_ephemerals("/") == ["/e/mine"]
    assert server.nodes["/e/mine"].ephemeral_owner == client.session_id
    with pytest.raises(NoChildrenForEphemeralsError):
        await client.create("/e/mine/child")

    await client.auth("digest", b"alice:secret")
    users = await client.list_auth_users()
    assert [(info.auth_scheme, info.user) for info in users] == [("ip", "127.0.0.1"), ("digest", "alice")]


@pytest.mark.asyncio
async def test_rejected_credentials_end_the_session(server):
    with pytest.raises(AuthFailedError):
        await Client.connect(server.hosts, connect_timeout=1.0, auth=[("bad", b"nope")])


@pytest.mark.asyncio
async def test_config_node(client):
    data, stat = await client.get_config()
    assert data == CONFIG_DATA
    view = client.chroot("/elsewhere")
    assert (await view.get_config())[0] == CONFIG_DATA


@pytest.mark.asyncio
async def test_update_ensemble(client, server):
    _, stat = await client.get_config()
    _, _, watcher = await client.get_and_watch_config()

    joined = "server.2=127.0.0.1:2889:3889:participant;0.0.0.0:2182"
    data, new_stat = await client.update_ensemble(joining=[joined], config_id=stat.mzxid)
    assert b"server.1=" in data
    assert joined.encode() in data
    assert new_stat.mzxid > stat.mzxid
    assert (await asyncio.wait_for(watcher.changed(), 1)).event_type == EventType.NODE_DATA_CHANGED

    with pytest.raises(BadVersionError):
        await client.update_ensemble(leaving=["1"], config_id=stat.mzxid)

    data, _ = await client.update_ensemble(leaving=["1"])
    assert b"server.1=" not in data
    assert joined.encode() in data

    replacement = "server.3=127.0.0.1:2890:3890:participant;0.0.0.0:2183"
    data, _ = await client.update_ensemble(new_members=[replacement])
    assert data.decode().splitlines()[0] == replacement
    assert (await client.get_config())[0] == data


@pytest.mark.asyncio
async def test_update_ensemble_arguments(client, server):
    before = len(server.requests)
    with pytest.raises(BadArgumentsError):
        await client.update_ensemble()
    with pytest.raises(BadArgumentsError):
        await client.update_ensemble(joining=["server.2=x"], new_members=["server.3=y"])
    with pytest.raises(BadArgumentsError):
        await client.update_ensemble(new_members=[])
    assert len(server.requests) == before


@pytest.mark.asyncio
async def test_sync(client):
    await client.create("/s")
    await client.sync("/s")


@pytest.mark.asyncio
async def test_data_watch(client, connect):
    other = await connect()
    await client.create("/w", b"1")
    data, _, watcher = await client.get_and_watch_data("/w")
    assert data == b"1"

    await other.set_data("/w", b"2")
    event = await asyncio.wait_for(watcher.changed(), 2)
    assert event.event_type == EventType.NODE_DATA_CHANGED
    assert event.path == "/w"
    assert event.session_state == KeeperState.SYNC_CONNECTED


@pytest.mark.asyncio
async def test_exists_watch_on_missing_node(client):
    stat, watcher = await client.check_and_watch_stat("/later")
    assert stat is None
    await client.create("/later")
    event = await asyncio.wait_for(watcher.changed(), 2)
    assert event.event_type == EventType.NODE_CREATED


@pytest.mark.asyncio
async def test_exists_watch_on_present_node_sees_deletion(client):
    await client.create("/present")
    stat, watcher = await client.check_and_watch_stat("/present")
    assert stat is not None
    await client.delete("/present")
    assert (await asyncio.wait_for(watcher.changed(), 2)).event_type == EventType.NODE_DELETED


@pytest.mark.asyncio
async def test_child_watch(client):
    await client.create("/parent")
    children, watcher = await client.list_and_watch_children("/parent")
    assert children == []
    await client.set_data("/parent", b"ignored")
    await client.create("/parent/kid")
    event = await asyncio.wait_for(watcher.changed(), 2)
    assert event.event_type == EventType.NODE_CHILDREN_CHANGED
    assert event.path == "/parent"

    children, stat, again = await client.get_and_watch_children("/parent")
    assert children == ["kid"]
    await client.delete("/parent/kid")
    assert (await asyncio.wait_for(again.changed(), 2)).event_type == EventType.NODE_CHILDREN_CHANGED


@pytest.mark.asyncio
async def test_watch_on_failed_request_is_not_armed(client):
    with pytest.raises(NoNodeError):
        await client.get_and_watch_data("/ghost")
    assert len(client._session.watches) == 0


@pytest.mark.asyncio
async def test_persistent_recursive_watch(client):
    await client.create("/tree")
    watcher = await client.watch("/tree", AddWatchMode.PERSISTENT_RECURSIVE)
    await client.create("/tree/a")
    await client.set_data("/tree/a", b"x")
    await client.delete("/tree/a")

    seen = [await asyncio.wait_for(watcher.changed(), 2) for _ in range(3)]
    assert [(e.event_type, e.path) for e in seen] == [
        (EventType.NODE_CREATED, "/tree/a"),
        (EventType.NODE_DATA_CHANGED, "/tree/a"),
        (EventType.NODE_DELETED, "/tree/a"),
    ]


@pytest.mark.asyncio
async def test_persistent_watch_keeps_firing(client):
    await client.create("/p")
    watcher = await client.watch("/p")
    for value in (b"1", b"2"):
        await client.set_data("/p", value)
        assert (await asyncio.wait_for(watcher.changed(), 2)).event_type == EventType.NODE_DATA_CHANGED
    await client.create("/p/c")
    assert (await asyncio.wait_for(watcher.changed(), 2)).event_type == EventType.NODE_CHILDREN_CHANGED


@pytest.mark.asyncio
async def test_remove_watch(client, server):
    await client.create("/r")
    _, _, first = await client.get_and_watch_data("/r")
    _, _, second = await client.get_and_watch_data("/r")

    await first.remove()
    assert server.sent(OpCode.REMOVE_WATCHES) == 0
    await second.remove()
    assert server.sent(OpCode.REMOVE_WATCHES) == 1
    assert "/r" not in server.watches_of(client.session_id)["data"]

    persistent = await client.watch("/r")
    await persistent.remove()
    assert "/r" not in server.watches_of(client.session_id)["persistent"]


@pytest.mark.asyncio
async def test_subscription_sees_server_paths(connect, server):
    root = await connect()
    await root.create("/app")
    client = await connect(f"{server.hosts}/app")
    subscription = client.subscribe()

    await client.create("/n")
    _, _, watcher = await client.get_and_watch_data("/n")
    await client.set_data("/n", b"v")

    assert (await asyncio.wait_for(watcher.changed(), 2)).path == "/n"
    assert (await next_watched_event(subscription)).path == "/app/n"
    subscription.close()


@pytest.mark.asyncio
async def test_chroot(connect, server):
    root = await connect()
    await root.create("/app")
    client = await connect(f"{server.hosts}/app")
    assert client.path == "/app"

    _, sequence = await client.create("/job-", mode=CreateMode.EPHEMERAL_SEQUENTIAL)
    await client.create("/x", b"data")
    assert "/app/x" in server.nodes
    assert (await root.get_data("/app/x"))[0] == b"data"
    assert sorted(await client.list_children("/")) == [f"job-{sequence:010d}", "x"]
    assert await client.list_ephemerals("/") == [f"/job-{sequence:010d}"]

    nested = client.chroot("/x")
    assert nested.path == "/app/x"
    assert (await nested.get_data("/"))[0] == b"data"
    assert client.chroot("/").path == "/app"

    writer = client.new_multi_writer()
    writer.add_create("/y", b"")
    results = await writer.commit()
    assert results[0].path == "/y"
    assert "/app/y" in server.nodes


@pytest.mark.asyncio
async def test_multi_writer(client, server):
    writer = client.new_multi_writer()
    writer.add_create("/m", b"1")
    writer.add_set_data("/m", b"2")
    writer.add_check_version("/m", 1)
    assert len(writer) == 3
    results = await writer.commit()
    assert isinstance(results[0], CreateResult)
    assert results[0].path == "/m"
    assert isinstance(results[1], SetDataResult)
    assert results[1].stat.version == 1
    assert results[2] == CheckResult()
    assert len(writer) == 0

    writer.add_delete("/m")
    assert await writer.commit() == [DeleteResult()]

    sent = server.sent(OpCode.MULTI)
    assert await writer.commit() == []
    assert server.sent(OpCode.MULTI) == sent


@pytest.mark.asyncio
async def test_failed_multi_applies_nothing(client, server):
    writer = client.new_multi_writer()
    writer.add_create("/n", b"")
    writer.add_delete("/missing")
    writer.add_create("/o", b"")
    with pytest.raises(MultiWriteError) as info:
        await writer.commit()
    assert info.value.index == 1
    assert isinstance(info.value.source, NoNodeError)
    assert info.value.outcomes == [OpSucceeded(), OpFailed(NoNodeError()), OpAborted()]
    assert "/n" not in server.nodes
    assert await client.check_stat("/n") is None

    writer.add_create("/n", b"")
    writer.abort()
    assert await writer.commit() == []


@pytest.mark.asyncio
async def test_check_writer(client):
    await client.create("/cfg", b"v0")

    guarded = client.new_check_writer("/cfg", version=0)
    guarded.add_set_data("/cfg", b"v1")
    assert [type(r) for r in await guarded.commit()] == [SetDataResult]

    stale = client.new_check_writer("/cfg", version=0)
    stale.add_set_data("/cfg", b"v2")
    with pytest.raises(CheckFailedError) as info:
        await stale.commit()
    assert isinstance(info.value.source, BadVersionError)
    assert (await client.get_data("/cfg"))[0] == b"v1"

    inner = client.new_check_writer("/cfg")
    inner.add_set_data("/cfg", b"v3")
    inner.add_delete("/missing")
    with pytest.raises(MultiWriteError) as failure:
        await inner.commit()
    assert failure.value.index == 1
    assert len(failure.value.outcomes) == 2

    missing = client.new_check_writer("/absent")
    with pytest.raises(CheckFailedError):
        await missing.commit()


@pytest.mark.asyncio
async def test_multi_reader(client):
    await client.create("/r", b"payload")
    await client.create("/r/c")
    reader = client.new_multi_reader()
    reader.add_get_data("/r")
    reader.add_get_children("/r")
    reader.add_get_data("/nothing")
    results = await reader.commit()
    assert isinstance(results[0], DataResult)
    assert results[0].data == b"payload"
    assert results[1] == ChildrenResult(children=["c"])
    assert isinstance(results[2], ErrorResult)
    assert isinstance(results[2].error, NoNodeError)
    assert await reader.commit() == []


@pytest.mark.asyncio
async def test_close(client, server):
    states = client.state_watcher()
    await client.create("/eph", mode=CreateMode.EPHEMERAL)
    session_id = client.session_id

    await client.close()
    assert client.state is SessionState.CLOSED
    assert await asyncio.wait_for(states.changed(), 1) is SessionState.CLOSED
    assert server.sent(OpCode.CLOSE_SESSION) == 1
    assert session_id not in server.sessions
    assert "/eph" not in server.nodes

    with pytest.raises(SessionClosedError):
        await client.get_data("/")
    await client.close()
    assert server.sent(OpCode.CLOSE_SESSION) == 1


@pytest.mark.asyncio
async def test_close_resolves_pending_watchers(client):
    await client.create("/x")
    _, _, watcher = await client.get_and_watch_data("/x")
    await client.close()
    event = await asyncio.wait_for(watcher.changed(), 1)
    assert event.event_type == EventType.SESSION
    assert event.session_state == KeeperState.CLOSED


@pytest.mark.asyncio
async def test_detach_and_resume(connect, server):
    first = await connect()
    await first.create("/held", mode=CreateMode.EPHEMERAL)
    session_id, password = await first.detach()
    assert first.state is SessionState.CLOSED
    assert server.sent(OpCode.CLOSE_SESSION) == 0
    assert session_id in server.sessions

    second = await connect(session_id=session_id, password=password)
    assert second.session_id == session_id
    assert await second.list_ephemerals("/") == ["/held"]


@pytest.mark.asyncio
async def test_context_manager(server):
    async with await Client.connect(server.hosts, connect_timeout=1.0) as client:
        await client.create("/ctx")
    assert client.state is SessionState.CLOSED
