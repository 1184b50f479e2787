from __future__ import annotations

import pytest_asyncio

from fakeserver import FakeZooKeeper
from zkwire import Client


@pytest_asyncio.fixture
async def server():
    """Fake ensemble member on an ephemeral port."""
    zk = FakeZooKeeper()
    await zk.start()
    yield zk
    await zk.stop()


@pytest_asyncio.fixture
async def client(server):
    zk = await Client.connect(server.hosts, session_timeout=2.0, connect_timeout=1.0)
    yield zk
    await zk.close()


@pytest_asyncio.fixture
async def connect(server):
    """Factory for extra clients; every one of them is closed at teardown."""
    clients = []

    async def _connect(hosts=None, **kwargs):
        kwargs.setdefault("session_timeout", 2.0)
        kwargs.setdefault("connect_timeout", 1.0)
        zk = await Client.connect(hosts or server.hosts, **kwargs)
        clients.append(zk)
        return zk

    yield _connect
    for zk in clients:
        await zk.close()
