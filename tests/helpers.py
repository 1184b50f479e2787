from __future__ import annotations

import asyncio

from zkwire import SessionEvent, SessionEventKind, WatchedEvent


async def next_session_event(subscription, kind: SessionEventKind, timeout: float = 3.0) -> SessionEvent:
    """Skip other items until a session event of ``kind`` arrives."""

    async def _wait():
        while True:
            item = await subscription.get()
            if isinstance(item, SessionEvent) and item.kind is kind:
                return item

    return await asyncio.wait_for(_wait(), timeout)


async def next_watched_event(subscription, timeout: float = 3.0) -> WatchedEvent:
    async def _wait():
        while True:
            item = await subscription.get()
            if isinstance(item, WatchedEvent):
                return item

    return await asyncio.wait_for(_wait(), timeout)
