"""
Client-side watch registrations.

A registration is keyed by ``(server path, kind)`` and may have several
holders. One-shot holders resolve exactly once: with the first matching node
event, or with a terminal session event. Persistent holders receive every
matching event through a bounded queue until the session ends.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from zkwire.protocol.constants import EventType, KeeperState, WatcherType
from zkwire.protocol.errors import NoWatcherError

logger = logging.getLogger(__name__)


class WatchKind(Enum):
    DATA = "data"
    EXIST = "exist"
    CHILD = "child"
    PERSISTENT = "persistent"
    PERSISTENT_RECURSIVE = "persistent_recursive"

    @property
    def is_persistent(self) -> bool:
        return self in (WatchKind.PERSISTENT, WatchKind.PERSISTENT_RECURSIVE)


@dataclass(frozen=True)
class WatchedEvent:
    event_type: EventType
    session_state: KeeperState
    path: str

    @classmethod
    def session(cls, state: KeeperState) -> "WatchedEvent":
        return cls(EventType.SESSION, state, "")

    def relative_to(self, root: str) -> "WatchedEvent":
        """Strip a chroot prefix from the event path."""
        if root == "/" or not self.path:
            return self
        if self.path == root:
            return replace(self, path="/")
        if self.path.startswith(root + "/"):
            return replace(self, path=self.path[len(root) :])
        return self


@dataclass(frozen=True)
class WatchRequest:
    """Watch to arm once the carrying request succeeds."""

    path: str
    kind: WatchKind
    root: str = "/"


_ONESHOT_ROUTES: Dict[EventType, Tuple[WatchKind, ...]] = {
    EventType.NODE_CREATED: (WatchKind.DATA, WatchKind.EXIST),
    EventType.NODE_DATA_CHANGED: (WatchKind.DATA, WatchKind.EXIST),
    EventType.NODE_DELETED: (WatchKind.DATA, WatchKind.EXIST, WatchKind.CHILD),
    EventType.NODE_CHILDREN_CHANGED: (WatchKind.CHILD,),
}

_RECURSIVE_EVENTS = (EventType.NODE_CREATED, EventType.NODE_DELETED, EventType.NODE_DATA_CHANGED)


def _ancestors(path: str) -> Iterable[str]:
    """``path`` itself followed by each parent up to the root."""
    yield path
    while path != "/":
        path = path.rsplit("/", 1)[0] or "/"
        yield path


class OneshotWatcher:
    """Single-fire watcher returned by the ``*_and_watch_*`` calls."""

    def __init__(self, manager: "WatchManager", path: str, kind: WatchKind, root: str = "/") -> None:
        self._manager = manager
        self.path = path
        self.kind = kind
        self.root = root
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()

    @property
    def fired(self) -> bool:
        return self._future.done()

    def deliver(self, event: WatchedEvent) -> None:
        if not self._future.done():
            self._future.set_result(event)

    async def changed(self) -> WatchedEvent:
        """Wait for the node event or the session event that ends this watch."""
        event = await asyncio.shield(self._future)
        return event.relative_to(self.root)

    def cancel(self) -> None:
        """Drop local interest; the server-side watch is left to fire unheard."""
        self._manager.discard(self)

    async def remove(self) -> None:
        """Drop local interest and remove the server watch if no other holder needs it."""
        await self._manager.remove(self)


class PersistentWatcher:
    """Watcher for persistent and recursive watches; events queue up until read."""

    def __init__(
        self,
        manager: "WatchManager",
        path: str,
        kind: WatchKind,
        root: str = "/",
        maxsize: int = 1024,
    ) -> None:
        self._manager = manager
        self.path = path
        self.kind = kind
        self.root = root
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._terminal: Optional[WatchedEvent] = None

    @property
    def fired(self) -> bool:
        return self._terminal is not None

    def deliver(self, event: WatchedEvent) -> None:
        if self._terminal is not None:
            return
        if self._queue.full():
            dropped = self._queue.get_nowait()
            logger.warning("Event queue for %s watch on %s full, dropped %s", self.kind.value, self.path, dropped)
        self._queue.put_nowait(event)
        if event.event_type == EventType.SESSION and event.session_state != KeeperState.DISCONNECTED:
            self._terminal = event

    async def changed(self) -> WatchedEvent:
        """
        Next node or session event.

        Once the terminal session event has been consumed, it is returned again
        on every call.
        """
        if self._queue.empty() and self._terminal is not None:
            return self._terminal.relative_to(self.root)
        event = await self._queue.get()
        return event.relative_to(self.root)

    def cancel(self) -> None:
        self._manager.discard(self)

    async def remove(self) -> None:
        """Best effort: the server cannot remove one persistent watch among several."""
        await self._manager.remove(self)


Watcher = Union[OneshotWatcher, PersistentWatcher]
Remover = Callable[[str, WatcherType], Awaitable[None]]


class EventSubscription:
    """Bounded stream of session events and watch firings."""

    def __init__(self, hub: "WatchManager", maxsize: int) -> None:
        self._hub = hub
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    def push(self, item: Any) -> None:
        if self._closed:
            return
        if self._queue.full():
            dropped = self._queue.get_nowait()
            logger.warning("Subscription queue full, dropped %s", dropped)
        self._queue.put_nowait(item)

    async def get(self) -> Any:
        return await self._queue.get()

    def get_nowait(self) -> Any:
        return self._queue.get_nowait()

    def close(self) -> None:
        self._closed = True
        self._hub.unsubscribe(self)

    def __aiter__(self) -> "EventSubscription":
        return self

    async def __anext__(self) -> Any:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        return await self._queue.get()


class WatchManager:
    """Registry of watch holders for one session."""

    def __init__(self, queue_size: int = 1024, remover: Optional[Remover] = None) -> None:
        self.queue_size = queue_size
        self._remover = remover
        self._registry: Dict[Tuple[str, WatchKind], List[Watcher]] = defaultdict(list)
        self._subscriptions: Set[EventSubscription] = set()

    def __len__(self) -> int:
        return sum(len(holders) for holders in self._registry.values())

    def add(self, path: str, kind: WatchKind, root: str = "/") -> Watcher:
        watcher: Watcher
        if kind.is_persistent:
            watcher = PersistentWatcher(self, path, kind, root, self.queue_size)
        else:
            watcher = OneshotWatcher(self, path, kind, root)
        self._registry[(path, kind)].append(watcher)
        return watcher

    def arm(self, request: WatchRequest) -> Watcher:
        return self.add(request.path, request.kind, request.root)

    def dispatch(self, event: WatchedEvent) -> int:
        """Deliver a node event to every matching holder; returns how many received it."""
        targets: List[Watcher] = []
        for kind in _ONESHOT_ROUTES.get(event.event_type, ()):
            targets.extend(self._registry.pop((event.path, kind), ()))
        if event.event_type in _ONESHOT_ROUTES:
            targets.extend(self._registry.get((event.path, WatchKind.PERSISTENT), ()))
        if event.event_type in _RECURSIVE_EVENTS:
            for ancestor in _ancestors(event.path):
                targets.extend(self._registry.get((ancestor, WatchKind.PERSISTENT_RECURSIVE), ()))
        if not targets:
            logger.debug("No watch registered for %s on %s", event.event_type.name, event.path)
        for watcher in targets:
            watcher.deliver(event)
        self.publish(event)
        return len(targets)

    def disconnect(self) -> None:
        """Tell persistent holders the connection dropped; one-shot holders wait on."""
        event = WatchedEvent.session(KeeperState.DISCONNECTED)
        for (_, kind), holders in self._registry.items():
            if kind.is_persistent:
                for watcher in holders:
                    watcher.deliver(event)

    def terminate(self, state: KeeperState) -> None:
        """Resolve and drop every holder with a terminal session event."""
        event = WatchedEvent.session(state)
        registry, self._registry = self._registry, defaultdict(list)
        for holders in registry.values():
            for watcher in holders:
                watcher.deliver(event)

    def snapshot(self) -> Dict[WatchKind, List[str]]:
        """Paths with at least one live holder, per kind."""
        paths: Dict[WatchKind, List[str]] = {kind: [] for kind in WatchKind}
        for (path, kind), holders in self._registry.items():
            if holders:
                paths[kind].append(path)
        return paths

    def discard(self, watcher: Watcher) -> bool:
        """Forget ``watcher``; returns True when it was the last holder of its key."""
        key = (watcher.path, watcher.kind)
        holders = self._registry.get(key)
        if not holders or watcher not in holders:
            return False
        holders.remove(watcher)
        if holders:
            return False
        del self._registry[key]
        return True

    async def remove(self, watcher: Watcher) -> None:
        if not self.discard(watcher) or watcher.fired:
            return
        watcher_type = self._server_watch_type(watcher)
        if watcher_type is None or self._remover is None:
            return
        try:
            await self._remover(watcher.path, watcher_type)
        except NoWatcherError:
            logger.debug("Watch on %s already gone on server", watcher.path)

    def _server_watch_type(self, watcher: Watcher) -> Optional[WatcherType]:
        # Data and existence watches share one server table, persistent ones
        # are only removable together with every other watch on the path.
        path = watcher.path
        if watcher.kind is WatchKind.CHILD:
            return WatcherType.CHILDREN
        if watcher.kind in (WatchKind.DATA, WatchKind.EXIST):
            if self._registry.get((path, WatchKind.DATA)) or self._registry.get((path, WatchKind.EXIST)):
                return None
            return WatcherType.DATA
        if any(self._registry.get((path, kind)) for kind in WatchKind):
            return None
        return WatcherType.ANY

    def subscribe(self) -> EventSubscription:
        subscription = EventSubscription(self, self.queue_size)
        self._subscriptions.add(subscription)
        return subscription

    def unsubscribe(self, subscription: EventSubscription) -> None:
        self._subscriptions.discard(subscription)

    def publish(self, item: Any) -> None:
        for subscription in list(self._subscriptions):
            subscription.push(item)


class StateChannel:
    """Latest session state plus a change counter for watchers."""

    def __init__(self, state: Any) -> None:
        self.state = state
        self.version = 0
        self._changed = asyncio.Event()

    def publish(self, state: Any) -> None:
        if state == self.state:
            return
        self.state = state
        self.version += 1
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()

    async def wait(self) -> None:
        await self._changed.wait()


class StateWatcher:
    """Tracks session state updates."""

    def __init__(self, channel: StateChannel) -> None:
        self._channel = channel
        self._seen = channel.version

    def state(self) -> Any:
        """Return and consume the most recent state."""
        self._seen = self._channel.version
        return self._channel.state

    def peek_state(self) -> Any:
        return self._channel.state

    async def changed(self) -> Any:
        """Wait until the state changes past the last consumed one; never returns after a terminal state."""
        while self._seen == self._channel.version:
            await self._channel.wait()
        return self.state()


__all__ = [
    "WatchKind",
    "WatchedEvent",
    "WatchRequest",
    "OneshotWatcher",
    "PersistentWatcher",
    "Watcher",
    "EventSubscription",
    "WatchManager",
    "StateChannel",
    "StateWatcher",
]
