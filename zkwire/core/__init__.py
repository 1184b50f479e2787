from .multiplexer import RequestMultiplexer
from .network import Connection
from .router import EnsembleRouter
from .session import Session, SessionEvent, SessionEventKind, SessionState
from .watches import (
    EventSubscription,
    OneshotWatcher,
    PersistentWatcher,
    StateWatcher,
    WatchedEvent,
    WatchKind,
    WatchManager,
)

__all__ = [
    "Connection",
    "RequestMultiplexer",
    "EnsembleRouter",
    "Session",
    "SessionEvent",
    "SessionEventKind",
    "SessionState",
    "EventSubscription",
    "OneshotWatcher",
    "PersistentWatcher",
    "StateWatcher",
    "WatchedEvent",
    "WatchKind",
    "WatchManager",
]
