"""
Asyncio client for ZooKeeper-compatible coordination services.

``Client.connect`` is the entry point; everything below ``zkwire.protocol``
is the wire codec and can be used on its own.
"""

from .client import Client
from .config import ConfigError, load_config
from .core import (
    EventSubscription,
    OneshotWatcher,
    PersistentWatcher,
    SessionEvent,
    SessionEventKind,
    SessionState,
    StateWatcher,
    WatchedEvent,
)
from .features import CheckWriter, MultiReader, MultiWriter
from .protocol.constants import AddWatchMode, CreateMode, EventType, Perm
from .protocol.errors import (
    AuthFailedError,
    BadArgumentsError,
    BadVersionError,
    CheckFailedError,
    ConnectionLostError,
    ErrorCode,
    InvalidACLError,
    MultiWriteError,
    NoAuthError,
    NodeExistsError,
    NoNodeError,
    NotEmptyError,
    ProtocolError,
    ServerError,
    SessionClosedError,
    SessionExpiredError,
    ZkError,
)
from .protocol.messages import CREATOR_ALL_ACL, OPEN_ACL_UNSAFE, READ_ACL_UNSAFE, Acl, Id, Stat
from .protocol.multi import (
    CheckResult,
    ChildrenResult,
    CreateResult,
    DataResult,
    DeleteResult,
    ErrorResult,
    OpAborted,
    OpFailed,
    OpSucceeded,
    SetDataResult,
)

__version__ = "0.1.0"

__all__ = [
    "Client",
    "ConfigError",
    "load_config",
    "EventSubscription",
    "OneshotWatcher",
    "PersistentWatcher",
    "SessionEvent",
    "SessionEventKind",
    "SessionState",
    "StateWatcher",
    "WatchedEvent",
    "CheckWriter",
    "MultiReader",
    "MultiWriter",
    "AddWatchMode",
    "CreateMode",
    "EventType",
    "Perm",
    "AuthFailedError",
    "BadArgumentsError",
    "BadVersionError",
    "CheckFailedError",
    "ConnectionLostError",
    "ErrorCode",
    "InvalidACLError",
    "MultiWriteError",
    "NoAuthError",
    "NodeExistsError",
    "NoNodeError",
    "NotEmptyError",
    "ProtocolError",
    "ServerError",
    "SessionClosedError",
    "SessionExpiredError",
    "ZkError",
    "CREATOR_ALL_ACL",
    "OPEN_ACL_UNSAFE",
    "READ_ACL_UNSAFE",
    "Acl",
    "Id",
    "Stat",
    "CheckResult",
    "ChildrenResult",
    "CreateResult",
    "DataResult",
    "DeleteResult",
    "ErrorResult",
    "OpAborted",
    "OpFailed",
    "OpSucceeded",
    "SetDataResult",
    "__version__",
]
