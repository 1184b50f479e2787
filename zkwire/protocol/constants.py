"""Protocol-wide constants: opcodes, reserved xids, event and state codes."""

from __future__ import annotations

from enum import IntEnum, IntFlag

ENCODING = "utf-8"
PROTOCOL_VERSION = 0
LENGTH_PREFIX_SIZE = 4
DEFAULT_MAX_FRAME_SIZE = 4 * 1024 * 1024  # jute.maxbuffer plus headroom
PASSWORD_LENGTH = 16

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

SET_WATCHES_MAX_LENGTH = 128 * 1024
SEQUENCE_DIGITS = 10
CONFIG_NODE = "/zookeeper/config"


class Xid(IntEnum):
    """Transaction ids reserved by the server for non-multiplexed frames."""

    WATCH_EVENT = -1
    PING = -2
    AUTH = -4
    SET_WATCHES = -8


class OpCode(IntEnum):
    NOTIFICATION = 0
    CREATE = 1
    DELETE = 2
    EXISTS = 3
    GET_DATA = 4
    SET_DATA = 5
    GET_ACL = 6
    SET_ACL = 7
    GET_CHILDREN = 8
    SYNC = 9
    PING = 11
    GET_CHILDREN2 = 12
    CHECK = 13
    MULTI = 14
    CREATE2 = 15
    RECONFIG = 16
    CHECK_WATCHES = 17
    REMOVE_WATCHES = 18
    CREATE_CONTAINER = 19
    DELETE_CONTAINER = 20
    CREATE_TTL = 21
    MULTI_READ = 22
    AUTH = 100
    SET_WATCHES = 101
    SASL = 102
    GET_EPHEMERALS = 103
    GET_ALL_CHILDREN_NUMBER = 104
    SET_WATCHES2 = 105
    ADD_WATCH = 106
    WHO_AM_I = 107
    CREATE_SESSION = -10
    CLOSE_SESSION = -11
    ERROR = -1


class EventType(IntEnum):
    """Watch event types as carried in a watcher-event frame."""

    SESSION = -1
    NODE_CREATED = 1
    NODE_DELETED = 2
    NODE_DATA_CHANGED = 3
    NODE_CHILDREN_CHANGED = 4
    DATA_WATCH_REMOVED = 5
    CHILD_WATCH_REMOVED = 6
    PERSISTENT_WATCH_REMOVED = 7


class KeeperState(IntEnum):
    """Session state codes used on the wire inside watcher events."""

    DISCONNECTED = 0
    SYNC_CONNECTED = 3
    AUTH_FAILED = 4
    CONNECTED_READ_ONLY = 5
    SASL_AUTHENTICATED = 6
    CLOSED = 7
    EXPIRED = -112


class Perm(IntFlag):
    READ = 1 << 0
    WRITE = 1 << 1
    CREATE = 1 << 2
    DELETE = 1 << 3
    ADMIN = 1 << 4
    ALL = 0x1F


class CreateMode(IntEnum):
    """Node flavours accepted by the create family of requests."""

    PERSISTENT = 0
    EPHEMERAL = 1
    PERSISTENT_SEQUENTIAL = 2
    EPHEMERAL_SEQUENTIAL = 3
    CONTAINER = 4
    PERSISTENT_WITH_TTL = 5
    PERSISTENT_SEQUENTIAL_WITH_TTL = 6

    @property
    def is_sequential(self) -> bool:
        return self in (
            CreateMode.PERSISTENT_SEQUENTIAL,
            CreateMode.EPHEMERAL_SEQUENTIAL,
            CreateMode.PERSISTENT_SEQUENTIAL_WITH_TTL,
        )

    @property
    def is_ephemeral(self) -> bool:
        return self in (CreateMode.EPHEMERAL, CreateMode.EPHEMERAL_SEQUENTIAL)

    @property
    def is_container(self) -> bool:
        return self is CreateMode.CONTAINER

    @property
    def has_ttl(self) -> bool:
        return self in (CreateMode.PERSISTENT_WITH_TTL, CreateMode.PERSISTENT_SEQUENTIAL_WITH_TTL)


class AddWatchMode(IntEnum):
    PERSISTENT = 0
    PERSISTENT_RECURSIVE = 1


class WatcherType(IntEnum):
    """Watcher selector used by RemoveWatches/CheckWatches."""

    CHILDREN = 1
    DATA = 2
    ANY = 3


__all__ = [
    "ENCODING",
    "PROTOCOL_VERSION",
    "LENGTH_PREFIX_SIZE",
    "DEFAULT_MAX_FRAME_SIZE",
    "PASSWORD_LENGTH",
    "INT32_MIN",
    "INT32_MAX",
    "INT64_MIN",
    "INT64_MAX",
    "SET_WATCHES_MAX_LENGTH",
    "SEQUENCE_DIGITS",
    "CONFIG_NODE",
    "Xid",
    "OpCode",
    "EventType",
    "KeeperState",
    "Perm",
    "CreateMode",
    "AddWatchMode",
    "WatcherType",
]
