"""
Wire protocol package: record codec, framing, message shapes, request variants,
multi batches and validation helpers.
"""

from .constants import (
    DEFAULT_MAX_FRAME_SIZE,
    ENCODING,
    PROTOCOL_VERSION,
    AddWatchMode,
    CreateMode,
    EventType,
    KeeperState,
    OpCode,
    Perm,
    WatcherType,
    Xid,
)
from .errors import ErrorCode, ZkError, error_for_code
from .framing import check_length, pack_frame, read_frame, unpack_frame
from .messages import (
    CREATOR_ALL_ACL,
    OPEN_ACL_UNSAFE,
    READ_ACL_UNSAFE,
    Acl,
    ClientInfo,
    ConnectRequest,
    ConnectResponse,
    Id,
    ReplyHeader,
    RequestHeader,
    Stat,
    WatcherEvent,
)
from .multi import MultiReadRequest, MultiRequest
from .operations import REQUEST_TYPES, Operation
from .records import Record, RecordReader, RecordWriter, decode, encode
from .validator import load_schema, parse_sequence, validate_config, validate_path, validate_sequential_path

__all__ = [
    "DEFAULT_MAX_FRAME_SIZE",
    "ENCODING",
    "PROTOCOL_VERSION",
    "AddWatchMode",
    "CreateMode",
    "EventType",
    "KeeperState",
    "OpCode",
    "Perm",
    "WatcherType",
    "Xid",
    "ErrorCode",
    "ZkError",
    "error_for_code",
    "check_length",
    "pack_frame",
    "read_frame",
    "unpack_frame",
    "CREATOR_ALL_ACL",
    "OPEN_ACL_UNSAFE",
    "READ_ACL_UNSAFE",
    "Acl",
    "ClientInfo",
    "ConnectRequest",
    "ConnectResponse",
    "Id",
    "ReplyHeader",
    "RequestHeader",
    "Stat",
    "WatcherEvent",
    "MultiReadRequest",
    "MultiRequest",
    "REQUEST_TYPES",
    "Operation",
    "Record",
    "RecordReader",
    "RecordWriter",
    "decode",
    "encode",
    "load_schema",
    "parse_sequence",
    "validate_config",
    "validate_path",
    "validate_sequential_path",
]
