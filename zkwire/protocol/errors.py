from __future__ import annotations

from enum import IntEnum
from typing import Dict, List, Optional, Sequence, Type


class ErrorCode(IntEnum):
    """Error codes reported by the server in reply headers and multi results."""

    OK = 0
    SYSTEM_ERROR = -1
    RUNTIME_INCONSISTENCY = -2
    DATA_INCONSISTENCY = -3
    CONNECTION_LOSS = -4
    MARSHALLING_ERROR = -5
    UNIMPLEMENTED = -6
    OPERATION_TIMEOUT = -7
    BAD_ARGUMENTS = -8
    UNKNOWN_SESSION = -12
    NEW_CONFIG_NO_QUORUM = -13
    RECONFIG_IN_PROGRESS = -14
    API_ERROR = -100
    NO_NODE = -101
    NO_AUTH = -102
    BAD_VERSION = -103
    NO_CHILDREN_FOR_EPHEMERALS = -108
    NODE_EXISTS = -110
    NOT_EMPTY = -111
    SESSION_EXPIRED = -112
    INVALID_CALLBACK = -113
    INVALID_ACL = -114
    AUTH_FAILED = -115
    SESSION_MOVED = -118
    NOT_READ_ONLY = -119
    EPHEMERAL_ON_LOCAL_SESSION = -120
    NO_WATCHER = -121
    REQUEST_TIMEOUT = -122
    RECONFIG_DISABLED = -123
    SESSION_CLOSED_REQUIRE_SASL_AUTH = -124
    QUOTA_EXCEEDED = -125
    THROTTLED_OP = -127


class ZkError(Exception):
    """Base exception carrying an optional server error code and a message."""

    default_code: Optional[ErrorCode] = None

    def __init__(self, message: str = "", code: Optional[ErrorCode] = None) -> None:
        self.code = code if code is not None else self.default_code
        self.message = message
        label = self.code.name if self.code is not None else "n/a"
        super().__init__(f"{message} (code={label})" if message else f"code={label}")


class ProtocolError(ZkError):
    """Wire-level violation; always fatal to the current connection."""

    default_code = ErrorCode.MARSHALLING_ERROR


class DecodeError(ProtocolError):
    pass


class MalformedLengthError(DecodeError):
    """Declared length is negative or larger than the configured bound."""


class TruncatedFrameError(DecodeError):
    """Fewer bytes are available than the frame or field declares."""


class EncodeError(ProtocolError):
    pass


class ProtocolDesyncError(ProtocolError):
    """A reply arrived that does not match the head of the in-flight table."""


class ConnectionLostError(ZkError):
    default_code = ErrorCode.CONNECTION_LOSS


class SessionExpiredError(ZkError):
    default_code = ErrorCode.SESSION_EXPIRED


class SessionClosedError(ZkError):
    pass


class AuthFailedError(ZkError):
    default_code = ErrorCode.AUTH_FAILED


class ServerError(ZkError):
    """Application-level error for a single operation, reported by the server."""

    def __init__(self, message: str = "", code: Optional[ErrorCode] = None, path: Optional[str] = None) -> None:
        self.path = path
        super().__init__(message, code)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ServerError):
            return NotImplemented
        return type(self) is type(other) and self.code == other.code

    def __hash__(self) -> int:
        return hash((type(self), self.code))


class ServerSystemError(ServerError):
    default_code = ErrorCode.SYSTEM_ERROR


class RuntimeInconsistencyError(ServerError):
    default_code = ErrorCode.RUNTIME_INCONSISTENCY


class DataInconsistencyError(ServerError):
    default_code = ErrorCode.DATA_INCONSISTENCY


class MarshallingError(ServerError):
    default_code = ErrorCode.MARSHALLING_ERROR


class UnimplementedError(ServerError):
    default_code = ErrorCode.UNIMPLEMENTED


class OperationTimeoutError(ServerError):
    default_code = ErrorCode.OPERATION_TIMEOUT


class BadArgumentsError(ServerError):
    default_code = ErrorCode.BAD_ARGUMENTS


class UnknownSessionError(ServerError):
    default_code = ErrorCode.UNKNOWN_SESSION


class NewConfigNoQuorumError(ServerError):
    default_code = ErrorCode.NEW_CONFIG_NO_QUORUM


class ReconfigInProgressError(ServerError):
    default_code = ErrorCode.RECONFIG_IN_PROGRESS


class APIError(ServerError):
    default_code = ErrorCode.API_ERROR


class NoNodeError(ServerError):
    default_code = ErrorCode.NO_NODE


class NoAuthError(ServerError):
    default_code = ErrorCode.NO_AUTH


class BadVersionError(ServerError):
    default_code = ErrorCode.BAD_VERSION


class NoChildrenForEphemeralsError(ServerError):
    default_code = ErrorCode.NO_CHILDREN_FOR_EPHEMERALS


class NodeExistsError(ServerError):
    default_code = ErrorCode.NODE_EXISTS


class NotEmptyError(ServerError):
    default_code = ErrorCode.NOT_EMPTY


class InvalidCallbackError(ServerError):
    default_code = ErrorCode.INVALID_CALLBACK


class InvalidACLError(ServerError):
    default_code = ErrorCode.INVALID_ACL


class SessionMovedError(ServerError):
    default_code = ErrorCode.SESSION_MOVED


class NotReadOnlyError(ServerError):
    default_code = ErrorCode.NOT_READ_ONLY


class EphemeralOnLocalSessionError(ServerError):
    default_code = ErrorCode.EPHEMERAL_ON_LOCAL_SESSION


class NoWatcherError(ServerError):
    default_code = ErrorCode.NO_WATCHER


class RequestTimeoutError(ServerError):
    default_code = ErrorCode.REQUEST_TIMEOUT


class ReconfigDisabledError(ServerError):
    default_code = ErrorCode.RECONFIG_DISABLED


class QuotaExceededError(ServerError):
    default_code = ErrorCode.QUOTA_EXCEEDED


class ThrottledOpError(ServerError):
    default_code = ErrorCode.THROTTLED_OP


SERVER_ERRORS: Dict[int, Type[ServerError]] = {
    cls.default_code.value: cls
    for cls in (
        ServerSystemError,
        RuntimeInconsistencyError,
        DataInconsistencyError,
        MarshallingError,
        UnimplementedError,
        OperationTimeoutError,
        BadArgumentsError,
        UnknownSessionError,
        NewConfigNoQuorumError,
        ReconfigInProgressError,
        APIError,
        NoNodeError,
        NoAuthError,
        BadVersionError,
        NoChildrenForEphemeralsError,
        NodeExistsError,
        NotEmptyError,
        InvalidCallbackError,
        InvalidACLError,
        SessionMovedError,
        NotReadOnlyError,
        EphemeralOnLocalSessionError,
        NoWatcherError,
        RequestTimeoutError,
        ReconfigDisabledError,
        QuotaExceededError,
        ThrottledOpError,
    )
}


def error_for_code(code: int, path: Optional[str] = None) -> ZkError:
    """Map a non-zero server error code onto the exception raised to the caller."""
    if code == ErrorCode.SESSION_EXPIRED:
        return SessionExpiredError("Session expired on server")
    if code == ErrorCode.AUTH_FAILED:
        return AuthFailedError("Authentication failed")
    if code == ErrorCode.CONNECTION_LOSS:
        return ConnectionLostError("Server reported connection loss")
    cls = SERVER_ERRORS.get(code)
    if cls is None:
        try:
            known = ErrorCode(code)
        except ValueError:
            return ServerError(f"Unknown server error {code}", path=path)
        return ServerError(known.name.lower().replace("_", " "), code=known, path=path)
    detail = f"{cls.default_code.name.lower().replace('_', ' ')}"
    return cls(f"{detail}: {path}" if path else detail, path=path)


class MultiWriteError(ZkError):
    """A write batch was rejected; no sub-operation was applied."""

    def __init__(self, index: int, source: ZkError, outcomes: Sequence[object]) -> None:
        self.index = index
        self.source = source
        self.outcomes: List[object] = list(outcomes)
        super().__init__(f"Operation {index} failed: {source}", getattr(source, "code", None))


class CheckFailedError(ZkError):
    """The guarding version check of a check writer did not hold."""

    def __init__(self, source: ZkError) -> None:
        self.source = source
        super().__init__(f"Check failed: {source}", getattr(source, "code", None))


__all__ = [
    "ErrorCode",
    "ZkError",
    "ProtocolError",
    "DecodeError",
    "MalformedLengthError",
    "TruncatedFrameError",
    "EncodeError",
    "ProtocolDesyncError",
    "ConnectionLostError",
    "SessionExpiredError",
    "SessionClosedError",
    "AuthFailedError",
    "ServerError",
    "ServerSystemError",
    "RuntimeInconsistencyError",
    "DataInconsistencyError",
    "MarshallingError",
    "UnimplementedError",
    "OperationTimeoutError",
    "BadArgumentsError",
    "UnknownSessionError",
    "NewConfigNoQuorumError",
    "ReconfigInProgressError",
    "APIError",
    "NoNodeError",
    "NoAuthError",
    "BadVersionError",
    "NoChildrenForEphemeralsError",
    "NodeExistsError",
    "NotEmptyError",
    "InvalidCallbackError",
    "InvalidACLError",
    "SessionMovedError",
    "NotReadOnlyError",
    "EphemeralOnLocalSessionError",
    "NoWatcherError",
    "RequestTimeoutError",
    "ReconfigDisabledError",
    "QuotaExceededError",
    "ThrottledOpError",
    "SERVER_ERRORS",
    "error_for_code",
    "MultiWriteError",
    "CheckFailedError",
]
