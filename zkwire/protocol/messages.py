"""Record shapes shared by every request and reply: headers, handshake, stat, ACL, events."""

from __future__ import annotations

from typing import Annotated, List, Type

from pydantic import Field, ValidationError

from .constants import PASSWORD_LENGTH, PROTOCOL_VERSION, Perm
from .errors import DecodeError
from .records import (
    Bool,
    Buffer,
    Int,
    Long,
    OptionalStringVector,
    Record,
    RecordReader,
    StringVector,
    UString,
    VectorOf,
)


class Id(Record):
    scheme: UString
    id: UString


class Acl(Record):
    perms: Int
    id: Id

    @classmethod
    def of(cls, perms: int, scheme: str, ident: str) -> "Acl":
        return cls(perms=int(perms), id=Id(scheme=scheme, id=ident))


AclVector = Annotated[List[Acl], VectorOf(Acl)]

OPEN_ACL_UNSAFE: List[Acl] = [Acl.of(Perm.ALL, "world", "anyone")]
CREATOR_ALL_ACL: List[Acl] = [Acl.of(Perm.ALL, "auth", "")]
READ_ACL_UNSAFE: List[Acl] = [Acl.of(Perm.READ, "world", "anyone")]


class Stat(Record):
    czxid: Long = 0
    mzxid: Long = 0
    ctime: Long = 0
    mtime: Long = 0
    version: Int = 0
    cversion: Int = 0
    aversion: Int = 0
    ephemeral_owner: Long = 0
    data_length: Int = 0
    num_children: Int = 0
    pzxid: Long = 0


class ConnectRequest(Record):
    protocol_version: Int = PROTOCOL_VERSION
    last_zxid_seen: Long = 0
    timeout: Int
    session_id: Long = 0
    password: Buffer = Field(default_factory=lambda: bytes(PASSWORD_LENGTH))
    read_only: Bool = False


class ConnectResponse(Record):
    protocol_version: Int
    timeout: Int
    session_id: Long
    password: Buffer
    read_only: Bool = False

    @classmethod
    def deserialize(cls: Type["ConnectResponse"], reader: RecordReader) -> "ConnectResponse":
        # Servers predating read-only mode omit the trailing flag.
        values = dict(
            protocol_version=reader.read_int(),
            timeout=reader.read_int(),
            session_id=reader.read_long(),
            password=reader.read_buffer(),
        )
        if reader.remaining:
            values["read_only"] = reader.read_bool()
        try:
            return cls(**values)
        except ValidationError as exc:
            raise DecodeError(f"ConnectResponse validation failed: {exc}") from exc


class RequestHeader(Record):
    xid: Int
    type: Int


class ReplyHeader(Record):
    xid: Int
    zxid: Long
    err: Int


class WatcherEvent(Record):
    type: Int
    state: Int
    path: UString


class MultiHeader(Record):
    type: Int
    done: Bool
    err: Int


class ErrorResponse(Record):
    err: Int


class PathResponse(Record):
    path: UString


class Create2Response(Record):
    path: UString
    stat: Stat


class StatResponse(Record):
    stat: Stat


class GetDataResponse(Record):
    data: Buffer
    stat: Stat


class GetChildrenResponse(Record):
    children: StringVector


class GetChildren2Response(Record):
    children: StringVector
    stat: Stat


class GetACLResponse(Record):
    acl: AclVector
    stat: Stat


class GetEphemeralsResponse(Record):
    ephemerals: StringVector


class GetAllChildrenNumberResponse(Record):
    total_number: Int


class ClientInfo(Record):
    auth_scheme: UString
    user: UString


class WhoAmIResponse(Record):
    client_info: Annotated[List[ClientInfo], VectorOf(ClientInfo)]


__all__ = [
    "Id",
    "Acl",
    "AclVector",
    "OPEN_ACL_UNSAFE",
    "CREATOR_ALL_ACL",
    "READ_ACL_UNSAFE",
    "Stat",
    "ConnectRequest",
    "ConnectResponse",
    "RequestHeader",
    "ReplyHeader",
    "WatcherEvent",
    "MultiHeader",
    "ErrorResponse",
    "PathResponse",
    "Create2Response",
    "StatResponse",
    "GetDataResponse",
    "GetChildrenResponse",
    "GetChildren2Response",
    "GetACLResponse",
    "GetEphemeralsResponse",
    "GetAllChildrenNumberResponse",
    "ClientInfo",
    "WhoAmIResponse",
]
