"""
Closed set of request variants.

Each operation is a record holding its request body, tagged with the opcode it
travels under and the reply shape it expects. ``decode_reply`` turns a reply
header's error code and body into the caller-facing value.
"""

from __future__ import annotations

from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type

from .constants import CONFIG_NODE, OpCode
from .errors import ErrorCode, error_for_code
from .messages import (
    AclVector,
    Create2Response,
    GetACLResponse,
    GetAllChildrenNumberResponse,
    GetChildren2Response,
    GetChildrenResponse,
    GetDataResponse,
    GetEphemeralsResponse,
    PathResponse,
    RequestHeader,
    Stat,
    StatResponse,
    WhoAmIResponse,
)
from .records import Bool, Buffer, Int, Long, OptionalStringVector, OptionalUString, Record, RecordReader, UString


class Operation(Record):
    opcode: ClassVar[OpCode]
    response: ClassVar[Optional[Type[Record]]] = None

    @property
    def target(self) -> Optional[str]:
        return getattr(self, "path", None)

    def frame(self, xid: int) -> bytes:
        """Request header followed by the body, without the length prefix."""
        return RequestHeader(xid=xid, type=int(self.opcode)).to_bytes() + self.to_bytes()

    def decode_reply(self, err: int, reader: RecordReader) -> Any:
        if err:
            raise error_for_code(err, self.target)
        if self.response is None:
            reader.finish()
            return None
        record = self.response.deserialize(reader)
        reader.finish()
        return self.unwrap(record)

    def unwrap(self, record: Any) -> Any:
        return record


class CreateRequest(Operation):
    opcode: ClassVar[OpCode] = OpCode.CREATE2
    response: ClassVar[Optional[Type[Record]]] = Create2Response

    path: UString
    data: Buffer
    acl: AclVector
    flags: Int


class CreateContainerRequest(CreateRequest):
    opcode: ClassVar[OpCode] = OpCode.CREATE_CONTAINER


class CreateTTLRequest(CreateRequest):
    opcode: ClassVar[OpCode] = OpCode.CREATE_TTL

    ttl: Long


class DeleteRequest(Operation):
    opcode: ClassVar[OpCode] = OpCode.DELETE

    path: UString
    version: Int = -1


class ExistsRequest(Operation):
    opcode: ClassVar[OpCode] = OpCode.EXISTS
    response: ClassVar[Optional[Type[Record]]] = StatResponse

    path: UString
    watch: Bool = False

    def decode_reply(self, err: int, reader: RecordReader) -> Optional[Stat]:
        # The server arms an existence watch even when the node is absent.
        if err == ErrorCode.NO_NODE:
            return None
        return super().decode_reply(err, reader)

    def unwrap(self, record: StatResponse) -> Stat:
        return record.stat


class GetDataRequest(Operation):
    opcode: ClassVar[OpCode] = OpCode.GET_DATA
    response: ClassVar[Optional[Type[Record]]] = GetDataResponse

    path: UString
    watch: Bool = False

    def unwrap(self, record: GetDataResponse) -> Tuple[bytes, Stat]:
        return record.data or b"", record.stat


class SetDataRequest(Operation):
    opcode: ClassVar[OpCode] = OpCode.SET_DATA
    response: ClassVar[Optional[Type[Record]]] = StatResponse

    path: UString
    data: Buffer
    version: Int = -1

    def unwrap(self, record: StatResponse) -> Stat:
        return record.stat


class GetACLRequest(Operation):
    opcode: ClassVar[OpCode] = OpCode.GET_ACL
    response: ClassVar[Optional[Type[Record]]] = GetACLResponse

    path: UString

    def unwrap(self, record: GetACLResponse) -> Tuple[list, Stat]:
        return list(record.acl), record.stat


class SetACLRequest(Operation):
    opcode: ClassVar[OpCode] = OpCode.SET_ACL
    response: ClassVar[Optional[Type[Record]]] = StatResponse

    path: UString
    acl: AclVector
    version: Int = -1

    def unwrap(self, record: StatResponse) -> Stat:
        return record.stat


class GetChildrenRequest(Operation):
    opcode: ClassVar[OpCode] = OpCode.GET_CHILDREN
    response: ClassVar[Optional[Type[Record]]] = GetChildrenResponse

    path: UString
    watch: Bool = False

    def unwrap(self, record: GetChildrenResponse) -> List[str]:
        return list(record.children)


class GetChildren2Request(Operation):
    opcode: ClassVar[OpCode] = OpCode.GET_CHILDREN2
    response: ClassVar[Optional[Type[Record]]] = GetChildren2Response

    path: UString
    watch: Bool = False

    def unwrap(self, record: GetChildren2Response) -> Tuple[List[str], Stat]:
        return list(record.children), record.stat


class SyncRequest(Operation):
    opcode: ClassVar[OpCode] = OpCode.SYNC
    response: ClassVar[Optional[Type[Record]]] = PathResponse

    path: UString

    def unwrap(self, record: PathResponse) -> str:
        return record.path


class CheckVersionRequest(Operation):
    opcode: ClassVar[OpCode] = OpCode.CHECK

    path: UString
    version: Int


class RemoveWatchesRequest(Operation):
    opcode: ClassVar[OpCode] = OpCode.REMOVE_WATCHES

    path: UString
    type: Int


class AddWatchRequest(Operation):
    opcode: ClassVar[OpCode] = OpCode.ADD_WATCH

    path: UString
    mode: Int


class GetEphemeralsRequest(Operation):
    opcode: ClassVar[OpCode] = OpCode.GET_EPHEMERALS
    response: ClassVar[Optional[Type[Record]]] = GetEphemeralsResponse

    prefix_path: UString

    @property
    def target(self) -> Optional[str]:
        return self.prefix_path

    def unwrap(self, record: GetEphemeralsResponse) -> List[str]:
        return list(record.ephemerals)


class GetAllChildrenNumberRequest(Operation):
    opcode: ClassVar[OpCode] = OpCode.GET_ALL_CHILDREN_NUMBER
    response: ClassVar[Optional[Type[Record]]] = GetAllChildrenNumberResponse

    path: UString

    def unwrap(self, record: GetAllChildrenNumberResponse) -> int:
        return record.total_number


class WhoAmIRequest(Operation):
    opcode: ClassVar[OpCode] = OpCode.WHO_AM_I
    response: ClassVar[Optional[Type[Record]]] = WhoAmIResponse

    def unwrap(self, record: WhoAmIResponse) -> list:
        return list(record.client_info)


class ReconfigRequest(Operation):
    """Ensemble change: incremental (joining/leaving) or a full new member list."""

    opcode: ClassVar[OpCode] = OpCode.RECONFIG
    response: ClassVar[Optional[Type[Record]]] = GetDataResponse

    joining_servers: OptionalUString = None
    leaving_servers: OptionalUString = None
    new_members: OptionalUString = None
    cur_config_id: Long = -1

    @property
    def target(self) -> Optional[str]:
        return CONFIG_NODE

    def unwrap(self, record: GetDataResponse) -> Tuple[bytes, Stat]:
        return record.data or b"", record.stat


class CloseSessionRequest(Operation):
    opcode: ClassVar[OpCode] = OpCode.CLOSE_SESSION


class PingRequest(Operation):
    opcode: ClassVar[OpCode] = OpCode.PING


class AuthRequest(Operation):
    opcode: ClassVar[OpCode] = OpCode.AUTH

    type: Int = 0
    scheme: UString
    auth: Buffer


class SetWatchesRequest(Operation):
    opcode: ClassVar[OpCode] = OpCode.SET_WATCHES

    relative_zxid: Long
    data_watches: OptionalStringVector
    exist_watches: OptionalStringVector
    child_watches: OptionalStringVector


class SetWatches2Request(SetWatchesRequest):
    opcode: ClassVar[OpCode] = OpCode.SET_WATCHES2

    persistent_watches: OptionalStringVector
    persistent_recursive_watches: OptionalStringVector


REQUEST_TYPES: Dict[int, Type[Operation]] = {
    int(cls.opcode): cls
    for cls in (
        CreateRequest,
        CreateContainerRequest,
        CreateTTLRequest,
        DeleteRequest,
        ExistsRequest,
        GetDataRequest,
        SetDataRequest,
        GetACLRequest,
        SetACLRequest,
        GetChildrenRequest,
        GetChildren2Request,
        SyncRequest,
        CheckVersionRequest,
        RemoveWatchesRequest,
        AddWatchRequest,
        GetEphemeralsRequest,
        GetAllChildrenNumberRequest,
        WhoAmIRequest,
        ReconfigRequest,
        CloseSessionRequest,
        PingRequest,
        AuthRequest,
        SetWatchesRequest,
        SetWatches2Request,
    )
}


__all__ = [
    "Operation",
    "CreateRequest",
    "CreateContainerRequest",
    "CreateTTLRequest",
    "DeleteRequest",
    "ExistsRequest",
    "GetDataRequest",
    "SetDataRequest",
    "GetACLRequest",
    "SetACLRequest",
    "GetChildrenRequest",
    "GetChildren2Request",
    "SyncRequest",
    "CheckVersionRequest",
    "RemoveWatchesRequest",
    "AddWatchRequest",
    "GetEphemeralsRequest",
    "GetAllChildrenNumberRequest",
    "WhoAmIRequest",
    "ReconfigRequest",
    "CloseSessionRequest",
    "PingRequest",
    "AuthRequest",
    "SetWatchesRequest",
    "SetWatches2Request",
    "REQUEST_TYPES",
]
