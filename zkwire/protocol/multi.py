"""
Multi-operation batches.

A batch body is a run of ``MultiHeader(type, done=False, err=-1)`` entries, each
followed by its sub-operation body, closed by ``MultiHeader(-1, True, -1)``. The
reply mirrors that layout with one entry per sub-operation; an entry of type
``-1`` carries only an error code.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, List, Optional, Sequence, Tuple, Type, Union

from .constants import OpCode
from .errors import (
    DecodeError,
    ErrorCode,
    MultiWriteError,
    ZkError,
    error_for_code,
)
from .messages import ErrorResponse, MultiHeader, Stat
from .operations import (
    CheckVersionRequest,
    CreateRequest,
    DeleteRequest,
    GetChildrenRequest,
    GetDataRequest,
    REQUEST_TYPES,
    Operation,
    SetDataRequest,
)
from .records import RecordReader, RecordWriter

WRITE_OPERATIONS: Tuple[Type[Operation], ...] = (CreateRequest, DeleteRequest, SetDataRequest, CheckVersionRequest)
READ_OPERATIONS: Tuple[Type[Operation], ...] = (GetDataRequest, GetChildrenRequest)

_DONE = MultiHeader(type=int(OpCode.ERROR), done=True, err=-1)


@dataclass(frozen=True)
class CreateResult:
    path: str
    stat: Stat


@dataclass(frozen=True)
class DeleteResult:
    pass


@dataclass(frozen=True)
class SetDataResult:
    stat: Stat


@dataclass(frozen=True)
class CheckResult:
    pass


@dataclass(frozen=True)
class OpSucceeded:
    """Sub-operation would have succeeded; rolled back with the batch."""


@dataclass(frozen=True)
class OpFailed:
    """Sub-operation that caused the batch to abort."""

    error: ZkError


@dataclass(frozen=True)
class OpAborted:
    """Sub-operation skipped because an earlier one failed."""


@dataclass(frozen=True)
class DataResult:
    data: bytes
    stat: Stat


@dataclass(frozen=True)
class ChildrenResult:
    children: List[str]


@dataclass(frozen=True)
class ErrorResult:
    error: ZkError


MultiWriteResult = Union[CreateResult, DeleteResult, SetDataResult, CheckResult]
MultiOutcome = Union[OpSucceeded, OpFailed, OpAborted]
MultiReadResult = Union[DataResult, ChildrenResult, ErrorResult]

# Raw per-entry reply: either an error code or the decoded sub-operation value.
RawEntry = Tuple[int, Any]


class _Batch(Operation):
    allowed: ClassVar[Tuple[Type[Operation], ...]] = ()

    ops: List[Operation]

    @property
    def target(self) -> Optional[str]:
        return None

    @classmethod
    def build(cls, ops: Sequence[Operation]) -> "_Batch":
        for op in ops:
            if not isinstance(op, cls.allowed):
                raise TypeError(f"{type(op).__name__} cannot be part of {cls.__name__}")
        return cls(ops=list(ops))

    def serialize(self, writer: RecordWriter) -> None:
        for op in self.ops:
            MultiHeader(type=int(op.opcode), done=False, err=-1).serialize(writer)
            op.serialize(writer)
        _DONE.serialize(writer)

    @classmethod
    def deserialize(cls, reader: RecordReader) -> "_Batch":
        ops: List[Operation] = []
        while True:
            header = MultiHeader.deserialize(reader)
            if header.done:
                break
            op_type = REQUEST_TYPES.get(header.type)
            if op_type is None or not issubclass(op_type, cls.allowed):
                raise DecodeError(f"Unexpected sub-operation type {header.type} in {cls.__name__}")
            ops.append(op_type.deserialize(reader))
        return cls(ops=ops)

    def decode_entries(self, reader: RecordReader) -> List[RawEntry]:
        """Decode the reply vector into ``(err, value)`` pairs, one per sub-operation."""
        entries: List[RawEntry] = []
        while True:
            header = MultiHeader.deserialize(reader)
            if header.done:
                break
            if len(entries) >= len(self.ops):
                raise DecodeError(f"Reply carries more than {len(self.ops)} entries")
            op = self.ops[len(entries)]
            if header.type == OpCode.ERROR:
                entries.append((ErrorResponse.deserialize(reader).err, None))
                continue
            if header.type != op.opcode and not (isinstance(op, CreateRequest) and header.type == OpCode.CREATE2):
                raise DecodeError(f"Entry {len(entries)} has type {header.type}, expected {int(op.opcode)}")
            if op.response is None:
                entries.append((0, None))
            else:
                entries.append((0, op.unwrap(op.response.deserialize(reader))))
        reader.finish()
        if len(entries) != len(self.ops):
            raise DecodeError(f"Reply carries {len(entries)} entries for {len(self.ops)} operations")
        return entries


class MultiRequest(_Batch):
    opcode: ClassVar[OpCode] = OpCode.MULTI
    allowed: ClassVar[Tuple[Type[Operation], ...]] = WRITE_OPERATIONS

    def decode_reply(self, err: int, reader: RecordReader) -> List[MultiWriteResult]:
        if err and not reader.remaining:
            raise error_for_code(err)
        entries = self.decode_entries(reader)
        if any(code for code, _ in entries):
            outcomes, index = outcomes_for_failure(entries, [op.target for op in self.ops])
            failure = outcomes[index]
            raise MultiWriteError(index, failure.error, outcomes)
        return [_write_result(op, value) for op, (_, value) in zip(self.ops, entries)]


class MultiReadRequest(_Batch):
    opcode: ClassVar[OpCode] = OpCode.MULTI_READ
    allowed: ClassVar[Tuple[Type[Operation], ...]] = READ_OPERATIONS

    def decode_reply(self, err: int, reader: RecordReader) -> List[MultiReadResult]:
        if err and not reader.remaining:
            raise error_for_code(err)
        results: List[MultiReadResult] = []
        for op, (code, value) in zip(self.ops, self.decode_entries(reader)):
            if code:
                results.append(ErrorResult(error_for_code(code, op.target)))
            elif isinstance(op, GetDataRequest):
                data, stat = value
                results.append(DataResult(data=data, stat=stat))
            else:
                results.append(ChildrenResult(children=value))
        return results


def outcomes_for_failure(
    entries: Sequence[RawEntry], paths: Optional[Sequence[Optional[str]]] = None
) -> Tuple[List[MultiOutcome], int]:
    """
    Classify the entries of a rejected batch.

    Code 0 marks an operation that would have succeeded, the runtime
    inconsistency code marks one skipped after the failure, and the first
    other code names the offending operation.
    """
    index: Optional[int] = None
    for i, (code, _) in enumerate(entries):
        if code not in (ErrorCode.OK, ErrorCode.RUNTIME_INCONSISTENCY):
            index = i
            break
    if index is None:
        index = next(i for i, (code, _) in enumerate(entries) if code)
    outcomes: List[MultiOutcome] = []
    for i, (code, _) in enumerate(entries):
        if i == index:
            outcomes.append(OpFailed(error_for_code(code, paths[i] if paths else None)))
        elif code == ErrorCode.OK:
            outcomes.append(OpSucceeded())
        else:
            outcomes.append(OpAborted())
    return outcomes, index


def _write_result(op: Operation, value: Any) -> MultiWriteResult:
    if isinstance(op, CreateRequest):
        return CreateResult(path=value.path, stat=value.stat)
    if isinstance(op, DeleteRequest):
        return DeleteResult()
    if isinstance(op, SetDataRequest):
        return SetDataResult(stat=value)
    return CheckResult()


__all__ = [
    "WRITE_OPERATIONS",
    "READ_OPERATIONS",
    "CreateResult",
    "DeleteResult",
    "SetDataResult",
    "CheckResult",
    "OpSucceeded",
    "OpFailed",
    "OpAborted",
    "DataResult",
    "ChildrenResult",
    "ErrorResult",
    "MultiWriteResult",
    "MultiOutcome",
    "MultiReadResult",
    "MultiRequest",
    "MultiReadRequest",
    "outcomes_for_failure",
]
