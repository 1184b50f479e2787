"""
Binary record codec.

Records are pydantic models whose field annotations name their wire encoding;
fields are written in declaration order. Integers are big-endian and fixed
width, strings and buffers carry a 4-byte length prefix where ``-1`` stands for
null, and vectors carry an element count with the same null convention.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Annotated, Any, Callable, List, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from .constants import ENCODING
from .errors import DecodeError, EncodeError, MalformedLengthError, TruncatedFrameError

_INT = struct.Struct(">i")
_LONG = struct.Struct(">q")
_BOOL = struct.Struct(">?")


class Primitive(Enum):
    INT = "int"
    LONG = "long"
    BOOL = "bool"
    BUFFER = "buffer"
    USTRING = "ustring"


@dataclass(frozen=True)
class VectorOf:
    """Wire marker for a counted sequence of primitives or records."""

    item: Any


Int = Annotated[int, Primitive.INT]
Long = Annotated[int, Primitive.LONG]
Bool = Annotated[bool, Primitive.BOOL]
Buffer = Annotated[Optional[bytes], Primitive.BUFFER]
UString = Annotated[str, Primitive.USTRING]
OptionalUString = Annotated[Optional[str], Primitive.USTRING]
StringVector = Annotated[List[str], VectorOf(Primitive.USTRING)]
OptionalStringVector = Annotated[Optional[List[str]], VectorOf(Primitive.USTRING)]


class RecordWriter:
    """Accumulates encoded fields; ``getvalue`` joins them once."""

    def __init__(self) -> None:
        self._parts: List[bytes] = []

    def _pack(self, fmt: struct.Struct, value: Any, kind: str) -> None:
        try:
            self._parts.append(fmt.pack(value))
        except struct.error as exc:
            raise EncodeError(f"Cannot encode {value!r} as {kind}: {exc}") from exc

    def write_int(self, value: int) -> None:
        self._pack(_INT, value, "int")

    def write_long(self, value: int) -> None:
        self._pack(_LONG, value, "long")

    def write_bool(self, value: bool) -> None:
        self._pack(_BOOL, bool(value), "bool")

    def write_buffer(self, value: Optional[bytes]) -> None:
        if value is None:
            self.write_int(-1)
            return
        self.write_int(len(value))
        self._parts.append(bytes(value))

    def write_ustring(self, value: Optional[str]) -> None:
        self.write_buffer(None if value is None else value.encode(ENCODING))

    def getvalue(self) -> bytes:
        return b"".join(self._parts)


class RecordReader:
    """Strict cursor over one decoded frame payload."""

    def __init__(self, data: Union[bytes, bytearray, memoryview]) -> None:
        self._view = memoryview(data)
        self._offset = 0

    @property
    def remaining(self) -> int:
        return len(self._view) - self._offset

    def _take(self, size: int) -> memoryview:
        if size > self.remaining:
            raise TruncatedFrameError(f"Need {size} bytes at offset {self._offset}, {self.remaining} left")
        chunk = self._view[self._offset : self._offset + size]
        self._offset += size
        return chunk

    def read_int(self) -> int:
        return _INT.unpack(self._take(4))[0]

    def read_long(self) -> int:
        return _LONG.unpack(self._take(8))[0]

    def read_bool(self) -> bool:
        return _BOOL.unpack(self._take(1))[0]

    def _read_length(self) -> int:
        length = self.read_int()
        if length < -1:
            raise MalformedLengthError(f"Negative length {length} at offset {self._offset - 4}")
        return length

    def read_buffer(self) -> Optional[bytes]:
        length = self._read_length()
        if length == -1:
            return None
        return bytes(self._take(length))

    def read_ustring(self) -> Optional[str]:
        raw = self.read_buffer()
        if raw is None:
            return None
        try:
            return raw.decode(ENCODING)
        except UnicodeDecodeError as exc:
            raise DecodeError(f"Invalid UTF-8 string: {exc}") from exc

    def read_vector(self, read_item: Callable[[], Any]) -> Optional[List[Any]]:
        count = self._read_length()
        if count == -1:
            return None
        # Every element occupies at least one byte.
        if count > self.remaining:
            raise TruncatedFrameError(f"Vector declares {count} elements, {self.remaining} bytes left")
        return [read_item() for _ in range(count)]

    def finish(self) -> None:
        if self.remaining:
            raise DecodeError(f"{self.remaining} trailing bytes after record")


_WRITERS = {
    Primitive.INT: RecordWriter.write_int,
    Primitive.LONG: RecordWriter.write_long,
    Primitive.BOOL: RecordWriter.write_bool,
    Primitive.BUFFER: RecordWriter.write_buffer,
    Primitive.USTRING: RecordWriter.write_ustring,
}

_READERS = {
    Primitive.INT: RecordReader.read_int,
    Primitive.LONG: RecordReader.read_long,
    Primitive.BOOL: RecordReader.read_bool,
    Primitive.BUFFER: RecordReader.read_buffer,
    Primitive.USTRING: RecordReader.read_ustring,
}


def _write_value(writer: RecordWriter, wire: Any, value: Any) -> None:
    if isinstance(wire, Primitive):
        _WRITERS[wire](writer, value)
    elif isinstance(wire, VectorOf):
        if value is None:
            writer.write_int(-1)
            return
        writer.write_int(len(value))
        for item in value:
            _write_value(writer, wire.item, item)
    else:
        value.serialize(writer)


def _read_value(reader: RecordReader, wire: Any) -> Any:
    if isinstance(wire, Primitive):
        return _READERS[wire](reader)
    if isinstance(wire, VectorOf):
        return reader.read_vector(lambda: _read_value(reader, wire.item))
    return wire.deserialize(reader)


R = TypeVar("R", bound="Record")


class Record(BaseModel):
    """Base for every fixed-layout record on the wire."""

    model_config = ConfigDict(frozen=True)

    def serialize(self, writer: RecordWriter) -> None:
        for name, wire in wire_fields(type(self)):
            _write_value(writer, wire, getattr(self, name))

    def to_bytes(self) -> bytes:
        writer = RecordWriter()
        self.serialize(writer)
        return writer.getvalue()

    @classmethod
    def deserialize(cls: Type[R], reader: RecordReader) -> R:
        values = {name: _read_value(reader, wire) for name, wire in wire_fields(cls)}
        try:
            return cls(**values)
        except ValidationError as exc:
            raise DecodeError(f"{cls.__name__} validation failed: {exc}") from exc

    @classmethod
    def from_bytes(cls: Type[R], data: Union[bytes, bytearray, memoryview]) -> R:
        reader = RecordReader(data)
        record = cls.deserialize(reader)
        reader.finish()
        return record


@lru_cache(maxsize=None)
def wire_fields(cls: Type[Record]) -> Tuple[Tuple[str, Any], ...]:
    """Resolve ``(field name, wire type)`` pairs in declaration order."""
    fields = []
    for name, info in cls.model_fields.items():
        wire = next((m for m in info.metadata if isinstance(m, (Primitive, VectorOf))), None)
        if wire is None:
            annotation = info.annotation
            if isinstance(annotation, type) and issubclass(annotation, Record):
                wire = annotation
            else:
                raise TypeError(f"{cls.__name__}.{name} has no wire type")
        fields.append((name, wire))
    return tuple(fields)


def encode(record: Record) -> bytes:
    return record.to_bytes()


def decode(data: Union[bytes, bytearray, memoryview], shape: Type[R]) -> R:
    """Decode exactly one ``shape`` record; leftover bytes are an error."""
    return shape.from_bytes(data)


__all__ = [
    "Primitive",
    "VectorOf",
    "Int",
    "Long",
    "Bool",
    "Buffer",
    "UString",
    "OptionalUString",
    "StringVector",
    "OptionalStringVector",
    "RecordWriter",
    "RecordReader",
    "Record",
    "wire_fields",
    "encode",
    "decode",
]
