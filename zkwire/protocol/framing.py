from __future__ import annotations

import asyncio
import struct
from typing import Tuple, Union

from .constants import DEFAULT_MAX_FRAME_SIZE, LENGTH_PREFIX_SIZE
from .errors import ConnectionLostError, EncodeError, MalformedLengthError, TruncatedFrameError

_LENGTH = struct.Struct(">i")

Buffer = Union[bytes, bytearray, memoryview]


def pack_frame(payload: bytes, max_frame_size: int = DEFAULT_MAX_FRAME_SIZE) -> bytes:
    """Prefix payload with its 4-byte big-endian length."""
    if len(payload) > max_frame_size:
        raise EncodeError(f"Frame of {len(payload)} bytes exceeds limit {max_frame_size}")
    return _LENGTH.pack(len(payload)) + payload


def check_length(length: int, max_frame_size: int = DEFAULT_MAX_FRAME_SIZE) -> int:
    if length < 0:
        raise MalformedLengthError(f"Negative frame length {length}")
    if length > max_frame_size:
        raise MalformedLengthError(f"Frame length {length} exceeds limit {max_frame_size}")
    return length


def unpack_frame(data: Buffer, max_frame_size: int = DEFAULT_MAX_FRAME_SIZE) -> Tuple[bytes, int]:
    """
    Split one frame off the front of ``data``.

    Returns ``(payload, consumed)``. The declared length is only compared
    against the bytes at hand, never used to size an allocation.
    """
    view = memoryview(data)
    if len(view) < LENGTH_PREFIX_SIZE:
        raise TruncatedFrameError(f"Incomplete frame header ({len(view)} bytes)")
    (length,) = _LENGTH.unpack_from(view)
    if length < 0:
        raise MalformedLengthError(f"Negative frame length {length}")
    available = len(view) - LENGTH_PREFIX_SIZE
    if length > available:
        raise TruncatedFrameError(f"Frame declares {length} bytes, {available} available")
    check_length(length, max_frame_size)
    end = LENGTH_PREFIX_SIZE + length
    return bytes(view[LENGTH_PREFIX_SIZE:end]), end


async def read_frame(reader: asyncio.StreamReader, max_frame_size: int = DEFAULT_MAX_FRAME_SIZE) -> bytes:
    """
    Read a single frame from the stream.

    A stream cannot tell how many bytes are still to come, so the declared
    length is checked against ``max_frame_size`` before any payload is read:
    an oversized length is a ``MalformedLengthError`` here, where
    ``unpack_frame`` over a finite buffer reports ``TruncatedFrameError``.
    """
    try:
        header = await reader.readexactly(LENGTH_PREFIX_SIZE)
    except asyncio.IncompleteReadError as exc:
        if not exc.partial:
            raise ConnectionLostError("Server closed connection") from exc
        raise TruncatedFrameError("Stream ended inside frame header") from exc
    (length,) = _LENGTH.unpack(header)
    check_length(length, max_frame_size)
    try:
        return await reader.readexactly(length)
    except asyncio.IncompleteReadError as exc:
        raise TruncatedFrameError(f"Stream ended after {len(exc.partial)} of {length} bytes") from exc


__all__ = ["pack_frame", "unpack_frame", "check_length", "read_frame"]
