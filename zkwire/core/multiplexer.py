"""
Request/reply correlation for one connection.

Requests are written in submission order and the server answers them in the
same order, so the in-flight table is a FIFO: every ordinary reply must carry
the xid at its head. Auth (-4) and set-watches (-8) replies use reserved xids
and are matched against their own FIFOs.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Optional

from zkwire.protocol.constants import Xid
from zkwire.protocol.errors import ProtocolDesyncError, ProtocolError, ZkError
from zkwire.protocol.messages import ReplyHeader
from zkwire.protocol.operations import Operation
from zkwire.protocol.records import RecordReader

from .network import Connection

logger = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    xid: int
    op: Operation
    future: asyncio.Future
    watch: Any = None


WatchArmer = Callable[[Any, Any], Any]


class RequestMultiplexer:
    """Owns the in-flight table of a single connection."""

    def __init__(self, connection: Connection, next_xid: Callable[[], int], arm_watch: WatchArmer) -> None:
        self.connection = connection
        self._next_xid = next_xid
        self._arm_watch = arm_watch
        self._pending: Deque[PendingRequest] = deque()
        self._special: Dict[int, Deque[PendingRequest]] = {int(Xid.AUTH): deque(), int(Xid.SET_WATCHES): deque()}

    def __len__(self) -> int:
        return len(self._pending) + sum(len(queue) for queue in self._special.values())

    def submit(
        self,
        op: Operation,
        future: Optional[asyncio.Future] = None,
        watch: Any = None,
    ) -> asyncio.Future:
        """Assign the next xid, record the request and write it, in one step."""
        if future is None:
            future = asyncio.get_running_loop().create_future()
        xid = self._next_xid()
        frame = op.frame(xid)
        self.connection.write(frame)
        self._pending.append(PendingRequest(xid, op, future, watch))
        logger.debug("Sent %s xid=%s", type(op).__name__, xid)
        return future

    def submit_special(self, op: Operation, xid: int, future: Optional[asyncio.Future] = None) -> asyncio.Future:
        if future is None:
            future = asyncio.get_running_loop().create_future()
        self.connection.write(op.frame(xid))
        self._special[xid].append(PendingRequest(xid, op, future))
        logger.debug("Sent %s xid=%s", type(op).__name__, xid)
        return future

    def on_reply(self, header: ReplyHeader, reader: RecordReader) -> None:
        """Complete the request the reply belongs to; desync raises ``ProtocolDesyncError``."""
        queue = self._special.get(header.xid)
        if queue is None:
            queue = self._pending
            if not queue:
                raise ProtocolDesyncError(f"Reply xid {header.xid} with no request in flight")
            if queue[0].xid != header.xid:
                raise ProtocolDesyncError(f"Reply xid {header.xid} does not match expected xid {queue[0].xid}")
        elif not queue:
            raise ProtocolDesyncError(f"Reply xid {header.xid} with no request in flight")
        pending = queue.popleft()
        try:
            value = pending.op.decode_reply(header.err, reader)
        except ProtocolError as exc:
            _complete(pending.future, error=exc)
            raise
        except ZkError as exc:
            _complete(pending.future, error=exc)
            return
        if pending.watch is not None and not pending.future.done():
            value = (value, self._arm_watch(pending.watch, value))
        _complete(pending.future, value=value)

    def fail_all(self, exc: BaseException) -> None:
        """Complete every in-flight request with ``exc``."""
        queues = [self._pending, *self._special.values()]
        for queue in queues:
            while queue:
                _complete(queue.popleft().future, error=exc)


def _complete(future: asyncio.Future, value: Any = None, error: Optional[BaseException] = None) -> None:
    # Cancelled by the caller; the entry is consumed but nobody is listening.
    if future.done():
        return
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(value)


__all__ = ["PendingRequest", "RequestMultiplexer", "WatchArmer"]
