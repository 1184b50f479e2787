from __future__ import annotations

import asyncio
import logging
import ssl as ssl_module
from typing import Callable, Optional

from zkwire.protocol.constants import DEFAULT_MAX_FRAME_SIZE, Xid
from zkwire.protocol.errors import ConnectionLostError, ProtocolError
from zkwire.protocol.framing import pack_frame, read_frame
from zkwire.protocol.messages import ConnectRequest, ConnectResponse, ReplyHeader
from zkwire.protocol.operations import PingRequest
from zkwire.protocol.records import RecordReader
from zkwire.utils.common import Endpoint

logger = logging.getLogger(__name__)

FrameSink = Callable[[ReplyHeader, RecordReader], None]


class Connection:
    """
    One TCP (or TLS) stream to one ensemble member.

    ``write`` is synchronous so the order of calls is the order on the wire.
    The transport never retries; any fault closes it and resolves
    ``wait_closed`` with the ``ConnectionLostError`` describing why.
    """

    def __init__(
        self,
        endpoint: Endpoint,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        max_frame_size: int = DEFAULT_MAX_FRAME_SIZE,
    ) -> None:
        self.endpoint = endpoint
        self.reader = reader
        self.writer = writer
        self.max_frame_size = max_frame_size
        loop = asyncio.get_running_loop()
        self._closed: asyncio.Future = loop.create_future()
        self._receive_task: Optional[asyncio.Task] = None
        self._ping_task: Optional[asyncio.Task] = None
        self._last_sent = loop.time()
        self._last_received = loop.time()

    @classmethod
    async def open(
        cls,
        endpoint: Endpoint,
        *,
        timeout: float,
        ssl: Optional[ssl_module.SSLContext] = None,
        max_frame_size: int = DEFAULT_MAX_FRAME_SIZE,
    ) -> "Connection":
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(endpoint.host, endpoint.port, ssl=ssl),
            timeout=timeout,
        )
        logger.debug("Opened stream to %s", endpoint)
        return cls(endpoint, reader, writer, max_frame_size)

    @property
    def closed(self) -> bool:
        return self._closed.done()

    @property
    def writable(self) -> bool:
        return not self.closed and not self.writer.is_closing()

    async def handshake(self, request: ConnectRequest, timeout: float) -> ConnectResponse:
        """Send the connect request and read the single response frame."""
        self.write(request.to_bytes())
        try:
            payload = await asyncio.wait_for(read_frame(self.reader, self.max_frame_size), timeout=timeout)
        except (ProtocolError, ConnectionLostError, OSError, asyncio.TimeoutError) as exc:
            self.abort(exc)
            raise
        self._last_received = asyncio.get_running_loop().time()
        try:
            return ConnectResponse.from_bytes(payload)
        except ProtocolError as exc:
            self.abort(exc)
            raise

    def start(self, sink: FrameSink, session_timeout_ms: int) -> None:
        """Start the receive loop and the keep-alive loop."""
        self._receive_task = asyncio.create_task(self._receive_loop(sink), name=f"zkwire-recv-{self.endpoint}")
        self._ping_task = asyncio.create_task(
            self._ping_loop(session_timeout_ms / 1000.0), name=f"zkwire-ping-{self.endpoint}"
        )

    def write(self, payload: bytes) -> None:
        if not self.writable:
            raise ConnectionLostError(f"Connection to {self.endpoint} is closed")
        self.writer.write(pack_frame(payload, self.max_frame_size))
        self._last_sent = asyncio.get_running_loop().time()

    async def drain(self) -> None:
        try:
            await self.writer.drain()
        except (ConnectionError, OSError) as exc:
            self.abort(exc)
            raise ConnectionLostError(f"Write to {self.endpoint} failed: {exc}") from exc

    async def wait_closed(self) -> ConnectionLostError:
        return await asyncio.shield(self._closed)

    def abort(self, cause: Optional[BaseException] = None) -> None:
        """Tear the stream down; safe to call more than once and from either loop."""
        if self.closed:
            return
        if isinstance(cause, ConnectionLostError):
            lost = cause
        else:
            lost = ConnectionLostError(f"Connection to {self.endpoint} lost: {cause}" if cause else "Connection closed")
            lost.__cause__ = cause
        self._closed.set_result(lost)
        current = asyncio.current_task()
        for task in (self._receive_task, self._ping_task):
            if task is not None and task is not current:
                task.cancel()
        self.writer.close()

    async def close(self) -> None:
        self.abort()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as exc:
            logger.debug("Ignoring error while closing %s: %s", self.endpoint, exc)
        logger.debug("Connection to %s closed", self.endpoint)

    async def _receive_loop(self, sink: FrameSink) -> None:
        loop = asyncio.get_running_loop()
        while not self.closed:
            try:
                payload = await read_frame(self.reader, self.max_frame_size)
                self._last_received = loop.time()
                reader = RecordReader(payload)
                header = ReplyHeader.deserialize(reader)
                if header.xid == Xid.PING:
                    continue
                sink(header, reader)
            except asyncio.CancelledError:
                break
            except ProtocolError as exc:
                logger.warning("Protocol error from %s: %s", self.endpoint, exc)
                self.abort(exc)
                break
            except (ConnectionLostError, ConnectionError, OSError) as exc:
                logger.info("Receive loop for %s terminated: %s", self.endpoint, exc)
                self.abort(exc)
                break

    async def _ping_loop(self, timeout: float) -> None:
        loop = asyncio.get_running_loop()
        interval = timeout / 3
        while not self.closed:
            now = loop.time()
            silent = now - self._last_received
            if silent >= timeout:
                logger.warning("No traffic from %s for %.1fs", self.endpoint, silent)
                self.abort(ConnectionLostError(f"Server {self.endpoint} unresponsive for {silent:.1f}s"))
                break
            idle = now - self._last_sent
            if idle >= interval:
                try:
                    self.write(PingRequest().frame(Xid.PING))
                except ConnectionLostError:
                    break
                idle = 0.0
            try:
                await asyncio.sleep(max(0.01, min(interval - idle, timeout - silent)))
            except asyncio.CancelledError:
                break


__all__ = ["Connection", "FrameSink"]
