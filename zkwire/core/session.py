from __future__ import annotations

import asyncio
import logging
import ssl as ssl_module
from collections import deque
from dataclasses import dataclass, replace
from enum import Enum
from functools import partial
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from zkwire.protocol.constants import (
    DEFAULT_MAX_FRAME_SIZE,
    INT32_MAX,
    PASSWORD_LENGTH,
    SET_WATCHES_MAX_LENGTH,
    EventType,
    KeeperState,
    WatcherType,
    Xid,
)
from zkwire.protocol.errors import (
    AuthFailedError,
    ConnectionLostError,
    ErrorCode,
    ProtocolError,
    SessionClosedError,
    SessionExpiredError,
    ZkError,
)
from zkwire.protocol.framing import pack_frame
from zkwire.protocol.messages import ConnectRequest, ConnectResponse, ReplyHeader, WatcherEvent
from zkwire.protocol.operations import (
    AuthRequest,
    CloseSessionRequest,
    Operation,
    RemoveWatchesRequest,
    SetWatches2Request,
    SetWatchesRequest,
)
from zkwire.protocol.records import RecordReader

from .multiplexer import RequestMultiplexer
from .network import Connection
from .router import EnsembleRouter
from .watches import StateChannel, StateWatcher, WatchedEvent, WatchKind, WatchManager, WatchRequest

logger = logging.getLogger(__name__)


class SessionState(Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CONNECTED_READ_ONLY = "connected_read_only"
    RECONNECTING = "reconnecting"
    EXPIRED = "expired"
    AUTH_FAILED = "auth_failed"
    CLOSED = "closed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.EXPIRED, SessionState.AUTH_FAILED, SessionState.CLOSED)

    @property
    def is_connected(self) -> bool:
        return self in (SessionState.CONNECTED, SessionState.CONNECTED_READ_ONLY)


class SessionEventKind(Enum):
    NEW_SESSION = "new_session"
    RESUMED = "resumed"
    DISCONNECTED = "disconnected"
    EXPIRED = "expired"
    AUTH_FAILED = "auth_failed"
    CLOSED = "closed"


@dataclass(frozen=True)
class SessionEvent:
    kind: SessionEventKind
    state: SessionState
    session_id: int


_TERMINAL: Dict[SessionState, Tuple[KeeperState, SessionEventKind]] = {
    SessionState.EXPIRED: (KeeperState.EXPIRED, SessionEventKind.EXPIRED),
    SessionState.AUTH_FAILED: (KeeperState.AUTH_FAILED, SessionEventKind.AUTH_FAILED),
    SessionState.CLOSED: (KeeperState.CLOSED, SessionEventKind.CLOSED),
}


@dataclass
class _Queued:
    op: Operation
    future: asyncio.Future
    watch: Optional[WatchRequest] = None
    xid: Optional[int] = None


def _log_outcome(label: str) -> Callable[[asyncio.Future], None]:
    def callback(future: asyncio.Future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.warning("%s failed: %s", label, exc)

    return callback


class Session:
    """
    Session state machine.

    Owns at most one live connection and its multiplexer, replacing both
    wholesale on reconnect. Only this class changes the session state, id and
    password.
    """

    def __init__(
        self,
        router: EnsembleRouter,
        *,
        session_timeout_ms: int = 10000,
        connect_timeout_ms: int = 10000,
        session_id: int = 0,
        password: Optional[bytes] = None,
        read_only: bool = False,
        ssl: Optional[ssl_module.SSLContext] = None,
        max_frame_size: int = DEFAULT_MAX_FRAME_SIZE,
        event_queue_size: int = 1024,
        close_timeout_ms: int = 2000,
    ) -> None:
        self.router = router
        self.requested_timeout_ms = session_timeout_ms
        self.timeout_ms = session_timeout_ms
        self.connect_timeout = connect_timeout_ms / 1000.0
        self.close_timeout = close_timeout_ms / 1000.0
        self.session_id = session_id
        self.password = password or bytes(PASSWORD_LENGTH)
        self.read_only = read_only
        self.ssl = ssl
        self.max_frame_size = max_frame_size
        self.last_zxid = 0
        self.state = SessionState.CONNECTING
        self.watches = WatchManager(event_queue_size, remover=self._remove_watch)
        self._states = StateChannel(self.state)
        self._connection: Optional[Connection] = None
        self._mux: Optional[RequestMultiplexer] = None
        self._queued: Deque[_Queued] = deque()
        self._credentials: List[Tuple[str, bytes]] = []
        self._xid = 0
        self._serve_task: Optional[asyncio.Task] = None
        self._closing = False
        self._terminal_error: Optional[ZkError] = None

    @property
    def connection(self) -> Optional[Connection]:
        return self._connection

    async def start(self) -> None:
        """Connect to the first member that completes a handshake within the connect timeout."""
        deadline = asyncio.get_running_loop().time() + self.connect_timeout
        try:
            connection, response = await self._establish(deadline)
        except SessionExpiredError as exc:
            self._terminate(SessionState.EXPIRED, exc)
            raise
        except ConnectionLostError as exc:
            self._terminate(SessionState.CLOSED, exc)
            raise
        self._activate(connection, response)
        self._serve_task = asyncio.create_task(self._serve(), name=f"zkwire-session-{self.session_id:x}")

    def submit(
        self,
        op: Operation,
        watch: Optional[WatchRequest] = None,
        xid: Optional[int] = None,
    ) -> asyncio.Future:
        """
        Send ``op`` now, or queue it until the session is connected again.

        Raises the terminal error when the session has ended.
        """
        if self.state.is_terminal or self._closing:
            raise self._closed_error()
        future = asyncio.get_running_loop().create_future()
        mux = self._mux
        if mux is not None and mux.connection.writable:
            if xid is None:
                mux.submit(op, future, watch)
            else:
                mux.submit_special(op, xid, future)
        else:
            # Encode now so an unencodable request fails its caller, not the flush.
            pack_frame(op.frame(xid or 0), self.max_frame_size)
            self._queued.append(_Queued(op, future, watch, xid))
        return future

    async def auth(self, scheme: str, data: bytes) -> None:
        await self.submit(AuthRequest(scheme=scheme, auth=data), xid=Xid.AUTH)
        if (scheme, data) not in self._credentials:
            self._credentials.append((scheme, data))

    def state_watcher(self) -> StateWatcher:
        return StateWatcher(self._states)

    async def close(self) -> None:
        """Close the server session, fail whatever is pending and stop reconnecting."""
        if self.state.is_terminal:
            await self._shutdown()
            return
        self._closing = True
        mux = self._mux
        if mux is not None and self.state.is_connected and mux.connection.writable:
            future = mux.submit(CloseSessionRequest())
            try:
                await asyncio.wait_for(future, self.close_timeout)
            except (ZkError, asyncio.TimeoutError) as exc:
                logger.debug("Close of session 0x%x not acknowledged: %s", self.session_id, exc)
        self._terminate(SessionState.CLOSED, SessionClosedError("Session closed"))
        await self._shutdown()

    async def detach(self) -> Tuple[int, bytes]:
        """Drop the connection but leave the server session alive for later resumption."""
        session = (self.session_id, self.password)
        self._closing = True
        self._terminate(SessionState.CLOSED, SessionClosedError("Session detached"))
        await self._shutdown()
        return session

    def _next_xid(self) -> int:
        self._xid = 1 if self._xid >= INT32_MAX else self._xid + 1
        return self._xid

    def _connect_request(self) -> ConnectRequest:
        return ConnectRequest(
            last_zxid_seen=self.last_zxid,
            timeout=self.requested_timeout_ms,
            session_id=self.session_id,
            password=self.password,
            read_only=self.read_only,
        )

    async def _establish(self, deadline: float) -> Tuple[Connection, ConnectResponse]:
        loop = asyncio.get_running_loop()
        last_error: Optional[BaseException] = None
        while True:
            endpoint = self.router.next()
            delay = self.router.backoff(endpoint)
            if delay:
                await asyncio.sleep(min(delay, max(0.0, deadline - loop.time())))
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            attempt = min(remaining, max(self.connect_timeout / len(self.router), 0.05))
            connection: Optional[Connection] = None
            try:
                connection = await Connection.open(
                    endpoint, timeout=attempt, ssl=self.ssl, max_frame_size=self.max_frame_size
                )
                response = await connection.handshake(self._connect_request(), timeout=attempt)
            except (ProtocolError, ConnectionLostError, OSError, asyncio.TimeoutError) as exc:
                self.router.record_failure(endpoint)
                logger.warning("Connect attempt to %s failed: %s", endpoint, exc)
                last_error = exc
                continue
            except asyncio.CancelledError:
                if connection is not None:
                    connection.abort()
                raise
            if response.timeout <= 0:
                await connection.close()
                raise SessionExpiredError(f"Session 0x{self.session_id:x} expired on server")
            self.router.record_success(endpoint)
            logger.info("Connected to %s", endpoint)
            return connection, response
        raise ConnectionLostError("No server completed a handshake in time") from last_error

    def _activate(self, connection: Connection, response: ConnectResponse) -> None:
        resumed = bool(self.session_id) and response.session_id == self.session_id
        if self.session_id and not resumed:
            logger.warning("Session 0x%x replaced by new session 0x%x", self.session_id, response.session_id)
            self.watches.terminate(KeeperState.EXPIRED)
            self._fail_queued(SessionExpiredError(f"Session 0x{self.session_id:x} was replaced"))
        self.session_id = response.session_id
        self.password = response.password or bytes(PASSWORD_LENGTH)
        self.timeout_ms = response.timeout
        mux = RequestMultiplexer(connection, self._next_xid, self._arm_watch)
        self._connection, self._mux = connection, mux
        connection.start(partial(self._on_frame, mux), response.timeout)

        for scheme, data in self._credentials:
            mux.submit_special(AuthRequest(scheme=scheme, auth=data), Xid.AUTH).add_done_callback(
                _log_outcome(f"Replaying {scheme} credentials")
            )
        if resumed:
            for request in self._set_watches_requests():
                mux.submit_special(request, Xid.SET_WATCHES).add_done_callback(_log_outcome("Re-arming watches"))
        self._flush_queued(mux)

        self._set_state(SessionState.CONNECTED_READ_ONLY if response.read_only else SessionState.CONNECTED)
        if resumed:
            logger.info("Session 0x%x resumed on %s", self.session_id, connection.endpoint)
            self._emit(SessionEventKind.RESUMED)
        else:
            logger.info("Session 0x%x established on %s", self.session_id, connection.endpoint)
            self._emit(SessionEventKind.NEW_SESSION)

    def _flush_queued(self, mux: RequestMultiplexer) -> None:
        while self._queued and mux.connection.writable:
            item = self._queued.popleft()
            if item.future.done():
                continue
            try:
                if item.xid is None:
                    mux.submit(item.op, item.future, item.watch)
                else:
                    mux.submit_special(item.op, item.xid, item.future)
            except ZkError as exc:
                item.future.set_exception(exc)

    def _set_watches_requests(self) -> List[SetWatchesRequest]:
        snapshot = self.watches.snapshot()
        fields = [
            ("data_watches", snapshot[WatchKind.DATA]),
            ("exist_watches", snapshot[WatchKind.EXIST]),
            ("child_watches", snapshot[WatchKind.CHILD]),
        ]
        persistent = snapshot[WatchKind.PERSISTENT] or snapshot[WatchKind.PERSISTENT_RECURSIVE]
        request_type = SetWatchesRequest
        if persistent:
            request_type = SetWatches2Request
            fields.append(("persistent_watches", snapshot[WatchKind.PERSISTENT]))
            fields.append(("persistent_recursive_watches", snapshot[WatchKind.PERSISTENT_RECURSIVE]))

        requests: List[SetWatchesRequest] = []
        batch: Dict[str, List[str]] = {name: [] for name, _ in fields}
        size = 0
        for name, paths in fields:
            for path in paths:
                if size and size + len(path) > SET_WATCHES_MAX_LENGTH:
                    requests.append(request_type(relative_zxid=self.last_zxid, **batch))
                    batch = {key: [] for key, _ in fields}
                    size = 0
                batch[name].append(path)
                size += len(path)
        if size:
            requests.append(request_type(relative_zxid=self.last_zxid, **batch))
        return requests

    def _arm_watch(self, request: WatchRequest, value: Any) -> Any:
        # The server keeps existence watches on present nodes as data watches.
        if request.kind is WatchKind.EXIST and value is not None:
            request = replace(request, kind=WatchKind.DATA)
        return self.watches.arm(request)

    async def _remove_watch(self, path: str, watcher_type: WatcherType) -> None:
        await self.submit(RemoveWatchesRequest(path=path, type=int(watcher_type)))

    def _on_frame(self, mux: RequestMultiplexer, header: ReplyHeader, reader: RecordReader) -> None:
        if mux is not self._mux:
            return
        if header.zxid > 0:
            self.last_zxid = header.zxid
        if header.xid == Xid.WATCH_EVENT:
            raw = WatcherEvent.deserialize(reader)
            reader.finish()
            self._dispatch_event(raw)
            return
        mux.on_reply(header, reader)
        if header.xid == Xid.AUTH and header.err == ErrorCode.AUTH_FAILED:
            self._terminate(SessionState.AUTH_FAILED, AuthFailedError("Server rejected credentials"))

    def _dispatch_event(self, raw: WatcherEvent) -> None:
        try:
            event = WatchedEvent(EventType(raw.type), KeeperState(raw.state), raw.path)
        except ValueError:
            logger.debug("Dropping watcher event with unknown type=%s state=%s for %s", raw.type, raw.state, raw.path)
            return
        if event.event_type == EventType.SESSION:
            logger.debug("Ignoring server session event %s", event.session_state.name)
            return
        self.watches.dispatch(event)

    async def _serve(self) -> None:
        try:
            while not self.state.is_terminal:
                assert self._connection is not None
                lost = await self._connection.wait_closed()
                if self.state.is_terminal or self._closing:
                    break
                await self._recover(lost)
        except asyncio.CancelledError:
            logger.debug("Session 0x%x serve loop cancelled", self.session_id)

    async def _recover(self, lost: ConnectionLostError) -> None:
        lost_at = asyncio.get_running_loop().time()
        endpoint = self._connection.endpoint if self._connection else None
        logger.warning("Lost connection to %s: %s", endpoint, lost)
        if self._mux is not None:
            self._mux.fail_all(lost)
        self._mux = None
        self._set_state(SessionState.RECONNECTING)
        self._emit(SessionEventKind.DISCONNECTED)
        self.watches.disconnect()

        deadline = lost_at + self.timeout_ms / 1000.0
        try:
            connection, response = await self._establish(deadline)
        except SessionExpiredError as exc:
            self._terminate(SessionState.EXPIRED, exc)
            return
        except ConnectionLostError as exc:
            expired = SessionExpiredError(f"Session 0x{self.session_id:x} not resumed within {self.timeout_ms}ms")
            expired.__cause__ = exc
            self._terminate(SessionState.EXPIRED, expired)
            return
        if self.state.is_terminal or self._closing:
            await connection.close()
            return
        self._activate(connection, response)

    def _fail_queued(self, exc: BaseException) -> None:
        while self._queued:
            future = self._queued.popleft().future
            if not future.done():
                future.set_exception(exc)

    def _terminate(self, state: SessionState, error: ZkError) -> None:
        if self.state.is_terminal:
            return
        keeper_state, kind = _TERMINAL[state]
        self._terminal_error = error
        self._set_state(state)
        if self._mux is not None:
            self._mux.fail_all(error)
        self._fail_queued(error)
        self.watches.terminate(keeper_state)
        if self._connection is not None:
            self._connection.abort(error)
        logger.info("Session 0x%x %s", self.session_id, state.value)
        self._emit(kind)

    async def _shutdown(self) -> None:
        task = self._serve_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.wait({task})
        if self._connection is not None:
            await self._connection.close()

    def _closed_error(self) -> ZkError:
        return self._terminal_error or SessionClosedError("Session is closed")

    def _set_state(self, state: SessionState) -> None:
        self.state = state
        self._states.publish(state)

    def _emit(self, kind: SessionEventKind) -> None:
        self.watches.publish(SessionEvent(kind, self.state, self.session_id))


__all__ = ["Session", "SessionState", "SessionEvent", "SessionEventKind"]
