"""
Caller-facing client.

Every request is handed to the session before the first suspension point of
the calling coroutine, so requests started in some order reach the server in
that order and their replies complete in that order.
"""

from __future__ import annotations

import logging
import ssl as ssl_module
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from zkwire import config as zk_config
from zkwire.core.router import EnsembleRouter
from zkwire.core.session import Session, SessionState
from zkwire.core.watches import (
    EventSubscription,
    OneshotWatcher,
    PersistentWatcher,
    StateWatcher,
    WatchKind,
    WatchRequest,
)
from zkwire.features.multi import CheckWriter, MultiReader, MultiWriter
from zkwire.protocol.constants import CONFIG_NODE, AddWatchMode, CreateMode
from zkwire.protocol.errors import BadArgumentsError, InvalidACLError, ZkError
from zkwire.protocol.messages import OPEN_ACL_UNSAFE, Acl, ClientInfo, Stat
from zkwire.protocol.operations import (
    AddWatchRequest,
    CreateContainerRequest,
    CreateRequest,
    CreateTTLRequest,
    DeleteRequest,
    ExistsRequest,
    GetACLRequest,
    GetAllChildrenNumberRequest,
    GetChildren2Request,
    GetChildrenRequest,
    GetDataRequest,
    GetEphemeralsRequest,
    Operation,
    ReconfigRequest,
    SetACLRequest,
    SetDataRequest,
    SyncRequest,
    WhoAmIRequest,
)
from zkwire.protocol.validator import parse_sequence, validate_path, validate_sequential_path
from zkwire.utils.common import expected_version, parse_connect_string

logger = logging.getLogger(__name__)


class Client:
    """
    View of one session, optionally rooted at a chroot path.

    Views created with ``chroot`` share the session; closing any of them closes
    it for all.
    """

    def __init__(self, session: Session, root: str = "/") -> None:
        self._session = session
        self._root = root

    @classmethod
    async def connect(
        cls,
        hosts: Optional[str] = None,
        *,
        session_timeout: Optional[float] = None,
        connect_timeout: Optional[float] = None,
        session_id: int = 0,
        password: Optional[bytes] = None,
        read_only: Optional[bool] = None,
        ssl: Optional[ssl_module.SSLContext] = None,
        auth: Iterable[Tuple[str, bytes]] = (),
        config: Optional[Dict[str, Any]] = None,
    ) -> "Client":
        """
        Connect to an ensemble given as ``host:port,host:port[/chroot]``.

        Timeouts are in seconds and default to the configured values. Passing
        ``session_id`` and ``password`` resumes an earlier (detached) session.
        """
        settings = zk_config.merged(config)
        endpoints, root = parse_connect_string(hosts or settings["hosts"])
        router = EnsembleRouter(
            endpoints,
            base_backoff=settings["reconnect_backoff_ms"] / 1000.0,
            max_backoff=settings["max_reconnect_backoff_ms"] / 1000.0,
        )
        session = Session(
            router,
            session_timeout_ms=_millis(session_timeout, settings["session_timeout_ms"]),
            connect_timeout_ms=_millis(connect_timeout, settings["connect_timeout_ms"]),
            session_id=session_id,
            password=password,
            read_only=settings["read_only"] if read_only is None else read_only,
            ssl=ssl,
            max_frame_size=settings["max_frame_size"],
            event_queue_size=settings["event_queue_size"],
            close_timeout_ms=settings["close_timeout_ms"],
        )
        await session.start()
        try:
            for scheme, data in auth:
                await session.auth(scheme, data)
        except ZkError:
            await session.close()
            raise
        return cls(session, root or "/")

    async def __aenter__(self) -> "Client":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def path(self) -> str:
        return self._root

    @property
    def session_id(self) -> int:
        return self._session.session_id

    @property
    def session_password(self) -> bytes:
        return self._session.password

    @property
    def session_timeout(self) -> float:
        """Negotiated session timeout in seconds."""
        return self._session.timeout_ms / 1000.0

    @property
    def state(self) -> SessionState:
        return self._session.state

    def chroot(self, path: str) -> "Client":
        """New view rooted at ``path`` below this view's root."""
        validate_path(path)
        if path == "/":
            return Client(self._session, self._root)
        return Client(self._session, self._server_path(path))

    def _server_path(self, path: str, allow_root: bool = True) -> str:
        validate_path(path, allow_root=allow_root)
        if self._root == "/":
            return path
        if path == "/":
            return self._root
        return self._root + path

    def _node_path(self, path: str) -> str:
        # The real root can be neither created nor deleted; a chroot node can.
        return self._server_path(path, allow_root=self._root != "/")

    def _client_path(self, path: str) -> str:
        if self._root == "/":
            return path
        if path == self._root:
            return "/"
        if path.startswith(self._root + "/"):
            return path[len(self._root) :]
        return path

    def _submit(self, op: Operation, watch: Optional[WatchRequest] = None) -> Any:
        return self._session.submit(op, watch)

    def _watch(self, path: str, kind: WatchKind) -> WatchRequest:
        return WatchRequest(path, kind, self._root)

    def _create_request(
        self,
        path: str,
        data: bytes,
        mode: CreateMode,
        acl: Sequence[Acl],
        ttl: Optional[int],
    ) -> CreateRequest:
        mode = CreateMode(mode)
        if mode.is_sequential:
            validate_sequential_path(path)
            server_path = path if self._root == "/" else self._root + path
        else:
            server_path = self._node_path(path)
        if not acl:
            raise InvalidACLError("ACL must not be empty", path=path)
        fields = dict(path=server_path, data=data, acl=list(acl), flags=int(mode))
        if mode.has_ttl:
            if ttl is None or ttl <= 0:
                raise BadArgumentsError(f"{mode.name} requires a positive ttl", path=path)
            return CreateTTLRequest(ttl=ttl, **fields)
        if ttl is not None:
            raise BadArgumentsError(f"ttl is not supported by {mode.name}", path=path)
        if mode.is_container:
            return CreateContainerRequest(**fields)
        return CreateRequest(**fields)

    async def create(
        self,
        path: str,
        data: bytes = b"",
        mode: CreateMode = CreateMode.PERSISTENT,
        acl: Sequence[Acl] = OPEN_ACL_UNSAFE,
        ttl: Optional[int] = None,
    ) -> Tuple[Stat, Optional[int]]:
        """Create a node; returns its stat and, for sequential modes, the assigned sequence number."""
        response = await self._submit(self._create_request(path, data, mode, acl, ttl))
        sequence = parse_sequence(response.path) if CreateMode(mode).is_sequential else None
        return response.stat, sequence

    async def delete(self, path: str, version: Optional[int] = None) -> None:
        await self._submit(DeleteRequest(path=self._node_path(path), version=expected_version(version)))

    async def check_stat(self, path: str) -> Optional[Stat]:
        return await self._submit(ExistsRequest(path=self._server_path(path)))

    async def check_and_watch_stat(self, path: str) -> Tuple[Optional[Stat], OneshotWatcher]:
        """Stat of the node (None if absent) plus a watcher for its creation, change or deletion."""
        server_path = self._server_path(path)
        return await self._submit(
            ExistsRequest(path=server_path, watch=True), self._watch(server_path, WatchKind.EXIST)
        )

    async def get_data(self, path: str) -> Tuple[bytes, Stat]:
        return await self._submit(GetDataRequest(path=self._server_path(path)))

    async def get_and_watch_data(self, path: str) -> Tuple[bytes, Stat, OneshotWatcher]:
        server_path = self._server_path(path)
        (data, stat), watcher = await self._submit(
            GetDataRequest(path=server_path, watch=True), self._watch(server_path, WatchKind.DATA)
        )
        return data, stat, watcher

    async def set_data(self, path: str, data: bytes, version: Optional[int] = None) -> Stat:
        request = SetDataRequest(path=self._server_path(path), data=data, version=expected_version(version))
        return await self._submit(request)

    async def list_children(self, path: str) -> List[str]:
        return await self._submit(GetChildrenRequest(path=self._server_path(path)))

    async def list_and_watch_children(self, path: str) -> Tuple[List[str], OneshotWatcher]:
        server_path = self._server_path(path)
        return await self._submit(
            GetChildrenRequest(path=server_path, watch=True), self._watch(server_path, WatchKind.CHILD)
        )

    async def get_children(self, path: str) -> Tuple[List[str], Stat]:
        return await self._submit(GetChildren2Request(path=self._server_path(path)))

    async def get_and_watch_children(self, path: str) -> Tuple[List[str], Stat, OneshotWatcher]:
        server_path = self._server_path(path)
        (children, stat), watcher = await self._submit(
            GetChildren2Request(path=server_path, watch=True), self._watch(server_path, WatchKind.CHILD)
        )
        return children, stat, watcher

    async def get_acl(self, path: str) -> Tuple[List[Acl], Stat]:
        return await self._submit(GetACLRequest(path=self._server_path(path)))

    async def set_acl(self, path: str, acl: Sequence[Acl], version: Optional[int] = None) -> Stat:
        if not acl:
            raise InvalidACLError("ACL must not be empty", path=path)
        request = SetACLRequest(path=self._server_path(path), acl=list(acl), version=expected_version(version))
        return await self._submit(request)

    async def sync(self, path: str) -> None:
        """Wait until the connected server has caught up with the leader for ``path``."""
        await self._submit(SyncRequest(path=self._server_path(path)))

    async def auth(self, scheme: str, auth: bytes) -> None:
        """Add credentials to the session; they are replayed after every reconnect."""
        await self._session.auth(scheme, auth)

    async def list_auth_users(self) -> List[ClientInfo]:
        return await self._submit(WhoAmIRequest())

    async def watch(self, path: str, mode: AddWatchMode = AddWatchMode.PERSISTENT) -> PersistentWatcher:
        """Add a persistent (optionally recursive) watch that survives firing."""
        server_path = self._server_path(path)
        kind = WatchKind.PERSISTENT_RECURSIVE if mode == AddWatchMode.PERSISTENT_RECURSIVE else WatchKind.PERSISTENT
        _, watcher = await self._submit(
            AddWatchRequest(path=server_path, mode=int(mode)), self._watch(server_path, kind)
        )
        return watcher

    async def list_ephemerals(self, path: str) -> List[str]:
        """Ephemeral nodes owned by this session under ``path``."""
        paths = await self._submit(GetEphemeralsRequest(prefix_path=self._server_path(path)))
        if self._root != "/":
            paths = [p for p in paths if p == self._root or p.startswith(self._root + "/")]
        return [self._client_path(p) for p in paths]

    async def count_descendants_number(self, path: str) -> int:
        return await self._submit(GetAllChildrenNumberRequest(path=self._server_path(path)))

    async def get_config(self) -> Tuple[bytes, Stat]:
        """Ensemble configuration; always read from the real root."""
        return await self._submit(GetDataRequest(path=CONFIG_NODE))

    async def get_and_watch_config(self) -> Tuple[bytes, Stat, OneshotWatcher]:
        (data, stat), watcher = await self._submit(
            GetDataRequest(path=CONFIG_NODE, watch=True), WatchRequest(CONFIG_NODE, WatchKind.DATA)
        )
        return data, stat, watcher

    async def update_ensemble(
        self,
        *,
        joining: Sequence[str] = (),
        leaving: Sequence[str] = (),
        new_members: Optional[Sequence[str]] = None,
        config_id: Optional[int] = None,
    ) -> Tuple[bytes, Stat]:
        """
        Reconfigure the ensemble and return the new configuration.

        Either add ``joining`` server specs and remove ``leaving`` server ids,
        or replace the whole ensemble with ``new_members``. ``config_id`` is the
        expected ``mzxid`` of the config node; None applies the change
        unconditionally.
        """
        if new_members is not None:
            if joining or leaving:
                raise BadArgumentsError("new_members cannot be combined with joining or leaving")
            if not new_members:
                raise BadArgumentsError("New ensemble must not be empty")
            request = ReconfigRequest(new_members=",".join(new_members), cur_config_id=expected_version(config_id))
        else:
            if not joining and not leaving:
                raise BadArgumentsError("Nothing to reconfigure")
            request = ReconfigRequest(
                joining_servers=",".join(joining) or None,
                leaving_servers=",".join(leaving) or None,
                cur_config_id=expected_version(config_id),
            )
        return await self._submit(request)

    def new_multi_writer(self) -> MultiWriter:
        return MultiWriter(self)

    def new_multi_reader(self) -> MultiReader:
        return MultiReader(self)

    def new_check_writer(self, path: str, version: Optional[int] = None) -> CheckWriter:
        """Write batch committed only if ``path`` exists at ``version`` (any version when None)."""
        return CheckWriter(self, path, version)

    def state_watcher(self) -> StateWatcher:
        return self._session.state_watcher()

    def subscribe(self) -> EventSubscription:
        """Stream of session events and watch firings; watch event paths are server paths."""
        return self._session.watches.subscribe()

    async def close(self) -> None:
        await self._session.close()

    async def detach(self) -> Tuple[int, bytes]:
        """Stop using the session without closing it; returns ``(session_id, password)``."""
        return await self._session.detach()


def _millis(seconds: Optional[float], default_ms: int) -> int:
    return default_ms if seconds is None else int(seconds * 1000)


__all__ = ["Client"]
