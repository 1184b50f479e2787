"""Caller-side builders for write batches, read batches and version-guarded writes."""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional, Sequence

from zkwire.protocol.constants import CreateMode
from zkwire.protocol.errors import CheckFailedError, MultiWriteError
from zkwire.protocol.messages import OPEN_ACL_UNSAFE, Acl
from zkwire.protocol.multi import (
    CreateResult,
    MultiReadRequest,
    MultiReadResult,
    MultiRequest,
    MultiWriteResult,
)
from zkwire.protocol.operations import (
    CheckVersionRequest,
    DeleteRequest,
    GetChildrenRequest,
    GetDataRequest,
    Operation,
    SetDataRequest,
)
from zkwire.utils.common import expected_version

if TYPE_CHECKING:
    from zkwire.client import Client


class MultiWriter:
    """
    Collects write operations and commits them as one atomic batch.

    Committing an empty writer returns ``[]`` without contacting the server.
    The writer is emptied by ``commit`` and ``abort`` and can be reused.
    """

    def __init__(self, client: "Client") -> None:
        self._client = client
        self._ops: List[Operation] = []

    def __len__(self) -> int:
        return len(self._ops)

    def add_create(
        self,
        path: str,
        data: bytes,
        mode: CreateMode = CreateMode.PERSISTENT,
        acl: Sequence[Acl] = OPEN_ACL_UNSAFE,
        ttl: Optional[int] = None,
    ) -> None:
        self._ops.append(self._client._create_request(path, data, mode, acl, ttl))

    def add_delete(self, path: str, version: Optional[int] = None) -> None:
        self._ops.append(DeleteRequest(path=self._client._node_path(path), version=expected_version(version)))

    def add_set_data(self, path: str, data: bytes, version: Optional[int] = None) -> None:
        path = self._client._server_path(path)
        self._ops.append(SetDataRequest(path=path, data=data, version=expected_version(version)))

    def add_check_version(self, path: str, version: int) -> None:
        self._ops.append(CheckVersionRequest(path=self._client._server_path(path), version=version))

    def abort(self) -> None:
        self._ops.clear()

    async def commit(self) -> List[MultiWriteResult]:
        ops, self._ops = self._ops, []
        if not ops:
            return []
        results = await self._client._submit(MultiRequest.build(ops))
        return [self._localize(result) for result in results]

    def _localize(self, result: MultiWriteResult) -> MultiWriteResult:
        if isinstance(result, CreateResult):
            return CreateResult(path=self._client._client_path(result.path), stat=result.stat)
        return result


class CheckWriter(MultiWriter):
    """Write batch guarded by a version check on one node."""

    def __init__(self, client: "Client", path: str, version: Optional[int] = None) -> None:
        super().__init__(client)
        self._check = CheckVersionRequest(path=client._server_path(path), version=expected_version(version))

    async def commit(self) -> List[MultiWriteResult]:
        ops, self._ops = self._ops, []
        try:
            results = await self._client._submit(MultiRequest.build([self._check, *ops]))
        except MultiWriteError as exc:
            if exc.index == 0:
                raise CheckFailedError(exc.source) from exc
            raise MultiWriteError(exc.index - 1, exc.source, exc.outcomes[1:]) from exc
        return [self._localize(result) for result in results[1:]]


class MultiReader:
    """Collects reads served together from one consistent view."""

    def __init__(self, client: "Client") -> None:
        self._client = client
        self._ops: List[Operation] = []

    def __len__(self) -> int:
        return len(self._ops)

    def add_get_data(self, path: str) -> None:
        self._ops.append(GetDataRequest(path=self._client._server_path(path)))

    def add_get_children(self, path: str) -> None:
        self._ops.append(GetChildrenRequest(path=self._client._server_path(path)))

    def abort(self) -> None:
        self._ops.clear()

    async def commit(self) -> List[MultiReadResult]:
        ops, self._ops = self._ops, []
        if not ops:
            return []
        return await self._client._submit(MultiReadRequest.build(ops))


__all__ = ["MultiWriter", "CheckWriter", "MultiReader"]
