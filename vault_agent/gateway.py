"""Outbound operation gateway.

Operations the agent cannot perform itself are sent to the remote executor as
``rpc_request`` messages over the session connection; the matching
``rpc_response`` settles the caller's future.
"""

import asyncio
import uuid
from typing import Any, Awaitable, Callable

from vault_agent.correlation import CorrelationTable
from vault_agent.exceptions import ConnectionClosedError, RemoteOperationError
from vault_agent.logging import get_logger
from vault_agent.protocol import (
    FileInfo,
    GrepResult,
    RpcRequestMessage,
    RpcResponseMessage,
    SearchResult,
    ServerMessage,
)

log = get_logger(__name__)

Sender = Callable[[ServerMessage], Awaitable[None]]


class OperationGateway:
    """Issues outbound requests and correlates their responses."""

    def __init__(
        self,
        send: Sender,
        default_timeout: float = 30.0,
        table: CorrelationTable | None = None,
    ):
        self._send = send
        self.default_timeout = default_timeout
        self.table = table if table is not None else CorrelationTable()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _new_id(self) -> str:
        op_id = uuid.uuid4().hex
        while op_id in self.table:
            op_id = uuid.uuid4().hex
        return op_id

    async def issue(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> asyncio.Future[Any]:
        """Send a request and return the future its response will settle.

        Raises:
            ConnectionClosedError: if the gateway was already closed
        """
        if self._closed:
            raise ConnectionClosedError(method)

        op_id = self._new_id()
        future = self.table.insert(op_id, method, self.default_timeout if timeout is None else timeout)
        log.debug("Sending RPC request", operation_id=op_id, method=method)
        try:
            await self._send(RpcRequestMessage(id=op_id, method=method, params=params or {}))
        except Exception as e:
            self.table.reject(op_id, ConnectionClosedError(method))
            log.warning("Failed to send RPC request", operation_id=op_id, method=method, error=str(e))
        return future

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Issue a request and wait for its result."""
        future = await self.issue(method, params, timeout)
        return await future

    def handle_response(self, message: RpcResponseMessage) -> bool:
        """Settle the operation matching an inbound ``rpc_response``."""
        if message.error is not None:
            return self.table.reject(
                message.id,
                RemoteOperationError(message.error.message, code=message.error.code),
            )
        return self.table.resolve(message.id, message.result)

    def close(self) -> int:
        """Reject everything outstanding and refuse new requests."""
        self._closed = True
        return self.table.reject_all(lambda entry: ConnectionClosedError(entry.method))


class VaultBridge:
    """Typed vault operations executed by the remote side."""

    def __init__(self, gateway: OperationGateway):
        self.gateway = gateway

    async def read(self, path: str) -> str:
        result = await self.gateway.call("vault_read", {"path": path})
        if isinstance(result, dict):
            return str(result.get("content", ""))
        return "" if result is None else str(result)

    async def write(self, path: str, content: str) -> None:
        await self.gateway.call("vault_write", {"path": path, "content": content})

    async def edit(self, path: str, old_string: str, new_string: str) -> None:
        await self.gateway.call(
            "vault_edit",
            {"path": path, "old_string": old_string, "new_string": new_string},
        )

    async def search(self, query: str, limit: int = 20) -> list[SearchResult]:
        results = await self.gateway.call("vault_search", {"query": query, "limit": limit})
        return [SearchResult.model_validate(item) for item in results or []]

    async def grep(
        self,
        pattern: str,
        folder: str = "",
        file_pattern: str = "*.md",
        limit: int = 50,
    ) -> list[GrepResult]:
        results = await self.gateway.call(
            "vault_grep",
            {
                "pattern": pattern,
                "folder": folder or "",
                "file_pattern": file_pattern or "*.md",
                "limit": limit,
            },
        )
        return [GrepResult.model_validate(item) for item in results or []]

    async def glob(self, pattern: str) -> list[str]:
        results = await self.gateway.call("vault_glob", {"pattern": pattern})
        return [str(item) for item in results or []]

    async def list(self, folder: str = "") -> list[FileInfo]:
        results = await self.gateway.call("vault_list", {"folder": folder})
        return [FileInfo.model_validate(item) for item in results or []]

    async def rename(self, old_path: str, new_path: str) -> None:
        await self.gateway.call("vault_rename", {"old_path": old_path, "new_path": new_path})

    async def delete(self, path: str) -> None:
        await self.gateway.call("vault_delete", {"path": path})
