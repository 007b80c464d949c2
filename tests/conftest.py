import asyncio
import json
from typing import Any, Awaitable, Callable

import pytest


class FakeConnection:
    """In-memory stand-in for an aiohttp WebSocketResponse."""

    def __init__(self):
        self.closed = False
        self.sent: list[dict[str, Any]] = []
        self.close_code: int | None = None
        self.close_message: bytes | None = None
        self.responder: Callable[[dict[str, Any]], Awaitable[None]] | None = None
        self._responses: list[asyncio.Task[None]] = []

    async def send_str(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("Cannot write to closing transport")
        message = json.loads(data)
        self.sent.append(message)
        if message["type"] == "rpc_request" and self.responder is not None:
            self._responses.append(asyncio.create_task(self.responder(message)))

    async def close(self, *, code: int = 1000, message: bytes = b"") -> bool:
        if self.closed:
            return False
        self.closed = True
        self.close_code = code
        self.close_message = message
        return True

    def of_type(self, msg_type: str, request_id: str | None = None) -> list[dict[str, Any]]:
        return [
            m
            for m in self.sent
            if m["type"] == msg_type and (request_id is None or m.get("requestId") == request_id)
        ]

    def for_request(self, request_id: str) -> list[dict[str, Any]]:
        return [m for m in self.sent if m.get("requestId") == request_id]


class FakeVault:
    """Remote executor answering rpc_requests from an in-memory vault."""

    def __init__(self, files: dict[str, str] | None = None):
        self.files = dict(files or {})
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.silent: set[str] = set()

    def attach(self, supervisor) -> None:
        async def respond(message: dict[str, Any]) -> None:
            await self._respond(supervisor, message)

        supervisor.connection.responder = respond

    def handle(self, method: str, params: dict[str, Any]) -> Any:
        if method == "vault_read":
            path = params["path"]
            if path not in self.files:
                raise KeyError(path)
            return {"content": self.files[path]}
        if method == "vault_write":
            self.files[params["path"]] = params["content"]
            return {"success": True}
        if method == "vault_list":
            folder = params.get("folder") or ""
            names = sorted({p[len(folder):].lstrip("/").split("/")[0] for p in self.files if p.startswith(folder)})
            return [
                {"name": n, "path": f"{folder}/{n}".lstrip("/"), "type": "file" if n.endswith(".md") else "folder"}
                for n in names
            ]
        if method == "vault_glob":
            return [p for p in self.files if p.startswith(".claude/skills/")]
        if method == "vault_search":
            query = params["query"].lower()
            return [
                {"path": p, "snippet": body[:50]}
                for p, body in self.files.items()
                if query in body.lower() or query in p.lower()
            ]
        if method == "vault_delete":
            self.files.pop(params["path"])
            return {"success": True}
        raise KeyError(method)

    async def _respond(self, supervisor, message: dict[str, Any]) -> None:
        method, params = message["method"], message["params"]
        self.calls.append((method, params))
        if method in self.silent:
            return
        try:
            response = {"type": "rpc_response", "id": message["id"], "result": self.handle(method, params)}
        except KeyError as e:
            response = {
                "type": "rpc_response",
                "id": message["id"],
                "error": {"code": "NOT_FOUND", "message": f"Not found: {e.args[0]}"},
            }
        await supervisor.handle_frame(json.dumps(response))

    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]


@pytest.fixture
def fake_connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def fake_vault() -> FakeVault:
    return FakeVault(files={"Welcome.md": "# Welcome\n\nHello vault", "Projects/Plan.md": "# Plan"})
