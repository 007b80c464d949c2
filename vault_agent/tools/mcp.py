"""MCP (Model Context Protocol) client for auxiliary tool servers.

The manager is created once by the server, connected at startup and closed at
shutdown. Tools discovered on the configured servers are exposed as regular
registry tools executed in-process.
"""

from contextlib import AsyncExitStack
from typing import Any

from mcp import ClientSession
from mcp.client.sse import sse_client
from mcp.client.stdio import StdioServerParameters, stdio_client
from mcp.client.streamable_http import streamablehttp_client

from vault_agent.config import McpServerConfig
from vault_agent.logging import get_logger
from vault_agent.tools.registry import Tool, ToolResult

log = get_logger(__name__)


class McpTool(Tool):
    """Registry adapter for one tool of a connected MCP server."""

    def __init__(
        self,
        manager: "McpClientManager",
        server: str,
        name: str,
        description: str,
        parameters: dict[str, Any],
        timeout_seconds: float | None = 60.0,
    ):
        self.manager = manager
        self.server = server
        self.name = name
        self.description = description
        self.parameters = parameters or {"type": "object", "properties": {}}
        self.timeout_seconds = timeout_seconds

    async def execute(self, _vault: Any = None, **kwargs: Any) -> ToolResult:
        return await self.manager.call_tool(self.name, kwargs)


class McpClientManager:
    """Connections to every configured MCP server."""

    def __init__(self, servers: dict[str, McpServerConfig] | None = None, tool_timeout: float | None = 60.0):
        self._configs = dict(servers or {})
        self._tool_timeout = tool_timeout
        self._stacks: dict[str, AsyncExitStack] = {}
        self._sessions: dict[str, ClientSession] = {}
        self._tool_servers: dict[str, str] = {}
        self._tools: list[McpTool] = []

    @property
    def connected_servers(self) -> list[str]:
        return list(self._sessions)

    async def connect(self) -> None:
        """Connect to every configured server; failures are logged and skipped."""
        for name, config in self._configs.items():
            if name in self._sessions:
                continue
            stack = AsyncExitStack()
            try:
                session = await self._open(stack, config)
                if session is None:
                    await stack.aclose()
                    continue
                await session.initialize()
                listing = await session.list_tools()
            except Exception as e:
                log.error("Failed to connect to MCP server", server=name, error=str(e))
                await stack.aclose()
                continue

            self._stacks[name] = stack
            self._sessions[name] = session
            added = 0
            for tool in listing.tools:
                if tool.name in self._tool_servers:
                    log.warning("Duplicate MCP tool name skipped", server=name, tool=tool.name)
                    continue
                self._tool_servers[tool.name] = name
                self._tools.append(
                    McpTool(
                        self,
                        server=name,
                        name=tool.name,
                        description=tool.description or "",
                        parameters=dict(getattr(tool, "inputSchema", None) or {}),
                        timeout_seconds=self._tool_timeout,
                    )
                )
                added += 1
            log.info("Connected to MCP server", server=name, tools=added)

    @staticmethod
    async def _open(stack: AsyncExitStack, config: McpServerConfig) -> ClientSession | None:
        if config.type == "stdio":
            if not config.command:
                return None
            read, write = await stack.enter_async_context(
                stdio_client(
                    StdioServerParameters(command=config.command, args=config.args, env=config.env or None)
                )
            )
        elif config.type == "sse":
            if not config.url:
                return None
            read, write = await stack.enter_async_context(sse_client(config.url, headers=config.headers))
        else:
            if not config.url:
                return None
            read, write, _ = await stack.enter_async_context(
                streamablehttp_client(config.url, headers=config.headers)
            )
        return await stack.enter_async_context(ClientSession(read, write))

    def tools(self) -> list[McpTool]:
        return list(self._tools)

    def has_tool(self, name: str) -> bool:
        return name in self._tool_servers

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        server = self._tool_servers.get(name)
        session = self._sessions.get(server or "")
        if session is None:
            return ToolResult(success=False, error=f"MCP tool not available: {name}")

        try:
            result = await session.call_tool(name, arguments)
        except Exception as e:
            log.error("MCP tool call failed", server=server, tool=name, error=str(e))
            return ToolResult(success=False, error=str(e))

        parts: list[str] = []
        for item in result.content or []:
            text = getattr(item, "text", None)
            if text is not None:
                parts.append(text)
            elif getattr(item, "mimeType", None):
                parts.append(f"[Binary: {item.mimeType}]")
        content = "\n".join(parts)
        if getattr(result, "isError", False):
            return ToolResult(success=False, error=content or "MCP tool reported an error")
        return ToolResult(content=content or "Success")

    async def close(self) -> None:
        """Close every server connection."""
        for name in reversed(list(self._stacks)):
            stack = self._stacks.pop(name)
            try:
                await stack.aclose()
            except Exception as e:
                log.warning("Error closing MCP server connection", server=name, error=str(e))
        self._sessions.clear()
        self._tool_servers.clear()
        self._tools.clear()
