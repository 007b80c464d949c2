"""HTTP + WebSocket server for Vault Agent."""

import asyncio
import signal

from aiohttp import web

from vault_agent.config import Config
from vault_agent.liveness import LivenessMonitor
from vault_agent.llm import LLMProvider, create_provider
from vault_agent.logging import get_logger
from vault_agent.prompts import PromptBuilder
from vault_agent.runner import AgentRunner, CancelReason
from vault_agent.supervisor import ConnectionSupervisor
from vault_agent.tools.mcp import McpClientManager
from vault_agent.tools.registry import ToolRegistry
from vault_agent.tools.vault import vault_tools

log = get_logger(__name__)

WEB_SEARCH_TOOL_TYPE = "web_search_20250305"


class VaultAgentServer:
    """Owns the shared pieces (provider, tools, monitor) and the live sessions."""

    def __init__(
        self,
        config: Config,
        provider: LLMProvider | None = None,
        mcp: McpClientManager | None = None,
    ):
        self.config = config
        self.provider = provider or create_provider(config.model, chunk_delay=config.agent.mock_chunk_delay)
        self.mcp = mcp or McpClientManager(config.mcp_servers, tool_timeout=config.agent.tool_timeout)
        self.monitor = LivenessMonitor(interval=config.liveness.check_interval)
        self.supervisors: set[ConnectionSupervisor] = set()
        self.tools = ToolRegistry()
        self.runner = AgentRunner(
            self.provider,
            self.tools,
            prompt_builder=PromptBuilder(discover=config.agent.load_vault_instructions),
            model=config.model.model,
            max_tokens=config.model.max_tokens,
            max_iterations=config.agent.max_iterations,
        )

    @property
    def mock_mode(self) -> bool:
        return self.provider.name == "mock"

    def build_tools(self) -> ToolRegistry:
        """Populate the shared registry: vault tools, MCP tools, backend-native tools."""
        server_tools = []
        if self.config.model.web_search_max_uses > 0 and not self.mock_mode:
            server_tools.append(
                {
                    "type": WEB_SEARCH_TOOL_TYPE,
                    "name": "web_search",
                    "max_uses": self.config.model.web_search_max_uses,
                }
            )
        registry = ToolRegistry(server_tools=server_tools)
        for tool in vault_tools():
            registry.register(tool)
        for tool in self.mcp.tools():
            if registry.has_tool(tool.name):
                log.warning("MCP tool shadows a built-in tool; skipped", tool=tool.name, server=tool.server)
                continue
            registry.register(tool)
        self.tools = registry
        self.runner.tools = registry
        log.info("Tools ready", tools=registry.list_tools(), server_tools=[t["name"] for t in server_tools])
        return registry

    # ── Handlers ─────────────────────────────────────────────────────

    async def ws_handler(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(max_msg_size=self.config.server.max_message_bytes)
        await ws.prepare(request)

        supervisor = ConnectionSupervisor.from_config(ws, self.runner, self.monitor, self.config)
        if not await supervisor.authenticate(request.query.get("token")):
            return ws

        self.supervisors.add(supervisor)
        try:
            async for raw_msg in ws:
                if raw_msg.type in (web.WSMsgType.TEXT, web.WSMsgType.BINARY):
                    await supervisor.handle_frame(raw_msg.data)
                elif raw_msg.type == web.WSMsgType.ERROR:
                    log.error("WebSocket error", session_id=supervisor.session.id, error=str(ws.exception()))
        finally:
            supervisor.close_session(CancelReason.DISCONNECTED)
            self.supervisors.discard(supervisor)
            log.info("Client disconnected", session_id=supervisor.session.id, close_code=ws.close_code)

        return ws

    async def health(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "status": "ok",
                "mock": self.mock_mode,
                "sessions": len(self.supervisors),
            }
        )

    # ── Lifecycle ────────────────────────────────────────────────────

    async def _on_startup(self, app: web.Application) -> None:
        await self.mcp.connect()
        self.build_tools()
        self.monitor.start()

    async def _on_shutdown(self, app: web.Application) -> None:
        supervisors = list(self.supervisors)
        for supervisor in supervisors:
            supervisor.close_session(CancelReason.SHUTDOWN)
        for supervisor in supervisors:
            await supervisor.wait_runs(timeout=self.config.server.shutdown_timeout)
            await supervisor.connection.close(message=b"Server shutting down")

    async def _on_cleanup(self, app: web.Application) -> None:
        await self.monitor.stop()
        await self.mcp.close()
        await self.provider.close()

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/ws", self.ws_handler)
        app.router.add_get("/health", self.health)
        app.router.add_get("/", self.health)
        app.on_startup.append(self._on_startup)
        app.on_shutdown.append(self._on_shutdown)
        app.on_cleanup.append(self._on_cleanup)
        return app


async def _run_server(config: Config) -> None:
    """Start the server and block until SIGINT/SIGTERM."""
    server = VaultAgentServer(config)
    loop = asyncio.get_running_loop()

    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        if not stop_event.is_set():
            stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except (NotImplementedError, OSError):
            # Windows doesn't support add_signal_handler for SIGTERM.
            pass

    app = server.create_app()
    runner = web.AppRunner(app)
    await runner.setup()

    host = config.server.host
    port = config.server.port
    site = web.TCPSite(runner, host, port)
    await site.start()

    log.info("Vault Agent listening", url=f"ws://{host}:{port}/ws", mock=server.mock_mode)

    await stop_event.wait()

    log.info("Shutting down gracefully")
    try:
        await asyncio.wait_for(runner.cleanup(), timeout=config.server.shutdown_timeout)
    except asyncio.TimeoutError:
        log.error("Graceful shutdown timed out, forcing exit", timeout=config.server.shutdown_timeout)


def run_server(config: Config) -> None:
    asyncio.run(_run_server(config))
