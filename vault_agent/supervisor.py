"""Connection supervisor - one per WebSocket connection.

Authenticates the connection, parses and routes inbound frames, owns the
session's gateway and runs, and tears everything down when the connection
goes away.
"""

import asyncio
import secrets
import uuid
from dataclasses import dataclass, field
from typing import Protocol

from vault_agent.config import Config
from vault_agent.exceptions import ConnectionClosedError, DuplicateRunError, ProtocolError, UnauthorizedError
from vault_agent.gateway import OperationGateway, VaultBridge
from vault_agent.liveness import ActivityRecord, LivenessMonitor
from vault_agent.logging import get_logger
from vault_agent.multiplexer import EventMultiplexer
from vault_agent.protocol import (
    CancelMessage,
    ErrorMessage,
    PingMessage,
    PongMessage,
    PromptMessage,
    RpcResponseMessage,
    ServerMessage,
    encode_message,
    parse_client_message,
)
from vault_agent.runner import AgentRun, AgentRunner, CancelReason

log = get_logger(__name__)

UNAUTHORIZED_CLOSE_CODE = 4001
INACTIVE_CLOSE_CODE = 4002


class Connection(Protocol):
    """The subset of ``aiohttp.web.WebSocketResponse`` the supervisor uses."""

    @property
    def closed(self) -> bool: ...

    async def send_str(self, data: str) -> None: ...

    async def close(self, *, code: int = 1000, message: bytes = b"") -> bool: ...


@dataclass
class Session:
    """Per-connection state."""

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    authenticated: bool = False
    closed: bool = False
    activity: ActivityRecord | None = None
    runs: dict[str, AgentRun] = field(default_factory=dict)
    tasks: dict[str, asyncio.Task[None]] = field(default_factory=dict)


class ConnectionSupervisor:
    """Routes one connection's traffic between the client and its agent runs."""

    # Upper bound on the closing handshake with an unresponsive peer.
    close_timeout = 5.0

    def __init__(
        self,
        connection: Connection,
        runner: AgentRunner,
        monitor: LivenessMonitor,
        auth_token: str,
        rpc_timeout: float = 30.0,
        session_window: float = 90.0,
        run_inactivity: float = 120.0,
    ):
        self.connection = connection
        self.runner = runner
        self.monitor = monitor
        self.auth_token = auth_token
        self.session_window = session_window
        self.run_inactivity = run_inactivity
        self.session = Session()
        self._send_lock = asyncio.Lock()
        self._terminate_task: asyncio.Task[None] | None = None
        self.gateway = OperationGateway(self.send, default_timeout=rpc_timeout)
        self.vault = VaultBridge(self.gateway)
        self.multiplexer = EventMultiplexer(self.send)

    @classmethod
    def from_config(
        cls,
        connection: Connection,
        runner: AgentRunner,
        monitor: LivenessMonitor,
        config: Config,
    ) -> "ConnectionSupervisor":
        return cls(
            connection,
            runner,
            monitor,
            auth_token=config.server.auth_token,
            rpc_timeout=config.rpc.timeout,
            session_window=config.liveness.session_window,
            run_inactivity=config.agent.inactivity_timeout,
        )

    # ── Authentication ───────────────────────────────────────────────

    async def authenticate(self, token: str | None) -> bool:
        """Check the shared secret; closes the connection with 4001 on mismatch."""
        if not token or not secrets.compare_digest(token.encode("utf-8"), self.auth_token.encode("utf-8")):
            log.warning("Unauthorized connection attempt", session_id=self.session.id)
            await self.connection.close(code=UNAUTHORIZED_CLOSE_CODE, message=b"Unauthorized")
            return False

        self.session.authenticated = True
        self.session.activity = self.monitor.track(
            self.session.id,
            "session",
            self.session_window,
            self._on_session_stale,
        )
        log.info("Client connected", session_id=self.session.id)
        return True

    # ── Outbound ─────────────────────────────────────────────────────

    async def send(self, message: ServerMessage) -> None:
        """Write one message; dropped silently once the connection is closed."""
        if self.connection.closed:
            log.debug("Dropping message for closed connection", session_id=self.session.id, type=message.type)
            return
        data = encode_message(message)
        async with self._send_lock:
            try:
                await self.connection.send_str(data)
            except ConnectionResetError as e:
                log.debug("Connection reset while sending", session_id=self.session.id, error=str(e))

    # ── Inbound ──────────────────────────────────────────────────────

    async def handle_frame(self, raw: str | bytes) -> None:
        """Parse and route one inbound frame. Never blocks on agent work."""
        if not self.session.authenticated:
            raise UnauthorizedError("Connection is not authenticated")
        if self.session.activity is not None:
            self.session.activity.touch()

        try:
            message = parse_client_message(raw)
        except ProtocolError as e:
            log.warning("Invalid client message", session_id=self.session.id, code=e.code, error=str(e))
            await self.send(ErrorMessage(code=e.code, message=str(e)))
            return

        if isinstance(message, PingMessage):
            await self.send(PongMessage())
        elif isinstance(message, PromptMessage):
            await self._start_run(message)
        elif isinstance(message, RpcResponseMessage):
            self.gateway.handle_response(message)
        elif isinstance(message, CancelMessage):
            self._cancel_run(message.id)

    async def _start_run(self, message: PromptMessage) -> None:
        if self.session.closed:
            log.info("Prompt after session close", session_id=self.session.id, request_id=message.id)
            await self.send(
                ErrorMessage(
                    request_id=message.id,
                    code=ConnectionClosedError.code,
                    message="Session is closing; prompt not started",
                )
            )
            return
        if message.id in self.session.runs:
            error = DuplicateRunError(message.id)
            log.warning("Duplicate prompt id", session_id=self.session.id, request_id=message.id)
            await self.send(ErrorMessage(request_id=message.id, code=error.code, message=str(error)))
            return

        run = AgentRun(
            message.id,
            message.prompt,
            context=message.context,
            system_prompt=message.system_prompt,
            model=message.model,
        )
        run.activity = self.monitor.track(
            run.id,
            "run",
            self.run_inactivity,
            lambda record: run.cancel(CancelReason.STALLED),
        )
        self.session.runs[run.id] = run
        self.session.tasks[run.id] = asyncio.create_task(self._drive(run), name=f"agent-run-{run.id}")
        log.info("Processing prompt", session_id=self.session.id, request_id=run.id, prompt=run.prompt[:100])

    def _cancel_run(self, run_id: str) -> None:
        run = self.session.runs.get(run_id)
        if run is None:
            log.debug("Cancel for unknown request", session_id=self.session.id, request_id=run_id)
            return
        run.cancel(CancelReason.USER)

    async def _drive(self, run: AgentRun) -> None:
        runner_task = asyncio.create_task(self.runner.run(run, self.vault))
        try:
            await self.multiplexer.pump(run)
            await runner_task
        except Exception as e:
            log.error("Agent run crashed", session_id=self.session.id, request_id=run.id, error=str(e))
            await self.multiplexer.fail(run.id, "AGENT_ERROR", str(e))
        finally:
            if not runner_task.done():
                runner_task.cancel()
            await self.multiplexer.finalize(run.id)
            self._release(run)

    def _release(self, run: AgentRun) -> None:
        if self.session.runs.get(run.id) is run:
            del self.session.runs[run.id]
            self.session.tasks.pop(run.id, None)
        self.monitor.untrack(run.activity)
        self.multiplexer.forget(run.id)

    # ── Teardown ─────────────────────────────────────────────────────

    def close_session(self, reason: CancelReason = CancelReason.DISCONNECTED) -> tuple[int, int]:
        """Reject outstanding operations, then cancel active runs.

        Idempotent.

        Returns:
            (rejected operations, cancelled runs)
        """
        if self.session.closed:
            return 0, 0
        self.session.closed = True
        self.monitor.untrack(self.session.activity)

        rejected = self.gateway.close()
        cancelled = sum(1 for run in list(self.session.runs.values()) if run.cancel(reason))
        log.info(
            "Session closed",
            session_id=self.session.id,
            reason=reason.value,
            rejected_operations=rejected,
            cancelled_runs=cancelled,
        )
        return rejected, cancelled

    async def wait_runs(self, timeout: float | None = None) -> None:
        """Wait for this session's run tasks to finish."""
        tasks = list(self.session.tasks.values())
        if tasks:
            await asyncio.wait(tasks, timeout=timeout)

    def _on_session_stale(self, record: ActivityRecord) -> None:
        log.warning("Connection inactive, terminating", session_id=self.session.id, window=record.window)
        self.close_session(CancelReason.DISCONNECTED)
        if self._terminate_task is None:
            self._terminate_task = asyncio.create_task(self._terminate(INACTIVE_CLOSE_CODE, b"Inactive"))

    async def _terminate(self, code: int, message: bytes) -> None:
        # Let cancelled runs flush their terminal events before the socket goes.
        await self.wait_runs(timeout=2.0)
        try:
            await asyncio.wait_for(self.connection.close(code=code, message=message), timeout=self.close_timeout)
        except asyncio.TimeoutError:
            log.warning("Timed out closing connection", session_id=self.session.id, code=code)
