"""Agent runner - the bounded tool-use loop behind one prompt.

A run moves STARTING -> STREAMING -> (TOOL_EXECUTION -> STREAMING)* and ends in
exactly one of COMPLETED, ERRORED or CANCELLED. Every await inside the loop is
raced against the run's cancellation token, so a cancel unwinds a blocked
backend read or tool call promptly.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, TypeVar

from vault_agent.events import (
    AgentEvent,
    Completed,
    Errored,
    EventChannel,
    TextDelta,
    Thinking,
    ToolFinished,
    ToolStarted,
)
from vault_agent.exceptions import (
    BackendError,
    MaxIterationsExceededError,
    StalledError,
    ToolError,
)
from vault_agent.gateway import VaultBridge
from vault_agent.liveness import ActivityRecord
from vault_agent.llm import (
    BackendHeartbeat,
    CompletionRequest,
    LLMProvider,
    StreamEvent,
    StreamFinished,
    TextChunk,
    ThinkingChunk,
    ToolCallReady,
    ToolCallStarted,
)
from vault_agent.logging import get_logger
from vault_agent.prompts import PromptBuilder, compose_user_prompt
from vault_agent.protocol import AgentContext
from vault_agent.tools.registry import ToolRegistry, ToolResult

log = get_logger(__name__)

T = TypeVar("T")

CANCELLED_RESULT = "Cancelled by user"


class RunState(str, Enum):
    STARTING = "starting"
    STREAMING = "streaming"
    TOOL_EXECUTION = "tool_execution"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"


FINAL_STATES = frozenset({RunState.COMPLETED, RunState.ERRORED, RunState.CANCELLED})


class CancelReason(str, Enum):
    USER = "user"
    STALLED = "stalled"
    DISCONNECTED = "disconnected"
    SHUTDOWN = "shutdown"


class RunCancelled(Exception):
    """Raised inside the loop once the token has been observed."""

    def __init__(self, reason: CancelReason | None):
        super().__init__(f"Run cancelled ({reason.value if reason else 'unknown'})")
        self.reason = reason


class CancellationToken:
    """Cooperative cancellation; the first reason wins."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: CancelReason | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: CancelReason = CancelReason.USER) -> bool:
        """Request cancellation; returns False if already requested."""
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        return True

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelled(self.reason)

    async def race(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless cancellation is requested first.

        Raises:
            RunCancelled: if the token fired before the awaitable finished
        """
        if self.cancelled:
            # Never scheduled, so close it here or it is garbage-collected un-awaited.
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise RunCancelled(self.reason)
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task.done():
            return task.result()

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            log.debug("Abandoned task raised after cancellation", error=str(e))
        raise RunCancelled(self.reason)


@dataclass
class PendingToolCall:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


class AgentRun:
    """State of one prompt's lifecycle."""

    def __init__(
        self,
        run_id: str,
        prompt: str,
        context: AgentContext | None = None,
        system_prompt: str | None = None,
        model: str | None = None,
    ):
        self.id = run_id
        self.prompt = prompt
        self.context = context
        self.system_prompt = system_prompt
        self.model = model
        self.token = CancellationToken()
        self.channel = EventChannel()
        self.state = RunState.STARTING
        self.iterations = 0
        self.text = ""
        self.activity: ActivityRecord | None = None

    @property
    def done(self) -> bool:
        return self.state in FINAL_STATES

    def cancel(self, reason: CancelReason = CancelReason.USER) -> bool:
        """Request cooperative cancellation.

        Cancelling a finished run, or cancelling twice, has no effect.
        """
        if self.done:
            return False
        accepted = self.token.cancel(reason)
        if accepted:
            log.info("Cancelling agent run", request_id=self.id, reason=reason.value, state=self.state.value)
        return accepted

    def touch(self) -> None:
        if self.activity is not None:
            self.activity.touch()

    def emit(self, event: AgentEvent) -> None:
        self.touch()
        self.channel.put(event)


async def _next_event(stream: AsyncIterator[StreamEvent]) -> StreamEvent | None:
    try:
        return await stream.__anext__()
    except StopAsyncIteration:
        return None


async def _close_stream(stream: AsyncIterator[StreamEvent]) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        log.debug("Error closing backend stream", error=str(e))


class AgentRunner:
    """Drives the tool-use loop for runs; holds no per-run state."""

    def __init__(
        self,
        provider: LLMProvider,
        tools: ToolRegistry,
        prompt_builder: PromptBuilder | None = None,
        model: str = "claude-opus-4-5-20251101",
        max_tokens: int = 4096,
        max_iterations: int = 10,
    ):
        self.provider = provider
        self.tools = tools
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.model = model
        self.max_tokens = max_tokens
        self.max_iterations = max_iterations

    async def run(self, run: AgentRun, vault: VaultBridge | None = None) -> None:
        """Run to a terminal event. Never raises for run-level failures."""
        log.info("Starting agent run", request_id=run.id, model=run.model or self.model)
        try:
            await self._loop(run, vault)
        except RunCancelled as e:
            self._finish_cancelled(run, e.reason)
        except MaxIterationsExceededError as e:
            log.warning("Agent run hit iteration cap", request_id=run.id, iterations=run.iterations)
            self._finish_error(run, e.code, str(e))
        except BackendError as e:
            log.error("Completion backend failed", request_id=run.id, code=e.code, error=str(e))
            self._finish_error(run, e.code, str(e))
        except Exception as e:
            if run.token.cancelled:
                self._finish_cancelled(run, run.token.reason)
            else:
                log.error("Agent run failed", request_id=run.id, error=str(e), exc_info=True)
                self._finish_error(run, "AGENT_ERROR", str(e))
        finally:
            run.channel.close()

    def _finish_cancelled(self, run: AgentRun, reason: CancelReason | None) -> None:
        if reason == CancelReason.STALLED:
            window = run.activity.window if run.activity is not None else 0.0
            self._finish_error(run, StalledError.code, str(StalledError(window)))
            return
        run.state = RunState.CANCELLED
        run.emit(Completed(CANCELLED_RESULT))
        log.info("Agent run cancelled", request_id=run.id, reason=reason.value if reason else None)

    def _finish_error(self, run: AgentRun, code: str, message: str) -> None:
        run.state = RunState.ERRORED
        run.emit(Errored(code=code, message=message))

    async def _loop(self, run: AgentRun, vault: VaultBridge | None) -> None:
        run.token.raise_if_cancelled()
        system = await run.token.race(self.prompt_builder.build(vault, run.system_prompt))
        messages: list[dict[str, Any]] = [
            {"role": "user", "content": compose_user_prompt(run.prompt, run.context)},
        ]
        tool_definitions = self.tools.get_definitions()
        model = run.model or self.model

        for iteration in range(1, self.max_iterations + 1):
            run.token.raise_if_cancelled()
            run.iterations = iteration
            run.state = RunState.STREAMING
            log.debug("Agent iteration", request_id=run.id, iteration=iteration)

            request = CompletionRequest(
                model=model,
                system=system,
                messages=list(messages),
                tools=tool_definitions,
                max_tokens=self.max_tokens,
            )
            finished, calls = await self._stream_turn(run, request)
            messages.append({"role": "assistant", "content": finished.content})

            if finished.stop_reason == "pause_turn":
                continue
            if finished.stop_reason != "tool_use" or not calls:
                run.state = RunState.COMPLETED
                run.emit(Completed(run.text))
                log.info("Agent run completed", request_id=run.id, iterations=iteration)
                return

            run.state = RunState.TOOL_EXECUTION
            results = await self._execute_tools(run, calls, vault)
            messages.append({"role": "user", "content": results})

        raise MaxIterationsExceededError(self.max_iterations)

    async def _stream_turn(
        self,
        run: AgentRun,
        request: CompletionRequest,
    ) -> tuple[StreamFinished, list[PendingToolCall]]:
        """Consume one backend response, forwarding text as it arrives."""
        stream = self.provider.stream(request)
        calls: dict[str, PendingToolCall] = {}
        finished: StreamFinished | None = None
        try:
            while finished is None:
                event = await run.token.race(_next_event(stream))
                if event is None:
                    break
                if isinstance(event, TextChunk):
                    run.text += event.text
                    run.emit(TextDelta(event.text))
                elif isinstance(event, ThinkingChunk):
                    run.emit(Thinking(event.text))
                elif isinstance(event, ToolCallStarted):
                    calls.setdefault(event.id, PendingToolCall(id=event.id, name=event.name))
                    run.touch()
                elif isinstance(event, ToolCallReady):
                    call = calls.setdefault(event.id, PendingToolCall(id=event.id, name=event.name))
                    call.input = dict(event.input)
                    run.touch()
                elif isinstance(event, BackendHeartbeat):
                    run.touch()
                elif isinstance(event, StreamFinished):
                    finished = event
        finally:
            await _close_stream(stream)

        if finished is None:
            raise BackendError("Backend stream ended without a final message")
        return finished, list(calls.values())

    async def _execute_tools(
        self,
        run: AgentRun,
        calls: list[PendingToolCall],
        vault: VaultBridge | None,
    ) -> list[dict[str, Any]]:
        results: list[dict[str, Any]] = []
        for call in calls:
            run.token.raise_if_cancelled()
            run.emit(ToolStarted(name=call.name, input=call.input))
            result = await run.token.race(self._execute_tool(run, call, vault))
            text = result.to_text()
            run.emit(ToolFinished(name=call.name, result=text, is_error=not result.success))

            block: dict[str, Any] = {"type": "tool_result", "tool_use_id": call.id, "content": text}
            if not result.success:
                block["is_error"] = True
            results.append(block)
            run.token.raise_if_cancelled()
        return results

    async def _execute_tool(self, run: AgentRun, call: PendingToolCall, vault: VaultBridge | None) -> ToolResult:
        try:
            return await self.tools.execute(call.name, call.input, vault=vault)
        except ToolError as e:
            log.warning("Tool call failed", request_id=run.id, tool=call.name, error=str(e))
            return ToolResult(success=False, error=str(e))
