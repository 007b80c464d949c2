"""Event multiplexer - run events to request-tagged wire messages."""

from vault_agent.events import (
    AgentEvent,
    Completed,
    Errored,
    TextDelta,
    Thinking,
    ToolFinished,
    ToolStarted,
)
from vault_agent.gateway import Sender
from vault_agent.logging import get_logger
from vault_agent.protocol import (
    TERMINAL_MESSAGE_TYPES,
    CompleteMessage,
    ErrorMessage,
    ServerMessage,
    TextDeltaMessage,
    ThinkingMessage,
    ToolEndMessage,
    ToolStartMessage,
)
from vault_agent.runner import AgentRun

log = get_logger(__name__)


def translate(request_id: str, event: AgentEvent) -> ServerMessage:
    """Map one run event onto its wire message."""
    if isinstance(event, TextDelta):
        return TextDeltaMessage(request_id=request_id, text=event.text)
    if isinstance(event, Thinking):
        return ThinkingMessage(request_id=request_id, text=event.text)
    if isinstance(event, ToolStarted):
        return ToolStartMessage(request_id=request_id, tool_name=event.name, tool_input=event.input)
    if isinstance(event, ToolFinished):
        return ToolEndMessage(
            request_id=request_id,
            tool_name=event.name,
            result=event.result,
            is_error=event.is_error,
        )
    if isinstance(event, Completed):
        return CompleteMessage(request_id=request_id, result=event.result)
    if isinstance(event, Errored):
        return ErrorMessage(request_id=request_id, code=event.code, message=event.message)
    raise TypeError(f"Unknown agent event: {event!r}")


class EventMultiplexer:
    """Writes each run's events in order; at most one terminal message per run."""

    def __init__(self, send: Sender):
        self._send = send
        self._terminated: set[str] = set()

    def is_terminated(self, request_id: str) -> bool:
        return request_id in self._terminated

    async def deliver(self, request_id: str, message: ServerMessage) -> bool:
        """Send a message for a run unless that run already got its terminal."""
        if request_id in self._terminated:
            log.debug("Dropping message after terminal", request_id=request_id, type=message.type)
            return False
        if isinstance(message, TERMINAL_MESSAGE_TYPES):
            self._terminated.add(request_id)
        await self._send(message)
        return True

    async def pump(self, run: AgentRun) -> None:
        """Forward a run's channel until the run closes it."""
        async for event in run.channel:
            await self.deliver(run.id, translate(run.id, event))

    async def fail(self, request_id: str, code: str, message: str) -> bool:
        return await self.deliver(request_id, ErrorMessage(request_id=request_id, code=code, message=message))

    async def finalize(self, request_id: str) -> bool:
        """Send an empty ``complete`` if the run never produced a terminal."""
        if request_id in self._terminated:
            return False
        log.warning("Run ended without terminal event; sending completion", request_id=request_id)
        return await self.deliver(request_id, CompleteMessage(request_id=request_id, result=""))

    def forget(self, request_id: str) -> None:
        self._terminated.discard(request_id)
