"""Agent run events and the channel that carries them to the multiplexer."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class Thinking:
    text: str


@dataclass(frozen=True)
class ToolStarted:
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolFinished:
    name: str
    result: str
    is_error: bool = False


@dataclass(frozen=True)
class Completed:
    result: str


@dataclass(frozen=True)
class Errored:
    code: str
    message: str


AgentEvent = Union[TextDelta, Thinking, ToolStarted, ToolFinished, Completed, Errored]

TERMINAL_EVENTS = (Completed, Errored)


class EventChannel:
    """Unbounded FIFO of run events, closed by the producer when the run ends."""

    _CLOSED = object()

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, event: AgentEvent) -> None:
        if self._closed:
            raise RuntimeError("Event channel is closed")
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._CLOSED)

    def __aiter__(self) -> "EventChannel":
        return self

    async def __anext__(self) -> AgentEvent:
        item = await self._queue.get()
        if item is self._CLOSED:
            raise StopAsyncIteration
        return item
