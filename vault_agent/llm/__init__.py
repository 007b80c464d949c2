"""Completion backend interface.

A provider turns one request into a stream of events. The agent runner only
depends on these event types, never on a concrete backend's wire format.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Union

from vault_agent.config import ModelConfig
from vault_agent.exceptions import ConfigurationError
from vault_agent.logging import get_logger

log = get_logger(__name__)


@dataclass
class CompletionRequest:
    """One streaming call to the backend."""

    model: str
    system: str
    messages: list[dict[str, Any]]
    tools: list[dict[str, Any]] = field(default_factory=list)
    max_tokens: int = 4096


@dataclass(frozen=True)
class TextChunk:
    text: str


@dataclass(frozen=True)
class ThinkingChunk:
    text: str


@dataclass(frozen=True)
class ToolCallStarted:
    """The backend began announcing a tool call; input is still streaming."""

    id: str
    name: str


@dataclass(frozen=True)
class ToolCallReady:
    """A tool call announcement is complete with its parsed input."""

    id: str
    name: str
    input: dict[str, Any]


@dataclass(frozen=True)
class BackendHeartbeat:
    """Keep-alive or diagnostic output; carries no content."""

    detail: str = ""


@dataclass(frozen=True)
class StreamFinished:
    """End of one backend response.

    ``content`` holds the assistant content blocks in the backend's native
    shape so they can be appended to the conversation history verbatim.
    """

    stop_reason: str | None
    content: list[dict[str, Any]] = field(default_factory=list)


StreamEvent = Union[
    TextChunk,
    ThinkingChunk,
    ToolCallStarted,
    ToolCallReady,
    BackendHeartbeat,
    StreamFinished,
]


class LLMProvider(ABC):
    """Abstract streaming completion backend."""

    name: str = ""

    @abstractmethod
    def stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        """Stream one response.

        Raises:
            BackendError: on HTTP, transport or in-stream errors
        """

    async def close(self) -> None:
        """Release client resources."""


def create_provider(config: ModelConfig, chunk_delay: float = 0.05) -> LLMProvider:
    """Create a completion provider from model configuration.

    Args:
        config: Model section of the configuration
        chunk_delay: Per-word delay used by the mock provider

    Raises:
        ConfigurationError: if the anthropic provider has no API key
    """
    if config.provider == "mock":
        from vault_agent.llm.mock import MockProvider

        log.info("Using mock completion provider")
        return MockProvider(chunk_delay=chunk_delay)

    if config.provider == "anthropic":
        from vault_agent.llm.anthropic import AnthropicProvider

        api_key = config.resolved_api_key()
        if not api_key:
            raise ConfigurationError(
                "No API key configured. Set model.api_key, VAULT_AGENT_MODEL__API_KEY "
                "or ANTHROPIC_API_KEY, or enable mock mode."
            )
        return AnthropicProvider(
            api_key=api_key,
            base_url=config.base_url,
            api_version=config.api_version,
            timeout=config.request_timeout,
        )

    raise ConfigurationError(f"Provider '{config.provider}' not supported. Use 'anthropic' or 'mock'.")
