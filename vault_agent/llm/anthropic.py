"""Anthropic Messages API provider - streaming over SSE with httpx."""

import json
from typing import Any, AsyncIterator

import httpx

from vault_agent.exceptions import BackendError
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

log = get_logger(__name__)


ANTHROPIC_BASE_URL = "https://api.anthropic.com"

# Status codes the API documents for each in-stream error type.
_ERROR_TYPE_STATUS = {
    "invalid_request_error": 400,
    "authentication_error": 401,
    "permission_error": 403,
    "not_found_error": 404,
    "request_too_large": 413,
    "rate_limit_error": 429,
    "api_error": 500,
    "overloaded_error": 529,
}


async def iter_sse(lines: AsyncIterator[str]) -> AsyncIterator[tuple[str, str]]:
    """Group SSE lines into ``(event, data)`` pairs."""
    event = ""
    data: list[str] = []
    async for line in lines:
        if not line:
            if data:
                yield event or "message", "\n".join(data)
            event, data = "", []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if name == "event":
            event = value
        elif name == "data":
            data.append(value)
    if data:
        yield event or "message", "\n".join(data)


class MessageAssembler:
    """Rebuilds content blocks from Messages API stream events.

    ``feed`` returns the provider-neutral events each raw event produces.
    """

    def __init__(self) -> None:
        self.blocks: dict[int, dict[str, Any]] = {}
        self._partial_json: dict[int, str] = {}
        self.stop_reason: str | None = None
        self.finished = False

    def feed(self, event_type: str, payload: dict[str, Any]) -> list[StreamEvent]:
        handler = getattr(self, f"_on_{event_type}", None)
        if handler is None:
            log.debug("Ignoring stream event", event=event_type)
            return []
        return handler(payload)

    def _on_message_start(self, payload: dict[str, Any]) -> list[StreamEvent]:
        message = payload.get("message") or {}
        log.debug("Message stream started", message_id=message.get("id"), model=message.get("model"))
        return []

    def _on_content_block_start(self, payload: dict[str, Any]) -> list[StreamEvent]:
        index = int(payload.get("index", len(self.blocks)))
        block = dict(payload.get("content_block") or {})
        block_type = block.get("type")
        self.blocks[index] = block

        if block_type in ("tool_use", "server_tool_use"):
            self._partial_json[index] = ""
            block["input"] = {}
            if block_type == "tool_use":
                return [ToolCallStarted(id=block.get("id", ""), name=block.get("name", ""))]
            return [BackendHeartbeat(f"server tool: {block.get('name', '')}")]
        if block_type == "text" and block.get("text"):
            return [TextChunk(block["text"])]
        if block_type == "thinking":
            block.setdefault("thinking", "")
        return []

    def _on_content_block_delta(self, payload: dict[str, Any]) -> list[StreamEvent]:
        index = int(payload.get("index", 0))
        delta = payload.get("delta") or {}
        block = self.blocks.setdefault(index, {"type": "text", "text": ""})
        delta_type = delta.get("type")

        if delta_type == "text_delta":
            text = delta.get("text", "")
            block["text"] = block.get("text", "") + text
            return [TextChunk(text)] if text else []
        if delta_type == "input_json_delta":
            self._partial_json[index] = self._partial_json.get(index, "") + delta.get("partial_json", "")
            return []
        if delta_type == "thinking_delta":
            text = delta.get("thinking", "")
            block["thinking"] = block.get("thinking", "") + text
            return [ThinkingChunk(text)] if text else []
        if delta_type == "signature_delta":
            block["signature"] = block.get("signature", "") + delta.get("signature", "")
            return []
        log.debug("Ignoring content delta", delta_type=delta_type)
        return []

    def _on_content_block_stop(self, payload: dict[str, Any]) -> list[StreamEvent]:
        index = int(payload.get("index", 0))
        block = self.blocks.get(index)
        if block is None or index not in self._partial_json:
            return []

        raw = self._partial_json.pop(index).strip()
        try:
            parsed = json.loads(raw) if raw else {}
        except json.JSONDecodeError:
            log.warning("Tool input is not valid JSON", tool=block.get("name"), raw=raw[:200])
            parsed = {}
        block["input"] = parsed if isinstance(parsed, dict) else {}

        if block.get("type") == "tool_use":
            return [ToolCallReady(id=block.get("id", ""), name=block.get("name", ""), input=block["input"])]
        return []

    def _on_message_delta(self, payload: dict[str, Any]) -> list[StreamEvent]:
        delta = payload.get("delta") or {}
        if delta.get("stop_reason"):
            self.stop_reason = delta["stop_reason"]
        return []

    def _on_message_stop(self, payload: dict[str, Any]) -> list[StreamEvent]:
        self.finished = True
        content = [self.blocks[index] for index in sorted(self.blocks)]
        return [StreamFinished(stop_reason=self.stop_reason, content=content)]

    def _on_ping(self, payload: dict[str, Any]) -> list[StreamEvent]:
        return [BackendHeartbeat("ping")]

    def _on_error(self, payload: dict[str, Any]) -> list[StreamEvent]:
        error = payload.get("error") or {}
        error_type = str(error.get("type", "api_error"))
        message = str(error.get("message", "Unknown streaming error"))
        raise BackendError(
            f"Anthropic stream error ({error_type}): {message}",
            status_code=_ERROR_TYPE_STATUS.get(error_type),
        )


class AnthropicProvider(LLMProvider):
    """Direct Anthropic Messages API provider."""

    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        base_url: str = ANTHROPIC_BASE_URL,
        api_version: str = "2023-06-01",
        timeout: float = 300.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize Anthropic provider.

        Args:
            api_key: Anthropic API key
            base_url: API base URL
            api_version: Value of the ``anthropic-version`` header
            timeout: Read timeout for one streaming response
            client: Optional preconfigured HTTP client
        """
        self.api_key = api_key
        self.base_url = (base_url or ANTHROPIC_BASE_URL).rstrip("/")
        self.api_version = api_version
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10.0),
            follow_redirects=True,
        )

    def _build_body(self, request: CompletionRequest) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "messages": request.messages,
            "stream": True,
        }
        if request.system:
            body["system"] = request.system
        if request.tools:
            body["tools"] = request.tools
        return body

    async def stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        url = f"{self.base_url}/v1/messages"
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
            "content-type": "application/json",
        }
        assembler = MessageAssembler()

        try:
            async with self.client.stream("POST", url, json=self._build_body(request), headers=headers) as response:
                if not response.is_success:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                    raise BackendError(
                        f"Anthropic API error {response.status_code}: {error_text[:500]}",
                        status_code=response.status_code,
                    )

                async for event_type, data in iter_sse(response.aiter_lines()):
                    try:
                        payload = json.loads(data)
                    except json.JSONDecodeError:
                        log.debug("Skipping non-JSON SSE data", event=event_type)
                        continue
                    for event in assembler.feed(payload.get("type", event_type), payload):
                        yield event
                    if assembler.finished:
                        return
        except BackendError:
            raise
        except httpx.HTTPError as e:
            raise BackendError(f"Anthropic streaming error: {e}") from e

        if not assembler.finished:
            raise BackendError("Anthropic stream ended before message_stop")

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()
