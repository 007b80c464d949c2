"""Mock completion provider for exercising the server without API calls.

Scenarios are picked from keywords in the user's prompt. The first call of a
run streams a short reply and requests vault tools; the call after the tool
results streams a follow-up and ends the turn.
"""

import asyncio
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, AsyncIterator

from vault_agent.llm import (
    CompletionRequest,
    LLMProvider,
    StreamEvent,
    StreamFinished,
    TextChunk,
    ToolCallReady,
    ToolCallStarted,
)
from vault_agent.logging import get_logger

log = get_logger(__name__)

_CONTEXT_PREFIX_RE = re.compile(r"^\[(?:Currently viewing|Selected text): .*?\]\n\n", re.DOTALL)


@dataclass
class MockScenario:
    response: str
    tools: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    follow_up: str = ""


def _match(pattern: str, prompt: str, default: str) -> str:
    found = re.search(pattern, prompt, re.IGNORECASE)
    return found.group(1) if found else default


def pick_scenario(prompt: str) -> MockScenario:
    """Choose a scripted scenario from prompt keywords."""
    lowered = prompt.lower()

    if "list" in lowered or "show files" in lowered:
        return MockScenario(
            response="I'll list the files in your vault for you.",
            tools=[("vault_list", {"folder": ""})],
            follow_up="Here are the files I found in your vault root.",
        )

    if "search" in lowered or "find" in lowered:
        query = _match(r"(?:search|find)\s+(?:for\s+)?[\"']?([^\"']+)[\"']?", prompt, "test").strip()
        return MockScenario(
            response=f'I\'ll search your vault for "{query}".',
            tools=[("vault_search", {"query": query, "limit": 10})],
            follow_up="Here are the search results.",
        )

    if "read" in lowered or "open" in lowered or "show me" in lowered:
        path = _match(r"(?:read|open|show me)\s+[\"']?([^\"'\s]+\.md)[\"']?", prompt, "test.md")
        return MockScenario(
            response=f'I\'ll read the contents of "{path}" for you.',
            tools=[("vault_read", {"path": path})],
            follow_up="Here is the content of the file.",
        )

    if "create" in lowered or "write" in lowered or "new note" in lowered:
        path = _match(r"(?:create|write|new note)\s+[\"']?([^\"'\s]+\.md)[\"']?", prompt, "new-note.md")
        content = (
            "# New Note\n\nThis is a test note created by the mock agent.\n\n"
            f"Created: {datetime.now(UTC).isoformat()}\n"
        )
        return MockScenario(
            response=f'I\'ll create a new note at "{path}".',
            tools=[("vault_write", {"path": path, "content": content})],
            follow_up=f'Successfully created the note at "{path}".',
        )

    if "delete" in lowered or "remove" in lowered:
        path = _match(r"(?:delete|remove)\s+[\"']?([^\"'\s]+\.md)[\"']?", prompt, "test.md")
        return MockScenario(
            response=(
                f'Are you sure you want to delete "{path}"? This will move it to trash. '
                "For this mock test, I'll proceed with the deletion."
            ),
            tools=[("vault_delete", {"path": path})],
            follow_up=f'The file "{path}" has been moved to trash.',
        )

    if "multi" in lowered or "several" in lowered:
        return MockScenario(
            response="I'll demonstrate using multiple tools in sequence.",
            tools=[
                ("vault_list", {"folder": ""}),
                ("vault_search", {"query": "test", "limit": 5}),
            ],
            follow_up="I used multiple tools to gather information from your vault.",
        )

    return MockScenario(
        response=(
            f'Hello! I\'m the mock vault assistant. I received your message: "{prompt}"\n\n'
            "I can help you with:\n"
            "- **list files** - List vault contents\n"
            "- **search [query]** - Search your notes\n"
            "- **read [file.md]** - Read a note\n"
            "- **create [file.md]** - Create a new note\n"
            "- **delete [file.md]** - Delete a note\n"
            "- **multi** - Test multiple tools\n\n"
            "Try one of these commands to see the mock tools in action!"
        ),
    )


def _first_user_text(messages: list[dict[str, Any]]) -> str:
    for message in messages:
        if message.get("role") != "user":
            continue
        content = message.get("content")
        if isinstance(content, str):
            text = content
        else:
            text = "".join(
                str(block.get("text", ""))
                for block in content or []
                if isinstance(block, dict) and block.get("type") == "text"
            )
        while True:
            stripped = _CONTEXT_PREFIX_RE.sub("", text, count=1)
            if stripped == text:
                return text
            text = stripped
    return ""


def _is_tool_result_turn(messages: list[dict[str, Any]]) -> bool:
    if not messages:
        return False
    content = messages[-1].get("content")
    return isinstance(content, list) and any(
        isinstance(block, dict) and block.get("type") == "tool_result" for block in content
    )


class MockProvider(LLMProvider):
    """Scripted provider used in mock mode."""

    name = "mock"

    def __init__(self, chunk_delay: float = 0.05):
        self.chunk_delay = chunk_delay

    async def _words(self, text: str) -> AsyncIterator[StreamEvent]:
        for word in text.split(" "):
            yield TextChunk(word + " ")
            if self.chunk_delay:
                await asyncio.sleep(self.chunk_delay)

    async def stream(self, request: CompletionRequest) -> AsyncIterator[StreamEvent]:
        scenario = pick_scenario(_first_user_text(request.messages))

        if _is_tool_result_turn(request.messages):
            if scenario.follow_up:
                yield TextChunk("\n\n")
                async for event in self._words(scenario.follow_up):
                    yield event
            yield StreamFinished(
                stop_reason="end_turn",
                content=[{"type": "text", "text": scenario.follow_up or "Done."}],
            )
            return

        log.info("Running mock scenario", tools=[name for name, _ in scenario.tools])
        async for event in self._words(scenario.response):
            yield event

        content: list[dict[str, Any]] = [{"type": "text", "text": scenario.response}]
        for index, (name, tool_input) in enumerate(scenario.tools, start=1):
            tool_id = f"mock_tool_{index}"
            yield ToolCallStarted(id=tool_id, name=name)
            yield ToolCallReady(id=tool_id, name=name, input=dict(tool_input))
            content.append({"type": "tool_use", "id": tool_id, "name": name, "input": dict(tool_input)})

        stop_reason = "tool_use" if scenario.tools else "end_turn"
        yield StreamFinished(stop_reason=stop_reason, content=content)
