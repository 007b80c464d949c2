import pytest

from vault_agent.config import ModelConfig
from vault_agent.exceptions import ConfigurationError
from vault_agent.llm import CompletionRequest, StreamFinished, TextChunk, ToolCallReady, create_provider
from vault_agent.llm.anthropic import AnthropicProvider
from vault_agent.llm.mock import MockProvider, pick_scenario


def first_turn(prompt: str) -> CompletionRequest:
    return CompletionRequest(model="mock", system="", messages=[{"role": "user", "content": prompt}])


async def collect(provider, request):
    return [event async for event in provider.stream(request)]


@pytest.mark.parametrize(
    ("prompt", "tool", "tool_input"),
    [
        ("list files", "vault_list", {"folder": ""}),
        ("search for meeting notes", "vault_search", {"query": "meeting notes", "limit": 10}),
        ("read Projects/Plan.md", "vault_read", {"path": "Projects/Plan.md"}),
        ("delete old.md", "vault_delete", {"path": "old.md"}),
    ],
)
def test_scenarios_pick_tools_from_keywords(prompt, tool, tool_input):
    scenario = pick_scenario(prompt)
    assert scenario.tools == [(tool, tool_input)]


def test_create_scenario_writes_a_note():
    scenario = pick_scenario("create ideas.md please")
    name, tool_input = scenario.tools[0]
    assert name == "vault_write"
    assert tool_input["path"] == "ideas.md"
    assert tool_input["content"].startswith("# New Note")


def test_unknown_prompt_gets_help_without_tools():
    scenario = pick_scenario("hello")
    assert scenario.tools == []
    assert "list files" in scenario.response


@pytest.mark.asyncio
async def test_first_turn_streams_words_then_requests_tools():
    events = await collect(MockProvider(chunk_delay=0), first_turn("multi tool test"))

    text = "".join(e.text for e in events if isinstance(e, TextChunk))
    assert text.strip() == "I'll demonstrate using multiple tools in sequence."

    ready = [e for e in events if isinstance(e, ToolCallReady)]
    assert [(e.id, e.name) for e in ready] == [("mock_tool_1", "vault_list"), ("mock_tool_2", "vault_search")]

    finished = events[-1]
    assert isinstance(finished, StreamFinished)
    assert finished.stop_reason == "tool_use"
    assert [block["type"] for block in finished.content] == ["text", "tool_use", "tool_use"]


@pytest.mark.asyncio
async def test_context_prefix_does_not_change_scenario():
    request = first_turn('[Currently viewing: Daily/today.md]\n\nlist files')
    events = await collect(MockProvider(chunk_delay=0), request)
    assert [e.name for e in events if isinstance(e, ToolCallReady)] == ["vault_list"]


@pytest.mark.asyncio
async def test_tool_result_turn_ends_with_follow_up():
    request = CompletionRequest(
        model="mock",
        system="",
        messages=[
            {"role": "user", "content": "list files"},
            {"role": "assistant", "content": []},
            {"role": "user", "content": [{"type": "tool_result", "tool_use_id": "mock_tool_1", "content": "x"}]},
        ],
    )

    events = await collect(MockProvider(chunk_delay=0), request)

    assert events[0] == TextChunk("\n\n")
    assert events[-1].stop_reason == "end_turn"
    assert not any(isinstance(e, ToolCallReady) for e in events)


def test_create_provider_selects_backend(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)

    assert isinstance(create_provider(ModelConfig(provider="mock")), MockProvider)
    assert isinstance(create_provider(ModelConfig(provider="anthropic", api_key="sk-x")), AnthropicProvider)

    with pytest.raises(ConfigurationError):
        create_provider(ModelConfig(provider="anthropic"))
