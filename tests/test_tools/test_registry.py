import asyncio

import pytest

from vault_agent.exceptions import ToolExecutionError, ToolNotFoundError
from vault_agent.tools.registry import Tool, ToolRegistry, ToolResult


class EchoTool(Tool):
    name = "echo"
    description = "Echo text"
    parameters = {
        "type": "object",
        "properties": {"text": {"type": "string"}},
        "required": ["text"],
    }

    async def execute(self, text: str, _vault=None, **kwargs):
        return ToolResult(content=f"{text} ({_vault})")


class SlowTool(Tool):
    name = "slow"
    description = "Sleeps"
    timeout_seconds = 0.05

    def __init__(self):
        self.cancelled = False

    async def execute(self, **kwargs):
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return ToolResult(content="late")


class BrokenTool(Tool):
    name = "broken"
    description = "Returns garbage"

    async def execute(self, **kwargs):
        return "not a tool result"


def test_failed_result_always_has_error_text():
    assert ToolResult(success=False).error == "Tool execution failed"
    assert ToolResult(success=False, content="disk full").to_text() == "Error: disk full"
    assert ToolResult(content="ok").to_text() == "ok"


def test_definitions_list_client_tools_before_server_tools():
    registry = ToolRegistry(server_tools=[{"type": "web_search_20250305", "name": "web_search", "max_uses": 5}])
    registry.register(EchoTool())

    definitions = registry.get_definitions()

    assert definitions[0] == {
        "name": "echo",
        "description": "Echo text",
        "input_schema": EchoTool.parameters,
    }
    assert definitions[1]["name"] == "web_search"
    assert registry.list_tools() == ["echo"]


@pytest.mark.asyncio
async def test_execute_passes_vault_through():
    registry = ToolRegistry()
    registry.register(EchoTool())

    result = await registry.execute("echo", {"text": "hi"}, vault="bridge")

    assert result.content == "hi (bridge)"


@pytest.mark.asyncio
async def test_missing_required_argument_and_unknown_tool():
    registry = ToolRegistry()
    registry.register(EchoTool())

    with pytest.raises(ToolExecutionError, match="Missing required argument: text"):
        await registry.execute("echo", {})
    with pytest.raises(ToolNotFoundError):
        await registry.execute("nope", {})


@pytest.mark.asyncio
async def test_timeout_cancels_tool():
    tool = SlowTool()
    registry = ToolRegistry()
    registry.register(tool)

    with pytest.raises(ToolExecutionError, match="timed out after 0.05s"):
        await registry.execute("slow", {})
    assert tool.cancelled is True


@pytest.mark.asyncio
async def test_invalid_payload_is_rejected():
    registry = ToolRegistry()
    registry.register(BrokenTool())

    with pytest.raises(ToolExecutionError, match="invalid result payload"):
        await registry.execute("broken", {})


def test_unnamed_tool_cannot_register():
    class Nameless(EchoTool):
        name = ""

    with pytest.raises(ValueError):
        ToolRegistry().register(Nameless())
