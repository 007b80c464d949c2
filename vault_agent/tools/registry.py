"""Tool registry and base tool class."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, model_validator

from vault_agent.exceptions import ToolExecutionError, ToolNotFoundError
from vault_agent.logging import get_logger

log = get_logger(__name__)


class ToolResult(BaseModel):
    """Result from tool execution."""

    success: bool = True
    content: str = ""
    error: str | None = None

    @model_validator(mode="after")
    def _normalize_failure_error(self) -> "ToolResult":
        """Ensure failed results always provide an error message."""
        if not self.success and not (self.error or "").strip():
            fallback = (self.content or "").strip()
            self.error = fallback or "Tool execution failed"
        return self

    def to_text(self) -> str:
        """Text handed back to the model and shown to the client."""
        if self.success:
            return self.content
        return f"Error: {self.error}"


class Tool(ABC):
    """Base class for all tools."""

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {}
    # None leaves the bound to the tool itself (vault tools rely on the RPC deadline).
    timeout_seconds: float | None = 30.0

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool.

        Args:
            **kwargs: Tool-specific arguments plus ``_vault`` (the session's
                VaultBridge, or None)

        Returns:
            ToolResult with success status and content
        """
        pass

    def get_definition(self) -> dict[str, Any]:
        """Get the tool definition for the completion backend."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters or {"type": "object", "properties": {}},
        }

    def validate_arguments(self, arguments: dict[str, Any]) -> None:
        """Validate tool arguments against schema.

        Raises:
            ToolExecutionError if a required argument is missing
        """
        required = self.parameters.get("required", [])
        for field in required:
            if field not in arguments:
                raise ToolExecutionError(
                    self.name,
                    f"Missing required argument: {field}",
                )


class ToolRegistry:
    """Registry for managing available tools."""

    def __init__(self, server_tools: list[dict[str, Any]] | None = None):
        self._tools: dict[str, Tool] = {}
        # Tools the backend executes itself; only their declarations are sent.
        self._server_tools: list[dict[str, Any]] = list(server_tools or [])

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Args:
            tool: Tool instance to register
        """
        if not tool.name:
            raise ValueError("Tool must have a name")

        log.debug("Registering tool", tool=tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def has_tool(self, name: str) -> bool:
        """Return whether a tool name is currently registered."""
        return name in self._tools

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        if name not in self._tools:
            raise ToolNotFoundError(name)
        return self._tools[name]

    def list_tools(self) -> list[str]:
        return list(self._tools)

    def get_definitions(self) -> list[dict[str, Any]]:
        """Client-side tool schemas followed by backend-native tool declarations."""
        definitions = [tool.get_definition() for tool in self._tools.values()]
        definitions.extend(dict(item) for item in self._server_tools)
        return definitions

    @staticmethod
    async def _cancel_task(task: asyncio.Task[Any] | None) -> None:
        """Cancel task and await it to avoid pending task warnings."""
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            log.debug("Cancelled tool task raised", error=str(e))

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        vault: Any = None,
    ) -> ToolResult:
        """Execute a tool by name.

        Args:
            name: Tool name
            arguments: Tool arguments
            vault: The session's VaultBridge

        Returns:
            ToolResult from execution

        Raises:
            ToolNotFoundError if tool not found
            ToolExecutionError if execution fails or times out
        """
        tool = self.get(name)
        tool.validate_arguments(arguments)

        execute_task: asyncio.Task[ToolResult] | None = None
        try:
            log.info("Executing tool", tool=name, args=arguments)
            execute_task = asyncio.create_task(tool.execute(**arguments, _vault=vault))
            timeout_seconds = tool.timeout_seconds
            done, _ = await asyncio.wait({execute_task}, timeout=timeout_seconds)

            if execute_task not in done:
                await self._cancel_task(execute_task)
                timeout_label = int(timeout_seconds) if float(timeout_seconds).is_integer() else timeout_seconds
                raise ToolExecutionError(name, f"Execution timed out after {timeout_label}s")

            result = execute_task.result()
            if not isinstance(result, ToolResult):
                raise ToolExecutionError(name, "Tool returned invalid result payload")
            log.info("Tool executed", tool=name, success=result.success)
            return result
        except asyncio.CancelledError:
            await self._cancel_task(execute_task)
            raise
        except ToolExecutionError:
            raise
        except Exception as e:
            log.error("Tool execution failed", tool=name, error=str(e))
            raise ToolExecutionError(name, str(e)) from e
