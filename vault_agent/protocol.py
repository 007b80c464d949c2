"""WebSocket wire protocol.

Every frame is a JSON object discriminated by ``type``. Field names on the wire
are camelCase; the models expose snake_case attributes with aliases.
"""

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from vault_agent.exceptions import ProtocolError


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ── Shared types ─────────────────────────────────────────────────────


class AgentContext(_WireModel):
    """What the user is looking at when the prompt was sent."""

    current_file: str | None = Field(default=None, alias="currentFile")
    selection: str | None = None


class SearchResult(_WireModel):
    path: str
    snippet: str = ""
    score: float | None = None


class FileInfo(_WireModel):
    name: str
    path: str
    type: Literal["file", "folder"] = "file"


class GrepResult(_WireModel):
    path: str
    line: int
    content: str = ""
    context: str | None = None


class RpcError(_WireModel):
    code: str = "REMOTE_ERROR"
    message: str = "Unknown error"


# ── Client → server ──────────────────────────────────────────────────


class PromptMessage(_WireModel):
    type: Literal["prompt"]
    id: str = Field(min_length=1)
    prompt: str
    context: AgentContext | None = None
    system_prompt: str | None = Field(default=None, alias="systemPrompt")
    model: str | None = None


class RpcResponseMessage(_WireModel):
    type: Literal["rpc_response"]
    id: str = Field(min_length=1)
    result: Any = None
    error: RpcError | None = None


class CancelMessage(_WireModel):
    type: Literal["cancel"]
    id: str = Field(min_length=1)


class PingMessage(_WireModel):
    type: Literal["ping"]


ClientMessage = Annotated[
    Union[PromptMessage, RpcResponseMessage, CancelMessage, PingMessage],
    Field(discriminator="type"),
]

_client_message_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


# ── Server → client ──────────────────────────────────────────────────


class TextDeltaMessage(_WireModel):
    type: Literal["text_delta"] = "text_delta"
    request_id: str = Field(alias="requestId")
    text: str


class ToolStartMessage(_WireModel):
    type: Literal["tool_start"] = "tool_start"
    request_id: str = Field(alias="requestId")
    tool_name: str = Field(alias="toolName")
    tool_input: dict[str, Any] = Field(default_factory=dict, alias="toolInput")


class ToolEndMessage(_WireModel):
    type: Literal["tool_end"] = "tool_end"
    request_id: str = Field(alias="requestId")
    tool_name: str = Field(alias="toolName")
    result: str
    is_error: bool = Field(default=False, alias="isError")


class ThinkingMessage(_WireModel):
    type: Literal["thinking"] = "thinking"
    request_id: str = Field(alias="requestId")
    text: str


class CompleteMessage(_WireModel):
    type: Literal["complete"] = "complete"
    request_id: str = Field(alias="requestId")
    result: str = ""


class ErrorMessage(_WireModel):
    """A failure scoped to one request, or to the session when ``requestId`` is absent.

    With code ``DUPLICATE_REQUEST`` it answers a rejected prompt that reused the id of an
    active run; that run is unaffected and still sends its own terminal message.
    """

    type: Literal["error"] = "error"
    request_id: str | None = Field(default=None, alias="requestId")
    code: str
    message: str


class RpcRequestMessage(_WireModel):
    type: Literal["rpc_request"] = "rpc_request"
    id: str
    method: str
    params: dict[str, Any] = Field(default_factory=dict)


class PongMessage(_WireModel):
    type: Literal["pong"] = "pong"


ServerMessage = Union[
    TextDeltaMessage,
    ToolStartMessage,
    ToolEndMessage,
    ThinkingMessage,
    CompleteMessage,
    ErrorMessage,
    RpcRequestMessage,
    PongMessage,
]

TERMINAL_MESSAGE_TYPES = (CompleteMessage, ErrorMessage)


def parse_client_message(raw: str | bytes) -> ClientMessage:
    """Parse one inbound frame.

    Raises:
        ProtocolError: with code ``INVALID_JSON`` for undecodable frames and
            ``PROTOCOL_ERROR`` for JSON that is not a known message.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError("Invalid JSON", code="INVALID_JSON") from e

    if not isinstance(data, dict):
        raise ProtocolError("Message must be a JSON object")

    try:
        return _client_message_adapter.validate_python(data)
    except PydanticValidationError as e:
        msg_type = data.get("type")
        first = e.errors()[0] if e.errors() else {}
        detail = first.get("msg", "invalid message")
        raise ProtocolError(f"Invalid {msg_type or 'untyped'} message: {detail}") from e


def encode_message(message: ServerMessage) -> str:
    """Serialize an outbound message with wire field names."""
    return message.model_dump_json(by_alias=True, exclude_none=True)
