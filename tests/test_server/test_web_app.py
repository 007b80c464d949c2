import asyncio

import pytest
from aiohttp import WSMsgType
from aiohttp.test_utils import TestClient, TestServer

from vault_agent.config import AgentConfig, Config, ModelConfig, ServerConfig
from vault_agent.server import WEB_SEARCH_TOOL_TYPE, VaultAgentServer


def mock_config(**model) -> Config:
    return Config(
        server=ServerConfig(auth_token="secret"),
        model=ModelConfig(provider="mock", **model),
        agent=AgentConfig(mock_chunk_delay=0, load_vault_instructions=False),
    )


async def start_client(server: VaultAgentServer) -> TestClient:
    client = TestClient(TestServer(server.create_app()))
    await client.start_server()
    return client


async def collect_run(ws, request_id: str, files: dict[str, str]) -> list[dict]:
    """Act as the vault side until the run's terminal message arrives."""
    received = []
    while True:
        message = await asyncio.wait_for(ws.receive_json(), timeout=5)
        if message["type"] == "rpc_request":
            await ws.send_json(
                {
                    "type": "rpc_response",
                    "id": message["id"],
                    "result": [{"name": name, "path": name, "type": "file"} for name in files],
                }
            )
            continue
        received.append(message)
        if message.get("requestId") == request_id and message["type"] in ("complete", "error"):
            return received


@pytest.mark.asyncio
async def test_health_reports_mock_mode():
    client = await start_client(VaultAgentServer(mock_config()))
    try:
        response = await client.get("/health")
        assert response.status == 200
        assert await response.json() == {"status": "ok", "mock": True, "sessions": 0}
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_wrong_token_is_closed_with_4001():
    client = await start_client(VaultAgentServer(mock_config()))
    try:
        ws = await client.ws_connect("/ws?token=nope")
        message = await asyncio.wait_for(ws.receive(), timeout=5)
        assert message.type in (WSMsgType.CLOSE, WSMsgType.CLOSED)
        assert ws.close_code == 4001
        await ws.close()
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_prompt_roundtrip_over_websocket():
    server = VaultAgentServer(mock_config())
    client = await start_client(server)
    try:
        ws = await client.ws_connect("/ws?token=secret")

        await ws.send_json({"type": "ping"})
        assert await asyncio.wait_for(ws.receive_json(), timeout=5) == {"type": "pong"}

        await ws.send_json({"type": "prompt", "id": "r1", "prompt": "list files"})
        received = await collect_run(ws, "r1", {"Inbox.md": ""})

        types = [m["type"] for m in received]
        assert "tool_start" in types
        assert received[-1]["type"] == "complete"
        tool_end = next(m for m in received if m["type"] == "tool_end")
        assert "Inbox.md" in tool_end["result"]

        health = await (await client.get("/health")).json()
        assert health["sessions"] == 1

        await ws.close()
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_mock_mode_does_not_declare_web_search():
    server = VaultAgentServer(mock_config())
    registry = server.build_tools()

    definitions = registry.get_definitions()
    names = [d["name"] for d in definitions]
    assert "vault_read" in names and "vault_delete" in names
    assert "web_search" not in names
    assert server.runner.tools is registry


def test_real_backend_declares_web_search(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
    config = Config(model=ModelConfig(provider="anthropic", web_search_max_uses=3))
    server = VaultAgentServer(config)

    definitions = server.build_tools().get_definitions()

    assert definitions[-1] == {"type": WEB_SEARCH_TOOL_TYPE, "name": "web_search", "max_uses": 3}
