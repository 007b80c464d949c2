from pathlib import Path

import vault_agent.config as config_module
from vault_agent.config import Config, ModelConfig
from vault_agent.main import load_config


def test_defaults_match_reference_deployment(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")

    cfg = Config.load()

    assert cfg.server.port == 3001
    assert cfg.rpc.timeout == 30
    assert cfg.liveness.session_window == 90
    assert cfg.agent.max_iterations == 10
    assert cfg.model.max_tokens == 4096
    assert cfg.mcp_servers == {}


def test_load_prefers_local_config_yaml(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)

    home_cfg = tmp_path / "home_config.yaml"
    home_cfg.write_text("server:\n  port: 4000\n", encoding="utf-8")
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", home_cfg)

    (tmp_path / "config.yaml").write_text(
        (
            "server:\n"
            "  port: 5000\n"
            "  auth_token: s3cret\n"
            "model:\n"
            "  provider: mock\n"
            "mcp_servers:\n"
            "  docs:\n"
            "    type: streamable-http\n"
            "    url: http://localhost:9000/mcp\n"
        ),
        encoding="utf-8",
    )

    cfg = Config.load()

    assert cfg.server.port == 5000
    assert cfg.server.auth_token == "s3cret"
    assert cfg.model.provider == "mock"
    assert cfg.mcp_servers["docs"].type == "streamable-http"


def test_environment_fills_unset_values(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")
    monkeypatch.setenv("VAULT_AGENT_SERVER__AUTH_TOKEN", "from-env")
    monkeypatch.setenv("VAULT_AGENT_RPC__TIMEOUT", "12")

    cfg = Config.load()

    assert cfg.server.auth_token == "from-env"
    assert cfg.rpc.timeout == 12


def test_api_key_falls_back_to_environment(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", " sk-env ")

    assert ModelConfig().resolved_api_key() == "sk-env"
    assert ModelConfig(api_key="sk-config").resolved_api_key() == "sk-config"


def test_summary_masks_token():
    assert Config().summary()["auth_token"] == "default"

    cfg = Config()
    cfg.server.auth_token = "hunter2"
    assert cfg.summary()["auth_token"] == "***"
    assert "hunter2" not in str(cfg.summary())


def test_save_roundtrip(tmp_path: Path):
    cfg = Config()
    cfg.server.port = 4321
    path = tmp_path / "nested" / "config.yaml"

    cfg.save(path)

    assert Config.load(path).server.port == 4321


def test_cli_overrides(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_PATH", tmp_path / "missing.yaml")

    cfg = load_config(host="127.0.0.1", port=9999, mock=True)

    assert cfg.server.host == "127.0.0.1"
    assert cfg.server.port == 9999
    assert cfg.model.provider == "mock"
