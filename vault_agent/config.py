"""Configuration management for Vault Agent."""

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Paths
DEFAULT_CONFIG_PATH = Path("~/.vault-agent/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"


class ServerConfig(BaseModel):
    """WebSocket server configuration."""

    host: str = "0.0.0.0"
    port: int = 3001
    auth_token: str = "dev-token"
    max_message_bytes: int = 4 * 1024 * 1024
    shutdown_timeout: float = 10.0


class ModelConfig(BaseModel):
    """Completion backend configuration."""

    provider: Literal["anthropic", "mock"] = "anthropic"
    model: str = "claude-opus-4-5-20251101"
    max_tokens: int = 4096
    api_key: str = ""
    base_url: str = "https://api.anthropic.com"
    api_version: str = "2023-06-01"
    request_timeout: float = 300.0
    # Backend-native web search tool; 0 disables it.
    web_search_max_uses: int = 5

    def resolved_api_key(self) -> str:
        """Configured key, falling back to ANTHROPIC_API_KEY."""
        return (self.api_key or os.environ.get("ANTHROPIC_API_KEY", "")).strip()


class AgentConfig(BaseModel):
    """Tool-use loop configuration."""

    max_iterations: int = 10
    inactivity_timeout: float = 120.0
    tool_timeout: float = 60.0
    load_vault_instructions: bool = True
    mock_chunk_delay: float = 0.05


class RpcConfig(BaseModel):
    """Outbound operation configuration."""

    timeout: float = 30.0


class LivenessConfig(BaseModel):
    """Dead-connection detection."""

    session_window: float = 90.0
    check_interval: float = 5.0


class McpServerConfig(BaseModel):
    """Auxiliary MCP tool server."""

    type: Literal["sse", "streamable-http", "stdio"] = "sse"
    url: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    command: str = ""
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for Vault Agent."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    model: ModelConfig = Field(default_factory=ModelConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    rpc: RpcConfig = Field(default_factory=RpcConfig)
    liveness: LivenessConfig = Field(default_factory=LivenessConfig)
    mcp_servers: dict[str, McpServerConfig] = Field(default_factory=dict)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="VAULT_AGENT_",
        env_file=".env",
        env_nested_delimiter="__",
    )

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML; unset values fall through to env vars and defaults."""
        return cls.from_yaml(path)

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def summary(self) -> dict[str, object]:
        """Startup summary with secrets masked."""
        return {
            "host": self.server.host,
            "port": self.server.port,
            "auth_token": "default" if self.server.auth_token == "dev-token" else "***",
            "provider": self.model.provider,
            "model": self.model.model,
            "max_iterations": self.agent.max_iterations,
            "rpc_timeout": self.rpc.timeout,
            "session_window": self.liveness.session_window,
            "mcp_servers": sorted(self.mcp_servers),
        }


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
