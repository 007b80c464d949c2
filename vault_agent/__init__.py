"""Vault Agent - a WebSocket bridge between an LLM tool loop and a remote document vault."""

__version__ = "0.1.0"

from vault_agent.config import Config

__all__ = ["Config", "__version__"]
