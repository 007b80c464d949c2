"""Tools package for Vault Agent."""

from vault_agent.tools.registry import Tool, ToolRegistry, ToolResult
from vault_agent.tools.vault import VAULT_TOOLS, VaultTool, vault_tools

__all__ = [
    "Tool",
    "ToolRegistry",
    "ToolResult",
    "VAULT_TOOLS",
    "VaultTool",
    "vault_tools",
]
