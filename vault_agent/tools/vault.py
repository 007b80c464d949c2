"""Vault tools - every call is executed by the remote side through the VaultBridge."""

from typing import Any

from vault_agent.exceptions import OperationError
from vault_agent.gateway import VaultBridge
from vault_agent.logging import get_logger
from vault_agent.tools.registry import Tool, ToolResult

log = get_logger(__name__)

FOLDER_ICON = "\U0001F4C1"
FILE_ICON = "\U0001F4C4"


def truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


class VaultTool(Tool):
    """Base class for tools that need the session's VaultBridge."""

    timeout_seconds = None

    async def execute(self, _vault: VaultBridge | None = None, **kwargs: Any) -> ToolResult:
        if _vault is None:
            return ToolResult(success=False, error="No vault connection available")
        try:
            return ToolResult(content=await self.run(_vault, **kwargs))
        except OperationError as e:
            log.warning("Vault operation failed", tool=self.name, code=e.code, error=str(e))
            return ToolResult(success=False, error=str(e))

    async def run(self, vault: VaultBridge, **kwargs: Any) -> str:
        raise NotImplementedError


class VaultReadTool(VaultTool):
    name = "vault_read"
    description = (
        "Read the content of a note from the vault. Returns the full markdown content "
        "including frontmatter. Use this before editing any existing note."
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": 'Path relative to vault root, e.g. "folder/note.md" or "note.md"',
            },
        },
        "required": ["path"],
    }

    async def run(self, vault: VaultBridge, path: str, **kwargs: Any) -> str:
        return await vault.read(path)


class VaultWriteTool(VaultTool):
    name = "vault_write"
    description = (
        "Write content to a note. Creates the file if it does not exist, overwrites if it does. "
        "Parent folders are created automatically. Always read a note first before overwriting it."
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path relative to vault root"},
            "content": {"type": "string", "description": "Full markdown content to write"},
        },
        "required": ["path", "content"],
    }

    async def run(self, vault: VaultBridge, path: str, content: str, **kwargs: Any) -> str:
        await vault.write(path, content)
        return f"Successfully wrote {len(content)} characters to {path}"


class VaultEditTool(VaultTool):
    name = "vault_edit"
    description = (
        "Make precise edits to an existing note by replacing a specific string. More efficient "
        "than rewriting entire file. The old_string must match exactly (including whitespace)."
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path to the note to edit"},
            "old_string": {
                "type": "string",
                "description": "Exact text to find and replace (must be unique in file)",
            },
            "new_string": {"type": "string", "description": "Text to replace it with"},
        },
        "required": ["path", "old_string", "new_string"],
    }

    async def run(self, vault: VaultBridge, path: str, old_string: str, new_string: str, **kwargs: Any) -> str:
        await vault.edit(path, old_string, new_string)
        return f"Successfully edited {path}"


class VaultSearchTool(VaultTool):
    name = "vault_search"
    description = (
        "Search for notes by content or filename. Returns matching file paths with content "
        "snippets. Useful for finding relevant notes before reading them."
    )
    parameters = {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Search query - matches against filenames and content"},
            "limit": {"type": "number", "description": "Maximum results to return (default: 20)"},
        },
        "required": ["query"],
    }

    async def run(self, vault: VaultBridge, query: str, limit: int | None = None, **kwargs: Any) -> str:
        results = await vault.search(query, int(limit or 20))
        if not results:
            return "No matching notes found."
        formatted = "\n".join(f"- {r.path}: {truncate(r.snippet, 100)}" for r in results)
        return f"Found {len(results)} result(s):\n{formatted}"


class VaultGrepTool(VaultTool):
    name = "vault_grep"
    description = (
        "Search file contents using a regex pattern. More powerful than vault_search for "
        "pattern matching. Returns matching lines with context."
    )
    parameters = {
        "type": "object",
        "properties": {
            "pattern": {"type": "string", "description": "Regular expression pattern to search for"},
            "folder": {"type": "string", "description": "Folder to search in (empty for entire vault)"},
            "file_pattern": {
                "type": "string",
                "description": 'Glob pattern to filter files, e.g. "*.md" (default: all markdown files)',
            },
            "limit": {"type": "number", "description": "Maximum results to return (default: 50)"},
        },
        "required": ["pattern"],
    }

    async def run(
        self,
        vault: VaultBridge,
        pattern: str,
        folder: str | None = None,
        file_pattern: str | None = None,
        limit: int | None = None,
        **kwargs: Any,
    ) -> str:
        results = await vault.grep(pattern, folder or "", file_pattern or "*.md", int(limit or 50))
        if not results:
            return "No matches found."
        formatted = "\n".join(f"{r.path}:{r.line}: {truncate(r.content, 100)}" for r in results)
        return f"Found {len(results)} match(es):\n{formatted}"


class VaultGlobTool(VaultTool):
    name = "vault_glob"
    description = (
        "Find files matching a glob pattern. Use this to discover files by name pattern, e.g. "
        '"**/*.md" for all markdown files, "projects/*.md" for markdown in projects folder.'
    )
    parameters = {
        "type": "object",
        "properties": {
            "pattern": {
                "type": "string",
                "description": 'Glob pattern, e.g. "**/*.md", "daily/*.md", "projects/**/*"',
            },
        },
        "required": ["pattern"],
    }

    async def run(self, vault: VaultBridge, pattern: str, **kwargs: Any) -> str:
        files = await vault.glob(pattern)
        if not files:
            return "No files matched the pattern."
        formatted = "\n".join(f"- {f}" for f in files)
        return f"Found {len(files)} file(s):\n{formatted}"


class VaultListTool(VaultTool):
    name = "vault_list"
    description = 'List files and folders in a directory. Use empty string or "/" for vault root.'
    parameters = {
        "type": "object",
        "properties": {
            "folder": {
                "type": "string",
                "description": "Folder path relative to vault root, empty for root",
            },
        },
        "required": [],
    }

    async def run(self, vault: VaultBridge, folder: str | None = None, **kwargs: Any) -> str:
        folder = folder or ""
        items = await vault.list(folder)
        if not items:
            return f'Folder "{folder}" is empty.' if folder else "Vault is empty."
        formatted = "\n".join(
            f"- {FOLDER_ICON if item.type == 'folder' else FILE_ICON} {item.name}" for item in items
        )
        return f"Contents of {folder or 'vault root'}:\n{formatted}"


class VaultRenameTool(VaultTool):
    name = "vault_rename"
    description = (
        "Rename or move a note to a new path. Updates any internal links pointing to this file if possible."
    )
    parameters = {
        "type": "object",
        "properties": {
            "old_path": {"type": "string", "description": "Current path of the note"},
            "new_path": {"type": "string", "description": "New path for the note"},
        },
        "required": ["old_path", "new_path"],
    }

    async def run(self, vault: VaultBridge, old_path: str, new_path: str, **kwargs: Any) -> str:
        await vault.rename(old_path, new_path)
        return f"Renamed {old_path} → {new_path}"


class VaultDeleteTool(VaultTool):
    name = "vault_delete"
    description = (
        "Delete a note from the vault. The file will be moved to system trash. "
        "Use with caution - always confirm with user first before deleting."
    )
    parameters = {
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Path of the note to delete"},
        },
        "required": ["path"],
    }

    async def run(self, vault: VaultBridge, path: str, **kwargs: Any) -> str:
        await vault.delete(path)
        return f"Deleted {path}"


VAULT_TOOLS: tuple[type[VaultTool], ...] = (
    VaultReadTool,
    VaultWriteTool,
    VaultEditTool,
    VaultSearchTool,
    VaultGrepTool,
    VaultGlobTool,
    VaultListTool,
    VaultRenameTool,
    VaultDeleteTool,
)


def vault_tools() -> list[Tool]:
    return [tool_cls() for tool_cls in VAULT_TOOLS]
