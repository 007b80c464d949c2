"""System prompt assembly.

The base instructions ship with the package. Vault-specific additions are
discovered through the VaultBridge at the start of every run:

  1. ``CLAUDE.md`` at the vault root
  2. ``.claude/instructions.md``
  3. skills under ``.claude/skills/*.md``

Anything missing or unreadable is skipped.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from vault_agent.exceptions import OperationError
from vault_agent.gateway import VaultBridge
from vault_agent.logging import get_logger
from vault_agent.protocol import AgentContext

log = get_logger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
SYSTEM_PROMPT_TEMPLATE = "system_prompt.md"

VAULT_INSTRUCTION_FILES = (
    ("CLAUDE.md", "Vault-Specific Instructions (from CLAUDE.md)"),
    (".claude/instructions.md", "Additional Instructions (from .claude/instructions.md)"),
)
SKILLS_GLOB = ".claude/skills/*.md"

_SKILLS_HEADER = (
    "## Custom Skills\n\n"
    "The user has defined the following custom skills. When they reference a skill by name "
    '(e.g., "run the weekly-review skill" or "/weekly-review"), follow the instructions in that skill:\n\n'
)


@dataclass
class Skill:
    name: str
    description: str
    content: str


def load_base_prompt(templates_dir: Path | str | None = None) -> str:
    path = Path(templates_dir or TEMPLATES_DIR) / SYSTEM_PROMPT_TEMPLATE
    return path.read_text(encoding="utf-8").strip()


def parse_skill(path: str, content: str) -> Skill:
    """Build a skill from its file; description comes from a heading or frontmatter."""
    name = path.rsplit("/", 1)[-1]
    if name.endswith(".md"):
        name = name[:-3]

    description = f"Custom skill: {name}"
    first_line = content.split("\n", 1)[0]
    if first_line.startswith("# "):
        description = first_line[2:].strip()
    elif first_line.startswith("---"):
        end = content.find("---", 4)
        if end > 0:
            try:
                frontmatter = yaml.safe_load(content[4:end]) or {}
            except yaml.YAMLError:
                log.warning("Invalid skill frontmatter", skill=name)
                frontmatter = {}
            if isinstance(frontmatter, dict) and frontmatter.get("description"):
                description = str(frontmatter["description"]).strip()
    return Skill(name=name, description=description, content=content)


def compose_user_prompt(prompt: str, context: AgentContext | None) -> str:
    """Prefix the prompt with what the user is currently looking at."""
    text = prompt
    if context is None:
        return text
    if context.current_file:
        text = f"[Currently viewing: {context.current_file}]\n\n{text}"
    if context.selection:
        text = f'[Selected text: "{context.selection}"]\n\n{text}'
    return text


class PromptBuilder:
    """Builds the system prompt for one run."""

    def __init__(self, base_prompt: str | None = None, discover: bool = True):
        self.base_prompt = base_prompt if base_prompt is not None else load_base_prompt()
        self.discover = discover

    async def _read_optional(self, vault: VaultBridge, path: str) -> str | None:
        try:
            content = await vault.read(path)
        except OperationError as e:
            log.debug("Optional vault file unavailable", path=path, code=e.code)
            return None
        return content if content.strip() else None

    async def load_skills(self, vault: VaultBridge) -> list[Skill]:
        try:
            paths = await vault.glob(SKILLS_GLOB)
        except OperationError as e:
            log.debug("No skills directory", code=e.code)
            return []

        skills: list[Skill] = []
        for path in paths:
            content = await self._read_optional(vault, path)
            if content is None:
                continue
            skill = parse_skill(path, content)
            log.info("Loaded skill", skill=skill.name)
            skills.append(skill)
        return skills

    async def build(self, vault: VaultBridge | None, custom_prompt: str | None = None) -> str:
        sections = [self.base_prompt]

        if self.discover and vault is not None:
            for path, title in VAULT_INSTRUCTION_FILES:
                content = await self._read_optional(vault, path)
                if content is not None:
                    log.info("Loaded vault instructions", path=path)
                    sections.append(f"## {title}\n\n{content}")

            skills = await self.load_skills(vault)
            if skills:
                body = "".join(
                    f"### Skill: {s.name}\n{s.description}\n\n```\n{s.content}\n```\n\n" for s in skills
                )
                sections.append((_SKILLS_HEADER + body).rstrip())

        system_prompt = "\n\n".join(sections)
        if custom_prompt and custom_prompt.strip():
            system_prompt = f"{custom_prompt.strip()}\n\n{system_prompt}"
        return system_prompt
