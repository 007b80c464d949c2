import pytest

from vault_agent.exceptions import RemoteOperationError
from vault_agent.prompts import PromptBuilder, compose_user_prompt, load_base_prompt, parse_skill
from vault_agent.protocol import AgentContext


class DictVault:
    def __init__(self, files: dict[str, str]):
        self.files = files
        self.reads: list[str] = []

    async def read(self, path: str) -> str:
        self.reads.append(path)
        if path not in self.files:
            raise RemoteOperationError(f"File not found: {path}", code="NOT_FOUND")
        return self.files[path]

    async def glob(self, pattern: str) -> list[str]:
        return sorted(p for p in self.files if p.startswith(".claude/skills/"))


def test_base_prompt_ships_with_package():
    prompt = load_base_prompt()
    assert "vault_read" in prompt
    assert "vault_edit" in prompt


def test_skill_description_from_heading_or_frontmatter():
    assert parse_skill(".claude/skills/weekly.md", "# Weekly review\n\nSteps").description == "Weekly review"

    skill = parse_skill(".claude/skills/tidy.md", "---\ndescription: Tidy the inbox\n---\n\nBody")
    assert skill.name == "tidy"
    assert skill.description == "Tidy the inbox"

    assert parse_skill("plain.md", "no heading").description == "Custom skill: plain"


def test_context_prefixes_wrap_prompt():
    assert compose_user_prompt("hi", None) == "hi"
    assert compose_user_prompt("hi", AgentContext(current_file="a.md")) == "[Currently viewing: a.md]\n\nhi"
    assert compose_user_prompt("hi", AgentContext(selection="x")) == '[Selected text: "x"]\n\nhi'


@pytest.mark.asyncio
async def test_build_includes_vault_instructions_and_skills():
    vault = DictVault(
        {
            "CLAUDE.md": "Use British spelling.",
            ".claude/skills/weekly.md": "# Weekly review\n\nCollect the week's notes.",
        }
    )

    prompt = await PromptBuilder(base_prompt="BASE").build(vault, custom_prompt="Be terse.")

    assert prompt.startswith("Be terse.\n\nBASE\n\n## Vault-Specific Instructions (from CLAUDE.md)")
    assert "Use British spelling." in prompt
    assert "Additional Instructions" not in prompt
    assert "### Skill: weekly\nWeekly review" in prompt
    assert vault.reads == ["CLAUDE.md", ".claude/instructions.md", ".claude/skills/weekly.md"]


@pytest.mark.asyncio
async def test_build_without_discovery_or_vault():
    vault = DictVault({"CLAUDE.md": "ignored"})

    assert await PromptBuilder(base_prompt="BASE", discover=False).build(vault) == "BASE"
    assert await PromptBuilder(base_prompt="BASE").build(None, custom_prompt="   ") == "BASE"
    assert vault.reads == []
