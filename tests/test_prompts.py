from __future__ import annotations

from pathlib import Path

from ralph.constants import COMPLETION_SENTINEL
from ralph.models import RunConfig
from ralph.prompts import PROMPT_SECTION_ORDER, build_prompt, load_tools_doc, prompt_sections


def test_sections_follow_fixed_order() -> None:
    config = RunConfig(bootstrap_description="Build a CLI timer")
    names = [name for name, _text in prompt_sections(config, "pnpm", "run `make test`")]
    assert names == list(PROMPT_SECTION_ORDER)


def test_bootstrap_section_only_with_description() -> None:
    names = [name for name, _text in prompt_sections(RunConfig(), "npm")]
    assert "bootstrap" not in names


def test_prompt_references_task_list_and_progress_log() -> None:
    prompt = build_prompt(RunConfig(), "npm")
    assert prompt.startswith("@prd.json @progress.txt\n")


def test_prompt_injects_package_manager() -> None:
    prompt = build_prompt(RunConfig(), "bun")
    assert "Use `bun` for all package operations" in prompt


def test_bootstrap_description_is_embedded_verbatim() -> None:
    description = "A kanban board.\n  - drag & drop\n  - <dark mode>"
    prompt = build_prompt(RunConfig(bootstrap_description=description), "npm")
    assert description in prompt
    assert prompt.index(description) < prompt.index("## Instructions")
    assert "populate prd.json" in prompt


def test_tools_doc_embedded_in_full() -> None:
    tools_doc = "# Tools\n\nRun `just check` before committing.\n"
    prompt = build_prompt(RunConfig(), "npm", tools_doc)
    assert "# Tools\n\nRun `just check` before committing." in prompt
    assert "No RALPH_TOOLS.md found" not in prompt


def test_missing_tools_doc_falls_back_to_discovery() -> None:
    prompt = build_prompt(RunConfig(), "npm")
    assert "No RALPH_TOOLS.md found. Discover test/build commands" in prompt


def test_instructions_and_sentinel_always_last() -> None:
    prompt = build_prompt(RunConfig(), "yarn")
    for step in ("1. ", "2. ", "3. ", "4. ", "5. "):
        assert step in prompt
    assert "ONLY WORK ON A SINGLE FEATURE." in prompt
    assert prompt.endswith(COMPLETION_SENTINEL)


def test_build_prompt_is_deterministic() -> None:
    config = RunConfig(bootstrap_description="x")
    assert build_prompt(config, "npm", "doc") == build_prompt(config, "npm", "doc")


def test_load_tools_doc(tmp_path: Path) -> None:
    assert load_tools_doc(tmp_path) is None
    (tmp_path / "RALPH_TOOLS.md").write_text("   \n", encoding="utf-8")
    assert load_tools_doc(tmp_path) is None
    (tmp_path / "RALPH_TOOLS.md").write_text("use make\n", encoding="utf-8")
    assert load_tools_doc(tmp_path) == "use make\n"
