from __future__ import annotations

from pathlib import Path

from ralph.constants import (
    COMPLETION_SENTINEL,
    PROGRESS_LOG_FILE,
    TASK_LIST_FILE,
    TOOLS_DOC_FILE,
)
from ralph.models import RunConfig
from ralph.utils import _safe_read_text

PROMPT_SECTION_ORDER = ("files", "package_manager", "bootstrap", "tools", "instructions")


def load_tools_doc(main_repo: Path) -> str | None:
    """Return the project instructions document, or None when absent or empty."""
    text = _safe_read_text(main_repo / TOOLS_DOC_FILE)
    if text is None or not text.strip():
        return None
    return text


def _files_section() -> str:
    return f"@{TASK_LIST_FILE} @{PROGRESS_LOG_FILE}\n"


def _package_manager_section(package_manager: str) -> str:
    return (
        "## Package Manager\n"
        f"Use `{package_manager}` for all package operations (install, test, build, etc).\n"
    )


def _bootstrap_section(description: str) -> str:
    return (
        "## Project Description\n"
        f"{description}\n"
        "\n"
        f"First, analyze this description and populate {TASK_LIST_FILE} with detailed feature entries.\n"
        "Then proceed to implement them one by one.\n"
    )


def _tools_section(tools_doc: str | None) -> str:
    if tools_doc is not None:
        return f"## Project Tools\n{tools_doc.rstrip()}\n"
    return (
        "## Project Tools\n"
        f"No {TOOLS_DOC_FILE} found. Discover test/build commands from package.json or project files.\n"
    )


def _instructions_section() -> str:
    return (
        "## Instructions\n"
        "1. Find the highest-priority incomplete feature (tested: false) - work ONLY on that\n"
        "2. Run tests/typechecks before committing (discover commands from project files)\n"
        f"3. Update {TASK_LIST_FILE}: set tested: true for completed features\n"
        f"4. Append your progress to {PROGRESS_LOG_FILE} - leave notes for next iteration\n"
        "5. Make a git commit for that feature\n"
        "\n"
        "ONLY WORK ON A SINGLE FEATURE.\n"
        f"If PRD is complete (all tested: true), output {COMPLETION_SENTINEL}"
    )


def prompt_sections(
    config: RunConfig,
    package_manager: str,
    tools_doc: str | None = None,
) -> list[tuple[str, str]]:
    sections = [
        ("files", _files_section()),
        ("package_manager", _package_manager_section(package_manager)),
    ]
    if config.bootstrap_description:
        sections.append(("bootstrap", _bootstrap_section(config.bootstrap_description)))
    sections.append(("tools", _tools_section(tools_doc)))
    sections.append(("instructions", _instructions_section()))
    return sections


def build_prompt(
    config: RunConfig,
    package_manager: str,
    tools_doc: str | None = None,
) -> str:
    """Assemble the per-iteration agent prompt.

    Sections always appear in ``PROMPT_SECTION_ORDER``; the bootstrap section
    is present only when the run has a bootstrap description.
    """
    return "\n".join(text for _name, text in prompt_sections(config, package_manager, tools_doc))
