"""Ralph constants: file names, sandbox defaults, sentinels, and exit codes."""

from __future__ import annotations

import re
from pathlib import Path

PACKAGE_DOCKER_DIR = Path(__file__).resolve().parent / "docker"

# ---------------------------------------------------------------------------
# Workspace files
# ---------------------------------------------------------------------------

TASK_LIST_FILE = "prd.json"
PROGRESS_LOG_FILE = "progress.txt"
TOOLS_DOC_FILE = "RALPH_TOOLS.md"
POLICY_RELATIVE_PATH = Path(".ralph") / "policy.yaml"
ORCHESTRATOR_LOG_RELATIVE_PATH = Path("ralph") / "orchestrator.log"

BOOTSTRAP_TASK_LIST: tuple[dict[str, object], ...] = (
    {
        "feature": "Generate PRD",
        "description": (
            "Analyze the project description and create detailed feature "
            "entries in this prd.json file"
        ),
        "tested": False,
    },
)

# ---------------------------------------------------------------------------
# Loop
# ---------------------------------------------------------------------------

DEFAULT_MAX_ITERATIONS = 50
COMPLETION_SENTINEL = "<promise>COMPLETE</promise>"
LOOP_STATES = ("running", "completed_early", "exhausted_budget", "interrupted")

# ---------------------------------------------------------------------------
# Worktrees
# ---------------------------------------------------------------------------

WORKTREE_BRANCH_PREFIX = "ralph-"
WORKTREE_BRANCH_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
WORKTREE_BRANCH_PATTERN = re.compile(r"ralph-[0-9]+")
LEASE_STATUSES = ("active", "merged", "preserved", "abandoned")
DEFAULT_MAIN_BRANCH = "main"

# ---------------------------------------------------------------------------
# Sandbox
# ---------------------------------------------------------------------------

SANDBOX_OVERRIDES = ("auto", "container", "bare")
SANDBOX_MODES = ("container", "bare")
SANDBOX_MODE_LABELS = {"container": "Docker", "bare": "Bare"}
CONSENT_PHRASE = "I accept the risk"
DEFAULT_SANDBOX_IMAGE = "ralph-claude"
DEFAULT_SANDBOX_PROBE_TIMEOUT_SECONDS = 10.0
CONTAINER_WORKSPACE_DIR = "/workspace"
CONTAINER_HOME_DIR = "/root"

# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------

DEFAULT_AGENT_COMMAND = "claude"
DEFAULT_AGENT_FLAGS = ("--dangerously-skip-permissions",)
DEFAULT_AGENT_CREDENTIAL_DIR = "~/.claude"
DEFAULT_AGENT_CREDENTIAL_FILE = "~/.claude.json"
AGENT_MISSING_RETURNCODE = 127

# Lockfile -> package manager, checked in order.
PACKAGE_MANAGER_LOCKFILES = (
    ("bun.lockb", "bun"),
    ("pnpm-lock.yaml", "pnpm"),
    ("yarn.lock", "yarn"),
    ("package-lock.json", "npm"),
)
UNKNOWN_PACKAGE_MANAGER = "unknown"

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------

EXIT_OK = 0
EXIT_PRECONDITION = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130
