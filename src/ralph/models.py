"""Ralph data models: exceptions, dataclasses, and coercion helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ralph.constants import DEFAULT_MAX_ITERATIONS, LEASE_STATUSES, LOOP_STATES, SANDBOX_MODES


def _coerce_float(value: Any, *, default: float) -> float:
    try:
        return float(value)
    except Exception:
        return default


def _coerce_positive_int(value: Any, *, default: int) -> int:
    try:
        parsed = int(value)
    except Exception:
        return default
    return parsed if parsed > 0 else default


def _coerce_str_tuple(value: Any, *, default: tuple[str, ...]) -> tuple[str, ...]:
    if isinstance(value, str):
        value = value.split()
    if not isinstance(value, (list, tuple)):
        return default
    items = tuple(str(entry).strip() for entry in value if str(entry).strip())
    return items or default


class RalphError(RuntimeError):
    """Base class for fatal ralph errors."""


class PreconditionError(RalphError):
    """Raised when a run cannot start (no repository, task list or sandbox)."""


class ConsentDeclinedError(RalphError):
    """Raised when the operator does not accept bare-mode execution."""


class VersionControlError(RalphError):
    """Raised when a git operation the run depends on fails."""


@dataclass(frozen=True)
class RunConfig:
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    bootstrap_description: str | None = None
    sandbox_override: str = "auto"

    @property
    def bootstrap(self) -> bool:
        return bool(self.bootstrap_description)


@dataclass(frozen=True)
class RalphPolicy:
    max_iterations: int
    image: str
    probe_timeout_seconds: float
    agent_command: str
    agent_flags: tuple[str, ...]
    credential_dir: str
    credential_file: str


@dataclass(frozen=True)
class SandboxDecision:
    mode: str
    consent_given: bool = False

    def __post_init__(self) -> None:
        if self.mode not in SANDBOX_MODES:
            raise ValueError(f"unknown sandbox mode '{self.mode}'")
        if self.mode == "bare" and not self.consent_given:
            raise ValueError("bare mode requires operator consent")

    @property
    def containerized(self) -> bool:
        return self.mode == "container"


@dataclass
class WorktreeLease:
    """The isolated worktree owned by a run until it is resolved."""

    path: Path
    branch: str
    main_repo: Path
    base_branch: str = ""
    status: str = "active"

    def __post_init__(self) -> None:
        if self.status not in LEASE_STATUSES:
            raise ValueError(f"unknown lease status '{self.status}'")


@dataclass(frozen=True)
class AgentResult:
    returncode: int
    output: str


@dataclass(frozen=True)
class IterationRecord:
    index: int
    raw_output: str
    completion_detected: bool
    returncode: int = 0


@dataclass
class LoopResult:
    state: str
    records: list[IterationRecord] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.state not in LOOP_STATES:
            raise ValueError(f"unknown loop state '{self.state}'")

    @property
    def iterations(self) -> int:
        return len(self.records)
