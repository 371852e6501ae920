from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from ralph.constants import (
    DEFAULT_AGENT_COMMAND,
    DEFAULT_AGENT_CREDENTIAL_DIR,
    DEFAULT_AGENT_CREDENTIAL_FILE,
    DEFAULT_AGENT_FLAGS,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_SANDBOX_IMAGE,
    DEFAULT_SANDBOX_PROBE_TIMEOUT_SECONDS,
    POLICY_RELATIVE_PATH,
    SANDBOX_OVERRIDES,
)
from ralph.models import (
    PreconditionError,
    RalphPolicy,
    RunConfig,
    _coerce_float,
    _coerce_positive_int,
    _coerce_str_tuple,
)


def _load_policy_file(repo_root: Path) -> dict[str, Any]:
    policy_path = repo_root / POLICY_RELATIVE_PATH
    if not policy_path.exists():
        return {}
    try:
        loaded = yaml.safe_load(policy_path.read_text(encoding="utf-8"))
    except Exception:
        return {}
    if not isinstance(loaded, dict):
        return {}
    return loaded


def _section(policy: dict[str, Any], name: str) -> dict[str, Any]:
    value = policy.get(name)
    return value if isinstance(value, dict) else {}


def load_policy(repo_root: Path) -> RalphPolicy:
    """Read ``.ralph/policy.yaml`` from the main repository, filling in defaults."""
    policy = _load_policy_file(repo_root)
    sandbox = _section(policy, "sandbox")
    agent = _section(policy, "agent")

    image = str(sandbox.get("image", DEFAULT_SANDBOX_IMAGE) or "").strip()
    probe_timeout = _coerce_float(
        sandbox.get("probe_timeout_seconds", DEFAULT_SANDBOX_PROBE_TIMEOUT_SECONDS),
        default=DEFAULT_SANDBOX_PROBE_TIMEOUT_SECONDS,
    )
    if probe_timeout <= 0:
        probe_timeout = DEFAULT_SANDBOX_PROBE_TIMEOUT_SECONDS
    command = str(agent.get("command", DEFAULT_AGENT_COMMAND) or "").strip()

    return RalphPolicy(
        max_iterations=_coerce_positive_int(
            policy.get("max_iterations"), default=DEFAULT_MAX_ITERATIONS
        ),
        image=image or DEFAULT_SANDBOX_IMAGE,
        probe_timeout_seconds=probe_timeout,
        agent_command=command or DEFAULT_AGENT_COMMAND,
        agent_flags=_coerce_str_tuple(agent.get("flags"), default=DEFAULT_AGENT_FLAGS),
        credential_dir=str(agent.get("credential_dir") or DEFAULT_AGENT_CREDENTIAL_DIR),
        credential_file=str(agent.get("credential_file") or DEFAULT_AGENT_CREDENTIAL_FILE),
    )


def build_run_config(
    policy: RalphPolicy,
    *,
    max_iterations: int | None = None,
    bootstrap_description: str | None = None,
    sandbox_override: str = "auto",
) -> RunConfig:
    if sandbox_override not in SANDBOX_OVERRIDES:
        raise PreconditionError(
            f"sandbox override must be one of {', '.join(SANDBOX_OVERRIDES)}, got '{sandbox_override}'"
        )
    iterations = policy.max_iterations if max_iterations is None else int(max_iterations)
    if iterations <= 0:
        raise PreconditionError("iteration budget must be > 0")
    description = bootstrap_description if (bootstrap_description or "").strip() else None
    return RunConfig(
        max_iterations=iterations,
        bootstrap_description=description,
        sandbox_override=sandbox_override,
    )
