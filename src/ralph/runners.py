from __future__ import annotations

import os
import subprocess
from pathlib import Path

from ralph.constants import (
    AGENT_MISSING_RETURNCODE,
    CONTAINER_HOME_DIR,
    CONTAINER_WORKSPACE_DIR,
)
from ralph.models import AgentResult, RalphPolicy, SandboxDecision
from ralph.utils import _append_log, _compact_log_text, _git_common_dir


def _expand(path_text: str) -> Path:
    return Path(os.path.expandvars(os.path.expanduser(path_text)))


def _credential_mounts(policy: RalphPolicy) -> list[str]:
    mounts: list[str] = []
    for raw in (policy.credential_dir, policy.credential_file):
        host_path = _expand(raw)
        if not host_path.exists():
            continue
        target = f"{CONTAINER_HOME_DIR}/{host_path.name}"
        mounts.extend(["-v", f"{host_path}:{target}:ro"])
    return mounts


def build_agent_command(
    decision: SandboxDecision,
    workdir: Path,
    prompt: str,
    policy: RalphPolicy,
    *,
    git_common_dir: Path | None = None,
) -> list[str]:
    """Return the argv that runs one agent iteration.

    In container mode the worktree is mounted read-write at ``/workspace`` and
    the agent credentials read-only under ``/root``. The repository's shared
    git directory is mounted at its host path so commits made inside the
    container land on the worktree branch.
    """
    agent_args = [*policy.agent_flags, "-p", prompt]
    if not decision.containerized:
        return [policy.agent_command, *agent_args]

    command = [
        "docker",
        "run",
        "--rm",
        "-i",
        "-v",
        f"{workdir}:{CONTAINER_WORKSPACE_DIR}",
    ]
    command.extend(_credential_mounts(policy))
    if git_common_dir is not None:
        command.extend(["-v", f"{git_common_dir}:{git_common_dir}"])
    command.extend(["-w", CONTAINER_WORKSPACE_DIR, policy.image])
    command.extend(agent_args)
    return command


def run_agent(
    decision: SandboxDecision,
    workdir: Path,
    prompt: str,
    policy: RalphPolicy,
) -> AgentResult:
    """Run the agent once and wait for it, however long it takes.

    stdout and stderr are captured as one stream. A non-zero exit is an
    ordinary result; an agent that cannot be started yields return code 127
    with the error text as output.
    """
    git_common_dir = _git_common_dir(workdir) if decision.containerized else None
    command = build_agent_command(
        decision,
        workdir,
        prompt,
        policy,
        git_common_dir=git_common_dir,
    )
    _append_log(
        workdir,
        f"agent start mode={decision.mode} workdir={workdir} argv={command[:-1]} <prompt>",
    )
    try:
        proc = subprocess.run(
            command,
            cwd=workdir,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            errors="replace",
            check=False,
        )
    except (FileNotFoundError, OSError) as exc:
        message = f"agent could not be started ({command[0]}): {exc}"
        _append_log(workdir, f"agent execution error: {exc}")
        return AgentResult(returncode=AGENT_MISSING_RETURNCODE, output=message)

    output = proc.stdout or ""
    _append_log(
        workdir,
        f"agent exit returncode={proc.returncode} output={_compact_log_text(output)}",
    )
    return AgentResult(returncode=proc.returncode, output=output)
