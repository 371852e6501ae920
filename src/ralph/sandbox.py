"""Sandbox selection: Docker container or bare host execution.

Bare mode runs the agent with permission prompts disabled directly on the
host, so it is only ever chosen after the operator types the exact consent
phrase. The decision itself is a pure function of the override, the probed
runtime availability and the operator's answer.
"""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import Callable

from ralph.constants import CONSENT_PHRASE, PACKAGE_DOCKER_DIR, SANDBOX_OVERRIDES
from ralph.models import (
    ConsentDeclinedError,
    PreconditionError,
    RalphPolicy,
    SandboxDecision,
)
from ralph.utils import _is_command_available, _probe_host_command

AskFn = Callable[[str], str]

CONSENT_PROMPT = f"Type '{CONSENT_PHRASE}' to continue: "


def docker_available(policy: RalphPolicy) -> bool:
    if not _is_command_available("docker"):
        return False
    ok, _status = _probe_host_command(["docker", "info"], timeout=policy.probe_timeout_seconds)
    return ok


def consent_accepted(answer: str | None) -> bool:
    return (answer or "").strip() == CONSENT_PHRASE


def _warn_bare_mode(reason: str) -> None:
    print("", file=sys.stderr)
    print(f"ralph: WARN {reason}. Running without process isolation.", file=sys.stderr)
    print(
        "ralph: WARN the agent will have full access to your system with "
        "--dangerously-skip-permissions.",
        file=sys.stderr,
    )
    print("", file=sys.stderr)


def _require_consent(ask: AskFn, *, reason: str) -> SandboxDecision:
    _warn_bare_mode(reason)
    answer = ask(CONSENT_PROMPT)
    if not consent_accepted(answer):
        raise ConsentDeclinedError("aborted. Install Docker for safer execution.")
    return SandboxDecision(mode="bare", consent_given=True)


def decide_sandbox(
    override: str,
    *,
    runtime_available: bool,
    ask: AskFn,
) -> SandboxDecision:
    """Choose the execution sandbox for the whole run.

    ``container`` fails when no runtime is available, ``bare`` always goes
    through the consent gate, and ``auto`` prefers the container and falls
    back to the consent gate otherwise.
    """
    if override not in SANDBOX_OVERRIDES:
        raise PreconditionError(f"unknown sandbox override '{override}'")
    if override == "container":
        if not runtime_available:
            raise PreconditionError("sandbox unavailable: Docker requested but not available")
        return SandboxDecision(mode="container")
    if override == "bare":
        return _require_consent(ask, reason="Bare mode requested")
    if runtime_available:
        return SandboxDecision(mode="container")
    return _require_consent(ask, reason="Docker not available")


def _image_exists(image: str) -> bool:
    try:
        result = subprocess.run(
            ["docker", "image", "inspect", image],
            check=False,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except (FileNotFoundError, OSError):
        return False
    return result.returncode == 0


def ensure_sandbox_image(policy: RalphPolicy, *, context_dir: Path = PACKAGE_DOCKER_DIR) -> bool:
    """Build the sandbox image once; returns True when a build was run."""
    if _image_exists(policy.image):
        return False
    print(f"ralph: building {policy.image} Docker image...")
    try:
        result = subprocess.run(
            ["docker", "build", "-t", policy.image, str(context_dir)],
            check=False,
        )
    except (FileNotFoundError, OSError) as exc:
        raise PreconditionError(f"sandbox unavailable: docker build could not start: {exc}") from exc
    if result.returncode != 0:
        raise PreconditionError(
            f"sandbox unavailable: docker build for {policy.image} exited with code {result.returncode}"
        )
    return True
