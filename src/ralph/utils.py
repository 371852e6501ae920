"""Ralph utility functions: process probes, git helpers, and the orchestrator log."""

from __future__ import annotations

import re
import shutil
import subprocess
from datetime import datetime, timezone
from pathlib import Path

from ralph.constants import (
    ORCHESTRATOR_LOG_RELATIVE_PATH,
    PACKAGE_MANAGER_LOCKFILES,
    UNKNOWN_PACKAGE_MANAGER,
)


# ---------------------------------------------------------------------------
# Host command probes
# ---------------------------------------------------------------------------


def _probe_host_command(argv: list[str], *, timeout: float) -> tuple[bool, str]:
    try:
        proc = subprocess.run(
            argv,
            check=False,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=timeout,
        )
    except (FileNotFoundError, OSError):
        return (False, "missing")
    except subprocess.TimeoutExpired:
        return (False, "timeout")
    return (
        proc.returncode == 0,
        "ok" if proc.returncode == 0 else f"exit_{proc.returncode}",
    )


def _is_command_available(command: str) -> bool:
    return shutil.which(command) is not None


def detect_package_manager(workdir: Path) -> str:
    for lockfile, manager in PACKAGE_MANAGER_LOCKFILES:
        if (workdir / lockfile).is_file():
            return manager
    return UNKNOWN_PACKAGE_MANAGER


# ---------------------------------------------------------------------------
# Timestamp and text helpers
# ---------------------------------------------------------------------------


def _utc_now() -> str:
    return (
        datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")
    )


def _local_now() -> str:
    return datetime.now().astimezone().strftime("%a %b %d %H:%M:%S %Z %Y")


def _compact_log_text(text: str, limit: int = 240) -> str:
    compact = " ".join(text.strip().split())
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


SECRET_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(?i)\b(api[_-]?key|token|secret|password)\b\s*[:=]\s*([^\s]+)"),
    re.compile(r"(?i)\b(authorization:\s*bearer)\s+([^\s]+)"),
    re.compile(r"\bsk-ant-[A-Za-z0-9_-]{10,}\b"),
    re.compile(r"\bsk-[A-Za-z0-9_-]{10,}\b"),
    re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,}\b"),
)


def _redact_sensitive_text(text: str) -> str:
    redacted = str(text)
    for pattern in SECRET_PATTERNS:
        redacted = pattern.sub(
            lambda match: f"{match.group(1)}=<redacted>" if match.groups() else "<redacted>",
            redacted,
        )
    return redacted


def _safe_read_text(path: Path) -> str | None:
    if not path.is_file():
        return None
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None


# ---------------------------------------------------------------------------
# Git helpers
# ---------------------------------------------------------------------------


def _run_git(repo_root: Path, args: list[str]) -> subprocess.CompletedProcess[str]:
    command = ["git", "-C", str(repo_root), *args]
    try:
        return subprocess.run(
            command,
            text=True,
            capture_output=True,
            check=False,
        )
    except FileNotFoundError as exc:
        return subprocess.CompletedProcess(command, 127, "", f"git not found: {exc}")
    except OSError as exc:
        return subprocess.CompletedProcess(command, 1, "", str(exc))


def _git_output(repo_root: Path, args: list[str]) -> str | None:
    result = _run_git(repo_root, args)
    if result.returncode != 0:
        return None
    return result.stdout.strip()


def _git_error_detail(result: subprocess.CompletedProcess[str]) -> str:
    detail = (result.stderr or result.stdout or "").strip()
    if not detail:
        detail = f"git exited with code {result.returncode}"
    if len(detail) > 500:
        detail = f"{detail[:497]}..."
    return detail


def _resolve_repo_root(start: Path) -> Path | None:
    toplevel = _git_output(start, ["rev-parse", "--show-toplevel"])
    if not toplevel:
        return None
    return Path(toplevel).resolve()


def _git_common_dir(repo_root: Path) -> Path | None:
    raw = _git_output(repo_root, ["rev-parse", "--git-common-dir"])
    if not raw:
        return None
    common_dir = Path(raw)
    if not common_dir.is_absolute():
        common_dir = repo_root / common_dir
    return common_dir.resolve()


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def _append_log(repo_root: Path, message: str) -> None:
    """Append to the orchestrator log kept inside the git directory.

    The log lives under ``<git-common-dir>/ralph`` so that neither the main
    checkout nor any worktree gains untracked files.
    """
    common_dir = _git_common_dir(repo_root)
    if common_dir is None:
        return
    log_path = common_dir / ORCHESTRATOR_LOG_RELATIVE_PATH
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with log_path.open("a", encoding="utf-8") as handle:
        handle.write(f"{_utc_now()} {_redact_sensitive_text(message)}\n")
