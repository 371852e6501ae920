"""Workspace files: the task list seed and the append-only progress log."""

from __future__ import annotations

import json
import shutil
from pathlib import Path

from ralph.constants import (
    BOOTSTRAP_TASK_LIST,
    PROGRESS_LOG_FILE,
    SANDBOX_MODE_LABELS,
    TASK_LIST_FILE,
)
from ralph.models import IterationRecord, RunConfig, SandboxDecision, WorktreeLease
from ralph.utils import _compact_log_text, _local_now


def prepare_task_list(lease: WorktreeLease, config: RunConfig) -> Path:
    """Make sure the worktree has a task list for the agent to work from.

    Bootstrap runs get a single placeholder entry asking the agent to write
    the real list. Otherwise the main repository's task list is copied in
    when the worktree does not already carry one.
    """
    target = lease.path / TASK_LIST_FILE
    if config.bootstrap:
        print("ralph: bootstrap mode: the agent will generate the task list from the description")
        target.write_text(
            json.dumps(list(BOOTSTRAP_TASK_LIST), indent=2) + "\n",
            encoding="utf-8",
        )
        return target
    source = lease.main_repo / TASK_LIST_FILE
    if not target.exists() and source.is_file():
        shutil.copyfile(source, target)
    return target


def progress_log_path(lease: WorktreeLease) -> Path:
    return lease.path / PROGRESS_LOG_FILE


def _append(lease: WorktreeLease, text: str) -> None:
    with progress_log_path(lease).open("a", encoding="utf-8") as handle:
        handle.write(text)


def write_progress_header(lease: WorktreeLease, decision: SandboxDecision) -> Path:
    _append(
        lease,
        "# Ralph Progress Log\n"
        f"Started: {_local_now()}\n"
        f"Main repo: {lease.main_repo}\n"
        f"Worktree: {lease.path}\n"
        f"Mode: {SANDBOX_MODE_LABELS.get(decision.mode, decision.mode)}\n"
        "\n",
    )
    return progress_log_path(lease)


def append_iteration(lease: WorktreeLease, record: IterationRecord, *, max_iterations: int) -> None:
    completion = "yes" if record.completion_detected else "no"
    _append(
        lease,
        f"Iteration {record.index}/{max_iterations}: exit={record.returncode} "
        f"completion={completion} output: {_compact_log_text(record.raw_output)}\n",
    )


def append_completed(lease: WorktreeLease) -> None:
    _append(lease, f"Completed: {_local_now()}\n")


def append_interrupted(lease: WorktreeLease) -> None:
    _append(lease, f"Interrupted: {_local_now()}\n")


def append_exhausted(lease: WorktreeLease, *, max_iterations: int) -> None:
    _append(lease, f"Finished: {_local_now()} (iteration budget of {max_iterations} exhausted)\n")
