from __future__ import annotations

from typing import Any, Callable

from ralph.models import VersionControlError, WorktreeLease
from ralph.utils import _append_log, _git_error_detail, _git_output, _run_git
from ralph.worktrees import current_branch, teardown

EchoFn = Callable[[str], Any]


def branch_summary(lease: WorktreeLease, main_branch: str) -> tuple[str, str]:
    """Commits and ``--stat`` diff unique to the lease branch; empty on failure."""
    revision_range = f"{main_branch}..{lease.branch}"
    commits = _git_output(lease.main_repo, ["log", revision_range, "--oneline"]) or ""
    diffstat = _git_output(lease.main_repo, ["diff", "--stat", revision_range]) or ""
    return (commits, diffstat)


def print_branch_summary(lease: WorktreeLease, main_branch: str, *, echo: EchoFn = print) -> None:
    commits, diffstat = branch_summary(lease, main_branch)
    echo(f"ralph: changes in worktree vs {main_branch}:")
    echo(commits or "(no commits)")
    echo("")
    if diffstat:
        echo(diffstat)
        echo("")


def parse_merge_choice(answer: str | None) -> str:
    normalized = (answer or "").strip().lower()
    if normalized in {"y", "yes"}:
        return "accept"
    if normalized in {"i", "inspect"}:
        return "inspect"
    return "preserve"


def _merge_branch(lease: WorktreeLease, main_branch: str) -> None:
    if lease.branch == main_branch:
        raise VersionControlError(f"refusing to merge {main_branch} into itself")
    checked_out = current_branch(lease.main_repo)
    if checked_out != main_branch:
        raise VersionControlError(
            f"main repository has '{checked_out or 'detached HEAD'}' checked out, "
            f"expected '{main_branch}'; merge {lease.branch} manually"
        )
    result = _run_git(lease.main_repo, ["merge", "--no-ff", "--no-edit", lease.branch])
    if result.returncode != 0:
        _run_git(lease.main_repo, ["merge", "--abort"])
        _append_log(lease.main_repo, f"merge failed branch={lease.branch}: {_git_error_detail(result)}")
        raise VersionControlError(
            f"git merge {lease.branch} into {main_branch} failed: {_git_error_detail(result)}"
        )
    _append_log(lease.main_repo, f"merged branch={lease.branch} into={main_branch}")


def resolve(
    lease: WorktreeLease,
    main_branch: str,
    choice: str,
    *,
    echo: EchoFn = print,
) -> WorktreeLease:
    """Apply the operator's choice to the lease.

    Only ``accept`` touches the main repository: one ``--no-ff`` merge that
    is aborted on failure, followed by teardown of the worktree and branch.
    """
    if choice == "accept":
        _merge_branch(lease, main_branch)
        teardown(lease)
        lease.status = "merged"
        echo("ralph: merged and cleaned up!")
        return lease

    if choice == "inspect":
        echo(f"ralph: worktree at: {lease.path}")
        echo("ralph: inspect changes, then run:")
        echo(f"  cd {lease.main_repo}")
        echo(f"  git merge {lease.branch}")
        echo(f"  git worktree remove {lease.path}")
        return lease

    lease.status = "preserved"
    _append_log(lease.main_repo, f"worktree preserved path={lease.path} branch={lease.branch}")
    echo(f"ralph: worktree preserved at: {lease.path}")
    echo("ralph: to clean up later:")
    echo(f"  git worktree remove {lease.path}")
    echo(f"  git branch -D {lease.branch}")
    return lease
