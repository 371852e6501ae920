"""Isolated git worktrees on dedicated ``ralph-<timestamp>`` branches.

Each run works in a sibling directory ``<repo-name>-ralph-<timestamp>`` that is
linked to the main repository's history. The main checkout is never touched
until the merge step.
"""

from __future__ import annotations

import re
import shutil
import sys
from datetime import datetime
from pathlib import Path
from typing import Iterator

from ralph.constants import (
    DEFAULT_MAIN_BRANCH,
    WORKTREE_BRANCH_PATTERN,
    WORKTREE_BRANCH_PREFIX,
    WORKTREE_BRANCH_TIMESTAMP_FORMAT,
)
from ralph.models import VersionControlError, WorktreeLease
from ralph.utils import _append_log, _git_error_detail, _git_output, _run_git

_BRANCH_TOKEN_PATTERN = re.compile(r"ralph-\d{8}-\d{6}")


def _parse_worktree_porcelain(text: str) -> Iterator[tuple[Path, str]]:
    current_path: Path | None = None
    current_branch = ""
    for line in [*text.splitlines(), ""]:
        if line.startswith("worktree "):
            current_path = Path(line[len("worktree "):])
            current_branch = ""
        elif line.startswith("branch "):
            current_branch = line[len("branch "):].removeprefix("refs/heads/")
        elif not line.strip() and current_path is not None:
            yield (current_path, current_branch)
            current_path = None
            current_branch = ""


def _is_ralph_worktree(path: Path, branch: str) -> bool:
    return bool(
        WORKTREE_BRANCH_PATTERN.search(branch) or WORKTREE_BRANCH_PATTERN.search(path.name)
    )


def _linked_worktrees(main_repo: Path) -> Iterator[tuple[Path, str]]:
    result = _run_git(main_repo, ["worktree", "list", "--porcelain"])
    if result.returncode != 0:
        return
    main_resolved = main_repo.resolve()
    for path, branch in _parse_worktree_porcelain(result.stdout):
        if path.resolve() != main_resolved:
            yield (path, branch)


def list_existing(main_repo: Path) -> Iterator[tuple[Path, str]]:
    """Yield ``(path, branch)`` for every ralph worktree linked to ``main_repo``.

    Listing is best-effort: if git cannot list worktrees nothing is yielded.
    """
    for path, branch in _linked_worktrees(main_repo):
        if _is_ralph_worktree(path, branch):
            yield (path, branch)


def find_existing(main_repo: Path, path: Path) -> tuple[Path, str] | None:
    resolved = path.expanduser().resolve()
    for existing_path, branch in list_existing(main_repo):
        if existing_path.resolve() == resolved:
            return (resolved, branch)
    return None


def current_branch(repo: Path) -> str:
    return _git_output(repo, ["symbolic-ref", "--short", "-q", "HEAD"]) or ""


def resolve_main_branch(repo: Path) -> str:
    """Branch the isolated work merges back into.

    The branch checked out in the main repository wins, then ``origin/HEAD``,
    then ``main``.
    """
    branch = current_branch(repo)
    if branch:
        return branch
    remote_head = _git_output(repo, ["symbolic-ref", "-q", "refs/remotes/origin/HEAD"])
    if remote_head:
        return remote_head.removeprefix("refs/remotes/origin/")
    return DEFAULT_MAIN_BRANCH


def is_linked_worktree(path: Path) -> bool:
    git_dir = _git_output(path, ["rev-parse", "--git-dir"])
    if not git_dir:
        return False
    git_dir_path = Path(git_dir)
    if not git_dir_path.is_absolute():
        git_dir_path = path / git_dir_path
    return (git_dir_path / "commondir").is_file()


def is_dirty(repo: Path) -> bool:
    status = _git_output(repo, ["status", "--porcelain"])
    return bool(status)


def new_branch_name(now: datetime | None = None) -> str:
    stamp = (now or datetime.now()).strftime(WORKTREE_BRANCH_TIMESTAMP_FORMAT)
    return f"{WORKTREE_BRANCH_PREFIX}{stamp}"


def create_new(main_repo: Path, *, now: datetime | None = None) -> WorktreeLease:
    branch = new_branch_name(now)
    path = main_repo.parent / f"{main_repo.name}-{branch}"
    base_branch = resolve_main_branch(main_repo)

    print(f"ralph: creating worktree: {path}")
    result = _run_git(main_repo, ["worktree", "add", "-b", branch, str(path)])
    if result.returncode != 0:
        raise VersionControlError(
            f"git worktree add failed for {path}: {_git_error_detail(result)}"
        )
    _append_log(main_repo, f"worktree created path={path} branch={branch} base={base_branch}")
    return WorktreeLease(
        path=path,
        branch=branch,
        main_repo=main_repo,
        base_branch=base_branch,
    )


def _branch_from_directory(path: Path) -> str:
    match = _BRANCH_TOKEN_PATTERN.search(path.name)
    return match.group(0) if match else path.name


def resume(main_repo: Path, path: Path) -> WorktreeLease:
    """Adopt an existing ralph worktree without creating any branch.

    Only paths git lists as ralph worktrees of ``main_repo`` are accepted.
    """
    found = find_existing(main_repo, path)
    if found is None:
        raise VersionControlError(f"not a ralph worktree of {main_repo}: {path}")
    resolved, branch = found
    if not branch:
        branch = _branch_from_directory(resolved)
    _append_log(main_repo, f"worktree resumed path={resolved} branch={branch}")
    return WorktreeLease(
        path=resolved,
        branch=branch,
        main_repo=main_repo,
        base_branch=resolve_main_branch(main_repo),
    )


def select_worktree(
    main_repo: Path,
    answer: str | None,
    *,
    now: datetime | None = None,
) -> WorktreeLease:
    """Resume the worktree the operator typed, or create a new one.

    An empty answer, or a path that is not one of the listed ralph
    worktrees, means "new".
    """
    choice = (answer or "").strip()
    if choice:
        candidate = Path(choice).expanduser()
        if find_existing(main_repo, candidate) is not None:
            return resume(main_repo, candidate)
        print(f"ralph: WARN {candidate} is not a ralph worktree; creating a new one", file=sys.stderr)
    return create_new(main_repo, now=now)


def teardown(lease: WorktreeLease) -> None:
    """Remove the worktree directory and delete its branch.

    Only a directory git lists as a linked worktree of the main repository
    is removed, and only a ``ralph-`` branch is deleted. Failures of the
    individual removal steps are ignored; the worktree may already be gone.
    """
    main_repo = lease.main_repo
    resolved = lease.path.resolve()
    linked = any(path.resolve() == resolved for path, _branch in _linked_worktrees(main_repo))
    if linked:
        print(f"ralph: removing worktree: {lease.path}")
        _run_git(main_repo, ["worktree", "remove", "--force", str(lease.path)])
        if lease.path.exists():
            shutil.rmtree(lease.path, ignore_errors=True)
    elif lease.path.exists():
        print(f"ralph: WARN {lease.path} is not a linked worktree; leaving it in place", file=sys.stderr)
    _run_git(main_repo, ["worktree", "prune"])
    if WORKTREE_BRANCH_PATTERN.match(lease.branch) and lease.branch != current_branch(main_repo):
        _run_git(main_repo, ["branch", "-D", lease.branch])
    _append_log(main_repo, f"worktree removed path={lease.path} branch={lease.branch}")
