from __future__ import annotations

import argparse
import sys
from pathlib import Path

from ralph.config import build_run_config, load_policy
from ralph.constants import (
    CONSENT_PHRASE,
    DEFAULT_MAX_ITERATIONS,
    EXIT_INTERRUPTED,
    EXIT_OK,
    EXIT_PRECONDITION,
    EXIT_USAGE,
    PROGRESS_LOG_FILE,
    TASK_LIST_FILE,
    TOOLS_DOC_FILE,
)
from ralph.loop import InterruptGuard, run_iterations
from ralph.merge import parse_merge_choice, print_branch_summary, resolve
from ralph.models import (
    ConsentDeclinedError,
    PreconditionError,
    RalphPolicy,
    RunConfig,
    SandboxDecision,
    VersionControlError,
    WorktreeLease,
)
from ralph.progress import (
    append_interrupted,
    prepare_task_list,
    progress_log_path,
    write_progress_header,
)
from ralph.prompts import build_prompt, load_tools_doc
from ralph.runners import run_agent
from ralph.sandbox import decide_sandbox, docker_available, ensure_sandbox_image
from ralph.utils import _append_log, _resolve_repo_root, detect_package_manager
from ralph.worktrees import (
    is_dirty,
    is_linked_worktree,
    list_existing,
    resolve_main_branch,
    select_worktree,
)


def _ask(prompt: str) -> str:
    try:
        return input(prompt)
    except EOFError:
        return ""


def _warn(message: str) -> None:
    print(f"ralph: WARN {message}", file=sys.stderr)


def _error(message: str) -> None:
    print(f"ralph: ERROR {message}", file=sys.stderr)


def _resolve_iterations(args: argparse.Namespace) -> int | None:
    if args.iterations is not None:
        return int(args.iterations)
    legacy = args.legacy_iterations
    if legacy is None:
        return None
    if legacy.isdigit():
        return int(legacy)
    _warn(f"ignoring unrecognized argument '{legacy}'")
    return None


def _preflight(start: Path) -> Path:
    main_repo = _resolve_repo_root(start)
    if main_repo is None:
        raise PreconditionError("not a git repository")
    if is_linked_worktree(main_repo):
        _warn("running from within a worktree")
    if is_dirty(main_repo):
        _warn("working directory has uncommitted changes")
    return main_repo


def _require_task_list(main_repo: Path, config: RunConfig) -> None:
    if config.bootstrap:
        return
    if not (main_repo / TASK_LIST_FILE).is_file():
        raise PreconditionError(
            f'no {TASK_LIST_FILE} found. Create one or use --init "description"'
        )


def _choose_sandbox(config: RunConfig, policy: RalphPolicy) -> SandboxDecision:
    runtime_available = (
        docker_available(policy) if config.sandbox_override != "bare" else False
    )
    decision = decide_sandbox(
        config.sandbox_override,
        runtime_available=runtime_available,
        ask=_ask,
    )
    if decision.containerized:
        ensure_sandbox_image(policy)
        print("ralph: using Docker sandbox")
    else:
        _warn("using bare mode (no sandbox)")
    return decision


def _establish_lease(main_repo: Path) -> WorktreeLease:
    existing = list(list_existing(main_repo))
    answer = ""
    if existing:
        print("ralph: existing ralph worktrees:")
        for path, branch in existing:
            print(f"  {path} [{branch}]")
        print("")
        answer = _ask("Enter path to use, or press Enter for [new]: ")
    lease = select_worktree(main_repo, answer)
    print(f"ralph: working in: {lease.path}")
    return lease


def _report_preserved(lease: WorktreeLease | None, *, status: str = "preserved") -> None:
    if lease is None:
        return
    lease.status = status
    _append_log(lease.main_repo, f"worktree {status} path={lease.path} branch={lease.branch}")
    _warn(f"worktree preserved at: {lease.path}")
    _warn(f"to clean up: git worktree remove {lease.path}")


def _cmd_run(args: argparse.Namespace) -> int:
    iterations = _resolve_iterations(args)
    if iterations is not None and iterations <= 0:
        _error("--iterations must be > 0")
        return EXIT_USAGE

    lease: WorktreeLease | None = None
    try:
        main_repo = _preflight(Path(args.repo).expanduser().resolve())
        policy = load_policy(main_repo)
        config = build_run_config(
            policy,
            max_iterations=iterations,
            bootstrap_description=args.init,
            sandbox_override=args.sandbox_override,
        )
        _require_task_list(main_repo, config)
        decision = _choose_sandbox(config, policy)

        lease = _establish_lease(main_repo)
        active_lease = lease
        prepare_task_list(active_lease, config)
        write_progress_header(active_lease, decision)
        _append_log(
            main_repo,
            f"run start worktree={active_lease.path} branch={active_lease.branch} "
            f"mode={decision.mode} max_iterations={config.max_iterations}",
        )

        package_manager = detect_package_manager(active_lease.path)
        print(f"ralph: package manager: {package_manager}")
        tools_doc = load_tools_doc(main_repo)
        if tools_doc is not None:
            print(f"ralph: loaded {TOOLS_DOC_FILE}")

        with InterruptGuard() as interrupts:
            outcome = run_iterations(
                config,
                active_lease,
                build=lambda _index: build_prompt(config, package_manager, tools_doc),
                invoke=lambda prompt: run_agent(decision, active_lease.path, prompt, policy),
                interrupts=interrupts,
            )
        _append_log(
            main_repo,
            f"run loop finished state={outcome.state} iterations={outcome.iterations}",
        )
        if outcome.state == "interrupted":
            _report_preserved(active_lease)
            return EXIT_INTERRUPTED

        print("")
        print("ralph: loop finished")
        print("")
        main_branch = active_lease.base_branch or resolve_main_branch(main_repo)
        print_branch_summary(active_lease, main_branch)
        choice = parse_merge_choice(_ask(f"Merge to {main_branch}? [y/n/i(nspect)] "))
        resolve(active_lease, main_branch, choice)
        return EXIT_OK
    except (PreconditionError, ConsentDeclinedError) as exc:
        _error(str(exc))
        return EXIT_PRECONDITION
    except VersionControlError as exc:
        _error(str(exc))
        if lease is not None and lease.path.exists():
            _report_preserved(lease, status="abandoned")
        return EXIT_PRECONDITION
    except KeyboardInterrupt:
        print("", file=sys.stderr)
        _warn("interrupted!")
        if lease is not None and progress_log_path(lease).exists():
            append_interrupted(lease)
        _report_preserved(lease)
        return EXIT_INTERRUPTED


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ralph",
        description=(
            "Run a coding agent in a loop against an isolated git worktree until "
            f"{TASK_LIST_FILE} is complete or the iteration budget is spent."
        ),
        epilog=(
            f"files: {TASK_LIST_FILE} is the task list (required unless using --init); "
            f"{TOOLS_DOC_FILE} holds optional project-specific instructions; "
            f"{PROGRESS_LOG_FILE} is written in the worktree. "
            "If Docker is available the agent runs in a sandboxed container. Without "
            f"Docker you must type '{CONSENT_PHRASE}' to run with "
            "--dangerously-skip-permissions on your host."
        ),
    )
    parser.add_argument(
        "--init",
        metavar="DESCRIPTION",
        default=None,
        help="Bootstrap mode: generate the task list from a project description.",
    )
    parser.add_argument(
        "-n",
        "--iterations",
        type=int,
        default=None,
        help=f"Maximum number of iterations (default: {DEFAULT_MAX_ITERATIONS}, must be > 0).",
    )
    sandbox_group = parser.add_mutually_exclusive_group()
    sandbox_group.add_argument(
        "--docker",
        dest="sandbox_override",
        action="store_const",
        const="container",
        help="Force Docker mode (error if unavailable).",
    )
    sandbox_group.add_argument(
        "--no-docker",
        dest="sandbox_override",
        action="store_const",
        const="bare",
        help="Force bare mode (requires consent).",
    )
    parser.add_argument(
        "--repo",
        default=".",
        help="Path inside the git repository to work on (default: current directory).",
    )
    parser.add_argument(
        "legacy_iterations",
        nargs="?",
        default=None,
        metavar="N",
        help="Maximum number of iterations (same as -n).",
    )
    parser.set_defaults(sandbox_override="auto")
    parser.set_defaults(handler=_cmd_run)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return EXIT_USAGE
    return int(handler(args))
