"""Bounded iteration loop with completion-sentinel detection.

States: ``running`` -> ``completed_early`` | ``exhausted_budget`` |
``interrupted``. Cancellation is cooperative: a SIGINT/SIGTERM received while
the agent runs is recorded, the agent (same process group) is left to react
to the signal itself, and the loop stops before starting the next cycle.
"""

from __future__ import annotations

import signal
import sys
import threading
from types import FrameType
from typing import Any, Callable

from ralph import progress
from ralph.constants import COMPLETION_SENTINEL
from ralph.models import AgentResult, IterationRecord, LoopResult, RunConfig, WorktreeLease
from ralph.utils import _append_log, _compact_log_text

BuildPromptFn = Callable[[int], str]
InvokeFn = Callable[[str], AgentResult]
EchoFn = Callable[[str], Any]


class InterruptGuard:
    """Record SIGINT/SIGTERM instead of raising while the loop is running.

    A second signal raises ``KeyboardInterrupt`` so the operator can always
    break out. Previous handlers are restored on exit.
    """

    def __init__(self, signals: tuple[int, ...] = (signal.SIGINT, signal.SIGTERM)) -> None:
        self._signals = signals
        self._previous: dict[int, Any] = {}
        self.requested = False
        self.signum: int | None = None

    def request(self, signum: int = signal.SIGINT) -> None:
        self.requested = True
        self.signum = signum

    def _handle(self, signum: int, _frame: FrameType | None) -> None:
        if self.requested:
            raise KeyboardInterrupt
        self.request(signum)
        print(
            "\nralph: WARN interrupted! stopping once the current iteration returns "
            "(interrupt again to abort immediately)",
            file=sys.stderr,
        )

    def __enter__(self) -> "InterruptGuard":
        if threading.current_thread() is threading.main_thread():
            for signum in self._signals:
                self._previous[signum] = signal.signal(signum, self._handle)
        return self

    def __exit__(self, *_exc: object) -> None:
        for signum, handler in self._previous.items():
            signal.signal(signum, handler)
        self._previous.clear()


def completion_detected(raw_output: str) -> bool:
    return COMPLETION_SENTINEL in raw_output


def run_iterations(
    config: RunConfig,
    lease: WorktreeLease,
    *,
    build: BuildPromptFn,
    invoke: InvokeFn,
    interrupts: InterruptGuard | None = None,
    echo: EchoFn = print,
) -> LoopResult:
    """Run at most ``config.max_iterations`` agent invocations."""
    result = LoopResult(state="running")
    budget = config.max_iterations
    echo(f"ralph: starting loop ({budget} iterations max)")

    for index in range(1, budget + 1):
        if interrupts is not None and interrupts.requested:
            break
        echo(f"ralph: === Iteration {index}/{budget} ===")
        prompt = build(index)
        agent_result = invoke(prompt)
        echo(agent_result.output)

        record = IterationRecord(
            index=index,
            raw_output=agent_result.output,
            completion_detected=completion_detected(agent_result.output),
            returncode=agent_result.returncode,
        )
        result.records.append(record)
        progress.append_iteration(lease, record, max_iterations=budget)
        _append_log(
            lease.main_repo,
            f"iteration {index}/{budget} exit={record.returncode} "
            f"completion={record.completion_detected} output={_compact_log_text(record.raw_output, 120)}",
        )
        if agent_result.returncode != 0:
            echo(f"ralph: WARN agent exited with code {agent_result.returncode}; continuing")

        if record.completion_detected:
            progress.append_completed(lease)
            echo(f"ralph: PRD complete after {index} iterations!")
            result.state = "completed_early"
            return result

    if interrupts is not None and interrupts.requested:
        progress.append_interrupted(lease)
        _append_log(lease.main_repo, f"loop interrupted after {result.iterations} iterations")
        result.state = "interrupted"
        return result

    progress.append_exhausted(lease, max_iterations=budget)
    echo(f"ralph: iteration budget of {budget} exhausted without completion")
    result.state = "exhausted_budget"
    return result
