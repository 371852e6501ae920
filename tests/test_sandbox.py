from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

import ralph.sandbox as sandbox_module
from ralph.constants import CONSENT_PHRASE
from ralph.models import ConsentDeclinedError, PreconditionError, RalphPolicy, SandboxDecision
from ralph.sandbox import consent_accepted, decide_sandbox, ensure_sandbox_image


def _policy() -> RalphPolicy:
    return RalphPolicy(
        max_iterations=50,
        image="ralph-claude",
        probe_timeout_seconds=1.0,
        agent_command="claude",
        agent_flags=("--dangerously-skip-permissions",),
        credential_dir="~/.claude",
        credential_file="~/.claude.json",
    )


def _never_ask(prompt: str) -> str:
    raise AssertionError(f"unexpected consent prompt: {prompt}")


def _completed_process(returncode: int = 0) -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(args=["stub"], returncode=returncode, stdout="", stderr="")


def test_consent_requires_exact_phrase() -> None:
    assert consent_accepted(CONSENT_PHRASE) is True
    assert consent_accepted(f"  {CONSENT_PHRASE}\n") is True
    assert consent_accepted("i accept the risk") is False
    assert consent_accepted("yes") is False
    assert consent_accepted("") is False
    assert consent_accepted(None) is False


def test_auto_prefers_container_without_prompting() -> None:
    decision = decide_sandbox("auto", runtime_available=True, ask=_never_ask)
    assert decision == SandboxDecision(mode="container", consent_given=False)


def test_forced_container_without_runtime_is_fatal() -> None:
    with pytest.raises(PreconditionError, match="sandbox unavailable"):
        decide_sandbox("container", runtime_available=False, ask=_never_ask)


def test_forced_bare_requires_consent_even_with_runtime() -> None:
    prompts: list[str] = []

    def _ask(prompt: str) -> str:
        prompts.append(prompt)
        return CONSENT_PHRASE

    decision = decide_sandbox("bare", runtime_available=True, ask=_ask)

    assert decision == SandboxDecision(mode="bare", consent_given=True)
    assert len(prompts) == 1
    assert CONSENT_PHRASE in prompts[0]


def test_autodetected_bare_fallback_also_requires_consent() -> None:
    with pytest.raises(ConsentDeclinedError):
        decide_sandbox("auto", runtime_available=False, ask=lambda _prompt: "")


def test_declined_consent_warns_on_stderr(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(ConsentDeclinedError):
        decide_sandbox("bare", runtime_available=False, ask=lambda _prompt: "no thanks")
    err = capsys.readouterr().err
    assert "--dangerously-skip-permissions" in err


def test_unknown_override_is_rejected() -> None:
    with pytest.raises(PreconditionError):
        decide_sandbox("vm", runtime_available=True, ask=_never_ask)


def test_docker_available_false_when_binary_missing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(sandbox_module, "_is_command_available", lambda _command: False)
    monkeypatch.setattr(
        sandbox_module,
        "_probe_host_command",
        lambda *_args, **_kwargs: (_ for _ in ()).throw(AssertionError("unexpected probe")),
    )
    assert sandbox_module.docker_available(_policy()) is False


def test_docker_available_uses_docker_info_probe(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    def _fake_probe(argv: list[str], *, timeout: float) -> tuple[bool, str]:
        captured["argv"] = argv
        captured["timeout"] = timeout
        return (False, "exit_1")

    monkeypatch.setattr(sandbox_module, "_is_command_available", lambda _command: True)
    monkeypatch.setattr(sandbox_module, "_probe_host_command", _fake_probe)

    assert sandbox_module.docker_available(_policy()) is False
    assert captured == {"argv": ["docker", "info"], "timeout": 1.0}


def test_ensure_image_skips_build_when_image_exists(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[list[str]] = []

    def _fake_run(argv: list[str], **_kwargs) -> subprocess.CompletedProcess[str]:
        calls.append(argv)
        return _completed_process(0)

    monkeypatch.setattr(sandbox_module.subprocess, "run", _fake_run)

    assert ensure_sandbox_image(_policy()) is False
    assert calls == [["docker", "image", "inspect", "ralph-claude"]]


def test_ensure_image_builds_from_packaged_dockerfile(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[list[str]] = []

    def _fake_run(argv: list[str], **_kwargs) -> subprocess.CompletedProcess[str]:
        calls.append(argv)
        return _completed_process(1 if argv[:3] == ["docker", "image", "inspect"] else 0)

    monkeypatch.setattr(sandbox_module.subprocess, "run", _fake_run)

    assert ensure_sandbox_image(_policy()) is True
    build = calls[-1]
    assert build[:4] == ["docker", "build", "-t", "ralph-claude"]
    assert (Path(build[4]) / "Dockerfile").is_file()


def test_ensure_image_build_failure_is_precondition_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        sandbox_module.subprocess,
        "run",
        lambda *_args, **_kwargs: _completed_process(1),
    )
    with pytest.raises(PreconditionError, match="docker build"):
        ensure_sandbox_image(_policy())
