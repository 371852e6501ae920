from __future__ import annotations

import json
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Callable

import pytest

from ralph.models import RalphPolicy

GitFn = Callable[..., str]

FAKE_AGENT_SOURCE = '''\
import os
import subprocess
import sys
from pathlib import Path

counter = Path(os.environ["FAKE_AGENT_COUNTER"])
calls = int(counter.read_text()) + 1 if counter.exists() else 1
counter.write_text(str(calls))

prompt = sys.argv[sys.argv.index("-p") + 1] if "-p" in sys.argv else ""
with Path(os.environ["FAKE_AGENT_PROMPTS"]).open("a") as handle:
    handle.write(prompt + "\\n---\\n")

print(f"agent call {calls} in {os.getcwd()}")
print("agent diagnostics on stderr", file=sys.stderr)

if os.environ.get("FAKE_AGENT_COMMIT") == "1":
    feature = Path(f"feature_{calls}.txt")
    feature.write_text(f"feature {calls}\\n")
    subprocess.run(["git", "add", feature.name], check=True)
    subprocess.run(["git", "commit", "-q", "-m", f"feature {calls}"], check=True)

complete_at = int(os.environ.get("FAKE_AGENT_COMPLETE_AT", "0") or 0)
if complete_at and calls >= complete_at:
    print("all features tested <promise>COMPLETE</promise> bye")

sys.exit(int(os.environ.get("FAKE_AGENT_EXIT", "0") or 0))
'''


def _run_git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", "-C", str(repo), *args],
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


@pytest.fixture
def git() -> GitFn:
    return _run_git


@pytest.fixture
def git_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Ralph Test")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "ralph@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Ralph Test")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "ralph@example.com")
    return home


@pytest.fixture
def main_repo(tmp_path: Path, git_env: Path) -> Path:
    if shutil.which("git") is None:  # pragma: no cover
        pytest.skip("git is not installed")
    repo = tmp_path / "work" / "project"
    repo.mkdir(parents=True)
    repo = repo.resolve()
    _run_git(repo, "init", "-q")
    _run_git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    (repo / "README.md").write_text("# project\n", encoding="utf-8")
    (repo / "prd.json").write_text(
        json.dumps([{"feature": "Say hello", "tested": False}], indent=2) + "\n",
        encoding="utf-8",
    )
    _run_git(repo, "add", ".")
    _run_git(repo, "commit", "-q", "-m", "initial")
    return repo


@pytest.fixture
def fake_agent(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> dict[str, Path]:
    script = tmp_path / "fake_agent.py"
    script.write_text(FAKE_AGENT_SOURCE, encoding="utf-8")
    counter = tmp_path / "agent_calls.txt"
    prompts = tmp_path / "agent_prompts.txt"
    monkeypatch.setenv("FAKE_AGENT_COUNTER", str(counter))
    monkeypatch.setenv("FAKE_AGENT_PROMPTS", str(prompts))
    return {"script": script, "counter": counter, "prompts": prompts}


def agent_calls(fake_agent: dict[str, Path]) -> int:
    counter = fake_agent["counter"]
    return int(counter.read_text()) if counter.exists() else 0


def fake_agent_policy(script: Path) -> RalphPolicy:
    return RalphPolicy(
        max_iterations=50,
        image="ralph-claude",
        probe_timeout_seconds=1.0,
        agent_command=sys.executable,
        agent_flags=(str(script),),
        credential_dir="~/.claude",
        credential_file="~/.claude.json",
    )
