"""Shared fixtures for pipeline tests."""

import subprocess
from pathlib import Path

import pytest

from ai_pipeline.logging import LogConfig, reset_loggers, set_config
from ai_pipeline.persistence.repository import TaskRepository


@pytest.fixture(autouse=True)
def isolated_logs(tmp_path):
    """Keep structured JSONL logs out of the home directory."""
    log_dir = tmp_path / "logs"
    reset_loggers()
    set_config(LogConfig(log_dir=log_dir))
    yield log_dir
    reset_loggers()


def git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *args], cwd=repo, check=True, capture_output=True, text=True
    )
    return result.stdout.strip()


@pytest.fixture
def git_repo(tmp_path) -> Path:
    """A repository on main with one commit and no remote."""
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    git(repo, "config", "user.email", "pipeline@example.com")
    git(repo, "config", "user.name", "Pipeline Tests")
    git(repo, "config", "commit.gpgsign", "false")
    (repo / "README.md").write_text("# Demo\n")
    (repo / "app.py").write_text("def greet():\n    return 'hello'\n")
    git(repo, "add", "-A")
    git(repo, "commit", "-q", "-m", "Initial commit")
    return repo


@pytest.fixture
def repository():
    """In-memory task store."""
    repo = TaskRepository(":memory:")
    repo.initialize()
    yield repo
    repo.close()


@pytest.fixture
def hanging_remote(git_repo, tmp_path) -> Path:
    """git_repo with main tracking an ssh remote that never answers."""
    transport = tmp_path / "silent-ssh"
    transport.write_text("#!/bin/sh\nexec sleep 5 </dev/null >/dev/null 2>&1\n")
    transport.chmod(0o755)
    git(git_repo, "remote", "add", "origin", "ssh://git.invalid/demo.git")
    git(git_repo, "config", "core.sshCommand", str(transport))
    git(git_repo, "config", "ssh.variant", "simple")
    git(git_repo, "config", "branch.main.remote", "origin")
    git(git_repo, "config", "branch.main.merge", "refs/heads/main")
    return git_repo
