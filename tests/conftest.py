"""Shared fixtures for bootstrap tests (real subprocesses, tmp_path state)."""

import logging
import shutil
import subprocess
from pathlib import Path

import pytest
import yaml

from project_bootstrap.config import Config
from project_bootstrap.execution_state import Phase
from project_bootstrap.logging_config import ROOT_LOGGER_NAME


BOOTSTRAP_ENV_VARS = [
    "BOOTSTRAP_PROJECT_ROOT",
    "BOOTSTRAP_PHASES_FILE",
    "BOOTSTRAP_STATE_FILE",
    "BOOTSTRAP_LOG_DIR",
    "BOOTSTRAP_REPORTS_DIR",
    "BOOTSTRAP_GIT_SAFETY",
    "BOOTSTRAP_ALLOW_DIRTY",
    "BOOTSTRAP_EXECUTION_MODE",
    "BOOTSTRAP_DEFAULT_TIMEOUT",
    "BOOTSTRAP_LOG_FORMAT",
    "BOOTSTRAP_VERBOSE",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate tests from the caller's BOOTSTRAP_* variables and any .env file."""
    for name in BOOTSTRAP_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    yield
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def project(tmp_path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def config(project) -> Config:
    return Config(
        project_root=project,
        phases_file=project / "bootstrap.yaml",
        state_file=project / ".bootstrap_state.json",
        log_dir=project / "logs",
        reports_dir=project / ".bootstrap" / "reports",
    )


def write_phases(path: Path, phases: list, **top) -> Path:
    """Write a phases YAML file from plain dicts."""
    document = {"version": 1, **top, "phases": phases}
    path.write_text(yaml.safe_dump(document, sort_keys=False))
    return path


def make_phase(phase_id: str, command="true", deps=(), **kwargs) -> Phase:
    return Phase(id=phase_id, command=command, dependencies=tuple(deps), **kwargs)


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


@pytest.fixture
def git_repo(project, monkeypatch) -> Path:
    """The project directory as a git repository with one commit."""
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")
    subprocess.run(["git", "init", "-q"], cwd=project, check=True)
    (project / "README.md").write_text("hello\n")
    git_commit(project)
    return project


def git_commit(repo: Path, message: str = "init") -> None:
    subprocess.run(["git", "add", "-A"], cwd=repo, check=True)
    subprocess.run(["git", "commit", "-q", "-m", message], cwd=repo, check=True)
