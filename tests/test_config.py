"""Tests for environment-driven configuration."""

import os

import pytest

from project_bootstrap.config import ConfigError, load_config


class TestDefaults:

    def test_defaults_resolve_against_root(self, project):
        config = load_config(project)

        assert config.project_root == project.resolve()
        assert config.phases_file == project.resolve() / "bootstrap.yaml"
        assert config.state_file == project.resolve() / ".bootstrap_state.json"
        assert config.log_dir == project.resolve() / "logs"
        assert config.execution_mode == "fail-fast"
        assert config.git_safety is False
        assert config.default_timeout is None

    def test_root_from_environment(self, project, monkeypatch):
        monkeypatch.setenv("BOOTSTRAP_PROJECT_ROOT", str(project))
        assert load_config().project_root == project.resolve()

    def test_root_defaults_to_cwd(self, tmp_path):
        assert load_config().project_root == tmp_path.resolve()


class TestOverrides:

    def test_relative_and_absolute_paths(self, project, tmp_path, monkeypatch):
        monkeypatch.setenv("BOOTSTRAP_STATE_FILE", "var/state.json")
        monkeypatch.setenv("BOOTSTRAP_LOG_DIR", str(tmp_path / "elsewhere"))
        config = load_config(project)
        assert config.state_file == project.resolve() / "var" / "state.json"
        assert config.log_dir == tmp_path / "elsewhere"

    def test_flags_and_mode(self, project, monkeypatch):
        monkeypatch.setenv("BOOTSTRAP_GIT_SAFETY", "true")
        monkeypatch.setenv("BOOTSTRAP_ALLOW_DIRTY", "1")
        monkeypatch.setenv("BOOTSTRAP_EXECUTION_MODE", "Continue")
        monkeypatch.setenv("BOOTSTRAP_DEFAULT_TIMEOUT", "90")
        monkeypatch.setenv("BOOTSTRAP_LOG_FORMAT", "json")

        config = load_config(project)

        assert config.git_safety is True
        assert config.allow_dirty is True
        assert config.execution_mode == "continue"
        assert config.default_timeout == 90.0
        assert config.log_format == "json"

    def test_dotenv_file_is_read(self, project, monkeypatch):
        (project / ".env").write_text("BOOTSTRAP_EXECUTION_MODE=continue\n")
        monkeypatch.chdir(project)
        try:
            assert load_config(project).execution_mode == "continue"
        finally:
            os.environ.pop("BOOTSTRAP_EXECUTION_MODE", None)


class TestInvalid:

    @pytest.mark.parametrize("name,value", [
        ("BOOTSTRAP_EXECUTION_MODE", "yolo"),
        ("BOOTSTRAP_LOG_FORMAT", "xml"),
        ("BOOTSTRAP_DEFAULT_TIMEOUT", "soon"),
        ("BOOTSTRAP_DEFAULT_TIMEOUT", "-5"),
        ("BOOTSTRAP_GIT_SAFETY", "maybe"),
    ])
    def test_rejected(self, project, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(ConfigError) as exc_info:
            load_config(project)
        assert name in str(exc_info.value)
