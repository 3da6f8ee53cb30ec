"""Configuration loading for the bootstrap CLI."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv

from project_bootstrap.constants import (
    DEFAULT_LOG_DIR,
    DEFAULT_PHASES_FILE,
    DEFAULT_REPORTS_DIR,
    DEFAULT_STATE_FILE,
    EXECUTION_MODES,
    LOG_FORMATS,
)


@dataclass
class Config:
    """Application configuration loaded from environment."""

    project_root: Path
    phases_file: Path
    state_file: Path
    log_dir: Path
    reports_dir: Path
    git_safety: bool = False
    allow_dirty: bool = False
    execution_mode: str = "fail-fast"
    default_timeout: Optional[float] = None
    log_format: str = "plain"
    verbose: bool = False


class ConfigError(Exception):
    """Raised when configuration values are invalid."""
    pass


_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean (true/false), got: {raw!r}")


def _resolve(root: Path, value: str) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = root / path
    return path


def load_config(project_root: Optional[Path] = None) -> Config:
    """
    Load configuration from environment variables (and a .env file if present).

    Args:
        project_root: Overrides BOOTSTRAP_PROJECT_ROOT / the current directory.

    Returns:
        Config with every path resolved against the project root.

    Raises:
        ConfigError: If a variable holds an invalid value.
    """
    load_dotenv(find_dotenv(usecwd=True))

    if project_root is None:
        project_root = Path(os.environ.get("BOOTSTRAP_PROJECT_ROOT") or ".")
    root = Path(project_root).expanduser().resolve()

    execution_mode = os.environ.get("BOOTSTRAP_EXECUTION_MODE", "fail-fast").strip().lower()
    if execution_mode not in EXECUTION_MODES:
        raise ConfigError(
            f"BOOTSTRAP_EXECUTION_MODE must be one of {EXECUTION_MODES}, got: {execution_mode!r}"
        )

    log_format = os.environ.get("BOOTSTRAP_LOG_FORMAT", "plain").strip().lower()
    if log_format not in LOG_FORMATS:
        raise ConfigError(
            f"BOOTSTRAP_LOG_FORMAT must be one of {LOG_FORMATS}, got: {log_format!r}"
        )

    default_timeout = None
    raw_timeout = os.environ.get("BOOTSTRAP_DEFAULT_TIMEOUT")
    if raw_timeout:
        try:
            default_timeout = float(raw_timeout)
        except ValueError:
            raise ConfigError(
                f"BOOTSTRAP_DEFAULT_TIMEOUT must be a number of seconds, got: {raw_timeout!r}"
            )
        if default_timeout <= 0:
            raise ConfigError("BOOTSTRAP_DEFAULT_TIMEOUT must be positive")

    return Config(
        project_root=root,
        phases_file=_resolve(root, os.environ.get("BOOTSTRAP_PHASES_FILE", DEFAULT_PHASES_FILE)),
        state_file=_resolve(root, os.environ.get("BOOTSTRAP_STATE_FILE", DEFAULT_STATE_FILE)),
        log_dir=_resolve(root, os.environ.get("BOOTSTRAP_LOG_DIR", DEFAULT_LOG_DIR)),
        reports_dir=_resolve(root, os.environ.get("BOOTSTRAP_REPORTS_DIR", DEFAULT_REPORTS_DIR)),
        git_safety=_env_bool("BOOTSTRAP_GIT_SAFETY"),
        allow_dirty=_env_bool("BOOTSTRAP_ALLOW_DIRTY"),
        execution_mode=execution_mode,
        default_timeout=default_timeout,
        log_format=log_format,
        verbose=_env_bool("BOOTSTRAP_VERBOSE"),
    )
