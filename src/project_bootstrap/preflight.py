"""Pre-flight checks consulted before any phase of a batch runs.

Two collaborators: git working-tree cleanliness and configuration validity.
Neither ever modifies the checkout; a dirty tree is reported, never reset.
"""

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Tuple

from project_bootstrap.config import Config
from project_bootstrap.constants import GIT_TIMEOUT_S
from project_bootstrap.execution_state import Phase

logger = logging.getLogger(__name__)


@dataclass
class PreflightReport:
    """Result of pre-flight checks."""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def extend(self, other: "PreflightReport") -> None:
        self.errors.extend(other.errors)
        self.warnings.extend(other.warnings)


# --- Git collaborator ---

def is_git_repo(repo_path: Path) -> Tuple[bool, str]:
    """Check if path is a git repository using git rev-parse.

    Returns:
        (is_git_repo, error_message)
    """
    try:
        result = subprocess.run(
            ["git", "-C", str(repo_path), "rev-parse", "--is-inside-work-tree"],
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT_S,
        )
        if result.returncode == 0 and result.stdout.strip() == "true":
            return True, ""
        return False, result.stderr.strip() or "Not a git repository"
    except subprocess.TimeoutExpired:
        return False, "git rev-parse timed out"
    except FileNotFoundError:
        return False, "git command not found"


def working_tree_status(repo_path: Path, exclude: Iterable[str] = ()) -> Tuple[bool, str]:
    """Check if the working tree has uncommitted changes.

    Args:
        repo_path: Directory to run git in
        exclude: Pathspecs (relative to repo_path) left out of the check

    Returns:
        (is_clean, status_output)
    """
    command = ["git", "status", "--porcelain", "--untracked-files=all"]
    excluded = [f":(exclude){spec}" for spec in exclude]
    if excluded:
        command += ["--", *excluded]
    try:
        result = subprocess.run(
            command,
            cwd=repo_path,
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT_S,
        )
    except subprocess.TimeoutExpired:
        return False, "git status timed out"
    except OSError as e:
        return False, f"git status failed: {e}"

    if result.returncode != 0:
        return False, result.stderr.strip() or f"git status exited {result.returncode}"
    status_output = result.stdout.strip()
    return not status_output, status_output


def own_artifacts(config: Config) -> List[str]:
    """Pathspecs for files bootstrap itself writes under the project root.

    The state file patterns also cover its lock and its temporary files.
    """
    root = config.project_root.resolve()
    specs = []
    for path in (config.state_file, config.log_dir, config.reports_dir):
        try:
            relative = Path(path).resolve().relative_to(root)
        except ValueError:
            continue
        if relative == Path("."):
            continue
        if path == config.state_file:
            specs.append(f"{relative.as_posix()}*")
            specs.append((relative.parent / f".{relative.name}.*.tmp").as_posix())
        else:
            specs.append(relative.as_posix())
    return specs


def check_git_clean(config: Config) -> PreflightReport:
    report = PreflightReport()

    if not config.git_safety:
        logger.debug("Git safety check disabled")
        return report
    if config.allow_dirty:
        logger.debug("Git safety check skipped (allow_dirty)")
        return report

    in_repo, reason = is_git_repo(config.project_root)
    if not in_repo:
        logger.debug(f"Skipping git safety check: {reason}")
        return report

    clean, status = working_tree_status(config.project_root, exclude=own_artifacts(config))
    if not clean:
        changed = status.splitlines()
        preview = "; ".join(changed[:5])
        if len(changed) > 5:
            preview += f"; ... and {len(changed) - 5} more"
        report.errors.append(
            f"Git working tree is not clean ({preview}). "
            f"Commit or stash your changes, or pass --allow-dirty."
        )
    return report


# --- Config validation collaborator ---

def _runs_after_dependency(phase: Phase, batch: Dict[str, Phase]) -> bool:
    """True if a phase this one depends on runs earlier in the same batch."""
    return any(dep in batch for dep in phase.dependencies)


def validate_config(config: Config, phases: Iterable[Phase], dry_run: bool = False) -> PreflightReport:
    """
    Validate the project root and the requirements of the phases about to run.

    Missing tools are errors for a real run and warnings for a dry run,
    since a dry run never executes anything. A missing cwd is only a warning
    when an upstream phase in the same batch may create it; if it is still
    missing at launch the Sequencer fails that phase.
    """
    report = PreflightReport()
    root = config.project_root
    phases = list(phases)
    batch = {phase.id: phase for phase in phases}

    if not root.is_dir():
        report.errors.append(f"Project root does not exist: {root}")
        return report
    if not os.access(root, os.W_OK):
        report.errors.append(f"Project root is not writable: {root}")

    for phase in phases:
        for tool in phase.requires:
            if shutil.which(tool) is None:
                message = f"Phase '{phase.id}' requires '{tool}', which is not on PATH"
                if dry_run:
                    report.warnings.append(message)
                else:
                    report.errors.append(message)
        if phase.cwd and not (root / phase.cwd).is_dir():
            message = f"Phase '{phase.id}' working directory does not exist: {phase.cwd}"
            if dry_run or _runs_after_dependency(phase, batch):
                report.warnings.append(message)
            else:
                report.errors.append(message)

    return report


def run_preflight(config: Config, phases: Iterable[Phase], dry_run: bool = False) -> PreflightReport:
    """Run every pre-flight collaborator and merge their reports."""
    report = PreflightReport()
    report.extend(check_git_clean(config))
    report.extend(validate_config(config, phases, dry_run=dry_run))

    for warning in report.warnings:
        logger.warning(f"Pre-flight: {warning}")
    for error in report.errors:
        logger.error(f"Pre-flight: {error}")
    return report
