"""Error taxonomy for the bootstrap orchestrator.

ConfigurationError and PreflightError are fatal to a batch and are raised
before any phase runs. Phase failures stay local to the phase and are
reported through BatchResult; PhaseExecutionError exists for callers that
prefer an exception (see BatchResult.raise_for_failure).
"""

from typing import List, Optional


class BootstrapError(Exception):
    """Base class for orchestrator errors."""
    pass


class ConfigurationError(BootstrapError):
    """Unknown phase id, duplicate id, dependency cycle or invalid declarations."""
    pass


class PreflightError(BootstrapError):
    """A pre-flight collaborator refused the batch (dirty git tree, invalid config)."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        lines = [f"Pre-flight check failed with {len(self.errors)} error(s):"]
        for error in self.errors:
            lines.append(f"  - {error}")
        super().__init__("\n".join(lines))


class PhaseExecutionError(BootstrapError):
    """A phase exited non-zero, failed verification, or timed out."""

    def __init__(self, phase_id: str, detail: Optional[str] = None):
        self.phase_id = phase_id
        self.detail = detail
        super().__init__(f"Phase '{phase_id}' failed: {detail or 'unknown reason'}")


class PersistenceWarning(UserWarning):
    """The state file was unreadable or corrupt and has been treated as empty."""
    pass
