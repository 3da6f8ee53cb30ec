"""Execution state for bootstrap phases and batches."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Optional, Tuple, Union

from project_bootstrap.constants import (
    DEFAULT_RETRY_DELAY_S,
    EXIT_INTERRUPTED,
    EXIT_OK,
    EXIT_PHASE_FAILED,
)
from project_bootstrap.errors import PhaseExecutionError


# A command is either a shell string or an argv list
Command = Union[str, Tuple[str, ...]]


class PhaseStatus:
    NEVER_RUN = "never_run"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class BatchState:
    PLANNING = "planning"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True)
class Phase:
    """A named unit of bootstrap work, immutable for the duration of a run."""
    id: str
    command: Command
    dependencies: Tuple[str, ...] = ()
    timeout: Optional[float] = None
    retries: int = 0
    retry_delay: float = DEFAULT_RETRY_DELAY_S
    verify: Optional[Command] = None
    name: Optional[str] = None
    description: Optional[str] = None
    enabled: bool = True
    requires: Tuple[str, ...] = ()
    cwd: Optional[str] = None
    env: Tuple[Tuple[str, str], ...] = ()

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def env_dict(self) -> Dict[str, str]:
        return dict(self.env)


@dataclass
class ExecutionRecord:
    """Persisted outcome for one phase."""
    phase_id: str
    status: str = PhaseStatus.NEVER_RUN
    timestamp: Optional[str] = None
    detail: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "phase_id": self.phase_id,
            "status": self.status,
            "timestamp": self.timestamp,
            "detail": self.detail,
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "ExecutionRecord":
        """Build a record from stored data. Unknown keys are ignored."""
        return cls(
            phase_id=str(data["phase_id"]),
            status=str(data.get("status", PhaseStatus.NEVER_RUN)),
            timestamp=data.get("timestamp"),
            detail=data.get("detail"),
        )


@dataclass
class Judgment:
    """Sequencer verdict for a phase (the last attempt when it was retried)."""
    status: str  # succeeded | failed
    detail: str
    exit_code: Optional[int] = None
    duration_seconds: float = 0.0
    timed_out: bool = False
    attempts: int = 1

    @property
    def succeeded(self) -> bool:
        return self.status == PhaseStatus.SUCCEEDED


@dataclass
class RunPlan:
    """Dependency-resolved, topologically ordered phases for one batch."""
    requested: List[str]
    order: List[str]
    skipped: List[str] = field(default_factory=list)

    @property
    def phase_ids(self) -> List[str]:
        """Ids that will actually be attempted, in order."""
        skipped = set(self.skipped)
        return [pid for pid in self.order if pid not in skipped]


@dataclass
class BatchResult:
    """Aggregate of per-phase outcomes for one invocation."""
    dry_run: bool = False
    state: str = BatchState.PLANNING
    succeeded: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    blocked: List[str] = field(default_factory=list)
    not_attempted: List[str] = field(default_factory=list)
    first_failure: Optional[str] = None
    interrupted: bool = False
    abort_reason: Optional[str] = None
    durations: Dict[str, float] = field(default_factory=dict)
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    duration_seconds: float = 0.0

    def record_failure(self, phase_id: str, detail: str) -> None:
        self.failed[phase_id] = detail
        if self.first_failure is None:
            self.first_failure = phase_id

    @property
    def exit_code(self) -> int:
        if self.interrupted:
            return EXIT_INTERRUPTED
        if self.failed:
            return EXIT_PHASE_FAILED
        return EXIT_OK

    def raise_for_failure(self) -> None:
        """Raise PhaseExecutionError for the first failed phase, if any."""
        if self.first_failure is not None:
            raise PhaseExecutionError(self.first_failure, self.failed[self.first_failure])

    def to_dict(self) -> dict:
        return {
            "dry_run": self.dry_run,
            "state": self.state,
            "exit_code": self.exit_code,
            "succeeded": list(self.succeeded),
            "skipped": list(self.skipped),
            "failed": dict(self.failed),
            "blocked": list(self.blocked),
            "not_attempted": list(self.not_attempted),
            "first_failure": self.first_failure,
            "interrupted": self.interrupted,
            "abort_reason": self.abort_reason,
            "durations": dict(self.durations),
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_seconds": self.duration_seconds,
        }
