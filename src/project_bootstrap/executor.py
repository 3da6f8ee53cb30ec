"""Phase Executor - plan a batch, run it phase by phase, record outcomes.

Batch states:  planning -> running -> completed | aborted
Phase states:  pending  -> running -> succeeded | skipped | failed

Logic:
1. Resolve the RunPlan (configuration errors raise here, nothing has run)
2. Consult pre-flight collaborators (errors raise PreflightError, nothing has run)
3. For each planned phase:
   - already succeeded and not forced -> skipped, Sequencer not invoked
   - otherwise run + judge; success is written to the State Store at once
   - on failure: FAIL_FAST stops the batch; CONTINUE blocks only the
     failed phase's dependents and keeps going
4. A dry run never writes to the State Store, takes no lock and executes nothing.
"""

import logging
import time
from contextlib import ExitStack
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, FrozenSet, Iterable, List, Optional

from project_bootstrap.config import Config
from project_bootstrap.errors import PreflightError
from project_bootstrap.events import (
    BATCH_ABORT,
    BATCH_COMPLETE,
    BATCH_START,
    BLOCKED,
    FAILURE,
    SKIP,
    START,
    SUCCESS,
    TIMEOUT,
    EventLog,
)
from project_bootstrap.execution_state import (
    BatchResult,
    BatchState,
    Judgment,
    Phase,
    RunPlan,
    utc_now,
)
from project_bootstrap.preflight import PreflightReport, run_preflight
from project_bootstrap.registry import PhaseRegistry
from project_bootstrap.sequencer import run_and_judge
from project_bootstrap.state_store import StateStore, state_lock

logger = logging.getLogger(__name__)


class ExecutionPolicy:
    FAIL_FAST = "fail-fast"
    CONTINUE = "continue"


@dataclass(frozen=True)
class RunOptions:
    """Per-invocation switches, passed explicitly to the executor."""
    dry_run: bool = False
    force_all: bool = False
    force_phases: FrozenSet[str] = field(default_factory=frozenset)
    policy: str = ExecutionPolicy.FAIL_FAST

    @classmethod
    def from_config(cls, config: Config, **overrides) -> "RunOptions":
        values = {"policy": config.execution_mode}
        values.update({k: v for k, v in overrides.items() if v is not None})
        if "force_phases" in values:
            values["force_phases"] = frozenset(values["force_phases"])
        return cls(**values)


Sequencer = Callable[..., Judgment]
Preflight = Callable[[Config, List[Phase], bool], PreflightReport]


class PhaseExecutor:

    def __init__(
        self,
        registry: PhaseRegistry,
        store: StateStore,
        config: Config,
        options: Optional[RunOptions] = None,
        events: Optional[EventLog] = None,
        sequencer: Sequencer = run_and_judge,
        preflight: Optional[Preflight] = run_preflight,
        log_file: Optional[Path] = None,
    ):
        self.registry = registry
        self.store = store
        self.config = config
        self.options = options or RunOptions()
        self.events = events or EventLog()
        self.sequencer = sequencer
        self.preflight = preflight
        self.log_file = log_file

    def plan(self, requested_ids: Optional[Iterable[str]] = None) -> RunPlan:
        """Resolve the RunPlan against current state. Raises ConfigurationError."""
        return self.registry.resolve(
            requested_ids,
            state=self.store,
            force_all=self.options.force_all,
            force=self.options.force_phases,
        )

    def run(self, requested_ids: Optional[Iterable[str]] = None) -> BatchResult:
        """
        Run a batch.

        Raises:
            ConfigurationError: Unknown phase, disabled dependency or cycle
            PreflightError: A pre-flight collaborator refused the batch
        """
        options = self.options
        result = BatchResult(dry_run=options.dry_run, started_at=utc_now())
        started = time.monotonic()

        plan = self.plan(requested_ids)
        # Phases skipped as already succeeded need neither tools nor cwd
        phases = [self.registry.get(pid) for pid in plan.phase_ids]

        if self.preflight is not None:
            report = self.preflight(self.config, phases, options.dry_run)
            if not report.ok:
                self._abort(result, started, "pre-flight failed", plan.order)
                raise PreflightError(report.errors)

        with ExitStack() as stack:
            if not options.dry_run:
                try:
                    stack.enter_context(state_lock(self.store.path))
                except PreflightError:
                    self._abort(result, started, "state lock held", plan.order)
                    raise
            output = None
            if self.log_file is not None and not options.dry_run:
                output = stack.enter_context(open(self.log_file, "a", encoding="utf-8"))

            result.state = BatchState.RUNNING
            self.events.emit(
                BATCH_START,
                planned=len(plan.order),
                to_run=len(plan.phase_ids),
                dry_run=options.dry_run,
                policy=options.policy,
            )
            self._run_plan(plan, result, output)

        result.finished_at = utc_now()
        result.duration_seconds = time.monotonic() - started
        if result.state == BatchState.ABORTED:
            self.events.emit(
                BATCH_ABORT,
                reason=result.abort_reason,
                failed=len(result.failed),
                not_attempted=len(result.not_attempted),
            )
        else:
            result.state = BatchState.COMPLETED
            self.events.emit(
                BATCH_COMPLETE,
                succeeded=len(result.succeeded),
                skipped=len(result.skipped),
                failed=len(result.failed),
                blocked=len(result.blocked),
            )
        return result

    def _run_plan(self, plan: RunPlan, result: BatchResult, output) -> None:
        options = self.options
        skip = set(plan.skipped)
        blocked_by: dict = {}

        for index, phase_id in enumerate(plan.order):
            if phase_id in skip:
                result.skipped.append(phase_id)
                self.events.emit(SKIP, phase_id, reason="already succeeded")
                continue

            if phase_id in blocked_by:
                result.blocked.append(phase_id)
                result.not_attempted.append(phase_id)
                self.events.emit(BLOCKED, phase_id, failed_dependency=blocked_by[phase_id])
                continue

            phase = self.registry.get(phase_id)
            self.events.emit(START, phase_id, dry_run=options.dry_run or None)

            try:
                judgment = self.sequencer(
                    phase,
                    dry_run=options.dry_run,
                    project_root=self.config.project_root,
                    output=output,
                    default_timeout=self.config.default_timeout,
                )
            except KeyboardInterrupt:
                # The sequencer has already killed the process group.
                # Leave the phase's record untouched so a re-run retries it.
                result.interrupted = True
                self._stop_at(plan, index, result, skip)
                result.state = BatchState.ABORTED
                result.abort_reason = f"interrupted during '{phase_id}'"
                logger.warning(f"Interrupted while running '{phase_id}'; it will be retried next run")
                return

            result.durations[phase_id] = round(judgment.duration_seconds, 3)

            if judgment.succeeded:
                if not options.dry_run:
                    self.store.mark_success(phase_id, judgment.detail)
                result.succeeded.append(phase_id)
                self.events.emit(
                    SUCCESS, phase_id,
                    detail=judgment.detail,
                    duration=round(judgment.duration_seconds, 3),
                    attempts=judgment.attempts if judgment.attempts > 1 else None,
                )
                continue

            # A failed forced re-run keeps the earlier success on record
            if not options.dry_run and not self.store.has_succeeded(phase_id):
                self.store.mark_failure(phase_id, judgment.detail)
            result.record_failure(phase_id, judgment.detail)
            self.events.emit(
                TIMEOUT if judgment.timed_out else FAILURE,
                phase_id,
                detail=judgment.detail,
                exit_code=judgment.exit_code,
                duration=round(judgment.duration_seconds, 3),
                attempts=judgment.attempts if judgment.attempts > 1 else None,
            )

            if options.policy != ExecutionPolicy.CONTINUE:
                self._stop_at(plan, index + 1, result, skip)
                result.state = BatchState.ABORTED
                result.abort_reason = f"phase '{phase_id}' failed ({judgment.detail})"
                return

            for dependent in self.registry.dependents_of(phase_id):
                blocked_by.setdefault(dependent, phase_id)

    @staticmethod
    def _stop_at(plan: RunPlan, index: int, result: BatchResult, skip: set) -> None:
        """Account for the rest of the plan when the batch stops early."""
        for pid in plan.order[index:]:
            if pid in skip:
                result.skipped.append(pid)
            else:
                result.not_attempted.append(pid)

    def _abort(self, result: BatchResult, started: float, reason: str, order: List[str]) -> None:
        result.state = BatchState.ABORTED
        result.abort_reason = reason
        result.not_attempted = list(order)
        result.finished_at = utc_now()
        result.duration_seconds = time.monotonic() - started
        self.events.emit(BATCH_ABORT, reason=reason, not_attempted=len(order))
