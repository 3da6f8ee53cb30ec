"""Run a phase's command (and verification) and judge the outcome.

Each command runs in its own process group so that a timeout or an
interrupt can take down everything the phase spawned. The Sequencer never
touches the State Store; recording the verdict is the Executor's job.
"""

import logging
import os
import shlex
import signal
import subprocess
import time
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Dict, Generator, Optional, Tuple

from project_bootstrap.constants import KILL_GRACE_S
from project_bootstrap.execution_state import Command, Judgment, Phase, PhaseStatus

logger = logging.getLogger(__name__)

DETAIL_DRY_RUN = "dry-run"
DETAIL_TIMEOUT = "timeout"
DETAIL_VERIFY_FAILED = "verification failed"


def format_command(command: Command) -> str:
    if isinstance(command, str):
        return command
    return " ".join(shlex.quote(part) for part in command)


def _terminate_group(proc: subprocess.Popen, grace: float) -> None:
    """SIGTERM the process group, then SIGKILL after the grace period. Always reaps."""
    try:
        os.killpg(proc.pid, signal.SIGTERM)
    except ProcessLookupError:
        pass
    try:
        proc.wait(timeout=grace)
    except subprocess.TimeoutExpired:
        logger.debug(f"Process group {proc.pid} ignored SIGTERM, sending SIGKILL")
    finally:
        # Also reached when a second Ctrl-C lands during the grace period.
        # Stragglers that outlived the group leader are killed too.
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        proc.wait()


@contextmanager
def _launched(
    command: Command,
    cwd: Path,
    env: Dict[str, str],
    output: Optional[IO],
) -> Generator[subprocess.Popen, None, None]:
    """Launch a command in a new session; tear its group down on every exit path."""
    if output is not None:
        output.write(f"$ {format_command(command)}\n")
        output.flush()

    proc = subprocess.Popen(
        command if isinstance(command, str) else list(command),
        shell=isinstance(command, str),
        cwd=str(cwd),
        env=env,
        stdin=subprocess.DEVNULL,
        stdout=output,
        stderr=subprocess.STDOUT if output is not None else None,
        start_new_session=True,
    )
    try:
        yield proc
    finally:
        if proc.poll() is None:
            _terminate_group(proc, KILL_GRACE_S)


def _run_command(
    command: Command,
    timeout: Optional[float],
    cwd: Path,
    env: Dict[str, str],
    output: Optional[IO],
) -> Tuple[Optional[int], bool]:
    """
    Run one command to completion.

    Returns:
        (exit_code, timed_out) - exit_code is None when the command timed out.

    KeyboardInterrupt propagates after the process group has been terminated.
    """
    with _launched(command, cwd, env, output) as proc:
        try:
            return proc.wait(timeout=timeout), False
        except subprocess.TimeoutExpired:
            _terminate_group(proc, KILL_GRACE_S)
            return None, True


def _attempt(
    phase: Phase,
    timeout: Optional[float],
    cwd: Path,
    env: Dict[str, str],
    output: Optional[IO],
) -> Judgment:
    """Run command then verify once, within a single timeout budget."""
    start = time.monotonic()

    def _judge(status: str, detail: str, exit_code: Optional[int] = None,
               timed_out: bool = False) -> Judgment:
        return Judgment(
            status=status,
            detail=detail,
            exit_code=exit_code,
            duration_seconds=time.monotonic() - start,
            timed_out=timed_out,
        )

    try:
        exit_code, timed_out = _run_command(phase.command, timeout, cwd, env, output)
    except OSError as e:
        return _judge(PhaseStatus.FAILED, f"failed to launch: {e}")

    if timed_out:
        return _judge(PhaseStatus.FAILED, DETAIL_TIMEOUT, timed_out=True)
    if exit_code != 0:
        return _judge(PhaseStatus.FAILED, f"exit code {exit_code}", exit_code=exit_code)

    if phase.verify is None:
        return _judge(PhaseStatus.SUCCEEDED, "exit code 0", exit_code=0)

    remaining = None
    if timeout is not None:
        remaining = max(timeout - (time.monotonic() - start), 0.001)

    try:
        verify_code, verify_timed_out = _run_command(phase.verify, remaining, cwd, env, output)
    except OSError as e:
        return _judge(PhaseStatus.FAILED, f"{DETAIL_VERIFY_FAILED}: {e}", exit_code=0)

    if verify_timed_out:
        return _judge(PhaseStatus.FAILED, DETAIL_TIMEOUT, exit_code=0, timed_out=True)
    if verify_code != 0:
        return _judge(PhaseStatus.FAILED, DETAIL_VERIFY_FAILED, exit_code=0)

    return _judge(PhaseStatus.SUCCEEDED, "verified", exit_code=0)


def run_and_judge(
    phase: Phase,
    *,
    dry_run: bool = False,
    project_root: Optional[Path] = None,
    output: Optional[IO] = None,
    default_timeout: Optional[float] = None,
) -> Judgment:
    """
    Execute a phase and judge whether it achieved its effect.

    - non-zero exit          -> failed, detail "exit code N"
    - exceeded timeout       -> failed, detail "timeout"
    - exit 0, verify fails   -> failed, detail "verification failed"
    - exit 0, verify passes  -> succeeded
    - dry_run                -> succeeded, detail "dry-run", nothing executed

    A failed attempt is repeated up to phase.retries more times, waiting
    phase.retry_delay seconds in between. Each attempt gets the full timeout;
    the verdict is the last attempt's.

    Args:
        phase: The phase to run
        dry_run: Simulate only
        project_root: Base directory for the phase's cwd (default: current dir)
        output: Open text file that receives the command output (default: inherit)
        default_timeout: Used when the phase declares no timeout
    """
    if dry_run:
        logger.debug(f"[dry-run] would execute: {format_command(phase.command)}")
        if phase.verify is not None:
            logger.debug(f"[dry-run] would verify: {format_command(phase.verify)}")
        return Judgment(status=PhaseStatus.SUCCEEDED, detail=DETAIL_DRY_RUN)

    root = Path(project_root) if project_root is not None else Path.cwd()
    cwd = root / phase.cwd if phase.cwd else root
    env = {**os.environ, **phase.env_dict}
    timeout = phase.timeout if phase.timeout is not None else default_timeout

    start = time.monotonic()
    attempts = 1 + max(phase.retries, 0)
    for attempt in range(1, attempts + 1):
        if attempt > 1:
            logger.info(
                f"Retrying '{phase.id}' ({attempt - 1}/{phase.retries}) "
                f"after {judgment.detail}"
            )
            if output is not None:
                output.write(f"# retry {attempt - 1}/{phase.retries}\n")
                output.flush()
            time.sleep(phase.retry_delay)
        judgment = _attempt(phase, timeout, cwd, env, output)
        if judgment.succeeded:
            break

    judgment.attempts = attempt
    judgment.duration_seconds = time.monotonic() - start
    return judgment
