"""File-backed record of which phases have completed for a project checkout.

The store is a single JSON document, one entry per phase:

    {"version": 1, "phases": {"install": {"phase_id": "install", ...}}}

Every write replaces the whole file atomically, so a crash can lose at most
the record of the phase that was in flight. A missing or corrupt file reads
as "nothing has succeeded yet".
"""

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Generator, List, Optional

from project_bootstrap.constants import LOCK_FILE_SUFFIX, STATE_FORMAT_VERSION
from project_bootstrap.errors import PersistenceWarning, PreflightError
from project_bootstrap.execution_state import ExecutionRecord, PhaseStatus, utc_now

logger = logging.getLogger(__name__)


class StateStore:
    """Durable phase state. Single writer per checkout; readers may be many."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._records: Optional[Dict[str, ExecutionRecord]] = None

    # --- Reading ---

    def load(self) -> Dict[str, ExecutionRecord]:
        """Read the state file once and cache it."""
        if self._records is None:
            self._records = self._read()
        return self._records

    def reload(self) -> Dict[str, ExecutionRecord]:
        self._records = None
        return self.load()

    def _read(self) -> Dict[str, ExecutionRecord]:
        if not self.path.exists():
            return {}

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            self._warn(f"cannot read {self.path}: {e}; treating state as empty")
            return {}

        if not isinstance(data, dict) or not isinstance(data.get("phases"), dict):
            self._warn(f"{self.path} has no 'phases' mapping; treating state as empty")
            return {}

        records = {}
        for phase_id, entry in data["phases"].items():
            if not isinstance(entry, dict):
                self._warn(f"ignoring malformed entry for '{phase_id}' in {self.path}")
                continue
            try:
                record = ExecutionRecord.from_dict({"phase_id": phase_id, **entry})
            except (KeyError, TypeError, ValueError) as e:
                self._warn(f"ignoring malformed entry for '{phase_id}': {e}")
                continue
            records[record.phase_id] = record
        return records

    @staticmethod
    def _warn(message: str) -> None:
        logger.warning(f"{PersistenceWarning.__name__}: {message}")

    def get(self, phase_id: str) -> ExecutionRecord:
        """Return the current record, or a never_run placeholder."""
        record = self.load().get(phase_id)
        if record is None:
            return ExecutionRecord(phase_id=phase_id)
        return record

    def has_succeeded(self, phase_id: str) -> bool:
        record = self.load().get(phase_id)
        return record is not None and record.status == PhaseStatus.SUCCEEDED

    def records(self) -> List[ExecutionRecord]:
        return list(self.load().values())

    def count_succeeded(self) -> int:
        return sum(1 for r in self.load().values() if r.status == PhaseStatus.SUCCEEDED)

    # --- Writing ---

    def mark_success(self, phase_id: str, detail: Optional[str] = None) -> ExecutionRecord:
        """Record a successful run. Re-marking only refreshes timestamp/detail."""
        return self._put(phase_id, PhaseStatus.SUCCEEDED, detail)

    def mark_failure(self, phase_id: str, detail: Optional[str] = None) -> ExecutionRecord:
        return self._put(phase_id, PhaseStatus.FAILED, detail)

    def _put(self, phase_id: str, status: str, detail: Optional[str]) -> ExecutionRecord:
        records = self.load()
        record = ExecutionRecord(
            phase_id=phase_id,
            status=status,
            timestamp=utc_now(),
            detail=detail,
        )
        records[phase_id] = record
        self._flush()
        logger.debug(f"State updated: {phase_id}={status}")
        return record

    def clear(self, phase_id: str) -> bool:
        """Forget one phase. Returns False if there was nothing to clear."""
        records = self.load()
        if phase_id not in records:
            return False
        del records[phase_id]
        self._flush()
        logger.info(f"Cleared state for: {phase_id}")
        return True

    def clear_all(self) -> None:
        self._records = {}
        if self.path.exists():
            self.path.unlink()
        logger.info("Cleared all bootstrap state")

    def _flush(self) -> None:
        """Atomically replace the state file with the in-memory records."""
        document = {
            "version": STATE_FORMAT_VERSION,
            "phases": {
                pid: record.to_dict() for pid, record in sorted(self.load().items())
            },
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise


# --- Advisory lock ---

def lock_path_for(state_path: Path) -> Path:
    state_path = Path(state_path)
    return state_path.with_name(state_path.name + LOCK_FILE_SUFFIX)


@contextmanager
def state_lock(state_path: Path) -> Generator[Path, None, None]:
    """
    Hold an advisory lock next to the state file for the duration of a batch.

    Raises:
        PreflightError: If another invocation already holds the lock.
    """
    lock_file = lock_path_for(state_path)
    lock_file.parent.mkdir(parents=True, exist_ok=True)
    try:
        fd = os.open(str(lock_file), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    except FileExistsError:
        holder = ""
        try:
            holder = lock_file.read_text(encoding="utf-8").strip()
        except OSError:
            pass
        raise PreflightError([
            f"Another bootstrap run holds the lock {lock_file} ({holder or 'unknown holder'}). "
            f"Remove the file if that run is no longer alive."
        ])

    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(f"pid {os.getpid()} locked at {datetime.now().isoformat()}\n")

    try:
        yield lock_file
    finally:
        if lock_file.exists():
            lock_file.unlink()
