"""Constants for the bootstrap orchestrator."""

import os

# Default file locations, relative to the project root
DEFAULT_PHASES_FILE = "bootstrap.yaml"
DEFAULT_STATE_FILE = ".bootstrap_state.json"
DEFAULT_LOG_DIR = "logs"
DEFAULT_REPORTS_DIR = ".bootstrap/reports"
LOCK_FILE_SUFFIX = ".lock"

STATE_FORMAT_VERSION = 1

# Seconds between SIGTERM and SIGKILL when a phase is torn down
KILL_GRACE_S = float(os.getenv("BOOTSTRAP_KILL_GRACE_S", "5"))

# Pause between attempts of a phase that declares retries
DEFAULT_RETRY_DELAY_S = 5.0

# Timeout for git helper calls (pre-flight only)
GIT_TIMEOUT_S = 10


# Exit codes reported to the invoking shell.
# 2 is left to click for usage errors.
EXIT_OK = 0
EXIT_PHASE_FAILED = 1
EXIT_CONFIG_ERROR = 3
EXIT_PREFLIGHT_FAILED = 4
EXIT_INTERRUPTED = 130


EXECUTION_MODES = ["fail-fast", "continue"]
LOG_FORMATS = ["plain", "json"]
