"""Logging setup for bootstrap runs: console plus a per-run log file."""

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

ROOT_LOGGER_NAME = "project_bootstrap"


class JsonFormatter(logging.Formatter):
    """One JSON object per line, including event fields when present."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": datetime.fromtimestamp(record.created).isoformat(timespec="seconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        event = getattr(record, "event", None)
        if event:
            payload["event"] = event
            payload["phase_id"] = getattr(record, "phase_id", None)
            payload.update(getattr(record, "fields", {}) or {})
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _make_formatter(log_format: str, console: bool) -> logging.Formatter:
    if log_format == "json":
        return JsonFormatter()
    if console:
        return logging.Formatter(fmt="%(levelname)s: %(message)s")
    return logging.Formatter(
        fmt="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def setup_logging(
    log_dir: Optional[Path] = None,
    verbose: bool = False,
    log_format: str = "plain",
) -> Optional[Path]:
    """
    Configure the package logger.

    Args:
        log_dir: Directory for the run's log file; None disables file logging
        verbose: Show DEBUG messages on the console
        log_format: "plain" or "json"

    Returns:
        Path of the log file, or None when file logging is disabled.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(_make_formatter(log_format, console=True))
    logger.addHandler(console_handler)

    log_path = None
    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = log_dir / f"bootstrap_{timestamp}.log"

        file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(_make_formatter(log_format, console=False))
        logger.addHandler(file_handler)

        logger.debug(f"Logging to: {log_path}")

    return log_path
