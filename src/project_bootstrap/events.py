"""Structured phase and batch events.

Formatting is left to the logging handlers (see logging_config); this
module only decides which events exist and what fields they carry.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

EVENT_LOGGER_NAME = "project_bootstrap.events"

# Phase transitions
SKIP = "skip"
START = "start"
SUCCESS = "success"
FAILURE = "failure"
TIMEOUT = "timeout"
BLOCKED = "blocked"

# Batch transitions
BATCH_START = "batch_start"
BATCH_COMPLETE = "batch_complete"
BATCH_ABORT = "batch_abort"

_LEVELS = {
    SKIP: logging.INFO,
    START: logging.INFO,
    SUCCESS: logging.INFO,
    FAILURE: logging.ERROR,
    TIMEOUT: logging.ERROR,
    BLOCKED: logging.WARNING,
    BATCH_START: logging.INFO,
    BATCH_COMPLETE: logging.INFO,
    BATCH_ABORT: logging.ERROR,
}


@dataclass
class Event:
    name: str
    phase_id: Optional[str] = None
    fields: Dict[str, Any] = field(default_factory=dict)


def _render(event: Event) -> str:
    label = event.name.upper()
    subject = f" {event.phase_id}" if event.phase_id else ""
    extras = " ".join(f"{k}={v}" for k, v in event.fields.items() if v is not None)
    return f"[{label}]{subject}" + (f" ({extras})" if extras else "")


class EventLog:
    """Emits one log record per transition and keeps them for the recap."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(EVENT_LOGGER_NAME)
        self.events: List[Event] = []

    def emit(self, name: str, phase_id: Optional[str] = None, **fields: Any) -> Event:
        event = Event(name=name, phase_id=phase_id, fields=fields)
        self.events.append(event)
        self.logger.log(
            _LEVELS.get(name, logging.INFO),
            _render(event),
            extra={"event": name, "phase_id": phase_id, "fields": fields},
        )
        return event

    def names(self, phase_id: Optional[str] = None) -> List[str]:
        return [e.name for e in self.events if phase_id is None or e.phase_id == phase_id]
