"""Phase Registry: static phase declarations, dependency closure and run order.

Phases are declared in a YAML (or JSON) file:

    version: 1
    defaults:
      timeout: 600
      retries: 1
    phases:
      - id: install
        command: pnpm install
        verify: test -d node_modules
        requires: [pnpm]
      - id: migrate
        command: pnpm db:migrate
        dependencies: [install]

Nothing is inferred from file presence; a phase exists only if declared.
"""

import heapq
import json
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

import jsonschema
import yaml

from project_bootstrap.constants import DEFAULT_RETRY_DELAY_S
from project_bootstrap.errors import ConfigurationError
from project_bootstrap.execution_state import Phase, RunPlan


_COMMAND_SCHEMA = {
    "oneOf": [
        {"type": "string", "minLength": 1},
        {"type": "array", "items": {"type": "string"}, "minItems": 1},
    ]
}

PHASES_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["phases"],
    "properties": {
        "version": {"type": "integer", "enum": [1]},
        "defaults": {
            "type": "object",
            "properties": {
                "timeout": {"type": "number", "exclusiveMinimum": 0},
                "retries": {"type": "integer", "minimum": 0},
                "retry_delay": {"type": "number", "minimum": 0},
            },
            "additionalProperties": False,
        },
        "phases": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "command"],
                "properties": {
                    "id": {"type": "string", "pattern": "^[A-Za-z0-9][A-Za-z0-9_.:/-]*$"},
                    "name": {"type": "string"},
                    "description": {"type": "string"},
                    "command": _COMMAND_SCHEMA,
                    "verify": _COMMAND_SCHEMA,
                    "dependencies": {"type": "array", "items": {"type": "string"}},
                    "timeout": {"type": "number", "exclusiveMinimum": 0},
                    "retries": {"type": "integer", "minimum": 0},
                    "retry_delay": {"type": "number", "minimum": 0},
                    "enabled": {"type": "boolean"},
                    "requires": {"type": "array", "items": {"type": "string"}},
                    "cwd": {"type": "string"},
                    "env": {
                        "type": "object",
                        "additionalProperties": {"type": ["string", "number", "boolean"]},
                    },
                },
                "additionalProperties": False,
            },
        },
    },
}


# --- Loading ---

def _read_declarations(path: Path) -> dict:
    if not path.exists():
        raise ConfigurationError(f"Phases file not found: {path}")

    content = path.read_text(encoding="utf-8")
    try:
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content)
        elif path.suffix == ".json":
            data = json.loads(content)
        else:
            raise ConfigurationError(
                f"Unsupported file type: {path.suffix}. Use .yaml, .yml, or .json"
            )
    except yaml.YAMLError as e:
        if hasattr(e, "problem_mark") and e.problem_mark:
            mark = e.problem_mark
            raise ConfigurationError(
                f"{path.name}: YAML parse error at line {mark.line + 1}, "
                f"column {mark.column + 1}: {e.problem or 'syntax error'}"
            )
        raise ConfigurationError(f"{path.name}: YAML parse error: {e}")
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"{path.name}: JSON parse error: {e}")

    if data is None:
        raise ConfigurationError(f"{path.name}: file is empty")
    return data


def validate_declarations(data: object, source: str = "phases") -> List[str]:
    """Validate declarations against PHASES_SCHEMA, returning ALL errors."""
    errors = []
    validator = jsonschema.Draft7Validator(PHASES_SCHEMA)
    for error in sorted(validator.iter_errors(data), key=lambda e: [str(p) for p in e.absolute_path]):
        path = ".".join(str(p) for p in error.absolute_path) if error.absolute_path else "(root)"
        errors.append(f"{source}: {error.message} at {path}")
    return errors


def _as_command(value):
    if value is None or isinstance(value, str):
        return value
    return tuple(value)


def phases_from_declarations(data: dict, source: str = "phases") -> List[Phase]:
    errors = validate_declarations(data, source)
    if errors:
        raise ConfigurationError(
            "\n".join([f"Invalid phase declarations ({len(errors)} error(s)):"]
                      + [f"  - {e}" for e in errors])
        )

    defaults = data.get("defaults") or {}
    default_timeout = defaults.get("timeout")

    phases = []
    for entry in data["phases"]:
        env = entry.get("env") or {}
        phases.append(Phase(
            id=entry["id"],
            command=_as_command(entry["command"]),
            dependencies=tuple(entry.get("dependencies", [])),
            timeout=entry.get("timeout", default_timeout),
            retries=entry.get("retries", defaults.get("retries", 0)),
            retry_delay=entry.get("retry_delay", defaults.get("retry_delay", DEFAULT_RETRY_DELAY_S)),
            verify=_as_command(entry.get("verify")),
            name=entry.get("name"),
            description=entry.get("description"),
            enabled=entry.get("enabled", True),
            requires=tuple(entry.get("requires", [])),
            cwd=entry.get("cwd"),
            env=tuple(sorted((str(k), str(v)) for k, v in env.items())),
        ))
    return phases


def load_phase_file(path: Path) -> List[Phase]:
    """
    Load and validate phase declarations from YAML or JSON.

    Raises:
        ConfigurationError: On parse errors or schema violations (all listed).
    """
    path = Path(path)
    return phases_from_declarations(_read_declarations(path), source=path.name)


# --- Registry ---

class PhaseRegistry:
    """Declared phases in declaration order, validated at construction."""

    def __init__(self, phases: Iterable[Phase]):
        self._phases: List[Phase] = list(phases)
        self._by_id: Dict[str, Phase] = {}
        self._index: Dict[str, int] = {}

        duplicates = []
        for i, phase in enumerate(self._phases):
            if phase.id in self._by_id:
                duplicates.append(phase.id)
                continue
            self._by_id[phase.id] = phase
            self._index[phase.id] = i
        if duplicates:
            raise ConfigurationError(
                f"Duplicate phase id(s): {', '.join(sorted(set(duplicates)))}"
            )

        unknown = []
        for phase in self._phases:
            for dep in phase.dependencies:
                if dep not in self._by_id:
                    unknown.append(f"'{phase.id}' depends on unknown phase '{dep}'")
                elif dep == phase.id:
                    unknown.append(f"'{phase.id}' depends on itself")
        if unknown:
            raise ConfigurationError("Invalid dependencies: " + "; ".join(unknown))

    @classmethod
    def from_file(cls, path: Path) -> "PhaseRegistry":
        return cls(load_phase_file(path))

    def discover(self) -> List[Phase]:
        """All declared phases, in declaration order."""
        return list(self._phases)

    def get(self, phase_id: str) -> Phase:
        try:
            return self._by_id[phase_id]
        except KeyError:
            raise ConfigurationError(f"Unknown phase: {phase_id}")

    def __contains__(self, phase_id: str) -> bool:
        return phase_id in self._by_id

    def __len__(self) -> int:
        return len(self._phases)

    def enabled_ids(self) -> List[str]:
        return [p.id for p in self._phases if p.enabled]

    def dependents_of(self, phase_id: str) -> Set[str]:
        """Every phase that transitively depends on phase_id."""
        reverse: Dict[str, List[str]] = {pid: [] for pid in self._by_id}
        for phase in self._phases:
            for dep in phase.dependencies:
                reverse[dep].append(phase.id)

        found: Set[str] = set()
        stack = [phase_id]
        while stack:
            for child in reverse.get(stack.pop(), []):
                if child not in found:
                    found.add(child)
                    stack.append(child)
        return found

    # --- Planning ---

    def find_cycle(self, roots: Optional[Iterable[str]] = None) -> Optional[List[str]]:
        """
        Depth-first search for a back edge, using an explicit stack.

        Returns:
            The cycle as a path that starts and ends on the same id, or None.
        """
        WHITE, GREY, BLACK = 0, 1, 2
        color = {pid: WHITE for pid in self._by_id}

        for root in (roots if roots is not None else [p.id for p in self._phases]):
            if color[root] != WHITE:
                continue
            color[root] = GREY
            path = [root]
            pending = [iter(self._by_id[root].dependencies)]
            while pending:
                for dep in pending[-1]:
                    if color[dep] == GREY:
                        return path[path.index(dep):] + [dep]
                    if color[dep] == WHITE:
                        color[dep] = GREY
                        path.append(dep)
                        pending.append(iter(self._by_id[dep].dependencies))
                        break
                else:
                    color[path.pop()] = BLACK
                    pending.pop()
        return None

    def _closure(self, requested: List[str]) -> Set[str]:
        closure: Set[str] = set()
        stack = list(requested)
        while stack:
            pid = stack.pop()
            if pid in closure:
                continue
            closure.add(pid)
            stack.extend(self._by_id[pid].dependencies)
        return closure

    def resolve(
        self,
        requested_ids: Optional[Iterable[str]] = None,
        state=None,
        force_all: bool = False,
        force: Iterable[str] = (),
    ) -> RunPlan:
        """
        Compute the RunPlan for a batch.

        Args:
            requested_ids: Phases to run; None means every enabled phase
            state: Optional StateStore used to mark already-succeeded phases skipped
            force_all: Re-run every phase regardless of recorded success
            force: Ids to re-run regardless of recorded success

        Raises:
            ConfigurationError: Unknown id, disabled phase in the closure, or a cycle.
        """
        if requested_ids is None:
            requested = self.enabled_ids()
        else:
            requested = list(dict.fromkeys(requested_ids))

        unknown = [pid for pid in requested if pid not in self._by_id]
        unknown += [pid for pid in force if pid not in self._by_id and pid not in unknown]
        if unknown:
            raise ConfigurationError(
                f"Unknown phase id(s): {', '.join(unknown)}. "
                f"Known phases: {', '.join(p.id for p in self._phases)}"
            )

        cycle = self.find_cycle()
        if cycle:
            raise ConfigurationError(f"Dependency cycle detected: {' -> '.join(cycle)}")

        closure = self._closure(requested)

        disabled = sorted(
            (pid for pid in closure if not self._by_id[pid].enabled),
            key=self._index.__getitem__,
        )
        if disabled:
            raise ConfigurationError(
                f"Disabled phase(s) required by this plan: {', '.join(disabled)}"
            )

        # Kahn's algorithm; among ready phases the earliest declared goes first
        unlocks: Dict[str, List[str]] = {pid: [] for pid in closure}
        remaining: Dict[str, int] = {}
        for pid in closure:
            deps = set(self._by_id[pid].dependencies)
            remaining[pid] = len(deps)
            for dep in deps:
                unlocks[dep].append(pid)
        ready = [(self._index[pid], pid) for pid, n in remaining.items() if n == 0]
        heapq.heapify(ready)
        order: List[str] = []
        while ready:
            _, pid = heapq.heappop(ready)
            order.append(pid)
            for other in unlocks[pid]:
                remaining[other] -= 1
                if remaining[other] == 0:
                    heapq.heappush(ready, (self._index[other], other))

        skipped: List[str] = []
        if state is not None and not force_all:
            forced = set(force)
            skipped = [
                pid for pid in order
                if pid not in forced and state.has_succeeded(pid)
            ]

        return RunPlan(requested=requested, order=order, skipped=skipped)
