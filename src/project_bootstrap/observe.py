"""Operator-facing views: phase list, status, plan, recap and batch reports.

Read-only except for write_batch_report.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from project_bootstrap.execution_state import BatchResult, PhaseStatus, RunPlan
from project_bootstrap.registry import PhaseRegistry
from project_bootstrap.sequencer import format_command
from project_bootstrap.state_store import StateStore


STATUS_ICONS = {
    PhaseStatus.SUCCEEDED: "✓",
    PhaseStatus.FAILED: "✗",
    PhaseStatus.NEVER_RUN: "·",
}


def format_duration(seconds: float) -> str:
    """Format duration in human-readable form."""
    if seconds < 1:
        return f"{seconds*1000:.0f}ms"
    elif seconds < 60:
        return f"{seconds:.1f}s"
    else:
        mins = int(seconds // 60)
        secs = seconds % 60
        return f"{mins}m {secs:.0f}s"


def print_phase_list(registry: PhaseRegistry) -> None:
    print()
    print("BOOTSTRAP PHASES")
    print("=" * 60)
    print()

    for phase in registry.discover():
        enabled = "enabled" if phase.enabled else "DISABLED"
        print(f"{phase.id}: {phase.display_name} [{enabled}]")
        if phase.description:
            print(f"  Description: {phase.description}")
        print(f"  Command:     {format_command(phase.command)}")
        if phase.verify is not None:
            print(f"  Verify:      {format_command(phase.verify)}")
        if phase.dependencies:
            print(f"  Depends on:  {', '.join(phase.dependencies)}")
        if phase.timeout is not None:
            print(f"  Timeout:     {format_duration(phase.timeout)}")
        if phase.retries:
            print(f"  Retries:     {phase.retries} (delay {format_duration(phase.retry_delay)})")
        if phase.requires:
            print(f"  Requires:    {', '.join(phase.requires)}")
        print()

    print(f"{len(registry)} phase(s) declared")


def print_status(registry: PhaseRegistry, store: StateStore) -> None:
    """Print one line per declared phase with its recorded status."""
    print("=" * 78)
    print("BOOTSTRAP STATUS")
    print("=" * 78)
    print(f"State file: {store.path}")
    print()

    print(f"  {'PHASE':<24} {'STATUS':<11} {'UPDATED':<26} DETAIL")
    print("  " + "-" * 76)

    counts = {PhaseStatus.SUCCEEDED: 0, PhaseStatus.FAILED: 0, PhaseStatus.NEVER_RUN: 0}
    for phase in registry.discover():
        record = store.get(phase.id)
        counts[record.status] = counts.get(record.status, 0) + 1
        icon = STATUS_ICONS.get(record.status, "?")
        status = record.status if phase.enabled else f"{record.status}*"
        print(
            f"{icon} {phase.id:<24} {status:<11} {(record.timestamp or '-'):<26} "
            f"{record.detail or ''}"
        )

    orphaned = [r for r in store.records() if r.phase_id not in registry]
    if orphaned:
        print()
        print("Records for phases no longer declared:")
        for record in orphaned:
            print(f"  {record.phase_id} ({record.status}, {record.timestamp})")

    print()
    print(
        f"Completed: {counts[PhaseStatus.SUCCEEDED]}/{len(registry)}  "
        f"Failed: {counts[PhaseStatus.FAILED]}  "
        f"Never run: {counts[PhaseStatus.NEVER_RUN]}"
    )
    if any(not p.enabled for p in registry.discover()):
        print("  (* disabled)")


def print_plan(plan: RunPlan) -> None:
    print("RUN PLAN")
    print("-" * 40)
    if not plan.order:
        print("  Nothing to run.")
        return

    skipped = set(plan.skipped)
    position = 0
    for phase_id in plan.order:
        if phase_id in skipped:
            print(f"   -  {phase_id} (skip: already succeeded)")
        else:
            position += 1
            print(f"  {position:>2}. {phase_id}")
    print()
    print(f"  To run: {len(plan.phase_ids)}  Skipped: {len(plan.skipped)}")


def print_recap(result: BatchResult, log_file: Optional[Path] = None) -> None:
    """
    Print a human-readable recap of a batch.

    Goal: understand the whole run at a glance, including how to recover.
    """
    mode = "dry-run (no commands executed)" if result.dry_run else "live"

    print()
    print("=" * 60)
    print("BOOTSTRAP RECAP")
    print("=" * 60)
    print(f"  Mode:      {mode}")
    print(f"  Outcome:   {result.state}")
    print(f"  Duration:  {format_duration(result.duration_seconds)}")
    print(
        f"  Phases:    succeeded={len(result.succeeded)} skipped={len(result.skipped)} "
        f"failed={len(result.failed)} not_attempted={len(result.not_attempted)}"
    )
    print()

    if result.failed:
        print("FAILURES")
        print("-" * 40)
        for phase_id, detail in result.failed.items():
            marker = " (first)" if phase_id == result.first_failure else ""
            print(f"  ✗ {phase_id}: {detail}{marker}")
        print()

    if result.not_attempted:
        print("NEVER ATTEMPTED")
        print("-" * 40)
        for phase_id in result.not_attempted:
            reason = " (blocked by failed dependency)" if phase_id in result.blocked else ""
            print(f"  - {phase_id}{reason}")
        print()

    if result.interrupted:
        print("Interrupted. The phase in flight was not recorded and will be retried.")
        print()

    if result.failed or result.interrupted:
        print("RECOVERY OPTIONS")
        print("-" * 40)
        print("  Retry (skips completed phases):   bootstrap run")
        print("  Force re-run of one phase:        bootstrap run --force-phase <id>")
        print("  Start over:                       bootstrap clear --all")
        if log_file is not None:
            print(f"  Full output:                      {log_file}")
        print()
    else:
        print("  ✓ No failures detected")
        print()


# --- Batch reports ---

def write_batch_report(
    result: BatchResult,
    reports_dir: Path,
    requested: Optional[List[str]] = None,
    log_file: Optional[Path] = None,
) -> Path:
    """
    Write a structured batch report to disk.

    Filename: batch_{timestamp}.json
    """
    reports_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    report_path = reports_dir / f"batch_{timestamp}.json"

    report = result.to_dict()
    report["requested"] = requested
    report["log_file"] = str(log_file) if log_file else None

    report_path.write_text(json.dumps(report, indent=2))
    return report_path


def find_reports(reports_dir: Path) -> List[dict]:
    """Find all batch reports, most recent first."""
    reports = []

    if not reports_dir.exists():
        return reports

    for f in reports_dir.glob("batch_*.json"):
        try:
            data = json.loads(f.read_text())
            data["_report_file"] = str(f)
            reports.append(data)
        except (json.JSONDecodeError, IOError):
            pass

    reports.sort(key=lambda r: r.get("started_at") or "", reverse=True)
    return reports


def print_report(report: dict) -> None:
    print("LATEST BATCH")
    print("-" * 40)
    print(f"  Report:     {report['_report_file']}")
    print(f"  Started:    {(report.get('started_at') or '-')[:19]}")
    print(f"  Outcome:    {report.get('state')} (exit {report.get('exit_code')})")
    print(f"  Duration:   {format_duration(report.get('duration_seconds') or 0.0)}")
    print(f"  Succeeded:  {', '.join(report.get('succeeded') or []) or '-'}")
    print(f"  Skipped:    {', '.join(report.get('skipped') or []) or '-'}")
    failed = report.get("failed") or {}
    if failed:
        print("  Failed:")
        for phase_id, detail in failed.items():
            print(f"    ✗ {phase_id}: {detail}")
    if report.get("not_attempted"):
        print(f"  Not attempted: {', '.join(report['not_attempted'])}")
    if report.get("log_file"):
        print(f"  Log:        {report['log_file']}")
