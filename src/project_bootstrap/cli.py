"""CLI entrypoint for the bootstrap orchestrator."""

import signal
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Tuple

import click

from project_bootstrap.config import Config, ConfigError, load_config
from project_bootstrap.constants import (
    DEFAULT_PHASES_FILE,
    EXIT_CONFIG_ERROR,
    EXIT_PREFLIGHT_FAILED,
)
from project_bootstrap.errors import ConfigurationError, PreflightError
from project_bootstrap.logging_config import setup_logging
from project_bootstrap.registry import PhaseRegistry
from project_bootstrap.state_store import StateStore


STARTER_PHASES = """\
# Bootstrap phases. Each phase runs once; completed phases are skipped on re-run.
# Run `bootstrap list` to inspect and `bootstrap run --dry-run` to preview.
version: 1

defaults:
  timeout: 600

phases:
  - id: install
    name: Install dependencies
    command: pnpm install
    verify: test -d node_modules
    requires: [pnpm]

  - id: env
    name: Seed environment file
    command: test -f .env.local || cp .env.example .env.local

  - id: migrate
    name: Run database migrations
    command: pnpm db:migrate
    dependencies: [install, env]
    timeout: 300
"""


def _fail(message: str, code: int) -> None:
    click.echo(message, err=True)
    raise SystemExit(code)


def _load_registry(config: Config) -> PhaseRegistry:
    try:
        return PhaseRegistry.from_file(config.phases_file)
    except ConfigurationError as e:
        _fail(f"Configuration error:\n{e}", EXIT_CONFIG_ERROR)


def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt


@contextmanager
def _sigterm_as_interrupt():
    """Treat SIGTERM like Ctrl-C so the running phase is torn down cleanly."""
    previous = signal.signal(signal.SIGTERM, _raise_interrupt)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


@click.group()
@click.version_option(package_name="project-bootstrap")
@click.option(
    "--project-root",
    type=click.Path(file_okay=False),
    default=None,
    help="Project checkout to bootstrap (default: BOOTSTRAP_PROJECT_ROOT or current dir).",
)
@click.option(
    "--phases-file",
    type=click.Path(dir_okay=False),
    default=None,
    help=f"Phase declarations (default: {DEFAULT_PHASES_FILE} in the project root).",
)
@click.pass_context
def cli(ctx: click.Context, project_root: Optional[str], phases_file: Optional[str]):
    """Bootstrap - idempotent, resumable project setup phases."""
    try:
        config = load_config(Path(project_root) if project_root else None)
    except ConfigError as e:
        _fail(f"Configuration error:\n{e}", EXIT_CONFIG_ERROR)

    if phases_file:
        config.phases_file = Path(phases_file).expanduser().resolve()

    setup_logging(None, verbose=config.verbose, log_format=config.log_format)
    ctx.obj = config


@cli.command()
@click.argument("phase_ids", nargs=-1)
@click.option("-n", "--dry-run", is_flag=True, help="Preview without executing or recording anything.")
@click.option("-f", "--force", is_flag=True, help="Re-run planned phases even if they already succeeded.")
@click.option(
    "--force-phase", "force_phases",
    multiple=True,
    metavar="ID",
    help="Re-run this phase even if it already succeeded (repeatable).",
)
@click.option(
    "--continue-on-failure/--fail-fast", "continue_on_failure",
    default=None,
    help="Keep running phases that do not depend on a failed one (default: BOOTSTRAP_EXECUTION_MODE).",
)
@click.option("--allow-dirty", is_flag=True, help="Skip the git working-tree cleanliness check.")
@click.option("-v", "--verbose", is_flag=True, help="Verbose output.")
@click.pass_obj
def run(
    config: Config,
    phase_ids: Tuple[str, ...],
    dry_run: bool,
    force: bool,
    force_phases: Tuple[str, ...],
    continue_on_failure: Optional[bool],
    allow_dirty: bool,
    verbose: bool,
):
    """Run phases. With no PHASE_IDS, runs every enabled phase.

    PHASE_IDS: Phases to run; their dependencies are included automatically.
    """
    from project_bootstrap.executor import ExecutionPolicy, PhaseExecutor, RunOptions
    from project_bootstrap.observe import print_recap, write_batch_report

    if allow_dirty:
        config.allow_dirty = True

    registry = _load_registry(config)
    log_file = setup_logging(
        config.log_dir,
        verbose=verbose or config.verbose,
        log_format=config.log_format,
    )

    policy = None
    if continue_on_failure is not None:
        policy = ExecutionPolicy.CONTINUE if continue_on_failure else ExecutionPolicy.FAIL_FAST

    options = RunOptions.from_config(
        config,
        dry_run=dry_run,
        force_all=force,
        force_phases=force_phases,
        policy=policy,
    )
    executor = PhaseExecutor(
        registry,
        StateStore(config.state_file),
        config,
        options,
        log_file=log_file,
    )

    requested = list(phase_ids) or None
    try:
        with _sigterm_as_interrupt():
            result = executor.run(requested)
    except ConfigurationError as e:
        _fail(f"Configuration error:\n{e}", EXIT_CONFIG_ERROR)
    except PreflightError as e:
        _fail(f"{e}\nNo phases were executed.", EXIT_PREFLIGHT_FAILED)

    print_recap(result, log_file)

    if not dry_run:
        report_path = write_batch_report(result, config.reports_dir, requested, log_file)
        click.echo(f"Report: {report_path}")

    raise SystemExit(result.exit_code)


@cli.command("plan")
@click.argument("phase_ids", nargs=-1)
@click.option("-f", "--force", is_flag=True, help="Plan as if every phase were forced.")
@click.option("--force-phase", "force_phases", multiple=True, metavar="ID")
@click.pass_obj
def plan_cmd(config: Config, phase_ids: Tuple[str, ...], force: bool, force_phases: Tuple[str, ...]):
    """Show the run plan without executing anything."""
    from project_bootstrap.observe import print_plan

    registry = _load_registry(config)
    store = StateStore(config.state_file)
    try:
        plan = registry.resolve(
            list(phase_ids) or None,
            state=store,
            force_all=force,
            force=force_phases,
        )
    except ConfigurationError as e:
        _fail(f"Configuration error:\n{e}", EXIT_CONFIG_ERROR)

    print_plan(plan)


@cli.command("list")
@click.pass_obj
def list_cmd(config: Config):
    """List all declared phases."""
    from project_bootstrap.observe import print_phase_list

    print_phase_list(_load_registry(config))


@cli.command()
@click.pass_obj
def status(config: Config):
    """Show recorded status for every phase."""
    from project_bootstrap.observe import print_status

    print_status(_load_registry(config), StateStore(config.state_file))


@cli.command()
@click.argument("phase_ids", nargs=-1)
@click.option("--all", "clear_all", is_flag=True, help="Clear state for every phase (start over).")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation with --all.")
@click.pass_obj
def clear(config: Config, phase_ids: Tuple[str, ...], clear_all: bool, yes: bool):
    """Clear recorded state so phases run again.

    PHASE_IDS: Phases to forget. Use --all to reset everything.
    """
    if clear_all == bool(phase_ids):
        click.echo("Error: Specify PHASE_IDS or --all (not both).", err=True)
        raise SystemExit(1)

    store = StateStore(config.state_file)

    if clear_all:
        if not yes:
            click.confirm(f"Clear all bootstrap state in {store.path}?", abort=True)
        store.clear_all()
        click.echo("Cleared all bootstrap state.")
        return

    for phase_id in phase_ids:
        if store.clear(phase_id):
            click.echo(f"Cleared: {phase_id}")
        else:
            click.echo(f"No recorded state: {phase_id}")


@cli.command("check-config")
@click.pass_obj
def check_config(config: Config):
    """Validate phase declarations and run pre-flight checks."""
    from project_bootstrap.preflight import run_preflight

    registry = _load_registry(config)
    try:
        plan = registry.resolve()
    except ConfigurationError as e:
        _fail(f"Configuration error:\n{e}", EXIT_CONFIG_ERROR)

    click.echo(f"Phases file: {config.phases_file}")
    click.echo(f"  {len(registry)} phase(s) declared, {len(plan.order)} enabled")
    click.echo(f"State file:  {config.state_file}")
    click.echo(f"Mode:        {config.execution_mode}")

    report = run_preflight(config, [registry.get(pid) for pid in plan.order])
    for warning in report.warnings:
        click.echo(f"  warning: {warning}")
    if not report.ok:
        _fail(str(PreflightError(report.errors)), EXIT_PREFLIGHT_FAILED)

    click.echo("Configuration OK.")


@cli.command()
@click.pass_obj
def report(config: Config):
    """Show the most recent batch report."""
    from project_bootstrap.observe import find_reports, print_report

    reports = find_reports(config.reports_dir)
    if not reports:
        click.echo("No batch reports found.")
        click.echo(f"  Searched: {config.reports_dir}")
        return

    print_report(reports[0])
    if len(reports) > 1:
        click.echo(f"\n{len(reports)} report(s) in {config.reports_dir}")


@cli.command()
@click.pass_obj
def init(config: Config):
    """Write a starter phases file into the project root."""
    path = config.phases_file
    if path.exists():
        click.echo(f"Phases file already exists: {path}")
        return

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(STARTER_PHASES)
    click.echo(f"Created: {path}")
    click.echo("Next steps:")
    click.echo("  1. Edit the phases to match your project")
    click.echo("  2. Run 'bootstrap run --dry-run' to preview")


if __name__ == "__main__":
    cli()
