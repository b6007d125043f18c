# cli/commands/dag.py
"""DAG commands: validate, run, resume, inspect, visualize and clean up multi-feature runs."""

import asyncio
import functools
import signal
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import click
import structlog

from specflow.config import Settings
from specflow.dag.models import DAGDefinition
from specflow.dag.parser import YAMLParser
from specflow.dag.validator import DAGValidationError, DAGValidator
from specflow.dag.visualizer import render_ascii, render_compact, to_mermaid
from specflow.exceptions import SpecflowError
from specflow.execution.executor import FeatureExecutor
from specflow.execution.pipeline import FeaturePipeline, SubprocessPipeline
from specflow.execution.scheduler import RunController
from specflow.logs import (
    all_projects_usage,
    format_bytes,
    log_root,
    project_usage,
    remove_dag_logs,
    remove_projects,
    resolve_log_path,
    stream_logs,
)
from specflow.storage.backends.filesystem import RunStateStore
from specflow.storage.models import DAGRun, RunStatus
from specflow.utils.paths import get_project_id
from specflow.watch import StatusWatcher, render_status_table

logger = structlog.get_logger(__name__)

EXIT_INTERRUPTED = 130


@dataclass
class CLIContext:
    """Shared state handed to every command through click's context object."""
    settings: Settings
    verbose: bool = False
    pipeline: Optional[FeaturePipeline] = None

    @property
    def store(self) -> RunStateStore:
        return RunStateStore(self.settings.state_dir)

    def controller(self) -> RunController:
        pipeline = self.pipeline or SubprocessPipeline(self.settings.pipeline_command)
        executor = FeatureExecutor(pipeline, default_timeout=self.settings.feature_timeout)
        return RunController(self.store, executor, self.settings)


# ============================================================================
# Helpers
# ============================================================================

def fail(message: str) -> None:
    click.echo(click.style(f"❌ {message}", fg="red"), err=True)
    sys.exit(1)


def handle_errors(fn):
    """Report domain errors in red and exit 1."""
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except DAGValidationError as e:
            click.echo(click.style("❌ DAG validation failed:", fg="red"), err=True)
            for error in e.errors:
                click.echo(click.style(f"  - {error}", fg="red"), err=True)
            sys.exit(1)
        except SpecflowError as e:
            fail(str(e))
    return wrapper


def run_async(coro):
    """Run a coroutine, turning SIGINT/SIGTERM into cancellation of the main task."""
    async def main():
        loop = asyncio.get_running_loop()
        task = asyncio.current_task()
        installed = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, task.cancel)
                installed.append(sig)
            except (NotImplementedError, RuntimeError, ValueError):
                logger.debug("signal_handler_unavailable", signal=sig)
        try:
            return await coro
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)

    return asyncio.run(main())


def load_definition(dag_file: Path) -> DAGDefinition:
    return YAMLParser.parse_file(dag_file)


def resolve_run(
    store: RunStateStore,
    dag_file: Optional[Path] = None,
    run_id: Optional[str] = None,
) -> DAGRun:
    """Explicit run id, else the workflow's current run, else the latest run."""
    if run_id:
        return store.load_by_run_id(run_id)
    if dag_file is not None:
        return store.load_by_workflow(dag_file)
    return store.find_latest()


def report_run(run: DAGRun) -> None:
    click.echo(render_status_table(run))
    click.echo()
    if run.status == RunStatus.COMPLETED:
        click.echo(click.style(f"✅ Run {run.run_id} completed", fg="green"))
    elif run.status == RunStatus.FAILED:
        fail(f"Run {run.run_id} failed")
    else:
        click.echo(f"Run {run.run_id} is {run.status.value}")


def execute(coro, hint: str) -> DAGRun:
    try:
        return run_async(coro)
    except (asyncio.CancelledError, KeyboardInterrupt):
        click.echo(click.style("\n⚠️  Interrupted; progress has been saved.", fg="yellow"), err=True)
        click.echo(f"💡 Continue with: {hint}", err=True)
        sys.exit(EXIT_INTERRUPTED)


# ============================================================================
# DAG Commands
# ============================================================================

@click.group()
def dag():
    """Run multi-feature DAG workflows - validate, run, resume, status, logs."""
    pass


@dag.command()
@click.argument('dag_file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@handle_errors
def validate(dag_file: Path):
    """Validate a DAG file without running it."""
    definition = load_definition(dag_file)
    ok, errors = DAGValidator().validate(definition)

    if not ok:
        click.echo(click.style(f"❌ {dag_file} is invalid ({len(errors)} error(s)):", fg="red"), err=True)
        for error in errors:
            click.echo(click.style(f"  - {error}", fg="red"), err=True)
        sys.exit(1)

    click.echo(click.style(f"✅ {dag_file} is valid", fg="green"))
    click.echo(f"   Layers: {len(definition.layers)}")
    click.echo(f"   Features: {definition.feature_count}")


@dag.command()
@click.argument('dag_file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--dry-run', is_flag=True, help='Show the execution plan without running anything')
@click.option('--fresh', is_flag=True, help='Ignore any unfinished run of this DAG and start a new one')
@click.option('--max-parallel', '-p', type=click.IntRange(min=0), default=None,
              help='Maximum concurrent features per wave (0 = unbounded)')
@click.pass_obj
@handle_errors
def run(obj: CLIContext, dag_file: Path, dry_run: bool, fresh: bool, max_parallel: Optional[int]):
    """Run a DAG, resuming its unfinished run if one exists."""
    definition = load_definition(dag_file)
    controller = obj.controller()

    if dry_run:
        click.echo(controller.dry_run_report(definition, dag_file, max_parallel))
        return

    click.echo(f"🚀 Running DAG: {definition.name or dag_file}")
    result = execute(
        controller.run(definition, dag_file, max_parallel=max_parallel, fresh=fresh),
        f"specflow dag run {dag_file}",
    )
    report_run(result)


@dag.command()
@click.argument('run_id')
@click.argument('dag_file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--max-parallel', '-p', type=click.IntRange(min=0), default=None,
              help='Maximum concurrent features per wave (0 = unbounded)')
@click.pass_obj
@handle_errors
def resume(obj: CLIContext, run_id: str, dag_file: Path, max_parallel: Optional[int]):
    """Resume an interrupted run by id."""
    definition = load_definition(dag_file)
    controller = obj.controller()

    click.echo(f"🔄 Resuming run {run_id}")
    result = execute(
        controller.resume(run_id, definition, max_parallel=max_parallel),
        f"specflow dag resume {run_id} {dag_file}",
    )
    report_run(result)


@dag.command()
@click.argument('dag_file', required=False, type=click.Path(path_type=Path))
@click.option('--run-id', help='Show a specific run')
@click.pass_obj
@handle_errors
def status(obj: CLIContext, dag_file: Optional[Path], run_id: Optional[str]):
    """Show the status of a run (defaults to the most recent run)."""
    result = resolve_run(obj.store, dag_file, run_id)
    click.echo(render_status_table(result))


@dag.command()
@click.pass_obj
@handle_errors
def runs(obj: CLIContext):
    """List all runs, newest first."""
    all_runs = obj.store.list_runs()
    if not all_runs:
        click.echo(f"📭 No DAG runs found in {obj.settings.state_dir}")
        return

    header = f"{'RUN ID':<26} {'STATUS':<10} {'STARTED':<20} {'SPECS':<7} WORKFLOW"
    click.echo(header)
    click.echo("-" * len(header))
    for item in all_runs:
        counts = item.status_counts()
        done = f"{counts['completed']}/{len(item.specs)}"
        started = item.started_at.strftime("%Y-%m-%d %H:%M:%S")
        click.echo(f"{item.run_id:<26} {item.status.value:<10} {started:<20} {done:<7} {item.workflow_path}")


@dag.command()
@click.argument('args', nargs=-1, required=True)
@click.option('--latest', is_flag=True, help='Use the most recent run')
@click.option('--run-id', help='Use a specific run')
@click.option('--follow', '-f', is_flag=True, help='Keep streaming new lines until interrupted')
@click.pass_obj
@handle_errors
def logs(obj: CLIContext, args: Tuple[str, ...], latest: bool, run_id: Optional[str], follow: bool):
    """Print a feature's log: logs (DAG_FILE | --latest | --run-id ID) SPEC_ID"""
    if len(args) == 2:
        if latest or run_id:
            raise click.UsageError("pass either DAG_FILE or --latest/--run-id, not both")
        dag_file, spec_id = Path(args[0]), args[1]
    elif len(args) == 1:
        if not latest and not run_id:
            raise click.UsageError("a DAG_FILE, --latest or --run-id is required")
        if latest and run_id:
            raise click.UsageError("--latest and --run-id are mutually exclusive")
        dag_file, spec_id = None, args[0]
    else:
        raise click.UsageError("expected: logs (DAG_FILE | --latest | --run-id ID) SPEC_ID")

    store = obj.store
    target = resolve_run(store, dag_file, run_id)
    log_path = resolve_log_path(obj.settings.state_dir, target, spec_id)

    if obj.verbose:
        click.echo(f"📄 {log_path}", err=True)

    try:
        run_async(stream_logs(
            log_path,
            follow=follow,
            emit=click.echo,
            poll_interval=obj.settings.poll_interval,
        ))
    except (asyncio.CancelledError, KeyboardInterrupt):
        pass


@dag.command()
@click.argument('dag_file', required=False, type=click.Path(path_type=Path))
@click.option('--run-id', help='Watch a specific run')
@click.option('--interval', '-i', type=click.FloatRange(min=0, min_open=True), default=None,
              help='Refresh interval in seconds')
@click.pass_obj
@handle_errors
def watch(obj: CLIContext, dag_file: Optional[Path], run_id: Optional[str], interval: Optional[float]):
    """Refresh a run's status table until it finishes."""
    target = resolve_run(obj.store, dag_file, run_id)
    watcher = StatusWatcher(
        obj.store,
        target.run_id,
        interval=interval or obj.settings.watch_interval,
        emit=click.echo,
        clear_screen=sys.stdout.isatty(),
    )
    try:
        run_async(watcher.watch())
    except (asyncio.CancelledError, KeyboardInterrupt):
        pass


@dag.command()
@click.argument('dag_file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--format', '-f', 'output_format',
              type=click.Choice(['ascii', 'compact', 'mermaid']), default='ascii',
              help='Output format')
@handle_errors
def visualize(dag_file: Path, output_format: str):
    """Visualize the layers and dependencies of a DAG."""
    definition = load_definition(dag_file)

    renderers = {
        'ascii': render_ascii,
        'compact': render_compact,
        'mermaid': to_mermaid,
    }
    click.echo(renderers[output_format](definition))


@dag.command('clean-logs')
@click.option('--all', 'all_projects', is_flag=True, help='Clean logs of every project, not just this one')
@click.option('--force', '-f', is_flag=True, help='Delete without prompting')
@click.pass_obj
@handle_errors
def clean_logs(obj: CLIContext, all_projects: bool, force: bool):
    """Delete hierarchical DAG logs from the log cache."""
    root = log_root(obj.settings)

    if all_projects:
        projects = all_projects_usage(root)
        if not projects:
            click.echo("📭 No log files found.")
            return
        click.echo("=== DAG Logs Across All Projects ===\n")
        for project in projects:
            click.echo(f"Project: {project.project_id} ({format_bytes(project.total_bytes)})")
            for usage in project.dags:
                click.echo(f"  • {usage.dag_id}: {format_bytes(usage.size_bytes)}")
            click.echo()
        total = sum(project.total_bytes for project in projects)
        click.echo(f"Grand Total: {format_bytes(total)}")
    else:
        project = project_usage(root, get_project_id())
        if project is None:
            click.echo("📭 No log files found for current project.")
            return
        click.echo("=== DAG Logs for Current Project ===")
        click.echo(f"Project: {project.project_id}\n")
        for usage in project.dags:
            click.echo(f"  • {usage.dag_id}: {format_bytes(usage.size_bytes)}")
        total = project.total_bytes
        click.echo(f"\nTotal: {format_bytes(total)}")

    if not force:
        if not sys.stdin.isatty():
            click.echo("→ Logs kept [non-interactive mode]")
            return
        if not click.confirm(f"\nDelete all logs? ({format_bytes(total)})", default=False):
            click.echo("→ Logs kept")
            return

    result = remove_projects(projects) if all_projects else remove_dag_logs(project)
    for name in result.removed:
        click.echo(f"✓ Deleted {name}")
    for name, error in result.failed:
        click.echo(click.style(f"✗ Failed to remove {name}: {error}", fg="red"), err=True)
    click.echo(click.style(f"\n✓ Total freed: {format_bytes(result.freed_bytes)}", fg="green", bold=True))
