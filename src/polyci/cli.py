# cli.py
from __future__ import annotations

import sys
import threading
from pathlib import Path

import click

from polyci.config import PipelineConfig
from polyci.dag import build_graph
from polyci.errors import CIError, GraphError
from polyci.git_facts.git import current_branch, head_sha, remote_url, repo_name_from_url
from polyci.model import Workflow
from polyci.results import ResultStore
from polyci.runner import load_workflow, run_dag, select_jobs
from polyci.store import ArtifactStore, CacheStore
from polyci.triggers import Event, EventKind
from polyci.ui.console import Console, get_console, set_console

DEFAULT_WORKFLOW = "polyci_workflow.py"

EVENT_CHOICES = [k.value for k in EventKind]


def find_workflow_files() -> list[Path]:
    """Workflow files in the current directory: polyci_workflow.py first, then *_workflow.py."""
    current_dir = Path(".")
    default_workflow = current_dir / DEFAULT_WORKFLOW
    workflow_files = [default_workflow] if default_workflow.exists() else []
    for path in sorted(current_dir.glob("*_workflow.py")):
        if path != default_workflow:
            workflow_files.append(path)
    return workflow_files


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Resolve the workflow file from the --workflow argument or by discovery.

    Raises:
        SystemExit: If no workflow (or more than one candidate) is found
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix != ".py":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion=f"Create a workflow file or specify a different path:\n  polyci run --workflow {DEFAULT_WORKFLOW}",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()
    if not workflow_files:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", f"  {DEFAULT_WORKFLOW}", "  *_workflow.py"],
            suggestion=f"Create {DEFAULT_WORKFLOW} or pass --workflow.",
        )
        sys.exit(1)
    if len(workflow_files) > 1 and workflow_files[0].name != DEFAULT_WORKFLOW:
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[f"  {f}" for f in workflow_files],
            suggestion="Specify a workflow explicitly:\n  polyci run --workflow my_workflow.py",
        )
        sys.exit(1)
    return workflow_files[0]


def _repository_name(config: PipelineConfig) -> str:
    if config.repository:
        return config.repository
    try:
        return repo_name_from_url(remote_url("origin"))
    except Exception:
        return Path(".").resolve().name


def _make_event(event: str, branch: str | None, action: str | None, repository: str) -> Event:
    kind = EventKind(event)
    if branch is None:
        try:
            branch = current_branch()
        except Exception:
            branch = None
    try:
        sha = head_sha()
    except Exception:
        sha = None
    if kind is EventKind.PULL_REQUEST and action is None:
        action = "opened"
    return Event(kind=kind, branch=branch, action=action, repository=repository, sha=sha)


def _load(ctx, workflow: str | None) -> tuple[Path, Workflow]:
    console = get_console()
    workflow_path = discover_workflow(workflow)
    try:
        return workflow_path, load_workflow(workflow_path)
    except Exception as e:
        console.print_error(
            "Failed to load workflow",
            f"Could not load workflow from {workflow_path}",
            details=[str(e)],
        )
        if ctx.obj.get("debug", False):
            console.print_exception(e)
        sys.exit(1)


def _event_options(fn):
    fn = click.option("--action", default=None, help="pull_request subtype (default: opened)")(fn)
    fn = click.option("--branch", default=None, help="Branch (PR: base branch); defaults to the current git branch")(fn)
    fn = click.option(
        "--event",
        type=click.Choice(EVENT_CHOICES),
        default=EventKind.PUSH.value,
        show_default=True,
        help="Event that triggers the run",
    )(fn)
    fn = click.option(
        "--workflow",
        default=None,
        help=f"Workflow file path (defaults to {DEFAULT_WORKFLOW} if present)",
    )(fn)
    return fn


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """polyci: local multi-project build-and-test orchestrator."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@_event_options
@click.option("--workers", default=None, type=int, help="Number of parallel workers")
@click.option("--state-dir", default=None, help="State directory for cache, artifacts and run results")
@click.option("--fail-fast/--no-fail-fast", default=False, show_default=True, help="Cancel the run after the first job failure")
@click.option("--only", multiple=True, help="Run only these jobs (plus the jobs they need)")
@click.pass_context
def run(ctx, workflow, event, branch, action, workers, state_dir, fail_fast, only):
    """Run a polyci workflow for an event."""
    console = get_console()
    workflow_path, wf = _load(ctx, workflow)

    overrides = {"state_dir": state_dir} if state_dir else {}
    config = PipelineConfig.from_env(**overrides)
    repository = _repository_name(config)
    ev = _make_event(event, branch, action, repository)

    decision = wf.triggers.evaluate(ev)
    if not decision.run:
        console.print_trigger_skipped(f"{ev.kind.value} on {ev.branch or '?'}", decision.reason)
        sys.exit(0)

    config = config.with_overrides(repository=repository, branch=ev.branch or "")
    cancel = threading.Event()

    try:
        console.print_run_started(
            repository=repository,
            workflow=workflow_path.name,
            job_count=len(wf.jobs),
            run_id=config.run_id,
            trigger=decision.reason,
        )
        report = run_dag(
            wf,
            workspace=".",
            config=config,
            max_workers=workers,
            fail_fast=fail_fast,
            only=list(only) or None,
            cancel=cancel,
        )
    except KeyboardInterrupt:
        cancel.set()
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except (GraphError, CIError) as e:
        console.print_error("Invalid workflow", str(e))
        if ctx.obj.get("debug", False):
            console.print_exception(e)
        sys.exit(1)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    console.print_results(report.results, report.summary, report.groups)

    if report.interrupted:
        sys.exit(130)
    if not report.summary.ok:
        sys.exit(1)


@cli.command()
@_event_options
@click.option("--only", multiple=True, help="Plan only these jobs (plus the jobs they need)")
@click.pass_context
def plan(ctx, workflow, event, branch, action, only):
    """Show the trigger decision and the job stages without running anything."""
    console = get_console()
    workflow_path, wf = _load(ctx, workflow)
    ev = _make_event(event, branch, action, repository="")

    decision = wf.triggers.evaluate(ev)
    console.print_header(f"{workflow_path.name}: {ev.kind.value} on {ev.branch or '?'}")
    if decision.run:
        console.print_info(f"Trigger: run ({decision.reason})")
    else:
        console.print_info(f"Trigger: no run ({decision.reason})")

    try:
        graph = build_graph(select_jobs(wf.jobs, list(only) or None))
    except (GraphError, CIError, ValueError) as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(1)
    console.print_plan(graph.levels())


@cli.command()
@click.option("--state-dir", default=None, help="State directory to clean")
@click.option("--retention-days", default=None, type=int, help="Override the retention window")
def purge(state_dir, retention_days):
    """Delete cache entries, artifacts and run results past retention."""
    console = get_console()
    overrides = {"state_dir": state_dir} if state_dir else {}
    if retention_days is not None:
        overrides["retention_days"] = retention_days
    config = PipelineConfig.from_env(**overrides)

    caches = CacheStore(config.cache_dir).purge(config.retention_days)
    artifacts = ArtifactStore(config.artifact_dir).purge_expired()
    runs = ResultStore(config.runs_dir).purge(config.retention_days)
    console.print_info(
        f"Purged {len(caches)} cache entr{'y' if len(caches) == 1 else 'ies'}, "
        f"{len(artifacts)} artifact file(s), {len(runs)} run(s) "
        f"(retention {config.retention_days} days)"
    )


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
