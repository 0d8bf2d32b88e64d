# runner.py
from __future__ import annotations

import os
import runpy
import shutil
import subprocess
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

from .aggregate import PipelineSummary, SummaryAggregator
from .config import PipelineConfig
from .context import JobContext
from .dag import JobGraph, build_graph
from .errors import CIError, StepFailure, WorkflowError
from .model import Condition, Job, JobStatus, Step, Workflow, evaluate_condition
from .notify import Notifier, notifier_from_config
from .results import ResultStore, RunResult, StepResult
from .step_workflows import STEP_KINDS
from .store import ArtifactStore, CacheStore, safe_name
from .triggers import always_triggers
from .ui.console import Console, get_console

OUTPUT_TAIL = 4000


# ----------------------------------------------------------------------
# Workflow loading (local file/module)
# ----------------------------------------------------------------------

def load_workflow(path: str | Path) -> Workflow:
    """
    Load a workflow from a python file path.

    The file must define either:
      - workflow() -> Workflow | List[Job]
      - WORKFLOW = Workflow(...) or JOBS = [Job, ...]
    A bare job list runs on every event.
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise WorkflowError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix != ".py":
        raise WorkflowError(f"Workflow must be a .py file, got: {wf_path.name}")

    module_name = f"polyci_workflow_{wf_path.stem}"
    globals_dict = runpy.run_path(str(wf_path), run_name=module_name)

    loaded = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        loaded = globals_dict["workflow"]()
    elif "WORKFLOW" in globals_dict:
        loaded = globals_dict["WORKFLOW"]
    elif "JOBS" in globals_dict:
        loaded = globals_dict["JOBS"]

    if isinstance(loaded, Workflow):
        return loaded
    if isinstance(loaded, list) and loaded and all(isinstance(j, Job) for j in loaded):
        return Workflow(name=wf_path.stem, jobs=loaded, triggers=always_triggers())

    raise WorkflowError(
        "Workflow must return/define a Workflow or a non-empty List[Job]. "
        "Define workflow() -> wf(job(...), ...) or JOBS = [Job, ...]."
    )


def select_jobs(jobs: List[Job], only: Optional[Iterable[str]]) -> List[Job]:
    """
    Keep the requested jobs (template names) plus everything they need.
    """
    if not only:
        return list(jobs)

    by_name = {j.name: j for j in jobs}
    wanted = list(only)
    missing = [n for n in wanted if n not in by_name]
    if missing:
        raise CIError(
            kind="UnknownJob",
            job="<planner>",
            step=None,
            message=f"Unknown job(s) requested: {', '.join(missing)}",
            details={"known_jobs": sorted(by_name)},
        )

    keep: Set[str] = set()
    stack = wanted[:]
    while stack:
        name = stack.pop()
        if name in keep:
            continue
        keep.add(name)
        stack.extend(d for d in by_name[name].needs if d in by_name)
    return [j for j in jobs if j.name in keep]


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

@dataclass
class RunServices:
    """Shared, thread-safe collaborators handed to every job."""
    config: PipelineConfig
    workspace: Path
    cache: CacheStore
    artifacts: ArtifactStore
    notifier: Notifier
    console: Console
    cancel: threading.Event = field(default_factory=threading.Event)


def _shell(ctx: JobContext, step: Step, cmd: str, cwd: Path, env: Dict[str, str]) -> subprocess.CompletedProcess:
    ctx.console.print_debug(f"[{ctx.job.name}] $ {cmd} (cwd={cwd})")
    try:
        proc = subprocess.run(
            cmd,
            shell=True,
            cwd=str(cwd),
            env=env,
            text=True,
            capture_output=True,
        )
    except OSError as e:
        raise CIError(
            kind="SpawnFailed",
            job=ctx.job.name,
            step=step.name,
            message=str(e),
            details={"command": cmd, "cwd": str(cwd)},
        ) from e
    ctx.log(f"$ {cmd}")
    ctx.log(proc.stdout or "")
    ctx.log(proc.stderr or "")
    return proc


def _run_shell_step(ctx: JobContext, step: Step) -> str | None:
    cwd = ctx.resolve_cwd(step)
    env = dict(ctx.env)
    env.update({k: ctx.expand(v) for k, v in step.env.items()})

    cmd = ctx.expand(step.run)
    proc = _shell(ctx, step, cmd, cwd, env)
    if proc.returncode == 0:
        return None

    if step.fallback:
        fallback = ctx.expand(step.fallback)
        ctx.console.print_warning(
            f"[{ctx.job.name}] '{cmd}' failed (exit={proc.returncode}), trying fallback '{fallback}'"
        )
        proc = _shell(ctx, step, fallback, cwd, env)
        if proc.returncode == 0:
            return "fallback used"
        cmd = fallback

    combined = ((proc.stdout or "") + "\n" + (proc.stderr or "")).strip()
    raise StepFailure(
        job=ctx.job.name,
        step=step.name,
        cmd=cmd,
        exit_code=proc.returncode,
        output=combined[-OUTPUT_TAIL:],
    )


def execute_step(ctx: JobContext, step: Step) -> str | None:
    if step.kind == "sh":
        return _run_shell_step(ctx, step)
    runner = STEP_KINDS.get(step.kind)
    if runner is None:
        raise CIError(
            kind="UnknownStepKind",
            job=ctx.job.name,
            step=step.name,
            message=f"No handler for step kind '{step.kind}'",
            details={"known": sorted(["sh", *STEP_KINDS])},
        )
    return runner(ctx, step)


def should_run(step: Step, status: JobStatus) -> bool:
    """
    A step runs when its predicate holds for the accumulated status.
    Best-effort steps with the default predicate also run after a failure.
    """
    if evaluate_condition(step.condition, status):
        return True
    return step.best_effort and step.condition is Condition.SUCCESS and status is JobStatus.FAILURE


def _job_env(job: Job, config: PipelineConfig, workspace: Path, tmp_dir: Path) -> Dict[str, str]:
    env = os.environ.copy()
    env.update(config.env)
    env.update({
        "CI": "true",
        "POLYCI": "true",
        "POLYCI_RUN_ID": config.run_id,
        "POLYCI_JOB": job.name,
        "POLYCI_WORKSPACE": str(workspace),
        "POLYCI_JOB_TMP": str(tmp_dir),
    })
    if config.branch:
        env["POLYCI_REF_NAME"] = config.branch
    return env


def run_job(job: Job, services: RunServices, *, initial_status: JobStatus = JobStatus.RUNNING) -> RunResult:
    """
    Run one job's steps in order inside its own environment.

    Step failures are contained here: they set the job status, never raise.
    """
    console = services.console
    tmp_dir = services.config.work_dir / safe_name(job.name)
    tmp_dir.mkdir(parents=True, exist_ok=True)

    ctx = JobContext(
        job=job,
        config=services.config,
        workspace=services.workspace,
        env=_job_env(job, services.config, services.workspace, tmp_dir),
        tmp_dir=tmp_dir,
        cache=services.cache,
        artifacts=services.artifacts,
        notifier=services.notifier,
        console=console,
        cancel=services.cancel,
        status=initial_status,
    )
    # job-level env may reference workflow pins / matrix values
    for k, v in job.env.items():
        ctx.env[k] = ctx.expand(v)

    started = time.time()
    step_results: List[StepResult] = []
    console.print_job_start(job.name)

    try:
        for step in job.steps:
            if services.cancel.is_set():
                ctx.status = JobStatus.CANCELLED
            if ctx.status is JobStatus.CANCELLED and not should_run(step, ctx.status):
                step_results.append(StepResult(name=step.name, status=JobStatus.SKIPPED, detail="run cancelled"))
                continue

            if not should_run(step, ctx.status):
                console.print_step_skipped(job.name, step.name, "condition not met")
                step_results.append(StepResult(name=step.name, status=JobStatus.SKIPPED, best_effort=step.best_effort))
                continue

            console.print_step(job.name, step.name)
            t0 = time.time()
            try:
                detail = execute_step(ctx, step)
            except Exception as e:
                sr = StepResult(
                    name=step.name,
                    status=JobStatus.FAILURE,
                    best_effort=step.best_effort,
                    error=str(e),
                    duration=time.time() - t0,
                )
                ctx.log(f"step '{step.name}' failed: {e}")
                if step.best_effort:
                    console.print_warning(f"[{job.name}] best-effort step '{step.name}' failed: {_first_line(e)}")
                else:
                    if ctx.status is not JobStatus.CANCELLED:
                        ctx.status = JobStatus.FAILURE
                    console.print_failure(
                        f"{job.name} / {step.name}",
                        _failure_text(e),
                        exit_code=getattr(e, "exit_code", None),
                        hint=(getattr(e, "details", None) or {}).get("hint"),
                    )
                step_results.append(sr)
                continue

            step_results.append(
                StepResult(
                    name=step.name,
                    status=JobStatus.SUCCESS,
                    best_effort=step.best_effort,
                    detail=detail,
                    duration=time.time() - t0,
                )
            )

        final = JobStatus.SUCCESS if ctx.status is JobStatus.RUNNING else ctx.status
        ctx.status = final

        # post hooks run in reverse registration order
        for hook in reversed(ctx.post_hooks):
            if not hook.condition(final):
                continue
            try:
                detail = hook.fn(ctx)
                step_results.append(StepResult(name=hook.name, status=JobStatus.SUCCESS, best_effort=True, detail=detail))
            except Exception as e:
                console.print_warning(f"[{job.name}] {hook.name} failed: {e}")
                step_results.append(StepResult(name=hook.name, status=JobStatus.FAILURE, best_effort=True, error=str(e)))
    finally:
        shutil.rmtree(tmp_dir, ignore_errors=True)

    finished = time.time()
    console.print_job_finished(job.name, final.value, finished - started)
    return RunResult(
        job=job.name,
        status=final,
        group=job.group,
        matrix=dict(job.matrix),
        steps=step_results,
        artifacts=list(ctx.produced),
        notifications=ctx.notifications,
        started_at=started,
        finished_at=finished,
        log=ctx.log_text,
    )


def _first_line(e: Exception) -> str:
    lines = str(e).splitlines()
    return lines[0] if lines else type(e).__name__


def _failure_text(e: Exception) -> str:
    text = str(e)
    output = getattr(e, "output", "")
    if output:
        tail = "\n".join(output.splitlines()[-30:])
        text = f"{text}\n{tail}"
    return text


# ----------------------------------------------------------------------
# Scheduler
# ----------------------------------------------------------------------

@dataclass
class RunReport:
    run_id: str
    results: Dict[str, RunResult]
    summary: PipelineSummary
    groups: Dict[str, JobStatus]
    cancelled: bool = False
    interrupted: bool = False


def _finalize_config(workflow: Workflow, config: PipelineConfig, workspace: Path) -> PipelineConfig:
    state_dir = config.state_dir if config.state_dir.is_absolute() else workspace / config.state_dir
    env = dict(workflow.env)
    env.update(config.env)
    return config.with_overrides(state_dir=state_dir, env=env)


def run_dag(
    workflow: Workflow,
    *,
    workspace: str | Path = ".",
    config: Optional[PipelineConfig] = None,
    notifier: Optional[Notifier] = None,
    console: Optional[Console] = None,
    max_workers: int | None = None,
    fail_fast: bool = False,
    only: Optional[Iterable[str]] = None,
    cancel: Optional[threading.Event] = None,
    persist: bool = True,
) -> RunReport:
    """
    Run every job of `workflow` as soon as all of its needs are terminal.

    Independent jobs (and matrix cells) run in parallel; a job whose needs
    did not all succeed is skipped unless it runs always (aggregate jobs).
    Graph errors raise before any job starts.
    """
    workspace_p = Path(workspace).resolve()
    config = _finalize_config(workflow, config or PipelineConfig.from_env(), workspace_p)
    console = console or get_console()
    notifier = notifier or notifier_from_config(config, console)
    if notifier.console is None:
        notifier.console = console
    cancel = cancel or threading.Event()
    aggregator = SummaryAggregator()

    graph: JobGraph = build_graph(select_jobs(workflow.jobs, only))

    services = RunServices(
        config=config,
        workspace=workspace_p,
        cache=CacheStore(config.cache_dir),
        artifacts=ArtifactStore(config.artifact_dir),
        notifier=notifier,
        console=console,
        cancel=cancel,
    )

    if max_workers is None:
        c = os.cpu_count() or 2
        max_workers = max(1, c - 1)

    results: Dict[str, RunResult] = {}
    remaining = dict(graph.indeg)
    ready: List[str] = sorted(n for n, d in remaining.items() if d == 0)
    in_flight: Dict[Future, str] = {}
    interrupted = False

    def _unlock(name: str) -> None:
        # called once `name` is terminal; resolves dependents that became ready
        for child in sorted(graph.dependents(name)):
            remaining[child] -= 1
            if remaining[child] != 0:
                continue
            child_job = graph.jobs[child]
            needs = graph.needs[child]
            if child_job.condition is Condition.ALWAYS:
                ready.append(child)
                continue
            blocked = [n for n in needs if results[n].status is not JobStatus.SUCCESS]
            if blocked:
                results[child] = RunResult(
                    job=child,
                    status=JobStatus.SKIPPED,
                    group=child_job.group,
                    matrix=dict(child_job.matrix),
                    reason=f"needs did not succeed: {', '.join(blocked)}",
                )
                console.print_job_skipped(child, results[child].reason)
                _unlock(child)
            else:
                ready.append(child)

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        while ready or in_flight:
            try:
                while ready and not cancel.is_set():
                    name = ready.pop(0)
                    job = graph.jobs[name]
                    initial = JobStatus.RUNNING
                    if job.aggregate:
                        initial = aggregator.status_for(graph.needs[name], results)
                        if initial is JobStatus.SUCCESS:
                            initial = JobStatus.RUNNING
                    in_flight[pool.submit(run_job, job, services, initial_status=initial)] = name

                if not in_flight:
                    break

                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for fut in done:
                    name = in_flight[fut]
                    try:
                        results[name] = fut.result()
                    except Exception as e:
                        job = graph.jobs[name]
                        results[name] = RunResult(
                            job=name,
                            status=JobStatus.FAILURE,
                            group=job.group,
                            matrix=dict(job.matrix),
                            reason=str(e),
                        )
                        console.print_failure(name, str(e), is_job=True)
                    del in_flight[fut]

                    if fail_fast and results[name].status is JobStatus.FAILURE:
                        cancel.set()
                    _unlock(name)
            except KeyboardInterrupt:
                interrupted = True
                cancel.set()
                console.print_info("\nInterrupted: cancelling run, waiting for running steps to finish...")

    cancelled = False
    for name, job in graph.jobs.items():
        if name not in results:
            cancelled = True
            results[name] = RunResult(
                job=name,
                status=JobStatus.CANCELLED,
                group=job.group,
                matrix=dict(job.matrix),
                reason="run cancelled",
            )
    cancelled = cancelled or any(r.status is JobStatus.CANCELLED for r in results.values())

    if cancelled:
        notifier.notify(
            config.notify_channel,
            f"Run {config.run_id} of {config.repository or workflow.name} "
            f"on branch {config.branch or '?'} was cancelled. {config.run_url}",
        )

    ordered = {name: results[name] for level in graph.levels() for name in level}
    summary = aggregator.summarize(ordered)
    report = RunReport(
        run_id=config.run_id,
        results=ordered,
        summary=summary,
        groups=aggregator.groups(ordered),
        cancelled=cancelled,
        interrupted=interrupted,
    )

    if persist:
        ResultStore(config.runs_dir).save(
            config.run_id,
            ordered,
            meta={
                "workflow": workflow.name,
                "branch": config.branch,
                "repository": config.repository,
                "status": summary.status.value,
            },
        )
    return report
