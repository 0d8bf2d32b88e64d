from .dsl import job, sh, summary, matrix, wf, always, on_failure, best_effort, JobBuilder, build
from .model import Condition, Job, JobStatus, Step, Workflow
from .runner import load_workflow, run_dag
from .step_workflows.artifact import upload_artifact_step
from .step_workflows.cache import cache_step
from .step_workflows.checkout import checkout_step
from .step_workflows.coverage import coverage_step
from .step_workflows.notify import notify_step
from .step_workflows.toolchain import setup_toolchain_step
from .triggers import on_manual, on_pull_request, on_push

__all__ = [
    "job", "sh", "summary", "matrix", "wf", "always", "on_failure", "best_effort", "JobBuilder", "build",
    "Condition", "Job", "JobStatus", "Step", "Workflow",
    "load_workflow", "run_dag",
    "checkout_step", "setup_toolchain_step", "cache_step", "upload_artifact_step", "coverage_step", "notify_step",
    "on_push", "on_pull_request", "on_manual",
]
