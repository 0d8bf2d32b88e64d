# step_workflows/checkout.py
from __future__ import annotations

import subprocess

from ..context import JobContext
from ..errors import StepFailure
from ..git_facts.git import head_sha, is_repo, shallow_clone
from ..model import Step


# ---------------------------------------------------------------------
# Checkout step helper
# ---------------------------------------------------------------------

def checkout_step(
    name: str = "Checkout code",
    *,
    repository: str | None = None,
    ref: str | None = None,
    depth: int = 1,
    path: str = ".",
) -> Step:
    """
    Create a checkout step.

    Without `repository` the workspace itself is the checkout and the step
    only records its HEAD; with one, a shallow clone lands in `path`.
    """
    data = {"depth": depth, "path": path}
    if repository:
        data["repository"] = repository
    if ref:
        data["ref"] = ref
    return Step(name=name, kind="checkout", data=data)


# ---------------------------------------------------------------------
# Checkout step execution
# ---------------------------------------------------------------------

def run_step(ctx: JobContext, step: Step) -> str | None:
    params = ctx.params(step)
    dest = ctx.resolve_path(str(params.get("path", ".")))
    repository = params.get("repository")

    if repository:
        if dest.exists() and any(dest.iterdir()):
            if is_repo(dest):
                sha = head_sha(dest)
                ctx.env["POLYCI_SHA"] = sha
                return f"already checked out at {sha[:12]}"
            raise StepFailure(
                job=ctx.job.name,
                step=step.name,
                cmd=f"git clone {repository}",
                exit_code=1,
                output=f"destination {dest} exists and is not empty",
            )
        try:
            shallow_clone(
                repository,
                dest,
                ref=params.get("ref") or None,
                depth=int(params.get("depth", 1)),
            )
        except subprocess.CalledProcessError as e:
            raise StepFailure(
                job=ctx.job.name,
                step=step.name,
                cmd=" ".join(str(a) for a in e.cmd),
                exit_code=e.returncode,
                output=(e.stderr or "")[-4000:],
            ) from e

    if is_repo(dest):
        sha = head_sha(dest)
        ctx.env["POLYCI_SHA"] = sha
        return f"at {sha[:12]}"
    return "not a git checkout, using workspace files as-is"
