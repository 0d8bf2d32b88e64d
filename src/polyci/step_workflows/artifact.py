# step_workflows/artifact.py
from __future__ import annotations

import glob
from pathlib import Path
from typing import List

from ..cache import pack_paths
from ..context import JobContext
from ..errors import CIError
from ..model import Condition, Predicate, Step


# ---------------------------------------------------------------------
# Artifact step helper
# ---------------------------------------------------------------------

def upload_artifact_step(
    name: str,
    *,
    artifact: str,
    path: str | List[str],
    retention_days: int | None = None,
    if_no_files: str = "warn",
    condition: Predicate = Condition.SUCCESS,
) -> Step:
    """
    Store job outputs (logs, coverage, binaries, bundles) under the job's
    namespace. Paths may be files, dirs or globs relative to the workspace.
    """
    if if_no_files not in ("warn", "error", "ignore"):
        raise ValueError(f"if_no_files must be warn|error|ignore, got {if_no_files!r}")
    paths = [path] if isinstance(path, str) else list(path)
    data = {"artifact": artifact, "paths": paths, "if_no_files": if_no_files}
    if retention_days is not None:
        data["retention_days"] = retention_days
    return Step(name=name, kind="upload-artifact", data=data, condition=condition)


# ---------------------------------------------------------------------
# Artifact step execution
# ---------------------------------------------------------------------

def _expand(ctx: JobContext, patterns: List[str]) -> List[Path]:
    found: List[Path] = []
    for pat in patterns:
        base = ctx.resolve_path(pat)
        if any(c in str(base) for c in "*?["):
            found.extend(Path(p) for p in sorted(glob.glob(str(base), recursive=True)))
        elif base.exists():
            found.append(base)
    return found


def run_step(ctx: JobContext, step: Step) -> str | None:
    params = ctx.params(step)
    artifact = params["artifact"]
    retention = int(params.get("retention_days") or ctx.config.retention_days)

    paths = _expand(ctx, params.get("paths", []))
    if not paths:
        msg = f"no files found for artifact '{artifact}': {params.get('paths')}"
        mode = params.get("if_no_files", "warn")
        if mode == "error":
            raise CIError(kind="NoArtifactFiles", job=ctx.job.name, step=step.name, message=msg)
        if mode == "warn":
            ctx.console.print_warning(f"[{ctx.job.name}] {msg}")
        return "no files"

    blob, count = pack_paths(paths)
    info = ctx.artifacts.save(ctx.job.name, artifact, blob, files=count, retention_days=retention)
    ctx.produced.append(artifact)
    ctx.console.print_artifact(ctx.job.name, artifact, info.files, info.retention_days)
    return f"{count} files"
