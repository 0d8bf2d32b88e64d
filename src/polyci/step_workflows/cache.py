# step_workflows/cache.py
from __future__ import annotations

from typing import List

from ..cache import cache_key, hash_files, pack_paths, unpack_paths
from ..context import JobContext, PostHook
from ..model import JobStatus, Step


# ---------------------------------------------------------------------
# Cache step helper
# ---------------------------------------------------------------------

def cache_step(
    name: str,
    *,
    namespace: str,
    version: str,
    paths: List[str],
    lockfiles: List[str],
) -> Step:
    """
    Restore dependency state now; save it after the job if it succeeded.

    namespace  job class the entry belongs to ("rust", "python", ...)
    version    tool version part of the key (expressions allowed)
    paths      dirs/files to store; "~" and workspace-relative paths
    lockfiles  globs hashed into the key ("**/Cargo.lock")
    """
    return Step(
        name=name,
        kind="cache",
        data={
            "namespace": namespace,
            "version": version,
            "paths": list(paths),
            "lockfiles": list(lockfiles),
        },
        best_effort=True,
    )


# ---------------------------------------------------------------------
# Cache step execution
# ---------------------------------------------------------------------

def compute_key(ctx: JobContext, params: dict) -> str:
    lock_hash, _files = hash_files(ctx.workspace, params.get("lockfiles", []))
    return cache_key(
        ctx.config.platform,
        params["namespace"],
        str(params.get("version", "")),
        ctx.config.cache_version,
        lock_hash,
    )


def run_step(ctx: JobContext, step: Step) -> str | None:
    params = ctx.params(step)
    namespace = params["namespace"]
    key = compute_key(ctx, params)
    targets = [ctx.resolve_path(p) for p in params.get("paths", [])]

    blob = ctx.cache.get(namespace, key)
    if blob is not None:
        try:
            restored = unpack_paths(blob, targets)
        except Exception as e:
            # corrupt entry degrades to a miss
            ctx.console.print_warning(f"[{ctx.job.name}] cache restore failed for {key}: {e}")
            ctx.cache.delete(namespace, key)
        else:
            ctx.console.print_cache_hit(ctx.job.name, key)
            ctx.log(f"cache hit {namespace}/{key} ({restored} files)")
            return "cache hit"

    ctx.console.print_cache_miss(ctx.job.name, key)

    def _save(hook_ctx: JobContext) -> str:
        if not hook_ctx.cache.reserve(namespace, key):
            return "another job is saving this key"
        if hook_ctx.cache.exists(namespace, key):
            return "entry already present"
        data, count = pack_paths(targets)
        hook_ctx.cache.put(namespace, key, data)
        hook_ctx.console.print_cache_saved(hook_ctx.job.name, key)
        return f"saved {count} files"

    ctx.post_hooks.append(
        PostHook(
            name=f"Post {step.name}",
            fn=_save,
            condition=lambda status: status is JobStatus.SUCCESS,
        )
    )
    return "cache miss"
