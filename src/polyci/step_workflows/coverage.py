# step_workflows/coverage.py
from __future__ import annotations

import urllib.error
import urllib.request
from typing import List

from ..context import JobContext
from ..errors import CIError
from ..model import Condition, Step


# ---------------------------------------------------------------------
# Coverage upload step helper
# ---------------------------------------------------------------------

def coverage_step(
    name: str,
    *,
    files: str | List[str],
    flags: str | None = None,
    fail_on_error: bool = False,
) -> Step:
    """
    Upload coverage reports to the configured ingestion endpoint.

    Runs even after earlier failures and never fails the job unless
    fail_on_error is set.
    """
    data = {"files": [files] if isinstance(files, str) else list(files), "fail_on_error": fail_on_error}
    if flags:
        data["flags"] = flags
    return Step(name=name, kind="upload-coverage", data=data, condition=Condition.ALWAYS, best_effort=True)


# ---------------------------------------------------------------------
# Coverage upload step execution
# ---------------------------------------------------------------------

def _upload(url: str, payload: bytes, headers: dict, timeout: float = 30.0) -> None:
    req = urllib.request.Request(url, data=payload, headers=headers, method="POST")
    try:
        with urllib.request.urlopen(req, timeout=timeout) as response:
            response.read()
    except urllib.error.HTTPError as e:
        error_body = e.read().decode("utf-8", "replace") if e.fp else ""
        raise RuntimeError(f"HTTP {e.code} {e.reason}. {error_body}".strip()) from e
    except urllib.error.URLError as e:
        raise RuntimeError(f"Network error: {e.reason}") from e


def run_step(ctx: JobContext, step: Step) -> str | None:
    params = ctx.params(step)
    fail_on_error = bool(params.get("fail_on_error", False))

    def _problem(message: str) -> str:
        if fail_on_error:
            raise CIError(kind="CoverageUploadFailed", job=ctx.job.name, step=step.name, message=message)
        ctx.console.print_warning(f"[{ctx.job.name}] {message} (ignored)")
        return message

    url = params.get("url") or ctx.config.coverage_url
    if not url:
        return _problem("no coverage endpoint configured")

    uploaded = 0
    for entry in params.get("files", []):
        path = ctx.resolve_path(entry)
        if not path.is_file():
            return _problem(f"coverage report not found: {path}")

        headers = {
            "Content-Type": "application/octet-stream",
            "X-Polyci-Job": ctx.job.name,
            "X-Polyci-Run": ctx.config.run_id,
            "X-Polyci-File": path.name,
        }
        if params.get("flags"):
            headers["X-Polyci-Flags"] = str(params["flags"])
        if ctx.config.coverage_token:
            headers["Authorization"] = f"Bearer {ctx.config.coverage_token}"

        try:
            _upload(url, path.read_bytes(), headers)
        except RuntimeError as e:
            return _problem(f"coverage upload failed: {e}")
        uploaded += 1

    return f"uploaded {uploaded} report(s)"
