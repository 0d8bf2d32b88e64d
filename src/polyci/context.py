# context.py
from __future__ import annotations

import io
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping

from .config import PipelineConfig
from .errors import CIError
from .expressions import build_contexts, interpolate, interpolate_data
from .model import Job, JobStatus, Step
from .notify import Notifier
from .store import ArtifactStore, CacheStore
from .ui.console import Console


@dataclass
class PostHook:
    """Deferred work registered by a step, run after the job's last step."""
    name: str
    fn: Callable[["JobContext"], str | None]
    condition: Callable[[JobStatus], bool] = lambda status: True


@dataclass
class JobContext:
    """
    Everything one job may touch while it runs.

    `env` and `tmp_dir` belong to this job alone; the stores, notifier and
    console are shared across jobs and are safe for concurrent use.
    """
    job: Job
    config: PipelineConfig
    workspace: Path
    env: Dict[str, str]
    tmp_dir: Path
    cache: CacheStore
    artifacts: ArtifactStore
    notifier: Notifier
    console: Console
    cancel: threading.Event

    status: JobStatus = JobStatus.RUNNING
    post_hooks: List[PostHook] = field(default_factory=list)
    produced: List[str] = field(default_factory=list)
    notifications: int = 0
    _log: io.StringIO = field(default_factory=io.StringIO)

    def log(self, text: str) -> None:
        if text:
            self._log.write(text if text.endswith("\n") else text + "\n")

    @property
    def log_text(self) -> str:
        return self._log.getvalue()

    def contexts(self) -> Dict[str, Mapping[str, Any]]:
        return build_contexts(
            env=self.env,
            matrix={k: str(v) for k, v in self.job.matrix.items()},
            job={"name": self.job.name, "group": self.job.group_name, "status": self.status.value},
            run={
                "id": self.config.run_id,
                "repository": self.config.repository,
                "branch": self.config.branch,
                "url": self.config.run_url,
                "platform": self.config.platform,
            },
        )

    def expand(self, text: str) -> str:
        return interpolate(text, self.contexts())

    def params(self, step: Step) -> Dict[str, Any]:
        return interpolate_data(dict(step.data or {}), self.contexts())

    def resolve_cwd(self, step: Step) -> Path:
        """
        Working directory for a step: step.cwd, else job.working_directory,
        relative to the workspace and never outside it.
        """
        rel = step.cwd if step.cwd is not None else (self.job.working_directory or ".")
        cwd = (self.workspace / self.expand(rel)).resolve()
        root = self.workspace.resolve()
        if cwd != root and root not in cwd.parents:
            raise CIError(
                kind="BadWorkingDirectory",
                job=self.job.name,
                step=step.name,
                message="Working directory escapes the workspace",
                details={"cwd": str(cwd), "workspace": str(root)},
            )
        if not cwd.is_dir():
            raise CIError(
                kind="BadWorkingDirectory",
                job=self.job.name,
                step=step.name,
                message="Step cwd does not exist",
                details={"cwd": str(cwd)},
            )
        return cwd

    def resolve_path(self, entry: str) -> Path:
        """Workspace-relative (or "~"/absolute) path for step parameters."""
        p = Path(self.expand(entry)).expanduser()
        if not p.is_absolute():
            p = self.workspace / p
        return p
