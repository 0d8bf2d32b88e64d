# results.py
from __future__ import annotations

import json
import shutil
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .model import JobStatus
from .store import SECONDS_PER_DAY, safe_name


@dataclass
class StepResult:
    name: str
    status: JobStatus
    best_effort: bool = False
    error: str | None = None
    detail: str | None = None  # e.g. "cache hit", "fallback used"
    duration: float = 0.0


@dataclass
class RunResult:
    """Outcome of one job (or one matrix cell)."""
    job: str
    status: JobStatus
    group: str | None = None
    matrix: Dict[str, Any] = field(default_factory=dict)
    steps: List[StepResult] = field(default_factory=list)
    artifacts: List[str] = field(default_factory=list)
    notifications: int = 0
    started_at: float | None = None
    finished_at: float | None = None
    log: str = ""
    reason: str | None = None  # why a job was skipped/cancelled

    @property
    def group_name(self) -> str:
        return self.group or self.job

    @property
    def duration(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    def failed_step(self) -> Optional[StepResult]:
        for s in self.steps:
            if s.status is JobStatus.FAILURE and not s.best_effort:
                return s
        return None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        d["steps"] = [dict(asdict(s), status=s.status.value) for s in self.steps]
        d.pop("log", None)
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RunResult":
        steps = [
            StepResult(**dict(s, status=JobStatus(s["status"])))
            for s in data.get("steps", [])
        ]
        kwargs = dict(data, status=JobStatus(data["status"]), steps=steps)
        return cls(**kwargs)


class ResultStore:
    """
    Persisted run results, retained for a bounded number of days:
      root/<run_id>/results.json
      root/<run_id>/<job>.log
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def run_dir(self, run_id: str) -> Path:
        return self.root / safe_name(run_id)

    def save(self, run_id: str, results: Dict[str, RunResult], *, meta: Optional[Dict[str, Any]] = None) -> Path:
        d = self.run_dir(run_id)
        d.mkdir(parents=True, exist_ok=True)
        for name, res in results.items():
            if res.log:
                (d / f"{safe_name(name)}.log").write_text(res.log, encoding="utf-8")

        payload = {
            "run_id": run_id,
            "saved_at": time.time(),
            "meta": meta or {},
            "jobs": {name: res.to_dict() for name, res in results.items()},
        }
        out = d / "results.json"
        out.write_text(json.dumps(payload, sort_keys=True, indent=2), encoding="utf-8")
        return out

    def load(self, run_id: str) -> Dict[str, RunResult]:
        d = self.run_dir(run_id)
        data = json.loads((d / "results.json").read_text(encoding="utf-8"))
        results: Dict[str, RunResult] = {}
        for name, raw in data.get("jobs", {}).items():
            res = RunResult.from_dict(raw)
            log_file = d / f"{safe_name(name)}.log"
            if log_file.exists():
                res.log = log_file.read_text(encoding="utf-8")
            results[name] = res
        return results

    def runs(self) -> List[str]:
        return sorted(p.name for p in self.root.iterdir() if (p / "results.json").exists())

    def purge(self, retention_days: int, *, now: Optional[float] = None) -> List[str]:
        now = time.time() if now is None else now
        cutoff = now - retention_days * SECONDS_PER_DAY
        removed: List[str] = []
        for d in self.root.iterdir():
            marker = d / "results.json"
            if d.is_dir() and marker.exists() and marker.stat().st_mtime < cutoff:
                shutil.rmtree(d)
                removed.append(d.name)
        return removed
