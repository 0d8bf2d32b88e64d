# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List


@dataclass
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - step results / run logs
      - debugging without full tracebacks
    """
    kind: str
    job: str
    step: str | None
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}", f"job={self.job}"]
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass
class StepFailure(Exception):
    job: str
    step: str
    cmd: str
    exit_code: int
    output: str = ""

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"


class WorkflowError(Exception):
    """Raised when a workflow file cannot be loaded."""


# ----------------------------------------------------------------------
# Graph errors (fatal at build time, no job starts)
# ----------------------------------------------------------------------

class GraphError(ValueError):
    pass


class DuplicateJobError(GraphError):
    def __init__(self, names: List[str]):
        self.names = sorted(names)
        super().__init__(f"Duplicate job names found: {self.names}")


class DependencyNotFoundError(GraphError):
    def __init__(self, job: str, missing: str, known: List[str]):
        self.job = job
        self.missing = missing
        super().__init__(
            f"Job '{job}' needs missing job '{missing}'. Known jobs: {sorted(known)}"
        )


class CycleError(GraphError):
    def __init__(self, stuck: List[str]):
        self.stuck = sorted(stuck)
        super().__init__(f"Job graph has a cycle. Stuck nodes: {self.stuck}")
