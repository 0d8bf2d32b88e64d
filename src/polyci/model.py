# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from .triggers import Triggers, always_triggers


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.SUCCESS, JobStatus.FAILURE, JobStatus.SKIPPED, JobStatus.CANCELLED)


class Condition(str, Enum):
    """
    Conditional-execution predicate over the accumulated job status.

    SUCCESS is the default: run only while nothing has failed yet.
    """
    SUCCESS = "success"
    ALWAYS = "always"
    FAILURE = "failure"
    CANCELLED = "cancelled"

    def evaluate(self, status: JobStatus) -> bool:
        if self is Condition.ALWAYS:
            return True
        if self is Condition.FAILURE:
            return status is JobStatus.FAILURE
        if self is Condition.CANCELLED:
            return status is JobStatus.CANCELLED
        return status not in (JobStatus.FAILURE, JobStatus.CANCELLED)


Predicate = Union[Condition, Callable[[JobStatus], bool]]


def evaluate_condition(condition: Predicate, status: JobStatus) -> bool:
    if isinstance(condition, Condition):
        return condition.evaluate(status)
    return bool(condition(status))


@dataclass(frozen=True)
class Step:
    """
    A single action inside a CI job.

    kind="sh" runs `run` in a shell; every other kind is dispatched to the
    matching module in polyci.step_workflows with `data` as its parameters.
    """
    name: str
    run: str = ""
    cwd: str | None = None
    kind: str = "sh"
    data: Optional[Dict[str, Any]] = None
    env: Dict[str, str] = field(default_factory=dict)
    condition: Predicate = Condition.SUCCESS
    best_effort: bool = False
    fallback: str | None = None  # alternative command, tried only if `run` fails


@dataclass
class Matrix:
    """One job template fanned out over a list of parameter values."""
    key: str
    values: List[Any]

    def env_name(self) -> str:
        return "MATRIX_" + self.key.upper().replace("-", "_").replace(".", "_")


@dataclass
class Job:
    """
    A CI job: ordered steps + dependencies + execution scoping.

    Matrix instances are produced by dag.expand_matrix and carry `group`
    (the template name) and `matrix` (their bindings).
    """
    name: str
    steps: list[Step]

    needs: list[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)
    working_directory: str | None = None

    strategy: Optional[Matrix] = None
    condition: Condition = Condition.SUCCESS
    aggregate: bool = False  # terminal summary job

    group: str | None = None
    matrix: Dict[str, Any] = field(default_factory=dict)

    @property
    def group_name(self) -> str:
        return self.group or self.name


@dataclass
class Workflow:
    """Trigger table + workflow-wide env pins + job list."""
    name: str
    jobs: list[Job]
    triggers: Triggers = field(default_factory=always_triggers)
    env: Dict[str, str] = field(default_factory=dict)
