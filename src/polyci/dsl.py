# src/polyci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional

from .model import Condition, Job, Matrix, Predicate, Step, Workflow
from .triggers import TriggerRule, Triggers, always_triggers

# job-level conditions; step-level predicates live on Step
JOB_CONDITIONS = (Condition.SUCCESS, Condition.ALWAYS)


# ---------------------------------------------------------------------
# Step helper
# ---------------------------------------------------------------------

def sh(
    name: str,
    cmd: str,
    *,
    cwd: str | None = None,
    env: Optional[Dict[str, str]] = None,
    condition: Predicate = Condition.SUCCESS,
    best_effort: bool = False,
    fallback: str | None = None,
) -> Step:
    """Create a shell step. `fallback` runs only if `cmd` fails."""
    return Step(
        name=name,
        run=cmd,
        cwd=cwd,
        env={k: str(v) for k, v in (env or {}).items()},
        condition=condition,
        best_effort=best_effort,
        fallback=fallback,
    )


def always(step: Step) -> Step:
    return replace(step, condition=Condition.ALWAYS)


def on_failure(step: Step) -> Step:
    return replace(step, condition=Condition.FAILURE)


def best_effort(step: Step) -> Step:
    return replace(step, best_effort=True)


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    needs: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
    working_directory: str | None = None,
    strategy: Optional[Matrix] = None,
    condition: Condition = Condition.SUCCESS,
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")
    if condition not in JOB_CONDITIONS:
        raise ValueError(
            f"job({name!r}) condition must be one of {[c.value for c in JOB_CONDITIONS]}, got {condition!r}"
        )

    return Job(
        name=name,
        steps=steps_final,
        needs=list(needs or []),
        env={k: str(v) for k, v in (env or {}).items()},
        working_directory=working_directory,
        strategy=strategy,
        condition=condition,
    )


def summary(name: str, *steps: Step, needs: List[str], env: Optional[Dict[str, str]] = None) -> Job:
    """
    Terminal aggregate job: waits for every job in `needs` to finish (any
    outcome), starts as failure if any of them did not succeed, then runs
    its steps so failure-conditioned ones can report.
    """
    j = job(name, *steps, needs=needs, env=env, condition=Condition.ALWAYS)
    j.aggregate = True
    return j


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._working_directory: str | None = None
        self._strategy: Optional[Matrix] = None
        self._condition: Condition = Condition.SUCCESS

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None, **options):
        self._steps.append(sh(name, run, cwd=cwd, **options))
        return self

    def add_step(self, step: Step):
        self._steps.append(step)
        return self

    def with_env(self, **env):
        # force values to str for stable hashing + env compatibility
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def in_directory(self, path: str):
        self._working_directory = path
        return self

    def with_matrix(self, key: str, values: Iterable[Any]):
        self._strategy = matrix(key, values)
        return self

    def run_always(self):
        self._condition = Condition.ALWAYS
        return self

    def build(self) -> Job:
        if not self._steps:
            raise ValueError(f"Job '{self.name}' has no steps")
        if self._condition not in JOB_CONDITIONS:
            raise ValueError(f"Job '{self.name}' has unsupported condition {self._condition!r}")

        return Job(
            name=self.name,
            steps=list(self._steps),
            needs=list(self._needs),
            env=dict(self._env),
            working_directory=self._working_directory,
            strategy=self._strategy,
            condition=self._condition,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

def matrix(key: str, values: Iterable[Any]) -> Matrix:
    """
    Matrix strategy for a job template; cells are expanded when the graph
    is built.

    Example:
        job("test-python", sh(...), strategy=matrix("python-version", ["3.9", "3.10"]))
    """
    return Matrix(key=key, values=list(values))


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(
    *jobs: Job,
    name: str = "workflow",
    on: Optional[Iterable[TriggerRule]] = None,
    env: Optional[Dict[str, str]] = None,
) -> Workflow:
    """
    Workflow definition helper.

    Users can write:
        from polyci import wf, job, sh, on_push

        def workflow():
            return wf(
                job(...),
                job(...),
                on=[on_push("main")],
                env={"NODE_VERSION": "20"},
            )
    """
    triggers = Triggers(on) if on is not None else always_triggers()
    return Workflow(
        name=name,
        jobs=list(jobs),
        triggers=triggers,
        env={k: str(v) for k, v in (env or {}).items()},
    )
