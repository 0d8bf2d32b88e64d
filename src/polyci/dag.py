# dag.py
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, replace
from typing import Dict, List, Set

from .errors import CycleError, DependencyNotFoundError, DuplicateJobError
from .model import Job


def instance_name(template: str, value) -> str:
    return f"{template} ({value})"


def expand_matrix(jobs: List[Job]) -> List[Job]:
    """
    Fan each job with a `strategy` out into one independent job per value.

    Instances keep the template's steps/needs, get their own identity
    ("test-python (3.10)"), `group` = template name and `matrix` bindings.
    """
    out: List[Job] = []
    for job in jobs:
        strategy = job.strategy
        if strategy is None:
            out.append(job)
            continue
        if not strategy.values:
            raise ValueError(f"Job '{job.name}' has an empty matrix for '{strategy.key}'")
        for value in strategy.values:
            out.append(
                replace(
                    job,
                    name=instance_name(job.name, value),
                    strategy=None,
                    group=job.name,
                    matrix={**job.matrix, strategy.key: value},
                    env={**job.env, strategy.env_name(): str(value)},
                    steps=list(job.steps),
                    needs=list(job.needs),
                )
            )
    return out


@dataclass
class JobGraph:
    jobs: Dict[str, Job]
    adj: Dict[str, Set[str]]      # dep -> dependents
    indeg: Dict[str, int]         # in-degree per job
    needs: Dict[str, List[str]]   # job -> resolved dependency instances

    def levels(self) -> List[List[str]]:
        return topo_levels(self.adj, self.indeg)

    def dependents(self, name: str) -> Set[str]:
        return self.adj.get(name, set())


def build_graph(jobs: List[Job]) -> JobGraph:
    """
    Build a DAG from Job objects (matrix templates are expanded first).

    `needs` may name a job or a matrix group; a group stands for all of
    its instances.

    Raises:
        DuplicateJobError, DependencyNotFoundError, CycleError
    """
    expanded = expand_matrix(list(jobs))

    names = [j.name for j in expanded]
    if len(set(names)) != len(names):
        raise DuplicateJobError(list({n for n in names if names.count(n) > 1}))

    by_name: Dict[str, Job] = {j.name: j for j in expanded}
    groups: Dict[str, List[str]] = {}
    for j in expanded:
        if j.group is not None:
            groups.setdefault(j.group, []).append(j.name)

    adj: Dict[str, Set[str]] = {n: set() for n in by_name}
    indeg: Dict[str, int] = {n: 0 for n in by_name}
    resolved: Dict[str, List[str]] = {n: [] for n in by_name}

    for job in expanded:
        for dep in job.needs or []:
            if dep in by_name:
                targets = [dep]
            elif dep in groups:
                targets = groups[dep]
            else:
                raise DependencyNotFoundError(job.name, dep, list(by_name) + list(groups))

            for t in targets:
                # edge t -> job.name (t must finish before job)
                if job.name not in adj[t]:
                    adj[t].add(job.name)
                    indeg[job.name] += 1
                    resolved[job.name].append(t)

    graph = JobGraph(jobs=by_name, adj=adj, indeg=indeg, needs=resolved)
    graph.levels()  # raises CycleError
    return graph


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert DAG into topological "levels" (stages).
    Each stage can run in parallel.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted([n for n, d in indeg.items() if d == 0]))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[str] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(level)

    if processed != len(indeg):
        raise CycleError([n for n, d in indeg.items() if d > 0])

    return levels
