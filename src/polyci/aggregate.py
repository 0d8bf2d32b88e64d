# aggregate.py
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping

from .model import JobStatus
from .results import RunResult


def reduce_statuses(statuses: Iterable[JobStatus]) -> JobStatus:
    """success iff every status is success; cancelled wins over failure."""
    statuses = list(statuses)
    if not statuses or all(s is JobStatus.SUCCESS for s in statuses):
        return JobStatus.SUCCESS
    if any(s is JobStatus.CANCELLED for s in statuses):
        return JobStatus.CANCELLED
    return JobStatus.FAILURE


@dataclass(frozen=True)
class PipelineSummary:
    status: JobStatus
    failed: List[str] = field(default_factory=list)
    counts: Dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status is JobStatus.SUCCESS


class SummaryAggregator:
    """
    Reduces job outcomes to one pass/fail signal.

    The scheduler only starts an aggregate job once all of its needs are
    terminal, so status_for() always sees final results.
    """

    def status_for(self, needs: Iterable[str], results: Mapping[str, RunResult]) -> JobStatus:
        needed = [results[n] for n in needs]
        pending = [r.job for r in needed if not r.status.terminal]
        if pending:
            raise RuntimeError(f"aggregate evaluated before dependencies finished: {pending}")
        status = reduce_statuses(r.status for r in needed)
        # an aggregate job itself never starts cancelled because of its inputs
        return JobStatus.FAILURE if status is JobStatus.CANCELLED else status

    def group_status(self, group: str, results: Mapping[str, RunResult]) -> JobStatus:
        return reduce_statuses(r.status for r in results.values() if r.group_name == group)

    def groups(self, results: Mapping[str, RunResult]) -> Dict[str, JobStatus]:
        names: List[str] = []
        for r in results.values():
            if r.group_name not in names:
                names.append(r.group_name)
        return {g: self.group_status(g, results) for g in names}

    def summarize(self, results: Mapping[str, RunResult]) -> PipelineSummary:
        status = reduce_statuses(r.status for r in results.values())
        failed = sorted(n for n, r in results.items() if r.status is not JobStatus.SUCCESS)
        counts = dict(Counter(r.status.value for r in results.values()))
        return PipelineSummary(status=status, failed=failed, counts=counts)
