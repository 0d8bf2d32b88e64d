# triggers.py
# Decides whether an incoming event starts a pipeline run.
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple


class EventKind(str, Enum):
    PUSH = "push"
    PULL_REQUEST = "pull_request"
    MANUAL = "workflow_dispatch"


DEFAULT_PR_TYPES: Tuple[str, ...] = ("opened", "synchronize", "reopened")


@dataclass(frozen=True)
class Event:
    """
    An incoming event.

    For pull requests `branch` is the base (target) branch and `action`
    is the subtype ("opened", "synchronize", "labeled", ...).
    """
    kind: EventKind
    branch: str | None = None
    action: str | None = None
    repository: str = ""
    sha: str | None = None


def branch_matches(branch: str, pattern: str) -> bool:
    """Exact name, or a `prefix/**` pattern matching anything under prefix/."""
    if branch == pattern:
        return True
    if pattern.endswith("/**"):
        return branch.startswith(pattern[:-2])
    return False


@dataclass(frozen=True)
class TriggerRule:
    kind: EventKind
    branches: Tuple[str, ...] = ()
    types: Tuple[str, ...] = ()

    def effective_types(self) -> Tuple[str, ...]:
        if self.kind is EventKind.PULL_REQUEST and not self.types:
            return DEFAULT_PR_TYPES
        return self.types

    def matches(self, event: Event) -> bool:
        if event.kind is not self.kind:
            return False
        if self.kind is EventKind.MANUAL:
            return True

        if self.branches:
            if not event.branch:
                return False
            if not any(branch_matches(event.branch, p) for p in self.branches):
                return False

        types = self.effective_types()
        if types and (event.action or "") not in types:
            return False
        return True


@dataclass(frozen=True)
class TriggerDecision:
    run: bool
    rule: Optional[TriggerRule]
    reason: str


class Triggers:
    """The activation table of a workflow."""

    def __init__(self, rules: Iterable[TriggerRule]):
        self.rules: Tuple[TriggerRule, ...] = tuple(rules)

    def __iter__(self):
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def evaluate(self, event: Event) -> TriggerDecision:
        for rule in self.rules:
            if rule.matches(event):
                return TriggerDecision(run=True, rule=rule, reason=f"matched {_describe(rule)}")

        same_kind = [r for r in self.rules if r.kind is event.kind]
        if not same_kind:
            reason = f"no trigger configured for '{event.kind.value}' events"
        elif event.kind is EventKind.PULL_REQUEST and not any(
            (event.action or "") in r.effective_types() for r in same_kind
        ):
            reason = f"pull_request subtype '{event.action}' is not handled"
        else:
            reason = f"branch '{event.branch}' matches no configured pattern"
        return TriggerDecision(run=False, rule=None, reason=reason)


def _describe(rule: TriggerRule) -> str:
    parts = [rule.kind.value]
    if rule.branches:
        parts.append("branches=" + ",".join(rule.branches))
    types = rule.effective_types()
    if types:
        parts.append("types=" + ",".join(types))
    return " ".join(parts)


# ---------------------------------------------------------------------
# DSL helpers
# ---------------------------------------------------------------------

def on_push(*branches: str) -> TriggerRule:
    return TriggerRule(kind=EventKind.PUSH, branches=tuple(branches))


def on_pull_request(*branches: str, types: Iterable[str] = DEFAULT_PR_TYPES) -> TriggerRule:
    return TriggerRule(kind=EventKind.PULL_REQUEST, branches=tuple(branches), types=tuple(types))


def on_manual() -> TriggerRule:
    return TriggerRule(kind=EventKind.MANUAL)


def always_triggers() -> Triggers:
    """Activation table for workflows that declare none: every event runs."""
    return Triggers([
        TriggerRule(kind=EventKind.PUSH),
        TriggerRule(kind=EventKind.PULL_REQUEST, types=DEFAULT_PR_TYPES),
        TriggerRule(kind=EventKind.MANUAL),
    ])
