import pytest

from polyci.triggers import (
    Event,
    EventKind,
    Triggers,
    always_triggers,
    branch_matches,
    on_manual,
    on_pull_request,
    on_push,
)


def _ci_triggers():
    return Triggers([
        on_push("main", "dev", "feature/**", "release/**"),
        on_pull_request("main", "dev", types=["opened", "synchronize", "reopened"]),
        on_manual(),
    ])


@pytest.mark.parametrize(
    "branch, pattern, expected",
    [
        ("main", "main", True),
        ("main", "dev", False),
        ("feature/foo", "feature/**", True),
        ("feature/a/b", "feature/**", True),
        ("feature", "feature/**", False),
        ("featurex/foo", "feature/**", False),
        ("release/1.2", "release/**", True),
        ("main2", "main", False),
    ],
)
def test_branch_matches(branch, pattern, expected):
    assert branch_matches(branch, pattern) is expected


class TestTriggerRules:

    def setup_method(self):
        self.triggers = _ci_triggers()

    def test_push_to_feature_branch_runs(self):
        decision = self.triggers.evaluate(Event(EventKind.PUSH, branch="feature/foo"))
        assert decision.run
        assert decision.rule.kind is EventKind.PUSH

    def test_push_rule_matches_but_pr_rule_does_not(self):
        ev = Event(EventKind.PUSH, branch="feature/foo")
        push_rule, pr_rule, _ = list(self.triggers)
        assert push_rule.matches(ev)
        assert not pr_rule.matches(ev)

    def test_pr_to_feature_branch_does_not_run(self):
        decision = self.triggers.evaluate(Event(EventKind.PULL_REQUEST, branch="feature/foo", action="opened"))
        assert not decision.run
        assert "feature/foo" in decision.reason

    def test_labeled_pull_request_does_not_run(self):
        decision = self.triggers.evaluate(Event(EventKind.PULL_REQUEST, branch="main", action="labeled"))
        assert not decision.run
        assert "labeled" in decision.reason

    @pytest.mark.parametrize("action", ["opened", "synchronize", "reopened"])
    def test_handled_pull_request_subtypes_run(self, action):
        assert self.triggers.evaluate(Event(EventKind.PULL_REQUEST, branch="dev", action=action)).run

    def test_manual_dispatch_runs_on_any_branch(self):
        assert self.triggers.evaluate(Event(EventKind.MANUAL, branch="whatever")).run
        assert self.triggers.evaluate(Event(EventKind.MANUAL)).run

    def test_push_to_unlisted_branch_does_not_run(self):
        decision = self.triggers.evaluate(Event(EventKind.PUSH, branch="hotfix/x"))
        assert not decision.run

    def test_push_without_branch_does_not_match_branch_filter(self):
        assert not self.triggers.evaluate(Event(EventKind.PUSH)).run


def test_missing_event_kind_reports_reason():
    triggers = Triggers([on_push("main")])
    decision = triggers.evaluate(Event(EventKind.MANUAL))
    assert not decision.run
    assert "workflow_dispatch" in decision.reason


def test_pull_request_rule_defaults_to_standard_subtypes():
    rule = on_pull_request("main", types=())
    assert rule.effective_types() == ("opened", "synchronize", "reopened")
    assert not rule.matches(Event(EventKind.PULL_REQUEST, branch="main", action="closed"))


def test_always_triggers_accepts_any_branch():
    triggers = always_triggers()
    assert triggers.evaluate(Event(EventKind.PUSH, branch="anything/at/all")).run
    assert triggers.evaluate(Event(EventKind.PULL_REQUEST, branch="x", action="opened")).run
