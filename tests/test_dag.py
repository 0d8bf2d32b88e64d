import pytest

from polyci.dag import build_graph, expand_matrix, topo_levels
from polyci.dsl import build, job, matrix, sh, summary
from polyci.errors import CycleError, DependencyNotFoundError, DuplicateJobError, GraphError
from polyci.model import Condition


def _job(name, needs=None, **kw):
    return job(name, sh("noop", "true"), needs=needs, **kw)


class TestBuildGraph:

    def test_levels_for_diamond(self):
        g = build_graph([
            _job("a"),
            _job("b", ["a"]),
            _job("c", ["a"]),
            _job("d", ["b", "c"]),
        ])
        assert g.levels() == [["a"], ["b", "c"], ["d"]]
        assert g.dependents("a") == {"b", "c"}
        assert g.indeg["d"] == 2

    def test_independent_jobs_share_a_level(self):
        g = build_graph([_job("x"), _job("y"), _job("z")])
        assert g.levels() == [["x", "y", "z"]]

    def test_cycle_raises(self):
        with pytest.raises(CycleError) as exc:
            build_graph([_job("a", ["c"]), _job("b", ["a"]), _job("c", ["b"]), _job("free")])
        assert exc.value.stuck == ["a", "b", "c"]

    def test_self_dependency_is_a_cycle(self):
        with pytest.raises(CycleError):
            build_graph([_job("a", ["a"])])

    def test_cycle_behind_an_acyclic_prefix(self):
        with pytest.raises(CycleError) as exc:
            build_graph([_job("root"), _job("a", ["root", "b"]), _job("b", ["a"])])
        assert "root" not in exc.value.stuck

    def test_missing_dependency(self):
        with pytest.raises(DependencyNotFoundError) as exc:
            build_graph([_job("a", ["ghost"])])
        assert exc.value.job == "a"
        assert exc.value.missing == "ghost"

    def test_duplicate_names(self):
        with pytest.raises(DuplicateJobError) as exc:
            build_graph([_job("a"), _job("a")])
        assert exc.value.names == ["a"]

    def test_graph_errors_are_value_errors(self):
        assert issubclass(GraphError, ValueError)


@pytest.mark.parametrize("condition", [Condition.FAILURE, Condition.CANCELLED])
def test_job_rejects_step_only_conditions(condition):
    with pytest.raises(ValueError):
        job("notify", sh("n", "true"), condition=condition)


def test_job_accepts_success_and_always():
    assert job("a", sh("s", "true")).condition is Condition.SUCCESS
    assert job("b", sh("s", "true"), condition=Condition.ALWAYS).condition is Condition.ALWAYS
    assert build("c").define_step("s", "true").run_always().build().condition is Condition.ALWAYS


class TestMatrixExpansion:

    def setup_method(self):
        self.template = _job("test-python", strategy=matrix("python-version", ["3.9", "3.10", "3.11"]))

    def test_one_instance_per_value(self):
        jobs = expand_matrix([self.template])
        assert [j.name for j in jobs] == [
            "test-python (3.9)",
            "test-python (3.10)",
            "test-python (3.11)",
        ]
        cell = jobs[1]
        assert cell.group == "test-python"
        assert cell.matrix == {"python-version": "3.10"}
        assert cell.env["MATRIX_PYTHON_VERSION"] == "3.10"
        assert cell.strategy is None

    def test_template_is_not_mutated(self):
        expand_matrix([self.template])
        assert self.template.group is None
        assert self.template.matrix == {}

    def test_needs_on_group_waits_for_every_cell(self):
        g = build_graph([self.template, summary("ci-summary", sh("ok", "true"), needs=["test-python"])])
        assert sorted(g.needs["ci-summary"]) == [
            "test-python (3.10)",
            "test-python (3.11)",
            "test-python (3.9)",
        ]
        assert g.indeg["ci-summary"] == 3

    def test_cell_can_be_named_directly(self):
        g = build_graph([self.template, _job("after", ["test-python (3.10)"])])
        assert g.needs["after"] == ["test-python (3.10)"]

    def test_empty_matrix_is_rejected(self):
        with pytest.raises(ValueError):
            expand_matrix([_job("t", strategy=matrix("v", []))])


def test_topo_levels_detects_cycle_directly():
    adj = {"a": {"b"}, "b": {"a"}}
    with pytest.raises(CycleError):
        topo_levels(adj, {"a": 1, "b": 1})
