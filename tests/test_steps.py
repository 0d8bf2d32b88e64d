import os
import stat

import pytest

from polyci.dsl import job, sh, wf
from polyci.model import JobStatus
from polyci.runner import run_dag
from polyci.step_workflows import coverage as coverage_mod
from polyci.step_workflows.checkout import checkout_step
from polyci.step_workflows.coverage import coverage_step
from polyci.step_workflows.toolchain import setup_toolchain_step, version_matches


def _fake_tool(bin_dir, name, output):
    bin_dir.mkdir(parents=True, exist_ok=True)
    tool = bin_dir / name
    tool.write_text(f"#!/bin/sh\necho '{output}'\n")
    tool.chmod(tool.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return tool


def _run(tmp_path, config, notifier, console, *jobs):
    return run_dag(wf(*jobs), workspace=tmp_path, config=config, notifier=notifier, console=console)


def _step(report, job_name, step_name):
    return next(s for s in report.results[job_name].steps if s.name == step_name)


@pytest.mark.parametrize(
    "found, wanted, expected",
    [
        ("3.10.12", "3.10", True),
        ("3.10", "3.10", True),
        ("3.1.4", "3.10", False),
        ("1.74.0", "1.74.0", True),
        ("20.11.0", "20", True),
        ("21.0.0", "20", False),
        ("anything", "", True),
    ],
)
def test_version_matches(found, wanted, expected):
    assert version_matches(found, wanted) is expected


class TestToolchainStep:

    def test_found_tool_is_exported(self, tmp_path, config, notifier, console):
        bin_dir = tmp_path / "bin"
        node = _fake_tool(bin_dir, "node", "v20.11.0")
        path = f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}"
        report = _run(
            tmp_path, config, notifier, console,
            job(
                "fe",
                setup_toolchain_step("node", "${{ env.NODE_VERSION }}", name="Set up Node.js"),
                sh("uses tool", f'test "$POLYCI_NODE" = "{node}"'),
                env={"PATH": path, "NODE_VERSION": "20"},
            ),
        )
        assert report.results["fe"].status is JobStatus.SUCCESS
        assert "node 20.11.0" in _step(report, "fe", "Set up Node.js").detail

    def test_version_mismatch_fails_job(self, tmp_path, config, notifier, console):
        bin_dir = tmp_path / "bin"
        _fake_tool(bin_dir, "go", "go version go1.20.3 linux/amd64")
        report = _run(
            tmp_path, config, notifier, console,
            job("be", setup_toolchain_step("go", "1.21"), env={"PATH": str(bin_dir)}),
        )
        assert report.results["be"].status is JobStatus.FAILURE
        assert "ToolVersionMismatch" in _step(report, "be", "Set up go").error

    def test_non_strict_mismatch_only_warns(self, tmp_path, config, notifier, console):
        bin_dir = tmp_path / "bin"
        _fake_tool(bin_dir, "go", "go version go1.20.3 linux/amd64")
        report = _run(
            tmp_path, config, notifier, console,
            job("be", setup_toolchain_step("go", "1.21", strict=False), env={"PATH": str(bin_dir)}),
        )
        assert report.results["be"].status is JobStatus.SUCCESS
        assert "go 1.21 requested, found 1.20.3" in console._err_stream.getvalue()

    def test_missing_tool(self, tmp_path, config, notifier, console):
        empty = tmp_path / "empty-bin"
        empty.mkdir()
        report = _run(
            tmp_path, config, notifier, console,
            job("sc", setup_toolchain_step("rust", "1.74.0"), env={"PATH": str(empty)}),
        )
        assert report.results["sc"].status is JobStatus.FAILURE
        assert "MissingTools" in _step(report, "sc", "Set up rust").error

    def test_missing_component(self, tmp_path, config, notifier, console):
        bin_dir = tmp_path / "bin"
        _fake_tool(bin_dir, "rustc", "rustc 1.74.0 (79e9716c9 2023-11-13)")
        _fake_tool(bin_dir, "rustfmt", "rustfmt 1.6.0")
        report = _run(
            tmp_path, config, notifier, console,
            job(
                "sc",
                setup_toolchain_step("rust", "1.74.0", components=["rustfmt", "clippy"]),
                env={"PATH": str(bin_dir)},
            ),
        )
        error = _step(report, "sc", "Set up rust").error
        assert "cargo-clippy" in error
        assert "rustfmt" not in error.splitlines()[0]

    def test_plain_python_runs_the_requested_interpreter(self, tmp_path, config, notifier, console):
        bin_dir = tmp_path / "bin"
        _fake_tool(bin_dir, "python3.10", "Python 3.10.13")
        _fake_tool(bin_dir, "python", "Python 3.9.18")
        report = _run(
            tmp_path, config, notifier, console,
            job(
                "py",
                setup_toolchain_step("python", "3.10"),
                sh("which python", "python --version > python.txt && python3 --version > python3.txt"),
                env={"PATH": str(bin_dir)},
            ),
        )
        assert report.results["py"].status is JobStatus.SUCCESS
        assert (tmp_path / "python.txt").read_text().strip() == "Python 3.10.13"
        assert (tmp_path / "python3.txt").read_text().strip() == "Python 3.10.13"

    def test_unknown_tool_rejected_at_definition(self):
        with pytest.raises(ValueError):
            setup_toolchain_step("cobol", "85")


class TestCoverageStep:

    def test_without_endpoint_is_non_fatal(self, tmp_path, config, notifier, console):
        report = _run(
            tmp_path, config, notifier, console,
            job("py", coverage_step("Upload coverage", files="ai-models/coverage.xml")),
        )
        assert report.results["py"].status is JobStatus.SUCCESS
        assert _step(report, "py", "Upload coverage").detail == "no coverage endpoint configured"

    def test_fail_on_error_is_still_best_effort(self, tmp_path, config, notifier, console):
        report = _run(
            tmp_path, config, notifier, console,
            job("py", coverage_step("Upload coverage", files="missing.xml", fail_on_error=True)),
        )
        step = _step(report, "py", "Upload coverage")
        assert report.results["py"].status is JobStatus.SUCCESS
        assert step.status is JobStatus.FAILURE
        assert "CoverageUploadFailed" in step.error

    def test_runs_after_failure_and_uploads(self, tmp_path, config, notifier, console, monkeypatch):
        uploads = []

        class _Resp:
            def read(self):
                return b"ok"

            def __enter__(self):
                return self

            def __exit__(self, *exc):
                return False

        def fake_urlopen(req, timeout=None):
            uploads.append((req.full_url, req.get_header("X-polyci-file"), req.data))
            return _Resp()

        monkeypatch.setattr(coverage_mod.urllib.request, "urlopen", fake_urlopen)
        cfg = config.with_overrides(coverage_url="https://coverage.test/upload")

        report = _run(
            tmp_path, cfg, notifier, console,
            job(
                "py",
                sh("Tests", "mkdir -p ai-models && echo '<coverage/>' > ai-models/coverage.xml && exit 1"),
                coverage_step("Upload coverage", files="ai-models/coverage.xml"),
            ),
        )
        assert report.results["py"].status is JobStatus.FAILURE
        assert uploads == [("https://coverage.test/upload", "coverage.xml", b"<coverage/>\n")]
        assert _step(report, "py", "Upload coverage").detail == "uploaded 1 report(s)"


def test_checkout_of_plain_workspace(tmp_path, config, notifier, console):
    report = _run(tmp_path, config, notifier, console, job("co", checkout_step(depth=1)))
    assert report.results["co"].status is JobStatus.SUCCESS
