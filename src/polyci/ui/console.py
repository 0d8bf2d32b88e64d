"""Console output formatting utilities for polyci."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Dict, List, Optional

if TYPE_CHECKING:
    from ..model import JobStatus
    from ..results import RunResult
    from ..aggregate import PipelineSummary


class Console:
    """Centralized console output formatting (safe to call from job threads)."""

    def __init__(self, debug: bool = False, stream=None, err_stream=None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            stream: Output stream (defaults to sys.stdout at call time)
            err_stream: Error stream (defaults to sys.stderr at call time)
        """
        self.debug = debug
        self._stream = stream
        self._err_stream = err_stream
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        stream = (self._err_stream or sys.stderr) if err else (self._stream or sys.stdout)
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._out(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        repository: str,
        workflow: str,
        job_count: int,
        run_id: str = "",
        trigger: str = "",
    ) -> None:
        """Print run start information."""
        lines = ["\nRUN STARTED"]
        if run_id:
            lines.append(f"Run: {run_id}")
        lines += [f"Repository: {repository}", f"Workflow: {workflow}"]
        if trigger:
            lines.append(f"Trigger: {trigger}")
        lines += [f"Jobs: {job_count}", ""]
        self._out(*lines)

    def print_trigger_skipped(self, event: str, reason: str) -> None:
        self._out(f"\nNO RUN: {event} ({reason})")

    def print_plan(self, levels: List[List[str]]) -> None:
        self._out("PLAN")
        for i, level in enumerate(levels, start=1):
            self._out(f"  stage {i}: {', '.join(level)}")

    def print_job_start(self, name: str) -> None:
        """Print job start message."""
        self._out(f"\nJOB STARTED: {name}")

    def print_step(self, job: str, name: str) -> None:
        """Print step start message."""
        self._out(f"[{job}] STEP: {name}")

    def print_step_skipped(self, job: str, name: str, reason: str) -> None:
        self._out(f"[{job}] STEP SKIPPED: {name} ({reason})")

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
        is_job: bool = False,
    ) -> None:
        """
        Print failure message.

        Args:
            name: Job or step name
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
            is_job: If True, print "JOB FAILED", otherwise "STEP FAILED"
        """
        prefix = "JOB FAILED" if is_job else "STEP FAILED"
        lines = [f"{prefix}: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if hint:
            lines.append(f"Hint: {hint}")
        if self.debug:
            lines.append(f"Error details: {reason}")
        else:
            # first line only outside debug mode
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            lines.append(f"Error: {error_line}")
        self._out(*lines)

    def print_cache_hit(self, job: str, key: str) -> None:
        self._out(f"[{job}] CACHE: hit ({key})")

    def print_cache_miss(self, job: str, key: str) -> None:
        self._out(f"[{job}] CACHE: miss ({key})")

    def print_cache_saved(self, job: str, key: str) -> None:
        self._out(f"[{job}] CACHE: saved ({key})")

    def print_artifact(self, job: str, name: str, files: int, retention_days: int) -> None:
        self._out(f"[{job}] ARTIFACT: {name} ({files} file(s), kept {retention_days}d)")

    def print_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped message."""
        self._out(f"\nJOB SKIPPED: {name} ({reason})")

    def print_job_finished(self, name: str, status: str, duration: Optional[float] = None) -> None:
        suffix = f" in {duration:.1f}s" if duration is not None else ""
        self._out(f"[{name}] STATUS: {status}{suffix}")

    def print_notification(self, channel: str, message: str) -> None:
        self._out(f"NOTIFY #{channel}: {message}")

    def print_results(
        self,
        results: Dict[str, "RunResult"],
        summary: Optional["PipelineSummary"] = None,
        groups: Optional[Dict[str, "JobStatus"]] = None,
    ) -> None:
        """Print final results summary."""
        lines = ["\n" + "=" * 40, "RESULTS", "=" * 40]
        for job, res in results.items():
            line = f"  {job}: {res.status.value.upper()}"
            if res.reason:
                line += f" ({res.reason})"
            lines.append(line)
        if groups:
            matrix_groups = {g: s for g, s in groups.items() if g not in results}
            for g, s in matrix_groups.items():
                lines.append(f"  {g} [matrix]: {s.value.upper()}")
        if summary is not None:
            lines.append("-" * 40)
            lines.append(f"PIPELINE: {summary.status.value.upper()}")
        self._out(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", f"{message}"]
        if details:
            lines += [f"  {detail}" for detail in details]
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            self._out("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)), err=True)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_warning(self, message: str) -> None:
        self._out(f"WARNING: {message}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
