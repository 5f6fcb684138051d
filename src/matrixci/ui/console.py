"""Console output formatting utilities for matrixci."""

from __future__ import annotations

import sys
import threading
from typing import Iterable, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..model import Job, JobResult, RunResult


class Console:
    """Centralized console output formatting. Safe to call from job threads."""

    def __init__(self, debug: bool = False, stream=None, err_stream=None):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            stream: Output stream (defaults to sys.stdout at write time)
            err_stream: Error stream (defaults to sys.stderr at write time)
        """
        self.debug = debug
        self._stream = stream
        self._err_stream = err_stream
        self._lock = threading.Lock()

    def _emit(self, *lines: str, err: bool = False) -> None:
        out = (self._err_stream or sys.stderr) if err else (self._stream or sys.stdout)
        with self._lock:
            for line in lines:
                print(line, file=out)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._emit(f"\n{title}", "-" * len(title))

    def print_run_started(
        self,
        workflow: str,
        event: str,
        job_count: int,
        fail_fast: bool,
        repository: Optional[str] = None,
    ) -> None:
        """Print run start information."""
        lines = ["\nRUN STARTED"]
        if repository:
            lines.append(f"Repository: {repository}")
        lines += [
            f"Workflow: {workflow}",
            f"Event: {event}",
            f"Jobs: {job_count}",
            f"Fail-fast: {'on' if fail_fast else 'off'}",
            "",
        ]
        self._emit(*lines)

    def print_not_triggered(self, workflow: str, event: str, events: Iterable[str]) -> None:
        self._emit(f"Workflow '{workflow}' is not triggered by '{event}' (triggers: {', '.join(sorted(events))})")

    def print_job_start(self, job: "Job") -> None:
        suffix = f" on {job.runs_on}" if job.runs_on else ""
        self._emit(f"[{job.name}] JOB STARTED{suffix}")

    def print_step(self, job: str, name: str) -> None:
        self._emit(f"[{job}] ▶ {name}")

    def print_step_skipped(self, job: str, name: str, condition: str) -> None:
        self._emit(f"[{job}] ⏭ {name} (skipped: {condition})")

    def print_step_failure(
        self,
        job: str,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
    ) -> None:
        """Print a failed step; full reason only in debug mode."""
        lines = [f"[{job}] ✗ {name}"]
        if exit_code is not None:
            lines.append(f"[{job}]   Exit code: {exit_code}")
        if self.debug:
            lines.append(f"[{job}]   Error details: {reason}")
        else:
            first = reason.split("\n")[0] if reason else "Unknown error"
            lines.append(f"[{job}]   Error: {first}")
        self._emit(*lines)

    def print_job_finished(self, result: "JobResult") -> None:
        self._emit(f"[{result.name}] STATUS: {result.status.value} ({result.duration:.1f}s)")

    def print_plan(self, jobs: Iterable["Job"]) -> None:
        """Print the expanded matrix, one job per line."""
        for job in jobs:
            assignment = ", ".join(f"{k}={v}" for k, v in job.matrix.items())
            runs_on = f" [{job.runs_on}]" if job.runs_on else ""
            self._emit(f"  {job.index + 1:>3}. {job.name}{runs_on}" + (f"  ({assignment})" if assignment else ""))

    def print_results(self, result: "RunResult") -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for job in result.jobs:
            lines.append(f"  {job.name}: {job.status.value.upper()}")
        lines.append("")
        lines.append(
            f"Succeeded: {len(result.succeeded_jobs)}  "
            f"Failed: {len(result.failed_jobs)}  "
            f"Cancelled: {len(result.cancelled_jobs)}"
        )
        if result.cancelled_jobs:
            lines.append("Some jobs never finished: cancelled by fail-fast.")
        lines.append(f"RUN STATUS: {result.status.value.upper()}")
        self._emit(*lines)

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
        lines = [f"\nERROR: {title}", message]
        for detail in details or []:
            lines.append(f"  {detail}")
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._emit(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            self._emit("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)), err=True)
        else:
            self._emit(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", err=True)


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
