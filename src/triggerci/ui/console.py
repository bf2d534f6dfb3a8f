"""Console output formatting utilities for triggerci."""

from __future__ import annotations

import sys
import threading
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..model import Event, JobResult, RunResult, TriggerRule


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, quiet: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            quiet: If True, only errors and the final results are printed
        """
        self.debug = debug
        self.quiet = quiet
        # jobs print from worker threads
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        with self._lock:
            for line in lines:
                print(line, file=sys.stderr if err else sys.stdout)

    def print_run_started(self, workflow: str, event: Event, job_count: int) -> None:
        """Print run start information."""
        if self.quiet:
            return
        draft = " (draft)" if event.is_draft else ""
        self._out(
            "",
            "RUN STARTED",
            f"Workflow: {workflow}",
            f"Event: {event.kind.value} on {event.branch}{draft}",
            f"Jobs: {job_count}",
            "",
        )

    def print_gate(self, event: Event, admitted: bool, rule: Optional[TriggerRule] = None) -> None:
        """Print the admission decision."""
        if self.quiet:
            return
        if admitted:
            branches = sorted(rule.match_branches) if rule is not None and rule.match_branches else ["*"]
            self._out(f"GATE: admitted (branches {', '.join(branches)})")
        else:
            self._out(f"GATE: rejected ({event.kind.value} on {event.branch} matches no trigger)")

    def print_plan_job(self, name: str, reason: str) -> None:
        """Print job selection plan."""
        if not self.quiet:
            self._out(f"  {name} ({reason})")

    def print_plan_job_skipped(self, name: str, reason: str) -> None:
        """Print job skipped in plan."""
        if not self.quiet:
            self._out(f"  {name} (skipped: {reason})")

    def print_job_start(self, name: str) -> None:
        if not self.quiet:
            self._out(f"[{name}] JOB STARTED")

    def print_step(self, job: str, label: str) -> None:
        if not self.quiet:
            self._out(f"[{job}] STEP: {label}")

    def print_job_skipped(self, name: str, reason: str) -> None:
        if not self.quiet:
            self._out(f"[{name}] STATUS: skipped ({reason})")

    def print_job_finished(self, result: JobResult) -> None:
        if self.quiet:
            return
        line = f"[{result.job_name}] STATUS: {result.status.value} ({result.duration_s:.1f}s)"
        if result.reason:
            line += f" - {result.reason.splitlines()[0]}"
        self._out(line)
        if self.debug and result.output:
            self._out(*(f"[{result.job_name}] | {l}" for l in result.output.splitlines()))

    def print_failure(
        self,
        name: str,
        reason: str,
        exit_code: Optional[int] = None,
        hint: Optional[str] = None,
    ) -> None:
        """
        Print step failure message.

        Args:
            name: Step label
            reason: Failure reason/error message
            exit_code: Optional exit code
            hint: Optional hint for user
        """
        lines = [f"STEP FAILED: {name}"]
        if exit_code is not None:
            lines.append(f"Exit code: {exit_code}")
        if hint:
            lines.append(f"Hint: {hint}")
        if self.debug:
            lines.append(f"Error details: {reason}")
        self._out(*lines)

    def print_run_result(self, run: RunResult) -> None:
        """Print final results summary."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        if not run.admitted:
            lines.append("  (not admitted: no jobs ran)")
        for r in run.job_results:
            line = f"  {r.job_name}: {r.status.value.upper()}"
            if r.failing_step_index is not None:
                line += f" at step {r.failing_step_index} ({r.failing_step_label})"
            lines.append(line)
        lines.append(f"RUN: {run.status.value.upper()}")
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
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {d}" for d in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        if not self.quiet:
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
