# executor.py
from __future__ import annotations

import threading
import time
from typing import Dict, List, Mapping, Optional

from .actions import ActionContext, ActionRegistry, default_registry
from .environment import Environment, provisioned
from .errors import (
    ActionResolutionError,
    EnvironmentProvisionError,
    JobTimeoutError,
    StepExecutionError,
)
from .model import Event, Job, JobResult, JobStatus, Step
from .ui.console import get_console


TOOL_HINTS = {
    "cargo": "Install the Rust toolchain (rustup) or fix PATH.",
    "rustup": "Install rustup from https://rustup.rs or fix PATH.",
    "git": "Install Git or fix PATH.",
    "npm": "Install Node.js (includes npm) or fix PATH.",
    "pytest": "Install pytest (e.g., pip install pytest).",
    "ruff": "Install ruff (e.g., pip install ruff).",
    "docker": "Install Docker and ensure the daemon is running.",
    "python3": "Install Python 3 or fix PATH (python3).",
}

# shells report "command not found" with this status
EXIT_COMMAND_NOT_FOUND = 127


def _hint_for(command: str, exit_code: int) -> str | None:
    if exit_code != EXIT_COMMAND_NOT_FOUND or not command.strip():
        return None
    tool = command.strip().split()[0]
    return TOOL_HINTS.get(tool, f"Install {tool} or fix PATH.")


def event_env(event: Event | None) -> Dict[str, str]:
    """Variables describing the triggering event, visible to every step."""
    env = {"CI": "true"}
    if event is None:
        return env
    env.update(
        {
            "TRIGGERCI_EVENT": event.kind.value,
            "TRIGGERCI_BRANCH": event.branch,
            "TRIGGERCI_DRAFT": "true" if event.is_draft else "false",
        }
    )
    if event.sha:
        env["TRIGGERCI_SHA"] = event.sha
    return env


class StepExecutor:
    """
    Runs one job's steps in order inside a freshly provisioned environment.

    Fail-fast: the first step exiting non-zero ends the job as Failed and the
    remaining steps never run. A job's `timeout_minutes` bounds the whole job;
    the remaining budget is handed to each step.
    """

    def __init__(
        self,
        environment: Environment,
        *,
        registry: ActionRegistry | None = None,
        repository: str | None = None,
        env: Mapping[str, str] | None = None,
    ):
        self.environment = environment
        self.registry = registry or default_registry()
        self.repository = repository
        self.env = dict(env or {})

    def _step_env(self, job: Job, step: Step, event: Event | None) -> Dict[str, str]:
        env = event_env(event)
        env["TRIGGERCI_JOB"] = job.name
        env.update(self.env)
        env.update(job.env)
        env.update(step.env)
        return env

    def run_job(
        self,
        job: Job,
        event: Event | None = None,
        cancel: Optional[threading.Event] = None,
    ) -> JobResult:
        console = get_console()
        started = time.monotonic()
        timeout_s = job.timeout_seconds
        deadline = started + timeout_s if timeout_s is not None else None
        outputs: List[str] = []

        def result(status: JobStatus, *, index: int | None = None, step: Step | None = None, reason: str | None = None) -> JobResult:
            res = JobResult(
                job_name=job.name,
                status=status,
                failing_step_index=index,
                failing_step_label=step.label if step is not None else None,
                reason=reason,
                duration_s=time.monotonic() - started,
                output="\n".join(o for o in outputs if o),
            )
            console.print_job_finished(res)
            return res

        if cancel is not None and cancel.is_set():
            return result(JobStatus.CANCELLED, reason="cancelled before start")

        console.print_job_start(job.name)
        ctx = ActionContext(repository=self.repository, event=event)

        try:
            with provisioned(self.environment, job) as handle:
                console.print_debug(f"[{job.name}] environment {self.environment.name}:{handle.id}")

                for index, step in enumerate(job.steps):
                    if cancel is not None and cancel.is_set():
                        return result(JobStatus.CANCELLED, index=index, step=step, reason="cancelled")

                    remaining = None
                    if deadline is not None:
                        remaining = deadline - time.monotonic()
                        if remaining <= 0:
                            err = JobTimeoutError(job=job.name, timeout_s=timeout_s, step=step.label)
                            return result(JobStatus.TIMED_OUT, index=index, step=step, reason=str(err))

                    try:
                        command = self.registry.resolve(step, ctx)
                    except ActionResolutionError as e:
                        return result(JobStatus.FAILED, index=index, step=step, reason=f"action: {e}")

                    console.print_step(job.name, step.label)
                    res = self.environment.execute(
                        handle,
                        command,
                        env=self._step_env(job, step, event),
                        timeout=remaining,
                        cancel=cancel,
                    )
                    outputs.append(res.output)

                    if res.timed_out:
                        err = JobTimeoutError(job=job.name, timeout_s=timeout_s, step=step.label)
                        return result(JobStatus.TIMED_OUT, index=index, step=step, reason=str(err))
                    if res.cancelled:
                        return result(JobStatus.CANCELLED, index=index, step=step, reason="cancelled")
                    if res.exit_code != 0:
                        err = StepExecutionError(
                            job=job.name, step=step.label, index=index, exit_code=res.exit_code, cmd=command
                        )
                        hint = _hint_for(command, res.exit_code)
                        console.print_failure(step.label, str(err), exit_code=res.exit_code, hint=hint)
                        return result(JobStatus.FAILED, index=index, step=step, reason=str(err))

        except EnvironmentProvisionError as e:
            return result(JobStatus.FAILED, reason=f"environment: {e}")

        return result(JobStatus.PASSED)
