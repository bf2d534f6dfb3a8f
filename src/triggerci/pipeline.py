# pipeline.py
from __future__ import annotations

import threading
from typing import Any, Iterable, List, Mapping

from .environment import Environment, LocalEnvironment
from .events import normalize
from .executor import StepExecutor
from .gate import matching_rule
from .graph import JobGraph
from .model import Event, JobResult, JobStatus, RunResult, RunStatus, Workflow
from .reporter import Sink, report
from .scheduler import Dispatcher
from .ui.console import get_console


def exit_code(run: RunResult) -> int:
    """0 when the run passed, 1 otherwise."""
    return 0 if run.status is RunStatus.PASSED else 1


class Pipeline:
    """
    One workflow, end to end:

        normalize -> admit -> select jobs -> dispatch -> report -> publish

    The workflow is validated once at construction (ConfigurationError) and is
    read-only afterwards, so a Pipeline can process many events. Each call to
    `process` gets its own Dispatcher sharing the pipeline's cancel token.
    """

    def __init__(
        self,
        workflow: Workflow,
        *,
        environment: Environment | None = None,
        executor: StepExecutor | None = None,
        max_workers: int | None = None,
        sinks: Iterable[Sink] = (),
        repository: str | None = None,
    ):
        self.workflow = workflow
        self.graph = JobGraph(workflow.jobs)
        self.executor = executor or StepExecutor(
            environment or LocalEnvironment(),
            repository=repository,
            env=workflow.env,
        )
        self.max_workers = max_workers
        self.sinks: List[Sink] = list(sinks)
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """Cancel the run in progress, or the next one if none has started. Sticky."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def run_event(self, event: Event) -> RunResult:
        console = get_console()
        rule = matching_rule(event, self.workflow.triggers)
        admitted = rule is not None

        console.print_run_started(self.workflow.name, event, len(self.graph))
        console.print_gate(event, admitted, rule)

        if not admitted:
            run = report(event, False, ())
            self._publish(run)
            return run

        selected, skipped = self.graph.partition(event)
        skipped_names = {j.name for j in skipped}
        for job in self.graph:
            if job.name in skipped_names:
                console.print_plan_job_skipped(job.name, f"condition {job.condition.source!r} is false")
            else:
                console.print_plan_job(job.name, f"condition {job.condition.source!r}")

        dispatcher = Dispatcher(self.executor, max_workers=self.max_workers, cancel_token=self._cancel)
        ran = {r.job_name: r for r in dispatcher.run(selected, event)}

        results: List[JobResult] = []
        for job in self.graph:
            if job.name in ran:
                results.append(ran[job.name])
            else:
                # condition false: reported directly, never handed to the executor
                results.append(JobResult(job_name=job.name, status=JobStatus.SKIPPED, reason="condition false"))

        run = report(event, True, results)
        self._publish(run)
        return run

    def process(self, raw: Mapping[str, Any], event_name: str | None = None, *, delivery_id: str | None = None) -> RunResult:
        """
        Normalize a raw trigger and run it.

        Raises:
            MalformedTriggerError: before any gating happens.
        """
        return self.run_event(normalize(raw, event_name, delivery_id=delivery_id))

    def _publish(self, run: RunResult) -> None:
        for sink in self.sinks:
            sink.publish(run)
