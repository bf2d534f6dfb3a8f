# scheduler.py
from __future__ import annotations

import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Dict, List, Optional, Sequence, Set

from .executor import StepExecutor
from .model import Event, Job, JobResult, JobStatus
from .ui.console import get_console


class Dispatcher:
    """
    Scheduler + orchestrator.

    - Jobs whose `needs` are satisfied are submitted as soon as they are ready;
      independent jobs run concurrently, bounded by `max_workers`
      (None = one worker per job).
    - A job whose dependency did not pass is Skipped without running.
    - `cancel()` signals every in-flight job; jobs not started yet end Cancelled.
    - Results come back in the order `jobs` was given, whatever the completion order.
    """

    def __init__(
        self,
        executor: StepExecutor,
        max_workers: int | None = None,
        cancel_token: threading.Event | None = None,
    ):
        if max_workers is not None and max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.executor = executor
        self.max_workers = max_workers
        # set by whoever owns the run (see Pipeline.cancel)
        self.cancel_token = cancel_token if cancel_token is not None else threading.Event()

    def cancel(self) -> None:
        self.cancel_token.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_token.is_set()

    def run(self, jobs: Sequence[Job], event: Event | None = None) -> List[JobResult]:
        console = get_console()
        jobs = list(jobs)
        by_name: Dict[str, Job] = {j.name: j for j in jobs}
        results: Dict[str, JobResult] = {}

        waiting: Dict[str, Set[str]] = {j.name: set(j.needs) for j in jobs}
        dependents: Dict[str, List[str]] = {j.name: [] for j in jobs}
        for j in jobs:
            for need in j.needs:
                if need in dependents:
                    dependents[need].append(j.name)

        ready: List[str] = []

        def settle(name: str) -> None:
            """Release or skip the dependents of a finished job."""
            ok = results[name].status is JobStatus.PASSED
            for child in dependents[name]:
                if child in results:
                    continue
                if ok:
                    waiting[child].discard(name)
                    if not waiting[child]:
                        ready.append(child)
                    continue
                status = JobStatus.CANCELLED if self.cancelled else JobStatus.SKIPPED
                results[child] = JobResult(job_name=child, status=status, reason=f"needs {name}")
                console.print_job_skipped(child, f"needs {name}")
                settle(child)

        for j in jobs:
            missing = [n for n in j.needs if n not in by_name]
            if missing:
                # dependency was not selected for this event
                results[j.name] = JobResult(job_name=j.name, status=JobStatus.SKIPPED, reason=f"needs {missing[0]}")
                console.print_job_skipped(j.name, f"needs {missing[0]}")
            elif not j.needs:
                ready.append(j.name)
        for name in list(results):
            settle(name)

        workers = self.max_workers or max(1, len(jobs))
        in_flight: Dict[Future, str] = {}

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="triggerci-job") as pool:
            while ready or in_flight:
                while ready:
                    name = ready.pop(0)
                    if self.cancelled:
                        results[name] = JobResult(job_name=name, status=JobStatus.CANCELLED, reason="cancelled before start")
                        settle(name)
                        continue
                    fut = pool.submit(self.executor.run_job, by_name[name], event, self.cancel_token)
                    in_flight[fut] = name

                if not in_flight:
                    break

                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for fut in done:
                    name = in_flight.pop(fut)
                    try:
                        results[name] = fut.result()
                    except Exception as e:
                        # a crash inside one job must not take its siblings down
                        console.print_exception(e)
                        results[name] = JobResult(job_name=name, status=JobStatus.FAILED, reason=f"internal error: {e}")
                    settle(name)

        # only a dependency cycle leaves a job without a result
        return [
            results.get(j.name) or JobResult(job_name=j.name, status=JobStatus.SKIPPED, reason="unresolved needs")
            for j in jobs
        ]
