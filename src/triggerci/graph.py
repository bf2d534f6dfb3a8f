from __future__ import annotations

from typing import Dict, Iterable, List, Set, Tuple

from .errors import ConfigurationError
from .model import Event, Job


class JobGraph:
    """
    The declared jobs of a workflow, validated once and read-only afterwards.

    Construction rejects duplicate names, unknown or self `needs`, and cycles.
    Declaration order is preserved everywhere results are reported.
    """

    def __init__(self, jobs: Iterable[Job]):
        self.jobs: Tuple[Job, ...] = tuple(jobs)
        self.by_name: Dict[str, Job] = {}
        for job in self.jobs:
            if job.name in self.by_name:
                raise ConfigurationError(f"Duplicate job name: {job.name!r}")
            self.by_name[job.name] = job

        for job in self.jobs:
            for need in job.needs:
                if need == job.name:
                    raise ConfigurationError(f"Job '{job.name}' needs itself")
                if need not in self.by_name:
                    raise ConfigurationError(
                        f"Job '{job.name}' needs missing job '{need}'. Known jobs: {sorted(self.by_name)}"
                    )

        self._levels = self._stages()

    def _stages(self) -> List[List[str]]:
        """Group jobs into stages: each stage only needs jobs from earlier ones."""
        placed: Set[str] = set()
        pending = list(self.jobs)
        stages: List[List[str]] = []

        while pending:
            stage = [j.name for j in pending if all(n in placed for n in j.needs)]
            if not stage:
                stuck = sorted(j.name for j in pending)
                raise ConfigurationError(f"Job graph has a cycle. Stuck jobs: {stuck}")
            placed.update(stage)
            stages.append(stage)
            pending = [j for j in pending if j.name not in placed]

        return stages

    def __len__(self) -> int:
        return len(self.jobs)

    def __iter__(self):
        return iter(self.jobs)

    def levels(self) -> List[List[str]]:
        return [list(level) for level in self._levels]

    def partition(self, event: Event) -> Tuple[List[Job], List[Job]]:
        """Split jobs into (selected, skipped) by evaluating each job's condition."""
        selected: List[Job] = []
        skipped: List[Job] = []
        for job in self.jobs:
            (selected if job.condition(event) else skipped).append(job)
        return selected, skipped

    def select_jobs(self, event: Event) -> List[Job]:
        """Jobs whose condition holds for `event`, in declaration order."""
        return self.partition(event)[0]
