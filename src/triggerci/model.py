# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple


class EventKind(str, Enum):
    """Kinds of trigger the engine understands."""
    PUSH = "push"
    PULL_REQUEST_OPENED = "pull_request.opened"
    PULL_REQUEST_REOPENED = "pull_request.reopened"
    PULL_REQUEST_SYNCHRONIZED = "pull_request.synchronize"
    PULL_REQUEST_READY_FOR_REVIEW = "pull_request.ready_for_review"

    @property
    def is_pull_request(self) -> bool:
        return self is not EventKind.PUSH


PULL_REQUEST_KINDS = frozenset(k for k in EventKind if k.is_pull_request)


@dataclass(frozen=True)
class Event:
    """A normalized incoming trigger."""
    kind: EventKind
    branch: str
    is_draft: bool = False

    # provenance, optional
    sha: str | None = None
    delivery_id: str | None = None
    repository: str | None = None
    pr_number: int | None = None

    @property
    def key(self) -> str:
        """Stable identity of this event, used to publish results idempotently."""
        if self.delivery_id:
            return self.delivery_id
        return f"{self.kind.value}:{self.branch}:{self.sha or '-'}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "branch": self.branch,
            "is_draft": self.is_draft,
            "sha": self.sha,
            "delivery_id": self.delivery_id,
            "repository": self.repository,
            "pr_number": self.pr_number,
        }


@dataclass(frozen=True)
class TriggerRule:
    """
    Admission filter.

    An empty `match_branches` means any branch. Entries may be glob patterns.
    """
    match_kinds: frozenset[EventKind]
    match_branches: frozenset[str] = frozenset()


@dataclass(frozen=True)
class GateCondition:
    """A named boolean predicate over an Event, attached to a Job."""
    source: str
    predicate: Callable[[Event], bool] = field(compare=False, repr=False)

    def __call__(self, event: Event) -> bool:
        return bool(self.predicate(event))

    @classmethod
    def always(cls) -> GateCondition:
        return cls("always()", lambda event: True)

    @classmethod
    def not_draft(cls) -> GateCondition:
        # push events carry no draft concept, so is_draft is False there
        return cls("not_draft", lambda event: not event.is_draft)


@dataclass(frozen=True)
class Step:
    """
    A single unit of work inside a job.

    Exactly one of `run` (inline shell command) or `uses` (reusable action
    reference, parameterised by `with_`) is set.
    """
    label: str
    run: str | None = None
    uses: str | None = None
    with_: Dict[str, Any] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if (self.run is None) == (self.uses is None):
            raise ValueError(f"step {self.label!r} must set exactly one of run/uses")

    @property
    def is_action(self) -> bool:
        return self.uses is not None


@dataclass(frozen=True)
class Job:
    """
    A CI job: gate condition + ordered steps.

    `needs` is empty for independent jobs; names listed there must finish
    successfully before this job starts.
    """
    name: str
    steps: Tuple[Step, ...]
    condition: GateCondition = field(default_factory=GateCondition.always)
    timeout_minutes: Optional[int] = None
    needs: Tuple[str, ...] = ()
    env: Dict[str, str] = field(default_factory=dict)

    @property
    def timeout_seconds(self) -> float | None:
        if self.timeout_minutes is None:
            return None
        return self.timeout_minutes * 60.0


@dataclass(frozen=True)
class Workflow:
    """Loaded configuration: trigger rules plus the job graph definition."""
    name: str
    triggers: Tuple[TriggerRule, ...]
    jobs: Tuple[Job, ...]
    env: Dict[str, str] = field(default_factory=dict)


class JobStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class RunStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class JobResult:
    job_name: str
    status: JobStatus
    failing_step_index: int | None = None
    failing_step_label: str | None = None
    reason: str | None = None
    duration_s: float = 0.0
    output: str = field(default="", compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_name": self.job_name,
            "status": self.status.value,
            "failing_step_index": self.failing_step_index,
            "failing_step_label": self.failing_step_label,
            "reason": self.reason,
            "duration_s": round(self.duration_s, 3),
        }


@dataclass(frozen=True)
class RunResult:
    """Terminal record of one Event's processing."""
    event: Event
    admitted: bool
    job_results: Tuple[JobResult, ...] = ()

    @property
    def status(self) -> RunStatus:
        statuses = {r.status for r in self.job_results}
        if statuses & {JobStatus.FAILED, JobStatus.TIMED_OUT}:
            return RunStatus.FAILED
        if JobStatus.CANCELLED in statuses:
            return RunStatus.CANCELLED
        # all-skipped (or nothing admitted) counts as passed
        return RunStatus.PASSED

    @property
    def passed(self) -> bool:
        return self.status is RunStatus.PASSED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.event.to_dict(),
            "admitted": self.admitted,
            "status": self.status.value,
            "jobs": [r.to_dict() for r in self.job_results],
        }
