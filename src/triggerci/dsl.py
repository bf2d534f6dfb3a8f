# src/triggerci/dsl.py
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from .conditions import parse_condition
from .config import parse_event_kinds
from .errors import ConfigurationError
from .graph import JobGraph
from .model import GateCondition, Job, Step, TriggerRule, Workflow


ConditionLike = Union[str, GateCondition, None]


def _condition(value: ConditionLike) -> GateCondition:
    if isinstance(value, GateCondition):
        return value
    return parse_condition(value)


# ---------------------------------------------------------------------
# Step helpers
# ---------------------------------------------------------------------

def sh(label: str, cmd: str, *, env: Optional[Dict[str, str]] = None) -> Step:
    """Create a shell step."""
    return Step(label=label, run=cmd, env=dict(env or {}))


def uses(action: str, label: str | None = None, **inputs: Any) -> Step:
    """
    Create a reusable-action step.

        uses("actions-rs/toolchain@v1", components="clippy", override=False)
    """
    return Step(label=label or f"Run {action}", uses=action, with_=dict(inputs))


# ---------------------------------------------------------------------
# Triggers
# ---------------------------------------------------------------------

def trigger(*events: str, branches: Optional[Iterable[str]] = None) -> TriggerRule:
    """
    trigger("push", branches=["main"])
    trigger("pull_request.opened", "pull_request.synchronize")
    trigger("pull_request")   # every pull-request kind
    """
    kinds = parse_event_kinds(events)
    if not kinds:
        raise ConfigurationError("trigger() needs at least one event")
    return TriggerRule(match_kinds=kinds, match_branches=frozenset(branches or ()))


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    condition: ConditionLike = None,
    needs: Optional[List[str]] = None,
    env: Optional[Dict[str, str]] = None,
    timeout_minutes: Optional[int] = None,
) -> Job:
    if not steps:
        raise ConfigurationError(f"job({name!r}) must have at least one step")
    return Job(
        name=name,
        steps=tuple(steps),
        condition=_condition(condition),
        timeout_minutes=timeout_minutes,
        needs=tuple(needs or ()),
        env=dict(env or {}),
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._env: dict[str, str] = {}
        self._condition: ConditionLike = None
        self._timeout: Optional[int] = None

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def define_step(self, label: str, run: str):
        self._steps.append(sh(label, run))
        return self

    def use_action(self, action: str, label: str | None = None, **inputs: Any):
        self._steps.append(uses(action, label, **inputs))
        return self

    def when(self, condition: ConditionLike):
        self._condition = condition
        return self

    def timeout(self, minutes: int):
        self._timeout = minutes
        return self

    def with_env(self, **env):
        # force values to str for env compatibility
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def build(self) -> Job:
        if not self._steps:
            raise ConfigurationError(f"Job '{self.name}' has no steps")
        return job(
            self.name,
            *self._steps,
            condition=self._condition,
            needs=self._needs,
            env=self._env,
            timeout_minutes=self._timeout,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Minimal matrix expander.

    Example:
        matrix("toolchain", ["stable", "nightly"]).jobs(
            lambda v: job(f"test-{v}", sh("Test", f"cargo +{v} test"))
        )
    """
    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = list(values)

    def jobs(self, builder: Callable[[Any], Job]) -> List[Job]:
        return [builder(v) for v in self.values]


def matrix(key: str, values: Iterable[Any]) -> Matrix:
    return Matrix(key, values)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(
    *jobs: Union[Job, List[Job]],
    triggers: Iterable[TriggerRule],
    name: str = "workflow",
    env: Optional[Dict[str, str]] = None,
) -> Workflow:
    """
    Workflow definition helper. Matrix expansions (lists of jobs) are flattened.

        def workflow():
            return wf(
                job(...),
                job(...),
                triggers=[trigger("push", branches=["main"])],
            )
    """
    flat: List[Job] = []
    for j in jobs:
        flat.extend(j if isinstance(j, list) else [j])

    triggers = tuple(triggers)
    if not triggers:
        raise ConfigurationError("wf() needs at least one trigger")
    JobGraph(flat)
    return Workflow(name=name, triggers=triggers, jobs=tuple(flat), env=dict(env or {}))
