# config.py
"""
Workflow loading.

A workflow file declares when to run (trigger rules) and what to run (jobs).
Three sources are accepted:

  - YAML / JSON in the canonical shape:
        triggers: [{events: [push], branches: [main]}]
        jobs: [{name, condition, timeoutMinutes, needs, steps: [{label, run}]}]
  - YAML / JSON in the hosted-CI dialect (`on:` + a `jobs:` mapping with
    `if:`, `timeout-minutes:`, `steps: [{name, run} | {uses, with}]`)
  - a Python file defining `workflow()` -> Workflow (or `WORKFLOW = ...`)

Everything is validated here; a loaded Workflow is read-only.
"""

from __future__ import annotations

import json
import runpy
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import yaml  # PyYAML

from .conditions import parse_condition
from .errors import ConfigurationError, MalformedTriggerError
from .events import PULL_REQUEST_ACTIONS, parse_kind
from .graph import JobGraph
from .model import PULL_REQUEST_KINDS, EventKind, Job, Step, TriggerRule, Workflow


# pull_request types run when a dialect file lists none
DEFAULT_PULL_REQUEST_TYPES = ("opened", "synchronize", "reopened")


# ----------------------------------------------------------------------
# Small validators
# ----------------------------------------------------------------------

def _as_list(value: Any, what: str) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (str, int)):
        return [value]
    if isinstance(value, (list, tuple)):
        return list(value)
    raise ConfigurationError(f"{what} must be a list, got {type(value).__name__}")


def _as_str_dict(value: Any, what: str) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"{what} must be a mapping, got {type(value).__name__}")
    # force values to str so they can be exported to the environment
    return {str(k): _env_str(v) for k, v in value.items()}


def _env_str(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _timeout(value: Any, job_name: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigurationError(f"Job '{job_name}': timeout must be a positive integer (minutes), got {value!r}")
    return value


def parse_event_kinds(events: Iterable[Any]) -> frozenset[EventKind]:
    kinds: set[EventKind] = set()
    for e in events:
        if isinstance(e, str) and e.strip().lower() == "pull_request":
            kinds |= PULL_REQUEST_KINDS
            continue
        try:
            kinds.add(parse_kind(e))
        except MalformedTriggerError as err:
            raise ConfigurationError(f"trigger: {err}") from err
    return frozenset(kinds)


# ----------------------------------------------------------------------
# Steps and jobs
# ----------------------------------------------------------------------

def _step(raw: Any, job_name: str, index: int) -> Step:
    where = f"Job '{job_name}' step {index}"
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"{where} must be a mapping")

    run = raw.get("run")
    uses = raw.get("uses")
    if (run is None) == (uses is None):
        raise ConfigurationError(f"{where} must set exactly one of 'run' or 'uses'")
    if run is not None and not str(run).strip():
        raise ConfigurationError(f"{where}: 'run' must not be empty")
    if uses is not None and not str(uses).strip():
        raise ConfigurationError(f"{where}: 'uses' must not be empty")

    label = raw.get("label") or raw.get("name")
    if not label:
        label = f"Run {uses}" if uses else str(run).strip().splitlines()[0]

    with_ = raw.get("with") or {}
    if not isinstance(with_, Mapping):
        raise ConfigurationError(f"{where}: 'with' must be a mapping")

    return Step(
        label=str(label),
        run=str(run) if run is not None else None,
        uses=str(uses) if uses is not None else None,
        with_=dict(with_),
        env=_as_str_dict(raw.get("env"), f"{where} env"),
    )


def _job(name: str, raw: Mapping[str, Any], *, condition_key: str, timeout_keys: Iterable[str]) -> Job:
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"Job '{name}' must be a mapping")

    steps_raw = raw.get("steps")
    if not isinstance(steps_raw, list) or not steps_raw:
        raise ConfigurationError(f"Job '{name}' must have at least one step")

    timeout = None
    for key in timeout_keys:
        if key in raw:
            timeout = _timeout(raw[key], name)
            break

    return Job(
        name=name,
        steps=tuple(_step(s, name, i) for i, s in enumerate(steps_raw)),
        condition=parse_condition(raw.get(condition_key)),
        timeout_minutes=timeout,
        needs=tuple(str(n) for n in _as_list(raw.get("needs"), f"Job '{name}' needs")),
        env=_as_str_dict(raw.get("env"), f"Job '{name}' env"),
    )


# ----------------------------------------------------------------------
# Canonical shape
# ----------------------------------------------------------------------

def _canonical_triggers(raw: Any) -> List[TriggerRule]:
    rules: List[TriggerRule] = []
    for i, t in enumerate(_as_list(raw, "triggers")):
        if not isinstance(t, Mapping):
            raise ConfigurationError(f"trigger {i} must be a mapping")
        kinds = parse_event_kinds(_as_list(t.get("events"), f"trigger {i} events"))
        if not kinds:
            raise ConfigurationError(f"trigger {i} must list at least one event")
        branches = frozenset(str(b) for b in _as_list(t.get("branches"), f"trigger {i} branches"))
        rules.append(TriggerRule(match_kinds=kinds, match_branches=branches))
    return rules


def _canonical_jobs(raw: Any) -> List[Job]:
    jobs: List[Job] = []
    for i, j in enumerate(_as_list(raw, "jobs")):
        if not isinstance(j, Mapping) or not j.get("name"):
            raise ConfigurationError(f"job {i} must be a mapping with a name")
        jobs.append(
            _job(str(j["name"]), j, condition_key="condition", timeout_keys=("timeoutMinutes", "timeout_minutes"))
        )
    return jobs


# ----------------------------------------------------------------------
# Hosted-CI dialect
# ----------------------------------------------------------------------

def _dialect_triggers(on: Any) -> List[TriggerRule]:
    if isinstance(on, (str, list)):
        on = {name: None for name in _as_list(on, "on")}
    if not isinstance(on, Mapping):
        raise ConfigurationError("'on' must be an event name, a list or a mapping")

    rules: List[TriggerRule] = []
    for event_name, options in on.items():
        options = options or {}
        if not isinstance(options, Mapping):
            raise ConfigurationError(f"on.{event_name} must be a mapping")
        branches = frozenset(str(b) for b in _as_list(options.get("branches"), f"on.{event_name}.branches"))

        if event_name == "push":
            rules.append(TriggerRule(match_kinds=frozenset({EventKind.PUSH}), match_branches=branches))
        elif event_name == "pull_request":
            types = _as_list(options.get("types"), "on.pull_request.types") or list(DEFAULT_PULL_REQUEST_TYPES)
            unknown = [t for t in types if t not in PULL_REQUEST_ACTIONS]
            if unknown:
                raise ConfigurationError(
                    f"on.pull_request.types: unsupported {unknown}. Supported: {sorted(PULL_REQUEST_ACTIONS)}"
                )
            kinds = frozenset(PULL_REQUEST_ACTIONS[t] for t in types)
            rules.append(TriggerRule(match_kinds=kinds, match_branches=branches))
        else:
            raise ConfigurationError(f"unsupported trigger event: {event_name!r}")
    return rules


def _dialect_jobs(raw: Any) -> List[Job]:
    if not isinstance(raw, Mapping):
        raise ConfigurationError("'jobs' must be a mapping of job id -> job")
    return [
        _job(str(job_id), j, condition_key="if", timeout_keys=("timeout-minutes",))
        for job_id, j in raw.items()
    ]


# ----------------------------------------------------------------------
# Public API
# ----------------------------------------------------------------------

def workflow_from_dict(data: Mapping[str, Any], *, default_name: str = "workflow") -> Workflow:
    """
    Build and validate a Workflow from already-parsed data.

    Raises:
        ConfigurationError: invalid triggers, jobs, conditions or job graph.
    """
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"workflow root must be a mapping, got {type(data).__name__}")

    # YAML 1.1 reads a bare `on:` key as boolean True
    on = data.get("on", data.get(True))

    if "triggers" in data:
        triggers = _canonical_triggers(data["triggers"])
        jobs = _canonical_jobs(data.get("jobs"))
    elif on is not None:
        triggers = _dialect_triggers(on)
        jobs = _dialect_jobs(data.get("jobs"))
    else:
        raise ConfigurationError("workflow must define 'triggers' (or 'on')")

    if not triggers:
        raise ConfigurationError("workflow must define at least one trigger")
    if not jobs:
        raise ConfigurationError("workflow must define at least one job")

    # validates names / needs / cycles
    JobGraph(jobs)

    return Workflow(
        name=str(data.get("name") or default_name),
        triggers=tuple(triggers),
        jobs=tuple(jobs),
        env=_as_str_dict(data.get("env"), "env"),
    )


def _load_python(path: Path) -> Workflow:
    module_name = f"triggerci_workflow_{path.stem}"
    globals_dict = runpy.run_path(str(path), run_name=module_name)

    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        wf = globals_dict["workflow"]()
    elif "WORKFLOW" in globals_dict:
        wf = globals_dict["WORKFLOW"]
    else:
        raise ConfigurationError(f"{path.name}: define workflow() -> Workflow or WORKFLOW = ...")

    if isinstance(wf, Mapping):
        return workflow_from_dict(wf, default_name=path.stem)
    if not isinstance(wf, Workflow):
        raise ConfigurationError(f"{path.name}: workflow must be a Workflow, got {type(wf).__name__}")
    JobGraph(wf.jobs)
    return wf


def load_workflow(path: str | Path) -> Workflow:
    """
    Load a workflow from a .yml/.yaml/.json/.py file.

    Raises:
        ConfigurationError: missing file, unsupported format, parse or validation errors.
    """
    wf_path = Path(path).expanduser().resolve()
    if not wf_path.exists():
        raise ConfigurationError(f"Workflow file not found: {wf_path}")

    suffix = wf_path.suffix.lower()
    if suffix == ".py":
        return _load_python(wf_path)

    try:
        with wf_path.open("r", encoding="utf-8") as f:
            if suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            elif suffix == ".json":
                data = json.load(f)
            else:
                raise ConfigurationError(f"Unsupported workflow format: {wf_path.suffix}")
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Could not parse {wf_path.name}: {e}") from e

    if data is None:
        raise ConfigurationError(f"Workflow file is empty: {wf_path.name}")
    return workflow_from_dict(data, default_name=wf_path.stem)
