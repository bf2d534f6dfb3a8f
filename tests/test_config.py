import json
import textwrap
from pathlib import Path

import pytest

from triggerci.config import load_workflow, parse_event_kinds, workflow_from_dict
from triggerci.errors import ConfigurationError
from triggerci.model import PULL_REQUEST_KINDS, Event, EventKind

REPO_ROOT = Path(__file__).resolve().parent.parent

CANONICAL = """
name: lints
triggers:
  - events: [PullRequestOpened, PullRequestReopened, PullRequestSynchronized, PullRequestReadyForReview]
  - events: [push]
    branches: [main]
jobs:
  - name: build-test
    condition: not_draft
    steps:
      - {label: Build, run: cargo build}
      - {label: Test, run: cargo test}
  - name: clippy
    condition: not_draft
    timeoutMinutes: 30
    steps:
      - {label: Clippy, run: cargo clippy}
"""


def _write(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return path


def test_canonical_yaml(tmp_path):
    wf = load_workflow(_write(tmp_path, "ci.yml", CANONICAL))

    assert wf.name == "lints"
    assert [j.name for j in wf.jobs] == ["build-test", "clippy"]
    assert wf.jobs[1].timeout_minutes == 30
    assert wf.jobs[0].steps[1].run == "cargo test"
    assert wf.triggers[0].match_kinds == PULL_REQUEST_KINDS
    assert wf.triggers[1].match_branches == frozenset({"main"})
    assert not wf.jobs[0].condition(Event(kind=EventKind.PULL_REQUEST_OPENED, branch="main", is_draft=True))


def test_dialect_file_shipped_with_the_repo():
    wf = load_workflow(REPO_ROOT / "lints.yml")

    assert wf.name == "Lints"
    assert wf.env == {"CARGO_TERM_COLOR": "always"}
    assert [j.name for j in wf.jobs] == ["build-test-IPA", "clippy"]

    pr_rule, push_rule = wf.triggers
    assert pr_rule.match_kinds == PULL_REQUEST_KINDS
    assert push_rule.match_kinds == frozenset({EventKind.PUSH})
    assert push_rule.match_branches == frozenset({"main"})

    clippy = wf.jobs[1]
    assert clippy.timeout_minutes == 30
    assert [s.uses for s in clippy.steps] == ["actions/checkout@v2", "actions-rs/toolchain@v1", "actions-rs/cargo@v1"]
    assert clippy.steps[1].with_ == {"components": "clippy", "override": False}

    draft = Event(kind=EventKind.PULL_REQUEST_SYNCHRONIZED, branch="main", is_draft=True)
    assert not any(j.condition(draft) for j in wf.jobs)
    assert all(j.condition(Event(kind=EventKind.PUSH, branch="main")) for j in wf.jobs)


def test_python_workflow_shipped_with_the_repo():
    wf = load_workflow(REPO_ROOT / "triggerci_workflow.py")
    assert [j.name for j in wf.jobs] == ["build-test-IPA", "clippy"]
    assert wf.jobs[1].timeout_minutes == 30


def test_dialect_default_pull_request_types(tmp_path):
    path = _write(tmp_path, "ci.yaml", """
        on: [pull_request]
        jobs:
          test:
            steps:
              - run: make test
    """)
    wf = load_workflow(path)
    assert wf.triggers[0].match_kinds == frozenset({
        EventKind.PULL_REQUEST_OPENED, EventKind.PULL_REQUEST_SYNCHRONIZED, EventKind.PULL_REQUEST_REOPENED,
    })
    # label falls back to the command
    assert wf.jobs[0].steps[0].label == "make test"


def test_json_workflow(tmp_path):
    data = {
        "triggers": [{"events": ["push"]}],
        "jobs": [{"name": "a", "steps": [{"label": "A", "run": "true"}], "needs": []}],
    }
    path = tmp_path / "ci.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    wf = load_workflow(path)
    assert wf.name == "ci"
    assert wf.triggers[0].match_branches == frozenset()


def test_python_workflow_constant(tmp_path):
    path = _write(tmp_path, "const_workflow.py", """
        from triggerci.dsl import wf, job, sh, trigger
        WORKFLOW = wf(job("a", sh("A", "true")), triggers=[trigger("push")])
    """)
    assert load_workflow(path).jobs[0].name == "a"


@pytest.mark.parametrize(
    "data, message",
    [
        ({"jobs": []}, "triggers"),
        ({"triggers": [{"events": ["push"]}], "jobs": []}, "at least one job"),
        ({"triggers": [{"events": ["tag"]}], "jobs": [{"name": "a", "steps": [{"run": "x"}]}]}, "unsupported"),
        ({"triggers": [{"events": []}], "jobs": [{"name": "a", "steps": [{"run": "x"}]}]}, "at least one event"),
        ({"triggers": [{"events": ["push"]}], "jobs": [{"name": "a", "steps": []}]}, "at least one step"),
        ({"triggers": [{"events": ["push"]}], "jobs": [{"name": "a", "steps": [{"run": "x", "uses": "y"}]}]}, "exactly one"),
        ({"triggers": [{"events": ["push"]}], "jobs": [{"name": "a", "steps": [{"run": ""}]}]}, "must not be empty"),
        ({"triggers": [{"events": ["push"]}], "jobs": [{"name": "a", "steps": [{"run": "  \n"}]}]}, "must not be empty"),
        ({"triggers": [{"events": ["push"]}], "jobs": [{"name": "a", "timeoutMinutes": 0, "steps": [{"run": "x"}]}]}, "timeout"),
        ({"triggers": [{"events": ["push"]}], "jobs": [{"name": "a", "condition": "bogus ==", "steps": [{"run": "x"}]}]}, "condition"),
        ({"triggers": [{"events": ["push"]}], "jobs": [{"name": "a", "needs": ["b"], "steps": [{"run": "x"}]}]}, "missing job"),
        ({"on": {"pull_request": {"types": ["closed"]}}, "jobs": {"a": {"steps": [{"run": "x"}]}}}, "closed"),
        ({"on": "schedule", "jobs": {"a": {"steps": [{"run": "x"}]}}}, "schedule"),
    ],
)
def test_invalid_workflows(data, message):
    with pytest.raises(ConfigurationError, match=message):
        workflow_from_dict(data)


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError, match="not found"):
        load_workflow(tmp_path / "nope.yml")


def test_empty_file(tmp_path):
    with pytest.raises(ConfigurationError, match="empty"):
        load_workflow(_write(tmp_path, "ci.yml", ""))


def test_yaml_syntax_error(tmp_path):
    with pytest.raises(ConfigurationError, match="Could not parse"):
        load_workflow(_write(tmp_path, "ci.yml", "jobs: [unclosed"))


def test_unsupported_format(tmp_path):
    with pytest.raises(ConfigurationError, match="Unsupported"):
        load_workflow(_write(tmp_path, "ci.toml", "x = 1"))


def test_parse_event_kinds_expands_pull_request():
    assert parse_event_kinds(["pull_request", "push"]) == PULL_REQUEST_KINDS | {EventKind.PUSH}
