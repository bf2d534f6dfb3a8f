import json
import sys
import textwrap

import pytest
from click.testing import CliRunner

from triggerci.cli import EXIT_USAGE, cli

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="uses a POSIX shell")

WORKFLOW = """
name: smoke
on:
  pull_request:
    types: [opened, synchronize, reopened, ready_for_review]
  push:
    branches: [main]
jobs:
  ok:
    if: github.event.pull_request.draft == false
    steps:
      - name: Pass
        run: "true"
  maybe:
    if: github.event.pull_request.draft == false
    steps:
      - name: Check
        run: test "$TRIGGERCI_BRANCH" != broken
"""


@pytest.fixture
def workspace(tmp_path):
    (tmp_path / "smoke.yml").write_text(textwrap.dedent(WORKFLOW), encoding="utf-8")

    def event(name, payload):
        path = tmp_path / name
        path.write_text(json.dumps(payload), encoding="utf-8")
        return str(path)

    return tmp_path, event


def _run(tmp_path, *args):
    return CliRunner().invoke(
        cli,
        ["run", "--workflow", str(tmp_path / "smoke.yml"), "--repository", str(tmp_path), *args],
    )


def test_passing_run_exits_zero(workspace):
    tmp_path, event = workspace
    result = _run(tmp_path, "--event", event("push.json", {"eventKind": "push", "branchName": "main"}))
    assert result.exit_code == 0, result.output
    assert "RUN: PASSED" in result.output


def test_failing_job_exits_one(workspace):
    tmp_path, event = workspace
    payload = {"eventKind": "PullRequestOpened", "branchName": "broken"}
    result = _run(tmp_path, "--event", event("pr.json", payload))
    assert result.exit_code == 1
    assert "maybe: FAILED at step 0 (Check)" in result.output


def test_not_admitted_exits_zero(workspace):
    tmp_path, event = workspace
    result = _run(tmp_path, "--event", event("push.json", {"eventKind": "push", "branchName": "feature-x"}))
    assert result.exit_code == 0
    assert "not admitted" in result.output


def test_draft_skips_and_passes(workspace):
    tmp_path, event = workspace
    payload = {"eventKind": "PullRequestOpened", "branchName": "main", "draftFlag": True}
    result = _run(tmp_path, "--event", event("draft.json", payload), "--results-dir", str(tmp_path / "out"))
    assert result.exit_code == 0

    written = json.loads(next((tmp_path / "out").iterdir()).read_text())
    assert [j["status"] for j in written["jobs"]] == ["skipped", "skipped"]


def test_webhook_payload_with_event_name(workspace):
    tmp_path, event = workspace
    result = _run(
        tmp_path,
        "--event", event("hook.json", {"ref": "refs/heads/main", "after": "abc"}),
        "--event-name", "push",
    )
    assert result.exit_code == 0


def test_malformed_trigger_exits_usage(workspace):
    tmp_path, event = workspace
    result = _run(tmp_path, "--event", event("bad.json", {"branchName": "main"}))
    assert result.exit_code == EXIT_USAGE
    assert "Malformed trigger" in result.output


def test_missing_event_exits_usage(workspace):
    tmp_path, _ = workspace
    assert _run(tmp_path).exit_code == EXIT_USAGE


def test_invalid_workflow_exits_usage(tmp_path):
    (tmp_path / "bad.yml").write_text("on: push\njobs:\n  a:\n    steps: []\n", encoding="utf-8")
    result = CliRunner().invoke(cli, ["check", "--workflow", str(tmp_path / "bad.yml")])
    assert result.exit_code == EXIT_USAGE
    assert "Invalid workflow" in result.output


def test_check_shows_plan(workspace):
    tmp_path, event = workspace
    payload = {"eventKind": "PullRequestOpened", "branchName": "main", "draftFlag": True}
    result = CliRunner().invoke(
        cli, ["check", "--workflow", str(tmp_path / "smoke.yml"), "--event", event("draft.json", payload)]
    )
    assert result.exit_code == 0, result.output
    assert "Stages:" in result.output
    assert "GATE: admitted" in result.output
    assert "ok (skipped:" in result.output
