import pytest

from triggerci.dsl import build, job, matrix, sh, trigger, uses, wf
from triggerci.errors import ConfigurationError
from triggerci.model import PULL_REQUEST_KINDS, EventKind, GateCondition


def test_sh_and_uses():
    assert sh("Build", "cargo build").run == "cargo build"
    step = uses("actions-rs/cargo@v1", command="clippy")
    assert step.is_action
    assert step.label == "Run actions-rs/cargo@v1"
    assert step.with_ == {"command": "clippy"}


def test_job_requires_steps():
    with pytest.raises(ConfigurationError):
        job("empty")


def test_job_condition_forms():
    assert job("a", sh("A", "a")).condition.source == "always()"
    assert job("a", sh("A", "a"), condition="not_draft").condition.source == "not_draft"
    custom = GateCondition("custom", lambda e: e.branch == "main")
    assert job("a", sh("A", "a"), condition=custom).condition is custom


def test_trigger():
    rule = trigger("pull_request", branches=["main"])
    assert rule.match_kinds == PULL_REQUEST_KINDS
    assert rule.match_branches == frozenset({"main"})
    with pytest.raises(ConfigurationError):
        trigger()


def test_builder():
    j = (
        build("package")
        .depends_on("build")
        .use_action("actions/checkout@v2")
        .define_step("Package", "cargo package")
        .when("not_draft")
        .timeout(10)
        .with_env(RUST_LOG=1)
        .build()
    )
    assert j.needs == ("build",)
    assert [s.label for s in j.steps] == ["Run actions/checkout@v2", "Package"]
    assert j.timeout_minutes == 10
    assert j.env == {"RUST_LOG": "1"}


def test_builder_without_steps():
    with pytest.raises(ConfigurationError):
        build("nothing").build()


def test_matrix_jobs_are_flattened_into_workflow():
    jobs = matrix("toolchain", ["stable", "nightly"]).jobs(
        lambda v: job(f"test-{v}", sh("Test", f"cargo +{v} test"))
    )
    workflow = wf(job("lint", sh("Lint", "cargo clippy")), jobs, triggers=[trigger("push")])
    assert [j.name for j in workflow.jobs] == ["lint", "test-stable", "test-nightly"]


def test_wf_validates():
    with pytest.raises(ConfigurationError):
        wf(job("a", sh("A", "a")), triggers=[])
    with pytest.raises(ConfigurationError):
        wf(job("a", sh("A", "a"), needs=["missing"]), triggers=[trigger("push")])
    assert wf(job("a", sh("A", "a")), triggers=[trigger(EventKind.PUSH.value)]).name == "workflow"


def test_step_needs_exactly_one_of_run_or_uses():
    from triggerci.model import Step

    with pytest.raises(ValueError):
        Step(label="nothing")
    with pytest.raises(ValueError):
        Step(label="both", run="true", uses="actions/checkout@v2")


def test_job_timeout_seconds():
    assert job("a", sh("A", "a")).timeout_seconds is None
    assert job("a", sh("A", "a"), timeout_minutes=30).timeout_seconds == 1800.0
