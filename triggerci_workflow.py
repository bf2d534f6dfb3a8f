# triggerci_workflow.py
# The lints pipeline written with the Python DSL instead of YAML.
from __future__ import annotations

from triggerci.dsl import wf, job, sh, uses, trigger


def workflow():
    return wf(
        job(
            "build-test-IPA",
            uses("actions/checkout@v2"),
            sh("Build", "cargo build --verbose --release"),
            sh("Run tests", "cargo test --verbose --release"),
            condition="not_draft",
        ),
        job(
            "clippy",
            uses("actions/checkout@v2"),
            uses("actions-rs/toolchain@v1", components="clippy", override=False),
            uses("actions-rs/cargo@v1", command="clippy", args="--all-targets -- -D warnings"),
            condition="not_draft",
            timeout_minutes=30,
        ),
        triggers=[
            trigger("pull_request.opened", "pull_request.reopened", "pull_request.synchronize", "pull_request.ready_for_review"),
            trigger("push", branches=["main"]),
        ],
        name="Lints",
        env={"CARGO_TERM_COLOR": "always"},
    )
