# tests/conftest.py
"""
Shared fixtures.

FakeEnvironment stands in for a real backend: it records every provision,
command and release, and answers each command with a configured exit code.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Dict, List, Mapping, Optional

import pytest

from triggerci.dsl import job, sh, trigger, wf
from triggerci.environment import EnvironmentHandle, ExecResult
from triggerci.errors import EnvironmentProvisionError
from triggerci.model import Event, EventKind, Job
from triggerci.ui.console import Console, set_console


class FakeEnvironment:
    name = "fake"

    def __init__(
        self,
        exit_codes: Optional[Dict[str, int]] = None,
        *,
        delays: Optional[Dict[str, float]] = None,
        fail_provision: bool = False,
        on_execute: Optional[Callable[[str, str], None]] = None,
    ):
        self.exit_codes = dict(exit_codes or {})
        self.delays = dict(delays or {})
        self.fail_provision = fail_provision
        self.on_execute = on_execute
        self.provisioned: List[str] = []
        self.released: List[str] = []
        self.commands: List[tuple[str, str]] = []
        self.envs: List[Dict[str, str]] = []
        self._lock = threading.Lock()
        self._counter = 0

    def provision(self, job: Job) -> EnvironmentHandle:
        if self.fail_provision:
            raise EnvironmentProvisionError(backend=self.name, message="no capacity")
        with self._lock:
            self._counter += 1
            handle = EnvironmentHandle(id=f"h{self._counter}", job_name=job.name, workdir="/fake")
            self.provisioned.append(job.name)
        return handle

    def execute(
        self,
        handle: EnvironmentHandle,
        command: str,
        *,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> ExecResult:
        with self._lock:
            self.commands.append((handle.job_name, command))
            self.envs.append(dict(env or {}))
        if self.on_execute is not None:
            self.on_execute(handle.job_name, command)

        delay = self.delays.get(command, 0.0)
        if delay:
            end = time.monotonic() + delay
            while time.monotonic() < end:
                if cancel is not None and cancel.is_set():
                    return ExecResult(exit_code=-9, cancelled=True)
                if timeout is not None and time.monotonic() - (end - delay) >= timeout:
                    return ExecResult(exit_code=-9, timed_out=True)
                time.sleep(0.01)
        return ExecResult(exit_code=self.exit_codes.get(command, 0), output=f"ran {command}")

    def release(self, handle: EnvironmentHandle) -> None:
        with self._lock:
            self.released.append(handle.job_name)

    def commands_for(self, job_name: str) -> List[str]:
        return [c for j, c in self.commands if j == job_name]


@pytest.fixture(autouse=True)
def quiet_console():
    """Keep test output readable; every test gets a fresh console."""
    console = Console(quiet=True)
    set_console(console)
    yield console
    set_console(Console())


@pytest.fixture
def fake_env() -> FakeEnvironment:
    return FakeEnvironment()


@pytest.fixture
def lints_workflow():
    """Two independent draft-gated jobs, admitted on PR activity and pushes to main."""
    return wf(
        job(
            "build-test",
            sh("Build", "cargo build --release"),
            sh("Test", "cargo test --release"),
            condition="not_draft",
        ),
        job(
            "clippy",
            sh("Clippy", "cargo clippy --all-targets -- -D warnings"),
            condition="not_draft",
            timeout_minutes=30,
        ),
        triggers=[
            trigger("pull_request.opened", "pull_request.reopened", "pull_request.synchronize", "pull_request.ready_for_review"),
            trigger("push", branches=["main"]),
        ],
        name="Lints",
    )


@pytest.fixture
def push_main() -> Event:
    return Event(kind=EventKind.PUSH, branch="main", sha="abc123")


@pytest.fixture
def push_feature() -> Event:
    return Event(kind=EventKind.PUSH, branch="feature-x")


@pytest.fixture
def draft_pr() -> Event:
    return Event(kind=EventKind.PULL_REQUEST_OPENED, branch="main", is_draft=True, pr_number=7)


@pytest.fixture
def ready_pr() -> Event:
    return Event(kind=EventKind.PULL_REQUEST_READY_FOR_REVIEW, branch="main", is_draft=False, pr_number=7)
